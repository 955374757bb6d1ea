#!/usr/bin/env python3
"""
partner_matching_engine.py

Partner Matching Engine for Out-Licensing and M&A Opportunities

Scores every partner company in the corpus against a proposed deal on six
sub-scores (each 0-100):

    therapeutic_alignment  focus weight on the query's therapy area(s),
                           normalized per partner, plus pipeline-focus
                           keyword overlap
    pipeline_gap           inverse in-house pipeline density in the area,
                           plus a bonus for gap signals (LOE, patent cliff)
    deal_history           recency-weighted deals of the requested type(s),
                           area-relevant deals weighted up, measured against
                           the corpus as_of_date
    financial_capacity     financial tier x development stage table
    geography_fit          requested rights covered by the footprint
    strategic_priority     strategic tags overlapping query keywords

match_score is the weighted average under the versioned weight table.
Each match also carries signals that do not move match_score: mechanism
expertise (0-10 deal and pipeline track record with the query mechanism),
BD watch signals and a typical deal-structure model for the stage.
Results sort by match_score desc, deal_history desc, company asc;
exclusions and the minimum score apply after scoring and before the limit.

Author: Wake Robin Capital Management
Version: 1.0.0
"""

import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from common.input_validation import PartnerMatchRequest, coerce_request
from common.provenance import AuditTrailMixin, finalize_result
from common.score_utils import TENTH, median, quantize, step_score, to_decimal, weighted_average
from common.text_normalization import keyword_set, normalize_text, readable_label
from competitive_dynamics import mentions_any
from competitive_landscape_engine import CorpusSource, load_params_pair
from entity_resolver import resolve
from landscape_narratives import (
    COMPANY_TYPE_LABELS,
    PARTNER_DEAL_STRUCTURE_RULES,
    PARTNER_RATIONALE_RULES,
    PARTNER_WATCH_SIGNALS,
    SUBSCORE_LABELS,
    format_money_m,
    render_all,
    strength_descriptor,
)
from reference_corpus import PartnerDeal, PartnerRecord, ReferenceCorpus, as_handle

__version__ = "1.0.0"
__author__ = "Wake Robin Capital Management"

logger = logging.getLogger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

MAX_SCORE = Decimal("100")
GLOBAL = "global"

# therapeutic_alignment split between focus weight and keyword overlap
AREA_SHARE = Decimal("0.7")
KEYWORD_SHARE = Decimal("0.3")

# pipeline_gap: density component scaled to 80, gap signal adds 20
DENSITY_SHARE = Decimal("80")
GAP_SIGNAL_BONUS = Decimal("20")
NO_AREA_DENSITY_SCORE = Decimal("50")

# deal_history: weighted deal volume scaled to 85, preferred stage adds 15
DEAL_VOLUME_SHARE = Decimal("85")
PREFERRED_STAGE_BONUS = Decimal("15")

PRIORITY_MATCH_POINTS = Decimal("35")
MILESTONE_PRECISION = Decimal("0.001")
RATIONALE_FOCUS_AREAS = 3

# Tokens too generic to signal strategic overlap
GENERIC_TOKENS = frozenset({
    "disease", "disorder", "disorders", "syndrome", "type", "chronic", "acute",
    "and", "the", "with", "for", "non", "cell", "small",
})

# Therapy area inference for indications missing from the corpus
THERAPY_AREA_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "oncology": ("cancer", "tumor", "tumour", "carcinoma", "lymphoma", "leukemia", "myeloma",
                 "melanoma", "sarcoma", "glioma", "nsclc", "oncology"),
    "immunology": ("arthritis", "lupus", "psoriasis", "colitis", "crohn", "atopic", "autoimmune"),
    "neurology": ("alzheimer", "parkinson", "epilepsy", "sclerosis", "migraine", "neuropathy", "ataxia"),
    "psychiatry": ("depression", "depressive", "schizophrenia", "bipolar", "anxiety", "adhd"),
    "cardiovascular": ("heart", "cardiac", "cardio", "hypertension", "atrial", "coronary"),
    "metabolic": ("diabetes", "obesity", "nash", "mash", "metabolic", "lipid"),
    "infectious_disease": ("infection", "viral", "virus", "hiv", "hepatitis", "bacterial", "fungal"),
    "pulmonology": ("asthma", "copd", "pulmonary", "fibrosis"),
    "hematology": ("anemia", "hemophilia", "sickle", "thalassemia"),
    "ophthalmology": ("macular", "retinal", "glaucoma", "uveitis"),
    "nephrology": ("kidney", "renal", "nephropathy"),
    "dermatology": ("dermatitis", "eczema", "acne", "vitiligo"),
}

# Mechanism classes and the phrases that identify them in deal and pipeline text
MECHANISM_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "adc": ("adc", "antibody-drug conjugate", "antibody drug conjugate", "deruxtecan", "vedotin", "govitecan"),
    "bispecific": ("bispecific", "dual-targeting", "duobody"),
    "car_t": ("car-t", "car t", "chimeric antigen receptor", "cell therapy", "autologous", "allogeneic"),
    "checkpoint": ("pd-1", "pd-l1", "ctla-4", "lag-3", "tigit", "tim-3", "checkpoint inhibitor", "immuno-oncology"),
    "degrader": ("degrader", "protac", "molecular glue", "targeted protein degradation", "cereblon"),
    "kinase": ("kinase inhibitor", "tki", "cdk", "fgfr", "egfr", "kras", "raf", "mek", "alk", "ret", "met", "btk"),
    "antibody": ("monoclonal antibody", "mab", "igg", "fully human", "humanized"),
    "rna": ("sirna", "mrna", "antisense", "oligonucleotide", "aso", "rna interference", "rnai"),
    "gene_therapy": ("gene therapy", "aav", "lentivirus", "crispr", "gene editing", "base editing"),
    "small_molecule": ("small molecule", "oral", "tablet", "capsule"),
    "glp1": ("glp-1", "glp1", "gip", "incretin", "amylin", "obesity"),
    "il_targeting": ("il-17", "il-23", "il-6", "il-4", "il-13", "il-33", "il-31", "interleukin"),
}


# ============================================================================
# QUERY CONTEXT
# ============================================================================

def infer_therapy_areas(text: str) -> List[str]:
    """Therapy areas whose keywords appear in free text (table order)."""
    normalized = f" {normalize_text(text)} "
    return [
        area for area, keywords in THERAPY_AREA_KEYWORDS.items()
        if any(f" {kw}" in normalized for kw in keywords)
    ]


def query_keywords(*phrases: Optional[str]) -> List[str]:
    """Distinct meaningful tokens of the query phrases."""
    return [t for t in keyword_set([p for p in phrases if p]) if t not in GENERIC_TOKENS]


def deal_matches_type(deal: PartnerDeal, deal_types: Sequence[str]) -> bool:
    deal_type = normalize_text(deal.deal_type)
    return any(normalize_text(t) in deal_type for t in deal_types)


def deal_is_area_relevant(
    deal: PartnerDeal,
    areas: Sequence[str],
    keywords: Sequence[str],
    corpus: ReferenceCorpus,
) -> bool:
    """Deal indication falls in a query therapy area, or shares a query keyword."""
    if any(record.therapy_area in areas for record in corpus.lookup_indication(deal.indication)):
        return True
    if set(infer_therapy_areas(deal.indication)) & set(areas):
        return True
    return bool(set(query_keywords(deal.indication)) & set(keywords))


# ============================================================================
# SUB-SCORES
# ============================================================================

def score_therapeutic_alignment(partner: PartnerRecord, areas: Sequence[str], keywords: Sequence[str]) -> Decimal:
    """Focus weight on the query areas (relative to the partner's top area) plus focus keyword overlap."""
    focus = partner.therapeutic_focus
    top_weight = max(focus.values(), default=Decimal("0"))
    area_fit = Decimal("0")
    if top_weight > 0 and areas:
        area_fit = max(focus.get(area, Decimal("0")) for area in areas) / top_weight

    focus_tokens = set(keyword_set(partner.pipeline_focus))
    keyword_fit = Decimal("1") if focus_tokens & set(keywords) else Decimal("0")
    return quantize(MAX_SCORE * (AREA_SHARE * area_fit + KEYWORD_SHARE * keyword_fit), TENTH)


def gap_signal(partner: PartnerRecord, params: Dict[str, Any]) -> Optional[str]:
    """First strategic priority carrying a pipeline-gap signal."""
    signals = params["partner"]["gap_signals"]
    for priority in partner.strategic_priorities:
        lowered = priority.lower()
        if any(signal in lowered for signal in signals):
            return priority
    return None


def score_pipeline_gap(partner: PartnerRecord, areas: Sequence[str], params: Dict[str, Any]) -> Decimal:
    cap = to_decimal(params["partner"]["density_cap"])
    if areas:
        density = max(Decimal(partner.pipeline_density.get(area, 0)) for area in areas)
        openness = (Decimal("1") - min(density, cap) / cap) * 100
    else:
        openness = NO_AREA_DENSITY_SCORE
    score = openness * DENSITY_SHARE / 100
    if gap_signal(partner, params):
        score += GAP_SIGNAL_BONUS
    return quantize(min(score, MAX_SCORE), TENTH)


def deal_recency_weight(year: int, as_of_year: int, window: int) -> Decimal:
    """1 for a deal in the as-of year, falling linearly to 0 past the window."""
    age = max(as_of_year - year, 0)
    if age > window:
        return Decimal("0")
    return Decimal(window + 1 - age) / Decimal(window + 1)


def relevant_deals(
    partner: PartnerRecord,
    req: PartnerMatchRequest,
    areas: Sequence[str],
    keywords: Sequence[str],
    corpus: ReferenceCorpus,
    params: Dict[str, Any],
) -> List[Tuple[PartnerDeal, Decimal, bool]]:
    """(deal, recency weight, area relevant) for in-window deals of the requested types."""
    window = int(params["partner"]["deal_recency_years"])
    as_of_year = corpus.as_of_date.year
    found = []
    for deal in partner.recent_deals:
        if not deal_matches_type(deal, req.deal_types):
            continue
        weight = deal_recency_weight(deal.year, as_of_year, window)
        if weight <= 0:
            continue
        found.append((deal, weight, deal_is_area_relevant(deal, areas, keywords, corpus)))
    return found


def score_deal_history(
    partner: PartnerRecord,
    development_stage: str,
    deals: Sequence[Tuple[PartnerDeal, Decimal, bool]],
    params: Dict[str, Any],
) -> Decimal:
    multiplier = to_decimal(params["partner"]["area_deal_multiplier"])
    saturation = to_decimal(params["partner"]["deal_saturation"])
    volume = sum((weight * (multiplier if relevant else 1) for _, weight, relevant in deals), Decimal("0"))
    score = min(volume / saturation, Decimal("1")) * DEAL_VOLUME_SHARE
    if development_stage in partner.preferred_deal_stages:
        score += PREFERRED_STAGE_BONUS
    return quantize(min(score, MAX_SCORE), TENTH)


def score_financial_capacity(partner: PartnerRecord, development_stage: str, params: Dict[str, Any]) -> Decimal:
    table = params["partner"]["financial_capacity"][development_stage]
    return quantize(to_decimal(table.get(partner.financial_tier), Decimal("0")), TENTH)


def score_geography_fit(partner: PartnerRecord, geography_rights: Sequence[str]) -> Decimal:
    """
    Share of requested rights the footprint covers.

    A request of exactly "Global" matches any footprint, and a "Global"
    footprint covers every request.
    """
    footprint = {g.lower() for g in partner.geography_footprint}
    requested = [g.lower() for g in geography_rights]
    if requested == [GLOBAL] or GLOBAL in footprint:
        return quantize(MAX_SCORE, TENTH)
    covered = sum(1 for g in requested if g in footprint)
    return quantize(MAX_SCORE * covered / len(requested), TENTH)


def score_strategic_priority(partner: PartnerRecord, keywords: Sequence[str], areas: Sequence[str]) -> Decimal:
    terms = set(keywords)
    for area in areas:
        terms.update(keyword_set([area.replace("_", " ")]))
    matches = sum(
        1 for priority in partner.strategic_priorities
        if set(query_keywords(priority)) & terms
    )
    return quantize(min(PRIORITY_MATCH_POINTS * matches, MAX_SCORE), TENTH)


# ============================================================================
# PARTNER SIGNALS (reported alongside the match, outside match_score)
# ============================================================================

def mechanism_categories(mechanism: Optional[str]) -> List[str]:
    """Mechanism classes whose keywords appear in the query mechanism (table order)."""
    if not mechanism:
        return []
    return [category for category, phrases in MECHANISM_KEYWORDS.items() if mentions_any([mechanism], phrases)]


def score_mechanism_expertise(
    partner: PartnerRecord,
    mechanism: Optional[str],
    as_of_year: int,
    params: Dict[str, Any],
) -> Decimal:
    """
    0-10 track record with the query mechanism.

    Each deal naming the mechanism (or a keyword of its class) earns
    deal_points, plus recent_deal_points when it closed within
    recent_years of the as-of year. A pipeline focus naming it earns
    pipeline_points.
    """
    if not mechanism:
        return Decimal("0")
    table = params["partner"]["mechanism_expertise"]
    phrases = [mechanism] + [kw for category in mechanism_categories(mechanism) for kw in MECHANISM_KEYWORDS[category]]

    score = Decimal("0")
    for deal in partner.recent_deals:
        if mentions_any([deal.indication, deal.partner, deal.deal_type], phrases):
            score += to_decimal(table["deal_points"])
            if deal.year >= as_of_year - int(table["recent_years"]):
                score += to_decimal(table["recent_deal_points"])
    if mentions_any(partner.pipeline_focus, phrases):
        score += to_decimal(table["pipeline_points"])
    return min(score, to_decimal(table["max_score"]))


def watch_signals(partner: PartnerRecord, indication: str, as_of_year: int, params: Dict[str, Any]) -> List[str]:
    """Short BD signals worth monitoring for this partner, capped at max_signals."""
    table = params["partner"]["watch_signals"]
    signals = []

    priorities = [p.lower() for p in partner.strategic_priorities]
    if any(marker in priority for priority in priorities for marker in table["loe_markers"]):
        signals.append(PARTNER_WATCH_SIGNALS["loe"])
    if partner.bd_activity == "very_active":
        signals.append(PARTNER_WATCH_SIGNALS["very_active"])

    limit = to_decimal(table["large_deal_min_m"])
    large = [
        d for d in partner.recent_deals
        if d.year >= as_of_year - int(table["large_deal_years"])
        and d.total_value_m is not None and d.total_value_m >= limit
    ]
    if large:
        signals.append(PARTNER_WATCH_SIGNALS["large_deals"].format(
            count=len(large),
            plural="" if len(large) == 1 else "s",
            threshold_b=f"{(limit / 1000).normalize():f}",
        ))

    indication_terms = set(query_keywords(indication))
    if any(set(query_keywords(priority)) & indication_terms for priority in partner.strategic_priorities):
        signals.append(PARTNER_WATCH_SIGNALS["priority"])

    return signals[:int(table["max_signals"])]


def deal_structure_model(
    partner: PartnerRecord,
    development_stage: str,
    area_deal_count: int,
    params: Dict[str, Any],
) -> Dict[str, Any]:
    """Typical upfront/milestone split, opt-in terms and governance for a deal at this stage."""
    table = params["partner"]["deal_structure"]
    upfront = to_decimal(table["upfront_pct"][development_stage])
    split = table["milestone_split"][development_stage]
    remainder = Decimal("1") - upfront
    clinical = quantize(remainder * to_decimal(split["clinical"]), MILESTONE_PRECISION)
    commercial = quantize(remainder * to_decimal(split["commercial"]), MILESTONE_PRECISION)

    opt_probability = to_decimal(table["opt_in_probability"][development_stage])
    has_opt_in = opt_probability > to_decimal(table["opt_in_threshold"])
    opt_in_stage = table["opt_in_trigger"].get(development_stage) if has_opt_in else None
    governance = table["governance"].get(partner.company_type, table["default_governance"])
    percentile = int(step_score(area_deal_count, table["percentile_steps"], table["percentile_ceiling"]))

    def whole_pct(value: Decimal) -> Decimal:
        return quantize(value * 100, Decimal("1"))

    context = {
        "stage": development_stage,
        "upfront_pct": whole_pct(upfront),
        "clinical_pct": whole_pct(clinical),
        "commercial_pct": whole_pct(commercial),
        "opt_in_pct": whole_pct(opt_probability),
        "opt_in_stage": opt_in_stage,
        "company": partner.company,
        "company_type": partner.company_type.replace("_", " "),
        "governance": governance,
        "deal_count": area_deal_count,
        "deal_plural": "" if area_deal_count == 1 else "s",
        "percentile": percentile,
    }
    return {
        "upfront_pct_of_total": upfront,
        "clinical_milestones_pct": clinical,
        "commercial_milestones_pct": commercial,
        "has_opt_in_opt_out": has_opt_in,
        "opt_in_stage": opt_in_stage,
        "governance_complexity": governance,
        "benchmark_percentile": percentile,
        "narrative": render_all(PARTNER_DEAL_STRUCTURE_RULES, context),
    }


# ============================================================================
# ENGINE
# ============================================================================

class PartnerMatchingEngine(AuditTrailMixin):
    """
    Ranks partner companies for a proposed licensing or M&A deal.

    Usage:
        engine = PartnerMatchingEngine()
        result = engine.match({
            "indication": "NSCLC",
            "development_stage": "phase2",
            "geography_rights": ["US"],
            "deal_types": ["licensing"],
        })
    """

    VERSION = "1.0.0"
    MODULE = "partner_matching_engine"

    def __init__(
        self,
        corpus: CorpusSource = None,
        params: Optional[Dict[str, Any]] = None,
        params_hash: Optional[str] = None,
    ):
        self.handle = as_handle(corpus)
        self.params, self.params_hash = load_params_pair(params, params_hash)
        self._init_audit()

    def match(
        self,
        request: Union[PartnerMatchRequest, Dict[str, Any]],
        generated_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Score and rank every partner in the corpus.

        Args:
            request: PartnerMatchRequest or dict
            generated_at: Result timestamp (default: UTC now)

        Returns:
            {partners, total_matches, summary, deal_benchmarks, query, provenance, generated_at}

        Raises:
            InvalidInputError: Malformed request
        """
        req = coerce_request(request, PartnerMatchRequest)
        corpus = self.handle.current()
        areas = self._therapy_areas(corpus, req.indication)
        keywords = query_keywords(req.indication, req.mechanism)

        scored = [self._score_partner(p, req, areas, keywords, corpus) for p in corpus.partners]
        scored.sort(key=lambda m: (-m["match_score"], -m["score_breakdown"]["deal_history"], m["company"]))

        excluded = {c.lower() for c in req.exclude_companies}
        kept = [
            m for m in scored
            if m["company"].lower() not in excluded and m["match_score"] >= req.minimum_match_score
        ]
        if req.limit is not None:
            kept = kept[:req.limit]

        if not corpus.partners:
            logger.warning("Partner segment is empty; returning no matches")

        top_tier = to_decimal(self.params["partner"]["top_tier_threshold"])
        body = {
            "query": {
                "indication": req.indication,
                "development_stage": req.development_stage,
                "geography_rights": list(req.geography_rights),
                "deal_types": list(req.deal_types),
                "mechanism": req.mechanism,
                "therapy_areas": areas,
            },
            "partners": kept,
            "total_matches": len(kept),
            "summary": {
                "total_screened": len(scored),
                "total_matched": len(kept),
                "top_tier_count": sum(1 for m in kept if m["match_score"] >= top_tier),
                "avg_match_score": (
                    quantize(sum((m["match_score"] for m in kept), Decimal("0")) / len(kept), TENTH)
                    if kept else Decimal("0")
                ),
            },
            "deal_benchmarks": self._deal_benchmarks(corpus, req, areas, keywords),
        }

        result = finalize_result(
            body,
            module=self.MODULE,
            module_version=self.VERSION,
            corpus_version=corpus.corpus_version,
            parameters_hash=self.params_hash,
            generated_at=generated_at,
        )
        self._add_audit({
            "indication": req.indication,
            "development_stage": req.development_stage,
            "screened": len(scored),
            "matched": len(kept),
            "top_company": kept[0]["company"] if kept else None,
            "content_hash": result["provenance"]["content_hash"],
        })
        return result

    # ------------------------------------------------------------------

    @staticmethod
    def _therapy_areas(corpus: ReferenceCorpus, indication: str) -> List[str]:
        resolution = resolve(indication, "indication", corpus)
        if resolution.is_fallback:
            return infer_therapy_areas(indication)
        areas: List[str] = []
        for record in resolution.records:
            if record.therapy_area not in areas:
                areas.append(record.therapy_area)
        return areas

    def _score_partner(
        self,
        partner: PartnerRecord,
        req: PartnerMatchRequest,
        areas: Sequence[str],
        keywords: Sequence[str],
        corpus: ReferenceCorpus,
    ) -> Dict[str, Any]:
        params = self.params
        deals = relevant_deals(partner, req, areas, keywords, corpus, params)
        breakdown = {
            "therapeutic_alignment": score_therapeutic_alignment(partner, areas, keywords),
            "pipeline_gap": score_pipeline_gap(partner, areas, params),
            "deal_history": score_deal_history(partner, req.development_stage, deals, params),
            "financial_capacity": score_financial_capacity(partner, req.development_stage, params),
            "geography_fit": score_geography_fit(partner, req.geography_rights),
            "strategic_priority": score_strategic_priority(partner, keywords, areas),
        }
        composite, _ = weighted_average(breakdown, params["partner"]["weights"])
        match_score = quantize(composite if composite is not None else Decimal("0"), TENTH)

        area_deals = [d for d, _, relevant in deals if relevant]
        as_of_year = corpus.as_of_date.year
        area_deal_count = sum(1 for d in partner.recent_deals if deal_is_area_relevant(d, areas, keywords, corpus))
        return {
            "company": partner.company,
            "company_type": partner.company_type,
            "headquarters": partner.headquarters,
            "market_cap_b": partner.market_cap_b,
            "financial_tier": partner.financial_tier,
            "bd_activity": partner.bd_activity,
            "match_score": match_score,
            "score_breakdown": breakdown,
            "rationale": self._rationale(partner, req, breakdown, area_deals),
            "mechanism_expertise": score_mechanism_expertise(partner, req.mechanism, as_of_year, params),
            "watch_signals": watch_signals(partner, req.indication, as_of_year, params),
            "deal_structure": deal_structure_model(partner, req.development_stage, area_deal_count, params),
            "relevant_deals": [
                {
                    "partner": d.partner,
                    "indication": d.indication,
                    "deal_type": d.deal_type,
                    "upfront_m": d.upfront_m,
                    "total_value_m": d.total_value_m,
                    "year": d.year,
                }
                for d in sorted(area_deals, key=lambda d: (-d.year, d.partner))
            ],
        }

    def _rationale(
        self,
        partner: PartnerRecord,
        req: PartnerMatchRequest,
        breakdown: Dict[str, Decimal],
        area_deals: Sequence[PartnerDeal],
    ) -> str:
        # Ties resolve in label-table order
        ranked = sorted(SUBSCORE_LABELS, key=lambda name: -breakdown[name])
        top, second = ranked[0], ranked[1]
        strength_band = self.params["bands"]["partner_strength"]

        focus_areas = sorted(partner.therapeutic_focus.items(), key=lambda item: (-item[1], item[0]))
        total_value = sum((d.total_value_m for d in area_deals if d.total_value_m), Decimal("0"))
        context = {
            "company": partner.company,
            "company_type_label": COMPANY_TYPE_LABELS.get(partner.company_type, partner.company_type),
            "top_descriptor": strength_descriptor(breakdown[top], strength_band),
            "top_label": SUBSCORE_LABELS[top],
            "second_descriptor": strength_descriptor(breakdown[second], strength_band),
            "second_label": SUBSCORE_LABELS[second],
            "second_score": breakdown[second],
            "therapeutic_alignment": breakdown["therapeutic_alignment"],
            "focus_areas": ", ".join(readable_label(a) for a, _ in focus_areas[:RATIONALE_FOCUS_AREAS]),
            "indication": req.indication,
            "deal_history": breakdown["deal_history"],
            "relevant_deal_count": len(area_deals),
            "deal_plural": "" if len(area_deals) == 1 else "s",
            "since_year": min((d.year for d in area_deals), default=0),
            "deal_value_clause": f" totaling {format_money_m(total_value)} in aggregate value" if total_value > 0 else "",
            "pipeline_gap": breakdown["pipeline_gap"],
            "gap_signal": gap_signal(partner, self.params) or "",
            "bd_activity": partner.bd_activity,
        }
        return render_all(PARTNER_RATIONALE_RULES, context)

    def _deal_benchmarks(
        self,
        corpus: ReferenceCorpus,
        req: PartnerMatchRequest,
        areas: Sequence[str],
        keywords: Sequence[str],
    ) -> Dict[str, Any]:
        """Comparable deals across the whole partner segment in the query's therapy area(s)."""
        comparable = [
            deal
            for partner in corpus.partners
            for deal in partner.recent_deals
            if deal_is_area_relevant(deal, areas, keywords, corpus)
        ]
        upfronts = [d.upfront_m for d in comparable if d.upfront_m is not None and d.upfront_m > 0]
        totals = [d.total_value_m for d in comparable if d.total_value_m is not None and d.total_value_m > 0]

        def whole(value: Decimal) -> Decimal:
            return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)

        return {
            "stage": req.development_stage,
            "therapy_areas": list(areas),
            "sample_size": len(comparable),
            "avg_upfront_m": whole(sum(upfronts, Decimal("0")) / len(upfronts)) if upfronts else Decimal("0"),
            "median_upfront_m": whole(median(upfronts)),
            "avg_total_value_m": whole(sum(totals, Decimal("0")) / len(totals)) if totals else Decimal("0"),
            "median_total_value_m": whole(median(totals)),
            "typical_royalty_range": self.params["partner"]["royalty_range_by_stage"][req.development_stage],
        }


def match_partners(
    request: Union[PartnerMatchRequest, Dict[str, Any]],
    corpus: CorpusSource = None,
    generated_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """One-shot partner match against the given (default: published) corpus."""
    return PartnerMatchingEngine(corpus).match(request, generated_at=generated_at)


if __name__ == "__main__":
    from common.logging_config import settings_from_env, setup_logging
    setup_logging(**settings_from_env())

    print("=" * 70)
    print("PARTNER MATCHING ENGINE v1.0.0 - DEMONSTRATION")
    print("=" * 70)

    engine = PartnerMatchingEngine()
    result = engine.match({
        "indication": "NSCLC",
        "development_stage": "phase2",
        "geography_rights": ["US", "EU"],
        "deal_types": ["licensing", "acquisition"],
        "mechanism": "KRAS G12C inhibitor",
        "limit": 5,
    })
    print(f"\nScreened {result['summary']['total_screened']} partners, "
          f"{result['summary']['top_tier_count']} top tier")
    for partner in result["partners"]:
        print(f"\n  {partner['company']:<28} {partner['match_score']:>6}")
        print(f"    {partner['rationale'][:110]}")
    benchmarks = result["deal_benchmarks"]
    print(f"\nComparable deals: {benchmarks['sample_size']}, median total ${benchmarks['median_total_value_m']}M, "
          f"royalty {benchmarks['typical_royalty_range']}")
