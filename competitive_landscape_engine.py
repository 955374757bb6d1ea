#!/usr/bin/env python3
"""
competitive_landscape_engine.py

Competitive Landscape Analyzer (pharma variant) for the Opportunity Scoring Engine

Resolves an indication query against the reference corpus and scores the
drug assets competing in it:
- Per-asset differentiation (first-in-class, orphan, biomarker selection,
  mechanism-class uniqueness) and evidence strength (development phase)
- Crowding score (1-10) from the stage-weighted asset count, adjusted for
  mechanism clustering and late-stage depth
- Estimated market share distribution (stage x evidence x differentiation
  weights) with HHI and concentration label
- White space (missing reference mechanisms, line-of-therapy gaps,
  biomarker gaps) and rule-table narratives
- Per-asset threat against the requested mechanism, displacement risk,
  barriers to entry, competitive timeline and LOA-weighted threat
  (competitive_dynamics)

Also hosts the helpers the device and CDx analyzers share (params loading,
de-duplication, comparison matrix) and the pharma crowding function the
Opportunity Screener uses.

Never raises for an unknown indication: a resolver miss scores against the
full pharma set and is tagged NoMatch in the result's `resolution` block.

Author: Wake Robin Capital Management
Version: 1.0.0
"""

import logging
from collections import Counter, defaultdict
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from common.input_validation import PharmaLandscapeRequest, coerce_request
from common.provenance import AuditTrailMixin, finalize_result
from common.score_utils import TENTH, band_from_params, clamp_1_10, quantize, step_score, to_decimal
from common.text_normalization import contains_phrase, readable_label, tokenize
from competitive_dynamics import (
    LATE_STAGE_PHASES,
    ScoredAsset,
    assess_barriers,
    assess_displacement,
    assess_threat,
    competitive_timeline,
    mechanism_overlap,
    success_probabilities,
)
from entity_resolver import Resolution, resolve
from governance.params_loader import compute_parameters_hash, load_and_validate_params
from landscape_narratives import (
    PHARMA_BIOMARKER_GAP,
    PHARMA_CONCENTRATION_GAP,
    PHARMA_DIFFERENTIATION_RULES,
    PHARMA_EMPTY_DIFFERENTIATION,
    PHARMA_EMPTY_KEY_INSIGHT,
    PHARMA_EMPTY_WHITE_SPACE,
    PHARMA_FALLBACK_GAP,
    PHARMA_KEY_INSIGHT_RULES,
    PHARMA_LINE_GAP,
    PHARMA_MECHANISM_GAP,
    PHARMA_SHARE_RULES,
    PHARMA_UNRESOLVED_GAP,
    first_match,
    render_all,
)
from market_concentration import ShareEntry, dominant_share, market_share_distribution
from reference_corpus import (
    PHARMA_PHASE_ORDER,
    CorpusHandle,
    IndicationRecord,
    PharmaCompetitor,
    ReferenceCorpus,
    as_handle,
)

__version__ = "1.0.0"
__author__ = "Wake Robin Capital Management"

logger = logging.getLogger(__name__)

CorpusSource = Optional[Union[CorpusHandle, ReferenceCorpus]]


# ============================================================================
# CONSTANTS
# ============================================================================

MAX_WHITE_SPACE = 5
MAX_MECHANISM_GAPS = 3
MAX_LINE_GAPS = 2

PHASE_GROUPS = (
    ("approved_products", ("Approved",)),
    ("late_stage_pipeline", ("Phase 3", "Phase 2/3")),
    ("mid_stage_pipeline", ("Phase 2",)),
    ("early_pipeline", ("Phase 1/2", "Phase 1", "Preclinical")),
)

# Mechanism classes a mature therapy area is expected to contain
REFERENCE_MECHANISMS = {
    "oncology": (
        "checkpoint_inhibitor_pd1", "checkpoint_inhibitor_pdl1", "adc", "bispecific", "car_t",
        "small_molecule_tki", "vegf_inhibitor", "parp_inhibitor", "radioligand", "degrader",
    ),
    "immunology": (
        "anti_tnf", "anti_il6", "anti_il17", "anti_il23", "anti_il4", "anti_il13",
        "jak_inhibitor", "anti_integrin", "anti_cd20", "btk_inhibitor",
    ),
    "neurology": (
        "anti_amyloid", "anti_alpha_synuclein", "anti_tau", "small_molecule_tki", "gene_therapy",
        "antisense_oligonucleotide", "nmda_modulator", "serotonin_modulator",
    ),
    "rare_disease": (
        "gene_therapy", "antisense_oligonucleotide", "enzyme_replacement", "substrate_reduction",
        "small_molecule_tki", "mrna_therapy", "rna_interference",
    ),
    "cardiovascular": (
        "pcsk9_inhibitor", "sglt2_inhibitor", "glp1_agonist", "angiotensin_modulator",
        "siRNA", "anti_inflammatory",
    ),
}

# Line of therapy -> phrases in indication_specifics that signal it
LINE_OF_THERAPY_KEYWORDS = (
    ("1L", ("first-line", "1l", "frontline", "front-line", "treatment naive", "treatment-naive")),
    ("2L", ("second-line", "2l", "previously treated")),
    ("2L+", ("refractory", "relapsed", "later-line", "third-line")),
    ("maintenance", ("maintenance",)),
)
LINE_GAP_AREAS = ("oncology", "hematology")

BIOMARKER_MARKERS = ("biomarker", "mutated", "positive", "+")

DEFAULT_MATRIX_SIZE = 12
APPROVED_SHARE_BONUS = Decimal("20")
APPROVED_SHARE_MIN_EVIDENCE = Decimal("7")
DIFFERENTIATION_BASE = Decimal("5")
CONCENTRATION_GAP_MIN_ASSETS = 3
CONCENTRATION_GAP_SHARE = Decimal("0.6")


# ============================================================================
# SHARED ANALYZER HELPERS
# ============================================================================

def load_params_pair(
    params: Optional[Dict[str, Any]] = None,
    params_hash: Optional[str] = None,
) -> Tuple[Dict[str, Any], str]:
    """Given params (hash computed if missing), else the validated default archive."""
    if params is None:
        return load_and_validate_params()
    return params, params_hash or compute_parameters_hash(params)


def dedupe(items: Iterable[Any], key: Callable[[Any], str]) -> List[Any]:
    """Drop later items whose (case-insensitive) key was already seen."""
    seen = set()
    kept = []
    for item in items:
        item_key = key(item).lower()
        if item_key in seen:
            continue
        seen.add(item_key)
        kept.append(item)
    return kept


def comparison_matrix(
    items: Sequence[Dict[str, Any]],
    column: Callable[[Dict[str, Any]], str],
    attributes: Sequence[Tuple[str, Callable[[Dict[str, Any]], Any]]],
) -> Dict[str, Any]:
    """
    Attribute x competitor matrix.

    Returns:
        {"columns": [competitor keys], "rows": [{"attribute", "values": {key: value}}]}
    """
    columns = [column(item) for item in items]
    rows = [
        {
            "attribute": label,
            "values": {column(item): extract(item) for item in items},
        }
        for label, extract in attributes
    ]
    return {"columns": columns, "rows": rows}


def most_common_label(values: Iterable[str]) -> Optional[str]:
    """Most frequent value; ties go to the alphabetically first."""
    counts = Counter(v for v in values if v)
    if not counts:
        return None
    return sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[0][0]


def percent(part: int, whole: int) -> int:
    """Whole-number percentage, half-up; 0 for an empty whole."""
    if whole == 0:
        return 0
    return int((Decimal(part) * 100 / Decimal(whole)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def mean(values: Sequence[Decimal]) -> Decimal:
    if not values:
        return Decimal("0")
    return quantize(sum(values, Decimal("0")) / Decimal(len(values)), TENTH)


# ============================================================================
# PHARMA SCORING
# ============================================================================

def score_differentiation(competitor: PharmaCompetitor, category_counts: Counter) -> Decimal:
    """
    1-10 differentiation of one asset within its competitor set.

    5 base, +2 first-in-class, +1 orphan, +1 biomarker-selected, then +1 if
    its mechanism class is unique or -min(same - 1, 3) when shared.
    """
    score = DIFFERENTIATION_BASE
    if competitor.first_in_class:
        score += 2
    if competitor.orphan_drug:
        score += 1
    if competitor.has_biomarker_selection:
        score += 1

    same = category_counts.get(competitor.mechanism_category, 0)
    if same <= 1:
        score += 1
    else:
        score -= min(same - 1, 3)
    return clamp_1_10(score)


def score_evidence(competitor: PharmaCompetitor, params: Dict[str, Any]) -> Decimal:
    """1-10 evidence strength from the development phase."""
    return clamp_1_10(to_decimal(params["pharma"]["phase_evidence"].get(competitor.phase), Decimal("1")))


def compute_pharma_crowding(
    competitors: Sequence[PharmaCompetitor],
    params: Dict[str, Any],
) -> Dict[str, Any]:
    """
    Crowding score (1-10) and label for a set of pharma assets.

    Phase-weighted count stepped onto a base score, +1 when one mechanism
    class holds more than the high dominance share, -1 below the low
    share, +1 for a deep late-stage field. No assets scores 1 (Low).
    """
    pharma = params["pharma"]
    band_spec = params["bands"]["pharma_crowding"]
    if not competitors:
        floor = clamp_1_10(1)
        return {
            "crowding_score": floor,
            "crowding_label": band_from_params(floor, band_spec),
            "weighted_count": Decimal("0"),
            "base_score": floor,
            "dominant_mechanism_share": None,
            "late_stage_count": 0,
        }

    weights = pharma["phase_crowding_weight"]
    weighted = sum((to_decimal(weights.get(c.phase), Decimal("0")) for c in competitors), Decimal("0"))
    base = step_score(weighted, pharma["crowding_count_steps"], pharma["crowding_count_ceiling"])

    score = base
    share = dominant_share(Counter(c.mechanism_category for c in competitors))
    if share is not None and share > to_decimal(pharma["mechanism_dominance_high"]):
        score += 1
    elif share is not None and share < to_decimal(pharma["mechanism_dominance_low"]):
        score -= 1

    late_stage = sum(1 for c in competitors if c.phase in LATE_STAGE_PHASES)
    if late_stage >= int(pharma["late_stage_threshold"]):
        score += 1

    crowding = clamp_1_10(score)
    return {
        "crowding_score": crowding,
        "crowding_label": band_from_params(crowding, band_spec),
        "weighted_count": quantize(weighted, Decimal("0.01")),
        "base_score": base,
        "dominant_mechanism_share": quantize(share, Decimal("0.01")) if share is not None else None,
        "late_stage_count": late_stage,
    }


def share_weight(
    competitor: PharmaCompetitor,
    evidence: Decimal,
    differentiation: Decimal,
    params: Dict[str, Any],
) -> Decimal:
    """Unnormalized market-share weight: phase weight x evidence x differentiation / 10."""
    phase_weight = to_decimal(params["pharma"]["phase_share_weight"].get(competitor.phase), Decimal("0"))
    weight = phase_weight * evidence * differentiation / Decimal("10")
    if competitor.is_approved and evidence >= APPROVED_SHARE_MIN_EVIDENCE:
        weight += APPROVED_SHARE_BONUS
    return weight


def detect_lines_of_therapy(text: str) -> List[str]:
    """Lines of therapy named in free text ('second-line' -> '2L')."""
    tokens = tokenize(text)
    return [
        line for line, phrases in LINE_OF_THERAPY_KEYWORDS
        if any(contains_phrase(tokens, tokenize(phrase)) for phrase in phrases)
    ]


def is_biomarker_selected(competitor: PharmaCompetitor) -> bool:
    specifics = competitor.indication_specifics.lower()
    return competitor.has_biomarker_selection or any(marker in specifics for marker in BIOMARKER_MARKERS)


def _mechanism_present(reference: str, categories: Sequence[str]) -> bool:
    ref = reference.lower()
    return any(ref == cat or ref in cat or (cat and cat in ref) for cat in categories)


def pharma_white_space(
    indication: str,
    therapy_area: Optional[str],
    competitors: Sequence[PharmaCompetitor],
    us_prevalence: Optional[int] = None,
    unresolved_query: Optional[str] = None,
) -> List[str]:
    """
    Up to five white-space opportunities for an indication's competitor set.

    Never empty: the empty-segment, unresolved-query and generic
    differentiation entries cover the cases with no specific gap.
    """
    if not competitors:
        area = therapy_area.replace("_", " ") if therapy_area else "disease-relevant"
        items = [
            PHARMA_EMPTY_WHITE_SPACE[0].format(indication=indication),
            PHARMA_EMPTY_WHITE_SPACE[1].format(therapy_area=area),
        ]
        if us_prevalence:
            items.append(PHARMA_EMPTY_WHITE_SPACE[2].format(us_prevalence=f"{us_prevalence:,}"))
        return items

    items: List[str] = []
    if unresolved_query is not None:
        items.append(PHARMA_UNRESOLVED_GAP.format(query=unresolved_query))

    categories = sorted({c.mechanism_category.lower() for c in competitors})
    missing = [
        m for m in REFERENCE_MECHANISMS.get(therapy_area or "", ())
        if not _mechanism_present(m, categories)
    ]
    for mechanism in missing[:MAX_MECHANISM_GAPS]:
        items.append(PHARMA_MECHANISM_GAP.format(readable=readable_label(mechanism), indication=indication))

    if therapy_area in LINE_GAP_AREAS:
        covered = set()
        for competitor in competitors:
            if competitor.is_approved or competitor.phase in LATE_STAGE_PHASES:
                covered.update(detect_lines_of_therapy(competitor.indication_specifics))
        gaps = [line for line, _ in LINE_OF_THERAPY_KEYWORDS if line not in covered]
        for line in gaps[:MAX_LINE_GAPS]:
            items.append(PHARMA_LINE_GAP.format(line=line, indication=indication))

    if not any(is_biomarker_selected(c) for c in competitors):
        items.append(PHARMA_BIOMARKER_GAP.format(indication=indication))

    mechanisms = Counter(c.mechanism_category for c in competitors)
    share = dominant_share(mechanisms)
    if len(competitors) >= CONCENTRATION_GAP_MIN_ASSETS and share is not None and share > CONCENTRATION_GAP_SHARE:
        dominant = mechanisms.most_common(1)[0][0]
        items.append(PHARMA_CONCENTRATION_GAP.format(
            dominant_share_pct=percent(mechanisms[dominant], len(competitors)),
            dominant_mechanism=readable_label(dominant),
        ))

    if not items:
        items.append(PHARMA_FALLBACK_GAP.format(total=len(competitors), indication=indication))
    return items[:MAX_WHITE_SPACE]


# ============================================================================
# ENGINE
# ============================================================================

class CompetitiveLandscapeEngine(AuditTrailMixin):
    """
    Pharma competitive landscape analysis for one indication.

    Usage:
        engine = CompetitiveLandscapeEngine()
        result = engine.analyze({"indication": "NSCLC", "phases": ["Approved", "Phase 3"]})
        print(result["summary"]["crowding_label"])
    """

    VERSION = "1.0.0"
    MODULE = "competitive_landscape_engine"

    def __init__(
        self,
        corpus: CorpusSource = None,
        params: Optional[Dict[str, Any]] = None,
        params_hash: Optional[str] = None,
    ):
        self.handle = as_handle(corpus)
        self.params, self.params_hash = load_params_pair(params, params_hash)
        self._init_audit()

    def analyze(
        self,
        request: Union[PharmaLandscapeRequest, Dict[str, Any]],
        generated_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Analyze the competitive landscape of an indication.

        `phases` filters the competitor set; `mechanism` is the requester's own
        mechanism and drives per-asset threat and displacement risk.

        Args:
            request: PharmaLandscapeRequest or dict {indication, phases?, mechanism?}
            generated_at: Result timestamp (default: UTC now)

        Returns:
            CompetitiveLandscapeResult dict

        Raises:
            InvalidInputError: Missing/blank indication or unknown phase
        """
        req = coerce_request(request, PharmaLandscapeRequest)
        corpus = self.handle.current()
        resolution = resolve(req.indication, "indication", corpus)

        competitors = self._gather(corpus, resolution)
        if req.phases:
            competitors = [c for c in competitors if c.phase in req.phases]
        competitors.sort(key=lambda c: PHARMA_PHASE_ORDER[c.phase])

        records: Tuple[IndicationRecord, ...] = () if resolution.is_fallback else resolution.records
        indication = records[0].name if len(records) == 1 else req.indication
        therapy_area = most_common_label(r.therapy_area for r in records)
        us_prevalence = sum(r.us_prevalence for r in records)

        if resolution.is_fallback:
            logger.info(f"No indication match for '{req.indication}'; scoring the full pharma set")

        body = self._build_body(corpus, req, resolution, competitors, indication, therapy_area, us_prevalence, records)
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
            "match": resolution.match.value,
            "competitors": len(competitors),
            "crowding_score": str(result["summary"]["crowding_score"]),
            "content_hash": result["provenance"]["content_hash"],
        })
        return result

    # ------------------------------------------------------------------

    def _gather(self, corpus: ReferenceCorpus, resolution: Resolution) -> List[PharmaCompetitor]:
        if resolution.is_fallback:
            pool: List[PharmaCompetitor] = list(corpus.pharma_competitors)
        else:
            pool = []
            for record in resolution.records:
                pool.extend(corpus.pharma_by_indication.get(record.name, ()))
        return dedupe(pool, key=lambda c: c.asset_name)

    def _build_body(
        self,
        corpus: ReferenceCorpus,
        req: PharmaLandscapeRequest,
        resolution: Resolution,
        competitors: List[PharmaCompetitor],
        indication: str,
        therapy_area: Optional[str],
        us_prevalence: int,
        records: Tuple[IndicationRecord, ...],
    ) -> Dict[str, Any]:
        params = self.params
        categories = Counter(c.mechanism_category for c in competitors)

        scored = []
        assets = []
        share_entries = []
        for competitor in competitors:
            differentiation = score_differentiation(competitor, categories)
            evidence = score_evidence(competitor, params)
            threat = assess_threat(competitor, req.mechanism, params)
            assets.append(ScoredAsset(competitor, differentiation, evidence, threat))
            scored.append(self._competitor_entry(competitor, differentiation, evidence, threat))
            share_entries.append(ShareEntry(
                name=f"{competitor.company} — {competitor.asset_name}",
                segment=competitor.phase,
                weight=share_weight(competitor, evidence, differentiation, params),
            ))

        crowding = compute_pharma_crowding(competitors, params)
        distribution = market_share_distribution(share_entries, params)
        distribution["narrative"] = first_match(PHARMA_SHARE_RULES, {
            "share_count": len(distribution["competitors"]),
            "hhi": distribution["hhi_index"],
            "concentration_label": distribution["concentration_label"],
            "top_3_share_pct": distribution["top_3_share_pct"],
        })

        white_space = pharma_white_space(
            indication,
            therapy_area,
            competitors,
            us_prevalence=us_prevalence,
            unresolved_query=req.indication if resolution.is_fallback else None,
        )

        approved = sum(1 for c in competitors if c.is_approved)
        late_stage = sum(1 for c in competitors if c.phase in LATE_STAGE_PHASES)
        avg_differentiation = mean([s["differentiation_score"] for s in scored])
        dominant = Counter(c.mechanism for c in competitors if c.mechanism).most_common(1)

        if competitors:
            key_insight = render_all(PHARMA_KEY_INSIGHT_RULES, {
                "indication": indication,
                "total": len(competitors),
                "approved": approved,
                "late_stage": late_stage,
                "biomarker_pct": percent(sum(1 for c in competitors if is_biomarker_selected(c)), len(competitors)),
                "mechanism": req.mechanism,
                "mechanism_count": sum(1 for c in competitors if mechanism_overlap(c, req.mechanism)),
            })
            differentiation_opportunity = first_match(PHARMA_DIFFERENTIATION_RULES, {
                "indication": indication,
                "crowding_label": crowding["crowding_label"],
                "total": len(competitors),
                "approved": approved,
                "mechanism_total": len(categories),
                "avg_differentiation": avg_differentiation,
                "top_gap": white_space[0].lower() if white_space else "",
            })
        else:
            key_insight = PHARMA_EMPTY_KEY_INSIGHT.format(indication=indication)
            differentiation_opportunity = PHARMA_EMPTY_DIFFERENTIATION.format(indication=indication)

        buckets = {
            name: [s for s in scored if s["phase"] in phases]
            for name, phases in PHASE_GROUPS
        }
        matrix_size = int(params["pharma"].get("comparison_matrix_size", DEFAULT_MATRIX_SIZE))

        penetration = None
        if records:
            penetration = quantize(
                sum((r.treatment_rate for r in records), Decimal("0")) * 100 / Decimal(len(records)), TENTH
            )

        summary = {
            "indication": indication,
            "therapy_area": therapy_area,
            "total_competitors": len(competitors),
            "approved_count": approved,
            "pipeline_count": len(competitors) - approved,
            "late_stage_count": late_stage,
            "crowding_score": crowding["crowding_score"],
            "crowding_label": crowding["crowding_label"],
            "crowding_factors": {k: v for k, v in crowding.items() if k not in ("crowding_score", "crowding_label")},
            "dominant_mechanism": dominant[0][0] if dominant else None,
            "mechanism_class_count": len(categories),
            "avg_differentiation": avg_differentiation,
            "market_penetration_pct": penetration,
            "white_space": white_space,
            "differentiation_opportunity": differentiation_opportunity,
            "key_insight": key_insight,
        }

        return {
            "variant": "pharma",
            "query": {"indication": req.indication, "phases": list(req.phases), "mechanism": req.mechanism},
            "resolution": resolution.to_dict(),
            "summary": summary,
            **buckets,
            "mechanism_landscape": self._mechanism_landscape(competitors),
            "market_share": distribution,
            "displacement_risk": assess_displacement(assets, params),
            "barriers_to_entry": assess_barriers(assets, therapy_area, params),
            "competitive_timeline": [competitive_timeline(c, corpus.as_of_date, params) for c in competitors],
            "success_probabilities": success_probabilities(assets, therapy_area, params),
            "comparison_matrix": comparison_matrix(
                scored[:matrix_size],
                column=lambda s: f"{s['company']} — {s['asset_name']}",
                attributes=(
                    ("Mechanism", lambda s: s["mechanism"]),
                    ("Phase", lambda s: s["phase"]),
                    ("Differentiation", lambda s: f"{s['differentiation_score']}/10"),
                    ("Evidence Strength", lambda s: f"{s['evidence_strength']}/10"),
                    ("Threat", lambda s: f"{s['threat_score']}/10 ({s['threat_level']})"),
                    ("Indication Specifics", lambda s: s["indication_specifics"] or "N/A"),
                ),
            ),
            "corpus_as_of": corpus.as_of_date,
        }

    @staticmethod
    def _competitor_entry(
        competitor: PharmaCompetitor,
        differentiation: Decimal,
        evidence: Decimal,
        threat: Dict[str, Any],
    ) -> Dict[str, Any]:
        return {
            "company": competitor.company,
            "asset_name": competitor.asset_name,
            "indication": competitor.indication,
            "indication_specifics": competitor.indication_specifics,
            "mechanism": competitor.mechanism,
            "mechanism_category": competitor.mechanism_category,
            "phase": competitor.phase,
            "first_in_class": competitor.first_in_class,
            "orphan_drug": competitor.orphan_drug,
            "has_biomarker_selection": competitor.has_biomarker_selection,
            "differentiation_score": differentiation,
            "evidence_strength": evidence,
            "threat_score": threat["threat_score"],
            "threat_level": threat["threat_level"],
            "threat_factors": threat["threat_factors"],
            "mechanism_overlap": threat["mechanism_overlap"],
            "strengths": list(competitor.strengths),
            "weaknesses": list(competitor.weaknesses),
            "source": competitor.source,
        }

    @staticmethod
    def _mechanism_landscape(competitors: Sequence[PharmaCompetitor]) -> List[Dict[str, Any]]:
        groups: Dict[str, List[PharmaCompetitor]] = defaultdict(list)
        for competitor in competitors:
            groups[competitor.mechanism_category].append(competitor)

        landscape = []
        for category, members in groups.items():
            leader = min(members, key=lambda c: PHARMA_PHASE_ORDER[c.phase])
            landscape.append({
                "mechanism_category": category,
                "label": readable_label(category),
                "asset_count": len(members),
                "approved_count": sum(1 for c in members if c.is_approved),
                "most_advanced_phase": leader.phase,
                "companies": sorted({c.company for c in members}),
            })
        landscape.sort(key=lambda m: (-m["asset_count"], m["mechanism_category"]))
        return landscape


def analyze_landscape(
    request: Union[PharmaLandscapeRequest, Dict[str, Any]],
    corpus: CorpusSource = None,
    generated_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """One-shot pharma analysis against the given (default: published) corpus."""
    return CompetitiveLandscapeEngine(corpus).analyze(request, generated_at=generated_at)


if __name__ == "__main__":
    from common.logging_config import settings_from_env, setup_logging
    setup_logging(**settings_from_env())

    print("=" * 70)
    print("COMPETITIVE LANDSCAPE ENGINE v1.0.0 - DEMONSTRATION")
    print("=" * 70)

    engine = CompetitiveLandscapeEngine()
    for query in ({"indication": "NSCLC"}, {"indication": "crohns", "phases": ["Approved"]},
                  {"indication": "TOTALLY_UNKNOWN_XYZ"}):
        result = engine.analyze(query)
        summary = result["summary"]
        print(f"\n{query['indication']} -> {result['resolution']['match']} ({summary['indication']})")
        print(f"  Competitors: {summary['total_competitors']} ({summary['approved_count']} approved)")
        print(f"  Crowding:    {summary['crowding_score']} ({summary['crowding_label']})")
        print(f"  HHI:         {result['market_share']['hhi_index']} "
              f"({result['market_share']['concentration_label']})")
        print(f"  Insight:     {summary['key_insight'][:100]}...")
        for item in summary["white_space"]:
            print(f"    - {item}")
