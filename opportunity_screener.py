#!/usr/bin/env python3
"""
opportunity_screener.py

Indication Opportunity Screener

Scores every indication in the reference corpus on a 0-100 opportunity
scale and serves filtered, sorted, paginated views of the result.

Opportunity components (0-100 each, weights in params_archive):
- market_attractiveness: log-scaled prevalence + incidence magnitude, CAGR
- competitive_openness: inverse of pharma crowding (1-10)
- unmet_need: corpus unmet-need score
- development_feasibility: mean phase likelihood-of-approval for the
  indication's therapy area
- partner_landscape: active partners focused on the therapy area

Cheap filters (therapy area, product category, prevalence, phases) run
before crowding is computed. Sorting applies the requested direction to
the primary key only; ties always break on canonical name ascending.

Author: Wake Robin Capital Management
Version: 1.0.0
"""

import logging
from collections import Counter, OrderedDict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from common.input_validation import ScreenerFilters, validate_pagination, validate_sort
from common.provenance import AuditTrailMixin, finalize_result
from common.score_utils import TENTH, band_from_params, median, quantize, to_decimal, weighted_average
from competitive_landscape_engine import CorpusSource, compute_pharma_crowding, dedupe, load_params_pair, pharma_white_space
from reference_corpus import PHARMA_PHASE_ORDER, IndicationRecord, PHASE_BUCKETS, PharmaCompetitor, ReferenceCorpus, as_handle

__version__ = "1.0.0"
__author__ = "Wake Robin Capital Management"

logger = logging.getLogger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

DEFAULT_SORT_BY = "opportunity_score"
DEFAULT_SORT_ORDER = "desc"
DEFAULT_LIMIT = 50

MAGNITUDE_SHARE = Decimal("0.7")
GROWTH_SHARE = Decimal("0.3")
ACTIVE_BD_LEVELS = ("very_active", "active", "moderate")

TOP_COMPANIES = 5
TOP_ASSETS = 5
TOP_PRICING_DRUGS = 5
SUMMARY_TOP = 5


# ============================================================================
# COMPONENT SCORES
# ============================================================================

def market_attractiveness(record: IndicationRecord, params: Dict[str, Any]) -> Decimal:
    """Log-scaled patient magnitude blended with capped 5-year CAGR."""
    screener = params["screener"]
    scale = to_decimal(screener["prevalence_scale"])
    magnitude = Decimal(1 + record.global_prevalence + record.global_incidence).log10() / (scale + 1).log10()
    growth = max(record.cagr_5yr, Decimal("0")) / to_decimal(screener["cagr_scale"])
    score = 100 * (MAGNITUDE_SHARE * min(magnitude, Decimal("1")) + GROWTH_SHARE * min(growth, Decimal("1")))
    return quantize(score, TENTH)


def competitive_openness(crowding_score: Decimal) -> Decimal:
    """Crowding 1 -> 100, crowding 10 -> 0."""
    return quantize((Decimal("10") - crowding_score) / Decimal("9") * 100, TENTH)


def development_feasibility(therapy_area: str, params: Dict[str, Any]) -> Decimal:
    screener = params["screener"]
    table = screener["loa_by_therapy_area"]
    loa = table.get(therapy_area, table["default"])
    average = sum((to_decimal(v) for v in loa.values()), Decimal("0")) / len(loa)
    return quantize(min(average / to_decimal(screener["feasibility_scale"]), Decimal("1")) * 100, TENTH)


def active_partner_count(corpus: ReferenceCorpus, therapy_area: str) -> int:
    return sum(
        1 for p in corpus.partners
        if p.therapeutic_focus.get(therapy_area, Decimal("0")) > 0 and p.bd_activity in ACTIVE_BD_LEVELS
    )


def partner_landscape(active_partners: int, params: Dict[str, Any]) -> Decimal:
    saturation = to_decimal(params["screener"]["partner_saturation"])
    return quantize(min(Decimal(active_partners) / saturation, Decimal("1")) * 100, TENTH)


def indication_competitors(corpus: ReferenceCorpus, record: IndicationRecord) -> List[PharmaCompetitor]:
    """Pharma assets of one indication, de-duplicated the way the pharma analyzer does."""
    return dedupe(corpus.pharma_by_indication.get(record.name, ()), key=lambda c: c.asset_name)


def has_phase(record: IndicationRecord, competitors: Sequence[PharmaCompetitor], phases: Sequence[str]) -> bool:
    """Any pipeline asset in one of the phases (asset phase or phase bucket, case-insensitive)."""
    wanted = {p.lower() for p in phases}
    if any(c.phase.lower() in wanted for c in competitors):
        return True
    return any(count > 0 and bucket.lower() in wanted for bucket, count in record.phase_distribution.items())


# ============================================================================
# SCREENER
# ============================================================================

class OpportunityScreener(AuditTrailMixin):
    """
    Corpus-wide indication screener.

    Usage:
        screener = OpportunityScreener()
        page = screener.score_all_indications({"therapy_areas": ["oncology"]}, limit=10)
    """

    VERSION = "1.0.0"
    MODULE = "opportunity_screener"

    def __init__(
        self,
        corpus: CorpusSource = None,
        params: Optional[Dict[str, Any]] = None,
        params_hash: Optional[str] = None,
    ):
        self.handle = as_handle(corpus)
        self.params, self.params_hash = load_params_pair(params, params_hash)
        self._init_audit()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def score_all_indications(
        self,
        filters: Union[ScreenerFilters, Mapping[str, Any], None] = None,
        sort_by: str = DEFAULT_SORT_BY,
        sort_order: str = DEFAULT_SORT_ORDER,
        limit: Optional[int] = DEFAULT_LIMIT,
        offset: int = 0,
        generated_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Filter, score, sort and paginate every indication.

        Returns:
            {opportunities, total_count, query, provenance, generated_at};
            total_count is the filtered count before pagination

        Raises:
            InvalidInputError: Bad filters, sort key/order or pagination
        """
        flt = filters if isinstance(filters, ScreenerFilters) else ScreenerFilters.from_dict(filters)
        sort_by, sort_order = validate_sort(sort_by, sort_order)
        limit, offset = validate_pagination(limit, offset)
        corpus = self.handle.current()

        candidates = [r for r in corpus.indications if self._passes_cheap_filters(corpus, r, flt)]
        scored = []
        for record in candidates:
            entry = self._score(corpus, record)
            if flt.max_crowding is not None and entry["crowding_score"] > flt.max_crowding:
                continue
            if flt.min_opportunity_score is not None and entry["opportunity_score"] < flt.min_opportunity_score:
                continue
            scored.append(entry)

        # Name order first; the stable primary sort keeps it for ties in either direction
        scored.sort(key=lambda e: e["indication"])
        scored.sort(key=lambda e: e[sort_by], reverse=(sort_order == "desc"))

        end = None if limit is None else offset + limit
        page = scored[offset:end]
        opportunities = [self._detail(corpus, entry, sort_by) for entry in page]

        logger.info(
            f"Screened {len(corpus.indications)} indications: {len(candidates)} passed cheap filters, "
            f"{len(scored)} matched, returning {len(opportunities)}"
        )

        body = {
            "query": {
                "filters": {
                    "therapy_areas": list(flt.therapy_areas),
                    "product_category": flt.product_category,
                    "min_prevalence": flt.min_prevalence,
                    "max_crowding": flt.max_crowding,
                    "phases": list(flt.phases),
                    "min_opportunity_score": flt.min_opportunity_score,
                },
                "sort_by": sort_by,
                "sort_order": sort_order,
                "limit": limit,
                "offset": offset,
            },
            "opportunities": opportunities,
            "total_count": len(scored),
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
            "sort_by": sort_by,
            "sort_order": sort_order,
            "total_count": len(scored),
            "returned": len(opportunities),
            "content_hash": result["provenance"]["content_hash"],
        })
        return result

    def score_indication(self, name: str) -> Optional[Dict[str, Any]]:
        """Full opportunity entry for one indication (exact name, case-insensitive); None if absent."""
        corpus = self.handle.current()
        wanted = (name or "").strip().lower()
        for record in corpus.indications:
            if record.name.lower() == wanted:
                return self._detail(corpus, self._score(corpus, record), DEFAULT_SORT_BY)
        return None

    def available_therapy_areas(self) -> List[str]:
        return sorted({r.therapy_area for r in self.handle.current().indications})

    def screener_summary(self) -> Dict[str, Any]:
        """Corpus-wide counts by therapy area, average score and score distribution."""
        corpus = self.handle.current()
        entries = [self._score(corpus, r) for r in corpus.indications]
        bucket_spec = self.params["bands"]["opportunity_bucket"]

        distribution: "OrderedDict[str, int]" = OrderedDict((label, 0) for label in bucket_spec["labels"])
        for entry in entries:
            distribution[band_from_params(entry["opportunity_score"], bucket_spec)] += 1

        by_area = Counter(e["therapy_area"] for e in entries)
        ranked = sorted(entries, key=lambda e: e["indication"])
        ranked.sort(key=lambda e: e["opportunity_score"], reverse=True)
        return {
            "total_indications": len(entries),
            "therapy_area_counts": {area: by_area[area] for area in sorted(by_area)},
            "average_opportunity_score": (
                quantize(sum((e["opportunity_score"] for e in entries), Decimal("0")) / len(entries), TENTH)
                if entries else Decimal("0")
            ),
            "score_distribution": dict(distribution),
            "top_opportunities": [
                {"indication": e["indication"], "opportunity_score": e["opportunity_score"]}
                for e in ranked[:SUMMARY_TOP]
            ],
            "corpus_version": corpus.corpus_version,
        }

    def pricing_benchmark(self, record: IndicationRecord) -> Dict[str, Any]:
        """Price comparables for the indication, else its therapy area."""
        corpus = self.handle.current()
        comparables = corpus.pricing_by_indication.get(record.name, ())
        basis = "indication"
        if not comparables:
            comparables = corpus.pricing_by_therapy_area.get(record.therapy_area, ())
            basis = "therapy_area" if comparables else None

        launch = [c.us_launch_wac_annual for c in comparables if c.us_launch_wac_annual is not None]
        current = [c.current_list_price for c in comparables if c.current_list_price is not None]
        return {
            "basis": basis,
            "comparable_count": len(comparables),
            "median_launch_wac_annual": quantize(median(launch), Decimal("1")) if launch else None,
            "median_current_list_price": quantize(median(current), Decimal("1")) if current else None,
            "current_price_range": [min(current), max(current)] if current else None,
            "orphan_count": sum(1 for c in comparables if c.orphan_drug),
            "comparables": [
                c.drug_name
                for c in sorted(comparables, key=lambda c: (-c.launch_year, c.drug_name))[:TOP_PRICING_DRUGS]
            ],
        }

    def white_space_hints(self, record: IndicationRecord) -> List[str]:
        corpus = self.handle.current()
        competitors = indication_competitors(corpus, record)
        return pharma_white_space(record.name, record.therapy_area, competitors, us_prevalence=record.us_prevalence)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _passes_cheap_filters(corpus: ReferenceCorpus, record: IndicationRecord, flt: ScreenerFilters) -> bool:
        if flt.therapy_areas and record.therapy_area.lower() not in flt.therapy_areas:
            return False
        if flt.product_category and flt.product_category not in record.product_categories:
            return False
        if flt.min_prevalence is not None and record.global_prevalence < flt.min_prevalence:
            return False
        if flt.phases and not has_phase(record, corpus.pharma_by_indication.get(record.name, ()), flt.phases):
            return False
        return True

    def _score(self, corpus: ReferenceCorpus, record: IndicationRecord) -> Dict[str, Any]:
        params = self.params
        competitors = indication_competitors(corpus, record)
        crowding = compute_pharma_crowding(competitors, params)
        active_partners = active_partner_count(corpus, record.therapy_area)

        breakdown = {
            "market_attractiveness": market_attractiveness(record, params),
            "competitive_openness": competitive_openness(crowding["crowding_score"]),
            "unmet_need": quantize(record.unmet_need, TENTH),
            "development_feasibility": development_feasibility(record.therapy_area, params),
            "partner_landscape": partner_landscape(active_partners, params),
        }
        composite, _ = weighted_average(breakdown, params["screener"]["weights"])
        return {
            "indication": record.name,
            "therapy_area": record.therapy_area,
            "opportunity_score": quantize(composite if composite is not None else Decimal("0"), TENTH),
            "crowding_score": crowding["crowding_score"],
            "crowding_label": crowding["crowding_label"],
            "score_breakdown": breakdown,
            "global_prevalence": record.global_prevalence,
            "global_incidence": record.global_incidence,
            "cagr_5yr": record.cagr_5yr,
            "unmet_need": record.unmet_need,
            "active_partner_count": active_partners,
            "_record": record,
        }

    def _detail(self, corpus: ReferenceCorpus, entry: Dict[str, Any], sort_by: str) -> Dict[str, Any]:
        """Public opportunity entry with the per-indication extras."""
        record: IndicationRecord = entry["_record"]
        competitors = indication_competitors(corpus, record)

        companies = Counter(c.company for c in competitors)
        top_companies = sorted(companies.items(), key=lambda item: (-item[1], item[0]))[:TOP_COMPANIES]
        top_assets = sorted(competitors, key=lambda c: (PHARMA_PHASE_ORDER.get(c.phase, len(PHARMA_PHASE_ORDER)), c.asset_name))

        detail = {k: v for k, v in entry.items() if k != "_record"}
        detail.update({
            "sort_key": entry[sort_by],
            "aliases": list(record.aliases),
            "product_categories": list(record.product_categories),
            "phase_distribution": dict(record.phase_distribution),
            "top_companies": [{"company": name, "asset_count": count} for name, count in top_companies],
            "top_assets": [
                {
                    "asset_name": c.asset_name,
                    "company": c.company,
                    "phase": c.phase,
                    "phase_bucket": PHASE_BUCKETS.get(c.phase),
                    "mechanism": c.mechanism,
                }
                for c in top_assets[:TOP_ASSETS]
            ],
            "white_space_hints": self.white_space_hints(record),
            "pricing_benchmark": self.pricing_benchmark(record),
        })
        return detail


# ============================================================================
# MODULE-LEVEL ENTRY POINTS
# ============================================================================

def score_all_indications(
    filters: Union[ScreenerFilters, Mapping[str, Any], None] = None,
    sort_by: str = DEFAULT_SORT_BY,
    sort_order: str = DEFAULT_SORT_ORDER,
    limit: Optional[int] = DEFAULT_LIMIT,
    offset: int = 0,
    corpus: CorpusSource = None,
) -> Dict[str, Any]:
    """One-shot screen against the given (default: published) corpus."""
    return OpportunityScreener(corpus).score_all_indications(
        filters, sort_by=sort_by, sort_order=sort_order, limit=limit, offset=offset
    )


def score_indication(name: str, corpus: CorpusSource = None) -> Optional[Dict[str, Any]]:
    return OpportunityScreener(corpus).score_indication(name)


def available_therapy_areas(corpus: CorpusSource = None) -> List[str]:
    return OpportunityScreener(corpus).available_therapy_areas()


def screener_summary(corpus: CorpusSource = None) -> Dict[str, Any]:
    return OpportunityScreener(corpus).screener_summary()


if __name__ == "__main__":
    from common.logging_config import settings_from_env, setup_logging
    setup_logging(**settings_from_env())

    print("=" * 70)
    print("OPPORTUNITY SCREENER v1.0.0 - DEMONSTRATION")
    print("=" * 70)

    screener = OpportunityScreener()
    page = screener.score_all_indications({"therapy_areas": ["oncology"]}, limit=5)
    print(f"\nOncology: {page['total_count']} indications")
    for opp in page["opportunities"]:
        print(f"  {opp['indication']:<40} {opp['opportunity_score']:>6}  crowding {opp['crowding_score']}")

    summary = screener.screener_summary()
    print(f"\nCorpus average score: {summary['average_opportunity_score']}")
    for bucket, count in summary["score_distribution"].items():
        print(f"  {bucket:<8} {count}")
