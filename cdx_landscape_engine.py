#!/usr/bin/env python3
"""
cdx_landscape_engine.py

Competitive Landscape Analyzer (companion-diagnostic variant)

Scores the tests competing to detect a biomarker:
- Retrieval: alias-resolved biomarker records, merged with test_type and
  linked_drug matches; an empty pool retries on indication text, then
  falls back to the full test set
- Platform comparison (turnaround, price, panel breadth, trend)
- Biomarker x test coverage matrix with linked drugs, testing rates and
  competitive intensity
- Testing landscape (volume, revenue, platform shares, blended growth)
- Market share distribution from annual test volume
- Crowding composite (approved count, pipeline count, platform count, HHI,
  testing penetration) on the 1-10 scale
- Linked drug revenue dependency and comparable CDx transactions

Stored differentiation_score / evidence_strength values from the corpus
are used as-is for tests.

Author: Wake Robin Capital Management
Version: 1.0.0
"""

import logging
from collections import OrderedDict
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from common.input_validation import CDxLandscapeRequest, coerce_request
from common.provenance import AuditTrailMixin, finalize_result
from common.score_utils import (
    TENTH,
    band_from_params,
    clamp_1_10,
    median,
    quantize,
    to_decimal,
)
from common.text_normalization import contains_phrase, normalize_text, tokenize
from competitive_landscape_engine import (
    CorpusSource,
    comparison_matrix,
    dedupe,
    load_params_pair,
    mean,
)
from device_landscape_engine import crowding_step
from entity_resolver import BIOMARKER_ALIAS_GROUPS, resolve
from landscape_narratives import (
    CDX_EMPTY_KEY_INSIGHT,
    CDX_EMPTY_WHITE_SPACE,
    CDX_FALLBACK_GAP,
    CDX_KEY_INSIGHT_RULES,
    CDX_LIQUID_BIOPSY_GAP,
    CDX_MONITORING_GAP,
    CDX_NGS_GAP,
    CDX_PENETRATION_GAP,
    CDX_PIPELINE_DRUG_GAP,
    CDX_PLATFORM_GAP,
    CDX_PLATFORM_RULES,
    CDX_PRICE_GAP,
    CONCENTRATION_RULES,
    concentration_context,
    first_match,
    platform_label,
    render_all,
)
from market_concentration import ShareEntry, market_share_distribution
from reference_corpus import DiagnosticCompetitor, ReferenceCorpus, as_handle

__version__ = "1.0.0"
__author__ = "Wake Robin Capital Management"

logger = logging.getLogger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

MAX_WHITE_SPACE = 5
DEFAULT_MATRIX_SIZE = 8
DEFAULT_PLATFORM = "NGS"

ALL_PLATFORMS = ("NGS", "PCR", "IHC", "FISH", "liquid_biopsy", "ddPCR", "microarray")

LOW_TESTING_RATE_PCT = 40
PIPELINE_DRUG_GAP_MIN_DRUGS = 2
PIPELINE_DRUG_GAP_MAX_TESTS = 2
PRICE_GAP_FLOOR = Decimal("2000")
MONITORING_MARKERS = ("mrd", "ctdna")
RECENT_DEAL_YEARS = 3

# biomarker -> linked approved therapies and pipeline drug classes
BIOMARKER_DRUG_MAP: Dict[str, Dict[str, Tuple[str, ...]]] = {
    "EGFR": {
        "approved": ("Tagrisso", "Iressa", "Tarceva", "Gilotrif", "Vizimpro", "Rybrevant"),
        "pipeline": ("EGFR degraders", "C797S inhibitors"),
    },
    "PD-L1": {
        "approved": ("Keytruda", "Tecentriq", "Imfinzi", "Bavencio", "Opdivo"),
        "pipeline": ("next-gen IO combinations", "PD-L1 bispecifics"),
    },
    "ALK": {
        "approved": ("Xalkori", "Alecensa", "Lorbrena", "Zykadia", "Alunbrig"),
        "pipeline": ("NVL-655", "TPX-0131"),
    },
    "BRAF": {
        "approved": ("Zelboraf", "Tafinlar + Mekinist", "Braftovi + Mektovi"),
        "pipeline": ("BRAF-dimer inhibitors",),
    },
    "HER2": {
        "approved": ("Herceptin", "Enhertu", "Kadcyla", "Perjeta", "Tucatinib"),
        "pipeline": ("HER2 bispecifics", "next-gen ADCs"),
    },
    "BRCA": {
        "approved": ("Lynparza", "Rubraca", "Zejula", "Talazoparib"),
        "pipeline": ("next-gen PARPi", "PARPi combinations"),
    },
    "TMB": {
        "approved": ("Keytruda (TMB-H)",),
        "pipeline": ("IO biomarker-selected trials",),
    },
    "MSI": {
        "approved": ("Keytruda (MSI-H)", "Opdivo + Yervoy"),
        "pipeline": ("tissue-agnostic IO",),
    },
    "KRAS": {
        "approved": ("Lumakras", "Krazati"),
        "pipeline": ("KRAS G12D inhibitors", "KRAS-ON inhibitors", "RAS(ON) multi-selective"),
    },
    "ROS1": {
        "approved": ("Xalkori", "Rozlytrek", "Lorbrena"),
        "pipeline": ("NVL-520", "taletrectinib"),
    },
    "NTRK": {
        "approved": ("Vitrakvi", "Rozlytrek"),
        "pipeline": ("next-gen TRK inhibitors", "selitrectinib"),
    },
    "MET": {
        "approved": ("Tabrecta", "Tepmetko"),
        "pipeline": ("MET ADCs", "bispecific MET x EGFR"),
    },
    "RET": {
        "approved": ("Retevmo", "Gavreto"),
        "pipeline": ("next-gen RET inhibitors",),
    },
    "PIK3CA": {
        "approved": ("Piqray",),
        "pipeline": ("PI3K-alpha selective inhibitors", "PI3K degraders"),
    },
    "HRD": {
        "approved": ("Lynparza (HRD+)", "Zejula (HRD+)"),
        "pipeline": ("combination PARPi + IO for HRD",),
    },
    "MRD": {
        "approved": (),
        "pipeline": ("MRD-guided adjuvant therapy trials", "ctDNA-guided de-escalation"),
    },
}

# drug key (generic or brand, lower-case) -> (marketer, est. annual revenue $M)
DRUG_REVENUE_ESTIMATES: Dict[str, Tuple[str, int]] = {
    "keytruda": ("Merck", 25000),
    "pembrolizumab": ("Merck", 25000),
    "tagrisso": ("AstraZeneca", 5500),
    "osimertinib": ("AstraZeneca", 5500),
    "lynparza": ("AstraZeneca/Merck", 2500),
    "olaparib": ("AstraZeneca/Merck", 2500),
    "tecentriq": ("Roche", 3800),
    "atezolizumab": ("Roche", 3800),
    "imfinzi": ("AstraZeneca", 4200),
    "durvalumab": ("AstraZeneca", 4200),
    "herceptin": ("Roche", 3000),
    "trastuzumab": ("Roche", 3000),
    "enhertu": ("Daiichi Sankyo/AstraZeneca", 4000),
    "rozlytrek": ("Roche", 200),
    "entrectinib": ("Roche", 200),
    "vitrakvi": ("Bayer", 250),
    "larotrectinib": ("Bayer", 250),
    "lumakras": ("Amgen", 700),
    "sotorasib": ("Amgen", 700),
    "tabrecta": ("Novartis", 150),
    "capmatinib": ("Novartis", 150),
    "rybrevant": ("Janssen", 500),
    "amivantamab": ("Janssen", 500),
    "rubraca": ("GSK", 150),
    "rucaparib": ("GSK", 150),
    "piqray": ("Novartis", 350),
    "alpelisib": ("Novartis", 350),
    "xalkori": ("Pfizer", 300),
    "crizotinib": ("Pfizer", 300),
    "alecensa": ("Roche", 1500),
    "alectinib": ("Roche", 1500),
    "lorbrena": ("Pfizer", 800),
    "lorlatinib": ("Pfizer", 800),
    "zelboraf": ("Roche", 100),
    "vemurafenib": ("Roche", 100),
    "tafinlar": ("Novartis", 2200),
    "dabrafenib": ("Novartis", 2200),
    "mekinist": ("Novartis", 2200),
    "trametinib": ("Novartis", 2200),
    "iressa": ("AstraZeneca", 200),
    "gefitinib": ("AstraZeneca", 200),
    "tarceva": ("Roche", 300),
    "erlotinib": ("Roche", 300),
    "kadcyla": ("Roche", 1800),
    "zejula": ("GSK", 400),
    "niraparib": ("GSK", 400),
    "talazoparib": ("Pfizer", 300),
}

# Diagnostics M&A used for valuation benchmarking
CDX_REFERENCE_DEALS: Tuple[Dict[str, Any], ...] = (
    {"target": "Foundation Medicine", "acquirer": "Roche", "value_m": 5300, "year": 2018,
     "biomarker_focus": "comprehensive genomic profiling", "platform_focus": "NGS"},
    {"target": "Genomic Health", "acquirer": "Exact Sciences", "value_m": 2800, "year": 2019,
     "biomarker_focus": "gene expression profiling (breast/prostate)", "platform_focus": "PCR"},
    {"target": "GRAIL", "acquirer": "Illumina", "value_m": 8000, "year": 2021,
     "biomarker_focus": "multi-cancer early detection (cfDNA methylation)", "platform_focus": "NGS"},
    {"target": "Resolution Bioscience", "acquirer": "Agilent", "value_m": 550, "year": 2021,
     "biomarker_focus": "liquid biopsy (ctDNA)", "platform_focus": "liquid_biopsy"},
    {"target": "Guardant Health", "acquirer": "Public Market (implied valuation)", "value_m": 10000, "year": 2024,
     "biomarker_focus": "liquid biopsy, CRC screening", "platform_focus": "liquid_biopsy"},
    {"target": "Loxo Oncology (CDx component)", "acquirer": "Bayer", "value_m": 800, "year": 2019,
     "biomarker_focus": "NTRK/TRK diagnostics", "platform_focus": "NGS"},
    {"target": "Invivoscribe (ClonoSEQ)", "acquirer": "Adaptive Biotechnologies", "value_m": 300, "year": 2020,
     "biomarker_focus": "MRD hematologic", "platform_focus": "NGS"},
    {"target": "Myriad Genetics (Oncology segment)", "acquirer": "Strategic (multiple suitors)", "value_m": 2500,
     "year": 2023, "biomarker_focus": "BRCA, HRD, hereditary cancer", "platform_focus": "PCR"},
)

REGULATORY_STATUS_LABELS = {
    "PMA_approved": "PMA Approved",
    "cleared": "510(k) Cleared",
    "LDT": "LDT",
    "development": "Development",
    "submitted": "Submitted",
}


# ============================================================================
# BIOMARKER LOOKUPS
# ============================================================================

def biomarker_key(biomarker: str, table: Mapping[str, Any]) -> Optional[str]:
    """
    Table key naming the biomarker in a free-text coverage entry.

    A key matches when its tokens appear in the entry ("HER2 amplification"
    -> HER2, "ctDNA (MRD)" -> MRD); otherwise an alias spelling found in the
    entry maps to its canonical group ("BRCA1" -> BRCA, "ERBB2" -> HER2).
    """
    entry_tokens = tokenize(biomarker)
    if not entry_tokens:
        return None
    for key in table:
        if contains_phrase(entry_tokens, tokenize(key)):
            return key
    for canonical, aliases in BIOMARKER_ALIAS_GROUPS.items():
        if canonical in table and any(contains_phrase(entry_tokens, tokenize(a)) for a in aliases):
            return canonical
    return None


def testing_rate(biomarker: str, params: Dict[str, Any]) -> int:
    """Share of eligible patients tested for a biomarker (default rate if unknown)."""
    rates = params["cdx"]["testing_rates"]
    key = biomarker_key(biomarker, rates)
    rate = rates[key] if key is not None else params["cdx"]["default_testing_rate"]
    return int(min(max(to_decimal(rate, Decimal("0")), Decimal("0")), Decimal("100")))


def drugs_for_biomarker(biomarker: str) -> Dict[str, Tuple[str, ...]]:
    key = biomarker_key(biomarker, BIOMARKER_DRUG_MAP)
    if key is None:
        return {"approved": (), "pipeline": ()}
    return BIOMARKER_DRUG_MAP[key]


def drug_revenue(drug: str) -> Optional[Tuple[str, int]]:
    """Revenue estimate for 'Brand (generic)' strings; generic name first, then brand."""
    if "(" in drug and ")" in drug:
        generic = drug[drug.index("(") + 1:drug.index(")")].strip().lower()
        if generic in DRUG_REVENUE_ESTIMATES:
            return DRUG_REVENUE_ESTIMATES[generic]
    brand = "".join(ch for ch in drug.split("(")[0].lower() if ch.isalnum())
    return DRUG_REVENUE_ESTIMATES.get(brand)


def revenue_dependency(revenue_m: Optional[int], band_spec: Dict[str, Any]) -> str:
    """How much a CDx leans on its linked drug. Unknown revenue is "low"."""
    if revenue_m is None:
        return band_spec["labels"][0]
    return band_from_params(revenue_m, band_spec)


def format_volume(volume: int) -> str:
    """250000 -> '250K', 1200000 -> '1.2M'."""
    if volume <= 0:
        return "N/A"
    if volume >= 1000000:
        return f"{(Decimal(volume) / 1000000).quantize(TENTH, rounding=ROUND_HALF_UP)}M"
    return f"{(Decimal(volume) / 1000).quantize(Decimal('1'), rounding=ROUND_HALF_UP)}K"


def whole(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ============================================================================
# SCORING
# ============================================================================

def compute_cdx_crowding(
    approved: Sequence[DiagnosticCompetitor],
    pipeline: Sequence[DiagnosticCompetitor],
    platform_count: int,
    hhi: Optional[int],
    penetration_pct: int,
    params: Dict[str, Any],
) -> Dict[str, Any]:
    """
    Weighted crowding composite (1-10) and its factor scores.

    Fragmented volume (low HHI) and high testing penetration both push
    crowding up. hhi=None (no volume data) scores that factor as neutral.
    """
    steps = params["cdx"]["crowding_steps"]
    factors = {
        "approved_count": crowding_step(len(approved), steps["approved_count"]),
        "pipeline_count": crowding_step(len(pipeline), steps["pipeline_count"]),
        "platform_count": crowding_step(platform_count, steps["platform_count"]),
        "hhi": crowding_step(hhi, steps["hhi"]) if hhi is not None else to_decimal(steps["no_share_hhi"]),
        "penetration": crowding_step(penetration_pct, steps["penetration"]),
    }
    weights = params["cdx"]["crowding_weights"]
    composite = sum((factors[name] * to_decimal(weights[name]) for name in sorted(factors)), Decimal("0"))
    crowding = clamp_1_10(quantize(composite, TENTH))
    return {
        "crowding_score": crowding,
        "crowding_label": band_from_params(crowding, params["bands"]["cdx_crowding"]),
        "factors": factors,
    }


# ============================================================================
# ENGINE
# ============================================================================

class CDxLandscapeEngine(AuditTrailMixin):
    """
    Companion-diagnostic competitive landscape for one biomarker.

    Usage:
        engine = CDxLandscapeEngine()
        result = engine.analyze({"biomarker": "PD-L1", "test_type": "IHC"})
    """

    VERSION = "1.0.0"
    MODULE = "cdx_landscape_engine"

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
        request: Union[CDxLandscapeRequest, Dict[str, Any]],
        generated_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Analyze the diagnostic landscape of a biomarker.

        Args:
            request: CDxLandscapeRequest or dict {biomarker, test_type?, linked_drug?, indication?}
            generated_at: Result timestamp (default: UTC now)

        Raises:
            InvalidInputError: Missing/blank biomarker
        """
        req = coerce_request(request, CDxLandscapeRequest)
        corpus = self.handle.current()
        resolution = resolve(req.biomarker, "biomarker", corpus)
        tests, retrieval = self._gather(corpus, req, resolution)

        if retrieval == "fallback":
            logger.info(f"No test matched '{req.biomarker}'; scoring the full diagnostic set")

        biomarker = resolution.matched_keys[0] if len(resolution.matched_keys) == 1 else req.biomarker
        if tests:
            body = self._build_body(corpus, req, biomarker, tests)
        else:
            body = self._empty_body(corpus, req, biomarker)
        body["resolution"] = dict(resolution.to_dict(), retrieval=retrieval)

        result = finalize_result(
            body,
            module=self.MODULE,
            module_version=self.VERSION,
            corpus_version=corpus.corpus_version,
            parameters_hash=self.params_hash,
            generated_at=generated_at,
        )
        self._add_audit({
            "biomarker": req.biomarker,
            "match": resolution.match.value,
            "retrieval": retrieval,
            "tests": len(tests),
            "crowding_score": str(result["summary"]["crowding_score"]),
            "content_hash": result["provenance"]["content_hash"],
        })
        return result

    # ------------------------------------------------------------------

    def _gather(self, corpus: ReferenceCorpus, req: CDxLandscapeRequest, resolution) -> Tuple[List[DiagnosticCompetitor], str]:
        every = corpus.diagnostic_competitors
        pool: List[DiagnosticCompetitor] = []
        if not resolution.is_fallback:
            pool.extend(resolution.records)
        if req.test_type:
            platform = req.test_type.lower()
            pool.extend(t for t in every if t.platform.lower() == platform)
        if req.linked_drug:
            drug = req.linked_drug.lower()
            pool.extend(t for t in every if any(drug in d.lower() for d in t.linked_drugs))

        if pool:
            return dedupe(pool, key=lambda t: t.test_name), "fallback_filters" if resolution.is_fallback else "resolved"

        if req.indication:
            needle = req.indication.lower()
            by_indication = [
                t for t in every
                if needle in t.test_name.lower()
                or any(needle in text.lower() for text in t.biomarkers_covered + t.linked_drugs + t.indications)
            ]
            if by_indication:
                return dedupe(by_indication, key=lambda t: t.test_name), "indication"

        return dedupe(every, key=lambda t: t.test_name), "fallback"

    def _build_body(
        self,
        corpus: ReferenceCorpus,
        req: CDxLandscapeRequest,
        biomarker: str,
        tests: List[DiagnosticCompetitor],
    ) -> Dict[str, Any]:
        params = self.params
        approved = [t for t in tests if t.regulatory_status in params["cdx"]["approved_statuses"]]
        pipeline = [t for t in tests if t.regulatory_status in params["cdx"]["pipeline_statuses"]]

        platforms = self._platform_comparison(tests, params)
        matrix = self._biomarker_matrix(tests, params)
        landscape = self._testing_landscape(tests, params)

        distribution = market_share_distribution(
            [ShareEntry(f"{t.company} — {t.test_name}", t.platform, Decimal(t.estimated_annual_test_volume))
             for t in tests],
            params,
        )
        has_shares = bool(distribution["competitors"])
        distribution["narrative"] = render_all(
            CONCENTRATION_RULES, concentration_context(distribution, f"{biomarker} testing")
        )

        penetration = testing_rate(biomarker, params)
        crowding = compute_cdx_crowding(
            approved, pipeline, len(platforms), distribution["hhi_index"] if has_shares else None, penetration, params
        )
        dominant = platforms[0]["platform"] if platforms else DEFAULT_PLATFORM

        by_differentiation = sorted(tests, key=lambda t: -t.differentiation_score)
        matrix_size = int(params["cdx"].get("comparison_matrix_size", DEFAULT_MATRIX_SIZE))

        summary = {
            "biomarker": biomarker,
            "total_tests": len(tests),
            "approved_count": len(approved),
            "pipeline_count": len(pipeline),
            "crowding_score": crowding["crowding_score"],
            "crowding_label": crowding["crowding_label"],
            "crowding_factors": crowding["factors"],
            "platform_dominant": dominant,
            "testing_penetration_pct": penetration,
            "avg_differentiation": mean([t.differentiation_score for t in tests]),
            "white_space": self._white_space(tests, matrix, biomarker, params),
            "key_insight": first_match(CDX_KEY_INSIGHT_RULES, {
                "crowding_score": crowding["crowding_score"],
                "biomarker": biomarker,
                "total": len(approved) + len(pipeline),
                "approved": len(approved),
                "pipeline": len(pipeline),
                "platform": platform_label(dominant, lower=True),
                "penetration": penetration,
            }),
        }

        return {
            "variant": "cdx",
            "query": self._query(req),
            "summary": summary,
            "approved_tests": [self._test_entry(t) for t in approved],
            "pipeline_tests": [self._test_entry(t) for t in pipeline],
            "platform_comparison": platforms,
            "biomarker_competition_matrix": matrix,
            "linked_drug_dependency": self._linked_drug_dependency(tests, params["bands"]["cdx_revenue_dependency"]),
            "testing_landscape": landscape,
            "market_share": distribution,
            "comparable_cdx_deals": self._comparable_deals(biomarker, req.test_type, tests, corpus),
            "comparison_matrix": comparison_matrix(
                by_differentiation[:matrix_size],
                column=lambda t: f"{t.company} — {t.test_name}",
                attributes=(
                    ("Platform", lambda t: platform_label(t.platform)),
                    ("Regulatory Status", lambda t: REGULATORY_STATUS_LABELS.get(t.regulatory_status, t.regulatory_status)),
                    ("Genes in Panel", lambda t: t.genes_in_panel if t.genes_in_panel else "N/A"),
                    ("Turnaround (Days)", lambda t: t.turnaround_days if t.turnaround_days is not None else "N/A"),
                    ("Estimated Price ($)", lambda t: f"${t.test_price_estimate:,.0f}" if t.test_price_estimate is not None else "N/A"),
                    ("Sample Type", lambda t: ", ".join(t.sample_type) or "N/A"),
                    ("Annual Test Volume", lambda t: format_volume(t.estimated_annual_test_volume)),
                    ("Differentiation Score", lambda t: f"{t.differentiation_score}/10"),
                ),
            ),
            "corpus_as_of": corpus.as_of_date,
        }

    def _empty_body(self, corpus: ReferenceCorpus, req: CDxLandscapeRequest, biomarker: str) -> Dict[str, Any]:
        floor = clamp_1_10(1)
        distribution = market_share_distribution([], self.params)
        distribution["narrative"] = render_all(
            CONCENTRATION_RULES, concentration_context(distribution, f"{biomarker} testing")
        )
        summary = {
            "biomarker": biomarker,
            "total_tests": 0,
            "approved_count": 0,
            "pipeline_count": 0,
            "crowding_score": floor,
            "crowding_label": band_from_params(floor, self.params["bands"]["cdx_crowding"]),
            "crowding_factors": {},
            "platform_dominant": None,
            "testing_penetration_pct": testing_rate(biomarker, self.params),
            "avg_differentiation": Decimal("0"),
            "white_space": [CDX_EMPTY_WHITE_SPACE.format(biomarker=biomarker)],
            "key_insight": CDX_EMPTY_KEY_INSIGHT.format(biomarker=biomarker),
        }
        return {
            "variant": "cdx",
            "query": self._query(req),
            "summary": summary,
            "approved_tests": [],
            "pipeline_tests": [],
            "platform_comparison": [],
            "biomarker_competition_matrix": [],
            "linked_drug_dependency": [],
            "testing_landscape": {
                "total_estimated_tests_per_year": 0,
                "total_estimated_revenue_m": Decimal("0"),
                "by_platform": [],
                "growth_rate_pct": Decimal("0"),
            },
            "market_share": distribution,
            "comparable_cdx_deals": {"deals": [], "median_deal_value_m": 0},
            "comparison_matrix": {"columns": [], "rows": []},
            "corpus_as_of": corpus.as_of_date,
        }

    @staticmethod
    def _query(req: CDxLandscapeRequest) -> Dict[str, Any]:
        return {
            "biomarker": req.biomarker,
            "test_type": req.test_type,
            "linked_drug": req.linked_drug,
            "indication": req.indication,
        }

    @staticmethod
    def _test_entry(test: DiagnosticCompetitor) -> Dict[str, Any]:
        return {
            "company": test.company,
            "test_name": test.test_name,
            "platform": test.platform,
            "biomarkers_covered": list(test.biomarkers_covered),
            "linked_drugs": list(test.linked_drugs),
            "indications": list(test.indications),
            "regulatory_status": test.regulatory_status,
            "genes_in_panel": test.genes_in_panel,
            "turnaround_days": test.turnaround_days,
            "test_price_estimate": test.test_price_estimate,
            "sample_type": list(test.sample_type),
            "estimated_annual_test_volume": test.estimated_annual_test_volume,
            "estimated_revenue_m": test.estimated_revenue_m,
            "differentiation_score": test.differentiation_score,
            "evidence_strength": test.evidence_strength,
            "strengths": list(test.strengths),
            "weaknesses": list(test.weaknesses),
            "source": test.source,
        }

    @staticmethod
    def _platform_comparison(tests: Sequence[DiagnosticCompetitor], params: Dict[str, Any]) -> List[Dict[str, Any]]:
        groups: "OrderedDict[str, List[DiagnosticCompetitor]]" = OrderedDict()
        for test in tests:
            groups.setdefault(test.platform, []).append(test)

        comparisons = []
        for platform, members in groups.items():
            turnarounds = [Decimal(t.turnaround_days) for t in members if t.turnaround_days is not None]
            prices = [t.test_price_estimate for t in members if t.test_price_estimate is not None]
            genes = [Decimal(t.genes_in_panel) for t in members if t.genes_in_panel > 0]
            avg_turnaround = whole(sum(turnarounds) / len(turnarounds)) if turnarounds else 0
            avg_price = whole(sum(prices) / len(prices)) if prices else 0
            avg_genes = sum(genes) / len(genes) if genes else Decimal("0")
            breadth = band_from_params(avg_genes, params["bands"]["cdx_panel_breadth"])
            trend = params["cdx"]["platform_trend"].get(platform, "stable")
            comparisons.append({
                "platform": platform,
                "label": platform_label(platform),
                "test_count": len(members),
                "avg_turnaround_days": avg_turnaround,
                "avg_price_estimate": avg_price,
                "biomarker_breadth": breadth,
                "trend": trend,
                "narrative": render_all(CDX_PLATFORM_RULES, {
                    "label": platform_label(platform),
                    "count": len(members),
                    "plural": "" if len(members) == 1 else "s",
                    "avg_turnaround": avg_turnaround,
                    "avg_price": avg_price,
                    "breadth": breadth,
                    "trend": trend,
                }),
            })
        comparisons.sort(key=lambda c: -c["test_count"])
        return comparisons

    @staticmethod
    def _biomarker_matrix(tests: Sequence[DiagnosticCompetitor], params: Dict[str, Any]) -> List[Dict[str, Any]]:
        rows: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        for test in tests:
            for entry in test.biomarkers_covered:
                key = normalize_text(entry)
                if not key:
                    continue
                row = rows.setdefault(key, {"biomarker": entry, "tests": []})
                if all(t["test_name"].lower() != test.test_name.lower() for t in row["tests"]):
                    row["tests"].append({"test_name": test.test_name, "company": test.company, "platform": test.platform})

        matrix = []
        for row in rows.values():
            drugs = drugs_for_biomarker(row["biomarker"])
            matrix.append({
                "biomarker": row["biomarker"],
                "tests_detecting": row["tests"],
                "linked_drugs_approved": list(drugs["approved"]),
                "linked_drugs_pipeline": list(drugs["pipeline"]),
                "testing_rate_pct": testing_rate(row["biomarker"], params),
                "competitive_intensity": band_from_params(len(row["tests"]), params["bands"]["cdx_biomarker_intensity"]),
            })
        matrix.sort(key=lambda m: -len(m["tests_detecting"]))
        return matrix

    @staticmethod
    def _testing_landscape(tests: Sequence[DiagnosticCompetitor], params: Dict[str, Any]) -> Dict[str, Any]:
        total = sum(t.estimated_annual_test_volume for t in tests)
        revenue = sum((t.estimated_revenue_m for t in tests if t.estimated_revenue_m is not None), Decimal("0"))

        volumes: "OrderedDict[str, int]" = OrderedDict()
        for test in tests:
            volumes[test.platform] = volumes.get(test.platform, 0) + test.estimated_annual_test_volume

        by_platform = [
            {
                "platform": platform,
                "share_pct": quantize(Decimal(volume) * 100 / Decimal(total), TENTH) if total > 0 else Decimal("0"),
            }
            for platform, volume in volumes.items()
        ]
        by_platform.sort(key=lambda p: (-p["share_pct"], p["platform"]))

        growth_rates = params["cdx"]["platform_growth_pct"]
        default_growth = to_decimal(params["cdx"]["platform_growth_default_pct"])
        growth = sum(
            (to_decimal(growth_rates.get(p["platform"]), default_growth) * p["share_pct"] / 100 for p in by_platform),
            Decimal("0"),
        )
        return {
            "total_estimated_tests_per_year": total,
            "total_estimated_revenue_m": revenue,
            "by_platform": by_platform,
            "growth_rate_pct": quantize(growth, TENTH),
        }

    @staticmethod
    def _linked_drug_dependency(tests: Sequence[DiagnosticCompetitor], band_spec: Dict[str, Any]) -> List[Dict[str, Any]]:
        drugs: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        for test in tests:
            for drug in test.linked_drugs:
                display = drug.split("(")[0].strip() or drug
                entry = drugs.setdefault(display.lower(), {"raw": drug, "display": display, "tests": []})
                if test.test_name not in entry["tests"]:
                    entry["tests"].append(test.test_name)

        dependencies = []
        for entry in drugs.values():
            estimate = drug_revenue(entry["raw"])
            revenue = estimate[1] if estimate else None
            dependencies.append({
                "drug_name": entry["display"],
                "drug_company": estimate[0] if estimate else "Unknown",
                "estimated_drug_revenue_m": revenue,
                "cdx_tests_linked": entry["tests"],
                "cdx_revenue_dependency": revenue_dependency(revenue, band_spec),
            })
        dependencies.sort(key=lambda d: -(d["estimated_drug_revenue_m"] or 0))
        return dependencies

    @staticmethod
    def _white_space(
        tests: Sequence[DiagnosticCompetitor],
        matrix: Sequence[Dict[str, Any]],
        biomarker: str,
        params: Dict[str, Any],
    ) -> List[str]:
        items: List[str] = []

        for row in matrix:
            pipeline_drugs = len(row["linked_drugs_pipeline"])
            count = len(row["tests_detecting"])
            if pipeline_drugs >= PIPELINE_DRUG_GAP_MIN_DRUGS and count <= PIPELINE_DRUG_GAP_MAX_TESTS:
                items.append(CDX_PIPELINE_DRUG_GAP.format(
                    biomarker=row["biomarker"], pipeline_drugs=pipeline_drugs, tests=count,
                    plural="" if count == 1 else "s",
                ))

        present = {t.platform for t in tests}
        if "liquid_biopsy" not in present:
            items.append(CDX_LIQUID_BIOPSY_GAP.format(biomarker=biomarker))
        if "NGS" not in present:
            items.append(CDX_NGS_GAP.format(biomarker=biomarker))

        for row in matrix:
            approved_drugs = len(row["linked_drugs_approved"])
            if row["testing_rate_pct"] < LOW_TESTING_RATE_PCT and approved_drugs > 0:
                items.append(CDX_PENETRATION_GAP.format(
                    biomarker=row["biomarker"], rate=row["testing_rate_pct"], approved_drugs=approved_drugs,
                    plural="" if approved_drugs == 1 else "s",
                ))

        monitors = any(
            marker in entry.lower() for t in tests for entry in t.biomarkers_covered for marker in MONITORING_MARKERS
        )
        if not monitors:
            items.append(CDX_MONITORING_GAP)

        prices = [t.test_price_estimate for t in tests if t.test_price_estimate is not None]
        if prices and min(prices) > PRICE_GAP_FLOOR:
            items.append(CDX_PRICE_GAP.format(min_price=whole(min(prices))))

        trends = params["cdx"]["platform_trend"]
        for platform in ALL_PLATFORMS:
            if platform not in present and platform != "liquid_biopsy" and trends.get(platform) == "growing":
                items.append(CDX_PLATFORM_GAP.format(platform=platform_label(platform)))

        if not items:
            items.append(CDX_FALLBACK_GAP.format(biomarker=biomarker))
        return items[:MAX_WHITE_SPACE]

    @staticmethod
    def _comparable_deals(
        biomarker: str,
        test_type: Optional[str],
        tests: Sequence[DiagnosticCompetitor],
        corpus: ReferenceCorpus,
    ) -> Dict[str, Any]:
        terms = [biomarker.lower()]
        canonical = biomarker_key(biomarker, BIOMARKER_ALIAS_GROUPS)
        if canonical is not None:
            terms.extend(t.lower() for t in (canonical,) + BIOMARKER_ALIAS_GROUPS[canonical])

        platforms = {t.platform.lower() for t in tests}
        if test_type:
            platforms.add(test_type.lower())
        recent_from = corpus.as_of_date.year - RECENT_DEAL_YEARS

        scored = []
        for deal in CDX_REFERENCE_DEALS:
            focus = deal["biomarker_focus"].lower()
            relevance = 0
            if any(term in focus for term in terms):
                relevance += 3
            if "comprehensive" in focus or "genomic profiling" in focus:
                relevance += 1
            if deal["platform_focus"].lower() in platforms:
                relevance += 2
            if deal["year"] >= recent_from:
                relevance += 1
            if relevance > 0:
                scored.append((relevance, deal))

        scored.sort(key=lambda s: -s[0])
        chosen = [deal for _, deal in scored] or list(CDX_REFERENCE_DEALS)
        deals = [
            {
                "target": d["target"],
                "acquirer": d["acquirer"],
                "value_m": d["value_m"],
                "year": d["year"],
                "biomarker_focus": d["biomarker_focus"],
            }
            for d in chosen
        ]
        return {
            "deals": deals,
            "median_deal_value_m": whole(median([d["value_m"] for d in deals])),
        }


def analyze_cdx_landscape(
    request: Union[CDxLandscapeRequest, Dict[str, Any]],
    corpus: CorpusSource = None,
    generated_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """One-shot CDx analysis against the given (default: published) corpus."""
    return CDxLandscapeEngine(corpus).analyze(request, generated_at=generated_at)


if __name__ == "__main__":
    from common.logging_config import settings_from_env, setup_logging
    setup_logging(**settings_from_env())

    print("=" * 70)
    print("CDX LANDSCAPE ENGINE v1.0.0 - DEMONSTRATION")
    print("=" * 70)

    engine = CDxLandscapeEngine()
    for query in (
        {"biomarker": "PDL1"},
        {"biomarker": "EGFR", "test_type": "NGS"},
        {"biomarker": "TOTALLY_UNKNOWN_XYZ"},
    ):
        result = engine.analyze(query)
        summary = result["summary"]
        print(f"\n{query['biomarker']} -> {result['resolution']['match']} ({result['resolution']['retrieval']})")
        print(f"  Tests:       {summary['total_tests']} ({summary['approved_count']} approved)")
        print(f"  Crowding:    {summary['crowding_score']} ({summary['crowding_label']})")
        print(f"  Platform:    {summary['platform_dominant']}  penetration {summary['testing_penetration_pct']}%")
        print(f"  Deals:       median ${result['comparable_cdx_deals']['median_deal_value_m']}M")
        for item in summary["white_space"][:2]:
            print(f"  - {item}")
