#!/usr/bin/env python3
"""
reference_corpus.py

Reference Corpus for the Opportunity Scoring Engine

Immutable, versioned in-memory datasets every analyzer scores against:
- Indications (prevalence/incidence by territory, CAGR, unmet need,
  pipeline phase distribution)
- Competitors in three variants (pharma assets, medical devices,
  companion diagnostics)
- Partner companies (focus weights, pipeline density, deal history)
- Pricing comparables

A snapshot is built completely (every record validated, every index
populated) before anyone can see it. Refresh goes through CorpusHandle,
which swaps the published snapshot in a single reference assignment, so
readers see either the old corpus or the new one, never a mix.

Usage:
    from reference_corpus import get_corpus, reload_corpus

    corpus = get_corpus()
    nsclc = corpus.indications_by_name["Non-Small Cell Lung Cancer"]
    reload_corpus()  # after the scheduled data refresh

Author: Wake Robin Capital Management
Version: 1.0.0
"""

import json
import logging
import os
import threading
from collections import Counter, defaultdict
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from common.score_utils import TENTH, band_from_params, clamp_1_10, quantize, to_decimal
from common.text_normalization import normalize_text
from governance.hashing import combine_file_hashes, hash_canonical_json_short, hash_corpus_files, hash_file, hash_matches
from governance.params_loader import load_and_validate_params

__version__ = "1.0.0"
__author__ = "Wake Robin Capital Management"

logger = logging.getLogger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

DATA_DIR_ENV = "OPPORTUNITY_ENGINE_DATA_DIR"
DEFAULT_DATA_DIR = Path(__file__).parent / "data" / "corpus"

MANIFEST_FILE = "manifest.json"
CORPUS_FILES = {
    "indications": "indications.json",
    "pharma": "pharma_competitors.json",
    "device": "device_competitors.json",
    "diagnostic": "diagnostic_competitors.json",
    "partners": "partners.json",
    "pricing": "pricing_comparables.json",
}

# Territory populations (millions) used to extrapolate non-US epidemiology
TERRITORY_POPULATION_M = {
    "US": Decimal("336"),
    "EU5": Decimal("330"),
    "Japan": Decimal("124"),
    "China": Decimal("1410"),
    "RoW": Decimal("6000"),
}
TERRITORIES = ("US", "EU5", "Japan", "China", "RoW")

PHARMA_PHASE_ORDER = {
    "Approved": 0,
    "Phase 3": 1,
    "Phase 2/3": 2,
    "Phase 2": 3,
    "Phase 1/2": 4,
    "Phase 1": 5,
    "Preclinical": 6,
}

# Pharma phase -> indication phase_distribution bucket
PHASE_BUCKETS = {
    "Approved": "approved",
    "Phase 3": "phase3",
    "Phase 2/3": "phase3",
    "Phase 2": "phase2",
    "Phase 1/2": "phase1",
    "Phase 1": "phase1",
    "Preclinical": "preclinical",
}
PHASE_BUCKET_NAMES = ("approved", "phase3", "phase2", "phase1", "preclinical")

PRODUCT_CATEGORIES = frozenset({"pharma", "device", "diagnostic"})
COMPANY_TYPES = frozenset({"big_pharma", "mid_pharma", "biotech", "medtech"})
BD_ACTIVITY_LEVELS = frozenset({"very_active", "active", "moderate", "selective"})

# Unmet-need blend: untreated share weighs more than undiagnosed share
UNMET_TREATMENT_WEIGHT = Decimal("0.6")
UNMET_DIAGNOSIS_WEIGHT = Decimal("0.4")


class CorpusLoadError(Exception):
    """Corpus files missing, malformed, or violating a record invariant."""
    pass


# ============================================================================
# RECORD TYPES
# ============================================================================

def _frozen_map(data: Optional[Mapping[str, Any]] = None) -> Mapping[str, Any]:
    return MappingProxyType(dict(data or {}))


@dataclass(frozen=True)
class IndicationRecord:
    """One canonical indication with epidemiology and pipeline shape."""
    name: str
    aliases: Tuple[str, ...]
    therapy_area: str
    icd10_codes: Tuple[str, ...]
    prevalence: Mapping[str, int]
    incidence: Mapping[str, int]
    global_prevalence: int
    global_incidence: int
    cagr_5yr: Decimal
    diagnosis_rate: Decimal
    treatment_rate: Decimal
    unmet_need: Decimal
    product_categories: Tuple[str, ...]
    phase_distribution: Mapping[str, int] = field(default_factory=_frozen_map)
    prevalence_source: str = ""
    market_growth_driver: str = ""
    pricing_context: str = ""

    @property
    def us_prevalence(self) -> int:
        return self.prevalence["US"]

    @property
    def us_incidence(self) -> int:
        return self.incidence["US"]

    @property
    def pipeline_asset_count(self) -> int:
        return sum(self.phase_distribution.values())


@dataclass(frozen=True)
class PharmaCompetitor:
    """A drug asset (approved or in development) for one indication."""
    company: str
    asset_name: str
    indication: str
    indication_specifics: str
    mechanism: str
    mechanism_category: str
    phase: str
    first_in_class: bool = False
    orphan_drug: bool = False
    has_biomarker_selection: bool = False
    strengths: Tuple[str, ...] = ()
    weaknesses: Tuple[str, ...] = ()
    source: str = ""
    partner: str = ""
    key_data: str = ""

    @property
    def is_approved(self) -> bool:
        return self.phase == "Approved"


@dataclass(frozen=True)
class DeviceCompetitor:
    """A medical device mapped to a procedure or condition."""
    company: str
    device_name: str
    device_category: str
    procedure_or_condition: str
    regulatory_status: str
    pathway: str
    technology_type: str
    technology_readiness: str
    clinical_evidence_level: str
    reimbursement_status: str
    installed_base_estimate: int
    estimated_market_share_pct: Optional[Decimal]
    asp_estimate: Optional[Decimal]
    differentiation_score: Decimal
    evidence_strength: Decimal
    clearance_date: str = ""
    k_number_or_pma: str = ""
    strengths: Tuple[str, ...] = ()
    weaknesses: Tuple[str, ...] = ()
    source: str = ""


@dataclass(frozen=True)
class DiagnosticCompetitor:
    """A companion-diagnostic or biomarker test."""
    company: str
    test_name: str
    platform: str
    biomarkers_covered: Tuple[str, ...]
    linked_drugs: Tuple[str, ...]
    regulatory_status: str
    genes_in_panel: int
    estimated_annual_test_volume: int
    differentiation_score: Decimal
    evidence_strength: Decimal
    indications: Tuple[str, ...] = ()
    turnaround_days: Optional[int] = None
    test_price_estimate: Optional[Decimal] = None
    sample_type: Tuple[str, ...] = ()
    estimated_revenue_m: Optional[Decimal] = None
    strengths: Tuple[str, ...] = ()
    weaknesses: Tuple[str, ...] = ()
    source: str = ""


@dataclass(frozen=True)
class PartnerDeal:
    """One historical transaction by a partner company."""
    partner: str
    indication: str
    deal_type: str
    upfront_m: Optional[Decimal]
    total_value_m: Optional[Decimal]
    year: int


@dataclass(frozen=True)
class PartnerRecord:
    """A potential licensing/acquisition partner."""
    company: str
    company_type: str
    headquarters: str
    market_cap_b: Decimal
    financial_tier: str
    therapeutic_focus: Mapping[str, Decimal]
    pipeline_density: Mapping[str, int]
    pipeline_focus: Tuple[str, ...]
    strategic_priorities: Tuple[str, ...]
    bd_activity: str
    preferred_deal_stages: Tuple[str, ...]
    geography_footprint: Tuple[str, ...]
    recent_deals: Tuple[PartnerDeal, ...] = ()

    @property
    def deal_count(self) -> int:
        return len(self.recent_deals)


@dataclass(frozen=True)
class PricingComparable:
    """Launch and current list price of a marketed drug."""
    drug_name: str
    company: str
    indication: str
    therapy_area: str
    mechanism_class: str
    launch_year: int
    us_launch_wac_annual: Optional[Decimal]
    current_list_price: Optional[Decimal]
    orphan_drug: bool = False
    first_in_class: bool = False


@dataclass(frozen=True)
class CorpusManifest:
    """Version and integrity metadata of a corpus snapshot."""
    corpus_version: str
    as_of_date: date
    file_hashes: Mapping[str, str]
    content_hash: str


# ============================================================================
# SNAPSHOT
# ============================================================================

@dataclass(frozen=True)
class ReferenceCorpus:
    """
    Immutable snapshot of every reference dataset plus lookup indexes.

    Collections are tuples and indexes are MappingProxyType views, so a
    snapshot handed to a request cannot change underneath it.
    """
    manifest: CorpusManifest
    indications: Tuple[IndicationRecord, ...]
    pharma_competitors: Tuple[PharmaCompetitor, ...]
    device_competitors: Tuple[DeviceCompetitor, ...]
    diagnostic_competitors: Tuple[DiagnosticCompetitor, ...]
    partners: Tuple[PartnerRecord, ...]
    pricing_comparables: Tuple[PricingComparable, ...]

    # Derived indexes (populated in __post_init__)
    indications_by_name: Mapping[str, IndicationRecord] = field(init=False, repr=False, compare=False)
    indication_keys: Mapping[str, Tuple[str, ...]] = field(init=False, repr=False, compare=False)
    pharma_by_indication: Mapping[str, Tuple[PharmaCompetitor, ...]] = field(init=False, repr=False, compare=False)
    pricing_by_indication: Mapping[str, Tuple[PricingComparable, ...]] = field(init=False, repr=False, compare=False)
    pricing_by_therapy_area: Mapping[str, Tuple[PricingComparable, ...]] = field(init=False, repr=False, compare=False)
    partners_by_name: Mapping[str, PartnerRecord] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        by_name = {record.name: record for record in self.indications}

        keys = build_indication_keys(self.indications)

        pharma: Dict[str, List[PharmaCompetitor]] = defaultdict(list)
        for competitor in self.pharma_competitors:
            pharma[competitor.indication].append(competitor)

        pricing_ind: Dict[str, List[PricingComparable]] = defaultdict(list)
        pricing_area: Dict[str, List[PricingComparable]] = defaultdict(list)
        for comparable in self.pricing_comparables:
            pricing_area[comparable.therapy_area].append(comparable)
            matched = _match_indication_key(comparable.indication, keys)
            if matched:
                pricing_ind[matched].append(comparable)

        object.__setattr__(self, "indications_by_name", MappingProxyType(by_name))
        object.__setattr__(self, "indication_keys", MappingProxyType(keys))
        object.__setattr__(self, "pharma_by_indication", MappingProxyType({k: tuple(v) for k, v in pharma.items()}))
        object.__setattr__(self, "pricing_by_indication", MappingProxyType({k: tuple(v) for k, v in pricing_ind.items()}))
        object.__setattr__(self, "pricing_by_therapy_area", MappingProxyType({k: tuple(v) for k, v in pricing_area.items()}))
        object.__setattr__(self, "partners_by_name", MappingProxyType({p.company: p for p in self.partners}))

    @property
    def corpus_version(self) -> str:
        return self.manifest.corpus_version

    @property
    def as_of_date(self) -> date:
        return self.manifest.as_of_date

    @property
    def content_hash(self) -> str:
        return self.manifest.content_hash

    def lookup_indication(self, text: str) -> Tuple[IndicationRecord, ...]:
        """Exact (normalized) lookup by canonical name or alias."""
        names = self.indication_keys.get(normalize_text(text), ())
        return tuple(self.indications_by_name[n] for n in names)

    def counts(self) -> Dict[str, int]:
        return {
            "indications": len(self.indications),
            "pharma_competitors": len(self.pharma_competitors),
            "device_competitors": len(self.device_competitors),
            "diagnostic_competitors": len(self.diagnostic_competitors),
            "partners": len(self.partners),
            "pricing_comparables": len(self.pricing_comparables),
        }

    def with_partners(self, partners: Iterable[PartnerRecord]) -> "ReferenceCorpus":
        """New snapshot with the partner segment replaced."""
        return self.subset(partners=partners)

    def subset(
        self,
        indications: Optional[Iterable[IndicationRecord]] = None,
        pharma_competitors: Optional[Iterable[PharmaCompetitor]] = None,
        device_competitors: Optional[Iterable[DeviceCompetitor]] = None,
        diagnostic_competitors: Optional[Iterable[DiagnosticCompetitor]] = None,
        partners: Optional[Iterable[PartnerRecord]] = None,
        pricing_comparables: Optional[Iterable[PricingComparable]] = None,
    ) -> "ReferenceCorpus":
        """
        New snapshot with the given segments replaced (None keeps the
        current segment). Phase distributions are re-derived and the
        manifest gets a content hash of its own.
        """
        new_indications = tuple(self.indications if indications is None else indications)
        new_pharma = tuple(self.pharma_competitors if pharma_competitors is None else pharma_competitors)
        new_device = tuple(self.device_competitors if device_competitors is None else device_competitors)
        new_dx = tuple(self.diagnostic_competitors if diagnostic_competitors is None else diagnostic_competitors)
        new_partners = tuple(self.partners if partners is None else partners)
        new_pricing = tuple(self.pricing_comparables if pricing_comparables is None else pricing_comparables)

        new_indications = attach_phase_distribution(new_indications, new_pharma)
        identity = {
            "base": self.manifest.content_hash,
            "indications": [r.name for r in new_indications],
            "pharma": [[c.company, c.asset_name] for c in new_pharma],
            "device": [[c.company, c.device_name] for c in new_device],
            "diagnostic": [[c.company, c.test_name] for c in new_dx],
            "partners": [p.company for p in new_partners],
            "pricing": [p.drug_name for p in new_pricing],
        }
        manifest = replace(
            self.manifest,
            corpus_version=f"{self.manifest.corpus_version}+subset",
            content_hash=hash_canonical_json_short(identity),
        )
        return ReferenceCorpus(
            manifest=manifest,
            indications=new_indications,
            pharma_competitors=new_pharma,
            device_competitors=new_device,
            diagnostic_competitors=new_dx,
            partners=new_partners,
            pricing_comparables=new_pricing,
        )


def build_indication_keys(indications: Iterable[IndicationRecord]) -> Dict[str, Tuple[str, ...]]:
    """
    Normalized spelling -> canonical indication names carrying it.

    Owners whose canonical name is the spelling come first, so a label that
    is one indication's name and another's alias maps to the former.
    """
    keys: Dict[str, List[str]] = defaultdict(list)
    for record in indications:
        for spelling in (record.name,) + record.aliases:
            key = normalize_text(spelling)
            if not key or record.name in keys[key]:
                continue
            if normalize_text(record.name) == key:
                keys[key].insert(0, record.name)
            else:
                keys[key].append(record.name)
    return {key: tuple(names) for key, names in keys.items()}


def _match_indication_key(text: str, keys: Mapping[str, Sequence[str]]) -> Optional[str]:
    """
    Canonical indication for a free-text label: exact normalized match,
    then the label with any parenthetical qualifier removed
    ("NSCLC (KRAS G12C)" -> "NSCLC"). First canonical name wins on ties.
    """
    for candidate in (text, text.split("(")[0]):
        names = keys.get(normalize_text(candidate))
        if names:
            return names[0]
    return None


# ============================================================================
# DERIVATIONS
# ============================================================================

def extrapolate_territories(us_value: int) -> Dict[str, int]:
    """US count -> counts per territory at the US per-capita rate."""
    us = Decimal(us_value)
    result = {}
    for territory in TERRITORIES:
        scaled = us * TERRITORY_POPULATION_M[territory] / TERRITORY_POPULATION_M["US"]
        result[territory] = int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return result


def compute_unmet_need(diagnosis_rate: Decimal, treatment_rate: Decimal) -> Decimal:
    """0-100 unmet need from diagnosis and treatment rates (0-1)."""
    raw = Decimal("100") * (
        (Decimal("1") - treatment_rate) * UNMET_TREATMENT_WEIGHT
        + (Decimal("1") - diagnosis_rate) * UNMET_DIAGNOSIS_WEIGHT
    )
    return quantize(raw, TENTH)


def phase_distribution_for(competitors: Iterable[PharmaCompetitor]) -> Dict[str, int]:
    counts = Counter(PHASE_BUCKETS[c.phase] for c in competitors)
    return {bucket: counts.get(bucket, 0) for bucket in PHASE_BUCKET_NAMES}


def attach_phase_distribution(
    indications: Sequence[IndicationRecord],
    pharma_competitors: Sequence[PharmaCompetitor],
) -> Tuple[IndicationRecord, ...]:
    """Re-derive each indication's phase_distribution from the pharma table."""
    by_indication: Dict[str, List[PharmaCompetitor]] = defaultdict(list)
    for competitor in pharma_competitors:
        by_indication[competitor.indication].append(competitor)
    return tuple(
        replace(record, phase_distribution=_frozen_map(phase_distribution_for(by_indication.get(record.name, ()))))
        for record in indications
    )


def derive_financial_tier(market_cap_b: Decimal, params: Dict[str, Any]) -> str:
    """mega / large / mid / small / emerging from market cap ($B)."""
    return band_from_params(market_cap_b, params["bands"]["financial_tier"])


# ============================================================================
# RECORD BUILDERS
# ============================================================================

def _context(source: str, index: int) -> str:
    return f"{source}[{index}]"


def _require_text(raw: Dict[str, Any], key: str, where: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value.strip():
        raise CorpusLoadError(f"{where}: '{key}' is required and must be non-blank")
    return value.strip()


def _text(raw: Dict[str, Any], key: str) -> str:
    value = raw.get(key)
    return value.strip() if isinstance(value, str) else ""


def _text_tuple(raw: Dict[str, Any], key: str, where: str) -> Tuple[str, ...]:
    value = raw.get(key) or []
    if not isinstance(value, list):
        raise CorpusLoadError(f"{where}: '{key}' must be a list")
    return tuple(str(item).strip() for item in value if str(item).strip())


def _number(raw: Dict[str, Any], key: str, where: str, required: bool = True) -> Optional[Decimal]:
    value = raw.get(key)
    if value is None and not required:
        return None
    dec_value = to_decimal(value)
    if dec_value is None or not dec_value.is_finite():
        raise CorpusLoadError(f"{where}: '{key}' must be a number, got {value!r}")
    return dec_value


def _int(raw: Dict[str, Any], key: str, where: str, default: Optional[int] = None) -> int:
    value = raw.get(key, default)
    if value is None:
        if default is not None:
            return default
        raise CorpusLoadError(f"{where}: '{key}' is required")
    dec_value = to_decimal(value)
    if dec_value is None or dec_value < 0:
        raise CorpusLoadError(f"{where}: '{key}' must be a non-negative integer, got {value!r}")
    return int(dec_value)


def _rate(raw: Dict[str, Any], key: str, where: str) -> Decimal:
    rate = _number(raw, key, where)
    if rate < 0 or rate > 1:
        raise CorpusLoadError(f"{where}: '{key}' must be within [0, 1], got {rate}")
    return rate


def _stored_score(raw: Dict[str, Any], key: str, where: str) -> Decimal:
    """Stored 1-10 score, clamped with a warning when out of range."""
    value = _number(raw, key, where)
    clamped = clamp_1_10(value)
    if clamped != quantize(value, TENTH):
        logger.warning(f"{where}: {key}={value} outside [1, 10], clamped to {clamped}")
    return clamped


def build_indication(raw: Dict[str, Any], where: str) -> IndicationRecord:
    name = _require_text(raw, "name", where)
    where = f"{where} ({name})"
    diagnosis_rate = _rate(raw, "diagnosis_rate", where)
    treatment_rate = _rate(raw, "treatment_rate", where)

    categories = _text_tuple(raw, "product_categories", where)
    unknown = [c for c in categories if c not in PRODUCT_CATEGORIES]
    if unknown:
        raise CorpusLoadError(f"{where}: unknown product categories {unknown}")

    prevalence = extrapolate_territories(_int(raw, "us_prevalence", where))
    incidence = extrapolate_territories(_int(raw, "us_incidence", where, default=0))

    return IndicationRecord(
        name=name,
        aliases=_text_tuple(raw, "aliases", where),
        therapy_area=_require_text(raw, "therapy_area", where).lower(),
        icd10_codes=_text_tuple(raw, "icd10_codes", where),
        prevalence=_frozen_map(prevalence),
        incidence=_frozen_map(incidence),
        global_prevalence=sum(prevalence.values()),
        global_incidence=sum(incidence.values()),
        cagr_5yr=_number(raw, "cagr_5yr", where),
        diagnosis_rate=diagnosis_rate,
        treatment_rate=treatment_rate,
        unmet_need=compute_unmet_need(diagnosis_rate, treatment_rate),
        product_categories=categories,
        prevalence_source=_text(raw, "prevalence_source"),
        market_growth_driver=_text(raw, "market_growth_driver"),
        pricing_context=_text(raw, "pricing_context"),
    )


def build_pharma_competitor(
    raw: Dict[str, Any],
    where: str,
    indication_keys: Mapping[str, Sequence[str]],
) -> PharmaCompetitor:
    asset = _require_text(raw, "asset_name", where)
    where = f"{where} ({asset})"
    indication_text = _require_text(raw, "indication", where)
    names = indication_keys.get(normalize_text(indication_text))
    if not names:
        raise CorpusLoadError(f"{where}: indication '{indication_text}' does not map to any indication record")

    phase = _require_text(raw, "phase", where)
    if phase not in PHARMA_PHASE_ORDER:
        raise CorpusLoadError(f"{where}: unknown phase '{phase}'")

    return PharmaCompetitor(
        company=_require_text(raw, "company", where),
        asset_name=asset,
        indication=names[0],
        indication_specifics=_text(raw, "indication_specifics"),
        mechanism=_text(raw, "mechanism"),
        mechanism_category=_text(raw, "mechanism_category") or "unspecified",
        phase=phase,
        first_in_class=bool(raw.get("first_in_class", False)),
        orphan_drug=bool(raw.get("orphan_drug", False)),
        has_biomarker_selection=bool(raw.get("has_biomarker_selection", False)),
        strengths=_text_tuple(raw, "strengths", where),
        weaknesses=_text_tuple(raw, "weaknesses", where),
        source=_text(raw, "source"),
        partner=_text(raw, "partner"),
        key_data=_text(raw, "key_data"),
    )


def build_device_competitor(raw: Dict[str, Any], where: str) -> DeviceCompetitor:
    device = _require_text(raw, "device_name", where)
    where = f"{where} ({device})"
    share = _number(raw, "estimated_market_share_pct", where, required=False)
    if share is not None and (share < 0 or share > 100):
        raise CorpusLoadError(f"{where}: estimated_market_share_pct must be within [0, 100], got {share}")

    return DeviceCompetitor(
        company=_require_text(raw, "company", where),
        device_name=device,
        device_category=_require_text(raw, "device_category", where),
        procedure_or_condition=_require_text(raw, "procedure_or_condition", where),
        regulatory_status=_require_text(raw, "regulatory_status", where),
        pathway=_text(raw, "pathway"),
        technology_type=_require_text(raw, "technology_type", where),
        technology_readiness=_text(raw, "technology_readiness") or "commercial",
        clinical_evidence_level=_text(raw, "clinical_evidence_level") or "bench_only",
        reimbursement_status=_text(raw, "reimbursement_status") or "none",
        installed_base_estimate=_int(raw, "installed_base_estimate", where, default=0),
        estimated_market_share_pct=share,
        asp_estimate=_number(raw, "asp_estimate", where, required=False),
        differentiation_score=_stored_score(raw, "differentiation_score", where),
        evidence_strength=_stored_score(raw, "evidence_strength", where),
        clearance_date=_text(raw, "clearance_date"),
        k_number_or_pma=_text(raw, "k_number_or_pma"),
        strengths=_text_tuple(raw, "strengths", where),
        weaknesses=_text_tuple(raw, "weaknesses", where),
        source=_text(raw, "source"),
    )


def build_diagnostic_competitor(raw: Dict[str, Any], where: str) -> DiagnosticCompetitor:
    test = _require_text(raw, "test_name", where)
    where = f"{where} ({test})"
    biomarkers = _text_tuple(raw, "biomarkers_covered", where)
    if not biomarkers:
        raise CorpusLoadError(f"{where}: test covers no biomarkers")

    turnaround = raw.get("turnaround_days")
    return DiagnosticCompetitor(
        company=_require_text(raw, "company", where),
        test_name=test,
        platform=_require_text(raw, "platform", where),
        biomarkers_covered=biomarkers,
        linked_drugs=_text_tuple(raw, "linked_drugs", where),
        regulatory_status=_require_text(raw, "regulatory_status", where),
        genes_in_panel=_int(raw, "genes_in_panel", where, default=0),
        estimated_annual_test_volume=_int(raw, "estimated_annual_test_volume", where, default=0),
        differentiation_score=_stored_score(raw, "differentiation_score", where),
        evidence_strength=_stored_score(raw, "evidence_strength", where),
        indications=_text_tuple(raw, "indications", where),
        turnaround_days=None if turnaround is None else _int(raw, "turnaround_days", where),
        test_price_estimate=_number(raw, "test_price_estimate", where, required=False),
        sample_type=_text_tuple(raw, "sample_type", where),
        estimated_revenue_m=_number(raw, "estimated_revenue_m", where, required=False),
        strengths=_text_tuple(raw, "strengths", where),
        weaknesses=_text_tuple(raw, "weaknesses", where),
        source=_text(raw, "source"),
    )


def _weight_map(raw: Dict[str, Any], key: str, where: str) -> Dict[str, Decimal]:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise CorpusLoadError(f"{where}: '{key}' must be an object")
    weights = {}
    for area, weight in value.items():
        dec_weight = to_decimal(weight)
        if dec_weight is None or dec_weight < 0:
            raise CorpusLoadError(f"{where}: {key}.{area} must be a non-negative number, got {weight!r}")
        weights[str(area).lower()] = dec_weight
    return weights


def build_partner(raw: Dict[str, Any], where: str, params: Dict[str, Any]) -> PartnerRecord:
    company = _require_text(raw, "company", where)
    where = f"{where} ({company})"

    company_type = _require_text(raw, "company_type", where)
    if company_type not in COMPANY_TYPES:
        raise CorpusLoadError(f"{where}: unknown company_type '{company_type}'")
    bd_activity = _text(raw, "bd_activity") or "moderate"
    if bd_activity not in BD_ACTIVITY_LEVELS:
        raise CorpusLoadError(f"{where}: unknown bd_activity '{bd_activity}'")

    market_cap = _number(raw, "market_cap_b", where)
    tier = _text(raw, "financial_tier") or derive_financial_tier(market_cap, params)

    deals = []
    for deal_index, deal in enumerate(raw.get("recent_deals") or []):
        deal_where = f"{where}.recent_deals[{deal_index}]"
        deals.append(PartnerDeal(
            partner=_text(deal, "partner"),
            indication=_text(deal, "indication"),
            deal_type=_require_text(deal, "deal_type", deal_where).lower(),
            upfront_m=_number(deal, "upfront_m", deal_where, required=False),
            total_value_m=_number(deal, "total_value_m", deal_where, required=False),
            year=_int(deal, "year", deal_where),
        ))

    density = {area: int(count) for area, count in _weight_map(raw, "pipeline_density", where).items()}

    return PartnerRecord(
        company=company,
        company_type=company_type,
        headquarters=_text(raw, "headquarters"),
        market_cap_b=market_cap,
        financial_tier=tier,
        therapeutic_focus=_frozen_map(_weight_map(raw, "therapeutic_focus", where)),
        pipeline_density=_frozen_map(density),
        pipeline_focus=_text_tuple(raw, "pipeline_focus", where),
        strategic_priorities=_text_tuple(raw, "strategic_priorities", where),
        bd_activity=bd_activity,
        preferred_deal_stages=_text_tuple(raw, "preferred_deal_stages", where),
        geography_footprint=_text_tuple(raw, "geography_footprint", where),
        recent_deals=tuple(deals),
    )


def build_pricing_comparable(raw: Dict[str, Any], where: str) -> PricingComparable:
    return PricingComparable(
        drug_name=_require_text(raw, "drug_name", where),
        company=_text(raw, "company"),
        indication=_require_text(raw, "indication", where),
        therapy_area=_require_text(raw, "therapy_area", where).lower(),
        mechanism_class=_text(raw, "mechanism_class"),
        launch_year=_int(raw, "launch_year", where, default=0),
        us_launch_wac_annual=_number(raw, "us_launch_wac_annual", where, required=False),
        current_list_price=_number(raw, "current_list_price", where, required=False),
        orphan_drug=bool(raw.get("orphan_drug", False)),
        first_in_class=bool(raw.get("first_in_class", False)),
    )


# ============================================================================
# LOADING
# ============================================================================

def resolve_data_dir(data_dir: Optional[Union[str, Path]] = None) -> Path:
    """Explicit argument, then $OPPORTUNITY_ENGINE_DATA_DIR, then data/corpus/."""
    if data_dir is not None:
        return Path(data_dir)
    env_dir = os.environ.get(DATA_DIR_ENV)
    if env_dir:
        return Path(env_dir)
    return DEFAULT_DATA_DIR


def _read_json(path: Path) -> Any:
    if not path.exists():
        raise CorpusLoadError(f"Corpus file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f, parse_float=Decimal)
    except json.JSONDecodeError as e:
        raise CorpusLoadError(f"Invalid JSON in {path}: {e}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise CorpusLoadError(f"Error reading {path}: {e}") from e


def _read_records(path: Path) -> List[Dict[str, Any]]:
    data = _read_json(path)
    if not isinstance(data, list) or not all(isinstance(r, dict) for r in data):
        raise CorpusLoadError(f"{path.name} must contain a JSON array of objects")
    return data


def load_manifest(data_dir: Path) -> CorpusManifest:
    """Read manifest.json and verify every listed file hash."""
    raw = _read_json(data_dir / MANIFEST_FILE)
    if not isinstance(raw, dict):
        raise CorpusLoadError(f"{MANIFEST_FILE} must be a JSON object")

    version = raw.get("corpus_version")
    if not isinstance(version, str) or not version:
        raise CorpusLoadError(f"{MANIFEST_FILE}: 'corpus_version' is required")
    try:
        as_of = date.fromisoformat(str(raw.get("as_of_date")))
    except ValueError as e:
        raise CorpusLoadError(f"{MANIFEST_FILE}: invalid as_of_date {raw.get('as_of_date')!r}") from e

    expected = raw.get("files") or {}
    file_hashes = {}
    for filename in sorted(CORPUS_FILES.values()):
        actual = hash_file(data_dir / filename) if (data_dir / filename).exists() else None
        if actual is None:
            raise CorpusLoadError(f"Corpus file not found: {data_dir / filename}")
        listed = expected.get(filename)
        if listed is None:
            raise CorpusLoadError(f"{MANIFEST_FILE} has no hash for {filename}")
        if not hash_matches(actual, listed):
            raise CorpusLoadError(
                f"Hash mismatch for {filename}: manifest {listed}, file {actual}. "
                f"Refresh the manifest with scripts/build_indication_corpus.py --refresh-manifest"
            )
        file_hashes[filename] = actual

    return CorpusManifest(
        corpus_version=version,
        as_of_date=as_of,
        file_hashes=_frozen_map(file_hashes),
        content_hash=combine_file_hashes(file_hashes),
    )


def write_manifest(
    data_dir: Union[str, Path],
    corpus_version: str,
    as_of_date: Union[str, date],
    description: str = "",
) -> Dict[str, Any]:
    """(Re)write manifest.json with the current file hashes."""
    data_dir = Path(data_dir)
    files = hash_corpus_files(data_dir, CORPUS_FILES.values())
    manifest = {
        "as_of_date": as_of_date.isoformat() if isinstance(as_of_date, date) else str(as_of_date),
        "corpus_version": corpus_version,
        "files": files,
    }
    if description:
        manifest["description"] = description
    with open(data_dir / MANIFEST_FILE, "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True)
        f.write("\n")
    return manifest


def load_corpus(
    data_dir: Optional[Union[str, Path]] = None,
    params: Optional[Dict[str, Any]] = None,
) -> ReferenceCorpus:
    """
    Load and validate every corpus file into a new ReferenceCorpus.

    Args:
        data_dir: Corpus directory (default: $OPPORTUNITY_ENGINE_DATA_DIR or data/corpus/)
        params: Scoring params (default: params_archive/scoring_v1.json)

    Raises:
        CorpusLoadError: Missing file, bad JSON, hash mismatch or invariant violation
    """
    data_dir = resolve_data_dir(data_dir)
    if params is None:
        params, _ = load_and_validate_params()

    manifest = load_manifest(data_dir)

    indications = []
    seen_names = set()
    for index, raw in enumerate(_read_records(data_dir / CORPUS_FILES["indications"])):
        record = build_indication(raw, _context(CORPUS_FILES["indications"], index))
        if record.name in seen_names:
            raise CorpusLoadError(f"Duplicate indication name: {record.name}")
        seen_names.add(record.name)
        indications.append(record)

    indication_keys = build_indication_keys(indications)

    pharma = [
        build_pharma_competitor(raw, _context(CORPUS_FILES["pharma"], i), indication_keys)
        for i, raw in enumerate(_read_records(data_dir / CORPUS_FILES["pharma"]))
    ]
    device = [
        build_device_competitor(raw, _context(CORPUS_FILES["device"], i))
        for i, raw in enumerate(_read_records(data_dir / CORPUS_FILES["device"]))
    ]
    diagnostic = [
        build_diagnostic_competitor(raw, _context(CORPUS_FILES["diagnostic"], i))
        for i, raw in enumerate(_read_records(data_dir / CORPUS_FILES["diagnostic"]))
    ]
    partners = [
        build_partner(raw, _context(CORPUS_FILES["partners"], i), params)
        for i, raw in enumerate(_read_records(data_dir / CORPUS_FILES["partners"]))
    ]
    pricing = [
        build_pricing_comparable(raw, _context(CORPUS_FILES["pricing"], i))
        for i, raw in enumerate(_read_records(data_dir / CORPUS_FILES["pricing"]))
    ]

    corpus = ReferenceCorpus(
        manifest=manifest,
        indications=attach_phase_distribution(indications, pharma),
        pharma_competitors=tuple(pharma),
        device_competitors=tuple(device),
        diagnostic_competitors=tuple(diagnostic),
        partners=tuple(partners),
        pricing_comparables=tuple(pricing),
    )

    logger.info(
        f"Loaded corpus {manifest.corpus_version} (as of {manifest.as_of_date.isoformat()}, "
        f"hash {manifest.content_hash}) from {data_dir}: {corpus.counts()}"
    )
    return corpus


# ============================================================================
# PUBLISHED SNAPSHOT
# ============================================================================

class CorpusHandle:
    """
    Single indirection to the current ReferenceCorpus snapshot.

    reload() builds the replacement completely before publishing it with
    one reference assignment; a failed build re-raises and leaves the old
    snapshot in place.

    Usage:
        handle = CorpusHandle()
        corpus = handle.current()
        handle.reload()
    """

    def __init__(
        self,
        data_dir: Optional[Union[str, Path]] = None,
        loader: Callable[[Optional[Union[str, Path]]], ReferenceCorpus] = load_corpus,
        snapshot: Optional[ReferenceCorpus] = None,
    ):
        self._data_dir = data_dir
        self._loader = loader
        self._lock = threading.Lock()
        self._snapshot: Optional[ReferenceCorpus] = snapshot
        self.reload_count = 0

    @classmethod
    def from_snapshot(cls, snapshot: ReferenceCorpus) -> "CorpusHandle":
        return cls(snapshot=snapshot)

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    def current(self) -> ReferenceCorpus:
        """Published snapshot, loading it on first use."""
        snapshot = self._snapshot
        if snapshot is not None:
            return snapshot
        with self._lock:
            if self._snapshot is None:
                self._snapshot = self._loader(self._data_dir)
            return self._snapshot

    def reload(self, data_dir: Optional[Union[str, Path]] = None) -> ReferenceCorpus:
        """
        Build a fresh snapshot and publish it atomically.

        Raises:
            CorpusLoadError: The new snapshot failed to build (old one stays published)
        """
        target = data_dir if data_dir is not None else self._data_dir
        try:
            fresh = self._loader(target)
        except CorpusLoadError:
            logger.error(f"Corpus reload from {target or 'default location'} failed; keeping current snapshot")
            raise

        with self._lock:
            previous = self._snapshot
            self._snapshot = fresh
            self._data_dir = target
            self.reload_count += 1

        if previous is not None and previous.content_hash == fresh.content_hash:
            logger.info(f"Corpus reload: content unchanged (hash {fresh.content_hash})")
        else:
            logger.info(
                f"Corpus reload: published {fresh.corpus_version} (hash {fresh.content_hash})"
            )
        return fresh

    def publish(self, snapshot: ReferenceCorpus) -> None:
        """Publish an already-built snapshot."""
        with self._lock:
            self._snapshot = snapshot


_default_handle = CorpusHandle()


def get_default_handle() -> CorpusHandle:
    return _default_handle


def as_handle(source: Optional[Union[CorpusHandle, ReferenceCorpus]] = None) -> CorpusHandle:
    """Handle for an analyzer: the default handle, a given handle, or a pinned snapshot."""
    if source is None:
        return _default_handle
    if isinstance(source, CorpusHandle):
        return source
    if isinstance(source, ReferenceCorpus):
        return CorpusHandle.from_snapshot(source)
    raise TypeError(f"Expected CorpusHandle or ReferenceCorpus, got {type(source).__name__}")


def get_corpus() -> ReferenceCorpus:
    """Current process-wide corpus snapshot (lazily loaded)."""
    return _default_handle.current()


def reload_corpus(data_dir: Optional[Union[str, Path]] = None) -> ReferenceCorpus:
    """Rebuild and atomically publish the process-wide snapshot."""
    return _default_handle.reload(data_dir)


if __name__ == "__main__":
    from common.logging_config import settings_from_env, setup_logging
    setup_logging(**settings_from_env())

    print("=" * 70)
    print("REFERENCE CORPUS v1.0.0 - DEMONSTRATION")
    print("=" * 70)

    corpus = get_corpus()
    print(f"\nCorpus {corpus.corpus_version} as of {corpus.as_of_date} (hash {corpus.content_hash})")
    for name, count in corpus.counts().items():
        print(f"  {name:<24} {count:>5}")

    for record in corpus.lookup_indication("NSCLC"):
        print(f"\n{record.name} ({record.therapy_area})")
        print(f"  Global prevalence: {record.global_prevalence:,}")
        print(f"  Unmet need:        {record.unmet_need}")
        print(f"  Pipeline:          {dict(record.phase_distribution)}")
