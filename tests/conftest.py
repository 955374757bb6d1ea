#!/usr/bin/env python3
"""
Shared test fixtures for the opportunity scoring engine test suite.

Provides:
- The shipped reference corpus and scoring params (session scoped)
- Factories for synthetic corpus records
- A writable copy of the corpus directory for load/reload tests
- A fixed generated_at timestamp for deterministic results
"""

import shutil
import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict

import pytest

# Add parent to path for module imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from governance.params_loader import load_and_validate_params  # noqa: E402
from reference_corpus import (  # noqa: E402
    DEFAULT_DATA_DIR,
    DeviceCompetitor,
    DiagnosticCompetitor,
    PartnerDeal,
    PartnerRecord,
    PharmaCompetitor,
    ReferenceCorpus,
    load_corpus,
)


# ============================================================================
# SHIPPED DATA
# ============================================================================

@pytest.fixture(scope="session")
def params_pair():
    return load_and_validate_params()


@pytest.fixture(scope="session")
def params(params_pair) -> Dict[str, Any]:
    return params_pair[0]


@pytest.fixture(scope="session")
def corpus() -> ReferenceCorpus:
    """The shipped corpus, loaded once per test session."""
    return load_corpus()


@pytest.fixture
def generated_at() -> datetime:
    """Fixed result timestamp for deterministic output."""
    return datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def corpus_dir(tmp_path) -> Path:
    """Writable copy of data/corpus."""
    target = tmp_path / "corpus"
    shutil.copytree(DEFAULT_DATA_DIR, target)
    return target


# ============================================================================
# SYNTHETIC RECORDS
# ============================================================================

@pytest.fixture
def make_pharma() -> Callable[..., PharmaCompetitor]:
    def factory(**overrides) -> PharmaCompetitor:
        fields = {
            "company": "Acme Therapeutics",
            "asset_name": "ACM-001",
            "indication": "Non-Small Cell Lung Cancer",
            "indication_specifics": "",
            "mechanism": "PD-1 inhibitor",
            "mechanism_category": "checkpoint_inhibitor_pd1",
            "phase": "Phase 2",
        }
        fields.update(overrides)
        return PharmaCompetitor(**fields)
    return factory


@pytest.fixture
def make_device() -> Callable[..., DeviceCompetitor]:
    def factory(**overrides) -> DeviceCompetitor:
        fields = {
            "company": "Acme Medical",
            "device_name": "AcmeValve",
            "device_category": "structural_heart",
            "procedure_or_condition": "TAVR / transcatheter aortic valve replacement",
            "regulatory_status": "approved",
            "pathway": "PMA",
            "technology_type": "balloon_expandable",
            "technology_readiness": "commercial",
            "clinical_evidence_level": "rct",
            "reimbursement_status": "established",
            "installed_base_estimate": 1000,
            "estimated_market_share_pct": None,
            "asp_estimate": Decimal("30000"),
            "differentiation_score": Decimal("6.0"),
            "evidence_strength": Decimal("7.0"),
        }
        fields.update(overrides)
        return DeviceCompetitor(**fields)
    return factory


@pytest.fixture
def make_test() -> Callable[..., DiagnosticCompetitor]:
    def factory(**overrides) -> DiagnosticCompetitor:
        fields = {
            "company": "Acme Dx",
            "test_name": "AcmeSeq PD-L1",
            "platform": "IHC",
            "biomarkers_covered": ("PD-L1",),
            "linked_drugs": ("Keytruda",),
            "regulatory_status": "PMA_approved",
            "genes_in_panel": 1,
            "estimated_annual_test_volume": 100000,
            "differentiation_score": Decimal("6.0"),
            "evidence_strength": Decimal("8.0"),
            "turnaround_days": 3,
            "test_price_estimate": Decimal("350"),
        }
        fields.update(overrides)
        return DiagnosticCompetitor(**fields)
    return factory


@pytest.fixture
def make_partner() -> Callable[..., PartnerRecord]:
    def factory(**overrides) -> PartnerRecord:
        fields = {
            "company": "Acme Pharma",
            "company_type": "big_pharma",
            "headquarters": "Boston, US",
            "market_cap_b": Decimal("150"),
            "financial_tier": "mega",
            "therapeutic_focus": {"oncology": Decimal("1"), "immunology": Decimal("0.5")},
            "pipeline_density": {"oncology": 10, "immunology": 4},
            "pipeline_focus": ("lung cancer", "ADC oncology"),
            "strategic_priorities": ("oncology", "adc"),
            "bd_activity": "active",
            "preferred_deal_stages": ("phase2", "phase3"),
            "geography_footprint": ("US", "EU"),
            "recent_deals": (
                PartnerDeal(
                    partner="Small Bio",
                    indication="Non-Small Cell Lung Cancer",
                    deal_type="licensing",
                    upfront_m=Decimal("200"),
                    total_value_m=Decimal("1500"),
                    year=2024,
                ),
            ),
        }
        fields.update(overrides)
        return PartnerRecord(**fields)
    return factory
