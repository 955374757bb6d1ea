#!/usr/bin/env python3
"""
Tests for cdx_landscape_engine.py

Biomarker lookups, the crowding composite, and PD-L1 / fallback analyses
against the shipped corpus.
"""

import pytest
from decimal import Decimal

from cdx_landscape_engine import (
    BIOMARKER_DRUG_MAP,
    CDxLandscapeEngine,
    analyze_cdx_landscape,
    biomarker_key,
    compute_cdx_crowding,
    drug_revenue,
    drugs_for_biomarker,
    format_volume,
    revenue_dependency,
    testing_rate as _testing_rate,
)
from common.input_validation import InvalidInputError


PD_L1_APPROVED = ["PD-L1 IHC 22C3 pharmDx", "VENTANA PD-L1 (SP142)", "VENTANA PD-L1 (SP263)"]
PD_L1_PIPELINE = {"Tempus xT", "Caris Molecular Intelligence (MI)"}


@pytest.fixture(scope="module")
def engine(corpus):
    return CDxLandscapeEngine(corpus)


class TestBiomarkerLookups:
    """biomarker_key / testing_rate / drug lookups."""

    @pytest.mark.parametrize("entry,key", [
        ("PD-L1 (TPS & CPS)", "PD-L1"),
        ("HER2 amplification", "HER2"),
        ("ERBB2", "HER2"),
        ("ctDNA (MRD)", "MRD"),
        ("BRCA1", "BRCA"),
        ("Oncotype 21-gene score", None),
        ("", None),
    ])
    def test_biomarker_key(self, entry, key):
        assert biomarker_key(entry, BIOMARKER_DRUG_MAP) == key

    def test_testing_rate(self, params):
        assert _testing_rate("PD-L1", params) == 70
        assert _testing_rate("ERBB2", params) == 95
        assert _testing_rate("Zebra marker", params) == 25

    def test_drugs_for_biomarker(self):
        assert "Keytruda" in drugs_for_biomarker("PDL1")["approved"]
        assert drugs_for_biomarker("Zebra marker") == {"approved": (), "pipeline": ()}

    @pytest.mark.parametrize("drug,estimate", [
        ("Keytruda (pembrolizumab)", ("Merck", 25000)),
        ("Tagrisso", ("AstraZeneca", 5500)),
        ("Tafinlar + Mekinist", None),
        ("Unknownib", None),
    ])
    def test_drug_revenue(self, drug, estimate):
        assert drug_revenue(drug) == estimate

    @pytest.mark.parametrize("revenue,level", [(None, "low"), (2500, "high"), (2000, "moderate"), (500, "moderate"), (499, "low")])
    def test_revenue_dependency(self, revenue, level, params):
        assert revenue_dependency(revenue, params["bands"]["cdx_revenue_dependency"]) == level

    @pytest.mark.parametrize("volume,label", [(0, "N/A"), (250000, "250K"), (1200000, "1.2M"), (1500, "2K")])
    def test_format_volume(self, volume, label):
        assert format_volume(volume) == label


class TestCDxCrowding:
    """compute_cdx_crowding composite."""

    def test_pd_l1_like_market(self, make_test, params):
        approved = [make_test(test_name=f"A{i}") for i in range(3)]
        pipeline = [make_test(test_name=f"P{i}", regulatory_status="LDT") for i in range(2)]
        result = compute_cdx_crowding(approved, pipeline, 2, 3899, 70, params)
        assert result["factors"] == {
            "approved_count": Decimal("4"),
            "pipeline_count": Decimal("4"),
            "platform_count": Decimal("4"),
            "hhi": Decimal("3"),
            "penetration": Decimal("8"),
        }
        assert result["crowding_score"] == Decimal("4.6")
        assert result["crowding_label"] == "Moderate"

    def test_floor(self, params):
        result = compute_cdx_crowding([], [], 0, None, 0, params)
        # neutral HHI factor 5, platform and penetration floors 2
        assert result["crowding_score"] == Decimal("1.7")
        assert result["crowding_label"] == "Low"

    def test_saturated_market(self, make_test, params):
        approved = [make_test(test_name=f"A{i}") for i in range(12)]
        pipeline = [make_test(test_name=f"P{i}", regulatory_status="LDT") for i in range(20)]
        result = compute_cdx_crowding(approved, pipeline, 7, 400, 95, params)
        assert result["crowding_score"] == Decimal("10")
        assert result["crowding_label"] == "Extremely High"


class TestAnalyzePDL1:
    """PD-L1: three approved IHC assays and two NGS panels."""

    @pytest.fixture
    def result(self, engine, generated_at):
        return engine.analyze({"biomarker": "PD-L1"}, generated_at=generated_at)

    def test_tests(self, result):
        summary = result["summary"]
        assert result["variant"] == "cdx"
        assert result["resolution"]["retrieval"] == "resolved"
        assert summary["biomarker"] == "PD-L1"
        assert summary["total_tests"] == 5
        assert summary["approved_count"] == 3
        assert summary["pipeline_count"] == 2
        assert [t["test_name"] for t in result["approved_tests"]] == PD_L1_APPROVED
        assert {t["test_name"] for t in result["pipeline_tests"]} == PD_L1_PIPELINE

    def test_crowding(self, result):
        summary = result["summary"]
        assert summary["testing_penetration_pct"] == 70
        assert summary["crowding_score"] == Decimal("4.6")
        assert summary["crowding_label"] == "Moderate"
        assert summary["platform_dominant"] == "IHC"

    def test_platform_comparison(self, result):
        platforms = {p["platform"]: p for p in result["platform_comparison"]}
        assert [p["platform"] for p in result["platform_comparison"]] == ["IHC", "NGS"]
        assert platforms["IHC"]["avg_turnaround_days"] == 2
        assert platforms["IHC"]["avg_price_estimate"] == 343
        assert platforms["IHC"]["biomarker_breadth"] == "narrow"
        assert platforms["NGS"]["biomarker_breadth"] == "broad"
        assert platforms["NGS"]["trend"] == "growing"

    def test_market_share(self, result):
        share = result["market_share"]
        assert share["top_players"][0] == "Agilent (Dako)"
        assert share["hhi_index"] == 3899
        assert share["concentration_label"] == "Highly Concentrated"
        assert share["top_3_share_pct"] == Decimal("88.4")

    def test_testing_landscape(self, result):
        landscape = result["testing_landscape"]
        assert landscape["total_estimated_tests_per_year"] == 2600000
        assert landscape["total_estimated_revenue_m"] == Decimal("1875")
        assert [p["platform"] for p in landscape["by_platform"]] == ["IHC", "NGS"]
        assert landscape["by_platform"][0]["share_pct"] == Decimal("88.5")
        assert landscape["growth_rate_pct"] == Decimal("4.7")

    def test_linked_drug_dependency(self, result):
        dependency = result["linked_drug_dependency"]
        assert [d["drug_name"] for d in dependency] == ["Keytruda", "Imfinzi", "Tecentriq"]
        assert dependency[0]["drug_company"] == "Merck"
        assert {d["cdx_revenue_dependency"] for d in dependency} == {"high"}

    def test_matrix_and_white_space(self, result):
        matrix = result["biomarker_competition_matrix"]
        assert matrix
        assert all(row["competitive_intensity"] in ("low", "moderate", "high", "very_high") for row in matrix)
        white_space = result["summary"]["white_space"]
        assert 1 <= len(white_space) <= 5

    def test_comparable_deals(self, result):
        deals = result["comparable_cdx_deals"]
        assert deals["deals"]
        assert deals["median_deal_value_m"] > 0


class TestAliasSymmetry:
    @pytest.mark.parametrize("query", ["PDL1", "pd-l1", "CD274"])
    def test_same_tests(self, engine, generated_at, query):
        reference = engine.analyze({"biomarker": "PD-L1"}, generated_at=generated_at)
        result = engine.analyze({"biomarker": query}, generated_at=generated_at)
        assert result["summary"] == reference["summary"]
        assert result["approved_tests"] == reference["approved_tests"]


class TestRetrievalPaths:
    """Filters, indication retry and fallback."""

    def test_unknown_biomarker_full_set(self, engine, corpus, generated_at):
        result = engine.analyze({"biomarker": "TOTALLY_UNKNOWN_XYZ"}, generated_at=generated_at)
        assert result["resolution"]["match"] == "NoMatch"
        assert result["resolution"]["retrieval"] == "fallback"
        assert result["summary"]["total_tests"] == len(corpus.diagnostic_competitors)
        assert result["summary"]["biomarker"] == "TOTALLY_UNKNOWN_XYZ"
        assert result["summary"]["testing_penetration_pct"] == 25
        assert Decimal("1") <= result["summary"]["crowding_score"] <= Decimal("10")

    def test_linked_drug_filter(self, engine, generated_at):
        result = engine.analyze(
            {"biomarker": "TOTALLY_UNKNOWN_XYZ", "linked_drug": "Keytruda"}, generated_at=generated_at
        )
        assert result["resolution"]["retrieval"] == "fallback_filters"
        assert result["summary"]["total_tests"] == 2

    def test_test_type_filter(self, engine, generated_at):
        result = engine.analyze({"biomarker": "TOTALLY_UNKNOWN_XYZ", "test_type": "ihc"}, generated_at=generated_at)
        assert result["summary"]["total_tests"] == 5

    def test_indication_retry(self, engine, generated_at):
        result = engine.analyze(
            {"biomarker": "TOTALLY_UNKNOWN_XYZ", "indication": "breast"}, generated_at=generated_at
        )
        assert result["resolution"]["retrieval"] == "indication"
        names = {t["test_name"] for t in result["approved_tests"] + result["pipeline_tests"]}
        assert names <= {"Oncotype DX Breast", "MammaPrint"}
        assert result["summary"]["total_tests"] == 2

    def test_empty_segment(self, corpus, generated_at):
        result = analyze_cdx_landscape(
            {"biomarker": "PD-L1"}, corpus=corpus.subset(diagnostic_competitors=[]), generated_at=generated_at
        )
        summary = result["summary"]
        assert summary["total_tests"] == 0
        assert summary["crowding_score"] == Decimal("1")
        assert summary["crowding_label"] == "Low"
        assert summary["white_space"] == [
            "No diagnostic tests found for PD-L1 — a first validated CDx could anchor companion "
            "labeling for linked therapies."
        ]
        assert result["comparable_cdx_deals"] == {"deals": [], "median_deal_value_m": 0}

    def test_missing_biomarker(self, engine):
        with pytest.raises(InvalidInputError):
            engine.analyze({"test_type": "NGS"})
