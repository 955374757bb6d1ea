#!/usr/bin/env python3
"""
Tests for competitive_landscape_engine.py

Unit tests for the pharma scoring functions, then end-to-end analyses
against the shipped corpus (resolution, fallback, phase filter, empty
segment, determinism).
"""

import pytest
from collections import Counter
from datetime import datetime, timezone
from decimal import Decimal

from common.input_validation import InvalidInputError
from competitive_landscape_engine import (
    MAX_WHITE_SPACE,
    CompetitiveLandscapeEngine,
    analyze_landscape,
    compute_pharma_crowding,
    dedupe,
    detect_lines_of_therapy,
    percent,
    pharma_white_space,
    score_differentiation,
    score_evidence,
    share_weight,
)
from governance.canonical_json import canonical_dumps
from reference_corpus import CorpusHandle


NSCLC = "Non-Small Cell Lung Cancer"


@pytest.fixture(scope="module")
def engine(corpus):
    return CompetitiveLandscapeEngine(corpus)


# ============================================================================
# SCORING FUNCTIONS
# ============================================================================

class TestScoreDifferentiation:
    """5 base, feature bonuses, mechanism-class uniqueness."""

    def test_all_bonuses_unique_class(self, make_pharma):
        asset = make_pharma(first_in_class=True, orphan_drug=True, has_biomarker_selection=True)
        assert score_differentiation(asset, Counter({asset.mechanism_category: 1})) == Decimal("10")

    def test_plain_unique(self, make_pharma):
        asset = make_pharma()
        assert score_differentiation(asset, Counter({asset.mechanism_category: 1})) == Decimal("6")

    @pytest.mark.parametrize("same,expected", [(2, "4"), (3, "3"), (4, "2"), (12, "2")])
    def test_shared_class_penalty_capped(self, make_pharma, same, expected):
        asset = make_pharma()
        assert score_differentiation(asset, Counter({asset.mechanism_category: same})) == Decimal(expected)


class TestScoreEvidence:
    @pytest.mark.parametrize("phase,expected", [
        ("Approved", "8"), ("Phase 3", "6"), ("Phase 2", "4"), ("Preclinical", "1"),
    ])
    def test_phase_evidence(self, make_pharma, params, phase, expected):
        assert score_evidence(make_pharma(phase=phase), params) == Decimal(expected)


class TestPharmaCrowding:
    """compute_pharma_crowding."""

    def test_empty_segment(self, params):
        result = compute_pharma_crowding([], params)
        assert result["crowding_score"] == Decimal("1")
        assert result["crowding_label"] == "Low"
        assert result["weighted_count"] == Decimal("0")
        assert result["dominant_mechanism_share"] is None
        assert result["late_stage_count"] == 0

    def test_single_early_asset(self, make_pharma, params):
        # 0.3 weighted -> 2, one class holds 100% -> +1
        result = compute_pharma_crowding([make_pharma(phase="Phase 1")], params)
        assert result["base_score"] == Decimal("2")
        assert result["crowding_score"] == Decimal("3")
        assert result["crowding_label"] == "Low"

    def test_balanced_approved_pair(self, make_pharma, params):
        assets = [
            make_pharma(asset_name="A", phase="Approved", mechanism_category="adc"),
            make_pharma(asset_name="B", phase="Approved", mechanism_category="bispecific"),
        ]
        result = compute_pharma_crowding(assets, params)
        assert result["weighted_count"] == Decimal("4.00")
        assert result["crowding_score"] == Decimal("4")
        assert result["crowding_label"] == "Moderate"

    def test_deep_late_stage_fragmented(self, make_pharma, params):
        assets = [
            make_pharma(asset_name=f"P3-{i}", phase="Phase 3", mechanism_category=f"class_{i}")
            for i in range(5)
        ]
        result = compute_pharma_crowding(assets, params)
        # 7.5 weighted -> 5, 20% share -> -1, five late-stage -> +1
        assert result["base_score"] == Decimal("5")
        assert result["late_stage_count"] == 5
        assert result["crowding_score"] == Decimal("5")

    def test_saturated_market_clamped(self, make_pharma, params):
        assets = [make_pharma(asset_name=f"A{i}", phase="Approved") for i in range(40)]
        result = compute_pharma_crowding(assets, params)
        assert result["crowding_score"] == Decimal("10")
        assert result["crowding_label"] == "Extremely High"


class TestShareWeight:
    def test_approved_bonus(self, make_pharma, params):
        asset = make_pharma(phase="Approved")
        assert share_weight(asset, Decimal("8"), Decimal("5"), params) == Decimal("180")

    def test_pipeline_no_bonus(self, make_pharma, params):
        asset = make_pharma(phase="Phase 2")
        assert share_weight(asset, Decimal("4"), Decimal("5"), params) == Decimal("10")


class TestLinesOfTherapy:
    @pytest.mark.parametrize("text,lines", [
        ("Second-line NSCLC after platinum", ["2L"]),
        ("first-line maintenance therapy", ["1L", "maintenance"]),
        ("relapsed/refractory multiple myeloma", ["2L+"]),
        ("metastatic disease", []),
    ])
    def test_detect(self, text, lines):
        assert detect_lines_of_therapy(text) == lines


class TestWhiteSpace:
    """pharma_white_space."""

    def test_empty_segment(self):
        items = pharma_white_space("Zebra Syndrome", "rare_disease", [], us_prevalence=12000)
        assert len(items) == 3
        assert items[0].startswith("No approved or pipeline competitors identified for Zebra Syndrome")
        assert "rare disease pathways" in items[1]
        assert "12,000" in items[2]

    def test_empty_segment_without_prevalence(self):
        assert len(pharma_white_space("Zebra Syndrome", None, [])) == 2

    def test_capped_at_five(self, make_pharma):
        items = pharma_white_space(NSCLC, "oncology", [make_pharma()])
        assert len(items) == MAX_WHITE_SPACE
        assert items[0].startswith("No Checkpoint Inhibitor Pdl1 assets in Non-Small Cell Lung Cancer")

    def test_unresolved_query_first(self, make_pharma):
        items = pharma_white_space("Zebra", None, [make_pharma()], unresolved_query="Zebra")
        assert items[0].startswith('"Zebra" did not resolve to a tracked indication')

    def test_concentration_gap(self, make_pharma):
        assets = [
            make_pharma(asset_name=f"D{i}", has_biomarker_selection=True, indication="Plaque Psoriasis")
            for i in range(3)
        ]
        items = pharma_white_space("Plaque Psoriasis", "dermatology", assets)
        assert items == [
            "100% of tracked programs share the Checkpoint Inhibitor Pd1 mechanism — "
            "an orthogonal mechanism would face less direct competition"
        ]

    def test_generic_fallback(self, make_pharma):
        items = pharma_white_space("Plaque Psoriasis", "dermatology", [make_pharma(has_biomarker_selection=True)])
        assert len(items) == 1
        assert items[0].startswith("Differentiated clinical profile")
        assert "the 1 tracked assets in Plaque Psoriasis" in items[0]


class TestHelpers:
    def test_dedupe_case_insensitive(self, make_pharma):
        assets = [make_pharma(asset_name="X-1"), make_pharma(asset_name="x-1", phase="Phase 3")]
        kept = dedupe(assets, key=lambda c: c.asset_name)
        assert kept == [assets[0]]

    def test_percent(self):
        assert percent(1, 3) == 33
        assert percent(2, 3) == 67
        assert percent(1, 0) == 0


# ============================================================================
# END-TO-END
# ============================================================================

class TestAnalyzeNSCLC:
    """Analysis of a resolved oncology indication."""

    @pytest.fixture(scope="class")
    def result(self, corpus):
        at = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
        return CompetitiveLandscapeEngine(corpus).analyze({"indication": "NSCLC"}, generated_at=at)

    def test_resolution(self, result):
        assert result["variant"] == "pharma"
        assert result["resolution"]["match"] == "ExactMatch"
        assert result["resolution"]["matched"] == [NSCLC]
        assert result["query"] == {"indication": "NSCLC", "phases": [], "mechanism": None}

    def test_summary(self, result):
        summary = result["summary"]
        assert summary["indication"] == NSCLC
        assert summary["therapy_area"] == "oncology"
        assert summary["total_competitors"] == 4
        assert summary["approved_count"] == 0
        assert summary["pipeline_count"] == 4
        assert summary["mechanism_class_count"] == 4
        assert summary["market_penetration_pct"] == Decimal("78.0")

    def test_crowding(self, result):
        summary = result["summary"]
        assert summary["crowding_score"] == Decimal("1")
        assert summary["crowding_label"] == "Low"
        assert summary["crowding_factors"]["weighted_count"] == Decimal("1.90")

    def test_phase_buckets(self, result):
        assert result["approved_products"] == []
        assert result["late_stage_pipeline"] == []
        assert [a["asset_name"] for a in result["mid_stage_pipeline"]] == ["Pelareorep"]
        assert {a["asset_name"] for a in result["early_pipeline"]} == {"SV-101", "RB-601", "OMTX705"}

    def test_asset_scores(self, result):
        by_name = {a["asset_name"]: a for a in result["early_pipeline"] + result["mid_stage_pipeline"]}
        assert by_name["RB-601"]["differentiation_score"] == Decimal("9")
        assert by_name["Pelareorep"]["differentiation_score"] == Decimal("8")
        assert by_name["SV-101"]["differentiation_score"] == Decimal("6")
        assert by_name["Pelareorep"]["evidence_strength"] == Decimal("4")

    def test_white_space(self, result):
        white_space = result["summary"]["white_space"]
        assert len(white_space) == MAX_WHITE_SPACE
        assert white_space[0].startswith("No Checkpoint Inhibitor Pd1 assets in Non-Small Cell Lung Cancer")
        assert any("1L treatment" in item for item in white_space)

    def test_market_share(self, result):
        share = result["market_share"]
        assert len(share["competitors"]) == 4
        assert share["top_players"][0] == "Oncolytics Biotech"
        assert share["narrative"]

    def test_comparison_matrix(self, result):
        matrix = result["comparison_matrix"]
        assert len(matrix["columns"]) == 4
        assert [row["attribute"] for row in matrix["rows"]] == [
            "Mechanism", "Phase", "Differentiation", "Evidence Strength", "Threat", "Indication Specifics",
        ]

    def test_threat_without_mechanism(self, result):
        by_name = {a["asset_name"]: a for a in result["early_pipeline"] + result["mid_stage_pipeline"]}
        assert by_name["RB-601"]["threat_score"] == Decimal("1.5")
        assert by_name["RB-601"]["threat_factors"] == ["High ORR (100%)", "First-in-class mechanism"]
        assert by_name["Pelareorep"]["threat_score"] == Decimal("2.5")
        assert by_name["SV-101"]["threat_score"] == Decimal("1.0")
        assert all(a["mechanism_overlap"] is None for a in by_name.values())
        assert {a["threat_level"] for a in by_name.values()} == {"Low"}

    def test_displacement_and_barriers(self, result):
        assert result["displacement_risk"]["risk_level"] == "low"
        assert result["displacement_risk"]["key_threats"] == []
        barriers = result["barriers_to_entry"]
        assert [b["barrier_type"] for b in barriers["barriers"]] == ["manufacturing_complexity"]
        assert barriers["barriers"][0]["affected_competitors"] == [
            "Radiance Biopharma (RB-601)", "ONCOMATRYX Biopharma (OMTX705)",
        ]
        assert barriers["overall_barrier_score"] == Decimal("5.0")
        assert barriers["barrier_label"] == "Moderate"

    def test_competitive_timeline(self, result):
        timeline = {t["asset_name"]: t for t in result["competitive_timeline"]}
        assert len(timeline) == 4
        assert timeline["Pelareorep"]["expected_data_readout"] == "Q4 2026"
        assert timeline["Pelareorep"]["estimated_filing_date"] == "H1 2028"
        assert timeline["Pelareorep"]["estimated_launch_date"] == "H2 2029"
        assert timeline["Pelareorep"]["confidence"] == "medium"
        assert timeline["SV-101"]["expected_data_readout"] == "Q3 2026"

    def test_success_probabilities(self, result):
        ranked = result["success_probabilities"]
        assert [r["asset_name"] for r in ranked] == ["Pelareorep", "RB-601", "OMTX705", "SV-101"]
        assert ranked[0]["probability_of_approval"] == Decimal("0.15")
        assert ranked[0]["probability_weighted_threat"] == Decimal("0.38")
        assert ranked[1]["probability_weighted_threat"] == Decimal("0.11")

    def test_provenance(self, result, corpus):
        provenance = result["provenance"]
        assert provenance["module"] == "competitive_landscape_engine"
        assert provenance["corpus_version"] == corpus.corpus_version
        assert len(provenance["content_hash"]) == 16
        assert result["generated_at"] == "2026-01-15T12:00:00+00:00"
        assert result["corpus_as_of"] == corpus.as_of_date


class TestAnalyzeFallback:
    """Unknown indications score the full set and never raise."""

    @pytest.mark.parametrize("query", ["TOTALLY_UNKNOWN_XYZ", "Zebra Syndrome"])
    def test_no_match(self, engine, corpus, generated_at, query):
        result = engine.analyze({"indication": query}, generated_at=generated_at)
        summary = result["summary"]
        unique_assets = {c.asset_name.lower() for c in corpus.pharma_competitors}

        assert result["resolution"]["match"] == "NoMatch"
        assert result["resolution"]["is_fallback"] is True
        assert summary["indication"] == query
        assert summary["therapy_area"] is None
        assert summary["market_penetration_pct"] is None
        assert summary["total_competitors"] == len(unique_assets)
        assert summary["white_space"][0].startswith(f'"{query}" did not resolve')

    def test_scores_in_bounds(self, engine, generated_at):
        result = engine.analyze({"indication": "TOTALLY_UNKNOWN_XYZ"}, generated_at=generated_at)
        assert Decimal("1") <= result["summary"]["crowding_score"] <= Decimal("10")
        for bucket in ("approved_products", "late_stage_pipeline", "mid_stage_pipeline", "early_pipeline"):
            for asset in result[bucket]:
                assert Decimal("1") <= asset["differentiation_score"] <= Decimal("10")
                assert Decimal("1") <= asset["evidence_strength"] <= Decimal("10")


class TestAnalyzeOptions:
    """Phase filter, mechanism focus, empty segment, input errors."""

    def test_phase_filter(self, engine, generated_at):
        result = engine.analyze(
            {"indication": "TOTALLY_UNKNOWN_XYZ", "phases": ["Approved"]}, generated_at=generated_at
        )
        summary = result["summary"]
        assert summary["total_competitors"] == summary["approved_count"] > 0
        assert summary["pipeline_count"] == 0
        assert result["late_stage_pipeline"] == result["early_pipeline"] == []

    def test_osteoarthritis_late_stage(self, engine, generated_at):
        result = engine.analyze({"indication": "Osteoarthritis"}, generated_at=generated_at)
        assert result["summary"]["late_stage_count"] == 4
        assert [a["asset_name"] for a in result["late_stage_pipeline"]][0] == "Chondrostem"

    def test_empty_segment(self, corpus, generated_at):
        empty = corpus.subset(pharma_competitors=[])
        result = CompetitiveLandscapeEngine(empty).analyze({"indication": "NSCLC"}, generated_at=generated_at)
        summary = result["summary"]
        assert summary["total_competitors"] == 0
        assert summary["crowding_score"] == Decimal("1")
        assert summary["crowding_label"] == "Low"
        assert summary["key_insight"].startswith(f"No competitive assets currently tracked for {NSCLC}")
        assert len(summary["white_space"]) == 3
        assert "235,000" in summary["white_space"][2]
        assert result["market_share"]["competitors"] == []

    @pytest.mark.parametrize("request_data", [
        {},
        {"indication": "   "},
        {"indication": 42},
        {"indication": "NSCLC", "phases": ["Phase 9"]},
    ])
    def test_invalid_request(self, engine, request_data):
        with pytest.raises(InvalidInputError):
            engine.analyze(request_data)


class TestMechanismFocus:
    """The requester's mechanism drives threat and displacement, never the competitor set."""

    def test_shipped_nsclc(self, engine, generated_at):
        plain = engine.analyze({"indication": "NSCLC"}, generated_at=generated_at)
        focused = engine.analyze(
            {"indication": "NSCLC", "mechanism": "antibody-drug conjugate"}, generated_at=generated_at
        )
        assert focused["summary"]["total_competitors"] == plain["summary"]["total_competitors"]

        threats = {a["asset_name"]: a for a in focused["early_pipeline"]}
        assert threats["RB-601"]["mechanism_overlap"] == "same"
        assert threats["RB-601"]["threat_score"] == Decimal("3.5")
        assert threats["RB-601"]["threat_level"] == "Moderate"
        assert "Same mechanism of action — direct competitor" in threats["RB-601"]["threat_factors"]
        assert threats["OMTX705"]["threat_score"] == Decimal("3.0")
        assert threats["SV-101"]["mechanism_overlap"] is None
        assert "there are 2 tracked programs" in focused["summary"]["key_insight"]
        assert focused["provenance"]["content_hash"] != plain["provenance"]["content_hash"]

    def test_late_stage_same_mechanism_displaces(self, corpus, make_pharma, generated_at):
        late = make_pharma(asset_name="LATE-1", phase="Phase 3", indication=NSCLC)
        engine = CompetitiveLandscapeEngine(corpus.subset(pharma_competitors=[late]))

        plain = engine.analyze({"indication": "NSCLC"}, generated_at=generated_at)
        focused = engine.analyze({"indication": "NSCLC", "mechanism": "PD-1 inhibitor"}, generated_at=generated_at)

        before = plain["late_stage_pipeline"][0]
        after = focused["late_stage_pipeline"][0]
        assert before["threat_score"] == Decimal("3.0")
        assert after["threat_score"] == Decimal("5.0")
        assert after["threat_level"] == "Moderate"
        assert plain["displacement_risk"]["risk_level"] == "low"
        assert focused["displacement_risk"]["risk_level"] == "medium"
        assert focused["displacement_risk"]["key_threats"] == [
            "Acme Therapeutics (LATE-1) — same mechanism in Phase 3, near-term launch risk",
        ]
        assert focused["success_probabilities"][0]["probability_weighted_threat"] == Decimal("2.00")


class TestDeterminism:
    """Identical inputs give identical results."""

    def test_repeat_identical(self, engine, generated_at):
        first = engine.analyze({"indication": "crohns"}, generated_at=generated_at)
        second = engine.analyze({"indication": "Crohn's Disease"}, generated_at=generated_at)
        assert canonical_dumps(first["summary"]) == canonical_dumps(second["summary"])
        assert first["provenance"]["content_hash"] != ""

    def test_same_request_same_result(self, engine, generated_at):
        first = engine.analyze({"indication": "NSCLC"}, generated_at=generated_at)
        second = engine.analyze({"indication": "NSCLC"}, generated_at=generated_at)
        assert first == second

    def test_content_hash_ignores_timestamp(self, engine):
        first = engine.analyze({"indication": "NSCLC"}, generated_at=datetime(2026, 1, 1, tzinfo=timezone.utc))
        second = engine.analyze({"indication": "NSCLC"}, generated_at=datetime(2026, 6, 1, tzinfo=timezone.utc))
        assert first["generated_at"] != second["generated_at"]
        assert first["provenance"]["content_hash"] == second["provenance"]["content_hash"]


class TestEngineState:
    """Audit trail and corpus snapshot pinning."""

    def test_audit_trail(self, corpus, generated_at):
        engine = CompetitiveLandscapeEngine(corpus)
        engine.analyze({"indication": "NSCLC"}, generated_at=generated_at)
        trail = engine.get_audit_trail()
        assert len(trail) == 1
        assert trail[0]["match"] == "ExactMatch"
        assert trail[0]["competitors"] == 4

    def test_reads_published_snapshot(self, corpus, generated_at):
        handle = CorpusHandle.from_snapshot(corpus)
        engine = CompetitiveLandscapeEngine(handle)
        before = engine.analyze({"indication": "NSCLC"}, generated_at=generated_at)
        handle.publish(corpus.subset(pharma_competitors=[]))
        after = engine.analyze({"indication": "NSCLC"}, generated_at=generated_at)
        assert before["summary"]["total_competitors"] == 4
        assert after["summary"]["total_competitors"] == 0

    def test_module_function(self, corpus, generated_at):
        result = analyze_landscape({"indication": "NSCLC"}, corpus=corpus, generated_at=generated_at)
        assert result["summary"]["indication"] == NSCLC
