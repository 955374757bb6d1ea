#!/usr/bin/env python3
"""
Tests for entity_resolver.py

Covers exact / fuzzy / fallback resolution for the three entity kinds,
alias-group symmetry and the resolver cache.
"""

import pytest
from decimal import Decimal

from entity_resolver import (
    EntityKind,
    EntityResolver,
    MatchKind,
    Resolution,
    get_resolver,
    resolve,
    similarity,
)


PD_L1_TESTS = {
    "PD-L1 IHC 22C3 pharmDx",
    "VENTANA PD-L1 (SP142)",
    "VENTANA PD-L1 (SP263)",
    "Tempus xT",
    "Caris Molecular Intelligence (MI)",
}


@pytest.fixture(scope="module")
def resolver(corpus):
    return EntityResolver(corpus)


def names(resolution: Resolution, attr: str):
    return {getattr(r, attr) for r in resolution.records}


class TestIndicationResolution:
    """Indication names and aliases."""

    def test_canonical_name(self, resolver):
        result = resolver.resolve("Non-Small Cell Lung Cancer", "indication")
        assert result.match is MatchKind.EXACT
        assert result.matched_keys == ("Non-Small Cell Lung Cancer",)
        assert result.score == Decimal("1")

    @pytest.mark.parametrize("query", ["NSCLC", "nsclc", "  Lung Cancer ", "non-small cell lung cancer"])
    def test_alias_spellings(self, resolver, query):
        result = resolver.resolve(query, "indication")
        assert result.match is MatchKind.EXACT
        assert [r.name for r in result.records] == ["Non-Small Cell Lung Cancer"]

    @pytest.mark.parametrize("query", ["crohns", "Crohn's", "CROHN'S DISEASE", "Crohn disease"])
    def test_crohns_spellings(self, resolver, query):
        result = resolver.resolve(query, EntityKind.INDICATION)
        assert result.match is MatchKind.EXACT
        assert result.matched_keys == ("Crohn's Disease",)

    def test_fuzzy_typo(self, resolver):
        result = resolver.resolve("Rheumatoid Arthritiss", "indication")
        assert result.match is MatchKind.FUZZY
        assert result.matched_keys == ("Rheumatoid Arthritis",)
        assert result.score == Decimal("0.9762")
        assert not result.is_fallback

    def test_fuzzy_qualified_name(self, resolver):
        result = resolver.resolve("metastatic non-small cell lung cancer", "indication")
        assert result.match is MatchKind.FUZZY
        assert result.matched_keys == ("Non-Small Cell Lung Cancer",)

    def test_breast_cancer_covers_every_subtype(self, resolver):
        result = resolver.resolve("breast cancer", "indication")
        assert result.match is MatchKind.EXACT
        assert result.matched_keys == (
            "HER2-Positive Breast Cancer",
            "HR+/HER2- Breast Cancer",
            "Triple Negative Breast Cancer",
        )

    def test_tnbc_stays_specific(self, resolver, corpus):
        result = resolver.resolve("TNBC", "indication")
        assert result.matched_keys == ("Triple Negative Breast Cancer",)
        tnbc_assets = {c.asset_name for c in corpus.pharma_competitors if c.indication == "Triple Negative Breast Cancer"}
        assert {"Elenagen", "RHB-107"} <= tnbc_assets

    @pytest.mark.parametrize("query", ["a", "A", "b"])
    def test_single_letter_is_no_match(self, resolver, query):
        result = resolver.resolve(query, "indication")
        assert result.match is MatchKind.NO_MATCH
        assert result.is_fallback

    def test_mid_word_fragment_is_no_match(self, resolver):
        assert resolver.resolve("ancer", "indication").match is MatchKind.NO_MATCH

    def test_unknown_falls_back_to_full_set(self, resolver, corpus):
        result = resolver.resolve("TOTALLY_UNKNOWN_XYZ", "indication")
        assert result.match is MatchKind.NO_MATCH
        assert result.is_fallback
        assert result.matched_keys == ()
        assert result.records == corpus.indications
        assert result.normalized_query == "totally unknown xyz"

    def test_blank_query_falls_back(self, resolver, corpus):
        result = resolver.resolve("   ", "indication")
        assert result.match is MatchKind.NO_MATCH
        assert len(result.records) == len(corpus.indications)


class TestBiomarkerResolution:
    """Biomarker alias groups over diagnostic tests."""

    @pytest.mark.parametrize("query", ["PD-L1", "PDL1", "pd-l1", "CD274"])
    def test_pd_l1_spellings_symmetric(self, resolver, query):
        result = resolver.resolve(query, "biomarker")
        assert result.match is MatchKind.EXACT
        assert result.matched_keys == ("PD-L1",)
        assert names(result, "test_name") == PD_L1_TESTS

    def test_her2_erbb2_symmetric(self, resolver):
        her2 = resolver.resolve("HER2", "biomarker")
        erbb2 = resolver.resolve("ERBB2", "biomarker")
        assert her2.records == erbb2.records
        assert her2.records

    def test_records_in_corpus_order(self, resolver, corpus):
        result = resolver.resolve("PD-L1", "biomarker")
        positions = [corpus.diagnostic_competitors.index(r) for r in result.records]
        assert positions == sorted(positions)

    def test_unknown_biomarker(self, resolver, corpus):
        result = resolver.resolve("TOTALLY_UNKNOWN_XYZ", "biomarker")
        assert result.is_fallback
        assert result.records == corpus.diagnostic_competitors


class TestProcedureResolution:
    """Procedure alias groups over devices."""

    @pytest.mark.parametrize("query", ["TAVR", "TAVI", "tavi", "transcatheter aortic valve replacement"])
    def test_tavr_tavi_symmetric(self, resolver, query):
        result = resolver.resolve(query, "procedure")
        assert result.match is MatchKind.EXACT
        assert result.matched_keys == ("TAVR",)
        assert names(result, "device_name") == {"SAPIEN 3 Ultra RESILIA", "Evolut FX+"}

    def test_known_keys(self, resolver):
        keys = resolver.known_keys("procedure")
        assert "tavi" in keys
        assert list(keys) == sorted(keys)

    def test_unknown_procedure(self, resolver, corpus):
        result = resolver.resolve("TOTALLY_UNKNOWN_XYZ", EntityKind.PROCEDURE)
        assert result.is_fallback
        assert result.records == corpus.device_competitors


class TestResolutionShape:
    """Resolution object and module entry points."""

    def test_to_dict(self, resolver):
        payload = resolver.resolve("TAVI", "procedure").to_dict()
        assert payload == {
            "query": "TAVI",
            "normalized_query": "tavi",
            "entity_kind": "procedure",
            "match": "ExactMatch",
            "matched": ["TAVR"],
            "match_score": Decimal("1"),
            "is_fallback": False,
            "record_count": 2,
        }

    def test_unknown_kind(self, resolver):
        with pytest.raises(ValueError):
            resolver.resolve("NSCLC", "gene")

    def test_deterministic(self, resolver):
        assert resolver.resolve("breast", "indication") == resolver.resolve("breast", "indication")

    def test_module_resolve(self, corpus):
        assert resolve("PDL1", "biomarker", corpus=corpus).matched_keys == ("PD-L1",)

    def test_resolver_cached_per_snapshot(self, corpus):
        assert get_resolver(corpus) is get_resolver(corpus)
        other = corpus.with_partners([])
        assert get_resolver(other) is not get_resolver(corpus)


class TestSimilarity:
    """Fuzzy similarity function."""

    def test_identical(self):
        assert similarity("severe asthma", {"severe", "asthma"}, "severe asthma") == Decimal("1.0000")

    def test_containment(self):
        score = similarity("rheumatoid arthritiss", {"rheumatoid", "arthritiss"}, "rheumatoid arthritis")
        assert score == Decimal("0.9762")

    def test_short_containment_ignored(self):
        assert similarity("cd", {"cd"}, "cd274") == Decimal("0.0000")

    def test_jaccard(self):
        score = similarity("asthma adult", {"asthma", "adult"}, "severe asthma")
        assert score == Decimal("0.3333")

    def test_containment_needs_token_boundary(self):
        assert similarity("ancer", {"ancer"}, "lung cancer") == Decimal("0.0000")
        assert similarity("ilia a", {"ilia", "a"}, "hemophilia a") == Decimal("0.0000")

    def test_trailing_prefix_contained(self):
        score = similarity("lung canc", {"lung", "canc"}, "lung cancer")
        assert score == Decimal("0.9091")

    def test_short_shared_token_ignored(self):
        assert similarity("a", {"a"}, "hemophilia a") == Decimal("0.0000")
        assert similarity("influenza b", {"influenza", "b"}, "influenza a") == Decimal("0.3333")
