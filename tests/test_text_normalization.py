#!/usr/bin/env python3
"""
Tests for common/text_normalization.py
"""

import pytest

from common.text_normalization import (
    contains_phrase,
    keyword_set,
    normalize_text,
    readable_label,
    tokenize,
)


class TestNormalizeText:
    """Tests for normalize_text."""

    @pytest.mark.parametrize("raw,expected", [
        ("PD-L1", "pdl1"),
        ("PDL1", "pdl1"),
        ("pd–l1", "pdl1"),
        ("Crohn's Disease", "crohns disease"),
        ("Crohn’s disease", "crohns disease"),
        ("  Non-Small  Cell Lung Cancer ", "nonsmall cell lung cancer"),
        ("BRCA1/2", "brca1 2"),
        ("Sjögren's Syndrome", "sjogrens syndrome"),
        ("PD-L1 (TPS & CPS)", "pdl1 tps cps"),
        ("TOTALLY_UNKNOWN_XYZ", "totally unknown xyz"),
        ("Dr. Smith", "dr smith"),
    ])
    def test_examples(self, raw, expected):
        assert normalize_text(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "---"])
    def test_empty(self, raw):
        assert normalize_text(raw) == ""

    def test_idempotent(self):
        once = normalize_text("Crohn's / Ulcerative-Colitis")
        assert normalize_text(once) == once


class TestTokens:
    """Tests for tokenize / contains_phrase / keyword_set."""

    def test_tokenize(self):
        assert tokenize("Small-Cell Lung Cancer") == ("smallcell", "lung", "cancer")
        assert tokenize(None) == ()

    def test_contains_phrase(self):
        haystack = tokenize("metastatic non small cell lung cancer")
        assert contains_phrase(haystack, tokenize("lung cancer"))
        assert not contains_phrase(haystack, tokenize("cancer lung"))
        assert not contains_phrase(haystack, ())
        assert not contains_phrase(("lung",), tokenize("lung cancer"))

    def test_keyword_set_drops_short_tokens_and_dupes(self):
        assert keyword_set(["PD-1 in NSCLC", "nsclc ADC"]) == ["pd1", "nsclc", "adc"]

    def test_keyword_set_min_length(self):
        assert keyword_set(["an ox of ice"], min_length=2) == ["an", "ox", "of", "ice"]


class TestReadableLabel:
    def test_snake_case(self):
        assert readable_label("checkpoint_inhibitor_pd1") == "Checkpoint Inhibitor Pd1"

    def test_empty_parts(self):
        assert readable_label("__adc__") == "Adc"
