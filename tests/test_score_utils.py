#!/usr/bin/env python3
"""
Tests for common/score_utils.py

Scoring primitives shared by every analyzer. These tests cover:
- Type conversion (to_decimal, quantize)
- Score clamping (clamp_score, clamp_1_10)
- Weighted averaging over lists and named sub-scores
- Label banding (band, band_from_params, step_score)
"""

import pytest
from decimal import Decimal

from common.score_utils import (
    # Type conversion
    to_decimal,
    quantize,
    # Score clamping
    clamp_score,
    clamp_1_10,
    clamp01to10,
    # Aggregation
    weighted_average,
    median,
    # Banding
    band,
    band_from_params,
    step_score,
    SCORE_PRECISION,
)


CROWDING_LABELS = ["Low", "Moderate", "High", "Extremely High"]


class TestToDecimal:
    """Tests for to_decimal function."""

    def test_decimal_passthrough(self):
        assert to_decimal(Decimal("5.5")) == Decimal("5.5")

    def test_float_conversion_via_string(self):
        """Float should convert without binary noise."""
        assert to_decimal(0.1) == Decimal("0.1")

    def test_string_with_whitespace(self):
        assert to_decimal("  5.5  ") == Decimal("5.5")

    def test_empty_string_returns_default(self):
        assert to_decimal("", default=Decimal("0")) == Decimal("0")

    def test_bool_rejected(self):
        """True must not become Decimal('1')."""
        assert to_decimal(True) is None

    def test_garbage_returns_default(self):
        assert to_decimal("abc", default=Decimal("7")) == Decimal("7")
        assert to_decimal([1, 2]) is None


class TestQuantize:
    """Tests for quantize function."""

    def test_half_up(self):
        assert quantize(Decimal("2.25")) == Decimal("2.3")
        assert quantize(Decimal("2.35")) == Decimal("2.4")

    def test_custom_precision(self):
        assert quantize(Decimal("2.345"), SCORE_PRECISION) == Decimal("2.35")


class TestClampScore:
    """Tests for clamp_score function."""

    def test_within_bounds(self):
        assert clamp_score(Decimal("50")) == Decimal("50.00")

    def test_above_max(self):
        assert clamp_score(Decimal("150")) == Decimal("100.00")

    def test_below_min(self):
        assert clamp_score(Decimal("-10")) == Decimal("0.00")

    def test_none_returns_default(self):
        assert clamp_score(None, default=Decimal("50")) == Decimal("50")

    def test_custom_bounds(self):
        assert clamp_score(Decimal("15"), min_val=0, max_val=10) == Decimal("10.00")


class TestClamp1To10:
    """Tests for the 1-10 scale clamp."""

    @pytest.mark.parametrize("raw,expected", [
        (Decimal("12"), Decimal("10.0")),
        (Decimal("-3"), Decimal("1.0")),
        (Decimal("0"), Decimal("1.0")),
        (Decimal("5.55"), Decimal("5.6")),
        (Decimal("10"), Decimal("10.0")),
        (Decimal("1"), Decimal("1.0")),
    ])
    def test_clamps_and_rounds(self, raw, expected):
        assert clamp_1_10(raw) == expected

    def test_none_lands_on_floor(self):
        assert clamp_1_10(None) == Decimal("1.0")

    def test_unparseable_lands_on_floor(self):
        assert clamp_1_10("n/a") == Decimal("1.0")

    def test_alias(self):
        assert clamp01to10 is clamp_1_10


class TestWeightedAverage:
    """Tests for weighted_average function."""

    def test_simple_list(self):
        avg, total = weighted_average([Decimal("80"), Decimal("40")], [Decimal("0.75"), Decimal("0.25")])
        assert avg == Decimal("70.00")
        assert total == Decimal("1.00")

    def test_skip_none_renormalizes(self):
        avg, total = weighted_average([Decimal("80"), None], [Decimal("0.5"), Decimal("0.5")])
        assert avg == Decimal("80.00")
        assert total == Decimal("0.5")

    def test_none_without_skip(self):
        avg, total = weighted_average([Decimal("80"), None], [1, 1], skip_none=False)
        assert avg is None
        assert total == Decimal("0")

    def test_all_none(self):
        avg, total = weighted_average([None, None], [1, 1])
        assert avg is None

    def test_length_mismatch_raises(self):
        with pytest.raises(ValueError):
            weighted_average([1, 2, 3], [1, 1])

    def test_named_subscores(self):
        """Weight table drives iteration; order of keys is irrelevant."""
        scores = {"b": Decimal("100"), "a": Decimal("0")}
        weights = {"a": Decimal("0.3"), "b": Decimal("0.7")}
        avg, total = weighted_average(scores, weights)
        assert avg == Decimal("70.00")
        assert total == Decimal("1.0")

    def test_named_missing_subscore_is_skipped(self):
        avg, _ = weighted_average({"a": Decimal("60")}, {"a": Decimal("0.5"), "b": Decimal("0.5")})
        assert avg == Decimal("60.00")

    def test_named_weights_need_named_scores(self):
        with pytest.raises(ValueError):
            weighted_average([Decimal("1")], {"a": Decimal("1")})


class TestMedian:
    """Tests for median function."""

    def test_empty_is_zero(self):
        assert median([]) == Decimal("0")

    def test_odd(self):
        assert median([3, 1, 2]) == Decimal("2")

    def test_even(self):
        assert median([Decimal("1"), Decimal("4"), Decimal("2"), Decimal("3")]) == Decimal("2.5")


class TestBand:
    """Tests for band and band_from_params."""

    @pytest.mark.parametrize("value,expected", [
        (Decimal("1"), "Low"),
        (Decimal("3"), "Low"),
        (Decimal("3.1"), "Moderate"),
        (Decimal("5"), "Moderate"),
        (Decimal("7"), "High"),
        (Decimal("7.1"), "Extremely High"),
        (Decimal("10"), "Extremely High"),
    ])
    def test_upper_inclusive(self, value, expected):
        assert band(value, [3, 5, 7], CROWDING_LABELS) == expected

    @pytest.mark.parametrize("value,expected", [
        (Decimal("1499"), "F"),
        (Decimal("1500"), "M"),
        (Decimal("2500"), "H"),
        (Decimal("5000"), "X"),
    ])
    def test_upper_exclusive(self, value, expected):
        assert band(value, [1500, 2500, 5000], ["F", "M", "H", "X"], upper_inclusive=False) == expected

    def test_label_count_mismatch_raises(self):
        with pytest.raises(ValueError):
            band(1, [3, 5, 7], ["Low", "High"])

    def test_from_params(self, params):
        spec = params["bands"]["pharma_crowding"]
        assert band_from_params(Decimal("5.0"), spec) == "Moderate"
        assert band_from_params(Decimal("8.0"), spec) == "Extremely High"

    def test_every_label_reachable(self, params):
        """Each configured band maps its thresholds onto distinct labels."""
        for name, spec in params["bands"].items():
            seen = {band_from_params(Decimal("-1000000"), spec), band_from_params(Decimal("1000000000"), spec)}
            for threshold in spec["thresholds"]:
                seen.add(band_from_params(Decimal(str(threshold)), spec))
            assert seen == set(spec["labels"]), name


class TestStepScore:
    """Tests for step_score function."""

    def test_first_matching_step(self):
        steps = [[1000, 2], [2500, 5], [5000, 8]]
        assert step_score(500, steps, 10) == Decimal("2")
        assert step_score(1000, steps, 10) == Decimal("2")
        assert step_score(2000, steps, 10) == Decimal("5")

    def test_ceiling(self):
        assert step_score(9000, [[1000, 2]], 10) == Decimal("10")

