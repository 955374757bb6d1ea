"""
common/score_utils.py - Scoring Primitives

The arithmetic every analyzer shares, so a "7.0 crowding" or a "High"
concentration label means the same thing in the pharma, device and CDx
landscapes and in the screener:

- to_decimal / quantize: lenient number parsing, half-up rounding
- clamp_1_10: the crowding / differentiation / evidence scale
- weighted_average: named sub-scores against a params weight table
- band / band_from_params / step_score: threshold tables from params_archive/

All arithmetic is Decimal; floats only appear at the JSON boundary.

Author: Wake Robin Capital Management
Version: 2.0.0
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

__version__ = "2.0.0"

Number = Union[Decimal, float, int]

SCORE_PRECISION = Decimal("0.01")
TENTH = Decimal("0.1")

SCALE_FLOOR = Decimal("1")
SCALE_CEILING = Decimal("10")

# Below this a weight total counts as empty
EPS = Decimal("0.000001")

_ZERO = Decimal("0")


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    """
    Parse a corpus or request value into a Decimal.

    Floats go through str() so 0.1 stays 0.1. Booleans, blank strings and
    anything unparseable yield `default`.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        return value
    try:
        if isinstance(value, (int, float)):
            return Decimal(str(value))
        if isinstance(value, str) and value.strip():
            return Decimal(value.strip())
    except (InvalidOperation, ValueError):
        return default
    return default


def quantize(value: Number, precision: Decimal = TENTH) -> Decimal:
    return to_decimal(value, _ZERO).quantize(precision, rounding=ROUND_HALF_UP)


def clamp_score(
    score: Union[Number, str, None],
    min_val: Number = _ZERO,
    max_val: Number = Decimal("100"),
    default: Optional[Decimal] = None,
    precision: Decimal = SCORE_PRECISION,
) -> Optional[Decimal]:
    """
    Pin a score into [min_val, max_val] and round it.

        >>> clamp_score(Decimal("150"))
        Decimal('100.00')
        >>> clamp_score(None, default=Decimal("50"))
        Decimal('50')
    """
    value = to_decimal(score)
    if value is None:
        return default
    low = to_decimal(min_val, _ZERO)
    high = to_decimal(max_val, Decimal("100"))
    return min(high, max(low, value)).quantize(precision, rounding=ROUND_HALF_UP)


def clamp_1_10(score: Union[Number, str, None], precision: Decimal = TENTH) -> Decimal:
    """
    The 1-10 scale. Missing or unparseable input lands on the floor.

        >>> clamp_1_10(12)
        Decimal('10.0')
        >>> clamp_1_10(-3)
        Decimal('1.0')
    """
    return clamp_score(
        score,
        min_val=SCALE_FLOOR,
        max_val=SCALE_CEILING,
        default=SCALE_FLOOR.quantize(precision),
        precision=precision,
    )


clamp01to10 = clamp_1_10


def weighted_average(
    scores: Union[Sequence[Optional[Number]], Mapping[str, Optional[Number]]],
    weights: Union[Sequence[Number], Mapping[str, Number]],
    skip_none: bool = True,
) -> Tuple[Optional[Decimal], Decimal]:
    """
    Weighted mean of sub-scores.

    Either parallel lists, or a sub-score dict against a weight-table dict.
    With dicts the weight table decides which components count; a component
    absent from `scores` is treated as None. With skip_none the remaining
    weights are renormalized, otherwise any None voids the result.

    Returns:
        (average rounded to 0.01 or None, total weight used)

    Raises:
        ValueError: List length mismatch, or named weights with unnamed scores
    """
    if isinstance(weights, Mapping):
        if not isinstance(scores, Mapping):
            raise ValueError("Named weights require named scores")
        pairs = [(scores.get(name), weights[name]) for name in sorted(weights)]
    else:
        score_list, weight_list = list(scores), list(weights)
        if len(score_list) != len(weight_list):
            raise ValueError(f"Length mismatch: {len(score_list)} scores vs {len(weight_list)} weights")
        pairs = list(zip(score_list, weight_list))

    weighted_sum = _ZERO
    total_weight = _ZERO
    for score, weight in pairs:
        value = to_decimal(score)
        if value is None:
            if skip_none:
                continue
            return None, _ZERO
        w = to_decimal(weight, _ZERO)
        weighted_sum += value * w
        total_weight += w

    if total_weight < EPS:
        return None, _ZERO
    return (weighted_sum / total_weight).quantize(SCORE_PRECISION, rounding=ROUND_HALF_UP), total_weight


def median(values: Sequence[Number]) -> Decimal:
    """Median, or 0 for no values."""
    ordered = sorted(to_decimal(v, _ZERO) for v in values)
    if not ordered:
        return _ZERO
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2


def band(
    value: Number,
    thresholds: Sequence[Number],
    labels: Sequence[str],
    upper_inclusive: bool = True,
) -> str:
    """
    Label for `value` under ascending cut-points.

    A value on a cut-point belongs to the lower label when upper_inclusive
    (crowding: 3 is "Low"), to the upper one otherwise (HHI: 1500 is
    "Moderately Concentrated").

        >>> band(3, [3, 5, 7], ["Low", "Moderate", "High", "Extremely High"])
        'Low'

    Raises:
        ValueError: labels is not exactly one longer than thresholds
    """
    if len(labels) != len(thresholds) + 1:
        raise ValueError(
            f"band() needs len(labels) == len(thresholds) + 1, got {len(labels)} and {len(thresholds)}"
        )
    value = to_decimal(value, _ZERO)
    for cut, label in zip(thresholds, labels):
        cut = to_decimal(cut, _ZERO)
        if value < cut or (upper_inclusive and value == cut):
            return label
    return labels[-1]


def band_from_params(value: Number, band_spec: Dict[str, Any]) -> str:
    return band(
        value,
        band_spec["thresholds"],
        band_spec["labels"],
        upper_inclusive=band_spec.get("upper_inclusive", True),
    )


def step_score(value: Number, steps: Sequence[Sequence[Number]], ceiling: Number) -> Decimal:
    """Score of the first [limit, score] step with value <= limit, else `ceiling`."""
    value = to_decimal(value, _ZERO)
    for limit, score in steps:
        if value <= to_decimal(limit, _ZERO):
            return to_decimal(score, _ZERO)
    return to_decimal(ceiling, _ZERO)


__all__ = [
    "SCORE_PRECISION",
    "TENTH",
    "EPS",
    "to_decimal",
    "quantize",
    "clamp_score",
    "clamp_1_10",
    "clamp01to10",
    "weighted_average",
    "median",
    "band",
    "band_from_params",
    "step_score",
]
