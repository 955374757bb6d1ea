"""
Canonical JSON for analyzer results.

Two analyzer calls over the same corpus snapshot and params must produce
byte-identical output, and the content hash in every result's provenance
block is taken over this form. to_canonical() reduces a result to plain
JSON types first:

- dict / MappingProxyType keys sorted (as strings)
- lists and tuples keep their order (ranked output is already sorted)
- sets sorted by their string form
- Decimal: integral values become int, others float (engine scores are
  already quantized, so nothing is lost)
- float: rounded to 10 places, integral values become int, -0.0 becomes 0
- NaN / Infinity raise ValueError
- Enum -> value, date / datetime -> ISO string, frozen record dataclass -> dict
"""

import dataclasses
import json
import math
from datetime import date
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Optional

FLOAT_PLACES = 10


def _number(value: float) -> Any:
    if math.isnan(value) or math.isinf(value):
        raise ValueError(f"Non-finite number not allowed in canonical JSON: {value}")
    value = round(value, FLOAT_PLACES)
    if value == int(value) and abs(value) < 2 ** 53:
        return int(value)
    return value


def _decimal(value: Decimal) -> Any:
    if not value.is_finite():
        raise ValueError(f"Non-finite number not allowed in canonical JSON: {value}")
    if value == value.to_integral_value():
        return int(value)
    return _number(float(value))


def to_canonical(obj: Any) -> Any:
    """Plain JSON types only; raises TypeError for anything without a canonical form."""
    if obj is None or isinstance(obj, (bool, str)):
        return obj
    if isinstance(obj, Enum):
        return to_canonical(obj.value)
    if isinstance(obj, int):
        return obj
    if isinstance(obj, Decimal):
        return _decimal(obj)
    if isinstance(obj, float):
        return _number(obj)
    if isinstance(obj, (dict, MappingProxyType)):
        return {str(k): to_canonical(v) for k, v in sorted(obj.items(), key=lambda kv: str(kv[0]))}
    if isinstance(obj, (list, tuple)):
        return [to_canonical(item) for item in obj]
    if isinstance(obj, (set, frozenset)):
        return [to_canonical(item) for item in sorted(obj, key=str)]
    if isinstance(obj, date):
        return obj.isoformat()
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return to_canonical({f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)})
    raise TypeError(f"Object of type {type(obj).__name__} has no canonical JSON form")


class CanonicalJSONEncoder(json.JSONEncoder):
    """json.JSONEncoder that canonicalizes the whole document before encoding."""

    def encode(self, o: Any) -> str:
        return super().encode(to_canonical(o))


def canonical_dumps(obj: Any, indent: Optional[int] = 2) -> str:
    """
    Canonical JSON text with a trailing newline (indent=None for compact).

    Raises:
        ValueError: NaN / Infinity anywhere in obj
        TypeError: Value with no canonical form
    """
    text = json.dumps(
        to_canonical(obj),
        indent=indent,
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ": ") if indent else (",", ":"),
    )
    return text + "\n"
