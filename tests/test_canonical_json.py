#!/usr/bin/env python3
"""
Tests for governance/canonical_json.py

Canonical serialization is what makes analyzer results byte-comparable
across runs.
"""

import pytest
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from types import MappingProxyType

from governance.canonical_json import CanonicalJSONEncoder, canonical_dumps, to_canonical


@dataclass(frozen=True)
class _Record:
    name: str
    score: Decimal
    tags: tuple


class _Kind(Enum):
    EXACT = "ExactMatch"


class TestCanonicalDumps:
    """Key order, list order, newline."""

    def test_sorted_keys_compact(self):
        assert canonical_dumps({"b": 1, "a": 2}, indent=None) == '{"a":2,"b":1}\n'

    def test_nested_keys_sorted(self):
        assert canonical_dumps({"z": {"y": 1, "x": 2}}, indent=None) == '{"z":{"x":2,"y":1}}\n'

    def test_indented(self):
        assert canonical_dumps({"a": [1]}) == '{\n  "a": [\n    1\n  ]\n}\n'

    def test_insertion_order_irrelevant(self):
        first = {"alpha": 1, "beta": [1, 2], "gamma": {"k": "v"}}
        second = {"gamma": {"k": "v"}, "beta": [1, 2], "alpha": 1}
        assert canonical_dumps(first) == canonical_dumps(second)

    def test_list_order_kept(self):
        assert canonical_dumps([3, 1, 2], indent=None) == "[3,1,2]\n"

    def test_sets_sorted(self):
        assert canonical_dumps({"s": {"b", "a"}}, indent=None) == '{"s":["a","b"]}\n'

    def test_unicode_not_escaped(self):
        assert "Sjögren" in canonical_dumps({"name": "Sjögren"})

    def test_non_string_keys(self):
        assert canonical_dumps({2: "b", 1: "a"}, indent=None) == '{"1":"a","2":"b"}\n'


class TestNumbers:
    """Decimal and float rendering."""

    @pytest.mark.parametrize("value,expected", [
        (Decimal("70.00"), 70),
        (Decimal("5.5"), 5.5),
        (Decimal("-0"), 0),
        (0.1 + 0.2, 0.3),
        (-0.0, 0),
        (3.0, 3),
        (True, True),
    ])
    def test_to_canonical(self, value, expected):
        result = to_canonical(value)
        assert result == expected
        assert type(result) is type(expected)

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), Decimal("NaN"), Decimal("-Infinity")])
    def test_non_finite_rejected(self, value):
        with pytest.raises(ValueError):
            canonical_dumps({"v": value})


class TestFlattening:
    """Records, mappings, enums and dates."""

    def test_dataclass(self):
        record = _Record(name="Keytruda", score=Decimal("8.0"), tags=("pd1",))
        assert canonical_dumps(record, indent=None) == '{"name":"Keytruda","score":8,"tags":["pd1"]}\n'

    def test_mapping_proxy(self):
        proxy = MappingProxyType({"b": 2, "a": 1})
        assert canonical_dumps({"m": proxy}, indent=None) == '{"m":{"a":1,"b":2}}\n'

    def test_enum(self):
        assert canonical_dumps({"k": _Kind.EXACT}, indent=None) == '{"k":"ExactMatch"}\n'

    def test_dates(self):
        out = canonical_dumps({
            "d": date(2025, 6, 30),
            "t": datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc),
        }, indent=None)
        assert out == '{"d":"2025-06-30","t":"2026-01-15T12:00:00+00:00"}\n'

    def test_unknown_type_raises(self):
        with pytest.raises(TypeError):
            canonical_dumps({"o": object()})

    def test_dataclass_type_not_flattened(self):
        with pytest.raises(TypeError):
            to_canonical(_Record)

    def test_encoder_class(self):
        encoder = CanonicalJSONEncoder(sort_keys=True, separators=(",", ":"))
        assert encoder.encode({"b": Decimal("1.50"), "a": None}) == '{"a":null,"b":1.5}'


class TestEngineResult:
    """A real result serializes deterministically."""

    def test_landscape_result(self, corpus, generated_at):
        from competitive_landscape_engine import analyze_landscape

        first = analyze_landscape({"indication": "NSCLC"}, corpus=corpus, generated_at=generated_at)
        second = analyze_landscape({"indication": "NSCLC"}, corpus=corpus, generated_at=generated_at)
        assert canonical_dumps(first) == canonical_dumps(second)
