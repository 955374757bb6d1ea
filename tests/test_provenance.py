#!/usr/bin/env python3
"""
Tests for common/provenance.py

Every analyzer result carries module/version, corpus version, parameters
hash and a content hash that ignores wall-clock fields.
"""

import pytest
from datetime import datetime, timezone

from common.provenance import (
    DEFAULT_AUDIT_LIMIT,
    HASH_EXCLUDED_FIELDS,
    AuditTrailMixin,
    compute_content_hash,
    create_provenance,
    finalize_result,
    resolve_generated_at,
)


class _Auditor(AuditTrailMixin):
    audit_limit = 3

    def __init__(self):
        self._init_audit()


class TestContentHash:
    """Tests for compute_content_hash."""

    def test_excluded_fields_ignored(self):
        body = {"partners": [1, 2], "total_matches": 2}
        stamped = dict(body, generated_at="2026-01-01T00:00:00", runtime_ms=12, provenance={"x": 1})
        assert compute_content_hash(body) == compute_content_hash(stamped)

    def test_body_change_changes_hash(self):
        assert compute_content_hash({"score": 1}) != compute_content_hash({"score": 2})

    def test_excluded_set(self):
        assert HASH_EXCLUDED_FIELDS == frozenset({"generated_at", "provenance", "runtime_ms"})


class TestFinalizeResult:
    """Tests for create_provenance / finalize_result."""

    def test_provenance_fields(self):
        provenance = create_provenance("partner_matching", "1.0.0", "2025.06", "abc123", {"a": 1})
        assert provenance == {
            "module": "partner_matching",
            "module_version": "1.0.0",
            "corpus_version": "2025.06",
            "parameters_hash": "abc123",
            "content_hash": compute_content_hash({"a": 1}),
        }

    def test_finalize_stamps_timestamp(self, generated_at):
        result = finalize_result({"a": 1}, "m", "1.0.0", "2025.06", "h", generated_at)
        assert result["generated_at"] == "2026-01-15T12:00:00+00:00"
        assert result["provenance"]["content_hash"] == compute_content_hash({"a": 1})

    def test_hash_independent_of_time(self):
        first = finalize_result({"a": 1}, "m", "1.0.0", "v", "h", datetime(2025, 1, 1, tzinfo=timezone.utc))
        second = finalize_result({"a": 1}, "m", "1.0.0", "v", "h", datetime(2026, 1, 1, tzinfo=timezone.utc))
        assert first["provenance"] == second["provenance"]
        assert first["generated_at"] != second["generated_at"]

    def test_default_timestamp_is_utc_now(self):
        stamped = resolve_generated_at()
        assert stamped.tzinfo is not None

    def test_rejects_non_datetime(self):
        with pytest.raises(TypeError):
            resolve_generated_at("2026-01-01")


class TestAuditTrail:
    """Tests for AuditTrailMixin."""

    def test_bounded(self):
        auditor = _Auditor()
        for i in range(5):
            auditor._add_audit({"i": i})
        assert [e["i"] for e in auditor.get_audit_trail()] == [2, 3, 4]

    def test_clear(self):
        auditor = _Auditor()
        auditor._add_audit({"i": 0})
        auditor.clear_audit_trail()
        assert auditor.get_audit_trail() == []

    def test_returns_copy(self):
        auditor = _Auditor()
        auditor._add_audit({"i": 0})
        auditor.get_audit_trail().clear()
        assert len(auditor.get_audit_trail()) == 1

    def test_default_limit(self):
        assert AuditTrailMixin.audit_limit == DEFAULT_AUDIT_LIMIT == 500
