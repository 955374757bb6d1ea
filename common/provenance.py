"""
Provenance tracking for deterministic analyzer results.

Every result names the module and version that produced it, the corpus
snapshot and parameter table it was scored against, and a content hash of
the result body. The hash skips non-deterministic fields so two runs over
the same snapshot hash identically whatever their wall-clock time.
"""
from __future__ import annotations

from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from governance.hashing import hash_canonical_json_short

# Fields excluded from hash computation (non-deterministic or self-referential)
HASH_EXCLUDED_FIELDS = frozenset([
    "generated_at",
    "provenance",
    "runtime_ms",
])

DEFAULT_AUDIT_LIMIT = 500


def resolve_generated_at(generated_at: Optional[datetime] = None) -> datetime:
    """Caller-supplied timestamp, else UTC now."""
    if generated_at is None:
        return datetime.now(timezone.utc)
    if not isinstance(generated_at, datetime):
        raise TypeError(f"generated_at must be a datetime, got {type(generated_at).__name__}")
    return generated_at


def compute_content_hash(body: Dict[str, Any]) -> str:
    """Canonical hash of a result body, top-level excluded fields dropped."""
    cleaned = {k: v for k, v in body.items() if k not in HASH_EXCLUDED_FIELDS}
    return hash_canonical_json_short(cleaned)


def create_provenance(
    module: str,
    module_version: str,
    corpus_version: str,
    parameters_hash: str,
    body: Dict[str, Any],
) -> Dict[str, Any]:
    """
    Create provenance record for an analyzer result.

    Args:
        module: Producing module name
        module_version: Its VERSION constant
        corpus_version: Version of the corpus snapshot scored against
        parameters_hash: Hash of the params_archive table set
        body: Result body (generated_at/provenance ignored)

    Returns:
        Dict with module, module_version, corpus_version, parameters_hash, content_hash
    """
    return {
        "module": module,
        "module_version": module_version,
        "corpus_version": corpus_version,
        "parameters_hash": parameters_hash,
        "content_hash": compute_content_hash(body),
    }


def finalize_result(
    body: Dict[str, Any],
    module: str,
    module_version: str,
    corpus_version: str,
    parameters_hash: str,
    generated_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Attach generated_at and provenance to a finished result body."""
    body["provenance"] = create_provenance(module, module_version, corpus_version, parameters_hash, body)
    body["generated_at"] = resolve_generated_at(generated_at).isoformat()
    return body


class AuditTrailMixin:
    """
    Bounded in-memory audit trail shared by the analyzers.

    Oldest entries drop off once `audit_limit` is reached.
    """

    audit_limit = DEFAULT_AUDIT_LIMIT

    def _init_audit(self) -> None:
        self.audit_trail: Deque[Dict[str, Any]] = deque(maxlen=self.audit_limit)

    def _add_audit(self, entry: Dict[str, Any]) -> None:
        """Add entry to audit trail."""
        self.audit_trail.append(entry)

    def get_audit_trail(self) -> List[Dict[str, Any]]:
        """Return audit trail."""
        return list(self.audit_trail)

    def clear_audit_trail(self) -> None:
        """Clear audit trail."""
        self.audit_trail.clear()
