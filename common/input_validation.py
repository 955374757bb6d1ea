"""
common/input_validation.py - Request Validation Layer

Builds typed request objects for every analyzer from raw dicts (as handed
over by an HTTP layer) and rejects malformed shapes before any scoring runs.

Design Philosophy:
- Fail-loud: malformed input raises InvalidInputError, never coerced
- Unknown entities are NOT malformed: "Zebra Syndrome" is a valid indication
  string, resolution misses are handled by the resolver fallback
- Requests are frozen so analyzers cannot mutate caller input

Usage:
    from common.input_validation import PartnerMatchRequest, InvalidInputError

    request = PartnerMatchRequest.from_dict({
        "indication": "NSCLC",
        "development_stage": "phase2",
        "geography_rights": ["US", "EU"],
        "deal_types": ["licensing"],
    })

Author: Wake Robin Capital Management
Version: 2.0.0
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Tuple, Union

from common.score_utils import to_decimal

logger = logging.getLogger(__name__)


# ============================================================================
# EXCEPTIONS
# ============================================================================

class InvalidInputError(ValueError):
    """Raised when a request is missing a required field or has a bad value."""
    pass


# ============================================================================
# ENUMERATIONS
# ============================================================================

PHARMA_PHASES = (
    "Approved",
    "Phase 3",
    "Phase 2/3",
    "Phase 2",
    "Phase 1/2",
    "Phase 1",
    "Preclinical",
)

DEVELOPMENT_STAGES = ("preclinical", "phase1", "phase2", "phase3", "approved")

DEAL_TYPES = ("licensing", "co-development", "acquisition", "co-promotion", "option")

PRODUCT_CATEGORIES = ("pharma", "device", "diagnostic")

SORT_KEYS = (
    "opportunity_score",
    "global_prevalence",
    "crowding_score",
    "global_incidence",
    "cagr_5yr",
    "unmet_need",
)

SORT_ORDERS = ("asc", "desc")


# ============================================================================
# FIELD HELPERS
# ============================================================================

def require_text(value: Any, field_name: str) -> str:
    """Return stripped text or raise if missing/blank/not a string."""
    if value is None:
        raise InvalidInputError(f"'{field_name}' is required")
    if not isinstance(value, str):
        raise InvalidInputError(f"'{field_name}' must be a string, got {type(value).__name__}")
    stripped = value.strip()
    if not stripped:
        raise InvalidInputError(f"'{field_name}' must not be blank")
    return stripped


def optional_text(value: Any, field_name: str) -> Optional[str]:
    """Like require_text, but None and blank strings become None."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidInputError(f"'{field_name}' must be a string, got {type(value).__name__}")
    stripped = value.strip()
    return stripped or None


def text_tuple(value: Any, field_name: str, required: bool = False) -> Tuple[str, ...]:
    """
    Normalize a list-of-strings field to a tuple of stripped, non-blank
    strings (order kept, duplicates dropped).
    """
    if value is None:
        items: Iterable[Any] = ()
    elif isinstance(value, str):
        items = (value,)
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = value
    else:
        raise InvalidInputError(f"'{field_name}' must be a list of strings, got {type(value).__name__}")

    result = []
    for item in items:
        if not isinstance(item, str):
            raise InvalidInputError(f"'{field_name}' entries must be strings, got {type(item).__name__}")
        stripped = item.strip()
        if stripped and stripped not in result:
            result.append(stripped)

    if required and not result:
        raise InvalidInputError(f"'{field_name}' must contain at least one entry")
    return tuple(result)


def check_choice(value: str, choices: Tuple[str, ...], field_name: str, case_insensitive: bool = True) -> str:
    """Return the canonical spelling of value from choices, or raise."""
    for choice in choices:
        if value == choice or (case_insensitive and value.lower() == choice.lower()):
            return choice
    raise InvalidInputError(f"'{field_name}' must be one of {list(choices)}, got '{value}'")


def optional_number(value: Any, field_name: str, minimum: Optional[Decimal] = None) -> Optional[Decimal]:
    """Parse an optional numeric field to Decimal."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidInputError(f"'{field_name}' must be a number")
    dec_value = to_decimal(value)
    if dec_value is None or not dec_value.is_finite():
        raise InvalidInputError(f"'{field_name}' must be a number, got {value!r}")
    if minimum is not None and dec_value < minimum:
        raise InvalidInputError(f"'{field_name}' must be >= {minimum}, got {value}")
    return dec_value


def optional_int(value: Any, field_name: str, minimum: int = 0) -> Optional[int]:
    """Parse an optional non-negative integer field."""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInputError(f"'{field_name}' must be an integer, got {value!r}")
    if value < minimum:
        raise InvalidInputError(f"'{field_name}' must be >= {minimum}, got {value}")
    return value


def _as_mapping(data: Any, request_name: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise InvalidInputError(f"{request_name} must be a mapping, got {type(data).__name__}")
    return data


# ============================================================================
# REQUEST OBJECTS
# ============================================================================

@dataclass(frozen=True)
class PharmaLandscapeRequest:
    """Pharma competitive landscape query."""
    indication: str
    mechanism: Optional[str] = None
    phases: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PharmaLandscapeRequest":
        data = _as_mapping(data, "Pharma landscape request")
        phases = tuple(
            check_choice(p, PHARMA_PHASES, "phases")
            for p in text_tuple(data.get("phases"), "phases")
        )
        return cls(
            indication=require_text(data.get("indication"), "indication"),
            mechanism=optional_text(data.get("mechanism"), "mechanism"),
            phases=phases,
        )


@dataclass(frozen=True)
class DeviceLandscapeRequest:
    """Medical-device competitive landscape query."""
    procedure: str
    device_category: Optional[str] = None
    technology_type: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DeviceLandscapeRequest":
        data = _as_mapping(data, "Device landscape request")
        procedure = data.get("procedure", data.get("procedure_or_condition"))
        return cls(
            procedure=require_text(procedure, "procedure"),
            device_category=optional_text(data.get("device_category"), "device_category"),
            technology_type=optional_text(data.get("technology_type"), "technology_type"),
        )


@dataclass(frozen=True)
class CDxLandscapeRequest:
    """Companion-diagnostic competitive landscape query."""
    biomarker: str
    test_type: Optional[str] = None
    linked_drug: Optional[str] = None
    indication: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CDxLandscapeRequest":
        data = _as_mapping(data, "CDx landscape request")
        return cls(
            biomarker=require_text(data.get("biomarker"), "biomarker"),
            test_type=optional_text(data.get("test_type"), "test_type"),
            linked_drug=optional_text(data.get("linked_drug"), "linked_drug"),
            indication=optional_text(data.get("indication"), "indication"),
        )


@dataclass(frozen=True)
class PartnerMatchRequest:
    """Partner matching query for an out-licensing asset."""
    indication: str
    development_stage: str
    geography_rights: Tuple[str, ...]
    deal_types: Tuple[str, ...]
    mechanism: Optional[str] = None
    exclude_companies: Tuple[str, ...] = ()
    minimum_match_score: Decimal = Decimal("0")
    limit: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PartnerMatchRequest":
        data = _as_mapping(data, "Partner match request")
        stage = check_choice(
            require_text(data.get("development_stage"), "development_stage"),
            DEVELOPMENT_STAGES,
            "development_stage",
        )
        deal_types = tuple(
            check_choice(d, DEAL_TYPES, "deal_types")
            for d in text_tuple(data.get("deal_types"), "deal_types", required=True)
        )
        minimum = optional_number(data.get("minimum_match_score"), "minimum_match_score", Decimal("0"))
        if minimum is not None and minimum > 100:
            raise InvalidInputError(f"'minimum_match_score' must be <= 100, got {minimum}")
        return cls(
            indication=require_text(data.get("indication"), "indication"),
            development_stage=stage,
            geography_rights=text_tuple(data.get("geography_rights"), "geography_rights", required=True),
            deal_types=deal_types,
            mechanism=optional_text(data.get("mechanism"), "mechanism"),
            exclude_companies=text_tuple(data.get("exclude_companies"), "exclude_companies"),
            minimum_match_score=minimum if minimum is not None else Decimal("0"),
            limit=optional_int(data.get("limit"), "limit", minimum=1),
        )


@dataclass(frozen=True)
class ScreenerFilters:
    """Corpus-wide screener filters (every field optional)."""
    therapy_areas: Tuple[str, ...] = ()
    product_category: Optional[str] = None
    min_prevalence: Optional[Decimal] = None
    max_crowding: Optional[Decimal] = None
    phases: Tuple[str, ...] = ()
    min_opportunity_score: Optional[Decimal] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ScreenerFilters":
        if data is None:
            return cls()
        data = _as_mapping(data, "Screener filters")
        category = optional_text(data.get("product_category"), "product_category")
        if category is not None:
            category = check_choice(category, PRODUCT_CATEGORIES, "product_category")
        return cls(
            therapy_areas=tuple(t.lower() for t in text_tuple(data.get("therapy_areas"), "therapy_areas")),
            product_category=category,
            min_prevalence=optional_number(data.get("min_prevalence"), "min_prevalence", Decimal("0")),
            max_crowding=optional_number(data.get("max_crowding"), "max_crowding", Decimal("0")),
            phases=text_tuple(data.get("phases"), "phases"),
            min_opportunity_score=optional_number(
                data.get("min_opportunity_score"), "min_opportunity_score", Decimal("0")
            ),
        )


def coerce_request(data: Union[Mapping[str, Any], Any], request_type: type) -> Any:
    """Accept either an already-built request object or a raw dict."""
    if isinstance(data, request_type):
        return data
    return request_type.from_dict(data)


def validate_sort(sort_by: Any, sort_order: Any) -> Tuple[str, str]:
    """Validate screener sort parameters."""
    if not isinstance(sort_by, str) or sort_by not in SORT_KEYS:
        raise InvalidInputError(f"'sort_by' must be one of {list(SORT_KEYS)}, got {sort_by!r}")
    if not isinstance(sort_order, str) or sort_order.lower() not in SORT_ORDERS:
        raise InvalidInputError(f"'sort_order' must be 'asc' or 'desc', got {sort_order!r}")
    return sort_by, sort_order.lower()


def validate_pagination(limit: Any, offset: Any) -> Tuple[Optional[int], int]:
    """Validate screener pagination (limit may be None for 'all')."""
    checked_limit = optional_int(limit, "limit", minimum=0)
    checked_offset = optional_int(offset, "offset", minimum=0)
    return checked_limit, checked_offset or 0


__all__ = [
    "InvalidInputError",
    "PHARMA_PHASES",
    "DEVELOPMENT_STAGES",
    "DEAL_TYPES",
    "PRODUCT_CATEGORIES",
    "SORT_KEYS",
    "SORT_ORDERS",
    "require_text",
    "optional_text",
    "text_tuple",
    "check_choice",
    "PharmaLandscapeRequest",
    "DeviceLandscapeRequest",
    "CDxLandscapeRequest",
    "PartnerMatchRequest",
    "ScreenerFilters",
    "coerce_request",
    "validate_sort",
    "validate_pagination",
]
