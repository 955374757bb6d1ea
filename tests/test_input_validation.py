#!/usr/bin/env python3
"""
Tests for common/input_validation.py

Request objects for every analyzer. These tests cover:
- Field helpers (require_text, text_tuple, check_choice, numbers)
- Request construction from raw dicts
- Rejection of malformed shapes with InvalidInputError
- Sort / pagination validation for the screener
"""

import pytest
from decimal import Decimal

from common.input_validation import (
    InvalidInputError,
    CDxLandscapeRequest,
    DeviceLandscapeRequest,
    PartnerMatchRequest,
    PharmaLandscapeRequest,
    ScreenerFilters,
    check_choice,
    coerce_request,
    optional_int,
    optional_number,
    optional_text,
    require_text,
    text_tuple,
    validate_pagination,
    validate_sort,
)


def partner_request(**overrides):
    data = {
        "indication": "NSCLC",
        "development_stage": "phase2",
        "geography_rights": ["US", "EU"],
        "deal_types": ["licensing"],
    }
    data.update(overrides)
    return data


class TestFieldHelpers:
    """Tests for the field-level helpers."""

    def test_require_text_strips(self):
        assert require_text("  NSCLC ", "indication") == "NSCLC"

    @pytest.mark.parametrize("value", [None, "", "   ", 42])
    def test_require_text_rejects(self, value):
        with pytest.raises(InvalidInputError):
            require_text(value, "indication")

    def test_optional_text_blank_is_none(self):
        assert optional_text("  ", "mechanism") is None
        assert optional_text(None, "mechanism") is None

    def test_text_tuple_dedupes_and_keeps_order(self):
        assert text_tuple(["US", " EU ", "US", ""], "geo") == ("US", "EU")

    def test_text_tuple_accepts_single_string(self):
        assert text_tuple("US", "geo") == ("US",)

    def test_text_tuple_required(self):
        with pytest.raises(InvalidInputError):
            text_tuple([], "geo", required=True)

    def test_text_tuple_rejects_non_strings(self):
        with pytest.raises(InvalidInputError):
            text_tuple(["US", 3], "geo")
        with pytest.raises(InvalidInputError):
            text_tuple({"US": 1}, "geo")

    def test_check_choice_canonical_spelling(self):
        assert check_choice("PHASE2", ("phase1", "phase2"), "stage") == "phase2"

    def test_check_choice_rejects(self):
        with pytest.raises(InvalidInputError):
            check_choice("phase4", ("phase1", "phase2"), "stage")

    def test_optional_number(self):
        assert optional_number("12.5", "min") == Decimal("12.5")
        assert optional_number(None, "min") is None
        with pytest.raises(InvalidInputError):
            optional_number(True, "min")
        with pytest.raises(InvalidInputError):
            optional_number("x", "min")
        with pytest.raises(InvalidInputError):
            optional_number(-1, "min", Decimal("0"))

    def test_optional_number_rejects_nan(self):
        with pytest.raises(InvalidInputError):
            optional_number(float("nan"), "min")

    def test_optional_int(self):
        assert optional_int(5, "limit") == 5
        with pytest.raises(InvalidInputError):
            optional_int(2.5, "limit")
        with pytest.raises(InvalidInputError):
            optional_int(False, "limit")
        with pytest.raises(InvalidInputError):
            optional_int(0, "limit", minimum=1)


class TestLandscapeRequests:
    """Tests for the three landscape request objects."""

    def test_pharma_minimal(self):
        request = PharmaLandscapeRequest.from_dict({"indication": "NSCLC"})
        assert request.indication == "NSCLC"
        assert request.mechanism is None
        assert request.phases == ()

    def test_pharma_phases_canonicalized(self):
        request = PharmaLandscapeRequest.from_dict({"indication": "NSCLC", "phases": ["phase 3", "Approved"]})
        assert request.phases == ("Phase 3", "Approved")

    def test_pharma_unknown_phase(self):
        with pytest.raises(InvalidInputError):
            PharmaLandscapeRequest.from_dict({"indication": "NSCLC", "phases": ["Phase 4"]})

    def test_pharma_missing_indication(self):
        with pytest.raises(InvalidInputError):
            PharmaLandscapeRequest.from_dict({})

    def test_unknown_indication_is_not_malformed(self):
        request = PharmaLandscapeRequest.from_dict({"indication": "Zebra Syndrome"})
        assert request.indication == "Zebra Syndrome"

    def test_device_accepts_procedure_or_condition(self):
        request = DeviceLandscapeRequest.from_dict({"procedure_or_condition": "TAVR"})
        assert request.procedure == "TAVR"

    def test_device_missing_procedure(self):
        with pytest.raises(InvalidInputError):
            DeviceLandscapeRequest.from_dict({"device_category": "structural_heart"})

    def test_cdx(self):
        request = CDxLandscapeRequest.from_dict({"biomarker": "PD-L1", "test_type": "IHC"})
        assert request.biomarker == "PD-L1"
        assert request.test_type == "IHC"
        assert request.linked_drug is None

    def test_non_mapping_rejected(self):
        with pytest.raises(InvalidInputError):
            CDxLandscapeRequest.from_dict(["PD-L1"])


class TestPartnerMatchRequest:
    """Tests for PartnerMatchRequest."""

    def test_valid(self):
        request = PartnerMatchRequest.from_dict(partner_request(exclude_companies=["Pfizer"], limit=5))
        assert request.development_stage == "phase2"
        assert request.geography_rights == ("US", "EU")
        assert request.deal_types == ("licensing",)
        assert request.exclude_companies == ("Pfizer",)
        assert request.minimum_match_score == Decimal("0")
        assert request.limit == 5

    def test_stage_case_insensitive(self):
        assert PartnerMatchRequest.from_dict(partner_request(development_stage="Phase3")).development_stage == "phase3"

    @pytest.mark.parametrize("overrides", [
        {"development_stage": "phase4"},
        {"development_stage": None},
        {"geography_rights": []},
        {"deal_types": []},
        {"deal_types": ["merger"]},
        {"minimum_match_score": 101},
        {"minimum_match_score": -1},
        {"limit": 0},
        {"indication": ""},
    ])
    def test_malformed(self, overrides):
        with pytest.raises(InvalidInputError):
            PartnerMatchRequest.from_dict(partner_request(**overrides))

    def test_frozen(self):
        request = PartnerMatchRequest.from_dict(partner_request())
        with pytest.raises(Exception):
            request.indication = "Asthma"

    def test_coerce_passthrough(self):
        request = PartnerMatchRequest.from_dict(partner_request())
        assert coerce_request(request, PartnerMatchRequest) is request
        assert coerce_request(partner_request(), PartnerMatchRequest) == request


class TestScreenerFilters:
    """Tests for ScreenerFilters."""

    def test_none_gives_defaults(self):
        filters = ScreenerFilters.from_dict(None)
        assert filters == ScreenerFilters()

    def test_values(self):
        filters = ScreenerFilters.from_dict({
            "therapy_areas": ["Oncology", "immunology"],
            "product_category": "Device",
            "min_prevalence": 1000,
            "max_crowding": "6.5",
            "phases": ["phase3"],
        })
        assert filters.therapy_areas == ("oncology", "immunology")
        assert filters.product_category == "device"
        assert filters.min_prevalence == Decimal("1000")
        assert filters.max_crowding == Decimal("6.5")
        assert filters.phases == ("phase3",)

    def test_bad_category(self):
        with pytest.raises(InvalidInputError):
            ScreenerFilters.from_dict({"product_category": "software"})


class TestSortAndPagination:
    """Tests for validate_sort / validate_pagination."""

    def test_valid_sort(self):
        assert validate_sort("unmet_need", "ASC") == ("unmet_need", "asc")

    @pytest.mark.parametrize("sort_by,sort_order", [
        ("market_size", "desc"),
        (None, "desc"),
        ("opportunity_score", "up"),
    ])
    def test_invalid_sort(self, sort_by, sort_order):
        with pytest.raises(InvalidInputError):
            validate_sort(sort_by, sort_order)

    def test_pagination(self):
        assert validate_pagination(10, None) == (10, 0)
        assert validate_pagination(None, 20) == (None, 20)

    def test_negative_pagination(self):
        with pytest.raises(InvalidInputError):
            validate_pagination(-1, 0)
        with pytest.raises(InvalidInputError):
            validate_pagination(10, -5)
