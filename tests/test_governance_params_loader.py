#!/usr/bin/env python3
"""
Tests for governance/params_loader.py

Covers loading the versioned scoring tables, fail-closed errors,
band/weight validation.
"""

import copy
import json
import os
import pytest
from decimal import Decimal

from governance.params_loader import (
    REQUIRED_SECTIONS,
    WEIGHT_GROUPS,
    ParamsLoadError,
    ParamsValidationError,
    compute_parameters_hash,
    load_and_validate_params,
    load_params,
    PARAMS_DIR_ENV,
    get_params_path,
    validate_lookup_tables,
    validate_params_structure,
    validate_weight_groups,
)


class TestShippedParams:
    """The archived scoring_v1 table set."""

    def test_loads_and_validates(self, params_pair):
        params, params_hash = params_pair
        assert params["score_version"] == "scoring_v1"
        assert len(params_hash) == 16

    def test_hash_stable(self, params):
        assert compute_parameters_hash(params) == compute_parameters_hash(copy.deepcopy(params))

    @pytest.mark.parametrize("section,key", WEIGHT_GROUPS)
    def test_weight_tables_sum_to_one(self, params, section, key):
        total = sum(Decimal(str(v)) for v in params[section][key].values())
        assert total == Decimal("1")

    def test_required_sections_present(self, params):
        for section in REQUIRED_SECTIONS:
            assert section in params


class TestLoadErrors:
    """Fail-closed loading."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(ParamsLoadError, match="not found"):
            load_params("scoring_v9", tmp_path)

    def test_invalid_json(self, tmp_path):
        (tmp_path / "scoring_v1.json").write_text("{bad", encoding="utf-8")
        with pytest.raises(ParamsLoadError, match="Invalid JSON"):
            load_params("scoring_v1", tmp_path)

    def test_not_an_object(self, tmp_path):
        (tmp_path / "scoring_v1.json").write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(ParamsLoadError):
            load_params("scoring_v1", tmp_path)

    @pytest.mark.skipif(os.name == "nt", reason="symlinks need privileges on Windows")
    def test_symlink_rejected(self, tmp_path, params):
        real = tmp_path / "real.json"
        real.write_text(json.dumps(params), encoding="utf-8")
        (tmp_path / "scoring_v1.json").symlink_to(real)
        with pytest.raises(ParamsLoadError, match="symbolic link"):
            load_params("scoring_v1", tmp_path)

    def test_env_override(self, tmp_path, monkeypatch, params):
        (tmp_path / "scoring_v1.json").write_text(json.dumps(params), encoding="utf-8")
        monkeypatch.setenv(PARAMS_DIR_ENV, str(tmp_path))
        assert get_params_path("scoring_v1") == tmp_path / "scoring_v1.json"
        loaded, _ = load_and_validate_params()
        assert loaded == params

    def test_explicit_dir_beats_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv(PARAMS_DIR_ENV, str(tmp_path / "elsewhere"))
        assert get_params_path("scoring_v1", tmp_path) == tmp_path / "scoring_v1.json"


class TestValidation:
    """Structure and weight-sum validation."""

    def test_band_label_count(self, params):
        broken = copy.deepcopy(params)
        broken["bands"]["pharma_crowding"]["labels"].pop()
        ok, message = validate_params_structure(broken, REQUIRED_SECTIONS)
        assert not ok
        assert "pharma_crowding" in message

    def test_band_thresholds_ascending(self, params):
        broken = copy.deepcopy(params)
        broken["bands"]["hhi_concentration"]["thresholds"] = [2500, 1500, 5000]
        ok, _ = validate_params_structure(broken)
        assert not ok

    def test_missing_section(self, params):
        broken = copy.deepcopy(params)
        del broken["screener"]
        ok, message = validate_params_structure(broken, REQUIRED_SECTIONS)
        assert not ok
        assert "screener" in message

    def test_weight_sum_off(self, params):
        broken = copy.deepcopy(params)
        broken["partner"]["weights"]["deal_history"] = 0.3
        with pytest.raises(ParamsValidationError, match="partner.weights"):
            validate_weight_groups(broken)

    def test_negative_weight(self, params):
        broken = copy.deepcopy(params)
        broken["screener"]["weights"]["unmet_need"] = -0.2
        broken["screener"]["weights"]["market_attractiveness"] = 0.7
        with pytest.raises(ParamsValidationError, match="Negative"):
            validate_weight_groups(broken)

    def test_load_and_validate_rejects_bad_weights(self, tmp_path, params):
        broken = copy.deepcopy(params)
        broken["device"]["crowding_weights"]["hhi"] = 0.5
        (tmp_path / "scoring_v1.json").write_text(json.dumps(broken), encoding="utf-8")
        with pytest.raises(ParamsValidationError):
            load_and_validate_params("scoring_v1", tmp_path)


class TestLookupTables:
    """Cross-table consistency."""

    def test_shipped_tables_consistent(self, params):
        validate_lookup_tables(params)

    def test_phase_tables_must_match(self, params):
        broken = copy.deepcopy(params)
        del broken["pharma"]["phase_evidence"]["Phase 2/3"]
        with pytest.raises(ParamsValidationError, match="phase_evidence"):
            validate_lookup_tables(broken)

    def test_count_ladder_ascending(self, params):
        broken = copy.deepcopy(params)
        broken["pharma"]["crowding_count_steps"] = [[6, 4], [3, 2]]
        with pytest.raises(ParamsValidationError, match="crowding_count_steps"):
            validate_lookup_tables(broken)

    def test_loa_default_required(self, params):
        broken = copy.deepcopy(params)
        del broken["screener"]["loa_by_therapy_area"]["default"]
        with pytest.raises(ParamsValidationError, match="default"):
            validate_lookup_tables(broken)

