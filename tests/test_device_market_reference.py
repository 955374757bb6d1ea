#!/usr/bin/env python3
"""
Tests for device_market_reference.py
"""

import pytest
from decimal import Decimal

from device_market_reference import (
    DEAL_BENCHMARKS,
    SWITCHING_COST_TEMPLATES,
    deal_benchmark,
    predicate_device_map,
    switching_cost_analysis,
)


FACTORS = ["surgeon_training", "or_workflow", "capital_investment", "implant_inventory", "data_migration"]


class TestSwitchingCosts:
    def test_every_template_covers_five_factors(self):
        for key, template in SWITCHING_COST_TEMPLATES.items():
            assert [f.factor for f in template] == FACTORS, key

    def test_cardiovascular(self):
        costs = switching_cost_analysis("cardiovascular")
        assert [c["factor"] for c in costs] == FACTORS
        capital = costs[2]
        assert capital["severity"] == "high"
        assert capital["estimated_cost"] == 500000
        assert capital["time_to_switch_months"] == 12
        assert capital["narrative"].startswith("Substantial capital commitment required")

    @pytest.mark.parametrize("category,template", [
        ("Orthopedic", "orthopedic"),
        ("endoscopy_gi", "general_surgery"),
        ("respiratory", "neurology"),
        ("wound_care", "digital_health"),
        ("structural_heart", "cardiovascular"),
        (None, "cardiovascular"),
    ])
    def test_template_lookup(self, category, template):
        expected = [f.severity for f in SWITCHING_COST_TEMPLATES[template]]
        assert [c["severity"] for c in switching_cost_analysis(category)] == expected

    def test_data_heavy_category(self):
        migration = switching_cost_analysis("diabetes_metabolic")[-1]
        assert migration["severity"] == "high"
        assert "EMR/EHR" in migration["narrative"]


class TestPredicateMap:
    def test_pma_only_returns_none(self, make_device):
        assert predicate_device_map([make_device(k_number_or_pma="P190001")]) is None
        assert predicate_device_map([]) is None

    def test_chain_ordered_by_clearance(self, make_device):
        devices = [
            make_device(device_name="Gen3", pathway="510k", k_number_or_pma="K230300", clearance_date="2023-03"),
            make_device(device_name="Gen1", pathway="510k", k_number_or_pma="K190100", clearance_date="2019-01"),
            make_device(
                device_name="Other", pathway="510k", k_number_or_pma="K210200",
                clearance_date="2021-02", technology_type="self_expanding",
            ),
            make_device(device_name="Gen2", pathway="510k", k_number_or_pma="K220250", clearance_date="2022-05"),
            make_device(device_name="NoNumber", pathway="510k"),
        ]
        chain = predicate_device_map(devices)
        assert [e["device_name"] for e in chain] == ["Gen1", "Other", "Gen2", "Gen3"]
        assert chain[0]["predicate_k_number"] is None
        assert chain[1]["predicate_k_number"] is None
        # Gen2 follows a different technology, so no predicate
        assert chain[2]["predicate_k_number"] is None
        assert chain[3]["predicate_k_number"] == "K220250"
        assert chain[3]["predicate_device_name"] == "Acme Medical Gen2"

    def test_undated_device_sorts_first(self, make_device):
        devices = [
            make_device(device_name="Dated", pathway="510k", k_number_or_pma="K200001", clearance_date="2020-06"),
            make_device(device_name="Undated", pathway="510k", k_number_or_pma="K100001"),
        ]
        chain = predicate_device_map(devices)
        assert [e["clearance_date"] for e in chain] == ["Unknown", "2020-06"]
        assert chain[1]["predicate_k_number"] == "K100001"


class TestDealBenchmark:
    def test_cardiovascular(self):
        benchmark = deal_benchmark("cardiovascular")
        assert benchmark["benchmark_category"] == "cardiovascular"
        assert benchmark["median_revenue_multiple"] == Decimal("7.5")
        assert benchmark["median_deal_value_m"] == 1425
        assert benchmark["recent_deals"][0] == {
            "target": "Abiomed",
            "acquirer": "Johnson & Johnson",
            "value_m": 16600,
            "year": 2023,
            "multiple": "10.2x",
        }

    @pytest.mark.parametrize("category,key", [
        ("wound_care", "general_surgery"),
        ("renal_dialysis", "vascular"),
        ("unknown", "cardiovascular"),
    ])
    def test_borrowed_benchmark(self, category, key):
        benchmark = deal_benchmark(category)
        assert benchmark["benchmark_category"] == key
        assert benchmark["median_revenue_multiple"] == DEAL_BENCHMARKS[key]["median_revenue_multiple"]

    def test_deal_list_capped(self):
        for key in DEAL_BENCHMARKS:
            assert len(deal_benchmark(key)["recent_deals"]) <= 5
