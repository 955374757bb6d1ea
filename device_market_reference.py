#!/usr/bin/env python3
"""
device_market_reference.py

Device Market Reference Tables

Category-level reference data the device landscape analyzer attaches to a
scored landscape:
- Switching-cost templates: five adoption factors per category template
  (surgeon training, OR workflow, capital investment, implant inventory,
  data migration) with severity, estimated cost and time to switch
- Predicate device map: 510(k) devices ordered by clearance date, each
  linked to the previous clearance of the same technology type
- Deal benchmarks: recent M&A comparables and median multiples per
  category template

Categories without a template of their own borrow the closest one
(ophthalmology -> cardiovascular, endoscopy_gi -> general_surgery, ...);
unknown categories fall back to cardiovascular.

Author: Wake Robin Capital Management
Version: 1.0.0
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from landscape_narratives import DEVICE_SWITCHING_NARRATIVES, DEVICE_SWITCHING_PENDING
from reference_corpus import DeviceCompetitor

__version__ = "1.0.0"
__author__ = "Wake Robin Capital Management"

DEFAULT_TEMPLATE = "cardiovascular"
UNKNOWN_CLEARANCE_DATE = "1900-01"
MAX_BENCHMARK_DEALS = 5

FALLBACK_REVENUE_MULTIPLE = Decimal("5.0")
FALLBACK_DEAL_VALUE_M = 500


@dataclass(frozen=True)
class SwitchingFactor:
    factor: str
    severity: str
    estimated_cost: int
    time_to_switch_months: int


@dataclass(frozen=True)
class DealComparable:
    target: str
    acquirer: str
    value_m: int
    year: int
    multiple: str


# (factor, severity, estimated cost $, months to switch)
_SWITCHING_ROWS: Dict[str, Tuple[Tuple[str, str, int, int], ...]] = {
    "cardiovascular": (
        ("surgeon_training", "high", 50000, 6),
        ("or_workflow", "moderate", 25000, 3),
        ("capital_investment", "high", 500000, 12),
        ("implant_inventory", "moderate", 100000, 4),
        ("data_migration", "low", 10000, 1),
    ),
    "orthopedic": (
        ("surgeon_training", "high", 75000, 9),
        ("or_workflow", "moderate", 30000, 4),
        ("capital_investment", "high", 800000, 18),
        ("implant_inventory", "high", 200000, 6),
        ("data_migration", "low", 5000, 1),
    ),
    "neurology": (
        ("surgeon_training", "high", 60000, 8),
        ("or_workflow", "moderate", 20000, 3),
        ("capital_investment", "moderate", 150000, 6),
        ("implant_inventory", "moderate", 80000, 3),
        ("data_migration", "moderate", 30000, 4),
    ),
    "diabetes_metabolic": (
        ("surgeon_training", "low", 5000, 1),
        ("or_workflow", "low", 2000, 1),
        ("capital_investment", "low", 10000, 2),
        ("implant_inventory", "low", 5000, 1),
        ("data_migration", "high", 50000, 6),
    ),
    "general_surgery": (
        ("surgeon_training", "high", 100000, 12),
        ("or_workflow", "high", 50000, 6),
        ("capital_investment", "high", 1500000, 24),
        ("implant_inventory", "low", 15000, 2),
        ("data_migration", "moderate", 20000, 3),
    ),
    "vascular": (
        ("surgeon_training", "moderate", 40000, 4),
        ("or_workflow", "moderate", 20000, 3),
        ("capital_investment", "moderate", 200000, 6),
        ("implant_inventory", "moderate", 50000, 3),
        ("data_migration", "low", 5000, 1),
    ),
    "digital_health": (
        ("surgeon_training", "low", 2000, 1),
        ("or_workflow", "low", 1000, 1),
        ("capital_investment", "low", 5000, 1),
        ("implant_inventory", "low", 0, 0),
        ("data_migration", "high", 100000, 9),
    ),
}

SWITCHING_COST_TEMPLATES: Dict[str, Tuple[SwitchingFactor, ...]] = {
    key: tuple(SwitchingFactor(*row) for row in rows) for key, rows in _SWITCHING_ROWS.items()
}

# Categories that borrow another template; the two maps differ on wound care
_SHARED_TEMPLATES = {
    "oncology_surgical": "general_surgery",
    "oncology_radiation": "general_surgery",
    "ophthalmology": "cardiovascular",
    "endoscopy_gi": "general_surgery",
    "respiratory": "neurology",
    "dental": "orthopedic",
    "ent": "general_surgery",
    "urology": "general_surgery",
    "dermatology": "digital_health",
    "renal_dialysis": "vascular",
    "imaging_radiology": "general_surgery",
    "ivd_oncology": "digital_health",
    "ivd_infectious": "digital_health",
    "ivd_cardiology": "digital_health",
    "ivd_genetics": "digital_health",
}
SWITCHING_TEMPLATE_FOR_CATEGORY = dict(_SHARED_TEMPLATES, wound_care="digital_health")
BENCHMARK_FOR_CATEGORY = dict(_SHARED_TEMPLATES, wound_care="general_surgery")

DEAL_BENCHMARKS: Dict[str, Dict[str, Any]] = {
    "cardiovascular": {
        "deals": (
            DealComparable("Abiomed", "Johnson & Johnson", 16600, 2023, "10.2x"),
            DealComparable("Farapulse", "Boston Scientific", 1100, 2021, "Pre-revenue"),
            DealComparable("Preventice Solutions", "Boston Scientific", 925, 2022, "6.5x"),
            DealComparable("Baylis Medical", "Boston Scientific", 1750, 2022, "8.8x"),
        ),
        "median_revenue_multiple": Decimal("7.5"),
        "median_deal_value_m": 1425,
    },
    "orthopedic": {
        "deals": (
            DealComparable("Wright Medical", "Stryker", 4700, 2020, "5.4x"),
            DealComparable("Mako Surgical", "Stryker", 1650, 2013, "Pre-revenue"),
            DealComparable("Bioventus (spin-off)", "IPO", 400, 2021, "2.5x"),
        ),
        "median_revenue_multiple": Decimal("5.0"),
        "median_deal_value_m": 1650,
    },
    "neurology": {
        "deals": (
            DealComparable("Nevro", "Public", 1800, 2024, "4.5x"),
            DealComparable("Nuvectra", "Integer Holdings", 240, 2022, "3.2x"),
            DealComparable("Axonics", "Boston Scientific", 3700, 2024, "7.1x"),
        ),
        "median_revenue_multiple": Decimal("4.5"),
        "median_deal_value_m": 1800,
    },
    "diabetes_metabolic": {
        "deals": (
            DealComparable("Senseonics", "Public", 350, 2024, "6.0x"),
            DealComparable("Insulet (market cap)", "Public", 17000, 2024, "12.5x"),
            DealComparable("Tandem Diabetes", "Public", 2200, 2024, "5.8x"),
        ),
        "median_revenue_multiple": Decimal("6.0"),
        "median_deal_value_m": 2200,
    },
    "general_surgery": {
        "deals": (
            DealComparable("Medicrea", "Medtronic", 235, 2020, "5.2x"),
            DealComparable("Auris Health", "Johnson & Johnson", 5750, 2019, "Pre-revenue"),
            DealComparable("Velys (internal)", "J&J MedTech", 500, 2022, "N/A"),
        ),
        "median_revenue_multiple": Decimal("5.2"),
        "median_deal_value_m": 500,
    },
    "digital_health": {
        "deals": (
            DealComparable("Livongo", "Teladoc", 18500, 2020, "43x"),
            DealComparable("Pear Therapeutics", "Bankruptcy", 0, 2023, "N/A"),
            DealComparable("Omada Health", "Private", 600, 2022, "4.0x"),
        ),
        "median_revenue_multiple": Decimal("4.0"),
        "median_deal_value_m": 600,
    },
    "vascular": {
        "deals": (
            DealComparable("Penumbra (market cap)", "Public", 5000, 2024, "7.5x"),
            DealComparable("Silk Road Medical", "Boston Scientific", 1160, 2024, "8.5x"),
            DealComparable("Route 92 Medical", "Stryker", 1100, 2022, "Pre-revenue"),
        ),
        "median_revenue_multiple": Decimal("8.0"),
        "median_deal_value_m": 1160,
    },
}


def _template_key(category: Optional[str], mapping: Dict[str, str], templates: Dict[str, Any]) -> str:
    key = (category or "").lower()
    if key in templates:
        return key
    return mapping.get(key, DEFAULT_TEMPLATE)


def switching_cost_analysis(category: Optional[str]) -> List[Dict[str, Any]]:
    """Switching-cost factors for a device category, each with its narrative."""
    template = SWITCHING_COST_TEMPLATES[_template_key(category, SWITCHING_TEMPLATE_FOR_CATEGORY, SWITCHING_COST_TEMPLATES)]
    return [
        {
            "factor": entry.factor,
            "severity": entry.severity,
            "estimated_cost": entry.estimated_cost,
            "time_to_switch_months": entry.time_to_switch_months,
            "narrative": DEVICE_SWITCHING_NARRATIVES.get(entry.factor, {}).get(
                entry.severity, DEVICE_SWITCHING_PENDING
            ),
        }
        for entry in template
    ]


def predicate_device_map(cleared: Sequence[DeviceCompetitor]) -> Optional[List[Dict[str, Any]]]:
    """
    510(k) clearance chain, oldest first.

    Only 510(k) devices with a K-number take part. A device whose
    immediate predecessor in the chain shares its technology type names
    that device as its likely predicate. None when no device qualifies.
    """
    chain = sorted(
        (d for d in cleared if d.pathway == "510k" and d.k_number_or_pma),
        key=lambda d: d.clearance_date or UNKNOWN_CLEARANCE_DATE,
    )
    if not chain:
        return None

    entries = []
    for index, device in enumerate(chain):
        entry = {
            "device_name": device.device_name,
            "company": device.company,
            "k_number": device.k_number_or_pma,
            "clearance_date": device.clearance_date or "Unknown",
            "predicate_k_number": None,
            "predicate_device_name": None,
        }
        if index > 0:
            previous = chain[index - 1]
            if previous.technology_type.lower() == device.technology_type.lower():
                entry["predicate_k_number"] = previous.k_number_or_pma
                entry["predicate_device_name"] = f"{previous.company} {previous.device_name}"
        entries.append(entry)
    return entries


def deal_benchmark(category: Optional[str]) -> Dict[str, Any]:
    """Recent comparable deals and median valuation for a device category."""
    key = _template_key(category, BENCHMARK_FOR_CATEGORY, DEAL_BENCHMARKS)
    benchmark = DEAL_BENCHMARKS.get(key)
    if benchmark is None:
        return {
            "benchmark_category": None,
            "recent_deals": [],
            "median_revenue_multiple": FALLBACK_REVENUE_MULTIPLE,
            "median_deal_value_m": FALLBACK_DEAL_VALUE_M,
        }
    return {
        "benchmark_category": key,
        "recent_deals": [
            {
                "target": deal.target,
                "acquirer": deal.acquirer,
                "value_m": deal.value_m,
                "year": deal.year,
                "multiple": deal.multiple,
            }
            for deal in benchmark["deals"][:MAX_BENCHMARK_DEALS]
        ],
        "median_revenue_multiple": benchmark["median_revenue_multiple"],
        "median_deal_value_m": benchmark["median_deal_value_m"],
    }


__all__ = [
    "SwitchingFactor",
    "DealComparable",
    "SWITCHING_COST_TEMPLATES",
    "DEAL_BENCHMARKS",
    "switching_cost_analysis",
    "predicate_device_map",
    "deal_benchmark",
]
