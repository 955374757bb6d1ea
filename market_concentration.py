#!/usr/bin/env python3
"""
market_concentration.py

Market Concentration for the Competitive Landscape Analyzers

Turns per-competitor market shares into a distribution summary:
- Shares normalized to sum to 100 when the reported shares are partial
- Herfindahl-Hirschman Index (HHI = sum of squared percentage shares)
- Concentration label banded against the versioned HHI thresholds
  (Fragmented < 1500 <= Moderately Concentrated < 2500 <= Highly
  Concentrated < 5000 <= Monopolistic)

Shares come from whatever the variant has: reported share for devices,
test volume for diagnostics, and the stage x evidence x differentiation
weight model for pharma assets.

Author: Wake Robin Capital Management
Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Sequence

from common.score_utils import TENTH, band_from_params, quantize, to_decimal

__version__ = "1.0.0"
__author__ = "Wake Robin Capital Management"

logger = logging.getLogger(__name__)

FULL_MARKET = Decimal("100")
TOP_N = 3


@dataclass(frozen=True)
class ShareEntry:
    """One competitor's raw share input (any non-negative scale)."""
    name: str
    segment: str
    weight: Decimal


def normalize_shares(entries: Iterable[ShareEntry]) -> List[Dict[str, Any]]:
    """
    Scale positive weights so they sum to 100 and round to 0.1.

    Entries with a zero, negative or missing weight are dropped. Output is
    sorted by share descending, then name ascending.
    """
    kept = [e for e in entries if e.weight is not None and e.weight > 0]
    total = sum((e.weight for e in kept), Decimal("0"))
    if total <= 0:
        return []

    shares = [
        {
            "name": e.name,
            "segment": e.segment,
            "estimated_share_pct": quantize(e.weight * FULL_MARKET / total, TENTH),
        }
        for e in kept
    ]
    shares.sort(key=lambda s: (-s["estimated_share_pct"], s["name"]))
    return shares


def compute_hhi(shares: Iterable[Any]) -> int:
    """
    Herfindahl-Hirschman Index of percentage shares, rounded half-up.

    Examples:
        >>> compute_hhi([50, 50])
        5000
        >>> compute_hhi([])
        0
    """
    total = Decimal("0")
    for share in shares:
        value = to_decimal(share, Decimal("0"))
        total += value * value
    return int(total.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def concentration_label(hhi: Any, params: Dict[str, Any]) -> str:
    return band_from_params(hhi, params["bands"]["hhi_concentration"])


def market_share_distribution(
    entries: Sequence[ShareEntry],
    params: Dict[str, Any],
) -> Dict[str, Any]:
    """
    Build the market share block shared by all three analyzers.

    Returns:
        {competitors, hhi_index, concentration_label, top_3_share_pct, top_players}
    """
    shares = normalize_shares(entries)
    hhi = compute_hhi(s["estimated_share_pct"] for s in shares)
    top = shares[:TOP_N]
    top_share = quantize(sum((s["estimated_share_pct"] for s in top), Decimal("0")), TENTH)

    if len(shares) < len(entries):
        logger.debug(f"Dropped {len(entries) - len(shares)} entries without a positive share")

    return {
        "competitors": shares,
        "hhi_index": hhi,
        "concentration_label": concentration_label(hhi, params),
        "top_3_share_pct": top_share,
        "top_players": [s["name"].split(" — ")[0] for s in top],
    }


def dominant_share(counts: Dict[str, int]) -> Optional[Decimal]:
    """Largest bucket's share of the total (0-1), None for an empty tally."""
    total = sum(counts.values())
    if total == 0:
        return None
    return Decimal(max(counts.values())) / Decimal(total)


__all__ = [
    "ShareEntry",
    "normalize_shares",
    "compute_hhi",
    "concentration_label",
    "market_share_distribution",
    "dominant_share",
]
