#!/usr/bin/env python3
"""
competitive_dynamics.py

Competitive Dynamics for the Pharma Landscape Analyzer

Forward-looking reads layered on the per-asset differentiation and
evidence scores of an indication's competitor set:
- Threat assessment per asset (1-10 + level): phase proximity, overlap
  with the requester's mechanism, parsed efficacy, partnership and
  first-in-class status
- Displacement risk from dominant incumbents, late-stage same-mechanism
  programs and approved-market saturation
- Barriers to entry across six barrier types, scored 1-10
- Competitive timeline (readout / filing / launch windows) per asset
- Likelihood-of-approval weighted threat per asset

Every threshold lives in params["pharma"] and the versioned bands. Dates
are projected from the corpus as-of date, never the wall clock, so a
result is reproducible for a given snapshot.

Author: Wake Robin Capital Management
Version: 1.0.0
"""

import logging
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Sequence, Tuple

from common.score_utils import SCORE_PRECISION, band_from_params, clamp_1_10, quantize, to_decimal
from common.text_normalization import contains_phrase, keyword_set, tokenize
from landscape_narratives import (
    PHARMA_BARRIER_RULES,
    PHARMA_BARRIER_TEXT,
    PHARMA_DISPLACEMENT_DOMINANT,
    PHARMA_DISPLACEMENT_LATE_STAGE,
    PHARMA_DISPLACEMENT_NARRATIVES,
    PHARMA_DISPLACEMENT_SATURATION,
    PHARMA_SUCCESS_RULES,
    PHARMA_THREAT_FACTORS,
    PHARMA_TIMELINE_RISKS,
    first_match,
)
from reference_corpus import PharmaCompetitor

__version__ = "1.0.0"
__author__ = "Wake Robin Capital Management"

logger = logging.getLogger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

LATE_STAGE_PHASES = ("Phase 3", "Phase 2/3")
EARLY_PHASES = ("Preclinical", "Phase 1")

SAME_MECHANISM = "same"
RELATED_MECHANISM = "related"

# First pattern that matches wins
EFFICACY_PATTERNS = {
    "orr_pct": (
        re.compile(r"\borr[\s:=of]*(\d+(?:\.\d+)?)\s*%"),
        re.compile(r"(\d+(?:\.\d+)?)\s*%\s*orr\b"),
    ),
    "os_hr": (
        re.compile(r"(?:hazard\s*ratio|\bhr)[\s:=]*(\d\.\d+)"),
    ),
}

COMPLEX_MODALITIES = ("car-t", "car_t", "gene therapy", "bispecific", "adc", "antibody-drug conjugate")
CELL_GENE_MODALITIES = ("car-t", "car_t", "gene therapy")
BIOLOGIC_MARKERS = ("antibody", "biologic", "adc", "bispecific", "car-t", "gene therapy")
PEDIATRIC_MARKERS = ("pediatric", "paediatric", "children")

BARRIER_ORDER = (
    "ip_protection",
    "manufacturing_complexity",
    "first_mover",
    "regulatory_exclusivity",
    "payer_entrenchment",
    "kol_network",
)


@dataclass(frozen=True)
class ScoredAsset:
    """A competitor with the scores the landscape analyzer assigned it."""
    competitor: PharmaCompetitor
    differentiation: Decimal
    evidence: Decimal
    threat: Dict[str, Any]

    @property
    def label(self) -> str:
        return f"{self.competitor.company} ({self.competitor.asset_name})"

    @property
    def threat_score(self) -> Decimal:
        return self.threat["threat_score"]


# ============================================================================
# TEXT SIGNALS
# ============================================================================

def parse_efficacy(key_data: Optional[str]) -> Dict[str, Decimal]:
    """
    ORR % and hazard ratio from free-text key data.

        >>> parse_efficacy("IIT: 100% ORR in 2 patients")
        {'orr_pct': Decimal('100')}
    """
    text = (key_data or "").lower()
    parsed: Dict[str, Decimal] = {}
    for field, patterns in EFFICACY_PATTERNS.items():
        for pattern in patterns:
            match = pattern.search(text)
            if match:
                parsed[field] = Decimal(match.group(1))
                break
    return parsed


def mentions_any(texts: Sequence[str], phrases: Sequence[str]) -> bool:
    """True if any phrase appears on token boundaries in any of the texts."""
    needles = [tokenize(phrase) for phrase in phrases]
    for text in texts:
        tokens = tokenize(text)
        if any(contains_phrase(tokens, needle) for needle in needles):
            return True
    return False


def mechanism_overlap(competitor: PharmaCompetitor, mechanism: Optional[str]) -> Optional[str]:
    """
    "same" when one mechanism phrase contains the other, "related" when a
    query keyword names the competitor's mechanism class, else None.
    """
    query = tokenize(mechanism)
    if not query:
        return None
    own = tokenize(competitor.mechanism)
    if own and (contains_phrase(own, query) or contains_phrase(query, own)):
        return SAME_MECHANISM
    category = set(tokenize(competitor.mechanism_category))
    if any(keyword in category for keyword in keyword_set([mechanism])):
        return RELATED_MECHANISM
    return None


# ============================================================================
# THREAT AND DISPLACEMENT
# ============================================================================

def assess_threat(
    competitor: PharmaCompetitor,
    mechanism: Optional[str],
    params: Dict[str, Any],
) -> Dict[str, Any]:
    """
    1-10 threat one asset poses to a new entrant with the given mechanism.

    Phase proximity score, then bonuses for mechanism overlap, strong OS
    hazard ratio, high ORR, a named partner and first-in-class status.
    Without a mechanism the overlap bonus never applies.
    """
    pharma = params["pharma"]
    rules = pharma["threat"]
    factors: List[str] = []

    phase_score = to_decimal(pharma["phase_threat_score"].get(competitor.phase), Decimal("0"))
    score = phase_score
    if phase_score >= to_decimal(rules["near_term_phase_score"]):
        factors.append(PHARMA_THREAT_FACTORS["near_term"].format(phase=competitor.phase))

    overlap = mechanism_overlap(competitor, mechanism)
    if overlap == SAME_MECHANISM:
        score += to_decimal(rules["same_mechanism"])
        factors.append(PHARMA_THREAT_FACTORS["same_mechanism"])
    elif overlap == RELATED_MECHANISM:
        score += to_decimal(rules["related_category"])
        factors.append(PHARMA_THREAT_FACTORS["related_mechanism"])

    efficacy = parse_efficacy(competitor.key_data)
    os_hr = efficacy.get("os_hr")
    if os_hr is not None and os_hr < to_decimal(rules["strong_os_hr"]):
        score += to_decimal(rules["strong_os_bonus"])
        factors.append(PHARMA_THREAT_FACTORS["strong_os"].format(os_hr=os_hr))
    orr = efficacy.get("orr_pct")
    if orr is not None and orr >= to_decimal(rules["high_orr_pct"]):
        score += to_decimal(rules["high_orr_bonus"])
        factors.append(PHARMA_THREAT_FACTORS["high_orr"].format(orr_pct=orr))

    if competitor.partner:
        score += to_decimal(rules["partnered"])
        factors.append(PHARMA_THREAT_FACTORS["partnered"].format(partner=competitor.partner))
    if competitor.first_in_class:
        score += to_decimal(rules["first_in_class"])
        factors.append(PHARMA_THREAT_FACTORS["first_in_class"])

    threat = clamp_1_10(score)
    return {
        "threat_score": threat,
        "threat_level": band_from_params(threat, params["bands"]["threat_level"]),
        "threat_factors": factors,
        "mechanism_overlap": overlap,
    }


def assess_displacement(assets: Sequence[ScoredAsset], params: Dict[str, Any]) -> Dict[str, Any]:
    """
    Displacement risk (low / medium / high) for a new entrant.

    Each dominant incumbent, each late-stage same-mechanism program and an
    approved-saturated market counts one point; enough dominant incumbents
    escalate straight to the top of the displacement_risk band.
    """
    rules = params["pharma"]["displacement"]
    approved = [a for a in assets if a.competitor.is_approved]
    dominant = [
        a for a in approved
        if a.differentiation >= to_decimal(rules["dominant_min_differentiation"])
        and a.evidence >= to_decimal(rules["dominant_min_evidence"])
    ]

    threats = [PHARMA_DISPLACEMENT_DOMINANT.format(name=a.label) for a in dominant]
    threats.extend(
        PHARMA_DISPLACEMENT_LATE_STAGE.format(name=a.label, phase=a.competitor.phase)
        for a in assets
        if a.competitor.phase in LATE_STAGE_PHASES and a.threat["mechanism_overlap"] == SAME_MECHANISM
    )
    if len(approved) >= int(rules["saturation_approved_count"]):
        threats.append(PHARMA_DISPLACEMENT_SATURATION.format(approved=len(approved)))

    points = len(threats)
    if len(dominant) >= int(rules["dominant_escalation"]):
        points = max(points, int(rules["escalated_points"]))
    level = band_from_params(points, params["bands"]["displacement_risk"])

    return {
        "risk_level": level,
        "narrative": PHARMA_DISPLACEMENT_NARRATIVES[level],
        "key_threats": threats[:int(rules["max_key_threats"])],
        "dominant_incumbent_count": len(dominant),
    }


# ============================================================================
# BARRIERS TO ENTRY
# ============================================================================

def _names(competitors: Sequence[PharmaCompetitor]) -> List[str]:
    names: List[str] = []
    for competitor in competitors:
        name = f"{competitor.company} ({competitor.asset_name})"
        if name not in names:
            names.append(name)
    return names


def _texts(competitor: PharmaCompetitor) -> Tuple[str, str]:
    return competitor.mechanism, competitor.mechanism_category


def _is_biologic(competitor: PharmaCompetitor) -> bool:
    return mentions_any(_texts(competitor), BIOLOGIC_MARKERS)


def _barrier(barrier_type: str, severity: str, description: str, affected: List[str]) -> Dict[str, Any]:
    return {
        "barrier_type": barrier_type,
        "severity": severity,
        "description": description,
        "affected_competitors": affected,
    }


def identify_barriers(assets: Sequence[ScoredAsset], params: Dict[str, Any]) -> List[Dict[str, Any]]:
    """The barriers present in a competitor set, in BARRIER_ORDER."""
    rules = params["pharma"]["barriers"]
    competitors = [a.competitor for a in assets]
    approved = [c for c in competitors if c.is_approved]
    orphan = [c for c in approved if c.orphan_drug]
    first_in_class = [c for c in approved if c.first_in_class]
    barriers: List[Dict[str, Any]] = []

    parts = []
    if orphan:
        parts.append(PHARMA_BARRIER_TEXT["ip_orphan"].format(count=len(orphan)))
    if first_in_class:
        parts.append(PHARMA_BARRIER_TEXT["ip_first_in_class"].format(count=len(first_in_class)))
    if parts:
        severity = "high" if len(first_in_class) >= 2 else "medium"
        barriers.append(_barrier(
            "ip_protection", severity, ". ".join(parts) + ".", _names(orphan + first_in_class),
        ))

    complex_assets = [c for c in competitors if mentions_any(_texts(c), COMPLEX_MODALITIES)]
    if complex_assets:
        barriers.append(_barrier(
            "manufacturing_complexity", "high", PHARMA_BARRIER_TEXT["manufacturing_high"], _names(complex_assets),
        ))
    elif any(_is_biologic(c) or (mentions_any(_texts(c), ("inhibitor",))
                                 and not mentions_any(_texts(c), ("small molecule",)))
             for c in competitors):
        barriers.append(_barrier(
            "manufacturing_complexity", "medium", PHARMA_BARRIER_TEXT["manufacturing_medium"], [],
        ))

    min_evidence = to_decimal(rules["first_mover_min_evidence"])
    incumbents = [a.competitor for a in assets if a.competitor.is_approved and a.evidence >= min_evidence]
    if incumbents:
        barriers.append(_barrier(
            "first_mover",
            "high" if len(incumbents) >= 2 else "medium",
            PHARMA_BARRIER_TEXT["first_mover"].format(count=len(incumbents), min_evidence=min_evidence),
            _names(incumbents),
        ))

    biologics = [c for c in approved if _is_biologic(c)]
    parts = []
    if orphan:
        parts.append(PHARMA_BARRIER_TEXT["exclusivity_orphan"].format(count=len(orphan)))
    if biologics:
        parts.append(PHARMA_BARRIER_TEXT["exclusivity_biologic"].format(count=len(biologics)))
    if parts:
        if len(orphan) >= 2 or len(biologics) >= 2:
            severity = "high"
        elif len(parts) >= 2:
            severity = "medium"
        else:
            severity = "low"
        barriers.append(_barrier(
            "regulatory_exclusivity", severity, ". ".join(parts) + ".", _names(orphan + biologics),
        ))

    if len(approved) >= int(rules["payer_high_min_approved"]):
        barriers.append(_barrier(
            "payer_entrenchment", "high", PHARMA_BARRIER_TEXT["payer_high"].format(count=len(approved)),
            _names(approved),
        ))
    elif len(approved) >= int(rules["payer_medium_min_approved"]):
        barriers.append(_barrier(
            "payer_entrenchment", "medium", PHARMA_BARRIER_TEXT["payer_medium"].format(count=len(approved)),
            _names(approved),
        ))

    established = [c for c in approved if len(c.key_data) > int(rules["kol_min_key_data_chars"])]
    if len(established) >= 2:
        barriers.append(_barrier(
            "kol_network", "high", PHARMA_BARRIER_TEXT["kol_high"].format(count=len(established)),
            _names(established),
        ))
    elif established:
        barriers.append(_barrier("kol_network", "medium", PHARMA_BARRIER_TEXT["kol_medium"], _names(established)))

    return barriers


def assess_barriers(
    assets: Sequence[ScoredAsset],
    therapy_area: Optional[str],
    params: Dict[str, Any],
) -> Dict[str, Any]:
    """
    Barriers to entry with an overall 1-10 score.

    The score is the summed severity weight spread over all six barrier
    types (three high barriers -> 5.0); no barriers scores 1.
    """
    rules = params["pharma"]["barriers"]
    barriers = identify_barriers(assets, params)

    weights = rules["severity_weight"]
    total = sum((to_decimal(weights[b["severity"]]) for b in barriers), Decimal("0"))
    if barriers:
        raw = total * 10 / to_decimal(rules["barrier_type_count"])
    else:
        raw = Decimal("1")
    score = clamp_1_10(raw)
    label = band_from_params(score, params["bands"]["entry_barrier"])

    def readable(items: Sequence[Dict[str, Any]]) -> str:
        return ", ".join(b["barrier_type"].replace("_", " ") for b in items)

    high = [b for b in barriers if b["severity"] == "high"]
    medium = [b for b in barriers if b["severity"] == "medium"]
    narrative = first_match(PHARMA_BARRIER_RULES, {
        "therapy_area": therapy_area.replace("_", " ") if therapy_area else "indication",
        "barrier_count": len(barriers),
        "high_count": len(high),
        "score": score,
        "label_lower": label.lower(),
        "high_types": readable(high),
        "medium_clause": f", with moderate barriers in {readable(medium)}" if medium else "",
        "all_types": readable(barriers),
    })

    return {
        "overall_barrier_score": score,
        "barrier_label": label,
        "barriers": barriers,
        "narrative": narrative,
    }


# ============================================================================
# TIMELINE
# ============================================================================

def _midpoint(low: int, high: int) -> int:
    return int((Decimal(low + high) / 2).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def project_period(as_of: date, months: int, quarter_max_months: int) -> str:
    """
    Calendar period `months` after the as-of month: 'Q3 2026' within
    quarter_max_months, else 'H2 2027'.
    """
    year, month_index = divmod(as_of.year * 12 + as_of.month - 1 + months, 12)
    month = month_index + 1
    if months <= quarter_max_months:
        return f"Q{(month - 1) // 3 + 1} {year}"
    return f"H{1 if month <= 6 else 2} {year}"


def timeline_risk_factors(competitor: PharmaCompetitor) -> List[str]:
    risks = []
    if competitor.orphan_drug:
        risks.append(PHARMA_TIMELINE_RISKS["orphan"])
    if mentions_any((competitor.mechanism,), CELL_GENE_MODALITIES):
        risks.append(PHARMA_TIMELINE_RISKS["cell_gene"])
    if mentions_any((competitor.mechanism,), ("biologic", "antibody", "adc", "bispecific")):
        risks.append(PHARMA_TIMELINE_RISKS["biologic"])
    if mentions_any((competitor.indication, competitor.indication_specifics), PEDIATRIC_MARKERS):
        risks.append(PHARMA_TIMELINE_RISKS["pediatric"])
    if competitor.phase in EARLY_PHASES:
        risks.append(PHARMA_TIMELINE_RISKS["early_stage"])
    if competitor.first_in_class:
        risks.append(PHARMA_TIMELINE_RISKS["first_in_class"])
    return risks


def competitive_timeline(competitor: PharmaCompetitor, as_of: date, params: Dict[str, Any]) -> Dict[str, Any]:
    """
    Expected readout, filing and launch windows for one asset.

    Readout is the midpoint of the phase's readout range; filing adds the
    submission-prep range to the end of that range and launch adds the
    review range to the latest filing. Approved assets are "Launched".
    """
    rules = params["pharma"]["timeline"]
    risks = timeline_risk_factors(competitor)
    entry = {
        "company": competitor.company,
        "asset_name": competitor.asset_name,
        "current_phase": competitor.phase,
        "expected_data_readout": None,
        "estimated_filing_date": None,
        "estimated_launch_date": None,
        "confidence": rules["confidence"].get(competitor.phase, "low"),
        "timeline_risk_factors": risks,
    }
    if competitor.is_approved:
        entry["estimated_launch_date"] = "Launched"
        entry["timeline_risk_factors"] = risks or [PHARMA_TIMELINE_RISKS["launched"]]
        return entry

    window = rules["readout_months"].get(competitor.phase)
    if window is None:
        return entry

    quarter_max = int(rules["quarter_format_max_months"])
    readout_low, readout_high = window
    prep_low, prep_high = rules["filing_prep_months"]
    review_low, review_high = rules["review_months"]
    filing_latest = readout_high + prep_high

    entry["expected_data_readout"] = project_period(as_of, _midpoint(readout_low, readout_high), quarter_max)
    entry["estimated_filing_date"] = project_period(
        as_of, _midpoint(readout_high + prep_low, filing_latest), quarter_max
    )
    entry["estimated_launch_date"] = project_period(
        as_of, _midpoint(filing_latest + review_low, filing_latest + review_high), quarter_max
    )
    return entry


# ============================================================================
# SUCCESS PROBABILITY
# ============================================================================

def approval_probability(phase: str, therapy_area: Optional[str], params: Dict[str, Any]) -> Decimal:
    """Likelihood of approval from the therapy-area LOA tables (approved = 1)."""
    if phase == "Approved":
        return Decimal("1")
    rules = params["pharma"]["success_probability"]
    stage = rules["phase_stage"].get(phase, "preclinical")
    area = therapy_area or "default"
    if stage == "preclinical":
        table = rules["preclinical_loa"]
        return to_decimal(table.get(area, table["default"]))
    loa = params["screener"]["loa_by_therapy_area"]
    row = loa.get(area, loa["default"])
    return to_decimal(row.get(stage, loa["default"][stage]))


def success_probabilities(
    assets: Sequence[ScoredAsset],
    therapy_area: Optional[str],
    params: Dict[str, Any],
) -> List[Dict[str, Any]]:
    """Probability-weighted threat per asset, highest first."""
    rules = params["pharma"]["success_probability"]
    area_label = therapy_area.replace("_", " ") if therapy_area else "this therapy area"
    results = []
    for asset in assets:
        competitor = asset.competitor
        probability = approval_probability(competitor.phase, therapy_area, params)
        weighted = quantize(asset.threat_score * probability, SCORE_PRECISION)
        narrative = first_match(PHARMA_SUCCESS_RULES, {
            "name": asset.label,
            "phase": competitor.phase,
            "approved": competitor.is_approved,
            "probability": probability,
            "probability_pct": quantize(probability * 100, Decimal("1")),
            "high_probability": to_decimal(rules["high_probability"]),
            "moderate_probability": to_decimal(rules["moderate_probability"]),
            "therapy_area": area_label,
            "threat_score": asset.threat_score,
            "weighted": weighted,
        })
        results.append({
            "company": competitor.company,
            "asset_name": competitor.asset_name,
            "current_phase": competitor.phase,
            "probability_of_approval": probability,
            "probability_weighted_threat": weighted,
            "narrative": narrative,
        })
    results.sort(key=lambda r: (-r["probability_weighted_threat"], r["asset_name"]))
    return results


__all__ = [
    "LATE_STAGE_PHASES",
    "SAME_MECHANISM",
    "RELATED_MECHANISM",
    "ScoredAsset",
    "parse_efficacy",
    "mechanism_overlap",
    "assess_threat",
    "assess_displacement",
    "identify_barriers",
    "assess_barriers",
    "project_period",
    "competitive_timeline",
    "approval_probability",
    "success_probabilities",
]
