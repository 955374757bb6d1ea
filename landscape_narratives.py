#!/usr/bin/env python3
"""
landscape_narratives.py

Narrative Rule Tables for the Opportunity Scoring Engine

Every templated sentence an analyzer emits (key insight, concentration
narrative, differentiation opportunity, partner rationale) comes from an
ordered table of rules:

    NarrativeRule(name, applies(context) -> bool, template)

first_match() renders the first rule whose predicate holds (threshold
ladders such as crowding >= 8 / >= 5 / >= 3 / else); render_all() joins
every rule that applies (multi-sentence narratives built from optional
parts). Templates use str.format over a plain context dict, so the
wording lives here and the numbers live in the analyzers.

Author: Wake Robin Capital Management
Version: 1.0.0
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Sequence

from common.score_utils import band_from_params

__version__ = "1.0.0"
__author__ = "Wake Robin Capital Management"

Context = Mapping[str, Any]


@dataclass(frozen=True)
class NarrativeRule:
    """One candidate sentence and the condition under which it is used."""
    name: str
    applies: Callable[[Context], bool]
    template: str

    def render(self, context: Context) -> str:
        return self.template.format(**context)


def _always(context: Context) -> bool:
    return True


def first_match(rules: Sequence[NarrativeRule], context: Context) -> str:
    """
    Render the first applicable rule.

    Raises:
        LookupError: If no rule applies (tables end with a catch-all)
    """
    for rule in rules:
        if rule.applies(context):
            return rule.render(context)
    raise LookupError(f"No narrative rule applies (tried {[r.name for r in rules]})")


def render_all(rules: Sequence[NarrativeRule], context: Context, separator: str = " ") -> str:
    """Render every applicable rule, in table order."""
    return separator.join(rule.render(context) for rule in rules if rule.applies(context))


def matching_rules(rules: Sequence[NarrativeRule], context: Context) -> List[str]:
    """Names of the rules that apply (for audit trails and tests)."""
    return [rule.name for rule in rules if rule.applies(context)]


def _crowding_at_least(threshold: int) -> Callable[[Context], bool]:
    return lambda ctx: ctx["crowding_score"] >= Decimal(threshold)


def _label_is(label: str) -> Callable[[Context], bool]:
    return lambda ctx: ctx["concentration_label"] == label


# ============================================================================
# LABEL HELPERS
# ============================================================================

PLATFORM_LABELS = {
    "liquid_biopsy": "Liquid Biopsy",
    "ddPCR": "ddPCR",
}

COMPANY_TYPE_LABELS = {
    "big_pharma": "big pharma company",
    "mid_pharma": "mid-size pharma company",
    "biotech": "biotech",
    "medtech": "medtech company",
}


def platform_label(platform: str, lower: bool = False) -> str:
    """Display name for a diagnostic platform ('NGS', 'Liquid Biopsy', 'ddPCR')."""
    label = PLATFORM_LABELS.get(platform, platform.upper())
    if lower and platform == "liquid_biopsy":
        return label.lower()
    return label


def format_money_m(value_m: Decimal) -> str:
    """$M amount as '~$1.2B' / '~$350M'."""
    if value_m >= 1000:
        return f"~${(value_m / 1000).quantize(Decimal('0.1'))}B"
    return f"~${value_m.quantize(Decimal('1'))}M"


# ============================================================================
# PHARMA
# ============================================================================

PHARMA_KEY_INSIGHT_RULES = (
    NarrativeRule(
        "headline",
        _always,
        "The {indication} landscape comprises {total} tracked competitive assets: "
        "{approved} approved, {late_stage} in late-stage development.",
    ),
    NarrativeRule(
        "biomarker_trend",
        lambda ctx: ctx["biomarker_pct"] > 0,
        "Approximately {biomarker_pct}% of programs use biomarker-selected populations, "
        "reflecting the trend toward precision medicine in this indication.",
    ),
    NarrativeRule(
        "mechanism_contested",
        lambda ctx: bool(ctx.get("mechanism")) and ctx["mechanism_count"] > 0,
        "Within the {mechanism} class specifically, there are {mechanism_count} tracked programs, "
        "creating direct competitive pressure for new entrants with the same mechanism.",
    ),
    NarrativeRule(
        "mechanism_open",
        lambda ctx: bool(ctx.get("mechanism")) and ctx["mechanism_count"] == 0,
        "No current competitors target the {mechanism} mechanism, which could represent a "
        "first-in-class opportunity if supported by strong rationale.",
    ),
)

PHARMA_DIFFERENTIATION_RULES = (
    NarrativeRule(
        "low",
        lambda ctx: ctx["crowding_label"] == "Low",
        "{indication} has a relatively uncrowded competitive landscape with only {total} tracked "
        "assets. With {approved} approved product(s) and {mechanism_total} distinct mechanism(s), "
        "new entrants with differentiated profiles have substantial room to establish market position.",
    ),
    NarrativeRule(
        "moderate_with_gap",
        lambda ctx: ctx["crowding_label"] == "Moderate" and bool(ctx["top_gap"]),
        "The {indication} landscape is moderately competitive with {total} assets across "
        "{mechanism_total} mechanisms. The average differentiation score is {avg_differentiation}/10, "
        "suggesting opportunities for assets with novel mechanisms or biomarker-selected approaches. "
        "Key gaps include: {top_gap}.",
    ),
    NarrativeRule(
        "moderate",
        lambda ctx: ctx["crowding_label"] == "Moderate",
        "The {indication} landscape is moderately competitive with {total} assets across "
        "{mechanism_total} mechanisms. The average differentiation score is {avg_differentiation}/10, "
        "suggesting opportunities for assets with novel mechanisms or biomarker-selected approaches.",
    ),
    NarrativeRule(
        "high",
        lambda ctx: ctx["crowding_label"] == "High",
        "{indication} is a highly competitive indication with {total} tracked assets and {approved} "
        "approved products. Differentiation is critical: the average differentiation score is only "
        "{avg_differentiation}/10. New entrants should focus on unaddressed patient segments, novel "
        "combination strategies, or best-in-class clinical profiles.",
    ),
    NarrativeRule(
        "extremely_high",
        _always,
        "{indication} is an extremely crowded indication with {total}+ tracked assets competing across "
        "{mechanism_total} mechanism categories. With {approved} approved products already on market, "
        "differentiation requires a transformative clinical profile, novel mechanism of action, or "
        "significant convenience/safety advantages. Consider niche patient segments or combination "
        "strategies to establish a defensible position.",
    ),
)

PHARMA_SHARE_RULES = (
    NarrativeRule(
        "empty",
        lambda ctx: ctx["share_count"] == 0,
        "No competitors identified — market share distribution cannot be calculated.",
    ),
    NarrativeRule(
        "fragmented",
        _label_is("Fragmented"),
        "The market is fragmented (HHI {hhi}) with no single competitor dominating. The top 3 "
        "competitors hold {top_3_share_pct}% of estimated share, suggesting room for differentiated "
        "entrants to capture meaningful share.",
    ),
    NarrativeRule(
        "moderate",
        _label_is("Moderately Concentrated"),
        "The market shows moderate concentration (HHI {hhi}). The top 3 competitors control "
        "{top_3_share_pct}% of estimated share, indicating established players but opportunities for "
        "strong differentiators.",
    ),
    NarrativeRule(
        "concentrated",
        _label_is("Highly Concentrated"),
        "The market is concentrated (HHI {hhi}) with the top 3 competitors holding {top_3_share_pct}% "
        "of estimated share. New entrants face significant incumbency barriers and must demonstrate "
        "clear clinical superiority.",
    ),
    NarrativeRule(
        "monopolistic",
        _always,
        "The market is monopolistic (HHI {hhi}) with the top 3 competitors controlling "
        "{top_3_share_pct}% of estimated share. Market entry requires transformative differentiation "
        "or a fundamentally different treatment approach.",
    ),
)

PHARMA_EMPTY_WHITE_SPACE = (
    "No approved or pipeline competitors identified for {indication} — potential first-mover opportunity.",
    "Consider novel mechanisms targeting {therapy_area} pathways.",
    "Validate unmet need through epidemiology data (US prevalence: {us_prevalence}).",
)

PHARMA_EMPTY_DIFFERENTIATION = (
    "{indication} has no identified competitors in the reference corpus. This represents a significant "
    "white-space opportunity for first-mover advantage, though it may also indicate challenging biology "
    "or limited commercial viability. Conduct thorough diligence on prior failures in this space."
)

PHARMA_EMPTY_KEY_INSIGHT = (
    "No competitive assets currently tracked for {indication}. This could represent an untapped "
    "therapeutic area or one where prior attempts have failed. The absence of competitors suggests "
    "either a significant first-mover opportunity or underlying development challenges that warrant "
    "investigation."
)

PHARMA_MECHANISM_GAP = "No {readable} assets in {indication} — potential novel mechanism opportunity"
PHARMA_LINE_GAP = "No approved or late-stage asset targeting {line} treatment in {indication}"
PHARMA_BIOMARKER_GAP = (
    "No biomarker-selected therapies in {indication} — precision medicine approach could differentiate"
)
PHARMA_UNRESOLVED_GAP = (
    '"{query}" did not resolve to a tracked indication — refine the indication name to surface '
    "indication-specific white space"
)
PHARMA_FALLBACK_GAP = (
    "Differentiated clinical profile (efficacy, safety or dosing convenience) versus the {total} "
    "tracked assets in {indication}"
)
PHARMA_CONCENTRATION_GAP = (
    "{dominant_share_pct}% of tracked programs share the {dominant_mechanism} mechanism — "
    "an orthogonal mechanism would face less direct competition"
)


# ============================================================================
# PHARMA COMPETITIVE DYNAMICS
# ============================================================================

PHARMA_THREAT_FACTORS = {
    "near_term": "{phase} — near-term competitive entry",
    "same_mechanism": "Same mechanism of action — direct competitor",
    "related_mechanism": "Related mechanism category",
    "strong_os": "Strong OS benefit (HR {os_hr})",
    "high_orr": "High ORR ({orr_pct}%)",
    "partnered": "Partnered with {partner}",
    "first_in_class": "First-in-class mechanism",
}

PHARMA_DISPLACEMENT_DOMINANT = "{name} — highly differentiated approved product with strong evidence"
PHARMA_DISPLACEMENT_LATE_STAGE = "{name} — same mechanism in {phase}, near-term launch risk"
PHARMA_DISPLACEMENT_SATURATION = (
    "{approved} approved products — highly saturated market with established standard of care"
)
PHARMA_DISPLACEMENT_NARRATIVES = {
    "low": "Low displacement risk. No dominant incumbents or near-term same-mechanism competitors identified.",
    "medium": "Moderate displacement risk. Some competitive pressure exists, but differentiated "
              "positioning can mitigate.",
    "high": "High displacement risk. Dominant incumbents and/or near-term same-mechanism competitors "
            "create significant barriers to market entry.",
}

PHARMA_BARRIER_TEXT = {
    "ip_orphan": "{count} approved product(s) hold orphan drug designation with 7-year market exclusivity",
    "ip_first_in_class": "{count} first-in-class approved product(s) may hold composition-of-matter "
                         "patents blocking similar mechanisms",
    "manufacturing_high": "Dominant competitive modalities involve complex biologics (CAR-T, gene therapy, "
                          "ADC, or bispecific antibodies), requiring specialized manufacturing infrastructure, "
                          "supply chain capabilities, and CMC expertise that create significant barriers for "
                          "new entrants.",
    "manufacturing_medium": "Biologics-based therapies in the landscape require specialized manufacturing "
                            "and are subject to FDA/EMA biosimilar exclusivity periods.",
    "first_mover": "{count} approved product(s) have high evidence strength (>={min_evidence}/10), "
                   "establishing entrenched clinical adoption, guideline inclusion, and prescribing habits "
                   "that new entrants must overcome.",
    "exclusivity_orphan": "Orphan Drug Exclusivity (7 years) held by {count} product(s)",
    "exclusivity_biologic": "Biologics reference product exclusivity (12 years) for {count} approved biologic(s)",
    "payer_high": "With {count} approved products, payers have established step therapy requirements, "
                  "preferred formulary positions, and rebate contracts. New entrants must demonstrate "
                  "substantial clinical differentiation or cost advantages to gain formulary access.",
    "payer_medium": "{count} approved products have established formulary positions. Payer negotiations "
                    "will require evidence of incremental clinical benefit to justify addition to coverage.",
    "kol_high": "{count} established products have built deep KOL relationships through years of clinical "
                "experience, advisory boards, and investigator-sponsored studies. New entrants must invest "
                "significantly in medical affairs to build comparable thought leader engagement.",
    "kol_medium": "Established incumbent(s) have existing KOL relationships that provide prescribing inertia. "
                  "New entrants should prioritize medical affairs engagement and investigator-sponsored "
                  "study programs.",
}

PHARMA_BARRIER_RULES = (
    NarrativeRule(
        "none",
        lambda ctx: ctx["barrier_count"] == 0,
        "The {therapy_area} landscape presents minimal barriers to entry. No significant IP protection, "
        "manufacturing complexity, or payer entrenchment barriers were identified, suggesting relatively "
        "open competitive access for new entrants.",
    ),
    NarrativeRule(
        "very_high",
        lambda ctx: ctx["high_count"] >= 3,
        "The competitive landscape presents very high barriers to entry ({score}/10). {high_count} "
        "high-severity barriers were identified, including {high_types}. New entrants require "
        "transformative clinical differentiation, substantial manufacturing capabilities, and robust "
        "market access strategies to compete effectively.",
    ),
    NarrativeRule(
        "with_high",
        lambda ctx: ctx["high_count"] >= 1,
        "The competitive landscape presents {label_lower} barriers to entry ({score}/10). Key challenges "
        "include {high_types}{medium_clause}. Differentiated clinical profiles and strategic positioning "
        "can mitigate these barriers.",
    ),
    NarrativeRule(
        "cumulative",
        _always,
        "The competitive landscape presents {label_lower} barriers to entry ({score}/10) across "
        "{barrier_count} dimension(s). While no single barrier is prohibitive, cumulative challenges in "
        "{all_types} should be factored into market entry planning.",
    ),
)

PHARMA_TIMELINE_RISKS = {
    "orphan": "Rare disease enrollment challenges may extend timelines",
    "cell_gene": "Manufacturing complexity for cell/gene therapy may delay scale-up",
    "biologic": "Biologics manufacturing and CMC requirements add regulatory complexity",
    "pediatric": "Pediatric population requires additional safety monitoring and regulatory considerations",
    "early_stage": "Early-stage attrition risk remains high — timeline subject to significant uncertainty",
    "first_in_class": "First-in-class mechanism may face additional regulatory scrutiny and longer review",
    "launched": "Product already on market — minimal timeline risk",
}

PHARMA_SUCCESS_RULES = (
    NarrativeRule(
        "approved",
        lambda ctx: ctx["approved"],
        "{name} is already approved — certainty of market presence. Threat score: {threat_score}/10.",
    ),
    NarrativeRule(
        "high",
        lambda ctx: ctx["probability"] >= ctx["high_probability"],
        "{name} in {phase} has a {probability_pct}% LoA in {therapy_area}. High probability of eventual "
        "approval makes this a significant competitive risk (weighted threat: {weighted}).",
    ),
    NarrativeRule(
        "moderate",
        lambda ctx: ctx["probability"] >= ctx["moderate_probability"],
        "{name} in {phase} has a {probability_pct}% LoA. Moderate probability — monitor for clinical data "
        "readouts that could shift trajectory (weighted threat: {weighted}).",
    ),
    NarrativeRule(
        "low",
        _always,
        "{name} in {phase} has only {probability_pct}% LoA. Early-stage attrition risk is high — low "
        "near-term competitive concern but worth tracking (weighted threat: {weighted}).",
    ),
)


# ============================================================================
# CONCENTRATION (device, CDx)
# ============================================================================

CONCENTRATION_RULES = (
    NarrativeRule(
        "no_data",
        lambda ctx: ctx["share_count"] == 0,
        "No market share data available for {subject}.",
    ),
    NarrativeRule(
        "hhi",
        lambda ctx: ctx["share_count"] > 0,
        "The market has an HHI of {hhi}, indicating a {concentration_label_lower} competitive structure.",
    ),
    NarrativeRule(
        "top_players",
        lambda ctx: ctx["share_count"] > 0,
        "The top {top_count} player{top_plural} ({top_players}) control{top_verb_suffix} "
        "{top_3_share_pct}% of the market.",
    ),
    NarrativeRule(
        "entry_barriers",
        lambda ctx: ctx["share_count"] > 0
        and ctx["concentration_label"] in ("Highly Concentrated", "Monopolistic"),
        "New entrants face significant barriers from incumbent market dominance and established "
        "clinical evidence.",
    ),
    NarrativeRule(
        "consolidation",
        lambda ctx: ctx["share_count"] > 0 and ctx["concentration_label"] == "Fragmented",
        "The fragmented structure creates opportunity for a differentiated entrant to consolidate share.",
    ),
)


def concentration_context(distribution: Dict[str, Any], subject: str) -> Dict[str, Any]:
    """Context dict for CONCENTRATION_RULES from a market_share_distribution block."""
    top_players = distribution["top_players"]
    return {
        "subject": subject,
        "share_count": len(distribution["competitors"]),
        "hhi": distribution["hhi_index"],
        "concentration_label": distribution["concentration_label"],
        "concentration_label_lower": distribution["concentration_label"].lower(),
        "top_3_share_pct": distribution["top_3_share_pct"],
        "top_count": len(top_players),
        "top_plural": "s" if len(top_players) > 1 else "",
        "top_verb_suffix": "" if len(top_players) > 1 else "s",
        "top_players": ", ".join(top_players),
    }


# ============================================================================
# DEVICE
# ============================================================================

DEVICE_EVOLUTION_RULES = (
    NarrativeRule(
        "none",
        lambda ctx: not ctx["trajectories"],
        "Unknown — no competitive data available",
    ),
    NarrativeRule(
        "emerging",
        lambda ctx: "emerging" in ctx["trajectories"] and "mature" not in ctx["trajectories"],
        "Emerging — early-stage technologies with rapid innovation",
    ),
    NarrativeRule(
        "transitional",
        lambda ctx: "growing" in ctx["trajectories"] and "mature" in ctx["trajectories"],
        "Transitional — incumbent technologies coexist with next-generation platforms",
    ),
    NarrativeRule(
        "mature",
        lambda ctx: all(t in ("mature", "declining") for t in ctx["trajectories"]),
        "Mature — established technologies with incremental innovation only",
    ),
    NarrativeRule(
        "growth",
        lambda ctx: "growing" in ctx["trajectories"],
        "Growth — technologies actively gaining adoption and clinical evidence",
    ),
    NarrativeRule(
        "mixed",
        _always,
        "Mixed — diverse technology stages across the competitive landscape",
    ),
)

DEVICE_INSTALLED_BASE_RULES = (
    NarrativeRule(
        "none",
        lambda ctx: ctx["installed_total"] == 0,
        "No installed base data available",
    ),
    NarrativeRule(
        "small",
        lambda ctx: ctx["installed_total"] < 10000,
        "Small total installed base (~{installed_total:,} units) — early market with room for new entrants",
    ),
    NarrativeRule(
        "moderate",
        lambda ctx: ctx["installed_total"] < 100000,
        "Moderate installed base (~{installed_thousands}K units) — established market with switching "
        "cost considerations",
    ),
    NarrativeRule(
        "large",
        _always,
        "Large installed base (~{installed_thousands}K units) — deeply entrenched incumbents with "
        "significant switching barriers",
    ),
)

DEVICE_KEY_INSIGHT_RULES = (
    NarrativeRule(
        "extremely_crowded",
        _crowding_at_least(8),
        "The {procedure} device market is extremely crowded with {cleared} cleared/approved devices and "
        "{pipeline} pipeline entrants. Market share is {concentration_label_lower}, with the top 3 players "
        "controlling {top_3_share_pct}% of the market. New entrants must demonstrate clinical superiority "
        "or pursue disruptive technology to gain traction.",
    ),
    NarrativeRule(
        "active",
        _crowding_at_least(5),
        "The {procedure} device market is competitively active with {cleared} cleared/approved devices. "
        "{concentration_label} market structure (HHI: {hhi}) leaves room for differentiated entrants. "
        "Focus areas: {focus_area}.",
    ),
    NarrativeRule(
        "moderate",
        _crowding_at_least(3),
        "The {procedure} device landscape has moderate competition with {cleared} authorized devices. "
        "Opportunity exists for well-positioned entrants, particularly in {niche}.",
    ),
    NarrativeRule(
        "underdeveloped",
        _always,
        "The {procedure} device market is relatively underdeveloped with limited competition. This "
        "represents a significant first-mover or fast-follower opportunity for a device with strong "
        "clinical evidence.",
    ),
)

DEVICE_TECHNOLOGY_GAP = "No {readable} technology present — potential novel technology entry point"
DEVICE_PATHWAY_GAPS = {
    "De_Novo": (
        "No De Novo classification used — opportunity for novel low-to-moderate risk device with no predicate"
    ),
    "HDE": (
        "No Humanitarian Device Exemption utilized — if patient population < 8,000/yr, HDE pathway "
        "may expedite market entry"
    ),
}
DEVICE_REIMBURSEMENT_GAP = (
    "{pct}% of devices lack full reimbursement — securing early CMS coverage or NTAP designation "
    "could be a decisive advantage"
)
DEVICE_EVIDENCE_GAP = (
    "No device in this space has RCT-level clinical evidence — conducting a randomized trial would "
    "establish clinical superiority"
)
DEVICE_GEOGRAPHIC_GAP = (
    "Current competitive set is US-centric — EU MDR and APAC market entry represent additional growth vectors"
)

DEVICE_EMPTY_WHITE_SPACE = (
    'No device competitors found for "{procedure}" — this procedure may be undercovered in the reference corpus',
    "Consider searching for related procedures: {suggestions}",
    "An absence of competition may signal a greenfield opportunity or indicate the procedure is "
    "addressed by non-device interventions",
)
DEVICE_EMPTY_KEY_INSIGHT = (
    'No device competitors were identified for "{procedure}". This may indicate an underserved market '
    "segment or a procedure not yet addressed by medical devices. Verify the procedure name and "
    "consider alternative search terms."
)

DEVICE_SWITCHING_NARRATIVES = {
    "surgeon_training": {
        "low": "Minimal retraining required; most surgeons can adopt the new device within a few cases.",
        "moderate": "Moderate retraining needed; proctoring for 10-20 cases recommended before independent use.",
        "high": "Significant retraining investment required; dedicated cadaver labs and 30+ proctored cases "
                "needed before proficiency.",
    },
    "or_workflow": {
        "low": "Operating room workflow is largely unchanged; minor procedural adjustments only.",
        "moderate": "OR setup and workflow modifications required; nursing and tech staff need 2-4 weeks of "
                    "familiarization.",
        "high": "Major OR workflow disruption; dedicated room setup, new equipment positioning, and full staff "
                "retraining required.",
    },
    "capital_investment": {
        "low": "Minimal capital outlay; device is a disposable or low-cost instrument.",
        "moderate": "Moderate capital investment in equipment; ROI achievable within 12-18 months at expected "
                    "case volumes.",
        "high": "Substantial capital commitment required; hospital C-suite and value analysis committee approval "
                "needed. Multi-year depreciation cycle locks in vendor relationship.",
    },
    "implant_inventory": {
        "low": "Low inventory requirements; standard consignment model with minimal par levels.",
        "moderate": "Moderate inventory transition needed; existing consignment must be wound down and new "
                    "implant sets onboarded.",
        "high": "High inventory carrying costs; broad size matrix requiring significant shelf space and "
                "consignment investment.",
    },
    "data_migration": {
        "low": "Minimal data migration concerns; device operates independently of existing IT infrastructure.",
        "moderate": "Data migration required for patient records, historical procedure data, or clinical "
                    "follow-up databases.",
        "high": "Complex data integration with hospital EMR/EHR, remote monitoring platforms, and longitudinal "
                "patient data. Migration timeline 6-12 months.",
    },
}
DEVICE_SWITCHING_PENDING = "Switching cost assessment pending."


# ============================================================================
# COMPANION DIAGNOSTICS
# ============================================================================

CDX_PLATFORM_RULES = (
    NarrativeRule(
        "count",
        _always,
        "{label} has {count} test{plural} in this landscape.",
    ),
    NarrativeRule(
        "turnaround",
        lambda ctx: ctx["avg_turnaround"] > 0,
        "Average turnaround is {avg_turnaround} days.",
    ),
    NarrativeRule(
        "price",
        lambda ctx: ctx["avg_price"] > 0,
        "Average test price is ~${avg_price:,}.",
    ),
    NarrativeRule(
        "breadth",
        _always,
        "Biomarker breadth is {breadth}.",
    ),
    NarrativeRule(
        "growing",
        lambda ctx: ctx["trend"] == "growing",
        "This platform is on a growth trajectory driven by expanding clinical utility.",
    ),
    NarrativeRule(
        "declining",
        lambda ctx: ctx["trend"] == "declining",
        "This platform is declining as broader multi-gene panels replace single-marker assays.",
    ),
    NarrativeRule(
        "stable",
        lambda ctx: ctx["trend"] not in ("growing", "declining"),
        "Adoption is stable with established clinical workflows.",
    ),
)

CDX_KEY_INSIGHT_RULES = (
    NarrativeRule(
        "extremely_crowded",
        _crowding_at_least(8),
        "The {biomarker} CDx landscape is extremely crowded with {total} tests across {approved} approved "
        "and {pipeline} pipeline/LDT. {platform} dominates. Testing penetration at {penetration}% suggests "
        "the market is maturing rapidly. Differentiation requires platform innovation, faster turnaround, "
        "lower cost, or novel biomarker combinations.",
    ),
    NarrativeRule(
        "competitive",
        _crowding_at_least(5),
        "The {biomarker} CDx space is competitive with {total} tests ({approved} approved, {pipeline} "
        "pipeline/LDT). {platform} is the dominant platform. At {penetration}% testing penetration, there "
        "is room for growth through expanded testing guidelines and improved access.",
    ),
    NarrativeRule(
        "moderate",
        _crowding_at_least(3),
        "The {biomarker} CDx landscape is moderately competitive with {total} tests. {platform} leads, but "
        "{penetration}% testing penetration indicates significant unmet need. Early entrants with strong "
        "clinical validation and payer coverage strategy can capture meaningful share.",
    ),
    NarrativeRule(
        "uncrowded",
        _always,
        "The {biomarker} CDx landscape is relatively uncrowded with only {total} tests. Testing penetration "
        "of {penetration}% represents a major market opportunity. A well-positioned CDx with FDA approval "
        "and payer coverage could establish category leadership.",
    ),
)

CDX_PIPELINE_DRUG_GAP = (
    "{biomarker} has {pipeline_drugs} pipeline drugs but only {tests} CDx test{plural} — "
    "strong CDx development opportunity."
)
CDX_LIQUID_BIOPSY_GAP = (
    "No liquid biopsy option detected for {biomarker} — blood-based testing could address "
    "tissue-insufficient patients and enable serial monitoring."
)
CDX_NGS_GAP = "No NGS panel includes {biomarker} as a primary focus — comprehensive genomic profiling opportunity."
CDX_PENETRATION_GAP = (
    "{biomarker} testing rate is only {rate}% despite {approved_drugs} approved linked drug{plural} — "
    "market expansion opportunity through better test access."
)
CDX_MONITORING_GAP = (
    "No MRD/ctDNA monitoring test in this competitive set — longitudinal monitoring represents a "
    "rapidly growing market segment ($3B+ TAM by 2028)."
)
CDX_PRICE_GAP = (
    "The lowest-cost test in this landscape is ~${min_price:,} — a sub-$1,000 rapid turnaround option "
    "could capture community oncology volume."
)
CDX_PLATFORM_GAP = "{platform} platform is absent from this landscape despite being on a growth trajectory."
CDX_EMPTY_WHITE_SPACE = (
    "No diagnostic tests found for {biomarker} — a first validated CDx could anchor companion "
    "labeling for linked therapies."
)
CDX_FALLBACK_GAP = (
    "{biomarker} testing is well served on platform and price — faster turnaround and payer-backed "
    "clinical utility data remain the main levers for a new entrant."
)
CDX_EMPTY_KEY_INSIGHT = (
    "No companion diagnostic or biomarker tests are tracked for {biomarker}. The landscape is open, "
    "but market sizing should be confirmed against linked drug uptake before committing to development."
)


# ============================================================================
# PARTNER MATCHING
# ============================================================================

SUBSCORE_LABELS = {
    "therapeutic_alignment": "therapeutic alignment",
    "pipeline_gap": "pipeline gap fit",
    "deal_history": "deal history",
    "financial_capacity": "financial capacity",
    "geography_fit": "geographic fit",
    "strategic_priority": "strategic priority overlap",
}


def strength_descriptor(score: Decimal, band_spec: Dict[str, Any]) -> str:
    """0-100 sub-score -> "strong" / "notable" / "relevant" under the partner_strength band."""
    return band_from_params(score, band_spec)


PARTNER_RATIONALE_RULES = (
    NarrativeRule(
        "lead_pair",
        lambda ctx: ctx["second_score"] >= 40,
        "{company} is a {company_type_label} with {top_descriptor} {top_label} and "
        "{second_descriptor} {second_label} for this opportunity.",
    ),
    NarrativeRule(
        "lead_single",
        lambda ctx: ctx["second_score"] < 40,
        "{company} is a {company_type_label} with {top_descriptor} {top_label} for this opportunity.",
    ),
    NarrativeRule(
        "therapeutic_presence",
        lambda ctx: ctx["therapeutic_alignment"] >= 60 and bool(ctx["focus_areas"]),
        "Active in {focus_areas} with pipeline investments aligned to {indication}.",
    ),
    NarrativeRule(
        "deal_activity",
        lambda ctx: ctx["deal_history"] >= 60 and ctx["relevant_deal_count"] > 0,
        "{relevant_deal_count} relevant deal{deal_plural} since {since_year}{deal_value_clause}.",
    ),
    NarrativeRule(
        "strategic_signal",
        lambda ctx: ctx["pipeline_gap"] >= 60 and bool(ctx["gap_signal"]),
        'Strategic signal: "{gap_signal}".',
    ),
    NarrativeRule(
        "very_active_bd",
        lambda ctx: ctx["bd_activity"] == "very_active",
        "Very active BD team currently seeking assets.",
    ),
)

PARTNER_WATCH_SIGNALS = {
    "loe": "Facing key product LOE — actively rebuilding pipeline",
    "very_active": "Very active BD team with multiple ongoing searches",
    "large_deals": "Recently closed {count} deal{plural} of ${threshold_b}B or more — demonstrated capacity "
                   "for significant transactions",
    "priority": "Stated strategic priority aligns with this asset",
}

PARTNER_DEAL_STRUCTURE_RULES = (
    NarrativeRule(
        "allocation",
        _always,
        "At the {stage} stage, typical deal structure allocates ~{upfront_pct}% upfront with the remainder "
        "split between clinical milestones (~{clinical_pct}%) and commercial milestones (~{commercial_pct}%).",
    ),
    NarrativeRule(
        "opt_in",
        lambda ctx: bool(ctx["opt_in_stage"]),
        "Opt-in/opt-out clauses are common at this stage ({opt_in_pct}% probability), typically triggered "
        "at {opt_in_stage}.",
    ),
    NarrativeRule(
        "governance",
        _always,
        "Governance with {company} ({company_type}) is expected to be {governance}.",
    ),
    NarrativeRule(
        "benchmark",
        _always,
        "Based on {deal_count} recent deal{deal_plural} in this therapy area, this structure benchmarks at the "
        "{percentile}th percentile.",
    ),
)


__all__ = [
    "NarrativeRule",
    "first_match",
    "render_all",
    "matching_rules",
    "platform_label",
    "format_money_m",
    "concentration_context",
    "strength_descriptor",
    "COMPANY_TYPE_LABELS",
    "SUBSCORE_LABELS",
    "PHARMA_KEY_INSIGHT_RULES",
    "PHARMA_DIFFERENTIATION_RULES",
    "PHARMA_SHARE_RULES",
    "PHARMA_THREAT_FACTORS",
    "PHARMA_DISPLACEMENT_NARRATIVES",
    "PHARMA_BARRIER_TEXT",
    "PHARMA_BARRIER_RULES",
    "PHARMA_TIMELINE_RISKS",
    "PHARMA_SUCCESS_RULES",
    "CONCENTRATION_RULES",
    "DEVICE_EVOLUTION_RULES",
    "DEVICE_INSTALLED_BASE_RULES",
    "DEVICE_KEY_INSIGHT_RULES",
    "DEVICE_SWITCHING_NARRATIVES",
    "CDX_PLATFORM_RULES",
    "CDX_KEY_INSIGHT_RULES",
    "PARTNER_RATIONALE_RULES",
    "PARTNER_WATCH_SIGNALS",
    "PARTNER_DEAL_STRUCTURE_RULES",
]
