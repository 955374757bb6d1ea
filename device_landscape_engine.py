#!/usr/bin/env python3
"""
device_landscape_engine.py

Competitive Landscape Analyzer (medical-device variant)

Scores the devices competing for a procedure or condition:
- Retrieval: resolved procedure records, plus any device_category and
  technology_type matches; an unresolved procedure with no filter hits
  falls back to the full device set (tagged NoMatch)
- Per-device differentiation from technology readiness, clinical evidence,
  regulatory pathway, installed base, reimbursement and technology
  crowding
- Crowding composite (cleared count, pipeline count, HHI, technology count,
  installed base) on the 1-10 scale
- Market share distribution from reported shares of cleared devices
- Technology landscape with adoption trajectory, evolution stage, white
  space and rule-table narratives
- Market reference: switching costs and deal benchmark for the category
  template, predicate chain for cleared 510(k) devices

Author: Wake Robin Capital Management
Version: 1.0.0
"""

import logging
from collections import Counter, OrderedDict
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from common.input_validation import DeviceLandscapeRequest, coerce_request
from common.provenance import AuditTrailMixin, finalize_result
from common.score_utils import TENTH, band_from_params, clamp_1_10, quantize, step_score, to_decimal
from competitive_landscape_engine import (
    CorpusSource,
    comparison_matrix,
    dedupe,
    load_params_pair,
    mean,
    most_common_label,
    percent,
)
from device_market_reference import deal_benchmark, predicate_device_map, switching_cost_analysis
from entity_resolver import PROCEDURE_ALIAS_GROUPS, resolve
from landscape_narratives import (
    CONCENTRATION_RULES,
    DEVICE_EMPTY_KEY_INSIGHT,
    DEVICE_EMPTY_WHITE_SPACE,
    DEVICE_EVIDENCE_GAP,
    DEVICE_EVOLUTION_RULES,
    DEVICE_GEOGRAPHIC_GAP,
    DEVICE_INSTALLED_BASE_RULES,
    DEVICE_KEY_INSIGHT_RULES,
    DEVICE_PATHWAY_GAPS,
    DEVICE_REIMBURSEMENT_GAP,
    DEVICE_TECHNOLOGY_GAP,
    concentration_context,
    first_match,
    render_all,
)
from market_concentration import ShareEntry, market_share_distribution
from reference_corpus import DeviceCompetitor, ReferenceCorpus, as_handle

__version__ = "1.0.0"
__author__ = "Wake Robin Capital Management"

logger = logging.getLogger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

MAX_WHITE_SPACE = 5
MAX_TECHNOLOGY_GAPS = 3
DEFAULT_MATRIX_SIZE = 6
EMPTY_SUGGESTIONS = 5

# Technologies a mature device category is expected to contain
REFERENCE_TECHNOLOGIES = {
    "cardiovascular": (
        "balloon-expandable", "self-expanding", "pulsed field ablation", "radiofrequency ablation",
        "cryoablation", "drug-eluting stent", "bioresorbable scaffold",
        "left atrial appendage occlusion", "transcatheter mitral repair",
    ),
    "orthopedic": (
        "robotic-assisted", "cementless implant", "patient-specific instrumentation",
        "3d-printed implant", "ceramic bearing", "metal-on-polyethylene", "navigation-guided",
    ),
    "neurology": (
        "deep brain stimulation", "responsive neurostimulation", "vagus nerve stimulation",
        "transcranial magnetic stimulation", "focused ultrasound", "closed-loop neuromodulation",
    ),
    "diabetes_metabolic": (
        "continuous glucose monitoring", "insulin pump", "automated insulin delivery",
        "implantable cgm", "flash glucose monitoring",
    ),
    "general_surgery": (
        "robotic-assisted surgery", "laparoscopic", "single-port", "natural orifice transluminal",
        "stapling", "energy-based tissue sealing",
    ),
    "vascular": (
        "stent retriever", "aspiration thrombectomy", "intrasaccular flow disruption", "flow diverter",
    ),
}

INSTALLED_BASE_LARGE = 100000
INSTALLED_BASE_MEDIUM = 10000
TECHNOLOGY_CROWDED_AT = 3
REIMBURSEMENT_GAP_PCT = 40
UNREIMBURSED_STATUSES = ("emerging", "none")

REGULATORY_STATUS_LABELS = {
    "cleared": "510(k) Cleared",
    "approved": "PMA Approved",
    "de_novo": "De Novo Authorized",
    "ide_ongoing": "IDE Ongoing",
    "submitted": "Under Review",
    "development": "In Development",
}
PATHWAY_LABELS = {
    "510k": "510(k)",
    "PMA": "PMA",
    "De_Novo": "De Novo",
    "HDE": "HDE",
    "EUA": "EUA",
}
EVIDENCE_LABELS = {
    "RCT": "Randomized Controlled Trial",
    "registry": "Registry / Real-World",
    "single_arm": "Single-Arm Study",
    "case_series": "Case Series",
    "bench_only": "Bench Testing Only",
}
REIMBURSEMENT_LABELS = {
    "covered": "Fully Covered",
    "partial": "Partial Coverage",
    "emerging": "Emerging / NTAP",
    "none": "No Coverage",
}
READINESS_LABELS = {
    "concept": "TRL 1-3 (Concept)",
    "prototype": "TRL 4-5 (Prototype)",
    "clinical": "TRL 6-7 (Clinical)",
    "commercial": "TRL 8-9 (Commercial)",
    "mature": "Established",
}


# ============================================================================
# SCORING
# ============================================================================

def score_device_differentiation(
    device: DeviceCompetitor,
    technology_counts: Counter,
    params: Dict[str, Any],
) -> Decimal:
    """1-10 differentiation of one device within its competitor set."""
    device_params = params["device"]
    score = Decimal("5")
    score += to_decimal(device_params["trl_novelty"].get(device.technology_readiness), Decimal("0"))
    score += to_decimal(device_params["evidence_level_score"].get(device.clinical_evidence_level), Decimal("1")) / 5
    score += to_decimal(device_params["pathway_innovativeness"].get(device.pathway), Decimal("3")) / 10

    if device.installed_base_estimate >= INSTALLED_BASE_LARGE:
        score += 1
    elif device.installed_base_estimate >= INSTALLED_BASE_MEDIUM:
        score += Decimal("0.5")

    score += to_decimal(device_params["reimbursement_score"].get(device.reimbursement_status), Decimal("1")) / 10

    same = technology_counts.get(device.technology_type.lower(), 0)
    if same > TECHNOLOGY_CROWDED_AT:
        score -= min(same - TECHNOLOGY_CROWDED_AT, 2)
    elif same == 1:
        score += 1

    return clamp_1_10(quantize(score, TENTH))


def score_device_evidence(device: DeviceCompetitor, params: Dict[str, Any]) -> Decimal:
    return clamp_1_10(
        to_decimal(params["device"]["evidence_level_score"].get(device.clinical_evidence_level), Decimal("1"))
    )


def crowding_step(value: Any, table: Dict[str, Any]) -> Decimal:
    """Factor score from a params {"steps": [[limit, score], ...], "ceiling": n} table."""
    return step_score(value, table["steps"], table["ceiling"])


def compute_device_crowding(
    cleared: Sequence[DeviceCompetitor],
    pipeline: Sequence[DeviceCompetitor],
    technology_count: int,
    hhi: Optional[int],
    params: Dict[str, Any],
) -> Dict[str, Any]:
    """
    Weighted crowding composite (1-10) and its factor scores.

    hhi=None (no share data) scores the concentration factor as neutral.
    """
    steps = params["device"]["crowding_steps"]
    installed = sum(d.installed_base_estimate for d in cleared)
    factors = {
        "cleared_count": crowding_step(len(cleared), steps["cleared_count"]),
        "pipeline_count": crowding_step(len(pipeline), steps["pipeline_count"]),
        "hhi": crowding_step(hhi, steps["hhi"]) if hhi is not None else to_decimal(steps["no_share_hhi"]),
        "technology_count": crowding_step(technology_count, steps["technology_count"]),
        "installed_base": crowding_step(installed, steps["installed_base"]),
    }
    weights = params["device"]["crowding_weights"]
    composite = sum((factors[name] * to_decimal(weights[name]) for name in sorted(factors)), Decimal("0"))
    crowding = clamp_1_10(quantize(composite, TENTH))
    return {
        "crowding_score": crowding,
        "crowding_label": band_from_params(crowding, params["bands"]["device_crowding"]),
        "factors": factors,
    }


def technology_trajectory(avg_trl: Decimal, device_count: int, params: Dict[str, Any]) -> str:
    """
    emerging / growing / mature / declining from average TRL score and adoption.

    The technology_maturity band places the TRL average; adoption then holds
    a thinly adopted "mature" group at growing and ages a widely adopted
    late group into declining.
    """
    stage = band_from_params(avg_trl, params["bands"]["technology_maturity"])
    adoption = params["device"]["trajectory_adoption"]
    if stage == "mature":
        return "mature" if device_count >= adoption["mature_min_devices"] else "growing"
    if stage == "late":
        return "declining" if device_count >= adoption["declining_min_devices"] else "mature"
    return stage


def readable_technology(technology: str) -> str:
    """'drug-eluting stent' -> 'Drug Eluting Stent'."""
    return " ".join(word.capitalize() for word in technology.replace("-", " ").split())


def format_installed_base(count: int) -> str:
    if count <= 0:
        return "N/A"
    if count >= 1000:
        thousands = (Decimal(count) / 1000).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return f"{thousands}K+"
    return str(count)


# ============================================================================
# ENGINE
# ============================================================================

class DeviceLandscapeEngine(AuditTrailMixin):
    """
    Medical-device competitive landscape for one procedure or condition.

    Usage:
        engine = DeviceLandscapeEngine()
        result = engine.analyze({"procedure": "TAVR"})
    """

    VERSION = "1.0.0"
    MODULE = "device_landscape_engine"

    def __init__(
        self,
        corpus: CorpusSource = None,
        params: Optional[Dict[str, Any]] = None,
        params_hash: Optional[str] = None,
    ):
        self.handle = as_handle(corpus)
        self.params, self.params_hash = load_params_pair(params, params_hash)
        self._init_audit()

    def analyze(
        self,
        request: Union[DeviceLandscapeRequest, Dict[str, Any]],
        generated_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Analyze the device landscape of a procedure.

        Args:
            request: DeviceLandscapeRequest or dict {procedure, device_category?, technology_type?}
            generated_at: Result timestamp (default: UTC now)

        Raises:
            InvalidInputError: Missing/blank procedure
        """
        req = coerce_request(request, DeviceLandscapeRequest)
        corpus = self.handle.current()
        resolution = resolve(req.procedure, "procedure", corpus)
        devices, retrieval = self._gather(corpus, req, resolution)

        if retrieval == "fallback":
            logger.info(f"No procedure match for '{req.procedure}'; scoring the full device set")

        if devices:
            body = self._build_body(corpus, req, devices)
        else:
            body = self._empty_body(corpus, req)
        body["resolution"] = dict(resolution.to_dict(), retrieval=retrieval)

        result = finalize_result(
            body,
            module=self.MODULE,
            module_version=self.VERSION,
            corpus_version=corpus.corpus_version,
            parameters_hash=self.params_hash,
            generated_at=generated_at,
        )
        self._add_audit({
            "procedure": req.procedure,
            "match": resolution.match.value,
            "retrieval": retrieval,
            "devices": len(devices),
            "crowding_score": str(result["summary"]["crowding_score"]),
            "content_hash": result["provenance"]["content_hash"],
        })
        return result

    # ------------------------------------------------------------------

    def _gather(self, corpus: ReferenceCorpus, req: DeviceLandscapeRequest, resolution) -> Tuple[List[DeviceCompetitor], str]:
        pool: List[DeviceCompetitor] = []
        if not resolution.is_fallback:
            pool.extend(resolution.records)
        if req.device_category:
            category = req.device_category.lower()
            pool.extend(d for d in corpus.device_competitors if d.device_category.lower() == category)
        if req.technology_type:
            technology = req.technology_type.lower()
            pool.extend(d for d in corpus.device_competitors if technology in d.technology_type.lower())

        if pool:
            return dedupe(pool, key=lambda d: d.device_name), "fallback_filters" if resolution.is_fallback else "resolved"
        if resolution.is_fallback:
            return dedupe(corpus.device_competitors, key=lambda d: d.device_name), "fallback"
        return [], "resolved"

    def _build_body(
        self,
        corpus: ReferenceCorpus,
        req: DeviceLandscapeRequest,
        devices: List[DeviceCompetitor],
    ) -> Dict[str, Any]:
        params = self.params
        cleared_statuses = params["device"]["cleared_statuses"]
        pipeline_statuses = params["device"]["pipeline_statuses"]

        technology_counts = Counter(d.technology_type.lower() for d in devices)
        scored = [
            self._device_entry(
                d,
                score_device_differentiation(d, technology_counts, params),
                score_device_evidence(d, params),
            )
            for d in devices
        ]
        cleared = [d for d in devices if d.regulatory_status in cleared_statuses]
        pipeline = [d for d in devices if d.regulatory_status in pipeline_statuses]

        distribution = market_share_distribution(
            [
                ShareEntry(f"{d.company} — {d.device_name}", d.regulatory_status, d.estimated_market_share_pct)
                for d in cleared
                if d.estimated_market_share_pct is not None and d.estimated_market_share_pct > 0
            ],
            params,
        )
        has_shares = bool(distribution["competitors"])
        distribution["narrative"] = render_all(
            CONCENTRATION_RULES, concentration_context(distribution, "this procedure category")
        )

        crowding = compute_device_crowding(
            cleared, pipeline, len(technology_counts), distribution["hhi_index"] if has_shares else None, params
        )
        landscape = self._technology_landscape(devices, scored, params)
        category = req.device_category.lower() if req.device_category else most_common_label(
            d.device_category.lower() for d in devices
        )
        white_space = self._white_space(devices, category)

        installed_total = sum(d.installed_base_estimate for d in devices)
        context = dict(
            concentration_context(distribution, "this procedure category"),
            procedure=req.procedure,
            cleared=len(cleared),
            pipeline=len(pipeline),
            crowding_score=crowding["crowding_score"],
            focus_area=white_space[0].lower() if white_space else "clinical evidence differentiation",
            niche=white_space[0].lower() if white_space else "underserved clinical niches",
        )

        cleared_names = {d.device_name for d in cleared}
        pipeline_names = {d.device_name for d in pipeline}
        by_differentiation = sorted(scored, key=lambda s: -s["differentiation_score"])
        matrix_size = int(params["device"].get("comparison_matrix_size", DEFAULT_MATRIX_SIZE))

        summary = {
            "procedure": req.procedure,
            "device_category": category,
            "total_devices": len(devices),
            "cleared_count": len(cleared),
            "pipeline_count": len(pipeline),
            "crowding_score": crowding["crowding_score"],
            "crowding_label": crowding["crowding_label"],
            "crowding_factors": crowding["factors"],
            "dominant_technology": landscape[0]["technology_type"] if landscape else None,
            "avg_differentiation": mean([s["differentiation_score"] for s in scored]),
            "technology_evolution_stage": first_match(
                DEVICE_EVOLUTION_RULES, {"trajectories": [t["trajectory"] for t in landscape]}
            ),
            "installed_base_concentration": first_match(DEVICE_INSTALLED_BASE_RULES, {
                "installed_total": installed_total,
                "installed_thousands": f"{(Decimal(installed_total) / 1000).quantize(Decimal('1'), rounding=ROUND_HALF_UP):,}",
            }),
            "white_space": white_space,
            "key_insight": first_match(DEVICE_KEY_INSIGHT_RULES, context),
        }

        return {
            "variant": "device",
            "query": {
                "procedure": req.procedure,
                "device_category": req.device_category,
                "technology_type": req.technology_type,
            },
            "summary": summary,
            "cleared_devices": [s for s in scored if s["device_name"] in cleared_names],
            "pipeline_devices": [s for s in scored if s["device_name"] in pipeline_names],
            "technology_landscape": landscape,
            "market_share": distribution,
            "switching_costs": switching_cost_analysis(category),
            "predicate_device_map": predicate_device_map(cleared),
            "deal_benchmark": deal_benchmark(category),
            "comparison_matrix": comparison_matrix(
                by_differentiation[:matrix_size],
                column=lambda s: f"{s['company']} — {s['device_name']}",
                attributes=(
                    ("Technology Type", lambda s: s["technology_type"]),
                    ("Regulatory Status", lambda s: REGULATORY_STATUS_LABELS.get(s["regulatory_status"], s["regulatory_status"])),
                    ("Regulatory Pathway", lambda s: PATHWAY_LABELS.get(s["pathway"], s["pathway"] or "N/A")),
                    ("Avg. Selling Price", lambda s: f"${s['asp_estimate']:,.0f}" if s["asp_estimate"] else "N/A"),
                    ("Est. Market Share", lambda s: f"{s['estimated_market_share_pct']}%" if s["estimated_market_share_pct"] else "N/A"),
                    ("Clinical Evidence", lambda s: EVIDENCE_LABELS.get(s["clinical_evidence_level"], s["clinical_evidence_level"])),
                    ("Installed Base", lambda s: format_installed_base(s["installed_base_estimate"])),
                    ("Reimbursement", lambda s: REIMBURSEMENT_LABELS.get(s["reimbursement_status"], s["reimbursement_status"])),
                    ("Differentiation Score", lambda s: f"{s['differentiation_score']}/10"),
                    ("Technology Readiness", lambda s: READINESS_LABELS.get(s["technology_readiness"], s["technology_readiness"])),
                ),
            ),
            "corpus_as_of": corpus.as_of_date,
        }

    def _empty_body(self, corpus: ReferenceCorpus, req: DeviceLandscapeRequest) -> Dict[str, Any]:
        procedures = sorted({d.procedure_or_condition for d in corpus.device_competitors})
        suggestions = procedures[:EMPTY_SUGGESTIONS] or list(PROCEDURE_ALIAS_GROUPS)[:EMPTY_SUGGESTIONS]
        floor = clamp_1_10(1)
        distribution = market_share_distribution([], self.params)
        distribution["narrative"] = render_all(
            CONCENTRATION_RULES, concentration_context(distribution, f'"{req.procedure}"')
        )
        summary = {
            "procedure": req.procedure,
            "device_category": req.device_category.lower() if req.device_category else None,
            "total_devices": 0,
            "cleared_count": 0,
            "pipeline_count": 0,
            "crowding_score": floor,
            "crowding_label": band_from_params(floor, self.params["bands"]["device_crowding"]),
            "crowding_factors": {},
            "dominant_technology": None,
            "avg_differentiation": Decimal("0"),
            "technology_evolution_stage": first_match(DEVICE_EVOLUTION_RULES, {"trajectories": []}),
            "installed_base_concentration": first_match(DEVICE_INSTALLED_BASE_RULES, {"installed_total": 0}),
            "white_space": [
                DEVICE_EMPTY_WHITE_SPACE[0].format(procedure=req.procedure),
                DEVICE_EMPTY_WHITE_SPACE[1].format(suggestions=", ".join(suggestions)),
                DEVICE_EMPTY_WHITE_SPACE[2],
            ],
            "key_insight": DEVICE_EMPTY_KEY_INSIGHT.format(procedure=req.procedure),
        }
        return {
            "variant": "device",
            "query": {
                "procedure": req.procedure,
                "device_category": req.device_category,
                "technology_type": req.technology_type,
            },
            "summary": summary,
            "cleared_devices": [],
            "pipeline_devices": [],
            "technology_landscape": [],
            "market_share": distribution,
            "switching_costs": [],
            "predicate_device_map": None,
            "deal_benchmark": None,
            "comparison_matrix": {"columns": [], "rows": []},
            "corpus_as_of": corpus.as_of_date,
        }

    @staticmethod
    def _device_entry(device: DeviceCompetitor, differentiation: Decimal, evidence: Decimal) -> Dict[str, Any]:
        return {
            "company": device.company,
            "device_name": device.device_name,
            "device_category": device.device_category,
            "procedure_or_condition": device.procedure_or_condition,
            "regulatory_status": device.regulatory_status,
            "pathway": device.pathway,
            "clearance_date": device.clearance_date,
            "k_number_or_pma": device.k_number_or_pma,
            "technology_type": device.technology_type,
            "technology_readiness": device.technology_readiness,
            "clinical_evidence_level": device.clinical_evidence_level,
            "reimbursement_status": device.reimbursement_status,
            "installed_base_estimate": device.installed_base_estimate,
            "estimated_market_share_pct": device.estimated_market_share_pct,
            "asp_estimate": device.asp_estimate,
            "differentiation_score": differentiation,
            "evidence_strength": evidence,
            "strengths": list(device.strengths),
            "weaknesses": list(device.weaknesses),
            "source": device.source,
        }

    @staticmethod
    def _technology_landscape(
        devices: Sequence[DeviceCompetitor],
        scored: Sequence[Dict[str, Any]],
        params: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        trl_scores = params["device"]["trl_score"]
        groups: "OrderedDict[str, List[Tuple[DeviceCompetitor, Dict[str, Any]]]]" = OrderedDict()
        for device, entry in zip(devices, scored):
            groups.setdefault(device.technology_type.lower(), []).append((device, entry))

        landscape = []
        for members in groups.values():
            avg_trl = mean([to_decimal(trl_scores.get(d.technology_readiness), Decimal("5")) for d, _ in members])
            leader_device, leader_entry = max(members, key=lambda m: m[1]["differentiation_score"])
            landscape.append({
                "technology_type": members[0][0].technology_type,
                "device_count": len(members),
                "companies": sorted({d.company for d, _ in members}),
                "dominant_readiness": Counter(d.technology_readiness for d, _ in members).most_common(1)[0][0],
                "avg_trl_score": avg_trl,
                "trajectory": technology_trajectory(avg_trl, len(members), params),
                "representative_device": f"{leader_device.company} {leader_device.device_name}",
                "top_differentiation": leader_entry["differentiation_score"],
            })
        landscape.sort(key=lambda t: -t["device_count"])
        return landscape

    @staticmethod
    def _white_space(devices: Sequence[DeviceCompetitor], category: Optional[str]) -> List[str]:
        technologies = [d.technology_type.lower() for d in devices]
        items: List[str] = []

        missing = [
            ref for ref in REFERENCE_TECHNOLOGIES.get(category or "", ())
            if not any(ref in tech or tech in ref for tech in technologies)
        ]
        for technology in missing[:MAX_TECHNOLOGY_GAPS]:
            items.append(DEVICE_TECHNOLOGY_GAP.format(readable=readable_technology(technology)))

        pathways = {d.pathway for d in devices}
        for pathway, text in DEVICE_PATHWAY_GAPS.items():
            if pathway not in pathways:
                items.append(text)

        unreimbursed = percent(
            sum(1 for d in devices if d.reimbursement_status in UNREIMBURSED_STATUSES), len(devices)
        )
        if unreimbursed > REIMBURSEMENT_GAP_PCT:
            items.append(DEVICE_REIMBURSEMENT_GAP.format(pct=unreimbursed))

        if not any(d.clinical_evidence_level == "RCT" for d in devices):
            items.append(DEVICE_EVIDENCE_GAP)

        items.append(DEVICE_GEOGRAPHIC_GAP)
        return items[:MAX_WHITE_SPACE]


def analyze_device_landscape(
    request: Union[DeviceLandscapeRequest, Dict[str, Any]],
    corpus: CorpusSource = None,
    generated_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """One-shot device analysis against the given (default: published) corpus."""
    return DeviceLandscapeEngine(corpus).analyze(request, generated_at=generated_at)


if __name__ == "__main__":
    from common.logging_config import settings_from_env, setup_logging
    setup_logging(**settings_from_env())

    print("=" * 70)
    print("DEVICE LANDSCAPE ENGINE v1.0.0 - DEMONSTRATION")
    print("=" * 70)

    engine = DeviceLandscapeEngine()
    for query in ({"procedure": "TAVI"}, {"procedure": "CGM"}, {"procedure": "TOTALLY_UNKNOWN_XYZ"}):
        result = engine.analyze(query)
        summary = result["summary"]
        print(f"\n{query['procedure']} -> {result['resolution']['match']} ({result['resolution']['retrieval']})")
        print(f"  Devices:   {summary['total_devices']} ({summary['cleared_count']} cleared)")
        print(f"  Crowding:  {summary['crowding_score']} ({summary['crowding_label']})")
        print(f"  Stage:     {summary['technology_evolution_stage']}")
        print(f"  Market:    {result['market_share']['narrative'][:100]}")
