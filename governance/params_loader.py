"""
Scoring Parameters Loader

Every weight table, band threshold and lookup matrix the analyzers use lives
in one versioned file, params_archive/<score_version>.json. Loading returns
(params, parameters_hash) so each result can name the exact table set it was
scored with.

Directory resolution: explicit params_dir, else $OPPORTUNITY_ENGINE_PARAMS_DIR,
else params_archive/ at the repository root.

Validation (load_and_validate_params) is fail-closed:
- required sections present, band labels = thresholds + 1, thresholds ascending
- each weight table non-negative and summing to 1
- pharma phase tables keyed by the same phases
- pharma crowding count ladder strictly ascending
- screener LOA table has a 'default' row
"""

import json
import logging
import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from governance.hashing import hash_canonical_json_short

logger = logging.getLogger(__name__)

PARAMS_DIR_ENV = "OPPORTUNITY_ENGINE_PARAMS_DIR"
DEFAULT_PARAMS_DIR = Path(__file__).resolve().parent.parent / "params_archive"
DEFAULT_SCORE_VERSION = "scoring_v1"

MAX_PARAMS_FILE_BYTES = 1024 * 1024

REQUIRED_SECTIONS = ["bands", "pharma", "device", "cdx", "partner", "screener"]

# (section, key) weight tables that must sum to 1
WEIGHT_GROUPS: List[Tuple[str, str]] = [
    ("partner", "weights"),
    ("screener", "weights"),
    ("device", "crowding_weights"),
    ("cdx", "crowding_weights"),
]

# Per-phase lookups that must cover the same phases
PHARMA_PHASE_TABLES = ("phase_crowding_weight", "phase_evidence", "phase_share_weight", "phase_threat_score")

WEIGHT_SUM_TOLERANCE = Decimal("0.0001")


class ParamsLoadError(Exception):
    """Params file missing, unreadable or not a JSON object."""
    pass


class ParamsValidationError(ParamsLoadError):
    """Params file parsed but its tables are inconsistent."""
    pass


def get_params_path(
    score_version: str,
    params_dir: Optional[Union[str, Path]] = None,
) -> Path:
    if params_dir is None:
        params_dir = os.environ.get(PARAMS_DIR_ENV) or DEFAULT_PARAMS_DIR
    return Path(params_dir) / f"{score_version}.json"


def compute_parameters_hash(params: Dict[str, Any], length: int = 16) -> str:
    return hash_canonical_json_short(params, length=length)


def load_params(
    score_version: str = DEFAULT_SCORE_VERSION,
    params_dir: Optional[Union[str, Path]] = None,
) -> Tuple[Dict[str, Any], str]:
    """
    Read one archived params file (no table validation).

    Returns:
        (params, parameters_hash)

    Raises:
        ParamsLoadError: Missing, symlinked, oversized, unreadable or non-object file
    """
    path = get_params_path(score_version, params_dir)
    if not path.exists():
        raise ParamsLoadError(f"Parameters file not found: {path} (score_version '{score_version}')")
    if path.is_symlink():
        raise ParamsLoadError(f"Parameters file is a symbolic link, refusing to load: {path}")
    size = path.stat().st_size
    if size > MAX_PARAMS_FILE_BYTES:
        raise ParamsLoadError(f"Parameters file too large: {path} ({size} bytes)")

    try:
        params = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ParamsLoadError(f"Invalid JSON in {path}: {e}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise ParamsLoadError(f"Error reading {path}: {e}") from e

    if not isinstance(params, dict):
        raise ParamsLoadError(f"Parameters must be a JSON object, got {type(params).__name__}")

    params_hash = compute_parameters_hash(params)
    logger.debug(f"Loaded {score_version} from {path} (parameters_hash {params_hash})")
    return params, params_hash


def validate_params_structure(
    params: Dict[str, Any],
    required_keys: Optional[Sequence[str]] = None,
) -> Tuple[bool, str]:
    """Required sections and band shapes. Returns (is_valid, message)."""
    if not isinstance(params, dict):
        return False, f"Parameters must be dict, got {type(params).__name__}"

    missing = [k for k in (required_keys or ()) if k not in params]
    if missing:
        return False, f"Missing required parameters: {missing}"

    for name, band in params.get("bands", {}).items():
        thresholds, labels = band.get("thresholds"), band.get("labels")
        if not isinstance(thresholds, list) or not isinstance(labels, list):
            return False, f"Band '{name}' needs 'thresholds' and 'labels' lists"
        if len(labels) != len(thresholds) + 1:
            return False, f"Band '{name}' has {len(labels)} labels for {len(thresholds)} thresholds"
        if any(a >= b for a, b in zip(thresholds, thresholds[1:])):
            return False, f"Band '{name}' thresholds must be strictly ascending"

    return True, "Parameters structure valid"


def validate_weight_groups(
    params: Dict[str, Any],
    weight_groups: Sequence[Tuple[str, str]] = tuple(WEIGHT_GROUPS),
) -> None:
    """
    Raises:
        ParamsValidationError: Missing table, negative weight or sum != 1
    """
    for section, key in weight_groups:
        weights = params.get(section, {}).get(key)
        if not isinstance(weights, dict) or not weights:
            raise ParamsValidationError(f"Missing weight table {section}.{key}")
        values = {name: Decimal(str(value)) for name, value in weights.items()}
        negative = sorted(name for name, value in values.items() if value < 0)
        if negative:
            raise ParamsValidationError(f"Negative weight in {section}.{key}: {negative}")
        total = sum(values.values(), Decimal("0"))
        if abs(total - Decimal("1")) > WEIGHT_SUM_TOLERANCE:
            raise ParamsValidationError(f"Weight sum validation failed: {section}.{key} sums to {total}, expected 1")


def validate_lookup_tables(params: Dict[str, Any]) -> None:
    """
    Cross-table consistency the analyzers rely on.

    Raises:
        ParamsValidationError: On the first inconsistency found
    """
    pharma = params.get("pharma", {})
    phase_sets = {name: set(pharma.get(name) or ()) for name in PHARMA_PHASE_TABLES}
    reference = phase_sets[PHARMA_PHASE_TABLES[0]]
    if not reference:
        raise ParamsValidationError(f"Missing pharma.{PHARMA_PHASE_TABLES[0]}")
    for name, phases in phase_sets.items():
        if phases != reference:
            raise ParamsValidationError(
                f"pharma.{name} phases {sorted(phases)} differ from "
                f"pharma.{PHARMA_PHASE_TABLES[0]} {sorted(reference)}"
            )

    limits = [step[0] for step in pharma.get("crowding_count_steps") or ()]
    if not limits or any(a >= b for a, b in zip(limits, limits[1:])):
        raise ParamsValidationError("pharma.crowding_count_steps limits must be present and strictly ascending")

    loa = params.get("screener", {}).get("loa_by_therapy_area") or {}
    if "default" not in loa:
        raise ParamsValidationError("screener.loa_by_therapy_area needs a 'default' row")


def load_and_validate_params(
    score_version: str = DEFAULT_SCORE_VERSION,
    params_dir: Optional[Union[str, Path]] = None,
) -> Tuple[Dict[str, Any], str]:
    """
    Load and fully validate a params file.

    Returns:
        (params, parameters_hash)

    Raises:
        ParamsLoadError: Unreadable file
        ParamsValidationError: Inconsistent tables
    """
    params, params_hash = load_params(score_version, params_dir)

    is_valid, message = validate_params_structure(params, REQUIRED_SECTIONS)
    if not is_valid:
        raise ParamsValidationError(f"{score_version}: {message}")
    validate_weight_groups(params)
    validate_lookup_tables(params)

    logger.debug(f"{score_version} passed validation ({len(WEIGHT_GROUPS)} weight tables)")
    return params, params_hash

