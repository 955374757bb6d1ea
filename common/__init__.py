"""
common - Shared utilities for the opportunity scoring engine.

Provides:
- score_utils: Scoring primitives (1-10 clamp, weighted average, banding)
- input_validation: Request objects and InvalidInputError
- logging_config: Logging setup, run-id correlation, sanitization
"""

from common.score_utils import (
    clamp_1_10,
    clamp01to10,
    clamp_score,
    weighted_average,
    band,
    band_from_params,
    to_decimal,
    quantize,
)
from common.input_validation import (
    InvalidInputError,
    PharmaLandscapeRequest,
    DeviceLandscapeRequest,
    CDxLandscapeRequest,
    PartnerMatchRequest,
    ScreenerFilters,
)
from common.logging_config import setup_logging, LogContext, set_run_id, get_run_id

__all__ = [
    # Scoring primitives
    "clamp_1_10",
    "clamp01to10",
    "clamp_score",
    "weighted_average",
    "band",
    "band_from_params",
    "to_decimal",
    "quantize",
    # Input validation
    "InvalidInputError",
    "PharmaLandscapeRequest",
    "DeviceLandscapeRequest",
    "CDxLandscapeRequest",
    "PartnerMatchRequest",
    "ScreenerFilters",
    # Logging
    "setup_logging",
    "LogContext",
    "set_run_id",
    "get_run_id",
]
