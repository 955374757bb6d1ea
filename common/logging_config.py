"""
Logging configuration for the opportunity scoring engine.

One call to setup_logging() wires the root logger for an analyzer process,
the corpus builder script, or a module demo:

- Console handler on stderr, optional size-rotated file handler
- Run IDs: every analyzer call or build run can be scoped with LogContext
  so its lines (resolver fallbacks, clamped corpus records, reloads) group
  together
- Redaction of credentials pasted into free-text queries
- Optional JSON lines carrying the engine context fields (indication,
  retrieval path, corpus version) passed through ``extra=``

Settings can also come from the environment (see settings_from_env):
    OPPORTUNITY_ENGINE_LOG_LEVEL   DEBUG / INFO / WARNING ...
    OPPORTUNITY_ENGINE_LOG_FILE    path of the rotating log file
    OPPORTUNITY_ENGINE_LOG_JSON    1 / true for JSON lines

Version: 2.0.0
"""

import json
import logging
import os
import re
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

run_id_context: ContextVar[str] = ContextVar("run_id", default="")

ENV_LEVEL = "OPPORTUNITY_ENGINE_LOG_LEVEL"
ENV_FILE = "OPPORTUNITY_ENGINE_LOG_FILE"
ENV_JSON = "OPPORTUNITY_ENGINE_LOG_JSON"

TEXT_FORMAT = "%(asctime)s - [%(run_id)s] - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5
NO_RUN_ID = "no-run-id"

# Keys whose values never reach a log line
REDACTED_KEYS = ("api_key", "apikey", "password", "secret", "token", "authorization", "bearer", "email")

# Engine context attributes copied into JSON lines when present on a record
CONTEXT_FIELDS = ("indication", "procedure", "biomarker", "retrieval", "corpus_version", "match_count")

_REDACT = re.compile(
    r"\b(" + "|".join(re.escape(k) for k in REDACTED_KEYS) + r")(\s*[=:]\s*)['\"]?[^'\"\s,}]+['\"]?",
    re.IGNORECASE,
)


def redact(text: str) -> str:
    """Replace the value of any credential-looking key=value / key: value pair."""
    return _REDACT.sub(lambda m: f"{m.group(1)}=[REDACTED]", text)


class RunIdFilter(logging.Filter):
    """Stamps record.run_id from the current LogContext."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = run_id_context.get() or NO_RUN_ID
        return True


class SanitizingFilter(logging.Filter):
    """
    Redacts credentials from the message and its %-style args.

    Queries are free text typed by users; a token pasted into an
    indication field would otherwise land in the log file.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(redact(a) if isinstance(a, str) else a for a in record.args)
        elif isinstance(record.args, dict):
            record.args = {
                k: "[REDACTED]" if str(k).lower() in REDACTED_KEYS else v
                for k, v in record.args.items()
            }
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, keys sorted."""

    def __init__(self, extra_fields: Optional[Dict[str, Any]] = None):
        super().__init__()
        self.extra_fields = dict(extra_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        run_id = getattr(record, "run_id", None)
        if run_id:
            payload["run_id"] = run_id
        for name in CONTEXT_FIELDS:
            if hasattr(record, name):
                payload[name] = getattr(record, name)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        payload.update(self.extra_fields)
        return json.dumps(payload, default=str, sort_keys=True)


def settings_from_env(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """setup_logging() keyword arguments taken from OPPORTUNITY_ENGINE_LOG_* variables."""
    env = os.environ if environ is None else environ
    settings: Dict[str, Any] = {}
    level = env.get(ENV_LEVEL, "").strip().upper()
    if level:
        settings["log_level"] = level
    if env.get(ENV_FILE, "").strip():
        settings["log_file"] = env[ENV_FILE].strip()
    if env.get(ENV_JSON, "").strip().lower() in ("1", "true", "yes"):
        settings["structured_output"] = True
    return settings


def _resolve_level(log_level: Union[int, str]) -> int:
    if isinstance(log_level, int):
        return log_level
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level!r}")
    return level


def setup_logging(
    log_file: Optional[Union[str, Path]] = None,
    log_level: Union[int, str] = logging.INFO,
    enable_console: bool = True,
    structured_output: bool = False,
    max_bytes: int = MAX_LOG_BYTES,
    backup_count: int = LOG_BACKUPS,
) -> logging.Logger:
    """
    Configure the root logger (existing handlers are replaced).

    Args:
        log_file: Rotating log file; None for console only
        log_level: Level as int or name ("DEBUG")
        enable_console: Log to stderr
        structured_output: JSON lines instead of the text format
        max_bytes / backup_count: Rotation policy for log_file

    Returns:
        The root logger

    Example:
        setup_logging(**settings_from_env())
    """
    root = logging.getLogger()
    root.setLevel(_resolve_level(log_level))
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    formatter = StructuredFormatter() if structured_output else logging.Formatter(TEXT_FORMAT, DATE_FORMAT)

    handlers: List[logging.Handler] = []
    if enable_console:
        handlers.append(logging.StreamHandler(sys.stderr))
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(SanitizingFilter())
        handler.addFilter(RunIdFilter())
        root.addHandler(handler)

    return root


def generate_run_id() -> str:
    return uuid.uuid4().hex[:8]


def set_run_id(run_id: Optional[str] = None) -> str:
    """Set (or generate) the run ID for the current context."""
    run_id = run_id or generate_run_id()
    run_id_context.set(run_id)
    return run_id


def get_run_id() -> str:
    return run_id_context.get()


class LogContext:
    """
    Scope a run ID to one analyzer call or build run.

    Example:
        with LogContext() as run_id:
            engine.analyze({"indication": "NSCLC"})
    """

    def __init__(self, run_id: Optional[str] = None):
        self.run_id = run_id
        self._token = None

    def __enter__(self) -> str:
        self.run_id = self.run_id or generate_run_id()
        self._token = run_id_context.set(self.run_id)
        return self.run_id

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        run_id_context.reset(self._token)


__all__ = [
    "setup_logging",
    "settings_from_env",
    "generate_run_id",
    "set_run_id",
    "get_run_id",
    "redact",
    "LogContext",
    "run_id_context",
    "RunIdFilter",
    "SanitizingFilter",
    "StructuredFormatter",
    "CONTEXT_FIELDS",
]
