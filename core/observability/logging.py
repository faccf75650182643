"""
Structured Logging with Correlation IDs

Every record emitted through get_logger() carries the ids of the document
being processed, so one draft can be followed from line matching through
the auto-post decision:
- business_id: Tenant the request is scoped to
- draft_id: Document draft being evaluated
- vendor_profile_id: Vendor whose history is consulted
- google_place_id: Store location used for alias scoping
- workflow_id / activity_name: Temporal execution, when hosted there

The ids are snapshotted onto the record when it is created, so a handler
that formats later (queue handlers, caplog) still sees the ids that were
active at the call site.

Usage:
    from core.observability.logging import get_logger, with_correlation

    logger = get_logger(__name__)

    with with_correlation(business_id="biz-1", draft_id="draft-9"):
        logger.info("Evaluating draft", extra_fields={"vendor": "Acme"})
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from temporalio import activity


# =============================================================================
# Correlation Context
# =============================================================================

@dataclass(frozen=True)
class CorrelationContext:
    """Ids attached to every log record emitted inside a with_correlation block."""
    business_id: Optional[str] = None
    draft_id: Optional[str] = None
    vendor_profile_id: Optional[str] = None
    google_place_id: Optional[str] = None
    workflow_id: Optional[str] = None
    activity_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Set ids only."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def merge(self, **kwargs) -> "CorrelationContext":
        """Copy with the given ids layered on top; None never clears an id."""
        data = self.to_dict()
        data.update({k: v for k, v in kwargs.items() if v is not None})
        return CorrelationContext(**data)


_correlation_context: ContextVar[CorrelationContext] = ContextVar(
    "correlation_context",
    default=CorrelationContext()
)


def get_correlation_context() -> CorrelationContext:
    return _correlation_context.get()


@contextmanager
def with_correlation(**kwargs):
    """
    Layer correlation ids over the current context for the duration of a block.

    Blocks nest; leaving one restores the ids that were active before it.

    Usage:
        with with_correlation(business_id="biz-1"):
            with with_correlation(draft_id="draft-9"):
                logger.info("Processing")  # business_id and draft_id
    """
    token = _correlation_context.set(get_correlation_context().merge(**kwargs))
    try:
        yield _correlation_context.get()
    finally:
        _correlation_context.reset(token)


@contextmanager
def activity_correlation(**kwargs):
    """with_correlation that also tags the running Temporal activity, if any."""
    if activity.in_activity():
        info = activity.info()
        kwargs.setdefault("workflow_id", info.workflow_id)
        kwargs.setdefault("activity_name", info.activity_type)
    with with_correlation(**kwargs) as ctx:
        yield ctx


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _record_correlation(record: logging.LogRecord) -> Dict[str, Any]:
    # Records from plain stdlib loggers (temporalio, third parties) carry no
    # snapshot; fall back to whatever is active while formatting.
    snapshot = getattr(record, "correlation", None)
    if snapshot is None:
        return get_correlation_context().to_dict()
    return snapshot


# =============================================================================
# Formatters
# =============================================================================

class StructuredFormatter(logging.Formatter):
    """
    One JSON object per line: base fields, then correlation ids, then the
    call's extra_fields (later keys win).

    {"timestamp": "2026-01-09T12:00:00.000000+00:00", "level": "INFO",
     "logger": "trust_engine.service", "message": "auto_post_attempt",
     "business_id": "biz-1", "draft_id": "draft-9", "eligible": false}
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": _utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_record_correlation(record))
        payload.update(getattr(record, "extra_fields", None) or {})

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    2026-01-09 12:00:00 [INFO ] trust_engine.service [biz-1/draft:draft-9]: auto_post_attempt {"eligible": false}
    """

    # (correlation key, prefix shown before the value)
    PREFIXES = (
        ("business_id", ""),
        ("draft_id", "draft:"),
        ("google_place_id", "place:"),
        ("workflow_id", ""),
    )

    def format(self, record: logging.LogRecord) -> str:
        ids = _record_correlation(record)

        parts = []
        for key, prefix in self.PREFIXES:
            value = ids.get(key)
            if not value:
                continue
            if key == "workflow_id":
                value = value[:12]
            parts.append(f"{prefix}{value}")
        correlation = "/".join(parts) or "-"

        line = (
            f"{_utcnow():%Y-%m-%d %H:%M:%S} [{record.levelname:5}] "
            f"{record.name} [{correlation}]: {record.getMessage()}"
        )

        extra = getattr(record, "extra_fields", None)
        if extra:
            line += " " + json.dumps(extra, default=str, sort_keys=True)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# =============================================================================
# Logger with Correlation Support
# =============================================================================

class CorrelatedLogger:
    """
    Thin wrapper over a stdlib logger.

    Each call may pass extra_fields, a dict merged into structured output:
        logger.info("auto_post_attempt", extra_fields={"eligible": False})
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def log(self, level: int, msg: str, *args, extra_fields: Optional[Dict[str, Any]] = None, exc_info=None):
        if not self._logger.isEnabledFor(level):
            return
        if exc_info is True:
            exc_info = sys.exc_info()

        record = self._logger.makeRecord(
            self._logger.name, level, "(unknown file)", 0, msg, args, exc_info or None,
        )
        record.extra_fields = extra_fields or {}
        record.correlation = get_correlation_context().to_dict()
        self._logger.handle(record)

    def debug(self, msg: str, *args, **kwargs):
        self.log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self.log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self.log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self.log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        kwargs["exc_info"] = True
        self.log(logging.ERROR, msg, *args, **kwargs)

    def setLevel(self, level):
        self._logger.setLevel(level)

    def isEnabledFor(self, level):
        return self._logger.isEnabledFor(level)


# =============================================================================
# Setup
# =============================================================================

# Package loggers raised to the configured level
APP_LOGGERS = ("core", "line_matcher", "trust_engine", "activities", "workflows", "workers")

_loggers: Dict[str, CorrelatedLogger] = {}
_configured = False


def configure_logging(
    level: int = logging.INFO,
    json_format: bool = False,
    include_temporal: bool = True,
):
    """
    Install a stdout handler on the root logger. Later calls are no-ops.

    Args:
        level: Logging level
        json_format: JSON lines (StructuredFormatter) instead of human-readable
        include_temporal: Keep temporalio SDK loggers at INFO
    """
    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)

    for name in APP_LOGGERS:
        logging.getLogger(name).setLevel(level)

    if include_temporal:
        logging.getLogger("temporalio").setLevel(logging.INFO)

    _configured = True


def get_logger(name: str) -> CorrelatedLogger:
    """
    Correlated logger for `name` (typically __name__).

    Does not install handlers; call configure_logging() once at process start.
    """
    if name not in _loggers:
        _loggers[name] = CorrelatedLogger(logging.getLogger(name))
    return _loggers[name]
