"""Audit event logging and persistence.

Provides structured audit logging for automated decisions: alias learning,
auto-post attempts and their outcomes. Supports multiple persistence
backends.
"""

import json
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.models.refs import AuditEvent, AuditSeverity
from core.observability.logging import get_logger


logger = get_logger(__name__)


class AuditEventType(str, Enum):
    """Standard audit event types."""
    # Line matching
    ALIAS_LEARNED = "ALIAS_LEARNED"

    # Auto-post
    AUTO_POST_ATTEMPTED = "AUTO_POST_ATTEMPTED"
    AUTO_POST_COMPLETED = "AUTO_POST_COMPLETED"
    AUTO_POST_REJECTED = "AUTO_POST_REJECTED"

    # Vendor trust
    TRUST_STATE_EVALUATED = "TRUST_STATE_EVALUATED"


def create_audit_event(
    event_type: AuditEventType,
    message: str,
    severity: AuditSeverity = AuditSeverity.INFO,
    business_id: Optional[str] = None,
    draft_id: Optional[str] = None,
    vendor_profile_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    actor: str = "system",
    timestamp: Optional[datetime] = None,
) -> AuditEvent:
    """Create a new audit event with auto-generated ID and timestamp.

    Args:
        event_type: Type of event
        message: Human-readable message
        severity: Event severity level
        business_id: Tenant the event belongs to
        draft_id: Associated document draft
        vendor_profile_id: Associated vendor profile
        details: Additional structured details
        actor: Who/what performed the action
        timestamp: Event time (defaults to now, UTC)

    Returns:
        Configured AuditEvent ready for logging
    """
    return AuditEvent(
        event_id=str(uuid.uuid4()),
        timestamp=timestamp or datetime.now(timezone.utc),
        event_type=event_type.value,
        severity=severity,
        business_id=business_id,
        draft_id=draft_id,
        vendor_profile_id=vendor_profile_id,
        message=message,
        details=details or {},
        actor=actor,
    )


class AuditBackend(ABC):
    """Abstract base class for audit persistence backends."""

    @abstractmethod
    def log(self, event: AuditEvent) -> None:
        """Persist an audit event."""
        pass

    @abstractmethod
    def query(
        self,
        event_type: Optional[str] = None,
        draft_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """Query audit events with filters."""
        pass


def _matches(
    event: AuditEvent,
    event_type: Optional[str],
    draft_id: Optional[str],
    start_time: Optional[datetime],
    end_time: Optional[datetime],
) -> bool:
    if event_type and event.event_type != event_type:
        return False
    if draft_id and event.draft_id != draft_id:
        return False
    if start_time and event.timestamp < start_time:
        return False
    if end_time and event.timestamp > end_time:
        return False
    return True


class JSONFileAuditBackend(AuditBackend):
    """Audit backend that stores events in JSON files.

    Stores one file per day in YYYY-MM-DD.json format.
    """

    def __init__(self, base_path: Path):
        """Initialize with base directory for audit files."""
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_file_path(self, date: datetime) -> Path:
        """Get file path for a given date."""
        return self.base_path / f"{date.strftime('%Y-%m-%d')}.json"

    def log(self, event: AuditEvent) -> None:
        """Append event to daily file."""
        file_path = self._get_file_path(event.timestamp)

        events = []
        if file_path.exists():
            with open(file_path, "r", encoding="utf-8") as f:
                events = json.load(f)

        events.append(event.model_dump(mode="json"))

        with open(file_path, "w", encoding="utf-8") as f:
            json.dump(events, f, indent=2)

    def query(
        self,
        event_type: Optional[str] = None,
        draft_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """Query events from JSON files, walking one day file at a time."""
        results = []

        if start_time is None:
            start_time = datetime(2020, 1, 1, tzinfo=timezone.utc)
        if end_time is None:
            end_time = datetime.now(timezone.utc)

        current = start_time
        while current.date() <= end_time.date() and len(results) < limit:
            file_path = self._get_file_path(current)
            if file_path.exists():
                with open(file_path, "r", encoding="utf-8") as f:
                    events = json.load(f)

                for event_data in events:
                    event = AuditEvent.model_validate(event_data)
                    if not _matches(event, event_type, draft_id, start_time, end_time):
                        continue
                    results.append(event)
                    if len(results) >= limit:
                        break

            current = current + timedelta(days=1)

        return results


class InMemoryAuditBackend(AuditBackend):
    """In-memory audit backend for testing and local runs."""

    def __init__(self):
        self._events: List[AuditEvent] = []

    def log(self, event: AuditEvent) -> None:
        self._events.append(event)

    def query(
        self,
        event_type: Optional[str] = None,
        draft_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        results = []
        for event in self._events:
            if not _matches(event, event_type, draft_id, start_time, end_time):
                continue
            results.append(event)
            if len(results) >= limit:
                break
        return results

    def clear(self) -> None:
        """Clear all events (for testing)."""
        self._events.clear()


class AuditLogger:
    """Main audit logger that supports multiple backends.

    Usage:
        audit = AuditLogger()
        audit.add_backend(JSONFileAuditBackend(Path("./audit")))

        audit.log_info(
            AuditEventType.AUTO_POST_COMPLETED,
            "Draft posted automatically",
            business_id="biz-1",
            draft_id="draft-9",
        )
    """

    def __init__(self, backends: Optional[List[AuditBackend]] = None):
        self._backends: List[AuditBackend] = list(backends or [])

    @classmethod
    def in_memory(cls) -> "AuditLogger":
        """Audit logger backed by a single InMemoryAuditBackend."""
        return cls([InMemoryAuditBackend()])

    def add_backend(self, backend: AuditBackend) -> None:
        """Add an audit backend."""
        self._backends.append(backend)

    def log(self, event: AuditEvent) -> None:
        """Log event to all backends."""
        for backend in self._backends:
            try:
                backend.log(event)
            except Exception as e:
                # Don't let audit failures break the system
                logger.warning(
                    f"Audit logging failed for backend {type(backend).__name__}: {e}",
                    extra_fields={"event_type": event.event_type},
                )

    def log_info(
        self,
        event_type: AuditEventType,
        message: str,
        **kwargs,
    ) -> None:
        """Log an INFO level event."""
        self.log(create_audit_event(event_type, message, AuditSeverity.INFO, **kwargs))

    def log_warning(
        self,
        event_type: AuditEventType,
        message: str,
        **kwargs,
    ) -> None:
        """Log a WARN level event."""
        self.log(create_audit_event(event_type, message, AuditSeverity.WARN, **kwargs))

    def query(
        self,
        event_type: Optional[str] = None,
        draft_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """Query events from all backends (returns first backend's results)."""
        if not self._backends:
            return []
        return self._backends[0].query(event_type, draft_id, start_time, end_time, limit)
