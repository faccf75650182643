"""Audit models for tracking decisions made by the pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditSeverity(str, Enum):
    """Severity levels for audit events."""
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    BLOCK = "BLOCK"


class AuditEvent(BaseModel):
    """An audit event for tracking system actions.

    Provides traceability of every automated decision, from line matching
    through auto-posting a document to the ledger.
    """
    event_id: str = Field(..., description="Unique event identifier")
    timestamp: datetime = Field(default_factory=_utcnow, description="Event timestamp")
    event_type: str = Field(..., description="Type of event (AUTO_POST_ATTEMPTED, ALIAS_LEARNED, ...)")
    severity: AuditSeverity = Field(default=AuditSeverity.INFO, description="Event severity")

    # Context
    business_id: Optional[str] = Field(None, description="Tenant the event belongs to")
    draft_id: Optional[str] = Field(None, description="Associated document draft")
    vendor_profile_id: Optional[str] = Field(None, description="Associated vendor profile")

    # Details
    message: str = Field(..., description="Human-readable message")
    details: dict = Field(default_factory=dict, description="Additional event details")

    # Actor
    actor: str = Field(default="system", description="Who/what performed the action")
