"""Audit models for tracking ledger pipeline actions."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Audit Event Models
# =============================================================================

class AuditSeverity(str, Enum):
    """Severity levels for audit events."""
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    BLOCK = "BLOCK"


class AuditEvent(BaseModel):
    """An audit event for tracking system actions.

    Provides complete traceability of every action the pipeline takes,
    from receiving a POS event through posting its journal entry.
    """
    event_id: str = Field(..., description="Unique event identifier")
    timestamp: datetime = Field(default_factory=_utcnow, description="Event timestamp")
    event_type: str = Field(..., description="Type of event (TRANSACTION_CREATED, JOURNAL_CREATED, etc.)")
    severity: AuditSeverity = Field(default=AuditSeverity.INFO, description="Event severity")

    # Context
    organization_id: Optional[str] = Field(None, description="Owning organization")
    transaction_number: Optional[str] = Field(None, description="Associated universal transaction number")
    journal_number: Optional[str] = Field(None, description="Associated journal entry number")
    source_event_id: Optional[str] = Field(None, description="POS event that triggered the action")

    # Details
    message: str = Field(..., description="Human-readable message")
    details: dict = Field(default_factory=dict, description="Additional event details")

    # Actor
    actor: str = Field(default="system", description="Who/what performed the action")
