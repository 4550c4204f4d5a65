"""Base models shared across the engine."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class ActingAdmin:
    """Already-authenticated administrator performing an operation."""

    admin_id: str
    email: str | None = None


@dataclass
class Event:
    """Standard event envelope for streaming."""

    event_id: str
    event_type: str  # entity.action (e.g., loan.loan_approved_disbursed)
    event_time: datetime
    source: str  # Service/system that generated
    subject: str  # Entity ID affected
    data: dict
    metadata: dict = field(default_factory=dict)
