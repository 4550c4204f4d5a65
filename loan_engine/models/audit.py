"""Audit log model."""

from dataclasses import dataclass, field
from datetime import datetime

from loan_engine.models.enums import AuditAction


@dataclass(frozen=True)
class AuditEntry:
    """Append-only record of one state change."""

    entry_id: str
    subject: str  # Loan ID
    action: AuditAction
    actor: str  # Admin ID
    before: dict | None
    after: dict | None
    created_at: datetime
    metadata: dict = field(default_factory=dict)
