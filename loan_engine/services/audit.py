"""Audit recorder: one immutable entry per state change."""

import logging
from datetime import datetime, timezone
from typing import Callable, Protocol

from loan_engine.ledger import new_id
from loan_engine.models import ActingAdmin, AuditAction, AuditEntry, Event
from loan_engine.sinks.serialization import to_dict
from loan_engine.store.base import UnitOfWork

logger = logging.getLogger(__name__)

EVENT_SOURCE = "loan-engine"


class EventPublisher(Protocol):
    def publish(self, event: Event) -> None: ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditRecorder:
    """Append audit entries inside the caller's unit of work.

    When a publisher is configured the entry is also published as an
    ``Event`` after the unit of work commits.
    """

    def __init__(
        self,
        publisher: EventPublisher | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._publisher = publisher
        self._clock = clock

    def record(
        self,
        uow: UnitOfWork,
        subject: str,
        action: AuditAction,
        actor: ActingAdmin,
        before: dict | None,
        after: dict | None,
        metadata: dict | None = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            entry_id=new_id(),
            subject=subject,
            action=action,
            actor=actor.admin_id,
            before=before,
            after=after,
            created_at=self._clock(),
            metadata=metadata or {},
        )
        uow.audit.append(entry)

        if self._publisher is not None:
            event = to_event(entry)
            publisher = self._publisher
            uow.after_commit(lambda: publisher.publish(event))

        logger.debug("Audit %s on %s by %s", action.value, subject, actor.admin_id)
        return entry


def to_event(entry: AuditEntry) -> Event:
    """Wrap an audit entry in the streaming envelope."""
    return Event(
        event_id=entry.entry_id,
        event_type=f"loan.{entry.action.value}",
        event_time=entry.created_at,
        source=EVENT_SOURCE,
        subject=entry.subject,
        data=to_dict(entry),
        metadata={"actor": entry.actor},
    )
