"""Request-id replay protection for mutating operations."""

from datetime import datetime

from loan_engine.exceptions import ValidationError
from loan_engine.models import IdempotencyRecord
from loan_engine.store.base import UnitOfWork


def find_replay(
    uow: UnitOfWork,
    request_id: str | None,
    operation: str,
    subject_id: str,
) -> IdempotencyRecord | None:
    """Return the earlier record for ``request_id`` if this call is a retry.

    Must be called while holding the subject's loan lock so that a retry
    racing the original request observes its committed key.
    """
    if request_id is None:
        return None
    record = uow.idempotency.get(request_id)
    if record is None:
        return None
    if record.operation != operation or record.subject_id != subject_id:
        raise ValidationError(
            f"Request {request_id} was already used for {record.operation} on {record.subject_id}"
        )
    return record


def remember(
    uow: UnitOfWork,
    request_id: str | None,
    operation: str,
    subject_id: str,
    now: datetime,
    result_id: str | None = None,
) -> None:
    if request_id is None:
        return
    uow.idempotency.put(
        IdempotencyRecord(
            request_id=request_id,
            operation=operation,
            subject_id=subject_id,
            created_at=now,
            result_id=result_id,
        )
    )
