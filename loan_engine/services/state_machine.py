"""Loan state machine: approval with disbursement, and rejection."""

import logging
from datetime import datetime, timedelta
from typing import Callable

from loan_engine.config import LedgerPolicy
from loan_engine.exceptions import DepositNotVerified, InvalidStateTransition, ValidationError
from loan_engine.models import ActingAdmin, AuditAction, Loan, LoanStatus
from loan_engine.services.audit import AuditRecorder, utcnow
from loan_engine.services.deposit_gate import DepositVerificationGate
from loan_engine.services.disbursement import DisbursementProcessor
from loan_engine.services.idempotency import find_replay, remember
from loan_engine.sinks.serialization import snapshot
from loan_engine.store.base import LoanStore

logger = logging.getLogger(__name__)

TRANSITIONS: dict[LoanStatus, frozenset[LoanStatus]] = {
    LoanStatus.PENDING: frozenset({LoanStatus.APPROVED, LoanStatus.REJECTED}),
    LoanStatus.APPROVED: frozenset({LoanStatus.ACTIVE}),
    LoanStatus.ACTIVE: frozenset({LoanStatus.CLOSED}),
    LoanStatus.CLOSED: frozenset(),
    LoanStatus.REJECTED: frozenset(),
}


def transition(loan: Loan, target: LoanStatus) -> None:
    """Move ``loan`` to ``target`` or raise ``InvalidStateTransition``."""
    if target not in TRANSITIONS[loan.status]:
        raise InvalidStateTransition(
            f"Loan {loan.loan_id} cannot move from {loan.status.value} to {target.value}"
        )
    loan.status = target


def require_reason(reason: str | None) -> str:
    if reason is None or not reason.strip():
        raise ValidationError("A reason is required")
    return reason.strip()


class LoanStateMachine:
    """Approve or reject pending loans.

    Each operation is one unit of work holding the per-loan lock, so
    approval, disbursement and the audit entry commit together or not
    at all.
    """

    def __init__(
        self,
        store: LoanStore,
        gate: DepositVerificationGate,
        disburser: DisbursementProcessor,
        recorder: AuditRecorder,
        policy: LedgerPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._gate = gate
        self._disburser = disburser
        self._recorder = recorder
        self.policy = policy or LedgerPolicy()
        self._clock = clock

    def approve(
        self,
        loan_id: str,
        acting_admin: ActingAdmin,
        notes: str | None = None,
        request_id: str | None = None,
    ) -> Loan:
        """Approve a pending loan and disburse its principal.

        Raises
        ------
        InvalidStateTransition
            The loan is not pending.
        DepositNotVerified
            A required deposit has not been confirmed.
        AccountUnavailable, DisbursementFailed
            The borrower could not be credited.
        """
        with self._store.unit_of_work() as uow:
            loan = uow.loans.lock(loan_id)
            if find_replay(uow, request_id, "approve_loan", loan_id) is not None:
                logger.info(
                    "Replayed approval request %s for loan %s",
                    request_id,
                    loan_id,
                    extra={"context": {"loan_id": loan_id, "request_id": request_id}},
                )
                return loan

            if loan.status != LoanStatus.PENDING:
                raise InvalidStateTransition(
                    f"Loan {loan_id} is {loan.status.value}; only pending loans can be approved"
                )
            if not self._gate.check(uow, loan):
                logger.warning(
                    "Approval of loan %s blocked: deposit not verified",
                    loan_id,
                    extra={"context": {"loan_id": loan_id}},
                )
                raise DepositNotVerified(f"Deposit for loan {loan_id} has not been verified")

            now = self._clock()
            before = snapshot(loan)

            transition(loan, LoanStatus.APPROVED)
            loan.approved_at = now
            loan.approved_by = acting_admin.admin_id
            loan.approval_notes = notes

            receipt = self._disburser.disburse(uow, loan, now)

            transition(loan, LoanStatus.ACTIVE)
            loan.disbursed_at = now
            loan.first_payment_date = (now + timedelta(days=self.policy.first_payment_days)).date()
            loan.next_payment_date = loan.first_payment_date
            loan.updated_at = now
            uow.loans.save(loan)

            self._recorder.record(
                uow,
                loan_id,
                AuditAction.LOAN_APPROVED_DISBURSED,
                acting_admin,
                before,
                snapshot(loan),
                metadata={"reference": receipt.reference, "notes": notes},
            )
            remember(uow, request_id, "approve_loan", loan_id, now)

        logger.info(
            "Loan %s approved by %s; monthly payment %s",
            loan_id,
            acting_admin.admin_id,
            loan.monthly_payment_amount,
            extra={"context": {"loan_id": loan_id, "reference": loan.disbursement_reference}},
        )
        return loan

    def reject(
        self,
        loan_id: str,
        acting_admin: ActingAdmin,
        reason: str,
        request_id: str | None = None,
    ) -> Loan:
        """Reject a pending loan. No funds move."""
        reason = require_reason(reason)

        with self._store.unit_of_work() as uow:
            loan = uow.loans.lock(loan_id)
            if find_replay(uow, request_id, "reject_loan", loan_id) is not None:
                return loan

            if loan.status != LoanStatus.PENDING:
                raise InvalidStateTransition(
                    f"Loan {loan_id} is {loan.status.value}; only pending loans can be rejected"
                )

            now = self._clock()
            before = snapshot(loan)
            transition(loan, LoanStatus.REJECTED)
            loan.rejected_at = now
            loan.rejected_by = acting_admin.admin_id
            loan.rejection_reason = reason
            loan.updated_at = now
            uow.loans.save(loan)

            self._recorder.record(
                uow, loan_id, AuditAction.LOAN_REJECTED, acting_admin, before, snapshot(loan)
            )
            remember(uow, request_id, "reject_loan", loan_id, now)

        logger.info(
            "Loan %s rejected by %s",
            loan_id,
            acting_admin.admin_id,
            extra={"context": {"loan_id": loan_id}},
        )
        return loan
