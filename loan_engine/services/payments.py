"""Payment processor: apply repayments to the loan ledger."""

import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Callable

from loan_engine.config import LedgerPolicy
from loan_engine.exceptions import (
    AccountUnavailable,
    InvalidEntityStateError,
    InvalidStateTransition,
    OverpaymentNotAllowed,
    ValidationError,
)
from loan_engine.ledger import (
    ZERO,
    Allocation,
    allocate_payment,
    following_due_date,
    is_late,
    monthly_interest,
    new_id,
    to_money,
)
from loan_engine.models import (
    ActingAdmin,
    AuditAction,
    Loan,
    LoanStatus,
    Payment,
    PaymentStatus,
    PaymentType,
    TransactionType,
)
from loan_engine.services.audit import AuditRecorder, utcnow
from loan_engine.services.idempotency import find_replay, remember
from loan_engine.services.state_machine import require_reason, transition
from loan_engine.sinks.serialization import snapshot
from loan_engine.store.base import LoanStore, UnitOfWork

logger = logging.getLogger(__name__)


def parse_amount(amount: Decimal | int | str | float, minor_unit: Decimal) -> Decimal:
    """Coerce caller input to money; non-positive amounts are refused."""
    try:
        value = to_money(amount, minor_unit)
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValidationError(f"Invalid payment amount: {amount!r}") from exc
    if not value.is_finite():
        raise ValidationError(f"Invalid payment amount: {amount!r}")
    if value <= 0:
        raise OverpaymentNotAllowed(f"Payment amount must be positive, got {amount}")
    return value


def parse_payment_type(payment_type: PaymentType | str) -> PaymentType:
    try:
        return PaymentType(payment_type)
    except ValueError as exc:
        raise ValidationError(f"Unknown payment type: {payment_type!r}") from exc


def dues(loan: Loan, received_on: date, policy: LedgerPolicy) -> tuple[Decimal, Decimal]:
    """Late fee and interest owed on ``loan`` for a payment received on ``received_on``."""
    late_fee = ZERO
    if is_late(received_on, loan.next_payment_date, policy.grace_period_days):
        late_fee = policy.late_fee_for(loan.monthly_payment_amount)
    interest = monthly_interest(loan.remaining_balance, loan.interest_rate, policy.minor_unit)
    return late_fee, interest


def payoff_amount(loan: Loan, as_of: date, policy: LedgerPolicy) -> Decimal:
    """Amount that closes ``loan`` if paid on ``as_of``."""
    late_fee, interest = dues(loan, as_of, policy)
    return late_fee + interest + loan.remaining_balance


class PaymentProcessor:
    """Record, approve and reject loan payments.

    Payments against one loan are serialized on the loan lock; the
    allocation always satisfies the late fee first, then interest, then
    principal.
    """

    def __init__(
        self,
        store: LoanStore,
        recorder: AuditRecorder,
        policy: LedgerPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._recorder = recorder
        self.policy = policy or LedgerPolicy()
        self._clock = clock

    def record_payment(
        self,
        loan_id: str,
        amount: Decimal | int | str | float,
        payment_type: PaymentType | str,
        acting_admin: ActingAdmin,
        as_of: date | None = None,
        request_id: str | None = None,
        reference: str | None = None,
    ) -> Payment:
        """Record a payment against an active loan.

        Manual payments are stored as pending and wait for approval; every
        other type is applied immediately.

        Parameters
        ----------
        loan_id : str
            Loan being repaid.
        amount : Decimal | int | str | float
            Amount received.
        payment_type : PaymentType | str
            Kind of payment.
        acting_admin : ActingAdmin
            Administrator entering the payment.
        as_of : date, optional
            Payment date; defaults to today.
        request_id : str, optional
            Idempotency key.
        reference : str, optional
            External reference (receipt or transfer id).

        Returns
        -------
        Payment
            The stored payment.
        """
        value = parse_amount(amount, self.policy.minor_unit)
        kind = parse_payment_type(payment_type)

        with self._store.unit_of_work() as uow:
            loan = uow.loans.lock(loan_id)
            replay = find_replay(uow, request_id, "record_payment", loan_id)
            if replay is not None:
                return uow.payments.get(replay.result_id)

            if loan.status != LoanStatus.ACTIVE:
                raise InvalidStateTransition(
                    f"Loan {loan_id} is {loan.status.value}; payments require an active loan"
                )

            now = self._clock()
            payment = Payment(
                payment_id=new_id(),
                loan_id=loan_id,
                amount=value,
                payment_type=kind,
                status=PaymentStatus.PENDING,
                payment_date=as_of or now.date(),
                created_at=now,
                submitted_by=acting_admin.admin_id,
                reference=reference,
            )

            if kind == PaymentType.MANUAL:
                uow.payments.add(payment)
                self._recorder.record(
                    uow,
                    loan_id,
                    AuditAction.PAYMENT_SUBMITTED,
                    acting_admin,
                    None,
                    snapshot(payment),
                    metadata={"payment_id": payment.payment_id},
                )
            else:
                self._apply(uow, loan, payment, acting_admin, now)
                uow.payments.add(payment)
                self._recorder.record(
                    uow,
                    loan_id,
                    AuditAction.PAYMENT_RECORDED,
                    acting_admin,
                    None,
                    snapshot(payment),
                    metadata={
                        "payment_id": payment.payment_id,
                        "loan_closed": loan.status == LoanStatus.CLOSED,
                    },
                )
            remember(uow, request_id, "record_payment", loan_id, now, payment.payment_id)

        logger.info(
            "Payment %s of %s (%s) recorded on loan %s: %s",
            payment.payment_id,
            payment.amount,
            kind.value,
            loan_id,
            payment.status.value,
            extra={"context": {"loan_id": loan_id, "payment_id": payment.payment_id}},
        )
        return payment

    def approve_manual_payment(
        self,
        payment_id: str,
        acting_admin: ActingAdmin,
        request_id: str | None = None,
    ) -> Payment:
        """Apply a pending manual payment to the loan as it stands now.

        The allocation uses the current balance; lateness is judged by the
        ``payment_date`` recorded when the payment was received.
        """
        with self._store.unit_of_work() as uow:
            loan, payment = self._lock_payment(uow, payment_id)
            if find_replay(uow, request_id, "approve_payment", payment_id) is not None:
                return payment

            if payment.status != PaymentStatus.PENDING:
                raise InvalidStateTransition(
                    f"Payment {payment_id} is {payment.status.value}; only pending payments can be approved"
                )
            if loan.status != LoanStatus.ACTIVE:
                raise InvalidStateTransition(
                    f"Loan {loan.loan_id} is {loan.status.value}; payments require an active loan"
                )

            now = self._clock()
            before = snapshot(payment)
            self._apply(uow, loan, payment, acting_admin, now)
            uow.payments.save(payment)

            self._recorder.record(
                uow,
                loan.loan_id,
                AuditAction.PAYMENT_APPROVED,
                acting_admin,
                before,
                snapshot(payment),
                metadata={
                    "payment_id": payment_id,
                    "loan_closed": loan.status == LoanStatus.CLOSED,
                },
            )
            remember(uow, request_id, "approve_payment", payment_id, now)

        logger.info(
            "Payment %s approved by %s",
            payment_id,
            acting_admin.admin_id,
            extra={"context": {"loan_id": loan.loan_id, "payment_id": payment_id}},
        )
        return payment

    def reject_manual_payment(
        self,
        payment_id: str,
        acting_admin: ActingAdmin,
        reason: str,
        request_id: str | None = None,
    ) -> Payment:
        """Mark a pending manual payment failed. The loan is not touched."""
        reason = require_reason(reason)

        with self._store.unit_of_work() as uow:
            loan, payment = self._lock_payment(uow, payment_id)
            if find_replay(uow, request_id, "reject_payment", payment_id) is not None:
                return payment

            if payment.status != PaymentStatus.PENDING:
                raise InvalidStateTransition(
                    f"Payment {payment_id} is {payment.status.value}; only pending payments can be rejected"
                )

            now = self._clock()
            before = snapshot(payment)
            payment.status = PaymentStatus.FAILED
            payment.rejection_reason = reason
            payment.processed_by = acting_admin.admin_id
            payment.processed_at = now
            uow.payments.save(payment)

            self._recorder.record(
                uow,
                loan.loan_id,
                AuditAction.PAYMENT_REJECTED,
                acting_admin,
                before,
                snapshot(payment),
                metadata={"payment_id": payment_id},
            )
            remember(uow, request_id, "reject_payment", payment_id, now)

        logger.info(
            "Payment %s rejected by %s",
            payment_id,
            acting_admin.admin_id,
            extra={"context": {"loan_id": loan.loan_id, "payment_id": payment_id}},
        )
        return payment

    def _lock_payment(self, uow: UnitOfWork, payment_id: str) -> tuple[Loan, Payment]:
        # The loan lock guards its payments; re-read the payment once held.
        loan_id = uow.payments.get(payment_id).loan_id
        loan = uow.loans.lock(loan_id)
        return loan, uow.payments.get(payment_id)

    def _apply(
        self,
        uow: UnitOfWork,
        loan: Loan,
        payment: Payment,
        acting_admin: ActingAdmin,
        now: datetime,
    ) -> Allocation:
        late_fee, interest = dues(loan, payment.payment_date, self.policy)
        allocation = allocate_payment(payment.amount, late_fee, interest, loan.remaining_balance)

        if allocation.excess > 0 and not self.policy.refund_overpayment:
            raise OverpaymentNotAllowed(
                f"Payment of {payment.amount} exceeds payoff amount {allocation.applied} "
                f"for loan {loan.loan_id}"
            )

        loan.remaining_balance -= allocation.principal
        if loan.payments_made < loan.term_months:
            loan.payments_made += 1
        loan.updated_at = now

        closed = loan.remaining_balance == 0
        if closed:
            transition(loan, LoanStatus.CLOSED)
            loan.closed_at = now
            loan.next_payment_date = None
        else:
            current_due = loan.next_payment_date or payment.payment_date
            loan.next_payment_date = following_due_date(
                loan.first_payment_date or current_due, current_due
            )
        uow.loans.save(loan)

        payment.amount = allocation.applied
        payment.late_fee = allocation.late_fee
        payment.interest_amount = allocation.interest
        payment.principal_amount = allocation.principal
        payment.excess_amount = allocation.excess
        payment.balance_after = loan.remaining_balance
        payment.status = PaymentStatus.COMPLETED
        payment.processed_by = acting_admin.admin_id
        payment.processed_at = now

        if allocation.excess > 0:
            self._refund(uow, loan, payment, allocation.excess)

        if closed:
            logger.info(
                "Loan %s paid off and closed",
                loan.loan_id,
                extra={"context": {"loan_id": loan.loan_id, "payment_id": payment.payment_id}},
            )

        return allocation

    def _refund(self, uow: UnitOfWork, loan: Loan, payment: Payment, excess: Decimal) -> None:
        try:
            uow.accounts.credit(
                loan.account_id,
                excess,
                transaction_type=TransactionType.LOAN_OVERPAYMENT_REFUND,
                reference=payment.payment_id,
                description=f"Overpayment refund for loan {loan.loan_id}",
                loan_id=loan.loan_id,
            )
        except InvalidEntityStateError as exc:
            raise AccountUnavailable(
                f"Cannot refund {excess} to account {loan.account_id}: {exc}"
            ) from exc
        logger.info(
            "Refunded %s overpayment on loan %s",
            excess,
            loan.loan_id,
            extra={"context": {"loan_id": loan.loan_id, "payment_id": payment.payment_id}},
        )
