"""Loan payment model."""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from loan_engine.exceptions import LedgerInvariantError
from loan_engine.models.enums import PaymentStatus, PaymentType


@dataclass
class Payment:
    """Repayment received against a loan.

    For completed payments ``amount`` is the applied total and equals
    ``principal_amount + interest_amount + late_fee``; any refunded surplus
    is kept separately in ``excess_amount``.
    """

    payment_id: str
    loan_id: str
    amount: Decimal
    payment_type: PaymentType
    status: PaymentStatus
    payment_date: date
    created_at: datetime
    principal_amount: Decimal = Decimal("0.00")
    interest_amount: Decimal = Decimal("0.00")
    late_fee: Decimal = Decimal("0.00")
    excess_amount: Decimal = Decimal("0.00")
    balance_after: Decimal | None = None
    rejection_reason: str | None = None
    submitted_by: str | None = None
    processed_by: str | None = None
    processed_at: datetime | None = None
    reference: str | None = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status != PaymentStatus.PENDING

    def validate(self) -> None:
        """Raise ``LedgerInvariantError`` if a completed payment does not add up."""
        if self.status != PaymentStatus.COMPLETED:
            return
        allocated = self.principal_amount + self.interest_amount + self.late_fee
        if allocated != self.amount:
            raise LedgerInvariantError(
                f"Payment {self.payment_id} allocates {allocated} of {self.amount}"
            )
        if self.balance_after is None:
            raise LedgerInvariantError(f"Payment {self.payment_id} has no balance snapshot")


@dataclass(frozen=True)
class IdempotencyRecord:
    """Request key already applied, with the operation it belonged to."""

    request_id: str
    operation: str
    subject_id: str
    created_at: datetime
    result_id: str | None = None  # Entity returned on replay, if not the subject
