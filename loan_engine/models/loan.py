"""Loan models."""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from loan_engine.exceptions import LedgerInvariantError
from loan_engine.models.enums import LoanStatus


@dataclass
class Loan:
    """Loan contract entity.

    ``remaining_balance`` starts equal to ``principal`` and only the payment
    processor lowers it; it is zero exactly when the loan is closed.
    """

    loan_id: str
    borrower_id: str
    account_id: str
    principal: Decimal
    interest_rate: Decimal  # Percent per annum (e.g., 6 for 6%)
    term_months: int
    status: LoanStatus
    remaining_balance: Decimal
    created_at: datetime
    loan_type: str = "personal"
    monthly_payment_amount: Decimal = Decimal("0.00")
    payments_made: int = 0
    next_payment_date: date | None = None
    first_payment_date: date | None = None  # Due day of every later installment
    deposit_required: Decimal | None = None
    disbursed_at: datetime | None = None
    disbursement_reference: str | None = None
    approved_at: datetime | None = None
    approved_by: str | None = None
    approval_notes: str | None = None
    rejected_at: datetime | None = None
    rejected_by: str | None = None
    rejection_reason: str | None = None
    closed_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 0

    @property
    def requires_deposit(self) -> bool:
        return bool(self.deposit_required) and self.deposit_required > 0

    def validate(self) -> None:
        """Raise ``LedgerInvariantError`` if the balance invariants are broken."""
        if self.remaining_balance < 0:
            raise LedgerInvariantError(f"Loan {self.loan_id} balance is negative")
        if self.remaining_balance > self.principal:
            raise LedgerInvariantError(f"Loan {self.loan_id} balance exceeds principal")
        if (self.remaining_balance == 0) != (self.status == LoanStatus.CLOSED):
            raise LedgerInvariantError(
                f"Loan {self.loan_id} is {self.status.value} with balance {self.remaining_balance}"
            )
        if self.payments_made > self.term_months:
            raise LedgerInvariantError(f"Loan {self.loan_id} payments exceed term")


@dataclass
class ScheduledInstallment:
    """One row of an amortization schedule."""

    installment_number: int  # 1, 2, 3, ...
    due_date: date
    payment_amount: Decimal
    interest_amount: Decimal
    principal_amount: Decimal
    balance_after: Decimal
