"""Read-only loan detail view."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable

from loan_engine.config import LedgerPolicy
from loan_engine.ledger import project_schedule
from loan_engine.models import AuditEntry, Loan, LoanStatus, Payment, ScheduledInstallment
from loan_engine.services.audit import utcnow
from loan_engine.services.deposit_gate import DepositVerificationGate
from loan_engine.services.payments import payoff_amount
from loan_engine.store.base import LoanStore


@dataclass
class LoanDetail:
    """Loan with its payment history, deposit status and recent audit trail."""

    loan: Loan
    payments: list[Payment] = field(default_factory=list)  # Newest first
    deposit: dict[str, Any] = field(default_factory=dict)
    schedule: list[ScheduledInstallment] = field(default_factory=list)
    payoff_amount: Decimal | None = None
    audit: list[AuditEntry] = field(default_factory=list)


class LoanQueries:
    def __init__(
        self,
        store: LoanStore,
        gate: DepositVerificationGate,
        policy: LedgerPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._gate = gate
        self.policy = policy or LedgerPolicy()
        self._clock = clock

    def loan_detail(self, loan_id: str, audit_limit: int = 20) -> LoanDetail:
        """Assemble the detail view for one loan without side effects."""
        with self._store.unit_of_work() as uow:
            loan = uow.loans.get(loan_id)
            payments = sorted(
                uow.payments.list_for_loan(loan_id),
                key=lambda p: p.created_at,
                reverse=True,
            )
            detail = LoanDetail(
                loan=loan,
                payments=payments,
                deposit=self._gate.describe(uow, loan),
                audit=uow.audit.recent_for_loan(loan_id, audit_limit),
            )

        if loan.status == LoanStatus.ACTIVE:
            today = self._clock().date()
            detail.schedule = self.remaining_schedule(loan)
            detail.payoff_amount = payoff_amount(loan, today, self.policy)
        return detail

    def remaining_schedule(self, loan: Loan) -> list[ScheduledInstallment]:
        """Projected installments from ``next_payment_date`` to payoff."""
        installments = max(loan.term_months - loan.payments_made, 1)
        first_due: date = loan.next_payment_date or self._clock().date()
        return project_schedule(
            loan.remaining_balance,
            loan.interest_rate,
            loan.monthly_payment_amount,
            installments,
            first_due,
            self.policy.minor_unit,
            first_number=loan.payments_made + 1,
            anchor=loan.first_payment_date,
        )
