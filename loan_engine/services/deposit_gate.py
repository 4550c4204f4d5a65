"""Deposit verification gate.

Read-only check between loan approval and the deposit subsystem, which
owns wallet assignment and confirmation counting.
"""

import logging
from decimal import Decimal
from typing import Any

from loan_engine.models import DepositRecord, DepositSource, Loan
from loan_engine.sinks.serialization import serialize_value
from loan_engine.store.base import LoanStore, UnitOfWork

logger = logging.getLogger(__name__)


def deposit_satisfied(
    deposit: DepositRecord | None,
    required_amount: Decimal,
    required_confirmations: int,
) -> bool:
    """Apply the verification rule to one deposit record."""
    if deposit is None or not deposit.verified:
        return False
    if deposit.deposited_amount < max(deposit.required_amount, required_amount):
        return False
    if deposit.source == DepositSource.CRYPTO:
        return deposit.confirmations >= required_confirmations
    return True


class DepositVerificationGate:
    """Decide whether a loan's required deposit has been confirmed."""

    def __init__(self, store: LoanStore, required_confirmations: int = 3) -> None:
        self._store = store
        self.required_confirmations = required_confirmations

    def is_verified(self, loan_id: str) -> bool:
        """Standalone query; opens its own unit of work."""
        with self._store.unit_of_work() as uow:
            loan = uow.loans.get(loan_id)
            return self.check(uow, loan)

    def check(self, uow: UnitOfWork, loan: Loan) -> bool:
        """Gate check inside an existing unit of work."""
        if not loan.requires_deposit:
            return True
        deposit = uow.deposits.get_for_loan(loan.loan_id)
        verified = deposit_satisfied(deposit, loan.deposit_required, self.required_confirmations)
        if not verified:
            logger.debug("Deposit for loan %s not verified", loan.loan_id)
        return verified

    def describe(self, uow: UnitOfWork, loan: Loan) -> dict[str, Any]:
        """Deposit status for read-only display."""
        deposit = uow.deposits.get_for_loan(loan.loan_id) if loan.requires_deposit else None
        return {
            "required": loan.requires_deposit,
            "required_amount": serialize_value(loan.deposit_required),
            "deposited_amount": serialize_value(deposit.deposited_amount) if deposit else None,
            "verified": deposit.verified if deposit else False,
            "confirmations": deposit.confirmations if deposit else 0,
            "source": deposit.source.value if deposit else None,
            "gate_open": self.check(uow, loan),
        }
