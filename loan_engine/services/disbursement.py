"""Disbursement processor: move the approved principal into the borrower account."""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from loan_engine.config import LedgerPolicy
from loan_engine.exceptions import (
    AccountUnavailable,
    DisbursementFailed,
    EntityNotFoundError,
    InvalidEntityStateError,
    ValidationError,
)
from loan_engine.ledger import amortized_payment, make_reference
from loan_engine.models import Loan, Transaction, TransactionType
from loan_engine.store.base import UnitOfWork

logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "LN"


@dataclass
class DisbursementReceipt:
    """Ledger movements produced by one disbursement."""

    reference: str
    credit: Transaction
    treasury_debit: Transaction | None
    monthly_payment_amount: Decimal


class DisbursementProcessor:
    """Credit the borrower with the loan principal.

    Runs inside the caller's unit of work, so a failure here rolls back
    the enclosing approval together with any ledger movement already
    staged.
    """

    def __init__(self, policy: LedgerPolicy, treasury_account_id: str | None = None) -> None:
        self.policy = policy
        self.treasury_account_id = treasury_account_id

    def disburse(self, uow: UnitOfWork, loan: Loan, now: datetime) -> DisbursementReceipt:
        """Fund ``loan`` and fill in its repayment terms.

        Parameters
        ----------
        uow : UnitOfWork
            Unit of work holding the loan lock.
        loan : Loan
            Loan being approved; mutated in place.
        now : datetime
            Approval time, used for the reference.

        Returns
        -------
        DisbursementReceipt
            Reference and ledger transactions.
        """
        self._lock_accounts(uow, loan)

        borrower = uow.accounts.get_account(loan.account_id)
        if not borrower.in_good_standing:
            raise AccountUnavailable(
                f"Account {loan.account_id} is {borrower.status.value}; cannot disburse loan {loan.loan_id}"
            )

        reference = make_reference(REFERENCE_PREFIX, now)
        try:
            monthly = amortized_payment(
                loan.principal, loan.interest_rate, loan.term_months, self.policy.minor_unit
            )
            treasury_debit = None
            if self.treasury_account_id is not None:
                treasury_debit = uow.accounts.debit(
                    self.treasury_account_id,
                    loan.principal,
                    transaction_type=TransactionType.TREASURY_DEBIT,
                    reference=reference,
                    description=f"Funding for loan {loan.loan_id}",
                    loan_id=loan.loan_id,
                )
            credit = uow.accounts.credit(
                loan.account_id,
                loan.principal,
                transaction_type=TransactionType.LOAN_DISBURSEMENT,
                reference=reference,
                description=f"Loan disbursement {loan.loan_id}",
                loan_id=loan.loan_id,
            )
        except (EntityNotFoundError, InvalidEntityStateError, ValidationError) as exc:
            logger.warning(
                "Disbursement of loan %s failed: %s",
                loan.loan_id,
                exc,
                extra={"context": {"loan_id": loan.loan_id}},
            )
            raise DisbursementFailed(f"Disbursement of loan {loan.loan_id} failed: {exc}") from exc

        loan.remaining_balance = loan.principal
        loan.monthly_payment_amount = monthly
        loan.disbursement_reference = reference

        logger.info(
            "Disbursed %s to account %s for loan %s (%s)",
            loan.principal,
            loan.account_id,
            loan.loan_id,
            reference,
            extra={"context": {"loan_id": loan.loan_id, "reference": reference}},
        )
        return DisbursementReceipt(
            reference=reference,
            credit=credit,
            treasury_debit=treasury_debit,
            monthly_payment_amount=monthly,
        )

    def _lock_accounts(self, uow: UnitOfWork, loan: Loan) -> None:
        account_ids = {loan.account_id}
        if self.treasury_account_id is not None:
            account_ids.add(self.treasury_account_id)

        for account_id in sorted(account_ids):
            try:
                uow.accounts.lock(account_id)
            except EntityNotFoundError as exc:
                if account_id == loan.account_id:
                    raise AccountUnavailable(f"Account {account_id} not found") from exc
                raise DisbursementFailed(f"Treasury account {account_id} not found") from exc
