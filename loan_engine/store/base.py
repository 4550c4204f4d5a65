"""Repository interfaces used by the engine.

Services never talk to a data-store client directly: they open a
``UnitOfWork`` from a ``LoanStore`` and go through the per-entity
repositories it exposes. Leaving the ``with`` block cleanly commits every
write made through the unit of work; an exception rolls all of it back.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Callable, Protocol

from loan_engine.models import (
    Account,
    AuditEntry,
    DepositRecord,
    IdempotencyRecord,
    Loan,
    Payment,
    Transaction,
    TransactionType,
)


class LoanRepository(Protocol):
    def get(self, loan_id: str) -> Loan:
        """Read a loan without locking it."""

    def lock(self, loan_id: str) -> Loan:
        """Take the per-loan exclusive lock and return a fresh copy."""

    def save(self, loan: Loan) -> None:
        """Stage an update; fails with ``ConcurrencyConflict`` on a stale version."""


class PaymentRepository(Protocol):
    def get(self, payment_id: str) -> Payment: ...

    def add(self, payment: Payment) -> None: ...

    def save(self, payment: Payment) -> None: ...

    def list_for_loan(self, loan_id: str) -> list[Payment]: ...


class DepositRepository(Protocol):
    def get_for_loan(self, loan_id: str) -> DepositRecord | None: ...


class AccountLedger(Protocol):
    def get_account(self, account_id: str) -> Account: ...

    def lock(self, account_id: str) -> Account: ...

    def credit(
        self,
        account_id: str,
        amount: Decimal,
        *,
        transaction_type: TransactionType,
        reference: str,
        description: str,
        loan_id: str | None = None,
    ) -> Transaction: ...

    def debit(
        self,
        account_id: str,
        amount: Decimal,
        *,
        transaction_type: TransactionType,
        reference: str,
        description: str,
        loan_id: str | None = None,
    ) -> Transaction: ...

    def list_transactions(self, account_id: str) -> list[Transaction]: ...


class AuditLog(Protocol):
    def append(self, entry: AuditEntry) -> None: ...

    def recent_for_loan(self, loan_id: str, limit: int = 20) -> list[AuditEntry]: ...


class IdempotencyRepository(Protocol):
    def get(self, request_id: str) -> IdempotencyRecord | None: ...

    def put(self, record: IdempotencyRecord) -> None: ...


class UnitOfWork(Protocol):
    loans: LoanRepository
    payments: PaymentRepository
    deposits: DepositRepository
    accounts: AccountLedger
    audit: AuditLog
    idempotency: IdempotencyRepository

    def __enter__(self) -> UnitOfWork: ...

    def __exit__(self, exc_type, exc, tb) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def after_commit(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once the unit of work has committed."""


class LoanStore(Protocol):
    def unit_of_work(self) -> UnitOfWork: ...
