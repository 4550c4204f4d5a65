"""In-memory loan store with per-loan locking and atomic commits."""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable

from loan_engine.exceptions import (
    ConcurrencyConflict,
    EntityNotFoundError,
    InvalidEntityStateError,
    ReferentialIntegrityError,
    ValidationError,
)
from loan_engine.ledger import new_id
from loan_engine.models import (
    Account,
    AuditEntry,
    DepositRecord,
    Direction,
    IdempotencyRecord,
    Loan,
    Payment,
    Transaction,
    TransactionType,
)

logger = logging.getLogger(__name__)


@dataclass
class InMemoryLoanStore:
    """In-memory store for loan entities with relationship tracking.

    Committed state lives in the public dicts/lists. Units of work read
    deep copies, stage their writes and apply them in one step under
    ``_commit_lock``; each applied entity bumps its ``version``.
    """

    # Primary entities
    accounts: dict[str, Account] = field(default_factory=dict)
    loans: dict[str, Loan] = field(default_factory=dict)
    deposits: dict[str, DepositRecord] = field(default_factory=dict)  # keyed by loan_id
    payments: dict[str, Payment] = field(default_factory=dict)

    # Append-only records
    transactions: list[Transaction] = field(default_factory=list)
    audit_log: list[AuditEntry] = field(default_factory=list)
    idempotency_keys: dict[str, IdempotencyRecord] = field(default_factory=dict)

    lock_timeout: float = 5.0

    # Relationship indexes
    _account_loans: dict[str, list[str]] = field(default_factory=dict)
    _loan_payments: dict[str, list[str]] = field(default_factory=dict)
    _account_transactions: dict[str, list[int]] = field(default_factory=dict)
    _loan_audit: dict[str, list[int]] = field(default_factory=dict)

    _locks: dict[str, threading.Lock] = field(default_factory=dict, repr=False)
    _locks_guard: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _commit_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def add_account(self, account: Account) -> None:
        """Add an account to the store."""
        self.accounts[account.account_id] = account
        self._account_loans.setdefault(account.account_id, [])
        self._account_transactions.setdefault(account.account_id, [])

    def add_loan(self, loan: Loan) -> None:
        """Add a loan to the store."""
        if loan.account_id not in self.accounts:
            raise ReferentialIntegrityError(f"Account {loan.account_id} not found")
        loan.validate()

        self.loans[loan.loan_id] = loan
        self._account_loans[loan.account_id].append(loan.loan_id)
        self._loan_payments[loan.loan_id] = []
        self._loan_audit[loan.loan_id] = []

    def add_deposit(self, deposit: DepositRecord) -> None:
        """Add a deposit record to the store."""
        if deposit.loan_id not in self.loans:
            raise ReferentialIntegrityError(f"Loan {deposit.loan_id} not found")

        self.deposits[deposit.loan_id] = deposit

    def add_payment(self, payment: Payment) -> None:
        """Add a payment to the store."""
        if payment.loan_id not in self.loans:
            raise ReferentialIntegrityError(f"Loan {payment.loan_id} not found")
        payment.validate()

        self.payments[payment.payment_id] = payment
        self._loan_payments[payment.loan_id].append(payment.payment_id)

    # Query methods
    def get_loan(self, loan_id: str) -> Loan:
        """Get a committed loan."""
        try:
            return self.loans[loan_id]
        except KeyError:
            raise EntityNotFoundError(f"Loan {loan_id} not found") from None

    def get_account(self, account_id: str) -> Account:
        """Get a committed account."""
        try:
            return self.accounts[account_id]
        except KeyError:
            raise EntityNotFoundError(f"Account {account_id} not found") from None

    def get_account_loans(self, account_id: str) -> list[Loan]:
        """Get all loans disbursed to an account."""
        loan_ids = self._account_loans.get(account_id, [])
        return [self.loans[lid] for lid in loan_ids]

    def get_loan_payments(self, loan_id: str) -> list[Payment]:
        """Get all payments for a loan."""
        payment_ids = self._loan_payments.get(loan_id, [])
        return [self.payments[pid] for pid in payment_ids]

    def get_account_transactions(self, account_id: str) -> list[Transaction]:
        """Get all ledger transactions for an account."""
        indices = self._account_transactions.get(account_id, [])
        return [self.transactions[i] for i in indices]

    def get_loan_audit(self, loan_id: str) -> list[AuditEntry]:
        """Get all audit entries for a loan, oldest first."""
        indices = self._loan_audit.get(loan_id, [])
        return [self.audit_log[i] for i in indices]

    def summary(self) -> dict[str, int]:
        """Return summary counts of all entities."""
        return {
            "accounts": len(self.accounts),
            "loans": len(self.loans),
            "deposits": len(self.deposits),
            "payments": len(self.payments),
            "transactions": len(self.transactions),
            "audit_entries": len(self.audit_log),
        }

    def unit_of_work(self) -> InMemoryUnitOfWork:
        """Open a new unit of work against this store."""
        return InMemoryUnitOfWork(self, self.lock_timeout)

    def _acquire(self, key: str, timeout: float) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.setdefault(key, threading.Lock())
        if not lock.acquire(timeout=timeout):
            raise ConcurrencyConflict(f"Timed out waiting for lock on {key}")
        return lock

    def _apply(self, uow: InMemoryUnitOfWork) -> None:
        """Check versions and invariants, then publish staged writes."""
        with self._commit_lock:
            for table, committed in (
                (uow._loans, self.loans),
                (uow._accounts, self.accounts),
                (uow._payments, self.payments),
            ):
                table.check(committed)
            for loan_id in uow._loans.dirty:
                uow._loans.copies[loan_id].validate()
            for payment_id in uow._payments.dirty:
                uow._payments.copies[payment_id].validate()
            for request_id in uow._new_keys:
                if request_id in self.idempotency_keys:
                    raise ConcurrencyConflict(f"Request {request_id} was applied concurrently")

            uow._loans.publish(self.loans)
            uow._accounts.publish(self.accounts)
            for payment_id in uow._payments.dirty:
                if uow._payments.read_versions[payment_id] is None:
                    loan_id = uow._payments.copies[payment_id].loan_id
                    self._loan_payments.setdefault(loan_id, []).append(payment_id)
            uow._payments.publish(self.payments)

            for transaction in uow._new_transactions:
                self.transactions.append(transaction)
                self._account_transactions.setdefault(transaction.account_id, []).append(
                    len(self.transactions) - 1
                )
            for entry in uow._new_audit:
                self.audit_log.append(entry)
                self._loan_audit.setdefault(entry.subject, []).append(len(self.audit_log) - 1)
            self.idempotency_keys.update(uow._new_keys)


class _Staged:
    """Copy-on-read view of one committed entity table."""

    def __init__(self, committed: dict[str, Any], label: str) -> None:
        self._committed = committed
        self._label = label
        self.copies: dict[str, Any] = {}
        self.read_versions: dict[str, int | None] = {}
        self.dirty: set[str] = set()

    def read(self, key: str, fresh: bool = False) -> Any:
        if fresh and key in self.copies and key not in self.dirty:
            del self.copies[key]
            del self.read_versions[key]
        if key not in self.copies:
            try:
                current = self._committed[key]
            except KeyError:
                raise EntityNotFoundError(f"{self._label} {key} not found") from None
            self.copies[key] = copy.deepcopy(current)
            self.read_versions[key] = current.version
        return self.copies[key]

    def write(self, key: str, entity: Any) -> None:
        self.read_versions.setdefault(key, entity.version)
        self.copies[key] = entity
        self.dirty.add(key)

    def insert(self, key: str, entity: Any) -> None:
        if key in self._committed or key in self.copies:
            raise ValidationError(f"{self._label} {key} already exists")
        self.copies[key] = entity
        self.read_versions[key] = None
        self.dirty.add(key)

    def check(self, committed: dict[str, Any]) -> None:
        for key in self.dirty:
            expected = self.read_versions[key]
            current = committed.get(key)
            if expected is None:
                if current is not None:
                    raise ConcurrencyConflict(f"{self._label} {key} was created concurrently")
            elif current is None or current.version != expected:
                raise ConcurrencyConflict(f"{self._label} {key} was modified concurrently")

    def publish(self, committed: dict[str, Any]) -> None:
        for key in self.dirty:
            entity = self.copies[key]
            expected = self.read_versions[key]
            if expected is not None:
                entity.version = expected + 1
            committed[key] = copy.deepcopy(entity)


class InMemoryUnitOfWork:
    """Request-scoped transaction over an ``InMemoryLoanStore``."""

    def __init__(self, store: InMemoryLoanStore, lock_timeout: float) -> None:
        self._store = store
        self._lock_timeout = lock_timeout
        self._loans = _Staged(store.loans, "Loan")
        self._accounts = _Staged(store.accounts, "Account")
        self._payments = _Staged(store.payments, "Payment")
        self._new_transactions: list[Transaction] = []
        self._new_audit: list[AuditEntry] = []
        self._new_keys: dict[str, IdempotencyRecord] = {}
        self._held: dict[str, threading.Lock] = {}
        self._callbacks: list[Callable[[], None]] = []
        self._committed = False
        self._closed = False

        self.loans = _MemoryLoans(self)
        self.payments = _MemoryPayments(self)
        self.deposits = _MemoryDeposits(self)
        self.accounts = _MemoryAccounts(self)
        self.audit = _MemoryAudit(self)
        self.idempotency = _MemoryIdempotency(self)

    def __enter__(self) -> InMemoryUnitOfWork:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None and not self._closed:
                self.commit()
            elif not self._closed:
                self.rollback()
        finally:
            self._release()
        if self._committed:
            self._run_callbacks()

    def commit(self) -> None:
        try:
            self._store._apply(self)
        except Exception:
            self.rollback()
            raise
        self._committed = True
        self._closed = True

    def rollback(self) -> None:
        self._new_transactions.clear()
        self._new_audit.clear()
        self._new_keys.clear()
        self._callbacks.clear()
        self._closed = True

    def after_commit(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def _lock(self, key: str) -> None:
        if key not in self._held:
            self._held[key] = self._store._acquire(key, self._lock_timeout)

    def _release(self) -> None:
        for lock in self._held.values():
            lock.release()
        self._held.clear()

    def _run_callbacks(self) -> None:
        for callback in self._callbacks:
            try:
                callback()
            except Exception:
                logger.exception("after-commit callback failed")
        self._callbacks.clear()


class _MemoryLoans:
    def __init__(self, uow: InMemoryUnitOfWork) -> None:
        self._uow = uow

    def get(self, loan_id: str) -> Loan:
        return self._uow._loans.read(loan_id)

    def lock(self, loan_id: str) -> Loan:
        if loan_id not in self._uow._store.loans:
            raise EntityNotFoundError(f"Loan {loan_id} not found")
        self._uow._lock(f"loan:{loan_id}")
        return self._uow._loans.read(loan_id, fresh=True)

    def save(self, loan: Loan) -> None:
        self._uow._loans.write(loan.loan_id, loan)


class _MemoryPayments:
    def __init__(self, uow: InMemoryUnitOfWork) -> None:
        self._uow = uow

    def get(self, payment_id: str) -> Payment:
        return self._uow._payments.read(payment_id, fresh=True)

    def add(self, payment: Payment) -> None:
        if payment.loan_id not in self._uow._store.loans:
            raise ReferentialIntegrityError(f"Loan {payment.loan_id} not found")
        self._uow._payments.insert(payment.payment_id, payment)

    def save(self, payment: Payment) -> None:
        self._uow._payments.write(payment.payment_id, payment)

    def list_for_loan(self, loan_id: str) -> list[Payment]:
        staged = self._uow._payments.copies
        committed_ids = self._uow._store._loan_payments.get(loan_id, [])
        result = [staged.get(pid) or self._uow._store.payments[pid] for pid in committed_ids]
        result.extend(
            p for pid, p in staged.items()
            if p.loan_id == loan_id and self._uow._payments.read_versions[pid] is None
        )
        return [copy.deepcopy(p) for p in result]


class _MemoryDeposits:
    def __init__(self, uow: InMemoryUnitOfWork) -> None:
        self._uow = uow

    def get_for_loan(self, loan_id: str) -> DepositRecord | None:
        deposit = self._uow._store.deposits.get(loan_id)
        return copy.deepcopy(deposit) if deposit is not None else None


class _MemoryAccounts:
    def __init__(self, uow: InMemoryUnitOfWork) -> None:
        self._uow = uow

    def get_account(self, account_id: str) -> Account:
        return self._uow._accounts.read(account_id)

    def lock(self, account_id: str) -> Account:
        if account_id not in self._uow._store.accounts:
            raise EntityNotFoundError(f"Account {account_id} not found")
        self._uow._lock(f"account:{account_id}")
        return self._uow._accounts.read(account_id, fresh=True)

    def credit(
        self,
        account_id: str,
        amount: Decimal,
        *,
        transaction_type: TransactionType,
        reference: str,
        description: str,
        loan_id: str | None = None,
    ) -> Transaction:
        return self._move(
            account_id, amount, Direction.CREDIT, transaction_type, reference, description, loan_id
        )

    def debit(
        self,
        account_id: str,
        amount: Decimal,
        *,
        transaction_type: TransactionType,
        reference: str,
        description: str,
        loan_id: str | None = None,
    ) -> Transaction:
        return self._move(
            account_id, amount, Direction.DEBIT, transaction_type, reference, description, loan_id
        )

    def list_transactions(self, account_id: str) -> list[Transaction]:
        committed = self._uow._store.get_account_transactions(account_id)
        staged = [t for t in self._uow._new_transactions if t.account_id == account_id]
        return committed + staged

    def _move(
        self,
        account_id: str,
        amount: Decimal,
        direction: Direction,
        transaction_type: TransactionType,
        reference: str,
        description: str,
        loan_id: str | None,
    ) -> Transaction:
        if amount <= 0:
            raise ValidationError("Ledger movements must be positive")

        account = self.lock(account_id)
        if not account.in_good_standing:
            raise InvalidEntityStateError(f"Account {account_id} is {account.status.value}")
        if direction == Direction.DEBIT and account.balance < amount:
            raise InvalidEntityStateError(f"Account {account_id} has insufficient funds")

        now = datetime.now(timezone.utc)
        balance_before = account.balance
        if direction == Direction.CREDIT:
            account.balance = balance_before + amount
        else:
            account.balance = balance_before - amount
        account.updated_at = now
        self._uow._accounts.write(account_id, account)

        transaction = Transaction(
            transaction_id=new_id(),
            account_id=account_id,
            transaction_type=transaction_type,
            direction=direction,
            amount=amount,
            balance_before=balance_before,
            balance_after=account.balance,
            reference=reference,
            description=description,
            timestamp=now,
            loan_id=loan_id,
        )
        self._uow._new_transactions.append(transaction)
        return transaction


class _MemoryAudit:
    def __init__(self, uow: InMemoryUnitOfWork) -> None:
        self._uow = uow

    def append(self, entry: AuditEntry) -> None:
        self._uow._new_audit.append(entry)

    def recent_for_loan(self, loan_id: str, limit: int = 20) -> list[AuditEntry]:
        entries = self._uow._store.get_loan_audit(loan_id)
        entries += [e for e in self._uow._new_audit if e.subject == loan_id]
        return list(reversed(entries))[:limit]


class _MemoryIdempotency:
    def __init__(self, uow: InMemoryUnitOfWork) -> None:
        self._uow = uow

    def get(self, request_id: str) -> IdempotencyRecord | None:
        return self._uow._new_keys.get(request_id) or self._uow._store.idempotency_keys.get(
            request_id
        )

    def put(self, record: IdempotencyRecord) -> None:
        if self.get(record.request_id) is not None:
            raise ValidationError(f"Request {record.request_id} was already used")
        self._uow._new_keys[record.request_id] = record
