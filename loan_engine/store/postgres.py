"""PostgreSQL loan store using psycopg 3.

Per-loan serialization uses ``SELECT ... FOR UPDATE`` under a
``lock_timeout``; every ``UPDATE`` also carries a ``version`` predicate.
Lock, serialization, deadlock and duplicate-key failures surface as
``ConcurrencyConflict``; any other driver error is logged and wrapped in
``DataStoreError``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import fields
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

from loan_engine.config import EngineConfig
from loan_engine.exceptions import (
    ConcurrencyConflict,
    DataStoreError,
    EntityNotFoundError,
    InvalidEntityStateError,
    ValidationError,
)
from loan_engine.ledger import new_id
from loan_engine.models import (
    Account,
    AccountStatus,
    AuditAction,
    AuditEntry,
    DepositRecord,
    DepositSource,
    Direction,
    IdempotencyRecord,
    Loan,
    LoanStatus,
    Payment,
    PaymentStatus,
    PaymentType,
    Transaction,
    TransactionType,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS accounts (
    account_id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    account_number TEXT NOT NULL,
    balance NUMERIC(15, 2) NOT NULL,
    status TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ,
    version INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS loans (
    loan_id TEXT PRIMARY KEY,
    borrower_id TEXT NOT NULL,
    account_id TEXT NOT NULL REFERENCES accounts (account_id),
    principal NUMERIC(15, 2) NOT NULL CHECK (principal > 0),
    interest_rate NUMERIC(7, 4) NOT NULL CHECK (interest_rate >= 0),
    term_months INTEGER NOT NULL CHECK (term_months > 0),
    status TEXT NOT NULL,
    remaining_balance NUMERIC(15, 2) NOT NULL
        CHECK (remaining_balance >= 0 AND remaining_balance <= principal),
    created_at TIMESTAMPTZ NOT NULL,
    loan_type TEXT NOT NULL,
    monthly_payment_amount NUMERIC(15, 2) NOT NULL DEFAULT 0,
    payments_made INTEGER NOT NULL DEFAULT 0,
    next_payment_date DATE,
    first_payment_date DATE,
    deposit_required NUMERIC(15, 2),
    disbursed_at TIMESTAMPTZ,
    disbursement_reference TEXT,
    approved_at TIMESTAMPTZ,
    approved_by TEXT,
    approval_notes TEXT,
    rejected_at TIMESTAMPTZ,
    rejected_by TEXT,
    rejection_reason TEXT,
    closed_at TIMESTAMPTZ,
    updated_at TIMESTAMPTZ,
    version INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS deposit_records (
    deposit_id TEXT PRIMARY KEY,
    loan_id TEXT NOT NULL UNIQUE REFERENCES loans (loan_id),
    required_amount NUMERIC(15, 2) NOT NULL,
    deposited_amount NUMERIC(15, 2) NOT NULL,
    verified BOOLEAN NOT NULL,
    source TEXT NOT NULL,
    confirmations INTEGER NOT NULL DEFAULT 0,
    confirmed_at TIMESTAMPTZ,
    wallet_address TEXT,
    tx_hash TEXT,
    created_at TIMESTAMPTZ,
    updated_at TIMESTAMPTZ
);

CREATE TABLE IF NOT EXISTS payments (
    payment_id TEXT PRIMARY KEY,
    loan_id TEXT NOT NULL REFERENCES loans (loan_id),
    amount NUMERIC(15, 2) NOT NULL,
    payment_type TEXT NOT NULL,
    status TEXT NOT NULL,
    payment_date DATE NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    principal_amount NUMERIC(15, 2) NOT NULL DEFAULT 0,
    interest_amount NUMERIC(15, 2) NOT NULL DEFAULT 0,
    late_fee NUMERIC(15, 2) NOT NULL DEFAULT 0,
    excess_amount NUMERIC(15, 2) NOT NULL DEFAULT 0,
    balance_after NUMERIC(15, 2),
    rejection_reason TEXT,
    submitted_by TEXT,
    processed_by TEXT,
    processed_at TIMESTAMPTZ,
    reference TEXT,
    version INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS account_transactions (
    transaction_id TEXT PRIMARY KEY,
    account_id TEXT NOT NULL REFERENCES accounts (account_id),
    transaction_type TEXT NOT NULL,
    direction TEXT NOT NULL,
    amount NUMERIC(15, 2) NOT NULL,
    balance_before NUMERIC(15, 2) NOT NULL,
    balance_after NUMERIC(15, 2) NOT NULL,
    reference TEXT NOT NULL,
    description TEXT NOT NULL,
    timestamp TIMESTAMPTZ NOT NULL,
    loan_id TEXT
);

CREATE TABLE IF NOT EXISTS audit_log (
    entry_id TEXT PRIMARY KEY,
    subject TEXT NOT NULL,
    action TEXT NOT NULL,
    actor TEXT NOT NULL,
    before JSONB,
    after JSONB,
    created_at TIMESTAMPTZ NOT NULL,
    metadata JSONB NOT NULL DEFAULT '{}'::jsonb
);

CREATE TABLE IF NOT EXISTS idempotency_keys (
    request_id TEXT PRIMARY KEY,
    operation TEXT NOT NULL,
    subject_id TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    result_id TEXT
);

CREATE INDEX IF NOT EXISTS idx_payments_loan ON payments (loan_id, payment_date);
CREATE INDEX IF NOT EXISTS idx_transactions_account ON account_transactions (account_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_subject ON audit_log (subject, created_at);
"""

# Enum columns per model, converted on read
ENUM_COLUMNS: dict[type, dict[str, type[Enum]]] = {
    Account: {"status": AccountStatus},
    Loan: {"status": LoanStatus},
    DepositRecord: {"source": DepositSource},
    Payment: {"payment_type": PaymentType, "status": PaymentStatus},
    Transaction: {"transaction_type": TransactionType, "direction": Direction},
    AuditEntry: {"action": AuditAction},
}


def _to_row(entity: Any) -> dict[str, Any]:
    """Flatten a dataclass into column values."""
    row = {}
    for f in fields(entity):
        value = getattr(entity, f.name)
        row[f.name] = value.value if isinstance(value, Enum) else value
    return row


def _from_row(cls: type, row: dict[str, Any]) -> Any:
    """Build a model from a ``dict_row`` result."""
    values = {f.name: row[f.name] for f in fields(cls) if f.name in row}
    for name, enum_cls in ENUM_COLUMNS.get(cls, {}).items():
        if values.get(name) is not None:
            values[name] = enum_cls(values[name])
    return cls(**values)


class PostgresLoanStore:
    """Loan store backed by PostgreSQL."""

    def __init__(self, conninfo: str, lock_timeout: float = 5.0) -> None:
        """Initialize the store.

        Parameters
        ----------
        conninfo : str
            PostgreSQL connection string.
        lock_timeout : float
            Seconds to wait for a row lock before giving up.
        """
        import psycopg

        self._psycopg = psycopg
        self.conninfo = conninfo
        self.lock_timeout_ms = int(lock_timeout * 1000)
        self._conflict_errors = (
            psycopg.errors.LockNotAvailable,
            psycopg.errors.SerializationFailure,
            psycopg.errors.DeadlockDetected,
            psycopg.errors.UniqueViolation,
        )

    @classmethod
    def from_config(cls, config: EngineConfig) -> PostgresLoanStore:
        return cls(config.postgres.connection_string, config.locks.timeout_seconds)

    def connect(self) -> Any:
        """Open a new connection returning dict rows."""
        try:
            return self._psycopg.connect(self.conninfo, row_factory=self._psycopg.rows.dict_row)
        except self._psycopg.Error as exc:
            logger.error("Could not connect to PostgreSQL: %s", exc)
            raise DataStoreError(f"Could not connect to PostgreSQL: {exc}") from exc

    def create_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        conn = self.connect()
        try:
            conn.execute(SCHEMA_SQL)
            conn.commit()
        except self._psycopg.Error as exc:
            logger.error("Schema creation failed: %s", exc)
            raise DataStoreError(f"Schema creation failed: {exc}") from exc
        finally:
            conn.close()
        logger.info("Loan schema ready")

    def unit_of_work(self) -> PostgresUnitOfWork:
        return PostgresUnitOfWork(self)

    # Seeding helpers for records owned by external collaborators
    def add_account(self, account: Account) -> None:
        with self.unit_of_work() as uow:
            uow._insert("accounts", account)

    def add_loan(self, loan: Loan) -> None:
        loan.validate()
        with self.unit_of_work() as uow:
            uow._insert("loans", loan)

    def add_deposit(self, deposit: DepositRecord) -> None:
        with self.unit_of_work() as uow:
            uow._insert("deposit_records", deposit)


class PostgresUnitOfWork:
    """One database transaction; committed on clean exit."""

    def __init__(self, store: PostgresLoanStore) -> None:
        self._store = store
        self._conn = store.connect()
        self._cursor = self._conn.cursor()
        self._lock_timeout_set = False
        self._callbacks: list[Callable[[], None]] = []
        self._committed = False
        self._closed = False

        self.loans = _PgLoans(self)
        self.payments = _PgPayments(self)
        self.deposits = _PgDeposits(self)
        self.accounts = _PgAccounts(self)
        self.audit = _PgAudit(self)
        self.idempotency = _PgIdempotency(self)

    def __enter__(self) -> PostgresUnitOfWork:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None and not self._closed:
                self.commit()
            elif not self._closed:
                self.rollback()
        finally:
            self._cursor.close()
            self._conn.close()
        if self._committed:
            for callback in self._callbacks:
                try:
                    callback()
                except Exception:
                    logger.exception("after-commit callback failed")

    def commit(self) -> None:
        try:
            self._conn.commit()
        except self._store._conflict_errors as exc:
            self.rollback()
            raise ConcurrencyConflict(str(exc)) from exc
        except self._store._psycopg.Error as exc:
            logger.error("Commit failed: %s", exc, exc_info=True)
            self.rollback()
            raise DataStoreError(f"Commit failed: {exc}") from exc
        self._committed = True
        self._closed = True

    def rollback(self) -> None:
        self._callbacks.clear()
        self._closed = True
        try:
            self._conn.rollback()
        except self._store._psycopg.Error as exc:
            logger.error("Rollback failed: %s", exc)

    def after_commit(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def _execute(self, sql: str, params: Any = ()) -> Any:
        try:
            self._cursor.execute(sql, params)
        except self._store._conflict_errors as exc:
            raise ConcurrencyConflict(str(exc)) from exc
        except self._store._psycopg.Error as exc:
            logger.error("Query failed: %s", exc, exc_info=True)
            raise DataStoreError(f"Query failed: {exc}") from exc
        return self._cursor

    def _fetchone(self, sql: str, params: Any = ()) -> dict[str, Any] | None:
        return self._execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: Any = ()) -> list[dict[str, Any]]:
        return self._execute(sql, params).fetchall()

    def _set_lock_timeout(self) -> None:
        if not self._lock_timeout_set:
            self._execute(f"SET LOCAL lock_timeout = '{self._store.lock_timeout_ms}ms'")
            self._lock_timeout_set = True

    def _insert(self, table: str, entity: Any) -> None:
        row = _to_row(entity)
        columns = ", ".join(row)
        placeholders = ", ".join(["%s"] * len(row))
        self._execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
            list(row.values()),
        )

    def _update(self, table: str, key: str, entity: Any) -> None:
        row = _to_row(entity)
        key_value = row.pop(key)
        version = row.pop("version")
        assignments = ", ".join(f"{column} = %s" for column in row)
        cursor = self._execute(
            f"UPDATE {table} SET {assignments}, version = version + 1 "
            f"WHERE {key} = %s AND version = %s",
            [*row.values(), key_value, version],
        )
        if cursor.rowcount != 1:
            raise ConcurrencyConflict(f"{table} row {key_value} was modified concurrently")
        entity.version = version + 1


class _PgLoans:
    def __init__(self, uow: PostgresUnitOfWork) -> None:
        self._uow = uow

    def get(self, loan_id: str) -> Loan:
        row = self._uow._fetchone("SELECT * FROM loans WHERE loan_id = %s", (loan_id,))
        if row is None:
            raise EntityNotFoundError(f"Loan {loan_id} not found")
        return _from_row(Loan, row)

    def lock(self, loan_id: str) -> Loan:
        self._uow._set_lock_timeout()
        row = self._uow._fetchone(
            "SELECT * FROM loans WHERE loan_id = %s FOR UPDATE", (loan_id,)
        )
        if row is None:
            raise EntityNotFoundError(f"Loan {loan_id} not found")
        return _from_row(Loan, row)

    def save(self, loan: Loan) -> None:
        loan.validate()
        self._uow._update("loans", "loan_id", loan)


class _PgPayments:
    def __init__(self, uow: PostgresUnitOfWork) -> None:
        self._uow = uow

    def get(self, payment_id: str) -> Payment:
        row = self._uow._fetchone("SELECT * FROM payments WHERE payment_id = %s", (payment_id,))
        if row is None:
            raise EntityNotFoundError(f"Payment {payment_id} not found")
        return _from_row(Payment, row)

    def add(self, payment: Payment) -> None:
        payment.validate()
        self._uow._insert("payments", payment)

    def save(self, payment: Payment) -> None:
        payment.validate()
        self._uow._update("payments", "payment_id", payment)

    def list_for_loan(self, loan_id: str) -> list[Payment]:
        rows = self._uow._fetchall(
            "SELECT * FROM payments WHERE loan_id = %s ORDER BY created_at", (loan_id,)
        )
        return [_from_row(Payment, row) for row in rows]


class _PgDeposits:
    def __init__(self, uow: PostgresUnitOfWork) -> None:
        self._uow = uow

    def get_for_loan(self, loan_id: str) -> DepositRecord | None:
        row = self._uow._fetchone("SELECT * FROM deposit_records WHERE loan_id = %s", (loan_id,))
        return _from_row(DepositRecord, row) if row is not None else None


class _PgAccounts:
    def __init__(self, uow: PostgresUnitOfWork) -> None:
        self._uow = uow

    def get_account(self, account_id: str) -> Account:
        row = self._uow._fetchone("SELECT * FROM accounts WHERE account_id = %s", (account_id,))
        if row is None:
            raise EntityNotFoundError(f"Account {account_id} not found")
        return _from_row(Account, row)

    def lock(self, account_id: str) -> Account:
        self._uow._set_lock_timeout()
        row = self._uow._fetchone(
            "SELECT * FROM accounts WHERE account_id = %s FOR UPDATE", (account_id,)
        )
        if row is None:
            raise EntityNotFoundError(f"Account {account_id} not found")
        return _from_row(Account, row)

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
        rows = self._uow._fetchall(
            "SELECT * FROM account_transactions WHERE account_id = %s ORDER BY timestamp",
            (account_id,),
        )
        return [_from_row(Transaction, row) for row in rows]

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
        delta = amount if direction == Direction.CREDIT else -amount
        row = self._uow._fetchone(
            "UPDATE accounts SET balance = balance + %s, updated_at = %s, version = version + 1 "
            "WHERE account_id = %s RETURNING balance",
            (delta, now, account_id),
        )
        transaction = Transaction(
            transaction_id=new_id(),
            account_id=account_id,
            transaction_type=transaction_type,
            direction=direction,
            amount=amount,
            balance_before=account.balance,
            balance_after=row["balance"],
            reference=reference,
            description=description,
            timestamp=now,
            loan_id=loan_id,
        )
        self._uow._insert("account_transactions", transaction)
        return transaction


class _PgAudit:
    def __init__(self, uow: PostgresUnitOfWork) -> None:
        self._uow = uow

    def append(self, entry: AuditEntry) -> None:
        self._uow._execute(
            "INSERT INTO audit_log (entry_id, subject, action, actor, before, after, created_at, metadata) "
            "VALUES (%s, %s, %s, %s, %s::jsonb, %s::jsonb, %s, %s::jsonb)",
            (
                entry.entry_id,
                entry.subject,
                entry.action.value,
                entry.actor,
                json.dumps(entry.before) if entry.before is not None else None,
                json.dumps(entry.after) if entry.after is not None else None,
                entry.created_at,
                json.dumps(entry.metadata),
            ),
        )

    def recent_for_loan(self, loan_id: str, limit: int = 20) -> list[AuditEntry]:
        rows = self._uow._fetchall(
            "SELECT * FROM audit_log WHERE subject = %s ORDER BY created_at DESC LIMIT %s",
            (loan_id, limit),
        )
        return [_from_row(AuditEntry, row) for row in rows]


class _PgIdempotency:
    def __init__(self, uow: PostgresUnitOfWork) -> None:
        self._uow = uow

    def get(self, request_id: str) -> IdempotencyRecord | None:
        row = self._uow._fetchone(
            "SELECT * FROM idempotency_keys WHERE request_id = %s", (request_id,)
        )
        return _from_row(IdempotencyRecord, row) if row is not None else None

    def put(self, record: IdempotencyRecord) -> None:
        self._uow._insert("idempotency_keys", record)
