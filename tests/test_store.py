"""Tests for InMemoryLoanStore and its unit of work."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from loan_engine.exceptions import (
    ConcurrencyConflict,
    EntityNotFoundError,
    InvalidEntityStateError,
    LedgerInvariantError,
    ReferentialIntegrityError,
    ValidationError,
)
from loan_engine.models import (
    AccountStatus,
    AuditAction,
    AuditEntry,
    Direction,
    IdempotencyRecord,
    LoanStatus,
    Payment,
    PaymentStatus,
    PaymentType,
    TransactionType,
)
from loan_engine.store import InMemoryLoanStore

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def _pending_payment(payment_id: str = "pay-001", loan_id: str = "loan-001") -> Payment:
    return Payment(
        payment_id=payment_id,
        loan_id=loan_id,
        amount=Decimal("100.00"),
        payment_type=PaymentType.MANUAL,
        status=PaymentStatus.PENDING,
        payment_date=NOW.date(),
        created_at=NOW,
    )


def _audit(entry_id: str, subject: str = "loan-001") -> AuditEntry:
    return AuditEntry(
        entry_id=entry_id,
        subject=subject,
        action=AuditAction.LOAN_REJECTED,
        actor="admin-001",
        before=None,
        after=None,
        created_at=NOW,
    )


class TestSeeding:
    """Tests for adding externally owned records."""

    def test_add_loan_requires_account(self, store: InMemoryLoanStore, loan_factory) -> None:
        with pytest.raises(ReferentialIntegrityError, match="Account acct-001"):
            store.add_loan(loan_factory())

    def test_add_loan_validates(self, store: InMemoryLoanStore, account, loan_factory) -> None:
        with pytest.raises(LedgerInvariantError):
            store.add_loan(loan_factory(remaining_balance=Decimal("99999.00")))

    def test_add_deposit_requires_loan(self, store: InMemoryLoanStore, deposit_factory) -> None:
        with pytest.raises(ReferentialIntegrityError):
            store.add_deposit(deposit_factory(loan_id="missing"))

    def test_relationship_indexes(self, store: InMemoryLoanStore, pending_loan) -> None:
        assert [loan.loan_id for loan in store.get_account_loans("acct-001")] == ["loan-001"]
        assert store.get_loan_payments("loan-001") == []

    def test_get_missing_loan(self, store: InMemoryLoanStore) -> None:
        with pytest.raises(EntityNotFoundError):
            store.get_loan("missing")

    def test_summary(self, store: InMemoryLoanStore, pending_loan) -> None:
        summary = store.summary()
        assert summary["accounts"] == 1
        assert summary["loans"] == 1
        assert summary["payments"] == 0


class TestUnitOfWork:
    """Commit and rollback semantics."""

    def test_clean_exit_commits_and_bumps_version(self, store: InMemoryLoanStore, pending_loan) -> None:
        with store.unit_of_work() as uow:
            loan = uow.loans.lock("loan-001")
            loan.approval_notes = "looks good"
            uow.loans.save(loan)

        committed = store.get_loan("loan-001")
        assert committed.approval_notes == "looks good"
        assert committed.version == 1

    def test_exception_rolls_back(self, store: InMemoryLoanStore, pending_loan) -> None:
        with pytest.raises(RuntimeError):
            with store.unit_of_work() as uow:
                loan = uow.loans.lock("loan-001")
                loan.approval_notes = "never visible"
                uow.loans.save(loan)
                uow.accounts.credit(
                    "acct-001",
                    Decimal("50.00"),
                    transaction_type=TransactionType.LOAN_DISBURSEMENT,
                    reference="ref",
                    description="test",
                )
                raise RuntimeError("boom")

        assert store.get_loan("loan-001").approval_notes is None
        assert store.get_account("acct-001").balance == Decimal("100.00")
        assert store.transactions == []

    def test_reads_are_copies(self, store: InMemoryLoanStore, pending_loan) -> None:
        with store.unit_of_work() as uow:
            loan = uow.loans.get("loan-001")
            loan.status = LoanStatus.REJECTED

        assert store.get_loan("loan-001").status == LoanStatus.PENDING

    def test_invariants_checked_at_commit(self, store: InMemoryLoanStore, pending_loan) -> None:
        with pytest.raises(LedgerInvariantError):
            with store.unit_of_work() as uow:
                loan = uow.loans.lock("loan-001")
                loan.status = LoanStatus.ACTIVE
                loan.remaining_balance = Decimal("0.00")
                uow.loans.save(loan)

        assert store.get_loan("loan-001").status == LoanStatus.PENDING

    def test_after_commit_runs_only_on_commit(self, store: InMemoryLoanStore, pending_loan) -> None:
        calls: list[str] = []

        with store.unit_of_work() as uow:
            uow.after_commit(lambda: calls.append("committed"))
        with pytest.raises(RuntimeError):
            with store.unit_of_work() as uow:
                uow.after_commit(lambda: calls.append("rolled back"))
                raise RuntimeError("boom")

        assert calls == ["committed"]

    def test_failing_callback_does_not_undo_commit(self, store: InMemoryLoanStore, pending_loan) -> None:
        def explode() -> None:
            raise RuntimeError("publisher down")

        with store.unit_of_work() as uow:
            loan = uow.loans.lock("loan-001")
            loan.approval_notes = "kept"
            uow.loans.save(loan)
            uow.after_commit(explode)

        assert store.get_loan("loan-001").approval_notes == "kept"


class TestConcurrencyControl:
    def test_stale_version_conflicts(self, store: InMemoryLoanStore, pending_loan) -> None:
        with pytest.raises(ConcurrencyConflict):
            with store.unit_of_work() as slow:
                stale = slow.loans.get("loan-001")

                with store.unit_of_work() as fast:
                    loan = fast.loans.lock("loan-001")
                    loan.approval_notes = "first"
                    fast.loans.save(loan)

                stale.approval_notes = "second"
                slow.loans.save(stale)

        assert store.get_loan("loan-001").approval_notes == "first"

    def test_lock_timeout_raises_conflict(self, account_factory, loan_factory) -> None:
        store = InMemoryLoanStore(lock_timeout=0.05)
        store.add_account(account_factory())
        store.add_loan(loan_factory())

        with store.unit_of_work() as holder:
            holder.loans.lock("loan-001")
            with pytest.raises(ConcurrencyConflict, match="loan:loan-001"):
                with store.unit_of_work() as waiter:
                    waiter.loans.lock("loan-001")

    def test_locks_released_after_exit(self, store: InMemoryLoanStore, pending_loan) -> None:
        with store.unit_of_work() as uow:
            uow.loans.lock("loan-001")
        with store.unit_of_work() as uow:
            assert uow.loans.lock("loan-001").loan_id == "loan-001"

    def test_lock_missing_loan(self, store: InMemoryLoanStore) -> None:
        with pytest.raises(EntityNotFoundError):
            with store.unit_of_work() as uow:
                uow.loans.lock("missing")


class TestAccountLedger:
    def test_credit_records_transaction(self, store: InMemoryLoanStore, account) -> None:
        with store.unit_of_work() as uow:
            txn = uow.accounts.credit(
                "acct-001",
                Decimal("25.50"),
                transaction_type=TransactionType.LOAN_DISBURSEMENT,
                reference="LN-1",
                description="test credit",
                loan_id="loan-001",
            )

        assert txn.direction == Direction.CREDIT
        assert txn.balance_before == Decimal("100.00")
        assert txn.balance_after == Decimal("125.50")
        assert store.get_account("acct-001").balance == Decimal("125.50")
        assert store.get_account_transactions("acct-001") == [txn]

    def test_debit_insufficient_funds(self, store: InMemoryLoanStore, account) -> None:
        with pytest.raises(InvalidEntityStateError, match="insufficient"):
            with store.unit_of_work() as uow:
                uow.accounts.debit(
                    "acct-001",
                    Decimal("100.01"),
                    transaction_type=TransactionType.TREASURY_DEBIT,
                    reference="r",
                    description="d",
                )

    def test_blocked_account_refuses_movements(self, store: InMemoryLoanStore, account_factory) -> None:
        store.add_account(account_factory(status=AccountStatus.BLOCKED))
        with pytest.raises(InvalidEntityStateError, match="blocked"):
            with store.unit_of_work() as uow:
                uow.accounts.credit(
                    "acct-001",
                    Decimal("1.00"),
                    transaction_type=TransactionType.LOAN_DISBURSEMENT,
                    reference="r",
                    description="d",
                )

    def test_non_positive_amount(self, store: InMemoryLoanStore, account) -> None:
        with pytest.raises(ValidationError):
            with store.unit_of_work() as uow:
                uow.accounts.credit(
                    "acct-001",
                    Decimal("0.00"),
                    transaction_type=TransactionType.LOAN_DISBURSEMENT,
                    reference="r",
                    description="d",
                )

    def test_staged_transactions_visible_in_uow(self, store: InMemoryLoanStore, account) -> None:
        with store.unit_of_work() as uow:
            uow.accounts.credit(
                "acct-001",
                Decimal("1.00"),
                transaction_type=TransactionType.LOAN_DISBURSEMENT,
                reference="r",
                description="d",
            )
            assert len(uow.accounts.list_transactions("acct-001")) == 1


class TestRepositories:
    def test_payments_listed_with_staged(self, store: InMemoryLoanStore, pending_loan) -> None:
        store.add_payment(_pending_payment("pay-001"))
        with store.unit_of_work() as uow:
            uow.payments.add(_pending_payment("pay-002"))
            ids = [p.payment_id for p in uow.payments.list_for_loan("loan-001")]

        assert ids == ["pay-001", "pay-002"]
        assert [p.payment_id for p in store.get_loan_payments("loan-001")] == ["pay-001", "pay-002"]

    def test_payment_requires_loan(self, store: InMemoryLoanStore) -> None:
        with pytest.raises(ReferentialIntegrityError):
            with store.unit_of_work() as uow:
                uow.payments.add(_pending_payment(loan_id="missing"))

    def test_duplicate_payment_id(self, store: InMemoryLoanStore, pending_loan) -> None:
        store.add_payment(_pending_payment())
        with pytest.raises(ValidationError, match="already exists"):
            with store.unit_of_work() as uow:
                uow.payments.add(_pending_payment())

    def test_deposit_lookup(self, store: InMemoryLoanStore, pending_loan, deposit_factory) -> None:
        store.add_deposit(deposit_factory())
        with store.unit_of_work() as uow:
            assert uow.deposits.get_for_loan("loan-001").deposit_id == "dep-001"
            assert uow.deposits.get_for_loan("other") is None

    def test_audit_newest_first_with_limit(self, store: InMemoryLoanStore, pending_loan) -> None:
        with store.unit_of_work() as uow:
            uow.audit.append(_audit("a-1"))
            uow.audit.append(_audit("a-2"))
        with store.unit_of_work() as uow:
            uow.audit.append(_audit("a-3"))
            recent = uow.audit.recent_for_loan("loan-001", limit=2)

        assert [entry.entry_id for entry in recent] == ["a-3", "a-2"]
        assert [entry.entry_id for entry in store.get_loan_audit("loan-001")] == ["a-1", "a-2", "a-3"]

    def test_idempotency_key_reuse(self, store: InMemoryLoanStore) -> None:
        record = IdempotencyRecord("req-1", "approve_loan", "loan-001", NOW)
        with store.unit_of_work() as uow:
            uow.idempotency.put(record)

        with store.unit_of_work() as uow:
            assert uow.idempotency.get("req-1") == record
            with pytest.raises(ValidationError):
                uow.idempotency.put(record)
