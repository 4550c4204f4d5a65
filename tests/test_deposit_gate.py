"""Tests for the deposit verification gate."""

from decimal import Decimal

import pytest

from loan_engine.models import DepositSource
from loan_engine.services import DepositVerificationGate, deposit_satisfied
from loan_engine.store import InMemoryLoanStore


class TestDepositSatisfied:
    """The verification rule on a single record."""

    def test_missing_record(self) -> None:
        assert deposit_satisfied(None, Decimal("500"), 3) is False

    def test_verified_bank_transfer(self, deposit_factory) -> None:
        assert deposit_satisfied(deposit_factory(), Decimal("500.00"), 3) is True

    def test_unverified_flag(self, deposit_factory) -> None:
        assert deposit_satisfied(deposit_factory(verified=False), Decimal("500.00"), 3) is False

    def test_short_deposit_fails_even_when_flagged(self, deposit_factory) -> None:
        deposit = deposit_factory(deposited_amount=Decimal("499.99"))
        assert deposit_satisfied(deposit, Decimal("500.00"), 3) is False

    def test_loan_requirement_above_record_requirement(self, deposit_factory) -> None:
        assert deposit_satisfied(deposit_factory(), Decimal("600.00"), 3) is False

    @pytest.mark.parametrize("confirmations, expected", [(0, False), (2, False), (3, True), (12, True)])
    def test_crypto_needs_confirmations(self, deposit_factory, confirmations: int, expected: bool) -> None:
        deposit = deposit_factory(source=DepositSource.CRYPTO, confirmations=confirmations)
        assert deposit_satisfied(deposit, Decimal("500.00"), 3) is expected


class TestDepositVerificationGate:
    def test_no_requirement_is_open(self, store: InMemoryLoanStore, pending_loan) -> None:
        assert DepositVerificationGate(store).is_verified("loan-001") is True

    def test_zero_requirement_is_open(self, store: InMemoryLoanStore, account, loan_factory) -> None:
        store.add_loan(loan_factory(deposit_required=Decimal("0.00")))
        assert DepositVerificationGate(store).is_verified("loan-001") is True

    def test_required_without_record(self, store: InMemoryLoanStore, account, loan_factory) -> None:
        store.add_loan(loan_factory(deposit_required=Decimal("500.00")))
        assert DepositVerificationGate(store).is_verified("loan-001") is False

    def test_required_and_verified(self, store: InMemoryLoanStore, account, loan_factory, deposit_factory) -> None:
        store.add_loan(loan_factory(deposit_required=Decimal("500.00")))
        store.add_deposit(deposit_factory())
        assert DepositVerificationGate(store).is_verified("loan-001") is True

    def test_confirmation_threshold_is_configurable(
        self, store: InMemoryLoanStore, account, loan_factory, deposit_factory
    ) -> None:
        store.add_loan(loan_factory(deposit_required=Decimal("500.00")))
        store.add_deposit(deposit_factory(source=DepositSource.CRYPTO, confirmations=3))

        assert DepositVerificationGate(store, required_confirmations=3).is_verified("loan-001") is True
        assert DepositVerificationGate(store, required_confirmations=6).is_verified("loan-001") is False

    def test_gate_never_mutates_record(
        self, store: InMemoryLoanStore, account, loan_factory, deposit_factory
    ) -> None:
        store.add_loan(loan_factory(deposit_required=Decimal("500.00")))
        deposit = deposit_factory(verified=False, deposited_amount=Decimal("0.00"))
        store.add_deposit(deposit)

        DepositVerificationGate(store).is_verified("loan-001")

        assert store.deposits["loan-001"] == deposit_factory(verified=False, deposited_amount=Decimal("0.00"))

    def test_describe(self, store: InMemoryLoanStore, account, loan_factory, deposit_factory) -> None:
        store.add_loan(loan_factory(deposit_required=Decimal("500.00")))
        store.add_deposit(deposit_factory(source=DepositSource.CRYPTO, confirmations=1))
        gate = DepositVerificationGate(store)

        with store.unit_of_work() as uow:
            status = gate.describe(uow, uow.loans.get("loan-001"))

        assert status == {
            "required": True,
            "required_amount": "500.00",
            "deposited_amount": "500.00",
            "verified": True,
            "confirmations": 1,
            "source": "crypto",
            "gate_open": False,
        }

    def test_describe_without_requirement(self, store: InMemoryLoanStore, pending_loan) -> None:
        with store.unit_of_work() as uow:
            status = DepositVerificationGate(store).describe(uow, uow.loans.get("loan-001"))

        assert status["required"] is False
        assert status["gate_open"] is True
        assert status["deposited_amount"] is None
