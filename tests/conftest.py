"""Pytest configuration and fixtures."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable

import pytest

from loan_engine.api import LoanAdminAPI
from loan_engine.config import EngineConfig
from loan_engine.models import (
    Account,
    AccountStatus,
    ActingAdmin,
    DepositRecord,
    DepositSource,
    Loan,
    LoanStatus,
)
from loan_engine.store import InMemoryLoanStore

FIXED_NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def seed() -> int:
    """Fixed seed for reproducible tests."""
    return 42


@pytest.fixture
def now() -> datetime:
    """Fixed wall-clock time."""
    return FIXED_NOW


@pytest.fixture
def clock(now: datetime) -> Callable[[], datetime]:
    return lambda: now


@pytest.fixture
def admin() -> ActingAdmin:
    """Authenticated administrator."""
    return ActingAdmin(admin_id="admin-001", email="ops@bank.test")


@pytest.fixture
def store() -> InMemoryLoanStore:
    return InMemoryLoanStore(lock_timeout=0.5)


def make_account(account_id: str = "acct-001", balance: str = "100.00", **overrides) -> Account:
    values = dict(
        account_id=account_id,
        owner_id="cust-001",
        account_number="000123456",
        balance=Decimal(balance),
        status=AccountStatus.ACTIVE,
        created_at=FIXED_NOW,
    )
    values.update(overrides)
    return Account(**values)


def make_loan(loan_id: str = "loan-001", account_id: str = "acct-001", **overrides) -> Loan:
    """Pending $12,000 loan at 6% over 12 months."""
    values = dict(
        loan_id=loan_id,
        borrower_id="cust-001",
        account_id=account_id,
        principal=Decimal("12000.00"),
        interest_rate=Decimal("6"),
        term_months=12,
        status=LoanStatus.PENDING,
        remaining_balance=Decimal("12000.00"),
        created_at=FIXED_NOW,
    )
    values.update(overrides)
    if "principal" in overrides and "remaining_balance" not in overrides:
        values["remaining_balance"] = values["principal"]
    return Loan(**values)


def make_deposit(loan_id: str = "loan-001", **overrides) -> DepositRecord:
    values = dict(
        deposit_id="dep-001",
        loan_id=loan_id,
        required_amount=Decimal("500.00"),
        deposited_amount=Decimal("500.00"),
        verified=True,
        source=DepositSource.BANK_TRANSFER,
        created_at=FIXED_NOW,
    )
    values.update(overrides)
    return DepositRecord(**values)


@pytest.fixture
def account(store: InMemoryLoanStore) -> Account:
    """Borrower account in good standing."""
    acct = make_account()
    store.add_account(acct)
    return acct


@pytest.fixture
def pending_loan(store: InMemoryLoanStore, account: Account) -> Loan:
    loan = make_loan()
    store.add_loan(loan)
    return loan


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def api(store: InMemoryLoanStore, config: EngineConfig, clock: Callable[[], datetime]) -> LoanAdminAPI:
    return LoanAdminAPI(store, config, clock=clock)


@pytest.fixture
def active_loan(api: LoanAdminAPI, pending_loan: Loan, admin: ActingAdmin) -> Loan:
    """The pending loan, approved and disbursed."""
    return api.state_machine.approve(pending_loan.loan_id, admin, "ok")


@pytest.fixture
def account_factory() -> Callable[..., Account]:
    return make_account


@pytest.fixture
def loan_factory() -> Callable[..., Loan]:
    return make_loan


@pytest.fixture
def deposit_factory() -> Callable[..., DepositRecord]:
    return make_deposit
