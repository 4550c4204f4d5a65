"""Borrower and loan application generators."""

import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterator

from loan_engine.generators.base import BaseGenerator
from loan_engine.models import (
    Account,
    AccountStatus,
    DepositRecord,
    DepositSource,
    Loan,
    LoanStatus,
)
from loan_engine.store import InMemoryLoanStore


@dataclass
class LoanApplication:
    """A pending loan with its borrower account and optional deposit."""

    account: Account
    loan: Loan
    deposit: DepositRecord | None = None


class BorrowerGenerator(BaseGenerator):
    """Generate borrower accounts."""

    def generate(self, status: AccountStatus = AccountStatus.ACTIVE) -> Account:
        """Generate a single borrower account.

        Parameters
        ----------
        status : AccountStatus
            Account status (ACTIVE by default).

        Returns
        -------
        Account
            Generated account.
        """
        balance = Decimal(str(random.randint(0, 5000))) + Decimal(random.randint(0, 99)) / 100
        return Account(
            account_id=self.fake.uuid4(),
            owner_id=self.fake.uuid4(),
            account_number=self.fake.bban(),
            balance=balance,
            status=status,
            created_at=datetime.now(timezone.utc) - timedelta(days=random.randint(30, 1500)),
        )

    def generate_treasury(self, balance: Decimal) -> Account:
        """Generate the bank's funding account."""
        return Account(
            account_id=self.fake.uuid4(),
            owner_id="treasury",
            account_number=self.fake.bban(),
            balance=balance,
            status=AccountStatus.ACTIVE,
            created_at=datetime.now(timezone.utc),
        )


class LoanApplicationGenerator(BaseGenerator):
    """Generate pending loan applications."""

    # Annual rate ranges in percent by loan type
    RATES = {
        "personal": (6.0, 18.0),
        "auto": (4.0, 9.0),
        "business": (5.0, 12.0),
    }
    TERMS = {
        "personal": [6, 12, 18, 24, 36],
        "auto": [24, 36, 48, 60],
        "business": [12, 24, 36, 60],
    }

    def __init__(
        self,
        seed: int | None = None,
        deposit_ratio: float = 0.3,
        verified_ratio: float = 0.8,
    ) -> None:
        super().__init__(seed)
        self.deposit_ratio = deposit_ratio
        self.verified_ratio = verified_ratio
        self._borrowers = BorrowerGenerator(seed)

    def generate(self, account: Account | None = None, loan_type: str | None = None) -> LoanApplication:
        """Generate one application, creating a borrower account when none is given."""
        account = account or self._borrowers.generate()
        loan_type = loan_type or random.choice(list(self.RATES))
        low, high = self.RATES[loan_type]

        principal = Decimal(random.randint(10, 500) * 100)
        created_at = datetime.now(timezone.utc) - timedelta(days=random.randint(0, 14))

        deposit_required = None
        if random.random() < self.deposit_ratio:
            # Deposits run 2-10% of principal
            deposit_required = (principal * Decimal(random.randint(2, 10)) / 100).quantize(
                Decimal("0.01")
            )

        loan = Loan(
            loan_id=self.fake.uuid4(),
            borrower_id=account.owner_id,
            account_id=account.account_id,
            principal=principal,
            interest_rate=Decimal(str(round(random.uniform(low, high), 2))),
            term_months=random.choice(self.TERMS[loan_type]),
            status=LoanStatus.PENDING,
            remaining_balance=principal,
            created_at=created_at,
            loan_type=loan_type,
            deposit_required=deposit_required,
        )

        deposit = None
        if deposit_required is not None:
            deposit = self._generate_deposit(loan, created_at)

        return LoanApplication(account=account, loan=loan, deposit=deposit)

    def generate_batch(self, count: int) -> Iterator[LoanApplication]:
        for _ in range(count):
            yield self.generate()

    def seed_store(self, store: InMemoryLoanStore, count: int) -> list[LoanApplication]:
        """Generate ``count`` applications and add them to ``store``."""
        applications = list(self.generate_batch(count))
        for application in applications:
            store.add_account(application.account)
            store.add_loan(application.loan)
            if application.deposit is not None:
                store.add_deposit(application.deposit)
        return applications

    def _generate_deposit(self, loan: Loan, created_at: datetime) -> DepositRecord:
        source = random.choice(list(DepositSource))
        verified = random.random() < self.verified_ratio
        required = loan.deposit_required
        deposited = required if verified else (required * Decimal("0.5")).quantize(Decimal("0.01"))

        if source == DepositSource.CRYPTO:
            confirmations = random.randint(3, 12) if verified else random.randint(0, 2)
            wallet_address = "0x" + self.fake.sha1()
            tx_hash = "0x" + self.fake.sha256() if deposited > 0 else None
        else:
            confirmations = 0
            wallet_address = None
            tx_hash = None

        return DepositRecord(
            deposit_id=self.fake.uuid4(),
            loan_id=loan.loan_id,
            required_amount=required,
            deposited_amount=deposited,
            verified=verified,
            source=source,
            confirmations=confirmations,
            confirmed_at=created_at + timedelta(hours=random.randint(1, 48)) if verified else None,
            wallet_address=wallet_address,
            tx_hash=tx_hash,
            created_at=created_at,
        )
