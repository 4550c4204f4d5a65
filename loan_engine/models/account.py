"""Borrower and treasury account models."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from loan_engine.models.enums import AccountStatus, Direction, TransactionType


@dataclass
class Account:
    """Bank account entity owned by the account ledger."""

    account_id: str
    owner_id: str
    account_number: str
    balance: Decimal
    status: AccountStatus
    created_at: datetime
    updated_at: datetime | None = None
    version: int = 0

    @property
    def in_good_standing(self) -> bool:
        return self.status == AccountStatus.ACTIVE


@dataclass
class Transaction:
    """Ledger-visible account movement used for reconciliation."""

    transaction_id: str
    account_id: str
    transaction_type: TransactionType
    direction: Direction
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    reference: str
    description: str
    timestamp: datetime
    loan_id: str | None = None
