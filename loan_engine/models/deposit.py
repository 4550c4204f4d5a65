"""Funding/collateral deposit model."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from loan_engine.models.enums import DepositSource


@dataclass
class DepositRecord:
    """Deposit tied 1:1 to a pending loan with ``deposit_required > 0``.

    Owned by the deposit subsystem (wallet assignment, confirmation
    counting); the engine only reads it.
    """

    deposit_id: str
    loan_id: str
    required_amount: Decimal
    deposited_amount: Decimal
    verified: bool
    source: DepositSource
    confirmations: int = 0  # Crypto only
    confirmed_at: datetime | None = None
    wallet_address: str | None = None
    tx_hash: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
