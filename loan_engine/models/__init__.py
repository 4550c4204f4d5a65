"""Domain models for the loan lifecycle engine."""

from loan_engine.models.account import Account, Transaction
from loan_engine.models.audit import AuditEntry
from loan_engine.models.base import ActingAdmin, Event
from loan_engine.models.deposit import DepositRecord
from loan_engine.models.enums import (
    AccountStatus,
    AuditAction,
    DepositSource,
    Direction,
    LoanStatus,
    PaymentStatus,
    PaymentType,
    TransactionType,
)
from loan_engine.models.loan import Loan, ScheduledInstallment
from loan_engine.models.payment import IdempotencyRecord, Payment

__all__ = [
    "Account",
    "AccountStatus",
    "ActingAdmin",
    "AuditAction",
    "AuditEntry",
    "DepositRecord",
    "DepositSource",
    "Direction",
    "Event",
    "IdempotencyRecord",
    "Loan",
    "LoanStatus",
    "Payment",
    "PaymentStatus",
    "PaymentType",
    "ScheduledInstallment",
    "Transaction",
    "TransactionType",
]
