"""Loan lifecycle and disbursement engine."""

from loan_engine.api import LoanAdminAPI
from loan_engine.config import EngineConfig, LedgerPolicy
from loan_engine.models import ActingAdmin, Loan, LoanStatus, Payment, PaymentStatus, PaymentType
from loan_engine.store import InMemoryLoanStore, PostgresLoanStore

__version__ = "0.1.0"

__all__ = [
    "ActingAdmin",
    "EngineConfig",
    "InMemoryLoanStore",
    "LedgerPolicy",
    "Loan",
    "LoanAdminAPI",
    "LoanStatus",
    "Payment",
    "PaymentStatus",
    "PaymentType",
    "PostgresLoanStore",
    "__version__",
]
