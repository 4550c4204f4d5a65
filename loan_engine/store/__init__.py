"""Persistence for loans, payments, deposits, accounts and the audit log."""

from loan_engine.store.base import LoanStore, UnitOfWork
from loan_engine.store.memory import InMemoryLoanStore
from loan_engine.store.postgres import PostgresLoanStore

__all__ = ["InMemoryLoanStore", "LoanStore", "PostgresLoanStore", "UnitOfWork"]
