"""Synthetic portfolio generators."""

from loan_engine.generators.loan import (
    BorrowerGenerator,
    LoanApplication,
    LoanApplicationGenerator,
)

__all__ = [
    "BorrowerGenerator",
    "LoanApplication",
    "LoanApplicationGenerator",
]
