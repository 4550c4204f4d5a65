"""Loan lifecycle services."""

from loan_engine.services.audit import AuditRecorder, EventPublisher, to_event
from loan_engine.services.deposit_gate import DepositVerificationGate, deposit_satisfied
from loan_engine.services.disbursement import DisbursementProcessor, DisbursementReceipt
from loan_engine.services.payments import PaymentProcessor, payoff_amount
from loan_engine.services.queries import LoanDetail, LoanQueries
from loan_engine.services.state_machine import TRANSITIONS, LoanStateMachine, transition

__all__ = [
    "AuditRecorder",
    "DepositVerificationGate",
    "DisbursementProcessor",
    "DisbursementReceipt",
    "EventPublisher",
    "LoanDetail",
    "LoanQueries",
    "LoanStateMachine",
    "PaymentProcessor",
    "TRANSITIONS",
    "deposit_satisfied",
    "payoff_amount",
    "to_event",
    "transition",
]
