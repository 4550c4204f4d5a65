"""Enumeration types for loan-engine entities."""

from enum import Enum


class LoanStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    ACTIVE = "active"
    CLOSED = "closed"
    REJECTED = "rejected"


class PaymentType(str, Enum):
    REGULAR = "regular"
    MANUAL = "manual"
    AUTO_PAYMENT = "auto_payment"
    EARLY_PAYOFF = "early_payoff"
    LATE_FEE = "late_fee"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class DepositSource(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    CRYPTO = "crypto"


class AccountStatus(str, Enum):
    ACTIVE = "active"
    BLOCKED = "blocked"
    CLOSED = "closed"


class Direction(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionType(str, Enum):
    LOAN_DISBURSEMENT = "loan_disbursement"
    TREASURY_DEBIT = "treasury_debit"
    LOAN_OVERPAYMENT_REFUND = "loan_overpayment_refund"


class AuditAction(str, Enum):
    LOAN_APPROVED_DISBURSED = "loan_approved_disbursed"
    LOAN_REJECTED = "loan_rejected"
    PAYMENT_RECORDED = "loan_payment_recorded"
    PAYMENT_SUBMITTED = "loan_payment_submitted"
    PAYMENT_APPROVED = "loan_payment_approved"
    PAYMENT_REJECTED = "loan_payment_rejected"
