"""Custom exception hierarchy for loan-engine.

Every error carries a stable ``code`` and a ``retryable`` flag so callers can
tell business-rule violations from transient failures.
"""


class LoanEngineError(Exception):
    """Base exception for all loan-engine errors."""

    code = "loan_engine_error"
    retryable = False


class ValidationError(LoanEngineError):
    """Raised when input is missing or malformed."""

    code = "validation_error"


class EntityNotFoundError(LoanEngineError):
    """Raised when a referenced entity does not exist."""

    code = "not_found"


class ReferentialIntegrityError(EntityNotFoundError):
    """Raised when a foreign key reference is violated."""

    code = "referential_integrity"


class InvalidEntityStateError(LoanEngineError):
    """Raised when an entity is in an invalid state for the operation."""

    code = "invalid_state"


class InvalidStateTransition(InvalidEntityStateError):
    """Raised when an operation is not legal from the current status."""

    code = "invalid_state_transition"


class LedgerInvariantError(InvalidEntityStateError):
    """Raised when a loan or payment would violate a ledger invariant."""

    code = "ledger_invariant"


class DepositNotVerified(LoanEngineError):
    """Raised when approval is blocked by an unverified deposit."""

    code = "deposit_not_verified"


class AccountUnavailable(LoanEngineError):
    """Raised when the disbursement target account is not usable."""

    code = "account_unavailable"


class DisbursementFailed(LoanEngineError):
    """Raised when crediting the borrower fails."""

    code = "disbursement_failed"


class OverpaymentNotAllowed(LoanEngineError):
    """Raised for a non-positive amount or a refused overpayment."""

    code = "overpayment_not_allowed"


class ConcurrencyConflict(LoanEngineError):
    """Raised when an operation loses the per-loan serialization race."""

    code = "concurrency_conflict"
    retryable = True


class DataStoreError(LoanEngineError):
    """Raised when the underlying data store fails unexpectedly."""

    code = "data_store_error"
    retryable = True


class ConfigurationError(LoanEngineError):
    """Raised when configuration is invalid or missing."""

    code = "configuration_error"


class SinkError(LoanEngineError):
    """Raised when an event sink operation fails."""

    code = "sink_error"
    retryable = True
