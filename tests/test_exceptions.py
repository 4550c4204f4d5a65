"""Tests for the exception hierarchy."""

import pytest

from loan_engine.exceptions import (
    AccountUnavailable,
    ConcurrencyConflict,
    ConfigurationError,
    DataStoreError,
    DepositNotVerified,
    DisbursementFailed,
    EntityNotFoundError,
    InvalidEntityStateError,
    InvalidStateTransition,
    LedgerInvariantError,
    LoanEngineError,
    OverpaymentNotAllowed,
    ReferentialIntegrityError,
    SinkError,
    ValidationError,
)


class TestExceptionHierarchy:
    """Test exception inheritance chain."""

    def test_loan_engine_error_is_exception(self) -> None:
        assert isinstance(LoanEngineError("test"), Exception)

    def test_referential_integrity_is_entity_not_found(self) -> None:
        err = ReferentialIntegrityError("test")
        assert isinstance(err, EntityNotFoundError)
        assert isinstance(err, LoanEngineError)

    def test_state_errors_share_a_base(self) -> None:
        assert isinstance(InvalidStateTransition("test"), InvalidEntityStateError)
        assert isinstance(LedgerInvariantError("test"), InvalidEntityStateError)

    @pytest.mark.parametrize(
        "error_cls",
        [
            ValidationError,
            DepositNotVerified,
            AccountUnavailable,
            DisbursementFailed,
            OverpaymentNotAllowed,
            ConcurrencyConflict,
            DataStoreError,
            ConfigurationError,
            SinkError,
        ],
    )
    def test_all_errors_are_loan_engine_errors(self, error_cls: type) -> None:
        assert issubclass(error_cls, LoanEngineError)

    def test_exception_message(self) -> None:
        err = ReferentialIntegrityError("Loan loan-001 not found")
        assert str(err) == "Loan loan-001 not found"


class TestErrorClassification:
    """Codes and retryable flags tell rule violations from transient failures."""

    @pytest.mark.parametrize(
        "error_cls",
        [
            ValidationError,
            InvalidStateTransition,
            DepositNotVerified,
            AccountUnavailable,
            DisbursementFailed,
            OverpaymentNotAllowed,
            ConfigurationError,
        ],
    )
    def test_business_rule_errors_are_not_retryable(self, error_cls: type) -> None:
        assert error_cls("x").retryable is False

    @pytest.mark.parametrize("error_cls", [ConcurrencyConflict, DataStoreError, SinkError])
    def test_transient_errors_are_retryable(self, error_cls: type) -> None:
        assert error_cls("x").retryable is True

    def test_codes_are_distinct(self) -> None:
        classes = [
            ValidationError,
            EntityNotFoundError,
            ReferentialIntegrityError,
            InvalidEntityStateError,
            InvalidStateTransition,
            LedgerInvariantError,
            DepositNotVerified,
            AccountUnavailable,
            DisbursementFailed,
            OverpaymentNotAllowed,
            ConcurrencyConflict,
            DataStoreError,
            ConfigurationError,
            SinkError,
        ]
        codes = [cls.code for cls in classes]
        assert len(set(codes)) == len(codes)

    def test_known_codes(self) -> None:
        assert DepositNotVerified.code == "deposit_not_verified"
        assert InvalidStateTransition.code == "invalid_state_transition"
        assert ConcurrencyConflict.code == "concurrency_conflict"
