"""Tests for the admin API facade and the loan detail view."""

import json
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from loan_engine.api import LoanAdminAPI, error_payload
from loan_engine.config import EngineConfig, KafkaConfig
from loan_engine.exceptions import ConcurrencyConflict, DepositNotVerified
from loan_engine.models import LoanStatus
from loan_engine.store import InMemoryLoanStore


class TestPayloads:
    def test_error_payload(self) -> None:
        assert error_payload(ConcurrencyConflict("lost the race")) == {
            "success": False,
            "error": {"code": "concurrency_conflict", "message": "lost the race", "retryable": True},
        }

    def test_approve_success(self, api: LoanAdminAPI, pending_loan, admin) -> None:
        result = api.approve_loan_with_disbursement("loan-001", "ok", admin)

        assert result["success"] is True
        assert result["loan"]["status"] == "active"
        assert result["loan"]["remaining_balance"] == "12000.00"
        json.dumps(result)

    def test_approve_blocked_by_deposit(
        self, api: LoanAdminAPI, store: InMemoryLoanStore, account, loan_factory, admin
    ) -> None:
        store.add_loan(loan_factory(deposit_required=Decimal("500.00")))

        result = api.approve_loan_with_disbursement("loan-001", None, admin)

        assert result == error_payload(DepositNotVerified(result["error"]["message"]))
        assert result["error"]["retryable"] is False
        assert store.get_loan("loan-001").status == LoanStatus.PENDING

    def test_reject_requires_reason(self, api: LoanAdminAPI, pending_loan, admin) -> None:
        result = api.reject_loan("loan-001", "", admin)

        assert result["success"] is False
        assert result["error"]["code"] == "validation_error"

    def test_reject_success(self, api: LoanAdminAPI, pending_loan, admin) -> None:
        result = api.reject_loan("loan-001", "Incomplete documents", admin)

        assert result["success"] is True
        assert result["loan"]["rejection_reason"] == "Incomplete documents"

    def test_record_payment(self, api: LoanAdminAPI, active_loan, admin) -> None:
        result = api.record_loan_payment("loan-001", "1032.00", "regular", admin, as_of=date(2026, 2, 14))

        assert result["success"] is True
        assert result["payment"]["interest_amount"] == "60.00"
        assert result["payment"]["principal_amount"] == "972.00"
        assert result["payment"]["balance_after"] == "11028.00"

    def test_record_non_positive_payment(self, api: LoanAdminAPI, active_loan, admin) -> None:
        result = api.record_loan_payment("loan-001", 0, "regular", admin)

        assert result["error"]["code"] == "overpayment_not_allowed"

    def test_manual_payment_round_trip(self, api: LoanAdminAPI, active_loan, admin) -> None:
        submitted = api.record_loan_payment("loan-001", "250.00", "manual", admin)
        payment_id = submitted["payment"]["payment_id"]

        approved = api.approve_loan_payment(payment_id, admin)
        rejected = api.reject_loan_payment(payment_id, "too late", admin)

        assert submitted["payment"]["status"] == "pending"
        assert approved["payment"]["status"] == "completed"
        assert rejected["success"] is False
        assert rejected["error"]["code"] == "invalid_state_transition"

    def test_reject_payment(self, api: LoanAdminAPI, active_loan, admin) -> None:
        payment_id = api.record_loan_payment("loan-001", "250.00", "manual", admin)["payment"]["payment_id"]

        result = api.reject_loan_payment(payment_id, "Cheque bounced", admin)

        assert result["payment"]["status"] == "failed"
        assert result["payment"]["rejection_reason"] == "Cheque bounced"

    def test_not_found(self, api: LoanAdminAPI, admin) -> None:
        result = api.approve_loan_payment("missing", admin)

        assert result["success"] is False
        assert result["error"]["code"] == "not_found"

    def test_unexpected_errors_propagate(self, api: LoanAdminAPI, pending_loan, admin) -> None:
        with patch.object(api.state_machine, "approve", side_effect=RuntimeError("bug")):
            with pytest.raises(RuntimeError):
                api.approve_loan_with_disbursement("loan-001", None, admin)


class TestLoanDetail:
    def test_pending_loan_detail(
        self, api: LoanAdminAPI, store: InMemoryLoanStore, account, loan_factory, deposit_factory
    ) -> None:
        store.add_loan(loan_factory(deposit_required=Decimal("500.00")))
        store.add_deposit(deposit_factory(deposited_amount=Decimal("200.00")))

        result = api.loan_detail("loan-001")

        assert result["success"] is True
        assert result["loan"]["status"] == "pending"
        assert result["payments"] == []
        assert result["schedule"] == []
        assert result["payoff_amount"] is None
        assert result["deposit"]["required"] is True
        assert result["deposit"]["deposited_amount"] == "200.00"
        assert result["deposit"]["gate_open"] is False

    def test_active_loan_detail(self, api: LoanAdminAPI, store: InMemoryLoanStore, active_loan, admin) -> None:
        api.record_loan_payment("loan-001", "1032.00", "regular", admin, as_of=date(2026, 2, 14))
        api.record_loan_payment("loan-001", "250.00", "manual", admin)

        result = api.loan_detail("loan-001")

        assert sorted(p["status"] for p in result["payments"]) == ["completed", "pending"]
        assert len(result["schedule"]) == 11
        assert result["schedule"][0]["installment_number"] == 2
        assert result["schedule"][0]["due_date"] == "2026-03-14"
        assert result["schedule"][-1]["balance_after"] == "0.00"
        assert result["payoff_amount"] == "11083.14"
        assert [entry["action"] for entry in result["audit"]] == [
            "loan_payment_submitted",
            "loan_payment_recorded",
            "loan_approved_disbursed",
        ]
        json.dumps(result)

    def test_audit_limit(self, api: LoanAdminAPI, active_loan, admin) -> None:
        api.record_loan_payment("loan-001", "100.00", "regular", admin, as_of=date(2026, 2, 14))

        result = api.loan_detail("loan-001", audit_limit=1)

        assert [entry["action"] for entry in result["audit"]] == ["loan_payment_recorded"]

    def test_detail_has_no_side_effects(self, api: LoanAdminAPI, store: InMemoryLoanStore, active_loan) -> None:
        before = store.summary()
        version = store.get_loan("loan-001").version

        api.loan_detail("loan-001")

        assert store.summary() == before
        assert store.get_loan("loan-001").version == version

    def test_detail_for_unknown_loan(self, api: LoanAdminAPI) -> None:
        assert api.loan_detail("missing")["error"]["code"] == "not_found"


class TestFromConfig:
    @patch("loan_engine.sinks.kafka.Producer")
    @patch("loan_engine.store.postgres.PostgresLoanStore.__init__", return_value=None)
    def test_kafka_publisher_when_enabled(self, mock_store_init: MagicMock, mock_producer: MagicMock) -> None:
        config = EngineConfig(kafka=KafkaConfig(enabled=True))

        api = LoanAdminAPI.from_config(config)

        mock_store_init.assert_called_once_with(config.postgres.connection_string, 5.0)
        mock_producer.assert_called_once()
        assert api.config is config
