"""Admin-facing entry points returning structured success/error payloads."""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable

from loan_engine.config import EngineConfig
from loan_engine.exceptions import LoanEngineError
from loan_engine.models import ActingAdmin, PaymentType
from loan_engine.services import (
    AuditRecorder,
    DepositVerificationGate,
    DisbursementProcessor,
    EventPublisher,
    LoanQueries,
    LoanStateMachine,
    PaymentProcessor,
)
from loan_engine.services.audit import utcnow
from loan_engine.sinks.serialization import serialize_value, to_dict
from loan_engine.store.base import LoanStore

logger = logging.getLogger(__name__)


def error_payload(exc: LoanEngineError) -> dict[str, Any]:
    return {
        "success": False,
        "error": {"code": exc.code, "message": str(exc), "retryable": exc.retryable},
    }


class LoanAdminAPI:
    """Wire the services together behind the six admin calls.

    Every call takes the acting administrator explicitly. Engine errors
    are returned as payloads; anything else propagates.
    """

    def __init__(
        self,
        store: LoanStore,
        config: EngineConfig | None = None,
        publisher: EventPublisher | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or EngineConfig()
        policy = self.config.policy

        recorder = AuditRecorder(publisher=publisher, clock=clock)
        self.gate = DepositVerificationGate(store, policy.required_confirmations)
        self.disburser = DisbursementProcessor(policy, self.config.treasury.account_id)
        self.state_machine = LoanStateMachine(
            store, self.gate, self.disburser, recorder, policy, clock
        )
        self.payments = PaymentProcessor(store, recorder, policy, clock)
        self.queries = LoanQueries(store, self.gate, policy, clock)

    @classmethod
    def from_config(cls, config: EngineConfig) -> "LoanAdminAPI":
        """Build against PostgreSQL, publishing audit events when Kafka is enabled."""
        from loan_engine.sinks import KafkaEventSink
        from loan_engine.store import PostgresLoanStore

        publisher = KafkaEventSink.from_config(config.kafka) if config.kafka.enabled else None
        return cls(PostgresLoanStore.from_config(config), config, publisher)

    def approve_loan_with_disbursement(
        self,
        loan_id: str,
        approval_notes: str | None,
        acting_admin: ActingAdmin,
        request_id: str | None = None,
    ) -> dict[str, Any]:
        return self._call(
            "approve_loan_with_disbursement",
            lambda: {
                "loan": to_dict(
                    self.state_machine.approve(loan_id, acting_admin, approval_notes, request_id)
                )
            },
        )

    def reject_loan(
        self,
        loan_id: str,
        reason: str,
        acting_admin: ActingAdmin,
        request_id: str | None = None,
    ) -> dict[str, Any]:
        return self._call(
            "reject_loan",
            lambda: {
                "loan": to_dict(self.state_machine.reject(loan_id, acting_admin, reason, request_id))
            },
        )

    def record_loan_payment(
        self,
        loan_id: str,
        amount: Decimal | int | str | float,
        payment_type: PaymentType | str,
        acting_admin: ActingAdmin,
        as_of: date | None = None,
        request_id: str | None = None,
    ) -> dict[str, Any]:
        return self._call(
            "record_loan_payment",
            lambda: {
                "payment": to_dict(
                    self.payments.record_payment(
                        loan_id, amount, payment_type, acting_admin, as_of, request_id
                    )
                )
            },
        )

    def approve_loan_payment(
        self,
        payment_id: str,
        acting_admin: ActingAdmin,
        request_id: str | None = None,
    ) -> dict[str, Any]:
        return self._call(
            "approve_loan_payment",
            lambda: {
                "payment": to_dict(
                    self.payments.approve_manual_payment(payment_id, acting_admin, request_id)
                )
            },
        )

    def reject_loan_payment(
        self,
        payment_id: str,
        reason: str,
        acting_admin: ActingAdmin,
        request_id: str | None = None,
    ) -> dict[str, Any]:
        return self._call(
            "reject_loan_payment",
            lambda: {
                "payment": to_dict(
                    self.payments.reject_manual_payment(payment_id, acting_admin, reason, request_id)
                )
            },
        )

    def loan_detail(self, loan_id: str, audit_limit: int = 20) -> dict[str, Any]:
        def build() -> dict[str, Any]:
            detail = self.queries.loan_detail(loan_id, audit_limit)
            return {
                "loan": to_dict(detail.loan),
                "payments": [to_dict(p) for p in detail.payments],
                "deposit": detail.deposit,
                "schedule": [to_dict(row) for row in detail.schedule],
                "payoff_amount": serialize_value(detail.payoff_amount),
                "audit": [to_dict(entry) for entry in detail.audit],
            }

        return self._call("loan_detail", build)

    def _call(self, operation: str, action: Callable[[], dict[str, Any]]) -> dict[str, Any]:
        try:
            body = action()
        except LoanEngineError as exc:
            if exc.retryable:
                logger.error("%s failed (retryable): %s", operation, exc)
            else:
                logger.warning("%s refused: %s", operation, exc)
            return error_payload(exc)
        return {"success": True, **body}
