#!/usr/bin/env python3
"""Simulate a loan portfolio through approval and repayment.

Seeds an in-memory store with synthetic applications, approves them
through the admin API (funded from a treasury account), then walks the
calendar month by month applying payments: most on time, some late
(incurring a fee) and a few early payoffs. Optionally publishes the
audit trail to Kafka.
"""

import argparse
import logging
import random
import time
from collections import Counter
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from loan_engine.api import LoanAdminAPI
from loan_engine.config import EngineConfig, KafkaConfig
from loan_engine.generators import BorrowerGenerator, LoanApplicationGenerator
from loan_engine.logging import setup_logging
from loan_engine.models import ActingAdmin, LoanStatus, PaymentType
from loan_engine.services.payments import payoff_amount
from loan_engine.sinks import KafkaEventSink
from loan_engine.store import InMemoryLoanStore

logger = logging.getLogger(__name__)

TREASURY_FUNDS = Decimal("50000000.00")


class SimulationClock:
    """Settable clock handed to the engine in place of wall time."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def set_date(self, day) -> None:
        self.current = datetime(day.year, day.month, day.day, 12, tzinfo=timezone.utc)


def approve_applications(api: LoanAdminAPI, store: InMemoryLoanStore, admin: ActingAdmin) -> Counter:
    """Approve every pending loan; reject the ones blocked by their deposit."""
    outcomes: Counter = Counter()
    for loan_id in list(store.loans):
        result = api.approve_loan_with_disbursement(loan_id, "Auto-approved by simulation", admin)
        if result["success"]:
            outcomes["approved"] += 1
            continue

        code = result["error"]["code"]
        outcomes[code] += 1
        if code == "deposit_not_verified":
            api.reject_loan(loan_id, "Required deposit not received", admin)
    return outcomes


def run_month(
    api: LoanAdminAPI,
    store: InMemoryLoanStore,
    clock: SimulationClock,
    admin: ActingAdmin,
    late_ratio: float,
    payoff_ratio: float,
) -> Counter:
    """Apply one payment to every active loan."""
    policy = api.config.policy
    outcomes: Counter = Counter()

    for loan_id, loan in list(store.loans.items()):
        if loan.status != LoanStatus.ACTIVE or loan.next_payment_date is None:
            continue

        roll = random.random()
        if roll < payoff_ratio:
            as_of = loan.next_payment_date - timedelta(days=random.randint(0, 10))
            amount = payoff_amount(loan, as_of, policy)
            payment_type = PaymentType.EARLY_PAYOFF
            label = "early_payoff"
        elif roll < payoff_ratio + late_ratio:
            as_of = loan.next_payment_date + timedelta(days=policy.grace_period_days + random.randint(1, 10))
            amount = loan.monthly_payment_amount + policy.late_fee_for(loan.monthly_payment_amount)
            payment_type = PaymentType.REGULAR
            label = "late"
        else:
            as_of = loan.next_payment_date
            amount = loan.monthly_payment_amount
            payment_type = PaymentType.AUTO_PAYMENT
            label = "on_time"

        clock.set_date(as_of)
        result = api.record_loan_payment(loan_id, amount, payment_type, admin, as_of=as_of)
        outcomes[label if result["success"] else result["error"]["code"]] += 1

    return outcomes


def print_summary(store: InMemoryLoanStore, outcomes: Counter, elapsed: float) -> None:
    """Print portfolio summary."""
    statuses = Counter(loan.status.value for loan in store.loans.values())
    disbursed = sum(
        (loan.principal for loan in store.loans.values() if loan.disbursed_at is not None),
        Decimal("0.00"),
    )
    collected = sum(
        (p.amount for p in store.payments.values() if p.status.value == "completed"),
        Decimal("0.00"),
    )
    fees = sum((p.late_fee for p in store.payments.values()), Decimal("0.00"))
    outstanding = sum(
        (loan.remaining_balance for loan in store.loans.values() if loan.status == LoanStatus.ACTIVE),
        Decimal("0.00"),
    )

    print("\n" + "=" * 60)
    print("PORTFOLIO SIMULATION SUMMARY")
    print("=" * 60)
    for status, count in sorted(statuses.items()):
        print(f"  loans {status:<12} {count:>8,}")
    print("-" * 60)
    for label, count in sorted(outcomes.items()):
        print(f"  {label:<24} {count:>8,}")
    print("-" * 60)
    print(f"  disbursed     {disbursed:>16,}")
    print(f"  collected     {collected:>16,}")
    print(f"  late fees     {fees:>16,}")
    print(f"  outstanding   {outstanding:>16,}")
    print("-" * 60)
    for entity, count in store.summary().items():
        print(f"  {entity:<24} {count:>8,}")
    print(f"\nCompleted in {elapsed:.1f}s")


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Simulate loan approvals and repayments")
    parser.add_argument(
        "--loans",
        type=int,
        default=100,
        help="Number of loan applications to generate (default: 100)",
    )
    parser.add_argument(
        "--months",
        type=int,
        default=12,
        help="Number of repayment months to simulate (default: 12)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed for reproducibility (default: 42)",
    )
    parser.add_argument(
        "--late-ratio",
        type=float,
        default=0.1,
        help="Share of payments made after the grace period (default: 0.1)",
    )
    parser.add_argument(
        "--payoff-ratio",
        type=float,
        default=0.03,
        help="Share of payments that pay the loan off early (default: 0.03)",
    )
    parser.add_argument(
        "--kafka-bootstrap",
        type=str,
        default=None,
        help="Publish audit events to this Kafka cluster",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        help="Log level (default: INFO)",
    )
    args = parser.parse_args()

    setup_logging(args.log_level)
    logging.getLogger("loan_engine").setLevel(logging.WARNING)
    random.seed(args.seed)
    overall_start = time.perf_counter()

    config = EngineConfig()
    store = InMemoryLoanStore(lock_timeout=config.locks.timeout_seconds)
    treasury = BorrowerGenerator(args.seed).generate_treasury(TREASURY_FUNDS)
    store.add_account(treasury)
    config.treasury.account_id = treasury.account_id

    LoanApplicationGenerator(args.seed).seed_store(store, args.loans)
    logger.info("Seeded %d loan applications", args.loans)

    publisher = None
    if args.kafka_bootstrap:
        config.kafka = KafkaConfig(bootstrap_servers=args.kafka_bootstrap, enabled=True)
        publisher = KafkaEventSink.from_config(config.kafka)

    clock = SimulationClock(datetime.now(timezone.utc))
    api = LoanAdminAPI(store, config, publisher, clock=clock.now)
    admin = ActingAdmin(admin_id="simulator")

    outcomes = approve_applications(api, store, admin)
    for month in range(1, args.months + 1):
        outcomes.update(run_month(api, store, clock, admin, args.late_ratio, args.payoff_ratio))
        logger.info("Simulated month %d", month)

    if publisher is not None:
        publisher.flush()
        logger.info("Kafka stats: %s", publisher.stats)
        publisher.close()

    print_summary(store, outcomes, time.perf_counter() - overall_start)


if __name__ == "__main__":
    main()
