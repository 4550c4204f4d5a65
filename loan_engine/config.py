"""Configuration management for loan-engine."""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from loan_engine.exceptions import ConfigurationError


@dataclass
class LedgerPolicy:
    """Money, schedule and late-payment constants.

    The late fee for one overdue installment is the larger of
    ``late_fee_flat`` and ``late_fee_percent`` of the monthly payment.
    A payment is late when it arrives more than ``grace_period_days``
    after ``next_payment_date``.
    """

    currency: str = "USD"
    minor_unit: Decimal = Decimal("0.01")
    first_payment_days: int = 30
    grace_period_days: int = 5
    late_fee_flat: Decimal = Decimal("25.00")
    late_fee_percent: Decimal = Decimal("0.05")
    required_confirmations: int = 3
    refund_overpayment: bool = True

    def late_fee_for(self, monthly_payment: Decimal) -> Decimal:
        """Return the fee charged for one late installment."""
        from loan_engine.ledger import to_money

        percent_fee = to_money(monthly_payment * self.late_fee_percent, self.minor_unit)
        return max(to_money(self.late_fee_flat, self.minor_unit), percent_fee)


@dataclass
class LockConfig:
    """Per-loan serialization settings."""

    timeout_seconds: float = 5.0


@dataclass
class TreasuryConfig:
    """Funding source for disbursements (None disables the treasury debit)."""

    account_id: str | None = None


@dataclass
class PostgresConfig:
    """PostgreSQL connection configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "loans"
    user: str = "postgres"
    password: str = "postgres"

    @property
    def connection_string(self) -> str:
        """Get connection string."""
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


@dataclass
class KafkaConfig:
    """Kafka producer configuration for audit events."""

    bootstrap_servers: str = "localhost:9092"
    acks: str = "all"
    batch_size: int = 16384
    linger_ms: int = 5
    compression: str = "snappy"
    retries: int = 3
    audit_topic: str = "bank.loans.audit"
    enabled: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to confluent-kafka config dict."""
        return {
            "bootstrap.servers": self.bootstrap_servers,
            "acks": self.acks,
            "batch.size": self.batch_size,
            "linger.ms": self.linger_ms,
            "compression.type": self.compression,
            "retries": self.retries,
        }


@dataclass
class EngineConfig:
    """Main configuration for loan-engine."""

    policy: LedgerPolicy = field(default_factory=LedgerPolicy)
    locks: LockConfig = field(default_factory=LockConfig)
    treasury: TreasuryConfig = field(default_factory=TreasuryConfig)
    postgres: PostgresConfig = field(default_factory=PostgresConfig)
    kafka: KafkaConfig = field(default_factory=KafkaConfig)
    log_level: str = "INFO"
    log_format: str = "standard"

    def __post_init__(self) -> None:
        if self.policy.grace_period_days < 0:
            raise ConfigurationError("grace_period_days must be >= 0")
        if self.policy.first_payment_days <= 0:
            raise ConfigurationError("first_payment_days must be > 0")
        if self.policy.required_confirmations < 0:
            raise ConfigurationError("required_confirmations must be >= 0")
        if self.policy.late_fee_flat < 0 or self.policy.late_fee_percent < 0:
            raise ConfigurationError("late fee settings must be >= 0")
        if self.locks.timeout_seconds <= 0:
            raise ConfigurationError("lock timeout must be > 0")
        if self.log_format not in ("standard", "json"):
            raise ConfigurationError(f"Unknown log format: {self.log_format}")

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Create config from environment variables."""
        import os

        def _decimal(name: str, default: str) -> Decimal:
            raw = os.getenv(name, default)
            try:
                return Decimal(raw)
            except InvalidOperation as exc:
                raise ConfigurationError(f"{name} is not a decimal: {raw!r}") from exc

        def _int(name: str, default: str) -> int:
            raw = os.getenv(name, default)
            try:
                return int(raw)
            except ValueError as exc:
                raise ConfigurationError(f"{name} is not an integer: {raw!r}") from exc

        def _float(name: str, default: str) -> float:
            raw = os.getenv(name, default)
            try:
                return float(raw)
            except ValueError as exc:
                raise ConfigurationError(f"{name} is not a number: {raw!r}") from exc

        policy = LedgerPolicy(
            currency=os.getenv("LOAN_CURRENCY", "USD"),
            first_payment_days=_int("LOAN_FIRST_PAYMENT_DAYS", "30"),
            grace_period_days=_int("LOAN_GRACE_PERIOD_DAYS", "5"),
            late_fee_flat=_decimal("LOAN_LATE_FEE_FLAT", "25.00"),
            late_fee_percent=_decimal("LOAN_LATE_FEE_PERCENT", "0.05"),
            required_confirmations=_int("LOAN_REQUIRED_CONFIRMATIONS", "3"),
            refund_overpayment=os.getenv("LOAN_REFUND_OVERPAYMENT", "true").lower() == "true",
        )

        locks = LockConfig(
            timeout_seconds=_float("LOAN_LOCK_TIMEOUT", "5.0"),
        )

        treasury = TreasuryConfig(
            account_id=os.getenv("LOAN_TREASURY_ACCOUNT_ID") or None,
        )

        postgres = PostgresConfig(
            host=os.getenv("POSTGRES_HOST", "localhost"),
            port=_int("POSTGRES_PORT", "5432"),
            database=os.getenv("POSTGRES_DB", "loans"),
            user=os.getenv("POSTGRES_USER", "postgres"),
            password=os.getenv("POSTGRES_PASSWORD", "postgres"),
        )

        kafka = KafkaConfig(
            bootstrap_servers=os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092"),
            acks=os.getenv("KAFKA_ACKS", "all"),
            audit_topic=os.getenv("KAFKA_AUDIT_TOPIC", "bank.loans.audit"),
            enabled=os.getenv("KAFKA_ENABLED", "false").lower() == "true",
        )

        return cls(
            policy=policy,
            locks=locks,
            treasury=treasury,
            postgres=postgres,
            kafka=kafka,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "standard"),
        )
