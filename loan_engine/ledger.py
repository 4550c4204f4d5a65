"""Money arithmetic and amortization schedules.

All amounts are ``Decimal`` quantized to the smallest currency unit with
round-half-up. Interest is simple monthly interest on the outstanding
balance: ``balance * (annual_rate / 100 / 12)``.
"""

import calendar
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from loan_engine.exceptions import ValidationError
from loan_engine.models.loan import ScheduledInstallment

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
MONTHS_PER_YEAR = 12


@dataclass(frozen=True)
class Allocation:
    """Split of a received amount, in the order it is satisfied."""

    late_fee: Decimal
    interest: Decimal
    principal: Decimal
    excess: Decimal

    @property
    def applied(self) -> Decimal:
        return self.late_fee + self.interest + self.principal


def to_money(value: Decimal | int | str | float, minor_unit: Decimal = CENT) -> Decimal:
    """Quantize ``value`` to the minor unit using round-half-up."""
    if isinstance(value, float):
        value = Decimal(str(value))
    elif not isinstance(value, Decimal):
        value = Decimal(value)
    return value.quantize(minor_unit, rounding=ROUND_HALF_UP)


def monthly_rate(annual_rate_percent: Decimal) -> Decimal:
    """Convert a percent-per-annum rate to a monthly fraction."""
    return Decimal(annual_rate_percent) / Decimal(100) / MONTHS_PER_YEAR


def monthly_interest(
    balance: Decimal,
    annual_rate_percent: Decimal,
    minor_unit: Decimal = CENT,
) -> Decimal:
    """Interest due for one month on ``balance``."""
    return to_money(balance * monthly_rate(annual_rate_percent), minor_unit)


def amortized_payment(
    principal: Decimal,
    annual_rate_percent: Decimal,
    term_months: int,
    minor_unit: Decimal = CENT,
) -> Decimal:
    """Constant monthly payment for a declining-balance loan.

    Parameters
    ----------
    principal : Decimal
        Amount borrowed.
    annual_rate_percent : Decimal
        Interest rate in percent per annum.
    term_months : int
        Number of monthly installments.
    minor_unit : Decimal
        Smallest currency unit for rounding.

    Returns
    -------
    Decimal
        Rounded payment; the final installment absorbs the residual.
    """
    if term_months <= 0:
        raise ValidationError("term_months must be positive")
    if principal <= 0:
        raise ValidationError("principal must be positive")
    if annual_rate_percent < 0:
        raise ValidationError("interest_rate must not be negative")

    rate = monthly_rate(annual_rate_percent)
    if rate == 0:
        return to_money(principal / term_months, minor_unit)

    factor = (1 + rate) ** term_months
    return to_money(principal * rate * factor / (factor - 1), minor_unit)


def project_schedule(
    balance: Decimal,
    annual_rate_percent: Decimal,
    payment_amount: Decimal,
    installments: int,
    first_due_date: date,
    minor_unit: Decimal = CENT,
    first_number: int = 1,
    anchor: date | None = None,
) -> list[ScheduledInstallment]:
    """Project the installments that retire ``balance``.

    The last installment pays whatever balance is left, so the principal
    portions always sum to exactly ``balance``. Due dates keep the day of
    ``anchor`` (the loan's first due date), defaulting to ``first_due_date``.
    """
    anchor = anchor or first_due_date
    schedule: list[ScheduledInstallment] = []
    remaining = to_money(balance, minor_unit)

    for offset in range(installments):
        if remaining <= 0:
            break
        interest = monthly_interest(remaining, annual_rate_percent, minor_unit)
        if offset == installments - 1:
            principal_part = remaining
        else:
            principal_part = min(max(payment_amount - interest, ZERO), remaining)
        remaining -= principal_part

        schedule.append(
            ScheduledInstallment(
                installment_number=first_number + offset,
                due_date=following_due_date(anchor, first_due_date, offset),
                payment_amount=principal_part + interest,
                interest_amount=interest,
                principal_amount=principal_part,
                balance_after=remaining,
            )
        )

    return schedule


def amortization_schedule(
    principal: Decimal,
    annual_rate_percent: Decimal,
    term_months: int,
    first_due_date: date,
    minor_unit: Decimal = CENT,
) -> list[ScheduledInstallment]:
    """Full schedule for a new loan."""
    payment = amortized_payment(principal, annual_rate_percent, term_months, minor_unit)
    return project_schedule(
        principal, annual_rate_percent, payment, term_months, first_due_date, minor_unit
    )


def allocate_payment(
    amount: Decimal,
    late_fee_due: Decimal,
    interest_due: Decimal,
    balance: Decimal,
) -> Allocation:
    """Split ``amount`` into late fee, then interest, then principal.

    Principal is clamped to ``balance``; whatever is left over is excess.
    """
    late_fee = min(late_fee_due, amount)
    left = amount - late_fee
    interest = min(interest_due, left)
    left -= interest
    principal = min(left, balance)
    return Allocation(
        late_fee=late_fee,
        interest=interest,
        principal=principal,
        excess=left - principal,
    )


def is_late(as_of: date, due_date: date | None, grace_period_days: int) -> bool:
    """Whether a payment made on ``as_of`` is past due plus grace."""
    if due_date is None:
        return False
    return as_of > due_date + timedelta(days=grace_period_days)


def add_months(day: date, months: int) -> date:
    """Shift ``day`` by calendar months, clamping to the month end."""
    month_index = day.month - 1 + months
    year = day.year + month_index // MONTHS_PER_YEAR
    month = month_index % MONTHS_PER_YEAR + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def months_between(start: date, end: date) -> int:
    """Whole calendar months from ``start`` to ``end``, ignoring the day."""
    return (end.year - start.year) * MONTHS_PER_YEAR + end.month - start.month


def following_due_date(anchor: date, due_date: date, months: int = 1) -> date:
    """Due date ``months`` after ``due_date`` on a schedule that began at ``anchor``.

    Every due date is taken from ``anchor`` so a clamped month end (Jan 31
    to Feb 28) does not carry into the months after it.
    """
    return add_months(anchor, months_between(anchor, due_date) + months)


def make_reference(prefix: str, moment: datetime) -> str:
    """Human-readable reference such as ``LN-20260101120000-3F9A1C``."""
    return f"{prefix}-{moment:%Y%m%d%H%M%S}-{uuid.uuid4().hex[:6].upper()}"


def new_id() -> str:
    return str(uuid.uuid4())
