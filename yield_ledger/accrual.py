"""
Profit Accrual Module

Simple (non-compounding) daily profit on a deposit, pro-rated by business
minutes. Weekend time (Saturday, Sunday) earns nothing. Accrual starts at the
deposit's start instant and stops at the earliest of the valuation instant,
the deposit's explicit end and the fixed 60 calendar-day cap.

Day boundaries and weekdays are evaluated in UTC. All functions here are pure:
calling them any number of times with the same inputs yields the same result.
"""

from decimal import Decimal
from datetime import datetime, timezone, timedelta, time, date
from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

from .money import ZERO, Number, round_money, to_decimal

if TYPE_CHECKING:
    from .accounts import Deposit
    from .rates import RateResolver


MATURITY_DAYS = 60
MINUTES_PER_DAY = 24 * 60


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def maturity_instant(start_time: datetime, days: int = MATURITY_DAYS) -> datetime:
    """Start plus a whole number of calendar days"""
    return _as_utc(start_time) + timedelta(days=days)


def business_days_between(start: datetime, end: datetime) -> int:
    """Count weekdays by calendar date in [start, end)"""
    start_date: date = _as_utc(start).date()
    end_date: date = _as_utc(end).date()
    if end_date <= start_date:
        return 0

    count = 0
    current = start_date
    while current < end_date:
        if current.weekday() < 5:
            count += 1
        current += timedelta(days=1)
    return count


def business_minutes_between(start: datetime, end: datetime) -> int:
    """
    Count whole Mon-Fri minutes between two instants (start inclusive, end exclusive)

    Seconds and microseconds are truncated on both bounds before counting.
    The first and last days are clipped to the actual interval.
    """
    start = _as_utc(start)
    end = _as_utc(end)
    if end <= start:
        return 0

    start = start.replace(second=0, microsecond=0)
    end = end.replace(second=0, microsecond=0)

    minutes = 0
    cursor = start
    while cursor < end:
        next_day = datetime.combine(cursor.date() + timedelta(days=1), time.min, tzinfo=timezone.utc)
        segment_end = next_day if next_day < end else end

        if cursor.weekday() < 5:
            minutes += int((segment_end - cursor).total_seconds() // 60)

        cursor = next_day

    return minutes


def accrual_end(deposit: 'Deposit', as_of: datetime, cap_days: int = MATURITY_DAYS) -> datetime:
    """Earliest of as_of, the explicit end and the calendar-day cap"""
    upto = _as_utc(as_of)
    if deposit.end_time is not None and _as_utc(deposit.end_time) < upto:
        upto = _as_utc(deposit.end_time)
    cap = maturity_instant(deposit.start_time, cap_days)
    if cap < upto:
        upto = cap
    return upto


def daily_profit(amount: Number, rate_percent: Number) -> Decimal:
    """Unrounded profit for one full business day"""
    return to_decimal(amount) * (to_decimal(rate_percent) / Decimal('100'))


def profit_for_deposit(
    deposit: 'Deposit',
    as_of: Optional[datetime] = None,
    rate_resolver: Optional['RateResolver'] = None,
    cap_days: int = MATURITY_DAYS
) -> Decimal:
    """
    Profit accrued by a deposit up to ``as_of``

    Args:
        deposit: Deposit terms (amount, daily rate percent, start, optional end)
        as_of: Valuation instant (defaults to now)
        rate_resolver: Used only when the deposit carries no explicit rate
        cap_days: Calendar-day cap measured from the start instant

    Returns:
        Non-negative profit rounded to 2 decimal places
    """
    if deposit is None or deposit.start_time is None:
        return ZERO

    as_of = as_of or datetime.now(timezone.utc)
    start = _as_utc(deposit.start_time)
    upto = accrual_end(deposit, as_of, cap_days)
    if start >= upto:
        return ZERO

    minutes = business_minutes_between(start, upto)
    if minutes <= 0:
        return ZERO

    rate_percent = deposit.daily_rate_percent
    if rate_percent is None:
        if rate_resolver is None:
            from .rates import RateResolver
            rate_resolver = RateResolver.from_config()
        rate_percent = rate_resolver.resolve(deposit.amount)

    profit = daily_profit(deposit.amount, rate_percent) * Decimal(minutes) / Decimal(MINUTES_PER_DAY)
    if profit < 0:
        return ZERO
    return round_money(profit)


@dataclass(frozen=True)
class PlanProjection:
    """Preview of what a plan pays over its window"""
    principal: Decimal
    rate_percent: Decimal
    days: int
    business_days: int
    daily_profit: Decimal
    total_profit: Decimal
    total_after: Decimal


def plan_projection(principal: Number, rate_percent: Number, days: int = MATURITY_DAYS) -> PlanProjection:
    """
    Approximate plan payout for previews

    Business days are estimated as floor(days * 5 / 7); this does not replace
    the minute-accurate accrual used for balances.
    """
    if days <= 0:
        raise ValueError("Plan days must be positive")
    principal = to_decimal(principal)
    rate_percent = to_decimal(rate_percent)

    business_days = (days * 5) // 7
    per_day = daily_profit(principal, rate_percent)
    total = per_day * business_days

    return PlanProjection(
        principal=round_money(principal),
        rate_percent=rate_percent,
        days=days,
        business_days=business_days,
        daily_profit=round_money(per_day),
        total_profit=round_money(total),
        total_after=round_money(principal + total)
    )
