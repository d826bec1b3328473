"""
Net Profit Recalculation Module

Produces the authoritative available-profit figure for an account:

    available = max(0, accrued profit of active deposits
                       - profit already paid out by approved withdrawals)

The figure is a deterministic function of persisted history, so concurrent
readers recomputing it all write the same value.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import List, Optional

from .accounts import Account
from .accrual import MATURITY_DAYS, profit_for_deposit
from .money import ZERO, non_negative, round_money, to_decimal
from .rates import RateResolver
from .transactions import Transaction, TransactionManager
from .logging_config import get_logger


@dataclass
class NetProfitResult:
    """Breakdown of a recalculation"""
    gross_accrued: Decimal
    withdrawn_from_profit: Decimal
    available: Decimal
    degraded_deposits: List[str] = field(default_factory=list)


def profit_drawn_by(transaction: Transaction) -> Decimal:
    """
    How much of an approved withdrawal came out of available profit

    Uses the recorded breakdown when present. Older records only carry the
    balance snapshot taken at request time; for those, profit is assumed to
    be drawn before commission: min(snapshot profit, approved amount).
    """
    details = transaction.details or {}

    breakdown = details.get('approved_breakdown')
    if isinstance(breakdown, dict) and breakdown.get('from_profit') is not None:
        return to_decimal(breakdown['from_profit'])

    snapshot = details.get('snapshot') or {}
    snapshot_profit = snapshot.get('available_profit', snapshot.get('netProfit'))
    snapshot_profit = to_decimal(snapshot_profit)
    return min(snapshot_profit, transaction.approved_amount)


class NetProfitRecalculator:
    """Recomputes available profit from deposits and withdrawal history"""

    def __init__(
        self,
        transaction_manager: TransactionManager,
        rate_resolver: Optional[RateResolver] = None,
        cap_days: int = MATURITY_DAYS
    ):
        self.transaction_manager = transaction_manager
        self.rate_resolver = rate_resolver
        self.cap_days = cap_days
        self.logger = get_logger("yield_ledger.net_profit")

    def gross_accrued(self, account: Account, as_of: datetime, degraded: List[str]) -> Decimal:
        """Sum of accrual over active deposits; a failing deposit counts as zero"""
        total = ZERO
        for deposit in account.active_deposits:
            try:
                total += profit_for_deposit(deposit, as_of, self.rate_resolver, self.cap_days)
            except Exception as e:
                degraded.append(deposit.id)
                self.logger.warning(
                    f"Accrual failed for deposit {deposit.id} on account {account.id}: {e}",
                    exc_info=True
                )
        return round_money(total)

    def withdrawn_from_profit(self, account: Account) -> Decimal:
        total = ZERO
        for transaction in self.transaction_manager.approved_withdrawals(account.id):
            total += profit_drawn_by(transaction)
        return round_money(total)

    def recalculate(self, account: Account, as_of: Optional[datetime] = None) -> NetProfitResult:
        """
        Recompute available profit

        Expects deposit statuses to be current (maturity already finalized).
        Does not mutate the account; callers assign ``result.available``.
        """
        as_of = as_of or datetime.now(timezone.utc)
        degraded: List[str] = []

        gross = self.gross_accrued(account, as_of, degraded)
        withdrawn = self.withdrawn_from_profit(account)

        return NetProfitResult(
            gross_accrued=gross,
            withdrawn_from_profit=withdrawn,
            available=non_negative(gross - withdrawn),
            degraded_deposits=degraded
        )

    def refresh(self, account: Account, as_of: Optional[datetime] = None) -> NetProfitResult:
        """Recalculate and assign the result to ``account.available_profit``"""
        result = self.recalculate(account, as_of)
        account.available_profit = result.available
        return result
