"""
Rate Tier Module

Maps a principal amount to a daily rate percent from a static ascending
tier table. Used only when neither the deposit nor its approval plan
carries an explicit rate.
"""

from decimal import Decimal
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

from .money import Number, to_decimal


@dataclass(frozen=True)
class RateTier:
    """A deposit threshold and the daily rate percent it earns"""
    threshold: Decimal
    rate_percent: Decimal

    def __post_init__(self):
        object.__setattr__(self, 'threshold', to_decimal(self.threshold))
        object.__setattr__(self, 'rate_percent', to_decimal(self.rate_percent))
        if self.threshold < 0:
            raise ValueError("Tier threshold cannot be negative")
        if self.rate_percent < 0:
            raise ValueError("Tier rate cannot be negative")


class RateResolver:
    """
    Immutable tier lookup

    Exact threshold match wins; otherwise the highest tier whose threshold
    is <= amount; amounts below the lowest tier get the lowest tier's rate.
    """

    def __init__(self, tiers: Iterable[Tuple[Number, Number]]):
        ordered = sorted(
            (tier if isinstance(tier, RateTier) else RateTier(*tier) for tier in tiers),
            key=lambda tier: tier.threshold
        )
        if not ordered:
            raise ValueError("Rate table must contain at least one tier")
        self._tiers: Tuple[RateTier, ...] = tuple(ordered)

    @classmethod
    def from_config(cls, config=None) -> 'RateResolver':
        if config is None:
            from .config import get_config
            config = get_config()
        return cls(config.rate_tiers)

    @property
    def tiers(self) -> Sequence[RateTier]:
        return self._tiers

    def resolve(self, amount: Number) -> Decimal:
        amount = to_decimal(amount)

        for tier in self._tiers:
            if tier.threshold == amount:
                return tier.rate_percent

        for tier in reversed(self._tiers):
            if amount >= tier.threshold:
                return tier.rate_percent

        return self._tiers[0].rate_percent


def rate_for_amount(amount: Number, resolver: Optional[RateResolver] = None) -> Decimal:
    """Daily rate percent for a principal using the configured tier table"""
    resolver = resolver or RateResolver.from_config()
    return resolver.resolve(amount)
