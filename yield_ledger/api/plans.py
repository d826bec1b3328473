"""
Plan preview endpoints
"""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query

from .dependencies import get_system
from .schemas import projection_to_response
from ..accrual import plan_projection
from ..rates import RateResolver
from ..system import LedgerSystem


router = APIRouter()


@router.get("/rates")
def list_rate_tiers(system: LedgerSystem = Depends(get_system)):
    """Daily rate tiers by deposit amount"""
    resolver = RateResolver(system.config_provider().rate_tiers)
    return {
        "tiers": [
            {"threshold": str(tier.threshold), "rate_percent": str(tier.rate_percent)}
            for tier in resolver.tiers
        ]
    }


@router.get("/preview")
def preview_plan(
    amount: Decimal = Query(..., gt=0),
    rate_percent: Optional[Decimal] = Query(None, ge=0),
    days: Optional[int] = Query(None, gt=0),
    system: LedgerSystem = Depends(get_system)
):
    """Approximate payout of a plan; the rate defaults to the amount's tier"""
    config = system.config_provider()
    if rate_percent is None:
        rate_percent = RateResolver(config.rate_tiers).resolve(amount)
    projection = plan_projection(amount, rate_percent, days or config.default_window_days)
    return projection_to_response(projection)
