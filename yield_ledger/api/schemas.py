"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from ..accounts import Deposit
from ..accrual import PlanProjection
from ..portfolio import AccountOverview
from ..referrals import ReferralSummary
from ..transactions import Transaction, payment_method_to_dict


# Request schemas
class CreateAccountRequest(BaseModel):
    email: str
    name: str = ""
    referred_by: Optional[str] = None
    account_id: Optional[str] = None


class WithdrawRequest(BaseModel):
    amount: Decimal = Field(..., description="Requested amount")
    method: Union[str, Dict[str, Any]] = Field(..., description='"bank", "crypto", a method id or a method object')
    bank: Optional[Dict[str, Any]] = None
    crypto: Optional[Dict[str, Any]] = None


class DepositRequest(BaseModel):
    amount: Decimal
    receipt_url: Optional[str] = None
    method: Optional[Union[str, Dict[str, Any]]] = None
    plan: Optional[Dict[str, Any]] = None
    details: Optional[Dict[str, Any]] = None


class ApproveRequest(BaseModel):
    approved_amount: Optional[Decimal] = None


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class UpdateBalancesRequest(BaseModel):
    principal: Optional[Decimal] = None
    available_profit: Optional[Decimal] = None
    referral_commission: Optional[Decimal] = None


# Response helpers
def deposit_to_response(deposit: Deposit) -> Dict[str, Any]:
    return deposit.to_dict()


def overview_to_response(overview: AccountOverview) -> Dict[str, Any]:
    return {
        "account_id": overview.account_id,
        "principal": str(overview.principal),
        "available_profit": str(overview.available_profit),
        "referral_commission": str(overview.referral_commission),
        "total_portfolio": str(overview.total_portfolio),
        "deposits": [deposit_to_response(d) for d in overview.deposits],
        "matured_deposits": overview.matured_deposits,
        "degraded_deposits": overview.degraded_deposits
    }


def transaction_to_response(transaction: Transaction) -> Dict[str, Any]:
    return {
        "id": transaction.id,
        "account_id": transaction.account_id,
        "kind": transaction.kind.value,
        "amount": str(transaction.amount),
        "status": transaction.status.value,
        "method": payment_method_to_dict(transaction.method),
        "plan": transaction.plan.to_dict() if transaction.plan else None,
        "receipt_url": transaction.receipt_url,
        "details": transaction.details,
        "admin_remarks": transaction.admin_remarks,
        "created_at": transaction.created_at.isoformat(),
        "approved_at": transaction.approved_at.isoformat() if transaction.approved_at else None
    }


def referrals_to_response(summary: ReferralSummary) -> Dict[str, Any]:
    rows: List[Dict[str, Any]] = [
        {
            "account_id": row.account_id,
            "email": row.email,
            "capital": str(row.capital),
            "commission_earned": str(row.commission_earned),
            "created_at": row.created_at.isoformat() if row.created_at else None,
            "source": row.source
        }
        for row in summary.referrals
    ]
    return {"referrals": rows, "total_commission": str(summary.total_commission)}


def projection_to_response(projection: PlanProjection) -> Dict[str, Any]:
    return {
        "principal": str(projection.principal),
        "rate_percent": str(projection.rate_percent),
        "days": projection.days,
        "business_days": projection.business_days,
        "daily_profit": str(projection.daily_profit),
        "total_profit": str(projection.total_profit),
        "total_after": str(projection.total_after)
    }
