"""
Administrator endpoints: provisioning, request decisions, balance overrides
"""

from typing import Optional

from fastapi import APIRouter, Depends, status

from .dependencies import get_actor, get_system
from .schemas import (
    ApproveRequest, CreateAccountRequest, RejectRequest, UpdateBalancesRequest,
    transaction_to_response
)
from ..deposits import DepositApprovalResult
from ..identity import Actor
from ..system import LedgerSystem


router = APIRouter()


@router.post("/accounts", status_code=status.HTTP_201_CREATED)
def create_account(
    request: CreateAccountRequest,
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_system)
):
    """Provision a ledger account, linking it to its referrer"""
    actor.require_admin()
    account = system.account_manager.create_account(
        email=request.email,
        name=request.name,
        referred_by=request.referred_by,
        account_id=request.account_id
    )
    return {"account_id": account.id, "email": account.email, "message": "Account created successfully"}


@router.post("/requests/{transaction_id}/approve")
def approve_request(
    transaction_id: str,
    request: Optional[ApproveRequest] = None,
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_system)
):
    """Approve a pending deposit or withdrawal"""
    approved_amount = request.approved_amount if request else None
    result = system.desk.approve(transaction_id, actor, approved_amount)

    response = {
        "message": "Request approved",
        "transaction": transaction_to_response(result.transaction),
        "balances": result.account.balance_snapshot()
    }
    if isinstance(result, DepositApprovalResult):
        credit = result.referral_credit
        response["deposit_id"] = result.deposit.id
        response["referral_commission"] = str(credit.commission) if credit else None
    else:
        response["breakdown"] = result.deduction.to_dict()
        response["warnings"] = result.warnings
    return response


@router.post("/requests/{transaction_id}/reject")
def reject_request(
    transaction_id: str,
    request: Optional[RejectRequest] = None,
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_system)
):
    reason = request.reason if request else None
    result = system.desk.reject(transaction_id, actor, reason)
    return {"message": "Request rejected", "transaction": transaction_to_response(result.transaction)}


@router.put("/accounts/{account_id}/balances")
def update_balances(
    account_id: str,
    request: UpdateBalancesRequest,
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_system)
):
    """Override an account's balances"""
    actor.require_admin()
    account = system.account_manager.update_balances(
        actor.account_id,
        account_id,
        principal=request.principal,
        available_profit=request.available_profit,
        referral_commission=request.referral_commission
    )
    return {"account_id": account.id, "balances": account.balance_snapshot()}


@router.get("/audit/verify")
def verify_audit_trail(
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_system)
):
    actor.require_admin()
    return system.audit_trail.verify_integrity()
