"""
Account holder endpoints: balances, history, referrals and request intake
"""

from fastapi import APIRouter, Depends, status

from .dependencies import get_actor, get_system
from .schemas import (
    DepositRequest, WithdrawRequest,
    overview_to_response, referrals_to_response, transaction_to_response
)
from ..identity import Actor
from ..system import LedgerSystem


router = APIRouter()


@router.get("/{account_id}/overview")
def get_overview(
    account_id: str,
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_system)
):
    """Refresh maturities and profit, then return balances"""
    actor.require_access(account_id)
    overview = system.portfolio.get_overview(account_id)
    return overview_to_response(overview)


@router.get("/{account_id}/transactions")
def list_transactions(
    account_id: str,
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_system)
):
    actor.require_access(account_id)
    transactions = system.portfolio.list_transactions(account_id)
    return {"transactions": [transaction_to_response(t) for t in transactions]}


@router.get("/{account_id}/referrals")
def list_referrals(
    account_id: str,
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_system)
):
    actor.require_access(account_id)
    return referrals_to_response(system.referral_ledger.merged_referrals(account_id))


@router.post("/{account_id}/withdrawals", status_code=status.HTTP_201_CREATED)
def create_withdrawal(
    account_id: str,
    request: WithdrawRequest,
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_system)
):
    """Submit a withdrawal request"""
    actor.require_access(account_id)
    transaction = system.portfolio.create_withdraw_request(
        account_id,
        request.amount,
        request.method,
        bank=request.bank,
        crypto=request.crypto
    )
    return {
        "message": "Withdrawal request submitted",
        "transaction": transaction_to_response(transaction)
    }


@router.post("/{account_id}/deposits", status_code=status.HTTP_201_CREATED)
def create_deposit(
    account_id: str,
    request: DepositRequest,
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_system)
):
    """Submit a deposit request with its payment receipt"""
    actor.require_access(account_id)
    transaction = system.portfolio.create_deposit_request(
        account_id,
        request.amount,
        method=request.method,
        plan=request.plan,
        receipt_url=request.receipt_url,
        details=request.details
    )
    return {
        "message": "Deposit request submitted",
        "transaction": transaction_to_response(transaction)
    }
