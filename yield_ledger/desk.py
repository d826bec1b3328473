"""
Settlement desk: routes an administrator decision to the settlement for the
request's kind
"""

from datetime import datetime
from typing import Optional, Union

from .deposits import DepositApprovalResult, DepositApprovalSettlement, DepositRejectionResult
from .identity import Actor
from .money import Number
from .settlement import LedgerSettlement, SettlementResult
from .transactions import TransactionKind, TransactionManager


ApprovalResult = Union[SettlementResult, DepositApprovalResult]
RejectionResult = Union[SettlementResult, DepositRejectionResult]


class SettlementDesk:
    """Single entry point for approve / reject on any pending request"""

    def __init__(self, transaction_manager: TransactionManager,
                 withdrawals: LedgerSettlement, deposits: DepositApprovalSettlement):
        self.transaction_manager = transaction_manager
        self.withdrawals = withdrawals
        self.deposits = deposits

    def approve(self, transaction_id: str, actor: Actor, approved_amount: Optional[Number] = None,
                now: Optional[datetime] = None) -> ApprovalResult:
        actor.require_admin()
        transaction = self.transaction_manager.require_transaction(transaction_id)
        if transaction.kind == TransactionKind.WITHDRAW:
            return self.withdrawals.approve_withdrawal(transaction_id, actor, approved_amount, now)
        return self.deposits.approve_deposit(transaction_id, actor, approved_amount, now)

    def reject(self, transaction_id: str, actor: Actor, reason: Optional[str] = None,
               now: Optional[datetime] = None) -> RejectionResult:
        actor.require_admin()
        transaction = self.transaction_manager.require_transaction(transaction_id)
        if transaction.kind == TransactionKind.WITHDRAW:
            return self.withdrawals.reject_withdrawal(transaction_id, actor, reason, now)
        return self.deposits.reject_deposit(transaction_id, actor, reason, now)
