"""
Withdrawal Settlement Module

Applies an administrator's decision on a pending withdrawal. Approval
re-validates against freshly recomputed balances and performs the cascading
deduction (available profit first, then referral commission). The
transaction status, the account balances and the audit entry are written in
one atomic unit; notifications go out only after it commits.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import List, Optional

from .accounts import Account, AccountManager
from .audit import AuditTrail, AuditEventType
from .config import get_config
from .errors import InvalidStateError, ValidationError
from .identity import Actor
from .money import ZERO, Number, format_money, round_money
from .notifications import NotificationService, PendingNotification
from .portfolio import ConfigProvider, PortfolioService
from .storage import StorageInterface
from .transactions import Transaction, TransactionKind, TransactionManager, TransactionStatus
from .logging_config import get_logger, log_action


@dataclass(frozen=True)
class DeductionResult:
    """Outcome of a cascading deduction"""
    requested: Decimal
    from_profit: Decimal
    from_commission: Decimal
    profit_after: Decimal
    commission_after: Decimal
    shortfall: Decimal

    @property
    def has_shortfall(self) -> bool:
        return self.shortfall > ZERO

    def to_dict(self):
        return {
            'requested': str(self.requested),
            'from_profit': str(self.from_profit),
            'from_commission': str(self.from_commission),
            'profit_after': str(self.profit_after),
            'commission_after': str(self.commission_after),
            'shortfall': str(self.shortfall)
        }


def cascade_deduction(profit: Number, commission: Number, amount: Number) -> DeductionResult:
    """
    Take ``amount`` from profit first, then from commission

    Whatever neither balance can cover is returned as ``shortfall``.
    """
    profit = round_money(profit)
    commission = round_money(commission)
    remaining = round_money(amount)
    if remaining < ZERO:
        raise ValueError("Deduction amount cannot be negative")
    requested = remaining

    from_profit = min(max(profit, ZERO), remaining)
    remaining -= from_profit

    from_commission = min(max(commission, ZERO), remaining)
    remaining -= from_commission

    return DeductionResult(
        requested=requested,
        from_profit=round_money(from_profit),
        from_commission=round_money(from_commission),
        profit_after=round_money(profit - from_profit),
        commission_after=round_money(commission - from_commission),
        shortfall=round_money(remaining)
    )


@dataclass
class SettlementResult:
    """What a settlement decision did"""
    transaction: Transaction
    account: Account
    deduction: Optional[DeductionResult] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def has_shortfall(self) -> bool:
        return bool(self.deduction and self.deduction.has_shortfall)


def require_pending(transaction: Transaction) -> None:
    if transaction.status != TransactionStatus.PENDING:
        raise InvalidStateError("Request already processed")


class LedgerSettlement:
    """
    Approves or rejects withdrawal requests
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        transaction_manager: TransactionManager,
        portfolio: PortfolioService,
        audit_trail: AuditTrail,
        notifier: Optional[NotificationService] = None,
        config_provider: ConfigProvider = get_config
    ):
        self.storage = storage
        self.account_manager = account_manager
        self.transaction_manager = transaction_manager
        self.portfolio = portfolio
        self.audit_trail = audit_trail
        self.notifier = notifier or NotificationService()
        self.config_provider = config_provider
        self.logger = get_logger("yield_ledger.settlement")

    def approve_withdrawal(
        self,
        transaction_id: str,
        actor: Actor,
        approved_amount: Optional[Number] = None,
        now: Optional[datetime] = None
    ) -> SettlementResult:
        """
        Approve a pending withdrawal

        Args:
            transaction_id: Withdrawal transaction id
            actor: Approving administrator
            approved_amount: Amount to pay out (defaults to the requested amount)
            now: Approval instant (defaults to now)

        Returns:
            SettlementResult with the deduction breakdown; ``has_shortfall``
            is set when the balances could not cover the full amount

        Raises:
            NotFoundError: Unknown transaction, not a withdrawal, or account missing
            InvalidStateError: Transaction is not pending
            ValidationError: Amount not positive or above available balance
        """
        actor.require_admin()
        now = now or datetime.now(timezone.utc)
        config = self.config_provider()

        with self.storage.atomic():
            transaction = self.transaction_manager.require_transaction(transaction_id, TransactionKind.WITHDRAW)
            require_pending(transaction)
            account = self.account_manager.require_account(transaction.account_id)

            self.portfolio.refresh_account(account, now, config)

            amount = round_money(approved_amount if approved_amount is not None else transaction.amount)
            if amount <= ZERO:
                raise ValidationError("Approved amount must be positive")
            if amount > account.withdrawable:
                raise ValidationError("Approved amount exceeds available withdrawal balance")

            deduction = cascade_deduction(account.available_profit, account.referral_commission, amount)
            account.available_profit = deduction.profit_after
            account.referral_commission = deduction.commission_after
            self.account_manager.save_account(account)

            transaction.status = TransactionStatus.APPROVED
            transaction.approved_at = now
            transaction.admin_remarks = f"Approved by {actor.label}"
            transaction.details['approved_amount'] = str(amount)
            transaction.details['approved_breakdown'] = {
                'from_profit': str(deduction.from_profit),
                'from_commission': str(deduction.from_commission),
                'shortfall': str(deduction.shortfall)
            }
            snapshot = account.balance_snapshot()
            snapshot['approved_at'] = now.isoformat()
            transaction.details['approved_snapshot'] = snapshot
            self.transaction_manager.save_transaction(transaction)

            self.audit_trail.record(
                actor.account_id,
                AuditEventType.APPROVE_WITHDRAW,
                metadata={
                    'transaction_id': transaction.id,
                    'account_id': account.id,
                    'approved_amount': amount,
                    'result': deduction.to_dict()
                },
                entity_id=transaction.id
            )

        result = SettlementResult(transaction=transaction, account=account, deduction=deduction)
        if deduction.has_shortfall:
            message = f"Shortfall of {format_money(deduction.shortfall)} on withdrawal {transaction.id}"
            result.warnings.append(message)
            log_action(
                self.logger, "warning", message,
                user_id=actor.account_id,
                action="approve-withdraw",
                resource=f"transaction:{transaction.id}",
                extra=deduction.to_dict()
            )

        log_action(
            self.logger, "info", "Withdrawal approved",
            user_id=actor.account_id,
            action="approve-withdraw",
            resource=f"transaction:{transaction.id}",
            extra={'amount': str(amount), 'account_id': account.id}
        )

        self.notifier.dispatch([
            PendingNotification(
                address=account.email,
                subject=f"Withdrawal approved: {format_money(amount)}",
                body=(
                    f"Your withdrawal of {format_money(amount)} has been approved and is being processed.\n"
                    f"Net profit after: {format_money(account.available_profit)}\n"
                    f"Referral earnings after: {format_money(account.referral_commission)}"
                )
            ),
            PendingNotification(
                subject=f"Withdrawal approved: {account.email} {format_money(amount)}",
                body=(
                    f"Admin action: withdrawal approved by {actor.label}\n"
                    f"Account: {account.email}\n"
                    f"Amount approved: {format_money(amount)}\n"
                    f"Net profit after: {format_money(account.available_profit)}\n"
                    f"Referral earnings after: {format_money(account.referral_commission)}\n"
                    f"Shortfall: {format_money(deduction.shortfall)}"
                )
            ),
        ])
        return result

    def reject_withdrawal(
        self,
        transaction_id: str,
        actor: Actor,
        reason: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> SettlementResult:
        """Reject a pending withdrawal; balances are left untouched"""
        actor.require_admin()

        with self.storage.atomic():
            transaction = self.transaction_manager.require_transaction(transaction_id, TransactionKind.WITHDRAW)
            require_pending(transaction)
            account = self.account_manager.require_account(transaction.account_id)

            transaction.status = TransactionStatus.REJECTED
            transaction.admin_remarks = reason or f"Rejected by {actor.label}"
            transaction.details['rejected_at'] = (now or datetime.now(timezone.utc)).isoformat()
            self.transaction_manager.save_transaction(transaction)

            self.audit_trail.record(
                actor.account_id,
                AuditEventType.REJECT_WITHDRAW,
                metadata={'transaction_id': transaction.id, 'reason': reason},
                entity_id=transaction.id
            )

        log_action(
            self.logger, "info", "Withdrawal rejected",
            user_id=actor.account_id,
            action="reject-withdraw",
            resource=f"transaction:{transaction.id}"
        )

        self.notifier.dispatch([
            PendingNotification(
                address=account.email,
                subject="Withdrawal rejected",
                body=f"Your withdrawal request was rejected. Reason: {reason or 'No reason provided'}"
            ),
            PendingNotification(
                subject=f"Withdrawal rejected: {account.email} {transaction.id}",
                body=f"Withdrawal request {transaction.id} rejected by {actor.label}. Reason: {reason or 'No reason'}"
            ),
        ])
        return SettlementResult(transaction=transaction, account=account)
