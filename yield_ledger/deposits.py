"""
Deposit Settlement Module

Approval turns a pending deposit request into an accruing deposit, adds the
amount to the account's principal and credits referral commission to the
referrer, all inside one atomic unit.
"""

from decimal import Decimal
from datetime import datetime, timezone, timedelta
from dataclasses import dataclass
from typing import Optional

from .accounts import Account, AccountManager, Deposit
from .audit import AuditTrail, AuditEventType
from .config import YieldLedgerConfig, get_config
from .errors import ValidationError
from .identity import Actor
from .money import ZERO, Number, format_money, round_money, to_decimal
from .notifications import NotificationService, PendingNotification
from .portfolio import ConfigProvider
from .rates import RateResolver
from .referrals import ReferralCredit, ReferralLedger
from .settlement import require_pending
from .storage import StorageInterface
from .transactions import Transaction, TransactionKind, TransactionManager, TransactionStatus
from .logging_config import get_logger, log_action


@dataclass
class DepositApprovalResult:
    transaction: Transaction
    account: Account
    deposit: Deposit
    referral_credit: Optional[ReferralCredit] = None


@dataclass
class DepositRejectionResult:
    transaction: Transaction
    account: Account


def resolve_daily_rate(transaction: Transaction, amount: Decimal, resolver: RateResolver) -> Decimal:
    """Plan rate, then the request's own rate, then the tier table"""
    if transaction.plan and transaction.plan.rate_percent is not None:
        return to_decimal(transaction.plan.rate_percent)
    for key in ('rate_percent', 'ratePercent'):
        if transaction.details.get(key) is not None:
            return to_decimal(transaction.details[key])
    return resolver.resolve(amount)


def resolve_window_days(transaction: Transaction, default_days: int) -> int:
    if transaction.plan and transaction.plan.days:
        return int(transaction.plan.days)
    days = transaction.details.get('days')
    if days:
        return int(days)
    return default_days


class DepositApprovalSettlement:
    """
    Approves or rejects deposit requests
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        transaction_manager: TransactionManager,
        referral_ledger: ReferralLedger,
        audit_trail: AuditTrail,
        notifier: Optional[NotificationService] = None,
        config_provider: ConfigProvider = get_config
    ):
        self.storage = storage
        self.account_manager = account_manager
        self.transaction_manager = transaction_manager
        self.referral_ledger = referral_ledger
        self.audit_trail = audit_trail
        self.notifier = notifier or NotificationService()
        self.config_provider = config_provider
        self.logger = get_logger("yield_ledger.deposits")

    def _build_deposit(self, transaction: Transaction, amount: Decimal, now: datetime,
                       config: YieldLedgerConfig) -> Deposit:
        rate = resolve_daily_rate(transaction, amount, RateResolver(config.rate_tiers))
        days = resolve_window_days(transaction, config.default_window_days)
        if days <= 0:
            raise ValidationError("Deposit window must be positive")
        return Deposit(
            amount=amount,
            daily_rate_percent=rate,
            window_days=days,
            start_time=now,
            end_time=now + timedelta(days=days),
            transaction_id=transaction.id
        )

    def approve_deposit(
        self,
        transaction_id: str,
        actor: Actor,
        approved_amount: Optional[Number] = None,
        now: Optional[datetime] = None
    ) -> DepositApprovalResult:
        """
        Approve a pending deposit

        Args:
            transaction_id: Deposit transaction id
            actor: Approving administrator
            approved_amount: Amount actually received (defaults to the requested amount)
            now: Approval instant, which becomes the deposit's start

        Returns:
            DepositApprovalResult including the referral credit, if any

        Raises:
            NotFoundError: Unknown transaction, not a deposit, or account missing
            InvalidStateError: Transaction is not pending
            ValidationError: Amount not positive
        """
        actor.require_admin()
        now = now or datetime.now(timezone.utc)
        config = self.config_provider()

        with self.storage.atomic():
            transaction = self.transaction_manager.require_transaction(transaction_id, TransactionKind.DEPOSIT)
            require_pending(transaction)
            account = self.account_manager.require_account(transaction.account_id)

            amount = round_money(approved_amount if approved_amount is not None else transaction.amount)
            if amount <= ZERO:
                raise ValidationError("Approved amount must be positive")

            deposit = self._build_deposit(transaction, amount, now, config)
            account.deposits.append(deposit)
            account.principal = round_money(account.principal + amount)
            self.account_manager.save_account(account)

            transaction.status = TransactionStatus.APPROVED
            transaction.approved_at = now
            transaction.admin_remarks = f"Approved by {actor.label}"
            transaction.details['approved_amount'] = str(amount)
            transaction.details['approved_snapshot'] = {
                'amount': str(amount),
                'rate_percent': str(deposit.daily_rate_percent),
                'days': deposit.window_days,
                'approved_by': actor.label,
                'approved_at': now.isoformat()
            }
            self.transaction_manager.save_transaction(transaction)

            self.audit_trail.record(
                actor.account_id,
                AuditEventType.APPROVE_DEPOSIT,
                metadata={
                    'transaction_id': transaction.id,
                    'account_id': account.id,
                    'deposit_id': deposit.id,
                    'amount': amount,
                    'rate_percent': deposit.daily_rate_percent,
                    'days': deposit.window_days
                },
                entity_id=transaction.id
            )

            credit = self.referral_ledger.propagate(
                account, amount, config.referral_rate,
                actor_id=actor.account_id,
                transaction_id=transaction.id
            )

        log_action(
            self.logger, "info", "Deposit approved",
            user_id=actor.account_id,
            action="approve-deposit",
            resource=f"transaction:{transaction.id}",
            extra={
                'amount': str(amount),
                'account_id': account.id,
                'referral_commission': str(credit.commission) if credit else None
            }
        )

        pending = [
            PendingNotification(
                address=account.email,
                subject=f"Deposit approved: {format_money(amount)}",
                body=(
                    f"Your deposit of {format_money(amount)} has been approved.\n"
                    f"Daily rate: {deposit.daily_rate_percent}%\n"
                    f"Plan length: {deposit.window_days} days\n"
                    f"Capital: {format_money(account.principal)}"
                )
            ),
            PendingNotification(
                subject=f"Deposit approved: {account.email} {format_money(amount)}",
                body=(
                    f"Deposit {transaction.id} approved by {actor.label}\n"
                    f"Account: {account.email}\n"
                    f"Amount: {format_money(amount)}\n"
                    f"Referral commission: {format_money(credit.commission) if credit else 'none'}"
                )
            ),
        ]
        self.notifier.dispatch(pending)
        return DepositApprovalResult(transaction=transaction, account=account, deposit=deposit, referral_credit=credit)

    def reject_deposit(
        self,
        transaction_id: str,
        actor: Actor,
        reason: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> DepositRejectionResult:
        """Reject a pending deposit; no balances change"""
        actor.require_admin()

        with self.storage.atomic():
            transaction = self.transaction_manager.require_transaction(transaction_id, TransactionKind.DEPOSIT)
            require_pending(transaction)
            account = self.account_manager.require_account(transaction.account_id)

            transaction.status = TransactionStatus.REJECTED
            transaction.admin_remarks = reason or f"Rejected by {actor.label}"
            transaction.details['rejected_at'] = (now or datetime.now(timezone.utc)).isoformat()
            self.transaction_manager.save_transaction(transaction)

            self.audit_trail.record(
                actor.account_id,
                AuditEventType.REJECT_DEPOSIT,
                metadata={'transaction_id': transaction.id, 'reason': reason},
                entity_id=transaction.id
            )

        log_action(
            self.logger, "info", "Deposit rejected",
            user_id=actor.account_id,
            action="reject-deposit",
            resource=f"transaction:{transaction.id}"
        )
        self.notifier.dispatch([PendingNotification(
            address=account.email,
            subject="Deposit rejected",
            body=f"Your deposit request was rejected. Reason: {reason or 'No reason provided'}"
        )])
        return DepositRejectionResult(transaction=transaction, account=account)
