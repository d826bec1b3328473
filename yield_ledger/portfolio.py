"""
Portfolio Module

Balance reads and request intake. A balance read first finalizes matured
deposits, then recomputes available profit, and persists both inside one
atomic unit so that it never observes a settlement half-applied.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .accounts import Account, AccountManager, Deposit
from .audit import AuditTrail, AuditEventType
from .config import YieldLedgerConfig, get_config
from .errors import ValidationError
from .lifecycle import DepositLifecycleManager
from .money import ZERO, Number, format_money, to_decimal
from .net_profit import NetProfitRecalculator, NetProfitResult
from .notifications import NotificationService, PendingNotification
from .rates import RateResolver
from .storage import StorageInterface
from .transactions import (
    DepositPlan, Transaction, TransactionKind, TransactionManager, parse_payment_method
)
from .logging_config import get_logger, log_action


ConfigProvider = Callable[[], YieldLedgerConfig]


@dataclass
class AccountOverview:
    """Balances returned to the account holder after a refresh"""
    account_id: str
    principal: Decimal
    available_profit: Decimal
    referral_commission: Decimal
    total_portfolio: Decimal
    deposits: List[Deposit] = field(default_factory=list)
    matured_deposits: List[str] = field(default_factory=list)
    degraded_deposits: List[str] = field(default_factory=list)

    @classmethod
    def for_account(cls, account: Account, matured: List[Deposit] = (),
                    result: Optional[NetProfitResult] = None) -> 'AccountOverview':
        return cls(
            account_id=account.id,
            principal=account.principal,
            available_profit=account.available_profit,
            referral_commission=account.referral_commission,
            total_portfolio=account.total_portfolio,
            deposits=list(account.deposits),
            matured_deposits=[d.id for d in matured],
            degraded_deposits=list(result.degraded_deposits) if result else []
        )


class PortfolioService:
    """
    Refreshes balances and accepts new deposit / withdrawal requests
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        transaction_manager: TransactionManager,
        audit_trail: AuditTrail,
        notifier: Optional[NotificationService] = None,
        config_provider: ConfigProvider = get_config
    ):
        self.storage = storage
        self.account_manager = account_manager
        self.transaction_manager = transaction_manager
        self.audit_trail = audit_trail
        self.notifier = notifier or NotificationService()
        self.config_provider = config_provider
        self.logger = get_logger("yield_ledger.portfolio")

    def refresh_account(self, account: Account, now: Optional[datetime] = None,
                        config: Optional[YieldLedgerConfig] = None) -> Tuple[List[Deposit], NetProfitResult]:
        """
        Finalize maturities, then recompute available profit, and persist

        Runs inside the caller's atomic unit when there is one.
        """
        config = config or self.config_provider()
        now = now or datetime.now(timezone.utc)

        lifecycle = DepositLifecycleManager(self.audit_trail, config.maturity_days)
        recalculator = NetProfitRecalculator(
            self.transaction_manager,
            RateResolver(config.rate_tiers),
            config.maturity_days
        )

        with self.storage.atomic():
            matured = lifecycle.finalize_matured(account, now)
            if matured:
                self.account_manager.save_account(account)

            result = recalculator.refresh(account, now)
            self.account_manager.save_account(account)

        return matured, result

    def get_overview(self, account_id: str, now: Optional[datetime] = None) -> AccountOverview:
        """Balance read: refresh and return the account's balances"""
        with self.storage.atomic():
            account = self.account_manager.require_account(account_id)
            matured, result = self.refresh_account(account, now)

        if result.degraded_deposits:
            log_action(
                self.logger, "warning", "Overview computed with degraded deposits",
                resource=f"account:{account_id}",
                extra={'deposits': result.degraded_deposits}
            )
        return AccountOverview.for_account(account, matured, result)

    def list_transactions(self, account_id: str) -> List[Transaction]:
        self.account_manager.require_account(account_id)
        return self.transaction_manager.list_for_account(account_id)

    def create_withdraw_request(
        self,
        account_id: str,
        amount: Number,
        method: Any,
        bank: Optional[Dict[str, Any]] = None,
        crypto: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None
    ) -> Transaction:
        """
        Submit a withdrawal request against freshly recomputed balances

        Args:
            account_id: Requesting account
            amount: Requested amount
            method: "bank", "crypto", a catalogue id or a method object
            bank: Bank details for a "bank" method
            crypto: Wallet details for a "crypto" method

        Returns:
            The pending Transaction, carrying a balance snapshot

        Raises:
            NotFoundError: Unknown account
            ValidationError: Bad amount, insufficient balance, missing method details
        """
        config = self.config_provider()
        amount = to_decimal(amount)
        if amount <= ZERO:
            raise ValidationError("Invalid amount")
        if amount < config.min_withdrawal_amount:
            raise ValidationError(f"Minimum withdrawal is {format_money(config.min_withdrawal_amount)}")

        payout = parse_payment_method(method, bank, crypto)
        if payout is None:
            raise ValidationError("Payout method is required")
        payout.validate_for_payout()

        with self.storage.atomic():
            account = self.account_manager.require_account(account_id)
            self.refresh_account(account, now, config)

            if amount > account.withdrawable:
                raise ValidationError("Amount exceeds available withdrawal balance")

            snapshot = account.balance_snapshot()
            snapshot['email'] = account.email
            snapshot['name'] = account.name
            snapshot['created_at'] = (now or datetime.now(timezone.utc)).isoformat()

            transaction = self.transaction_manager.create_transaction(
                account_id=account.id,
                kind=TransactionKind.WITHDRAW,
                amount=amount,
                method=payout,
                details={'snapshot': snapshot}
            )
            self.audit_trail.record(
                account.id,
                AuditEventType.WITHDRAW_REQUESTED,
                metadata={'amount': transaction.amount, 'method': payout.method_type},
                entity_id=transaction.id
            )

        self.notifier.dispatch([PendingNotification(
            subject=f"Withdrawal request: {account.email} {format_money(transaction.amount)}",
            body=(
                f"Account: {account.email}\n"
                f"Requested amount: {format_money(transaction.amount)}\n"
                f"Method: {payout.method_type.value}\n"
                f"Capital: {snapshot['principal']}\n"
                f"Available profit: {snapshot['available_profit']}\n"
                f"Referral commission: {snapshot['referral_commission']}\n"
                f"Transaction id: {transaction.id}"
            )
        )])
        return transaction

    def create_deposit_request(
        self,
        account_id: str,
        amount: Number,
        method: Any = None,
        plan: Optional[Dict[str, Any]] = None,
        receipt_url: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> Transaction:
        """
        Submit a deposit request with its payment receipt

        ``details`` may carry transaction-level ``rate_percent`` / ``days``
        used when the plan does not specify them.
        """
        amount = to_decimal(amount)
        if amount <= ZERO:
            raise ValidationError("Invalid amount")
        if not receipt_url:
            raise ValidationError("Payment receipt is required")

        payment = parse_payment_method(method)
        deposit_plan = DepositPlan.from_raw(plan)

        with self.storage.atomic():
            account = self.account_manager.require_account(account_id)
            transaction = self.transaction_manager.create_transaction(
                account_id=account.id,
                kind=TransactionKind.DEPOSIT,
                amount=amount,
                method=payment,
                plan=deposit_plan,
                receipt_url=receipt_url,
                details=dict(details or {})
            )
            self.audit_trail.record(
                account.id,
                AuditEventType.DEPOSIT_REQUESTED,
                metadata={'amount': transaction.amount, 'receipt_url': receipt_url},
                entity_id=transaction.id
            )

        plan_text = "default"
        if deposit_plan:
            plan_text = f"rate={deposit_plan.rate_percent} days={deposit_plan.days}"
        self.notifier.dispatch([PendingNotification(
            subject=f"Deposit request: {account.email}",
            body=(
                f"Account {account.email} requested a deposit of {format_money(transaction.amount)}\n"
                f"Plan: {plan_text}\n"
                f"Capital: {format_money(account.principal)}\n"
                f"Receipt: {receipt_url}\n"
                f"Transaction id: {transaction.id}"
            )
        )])
        return transaction
