"""
Account Management Module

Per-user ledger accounts holding principal (capital), available profit and
referral commission, plus the deposits and referral snapshot entries the
account owns. Monetary fields are Decimal, non-negative and rounded to
2 decimal places at every mutation.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid

from .money import ZERO, Number, non_negative, round_money, to_decimal
from .storage import StorageInterface, StorageRecord, parse_datetime
from .audit import AuditTrail, AuditEventType
from .errors import NotFoundError, ValidationError


class DepositStatus(Enum):
    """Deposit lifecycle states"""
    ACTIVE = "active"        # Accruing profit
    COMPLETED = "completed"  # Matured, principal released


@dataclass
class Deposit:
    """
    An approved deposit earning simple daily profit

    ``window_days`` is the plan length recorded at approval. Accrual is capped
    at 60 calendar days from ``start_time`` regardless of its value.
    """
    amount: Decimal
    daily_rate_percent: Optional[Decimal]
    window_days: int
    start_time: datetime
    end_time: Optional[datetime] = None
    status: DepositStatus = DepositStatus.ACTIVE
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    transaction_id: Optional[str] = None

    def __post_init__(self):
        self.amount = round_money(self.amount)
        if self.daily_rate_percent is not None:
            self.daily_rate_percent = to_decimal(self.daily_rate_percent)
        if self.amount <= ZERO:
            raise ValueError("Deposit amount must be positive")
        if self.window_days <= 0:
            raise ValueError("Deposit window must be positive")
        self.start_time = parse_datetime(self.start_time)
        self.end_time = parse_datetime(self.end_time)

    @property
    def is_active(self) -> bool:
        return self.status == DepositStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'transaction_id': self.transaction_id,
            'amount': str(self.amount),
            'daily_rate_percent': str(self.daily_rate_percent) if self.daily_rate_percent is not None else None,
            'window_days': self.window_days,
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'status': self.status.value
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Deposit':
        rate = data.get('daily_rate_percent')
        return cls(
            id=data.get('id') or str(uuid.uuid4()),
            transaction_id=data.get('transaction_id'),
            amount=to_decimal(data['amount']),
            daily_rate_percent=to_decimal(rate) if rate is not None else None,
            window_days=int(data.get('window_days') or 60),
            start_time=data['start_time'],
            end_time=data.get('end_time'),
            status=DepositStatus(data.get('status', 'active'))
        )


@dataclass
class ReferralEntry:
    """
    Denormalized commission snapshot a referrer keeps for one referred account

    ``referred_account_id`` is None only for legacy rows known by e-mail.
    """
    email: str
    referred_account_id: Optional[str] = None
    capital_snapshot: Decimal = ZERO
    commission_earned: Decimal = ZERO
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        self.capital_snapshot = non_negative(self.capital_snapshot)
        self.commission_earned = non_negative(self.commission_earned)
        self.created_at = parse_datetime(self.created_at)

    def matches(self, account_id: Optional[str], email: Optional[str]) -> bool:
        if self.referred_account_id and account_id:
            return self.referred_account_id == account_id
        if email and self.email:
            return self.email.lower() == email.lower()
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'referred_account_id': self.referred_account_id,
            'email': self.email,
            'capital_snapshot': str(self.capital_snapshot),
            'commission_earned': str(self.commission_earned),
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReferralEntry':
        return cls(
            referred_account_id=data.get('referred_account_id'),
            email=data.get('email') or "",
            capital_snapshot=to_decimal(data.get('capital_snapshot')),
            commission_earned=to_decimal(data.get('commission_earned')),
            created_at=data.get('created_at') or datetime.now(timezone.utc)
        )


@dataclass
class Account(StorageRecord):
    """
    A user's ledger: principal, available profit and referral commission
    """
    email: str
    name: str = ""
    principal: Decimal = ZERO
    available_profit: Decimal = ZERO
    referral_commission: Decimal = ZERO
    deposits: List[Deposit] = field(default_factory=list)
    referrals: List[ReferralEntry] = field(default_factory=list)
    referred_by: Optional[str] = None

    def __post_init__(self):
        if not self.email or "@" not in self.email:
            raise ValueError("Account email must be a valid address")
        self.email = self.email.lower()
        self.principal = non_negative(self.principal)
        self.available_profit = non_negative(self.available_profit)
        self.referral_commission = non_negative(self.referral_commission)

    @property
    def active_deposits(self) -> List[Deposit]:
        return [d for d in self.deposits if d.is_active]

    @property
    def withdrawable(self) -> Decimal:
        """Profit plus commission, the most a withdrawal can take"""
        return round_money(self.available_profit + self.referral_commission)

    @property
    def total_portfolio(self) -> Decimal:
        return round_money(self.principal + self.available_profit + self.referral_commission)

    def set_balances(
        self,
        principal: Optional[Number] = None,
        available_profit: Optional[Number] = None,
        referral_commission: Optional[Number] = None
    ) -> None:
        """Assign balances, rounding and clamping each at zero"""
        if principal is not None:
            self.principal = non_negative(principal)
        if available_profit is not None:
            self.available_profit = non_negative(available_profit)
        if referral_commission is not None:
            self.referral_commission = non_negative(referral_commission)

    def find_referral(self, account_id: Optional[str], email: Optional[str] = None) -> Optional[ReferralEntry]:
        """Entry for a referred account: identity first, e-mail for legacy rows"""
        if account_id:
            for entry in self.referrals:
                if entry.referred_account_id == account_id:
                    return entry
        if email:
            for entry in self.referrals:
                if entry.referred_account_id is None and entry.matches(None, email):
                    return entry
        return None

    def balance_snapshot(self) -> Dict[str, str]:
        return {
            'principal': str(self.principal),
            'available_profit': str(self.available_profit),
            'referral_commission': str(self.referral_commission),
            'total_portfolio': str(self.total_portfolio)
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'email': self.email,
            'name': self.name,
            'principal': str(self.principal),
            'available_profit': str(self.available_profit),
            'referral_commission': str(self.referral_commission),
            'deposits': [d.to_dict() for d in self.deposits],
            'referrals': [r.to_dict() for r in self.referrals],
            'referred_by': self.referred_by
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            email=data['email'],
            name=data.get('name', ""),
            principal=to_decimal(data.get('principal')),
            available_profit=to_decimal(data.get('available_profit')),
            referral_commission=to_decimal(data.get('referral_commission')),
            deposits=[Deposit.from_dict(d) for d in data.get('deposits', [])],
            referrals=[ReferralEntry.from_dict(r) for r in data.get('referrals', [])],
            referred_by=data.get('referred_by')
        )


class AccountManager:
    """
    Loads and persists accounts; owns registration and admin balance overrides
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "accounts"

    def create_account(
        self,
        email: str,
        name: str = "",
        referred_by: Optional[str] = None,
        account_id: Optional[str] = None
    ) -> Account:
        """
        Register a new ledger account

        Args:
            email: Contact address (unique, stored lower-cased)
            name: Display name
            referred_by: Referrer account id, if the user signed up via a referral
            account_id: Explicit id (generated if not provided)

        Returns:
            Created Account with zero balances
        """
        with self.storage.atomic():
            if self.find_by_email(email):
                raise ValidationError(f"Account with email {email} already exists")

            referrer = None
            if referred_by:
                referrer = self.get_account(referred_by)
                if not referrer:
                    raise NotFoundError(f"Referrer {referred_by} not found")

            now = datetime.now(timezone.utc)
            account = Account(
                id=account_id or str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                email=email,
                name=name,
                referred_by=referred_by
            )
            self.save_account(account)

            if referrer and not referrer.find_referral(account.id, account.email):
                referrer.referrals.append(ReferralEntry(
                    referred_account_id=account.id,
                    email=account.email,
                    created_at=now
                ))
                self.save_account(referrer)

            self.audit_trail.log_event(
                AuditEventType.ACCOUNT_CREATED,
                entity_type="account",
                entity_id=account.id,
                metadata={'email': account.email, 'referred_by': referred_by}
            )
            return account

    def get_account(self, account_id: str) -> Optional[Account]:
        data = self.storage.load(self.table_name, account_id)
        if data:
            return Account.from_dict(data)
        return None

    def require_account(self, account_id: str) -> Account:
        account = self.get_account(account_id)
        if not account:
            raise NotFoundError(f"Account {account_id} not found")
        return account

    def find_by_email(self, email: str) -> Optional[Account]:
        matches = self.storage.find(self.table_name, {'email': email.lower()})
        if matches:
            return Account.from_dict(matches[0])
        return None

    def list_accounts(self) -> List[Account]:
        return [Account.from_dict(data) for data in self.storage.load_all(self.table_name)]

    def save_account(self, account: Account) -> None:
        account.updated_at = datetime.now(timezone.utc)
        account.set_balances(account.principal, account.available_profit, account.referral_commission)
        self.storage.save(self.table_name, account.id, account.to_dict())

    def update_balances(
        self,
        actor_id: str,
        account_id: str,
        principal: Optional[Number] = None,
        available_profit: Optional[Number] = None,
        referral_commission: Optional[Number] = None
    ) -> Account:
        """
        Administrator override of an account's balances

        Negative values are rejected rather than clamped.
        """
        changes = {
            'principal': principal,
            'available_profit': available_profit,
            'referral_commission': referral_commission
        }
        for key, value in changes.items():
            if value is not None and to_decimal(value) < 0:
                raise ValidationError(f"{key} cannot be negative")

        with self.storage.atomic():
            account = self.require_account(account_id)
            before = account.balance_snapshot()
            account.set_balances(principal, available_profit, referral_commission)
            self.save_account(account)

            self.audit_trail.record(
                actor_id,
                AuditEventType.BALANCES_UPDATED,
                metadata={
                    'account_id': account_id,
                    'before': before,
                    'changes': {k: str(v) for k, v in changes.items() if v is not None}
                },
                entity_type="account",
                entity_id=account_id
            )
            return account
