"""
Transaction Records Module

Deposit and withdrawal requests awaiting an administrator decision. A request
is created ``pending`` and moves to ``approved`` or ``rejected`` exactly once.
Transactions reference accounts by id and live in their own table so the
audit trail survives later account mutation.

The payout / payment method is resolved into a tagged union once, when the
request is created, and never re-interpreted afterwards.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from enum import Enum
import uuid

from .money import ZERO, round_money, to_decimal
from .storage import StorageInterface, StorageRecord, parse_datetime
from .errors import NotFoundError, ValidationError


class TransactionKind(Enum):
    """Kinds of ledger requests"""
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


class TransactionStatus(Enum):
    """States of a ledger request"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class MethodType(Enum):
    BANK = "bank"
    CRYPTO = "crypto"
    OTHER = "other"


@dataclass
class BankMethod:
    """Bank transfer with free-form account details"""
    account_details: Dict[str, Any]
    label: str = ""

    method_type = MethodType.BANK

    @property
    def account_number(self) -> str:
        value = self.account_details.get('account_number') or self.account_details.get('accountNumber')
        return str(value).strip() if value is not None else ""

    def validate_for_payout(self) -> None:
        if not self.account_number:
            raise ValidationError("Account number is required for bank transfers")


@dataclass
class CryptoMethod:
    """Crypto wallet payout / payment"""
    address: str
    network: str = ""
    label: str = ""

    method_type = MethodType.CRYPTO

    def validate_for_payout(self) -> None:
        if not self.address or not self.address.strip():
            raise ValidationError("Wallet address is required for cryptocurrency withdrawals")


@dataclass
class OtherMethod:
    """Opaque method descriptor supplied by the payment-method catalogue"""
    raw: Dict[str, Any]

    method_type = MethodType.OTHER

    @property
    def method_id(self) -> Optional[str]:
        value = self.raw.get('id')
        return str(value) if value is not None else None

    def validate_for_payout(self) -> None:
        pass


PaymentMethod = Union[BankMethod, CryptoMethod, OtherMethod]


def _crypto_address(data: Dict[str, Any]) -> str:
    for key in ('address', 'wallet_address', 'walletAddress'):
        if data.get(key):
            return str(data[key])
    return ""


def parse_payment_method(
    value: Any,
    bank: Optional[Dict[str, Any]] = None,
    crypto: Optional[Dict[str, Any]] = None
) -> Optional[PaymentMethod]:
    """
    Resolve a raw method (id string, catalogue object or legacy shape)

    Args:
        value: "bank", "crypto", a catalogue id, or a method object with "type"
        bank: Bank details sent alongside a "bank" method
        crypto: Wallet details sent alongside a "crypto" method
    """
    if value is None or value == "":
        return None

    if isinstance(value, str):
        if value == MethodType.BANK.value:
            return BankMethod(account_details=dict(bank or {}))
        if value == MethodType.CRYPTO.value:
            crypto = crypto or {}
            return CryptoMethod(address=_crypto_address(crypto), network=str(crypto.get('network', "")))
        return OtherMethod(raw={'id': value})

    if isinstance(value, dict):
        method_type = value.get('type')
        details = value.get('details') if isinstance(value.get('details'), dict) else {}
        label = str(value.get('label', ""))
        if method_type == MethodType.BANK.value:
            account_details = dict(details) or {k: v for k, v in value.items() if k not in ('type', 'label', 'id')}
            return BankMethod(account_details=account_details, label=label)
        if method_type == MethodType.CRYPTO.value:
            address = _crypto_address(details) or _crypto_address(value)
            network = str(details.get('network') or value.get('network') or "")
            return CryptoMethod(address=address, network=network, label=label)
        return OtherMethod(raw=dict(value))

    raise ValidationError(f"Unsupported payment method: {value!r}")


def payment_method_to_dict(method: Optional[PaymentMethod]) -> Optional[Dict[str, Any]]:
    if method is None:
        return None
    if isinstance(method, BankMethod):
        return {'type': 'bank', 'account_details': method.account_details, 'label': method.label}
    if isinstance(method, CryptoMethod):
        return {'type': 'crypto', 'address': method.address, 'network': method.network, 'label': method.label}
    return {'type': 'other', 'raw': method.raw}


def payment_method_from_dict(data: Optional[Dict[str, Any]]) -> Optional[PaymentMethod]:
    """Rebuild a stored method; the stored shape is always our own tagged form"""
    if not data:
        return None
    if data['type'] == 'bank':
        return BankMethod(account_details=data.get('account_details', {}), label=data.get('label', ""))
    if data['type'] == 'crypto':
        return CryptoMethod(address=data.get('address', ""), network=data.get('network', ""), label=data.get('label', ""))
    return OtherMethod(raw=data.get('raw', {}))


@dataclass
class DepositPlan:
    """Plan terms a user picked when requesting a deposit"""
    rate_percent: Optional[Decimal] = None
    days: Optional[int] = None
    amount: Optional[Decimal] = None
    plan_id: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Optional[Dict[str, Any]]) -> Optional['DepositPlan']:
        """Accepts rate_percent / ratePercent / rate and days keys"""
        if not raw:
            return None
        rate = None
        for key in ('rate_percent', 'ratePercent', 'rate'):
            if raw.get(key) is not None:
                rate = to_decimal(raw[key])
                break
        days = raw.get('days')
        amount = raw.get('amount')
        return cls(
            rate_percent=rate,
            days=int(days) if days else None,
            amount=to_decimal(amount) if amount is not None else None,
            plan_id=str(raw['id']) if raw.get('id') is not None else raw.get('plan_id')
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rate_percent': str(self.rate_percent) if self.rate_percent is not None else None,
            'days': self.days,
            'amount': str(self.amount) if self.amount is not None else None,
            'plan_id': self.plan_id
        }


@dataclass
class Transaction(StorageRecord):
    """
    A deposit or withdrawal request

    ``details`` carries the balance snapshot taken at request time and, once
    decided, the approval snapshot and the approved breakdown.
    """
    account_id: str
    kind: TransactionKind
    amount: Decimal
    status: TransactionStatus = TransactionStatus.PENDING
    method: Optional[PaymentMethod] = None
    plan: Optional[DepositPlan] = None
    receipt_url: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    admin_remarks: Optional[str] = None
    approved_at: Optional[datetime] = None

    def __post_init__(self):
        self.amount = round_money(self.amount)
        if self.amount <= ZERO:
            raise ValueError("Transaction amount must be positive")

    @property
    def is_pending(self) -> bool:
        return self.status == TransactionStatus.PENDING

    @property
    def approved_amount(self) -> Decimal:
        """Amount actually settled (falls back to the requested amount)"""
        value = self.details.get('approved_amount')
        if value is None:
            return self.amount
        return to_decimal(value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'account_id': self.account_id,
            'kind': self.kind.value,
            'amount': str(self.amount),
            'status': self.status.value,
            'method': payment_method_to_dict(self.method),
            'plan': self.plan.to_dict() if self.plan else None,
            'receipt_url': self.receipt_url,
            'details': self.details,
            'admin_remarks': self.admin_remarks,
            'approved_at': self.approved_at.isoformat() if self.approved_at else None
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        plan = data.get('plan')
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            account_id=data['account_id'],
            kind=TransactionKind(data['kind']),
            amount=to_decimal(data['amount']),
            status=TransactionStatus(data['status']),
            method=payment_method_from_dict(data.get('method')),
            plan=DepositPlan.from_raw(plan) if plan else None,
            receipt_url=data.get('receipt_url'),
            details=data.get('details') or {},
            admin_remarks=data.get('admin_remarks'),
            approved_at=parse_datetime(data.get('approved_at'))
        )


class TransactionManager:
    """
    Persists transactions and serves the (account, kind, status) lookups
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "transactions"

    def create_transaction(
        self,
        account_id: str,
        kind: TransactionKind,
        amount: Decimal,
        method: Optional[PaymentMethod] = None,
        plan: Optional[DepositPlan] = None,
        receipt_url: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> Transaction:
        """Create and store a new pending request"""
        now = datetime.now(timezone.utc)
        transaction = Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_id=account_id,
            kind=kind,
            amount=amount,
            method=method,
            plan=plan,
            receipt_url=receipt_url,
            details=details or {}
        )
        self.save_transaction(transaction)
        return transaction

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        data = self.storage.load(self.table_name, transaction_id)
        if data:
            return Transaction.from_dict(data)
        return None

    def require_transaction(self, transaction_id: str, kind: Optional[TransactionKind] = None) -> Transaction:
        """Load a transaction, raising NotFoundError if missing or of another kind"""
        transaction = self.get_transaction(transaction_id)
        if not transaction or (kind is not None and transaction.kind != kind):
            label = f"{kind.value.capitalize()} request" if kind else "Request"
            raise NotFoundError(f"{label} {transaction_id} not found")
        return transaction

    def save_transaction(self, transaction: Transaction) -> None:
        transaction.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.table_name, transaction.id, transaction.to_dict())

    def list_for_account(self, account_id: str) -> List[Transaction]:
        """Account history, newest first"""
        transactions = [
            Transaction.from_dict(data)
            for data in self.storage.find(self.table_name, {'account_id': account_id})
        ]
        transactions.sort(key=lambda t: t.created_at, reverse=True)
        return transactions

    def find(self, account_id: Optional[str] = None, kind: Optional[TransactionKind] = None,
             status: Optional[TransactionStatus] = None) -> List[Transaction]:
        filters: Dict[str, Any] = {}
        if account_id:
            filters['account_id'] = account_id
        if kind:
            filters['kind'] = kind.value
        if status:
            filters['status'] = status.value
        transactions = [Transaction.from_dict(data) for data in self.storage.find(self.table_name, filters)]
        transactions.sort(key=lambda t: t.created_at)
        return transactions

    def approved_withdrawals(self, account_id: str) -> List[Transaction]:
        return self.find(account_id, TransactionKind.WITHDRAW, TransactionStatus.APPROVED)
