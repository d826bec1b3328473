"""
Tests for transaction records and payment method resolution
"""

import pytest
from decimal import Decimal

from yield_ledger.storage import InMemoryStorage
from yield_ledger.errors import NotFoundError, ValidationError
from yield_ledger.transactions import (
    BankMethod, CryptoMethod, OtherMethod, DepositPlan, MethodType,
    TransactionKind, TransactionManager, TransactionStatus,
    parse_payment_method, payment_method_from_dict, payment_method_to_dict
)


class TestPaymentMethods:
    """Test the tagged method union"""

    def test_bank_string_with_details(self):
        method = parse_payment_method("bank", bank={'accountNumber': " 12345 ", 'bank_name': "First"})
        assert isinstance(method, BankMethod)
        assert method.account_number == "12345"
        method.validate_for_payout()

    def test_bank_without_account_number(self):
        method = parse_payment_method("bank", bank={'bank_name': "First"})
        with pytest.raises(ValidationError):
            method.validate_for_payout()

    def test_crypto_string_with_wallet(self):
        method = parse_payment_method("crypto", crypto={'walletAddress': "0xabc", 'network': "TRC20"})
        assert isinstance(method, CryptoMethod)
        assert method.address == "0xabc"
        assert method.network == "TRC20"

    def test_crypto_without_wallet(self):
        method = parse_payment_method("crypto", crypto={})
        with pytest.raises(ValidationError):
            method.validate_for_payout()

    def test_catalogue_object(self):
        method = parse_payment_method({'type': "crypto", 'label': "USDT", 'details': {'address': "T9"}})
        assert isinstance(method, CryptoMethod)
        assert method.label == "USDT"
        assert method.address == "T9"

    def test_unknown_id_is_opaque(self):
        method = parse_payment_method("pm_42")
        assert isinstance(method, OtherMethod)
        assert method.method_id == "pm_42"
        assert method.method_type == MethodType.OTHER

    def test_missing_method(self):
        assert parse_payment_method(None) is None
        assert parse_payment_method("") is None

    def test_unsupported_shape(self):
        with pytest.raises(ValidationError):
            parse_payment_method(42)

    def test_stored_form_round_trip(self):
        method = CryptoMethod(address="0xabc", network="ERC20", label="ETH")
        assert payment_method_from_dict(payment_method_to_dict(method)) == method


class TestDepositPlan:
    def test_accepts_alternate_rate_keys(self):
        assert DepositPlan.from_raw({'ratePercent': 6, 'days': 30}).rate_percent == Decimal('6')
        assert DepositPlan.from_raw({'rate': "7.5"}).rate_percent == Decimal('7.5')

    def test_empty_plan(self):
        assert DepositPlan.from_raw(None) is None
        assert DepositPlan.from_raw({}) is None


class TestTransactionManager:
    """Test persistence and lookups"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.manager = TransactionManager(self.storage)

    def test_create_pending(self):
        transaction = self.manager.create_transaction("A1", TransactionKind.WITHDRAW, Decimal('25'))

        loaded = self.manager.require_transaction(transaction.id)
        assert loaded.status == TransactionStatus.PENDING
        assert loaded.amount == Decimal('25.00')
        assert loaded.is_pending

    def test_non_positive_amount_rejected(self):
        with pytest.raises(ValueError):
            self.manager.create_transaction("A1", TransactionKind.DEPOSIT, Decimal('0'))

    def test_kind_mismatch_is_not_found(self):
        transaction = self.manager.create_transaction("A1", TransactionKind.DEPOSIT, Decimal('25'))
        with pytest.raises(NotFoundError):
            self.manager.require_transaction(transaction.id, TransactionKind.WITHDRAW)

    def test_unknown_id(self):
        with pytest.raises(NotFoundError):
            self.manager.require_transaction("missing")

    def test_method_and_plan_survive_storage(self):
        transaction = self.manager.create_transaction(
            "A1", TransactionKind.DEPOSIT, Decimal('100'),
            method=BankMethod(account_details={'account_number': "9"}),
            plan=DepositPlan(rate_percent=Decimal('6'), days=30)
        )

        loaded = self.manager.get_transaction(transaction.id)
        assert isinstance(loaded.method, BankMethod)
        assert loaded.plan.rate_percent == Decimal('6')
        assert loaded.plan.days == 30

    def test_approved_withdrawals(self):
        first = self.manager.create_transaction("A1", TransactionKind.WITHDRAW, Decimal('10'))
        self.manager.create_transaction("A1", TransactionKind.WITHDRAW, Decimal('20'))
        self.manager.create_transaction("A2", TransactionKind.WITHDRAW, Decimal('30'))

        first.status = TransactionStatus.APPROVED
        self.manager.save_transaction(first)

        approved = self.manager.approved_withdrawals("A1")
        assert [t.id for t in approved] == [first.id]
        assert len(self.manager.list_for_account("A1")) == 2

    def test_approved_amount_falls_back_to_requested(self):
        transaction = self.manager.create_transaction("A1", TransactionKind.WITHDRAW, Decimal('10'))
        assert transaction.approved_amount == Decimal('10.00')
        transaction.details['approved_amount'] = "8.00"
        assert transaction.approved_amount == Decimal('8.00')
