"""
Tests for ledger accounts: registration, referral linking, serialization
and administrator balance overrides
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from yield_ledger.storage import InMemoryStorage
from yield_ledger.audit import AuditTrail, AuditEventType
from yield_ledger.accounts import Account, AccountManager, Deposit, DepositStatus, ReferralEntry
from yield_ledger.errors import NotFoundError, ValidationError


class TestAccountModel:
    """Test the Account record"""

    def make_account(self, **kwargs) -> Account:
        now = datetime.now(timezone.utc)
        return Account(id="A1", created_at=now, updated_at=now, email=kwargs.pop('email', "Ann@Example.com"), **kwargs)

    def test_email_is_lower_cased(self):
        assert self.make_account().email == "ann@example.com"

    def test_invalid_email_rejected(self):
        with pytest.raises(ValueError):
            self.make_account(email="not-an-email")

    def test_balances_rounded_and_clamped(self):
        account = self.make_account(principal=Decimal('10.005'), available_profit=Decimal('-3'))
        assert account.principal == Decimal('10.01')
        assert account.available_profit == Decimal('0.00')

    def test_withdrawable_and_total(self):
        account = self.make_account(
            principal=Decimal('1000'), available_profit=Decimal('30'), referral_commission=Decimal('20')
        )
        assert account.withdrawable == Decimal('50.00')
        assert account.total_portfolio == Decimal('1050.00')

    def test_round_trip_keeps_deposits_and_referrals(self):
        account = self.make_account(principal=Decimal('100'))
        account.deposits.append(Deposit(
            amount=Decimal('100'), daily_rate_percent=Decimal('6'), window_days=30,
            start_time=datetime(2024, 1, 1, tzinfo=timezone.utc)
        ))
        account.referrals.append(ReferralEntry(email="bob@example.com", commission_earned=Decimal('5')))

        restored = Account.from_dict(account.to_dict())
        assert restored.deposits[0].daily_rate_percent == Decimal('6')
        assert restored.deposits[0].status == DepositStatus.ACTIVE
        assert restored.referrals[0].commission_earned == Decimal('5.00')
        assert restored.referrals[0].referred_account_id is None

    def test_find_referral_prefers_identity(self):
        account = self.make_account()
        legacy = ReferralEntry(email="bob@example.com")
        linked = ReferralEntry(email="other@example.com", referred_account_id="B1")
        account.referrals.extend([legacy, linked])

        assert account.find_referral("B1", "bob@example.com") is linked
        assert account.find_referral("B2", "BOB@example.com") is legacy
        assert account.find_referral("B3", "nobody@example.com") is None


class TestDeposit:
    def test_amount_must_be_positive(self):
        with pytest.raises(ValueError):
            Deposit(amount=Decimal('0'), daily_rate_percent=Decimal('5'), window_days=60,
                    start_time=datetime.now(timezone.utc))

    def test_window_must_be_positive(self):
        with pytest.raises(ValueError):
            Deposit(amount=Decimal('10'), daily_rate_percent=Decimal('5'), window_days=0,
                    start_time=datetime.now(timezone.utc))


class TestAccountManager:
    """Test registration and overrides"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.manager = AccountManager(self.storage, self.audit_trail)

    def test_create_account(self):
        account = self.manager.create_account("ann@example.com", "Ann")

        loaded = self.manager.require_account(account.id)
        assert loaded.email == "ann@example.com"
        assert loaded.principal == Decimal('0.00')
        assert self.audit_trail.get_events_by_type(AuditEventType.ACCOUNT_CREATED)

    def test_duplicate_email_rejected(self):
        self.manager.create_account("ann@example.com")
        with pytest.raises(ValidationError):
            self.manager.create_account("ANN@example.com")

    def test_referred_signup_adds_zero_entry_to_referrer(self):
        referrer = self.manager.create_account("ref@example.com")
        referred = self.manager.create_account("new@example.com", referred_by=referrer.id)

        referrer = self.manager.require_account(referrer.id)
        assert len(referrer.referrals) == 1
        entry = referrer.referrals[0]
        assert entry.referred_account_id == referred.id
        assert entry.commission_earned == Decimal('0.00')
        assert referred.referred_by == referrer.id

    def test_unknown_referrer_rejected(self):
        with pytest.raises(NotFoundError):
            self.manager.create_account("new@example.com", referred_by="missing")
        assert self.manager.find_by_email("new@example.com") is None

    def test_require_missing_account(self):
        with pytest.raises(NotFoundError):
            self.manager.require_account("missing")

    def test_update_balances(self):
        account = self.manager.create_account("ann@example.com")
        updated = self.manager.update_balances(
            "admin", account.id, principal="500", referral_commission=Decimal('12.345')
        )

        assert updated.principal == Decimal('500.00')
        assert updated.referral_commission == Decimal('12.35')
        assert updated.available_profit == Decimal('0.00')

        event = self.audit_trail.get_events_by_type(AuditEventType.BALANCES_UPDATED)[0]
        assert event.user_id == "admin"
        assert event.metadata['before']['principal'] == "0.00"

    def test_update_balances_rejects_negative(self):
        account = self.manager.create_account("ann@example.com")
        with pytest.raises(ValidationError):
            self.manager.update_balances("admin", account.id, available_profit=Decimal('-1'))
