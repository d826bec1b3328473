"""
Test suite for withdrawal settlement

Covers the cascading deduction, approval and rejection, double approval,
concurrent approvals, rollback on audit failure and notification isolation.
"""

import pytest
import sqlite3
import threading
import time
from datetime import datetime, timezone, timedelta
from decimal import Decimal
from unittest.mock import patch

from yield_ledger.storage import InMemoryStorage, SQLiteStorage
from yield_ledger.audit import AuditTrail, AuditEventType
from yield_ledger.accounts import AccountManager, Deposit
from yield_ledger.config import YieldLedgerConfig
from yield_ledger.errors import (
    InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError
)
from yield_ledger.identity import Actor, Role
from yield_ledger.notifications import ChannelProvider, NotificationService, NotificationAudience
from yield_ledger.portfolio import PortfolioService
from yield_ledger.settlement import LedgerSettlement, cascade_deduction, require_pending
from yield_ledger.transactions import TransactionKind, TransactionManager, TransactionStatus


MONDAY = datetime(2024, 1, 1, tzinfo=timezone.utc)
TUESDAY = datetime(2024, 1, 2, tzinfo=timezone.utc)
FRIDAY = datetime(2024, 1, 5, tzinfo=timezone.utc)

ADMIN = Actor(account_id="admin-1", role=Role.ADMIN, email="admin@example.com")
USER = Actor(account_id="user-1")


class RecordingProvider(ChannelProvider):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def send(self, notification):
        if self.fail:
            raise ConnectionError("relay down")
        self.sent.append(notification)
        return True


class Harness:
    """Wires the services the way the ledger system does"""

    def __init__(self, provider=None, storage=None):
        self.provider = provider or RecordingProvider()
        self.storage = storage or InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.accounts = AccountManager(self.storage, self.audit_trail)
        self.transactions = TransactionManager(self.storage)
        self.notifier = NotificationService(self.provider, ["ops@example.com"])
        config = YieldLedgerConfig()
        self.portfolio = PortfolioService(
            self.storage, self.accounts, self.transactions, self.audit_trail, self.notifier, lambda: config
        )
        self.settlement = LedgerSettlement(
            self.storage, self.accounts, self.transactions, self.portfolio,
            self.audit_trail, self.notifier, lambda: config
        )

    def funded_account(self, amount="1000", rate="7", commission="0", email="ann@example.com"):
        account = self.accounts.create_account(email)
        account.deposits.append(Deposit(
            amount=Decimal(amount), daily_rate_percent=Decimal(rate), window_days=60, start_time=MONDAY
        ))
        account.principal = Decimal(amount)
        account.referral_commission = Decimal(commission)
        self.accounts.save_account(account)
        return account

    def withdrawal(self, account, amount, now=FRIDAY):
        return self.portfolio.create_withdraw_request(
            account.id, Decimal(amount), "bank", bank={'account_number': "42"}, now=now
        )


@pytest.fixture(params=["memory", "sqlite"])
def harness(request, tmp_path):
    if request.param == "memory":
        storage = InMemoryStorage()
    else:
        storage = SQLiteStorage(tmp_path / "ledger.db")
    yield Harness(storage=storage)
    storage.close()


class TestCascadeDeduction:
    """Test profit-then-commission deduction"""

    def test_profit_then_commission(self):
        result = cascade_deduction(Decimal('30'), Decimal('20'), Decimal('40'))

        assert result.from_profit == Decimal('30.00')
        assert result.from_commission == Decimal('10.00')
        assert result.profit_after == Decimal('0.00')
        assert result.commission_after == Decimal('10.00')
        assert result.shortfall == Decimal('0.00')
        assert not result.has_shortfall

    def test_profit_only(self):
        result = cascade_deduction(Decimal('100'), Decimal('20'), Decimal('40'))
        assert result.from_profit == Decimal('40.00')
        assert result.from_commission == Decimal('0.00')
        assert result.commission_after == Decimal('20.00')

    def test_shortfall_reported(self):
        result = cascade_deduction(Decimal('10'), Decimal('5'), Decimal('40'))

        assert result.profit_after == Decimal('0.00')
        assert result.commission_after == Decimal('0.00')
        assert result.shortfall == Decimal('25.00')
        assert result.has_shortfall

    def test_zero_amount(self):
        result = cascade_deduction(Decimal('10'), Decimal('5'), Decimal('0'))
        assert result.profit_after == Decimal('10.00')

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError):
            cascade_deduction(Decimal('10'), Decimal('5'), Decimal('-1'))


class TestApproveWithdrawal:
    """Test withdrawal approval"""

    def test_approval_deducts_profit_first(self, harness):
        account = harness.funded_account()
        request = harness.withdrawal(account, "100")

        result = harness.settlement.approve_withdrawal(request.id, ADMIN, now=FRIDAY)

        assert result.deduction.from_profit == Decimal('100.00')
        assert not result.has_shortfall
        stored = harness.accounts.require_account(account.id)
        assert stored.available_profit == Decimal('180.00')
        assert stored.principal == Decimal('1000.00')

        transaction = harness.transactions.require_transaction(request.id)
        assert transaction.status == TransactionStatus.APPROVED
        assert transaction.approved_at == FRIDAY
        assert transaction.admin_remarks == "Approved by admin@example.com"
        assert transaction.details['approved_amount'] == "100.00"
        assert transaction.details['approved_breakdown']['from_profit'] == "100.00"
        assert transaction.details['approved_snapshot']['available_profit'] == "180.00"

    def test_profit_stays_net_of_withdrawal_on_later_reads(self, harness):
        account = harness.funded_account()
        request = harness.withdrawal(account, "100")
        harness.settlement.approve_withdrawal(request.id, ADMIN, now=FRIDAY)

        overview = harness.portfolio.get_overview(account.id, FRIDAY)
        assert overview.available_profit == Decimal('180.00')

        # One more business day of accrual, still net of the withdrawal
        overview = harness.portfolio.get_overview(account.id, FRIDAY + timedelta(days=3))
        assert overview.available_profit == Decimal('250.00')

    def test_spills_into_commission(self, harness):
        # 1000 at 3% for one business day = 30 profit, plus 20 commission
        account = harness.funded_account(rate="3", commission="20")
        request = harness.withdrawal(account, "40", now=TUESDAY)

        result = harness.settlement.approve_withdrawal(request.id, ADMIN, now=TUESDAY)

        assert result.deduction.from_profit == Decimal('30.00')
        assert result.deduction.from_commission == Decimal('10.00')
        stored = harness.accounts.require_account(account.id)
        assert stored.available_profit == Decimal('0.00')
        assert stored.referral_commission == Decimal('10.00')

        overview = harness.portfolio.get_overview(account.id, TUESDAY)
        assert overview.available_profit == Decimal('0.00')
        assert overview.referral_commission == Decimal('10.00')

    def test_partial_approved_amount(self, harness):
        account = harness.funded_account()
        request = harness.withdrawal(account, "100")

        harness.settlement.approve_withdrawal(request.id, ADMIN, approved_amount=Decimal('60'), now=FRIDAY)

        stored = harness.accounts.require_account(account.id)
        assert stored.available_profit == Decimal('220.00')
        assert harness.transactions.require_transaction(request.id).approved_amount == Decimal('60.00')

    def test_revalidates_against_current_balance(self, harness):
        account = harness.funded_account(commission="50")
        request = harness.withdrawal(account, "300")
        harness.accounts.update_balances("admin-1", account.id, referral_commission=Decimal('0'))

        with pytest.raises(ValidationError):
            harness.settlement.approve_withdrawal(request.id, ADMIN, now=FRIDAY)
        assert harness.transactions.require_transaction(request.id).is_pending

    def test_non_positive_amount_rejected(self, harness):
        account = harness.funded_account()
        request = harness.withdrawal(account, "100")
        with pytest.raises(ValidationError):
            harness.settlement.approve_withdrawal(request.id, ADMIN, approved_amount=Decimal('0'), now=FRIDAY)

    def test_double_approval(self, harness):
        account = harness.funded_account()
        request = harness.withdrawal(account, "100")
        harness.settlement.approve_withdrawal(request.id, ADMIN, now=FRIDAY)

        with pytest.raises(InvalidStateError, match="already processed"):
            harness.settlement.approve_withdrawal(request.id, ADMIN, now=FRIDAY)
        assert harness.accounts.require_account(account.id).available_profit == Decimal('180.00')

    def test_concurrent_approvals_settle_once(self, harness):
        account = harness.funded_account()
        request = harness.withdrawal(account, "100")

        barrier = threading.Barrier(4)
        outcomes = []

        def approve():
            barrier.wait()
            try:
                harness.settlement.approve_withdrawal(request.id, ADMIN, now=FRIDAY)
                outcomes.append("approved")
            except InvalidStateError:
                outcomes.append("rejected")

        threads = [threading.Thread(target=approve) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["approved", "rejected", "rejected", "rejected"]
        assert harness.accounts.require_account(account.id).available_profit == Decimal('180.00')
        assert len(harness.audit_trail.get_events_by_type(AuditEventType.APPROVE_WITHDRAW)) == 1

    def test_unknown_or_wrong_kind(self, harness):
        account = harness.funded_account()
        deposit = harness.portfolio.create_deposit_request(account.id, "10", receipt_url="r.png")

        with pytest.raises(NotFoundError):
            harness.settlement.approve_withdrawal("missing", ADMIN)
        with pytest.raises(NotFoundError):
            harness.settlement.approve_withdrawal(deposit.id, ADMIN)

    def test_missing_account(self, harness):
        transaction = harness.transactions.create_transaction("ghost", TransactionKind.WITHDRAW, Decimal('10'))
        with pytest.raises(NotFoundError):
            harness.settlement.approve_withdrawal(transaction.id, ADMIN)

    def test_requires_administrator(self, harness):
        account = harness.funded_account()
        request = harness.withdrawal(account, "100")
        with pytest.raises(PermissionDeniedError):
            harness.settlement.approve_withdrawal(request.id, USER, now=FRIDAY)

    def test_audit_failure_rolls_back(self, harness):
        account = harness.funded_account()
        request = harness.withdrawal(account, "100")
        before = len(harness.provider.sent)

        with patch.object(harness.audit_trail, "record", side_effect=RuntimeError("audit store down")):
            with pytest.raises(RuntimeError):
                harness.settlement.approve_withdrawal(request.id, ADMIN, now=FRIDAY)

        assert harness.transactions.require_transaction(request.id).is_pending
        assert harness.accounts.require_account(account.id).available_profit == Decimal('280.00')
        assert len(harness.provider.sent) == before

    def test_audit_entry(self, harness):
        account = harness.funded_account()
        request = harness.withdrawal(account, "100")
        harness.settlement.approve_withdrawal(request.id, ADMIN, now=FRIDAY)

        event = harness.audit_trail.get_events_by_type(AuditEventType.APPROVE_WITHDRAW)[0]
        assert event.user_id == "admin-1"
        assert event.entity_id == request.id
        assert event.metadata['result']['from_profit'] == "100.00"

    def test_notifications_after_commit(self, harness):
        account = harness.funded_account()
        request = harness.withdrawal(account, "100")
        harness.provider.sent.clear()

        harness.settlement.approve_withdrawal(request.id, ADMIN, now=FRIDAY)

        audiences = [n.audience for n in harness.provider.sent]
        assert audiences == [NotificationAudience.ACCOUNT, NotificationAudience.OPERATORS]
        assert harness.provider.sent[0].recipient_address == "ann@example.com"

    def test_notification_failure_does_not_undo_settlement(self):
        harness = Harness(RecordingProvider(fail=True))
        account = harness.funded_account()
        request = harness.withdrawal(account, "100")

        result = harness.settlement.approve_withdrawal(request.id, ADMIN, now=FRIDAY)

        assert result.transaction.status == TransactionStatus.APPROVED
        assert harness.transactions.require_transaction(request.id).status == TransactionStatus.APPROVED


class TestRejectWithdrawal:
    """Test withdrawal rejection"""

    def test_reject_leaves_balances(self, harness):
        account = harness.funded_account()
        request = harness.withdrawal(account, "100")

        result = harness.settlement.reject_withdrawal(request.id, ADMIN, reason="Duplicate request")

        assert result.transaction.status == TransactionStatus.REJECTED
        assert result.transaction.admin_remarks == "Duplicate request"
        assert harness.portfolio.get_overview(account.id, FRIDAY).available_profit == Decimal('280.00')
        assert harness.audit_trail.get_events_by_type(AuditEventType.REJECT_WITHDRAW)

    def test_reject_after_approval(self, harness):
        account = harness.funded_account()
        request = harness.withdrawal(account, "100")
        harness.settlement.approve_withdrawal(request.id, ADMIN, now=FRIDAY)

        with pytest.raises(InvalidStateError):
            harness.settlement.reject_withdrawal(request.id, ADMIN)

    def test_approve_after_rejection(self, harness):
        account = harness.funded_account()
        request = harness.withdrawal(account, "100")
        harness.settlement.reject_withdrawal(request.id, ADMIN)

        with pytest.raises(InvalidStateError):
            harness.settlement.approve_withdrawal(request.id, ADMIN, now=FRIDAY)


class TestSharedDatabase:
    """Two ledger processes settling against one SQLite file"""

    def setup_method(self):
        self.handles = []

    def teardown_method(self):
        for storage in self.handles:
            storage.close()

    def open(self, path, **kwargs):
        storage = SQLiteStorage(path, **kwargs)
        self.handles.append(storage)
        return storage

    def test_unit_holds_database_write_lock(self, tmp_path):
        path = tmp_path / "shared.db"
        first = self.open(path)
        second = self.open(path, timeout=0.05)

        with first.atomic():
            first.save("accounts", "A1", {'id': "A1"})
            with pytest.raises(sqlite3.OperationalError):
                with second.atomic():
                    pass
            assert not second.in_atomic

        with second.atomic():
            assert second.load("accounts", "A1") == {'id': "A1"}

    def test_concurrent_approvals_settle_once(self, tmp_path):
        path = tmp_path / "shared.db"
        first = Harness(storage=self.open(path))
        second = Harness(storage=self.open(path))
        account = first.funded_account()
        request = first.withdrawal(account, "100")

        def slow_guard(transaction):
            require_pending(transaction)
            # Keep the unit open so the other process arrives while it runs
            time.sleep(0.2)

        barrier = threading.Barrier(2)
        outcomes = []

        def approve(harness):
            barrier.wait()
            try:
                harness.settlement.approve_withdrawal(request.id, ADMIN, now=FRIDAY)
                outcomes.append("approved")
            except InvalidStateError:
                outcomes.append("rejected")

        with patch("yield_ledger.settlement.require_pending", side_effect=slow_guard):
            threads = [threading.Thread(target=approve, args=(h,)) for h in (first, second)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

        assert sorted(outcomes) == ["approved", "rejected"]
        assert second.accounts.require_account(account.id).available_profit == Decimal('180.00')
        assert len(first.audit_trail.get_events_by_type(AuditEventType.APPROVE_WITHDRAW)) == 1
