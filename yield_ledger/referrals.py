"""
Referral Ledger Module

A referrer keeps one commission snapshot entry per referred account. The
relation is one-directional: the referrer's entries index referred accounts
by id (e-mail for legacy rows); the referred account only records who
referred it and is never reached through the entries for ownership.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .accounts import Account, AccountManager, ReferralEntry
from .audit import AuditTrail, AuditEventType
from .money import ZERO, Number, round_money, to_decimal
from .logging_config import get_logger, log_action


@dataclass
class ReferralCredit:
    """Result of propagating a deposit's commission to its referrer"""
    referrer_id: str
    referred_id: str
    commission: Decimal
    entry: ReferralEntry
    created_entry: bool


@dataclass
class ReferralView:
    """One row of the merged referral listing"""
    email: str
    account_id: Optional[str] = None
    capital: Decimal = ZERO
    commission_earned: Decimal = ZERO
    created_at: Optional[datetime] = None
    source: str = "snapshot"


@dataclass
class ReferralSummary:
    referrals: List[ReferralView] = field(default_factory=list)
    total_commission: Decimal = ZERO


def compute_commission(amount: Number, referral_rate: Number) -> Decimal:
    rate = to_decimal(referral_rate)
    if rate < 0 or rate > 1:
        raise ValueError("Referral rate must be between 0 and 1")
    return round_money(to_decimal(amount) * rate)


class ReferralLedger:
    """Credits referral commission and maintains the snapshot entries"""

    def __init__(self, account_manager: AccountManager, audit_trail: AuditTrail):
        self.account_manager = account_manager
        self.audit_trail = audit_trail
        self.logger = get_logger("yield_ledger.referrals")

    def find_referrer(self, account: Account) -> Optional[Account]:
        """
        Explicit referrer link first, otherwise any account whose snapshot
        entries reference this account
        """
        if account.referred_by:
            referrer = self.account_manager.get_account(account.referred_by)
            if referrer and referrer.id != account.id:
                return referrer

        for candidate in self.account_manager.list_accounts():
            if candidate.id == account.id:
                continue
            if any(entry.referred_account_id == account.id for entry in candidate.referrals):
                return candidate
        return None

    def credit_commission(self, referrer: Account, referred: Account, amount: Number,
                          referral_rate: Number) -> ReferralCredit:
        """
        Add commission to the referrer and upsert the snapshot entry

        Mutates ``referrer`` in place; the caller persists it.
        """
        amount = round_money(amount)
        commission = compute_commission(amount, referral_rate)
        referrer.referral_commission = round_money(referrer.referral_commission + commission)

        entry = referrer.find_referral(referred.id, referred.email)
        created = entry is None
        if entry is None:
            entry = ReferralEntry(
                referred_account_id=referred.id,
                email=referred.email,
                capital_snapshot=amount,
                commission_earned=commission,
                created_at=datetime.now(timezone.utc)
            )
            referrer.referrals.append(entry)
        else:
            if entry.referred_account_id is None:
                entry.referred_account_id = referred.id
            entry.capital_snapshot = round_money(entry.capital_snapshot + amount)
            entry.commission_earned = round_money(entry.commission_earned + commission)

        return ReferralCredit(
            referrer_id=referrer.id,
            referred_id=referred.id,
            commission=commission,
            entry=entry,
            created_entry=created
        )

    def propagate(self, referred: Account, amount: Number, referral_rate: Number,
                  actor_id: Optional[str] = None,
                  transaction_id: Optional[str] = None) -> Optional[ReferralCredit]:
        """
        Resolve the referrer of ``referred`` and credit commission on ``amount``

        Persists the referrer and records an audit event. Must run inside the
        caller's atomic unit.

        Returns:
            The credit applied, or None when the account has no referrer
        """
        referrer = self.find_referrer(referred)
        if referrer is None:
            return None

        credit = self.credit_commission(referrer, referred, amount, referral_rate)
        self.account_manager.save_account(referrer)

        self.audit_trail.record(
            actor_id,
            AuditEventType.REFERRAL_COMMISSION_CREDITED,
            metadata={
                'referrer_id': referrer.id,
                'referred_id': referred.id,
                'transaction_id': transaction_id,
                'amount': round_money(amount),
                'referral_rate': to_decimal(referral_rate),
                'commission': credit.commission
            },
            entity_type="account",
            entity_id=referrer.id
        )
        log_action(
            self.logger, "info", "Referral commission credited",
            user_id=actor_id,
            action="referral_commission",
            resource=f"account:{referrer.id}",
            extra={'referred_id': referred.id, 'commission': str(credit.commission)}
        )
        return credit

    def merged_referrals(self, referrer_id: str) -> ReferralSummary:
        """
        Merge live referred accounts with the referrer's snapshot entries

        Live accounts are found by their referrer link or by an e-mail held in
        a snapshot entry. Rows are keyed by account id, falling back to the
        lower-cased e-mail. Capital comes from the live account when it has
        any; commission always comes from the snapshot.
        """
        referrer = self.account_manager.require_account(referrer_id)
        snapshot_emails = {entry.email.lower() for entry in referrer.referrals if entry.email}

        views: Dict[str, ReferralView] = {}
        email_index: Dict[str, str] = {}

        for account in self.account_manager.list_accounts():
            if account.id == referrer.id:
                continue
            if account.referred_by != referrer.id and account.email not in snapshot_emails:
                continue
            views[account.id] = ReferralView(
                account_id=account.id,
                email=account.email,
                capital=account.principal,
                created_at=account.created_at,
                source="live"
            )
            email_index[account.email] = account.id

        for entry in referrer.referrals:
            key = entry.referred_account_id or email_index.get(entry.email.lower()) or entry.email.lower()
            existing = views.get(key)
            if existing:
                existing.commission_earned = round_money(existing.commission_earned + entry.commission_earned)
                existing.source = "live+snapshot" if existing.source == "live" else "merged"
                if not existing.capital and entry.capital_snapshot:
                    existing.capital = entry.capital_snapshot
                if existing.created_at is None:
                    existing.created_at = entry.created_at
            else:
                views[key] = ReferralView(
                    account_id=entry.referred_account_id,
                    email=entry.email,
                    capital=entry.capital_snapshot,
                    commission_earned=entry.commission_earned,
                    created_at=entry.created_at,
                    source="snapshot"
                )

        far_past = datetime.min.replace(tzinfo=timezone.utc)
        rows = sorted(views.values(), key=lambda v: v.created_at or far_past, reverse=True)
        total = round_money(sum((row.commission_earned for row in rows), ZERO))
        return ReferralSummary(referrals=rows, total_commission=total)
