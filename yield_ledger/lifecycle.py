"""
Deposit Lifecycle Module

Finalizes matured deposits: an active deposit whose hard maturity window
(60 calendar days from its start, independent of its own ``window_days``)
has elapsed becomes ``completed`` and its principal leaves the account's
capital. There is no scheduler; this runs lazily on every balance read and
before every settlement, and must run before profit is recomputed.
"""

from datetime import datetime, timezone
from typing import List, Optional

from .accounts import Account, Deposit, DepositStatus
from .accrual import MATURITY_DAYS, maturity_instant
from .audit import AuditTrail, AuditEventType
from .money import non_negative
from .logging_config import get_logger, log_action


class DepositLifecycleManager:
    """Transitions matured deposits from active to completed"""

    def __init__(self, audit_trail: Optional[AuditTrail] = None, maturity_days: int = MATURITY_DAYS):
        self.audit_trail = audit_trail
        self.maturity_days = maturity_days
        self.logger = get_logger("yield_ledger.lifecycle")

    def finalize_matured(self, account: Account, now: Optional[datetime] = None) -> List[Deposit]:
        """
        Complete every active deposit past its maturity instant

        Mutates ``account`` in place; the caller persists it. Re-running after
        the transition is a no-op because completed deposits are skipped.

        Args:
            account: Account whose deposits are scanned
            now: Evaluation instant (defaults to now)

        Returns:
            Deposits completed by this call
        """
        now = now or datetime.now(timezone.utc)
        matured: List[Deposit] = []

        for deposit in account.deposits:
            if deposit.status != DepositStatus.ACTIVE or deposit.start_time is None:
                continue

            matures_at = maturity_instant(deposit.start_time, self.maturity_days)
            if now < matures_at:
                continue

            deposit.status = DepositStatus.COMPLETED
            deposit.end_time = matures_at
            account.principal = non_negative(account.principal - deposit.amount)
            matured.append(deposit)

            log_action(
                self.logger, "info", "Deposit matured",
                action="deposit_matured",
                resource=f"account:{account.id}",
                extra={
                    'deposit_id': deposit.id,
                    'amount': str(deposit.amount),
                    'matured_at': matures_at.isoformat(),
                    'principal_after': str(account.principal)
                }
            )

            if self.audit_trail:
                self.audit_trail.log_event(
                    AuditEventType.DEPOSIT_MATURED,
                    entity_type="account",
                    entity_id=account.id,
                    metadata={
                        'deposit_id': deposit.id,
                        'amount': deposit.amount,
                        'matured_at': matures_at,
                        'principal_after': account.principal
                    }
                )

        return matured
