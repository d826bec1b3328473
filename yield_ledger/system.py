"""
Ledger system container wiring storage, audit and the services together
"""

from typing import Optional

from .storage import StorageInterface, create_storage
from .audit import AuditTrail
from .accounts import AccountManager
from .transactions import TransactionManager
from .notifications import NotificationService
from .portfolio import ConfigProvider, PortfolioService
from .referrals import ReferralLedger
from .settlement import LedgerSettlement
from .deposits import DepositApprovalSettlement
from .desk import SettlementDesk
from .config import get_config
from .logging_config import get_logger


class LedgerSystem:
    """Yield ledger with all components initialized"""

    def __init__(
        self,
        storage: Optional[StorageInterface] = None,
        notifier: Optional[NotificationService] = None,
        config_provider: ConfigProvider = get_config
    ):
        config = config_provider()
        self.config_provider = config_provider

        # Initialize storage
        self.storage = storage or create_storage(config.database_url)

        # Initialize core components
        self.audit_trail = AuditTrail(self.storage)
        self.account_manager = AccountManager(self.storage, self.audit_trail)
        self.transaction_manager = TransactionManager(self.storage)
        self.notifier = notifier or NotificationService.from_config(config)
        self.referral_ledger = ReferralLedger(self.account_manager, self.audit_trail)

        self.portfolio = PortfolioService(
            self.storage, self.account_manager, self.transaction_manager,
            self.audit_trail, self.notifier, config_provider
        )
        self.withdrawal_settlement = LedgerSettlement(
            self.storage, self.account_manager, self.transaction_manager,
            self.portfolio, self.audit_trail, self.notifier, config_provider
        )
        self.deposit_settlement = DepositApprovalSettlement(
            self.storage, self.account_manager, self.transaction_manager,
            self.referral_ledger, self.audit_trail, self.notifier, config_provider
        )
        self.desk = SettlementDesk(self.transaction_manager, self.withdrawal_settlement, self.deposit_settlement)

        get_logger("yield_ledger.system").info(
            f"Ledger system initialized with {type(self.storage).__name__}"
        )

    def close(self) -> None:
        self.storage.close()
