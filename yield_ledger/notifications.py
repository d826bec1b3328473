"""
Notification Module

Fire-and-forget delivery of account and operator messages. Settlements hand
their messages over only after the atomic unit has committed; a delivery
failure is logged and never propagated, retried or allowed to affect the
settlement outcome.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
from enum import Enum
from abc import ABC, abstractmethod
import uuid

import requests

from .logging_config import get_logger


class NotificationAudience(Enum):
    ACCOUNT = "account"
    OPERATORS = "operators"


@dataclass
class Notification:
    """A single outbound message"""
    audience: NotificationAudience
    recipient_address: str
    subject: str
    body: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PendingNotification:
    """
    Message queued during a settlement and sent after commit

    ``address`` None means "all operators".
    """
    subject: str
    body: str
    address: Optional[str] = None


class ChannelProvider(ABC):
    """Abstract base class for notification channel providers"""

    @abstractmethod
    def send(self, notification: Notification) -> bool:
        """Deliver a notification; return False or raise on failure"""
        pass


class LogChannelProvider(ChannelProvider):
    """Writes notifications to the application log (development default)"""

    def __init__(self, logger=None):
        self.logger = logger or get_logger("yield_ledger.notifications.log")

    def send(self, notification: Notification) -> bool:
        self.logger.info(
            f"[{notification.audience.value}] to={notification.recipient_address} "
            f"subject={notification.subject!r}"
        )
        return True


class WebhookChannelProvider(ChannelProvider):
    """POSTs notifications as JSON to a mail relay or webhook endpoint"""

    def __init__(self, url: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, notification: Notification) -> bool:
        payload = {
            'id': notification.id,
            'audience': notification.audience.value,
            'to': notification.recipient_address,
            'subject': notification.subject,
            'body': notification.body,
            'created_at': notification.created_at.isoformat(),
            'metadata': notification.metadata
        }
        response = self.session.post(
            self.url,
            json=payload,
            headers={'Content-Type': 'application/json'},
            timeout=self.timeout
        )
        response.raise_for_status()
        return True


class NotificationService:
    """
    Sends account and operator notifications through a channel provider
    """

    def __init__(self, provider: Optional[ChannelProvider] = None, operator_addresses: Iterable[str] = ()):
        self.provider = provider or LogChannelProvider()
        self.operator_addresses: List[str] = list(operator_addresses)
        self.logger = get_logger("yield_ledger.notifications")

    @classmethod
    def from_config(cls, config=None) -> 'NotificationService':
        if config is None:
            from .config import get_config
            config = get_config()
        if config.notification_webhook_url:
            provider = WebhookChannelProvider(config.notification_webhook_url, config.notification_timeout)
        else:
            provider = LogChannelProvider()
        return cls(provider, config.operator_emails)

    def _deliver(self, notification: Notification) -> bool:
        try:
            delivered = bool(self.provider.send(notification))
        except Exception as e:
            self.logger.warning(
                f"Notification to {notification.recipient_address} failed: {e}",
                exc_info=True
            )
            return False
        if not delivered:
            self.logger.warning(f"Notification to {notification.recipient_address} was not delivered")
        return delivered

    def notify_account(self, address: str, subject: str, body: str) -> bool:
        """Message one account holder; never raises"""
        if not address:
            self.logger.warning(f"Skipping notification without address: {subject!r}")
            return False
        return self._deliver(Notification(NotificationAudience.ACCOUNT, address, subject, body))

    def notify_operators(self, subject: str, body: str) -> bool:
        """Message every configured operator; never raises"""
        if not self.operator_addresses:
            self.logger.info(f"No operator addresses configured; dropping {subject!r}")
            return False
        results = [
            self._deliver(Notification(NotificationAudience.OPERATORS, address, subject, body))
            for address in self.operator_addresses
        ]
        return all(results)

    def dispatch(self, pending: Iterable[PendingNotification]) -> None:
        """Send messages queued by a committed settlement"""
        for message in pending:
            if message.address is None:
                self.notify_operators(message.subject, message.body)
            else:
                self.notify_account(message.address, message.subject, message.body)
