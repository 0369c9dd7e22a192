import time
from typing import Dict, List, Optional

from shipgraph.config import settings
from shipgraph.schemas.records import CustomerRecord, PackageRecord


class NotificationError(Exception):
    pass


class MockNotifier:
    """
    Simple synchronous mock notification channel.
    send_status_notification returns the message dict it "delivered" and keeps
    a copy in `sent` so tests can inspect what went out.
    """

    def __init__(self, delay_ms: int = 0, fail: bool = False):
        self.delay = delay_ms / 1000.0
        self.fail = fail
        self.sent: List[Dict] = []

    def send_status_notification(
        self,
        customer: CustomerRecord,
        package: PackageRecord,
        status: str,
        extra: Optional[Dict] = None,
    ) -> Dict:
        # simulate latency
        time.sleep(self.delay)
        if self.fail:
            raise NotificationError("Simulated notification gateway failure")
        message = {
            "to": customer.email or customer.phone,
            "customer_name": customer.name,
            "package_id": package.id,
            "tracking": package.tracking_number or package.id,
            "status": status,
        }
        if extra:
            message.update(extra)
        self.sent.append(message)
        return message

    def health_check(self) -> bool:
        return not self.fail


_notifier: Optional[MockNotifier] = None


def get_notifier() -> MockNotifier:
    """FastAPI dependency: one process-wide notifier configured from settings."""
    global _notifier
    if _notifier is None:
        _notifier = MockNotifier(delay_ms=settings.NOTIFY_DELAY_MS)
    return _notifier
