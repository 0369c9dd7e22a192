from typing import Dict, Optional

from shipgraph.adapters.mock_notifier import MockNotifier
from shipgraph.repositories.base import EntityStore
from shipgraph.schemas.records import EntityKind, PackageRecord
from shipgraph.utils.log import get_logger

log = get_logger("notifications", "NOTIFY")


def notify_status_change(
    store: EntityStore,
    notifier: MockNotifier,
    package: PackageRecord,
    status: str,
    extra: Optional[Dict] = None,
) -> bool:
    """
    Fire-and-forget customer notification, sent after the mutation committed.
    Returns whether it went out; a failure is logged and never reaches the caller.
    """
    try:
        customer = store.get(EntityKind.CUSTOMER, package.customer_id)
        if customer is None:
            log.info(
                "no customer %s for package %s; notification skipped",
                package.customer_id,
                package.id,
            )
            return False
        notifier.send_status_notification(customer, package, status, extra)
        return True
    except Exception as e:
        log.warning(
            "status notification for package %s (%s) failed: %s: %s",
            package.id,
            status,
            type(e).__name__,
            e,
        )
        return False
