from datetime import datetime
from typing import Optional, Union

from shipgraph.errors import InvalidRequest, NotFound
from shipgraph.repositories.base import EntityStore
from shipgraph.schemas.records import EntityKind, PackageRecord, ShipmentStatus, utcnow
from shipgraph.services.index_service import IndexMaintainer


def parse_status(status: Union[str, ShipmentStatus]) -> ShipmentStatus:
    try:
        return ShipmentStatus(status)
    except ValueError:
        raise InvalidRequest(f"Unknown shipment status: {status!r}")


class StatusManager:
    """Shipment-status changes: package write (commit point), then the status index."""

    def __init__(self, store: EntityStore, index: Optional[IndexMaintainer] = None):
        self.store = store
        self.index = index or IndexMaintainer(store)

    def update_status(
        self,
        package_id: str,
        status: Union[str, ShipmentStatus],
        delivered_at: Optional[datetime] = None,
    ) -> PackageRecord:
        status = parse_status(status)
        before = self.store.get(EntityKind.PACKAGE, package_id)
        if before is None:
            raise NotFound("package", package_id)
        if before.shipment_status == status and delivered_at is None:
            return before

        now = utcnow()
        updates = {"shipment_status": status, "status_changed_at": now, "updated_at": now}
        if status == ShipmentStatus.DELIVERED:
            updates["delivery_date"] = delivered_at or now
        after = before.model_copy(update=updates)
        self.store.put(after)
        self.index.reindex(before, after)
        return after
