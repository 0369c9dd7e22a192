from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Union
from uuid import uuid4

from pydantic import ValidationError

from shipgraph.adapters.mock_notifier import MockNotifier
from shipgraph.config import settings
from shipgraph.errors import DeleteForbidden, InvalidRequest, NotFound
from shipgraph.repositories.base import EntityStore
from shipgraph.schemas.records import (
    EntityKind,
    LabelStatus,
    PackageRecord,
    PaymentStatus,
    ShipmentStatus,
)
from shipgraph.services.assignment_service import AssignmentManager
from shipgraph.services.bulk_service import BulkCoordinator, BulkResult
from shipgraph.services.consolidation_service import (
    ConsolidationManager,
    PackageWithRelationships,
)
from shipgraph.services.index_service import (
    CUSTOMER_INDEX,
    DATE_INDEX,
    STATUS_INDEX,
    IndexMaintainer,
)
from shipgraph.services.notifications import notify_status_change
from shipgraph.services.status_service import StatusManager, parse_status
from shipgraph.utils.log import get_logger

log = get_logger("packages", "PACKAGE")

# owned by the graph core; intake data can't set them
_GRAPH_FIELDS = ("id", "shipment_status", "load_id", "parent_id", "child_ids")


class PackageService:
    """
    Entry point the API layer and other collaborators call. Each method
    validates against the current store state, performs the mutation through
    the owning manager, keeps the indexes in step and fires notifications
    after the commit.
    """

    def __init__(self, store: EntityStore, notifier: Optional[MockNotifier] = None):
        self.store = store
        self.notifier = notifier or MockNotifier(delay_ms=settings.NOTIFY_DELAY_MS)
        self.index = IndexMaintainer(store)
        self.assignments = AssignmentManager(store)
        self.consolidation = ConsolidationManager(store)
        self.statuses = StatusManager(store, index=self.index)
        self.bulk = BulkCoordinator(store, notifier=self.notifier)

    def _gen_barcode(self) -> str:
        return f"PKG-{uuid4().hex[:12].upper()}"

    def create_package(self, data: Dict) -> PackageRecord:
        customer_id = data.get("customer_id")
        if not customer_id or self.store.get(EntityKind.CUSTOMER, customer_id) is None:
            raise NotFound("customer", customer_id)

        fields = {k: v for k, v in data.items() if k not in _GRAPH_FIELDS and v is not None}
        fields.setdefault("barcode", self._gen_barcode())
        try:
            package = PackageRecord(**fields)
        except ValidationError as e:
            raise InvalidRequest(f"Invalid package data: {e.errors()[0]['msg']}")

        self.store.put(package)  # commit point
        self.index.reindex(None, package)
        log.info("package %s created for customer %s", package.id, customer_id)
        notify_status_change(self.store, self.notifier, package, ShipmentStatus.READY.value)
        return package

    def get_package(self, package_id: str) -> PackageRecord:
        package = self.store.get(EntityKind.PACKAGE, package_id)
        if package is None:
            raise NotFound("package", package_id)
        return package

    def list_packages(self, limit: int = 100) -> List[PackageRecord]:
        return self.store.list(EntityKind.PACKAGE, limit=limit)

    def get_with_relationships(self, package_id: str) -> PackageWithRelationships:
        return self.consolidation.get_with_relationships(package_id)

    # ---- assignment ----

    def assign_packages(self, package_ids: Iterable[str], load_id: str) -> BulkResult:
        return self.bulk.assign_packages(package_ids, load_id)

    def unassign_package(self, package_id: str) -> PackageRecord:
        return self.assignments.unassign(package_id)

    # ---- consolidation ----

    def consolidate(self, child_id: str, parent_id: str) -> bool:
        return self.consolidation.consolidate(child_id, parent_id)

    def deconsolidate(self, child_id: str) -> bool:
        return self.consolidation.deconsolidate(child_id)

    # ---- status ----

    def update_status(self, package_id: str, status: Union[str, ShipmentStatus]) -> PackageRecord:
        package = self.statuses.update_status(package_id, status)
        notify_status_change(self.store, self.notifier, package, package.shipment_status.value)
        return package

    def mark_delivered(
        self, package_id: str, delivered_at: Optional[datetime] = None
    ) -> PackageRecord:
        package = self.statuses.update_status(
            package_id, ShipmentStatus.DELIVERED, delivered_at=delivered_at
        )
        notify_status_change(
            self.store,
            self.notifier,
            package,
            ShipmentStatus.DELIVERED.value,
            {"delivered_at": package.delivery_date.isoformat() if package.delivery_date else None},
        )
        return package

    def get_expected_delivery_date(self, package_id: str) -> Optional[date]:
        """
        Delivery date for the package's destination city on its load, falling
        back to the load default. None while unassigned or if the load is gone.
        """
        package = self.get_package(package_id)
        if not package.load_id:
            return None
        load = self.store.get(EntityKind.LOAD, package.load_id)
        if load is None:
            log.warning("package %s points at missing load %s", package_id, package.load_id)
            return None
        return load.expected_delivery_date(package.ship_to_city)

    # ---- delete ----

    def delete_package(self, package_id: str) -> bool:
        package = self.get_package(package_id)
        if (
            package.label_status == LabelStatus.PURCHASED
            and package.payment_status == PaymentStatus.PAID
        ):
            raise DeleteForbidden(
                f"Cannot delete package {package_id} with purchased label and paid status"
            )

        # detach first: a package is never removed while a load or a
        # consolidation still references it
        if package.load_id:
            self.assignments.unassign(package_id)
        if package.parent_id:
            self.consolidation.deconsolidate(package_id)
        if package.child_ids:
            self.consolidation.release_children(package_id)

        self.store.delete(EntityKind.PACKAGE, package_id)  # commit point
        self.index.purge(package_id)
        log.info("package %s deleted", package_id)
        return True

    # ---- lookups ----

    def find_by_customer(self, customer_id: str) -> List[PackageRecord]:
        return self.index.find(CUSTOMER_INDEX, customer_id)

    def find_by_date(self, received: Union[date, str]) -> List[PackageRecord]:
        value = received.isoformat() if isinstance(received, date) else received
        return self.index.find(DATE_INDEX, value)

    def find_by_status(self, status: Union[str, ShipmentStatus]) -> List[PackageRecord]:
        return self.index.find(STATUS_INDEX, parse_status(status).value)

    def package_stats(self) -> Dict[str, int]:
        packages = self.store.list(EntityKind.PACKAGE)
        stats = {
            "unassigned": sum(1 for p in packages if not p.load_id),
            "assigned": sum(
                1 for p in packages if p.load_id and p.shipment_status == ShipmentStatus.READY
            ),
            "in_transit": sum(1 for p in packages if p.shipment_status == ShipmentStatus.IN_TRANSIT),
            "delivered": sum(1 for p in packages if p.shipment_status == ShipmentStatus.DELIVERED),
        }
        stats["total"] = len(packages)
        return stats

    def customer_packages_with_status(self, customer_id: str) -> Dict[str, List[PackageRecord]]:
        """Group one customer's packages into the buckets the customer view shows."""
        packages = self.find_by_customer(customer_id)
        return {
            "all": packages,
            "received": [
                p for p in packages
                if p.shipment_status == ShipmentStatus.READY and not p.tracking_number
            ],
            "ready_to_ship": [
                p for p in packages
                if p.label_status in (LabelStatus.QUOTED, LabelStatus.PURCHASED)
            ],
            "shipped": [p for p in packages if p.shipment_status == ShipmentStatus.IN_TRANSIT],
            "resolved": [p for p in packages if p.shipment_status == ShipmentStatus.DELIVERED],
        }

    def packages_by_load_status(self, status: Optional[str] = None) -> List[PackageRecord]:
        # same buckets as package_stats
        packages = self.store.list(EntityKind.PACKAGE)
        if not status:
            return packages
        if status == "unassigned":
            return [p for p in packages if not p.load_id]
        if status == "assigned":
            return [p for p in packages if p.load_id and p.shipment_status == ShipmentStatus.READY]
        if status == "in_transit":
            return [p for p in packages if p.shipment_status == ShipmentStatus.IN_TRANSIT]
        if status == "delivered":
            return [p for p in packages if p.shipment_status == ShipmentStatus.DELIVERED]
        return []

    def search(self, query: str, limit: int = 50) -> List[PackageRecord]:
        """
        Case-insensitive substring match on tracking number, barcode and
        recipient name. Queries shorter than two characters return nothing.
        """
        if not query or len(query.strip()) < 2:
            return []
        needle = query.strip().lower()
        hits = []
        for package in self.store.list(EntityKind.PACKAGE):
            fields = (package.tracking_number, package.barcode, package.ship_to_name)
            if any(f and needle in f.lower() for f in fields):
                hits.append(package)
                if len(hits) >= limit:
                    break
        return hits
