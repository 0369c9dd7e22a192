from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Union

from shipgraph.adapters.mock_notifier import MockNotifier
from shipgraph.errors import InvalidRequest, InvalidTransition, NotFound
from shipgraph.repositories.base import EntityStore
from shipgraph.schemas.records import (
    DeliveryCity,
    EntityKind,
    LoadRecord,
    LoadStatus,
    ShipmentStatus,
    utcnow,
)
from shipgraph.services.assignment_service import refresh_totals
from shipgraph.services.bulk_service import BulkCoordinator, BulkResult
from shipgraph.utils.log import get_logger

log = get_logger("loads", "LOAD")

ALLOWED_TRANSITIONS = {
    LoadStatus.PLANNED: {LoadStatus.IN_TRANSIT},
    LoadStatus.IN_TRANSIT: {LoadStatus.DELIVERED, LoadStatus.COMPLETE},
    LoadStatus.DELIVERED: {LoadStatus.COMPLETE},
    LoadStatus.COMPLETE: set(),
}

# load status -> shipment status pushed onto every member package
CASCADED_STATUS = {
    LoadStatus.IN_TRANSIT: ShipmentStatus.IN_TRANSIT,
    LoadStatus.DELIVERED: ShipmentStatus.DELIVERED,
}


@dataclass
class LoadTransition:
    load: LoadRecord
    cascade: Optional[BulkResult] = None


class LoadService:
    def __init__(self, store: EntityStore, notifier: Optional[MockNotifier] = None):
        self.store = store
        self.bulk = BulkCoordinator(store, notifier=notifier)

    def create_load(
        self,
        departure_date: Optional[date] = None,
        default_delivery_date: Optional[date] = None,
        delivery_cities: Optional[Iterable[Union[DeliveryCity, Dict]]] = None,
        transport_mode: str = "truck",
        driver_name: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> LoadRecord:
        load = LoadRecord(
            departure_date=departure_date,
            default_delivery_date=default_delivery_date,
            delivery_cities=[DeliveryCity.model_validate(c) for c in delivery_cities or []],
            transport_mode=transport_mode,
            driver_name=driver_name,
            notes=notes,
        )
        self.store.put(load)
        log.info("load %s created (departure=%s)", load.id, departure_date)
        return load

    def get_load(self, load_id: str) -> LoadRecord:
        load = self.store.get(EntityKind.LOAD, load_id)
        if load is None:
            raise NotFound("load", load_id)
        return load

    def list_loads(self, limit: int = 100) -> List[LoadRecord]:
        return self.store.list(EntityKind.LOAD, limit=limit)

    def find_by_date(self, departure: Union[date, str]) -> List[LoadRecord]:
        if isinstance(departure, str):
            try:
                departure = date.fromisoformat(departure)
            except ValueError:
                raise InvalidRequest(f"Invalid departure date: {departure!r}")
        return [l for l in self.store.list(EntityKind.LOAD) if l.departure_date == departure]

    def transition(self, load_id: str, status: Union[str, LoadStatus]) -> LoadTransition:
        """
        Move a load forward (planned -> in_transit -> delivered/complete).
        Entering in_transit or delivered pushes the matching shipment status
        onto the member packages as a best-effort bulk update.
        """
        try:
            target = LoadStatus(status)
        except ValueError:
            raise InvalidRequest(f"Unknown load status: {status!r}")
        load = self.get_load(load_id)
        if target == load.status:
            return LoadTransition(load=load)
        if target not in ALLOWED_TRANSITIONS[load.status]:
            raise InvalidTransition(
                f"Load {load_id} cannot move from {load.status.value} to {target.value}"
            )

        # the returned record carries the stored membership, including members
        # added after the read above
        load = self.store.update_load(
            load.model_copy(update={"status": target, "updated_at": utcnow()})
        )
        if load.total_packages != len(load.package_ids):
            load = refresh_totals(self.store, load_id) or load
        log.info("load %s -> %s", load_id, target.value)

        cascade = None
        if target in CASCADED_STATUS:
            # only packages that still point at this load follow it
            members = []
            for package_id in load.package_ids:
                package = self.store.get(EntityKind.PACKAGE, package_id)
                if package is not None and package.load_id == load_id:
                    members.append(package_id)
            cascade = self.bulk.update_statuses(members, CASCADED_STATUS[target])
        return LoadTransition(load=load, cascade=cascade)

    def update_delivery_cities(
        self, load_id: str, cities: Iterable[Union[DeliveryCity, Dict]]
    ) -> LoadRecord:
        load = self.get_load(load_id)
        updated = load.model_copy(
            update={
                "delivery_cities": [DeliveryCity.model_validate(c) for c in cities],
                "updated_at": utcnow(),
            }
        )
        load = self.store.update_load(updated)
        if load.total_packages != len(load.package_ids):
            load = refresh_totals(self.store, load_id) or load
        return load

    def refresh_totals(self, load_id: str) -> LoadRecord:
        load = refresh_totals(self.store, load_id)
        if load is None:
            raise NotFound("load", load_id)
        return load

    def get_expected_delivery_date(self, load_id: str, city: Optional[str]) -> Optional[date]:
        return self.get_load(load_id).expected_delivery_date(city)

    def delete_load(self, load_id: str) -> bool:
        """
        Detach every member (clear its load_id) and then remove the load; the
        load delete is the commit point. Members whose load_id already points
        elsewhere are left alone. Packages that point at the load without a
        membership entry (a lost membership write) are detached as well.
        """
        load = self.get_load(load_id)
        candidates = {}
        for package_id in load.package_ids:
            package = self.store.get(EntityKind.PACKAGE, package_id)
            if package is not None:
                candidates[package_id] = package
        for package in self.store.list(EntityKind.PACKAGE):
            if package.load_id == load_id:
                candidates.setdefault(package.id, package)

        detached = 0
        for package in candidates.values():
            if package.load_id != load_id:
                continue
            self.store.put(package.model_copy(update={"load_id": None, "updated_at": utcnow()}))
            detached += 1
        self.store.delete(EntityKind.LOAD, load_id)
        log.info("load %s deleted; %d packages detached", load_id, detached)
        return True
