from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Set

from shipgraph.errors import AlreadyAssigned, GraphError, NotFound
from shipgraph.repositories.base import EntityStore
from shipgraph.schemas.records import EntityKind, LoadRecord, PackageRecord, utcnow
from shipgraph.utils.log import get_logger

log = get_logger("assignment", "ASSIGN")


@dataclass
class AssignmentResult:
    succeeded: Set[str] = field(default_factory=set)
    failed: Dict[str, GraphError] = field(default_factory=dict)


def refresh_totals(store: EntityStore, load_id: str, attempts: int = 3) -> Optional[LoadRecord]:
    """
    Recompute total_packages / total_weight from the current membership.

    Weights are summed first, then the load is re-read right before the
    write; if its membership moved in between, the totals are recomputed.
    Members that no longer resolve count toward total_packages but add no weight.
    """
    load = store.get(EntityKind.LOAD, load_id)
    for _ in range(attempts):
        if load is None:
            return None
        weight = 0.0
        for package_id in load.package_ids:
            package = store.get(EntityKind.PACKAGE, package_id)
            if package is not None:
                weight += package.weight or 0.0
        fresh = store.get(EntityKind.LOAD, load_id)
        if fresh is None:
            return None
        if fresh.package_ids != load.package_ids:
            load = fresh
            continue
        totals = {"total_packages": len(fresh.package_ids), "total_weight": round(weight, 3)}
        if fresh.total_packages == totals["total_packages"] and fresh.total_weight == totals["total_weight"]:
            return fresh
        updated = fresh.model_copy(update=dict(totals, updated_at=utcnow()))
        return store.update_load(updated)
    log.info("membership of load %s kept moving; totals left for the next refresh", load_id)
    return load


class AssignmentManager:
    """
    Owns "a package is on at most one load" and the ordered membership list.

    Membership edits are read-modify-write on the Load record with the read
    taken immediately before the write. Concurrent edits of one load can
    still lose an update; reconciliation restores membership from the
    packages' load_id, which is the source of truth.

    Commit point of assign/unassign: the package write carrying the new load_id.
    """

    def __init__(self, store: EntityStore):
        self.store = store

    def assign(
        self, package_ids: Iterable[str], load_id: str, only_if_unassigned: bool = False
    ) -> AssignmentResult:
        """Assign each id independently; one id's failure never stops the others."""
        result = AssignmentResult()
        for package_id in package_ids:
            try:
                self.assign_one(package_id, load_id, only_if_unassigned=only_if_unassigned)
                result.succeeded.add(package_id)
            except GraphError as e:
                log.info("assign %s -> load %s failed: %s", package_id, load_id, e)
                result.failed[package_id] = e
        return result

    def assign_one(
        self, package_id: str, load_id: str, only_if_unassigned: bool = False
    ) -> PackageRecord:
        package = self._package(package_id)
        if self.store.get(EntityKind.LOAD, load_id) is None:
            raise NotFound("load", load_id)

        previous = package.load_id
        if previous == load_id:
            # already there: make sure the membership side agrees
            self.add_member(load_id, package_id)
            refresh_totals(self.store, load_id)
            return package

        if previous:
            if only_if_unassigned:
                raise AlreadyAssigned(package_id, previous)
            self.remove_member(previous, package_id)

        self.add_member(load_id, package_id)
        # commit point; assignment alone never changes shipment_status, so no reindex
        updated = package.model_copy(update={"load_id": load_id, "updated_at": utcnow()})
        self.store.put(updated)

        if previous:
            refresh_totals(self.store, previous)
        refresh_totals(self.store, load_id)
        log.debug("package %s assigned to load %s (was %s)", package_id, load_id, previous)
        return updated

    def unassign(self, package_id: str) -> PackageRecord:
        package = self._package(package_id)
        previous = package.load_id
        if not previous:
            return package
        self.remove_member(previous, package_id)
        updated = package.model_copy(update={"load_id": None, "updated_at": utcnow()})
        self.store.put(updated)
        refresh_totals(self.store, previous)
        return updated

    def add_member(self, load_id: str, package_id: str) -> LoadRecord:
        load = self.store.get(EntityKind.LOAD, load_id)
        if load is None:
            raise NotFound("load", load_id)
        if package_id in load.package_ids:
            return load
        updated = load.model_copy(
            update={"package_ids": load.package_ids + [package_id], "updated_at": utcnow()}
        )
        self.store.put(updated)
        return updated

    def remove_member(self, load_id: str, package_id: str) -> Optional[LoadRecord]:
        load = self.store.get(EntityKind.LOAD, load_id)
        if load is None:
            # detaching from a load that is already gone is a no-op
            return None
        if package_id not in load.package_ids:
            return load
        updated = load.model_copy(
            update={
                "package_ids": [p for p in load.package_ids if p != package_id],
                "updated_at": utcnow(),
            }
        )
        self.store.put(updated)
        return updated

    def _package(self, package_id: str) -> PackageRecord:
        package = self.store.get(EntityKind.PACKAGE, package_id)
        if package is None:
            raise NotFound("package", package_id)
        return package
