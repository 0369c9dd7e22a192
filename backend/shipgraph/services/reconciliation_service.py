import os
import tempfile
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from filelock import FileLock, Timeout

from shipgraph.config import settings
from shipgraph.errors import GraphError, NotFound
from shipgraph.repositories.base import EntityStore
from shipgraph.schemas.records import EntityKind, PackageRecord, utcnow
from shipgraph.services.assignment_service import AssignmentManager, refresh_totals
from shipgraph.services.index_service import IndexMaintainer, IndexRepair
from shipgraph.utils.log import get_logger

log = get_logger("reconcile", "RECONCILE")


@dataclass
class PackageRepair:
    package_id: str
    index: Optional[IndexRepair] = None
    fixes: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.fixes) or bool(self.index and self.index.drifted)

    def to_dict(self) -> dict:
        return {
            "package_id": self.package_id,
            "fixes": self.fixes,
            "index": self.index.to_dict() if self.index else None,
        }


@dataclass
class LoadRepair:
    load_id: str
    duplicates: List[str] = field(default_factory=list)
    phantoms: List[str] = field(default_factory=list)
    total_packages: int = 0
    total_weight: float = 0.0

    @property
    def changed(self) -> bool:
        return bool(self.duplicates or self.phantoms)

    def to_dict(self) -> dict:
        return {
            "load_id": self.load_id,
            "duplicates": self.duplicates,
            "phantoms": self.phantoms,
            "total_packages": self.total_packages,
            "total_weight": self.total_weight,
        }


@dataclass
class SweepReport:
    skipped: bool = False
    packages_checked: int = 0
    loads_checked: int = 0
    packages_repaired: List[str] = field(default_factory=list)
    loads_repaired: List[str] = field(default_factory=list)
    orphan_index_ids: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "skipped": self.skipped,
            "packages_checked": self.packages_checked,
            "loads_checked": self.loads_checked,
            "packages_repaired": self.packages_repaired,
            "loads_repaired": self.loads_repaired,
            "orphan_index_ids": self.orphan_index_ids,
            "errors": self.errors,
        }


def default_lock_path() -> str:
    locks_dir = os.path.join(tempfile.gettempdir(), "shipgraph_locks")
    os.makedirs(locks_dir, exist_ok=True)
    return os.path.join(locks_dir, "reconcile.lock")


class Reconciler:
    """
    Restores the bidirectional links and the secondary indexes after partial
    failures or lost races. The package side (load_id, parent_id) is the
    source of truth; Load membership and a parent's child_ids are rebuilt
    from it.
    """

    def __init__(
        self,
        store: EntityStore,
        lock_path: Optional[str] = None,
        lock_timeout: Optional[float] = None,
    ):
        self.store = store
        self.index = IndexMaintainer(store)
        self.assignments = AssignmentManager(store)
        self.lock_path = lock_path or default_lock_path()
        self.lock_timeout = (
            settings.RECONCILE_LOCK_TIMEOUT_SECONDS if lock_timeout is None else lock_timeout
        )

    def reconcile_package(self, package_id: str) -> PackageRepair:
        repair = PackageRepair(package_id=package_id)
        repair.index = self.index.reconcile_indexes(package_id)

        package = self.store.get(EntityKind.PACKAGE, package_id)
        if package is None:
            # only orphaned index entries could be left, and they are gone now
            return repair

        updates = {}
        if package.load_id:
            load = self.store.get(EntityKind.LOAD, package.load_id)
            if load is None:
                updates["load_id"] = None
                repair.fixes.append(f"cleared dangling load_id {package.load_id}")
            elif package_id not in load.package_ids:
                self.assignments.add_member(package.load_id, package_id)
                refresh_totals(self.store, package.load_id)
                repair.fixes.append(f"restored membership on load {package.load_id}")

        if package.parent_id:
            parent = self.store.get(EntityKind.PACKAGE, package.parent_id)
            if parent is None:
                updates["parent_id"] = None
                updates["consolidated_at"] = None
                repair.fixes.append(f"cleared dangling parent_id {package.parent_id}")
            elif package_id not in parent.child_ids:
                self.store.put(
                    parent.model_copy(
                        update={"child_ids": parent.child_ids + [package_id], "updated_at": utcnow()}
                    )
                )
                repair.fixes.append(f"restored child entry on parent {package.parent_id}")

        if package.child_ids:
            kept = [c for c in dict.fromkeys(package.child_ids) if self._points_back(c, package_id)]
            if kept != package.child_ids:
                dropped = [c for c in package.child_ids if c not in kept]
                updates["child_ids"] = kept
                repair.fixes.append(f"dropped child entries {dropped}")

        if updates:
            # re-read so a concurrent write to the other fields isn't clobbered
            fresh = self.store.get(EntityKind.PACKAGE, package_id)
            if fresh is not None:
                updates["updated_at"] = utcnow()
                self.store.put(fresh.model_copy(update=updates))

        if repair.fixes:
            log.warning("package %s repaired: %s", package_id, "; ".join(repair.fixes))
        return repair

    def _points_back(self, child_id: str, parent_id: str) -> bool:
        child = self.store.get(EntityKind.PACKAGE, child_id)
        return child is not None and child.parent_id == parent_id

    def reconcile_load(self, load_id: str) -> LoadRepair:
        load = self.store.get(EntityKind.LOAD, load_id)
        if load is None:
            raise NotFound("load", load_id)

        repair = LoadRepair(load_id=load_id)
        seen = set()
        for package_id in load.package_ids:
            if package_id in seen:
                repair.duplicates.append(package_id)
                continue
            seen.add(package_id)
            package: Optional[PackageRecord] = self.store.get(EntityKind.PACKAGE, package_id)
            if package is None or package.load_id != load_id:
                repair.phantoms.append(package_id)

        if repair.changed:
            drop = set(repair.phantoms)
            # re-read so members appended while we were checking are kept
            fresh = self.store.get(EntityKind.LOAD, load_id)
            if fresh is not None:
                members = [p for p in dict.fromkeys(fresh.package_ids) if p not in drop]
                self.store.put(fresh.model_copy(update={"package_ids": members, "updated_at": utcnow()}))
            log.warning(
                "load %s repaired: duplicates=%s phantoms=%s",
                load_id,
                repair.duplicates,
                repair.phantoms,
            )

        load = refresh_totals(self.store, load_id)
        if load is not None:
            repair.total_packages = load.total_packages
            repair.total_weight = load.total_weight
        return repair

    def sweep(self) -> SweepReport:
        """
        Full pass over every package, every orphaned index id and every load.
        Only one sweep runs at a time across processes; a sweep that can't get
        the lock within the timeout is skipped.
        """
        report = SweepReport()
        lock = FileLock(self.lock_path)
        try:
            with lock.acquire(timeout=self.lock_timeout):
                self._sweep(report)
        except Timeout:
            log.info("another sweep holds %s; skipping", self.lock_path)
            report.skipped = True
        return report

    def _sweep(self, report: SweepReport) -> None:
        package_ids = [p.id for p in self.store.list(EntityKind.PACKAGE)]
        for package_id in package_ids:
            report.packages_checked += 1
            try:
                if self.reconcile_package(package_id).changed:
                    report.packages_repaired.append(package_id)
            except GraphError as e:
                log.warning("sweep: package %s failed: %s", package_id, e)
                report.errors[package_id] = str(e)

        # index entries whose package record no longer exists
        for package_id in sorted(self.store.indexed_package_ids() - set(package_ids)):
            try:
                self.index.reconcile_indexes(package_id)
                report.orphan_index_ids.append(package_id)
            except GraphError as e:
                report.errors[package_id] = str(e)

        # membership goes last so it sees the load_id fixes made above
        for load in self.store.list(EntityKind.LOAD):
            report.loads_checked += 1
            try:
                if self.reconcile_load(load.id).changed:
                    report.loads_repaired.append(load.id)
            except GraphError as e:
                log.warning("sweep: load %s failed: %s", load.id, e)
                report.errors[load.id] = str(e)

        log.info(
            "sweep done: packages=%d loads=%d repaired packages=%d loads=%d orphans=%d",
            report.packages_checked,
            report.loads_checked,
            len(report.packages_repaired),
            len(report.loads_repaired),
            len(report.orphan_index_ids),
        )
