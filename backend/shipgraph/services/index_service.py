from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set, Tuple

from shipgraph.errors import IndexDrift, StoreError
from shipgraph.repositories.base import EntityStore
from shipgraph.schemas.records import EntityKind, IndexKey, PackageRecord
from shipgraph.utils.log import get_logger

log = get_logger("index", "INDEX")

CUSTOMER_INDEX = "customer"
DATE_INDEX = "date"
STATUS_INDEX = "status"
INDEX_NAMES = (CUSTOMER_INDEX, DATE_INDEX, STATUS_INDEX)


def index_keys(package: Optional[PackageRecord]) -> Set[IndexKey]:
    """The index entries a package snapshot should have (none for a missing package)."""
    if package is None:
        return set()
    return {
        IndexKey(CUSTOMER_INDEX, package.customer_id, package.id),
        IndexKey(DATE_INDEX, package.received_date.isoformat(), package.id),
        IndexKey(STATUS_INDEX, package.shipment_status.value, package.id),
    }


@dataclass
class IndexDelta:
    added: List[IndexKey] = field(default_factory=list)
    removed: List[IndexKey] = field(default_factory=list)
    failed: List[Tuple[IndexKey, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class IndexRepair:
    package_id: str
    stale: List[IndexKey] = field(default_factory=list)
    missing: List[IndexKey] = field(default_factory=list)
    delta: IndexDelta = field(default_factory=IndexDelta)

    @property
    def drifted(self) -> bool:
        return bool(self.stale or self.missing)

    def to_dict(self) -> dict:
        return {
            "package_id": self.package_id,
            "drifted": self.drifted,
            "stale": [list(k) for k in self.stale],
            "missing": [list(k) for k in self.missing],
            "failed": [[list(k), err] for k, err in self.delta.failed],
        }


class IndexMaintainer:
    """
    Keeps the customer / received-date / status indexes in step with the
    primary package records.

    Index writes always follow the primary write. When one fails the primary
    record is still right, so the failure is logged, reported in the returned
    IndexDelta and left for reconcile_indexes to repair.
    """

    def __init__(self, store: EntityStore):
        self.store = store

    def reindex(
        self, before: Optional[PackageRecord], after: Optional[PackageRecord]
    ) -> IndexDelta:
        """
        Apply the symmetric difference between the two snapshots' index keys.
        before=None is a creation, after=None a deletion. Identical snapshots
        issue no writes.
        """
        old = index_keys(before)
        new = index_keys(after)
        return self._apply(sorted(old - new), sorted(new - old))

    def purge(self, package_id: str) -> IndexDelta:
        """Drop every entry for the id, whatever values they hold."""
        return self._apply(sorted(self.store.index_entries(package_id)), [])

    def reconcile_indexes(self, package_id: str, strict: bool = False) -> IndexRepair:
        """
        Recompute the entries from the current primary record and repair any
        difference. Drift is logged and reported; with strict=True it is also
        raised as IndexDrift once the repair has been applied.
        """
        package = self.store.get(EntityKind.PACKAGE, package_id)
        expected = index_keys(package)
        actual = self.store.index_entries(package_id)
        stale = sorted(actual - expected)
        missing = sorted(expected - actual)
        repair = IndexRepair(package_id=package_id, stale=stale, missing=missing)
        if not repair.drifted:
            return repair

        repair.delta = self._apply(stale, missing)
        drift = IndexDrift(package_id, stale, missing)
        log.warning(
            "%s; repaired added=%d removed=%d failed=%d",
            drift,
            len(repair.delta.added),
            len(repair.delta.removed),
            len(repair.delta.failed),
        )
        if strict:
            raise drift
        return repair

    def find(self, name: str, value: str) -> List[PackageRecord]:
        """
        Resolve index entries back to packages. Entries whose package is gone
        or no longer carries the value are skipped; reconciliation removes them.
        """
        found = []
        for package_id in self.store.query_index(name, value):
            package = self.store.get(EntityKind.PACKAGE, package_id)
            if package is None:
                log.debug("dangling %s index entry %s -> %s", name, value, package_id)
                continue
            if IndexKey(name, value, package_id) not in index_keys(package):
                log.debug("stale %s index entry %s -> %s", name, value, package_id)
                continue
            found.append(package)
        return found

    def _apply(self, to_delete: Iterable[IndexKey], to_put: Iterable[IndexKey]) -> IndexDelta:
        steps = [("put", k) for k in to_put]
        deletes = [("delete", k) for k in to_delete]
        # a single-value slot only accepts the new entry once the old one is gone;
        # elsewhere puts go first so a lookup never misses the package
        steps = deletes + steps if self.store.unique_index_slots else steps + deletes

        delta = IndexDelta()
        for action, key in steps:
            try:
                if action == "delete":
                    self.store.delete_index(key)
                    delta.removed.append(key)
                else:
                    self.store.put_index(key)
                    delta.added.append(key)
            except StoreError as e:
                log.warning("index %s of %s failed: %s", action, tuple(key), e)
                delta.failed.append((key, str(e)))
        return delta
