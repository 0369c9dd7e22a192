from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple, Union

from shipgraph.adapters.mock_notifier import MockNotifier
from shipgraph.errors import GraphError, NotFound
from shipgraph.repositories.base import EntityStore
from shipgraph.schemas.records import EntityKind, ShipmentStatus
from shipgraph.services.assignment_service import AssignmentManager
from shipgraph.services.notifications import notify_status_change
from shipgraph.services.status_service import StatusManager, parse_status
from shipgraph.utils.log import get_logger

log = get_logger("bulk", "BULK")


@dataclass
class BulkResult:
    """
    Best-effort, fully reported outcome of a bulk mutation. Successes are
    never rolled back when other ids fail; retrying the failed ids is up to
    the caller.
    """

    succeeded: int = 0
    succeeded_ids: List[str] = field(default_factory=list)
    failed: List[Tuple[str, GraphError]] = field(default_factory=list)

    @property
    def failed_ids(self) -> List[str]:
        return [package_id for package_id, _ in self.failed]

    def record_success(self, package_id: str) -> None:
        self.succeeded += 1
        self.succeeded_ids.append(package_id)

    def record_failure(self, package_id: str, error: GraphError) -> None:
        self.failed.append((package_id, error))

    def to_dict(self) -> dict:
        return {
            "succeeded": self.succeeded,
            "succeeded_ids": self.succeeded_ids,
            "failed": [
                {"id": package_id, "error": type(e).__name__, "detail": str(e)}
                for package_id, e in self.failed
            ],
        }


def _unique(ids: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(ids))


class BulkCoordinator:
    def __init__(self, store: EntityStore, notifier: Optional[MockNotifier] = None):
        self.store = store
        self.notifier = notifier or MockNotifier()
        self.assignments = AssignmentManager(store)
        self.statuses = StatusManager(store)

    def assign_packages(self, package_ids: Iterable[str], load_id: str) -> BulkResult:
        ids = _unique(package_ids)
        result = BulkResult()
        load = self.store.get(EntityKind.LOAD, load_id)
        if load is None:
            # reported per id rather than raised, like any other unit failure
            for package_id in ids:
                result.record_failure(package_id, NotFound("load", load_id))
            return result

        outcome = self.assignments.assign(ids, load_id)
        for package_id in ids:
            if package_id in outcome.succeeded:
                result.record_success(package_id)
            else:
                result.record_failure(package_id, outcome.failed[package_id])

        for package_id in result.succeeded_ids:
            package = self.store.get(EntityKind.PACKAGE, package_id)
            if package is None:
                continue
            notify_status_change(
                self.store,
                self.notifier,
                package,
                "assigned",
                {
                    "load_id": load_id,
                    "expected_delivery_date": _iso(load.expected_delivery_date(package.ship_to_city)),
                },
            )
        log.info(
            "bulk assign to load %s: succeeded=%d failed=%d",
            load_id,
            result.succeeded,
            len(result.failed),
        )
        return result

    def unassign_packages(self, package_ids: Iterable[str]) -> BulkResult:
        result = BulkResult()
        for package_id in _unique(package_ids):
            try:
                self.assignments.unassign(package_id)
                result.record_success(package_id)
            except GraphError as e:
                result.record_failure(package_id, e)
        return result

    def update_statuses(
        self, package_ids: Iterable[str], status: Union[str, ShipmentStatus]
    ) -> BulkResult:
        result = BulkResult()
        status = parse_status(status)
        for package_id in _unique(package_ids):
            try:
                package = self.statuses.update_status(package_id, status)
            except GraphError as e:
                result.record_failure(package_id, e)
                continue
            result.record_success(package_id)
            notify_status_change(self.store, self.notifier, package, status.value)
        log.info(
            "bulk status %s: succeeded=%d failed=%d",
            status.value,
            result.succeeded,
            len(result.failed),
        )
        return result


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None
