import abc
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set, Union

from shipgraph.schemas.records import (
    CustomerRecord,
    EntityKind,
    IndexKey,
    LoadRecord,
    PackageRecord,
)

Record = Union[PackageRecord, LoadRecord, CustomerRecord]


@dataclass(frozen=True)
class StoreOp:
    action: str  # put, delete
    record: Optional[Record] = None
    kind: Optional[EntityKind] = None
    entity_id: Optional[str] = None

    @classmethod
    def put(cls, record: Record) -> "StoreOp":
        return cls(action="put", record=record, kind=record.KIND, entity_id=record.id)

    @classmethod
    def delete(cls, kind: EntityKind, entity_id: str) -> "StoreOp":
        return cls(action="delete", kind=kind, entity_id=entity_id)


class EntityStore(abc.ABC):
    """
    Storage contract the graph core issues reads and writes against.

    Every single call is durable on return. Nothing here promises that two
    calls land together: `transact` exists only where the backend can honor
    it, so services must be written to tolerate partial application and name
    the write that acts as their commit point.
    """

    backend: str = "abstract"
    # True when the backend can apply several record writes atomically
    supports_transactions: bool = False
    # True when one (package, index) slot holds a single value, so a stale
    # entry must be deleted before the new one can be written
    unique_index_slots: bool = False

    @abc.abstractmethod
    def get(self, kind: EntityKind, entity_id: str) -> Optional[Record]:
        ...

    @abc.abstractmethod
    def put(self, record: Record) -> Record:
        ...

    @abc.abstractmethod
    def update_load(self, load: LoadRecord) -> LoadRecord:
        """
        Write a load's own fields (status, dates, cities, totals) and leave its
        stored membership untouched. load.package_ids is ignored.
        """

    @abc.abstractmethod
    def delete(self, kind: EntityKind, entity_id: str) -> bool:
        ...

    @abc.abstractmethod
    def list(self, kind: EntityKind, limit: Optional[int] = None) -> List[Record]:
        ...

    @abc.abstractmethod
    def transact(self, ops: Iterable[StoreOp]) -> None:
        ...

    # secondary-index primitives

    @abc.abstractmethod
    def put_index(self, key: IndexKey) -> None:
        ...

    @abc.abstractmethod
    def delete_index(self, key: IndexKey) -> None:
        ...

    @abc.abstractmethod
    def index_entries(self, package_id: str) -> Set[IndexKey]:
        ...

    @abc.abstractmethod
    def query_index(self, name: str, value: str) -> List[str]:
        ...

    @abc.abstractmethod
    def indexed_package_ids(self) -> Set[str]:
        """Every package id that has at least one index entry (orphans included)."""

    def apply(self, op: StoreOp) -> None:
        if op.action == "put":
            self.put(op.record)
        elif op.action == "delete":
            self.delete(op.kind, op.entity_id)
        else:
            raise ValueError(f"Unknown store op: {op.action}")


def apply_writes(store: EntityStore, ops: List[StoreOp]) -> None:
    """
    Apply ops atomically when the backend can, otherwise one by one in the
    given order. Callers put their commit-point write where a crash after it
    leaves a state reconciliation can finish.
    """
    if not ops:
        return
    if store.supports_transactions:
        store.transact(ops)
        return
    for op in ops:
        store.apply(op)
