from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy.orm import sessionmaker

from shipgraph.db import SessionLocal
from shipgraph.errors import TransactionsUnsupported
from shipgraph.models.wide_item import WideItem
from shipgraph.repositories.base import EntityStore, Record, StoreOp
from shipgraph.schemas.records import RECORD_TYPES, EntityKind, IndexKey, LoadRecord
from shipgraph.utils.transactions import short_session

METADATA = "METADATA"
MEMBER_TYPE = "LoadPackageRelation"
INDEX_TYPE = "IndexEntry"

_ITEM_TYPES = {
    EntityKind.PACKAGE: "Package",
    EntityKind.LOAD: "Load",
    EntityKind.CUSTOMER: "Customer",
}


def entity_pk(kind: EntityKind, entity_id: str) -> str:
    return f"{kind.value.upper()}#{entity_id}"


def package_sk(package_id: str) -> str:
    return f"PACKAGE#{package_id}"


def index_pk(name: str, value: str) -> str:
    return f"IDX#{name.upper()}#{value}"


class WideColumnStore(EntityStore):
    """
    Entity store over a single wide-column table (see WideItem for the key
    layout). Each item write commits on its own: there is no multi-item
    transaction, a Load put lands as a metadata write followed by a separate
    membership batch, and index entries for different values of the same
    slot are distinct items.
    """

    backend = "wide_column"
    supports_transactions = False
    unique_index_slots = False

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or SessionLocal

    # ---- records ----

    def get(self, kind: EntityKind, entity_id: str) -> Optional[Record]:
        with short_session(self.session_factory) as s:
            item = s.get(WideItem, (entity_pk(kind, entity_id), METADATA))
            if item is None:
                return None
            data = dict(item.data or {})
            if kind == EntityKind.LOAD:
                data["package_ids"] = self._members(s, entity_id)
            return RECORD_TYPES[kind].model_validate(data)

    def put(self, record: Record) -> Record:
        self._write_metadata(record)
        if isinstance(record, LoadRecord):
            self._write_members(record.id, record.package_ids)
        return record

    def update_load(self, load: LoadRecord) -> LoadRecord:
        self._write_metadata(load)
        return self.get(EntityKind.LOAD, load.id)

    def _write_metadata(self, record: Record) -> None:
        kind = record.KIND
        data = record.model_dump(mode="json")
        if kind == EntityKind.LOAD:
            # membership lives in its own items, not inline
            data.pop("package_ids", None)
        with short_session(self.session_factory) as s:
            s.merge(
                WideItem(
                    pk=entity_pk(kind, record.id),
                    sk=METADATA,
                    item_type=_ITEM_TYPES[kind],
                    data=data,
                )
            )

    def delete(self, kind: EntityKind, entity_id: str) -> bool:
        pk = entity_pk(kind, entity_id)
        with short_session(self.session_factory) as s:
            item = s.get(WideItem, (pk, METADATA))
            if item is None:
                return False
            s.delete(item)
        if kind == EntityKind.LOAD:
            with short_session(self.session_factory) as s:
                s.query(WideItem).filter(
                    WideItem.pk == pk, WideItem.item_type == MEMBER_TYPE
                ).delete(synchronize_session=False)
        return True

    def list(self, kind: EntityKind, limit: Optional[int] = None) -> List[Record]:
        with short_session(self.session_factory) as s:
            q = (
                s.query(WideItem)
                .filter(WideItem.sk == METADATA, WideItem.item_type == _ITEM_TYPES[kind])
                .order_by(WideItem.pk)
            )
            if limit:
                q = q.limit(limit)
            items = [(item.pk, dict(item.data or {})) for item in q.all()]
        records = []
        for _pk, data in items:
            if kind == EntityKind.LOAD:
                with short_session(self.session_factory) as s:
                    data["package_ids"] = self._members(s, data["id"])
            records.append(RECORD_TYPES[kind].model_validate(data))
        return records

    def transact(self, ops: Iterable[StoreOp]) -> None:
        raise TransactionsUnsupported(
            "wide-column backend has no multi-item transactions; apply ops individually"
        )

    # ---- index ----

    def put_index(self, key: IndexKey) -> None:
        with short_session(self.session_factory) as s:
            s.merge(
                WideItem(
                    pk=index_pk(key.name, key.value),
                    sk=package_sk(key.package_id),
                    item_type=INDEX_TYPE,
                    data={"name": key.name, "value": key.value, "package_id": key.package_id},
                )
            )

    def delete_index(self, key: IndexKey) -> None:
        with short_session(self.session_factory) as s:
            item = s.get(WideItem, (index_pk(key.name, key.value), package_sk(key.package_id)))
            if item is not None:
                s.delete(item)

    def index_entries(self, package_id: str) -> Set[IndexKey]:
        with short_session(self.session_factory) as s:
            items = (
                s.query(WideItem)
                .filter(WideItem.sk == package_sk(package_id), WideItem.item_type == INDEX_TYPE)
                .all()
            )
            return {
                IndexKey(i.data["name"], i.data["value"], i.data["package_id"]) for i in items
            }

    def query_index(self, name: str, value: str) -> List[str]:
        with short_session(self.session_factory) as s:
            items = (
                s.query(WideItem)
                .filter(WideItem.pk == index_pk(name, value), WideItem.item_type == INDEX_TYPE)
                .order_by(WideItem.sk)
                .all()
            )
            return [i.data["package_id"] for i in items]

    def indexed_package_ids(self) -> Set[str]:
        with short_session(self.session_factory) as s:
            items = s.query(WideItem).filter(WideItem.item_type == INDEX_TYPE).all()
            return {i.data["package_id"] for i in items}

    # ---- membership items ----

    def _members(self, s, load_id: str) -> List[str]:
        items = (
            s.query(WideItem)
            .filter(
                WideItem.pk == entity_pk(EntityKind.LOAD, load_id),
                WideItem.item_type == MEMBER_TYPE,
            )
            .all()
        )
        items.sort(key=lambda i: (i.data or {}).get("seq", 0))
        return [i.data["package_id"] for i in items]

    def _write_members(self, load_id: str, package_ids: List[str]) -> None:
        pk = entity_pk(EntityKind.LOAD, load_id)
        wanted: Dict[str, int] = {
            pid: seq for seq, pid in enumerate(dict.fromkeys(package_ids), start=1)
        }
        with short_session(self.session_factory) as s:
            current = {
                i.sk: i
                for i in s.query(WideItem)
                .filter(WideItem.pk == pk, WideItem.item_type == MEMBER_TYPE)
                .all()
            }
            for sk, item in current.items():
                if item.data["package_id"] not in wanted:
                    s.delete(item)
            for pid, seq in wanted.items():
                item = current.get(package_sk(pid))
                if item is None:
                    s.add(
                        WideItem(
                            pk=pk,
                            sk=package_sk(pid),
                            item_type=MEMBER_TYPE,
                            data={"package_id": pid, "seq": seq},
                        )
                    )
                elif item.data.get("seq") != seq:
                    # JSON columns don't track in-place mutation; assign a new dict
                    item.data = {"package_id": pid, "seq": seq}
