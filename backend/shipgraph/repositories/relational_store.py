from typing import Iterable, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from shipgraph.db import SessionLocal
from shipgraph.errors import StoreError
from shipgraph.models.customer import Customer
from shipgraph.models.load import Load, LoadDeliveryCity, LoadPackage
from shipgraph.models.package import Package, PackageChild, PackageIndexEntry
from shipgraph.repositories.base import EntityStore, Record, StoreOp
from shipgraph.schemas.records import (
    CustomerRecord,
    DeliveryCity,
    EntityKind,
    IndexKey,
    LoadRecord,
    PackageRecord,
)
from shipgraph.utils.transactions import short_session

_MODELS = {
    EntityKind.PACKAGE: Package,
    EntityKind.LOAD: Load,
    EntityKind.CUSTOMER: Customer,
}

_PACKAGE_COLUMNS = (
    "customer_id",
    "received_date",
    "load_id",
    "parent_id",
    "barcode",
    "weight",
    "length",
    "width",
    "height",
    "description",
    "ship_to_name",
    "ship_to_city",
    "tracking_number",
    "delivery_date",
    "consolidated_at",
    "status_changed_at",
    "created_at",
    "updated_at",
)
_PACKAGE_ENUMS = ("shipment_status", "label_status", "payment_status")

_LOAD_COLUMNS = (
    "total_packages",
    "total_weight",
    "departure_date",
    "default_delivery_date",
    "transport_mode",
    "driver_name",
    "notes",
    "created_at",
    "updated_at",
)


class RelationalStore(EntityStore):
    """
    Entity store over the normalized schema: one table per entity, join
    tables for load membership and consolidation children, and a
    materialized index table with one row per (package, index) slot.
    """

    backend = "relational"
    supports_transactions = True
    unique_index_slots = True

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or SessionLocal

    # ---- records ----

    def get(self, kind: EntityKind, entity_id: str) -> Optional[Record]:
        with short_session(self.session_factory) as s:
            row = s.get(_MODELS[kind], entity_id)
            return self._to_record(kind, row) if row is not None else None

    def put(self, record: Record) -> Record:
        with short_session(self.session_factory) as s:
            self._put(s, record)
        return record

    def update_load(self, load: LoadRecord) -> LoadRecord:
        with short_session(self.session_factory) as s:
            self._put_load(s, load, members=False)
        return self.get(EntityKind.LOAD, load.id)

    def delete(self, kind: EntityKind, entity_id: str) -> bool:
        with short_session(self.session_factory) as s:
            return self._delete(s, kind, entity_id)

    def list(self, kind: EntityKind, limit: Optional[int] = None) -> List[Record]:
        model = _MODELS[kind]
        with short_session(self.session_factory) as s:
            q = s.query(model).order_by(model.created_at, model.id)
            if limit:
                q = q.limit(limit)
            return [self._to_record(kind, row) for row in q.all()]

    def transact(self, ops: Iterable[StoreOp]) -> None:
        with short_session(self.session_factory) as s:
            for op in ops:
                if op.action == "put":
                    self._put(s, op.record)
                elif op.action == "delete":
                    self._delete(s, op.kind, op.entity_id)
                else:
                    raise ValueError(f"Unknown store op: {op.action}")
                # flush per op so join-table rows from one op are visible to the next
                s.flush()

    # ---- index ----

    def put_index(self, key: IndexKey) -> None:
        with short_session(self.session_factory) as s:
            row = s.get(PackageIndexEntry, (key.package_id, key.name))
            if row is not None:
                if row.index_value == key.value:
                    return
                raise StoreError(
                    f"Index slot {key.name} for package {key.package_id} already "
                    f"holds {row.index_value!r}"
                )
            s.add(
                PackageIndexEntry(
                    package_id=key.package_id, index_name=key.name, index_value=key.value
                )
            )

    def delete_index(self, key: IndexKey) -> None:
        with short_session(self.session_factory) as s:
            s.query(PackageIndexEntry).filter(
                PackageIndexEntry.package_id == key.package_id,
                PackageIndexEntry.index_name == key.name,
                PackageIndexEntry.index_value == key.value,
            ).delete(synchronize_session=False)

    def index_entries(self, package_id: str) -> Set[IndexKey]:
        with short_session(self.session_factory) as s:
            rows = (
                s.query(PackageIndexEntry)
                .filter(PackageIndexEntry.package_id == package_id)
                .all()
            )
            return {IndexKey(r.index_name, r.index_value, r.package_id) for r in rows}

    def query_index(self, name: str, value: str) -> List[str]:
        with short_session(self.session_factory) as s:
            stmt = (
                select(PackageIndexEntry.package_id)
                .where(
                    PackageIndexEntry.index_name == name,
                    PackageIndexEntry.index_value == value,
                )
                .order_by(PackageIndexEntry.package_id)
            )
            return list(s.scalars(stmt).all())

    def indexed_package_ids(self) -> Set[str]:
        with short_session(self.session_factory) as s:
            return set(s.scalars(select(PackageIndexEntry.package_id).distinct()).all())

    # ---- row <-> record mapping ----

    def _put(self, s: Session, record: Record) -> None:
        if isinstance(record, PackageRecord):
            self._put_package(s, record)
        elif isinstance(record, LoadRecord):
            self._put_load(s, record)
        elif isinstance(record, CustomerRecord):
            row = s.get(Customer, record.id) or Customer(id=record.id)
            row.name = record.name
            row.email = record.email
            row.phone = record.phone
            row.created_at = record.created_at
            s.add(row)
        else:
            raise TypeError(f"Unsupported record type: {type(record).__name__}")

    def _delete(self, s: Session, kind: EntityKind, entity_id: str) -> bool:
        row = s.get(_MODELS[kind], entity_id)
        if row is None:
            return False
        s.delete(row)
        return True

    def _put_package(self, s: Session, rec: PackageRecord) -> None:
        row = s.get(Package, rec.id)
        if row is None:
            row = Package(id=rec.id)
            s.add(row)
        for name in _PACKAGE_COLUMNS:
            setattr(row, name, getattr(rec, name))
        for name in _PACKAGE_ENUMS:
            setattr(row, name, getattr(rec, name).value)

        # diff the join rows in place; replacing the collection would insert
        # the new (parent, child) rows before deleting the old identical keys
        wanted = list(dict.fromkeys(rec.child_ids))
        existing = {c.child_id: c for c in row.children}
        for child_id, link in existing.items():
            if child_id not in wanted:
                row.children.remove(link)
        for position, child_id in enumerate(wanted):
            link = existing.get(child_id)
            if link is None:
                row.children.append(PackageChild(child_id=child_id, position=position))
            else:
                link.position = position

    def _put_load(self, s: Session, rec: LoadRecord, members: bool = True) -> None:
        row = s.get(Load, rec.id)
        if row is None:
            row = Load(id=rec.id)
            s.add(row)
        for name in _LOAD_COLUMNS:
            setattr(row, name, getattr(rec, name))
        row.status = rec.status.value
        if members:
            self._sync_members(row, rec.package_ids)

        row.delivery_cities = [
            LoadDeliveryCity(
                city=c.city,
                province=c.province,
                expected_delivery_date=c.expected_delivery_date,
            )
            for c in rec.delivery_cities
        ]

    def _sync_members(self, row: Load, package_ids: List[str]) -> None:
        wanted = list(dict.fromkeys(package_ids))
        existing = {m.package_id: m for m in row.members}
        for package_id, member in existing.items():
            if package_id not in wanted:
                row.members.remove(member)
        for seq, package_id in enumerate(wanted, start=1):
            member = existing.get(package_id)
            if member is None:
                row.members.append(LoadPackage(package_id=package_id, sequence_order=seq))
            else:
                member.sequence_order = seq

    def _to_record(self, kind: EntityKind, row) -> Record:
        if kind == EntityKind.PACKAGE:
            data = {name: getattr(row, name) for name in _PACKAGE_COLUMNS + _PACKAGE_ENUMS}
            data["id"] = row.id
            data["child_ids"] = [
                c.child_id for c in sorted(row.children, key=lambda c: c.position)
            ]
            return PackageRecord.model_validate(data)
        if kind == EntityKind.LOAD:
            data = {name: getattr(row, name) for name in _LOAD_COLUMNS}
            data["id"] = row.id
            data["status"] = row.status
            data["package_ids"] = [
                m.package_id for m in sorted(row.members, key=lambda m: m.sequence_order)
            ]
            data["delivery_cities"] = [
                DeliveryCity.model_validate(c) for c in row.delivery_cities
            ]
            return LoadRecord.model_validate(data)
        return CustomerRecord.model_validate(row)
