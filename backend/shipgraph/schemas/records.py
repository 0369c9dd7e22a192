# backend/shipgraph/schemas/records.py
import enum
from datetime import date, datetime, timezone
from typing import ClassVar, List, NamedTuple, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


class EntityKind(str, enum.Enum):
    PACKAGE = "package"
    LOAD = "load"
    CUSTOMER = "customer"


class ShipmentStatus(str, enum.Enum):
    READY = "ready"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    EXCEPTION = "exception"
    RETURNED = "returned"


class LoadStatus(str, enum.Enum):
    PLANNED = "planned"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    COMPLETE = "complete"


class LabelStatus(str, enum.Enum):
    UNLABELED = "unlabeled"
    QUOTED = "quoted"
    PURCHASED = "purchased"
    VOID_REQUESTED = "void_requested"
    VOIDED = "voided"


class PaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    WRITEOFF = "writeoff"


class IndexKey(NamedTuple):
    """One secondary-index entry: (index name, indexed value) -> package id."""

    name: str
    value: str
    package_id: str


class CustomerRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    KIND: ClassVar[EntityKind] = EntityKind.CUSTOMER

    id: str = Field(default_factory=new_id)
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class DeliveryCity(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    city: str
    province: Optional[str] = None
    expected_delivery_date: Optional[date] = None


class LoadRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    KIND: ClassVar[EntityKind] = EntityKind.LOAD

    id: str = Field(default_factory=new_id)
    status: LoadStatus = LoadStatus.PLANNED
    package_ids: List[str] = Field(default_factory=list)
    # derived from package_ids; only refresh_totals writes these
    total_packages: int = 0
    total_weight: float = 0.0
    departure_date: Optional[date] = None
    default_delivery_date: Optional[date] = None
    delivery_cities: List[DeliveryCity] = Field(default_factory=list)
    transport_mode: str = "truck"
    driver_name: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def expected_delivery_date(self, city: Optional[str]) -> Optional[date]:
        """City-specific delivery date (case-insensitive match), else the load default."""
        if city:
            wanted = city.strip().lower()
            for stop in self.delivery_cities:
                if stop.city.strip().lower() == wanted and stop.expected_delivery_date:
                    return stop.expected_delivery_date
        return self.default_delivery_date


class PackageRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    KIND: ClassVar[EntityKind] = EntityKind.PACKAGE

    id: str = Field(default_factory=new_id)
    customer_id: str
    received_date: date = Field(default_factory=lambda: utcnow().date())
    shipment_status: ShipmentStatus = ShipmentStatus.READY
    load_id: Optional[str] = None
    parent_id: Optional[str] = None
    child_ids: List[str] = Field(default_factory=list)

    # passthrough fields: stored, never interpreted by the graph core
    barcode: Optional[str] = None
    weight: float = 0.0
    length: float = 0.0
    width: float = 0.0
    height: float = 0.0
    description: Optional[str] = None
    ship_to_name: Optional[str] = None
    ship_to_city: Optional[str] = None
    label_status: LabelStatus = LabelStatus.UNLABELED
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    tracking_number: Optional[str] = None
    delivery_date: Optional[datetime] = None
    consolidated_at: Optional[datetime] = None
    status_changed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


RECORD_TYPES = {
    EntityKind.PACKAGE: PackageRecord,
    EntityKind.LOAD: LoadRecord,
    EntityKind.CUSTOMER: CustomerRecord,
}
