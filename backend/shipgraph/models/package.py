from datetime import datetime, timezone

from shipgraph.db import Base
from sqlalchemy import Column, Date, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship


class Package(Base):
    __tablename__ = "packages"
    id = Column(String(36), primary_key=True)
    customer_id = Column(String(36), nullable=False, index=True)
    received_date = Column(Date, nullable=False)
    shipment_status = Column(
        String(32), nullable=False, default="ready"
    )  # ready, in_transit, delivered, exception, returned
    # plain columns rather than FKs: writes land one at a time and reconciliation repairs dangling refs
    load_id = Column(String(36), nullable=True, index=True)
    parent_id = Column(String(36), nullable=True, index=True)

    barcode = Column(String(64), nullable=True, index=True)
    weight = Column(Float, nullable=False, default=0.0)
    length = Column(Float, nullable=False, default=0.0)
    width = Column(Float, nullable=False, default=0.0)
    height = Column(Float, nullable=False, default=0.0)
    description = Column(Text, nullable=True)
    ship_to_name = Column(String(255), nullable=True)
    ship_to_city = Column(String(128), nullable=True)
    label_status = Column(String(32), nullable=False, default="unlabeled")
    payment_status = Column(String(32), nullable=False, default="unpaid")
    tracking_number = Column(String(128), nullable=True)
    delivery_date = Column(DateTime, nullable=True)
    consolidated_at = Column(DateTime, nullable=True)
    status_changed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    children = relationship(
        "PackageChild",
        back_populates="parent",
        cascade="all, delete-orphan",
        order_by="PackageChild.position",
    )


class PackageChild(Base):
    """Join table: consolidation parent -> ordered child ids."""

    __tablename__ = "package_children"
    parent_id = Column(
        String(36), ForeignKey("packages.id", ondelete="CASCADE"), primary_key=True
    )
    child_id = Column(String(36), primary_key=True, index=True)
    position = Column(Integer, nullable=False)

    parent = relationship("Package", back_populates="children")


class PackageIndexEntry(Base):
    """
    Materialized secondary index. One row per (package, index) slot, so a
    second value for the same slot is rejected until the stale one is removed.
    """

    __tablename__ = "package_index_entries"
    package_id = Column(String(36), primary_key=True)
    index_name = Column(String(16), primary_key=True)  # customer, date, status
    index_value = Column(String(128), nullable=False, index=True)
