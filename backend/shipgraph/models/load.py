from datetime import datetime, timezone

from shipgraph.db import Base
from sqlalchemy import Column, Date, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship


class Load(Base):
    __tablename__ = "loads"
    id = Column(String(36), primary_key=True)
    status = Column(
        String(32), nullable=False, default="planned"
    )  # planned, in_transit, delivered, complete
    total_packages = Column(Integer, nullable=False, default=0)
    total_weight = Column(Float, nullable=False, default=0.0)
    departure_date = Column(Date, nullable=True, index=True)
    default_delivery_date = Column(Date, nullable=True)
    transport_mode = Column(String(16), nullable=False, default="truck")
    driver_name = Column(String(128), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    members = relationship(
        "LoadPackage",
        back_populates="load",
        cascade="all, delete-orphan",
        order_by="LoadPackage.sequence_order",
    )
    delivery_cities = relationship(
        "LoadDeliveryCity",
        back_populates="load",
        cascade="all, delete-orphan",
        order_by="LoadDeliveryCity.id",
    )


class LoadPackage(Base):
    """Join table: ordered Load -> Package membership."""

    __tablename__ = "load_packages"
    load_id = Column(
        String(36), ForeignKey("loads.id", ondelete="CASCADE"), primary_key=True
    )
    # no FK to packages: a member row may outlive its package until reconciliation drops it
    package_id = Column(String(36), primary_key=True, index=True)
    sequence_order = Column(Integer, nullable=False)

    load = relationship("Load", back_populates="members")


class LoadDeliveryCity(Base):
    __tablename__ = "load_delivery_cities"
    id = Column(Integer, primary_key=True, autoincrement=True)
    load_id = Column(
        String(36), ForeignKey("loads.id", ondelete="CASCADE"), nullable=False, index=True
    )
    city = Column(String(128), nullable=False)
    province = Column(String(64), nullable=True)
    expected_delivery_date = Column(Date, nullable=True)

    load = relationship("Load", back_populates="delivery_cities")
