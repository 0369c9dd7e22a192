from datetime import datetime, timezone

from shipgraph.db import Base
from sqlalchemy import Column, DateTime, String


class Customer(Base):
    __tablename__ = "customers"
    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
