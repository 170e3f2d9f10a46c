from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from draymaster.models.base import Base, new_id, utcnow


class TripStatus(str, Enum):
    PLANNED = "PLANNED"
    ASSIGNED = "ASSIGNED"
    DISPATCHED = "DISPATCHED"
    EN_ROUTE = "EN_ROUTE"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class Driver(Base):
    __tablename__ = "driver"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    first_name: Mapped[str] = mapped_column(String(100))
    last_name: Mapped[str] = mapped_column(String(100))
    status: Mapped[str] = mapped_column(String(20), default="ACTIVE")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Trip(Base):
    """A driver's run. Orders reference the trip they are moved on."""

    __tablename__ = "trip"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    trip_number: Mapped[str] = mapped_column(String(50), index=True)
    driver_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("driver.id"), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), default=TripStatus.PLANNED.value, index=True)

    revenue: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    total_miles: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))

    chassis_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    chassis_pool: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    actual_start_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    actual_end_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class TripStop(Base):
    __tablename__ = "trip_stop"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    trip_id: Mapped[str] = mapped_column(String(36), ForeignKey("trip.id"), index=True)
    sequence: Mapped[int] = mapped_column(Integer, default=1)
    stop_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # PICKUP, DELIVERY, RETURN
    detention_minutes: Mapped[int] = mapped_column(Integer, default=0)
