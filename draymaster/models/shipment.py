"""
Shipment, Container and Order models.

An Order belongs to a Container, a Container belongs to a Shipment. The
aggregate fields on Container and Shipment (lifecycle_status, counters,
status) are derived from their Orders by the automation engine and are
never written by the CRUD layer directly.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from draymaster.models.base import Base, new_id, utcnow


class ShipmentStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ContainerLifecycle(str, Enum):
    BOOKED = "BOOKED"
    AVAILABLE = "AVAILABLE"
    PICKED_UP = "PICKED_UP"
    DELIVERED = "DELIVERED"
    DROPPED = "DROPPED"
    EMPTY_PICKED = "EMPTY_PICKED"
    RETURNED = "RETURNED"
    COMPLETED = "COMPLETED"


class DemurrageStatus(str, Enum):
    OK = "OK"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    OVERDUE = "OVERDUE"
    CLOSED = "CLOSED"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    READY = "READY"
    DISPATCHED = "DISPATCHED"
    IN_PROGRESS = "IN_PROGRESS"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    HOLD = "HOLD"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"
    INVOICED = "INVOICED"


class Shipment(Base):
    __tablename__ = "shipment"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    customer_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("customer.id"), nullable=True, index=True)

    type: Mapped[str] = mapped_column(String(10), default="IMPORT")  # IMPORT, EXPORT
    status: Mapped[str] = mapped_column(String(20), default=ShipmentStatus.PENDING.value, index=True)
    booking_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    steamship_line: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)  # carrier code, e.g. MAEU
    chassis_pool: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Derived counters, always full recomputations
    total_containers: Mapped[int] = mapped_column(Integer, default=0)
    completed_containers: Mapped[int] = mapped_column(Integer, default=0)
    total_orders: Mapped[int] = mapped_column(Integer, default=0)
    completed_orders: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class Container(Base):
    __tablename__ = "container"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    shipment_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("shipment.id"), nullable=True, index=True)

    container_number: Mapped[str] = mapped_column(String(15), index=True)
    size: Mapped[str] = mapped_column(String(5), default="40")  # 20, 40, 40HC, 45
    is_hazmat: Mapped[bool] = mapped_column(Boolean, default=False)
    is_overweight: Mapped[bool] = mapped_column(Boolean, default=False)
    is_reefer: Mapped[bool] = mapped_column(Boolean, default=False)
    weight_lbs: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    lifecycle_status: Mapped[str] = mapped_column(String(20), default=ContainerLifecycle.BOOKED.value, index=True)

    # Terminal gate events
    gate_out_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    gate_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Demurrage accrual (maintained by the accrual calculator)
    free_time_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    demurrage_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    estimated_charge: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_container_open_accrual", "gate_out_at", "gate_in_at"),
    )


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    order_number: Mapped[str] = mapped_column(String(50), index=True)
    shipment_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("shipment.id"), nullable=True, index=True)
    container_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("container.id"), nullable=True, index=True)
    trip_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("trip.id"), nullable=True, index=True)

    status: Mapped[str] = mapped_column(String(20), default=OrderStatus.PENDING.value, index=True)
    move_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)  # IMPORT_DELIVERY, EXPORT_PICKUP, ...
    total_charges: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))

    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_orders_container_status", "container_id", "status"),
    )
