"""
Charge models.

- ChargeLine: per-order revenue lines derived on dispatch
- ContainerCharge: demurrage accrual record, one per container and charge type
- ChassisPool / ChassisUsage: chassis per diem tracking
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
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from draymaster.models.base import Base, new_id, utcnow


class ChargeType(str, Enum):
    LINE_HAUL = "LINE_HAUL"
    FUEL_SURCHARGE = "FUEL_SURCHARGE"
    HAZMAT = "HAZMAT"
    OVERWEIGHT = "OVERWEIGHT"
    REEFER = "REEFER"
    DEMURRAGE = "DEMURRAGE"
    CHASSIS_PER_DIEM = "CHASSIS_PER_DIEM"


class AccrualStatus(str, Enum):
    ACCRUING = "ACCRUING"
    CLOSED = "CLOSED"          # returned within free time
    CALCULATED = "CALCULATED"  # returned late, charge is final


class ChassisUsageStatus(str, Enum):
    OUT = "OUT"
    RETURNED = "RETURNED"


class ChargeLine(Base):
    __tablename__ = "charge_line"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id"), index=True)
    container_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("container.id"), nullable=True)

    charge_type: Mapped[str] = mapped_column(String(30))
    description: Mapped[str] = mapped_column(String(255))
    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("1"))
    unit_rate: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    billable_to: Mapped[str] = mapped_column(String(20), default="CUSTOMER")
    auto_calculated: Mapped[bool] = mapped_column(Boolean, default=False)

    # "{order_id}:{charge_type}", one line per charge type per order
    dedupe_key: Mapped[str] = mapped_column(String(80), unique=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class ContainerCharge(Base):
    __tablename__ = "container_charge"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    container_id: Mapped[str] = mapped_column(String(36), ForeignKey("container.id"), index=True)
    shipment_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("shipment.id"), nullable=True)
    charge_type: Mapped[str] = mapped_column(String(30), default=ChargeType.DEMURRAGE.value)

    free_time_start: Mapped[datetime] = mapped_column(DateTime)
    free_time_end: Mapped[datetime] = mapped_column(DateTime)
    actual_return: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    free_days_allowed: Mapped[int] = mapped_column(Integer)

    days_used: Mapped[int] = mapped_column(Integer, default=0)
    days_over: Mapped[int] = mapped_column(Integer, default=0)
    daily_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    total_charge: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))

    status: Mapped[str] = mapped_column(String(20), default=AccrualStatus.ACCRUING.value)
    billed_invoice_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("invoice.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("container_id", "charge_type", name="uq_container_charge_type"),
    )


class ChassisPool(Base):
    """Chassis pool provider. Major pools: DCLI, TRAC, FLEXI."""

    __tablename__ = "chassis_pool"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    pool_code: Mapped[str] = mapped_column(String(20), unique=True)
    name: Mapped[str] = mapped_column(String(100))
    free_days: Mapped[int] = mapped_column(Integer, default=4)
    daily_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("30.00"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class ChassisUsage(Base):
    __tablename__ = "chassis_usage"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    chassis_number: Mapped[str] = mapped_column(String(20), index=True)
    pool_code: Mapped[str] = mapped_column(String(20))
    container_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("container.id"), nullable=True, index=True)
    trip_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("trip.id"), nullable=True)

    pickup_date: Mapped[datetime] = mapped_column(DateTime)
    return_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    free_days: Mapped[int] = mapped_column(Integer)
    daily_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    days_out: Mapped[int] = mapped_column(Integer, default=0)
    billable_days: Mapped[int] = mapped_column(Integer, default=0)
    per_diem_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))

    status: Mapped[str] = mapped_column(String(20), default=ChassisUsageStatus.OUT.value)
    billed_to_customer: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_chassis_usage_chassis_status", "chassis_number", "status"),
    )
