from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from draymaster.models.base import Base, new_id, utcnow


class SettlementStatus(str, Enum):
    DRAFT = "DRAFT"
    APPROVED = "APPROVED"
    PAID = "PAID"


class SettlementLineType(str, Enum):
    BASE_PAY = "BASE_PAY"
    WAITING_TIME = "WAITING_TIME"
    FUEL_DEDUCTION = "FUEL_DEDUCTION"
    ADVANCE_DEDUCTION = "ADVANCE_DEDUCTION"
    OTHER_DEDUCTION = "OTHER_DEDUCTION"


DEDUCTION_LINE_TYPES = frozenset({
    SettlementLineType.FUEL_DEDUCTION.value,
    SettlementLineType.ADVANCE_DEDUCTION.value,
    SettlementLineType.OTHER_DEDUCTION.value,
})


class DriverSettlement(Base):
    __tablename__ = "driver_settlement"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    settlement_number: Mapped[str] = mapped_column(String(30), unique=True)
    driver_id: Mapped[str] = mapped_column(String(36), ForeignKey("driver.id"), index=True)

    period_start: Mapped[date] = mapped_column(Date)
    period_end: Mapped[date] = mapped_column(Date)
    status: Mapped[str] = mapped_column(String(20), default=SettlementStatus.DRAFT.value)

    total_trips: Mapped[int] = mapped_column(Integer, default=0)
    total_miles: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    gross_earnings: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    waiting_pay: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    fuel_deductions: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    advance_deductions: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    other_deductions: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    net_pay: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))

    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("driver_id", "period_start", name="uq_settlement_driver_period"),
    )


class SettlementLineItem(Base):
    __tablename__ = "settlement_line_item"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    settlement_id: Mapped[str] = mapped_column(String(36), ForeignKey("driver_settlement.id"), index=True)
    trip_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("trip.id"), nullable=True, index=True)
    trip_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    line_type: Mapped[str] = mapped_column(String(30))
    description: Mapped[str] = mapped_column(String(255))
    miles: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=Decimal("0"))
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("trip_id", "line_type", name="uq_settlement_line_trip_type"),
    )
