"""
Reference data read by the automation engine.

These tables are maintained by the CRUD layer; the engine only reads them
and falls back to configured defaults when a row is missing.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from draymaster.models.base import Base, new_id, utcnow


class PayType(str, Enum):
    PER_LOAD = "PER_LOAD"
    PER_MILE = "PER_MILE"
    PERCENTAGE = "PERCENTAGE"


class CarrierFreeTimeRule(Base):
    """Steamship line free time and tiered demurrage rates."""

    __tablename__ = "carrier_free_time_rule"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    carrier_code: Mapped[str] = mapped_column(String(10), unique=True)

    import_free_days: Mapped[int] = mapped_column(Integer, default=5)
    demurrage_rate_day1_4: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("75.00"))
    demurrage_rate_day5_7: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("100.00"))
    demurrage_rate_day8_plus: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("150.00"))

    exclude_weekends: Mapped[bool] = mapped_column(Boolean, default=False)
    exclude_holidays: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class HolidayCalendar(Base):
    __tablename__ = "holiday_calendar"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    holiday_date: Mapped[date] = mapped_column(Date, index=True)
    name: Mapped[str] = mapped_column(String(100))
    applies_to_carrier: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)  # NULL = all carriers


class LaneRate(Base):
    """Line haul rate by container size. customer_id NULL is the default lane."""

    __tablename__ = "lane_rate"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    customer_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("customer.id"), nullable=True)
    origin: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    destination: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    rate_20ft: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    rate_40ft: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    rate_40hc: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    rate_45ft: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    hazmat_surcharge: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    overweight_surcharge: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    reefer_surcharge: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    effective_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        Index("ix_lane_rate_customer_active", "customer_id", "is_active"),
    )


class DriverRateProfile(Base):
    __tablename__ = "driver_rate_profile"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100))
    waiting_free_hours: Mapped[Decimal] = mapped_column(Numeric(4, 2), default=Decimal("2"))
    waiting_rate_per_hour: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("25.00"))


class DriverPayRate(Base):
    __tablename__ = "driver_pay_rate"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    driver_id: Mapped[str] = mapped_column(String(36), ForeignKey("driver.id"), index=True)
    profile_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("driver_rate_profile.id"), nullable=True)

    pay_type: Mapped[str] = mapped_column(String(20), default=PayType.PER_LOAD.value)
    rate: Mapped[Decimal] = mapped_column(Numeric(10, 4))
    effective_date: Mapped[date] = mapped_column(Date)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
