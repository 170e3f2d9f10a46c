"""Service for driver settlement accrual and the settlement approval lifecycle."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from draymaster.core.config import Settings, get_settings
from draymaster.models.reference import DriverPayRate, DriverRateProfile, PayType
from draymaster.models.settlement import (
    DEDUCTION_LINE_TYPES,
    DriverSettlement,
    SettlementLineItem,
    SettlementLineType,
    SettlementStatus,
)
from draymaster.models.trip import Trip, TripStop
from draymaster.services.automation.errors import EntityNotFoundError, InvalidTransitionError
from draymaster.services.sequences import SequenceService
from draymaster.utils.money import ZERO, money, to_decimal, total

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    SettlementStatus.DRAFT.value: {SettlementStatus.APPROVED.value},
    SettlementStatus.APPROVED.value: {SettlementStatus.PAID.value},
    SettlementStatus.PAID.value: set(),
}


@dataclass
class TripPay:
    """Pay computed for one completed trip."""
    pay_type: str
    rate: Decimal
    base_pay: Decimal
    waiting_minutes: int
    billable_waiting_minutes: int
    waiting_rate: Decimal
    waiting_pay: Decimal
    used_default_rate: bool = False


class SettlementsService:
    """Accrues completed trips into the driver's open weekly settlement."""

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.sequences = SequenceService(db)

    def _get_week_bounds(self, target_date: date) -> Tuple[date, date]:
        """Get the start (Monday) and end (Sunday) of the week."""
        week_start = target_date - timedelta(days=target_date.weekday())
        return week_start, week_start + timedelta(days=6)

    async def _active_pay_rate(self, driver_id: str, on: date) -> Optional[DriverPayRate]:
        result = await self.db.execute(
            select(DriverPayRate)
            .where(
                DriverPayRate.driver_id == driver_id,
                DriverPayRate.is_active.is_(True),
                DriverPayRate.effective_date <= on,
            )
            .order_by(DriverPayRate.effective_date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def calculate_trip_pay(self, trip: Trip, on: date) -> TripPay:
        rate_row = await self._active_pay_rate(trip.driver_id, on)

        if rate_row is None:
            logger.warning(
                "driver_pay_rate_missing",
                extra={"driver_id": trip.driver_id, "trip_id": trip.id, "fallback_pay": str(self.settings.default_base_pay)},
            )
            pay_type = PayType.PER_LOAD.value
            rate = to_decimal(self.settings.default_base_pay)
        else:
            pay_type = rate_row.pay_type
            rate = to_decimal(rate_row.rate)

        if pay_type == PayType.PER_MILE.value:
            base_pay = money(rate * to_decimal(trip.total_miles))
        elif pay_type == PayType.PERCENTAGE.value:
            base_pay = money(to_decimal(trip.revenue) * rate / 100)
        else:
            base_pay = money(rate)

        free_minutes = self.settings.waiting_free_minutes
        waiting_rate = to_decimal(self.settings.default_waiting_rate_per_hour)
        if rate_row is not None and rate_row.profile_id:
            profile = await self.db.get(DriverRateProfile, rate_row.profile_id)
            if profile is not None:
                free_minutes = int(to_decimal(profile.waiting_free_hours) * 60)
                waiting_rate = to_decimal(profile.waiting_rate_per_hour)

        waiting_minutes = (
            await self.db.execute(
                select(func.coalesce(func.sum(TripStop.detention_minutes), 0)).where(TripStop.trip_id == trip.id)
            )
        ).scalar_one()
        waiting_minutes = int(waiting_minutes or 0)
        billable = max(0, waiting_minutes - free_minutes)

        return TripPay(
            pay_type=pay_type,
            rate=rate,
            base_pay=base_pay,
            waiting_minutes=waiting_minutes,
            billable_waiting_minutes=billable,
            waiting_rate=waiting_rate,
            waiting_pay=money(Decimal(billable) / 60 * waiting_rate),
            used_default_rate=rate_row is None,
        )

    async def get_or_create_open_settlement(self, driver_id: str, on: date, now: datetime) -> DriverSettlement:
        """
        The driver's DRAFT settlement for the week containing `on`.

        A week that is already APPROVED or PAID is closed to new lines, so the
        next week with a DRAFT (or no) settlement is used instead.
        """
        week_start, week_end = self._get_week_bounds(on)
        while True:
            settlement = (
                await self.db.execute(
                    select(DriverSettlement)
                    .where(
                        DriverSettlement.driver_id == driver_id,
                        DriverSettlement.period_start == week_start,
                    )
                    .with_for_update()
                )
            ).scalar_one_or_none()

            if settlement is None:
                number = await self.sequences.next_document_number(self.settings.settlement_number_format, now)
                settlement = DriverSettlement(
                    settlement_number=number,
                    driver_id=driver_id,
                    period_start=week_start,
                    period_end=week_end,
                    status=SettlementStatus.DRAFT.value,
                )
                self.db.add(settlement)
                await self.db.flush()
                return settlement

            if settlement.status == SettlementStatus.DRAFT.value:
                return settlement

            week_start += timedelta(days=7)
            week_end += timedelta(days=7)

    async def recalculate_totals(self, settlement: DriverSettlement) -> None:
        result = await self.db.execute(
            select(SettlementLineItem).where(SettlementLineItem.settlement_id == settlement.id)
        )
        lines = list(result.scalars().all())

        earnings = [line for line in lines if line.line_type not in DEDUCTION_LINE_TYPES]

        def deductions(line_type: SettlementLineType) -> Decimal:
            return total(line.amount for line in lines if line.line_type == line_type.value)

        settlement.total_trips = len({line.trip_id for line in lines if line.trip_id})
        settlement.total_miles = total(line.miles for line in lines if line.line_type == SettlementLineType.BASE_PAY.value)
        settlement.gross_earnings = total(line.amount for line in earnings)
        settlement.waiting_pay = total(
            line.amount for line in lines if line.line_type == SettlementLineType.WAITING_TIME.value
        )
        settlement.fuel_deductions = deductions(SettlementLineType.FUEL_DEDUCTION)
        settlement.advance_deductions = deductions(SettlementLineType.ADVANCE_DEDUCTION)
        settlement.other_deductions = deductions(SettlementLineType.OTHER_DEDUCTION)
        settlement.net_pay = money(
            settlement.gross_earnings
            - settlement.fuel_deductions
            - settlement.advance_deductions
            - settlement.other_deductions
        )

    async def settle_completed_trip(self, trip: Trip, now: Optional[datetime] = None) -> Optional[DriverSettlement]:
        """
        Add pay lines for a completed trip to the driver's open settlement.

        Returns None when the trip has no driver or was already settled.
        """
        now = now or datetime.utcnow()

        if not trip.driver_id:
            logger.warning("settlement_skipped_no_driver", extra={"trip_id": trip.id})
            return None

        already = (
            await self.db.execute(select(SettlementLineItem.id).where(SettlementLineItem.trip_id == trip.id).limit(1))
        ).first()
        if already:
            logger.info("settlement_skipped_duplicate", extra={"trip_id": trip.id})
            return None

        completed_on = (trip.actual_end_time or now).date()
        pay = await self.calculate_trip_pay(trip, completed_on)
        settlement = await self.get_or_create_open_settlement(trip.driver_id, completed_on, now)

        lines: List[SettlementLineItem] = [
            SettlementLineItem(
                settlement_id=settlement.id,
                trip_id=trip.id,
                trip_number=trip.trip_number,
                line_type=SettlementLineType.BASE_PAY.value,
                description=f"Trip {trip.trip_number} ({pay.pay_type.replace('_', ' ').lower()})",
                miles=money(trip.total_miles),
                rate=pay.rate,
                amount=pay.base_pay,
            )
        ]
        if pay.waiting_pay > ZERO:
            lines.append(
                SettlementLineItem(
                    settlement_id=settlement.id,
                    trip_id=trip.id,
                    trip_number=trip.trip_number,
                    line_type=SettlementLineType.WAITING_TIME.value,
                    description=f"Waiting time {pay.billable_waiting_minutes} min @ ${money(pay.waiting_rate)}/hr",
                    rate=pay.waiting_rate,
                    amount=pay.waiting_pay,
                )
            )

        self.db.add_all(lines)
        await self.db.flush()
        await self.recalculate_totals(settlement)

        logger.info(
            "settlement_trip_added",
            extra={
                "trip_id": trip.id,
                "driver_id": trip.driver_id,
                "settlement_id": settlement.id,
                "base_pay": str(pay.base_pay),
                "waiting_pay": str(pay.waiting_pay),
            },
        )
        return settlement

    async def _get_for_update(self, settlement_id: str) -> DriverSettlement:
        settlement = (
            await self.db.execute(
                select(DriverSettlement).where(DriverSettlement.id == settlement_id).with_for_update()
            )
        ).scalar_one_or_none()
        if settlement is None:
            raise EntityNotFoundError("settlement", settlement_id)
        return settlement

    def _transition(self, settlement: DriverSettlement, target: SettlementStatus) -> None:
        if target.value not in ALLOWED_TRANSITIONS.get(settlement.status, set()):
            raise InvalidTransitionError("settlement", settlement.status, target.value)
        settlement.status = target.value

    async def add_deduction(
        self,
        settlement_id: str,
        line_type: SettlementLineType,
        amount: Decimal,
        description: str,
    ) -> DriverSettlement:
        if line_type.value not in DEDUCTION_LINE_TYPES:
            raise ValueError(f"{line_type.value} is not a deduction type")

        settlement = await self._get_for_update(settlement_id)
        if settlement.status != SettlementStatus.DRAFT.value:
            raise InvalidTransitionError("settlement", settlement.status, "DRAFT")

        self.db.add(
            SettlementLineItem(
                settlement_id=settlement.id,
                line_type=line_type.value,
                description=description,
                amount=money(amount),
            )
        )
        await self.db.flush()
        await self.recalculate_totals(settlement)
        return settlement

    async def approve_settlement(self, settlement_id: str, now: Optional[datetime] = None) -> DriverSettlement:
        settlement = await self._get_for_update(settlement_id)
        self._transition(settlement, SettlementStatus.APPROVED)
        settlement.approved_at = now or datetime.utcnow()
        logger.info("settlement_approved", extra={"settlement_id": settlement.id})
        return settlement

    async def mark_settlement_paid(self, settlement_id: str, now: Optional[datetime] = None) -> DriverSettlement:
        settlement = await self._get_for_update(settlement_id)
        self._transition(settlement, SettlementStatus.PAID)
        settlement.paid_at = now or datetime.utcnow()
        logger.info("settlement_paid", extra={"settlement_id": settlement.id})
        return settlement
