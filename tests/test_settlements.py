"""Driver settlement accrual on trip completion and the approval lifecycle."""

import logging
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from draymaster.models.reference import PayType
from draymaster.models.settlement import DriverSettlement, SettlementLineItem, SettlementLineType
from draymaster.services.automation.errors import InvalidTransitionError
from draymaster.services.automation.service import AutomationService
from draymaster.services.settlements import SettlementsService


async def settlements_for(db_session, driver_id):
    result = await db_session.execute(
        select(DriverSettlement)
        .where(DriverSettlement.driver_id == driver_id)
        .order_by(DriverSettlement.period_start)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


@pytest.mark.asyncio
class TestTripPay:
    """Completing a trip adds pay lines to the driver's weekly settlement."""

    async def test_per_mile_trips_accrue_into_one_week(self, db_session, factory, settings, monday):
        driver = await factory.driver()
        await factory.pay_rate(driver, PayType.PER_MILE, Decimal("2.50"))
        first = await factory.trip(driver, total_miles=Decimal("100"))
        second = await factory.trip(driver, total_miles=Decimal("40"))
        service = AutomationService(db_session, settings)

        await service.set_trip_status(first.id, "COMPLETED", now=monday)
        result = await service.set_trip_status(second.id, "COMPLETED", now=monday + timedelta(days=2))

        settlements = await settlements_for(db_session, driver.id)
        assert len(settlements) == 1
        settlement = settlements[0]
        assert result.settlement_id == settlement.id
        assert settlement.settlement_number == "STL-20250106-0001"
        assert settlement.period_start == date(2025, 1, 6)
        assert settlement.period_end == date(2025, 1, 12)
        assert settlement.total_trips == 2
        assert settlement.total_miles == Decimal("140.00")
        assert settlement.gross_earnings == Decimal("350.00")
        assert settlement.net_pay == Decimal("350.00")

    async def test_waiting_time_beyond_free_minutes_is_paid(self, db_session, factory, settings, monday):
        driver = await factory.driver()
        await factory.pay_rate(driver, PayType.PER_LOAD, Decimal("200.00"))
        trip = await factory.trip(driver)
        await factory.stop(trip, detention_minutes=180, sequence=1)
        await factory.stop(trip, detention_minutes=60, sequence=2)

        await AutomationService(db_session, settings).set_trip_status(trip.id, "COMPLETED", now=monday)

        settlement = (await settlements_for(db_session, driver.id))[0]
        # 240 minutes waited, 120 free, 2h at 25.00
        assert settlement.waiting_pay == Decimal("50.00")
        assert settlement.gross_earnings == Decimal("250.00")

    async def test_rate_profile_overrides_waiting_terms(self, db_session, factory, settings, monday):
        driver = await factory.driver()
        profile = await factory.rate_profile(Decimal("1"), Decimal("30.00"))
        await factory.pay_rate(driver, PayType.PER_LOAD, Decimal("200.00"), profile=profile)
        trip = await factory.trip(driver)
        await factory.stop(trip, detention_minutes=240)

        await AutomationService(db_session, settings).set_trip_status(trip.id, "COMPLETED", now=monday)

        settlement = (await settlements_for(db_session, driver.id))[0]
        assert settlement.waiting_pay == Decimal("90.00")

    async def test_missing_pay_rate_uses_flat_default(self, db_session, factory, settings, monday, caplog):
        driver = await factory.driver()
        trip = await factory.trip(driver, total_miles=Decimal("75"))

        with caplog.at_level(logging.WARNING):
            await AutomationService(db_session, settings).set_trip_status(trip.id, "COMPLETED", now=monday)

        settlement = (await settlements_for(db_session, driver.id))[0]
        assert settlement.gross_earnings == Decimal("100.00")
        assert any(record.getMessage() == "driver_pay_rate_missing" for record in caplog.records)

    async def test_percentage_of_trip_revenue(self, db_session, factory, settings, monday):
        driver = await factory.driver()
        await factory.pay_rate(driver, PayType.PERCENTAGE, Decimal("25"))
        trip = await factory.trip(driver, revenue=Decimal("800.00"))

        await AutomationService(db_session, settings).set_trip_status(trip.id, "COMPLETED", now=monday)

        settlement = (await settlements_for(db_session, driver.id))[0]
        assert settlement.gross_earnings == Decimal("200.00")

    async def test_latest_effective_rate_wins(self, db_session, factory, settings, monday):
        driver = await factory.driver()
        await factory.pay_rate(driver, PayType.PER_LOAD, Decimal("150.00"), effective_date=date(2024, 6, 1))
        await factory.pay_rate(driver, PayType.PER_LOAD, Decimal("175.00"), effective_date=date(2025, 1, 1))
        await factory.pay_rate(driver, PayType.PER_LOAD, Decimal("999.00"), effective_date=date(2025, 2, 1))
        trip = await factory.trip(driver)

        await AutomationService(db_session, settings).set_trip_status(trip.id, "COMPLETED", now=monday)

        settlement = (await settlements_for(db_session, driver.id))[0]
        assert settlement.gross_earnings == Decimal("175.00")

    async def test_trip_is_settled_once(self, db_session, factory, settings, monday):
        driver = await factory.driver()
        trip = await factory.trip(driver)
        await AutomationService(db_session, settings).set_trip_status(trip.id, "COMPLETED", now=monday)

        again = await SettlementsService(db_session, settings).settle_completed_trip(trip, now=monday)
        await db_session.commit()

        assert again is None
        lines = (
            await db_session.execute(select(SettlementLineItem).where(SettlementLineItem.trip_id == trip.id))
        ).scalars().all()
        assert len(lines) == 1

    async def test_trip_without_driver_is_skipped(self, db_session, factory, settings, monday):
        trip = await factory.trip(None)

        result = await AutomationService(db_session, settings).set_trip_status(trip.id, "COMPLETED", now=monday)

        assert result.settlement_id is None

    async def test_closed_week_rolls_forward(self, db_session, factory, settings, monday):
        driver = await factory.driver()
        first = await factory.trip(driver)
        second = await factory.trip(driver)
        service = AutomationService(db_session, settings)

        await service.set_trip_status(first.id, "COMPLETED", now=monday)
        week_one = (await settlements_for(db_session, driver.id))[0]
        await service.approve_settlement(week_one.id)

        await service.set_trip_status(second.id, "COMPLETED", now=monday + timedelta(days=1))

        settlements = await settlements_for(db_session, driver.id)
        assert [s.period_start for s in settlements] == [date(2025, 1, 6), date(2025, 1, 13)]
        assert settlements[0].total_trips == 1
        assert settlements[1].status == "DRAFT"
        assert settlements[1].total_trips == 1


@pytest.mark.asyncio
class TestSettlementLifecycle:
    """DRAFT -> APPROVED -> PAID, nothing else."""

    async def _settlement(self, db_session, factory, settings, monday):
        driver = await factory.driver()
        trip = await factory.trip(driver)
        result = await AutomationService(db_session, settings).set_trip_status(trip.id, "COMPLETED", now=monday)
        return result.settlement_id

    async def test_approve_then_pay(self, db_session, factory, settings, monday):
        settlement_id = await self._settlement(db_session, factory, settings, monday)
        service = AutomationService(db_session, settings)

        approved = await service.approve_settlement(settlement_id)
        assert approved.status == "APPROVED"
        assert approved.approved_at is not None

        paid = await service.mark_settlement_paid(settlement_id)
        assert paid.status == "PAID"
        assert paid.paid_at is not None

    async def test_cannot_pay_a_draft(self, db_session, factory, settings, monday):
        settlement_id = await self._settlement(db_session, factory, settings, monday)

        with pytest.raises(InvalidTransitionError):
            await AutomationService(db_session, settings).mark_settlement_paid(settlement_id)

        settlement = await db_session.get(DriverSettlement, settlement_id, populate_existing=True)
        assert settlement.status == "DRAFT"

    async def test_cannot_approve_twice(self, db_session, factory, settings, monday):
        settlement_id = await self._settlement(db_session, factory, settings, monday)
        service = AutomationService(db_session, settings)
        await service.approve_settlement(settlement_id)

        with pytest.raises(InvalidTransitionError):
            await service.approve_settlement(settlement_id)

    async def test_deductions_reduce_net_pay(self, db_session, factory, settings, monday):
        settlement_id = await self._settlement(db_session, factory, settings, monday)
        service = AutomationService(db_session, settings)

        await service.add_settlement_deduction(
            settlement_id, SettlementLineType.FUEL_DEDUCTION, Decimal("30.00"), "Fuel card"
        )
        settlement = await service.add_settlement_deduction(
            settlement_id, SettlementLineType.ADVANCE_DEDUCTION, Decimal("20.00"), "Cash advance"
        )

        assert settlement.gross_earnings == Decimal("100.00")
        assert settlement.fuel_deductions == Decimal("30.00")
        assert settlement.advance_deductions == Decimal("20.00")
        assert settlement.net_pay == Decimal("50.00")

    async def test_earning_types_are_not_deductions(self, db_session, factory, settings, monday):
        settlement_id = await self._settlement(db_session, factory, settings, monday)

        with pytest.raises(ValueError):
            await AutomationService(db_session, settings).add_settlement_deduction(
                settlement_id, SettlementLineType.BASE_PAY, Decimal("10.00"), "Bonus"
            )

    async def test_approved_settlement_takes_no_deductions(self, db_session, factory, settings, monday):
        settlement_id = await self._settlement(db_session, factory, settings, monday)
        service = AutomationService(db_session, settings)
        await service.approve_settlement(settlement_id)

        with pytest.raises(InvalidTransitionError):
            await service.add_settlement_deduction(
                settlement_id, SettlementLineType.OTHER_DEDUCTION, Decimal("5.00"), "Citation"
            )
