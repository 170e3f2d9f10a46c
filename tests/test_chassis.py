"""Chassis per diem from trip dispatch to the customer invoice."""

import logging
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from draymaster.models.billing import Invoice, InvoiceLineItem
from draymaster.models.charges import ChassisUsage
from draymaster.services.automation.service import AutomationService


async def usages_for(db_session, container_id):
    result = await db_session.execute(
        select(ChassisUsage)
        .where(ChassisUsage.container_id == container_id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


@pytest.mark.asyncio
class TestChassisPerDiem:

    async def _trip_with_order(self, factory, pool_code="DCLI", chassis_number="DCLZ400123"):
        customer = await factory.customer()
        container = await factory.container(await factory.shipment(customer))
        trip = await factory.trip(await factory.driver(), chassis_number=chassis_number, chassis_pool=pool_code)
        order = await factory.order(container, trip=trip)
        return container, trip, order

    async def test_usage_priced_on_trip_completion(self, db_session, factory, settings, monday):
        await factory.chassis_pool("DCLI", free_days=4, daily_rate=Decimal("30.00"))
        container, trip, _ = await self._trip_with_order(factory)
        service = AutomationService(db_session, settings)

        await service.set_trip_status(trip.id, "DISPATCHED", now=monday)
        usages = await usages_for(db_session, container.id)
        assert len(usages) == 1
        assert usages[0].status == "OUT"
        assert usages[0].pickup_date == monday

        await service.set_trip_status(trip.id, "COMPLETED", now=monday + timedelta(days=7))

        usage = (await usages_for(db_session, container.id))[0]
        assert usage.status == "RETURNED"
        assert usage.days_out == 7
        assert usage.billable_days == 3
        assert usage.per_diem_amount == Decimal("90.00")

    async def test_per_diem_lands_on_the_invoice(self, db_session, factory, settings, monday):
        await factory.chassis_pool("DCLI", free_days=4, daily_rate=Decimal("30.00"))
        container, trip, order = await self._trip_with_order(factory)
        service = AutomationService(db_session, settings)
        await service.set_trip_status(trip.id, "DISPATCHED", now=monday)
        await service.set_trip_status(trip.id, "COMPLETED", now=monday + timedelta(days=7))

        result = await service.set_order_status(order.id, "COMPLETED", now=monday + timedelta(days=7))

        invoice = await db_session.get(Invoice, result.invoice_id, populate_existing=True)
        assert invoice.total_amount == Decimal("468.00")
        per_diem = (
            await db_session.execute(
                select(InvoiceLineItem).where(
                    InvoiceLineItem.invoice_id == invoice.id,
                    InvoiceLineItem.charge_type == "CHASSIS_PER_DIEM",
                )
            )
        ).scalar_one()
        assert per_diem.amount == Decimal("90.00")
        assert per_diem.quantity == Decimal("3")
        assert (await usages_for(db_session, container.id))[0].billed_to_customer is True

    async def test_returned_within_free_days_is_free(self, db_session, factory, settings, monday):
        await factory.chassis_pool("DCLI", free_days=4, daily_rate=Decimal("30.00"))
        container, trip, order = await self._trip_with_order(factory)
        service = AutomationService(db_session, settings)
        await service.set_trip_status(trip.id, "DISPATCHED", now=monday)
        await service.set_trip_status(trip.id, "COMPLETED", now=monday + timedelta(days=2))

        result = await service.set_order_status(order.id, "COMPLETED", now=monday + timedelta(days=2))

        invoice = await db_session.get(Invoice, result.invoice_id, populate_existing=True)
        assert invoice.total_amount == Decimal("378.00")
        assert (await usages_for(db_session, container.id))[0].billed_to_customer is False

    async def test_redispatch_does_not_open_a_second_usage(self, db_session, factory, settings, monday):
        container, trip, _ = await self._trip_with_order(factory)
        service = AutomationService(db_session, settings)

        await service.set_trip_status(trip.id, "DISPATCHED", now=monday)
        await service.set_trip_status(trip.id, "EN_ROUTE", now=monday)
        await service.set_trip_status(trip.id, "ASSIGNED", now=monday)
        await service.set_trip_status(trip.id, "DISPATCHED", now=monday + timedelta(hours=1))

        assert len(await usages_for(db_session, container.id)) == 1

    async def test_unknown_pool_uses_default_terms(self, db_session, factory, settings, monday, caplog):
        container, trip, _ = await self._trip_with_order(factory, pool_code="TRAC")

        with caplog.at_level(logging.WARNING):
            await AutomationService(db_session, settings).set_trip_status(trip.id, "DISPATCHED", now=monday)

        usage = (await usages_for(db_session, container.id))[0]
        assert usage.pool_code == "TRAC"
        assert usage.free_days == 4
        assert usage.daily_rate == Decimal("30.00")
        assert any(record.getMessage() == "chassis_pool_missing" for record in caplog.records)

    async def test_trip_without_chassis_tracks_nothing(self, db_session, factory, settings, monday):
        container, trip, _ = await self._trip_with_order(factory, chassis_number=None)

        await AutomationService(db_session, settings).set_trip_status(trip.id, "DISPATCHED", now=monday)

        assert await usages_for(db_session, container.id) == []
