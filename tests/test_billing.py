"""Charge derivation on dispatch and invoicing on completion."""

import logging
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from draymaster.models.billing import Invoice, InvoiceLineItem
from draymaster.models.charges import ChargeLine, ContainerCharge
from draymaster.models.shipment import Order
from draymaster.services.automation.service import AutomationService
from draymaster.services.billing.charges import dedupe_key


async def charge_lines(db_session, order_id):
    result = await db_session.execute(
        select(ChargeLine)
        .where(ChargeLine.order_id == order_id)
        .execution_options(populate_existing=True)
    )
    return {line.charge_type: line for line in result.scalars().all()}


async def invoices_for(db_session, order_id):
    result = await db_session.execute(
        select(Invoice).where(Invoice.order_id == order_id).execution_options(populate_existing=True)
    )
    return result.scalars().all()


@pytest.mark.asyncio
class TestChargeDerivation:
    """Dispatching an order derives its revenue lines."""

    async def test_customer_lane_rate_and_fuel(self, db_session, factory, settings, monday):
        customer = await factory.customer()
        await factory.lane_rate(customer, rate_40ft=Decimal("400.00"))
        container = await factory.container(await factory.shipment(customer))
        order = await factory.order(container)

        await AutomationService(db_session, settings).set_order_status(order.id, "DISPATCHED", now=monday)

        lines = await charge_lines(db_session, order.id)
        assert set(lines) == {"LINE_HAUL", "FUEL_SURCHARGE"}
        assert lines["LINE_HAUL"].amount == Decimal("400.00")
        assert lines["FUEL_SURCHARGE"].amount == Decimal("32.00")
        assert lines["LINE_HAUL"].dedupe_key == f"{order.id}:LINE_HAUL"
        order = await db_session.get(Order, order.id, populate_existing=True)
        assert order.total_charges == Decimal("432.00")

    async def test_surcharges_with_default_rate(self, db_session, factory, settings, monday, caplog):
        customer = await factory.customer()
        container = await factory.container(
            await factory.shipment(customer), is_hazmat=True, is_reefer=True, weight_lbs=45000
        )
        order = await factory.order(container)

        with caplog.at_level(logging.WARNING):
            await AutomationService(db_session, settings).set_order_status(order.id, "DISPATCHED", now=monday)

        lines = await charge_lines(db_session, order.id)
        assert lines["LINE_HAUL"].amount == Decimal("350.00")
        assert lines["FUEL_SURCHARGE"].amount == Decimal("28.00")
        assert lines["HAZMAT"].amount == Decimal("75.00")
        assert lines["OVERWEIGHT"].amount == Decimal("100.00")
        assert lines["REEFER"].amount == Decimal("50.00")
        order = await db_session.get(Order, order.id, populate_existing=True)
        assert order.total_charges == Decimal("603.00")
        assert any(record.getMessage() == "lane_rate_missing" for record in caplog.records)

    async def test_customer_lane_beats_default_lane(self, db_session, factory, settings, monday):
        customer = await factory.customer()
        await factory.lane_rate(None, rate_40ft=Decimal("500.00"))
        await factory.lane_rate(customer, rate_40ft=Decimal("400.00"))
        order = await factory.order(await factory.container(await factory.shipment(customer)))

        await AutomationService(db_session, settings).set_order_status(order.id, "DISPATCHED", now=monday)

        lines = await charge_lines(db_session, order.id)
        assert lines["LINE_HAUL"].amount == Decimal("400.00")

    async def test_redispatch_replaces_lines(self, db_session, factory, settings, monday):
        customer = await factory.customer()
        lane = await factory.lane_rate(customer, rate_40ft=Decimal("400.00"))
        order = await factory.order(await factory.container(await factory.shipment(customer)))
        service = AutomationService(db_session, settings)

        await service.set_order_status(order.id, "DISPATCHED", now=monday)
        await service.set_order_status(order.id, "READY", now=monday)
        lane.rate_40ft = Decimal("450.00")
        await db_session.commit()
        await service.set_order_status(order.id, "DISPATCHED", now=monday)

        count = (
            await db_session.execute(select(func.count(ChargeLine.id)).where(ChargeLine.order_id == order.id))
        ).scalar_one()
        assert count == 2
        lines = await charge_lines(db_session, order.id)
        assert lines["LINE_HAUL"].amount == Decimal("450.00")
        assert lines["FUEL_SURCHARGE"].amount == Decimal("36.00")

    async def test_manual_line_takes_precedence(self, db_session, factory, settings, monday):
        customer = await factory.customer()
        order = await factory.order(await factory.container(await factory.shipment(customer)))
        db_session.add(
            ChargeLine(
                order_id=order.id,
                charge_type="LINE_HAUL",
                description="Negotiated line haul",
                unit_rate=Decimal("500.00"),
                amount=Decimal("500.00"),
                auto_calculated=False,
                dedupe_key=dedupe_key(order.id, "LINE_HAUL"),
            )
        )
        await db_session.commit()

        await AutomationService(db_session, settings).set_order_status(order.id, "DISPATCHED", now=monday)

        lines = await charge_lines(db_session, order.id)
        assert lines["LINE_HAUL"].amount == Decimal("500.00")
        assert lines["LINE_HAUL"].auto_calculated is False
        # Fuel follows the quoted base, not the manual override
        assert lines["FUEL_SURCHARGE"].amount == Decimal("28.00")
        order = await db_session.get(Order, order.id, populate_existing=True)
        assert order.total_charges == Decimal("528.00")


@pytest.mark.asyncio
class TestInvoicing:
    """Completing an order produces exactly one invoice."""

    async def _dispatched(self, db_session, factory, settings, monday, rate=Decimal("400.00")):
        customer = await factory.customer()
        await factory.lane_rate(customer, rate_40ft=rate)
        container = await factory.container(await factory.shipment(customer))
        order = await factory.order(container, move_type="IMPORT_DELIVERY")
        await AutomationService(db_session, settings).set_order_status(order.id, "DISPATCHED", now=monday)
        return container, order

    async def test_completion_generates_invoice(self, db_session, factory, settings, monday):
        _, order = await self._dispatched(db_session, factory, settings, monday)

        result = await AutomationService(db_session, settings).set_order_status(order.id, "COMPLETED", now=monday)

        invoices = await invoices_for(db_session, order.id)
        assert len(invoices) == 1
        invoice = invoices[0]
        assert result.invoice_id == invoice.id
        assert invoice.invoice_number == "INV-20250106-0001"
        assert invoice.status == "DRAFT"
        assert invoice.total_amount == Decimal("432.00")
        assert invoice.balance_due == Decimal("432.00")
        assert invoice.due_date == monday.date() + timedelta(days=30)

        order = await db_session.get(Order, order.id, populate_existing=True)
        assert order.status == "INVOICED"

        items = (
            await db_session.execute(select(InvoiceLineItem).where(InvoiceLineItem.invoice_id == invoice.id))
        ).scalars().all()
        line_haul = next(item for item in items if item.charge_type == "LINE_HAUL")
        assert line_haul.description == f"Import delivery - {order.order_number}"
        assert line_haul.reference_number == order.order_number

    async def test_recompleting_is_a_no_op(self, db_session, factory, settings, monday):
        _, order = await self._dispatched(db_session, factory, settings, monday)
        service = AutomationService(db_session, settings)

        await service.set_order_status(order.id, "COMPLETED", now=monday)
        second = await service.set_order_status(order.id, "COMPLETED", now=monday)

        assert second.invoice_id is None
        assert len(await invoices_for(db_session, order.id)) == 1
        items = (await db_session.execute(select(func.count(InvoiceLineItem.id)))).scalar_one()
        assert items == 2

    async def test_demurrage_is_billed_once(self, db_session, factory, settings, monday):
        container, order = await self._dispatched(db_session, factory, settings, monday)
        service = AutomationService(db_session, settings)
        await service.record_gate_out(container.id, monday)
        await service.record_gate_in(container.id, monday + timedelta(days=8))

        result = await service.set_order_status(order.id, "COMPLETED", now=monday + timedelta(days=8))

        invoice = await db_session.get(Invoice, result.invoice_id, populate_existing=True)
        assert invoice.total_amount == Decimal("657.00")
        accrual = (
            await db_session.execute(
                select(ContainerCharge)
                .where(ContainerCharge.container_id == container.id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one()
        assert accrual.billed_invoice_id == invoice.id

        demurrage = (
            await db_session.execute(
                select(InvoiceLineItem).where(
                    InvoiceLineItem.invoice_id == invoice.id,
                    InvoiceLineItem.charge_type == "DEMURRAGE",
                )
            )
        ).scalar_one()
        assert demurrage.amount == Decimal("225.00")
        assert demurrage.quantity == Decimal("3")

    async def test_order_without_customer_is_not_invoiced(self, db_session, factory, settings, monday):
        order = await factory.order(await factory.container(await factory.shipment()))

        result = await AutomationService(db_session, settings).set_order_status(order.id, "COMPLETED", now=monday)

        assert result.invoice_id is None
        assert await invoices_for(db_session, order.id) == []
        order = await db_session.get(Order, order.id, populate_existing=True)
        assert order.status == "COMPLETED"

    async def test_completion_without_dispatch_derives_lines(self, db_session, factory, settings, monday):
        customer = await factory.customer()
        order = await factory.order(await factory.container(await factory.shipment(customer)))

        result = await AutomationService(db_session, settings).set_order_status(order.id, "COMPLETED", now=monday)

        invoice = await db_session.get(Invoice, result.invoice_id)
        assert invoice.total_amount == Decimal("378.00")
        assert set(await charge_lines(db_session, order.id)) == {"LINE_HAUL", "FUEL_SURCHARGE"}

    async def test_invoice_numbers_are_sequential(self, db_session, factory, settings, monday):
        customer = await factory.customer()
        shipment = await factory.shipment(customer)
        first = await factory.order(await factory.container(shipment))
        second = await factory.order(await factory.container(shipment))
        service = AutomationService(db_session, settings)

        one = await service.set_order_status(first.id, "COMPLETED", now=monday)
        two = await service.set_order_status(second.id, "COMPLETED", now=monday)

        numbers = [
            (await db_session.get(Invoice, result.invoice_id)).invoice_number
            for result in (one, two)
        ]
        assert numbers == ["INV-20250106-0001", "INV-20250106-0002"]

    async def test_delivery_triggers_invoicing(self, db_session, factory, settings, monday):
        _, order = await self._dispatched(db_session, factory, settings, monday)

        result = await AutomationService(db_session, settings).set_order_status(order.id, "DELIVERED", now=monday)

        invoices = await invoices_for(db_session, order.id)
        assert len(invoices) == 1
        assert result.invoice_id == invoices[0].id
        assert invoices[0].total_amount == Decimal("432.00")
        order = await db_session.get(Order, order.id, populate_existing=True)
        assert order.status == "INVOICED"

    async def test_completing_a_delivered_order_does_not_invoice_again(self, db_session, factory, settings, monday):
        _, order = await self._dispatched(db_session, factory, settings, monday)
        service = AutomationService(db_session, settings)
        await service.set_order_status(order.id, "DELIVERED", now=monday)
        order = await db_session.get(Order, order.id, populate_existing=True)
        order.status = "DELIVERED"
        await db_session.commit()

        result = await service.set_order_status(order.id, "COMPLETED", now=monday + timedelta(hours=2))

        assert result.invoice_id is None
        assert len(await invoices_for(db_session, order.id)) == 1
        items = (await db_session.execute(select(func.count(InvoiceLineItem.id)))).scalar_one()
        assert items == 2

    async def test_open_accrual_waits_for_gate_in(self, db_session, factory, settings, monday):
        container, first = await self._dispatched(db_session, factory, settings, monday)
        second = await factory.order(container)
        service = AutomationService(db_session, settings)
        await service.record_gate_out(container.id, monday)
        await service.reevaluate_open_demurrage(now=monday + timedelta(days=7))

        early = await service.set_order_status(first.id, "COMPLETED", now=monday + timedelta(days=7))
        await service.record_gate_in(container.id, monday + timedelta(days=12))
        late = await service.set_order_status(second.id, "COMPLETED", now=monday + timedelta(days=12))

        async def demurrage_amounts(invoice_id):
            result = await db_session.execute(
                select(InvoiceLineItem.amount).where(
                    InvoiceLineItem.invoice_id == invoice_id,
                    InvoiceLineItem.charge_type == "DEMURRAGE",
                )
            )
            return result.scalars().all()

        assert await demurrage_amounts(early.invoice_id) == []
        assert await demurrage_amounts(late.invoice_id) == [Decimal("525.00")]
        accrual = (
            await db_session.execute(
                select(ContainerCharge)
                .where(ContainerCharge.container_id == container.id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one()
        assert accrual.status == "CALCULATED"
        assert accrual.total_charge == Decimal("525.00")
        assert accrual.billed_invoice_id == late.invoice_id
