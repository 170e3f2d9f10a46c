"""
Invoice generation for completed orders.

An order is invoiced at most once. The prior-artifact check (an invoice line
already references the order number) makes a second run a no-op, and every
line carries idempotency_key "{order_id}:{charge_type}" under a unique
constraint for the concurrent case.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from draymaster.core.config import Settings, get_settings
from draymaster.models.billing import Invoice, InvoiceLineItem, InvoiceStatus
from draymaster.models.charges import (
    AccrualStatus,
    ChargeLine,
    ChargeType,
    ChassisUsage,
    ChassisUsageStatus,
    ContainerCharge,
)
from draymaster.models.shipment import Container, Order, OrderStatus, Shipment
from draymaster.services.billing.charges import ChargeCalculator
from draymaster.services.sequences import SequenceService
from draymaster.utils.money import ZERO, money, to_decimal, total

logger = logging.getLogger(__name__)

MOVE_TYPE_DESCRIPTIONS: Dict[str, str] = {
    "IMPORT_DELIVERY": "Import delivery",
    "EXPORT_PICKUP": "Export pickup",
    "EMPTY_RETURN": "Empty return",
    "LOADED_RETURN": "Loaded return",
    "PRE_PULL": "Pre-pull to yard",
    "YARD_MOVE": "Yard move",
    "STREET_TURN": "Street turn",
}


def idempotency_key(order_id: str, charge_type: str) -> str:
    return f"{order_id}:{charge_type}"


@dataclass
class InvoiceResult:
    invoice: Optional[Invoice]
    created: bool = False
    lines_added: int = 0
    skipped_reason: Optional[str] = None


class InvoiceGenerator:
    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.charges = ChargeCalculator(db, self.settings)
        self.sequences = SequenceService(db)

    async def order_already_invoiced(self, order: Order) -> bool:
        result = await self.db.execute(
            select(InvoiceLineItem.id)
            .where(
                (InvoiceLineItem.order_id == order.id)
                | (InvoiceLineItem.reference_number == order.order_number)
            )
            .limit(1)
        )
        return result.first() is not None

    async def _open_invoice(self, order: Order, customer_id: str, now: datetime) -> tuple[Invoice, bool]:
        invoice = (
            await self.db.execute(
                select(Invoice)
                .where(Invoice.order_id == order.id, Invoice.status == InvoiceStatus.DRAFT.value)
                .with_for_update()
            )
        ).scalar_one_or_none()
        if invoice is not None:
            return invoice, False

        number = await self.sequences.next_document_number(self.settings.invoice_number_format, now)
        invoice = Invoice(
            invoice_number=number,
            customer_id=customer_id,
            shipment_id=order.shipment_id,
            order_id=order.id,
            status=InvoiceStatus.DRAFT.value,
            invoice_date=now.date(),
            due_date=now.date() + timedelta(days=self.settings.invoice_due_days),
        )
        self.db.add(invoice)
        await self.db.flush()
        return invoice, True

    def _line_description(self, order: Order, line: ChargeLine) -> str:
        if line.charge_type == ChargeType.LINE_HAUL.value and order.move_type:
            label = MOVE_TYPE_DESCRIPTIONS.get(order.move_type, order.move_type.replace("_", " ").title())
            return f"{label} - {order.order_number}"
        return line.description

    async def _charge_lines(self, order: Order, now: datetime) -> List[ChargeLine]:
        result = await self.db.execute(
            select(ChargeLine).where(ChargeLine.order_id == order.id).order_by(ChargeLine.created_at)
        )
        lines = list(result.scalars().all())
        if not lines:
            # Order completed without passing through dispatch
            lines = (await self.charges.derive_order_charges(order, now)).lines
        return lines

    async def _demurrage_line(self, order: Order, container: Container, invoice: Invoice) -> Optional[InvoiceLineItem]:
        accrual = (
            await self.db.execute(
                select(ContainerCharge)
                .where(
                    ContainerCharge.container_id == container.id,
                    ContainerCharge.charge_type == ChargeType.DEMURRAGE.value,
                    ContainerCharge.status == AccrualStatus.CALCULATED.value,
                    ContainerCharge.billed_invoice_id.is_(None),
                )
                .with_for_update()
            )
        ).scalar_one_or_none()
        if accrual is None or to_decimal(accrual.total_charge) <= ZERO:
            return None

        accrual.billed_invoice_id = invoice.id
        return InvoiceLineItem(
            invoice_id=invoice.id,
            order_id=order.id,
            reference_number=order.order_number,
            charge_type=ChargeType.DEMURRAGE.value,
            description=f"Demurrage - {accrual.days_over} days past free time",
            container_number=container.container_number,
            quantity=Decimal(accrual.days_over),
            unit_rate=money(to_decimal(accrual.total_charge) / accrual.days_over) if accrual.days_over else money(accrual.total_charge),
            amount=money(accrual.total_charge),
            idempotency_key=idempotency_key(order.id, ChargeType.DEMURRAGE.value),
        )

    async def _chassis_line(self, order: Order, container: Container, invoice: Invoice) -> Optional[InvoiceLineItem]:
        result = await self.db.execute(
            select(ChassisUsage)
            .where(
                ChassisUsage.container_id == container.id,
                ChassisUsage.status == ChassisUsageStatus.RETURNED.value,
                ChassisUsage.billed_to_customer.is_(False),
            )
            .with_for_update()
        )
        usages = [u for u in result.scalars().all() if to_decimal(u.per_diem_amount) > ZERO]
        if not usages:
            return None

        for usage in usages:
            usage.billed_to_customer = True

        billable_days = sum(u.billable_days for u in usages)
        amount = total(u.per_diem_amount for u in usages)
        chassis = ", ".join(sorted({u.chassis_number for u in usages}))
        return InvoiceLineItem(
            invoice_id=invoice.id,
            order_id=order.id,
            reference_number=order.order_number,
            charge_type=ChargeType.CHASSIS_PER_DIEM.value,
            description=f"Chassis per diem - {chassis} ({billable_days} days)",
            container_number=container.container_number,
            quantity=Decimal(billable_days),
            unit_rate=money(amount / billable_days) if billable_days else amount,
            amount=amount,
            idempotency_key=idempotency_key(order.id, ChargeType.CHASSIS_PER_DIEM.value),
        )

    async def recalculate_totals(self, invoice: Invoice) -> None:
        amounts = (
            await self.db.execute(select(InvoiceLineItem.amount).where(InvoiceLineItem.invoice_id == invoice.id))
        ).scalars().all()
        invoice.subtotal = total(amounts)
        invoice.total_amount = invoice.subtotal
        invoice.balance_due = money(invoice.total_amount - to_decimal(invoice.amount_paid))

    async def invoice_completed_order(self, order: Order, now: Optional[datetime] = None) -> InvoiceResult:
        """
        Build the invoice for a completed order and mark the order INVOICED.

        Returns an InvoiceResult with invoice None when the order was skipped
        (no customer, or already invoiced).
        """
        now = now or datetime.utcnow()

        if order.status == OrderStatus.INVOICED.value or await self.order_already_invoiced(order):
            logger.info("invoice_skipped_duplicate", extra={"order_id": order.id})
            return InvoiceResult(invoice=None, skipped_reason="already_invoiced")

        shipment = await self.db.get(Shipment, order.shipment_id) if order.shipment_id else None
        if shipment is None or shipment.customer_id is None:
            logger.info("invoice_skipped_no_customer", extra={"order_id": order.id})
            return InvoiceResult(invoice=None, skipped_reason="no_customer")

        invoice, created = await self._open_invoice(order, shipment.customer_id, now)
        container = await self.db.get(Container, order.container_id) if order.container_id else None

        items: List[InvoiceLineItem] = []
        for line in await self._charge_lines(order, now):
            items.append(
                InvoiceLineItem(
                    invoice_id=invoice.id,
                    order_id=order.id,
                    reference_number=order.order_number,
                    charge_type=line.charge_type,
                    description=self._line_description(order, line),
                    container_number=container.container_number if container else None,
                    quantity=to_decimal(line.quantity),
                    unit_rate=money(line.unit_rate),
                    amount=money(line.amount),
                    idempotency_key=idempotency_key(order.id, line.charge_type),
                )
            )

        if container is not None:
            for extra in (
                await self._demurrage_line(order, container, invoice),
                await self._chassis_line(order, container, invoice),
            ):
                if extra is not None:
                    items.append(extra)

        self.db.add_all(items)
        await self.db.flush()
        await self.recalculate_totals(invoice)

        order.status = OrderStatus.INVOICED.value

        logger.info(
            "invoice_generated",
            extra={
                "order_id": order.id,
                "invoice_id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "lines": len(items),
                "total_amount": str(invoice.total_amount),
            },
        )
        return InvoiceResult(invoice=invoice, created=created, lines_added=len(items))
