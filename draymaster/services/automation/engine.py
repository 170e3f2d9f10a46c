"""
Automation engine.

Routes a single-field mutation to the reactions that depend on it, inside
the caller's transaction:

    order.status          -> charge lines (into DISPATCHED)
                             invoice (into COMPLETED / DELIVERED)
                             state propagation (always)
    trip.status           -> chassis check-out (into DISPATCHED / EN_ROUTE / IN_PROGRESS)
                             chassis return + driver settlement (into COMPLETED)
    container.gate_out_at -> open demurrage accrual
    container.gate_in_at  -> close demurrage accrual

The engine never commits. Every event it produces is also written to the
outbox so it shares the transaction's fate.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from draymaster.core.config import Settings, get_settings
from draymaster.models.shipment import Container, Order, OrderStatus
from draymaster.models.trip import Trip, TripStatus
from draymaster.services.automation.propagation import StatePropagator
from draymaster.services.billing.charges import ChargeCalculator
from draymaster.services.billing.invoicing import InvoiceGenerator
from draymaster.services.drayage.accrual import DemurrageService
from draymaster.services.drayage.chassis import ChassisTracker
from draymaster.services.event_dispatcher import Event, EventType
from draymaster.services.outbox import record_outbox
from draymaster.services.settlements import SettlementsService

logger = logging.getLogger(__name__)

INVOICE_TRIGGER_STATUSES = frozenset({OrderStatus.COMPLETED.value, OrderStatus.DELIVERED.value})
ALREADY_BILLED_STATUSES = INVOICE_TRIGGER_STATUSES | {OrderStatus.INVOICED.value}
CHASSIS_OUT_TRIP_STATUSES = frozenset({
    TripStatus.DISPATCHED.value,
    TripStatus.EN_ROUTE.value,
    TripStatus.IN_PROGRESS.value,
})


@dataclass
class MutationEvent:
    """One field of one entity changed from `old_value` to `new_value`."""
    entity_type: str
    entity: Any
    field_name: str
    old_value: Any
    new_value: Any

    @property
    def entity_id(self) -> str:
        return self.entity.id


@dataclass
class EngineResult:
    mutation: MutationEvent
    events: List[Event] = field(default_factory=list)
    changed_nodes: List[str] = field(default_factory=list)
    charges_derived: bool = False
    invoice_id: Optional[str] = None
    settlement_id: Optional[str] = None
    outbox_ids: List[str] = field(default_factory=list)


class AutomationEngine:
    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.propagator = StatePropagator(db)
        self.charges = ChargeCalculator(db, self.settings)
        self.invoices = InvoiceGenerator(db, self.settings)
        self.settlements = SettlementsService(db, self.settings)
        self.demurrage = DemurrageService(db, self.settings)
        self.chassis = ChassisTracker(db, self.settings)

    async def handle(self, mutation: MutationEvent, now: Optional[datetime] = None) -> EngineResult:
        now = now or datetime.utcnow()
        result = EngineResult(mutation=mutation)

        key = (mutation.entity_type, mutation.field_name)
        if key == ("order", "status"):
            await self._on_order_status(mutation, result, now)
        elif key == ("trip", "status"):
            await self._on_trip_status(mutation, result, now)
        elif key == ("container", "gate_out_at"):
            await self._on_gate_out(mutation, result, now)
        elif key == ("container", "gate_in_at"):
            await self._on_gate_in(mutation, result)
        else:
            logger.debug("mutation_ignored", extra={"entity_type": mutation.entity_type, "field": mutation.field_name})
            return result

        rows = record_outbox(self.db, result.events)
        await self.db.flush()
        result.outbox_ids = [row.id for row in rows]
        return result

    async def _on_order_status(self, mutation: MutationEvent, result: EngineResult, now: datetime) -> None:
        order: Order = mutation.entity
        old, new = mutation.old_value, mutation.new_value

        result.events.append(
            Event(
                type=EventType.ORDER_STATUS_CHANGED,
                entity_type="order",
                entity_id=order.id,
                action="UPDATE" if old is not None else "INSERT",
                new_status=new,
                data={"previous_status": old},
            )
        )

        if new == OrderStatus.DISPATCHED.value and old != OrderStatus.DISPATCHED.value:
            derived = await self.charges.derive_order_charges(order, now)
            result.charges_derived = True
            result.events.append(
                Event(
                    type=EventType.CHARGES_DERIVED,
                    entity_type="order",
                    entity_id=order.id,
                    action="UPDATE",
                    new_status=order.status,
                    data={"total_charges": str(derived.total_charges)},
                )
            )

        if new in INVOICE_TRIGGER_STATUSES and old not in ALREADY_BILLED_STATUSES:
            invoiced = await self.invoices.invoice_completed_order(order, now)
            if invoiced.invoice is not None:
                result.invoice_id = invoiced.invoice.id
                result.events.append(
                    Event(
                        type=EventType.INVOICE_GENERATED,
                        entity_type="invoice",
                        entity_id=invoiced.invoice.id,
                        action="INSERT" if invoiced.created else "UPDATE",
                        new_status=invoiced.invoice.status,
                        data={"order_id": order.id, "total_amount": str(invoiced.invoice.total_amount)},
                    )
                )
                result.events.append(
                    Event(
                        type=EventType.ORDER_STATUS_CHANGED,
                        entity_type="order",
                        entity_id=order.id,
                        action="UPDATE",
                        new_status=order.status,
                        data={"previous_status": new},
                    )
                )

        # Propagate from the order's final status (INVOICED when billing ran)
        ctx = await self.propagator.on_order_changed(order)
        result.events.extend(ctx.events)
        result.changed_nodes = [event.entity_type for event in ctx.events]

    async def _on_trip_status(self, mutation: MutationEvent, result: EngineResult, now: datetime) -> None:
        trip: Trip = mutation.entity
        old, new = mutation.old_value, mutation.new_value

        result.events.append(
            Event(
                type=EventType.TRIP_STATUS_CHANGED,
                entity_type="trip",
                entity_id=trip.id,
                action="UPDATE" if old is not None else "INSERT",
                new_status=new,
                data={"previous_status": old},
            )
        )

        if new in CHASSIS_OUT_TRIP_STATUSES and old not in CHASSIS_OUT_TRIP_STATUSES:
            for usage in await self.chassis.check_out_for_trip(trip, now):
                result.events.append(
                    Event(
                        type=EventType.CHASSIS_CHECKED_OUT,
                        entity_type="chassis_usage",
                        entity_id=usage.id,
                        action="INSERT",
                        new_status=usage.status,
                        data={"chassis_number": usage.chassis_number, "container_id": usage.container_id},
                    )
                )

        if new == TripStatus.COMPLETED.value and old != TripStatus.COMPLETED.value:
            for usage in await self.chassis.return_for_trip(trip, now):
                result.events.append(
                    Event(
                        type=EventType.CHASSIS_RETURNED,
                        entity_type="chassis_usage",
                        entity_id=usage.id,
                        action="UPDATE",
                        new_status=usage.status,
                        data={"per_diem_amount": str(usage.per_diem_amount)},
                    )
                )

            settlement = await self.settlements.settle_completed_trip(trip, now)
            if settlement is not None:
                result.settlement_id = settlement.id
                result.events.append(
                    Event(
                        type=EventType.SETTLEMENT_UPDATED,
                        entity_type="settlement",
                        entity_id=settlement.id,
                        action="UPDATE",
                        new_status=settlement.status,
                        data={"trip_id": trip.id, "net_pay": str(settlement.net_pay)},
                    )
                )

    async def _on_gate_out(self, mutation: MutationEvent, result: EngineResult, now: datetime) -> None:
        container: Container = mutation.entity
        if mutation.old_value is not None:
            # first gate out wins
            container.gate_out_at = mutation.old_value
            return
        if mutation.new_value is None:
            return

        calc = await self.demurrage.open_accrual(container, now)
        result.events.append(
            Event(
                type=EventType.CONTAINER_GATE_OUT,
                entity_type="container",
                entity_id=container.id,
                action="UPDATE",
                new_status=container.demurrage_status,
                data={"free_time_expires_at": calc.free_time_expires_at.isoformat()},
            )
        )

    async def _on_gate_in(self, mutation: MutationEvent, result: EngineResult) -> None:
        container: Container = mutation.entity
        if mutation.old_value is not None:
            container.gate_in_at = mutation.old_value
            return
        if mutation.new_value is None:
            return

        calc = await self.demurrage.close_accrual(container)
        result.events.append(
            Event(
                type=EventType.CONTAINER_GATE_IN,
                entity_type="container",
                entity_id=container.id,
                action="UPDATE",
                new_status=container.demurrage_status,
                data={"total_charge": str(calc.charge) if calc else None},
            )
        )
