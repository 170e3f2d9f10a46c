"""
Transactional entry points for the automation engine.

Each mutation method is one atomic unit: lock the mutated row, apply the
change, run the engine, commit. Any failure rolls back the mutation together
with every derived write. Lock contention (lock timeouts, deadlocks, stale
version counters, a lost race on a unique key) is retried with exponential
backoff before ConcurrencyConflictError is raised. Events reach the
dispatcher only after commit.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from draymaster.core.config import Settings, get_settings
from draymaster.models.settlement import DriverSettlement, SettlementLineType
from draymaster.models.shipment import Container, Order, Shipment
from draymaster.models.trip import Trip
from draymaster.services.automation.engine import AutomationEngine, EngineResult, MutationEvent
from draymaster.services.automation.errors import ConcurrencyConflictError, EntityNotFoundError
from draymaster.services.automation.propagation import StatePropagator
from draymaster.services.drayage.accrual import DemurrageCalculation, DemurrageService
from draymaster.services.event_dispatcher import Event, EventType, emit_events
from draymaster.services.outbox import OutboxRelay, record_outbox
from draymaster.services.settlements import SettlementsService

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS = (OperationalError, StaleDataError, IntegrityError)


@dataclass
class ReevaluationResult:
    evaluated: int = 0
    updated: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class AutomationService:
    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    async def run_with_lock_retry(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        attempts = max(1, self.settings.lock_retry_attempts)
        for attempt in range(1, attempts + 1):
            try:
                value = await operation()
                await self.db.commit()
                return value
            except RETRYABLE_ERRORS as exc:
                await self.db.rollback()
                if attempt == attempts:
                    logger.error(
                        "automation_conflict_exhausted",
                        extra={"operation": description, "attempts": attempts, "error": str(exc)},
                    )
                    raise ConcurrencyConflictError(
                        f"{description} failed after {attempts} attempts: {exc}"
                    ) from exc
                delay = self.settings.lock_retry_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "automation_conflict_retry",
                    extra={"operation": description, "attempt": attempt, "delay_seconds": delay},
                )
                await asyncio.sleep(delay)
            except Exception:
                await self.db.rollback()
                raise
        raise ConcurrencyConflictError(description)  # pragma: no cover

    async def _lock(self, model, entity_id: str, entity_type: str):
        row = (
            await self.db.execute(
                select(model)
                .where(model.id == entity_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if row is None:
            raise EntityNotFoundError(entity_type, entity_id)
        return row

    async def _mutate(
        self,
        model,
        entity_type: str,
        entity_id: str,
        field_name: str,
        value,
        now: Optional[datetime],
        extra_updates: Optional[dict] = None,
    ) -> EngineResult:
        async def operation() -> EngineResult:
            row = await self._lock(model, entity_id, entity_type)
            old_value = getattr(row, field_name)
            setattr(row, field_name, value)
            for key, extra_value in (extra_updates or {}).items():
                setattr(row, key, extra_value)
            engine = AutomationEngine(self.db, self.settings)
            return await engine.handle(
                MutationEvent(entity_type, row, field_name, old_value, value),
                now=now,
            )

        result = await self.run_with_lock_retry(operation, f"{entity_type}.{field_name}")
        await self._publish(result.events, result.outbox_ids)
        return result

    async def _publish(self, events: List[Event], outbox_ids: List[str]) -> None:
        """Dispatch committed events and stamp their outbox rows."""
        await emit_events(events)
        await OutboxRelay(self.db).mark_published(outbox_ids)

    async def set_order_status(self, order_id: str, status: str, now: Optional[datetime] = None) -> EngineResult:
        return await self._mutate(Order, "order", order_id, "status", status, now)

    async def set_trip_status(self, trip_id: str, status: str, now: Optional[datetime] = None) -> EngineResult:
        return await self._mutate(Trip, "trip", trip_id, "status", status, now)

    async def record_gate_out(self, container_id: str, at: datetime, now: Optional[datetime] = None) -> EngineResult:
        return await self._mutate(Container, "container", container_id, "gate_out_at", at, now or at)

    async def record_gate_in(self, container_id: str, at: datetime) -> EngineResult:
        return await self._mutate(Container, "container", container_id, "gate_in_at", at, at)

    async def recompute_shipment(self, shipment_id: str) -> Shipment:
        """Repair a shipment's derived fields from its containers and orders."""
        async def operation():
            ctx = await StatePropagator(self.db).repair_shipment(shipment_id)
            rows = record_outbox(self.db, ctx.events)
            await self.db.flush()
            return ctx, [row.id for row in rows]

        ctx, outbox_ids = await self.run_with_lock_retry(operation, "shipment.recompute")
        await self._publish(ctx.events, outbox_ids)
        return ctx.shipment

    async def reevaluate_open_demurrage(self, now: Optional[datetime] = None) -> ReevaluationResult:
        """
        Periodic pass over containers that are out and not yet returned.

        Commits per container. A container written concurrently (its version
        counter moved, typically by a gate-in) is skipped; the concurrent
        write wins.
        """
        now = now or datetime.utcnow()
        result = ReevaluationResult()
        service = DemurrageService(self.db, self.settings)

        container_ids = await service.list_open_container_ids()
        await self.db.rollback()

        for container_id in container_ids:
            result.evaluated += 1
            events: List[Event] = []
            outbox_ids: List[str] = []
            try:
                container = await self.db.get(Container, container_id, populate_existing=True)
                if container is None:
                    continue
                calc = await service.reevaluate(container, now)
                if calc is not None:
                    events.append(
                        Event(
                            type=EventType.DEMURRAGE_STATUS_CHANGED,
                            entity_type="container",
                            entity_id=container_id,
                            action="UPDATE",
                            new_status=calc.status,
                            data={"estimated_charge": str(calc.charge)},
                        )
                    )
                    rows = record_outbox(self.db, events)
                    await self.db.flush()
                    outbox_ids = [row.id for row in rows]
                await self.db.commit()
            except StaleDataError:
                await self.db.rollback()
                result.skipped.append(container_id)
                logger.info("demurrage_reevaluation_stale", extra={"container_id": container_id})
                continue
            except Exception:
                await self.db.rollback()
                raise

            if events:
                result.updated.append(container_id)
                await self._publish(events, outbox_ids)

        logger.info(
            "demurrage_reevaluated",
            extra={"evaluated": result.evaluated, "updated": len(result.updated), "skipped": len(result.skipped)},
        )
        return result

    async def free_time_status(self, container_id: str, now: Optional[datetime] = None) -> DemurrageCalculation:
        container = await self.db.get(Container, container_id)
        if container is None:
            raise EntityNotFoundError("container", container_id)
        return await DemurrageService(self.db, self.settings).free_time_status(container, now)

    async def approve_settlement(self, settlement_id: str) -> DriverSettlement:
        return await self.run_with_lock_retry(
            lambda: SettlementsService(self.db, self.settings).approve_settlement(settlement_id),
            "settlement.approve",
        )

    async def mark_settlement_paid(self, settlement_id: str) -> DriverSettlement:
        return await self.run_with_lock_retry(
            lambda: SettlementsService(self.db, self.settings).mark_settlement_paid(settlement_id),
            "settlement.pay",
        )

    async def add_settlement_deduction(
        self,
        settlement_id: str,
        line_type: SettlementLineType,
        amount: Decimal,
        description: str,
    ) -> DriverSettlement:
        return await self.run_with_lock_retry(
            lambda: SettlementsService(self.db, self.settings).add_deduction(
                settlement_id, line_type, amount, description
            ),
            "settlement.deduction",
        )
