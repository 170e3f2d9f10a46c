"""
Outbox bookkeeping.

Events are staged as OutboxEvent rows inside the mutating transaction and
handed to the in-process dispatcher right after commit, at which point the
rows are stamped `published_at`. A process that dies between commit and
dispatch leaves rows unpublished; `relay_pending` picks those up later.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from draymaster.models.outbox import OutboxEvent
from draymaster.services.event_dispatcher import Event, EventType, get_dispatcher

logger = logging.getLogger(__name__)

ENVELOPE_KEYS = ("entity_type", "id", "action", "new_status")


def record_outbox(db: AsyncSession, events: Iterable[Event]) -> List[OutboxEvent]:
    """Stage events in the outbox; they commit or roll back with the caller."""
    rows = [
        OutboxEvent(
            event_type=event.type.value,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            action=event.action,
            new_status=event.new_status,
            payload=event.payload(),
        )
        for event in events
    ]
    db.add_all(rows)
    return rows


def event_from_row(row: OutboxEvent) -> Event:
    payload = dict(row.payload or {})
    data = {key: value for key, value in payload.items() if key not in ENVELOPE_KEYS}
    return Event(
        type=EventType(row.event_type),
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        action=row.action,
        new_status=row.new_status,
        data=data,
        timestamp=row.created_at.isoformat() if row.created_at else datetime.utcnow().isoformat(),
    )


class OutboxRelay:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def mark_published(self, outbox_ids: List[str], now: Optional[datetime] = None) -> None:
        if not outbox_ids:
            return
        await self.db.execute(
            update(OutboxEvent)
            .where(OutboxEvent.id.in_(outbox_ids), OutboxEvent.published_at.is_(None))
            .values(published_at=now or datetime.utcnow())
        )
        await self.db.commit()

    async def relay_pending(
        self,
        older_than_seconds: int = 60,
        limit: int = 100,
        now: Optional[datetime] = None,
    ) -> int:
        """Dispatch rows that were committed but never handed to the dispatcher."""
        now = now or datetime.utcnow()
        cutoff = now - timedelta(seconds=older_than_seconds)
        rows = (
            await self.db.execute(
                select(OutboxEvent)
                .where(OutboxEvent.published_at.is_(None), OutboxEvent.created_at <= cutoff)
                .order_by(OutboxEvent.created_at, OutboxEvent.id)
                .limit(limit)
            )
        ).scalars().all()

        dispatcher = get_dispatcher()
        for row in rows:
            await dispatcher.emit(event_from_row(row))
            row.published_at = now
        await self.db.commit()

        if rows:
            logger.info("outbox_relayed", extra={"count": len(rows)})
        return len(rows)
