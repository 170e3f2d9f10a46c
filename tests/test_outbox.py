"""Outbox staging and the relay for rows that missed post-commit dispatch."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from draymaster.models.outbox import OutboxEvent
from draymaster.services.event_dispatcher import Event, EventType
from draymaster.services.outbox import OutboxRelay, event_from_row, record_outbox


def status_event(entity_id="c-1", status="WARNING"):
    return Event(
        type=EventType.DEMURRAGE_STATUS_CHANGED,
        entity_type="container",
        entity_id=entity_id,
        action="UPDATE",
        new_status=status,
        data={"estimated_charge": "0.00"},
    )


@pytest.mark.asyncio
class TestOutbox:

    async def _stage(self, db_session, events, created_at):
        rows = record_outbox(db_session, events)
        for row in rows:
            row.created_at = created_at
        await db_session.commit()
        return rows

    async def test_rows_mirror_the_event_envelope(self, db_session, monday):
        row = (await self._stage(db_session, [status_event()], monday))[0]

        assert row.event_type == "container.demurrage_status_changed"
        assert row.payload == {
            "entity_type": "container",
            "id": "c-1",
            "action": "UPDATE",
            "new_status": "WARNING",
            "estimated_charge": "0.00",
        }
        assert row.published_at is None

    async def test_event_round_trips_through_a_row(self, db_session, monday):
        row = (await self._stage(db_session, [status_event()], monday))[0]

        event = event_from_row(row)

        assert event.type == EventType.DEMURRAGE_STATUS_CHANGED
        assert event.entity_id == "c-1"
        assert event.data == {"estimated_charge": "0.00"}
        assert event.timestamp == monday.isoformat()

    async def test_relay_dispatches_stale_unpublished_rows(self, db_session, monday, captured_events):
        await self._stage(db_session, [status_event("c-1"), status_event("c-2", "CRITICAL")], monday)
        fresh = await self._stage(db_session, [status_event("c-3")], monday + timedelta(minutes=5))

        relayed = await OutboxRelay(db_session).relay_pending(
            older_than_seconds=60, now=monday + timedelta(minutes=5, seconds=30)
        )

        assert relayed == 2
        assert sorted(event.entity_id for event in captured_events) == ["c-1", "c-2"]
        unpublished = (
            await db_session.execute(
                select(OutboxEvent.id)
                .where(OutboxEvent.published_at.is_(None))
                .execution_options(populate_existing=True)
            )
        ).scalars().all()
        assert unpublished == [fresh[0].id]

    async def test_relay_skips_published_rows(self, db_session, monday, captured_events):
        rows = await self._stage(db_session, [status_event()], monday)
        await OutboxRelay(db_session).mark_published([row.id for row in rows], now=monday)

        relayed = await OutboxRelay(db_session).relay_pending(now=monday + timedelta(hours=1))

        assert relayed == 0
        assert captured_events == []

    async def test_mark_published_keeps_first_stamp(self, db_session, monday):
        rows = await self._stage(db_session, [status_event()], monday)
        relay = OutboxRelay(db_session)

        await relay.mark_published([rows[0].id], now=monday)
        await relay.mark_published([rows[0].id], now=monday + timedelta(days=1))

        row = await db_session.get(OutboxEvent, rows[0].id, populate_existing=True)
        assert row.published_at == monday
