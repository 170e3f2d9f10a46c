"""Scheduled jobs run against their own session."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from draymaster.background import scheduler
from draymaster.models.outbox import OutboxEvent
from draymaster.models.shipment import Container
from draymaster.services.automation.service import AutomationService
from draymaster.services.event_dispatcher import Event, EventType
from draymaster.services.outbox import record_outbox


@pytest.mark.asyncio
class TestScheduledJobs:

    async def test_demurrage_job_escalates_open_containers(
        self, db_session, session_factory, factory, settings, monday, monkeypatch
    ):
        monkeypatch.setattr(scheduler, "AsyncSessionFactory", session_factory)
        container = await factory.container(await factory.shipment())
        await AutomationService(db_session, settings).record_gate_out(container.id, monday)

        await scheduler.run_demurrage_reevaluation()

        container = await db_session.get(Container, container.id, populate_existing=True)
        assert container.demurrage_status == "OVERDUE"

    async def test_outbox_job_relays_old_rows(
        self, db_session, session_factory, monday, monkeypatch, captured_events
    ):
        monkeypatch.setattr(scheduler, "AsyncSessionFactory", session_factory)
        rows = record_outbox(
            db_session,
            [Event(type=EventType.INVOICE_GENERATED, entity_type="invoice", entity_id="i-1", action="INSERT")],
        )
        rows[0].created_at = monday - timedelta(days=1)
        await db_session.commit()

        await scheduler.relay_unpublished_outbox()

        row = (
            await db_session.execute(select(OutboxEvent).execution_options(populate_existing=True))
        ).scalar_one()
        assert row.published_at is not None
        assert [event.entity_id for event in captured_events] == ["i-1"]


class TestSchedulerSetup:

    def test_jobs_are_registered_once(self, monkeypatch):
        registered = []

        class FakeScheduler:
            running = False

            def add_job(self, func, trigger, **kwargs):
                registered.append(kwargs["id"])

            def start(self):
                self.running = True

        monkeypatch.setattr(scheduler, "automation_scheduler", FakeScheduler())

        scheduler.start_scheduler()
        scheduler.start_scheduler()

        assert registered == ["demurrage-reevaluation", "outbox-relay"]
