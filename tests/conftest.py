"""Pytest configuration and fixtures for the automation engine tests.

Every test gets a fresh in-memory SQLite database with all tables created.
"""

import os

# draymaster.core.db builds its engine at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENABLE_SCHEDULER", "false")

from datetime import date, datetime  # noqa: E402
from decimal import Decimal  # noqa: E402
from typing import AsyncGenerator, List, Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import draymaster.models  # noqa: E402,F401
from draymaster.core.config import Settings  # noqa: E402
from draymaster.core.db import get_db  # noqa: E402
from draymaster.models.base import Base  # noqa: E402
from draymaster.models.charges import ChassisPool  # noqa: E402
from draymaster.models.customer import Customer  # noqa: E402
from draymaster.models.reference import (  # noqa: E402
    CarrierFreeTimeRule,
    DriverPayRate,
    DriverRateProfile,
    HolidayCalendar,
    LaneRate,
    PayType,
)
from draymaster.models.shipment import Container, Order, Shipment  # noqa: E402
from draymaster.models.trip import Driver, Trip, TripStop  # noqa: E402
from draymaster.services.event_dispatcher import Event, get_dispatcher  # noqa: E402

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ── Database ─────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine):
    return async_sessionmaker(bind=test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url=TEST_DATABASE_URL,
        enable_scheduler=False,
        lock_retry_backoff_seconds=0.0,
    )


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with get_db bound to the test database."""
    from draymaster.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.clear()


# ── Events ───────────────────────────────────────────────────────

@pytest.fixture
def captured_events():
    """Every event dispatched while the test runs."""
    events: List[Event] = []

    def capture(event: Event) -> None:
        events.append(event)

    dispatcher = get_dispatcher()
    dispatcher.subscribe_all(capture)
    yield events
    dispatcher.unsubscribe_all(capture)


# ── Test Data ────────────────────────────────────────────────────

class DataFactory:
    """Creates committed rows for a scenario."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    async def _save(self, row):
        self.db.add(row)
        await self.db.commit()
        return row

    async def customer(self, name: str = "Acme Imports") -> Customer:
        return await self._save(Customer(name=name))

    async def shipment(
        self,
        customer: Optional[Customer] = None,
        steamship_line: Optional[str] = None,
    ) -> Shipment:
        return await self._save(
            Shipment(
                customer_id=customer.id if customer else None,
                steamship_line=steamship_line,
                booking_number=f"BKG{self._next():05d}",
            )
        )

    async def container(self, shipment: Optional[Shipment], **fields) -> Container:
        fields.setdefault("container_number", f"MSCU{self._next():07d}")
        return await self._save(Container(shipment_id=shipment.id if shipment else None, **fields))

    async def order(
        self,
        container: Optional[Container],
        shipment: Optional[Shipment] = None,
        trip: Optional[Trip] = None,
        **fields,
    ) -> Order:
        fields.setdefault("order_number", f"ORD-{self._next():05d}")
        fields.setdefault("container_id", container.id if container else None)
        fields.setdefault("shipment_id", shipment.id if shipment else (container.shipment_id if container else None))
        fields.setdefault("trip_id", trip.id if trip else None)
        return await self._save(Order(**fields))

    async def driver(self, first_name: str = "Dana", last_name: str = "Reyes") -> Driver:
        return await self._save(Driver(first_name=first_name, last_name=last_name))

    async def trip(self, driver: Optional[Driver] = None, **fields) -> Trip:
        fields.setdefault("trip_number", f"TRP-{self._next():05d}")
        return await self._save(Trip(driver_id=driver.id if driver else None, **fields))

    async def stop(self, trip: Trip, detention_minutes: int, sequence: int = 1) -> TripStop:
        return await self._save(TripStop(trip_id=trip.id, sequence=sequence, detention_minutes=detention_minutes))

    async def lane_rate(self, customer: Optional[Customer] = None, **fields) -> LaneRate:
        return await self._save(LaneRate(customer_id=customer.id if customer else None, **fields))

    async def free_time_rule(self, carrier_code: str, **fields) -> CarrierFreeTimeRule:
        return await self._save(CarrierFreeTimeRule(carrier_code=carrier_code, **fields))

    async def holiday(self, on: date, carrier_code: Optional[str] = None) -> HolidayCalendar:
        return await self._save(HolidayCalendar(holiday_date=on, name="Holiday", applies_to_carrier=carrier_code))

    async def chassis_pool(self, pool_code: str, free_days: int, daily_rate: Decimal) -> ChassisPool:
        return await self._save(
            ChassisPool(pool_code=pool_code, name=f"{pool_code} pool", free_days=free_days, daily_rate=daily_rate)
        )

    async def rate_profile(self, waiting_free_hours: Decimal, waiting_rate_per_hour: Decimal) -> DriverRateProfile:
        return await self._save(
            DriverRateProfile(
                name="Port profile",
                waiting_free_hours=waiting_free_hours,
                waiting_rate_per_hour=waiting_rate_per_hour,
            )
        )

    async def pay_rate(
        self,
        driver: Driver,
        pay_type: PayType,
        rate: Decimal,
        profile: Optional[DriverRateProfile] = None,
        effective_date: date = date(2025, 1, 1),
    ) -> DriverPayRate:
        return await self._save(
            DriverPayRate(
                driver_id=driver.id,
                profile_id=profile.id if profile else None,
                pay_type=pay_type.value,
                rate=rate,
                effective_date=effective_date,
            )
        )


@pytest.fixture
def factory(db_session) -> DataFactory:
    return DataFactory(db_session)


@pytest.fixture
def monday() -> datetime:
    """A Monday morning inside the test calendar, 2025-01-06 08:00."""
    return datetime(2025, 1, 6, 8, 0)
