"""
Chassis per diem tracking.

A usage row is opened for every container a trip moves when the trip is
dispatched with a chassis, and closed when the trip completes. Per diem is
charged for whole days out beyond the pool's free days.
"""

import logging
import math
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from draymaster.core.config import Settings, get_settings
from draymaster.models.charges import ChassisPool, ChassisUsage, ChassisUsageStatus
from draymaster.models.shipment import Order
from draymaster.models.trip import Trip
from draymaster.utils.money import money, to_decimal

logger = logging.getLogger(__name__)


class ChassisTracker:
    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    async def _pool_terms(self, pool_code: Optional[str]) -> Tuple[str, int, Decimal]:
        code = pool_code or self.settings.default_chassis_pool
        pool = (
            await self.db.execute(
                select(ChassisPool).where(ChassisPool.pool_code == code, ChassisPool.is_active.is_(True))
            )
        ).scalar_one_or_none()
        if pool is None:
            logger.warning(
                "chassis_pool_missing",
                extra={"pool_code": code, "fallback_free_days": self.settings.default_chassis_free_days},
            )
            return code, self.settings.default_chassis_free_days, self.settings.default_chassis_daily_rate
        return pool.pool_code, pool.free_days, to_decimal(pool.daily_rate)

    async def _trip_container_ids(self, trip_id: str) -> List[str]:
        result = await self.db.execute(
            select(Order.container_id)
            .where(
                Order.trip_id == trip_id,
                Order.container_id.is_not(None),
                Order.deleted_at.is_(None),
            )
            .distinct()
        )
        return sorted(result.scalars().all())

    async def check_out_for_trip(self, trip: Trip, now: Optional[datetime] = None) -> List[ChassisUsage]:
        """Open usage rows for the trip's containers; already-open usages are left alone."""
        if not trip.chassis_number:
            return []

        now = now or datetime.utcnow()
        pickup = trip.actual_start_time or now
        pool_code, free_days, daily_rate = await self._pool_terms(trip.chassis_pool)

        opened = []
        for container_id in await self._trip_container_ids(trip.id):
            existing = (
                await self.db.execute(
                    select(ChassisUsage.id).where(
                        ChassisUsage.chassis_number == trip.chassis_number,
                        ChassisUsage.container_id == container_id,
                        ChassisUsage.status == ChassisUsageStatus.OUT.value,
                    )
                )
            ).first()
            if existing:
                continue

            usage = ChassisUsage(
                chassis_number=trip.chassis_number,
                pool_code=pool_code,
                container_id=container_id,
                trip_id=trip.id,
                pickup_date=pickup,
                free_days=free_days,
                daily_rate=money(daily_rate),
                status=ChassisUsageStatus.OUT.value,
            )
            self.db.add(usage)
            opened.append(usage)

        if opened:
            await self.db.flush()
            logger.info(
                "chassis_checked_out",
                extra={"trip_id": trip.id, "chassis_number": trip.chassis_number, "usages": len(opened)},
            )
        return opened

    async def return_for_trip(self, trip: Trip, now: Optional[datetime] = None) -> List[ChassisUsage]:
        if not trip.chassis_number:
            return []

        return_date = trip.actual_end_time or now or datetime.utcnow()
        container_ids = await self._trip_container_ids(trip.id)
        if not container_ids:
            return []

        result = await self.db.execute(
            select(ChassisUsage)
            .where(
                ChassisUsage.chassis_number == trip.chassis_number,
                ChassisUsage.container_id.in_(container_ids),
                ChassisUsage.status == ChassisUsageStatus.OUT.value,
            )
            .with_for_update()
        )
        usages = list(result.scalars().all())

        for usage in usages:
            days_out = max(0, math.floor((return_date - usage.pickup_date).total_seconds() / 86400))
            billable_days = max(0, days_out - usage.free_days)
            usage.return_date = return_date
            usage.days_out = days_out
            usage.billable_days = billable_days
            usage.per_diem_amount = money(to_decimal(usage.daily_rate) * billable_days)
            usage.status = ChassisUsageStatus.RETURNED.value

        if usages:
            logger.info(
                "chassis_returned",
                extra={"trip_id": trip.id, "chassis_number": trip.chassis_number, "usages": len(usages)},
            )
        return usages
