"""
Demurrage Accrual Service.

Tracks free time for containers that have left the terminal and prices the
overage once the container comes back.

Key terms:
- Gate out: container leaves the terminal, free time starts
- Gate in: container returns, the accrual is closed and priced
- Free time expiry: gate out plus the carrier's free days, skipping
  weekends and holidays when the carrier's rule excludes them
- Overage tiers: days 1-4, 5-7 and 8+ past expiry, each with its own rate

While a container is out, demurrage_status escalates OK -> WARNING (80% of
free time used) -> CRITICAL (90%) -> OVERDUE (100%) and never steps back.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from draymaster.core.config import Settings, get_settings
from draymaster.models.charges import AccrualStatus, ChargeType, ContainerCharge
from draymaster.models.reference import CarrierFreeTimeRule, HolidayCalendar
from draymaster.models.shipment import Container, DemurrageStatus, Shipment
from draymaster.utils.money import ZERO, money, to_decimal

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400
NOT_STARTED = "NOT_STARTED"

STATUS_RANK = {
    DemurrageStatus.OK.value: 0,
    DemurrageStatus.WARNING.value: 1,
    DemurrageStatus.CRITICAL.value: 2,
    DemurrageStatus.OVERDUE.value: 3,
}


@dataclass
class FreeTimeRules:
    """Free time rules for a steamship line."""
    carrier_code: Optional[str]
    free_days: int
    rate_day1_4: Decimal
    rate_day5_7: Decimal
    rate_day8_plus: Decimal
    exclude_weekends: bool = False
    exclude_holidays: bool = False
    holidays: FrozenSet[date] = frozenset()
    is_default: bool = False

    @classmethod
    def default(cls, settings: Settings, carrier_code: Optional[str] = None) -> "FreeTimeRules":
        rate = to_decimal(settings.default_demurrage_rate)
        return cls(
            carrier_code=carrier_code,
            free_days=settings.default_free_days,
            rate_day1_4=rate,
            rate_day5_7=rate,
            rate_day8_plus=rate,
            is_default=True,
        )

    @property
    def has_exclusions(self) -> bool:
        return self.exclude_weekends or (self.exclude_holidays and bool(self.holidays))


@dataclass
class DemurrageCalculation:
    """Result of a demurrage evaluation at a point in time."""
    gate_out_at: Optional[datetime] = None
    free_time_expires_at: Optional[datetime] = None
    gate_in_at: Optional[datetime] = None
    as_of: Optional[datetime] = None

    hours_elapsed: float = 0.0
    hours_remaining: float = 0.0
    percent_used: float = 0.0
    status: str = NOT_STARTED

    days_used: int = 0
    days_over: int = 0
    charge: Decimal = ZERO
    breakdown: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gate_out_at": self.gate_out_at.isoformat() if self.gate_out_at else None,
            "free_time_expires_at": self.free_time_expires_at.isoformat() if self.free_time_expires_at else None,
            "gate_in_at": self.gate_in_at.isoformat() if self.gate_in_at else None,
            "hours_elapsed": round(self.hours_elapsed, 2),
            "hours_remaining": round(self.hours_remaining, 2),
            "percent_used": round(self.percent_used, 2),
            "status": self.status,
            "days_used": self.days_used,
            "days_over": self.days_over,
            "charge": str(self.charge),
            "breakdown": self.breakdown,
        }


class DemurrageCalculator:
    """
    Pure free time arithmetic. No database access.

    When a rule excludes weekends or holidays, those calendar days neither
    consume free time nor accrue overage: the free window is extended past
    them and elapsed time only counts seconds on chargeable days.
    """

    def __init__(self, warning_percent: int = 80, critical_percent: int = 90):
        self.warning_percent = warning_percent
        self.critical_percent = critical_percent

    def is_chargeable_day(self, day: date, rules: FreeTimeRules) -> bool:
        if rules.exclude_weekends and day.weekday() >= 5:
            return False
        if rules.exclude_holidays and day in rules.holidays:
            return False
        return True

    def counted_seconds(self, start: datetime, end: datetime, rules: FreeTimeRules) -> float:
        """Seconds between start and end that fall on chargeable days."""
        if end <= start:
            return 0.0
        if not rules.has_exclusions:
            return (end - start).total_seconds()

        counted = 0.0
        cursor = start
        while cursor < end:
            next_midnight = datetime.combine(cursor.date() + timedelta(days=1), time.min)
            segment_end = min(next_midnight, end)
            if self.is_chargeable_day(cursor.date(), rules):
                counted += (segment_end - cursor).total_seconds()
            cursor = segment_end
        return counted

    def free_time_expires_at(self, gate_out_at: datetime, rules: FreeTimeRules) -> datetime:
        if not rules.has_exclusions:
            return gate_out_at + timedelta(days=rules.free_days)

        remaining = float(rules.free_days * SECONDS_PER_DAY)
        cursor = gate_out_at
        while remaining > 0:
            next_midnight = datetime.combine(cursor.date() + timedelta(days=1), time.min)
            if self.is_chargeable_day(cursor.date(), rules):
                available = (next_midnight - cursor).total_seconds()
                if available >= remaining:
                    return cursor + timedelta(seconds=remaining)
                remaining -= available
            cursor = next_midnight
        return cursor

    def calculate_tiered_charges(
        self,
        days: int,
        rules: FreeTimeRules,
    ) -> Tuple[Decimal, List[Dict[str, Any]]]:
        """Price whole overage days using the 1-4 / 5-7 / 8+ tier structure."""
        if days <= 0:
            return ZERO, []

        tiers = [
            (1, "Days 1-4", min(days, 4), to_decimal(rules.rate_day1_4)),
            (2, "Days 5-7", min(max(days - 4, 0), 3), to_decimal(rules.rate_day5_7)),
            (3, "Days 8+", max(days - 7, 0), to_decimal(rules.rate_day8_plus)),
        ]

        total = ZERO
        breakdown = []
        for tier, label, tier_days, rate in tiers:
            if tier_days <= 0:
                continue
            amount = money(rate * tier_days)
            total += amount
            breakdown.append({
                "tier": tier,
                "days": tier_days,
                "rate": str(money(rate)),
                "amount": str(amount),
                "description": f"{label}: {tier_days} days @ ${money(rate)}/day",
            })

        return money(total), breakdown

    def status_for_percent(self, percent_used: float) -> str:
        if percent_used >= 100:
            return DemurrageStatus.OVERDUE.value
        if percent_used >= self.critical_percent:
            return DemurrageStatus.CRITICAL.value
        if percent_used >= self.warning_percent:
            return DemurrageStatus.WARNING.value
        return DemurrageStatus.OK.value

    def calculate(
        self,
        gate_out_at: Optional[datetime],
        rules: FreeTimeRules,
        as_of: datetime,
        gate_in_at: Optional[datetime] = None,
    ) -> DemurrageCalculation:
        calc = DemurrageCalculation(gate_out_at=gate_out_at, gate_in_at=gate_in_at, as_of=as_of)
        if gate_out_at is None:
            return calc

        expires_at = self.free_time_expires_at(gate_out_at, rules)
        calc.free_time_expires_at = expires_at

        end = gate_in_at or as_of
        window = float(rules.free_days * SECONDS_PER_DAY)
        elapsed = self.counted_seconds(gate_out_at, end, rules)

        calc.hours_elapsed = elapsed / 3600
        calc.hours_remaining = max(0.0, window - elapsed) / 3600
        calc.percent_used = (elapsed / window * 100) if window > 0 else 100.0
        calc.days_used = math.floor(elapsed / SECONDS_PER_DAY)
        calc.days_over = math.floor(self.counted_seconds(expires_at, end, rules) / SECONDS_PER_DAY)
        calc.charge, calc.breakdown = self.calculate_tiered_charges(calc.days_over, rules)

        if gate_in_at is not None:
            calc.status = DemurrageStatus.CLOSED.value
        else:
            calc.status = self.status_for_percent(calc.percent_used)

        return calc


def escalate(current: Optional[str], computed: str) -> str:
    """Return whichever open status is further along; status never regresses while out."""
    if current not in STATUS_RANK:
        return computed
    return computed if STATUS_RANK[computed] >= STATUS_RANK[current] else current


class DemurrageService:
    """
    Maintains container demurrage fields and the accrual record.

    Usage:
        service = DemurrageService(db)
        await service.open_accrual(container, now)      # on gate out
        await service.reevaluate(container, now)        # periodic pass
        await service.close_accrual(container)          # on gate in

    The service never commits.
    """

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.calculator = DemurrageCalculator(
            warning_percent=self.settings.demurrage_warning_percent,
            critical_percent=self.settings.demurrage_critical_percent,
        )
        self._rules_cache: Dict[Optional[str], FreeTimeRules] = {}

    async def get_free_time_rules(self, carrier_code: Optional[str]) -> FreeTimeRules:
        if carrier_code in self._rules_cache:
            return self._rules_cache[carrier_code]

        rule = None
        if carrier_code:
            rule = (
                await self.db.execute(
                    select(CarrierFreeTimeRule).where(
                        CarrierFreeTimeRule.carrier_code == carrier_code,
                        CarrierFreeTimeRule.is_active.is_(True),
                    )
                )
            ).scalar_one_or_none()

        if rule is None:
            logger.warning(
                "free_time_rule_missing",
                extra={
                    "carrier_code": carrier_code,
                    "fallback_free_days": self.settings.default_free_days,
                    "fallback_rate": str(self.settings.default_demurrage_rate),
                },
            )
            rules = FreeTimeRules.default(self.settings, carrier_code)
        else:
            holidays: FrozenSet[date] = frozenset()
            if rule.exclude_holidays:
                result = await self.db.execute(
                    select(HolidayCalendar.holiday_date).where(
                        or_(
                            HolidayCalendar.applies_to_carrier.is_(None),
                            HolidayCalendar.applies_to_carrier == carrier_code,
                        )
                    )
                )
                holidays = frozenset(result.scalars().all())
            rules = FreeTimeRules(
                carrier_code=carrier_code,
                free_days=rule.import_free_days,
                rate_day1_4=to_decimal(rule.demurrage_rate_day1_4),
                rate_day5_7=to_decimal(rule.demurrage_rate_day5_7),
                rate_day8_plus=to_decimal(rule.demurrage_rate_day8_plus),
                exclude_weekends=rule.exclude_weekends,
                exclude_holidays=rule.exclude_holidays,
                holidays=holidays,
            )

        self._rules_cache[carrier_code] = rules
        return rules

    async def rules_for_container(self, container: Container) -> FreeTimeRules:
        carrier_code = None
        if container.shipment_id:
            carrier_code = (
                await self.db.execute(
                    select(Shipment.steamship_line).where(Shipment.id == container.shipment_id)
                )
            ).scalar_one_or_none()
        return await self.get_free_time_rules(carrier_code)

    async def _get_accrual(self, container_id: str) -> Optional[ContainerCharge]:
        return (
            await self.db.execute(
                select(ContainerCharge)
                .where(
                    ContainerCharge.container_id == container_id,
                    ContainerCharge.charge_type == ChargeType.DEMURRAGE.value,
                )
                .with_for_update()
            )
        ).scalar_one_or_none()

    async def _upsert_accrual(
        self,
        container: Container,
        rules: FreeTimeRules,
        calc: DemurrageCalculation,
    ) -> ContainerCharge:
        accrual = await self._get_accrual(container.id)
        if accrual is None:
            accrual = ContainerCharge(
                container_id=container.id,
                shipment_id=container.shipment_id,
                charge_type=ChargeType.DEMURRAGE.value,
                status=AccrualStatus.ACCRUING.value,
            )
            self.db.add(accrual)

        accrual.free_time_start = calc.gate_out_at
        accrual.free_time_end = calc.free_time_expires_at
        accrual.free_days_allowed = rules.free_days
        accrual.daily_rate = money(rules.rate_day1_4)
        accrual.days_used = calc.days_used
        accrual.days_over = calc.days_over
        if accrual.total_charge is None:
            accrual.total_charge = ZERO
        return accrual

    async def open_accrual(self, container: Container, now: Optional[datetime] = None) -> DemurrageCalculation:
        """Start free time on gate out."""
        now = now or datetime.utcnow()
        rules = await self.rules_for_container(container)
        calc = self.calculator.calculate(container.gate_out_at, rules, as_of=max(now, container.gate_out_at))

        container.free_time_expires_at = calc.free_time_expires_at
        container.demurrage_status = calc.status
        container.estimated_charge = calc.charge

        await self._upsert_accrual(container, rules, calc)

        logger.info(
            "demurrage_accrual_opened",
            extra={
                "container_id": container.id,
                "carrier_code": rules.carrier_code,
                "free_time_expires_at": calc.free_time_expires_at.isoformat(),
            },
        )
        return calc

    async def close_accrual(self, container: Container) -> Optional[DemurrageCalculation]:
        """Price the accrual on gate in."""
        if container.gate_out_at is None:
            logger.warning(
                "demurrage_close_without_gate_out",
                extra={"container_id": container.id},
            )
            return None

        rules = await self.rules_for_container(container)
        calc = self.calculator.calculate(
            container.gate_out_at,
            rules,
            as_of=container.gate_in_at,
            gate_in_at=container.gate_in_at,
        )

        accrual = await self._upsert_accrual(container, rules, calc)
        accrual.actual_return = container.gate_in_at
        accrual.total_charge = calc.charge
        if container.gate_in_at <= calc.free_time_expires_at:
            accrual.status = AccrualStatus.CLOSED.value
        else:
            accrual.status = AccrualStatus.CALCULATED.value

        container.free_time_expires_at = calc.free_time_expires_at
        container.demurrage_status = DemurrageStatus.CLOSED.value
        container.estimated_charge = calc.charge

        logger.info(
            "demurrage_accrual_closed",
            extra={
                "container_id": container.id,
                "days_over": calc.days_over,
                "total_charge": str(calc.charge),
                "accrual_status": accrual.status,
            },
        )
        return calc

    async def reevaluate(self, container: Container, now: datetime) -> Optional[DemurrageCalculation]:
        """
        Refresh status and estimate for a container that is still out.

        Returns the calculation when the container row was written, None when
        nothing changed or the container is not accruing.
        """
        if container.gate_out_at is None or container.gate_in_at is not None:
            return None

        rules = await self.rules_for_container(container)
        calc = self.calculator.calculate(container.gate_out_at, rules, as_of=now)

        new_status = escalate(container.demurrage_status, calc.status)
        new_charge = max(calc.charge, money(container.estimated_charge))

        if (
            new_status == container.demurrage_status
            and new_charge == money(container.estimated_charge)
            and container.free_time_expires_at == calc.free_time_expires_at
        ):
            return None

        container.demurrage_status = new_status
        container.estimated_charge = new_charge
        container.free_time_expires_at = calc.free_time_expires_at
        calc.status = new_status
        calc.charge = new_charge

        # The running estimate stays on the container until gate in prices the accrual
        accrual = await self._get_accrual(container.id)
        if accrual is not None and accrual.status == AccrualStatus.ACCRUING.value:
            accrual.days_used = calc.days_used
            accrual.days_over = calc.days_over

        return calc

    async def free_time_status(self, container: Container, now: Optional[datetime] = None) -> DemurrageCalculation:
        """Read-only view of free time for a container."""
        now = now or datetime.utcnow()
        if container.gate_out_at is None:
            return DemurrageCalculation(as_of=now)
        rules = await self.rules_for_container(container)
        return self.calculator.calculate(
            container.gate_out_at,
            rules,
            as_of=container.gate_in_at or now,
            gate_in_at=container.gate_in_at,
        )

    async def list_open_container_ids(self) -> List[str]:
        result = await self.db.execute(
            select(Container.id)
            .where(Container.gate_out_at.is_not(None), Container.gate_in_at.is_(None))
            .order_by(Container.gate_out_at)
        )
        return list(result.scalars().all())
