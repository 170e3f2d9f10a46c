"""
Charge line derivation for dispatched orders.

Re-deriving is a replace, not an append: auto-calculated lines for the order
are deleted first and every line carries dedupe_key "{order_id}:{charge_type}"
under a unique constraint, so an order never holds two lines of one type.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from draymaster.core.config import Settings, get_settings
from draymaster.models.charges import ChargeLine, ChargeType
from draymaster.models.reference import LaneRate
from draymaster.models.shipment import Container, Order, Shipment
from draymaster.utils.money import money, to_decimal, total

logger = logging.getLogger(__name__)

SIZE_RATE_COLUMNS = {
    "20": "rate_20ft",
    "40": "rate_40ft",
    "40HC": "rate_40hc",
    "45": "rate_45ft",
}


def dedupe_key(order_id: str, charge_type: str) -> str:
    return f"{order_id}:{charge_type}"


@dataclass
class RateQuote:
    """Line haul base rate and surcharge amounts resolved for one order."""
    base_rate: Decimal
    hazmat: Decimal
    overweight: Decimal
    reefer: Decimal
    lane_rate_id: Optional[str] = None
    used_default: bool = False


@dataclass
class DerivedCharges:
    order_id: str
    lines: List[ChargeLine] = field(default_factory=list)
    total_charges: Decimal = Decimal("0.00")

    def amounts(self) -> Dict[str, Decimal]:
        return {line.charge_type: money(line.amount) for line in self.lines}


class ChargeCalculator:
    """
    Derives LINE_HAUL, FUEL_SURCHARGE and conditional HAZMAT / OVERWEIGHT /
    REEFER lines for an order.

    Customer-specific lane rates win over the default lane (customer_id NULL).
    With no lane on file the configured default line haul rate is used.
    """

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    async def find_lane_rate(self, customer_id: Optional[str], on: date) -> Optional[LaneRate]:
        customer_filter = LaneRate.customer_id.is_(None)
        if customer_id:
            customer_filter = or_(LaneRate.customer_id == customer_id, LaneRate.customer_id.is_(None))

        result = await self.db.execute(
            select(LaneRate)
            .where(
                LaneRate.is_active.is_(True),
                customer_filter,
                or_(LaneRate.effective_date.is_(None), LaneRate.effective_date <= on),
                or_(LaneRate.expiry_date.is_(None), LaneRate.expiry_date >= on),
            )
            # Customer-specific rows sort before the default lane
            .order_by(LaneRate.customer_id.is_(None), LaneRate.effective_date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def quote(self, customer_id: Optional[str], container: Optional[Container], on: date) -> RateQuote:
        lane = await self.find_lane_rate(customer_id, on)
        size = container.size if container else None

        base = None
        if lane is not None and size in SIZE_RATE_COLUMNS:
            base = getattr(lane, SIZE_RATE_COLUMNS[size])

        used_default = base is None
        if used_default:
            logger.warning(
                "lane_rate_missing",
                extra={
                    "customer_id": customer_id,
                    "container_size": size,
                    "fallback_rate": str(self.settings.default_line_haul_rate),
                },
            )
            base = self.settings.default_line_haul_rate

        def surcharge(lane_value, default):
            return money(lane_value if lane_value is not None else default)

        return RateQuote(
            base_rate=money(base),
            hazmat=surcharge(lane.hazmat_surcharge if lane else None, self.settings.hazmat_surcharge),
            overweight=surcharge(lane.overweight_surcharge if lane else None, self.settings.overweight_surcharge),
            reefer=surcharge(lane.reefer_surcharge if lane else None, self.settings.reefer_surcharge),
            lane_rate_id=lane.id if lane else None,
            used_default=used_default,
        )

    def is_overweight(self, container: Container) -> bool:
        if container.is_overweight:
            return True
        return bool(container.weight_lbs and container.weight_lbs > self.settings.overweight_threshold_lbs)

    def _line(self, order: Order, charge_type: ChargeType, description: str, amount: Decimal,
              quantity: Decimal = Decimal("1"), unit_rate: Optional[Decimal] = None) -> ChargeLine:
        return ChargeLine(
            order_id=order.id,
            container_id=order.container_id,
            charge_type=charge_type.value,
            description=description,
            quantity=quantity,
            unit_rate=money(unit_rate if unit_rate is not None else amount),
            amount=money(amount),
            billable_to="CUSTOMER",
            auto_calculated=True,
            dedupe_key=dedupe_key(order.id, charge_type.value),
        )

    async def derive_order_charges(self, order: Order, now: Optional[datetime] = None) -> DerivedCharges:
        now = now or datetime.utcnow()

        container = None
        if order.container_id:
            container = await self.db.get(Container, order.container_id)

        customer_id = None
        if order.shipment_id:
            customer_id = (
                await self.db.execute(select(Shipment.customer_id).where(Shipment.id == order.shipment_id))
            ).scalar_one_or_none()

        quote = await self.quote(customer_id, container, now.date())

        await self.db.execute(
            delete(ChargeLine).where(
                ChargeLine.order_id == order.id,
                ChargeLine.auto_calculated.is_(True),
            )
        )

        fuel_percent = to_decimal(self.settings.fuel_surcharge_percent)
        size_label = f"{container.size}' container" if container else "container"
        lines = [
            self._line(order, ChargeType.LINE_HAUL, f"Line haul - {size_label}", quote.base_rate),
            self._line(
                order,
                ChargeType.FUEL_SURCHARGE,
                f"Fuel surcharge ({(fuel_percent * 100).normalize():f}%)",
                quote.base_rate * fuel_percent,
            ),
        ]

        if container is not None:
            if container.is_hazmat:
                lines.append(self._line(order, ChargeType.HAZMAT, "Hazmat surcharge", quote.hazmat))
            if self.is_overweight(container):
                lines.append(self._line(order, ChargeType.OVERWEIGHT, "Overweight surcharge", quote.overweight))
            if container.is_reefer:
                lines.append(self._line(order, ChargeType.REEFER, "Reefer surcharge", quote.reefer))

        # Manually entered lines take precedence over derived ones of the same type
        manual_types = set(
            (
                await self.db.execute(
                    select(ChargeLine.charge_type).where(
                        ChargeLine.order_id == order.id,
                        ChargeLine.auto_calculated.is_(False),
                    )
                )
            ).scalars().all()
        )
        lines = [line for line in lines if line.charge_type not in manual_types]

        self.db.add_all(lines)
        await self.db.flush()

        amounts = (
            await self.db.execute(select(ChargeLine.amount).where(ChargeLine.order_id == order.id))
        ).scalars().all()
        order.total_charges = total(amounts)

        logger.info(
            "order_charges_derived",
            extra={
                "order_id": order.id,
                "lines": len(lines),
                "total_charges": str(order.total_charges),
                "lane_rate_id": quote.lane_rate_id,
            },
        )
        return DerivedCharges(order_id=order.id, lines=lines, total_charges=order.total_charges)
