"""SQLAlchemy models for the DrayMaster automation engine."""

from draymaster.models.billing import Invoice, InvoiceLineItem  # noqa: F401
from draymaster.models.charges import (  # noqa: F401
    ChargeLine,
    ChassisPool,
    ChassisUsage,
    ContainerCharge,
)
from draymaster.models.customer import Customer  # noqa: F401
from draymaster.models.outbox import OutboxEvent  # noqa: F401
from draymaster.models.reference import (  # noqa: F401
    CarrierFreeTimeRule,
    DriverPayRate,
    DriverRateProfile,
    HolidayCalendar,
    LaneRate,
)
from draymaster.models.sequence import DocumentSequence  # noqa: F401
from draymaster.models.settlement import DriverSettlement, SettlementLineItem  # noqa: F401
from draymaster.models.shipment import Container, Order, Shipment  # noqa: F401
from draymaster.models.trip import Driver, Trip, TripStop  # noqa: F401
