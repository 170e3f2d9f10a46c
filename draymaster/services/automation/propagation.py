"""
State propagation graph.

Derived fields are declared as nodes of a small DAG:

    order ──> container ──> shipment
      └───────────────────────┘

Each node owns a pure recompute function that reads the current children
and rewrites its own fields from scratch; counters are never incremented.
After an Order changes, nodes are visited in topological order and a node is
recomputed when it depends directly on the source or when an upstream node
actually changed. A node only writes when a value differs, so recomputing
twice with unchanged children produces no second write.

Parents are locked top-down (container, then shipment) before anything is
recomputed. A missing parent raises InconsistentParentError and the caller's
transaction must roll back.
"""

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Set

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from draymaster.models.shipment import (
    Container,
    ContainerLifecycle,
    Order,
    OrderStatus,
    Shipment,
    ShipmentStatus,
)
from draymaster.services.automation.errors import EntityNotFoundError, InconsistentParentError
from draymaster.services.event_dispatcher import Event, EventType

logger = logging.getLogger(__name__)

ORDER = "order"
CONTAINER = "container"
SHIPMENT = "shipment"

# INVOICED is reached from COMPLETED or DELIVERED and counts as completed work.
# An order invoiced on delivery therefore completes its container right away.
COMPLETED_ORDER_STATUSES = frozenset({OrderStatus.COMPLETED.value, OrderStatus.INVOICED.value})
IN_FLIGHT_ORDER_STATUSES = frozenset({OrderStatus.DISPATCHED.value, OrderStatus.IN_PROGRESS.value})


@dataclass
class PropagationContext:
    """Rows locked for one propagation pass, plus the events it produced."""
    order: Optional[Order] = None
    container: Optional[Container] = None
    shipment: Optional[Shipment] = None
    events: List[Event] = field(default_factory=list)


Recompute = Callable[[AsyncSession, PropagationContext], Awaitable[bool]]


class PropagationGraph:
    """Generic DAG of derived-state nodes."""

    def __init__(self) -> None:
        self._recompute: Dict[str, Optional[Recompute]] = {}
        self._downstream: Dict[str, Set[str]] = defaultdict(set)
        self._upstream: Dict[str, Set[str]] = defaultdict(set)

    def add_node(self, name: str, recompute: Optional[Recompute] = None) -> None:
        self._recompute[name] = recompute

    def add_edge(self, upstream: str, downstream: str) -> None:
        for name in (upstream, downstream):
            if name not in self._recompute:
                raise KeyError(f"Unknown node {name}")
        self._downstream[upstream].add(downstream)
        self._upstream[downstream].add(upstream)
        try:
            self.topological_order()
        except ValueError:
            self._downstream[upstream].discard(downstream)
            self._upstream[downstream].discard(upstream)
            raise

    def dependents(self, name: str) -> Set[str]:
        return set(self._downstream.get(name, set()))

    def topological_order(self) -> List[str]:
        """Kahn's algorithm. Raises ValueError on a cycle."""
        in_degree = {name: len(self._upstream.get(name, set())) for name in self._recompute}
        queue = deque(sorted(name for name, degree in in_degree.items() if degree == 0))
        ordered = []
        while queue:
            name = queue.popleft()
            ordered.append(name)
            for child in sorted(self._downstream.get(name, set())):
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    queue.append(child)
        if len(ordered) != len(self._recompute):
            raise ValueError("Propagation graph contains a cycle")
        return ordered

    async def recompute(self, name: str, db: AsyncSession, ctx: PropagationContext) -> bool:
        fn = self._recompute.get(name)
        if fn is None:
            return False
        return await fn(db, ctx)

    async def propagate(self, source: str, db: AsyncSession, ctx: PropagationContext) -> List[str]:
        """Recompute everything downstream of `source`. Returns the nodes that changed."""
        changed: Set[str] = {source}
        changed_order: List[str] = []
        for name in self.topological_order():
            if name == source:
                continue
            if not (self._upstream.get(name, set()) & changed):
                continue
            if await self.recompute(name, db, ctx):
                changed.add(name)
                changed_order.append(name)
        return changed_order


def derive_container_lifecycle(statuses: List[str]) -> str:
    total = len(statuses)
    completed = sum(1 for s in statuses if s in COMPLETED_ORDER_STATUSES)
    in_flight = sum(1 for s in statuses if s in IN_FLIGHT_ORDER_STATUSES)

    if total > 0 and completed == total:
        return ContainerLifecycle.COMPLETED.value
    if in_flight > 0:
        return ContainerLifecycle.PICKED_UP.value
    if 0 < completed < total:
        return ContainerLifecycle.DELIVERED.value
    return ContainerLifecycle.BOOKED.value


def derive_shipment_status(
    total_containers: int,
    completed_containers: int,
    completed_orders: int,
    in_flight_orders: int,
) -> str:
    if total_containers > 0 and completed_containers == total_containers:
        return ShipmentStatus.COMPLETED.value
    if in_flight_orders > 0 or completed_orders > 0:
        return ShipmentStatus.IN_PROGRESS.value
    return ShipmentStatus.PENDING.value


async def recompute_container(db: AsyncSession, ctx: PropagationContext) -> bool:
    container = ctx.container
    statuses = (
        await db.execute(
            select(Order.status).where(
                Order.container_id == container.id,
                Order.deleted_at.is_(None),
            )
        )
    ).scalars().all()

    lifecycle = derive_container_lifecycle(list(statuses))
    if lifecycle == container.lifecycle_status:
        return False

    previous = container.lifecycle_status
    container.lifecycle_status = lifecycle
    ctx.events.append(
        Event(
            type=EventType.CONTAINER_LIFECYCLE_CHANGED,
            entity_type="container",
            entity_id=container.id,
            action="UPDATE",
            new_status=lifecycle,
            data={"previous_status": previous},
        )
    )
    logger.debug(
        "container_lifecycle_recomputed",
        extra={"container_id": container.id, "previous": previous, "lifecycle_status": lifecycle},
    )
    return True


async def recompute_shipment(db: AsyncSession, ctx: PropagationContext) -> bool:
    shipment = ctx.shipment
    container_statuses = (
        await db.execute(select(Container.lifecycle_status).where(Container.shipment_id == shipment.id))
    ).scalars().all()
    order_statuses = (
        await db.execute(
            select(Order.status).where(
                Order.deleted_at.is_(None),
                or_(
                    Order.shipment_id == shipment.id,
                    Order.container_id.in_(select(Container.id).where(Container.shipment_id == shipment.id)),
                ),
            )
        )
    ).scalars().all()

    derived = {
        "total_containers": len(container_statuses),
        "completed_containers": sum(
            1 for s in container_statuses if s == ContainerLifecycle.COMPLETED.value
        ),
        "total_orders": len(order_statuses),
        "completed_orders": sum(1 for s in order_statuses if s in COMPLETED_ORDER_STATUSES),
    }
    in_flight = sum(1 for s in order_statuses if s in IN_FLIGHT_ORDER_STATUSES)
    derived["status"] = derive_shipment_status(
        derived["total_containers"],
        derived["completed_containers"],
        derived["completed_orders"],
        in_flight,
    )

    changes = {key: value for key, value in derived.items() if getattr(shipment, key) != value}
    if not changes:
        return False

    previous_status = shipment.status
    for key, value in changes.items():
        setattr(shipment, key, value)

    ctx.events.append(
        Event(
            type=EventType.SHIPMENT_STATUS_CHANGED,
            entity_type="shipment",
            entity_id=shipment.id,
            action="UPDATE",
            new_status=shipment.status,
            data={"previous_status": previous_status, "changed_fields": sorted(changes)},
        )
    )
    return True


def build_order_graph() -> PropagationGraph:
    graph = PropagationGraph()
    graph.add_node(ORDER)
    graph.add_node(CONTAINER, recompute_container)
    graph.add_node(SHIPMENT, recompute_shipment)
    graph.add_edge(ORDER, CONTAINER)
    graph.add_edge(CONTAINER, SHIPMENT)
    # Order counters live on the shipment, so it depends on orders directly
    graph.add_edge(ORDER, SHIPMENT)
    return graph


class StatePropagator:
    """Locks parents of a changed order and runs the graph."""

    def __init__(self, db: AsyncSession, graph: Optional[PropagationGraph] = None):
        self.db = db
        self.graph = graph or build_order_graph()

    async def _lock_container(self, container_id: str) -> Optional[Container]:
        return (
            await self.db.execute(
                select(Container)
                .where(Container.id == container_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()

    async def _lock_shipment(self, shipment_id: str) -> Optional[Shipment]:
        return (
            await self.db.execute(
                select(Shipment)
                .where(Shipment.id == shipment_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()

    async def on_order_changed(self, order: Order) -> PropagationContext:
        if order.container_id is None:
            raise InconsistentParentError("order", order.id, "container", None)

        # Flush first: populate_existing would otherwise discard pending changes
        await self.db.flush()

        container = await self._lock_container(order.container_id)
        if container is None:
            raise InconsistentParentError("order", order.id, "container", order.container_id)

        shipment_id = container.shipment_id or order.shipment_id
        shipment = await self._lock_shipment(shipment_id) if shipment_id else None
        if shipment is None:
            raise InconsistentParentError("container", container.id, "shipment", shipment_id)

        ctx = PropagationContext(order=order, container=container, shipment=shipment)
        changed = await self.graph.propagate(ORDER, self.db, ctx)

        logger.debug(
            "order_change_propagated",
            extra={"order_id": order.id, "changed_nodes": changed},
        )
        return ctx

    async def repair_shipment(self, shipment_id: str) -> PropagationContext:
        """Recompute every container of a shipment, then the shipment itself."""
        await self.db.flush()

        container_ids = (
            await self.db.execute(
                select(Container.id).where(Container.shipment_id == shipment_id).order_by(Container.id)
            )
        ).scalars().all()

        ctx = PropagationContext()
        for container_id in container_ids:
            ctx.container = await self._lock_container(container_id)
            await self.graph.recompute(CONTAINER, self.db, ctx)

        ctx.container = None
        ctx.shipment = await self._lock_shipment(shipment_id)
        if ctx.shipment is None:
            raise EntityNotFoundError("shipment", shipment_id)
        await self.graph.recompute(SHIPMENT, self.db, ctx)
        return ctx
