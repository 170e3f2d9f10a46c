"""Exceptions raised by the automation engine."""


class AutomationError(Exception):
    """Base class for automation engine failures."""
    pass


class EntityNotFoundError(AutomationError):
    """The mutated entity does not exist."""

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found")


class InconsistentParentError(AutomationError):
    """A child references a parent row that does not exist. The transaction must roll back."""

    def __init__(self, child_type: str, child_id: str, parent_type: str, parent_id):
        self.child_type = child_type
        self.child_id = child_id
        self.parent_type = parent_type
        self.parent_id = parent_id
        super().__init__(f"{child_type} {child_id} references missing {parent_type} {parent_id}")


class ConcurrencyConflictError(AutomationError):
    """Lock contention persisted after the configured number of retries."""
    pass


class InvalidTransitionError(AutomationError):
    """Illegal status change, e.g. paying a settlement that was never approved."""

    def __init__(self, entity_type: str, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move {entity_type} from {current} to {requested}")
