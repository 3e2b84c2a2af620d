"""
Exceptions raised by the workflow core.

Every failure leaves the entity exactly as it was before the call. Callers
own retry policy: nothing in the core retries or swallows these.
"""


class WorkflowError(Exception):
    """Base class for all recoverable workflow failures."""


class InvalidTransition(WorkflowError):
    """The requested status change is not an edge of the transition table."""

    def __init__(self, current, target) -> None:
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot move purchase order from {getattr(current, 'value', current)!r} "
            f"to {getattr(target, 'value', target)!r}"
        )


class SendError(WorkflowError):
    """The supplier notification failed; the order was not changed."""


class ValidationError(WorkflowError):
    """An amount or required field is out of range; nothing was changed."""

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class ConcurrentModification(WorkflowError):
    """The entity changed between read and write. Re-read and retry."""

    def __init__(self, entity: str, entity_id: str, expected_version: int) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"{entity} {entity_id} was modified concurrently "
            f"(expected version {expected_version})"
        )


class NotFound(WorkflowError):
    """No entity with the given id exists."""
