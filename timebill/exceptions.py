"""Exceptions raised by the recurring job scheduler."""

from typing import Optional


class SchedulerError(Exception):
    """Base exception for scheduler errors."""
    pass


class ValidationError(SchedulerError):
    """Recurring job data is malformed; nothing was persisted."""
    pass


class NotFoundError(SchedulerError):
    """Referenced job or occurrence does not exist."""

    def __init__(self, entity: str, entity_id: int):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class StateConflictError(SchedulerError):
    """Lifecycle transition attempted from a state that does not allow it."""

    def __init__(self, occurrence_id: int, current_status: str, attempted: str):
        self.occurrence_id = occurrence_id
        self.current_status = current_status
        self.attempted = attempted
        super().__init__(
            f"Cannot {attempted} occurrence {occurrence_id}: status is {current_status}"
        )


class PersistenceError(SchedulerError):
    """Underlying store failed or is unavailable."""
    pass


class CollaboratorError(SchedulerError):
    """An external collaborator (session or invoice creation) failed."""

    def __init__(self, message: str, occurrence_id: Optional[int] = None):
        self.occurrence_id = occurrence_id
        super().__init__(message)


class SessionCreationError(CollaboratorError):
    """Work session could not be created; the occurrence was not changed."""
    pass


class InvoiceCreationError(CollaboratorError):
    """Invoice could not be created; the occurrence stays completed without an invoice."""
    pass
