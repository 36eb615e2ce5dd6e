from .recurring import (
    RecurringJobCreate,
    RecurringJobUpdate,
    RecurringJobResponse,
    OccurrenceResponse,
    CompleteOccurrenceRequest,
    RefreshRequest,
    RefreshResponse,
    RescanResponse,
    ProcessDueResponse,
)

__all__ = [
    "RecurringJobCreate",
    "RecurringJobUpdate",
    "RecurringJobResponse",
    "OccurrenceResponse",
    "CompleteOccurrenceRequest",
    "RefreshRequest",
    "RefreshResponse",
    "RescanResponse",
    "ProcessDueResponse",
]
