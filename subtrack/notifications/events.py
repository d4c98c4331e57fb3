from enum import Enum


class CancellationEventType(str, Enum):
    REQUESTED = "cancellation_requested"
    COMPLETED = "cancellation_completed"
    REQUIRES_MANUAL = "cancellation_requires_manual"
    CANCELLED = "cancellation_cancelled"
