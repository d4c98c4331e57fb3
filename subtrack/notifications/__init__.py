from .events import CancellationEventType
from .dispatcher import dispatch_cancellation_event

__all__ = [
    "CancellationEventType",
    "dispatch_cancellation_event",
]
