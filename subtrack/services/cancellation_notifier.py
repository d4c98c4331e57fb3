# subtrack/services/cancellation_notifier.py
import logging
from typing import List, Optional

from sqlmodel import Session, select

from subtrack.constants.cancellation_status import CancellationStatus
from subtrack.models.cancellation import CancellationRequest
from subtrack.models.cancellation_event import CancellationEvent
from subtrack.models.user import User
from subtrack.notifications import CancellationEventType, dispatch_cancellation_event

logger = logging.getLogger(__name__)

REQUIRES_MANUAL_PROGRESS = 90
DONE_PROGRESS = 100

# transitions that also go out by email / in-app notification
FAN_OUT = {
    CancellationStatus.PENDING: CancellationEventType.REQUESTED,
    CancellationStatus.COMPLETED: CancellationEventType.COMPLETED,
    CancellationStatus.REQUIRES_MANUAL: CancellationEventType.REQUIRES_MANUAL,
    CancellationStatus.CANCELLED: CancellationEventType.CANCELLED,
}


def progress_for(request: CancellationRequest) -> int:
    status = request.status
    max_attempts = max(request.max_attempts, 1)

    if status == CancellationStatus.PENDING:
        return 0
    if status == CancellationStatus.PROCESSING:
        return 10 + (70 * (request.attempts - 1)) // max_attempts
    if status == CancellationStatus.FAILED:
        return 10 + (70 * request.attempts) // max_attempts
    if status == CancellationStatus.REQUIRES_MANUAL:
        return REQUIRES_MANUAL_PROGRESS
    return DONE_PROGRESS


class CancellationNotifier:
    """
    Append-only progress log, one event per state transition.

    Events carry a per-request sequence number; clients poll or stream
    them in sequence order. Email and in-app notifications for an event are
    queued and only go out through send_pending, once the transition is
    committed.
    """

    def __init__(self, fan_out: bool = True):
        self.fan_out = fan_out
        self.pending = []

    def emit(self, session: Session, request: CancellationRequest, message: str) -> CancellationEvent:
        last = session.exec(
            select(CancellationEvent)
            .where(CancellationEvent.request_id == request.id)
            .order_by(CancellationEvent.sequence.desc())
        ).first()

        progress = progress_for(request)
        if last is not None:
            progress = max(progress, last.progress)

        event = CancellationEvent(
            request_id=request.id,
            sequence=(last.sequence + 1) if last else 1,
            status=request.status,
            message=message,
            progress=progress,
        )
        session.add(event)
        session.flush()

        logger.info(
            f"Cancellation request {request.id} -> {request.status} "
            f"(event {event.sequence}, {progress}%)"
        )

        if self.fan_out and request.status in FAN_OUT:
            self.pending.append((FAN_OUT[request.status], request.id, request.status, message))

        return event

    def discard(self):
        """Drop queued notifications of a rolled back transaction"""
        self.pending = []

    def send_pending(self, session: Session):
        pending, self.pending = self.pending, []

        for event_type, request_id, status, message in pending:
            request = session.get(CancellationRequest, request_id)
            try:
                self._notify(session, request, event_type, status, message)
                session.commit()
            except Exception:
                # the transition itself is already committed
                logger.exception(f"Notification {event_type.value} failed for cancellation request {request_id}")
                session.rollback()

    def _notify(self, session: Session, request: CancellationRequest, event_type, status: str, message: str):
        user = session.get(User, request.user_id)
        dispatch_cancellation_event(
            event=event_type,
            request=request,
            user=user,
            session=session,
            extra={
                "admin_title": f"Cancellation {status.replace('_', ' ')}",
                "admin_content": f"Request #{request.id}: {message}",
                "message": message,
                "first_name": user.first_name if user else "",
                "request_id": request.id,
                "confirmation_code": request.confirmation_code,
                "manual_instructions": request.manual_instructions,
            },
        )


def list_events(session: Session, request_id: int, after: int = 0) -> List[CancellationEvent]:
    return list(session.exec(
        select(CancellationEvent)
        .where(CancellationEvent.request_id == request_id)
        .where(CancellationEvent.sequence > after)
        .order_by(CancellationEvent.sequence)
    ).all())


def latest_event(session: Session, request_id: int) -> Optional[CancellationEvent]:
    return session.exec(
        select(CancellationEvent)
        .where(CancellationEvent.request_id == request_id)
        .order_by(CancellationEvent.sequence.desc())
    ).first()
