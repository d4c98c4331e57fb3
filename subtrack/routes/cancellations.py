import asyncio
import time
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from sqlmodel import Session

from subtrack.config import settings
from subtrack.constants.cancellation_status import FINAL_STATUSES, CancellationStatus
from subtrack.database import engine, get_session
from subtrack.models.user import User
from subtrack.routes.admin_cancellation import clear_cancellation_stats_cache
from subtrack.schemas.cancellation_schemas import (
    CancellationAnalytics,
    CancellationHistoryItem,
    CancellationOptions,
    CancellationRequestCreate,
    CancellationResult,
    ManualConfirmationRequest,
    ProgressEvent,
    ProviderInfo,
)
from subtrack.services import cancellation_store as store
from subtrack.services.automation_registry import AutomationRegistry, get_automation_registry
from subtrack.services.cancellation_notifier import list_events
from subtrack.services.cancellation_orchestrator import (
    CancellationOrchestrator,
    CancellationValidationError,
)
from subtrack.utils.token import get_current_user

router = APIRouter()

# the stream closes once one of these is reached
STREAM_END_STATUSES = FINAL_STATUSES | {CancellationStatus.REQUIRES_MANUAL}


def get_orchestrator(
    session: Session = Depends(get_session),
    registry: AutomationRegistry = Depends(get_automation_registry),
) -> CancellationOrchestrator:
    return CancellationOrchestrator(session, registry=registry)


def _http_error(error: CancellationValidationError) -> HTTPException:
    return HTTPException(error.status_code, error.message)


@router.post("/", response_model=CancellationResult, status_code=status.HTTP_201_CREATED)
def request_cancellation(
    request: CancellationRequestCreate,
    orchestrator: CancellationOrchestrator = Depends(get_orchestrator),
    current_user: User = Depends(get_current_user),
):
    """Create a cancellation request and run its first attempt"""
    try:
        cancellation = orchestrator.create_request(
            user_id=current_user.id,
            subscription_id=request.subscription_id,
            priority=request.priority,
            notes=request.notes,
        )
    except CancellationValidationError as e:
        raise _http_error(e)

    result = orchestrator.dispatch(cancellation.id)
    clear_cancellation_stats_cache()
    return result


@router.get("/history", response_model=List[CancellationHistoryItem])
def cancellation_history(
    limit: int = Query(10, ge=1, le=100),
    orchestrator: CancellationOrchestrator = Depends(get_orchestrator),
    current_user: User = Depends(get_current_user),
):
    return orchestrator.list_history(current_user.id, limit=limit)


@router.get("/analytics", response_model=CancellationAnalytics)
def cancellation_analytics(
    orchestrator: CancellationOrchestrator = Depends(get_orchestrator),
    current_user: User = Depends(get_current_user),
):
    return orchestrator.get_analytics(current_user.id)


@router.get("/subscriptions/{subscription_id}/methods", response_model=CancellationOptions)
def cancellation_options(
    subscription_id: int,
    orchestrator: CancellationOrchestrator = Depends(get_orchestrator),
    current_user: User = Depends(get_current_user),
):
    """Available methods, recommended method and provider details for a subscription"""
    try:
        return orchestrator.get_options(current_user.id, subscription_id)
    except CancellationValidationError as e:
        raise _http_error(e)


@router.get("/providers/{provider_name}", response_model=ProviderInfo)
def provider_info(
    provider_name: str,
    orchestrator: CancellationOrchestrator = Depends(get_orchestrator),
    current_user: User = Depends(get_current_user),
):
    try:
        return orchestrator.describe_provider(provider_name)
    except CancellationValidationError as e:
        raise _http_error(e)


@router.get("/{request_id}", response_model=CancellationResult)
def get_cancellation_status(
    request_id: int,
    orchestrator: CancellationOrchestrator = Depends(get_orchestrator),
    current_user: User = Depends(get_current_user),
):
    try:
        return orchestrator.get_status(current_user.id, request_id)
    except CancellationValidationError as e:
        raise _http_error(e)


@router.post("/{request_id}/retry", response_model=CancellationResult)
def retry_cancellation(
    request_id: int,
    orchestrator: CancellationOrchestrator = Depends(get_orchestrator),
    current_user: User = Depends(get_current_user),
):
    try:
        result = orchestrator.retry(current_user.id, request_id)
    except CancellationValidationError as e:
        raise _http_error(e)

    clear_cancellation_stats_cache()
    return result


@router.post("/{request_id}/confirm", response_model=CancellationResult)
def confirm_manual_cancellation(
    request_id: int,
    confirmation: ManualConfirmationRequest,
    orchestrator: CancellationOrchestrator = Depends(get_orchestrator),
    current_user: User = Depends(get_current_user),
):
    """User reports the outcome of a manual cancellation"""
    try:
        result = orchestrator.confirm_manual(
            current_user.id,
            request_id,
            was_successful=confirmation.was_successful,
            confirmation_code=confirmation.confirmation_code,
            effective_date=confirmation.effective_date,
            refund_amount=confirmation.refund_amount,
            notes=confirmation.notes,
        )
    except CancellationValidationError as e:
        raise _http_error(e)

    clear_cancellation_stats_cache()
    return result


@router.post("/{request_id}/abandon", response_model=CancellationResult)
def abandon_cancellation(
    request_id: int,
    orchestrator: CancellationOrchestrator = Depends(get_orchestrator),
    current_user: User = Depends(get_current_user),
):
    try:
        result = orchestrator.abandon(current_user.id, request_id)
    except CancellationValidationError as e:
        raise _http_error(e)

    clear_cancellation_stats_cache()
    return result


@router.get("/{request_id}/events", response_model=List[ProgressEvent])
def get_cancellation_events(
    request_id: int,
    after: int = Query(0, ge=0),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Progress events newer than `after`, in order"""
    if not store.get_request(session, request_id, current_user.id):
        raise HTTPException(404, "Cancellation request not found")

    return [ProgressEvent.model_validate(event.model_dump()) for event in list_events(session, request_id, after)]


async def _progress_stream(request_id: int, after: int):
    last_sequence = after
    deadline = time.monotonic() + settings.STREAM_MAX_SECONDS

    while True:
        with Session(engine) as session:
            events = list_events(session, request_id, last_sequence)

        for event in events:
            last_sequence = event.sequence
            payload = ProgressEvent.model_validate(event.model_dump()).model_dump_json()
            yield f"id: {event.sequence}\nevent: cancellation.progress\ndata: {payload}\n\n"

            if event.status in STREAM_END_STATUSES:
                return

        if time.monotonic() >= deadline:
            return

        await asyncio.sleep(settings.STREAM_POLL_SECONDS)


@router.get("/{request_id}/stream")
def stream_cancellation_progress(
    request_id: int,
    after: int = Query(0, ge=0),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Server-sent events; ends at a final state or after STREAM_MAX_SECONDS"""
    if not store.get_request(session, request_id, current_user.id):
        raise HTTPException(404, "Cancellation request not found")

    return StreamingResponse(
        _progress_stream(request_id, after),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
