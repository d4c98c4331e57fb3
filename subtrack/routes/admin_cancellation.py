from fastapi import APIRouter, Depends, Query
from sqlmodel import Session, select
from typing import Optional
from functools import lru_cache
import time

from subtrack.database import engine, get_session
from subtrack.models.cancellation import CancellationRequest
from subtrack.models.user import User
from subtrack.schemas.cancellation_schemas import CancellationStatsResponse
from subtrack.services.cancellation_store import get_cancellation_stats
from subtrack.utils.pagination import paginate
from subtrack.utils.token import get_current_admin

router = APIRouter()
CACHE_TTL = 60 * 60  # 60 minutes

def _ttl_bucket() -> int:
    """
    Changes every 60 minutes → auto cache expiry
    """
    return int(time.time() // CACHE_TTL)


@lru_cache(maxsize=64)
def _cached_cancellation_stats(bucket: int):
    with Session(engine) as session:
        return get_cancellation_stats(session)


def clear_cancellation_stats_cache():
    _cached_cancellation_stats.cache_clear()


def _serialize(c: CancellationRequest) -> dict:
    return {
        "request_id": c.id,
        "user_id": c.user_id,
        "subscription_id": c.subscription_id,
        "provider_id": c.provider_id,
        "status": c.status,
        "method": c.method,
        "priority": c.priority,
        "attempts": c.attempts,
        "max_attempts": c.max_attempts,
        "next_retry_at": c.next_retry_at,
        "error_code": c.error_code,
        "created_at": c.created_at,
        "completed_at": c.completed_at,
    }


@router.get("/")
def list_cancellation_requests(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    method: Optional[str] = None,
    session: Session = Depends(get_session),
    admin: User = Depends(get_current_admin),
):
    query = select(CancellationRequest)

    if status:
        query = query.where(CancellationRequest.status == status.lower())

    if method:
        query = query.where(CancellationRequest.method == method.lower())

    query = query.order_by(CancellationRequest.created_at.desc(), CancellationRequest.id.desc())

    return paginate(session=session, query=query, page=page, limit=limit, serialize=_serialize)


@router.get("/stats", response_model=CancellationStatsResponse)
def cancellation_stats(
    admin: User = Depends(get_current_admin),
):
    return _cached_cancellation_stats(_ttl_bucket())
