# Data access for cancellation requests
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import and_, or_, update
from sqlmodel import Session, select, func

from subtrack.constants.cancellation_status import CancellationStatus, OPEN_STATUSES
from subtrack.models.cancellation import CancellationRequest
from subtrack.models.cancellation_provider import CancellationProvider, normalize_provider_name
from subtrack.models.subscription import Subscription, SubscriptionStatus


def get_subscription(db: Session, subscription_id: int, user_id: Optional[int] = None) -> Optional[Subscription]:
    """Get subscription by ID, optionally checking user ownership"""
    statement = select(Subscription).where(Subscription.id == subscription_id)
    if user_id is not None:
        statement = statement.where(Subscription.user_id == user_id)

    return db.exec(statement).first()


def get_request(
    db: Session,
    request_id: int,
    user_id: Optional[int] = None,
    for_update: bool = False,
) -> Optional[CancellationRequest]:
    """Fresh read of a request; for_update locks the row until commit"""
    statement = select(CancellationRequest).where(CancellationRequest.id == request_id)
    if user_id is not None:
        statement = statement.where(CancellationRequest.user_id == user_id)
    if for_update:
        statement = statement.with_for_update()

    return db.exec(statement.execution_options(populate_existing=True)).first()


def get_open_request(db: Session, subscription_id: int) -> Optional[CancellationRequest]:
    """Get the non-terminal request for a subscription, if any"""
    statement = select(CancellationRequest).where(
        CancellationRequest.subscription_id == subscription_id,
        CancellationRequest.status.in_(OPEN_STATUSES),
    )
    return db.exec(statement).first()


def find_provider(db: Session, subscription: Subscription) -> Optional[CancellationProvider]:
    """Linked provider first, then an active provider with the same normalized name"""
    if subscription.provider_id:
        provider = db.get(CancellationProvider, subscription.provider_id)
        if provider and provider.is_active:
            return provider

    statement = select(CancellationProvider).where(
        CancellationProvider.normalized_name == normalize_provider_name(subscription.name),
        CancellationProvider.is_active == True,  # noqa: E712
    )
    return db.exec(statement).first()


def claim_for_dispatch(db: Session, request: CancellationRequest, now: datetime) -> bool:
    """
    Move a request into processing with one conditional UPDATE.

    The WHERE clause repeats the status we observed, so of two concurrent
    dispatchers only one gets a row back. The caller commits or rolls back.
    """
    statement = (
        update(CancellationRequest)
        .where(CancellationRequest.id == request.id)
        .where(CancellationRequest.status == request.status)
        .where(CancellationRequest.attempts < CancellationRequest.max_attempts)
        .values(
            status=CancellationStatus.PROCESSING,
            attempts=CancellationRequest.attempts + 1,
            last_attempt_at=now,
            next_retry_at=None,
            completed_at=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    result = db.exec(statement)

    if result.rowcount != 1:
        return False

    db.refresh(request)
    return True


def hold_claim(db: Session, request_id: int, claimed_attempts: int, now: datetime) -> bool:
    """
    Re-assert a dispatch claim before an attempt's outcome is written.

    Matches only while the row is still processing the attempt we claimed, so
    a webhook or a lease takeover that finished the request first wins. The
    UPDATE keeps the row locked until the caller commits or rolls back.
    """
    statement = (
        update(CancellationRequest)
        .where(CancellationRequest.id == request_id)
        .where(CancellationRequest.status == CancellationStatus.PROCESSING)
        .where(CancellationRequest.attempts == claimed_attempts)
        .values(updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return db.exec(statement).rowcount == 1


def get_due_retries(
    db: Session,
    now: datetime,
    limit: int = 50,
    lease: Optional[timedelta] = None,
) -> List[CancellationRequest]:
    """Failed requests whose retry is due, plus processing claims past their lease"""
    due = and_(
        CancellationRequest.status == CancellationStatus.FAILED,
        CancellationRequest.next_retry_at != None,  # noqa: E711
        CancellationRequest.next_retry_at <= now,
    )
    if lease is not None:
        due = or_(due, and_(
            CancellationRequest.status == CancellationStatus.PROCESSING,
            CancellationRequest.last_attempt_at <= now - lease,
        ))

    statement = (
        select(CancellationRequest)
        .where(due)
        .order_by(func.coalesce(CancellationRequest.next_retry_at, CancellationRequest.last_attempt_at))
        .limit(limit)
    )
    return list(db.exec(statement).all())


def find_request_for_provider(
    db: Session,
    provider_id: int,
    request_id: Optional[int] = None,
    window: timedelta = timedelta(hours=24),
) -> Optional[CancellationRequest]:
    statement = select(CancellationRequest).where(CancellationRequest.provider_id == provider_id)

    if request_id is not None:
        return db.exec(statement.where(CancellationRequest.id == request_id)).first()

    statement = (
        statement
        .where(CancellationRequest.status.in_(OPEN_STATUSES))
        .where(CancellationRequest.created_at >= datetime.utcnow() - window)
        .order_by(CancellationRequest.created_at.desc())
    )
    return db.exec(statement).first()


def get_history(db: Session, user_id: int, limit: int = 10) -> List[tuple]:
    statement = (
        select(CancellationRequest, Subscription, CancellationProvider)
        .join(Subscription, Subscription.id == CancellationRequest.subscription_id, isouter=True)
        .join(CancellationProvider, CancellationProvider.id == CancellationRequest.provider_id, isouter=True)
        .where(CancellationRequest.user_id == user_id)
        .order_by(CancellationRequest.created_at.desc(), CancellationRequest.id.desc())
        .limit(limit)
    )
    return list(db.exec(statement).all())


def get_cancellation_stats(db: Session, now: Optional[datetime] = None) -> dict:
    """Counts for the admin overview"""
    now = now or datetime.utcnow()
    today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    month_start = today_start.replace(day=1)

    def count_status(status: str) -> int:
        return db.exec(
            select(func.count())
            .select_from(CancellationRequest)
            .where(CancellationRequest.status == status)
        ).one()

    completed_today = db.exec(
        select(func.count())
        .select_from(CancellationRequest)
        .where(CancellationRequest.status == CancellationStatus.COMPLETED)
        .where(CancellationRequest.completed_at >= today_start)
    ).one()

    refunds = db.exec(
        select(func.sum(CancellationRequest.refund_amount))
        .where(CancellationRequest.status == CancellationStatus.COMPLETED)
        .where(CancellationRequest.completed_at >= month_start)
    ).one() or Decimal(0)

    return {
        "pending_requests": count_status(CancellationStatus.PENDING),
        "requires_manual": count_status(CancellationStatus.REQUIRES_MANUAL),
        "awaiting_retry": count_status(CancellationStatus.FAILED),
        "completed_today": completed_today,
        "refunds_this_month": refunds,
    }


def find_provider_by_name(db: Session, name: str) -> Optional[CancellationProvider]:
    statement = select(CancellationProvider).where(
        or_(
            func.lower(CancellationProvider.name) == name.strip().lower(),
            CancellationProvider.normalized_name == normalize_provider_name(name),
        ),
        CancellationProvider.is_active == True,  # noqa: E712
    )
    return db.exec(statement).first()


def get_user_analytics(db: Session, user_id: int) -> dict:
    """Per-user counts, method breakdown and savings from cancelled subscriptions"""
    rows = db.exec(
        select(CancellationRequest.status, CancellationRequest.method, func.count())
        .where(CancellationRequest.user_id == user_id)
        .group_by(CancellationRequest.status, CancellationRequest.method)
    ).all()

    by_status = {}
    by_method = {}
    for status, method, count in rows:
        by_status[status] = by_status.get(status, 0) + count
        entry = by_method.setdefault(method, {"method": method, "count": 0, "completed": 0})
        entry["count"] += count
        if status == CancellationStatus.COMPLETED:
            entry["completed"] += count

    savings = db.exec(
        select(func.sum(Subscription.amount))
        .where(Subscription.user_id == user_id)
        .where(Subscription.status == SubscriptionStatus.CANCELLED)
    ).one() or Decimal(0)

    return {
        "by_status": by_status,
        "by_method": sorted(by_method.values(), key=lambda m: m["method"]),
        "total_savings": savings,
    }
