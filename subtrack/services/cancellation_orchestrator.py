"""
Cancellation request lifecycle.

pending -> processing -> completed | failed | requires_manual
failed -> processing (retry, bounded by max_attempts)
requires_manual -> completed | cancelled (user confirmation)

Public operations return a CancellationResult for every outcome. Only
invalid input (unknown request, wrong owner, wrong state for a user
action) raises, as CancellationValidationError.
"""
import logging
from datetime import datetime, timedelta, date
from decimal import Decimal
from typing import List, Optional

from pydantic import ValidationError
from sqlmodel import Session

from subtrack.config import settings
from subtrack.constants.cancellation_status import (
    CancellationMethod,
    CancellationStatus,
    FINAL_STATUSES,
    PRIORITIES,
    TERMINAL_STATUSES,
    can_transition,
)
from subtrack.models.cancellation import CancellationRequest
from subtrack.models.cancellation_provider import CancellationProvider
from subtrack.models.subscription import Subscription, SubscriptionStatus
from subtrack.models.user import User
from subtrack.schemas.cancellation_schemas import (
    AttemptOutcome,
    CancellationAnalytics,
    CancellationHistoryItem,
    CancellationOptions,
    CancellationResult,
    ContactInfo,
    MethodBreakdown,
    ProviderInfo,
    ProviderWebhookPayload,
)
from subtrack.services import cancellation_store as store
from subtrack.services.automation_registry import (
    AutomationRegistry,
    CancellationContext,
    get_automation_registry,
)
from subtrack.services.cancellation_notifier import CancellationNotifier
from subtrack.services.manual_instructions import (
    build_manual_instructions,
    normalize_instructions,
)
from subtrack.services.method_selector import available_methods, select_method

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    CancellationStatus.PENDING: "Cancellation request received",
    CancellationStatus.PROCESSING: "Cancellation in progress",
    CancellationStatus.COMPLETED: "Subscription cancelled",
    CancellationStatus.FAILED: "Cancellation attempt failed, a retry is scheduled",
    CancellationStatus.REQUIRES_MANUAL: "Follow the manual instructions to finish cancelling",
    CancellationStatus.CANCELLED: "Cancellation request closed",
}


class CancellationValidationError(Exception):
    status_code = 400

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class CancellationNotFound(CancellationValidationError):
    status_code = 404


class CancellationStateError(CancellationValidationError):
    status_code = 409


class InvalidTransition(RuntimeError):
    pass


def compute_backoff(
    attempts: int,
    base_seconds: Optional[int] = None,
    max_seconds: Optional[int] = None,
) -> timedelta:
    """base * 2^(attempts-1), capped."""
    base = settings.CANCELLATION_RETRY_BASE_SECONDS if base_seconds is None else base_seconds
    cap = settings.CANCELLATION_RETRY_MAX_SECONDS if max_seconds is None else max_seconds
    exponent = max(attempts - 1, 0)
    return timedelta(seconds=min(base * (2 ** exponent), cap))


class CancellationOrchestrator:

    def __init__(
        self,
        session: Session,
        registry: Optional[AutomationRegistry] = None,
        notifier: Optional[CancellationNotifier] = None,
        max_attempts: Optional[int] = None,
    ):
        self.session = session
        self.registry = registry or get_automation_registry()
        self.notifier = notifier or CancellationNotifier()
        self.max_attempts = max_attempts or settings.CANCELLATION_MAX_ATTEMPTS

    # -------------------------
    # CREATE
    # -------------------------
    def create_request(
        self,
        user_id: int,
        subscription_id: int,
        priority: str = "normal",
        notes: Optional[str] = None,
    ) -> CancellationRequest:
        if priority not in PRIORITIES:
            raise CancellationValidationError("INVALID_PRIORITY", f"Unknown priority: {priority}")

        subscription = store.get_subscription(self.session, subscription_id, user_id)
        if not subscription:
            raise CancellationNotFound("SUBSCRIPTION_NOT_FOUND", "Subscription not found")

        if subscription.status == SubscriptionStatus.CANCELLED:
            raise CancellationValidationError("ALREADY_CANCELLED", "Subscription is already cancelled")

        if store.get_open_request(self.session, subscription_id):
            raise CancellationStateError("REQUEST_IN_PROGRESS", "Cancellation request already in progress")

        provider = store.find_provider(self.session, subscription)
        method = select_method(self.registry.capabilities_for(provider))

        now = datetime.utcnow()
        request = CancellationRequest(
            user_id=user_id,
            subscription_id=subscription_id,
            provider_id=provider.id if provider else None,
            method=method,
            priority=priority,
            status=CancellationStatus.PENDING,
            attempts=0,
            max_attempts=self.max_attempts,
            user_notes=notes,
            created_at=now,
            updated_at=now,
        )
        self._append_log(request, "initiated", "success", f"Cancellation request created with method: {method}", now)

        self.session.add(request)
        self.session.flush()
        self.notifier.emit(self.session, request, STATUS_MESSAGES[CancellationStatus.PENDING])
        self._commit()
        self.session.refresh(request)

        logger.info(
            f"Cancellation request {request.id} created for subscription {subscription_id} "
            f"(method={method}, provider={provider.name if provider else None})"
        )
        return request

    # -------------------------
    # DISPATCH
    # -------------------------
    def dispatch(self, request_id: int, now: Optional[datetime] = None, force: bool = False) -> CancellationResult:
        """
        Run one attempt for a request.

        Never re-executes a finished request and never raises for provider
        problems; a request that is not eligible is returned unchanged.
        """
        now = now or datetime.utcnow()
        request = store.get_request(self.session, request_id)
        if not request:
            raise CancellationNotFound("REQUEST_NOT_FOUND", "Cancellation request not found")

        if request.status in FINAL_STATUSES or request.status == CancellationStatus.REQUIRES_MANUAL:
            return self._result(request)

        if request.status == CancellationStatus.PROCESSING:
            if not self._lease_expired(request, now):
                logger.info(f"Dispatch skipped, request {request_id} is already processing")
                return self._result(request)

            logger.warning(
                f"Request {request_id} has been processing since {request.last_attempt_at}, taking it over"
            )
            if request.attempts >= request.max_attempts:
                if not self._hold(request, request.attempts, now):
                    return self._current(request_id)
                subscription, provider = self._targets(request)
                return self._escalate(
                    request, subscription, provider, now,
                    f"Automatic cancellation did not finish after {request.attempts} attempts",
                )

        if (
            request.status == CancellationStatus.FAILED
            and not force
            and request.next_retry_at is not None
            and request.next_retry_at > now
        ):
            logger.debug(f"Dispatch skipped, request {request_id} retries at {request.next_retry_at}")
            return self._result(request)

        if not store.claim_for_dispatch(self.session, request, now):
            self._rollback()
            logger.info(f"Dispatch skipped, request {request_id} was claimed concurrently or is exhausted")
            return self._current(request_id)

        claimed = request.attempts
        self.notifier.emit(
            self.session,
            request,
            f"Attempt {claimed} of {request.max_attempts} via {request.method}",
        )
        self._commit()

        try:
            return self._run_attempt(request, claimed, now)
        except Exception:
            logger.exception(f"Attempt {claimed} of cancellation request {request_id} did not finish")
            self._rollback()
            return self._recover(request_id, claimed, now)

    def _run_attempt(self, request: CancellationRequest, claimed: int, now: datetime) -> CancellationResult:
        subscription, provider = self._targets(request)

        if request.method == CancellationMethod.MANUAL:
            if not self._hold(request, claimed, now):
                return self._current(request.id)
            return self._escalate(request, subscription, provider, now, "Manual cancellation required")

        outcome = self._attempt(request, subscription, provider)

        # the provider call can take a while; a webhook may have settled the request meanwhile
        if not self._hold(request, claimed, now):
            return self._current(request.id)

        if outcome.success:
            self._append_log(request, f"{request.method}_attempt", "success",
                             f"Cancelled on attempt {request.attempts}", now)
            return self._complete(request, subscription, outcome, now, via=request.method)

        return self._fail(request, subscription, provider, outcome, now)

    def _recover(self, request_id: int, claimed: int, now: datetime) -> CancellationResult:
        """Close out an attempt that broke after its claim was committed."""
        request = store.get_request(self.session, request_id)
        if not self._hold(request, claimed, now):
            return self._current(request_id)

        subscription, provider = self._targets(request)
        outcome = AttemptOutcome(
            success=False,
            error_code="INTERNAL_ERROR",
            error_message=f"Attempt {claimed} did not finish",
        )
        return self._fail(request, subscription, provider, outcome, now)

    def retry(self, user_id: int, request_id: int, now: Optional[datetime] = None) -> CancellationResult:
        """User-initiated retry, ignores the scheduled retry time."""
        request = store.get_request(self.session, request_id, user_id)
        if not request:
            raise CancellationNotFound("REQUEST_NOT_FOUND", "Cancellation request not found")

        if request.status != CancellationStatus.FAILED:
            raise CancellationStateError(
                "NOT_RETRYABLE", f"Cannot retry request with status: {request.status}"
            )

        self._append_log(request, "retry_initiated", "pending", "Retry requested by user", now or datetime.utcnow())
        self.session.add(request)
        self._commit()
        return self.dispatch(request_id, now=now, force=True)

    def dispatch_due_retries(self, now: Optional[datetime] = None, limit: int = 50) -> List[CancellationResult]:
        now = now or datetime.utcnow()
        lease = timedelta(seconds=settings.PROCESSING_LEASE_SECONDS)
        due = store.get_due_retries(self.session, now, limit, lease=lease)
        return [self.dispatch(request.id, now=now) for request in due]

    # -------------------------
    # USER ACTIONS
    # -------------------------
    def confirm_manual(
        self,
        user_id: int,
        request_id: int,
        was_successful: bool,
        confirmation_code: Optional[str] = None,
        effective_date: Optional[date] = None,
        refund_amount: Optional[Decimal] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CancellationResult:
        now = now or datetime.utcnow()
        request = store.get_request(self.session, request_id, user_id, for_update=True)
        if not request:
            raise CancellationNotFound("REQUEST_NOT_FOUND", "Cancellation request not found")

        if request.status != CancellationStatus.REQUIRES_MANUAL:
            raise CancellationStateError(
                "NOT_AWAITING_CONFIRMATION",
                f"Cannot confirm request with status: {request.status}",
            )

        if notes:
            request.user_notes = notes

        if not was_successful:
            self._append_log(request, "manual_declined", "failed", "User reported the cancellation did not go through", now)
            self._transition(request, CancellationStatus.CANCELLED, now,
                             "You reported the subscription is still active")
            self._commit()
            return self._result(request)

        request.user_confirmed = True
        outcome = AttemptOutcome(
            success=True,
            confirmation_code=confirmation_code,
            effective_date=effective_date or now.date(),
            refund_amount=refund_amount,
        )
        self._append_log(request, "manual_confirmed", "success",
                         f"User confirmed manual cancellation. Code: {confirmation_code}", now)
        subscription = self.session.get(Subscription, request.subscription_id)
        return self._complete(request, subscription, outcome, now, via=CancellationMethod.MANUAL)

    def abandon(self, user_id: int, request_id: int, now: Optional[datetime] = None) -> CancellationResult:
        """User stops the request; a pending retry becomes a no-op."""
        now = now or datetime.utcnow()
        request = store.get_request(self.session, request_id, user_id, for_update=True)
        if not request:
            raise CancellationNotFound("REQUEST_NOT_FOUND", "Cancellation request not found")

        if not can_transition(request.status, CancellationStatus.CANCELLED):
            raise CancellationStateError(
                "NOT_ABANDONABLE", f"Cannot stop request with status: {request.status}"
            )

        request.next_retry_at = None
        self._append_log(request, "abandoned", "success", "Request stopped by user", now)
        self._transition(request, CancellationStatus.CANCELLED, now, "Cancellation request stopped")
        self._commit()
        return self._result(request)

    # -------------------------
    # PROVIDER CALLBACK
    # -------------------------
    def record_provider_outcome(
        self,
        provider_id: int,
        payload: ProviderWebhookPayload,
        now: Optional[datetime] = None,
    ) -> CancellationResult:
        now = now or datetime.utcnow()
        provider = self.session.get(CancellationProvider, provider_id)
        if not provider:
            raise CancellationNotFound("PROVIDER_NOT_FOUND", "Unknown provider")

        match = store.find_request_for_provider(self.session, provider_id, payload.request_id)
        if not match:
            raise CancellationNotFound("REQUEST_NOT_FOUND", "No matching cancellation request")

        request = store.get_request(self.session, match.id, for_update=True)
        if request.status in FINAL_STATUSES:
            return self._result(request)

        if payload.status == "failed":
            request.error_code = "PROVIDER_REPORTED_FAILURE"
            request.error_message = payload.error or "Provider reported the cancellation failed"
            self._append_log(request, "provider_webhook", "failed", request.error_message, now)
            self.session.add(request)
            self._commit()
            return self._result(request)

        if not can_transition(request.status, CancellationStatus.COMPLETED):
            self._append_log(request, "provider_webhook", "pending",
                             f"Confirmation received while {request.status}, ignored", now)
            self.session.add(request)
            self._commit()
            logger.warning(f"Provider confirmation for request {request.id} ignored in status {request.status}")
            return self._result(request)

        outcome = AttemptOutcome(
            success=True,
            confirmation_code=payload.confirmation_code,
            effective_date=payload.effective_date,
            refund_amount=payload.refund_amount,
        )
        request.next_retry_at = None
        self._append_log(request, "provider_webhook", "success",
                         f"{provider.name} confirmed cancellation ({payload.status})", now)
        subscription = self.session.get(Subscription, request.subscription_id)
        return self._complete(request, subscription, outcome, now, via="webhook")

    # -------------------------
    # READS
    # -------------------------
    def get_status(self, user_id: int, request_id: int) -> CancellationResult:
        request = store.get_request(self.session, request_id, user_id)
        if not request:
            raise CancellationNotFound("REQUEST_NOT_FOUND", "Cancellation request not found")
        return self._result(request)

    def list_history(self, user_id: int, limit: int = 10) -> List[CancellationHistoryItem]:
        return [
            CancellationHistoryItem(
                request_id=request.id,
                subscription_id=request.subscription_id,
                subscription_name=subscription.name if subscription else None,
                subscription_amount=subscription.amount if subscription else None,
                provider_name=provider.name if provider else None,
                provider_logo=provider.logo if provider else None,
                status=request.status,
                method=request.method,
                confirmation_code=request.confirmation_code,
                effective_date=request.effective_date,
                created_at=request.created_at,
                completed_at=request.completed_at,
            )
            for request, subscription, provider in store.get_history(self.session, user_id, limit)
        ]

    def get_options(self, user_id: int, subscription_id: int) -> CancellationOptions:
        """Methods that would be used for a subscription, and whether it can be cancelled now."""
        subscription = store.get_subscription(self.session, subscription_id, user_id)
        if not subscription:
            raise CancellationNotFound("SUBSCRIPTION_NOT_FOUND", "Subscription not found")

        provider = store.find_provider(self.session, subscription)
        methods = available_methods(self.registry.capabilities_for(provider))
        open_request = store.get_open_request(self.session, subscription_id)

        blocked_reason = None
        if subscription.status == SubscriptionStatus.CANCELLED:
            blocked_reason = "ALREADY_CANCELLED"
        elif open_request:
            blocked_reason = "REQUEST_IN_PROGRESS"

        return CancellationOptions(
            subscription_id=subscription_id,
            can_cancel=blocked_reason is None,
            blocked_reason=blocked_reason,
            open_request_id=open_request.id if open_request else None,
            methods=methods,
            recommended=methods[0],
            provider=self._provider_info(provider) if provider else None,
        )

    def describe_provider(self, name: str) -> ProviderInfo:
        provider = store.find_provider_by_name(self.session, name)
        if not provider:
            raise CancellationNotFound("PROVIDER_NOT_FOUND", "Unknown provider")
        return self._provider_info(provider)

    def get_analytics(self, user_id: int) -> CancellationAnalytics:
        data = store.get_user_analytics(self.session, user_id)
        by_status = data["by_status"]
        total = sum(by_status.values())
        completed = by_status.get(CancellationStatus.COMPLETED, 0)

        return CancellationAnalytics(
            total=total,
            completed=completed,
            failed=by_status.get(CancellationStatus.FAILED, 0),
            in_progress=by_status.get(CancellationStatus.PENDING, 0) + by_status.get(CancellationStatus.PROCESSING, 0),
            requires_manual=by_status.get(CancellationStatus.REQUIRES_MANUAL, 0),
            success_rate=round(completed * 100 / total, 1) if total else 0.0,
            method_breakdown=[MethodBreakdown(**entry) for entry in data["by_method"]],
            recent=self.list_history(user_id, limit=5),
            total_savings=data["total_savings"],
        )

    @staticmethod
    def _provider_info(provider: CancellationProvider) -> ProviderInfo:
        return ProviderInfo(
            id=provider.id,
            name=provider.name,
            type=provider.type,
            logo=provider.logo,
            category=provider.category,
            difficulty=provider.difficulty,
            average_time=provider.average_time,
            success_rate=provider.success_rate,
            supports_refunds=provider.supports_refunds,
            contact=ContactInfo(
                website=provider.login_url,
                phone=provider.phone_number,
                email=provider.email,
                chat_url=provider.chat_url,
            ),
        )

    # -------------------------
    # INTERNALS
    # -------------------------
    def _attempt(
        self,
        request: CancellationRequest,
        subscription: Optional[Subscription],
        provider: Optional[CancellationProvider],
    ) -> AttemptOutcome:
        provider_key = provider.normalized_name if provider else None
        automation = self.registry.get(request.method, provider_key)
        if automation is None:
            return AttemptOutcome(
                success=False,
                error_code="AUTOMATION_UNAVAILABLE",
                error_message=f"No {request.method} automation registered for {provider_key}",
            )

        user = self.session.get(User, request.user_id)
        context = CancellationContext(
            request_id=request.id,
            user_id=request.user_id,
            user_email=user.email if user else None,
            subscription_id=request.subscription_id,
            subscription_name=subscription.name if subscription else "",
            subscription_amount=subscription.amount if subscription else None,
            attempt=request.attempts,
            provider_key=provider_key,
            provider_name=provider.name if provider else None,
            api_endpoint=provider.api_endpoint if provider else None,
            login_url=provider.login_url if provider else None,
        )

        try:
            outcome = automation.attempt_cancel(context)
            if not isinstance(outcome, AttemptOutcome):
                outcome = AttemptOutcome.model_validate(outcome)
        except Exception as e:
            logger.exception(f"{request.method} automation raised for request {request.id}")
            return AttemptOutcome(
                success=False,
                error_code="PROVIDER_ERROR",
                error_message=str(e) or e.__class__.__name__,
            )

        return outcome

    def _complete(
        self,
        request: CancellationRequest,
        subscription: Optional[Subscription],
        outcome: AttemptOutcome,
        now: datetime,
        via: str,
    ) -> CancellationResult:
        if outcome.confirmation_code:
            request.confirmation_code = outcome.confirmation_code
        if outcome.effective_date:
            request.effective_date = outcome.effective_date
        if outcome.refund_amount is not None:
            request.refund_amount = outcome.refund_amount
        request.error_code = None
        request.error_message = None

        if subscription and subscription.status != SubscriptionStatus.CANCELLED:
            subscription.status = SubscriptionStatus.CANCELLED
            subscription.is_active = False
            subscription.updated_at = now
            subscription.cancellation_info = {
                "request_id": request.id,
                "confirmation_code": request.confirmation_code,
                "effective_date": request.effective_date.isoformat() if request.effective_date else None,
                "method": via,
            }
            self.session.add(subscription)

        message = "Subscription cancelled"
        if request.confirmation_code:
            message += f". Confirmation: {request.confirmation_code}"
        self._transition(request, CancellationStatus.COMPLETED, now, message)
        self._commit()
        return self._result(request, message)

    def _fail(
        self,
        request: CancellationRequest,
        subscription: Optional[Subscription],
        provider: Optional[CancellationProvider],
        outcome: AttemptOutcome,
        now: datetime,
    ) -> CancellationResult:
        request.error_code = outcome.error_code or "PROVIDER_ERROR"
        request.error_message = outcome.error_message or "Cancellation attempt failed"
        self._append_log(request, f"{request.method}_attempt", "failed",
                         f"{request.error_code}: {request.error_message}", now)

        logger.warning(
            f"Cancellation request {request.id} attempt {request.attempts}/{request.max_attempts} "
            f"failed: {request.error_code}"
        )

        if request.attempts < request.max_attempts:
            request.next_retry_at = now + compute_backoff(request.attempts)
            message = f"Attempt {request.attempts} failed, retrying at {request.next_retry_at.isoformat()}"
            self._transition(request, CancellationStatus.FAILED, now, message)
            self._commit()
            return self._result(request, message)

        return self._escalate(
            request, subscription, provider, now,
            f"Automatic cancellation failed after {request.attempts} attempts",
        )

    def _escalate(
        self,
        request: CancellationRequest,
        subscription: Optional[Subscription],
        provider: Optional[CancellationProvider],
        now: datetime,
        message: str,
    ) -> CancellationResult:
        try:
            instructions = build_manual_instructions(subscription, provider)
        except ValidationError:
            logger.exception(f"Unusable provider instructions for request {request.id}, sending generic steps")
            instructions = build_manual_instructions(subscription, None)
        request.manual_instructions = instructions.model_dump(mode="json")
        request.next_retry_at = None
        self._append_log(request, "manual_instructions_generated", "pending",
                         f"{len(instructions.steps)} manual steps prepared", now)
        self._transition(request, CancellationStatus.REQUIRES_MANUAL, now, message)
        self._commit()
        return self._result(request, message)

    def _commit(self):
        self.session.commit()
        self.notifier.send_pending(self.session)

    def _rollback(self):
        self.session.rollback()
        self.notifier.discard()

    def _hold(self, request: CancellationRequest, claimed: int, now: datetime) -> bool:
        """Re-check our claim right before an attempt's outcome is written."""
        if store.hold_claim(self.session, request.id, claimed, now):
            self.session.refresh(request)
            return True

        self._rollback()
        logger.warning(f"Cancellation request {request.id} changed during attempt {claimed}, outcome dropped")
        return False

    def _current(self, request_id: int) -> CancellationResult:
        return self._result(store.get_request(self.session, request_id))

    def _targets(self, request: CancellationRequest):
        subscription = self.session.get(Subscription, request.subscription_id)
        provider = self.session.get(CancellationProvider, request.provider_id) if request.provider_id else None
        return subscription, provider

    @staticmethod
    def _lease_expired(request: CancellationRequest, now: datetime) -> bool:
        if request.last_attempt_at is None:
            return False
        return request.last_attempt_at <= now - timedelta(seconds=settings.PROCESSING_LEASE_SECONDS)

    def _transition(self, request: CancellationRequest, status: str, now: datetime, message: str):
        if not can_transition(request.status, status):
            raise InvalidTransition(f"{request.status} -> {status} for request {request.id}")

        request.status = status
        request.updated_at = now
        request.completed_at = now if status in TERMINAL_STATUSES else None
        self.session.add(request)
        self.notifier.emit(self.session, request, message)

    @staticmethod
    def _append_log(request: CancellationRequest, step: str, status: str, details: str, now: datetime):
        # reassign so the JSON column is flagged dirty
        request.automation_log = [
            *(request.automation_log or []),
            {
                "step": step,
                "timestamp": now.isoformat(),
                "status": status,
                "details": details,
            },
        ]

    @staticmethod
    def _result(request: CancellationRequest, message: Optional[str] = None) -> CancellationResult:
        instructions = None
        if request.manual_instructions:
            instructions = normalize_instructions(request.manual_instructions)

        return CancellationResult(
            request_id=request.id,
            success=request.status == CancellationStatus.COMPLETED,
            status=request.status,
            method=request.method,
            attempts=request.attempts,
            max_attempts=request.max_attempts,
            next_retry_at=request.next_retry_at,
            confirmation_code=request.confirmation_code,
            effective_date=request.effective_date,
            refund_amount=request.refund_amount,
            manual_instructions=instructions,
            error_code=request.error_code,
            error_message=request.error_message,
            message=message or STATUS_MESSAGES.get(request.status, request.status),
        )
