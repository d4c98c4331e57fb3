import hashlib
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError
from sqlmodel import Session

from subtrack.config import settings
from subtrack.database import get_session
from subtrack.routes.admin_cancellation import clear_cancellation_stats_cache
from subtrack.schemas.cancellation_schemas import CancellationResult, ProviderWebhookPayload
from subtrack.services.cancellation_orchestrator import (
    CancellationOrchestrator,
    CancellationValidationError,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.removeprefix("sha256="))


async def raw_body(request: Request) -> bytes:
    # signatures are computed over the exact bytes the provider sent
    return await request.body()


@router.post("/cancellation", response_model=CancellationResult)
def provider_cancellation_webhook(
    body: bytes = Depends(raw_body),
    x_provider_id: Optional[int] = Header(default=None),
    x_signature: Optional[str] = Header(default=None),
    session: Session = Depends(get_session),
):
    """Asynchronous cancellation confirmations from providers"""
    if x_provider_id is None:
        raise HTTPException(400, "Missing provider ID in headers")

    # once a secret is configured every call must be signed
    if settings.WEBHOOK_SECRET or x_signature is not None:
        if not settings.WEBHOOK_SECRET:
            logger.error("WEBHOOK_SECRET not configured, cannot verify provider webhook")
            raise HTTPException(500, "Webhook configuration error")

        if not x_signature or not verify_signature(body, x_signature, settings.WEBHOOK_SECRET):
            logger.warning(f"Webhook signature verification failed for provider {x_provider_id}")
            raise HTTPException(401, "Invalid signature")

    try:
        payload = ProviderWebhookPayload.model_validate_json(body)
    except ValidationError:
        raise HTTPException(400, "Invalid payload format")

    orchestrator = CancellationOrchestrator(session)
    try:
        result = orchestrator.record_provider_outcome(x_provider_id, payload)
    except CancellationValidationError as e:
        raise HTTPException(e.status_code, e.message)

    clear_cancellation_stats_cache()
    return result
