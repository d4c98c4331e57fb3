import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional, Protocol, Tuple

import requests

from subtrack.config import settings
from subtrack.constants.cancellation_status import CancellationMethod
from subtrack.models.cancellation_provider import CancellationProvider
from subtrack.schemas.cancellation_schemas import AttemptOutcome
from subtrack.services.method_selector import ProviderCapabilities, MANUAL_ONLY

logger = logging.getLogger(__name__)

ANY_PROVIDER = "*"


@dataclass
class CancellationContext:
    """Everything an automation gets to know about the attempt."""
    request_id: int
    user_id: int
    user_email: Optional[str]
    subscription_id: int
    subscription_name: str
    subscription_amount: Optional[Decimal]
    attempt: int
    provider_key: Optional[str] = None
    provider_name: Optional[str] = None
    api_endpoint: Optional[str] = None
    login_url: Optional[str] = None


class CancellationAutomation(Protocol):
    def attempt_cancel(self, context: CancellationContext) -> AttemptOutcome:
        ...


class AutomationRegistry:
    """
    Maps (method, provider key) to the automation that executes it.

    Provider keys are normalized provider names; "*" registers a handler for
    every provider that carries the method's prerequisites.
    """

    def __init__(self):
        self._automations: Dict[Tuple[str, str], CancellationAutomation] = {}

    def register(self, method: str, automation: CancellationAutomation, provider_key: str = ANY_PROVIDER):
        if method == CancellationMethod.MANUAL:
            raise ValueError("manual cancellation needs no automation")
        self._automations[(method, provider_key)] = automation

    def get(self, method: str, provider_key: Optional[str]) -> Optional[CancellationAutomation]:
        if provider_key and (method, provider_key) in self._automations:
            return self._automations[(method, provider_key)]
        return self._automations.get((method, ANY_PROVIDER))

    def capabilities_for(self, provider: Optional[CancellationProvider]) -> ProviderCapabilities:
        if provider is None or not provider.is_active:
            return MANUAL_ONLY

        key = provider.normalized_name
        return ProviderCapabilities(
            provider_key=key,
            api_registered=self.get(CancellationMethod.API, key) is not None,
            api_configured=provider.type == CancellationMethod.API and bool(provider.api_endpoint),
            web_automation_registered=self.get(CancellationMethod.WEB_AUTOMATION, key) is not None,
            web_automation_configured=bool(provider.login_url),
        )


def _parse_date(value) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _parse_amount(value) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class HttpApiAutomation:
    """Cancels through a provider's HTTP cancellation endpoint."""

    def __init__(self, timeout: Optional[int] = None):
        self.timeout = timeout or settings.PROVIDER_API_TIMEOUT_SECONDS

    def attempt_cancel(self, context: CancellationContext) -> AttemptOutcome:
        if not context.api_endpoint:
            return AttemptOutcome(
                success=False,
                error_code="NOT_CONFIGURED",
                error_message=f"No API endpoint configured for {context.provider_name}",
            )

        payload = {
            "reference": f"subtrack-{context.request_id}-{context.attempt}",
            "subscription": context.subscription_name,
            "email": context.user_email,
        }

        try:
            response = requests.post(context.api_endpoint, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(f"Provider API unreachable for request {context.request_id}: {e}")
            return AttemptOutcome(success=False, error_code="NETWORK_ERROR", error_message=str(e))

        if response.status_code >= 400:
            return AttemptOutcome(
                success=False,
                error_code=f"HTTP_{response.status_code}",
                error_message=response.text[:500] or response.reason,
            )

        try:
            body = response.json()
        except ValueError:
            return AttemptOutcome(
                success=False,
                error_code="INVALID_RESPONSE",
                error_message="Provider returned a non-JSON body",
            )

        if not body.get("success"):
            return AttemptOutcome(
                success=False,
                error_code=body.get("errorCode") or "PROVIDER_REJECTED",
                error_message=body.get("errorMessage") or body.get("error") or "Provider rejected the cancellation",
            )

        return AttemptOutcome(
            success=True,
            confirmation_code=body.get("confirmationCode"),
            effective_date=_parse_date(body.get("effectiveDate")),
            refund_amount=_parse_amount(body.get("refundAmount")),
        )


def build_default_registry() -> AutomationRegistry:
    registry = AutomationRegistry()
    registry.register(CancellationMethod.API, HttpApiAutomation())
    return registry


default_registry = build_default_registry()


def get_automation_registry() -> AutomationRegistry:
    return default_registry
