from dataclasses import dataclass
from typing import List, Optional

from subtrack.constants.cancellation_status import CancellationMethod


@dataclass(frozen=True)
class ProviderCapabilities:
    """Capability flags for one provider, as seen by the automation registry."""
    provider_key: Optional[str] = None
    api_registered: bool = False
    api_configured: bool = False
    web_automation_registered: bool = False
    web_automation_configured: bool = False


MANUAL_ONLY = ProviderCapabilities()


def select_method(capabilities: ProviderCapabilities) -> str:
    """
    Pick api, then web_automation, then manual.

    A method qualifies only when an automation is registered for it AND the
    provider carries what that automation needs. Manual always qualifies.
    """
    if capabilities.api_registered and capabilities.api_configured:
        return CancellationMethod.API

    if capabilities.web_automation_registered and capabilities.web_automation_configured:
        return CancellationMethod.WEB_AUTOMATION

    return CancellationMethod.MANUAL


def available_methods(capabilities: ProviderCapabilities) -> List[str]:
    """Every method that qualifies, in preference order; manual is always last."""
    methods = []
    if capabilities.api_registered and capabilities.api_configured:
        methods.append(CancellationMethod.API)
    if capabilities.web_automation_registered and capabilities.web_automation_configured:
        methods.append(CancellationMethod.WEB_AUTOMATION)
    methods.append(CancellationMethod.MANUAL)
    return methods
