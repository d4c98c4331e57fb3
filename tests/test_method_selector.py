import pytest

from subtrack.models.cancellation_provider import CancellationProvider, normalize_provider_name
from subtrack.services.automation_registry import AutomationRegistry
from subtrack.services.method_selector import (
    MANUAL_ONLY,
    ProviderCapabilities,
    available_methods,
    select_method,
)

from conftest import FakeAutomation


def test_prefers_api_when_registered_and_configured():
    capabilities = ProviderCapabilities(
        api_registered=True,
        api_configured=True,
        web_automation_registered=True,
        web_automation_configured=True,
    )
    assert select_method(capabilities) == "api"


def test_falls_back_to_web_automation_without_api_prerequisites():
    capabilities = ProviderCapabilities(
        api_registered=True,
        api_configured=False,
        web_automation_registered=True,
        web_automation_configured=True,
    )
    assert select_method(capabilities) == "web_automation"


def test_registered_but_unconfigured_methods_fall_back_to_manual():
    capabilities = ProviderCapabilities(
        api_registered=True,
        web_automation_registered=True,
    )
    assert select_method(capabilities) == "manual"


def test_manual_when_nothing_is_known():
    assert select_method(MANUAL_ONLY) == "manual"


def test_normalize_provider_name():
    assert normalize_provider_name("Disney+") == "disney"
    assert normalize_provider_name("YouTube Premium") == "youtubepremium"


class TestAutomationRegistry:

    def _provider(self, **kwargs):
        defaults = dict(name="Hulu", normalized_name="hulu", type="web_automation")
        defaults.update(kwargs)
        return CancellationProvider(**defaults)

    def test_no_provider_is_manual_only(self):
        assert AutomationRegistry().capabilities_for(None) == MANUAL_ONLY

    def test_inactive_provider_is_manual_only(self):
        registry = AutomationRegistry()
        registry.register("api", FakeAutomation())
        provider = self._provider(type="api", api_endpoint="https://x.test", is_active=False)
        assert registry.capabilities_for(provider) == MANUAL_ONLY

    def test_web_automation_needs_a_registered_handler(self):
        provider = self._provider(login_url="https://secure.hulu.test/account")

        empty = AutomationRegistry()
        assert select_method(empty.capabilities_for(provider)) == "manual"

        registry = AutomationRegistry()
        registry.register("web_automation", FakeAutomation(), provider_key="hulu")
        assert select_method(registry.capabilities_for(provider)) == "web_automation"

    def test_api_provider_without_endpoint_is_not_api(self):
        registry = AutomationRegistry()
        registry.register("api", FakeAutomation())
        provider = self._provider(type="api", api_endpoint=None)
        assert select_method(registry.capabilities_for(provider)) == "manual"

    def test_provider_specific_handler_wins_over_wildcard(self):
        generic, specific = FakeAutomation(), FakeAutomation()
        registry = AutomationRegistry()
        registry.register("api", generic)
        registry.register("api", specific, provider_key="netflix")

        assert registry.get("api", "netflix") is specific
        assert registry.get("api", "spotify") is generic
        assert registry.get("web_automation", "netflix") is None

    def test_manual_cannot_be_registered(self):
        with pytest.raises(ValueError):
            AutomationRegistry().register("manual", FakeAutomation())


def test_available_methods_in_preference_order():
    every = ProviderCapabilities(
        api_registered=True,
        api_configured=True,
        web_automation_registered=True,
        web_automation_configured=True,
    )
    unconfigured_api = ProviderCapabilities(api_registered=True, web_automation_registered=True,
                                            web_automation_configured=True)

    assert available_methods(every) == ["api", "web_automation", "manual"]
    assert available_methods(unconfigured_api) == ["web_automation", "manual"]
    assert available_methods(MANUAL_ONLY) == ["manual"]
