from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

import requests

from subtrack.services.automation_registry import (
    CancellationContext,
    HttpApiAutomation,
    build_default_registry,
)


def _context(**kwargs):
    defaults = dict(
        request_id=7,
        user_id=1,
        user_email="dana@example.com",
        subscription_id=3,
        subscription_name="Netflix",
        subscription_amount=Decimal("15.49"),
        attempt=2,
        provider_key="netflix",
        provider_name="Netflix",
        api_endpoint="https://api.netflix.test/v1/cancel",
    )
    defaults.update(kwargs)
    return CancellationContext(**defaults)


def _response(status_code=200, body=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    response.reason = "Error"
    if body is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = body
    return response


@patch("subtrack.services.automation_registry.requests.post")
def test_successful_cancellation(post):
    post.return_value = _response(body={
        "success": True,
        "confirmationCode": "NFX-9",
        "effectiveDate": "2026-03-31",
        "refundAmount": "4.99",
    })

    outcome = HttpApiAutomation(timeout=5).attempt_cancel(_context())

    assert outcome.success is True
    assert outcome.confirmation_code == "NFX-9"
    assert outcome.effective_date == date(2026, 3, 31)
    assert outcome.refund_amount == Decimal("4.99")

    args, kwargs = post.call_args
    assert args[0] == "https://api.netflix.test/v1/cancel"
    assert kwargs["json"]["reference"] == "subtrack-7-2"
    assert kwargs["timeout"] == 5


@patch("subtrack.services.automation_registry.requests.post")
def test_http_error_status(post):
    post.return_value = _response(status_code=503, text="maintenance")

    outcome = HttpApiAutomation().attempt_cancel(_context())

    assert outcome.success is False
    assert outcome.error_code == "HTTP_503"
    assert outcome.error_message == "maintenance"


@patch("subtrack.services.automation_registry.requests.post")
def test_network_error(post):
    post.side_effect = requests.ConnectionError("connection refused")

    outcome = HttpApiAutomation().attempt_cancel(_context())

    assert outcome.success is False
    assert outcome.error_code == "NETWORK_ERROR"


@patch("subtrack.services.automation_registry.requests.post")
def test_non_json_body(post):
    post.return_value = _response(body=None)

    outcome = HttpApiAutomation().attempt_cancel(_context())

    assert outcome.error_code == "INVALID_RESPONSE"


@patch("subtrack.services.automation_registry.requests.post")
def test_provider_rejection(post):
    post.return_value = _response(body={"success": False, "errorMessage": "Account locked"})

    outcome = HttpApiAutomation().attempt_cancel(_context())

    assert outcome.success is False
    assert outcome.error_code == "PROVIDER_REJECTED"
    assert outcome.error_message == "Account locked"


@patch("subtrack.services.automation_registry.requests.post")
def test_missing_endpoint_never_calls_out(post):
    outcome = HttpApiAutomation().attempt_cancel(_context(api_endpoint=None))

    assert outcome.error_code == "NOT_CONFIGURED"
    post.assert_not_called()


def test_default_registry_has_api_only():
    registry = build_default_registry()

    assert isinstance(registry.get("api", "netflix"), HttpApiAutomation)
    assert registry.get("web_automation", "hulu") is None
