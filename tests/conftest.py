import os

# settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENV"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["BREVO_API_KEY"] = ""
os.environ["WEBHOOK_SECRET"] = "test-webhook-secret"

from datetime import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session

import subtrack.models  # noqa: F401
from subtrack.database import engine
from subtrack.main import app
from subtrack.models.cancellation_provider import CancellationProvider
from subtrack.models.subscription import Subscription
from subtrack.models.user import User
from subtrack.routes.admin_cancellation import clear_cancellation_stats_cache
from subtrack.schemas.cancellation_schemas import AttemptOutcome
from subtrack.services.automation_registry import AutomationRegistry, get_automation_registry
from subtrack.services.cancellation_orchestrator import CancellationOrchestrator
from subtrack.utils.token import create_access_token

T0 = datetime(2026, 3, 1, 12, 0, 0)

NETFLIX_STEPS = [
    {"title": "Sign in to Netflix", "description": "Go to netflix.com and sign in to your account"},
    {"title": "Go to Account Settings", "description": "Click on your profile icon and select 'Account'"},
    {"title": "Cancel Membership", "description": "Click 'Cancel Membership' and follow the prompts"},
]


class FakeAutomation:
    """Plays back scripted outcomes; the last one repeats."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes) or [AttemptOutcome(success=True)]
        self.calls = []

    def attempt_cancel(self, context):
        self.calls.append(context)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def succeed(code="NFX-1001", **kwargs):
    return AttemptOutcome(success=True, confirmation_code=code, **kwargs)


def fail(code="HTTP_503", message="Service unavailable"):
    return AttemptOutcome(success=False, error_code=code, error_message=message)


def make_registry(automation) -> AutomationRegistry:
    registry = AutomationRegistry()
    registry.register("api", automation)
    return registry


@pytest.fixture(autouse=True)
def db():
    SQLModel.metadata.create_all(engine)
    clear_cancellation_stats_cache()
    yield
    app.dependency_overrides.clear()
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session(db):
    with Session(engine) as session:
        yield session


@pytest.fixture
def user(session):
    user = User(first_name="Dana", last_name="Reyes", email="dana@example.com")
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def other_user(session):
    user = User(first_name="Sam", last_name="Ortiz", email="sam@example.com")
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def admin_user(session):
    user = User(first_name="Ada", last_name="Admin", email="admin@example.com", role="admin")
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def netflix(session):
    provider = CancellationProvider(
        name="Netflix",
        normalized_name="netflix",
        type="api",
        api_endpoint="https://api.netflix.test/v1/cancel",
        difficulty="easy",
        average_time=5,
        phone_number="1-866-579-7172",
        instructions=NETFLIX_STEPS,
    )
    session.add(provider)
    session.commit()
    session.refresh(provider)
    return provider


@pytest.fixture
def subscription(session, user, netflix):
    subscription = Subscription(user_id=user.id, name="Netflix", amount=Decimal("15.49"))
    session.add(subscription)
    session.commit()
    session.refresh(subscription)
    return subscription


@pytest.fixture
def gym_subscription(session, user):
    subscription = Subscription(user_id=user.id, name="Corner Gym", amount=Decimal("39.00"))
    session.add(subscription)
    session.commit()
    session.refresh(subscription)
    return subscription


@pytest.fixture
def automation():
    return FakeAutomation(succeed())


@pytest.fixture
def orchestrator(session, automation):
    return CancellationOrchestrator(session, registry=make_registry(automation), max_attempts=3)


@pytest.fixture
def client(automation):
    app.dependency_overrides[get_automation_registry] = lambda: make_registry(automation)
    return TestClient(app)


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def admin_headers(admin_user):
    return {"Authorization": f"Bearer {create_access_token(admin_user.id)}"}
