from datetime import timedelta

from sqlmodel import select

from subtrack.jobs.retry_due_cancellations import retry_due_cancellations
from subtrack.jobs.seed_providers import PROVIDERS, seed_cancellation_providers
from subtrack.models.cancellation_provider import CancellationProvider
from subtrack.services.cancellation_orchestrator import CancellationOrchestrator

from conftest import T0, FakeAutomation, fail, make_registry, succeed


def test_retry_job_dispatches_only_due_requests(session, user, subscription):
    orchestrator = CancellationOrchestrator(session, registry=make_registry(FakeAutomation(fail())))
    request = orchestrator.create_request(user.id, subscription.id)
    orchestrator.dispatch(request.id, now=T0)

    registry = make_registry(FakeAutomation(succeed("NFX-JOB")))

    assert retry_due_cancellations(now=T0 + timedelta(seconds=5), registry=registry) == {"dispatched": 0}
    assert retry_due_cancellations(now=T0 + timedelta(minutes=10), registry=registry) == {
        "dispatched": 1,
        "completed": 1,
    }

    session.refresh(request)
    assert request.confirmation_code == "NFX-JOB"


def test_seed_providers_is_idempotent(session):
    assert seed_cancellation_providers() == len(PROVIDERS)
    assert seed_cancellation_providers() == len(PROVIDERS)

    providers = session.exec(select(CancellationProvider)).all()
    assert len(providers) == len(PROVIDERS)
    assert {p.normalized_name for p in providers} >= {"netflix", "adobe", "amazonprime"}
