from datetime import timedelta
from unittest.mock import patch

from sqlmodel import select

from subtrack.models.cancellation import CancellationRequest
from subtrack.models.notifications import (
    Notification,
    NotificationChannel,
    NotificationStatus,
    RecipientRole,
)
from subtrack.services.cancellation_notifier import (
    CancellationNotifier,
    latest_event,
    list_events,
    progress_for,
)
from subtrack.services.cancellation_orchestrator import CancellationOrchestrator

from conftest import T0, FakeAutomation, fail, make_registry


def test_progress_by_status():
    def progress(status, attempts=0):
        return progress_for(CancellationRequest(user_id=1, subscription_id=1, status=status,
                                                attempts=attempts, max_attempts=3))

    assert progress("pending") == 0
    assert progress("processing", 1) == 10
    assert progress("failed", 1) == 33
    assert progress("processing", 2) == 33
    assert progress("failed", 2) == 56
    assert progress("requires_manual", 3) == 90
    assert progress("completed", 1) == 100
    assert progress("cancelled", 0) == 100


def test_sequence_and_progress_only_move_forward(session, user, subscription):
    orchestrator = CancellationOrchestrator(session, registry=make_registry(FakeAutomation(fail())), max_attempts=3)
    request = orchestrator.create_request(user.id, subscription.id)
    for step in range(3):
        orchestrator.dispatch(request.id, now=T0 + timedelta(hours=step))

    events = list_events(session, request.id)

    assert [e.sequence for e in events] == list(range(1, len(events) + 1))
    progress = [e.progress for e in events]
    assert progress == sorted(progress)
    assert progress[0] == 0
    assert progress[-1] == 90
    assert latest_event(session, request.id).status == "requires_manual"


def test_list_events_after(orchestrator, session, user, subscription):
    request = orchestrator.create_request(user.id, subscription.id)
    orchestrator.dispatch(request.id, now=T0)

    newer = list_events(session, request.id, after=1)

    assert [e.status for e in newer] == ["processing", "completed"]
    assert list_events(session, request.id, after=3) == []


def test_creation_notifies_admins_in_app(orchestrator, session, user, subscription):
    request = orchestrator.create_request(user.id, subscription.id)

    notifications = session.exec(select(Notification)).all()

    assert len(notifications) == 1
    assert notifications[0].recipient_role == RecipientRole.admin
    assert notifications[0].trigger_source == "cancellation_requested"
    assert notifications[0].related_id == request.id


def test_escalation_emails_user_and_admins(orchestrator, session, user, gym_subscription):
    request = orchestrator.create_request(user.id, gym_subscription.id)

    with patch("subtrack.notifications.email_handlers.send_email", return_value=True) as send_email:
        orchestrator.dispatch(request.id, now=T0)

    subjects = [call.kwargs["subject"] for call in send_email.call_args_list]
    assert subjects == [
        "Action needed to finish your cancellation",
        f"Cancellation #{request.id} needs manual handling",
    ]
    assert send_email.call_args_list[0].kwargs["to"] == "dana@example.com"
    assert "Log into your account" in send_email.call_args_list[0].kwargs["html"]


def test_email_failure_does_not_break_the_flow(orchestrator, session, user, gym_subscription):
    request = orchestrator.create_request(user.id, gym_subscription.id)

    with patch("subtrack.notifications.email_handlers.send_email", side_effect=RuntimeError("smtp down")):
        result = orchestrator.dispatch(request.id, now=T0)

    assert result.status == "requires_manual"


def test_fan_out_can_be_disabled(session, user, subscription, automation):
    orchestrator = CancellationOrchestrator(
        session, registry=make_registry(automation), notifier=CancellationNotifier(fan_out=False),
    )
    request = orchestrator.create_request(user.id, subscription.id)
    orchestrator.dispatch(request.id, now=T0)

    assert session.exec(select(Notification)).all() == []
    assert len(list_events(session, request.id)) == 3


def test_fan_out_waits_for_commit(orchestrator, session, user, gym_subscription):
    request = orchestrator.create_request(user.id, gym_subscription.id)
    notifier = CancellationNotifier()

    with patch("subtrack.services.cancellation_notifier.dispatch_cancellation_event") as dispatch:
        request.status = "cancelled"
        notifier.emit(session, request, "Cancellation request stopped")
        dispatch.assert_not_called()

        session.commit()
        notifier.send_pending(session)

    assert dispatch.call_count == 1
    assert dispatch.call_args.kwargs["request"].status == "cancelled"
    assert notifier.pending == []


def test_rolled_back_transition_sends_nothing(orchestrator, session, user, gym_subscription):
    request = orchestrator.create_request(user.id, gym_subscription.id)
    notifier = CancellationNotifier()

    with patch("subtrack.services.cancellation_notifier.dispatch_cancellation_event") as dispatch:
        request.status = "cancelled"
        notifier.emit(session, request, "Cancellation request stopped")
        session.rollback()
        notifier.discard()
        notifier.send_pending(session)

    dispatch.assert_not_called()
    assert [e.status for e in list_events(session, request.id)] == ["pending"]


def test_in_app_notifications_are_stored_as_sent(orchestrator, session, user, subscription):
    orchestrator.create_request(user.id, subscription.id)

    notification = session.exec(select(Notification)).one()

    assert notification.channel == NotificationChannel.system
    assert notification.status == NotificationStatus.sent
