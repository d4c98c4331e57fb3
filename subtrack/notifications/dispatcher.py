import logging

from subtrack.notifications.rules import NOTIFICATION_RULES, EMAIL_TEMPLATES, ADMIN_EMAIL_TEMPLATE
from subtrack.notifications.channels import Channel
from subtrack.notifications.email_handlers import send_user_email, send_admin_email
from subtrack.services.notification_service import create_notification
from subtrack.models.notifications import RecipientRole
from subtrack.notifications.events import CancellationEventType

logger = logging.getLogger(__name__)


def dispatch_cancellation_event(
    *,
    event: CancellationEventType,
    request,
    user,
    session,
    extra: dict | None = None,
    notify_user: bool = True,
    notify_admin: bool = True,
):
    """
    Central notification dispatcher.

    Handles:
    - admin in-app notifications
    - user email
    - admin email

    Delivery problems are logged; the cancellation flow never sees them.
    """

    rules = NOTIFICATION_RULES.get(event, {})
    extra = extra or {}

    # -------------------------
    # ADMIN IN-APP NOTIFICATION
    # -------------------------
    if notify_admin and rules.get(Channel.INAPP_ADMIN):
        create_notification(
            session=session,
            recipient_role=RecipientRole.admin,
            user=None,
            trigger_source=event.value,
            related_id=request.id,
            title=extra.get("admin_title", "Cancellation Update"),
            content=extra.get("admin_content", ""),
        )

    # -------------------------
    # USER EMAIL
    # -------------------------
    if notify_user and rules.get(Channel.EMAIL_USER) and user and event in EMAIL_TEMPLATES:
        template, subject = EMAIL_TEMPLATES[event]
        try:
            send_user_email(template=template, subject=subject, user=user, **extra)
        except Exception:
            logger.exception(f"User email failed for cancellation request {request.id}")

    # -------------------------
    # ADMIN EMAIL
    # -------------------------
    if notify_admin and rules.get(Channel.EMAIL_ADMIN):
        try:
            send_admin_email(
                template=ADMIN_EMAIL_TEMPLATE,
                subject=f"Cancellation #{request.id} needs manual handling",
                **extra,
            )
        except Exception:
            logger.exception(f"Admin email failed for cancellation request {request.id}")
