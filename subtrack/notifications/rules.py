from subtrack.notifications.events import CancellationEventType
from subtrack.notifications.channels import Channel


NOTIFICATION_RULES = {

    CancellationEventType.REQUESTED: {
        Channel.INAPP_ADMIN: True,
    },

    CancellationEventType.COMPLETED: {
        Channel.EMAIL_USER: True,
        Channel.INAPP_ADMIN: True,
    },

    CancellationEventType.REQUIRES_MANUAL: {
        Channel.EMAIL_USER: True,
        Channel.INAPP_ADMIN: True,
        Channel.EMAIL_ADMIN: True,
    },

    CancellationEventType.CANCELLED: {
        Channel.INAPP_ADMIN: True,
    },

}

EMAIL_TEMPLATES = {
    CancellationEventType.COMPLETED: (
        "user_emails/cancellation_completed.html",
        "Your subscription has been cancelled",
    ),
    CancellationEventType.REQUIRES_MANUAL: (
        "user_emails/cancellation_requires_manual.html",
        "Action needed to finish your cancellation",
    ),
}

ADMIN_EMAIL_TEMPLATE = "admin_emails/cancellation_escalated.html"
