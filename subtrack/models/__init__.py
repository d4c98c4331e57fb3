from subtrack.models.user import User
from subtrack.models.cancellation_provider import CancellationProvider
from subtrack.models.subscription import Subscription
from subtrack.models.cancellation import CancellationRequest
from subtrack.models.cancellation_event import CancellationEvent
from subtrack.models.notifications import Notification

# add ALL models here
