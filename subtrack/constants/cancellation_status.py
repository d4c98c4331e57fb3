class CancellationStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REQUIRES_MANUAL = "requires_manual"
    CANCELLED = "cancelled"


class CancellationMethod:
    API = "api"
    WEB_AUTOMATION = "web_automation"
    MANUAL = "manual"


# preference order for method selection
METHOD_PREFERENCE = [
    CancellationMethod.API,
    CancellationMethod.WEB_AUTOMATION,
    CancellationMethod.MANUAL,
]

PRIORITIES = ["low", "normal", "high"]

ALLOWED_TRANSITIONS = {
    "pending": ["processing", "cancelled"],
    "processing": ["completed", "failed", "requires_manual"],
    "failed": ["processing", "completed", "cancelled"],  # completed: late provider confirmation
    "requires_manual": ["completed", "cancelled"],
    "completed": [],
    "cancelled": [],
}

# completed_at is set exactly for these
TERMINAL_STATUSES = {"completed", "failed", "cancelled"}

# never left once reached
FINAL_STATUSES = {"completed", "cancelled"}

# a subscription may only have one request in these at a time
OPEN_STATUSES = {"pending", "processing", "failed", "requires_manual"}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, [])
