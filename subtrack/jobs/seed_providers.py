import logging

from sqlmodel import Session, select

from subtrack.database import engine
from subtrack.models.cancellation_provider import CancellationProvider, normalize_provider_name

logger = logging.getLogger(__name__)

PROVIDERS = [
    {
        "name": "Netflix",
        "type": "api",
        "api_endpoint": "https://api.netflix.com/v1/cancel",
        "requires_auth": True,
        "category": "streaming",
        "difficulty": "easy",
        "average_time": 5,
        "success_rate": 0.95,
        "phone_number": "1-866-579-7172",
        "email": "support@netflix.com",
        "instructions": [
            {"title": "Sign in to Netflix", "description": "Go to netflix.com and sign in to your account"},
            {"title": "Go to Account Settings", "description": "Click on your profile icon and select 'Account'"},
            {"title": "Cancel Membership", "description": "Click 'Cancel Membership' and follow the prompts"},
        ],
    },
    {
        "name": "Spotify",
        "type": "api",
        "api_endpoint": "https://api.spotify.com/v1/subscription/cancel",
        "requires_auth": True,
        "category": "streaming",
        "difficulty": "easy",
        "average_time": 3,
        "success_rate": 0.98,
        "supports_refunds": True,
        "instructions": [
            {"title": "Log in to Spotify", "description": "Visit spotify.com/account and log in"},
            {"title": "Go to Subscription", "description": "Navigate to your subscription page"},
            {"title": "Cancel Premium", "description": "Click 'Cancel Premium' and confirm"},
        ],
    },
    {
        "name": "Adobe Creative Cloud",
        "normalized_name": "adobe",
        "type": "web_automation",
        "login_url": "https://account.adobe.com",
        "category": "software",
        "difficulty": "hard",
        "average_time": 20,
        "success_rate": 0.75,
        "phone_number": "1-800-833-6687",
        "instructions": [
            {
                "title": "Sign in to Adobe Account",
                "description": "Go to account.adobe.com and sign in",
                "warning": "Adobe may charge early termination fees for annual plans",
            },
            {"title": "Navigate to Plans", "description": "Click on 'Plans' in your account dashboard"},
            {"title": "Manage Plan", "description": "Find your subscription and click 'Manage Plan'"},
            {
                "title": "Cancel Plan",
                "description": "Select 'Cancel Plan' and follow the cancellation flow",
                "tip": "Take screenshots of the cancellation confirmation",
            },
        ],
    },
    {
        "name": "Amazon Prime",
        "type": "api",
        "api_endpoint": "https://api.amazon.com/prime/cancel",
        "requires_auth": True,
        "category": "shopping",
        "difficulty": "medium",
        "average_time": 10,
        "success_rate": 0.85,
        "supports_refunds": True,
        "phone_number": "1-888-280-4331",
        "email": "prime@amazon.com",
        "instructions": [
            {"title": "Sign in to Amazon", "description": "Go to amazon.com and sign in to your account"},
            {"title": "Go to Prime Membership", "description": "Navigate to 'Accounts & Lists' > 'Your Prime Membership'"},
            {
                "title": "End Membership",
                "description": "Click 'End Membership' and follow the prompts",
                "tip": "You may be offered to pause instead of cancel",
            },
        ],
    },
    {
        "name": "Apple Music",
        "type": "manual",
        "category": "streaming",
        "difficulty": "medium",
        "average_time": 15,
        "success_rate": 0.80,
        "phone_number": "1-800-APL-CARE",
        "instructions": [
            {
                "title": "Open Settings on iPhone/iPad",
                "description": "Go to Settings > [Your Name] > Subscriptions",
                "warning": "Must be done from an Apple device",
            },
            {"title": "Select Apple Music", "description": "Tap on Apple Music from your subscriptions list"},
            {"title": "Cancel Subscription", "description": "Tap 'Cancel Subscription' and confirm"},
        ],
    },
    {
        "name": "Hulu",
        "type": "web_automation",
        "login_url": "https://secure.hulu.com/account",
        "category": "streaming",
        "difficulty": "easy",
        "average_time": 5,
        "success_rate": 0.92,
        "phone_number": "1-888-265-6650",
        "instructions": [
            {"title": "Log in to Hulu", "description": "Visit hulu.com and sign in to your account"},
            {"title": "Go to Account", "description": "Click on your profile and select 'Account'"},
            {"title": "Cancel Subscription", "description": "Under 'Your Subscription', click 'Cancel' and follow prompts"},
        ],
    },
]


def seed_cancellation_providers() -> int:
    """Insert or update the built-in provider table. Returns rows touched."""
    touched = 0
    with Session(engine) as session:
        for data in PROVIDERS:
            data = dict(data)
            normalized = data.pop("normalized_name", None) or normalize_provider_name(data["name"])

            provider = session.exec(
                select(CancellationProvider).where(CancellationProvider.normalized_name == normalized)
            ).first()

            if provider is None:
                provider = CancellationProvider(normalized_name=normalized, **data)
            else:
                for key, value in data.items():
                    setattr(provider, key, value)

            session.add(provider)
            touched += 1

        session.commit()

    logger.info(f"Seeded {touched} cancellation providers")
    return touched


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    seed_cancellation_providers()
