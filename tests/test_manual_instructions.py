from decimal import Decimal

from subtrack.models.cancellation_provider import CancellationProvider
from subtrack.models.subscription import Subscription
from subtrack.services.manual_instructions import (
    GENERIC_STEPS,
    build_manual_instructions,
    normalize_instructions,
)


def test_plain_string_becomes_steps():
    instructions = normalize_instructions("- Open settings\n- Tap Subscriptions\n\n- Cancel", "Apple Music")

    assert instructions.provider_name == "Apple Music"
    assert [s.title for s in instructions.steps] == ["Open settings", "Tap Subscriptions", "Cancel"]


def test_step_dicts_keep_warnings_and_tips_as_notes():
    raw = [
        {"title": "Sign in", "description": "Go to account.adobe.com", "warning": "Early termination fees apply"},
        {"title": "Cancel Plan", "description": "Select 'Cancel Plan'", "tip": "Take screenshots"},
    ]
    instructions = normalize_instructions(raw, "Adobe")

    assert instructions.steps[0].note == "Early termination fees apply"
    assert instructions.steps[1].note == "Take screenshots"
    assert instructions.steps[1].description == "Select 'Cancel Plan'"


def test_nested_instructions_block():
    raw = {
        "instructions": {
            "steps": ["Log in", "Open billing"],
            "contactInfo": {"website": "https://example.test", "phone": "555-0100"},
        }
    }
    instructions = normalize_instructions(raw, "Example")

    assert [s.title for s in instructions.steps] == ["Log in", "Open billing"]
    assert instructions.contact.website == "https://example.test"
    assert instructions.contact.phone == "555-0100"


def test_modal_shape_with_provider_object():
    raw = {
        "provider": {"name": "Hulu", "difficulty": "easy"},
        "instructions": ["Log in to Hulu", "Go to Account"],
        "contactInfo": {"email": "help@hulu.test"},
        "estimatedTime": "5 minutes",
        "tips": ["Cancel before renewal"],
    }
    instructions = normalize_instructions(raw)

    assert instructions.provider_name == "Hulu"
    assert instructions.difficulty == "easy"
    assert instructions.estimated_time == "5 minutes"
    assert len(instructions.steps) == 2
    assert instructions.contact.email == "help@hulu.test"
    assert instructions.tips == ["Cancel before renewal"]


def test_flat_shape_with_specific_steps_and_alternative():
    raw = {
        "service": "Gym",
        "steps": [{"title": "Visit front desk", "description": "Bring ID"}],
        "specificSteps": ["Sign the cancellation form"],
        "alternativeMethod": {"description": "Send a certified letter", "contactInfo": "PO Box 1"},
        "phoneNumber": "555-0199",
        "chatUrl": "https://chat.gym.test",
        "difficulty": "impossible",
    }
    instructions = normalize_instructions(raw)

    assert instructions.provider_name == "Gym"
    assert [s.title for s in instructions.steps] == [
        "Visit front desk", "Sign the cancellation form", "Alternative method",
    ]
    assert instructions.contact.phone == "555-0199"
    assert instructions.contact.chat_url == "https://chat.gym.test"
    assert instructions.difficulty is None


def test_canonical_shape_survives_storage():
    provider = CancellationProvider(
        name="Netflix",
        normalized_name="netflix",
        difficulty="easy",
        instructions=[{"title": "Sign in", "description": "netflix.com", "tip": "Use a browser"}],
    )
    built = build_manual_instructions(None, provider)

    assert normalize_instructions(built.model_dump(mode="json")) == built


def test_generic_fallback_is_never_empty():
    subscription = Subscription(user_id=1, name="Corner Gym", amount=Decimal("39.00"))
    instructions = build_manual_instructions(subscription, None)

    assert instructions.provider_name == "Corner Gym"
    assert [s.title for s in instructions.steps] == GENERIC_STEPS
    assert instructions.tips


def test_provider_details_fill_contact_and_estimate():
    provider = CancellationProvider(
        name="Amazon Prime",
        normalized_name="amazonprime",
        login_url="https://amazon.test/prime",
        phone_number="1-888-280-4331",
        email="prime@amazon.test",
        difficulty="medium",
        average_time=10,
        instructions=[{"title": "Sign in to Amazon", "description": "Go to amazon.com"}],
    )
    instructions = build_manual_instructions(None, provider)

    assert instructions.steps[0].title == "Sign in to Amazon"
    assert instructions.contact.website == "https://amazon.test/prime"
    assert instructions.contact.phone == "1-888-280-4331"
    assert instructions.difficulty == "medium"
    assert instructions.estimated_time == "10 minutes"


def test_numeric_fields_from_older_records_become_text():
    raw = {
        "steps": ["Visit the front desk", 2],
        "estimatedTime": 3,
        "tips": "Bring a photo ID",
        "difficulty": 1,
        "contactInfo": {"phone": 5550100, "hours": 9},
    }

    instructions = normalize_instructions(raw, "Corner Gym")

    assert [s.title for s in instructions.steps] == ["Visit the front desk", "2"]
    assert instructions.estimated_time == "3 minutes"
    assert instructions.tips == ["Bring a photo ID"]
    assert instructions.difficulty is None
    assert instructions.contact.phone == "5550100"
    assert instructions.contact.hours == "9"


def test_step_dict_with_numeric_title():
    instructions = normalize_instructions([{"title": 1, "description": 2.5, "url": None}])

    assert instructions.steps[0].title == "1"
    assert instructions.steps[0].description == "2.5"
    assert instructions.steps[0].url is None
