"""
Manual cancellation instructions.

Provider configuration and older records carry instructions in several
shapes (a bare string, a list of strings, step dicts, nested
``instructions``/``contactInfo`` blocks). Everything is resolved into
``ManualInstructions`` once, before it is persisted.
"""
from typing import Any, List, Optional

from subtrack.models.cancellation_provider import CancellationProvider
from subtrack.models.subscription import Subscription
from subtrack.schemas.cancellation_schemas import (
    ContactInfo,
    ManualInstructions,
    ManualStep,
)

GENERIC_STEPS = [
    "Log into your account",
    "Navigate to account settings or billing",
    "Look for subscription management or cancellation options",
    "Follow the cancellation process",
    "Save any confirmation codes or emails",
]

GENERIC_TIPS = [
    "Cancel before your next billing date to avoid charges",
    "Take screenshots of confirmation pages",
    "Check for retention offers if you want to keep the service",
]

DIFFICULTIES = {"easy", "medium", "hard"}


def _text(value: Any) -> Optional[str]:
    """Scalar as text; containers and blanks give None."""
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _minutes(value: Any) -> Optional[str]:
    # older records store the estimate as a bare number of minutes
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return f"{value:g} minutes"
    return _text(value)


def _step_from(item: Any) -> Optional[ManualStep]:
    if isinstance(item, dict):
        title = _text(item.get("title") or item.get("step") or item.get("action"))
        description = _text(item.get("description") or item.get("details")) or ""
        if not title and not description:
            return None
        notes = [n for n in (_text(item.get(key)) for key in ("note", "warning", "tip")) if n]
        return ManualStep(
            title=title or description,
            description=description if title else "",
            url=_text(item.get("url")),
            note=" ".join(notes) or None,
        )

    title = _text(item)
    return ManualStep(title=title) if title else None


def _steps_from(raw: Any) -> List[ManualStep]:
    if raw is None:
        return []
    if isinstance(raw, str):
        lines = [line.strip(" -*\t") for line in raw.splitlines()]
        raw = [line for line in lines if line]
    if not isinstance(raw, list):
        return []
    return [step for step in (_step_from(item) for item in raw) if step]


def _contact_from(raw: dict) -> ContactInfo:
    nested = raw.get("contactInfo") or raw.get("contact") or {}
    if not isinstance(nested, dict):
        nested = {}

    def pick(*keys):
        for key in keys:
            value = _text(nested.get(key)) or _text(raw.get(key))
            if value:
                return value
        return None

    return ContactInfo(
        website=pick("website"),
        phone=pick("phone", "phoneNumber"),
        email=pick("email"),
        chat_url=pick("chat_url", "chatUrl"),
        hours=pick("hours"),
    )


def normalize_instructions(raw: Any, provider_name: str = "Unknown provider") -> ManualInstructions:
    """Collapse any stored instruction shape into ManualInstructions."""
    if isinstance(raw, ManualInstructions):
        return raw

    if raw is None or isinstance(raw, (str, list)):
        return ManualInstructions(provider_name=provider_name, steps=_steps_from(raw))

    if not isinstance(raw, dict):
        return ManualInstructions(provider_name=provider_name)

    # {"instructions": {"steps": [...], "contactInfo": {...}}}
    nested = raw.get("instructions")
    if isinstance(nested, dict):
        merged = {**raw, **nested}
        merged.pop("instructions", None)
        return normalize_instructions(merged, provider_name)

    provider = raw.get("provider") or raw.get("provider_name") or raw.get("service")
    if isinstance(provider, dict):
        difficulty = raw.get("difficulty") or provider.get("difficulty")
        provider = provider.get("name")
    else:
        difficulty = raw.get("difficulty")
    difficulty = (_text(difficulty) or "").lower()

    tips = raw.get("tips") or []
    if not isinstance(tips, list):
        tips = [tips]

    steps = _steps_from(raw.get("steps"))
    steps += _steps_from(raw.get("specificSteps"))
    if isinstance(nested, (list, str)):
        steps += _steps_from(nested)

    alternative = raw.get("alternativeMethod")
    if isinstance(alternative, dict) and alternative.get("description"):
        steps.append(ManualStep(
            title="Alternative method",
            description=_text(alternative["description"]) or "",
            note=_text(alternative.get("contactInfo")),
        ))

    return ManualInstructions(
        provider_name=_text(provider) or provider_name,
        difficulty=difficulty if difficulty in DIFFICULTIES else None,
        estimated_time=_minutes(raw.get("estimated_time") or raw.get("estimatedTime")),
        steps=steps,
        tips=[tip for tip in (_text(t) for t in tips) if tip],
        contact=_contact_from(raw),
    )


def build_manual_instructions(
    subscription: Optional[Subscription],
    provider: Optional[CancellationProvider],
) -> ManualInstructions:
    """Provider-specific steps when known, generic ones otherwise. Never empty."""
    if provider:
        name = provider.name
    else:
        name = subscription.name if subscription else "your subscription"
    instructions = normalize_instructions(provider.instructions if provider else None, name)

    if not instructions.steps:
        instructions.steps = [ManualStep(title=step) for step in GENERIC_STEPS]
    if not instructions.tips:
        instructions.tips = list(GENERIC_TIPS)

    if provider:
        contact = instructions.contact
        contact.website = contact.website or provider.login_url
        contact.phone = contact.phone or provider.phone_number
        contact.email = contact.email or provider.email
        contact.chat_url = contact.chat_url or provider.chat_url
        if not instructions.difficulty and provider.difficulty in DIFFICULTIES:
            instructions.difficulty = provider.difficulty
        if not instructions.estimated_time:
            instructions.estimated_time = (
                f"{provider.average_time} minutes" if provider.average_time else "5-15 minutes"
            )

    return instructions
