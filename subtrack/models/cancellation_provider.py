import re
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON
from datetime import datetime
from typing import Optional, Any


def normalize_provider_name(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", (name or "").lower())


class CancellationProvider(SQLModel, table=True):
    """Per-provider cancellation capabilities and manual fallback data."""

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    normalized_name: str = Field(index=True, unique=True)

    type: str = Field(default="manual")  # api, web_automation, manual
    api_endpoint: Optional[str] = None
    requires_auth: bool = Field(default=False)
    login_url: Optional[str] = None

    logo: Optional[str] = None
    category: Optional[str] = None
    difficulty: Optional[str] = None  # easy, medium, hard
    average_time: Optional[int] = None  # minutes
    success_rate: Optional[float] = None
    supports_refunds: bool = Field(default=False)

    phone_number: Optional[str] = None
    email: Optional[str] = None
    chat_url: Optional[str] = None

    # legacy shapes accepted, normalized when instructions are built
    instructions: Optional[Any] = Field(default=None, sa_column=Column(JSON))

    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
