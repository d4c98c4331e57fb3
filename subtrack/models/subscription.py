from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON
from datetime import datetime
from typing import Optional
from decimal import Decimal


class SubscriptionStatus:
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class Subscription(SQLModel, table=True):
    """A detected or manually entered recurring payment."""

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", ondelete="CASCADE", index=True)

    name: str
    amount: Decimal = Field(default=0, max_digits=10, decimal_places=2)
    currency: str = Field(default="USD")
    frequency: str = Field(default="monthly")  # weekly, monthly, yearly

    status: str = Field(default=SubscriptionStatus.ACTIVE)
    is_active: bool = Field(default=True)

    provider_id: Optional[int] = Field(default=None, foreign_key="cancellationprovider.id")
    cancellation_info: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
