from sqlmodel import SQLModel, Field
from sqlalchemy import CheckConstraint, Column, JSON
from datetime import datetime, date
from typing import Optional
from decimal import Decimal


class CancellationRequest(SQLModel, table=True):
    __table_args__ = (
        CheckConstraint("attempts <= max_attempts", name="ck_cancellationrequest_attempts"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", ondelete="CASCADE", index=True)
    subscription_id: int = Field(index=True)
    provider_id: Optional[int] = Field(default=None, foreign_key="cancellationprovider.id")

    status: str = Field(default="pending", index=True)
    method: str = Field(default="manual")  # api, web_automation, manual
    priority: str = Field(default="normal")  # low, normal, high

    # Attempt bookkeeping
    attempts: int = Field(default=0)
    max_attempts: int = Field(default=3)
    last_attempt_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = Field(default=None, index=True)

    # Outcome
    confirmation_code: Optional[str] = None
    refund_amount: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=2)
    effective_date: Optional[date] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    automation_log: list = Field(default_factory=list, sa_column=Column(JSON))
    manual_instructions: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    user_confirmed: bool = Field(default=False)
    user_notes: Optional[str] = None

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
