from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint


class CancellationEvent(SQLModel, table=True):
    __tablename__ = "cancellation_event"
    __table_args__ = (UniqueConstraint("request_id", "sequence"),)

    id: Optional[int] = Field(default=None, primary_key=True)

    request_id: int = Field(foreign_key="cancellationrequest.id", ondelete="CASCADE", index=True)
    sequence: int

    status: str
    message: str
    progress: int = Field(default=0)

    created_at: datetime = Field(default_factory=datetime.utcnow)
