from pydantic import BaseModel, Field
from typing import List, Literal, Optional
from datetime import datetime, date
from decimal import Decimal

Priority = Literal["low", "normal", "high"]


class CancellationRequestCreate(BaseModel):
    subscription_id: int
    priority: Priority = "normal"
    notes: Optional[str] = None


class ManualConfirmationRequest(BaseModel):
    was_successful: bool
    confirmation_code: Optional[str] = None
    effective_date: Optional[date] = None
    refund_amount: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = None


# ---------- MANUAL INSTRUCTIONS (canonical shape) ----------

class ManualStep(BaseModel):
    title: str
    description: str = ""
    url: Optional[str] = None
    note: Optional[str] = None


class ContactInfo(BaseModel):
    website: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    chat_url: Optional[str] = None
    hours: Optional[str] = None


class ManualInstructions(BaseModel):
    provider_name: str
    difficulty: Optional[Literal["easy", "medium", "hard"]] = None
    estimated_time: Optional[str] = None
    steps: List[ManualStep] = []
    tips: List[str] = []
    contact: ContactInfo = Field(default_factory=ContactInfo)


# ---------- PROVIDER CONTRACT ----------

class AttemptOutcome(BaseModel):
    """What a provider automation reports back for one attempt."""
    success: bool
    confirmation_code: Optional[str] = None
    effective_date: Optional[date] = None
    refund_amount: Optional[Decimal] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class ProviderWebhookPayload(BaseModel):
    status: Literal["completed", "failed", "refunded"]
    request_id: Optional[int] = None
    confirmation_code: Optional[str] = None
    effective_date: Optional[date] = None
    refund_amount: Optional[Decimal] = None
    error: Optional[str] = None


# ---------- RESPONSES ----------

class CancellationResult(BaseModel):
    """Status object returned for every orchestrator outcome."""
    request_id: int
    success: bool
    status: str
    method: str
    attempts: int
    max_attempts: int
    next_retry_at: Optional[datetime] = None
    confirmation_code: Optional[str] = None
    effective_date: Optional[date] = None
    refund_amount: Optional[Decimal] = None
    manual_instructions: Optional[ManualInstructions] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    message: str = ""


class CancellationHistoryItem(BaseModel):
    request_id: int
    subscription_id: int
    subscription_name: Optional[str] = None
    subscription_amount: Optional[Decimal] = None
    provider_name: Optional[str] = None
    provider_logo: Optional[str] = None
    status: str
    method: str
    confirmation_code: Optional[str] = None
    effective_date: Optional[date] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class ProgressEvent(BaseModel):
    request_id: int
    sequence: int
    status: str
    message: str
    progress: int
    created_at: datetime


class CancellationStatsResponse(BaseModel):
    pending_requests: int
    requires_manual: int
    awaiting_retry: int
    completed_today: int
    refunds_this_month: Decimal


class ProviderInfo(BaseModel):
    id: int
    name: str
    type: str
    logo: Optional[str] = None
    category: Optional[str] = None
    difficulty: Optional[str] = None
    average_time: Optional[int] = None
    success_rate: Optional[float] = None
    supports_refunds: bool = False
    contact: ContactInfo = Field(default_factory=ContactInfo)


class CancellationOptions(BaseModel):
    """What cancelling a given subscription would look like right now."""
    subscription_id: int
    can_cancel: bool
    blocked_reason: Optional[str] = None
    open_request_id: Optional[int] = None
    methods: List[str]
    recommended: str
    provider: Optional[ProviderInfo] = None


class MethodBreakdown(BaseModel):
    method: str
    count: int
    completed: int


class CancellationAnalytics(BaseModel):
    total: int
    completed: int
    failed: int
    in_progress: int
    requires_manual: int
    success_rate: float
    method_breakdown: List[MethodBreakdown]
    recent: List[CancellationHistoryItem]
    total_savings: Decimal
