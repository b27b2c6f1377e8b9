from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class RuleType(str, Enum):
    PAYMENT = "payment"
    SHIPPING = "shipping"
    ABANDONED_CHECKOUT = "abandoned_checkout"
    POST_SALE = "post_sale"
    LEGACY = "legacy"


class EventStatus(str, Enum):
    NEW = "new"
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    IGNORED = "ignored"


class NotificationStatus(str, Enum):
    SCHEDULED = "scheduled"
    SENDING = "sending"
    RETRYING = "retrying"
    SENT = "sent"
    FAILED = "failed"


class AttemptStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class DedupeScope(str, Enum):
    NONE = "none"
    ORDER = "order"
    CUSTOMER = "customer"
    CART = "cart"
    CHECKOUT_SESSION = "checkout_session"


class BatchRequest(BaseModel):
    limit: int = Field(default=50, ge=1, le=500)
    tenant_id: Optional[str] = None


class EventBatchStats(BaseModel):
    events_fetched: int = 0
    events_processed: int = 0
    events_ignored: int = 0
    rules_matched: int = 0
    notifications_created: int = 0
    ledger_conflicts: int = 0
    errors: int = 0
    unmapped_statuses: int = 0


class DeliveryBatchStats(BaseModel):
    claimed_count: int = 0
    processed_success: int = 0
    processed_error: int = 0
    scheduled_retries: int = 0
    failed_final: int = 0
    unstuck_count: int = 0


class NotificationAttemptOut(BaseModel):
    attempt_no: int
    status: AttemptStatus
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class NotificationOut(BaseModel):
    id: str
    tenant_id: str
    event_id: Optional[str] = None
    rule_id: Optional[str] = None
    channel: str
    recipient: str
    status: NotificationStatus
    scheduled_for: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None
    attempt_count: int
    max_attempts: int
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    sent_at: Optional[datetime] = None
    rendered_payload: Dict[str, Any] = Field(default_factory=dict)
    attempts: List[NotificationAttemptOut] = Field(default_factory=list)
