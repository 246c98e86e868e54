from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class LiveEventType(str, Enum):
    APPOINTMENT_CREATED = "appointment_created"
    APPOINTMENT_STATUS_CHANGED = "appointment_status_changed"
    APPOINTMENT_RESCHEDULED = "appointment_rescheduled"
    APPOINTMENT_DELETED = "appointment_deleted"
    ORDER_STATUS_CHANGED = "order_status_changed"
    REVIEW_CREATED = "review_created"


class LiveEvent(BaseModel):
    """Change notification. Payloads are hints only; receivers re-fetch."""

    type: LiveEventType
    business_id: Optional[int] = None
    customer_ref: Optional[str] = None
    appointment_id: Optional[int] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
