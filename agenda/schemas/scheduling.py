from datetime import date as date_type, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class SlotUnavailableReason(str, Enum):
    NO_ELIGIBLE_PROFESSIONAL = "no_eligible_professional"
    COMPANY_BLOCK = "company_block"
    ALL_PROFESSIONALS_BUSY = "all_professionals_busy"
    OUTSIDE_BUSINESS_HOURS = "outside_business_hours"
    EXCEEDS_BUSINESS_HOURS = "exceeds_business_hours"
    DURING_BREAK = "during_break"
    IN_THE_PAST = "in_the_past"


class AvailabilitySlot(BaseModel):
    start: datetime
    end: datetime
    window_minutes: int
    available: bool
    busy_professional_ids: List[int] = Field(default_factory=list)
    free_professional_ids: List[int] = Field(default_factory=list)
    eligible_count: int = 0
    reasons: List[SlotUnavailableReason] = Field(default_factory=list)

    @property
    def blocked_for_everyone(self) -> bool:
        """True when the slot is unavailable for reasons other than staff load."""
        return any(
            r != SlotUnavailableReason.ALL_PROFESSIONALS_BUSY for r in self.reasons
        )


class AvailabilityResponse(BaseModel):
    business_id: int
    date: date_type
    window_minutes: int
    service_ids: List[int] = Field(default_factory=list)
    professional_id: Optional[int] = None
    eligible_professional_ids: List[int] = Field(default_factory=list)
    slots: List[AvailabilitySlot] = Field(default_factory=list)


class ProfessionalOption(BaseModel):
    professional_id: int
    name: str
    role: Optional[str] = None
    avatar_url: Optional[str] = None
    busy: bool
    selectable: bool


class BusinessDay(BaseModel):
    date: date_type
    is_open: bool
    opens_at: Optional[datetime] = None
    closes_at: Optional[datetime] = None
    break_start: Optional[datetime] = None
    break_end: Optional[datetime] = None
    holiday_name: Optional[str] = None
