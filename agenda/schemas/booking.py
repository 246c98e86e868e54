from datetime import date as date_type, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from agenda.models.service import LocationMode


class BookingStep(str, Enum):
    LOCATION_SELECT = "location_select"
    DATETIME_SELECT = "datetime_select"
    PROFESSIONAL_SELECT = "professional_select"
    REVIEW = "review"
    SUBMITTED = "submitted"


class BookingMode(str, Enum):
    SCHEDULED = "scheduled"
    IMMEDIATE = "immediate"


class BookingSession(BaseModel):
    """Everything chosen so far in one booking attempt.

    The session is a plain value: each coordinator transition returns a new
    copy and nothing is stored server-side.
    """

    business_id: int
    service_ids: List[int] = Field(..., min_length=1)
    customer_ref: Optional[str] = None
    customer_name: Optional[str] = None
    step: BookingStep = BookingStep.LOCATION_SELECT

    booking_mode: Optional[BookingMode] = None
    location_mode: Optional[LocationMode] = None
    address_id: Optional[int] = None

    date: Optional[date_type] = None
    scheduled_at: Optional[datetime] = None
    professional_id: Optional[int] = None

    appointment_id: Optional[int] = None


class LocationOptions(BaseModel):
    location_modes: List[LocationMode] = Field(default_factory=list)
    booking_modes: List[BookingMode] = Field(default_factory=list)
    immediate_only: bool = False
    can_advance: bool = False


class ReviewLine(BaseModel):
    service_id: int
    name: str
    price: Decimal
    duration_minutes: int
    buffer_minutes: int


class BookingReview(BaseModel):
    session: BookingSession
    lines: List[ReviewLine]
    booking_mode: BookingMode
    location_mode: LocationMode
    address_label: Optional[str] = None
    scheduled_at: datetime
    ends_at: datetime
    window_minutes: int
    professional_id: int
    professional_name: str
    total_price: Decimal


class CheckoutRequest(BaseModel):
    """Finalized booking handed to the order/checkout collaborator."""

    business_id: int
    service_ids: List[int]
    professional_id: int
    scheduled_at: datetime
    location_mode: LocationMode
    address_ref: Optional[str] = None
    customer_ref: Optional[str] = None
    customer_name: Optional[str] = None
    total_price: Decimal


# Request bodies for the stateless booking endpoints
class StartBookingRequest(BaseModel):
    business_id: int
    service_ids: List[int] = Field(..., min_length=1)
    customer_ref: Optional[str] = None
    customer_name: Optional[str] = None


class SessionRequest(BaseModel):
    session: BookingSession


class SelectLocationRequest(SessionRequest):
    location_mode: Optional[LocationMode] = None
    booking_mode: Optional[BookingMode] = None
    address_id: Optional[int] = None


class TimeOptionsRequest(SessionRequest):
    date: date_type


class SelectTimeRequest(SessionRequest):
    scheduled_at: Optional[datetime] = None


class SelectProfessionalRequest(SessionRequest):
    professional_id: Optional[int] = None
