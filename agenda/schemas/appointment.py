from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

# Import enums from the model to avoid duplication
from agenda.models.appointment import AppointmentKind, AppointmentStatus
from agenda.models.service import LocationMode


class AppointmentCreate(BaseModel):
    """Customer-flow booking: a cart performed by one professional."""

    business_id: int
    service_ids: List[int] = Field(..., min_length=1)
    professional_id: int
    scheduled_at: datetime
    customer_ref: Optional[str] = None
    customer_name: Optional[str] = None
    location_mode: LocationMode = LocationMode.IN_PERSON
    address_ref: Optional[str] = None


class ManualBookingCreate(BaseModel):
    """Entry created by the business from the schedule board."""

    business_id: int
    scheduled_at: datetime
    service_ids: List[int] = Field(default_factory=list)
    professional_id: Optional[int] = None
    customer_ref: Optional[str] = None
    customer_name: Optional[str] = None
    label: Optional[str] = Field(None, max_length=255)
    duration_minutes: Optional[int] = Field(None, gt=0)


class BlockCreate(BaseModel):
    business_id: int
    scheduled_at: datetime
    duration_minutes: Optional[int] = Field(None, gt=0)
    reason: Optional[str] = None


class AppointmentReschedule(BaseModel):
    new_scheduled_at: datetime


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus


class AppointmentServiceLine(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    service_id: int
    position: int
    service_name: str
    price: Decimal
    duration_minutes: int
    buffer_minutes: int


class Appointment(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    uuid: UUID
    business_id: int
    professional_id: Optional[int] = None
    customer_ref: Optional[str] = None
    customer_name: Optional[str] = None

    scheduled_at: datetime
    end_at: datetime
    duration_minutes: int

    kind: AppointmentKind
    is_manual: bool
    label: Optional[str] = None
    reason: Optional[str] = None

    location_mode: Optional[LocationMode] = None
    address_ref: Optional[str] = None

    status: AppointmentStatus
    previous_status: Optional[AppointmentStatus] = None
    status_changed_at: Optional[datetime] = None

    total_price: Decimal
    rescheduled_from: Optional[datetime] = None
    reschedule_count: int = 0

    service_lines: List[AppointmentServiceLine] = Field(default_factory=list)


class AppointmentList(BaseModel):
    appointments: List[Appointment]
    total: int
