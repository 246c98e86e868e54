from datetime import date as date_type, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from agenda.models.appointment import AppointmentKind, AppointmentStatus


class BoardAction(str, Enum):
    CREATE_BOOKING = "create_booking"
    CREATE_BLOCK = "create_block"
    RESCHEDULE = "reschedule"
    CANCEL = "cancel"
    COMPLETE = "complete"
    DELETE = "delete"
    MOVE_HERE = "move_here"


class BoardEntry(BaseModel):
    appointment_id: int
    kind: AppointmentKind
    status: AppointmentStatus
    is_manual: bool
    professional_id: Optional[int] = None
    professional_name: Optional[str] = None
    customer_name: Optional[str] = None
    label: Optional[str] = None
    service_names: List[str] = Field(default_factory=list)
    start: datetime
    end: datetime
    actions: List[BoardAction] = Field(default_factory=list)


class BoardCell(BaseModel):
    time: datetime
    end: datetime
    entries: List[BoardEntry] = Field(default_factory=list)
    occupancy: int = 0
    actions: List[BoardAction] = Field(default_factory=list)


class BoardView(BaseModel):
    business_id: int
    date: date_type
    professional_id: Optional[int] = None
    is_open: bool
    holiday_name: Optional[str] = None
    slot_interval_minutes: int
    cells: List[BoardCell] = Field(default_factory=list)
    entries: List[BoardEntry] = Field(default_factory=list)
    reschedule_pending_id: Optional[int] = None
    refreshed_at: datetime


class BoardSlotSelection(BaseModel):
    time: datetime
