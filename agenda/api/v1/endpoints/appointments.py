from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.api.deps.business import (
    BusinessContext,
    get_broker,
    get_business_context,
    get_locks,
)
from agenda.api.deps.database import get_db
from agenda.core.locks import CalendarLockProvider
from agenda.schemas.appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentList,
    AppointmentReschedule,
    AppointmentStatusUpdate,
    BlockCreate,
    ManualBookingCreate,
)
from agenda.services.calendar_store import CalendarStore
from agenda.services.events import EventBroker

router = APIRouter()
blocks_router = APIRouter()


def get_calendar_store(
    db: AsyncSession = Depends(get_db),
    locks: CalendarLockProvider = Depends(get_locks),
    broker: EventBroker = Depends(get_broker),
) -> CalendarStore:
    return CalendarStore(db, lock_provider=locks, broker=broker)


@router.get("", response_model=AppointmentList)
async def list_appointments(
    date: date = Query(..., description="Business-local date"),
    include_terminal: bool = Query(True, description="Include completed/cancelled"),
    context: BusinessContext = Depends(get_business_context),
    store: CalendarStore = Depends(get_calendar_store),
):
    """Appointments and blocks of one business day."""
    appointments = await store.list_day(
        context.business_id, date, include_terminal=include_terminal
    )
    return AppointmentList(
        appointments=[Appointment.model_validate(a) for a in appointments],
        total=len(appointments),
    )


@router.post("", response_model=Appointment, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    appointment_data: AppointmentCreate,
    store: CalendarStore = Depends(get_calendar_store),
):
    """
    Create an appointment for a cart and professional.

    The slot is re-validated under the calendar lock; a slot taken since the
    last availability query answers 409.
    """
    return await store.create_appointment(appointment_data)


@router.post(
    "/manual", response_model=Appointment, status_code=status.HTTP_201_CREATED
)
async def create_manual_booking(
    booking_data: ManualBookingCreate,
    store: CalendarStore = Depends(get_calendar_store),
):
    """Create a business-entered booking (walk-ins, phone bookings)."""
    return await store.create_manual_booking(booking_data)


@router.get("/{appointment_id}", response_model=Appointment)
async def get_appointment(
    appointment_id: int,
    business_id: Optional[int] = Query(None),
    store: CalendarStore = Depends(get_calendar_store),
):
    return await store.get_appointment(appointment_id, business_id)


@router.post("/{appointment_id}/reschedule", response_model=Appointment)
async def reschedule_appointment(
    appointment_id: int,
    reschedule_data: AppointmentReschedule,
    business_id: Optional[int] = Query(None),
    store: CalendarStore = Depends(get_calendar_store),
):
    """Move an appointment, keeping its professional and duration."""
    return await store.reschedule_appointment(
        appointment_id, reschedule_data.new_scheduled_at, business_id
    )


@router.patch("/{appointment_id}/status", response_model=Appointment)
async def update_appointment_status(
    appointment_id: int,
    status_data: AppointmentStatusUpdate,
    business_id: Optional[int] = Query(None),
    store: CalendarStore = Depends(get_calendar_store),
):
    return await store.update_status(appointment_id, status_data.status, business_id)


@router.delete("/{appointment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_appointment(
    appointment_id: int,
    business_id: Optional[int] = Query(None),
    store: CalendarStore = Depends(get_calendar_store),
):
    await store.delete_appointment(appointment_id, business_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@blocks_router.post("", response_model=Appointment, status_code=status.HTTP_201_CREATED)
async def create_block(
    block_data: BlockCreate,
    store: CalendarStore = Depends(get_calendar_store),
):
    """Block an interval for every professional of the business."""
    return await store.create_block(block_data)
