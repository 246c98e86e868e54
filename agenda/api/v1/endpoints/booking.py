from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.api.deps.database import get_db
from agenda.api.v1.endpoints.appointments import get_calendar_store
from agenda.schemas.booking import (
    BookingReview,
    BookingSession,
    LocationOptions,
    SelectLocationRequest,
    SelectProfessionalRequest,
    SelectTimeRequest,
    SessionRequest,
    StartBookingRequest,
    TimeOptionsRequest,
)
from agenda.schemas.scheduling import AvailabilityResponse, ProfessionalOption
from agenda.services.booking import BookingCoordinator
from agenda.services.calendar_store import CalendarStore

router = APIRouter()


def get_booking_coordinator(
    db: AsyncSession = Depends(get_db),
    store: CalendarStore = Depends(get_calendar_store),
) -> BookingCoordinator:
    return BookingCoordinator(db, store=store)


@router.post("/start", response_model=BookingSession)
async def start_booking(
    request: StartBookingRequest,
    coordinator: BookingCoordinator = Depends(get_booking_coordinator),
):
    """Open a booking session for a cart. The session travels with each call."""
    return await coordinator.start(
        request.business_id,
        request.service_ids,
        customer_ref=request.customer_ref,
        customer_name=request.customer_name,
    )


@router.post("/location-options", response_model=LocationOptions)
async def location_options(
    request: SessionRequest,
    coordinator: BookingCoordinator = Depends(get_booking_coordinator),
):
    return await coordinator.location_options(request.session)


@router.post("/location", response_model=BookingSession)
async def select_location(
    request: SelectLocationRequest,
    coordinator: BookingCoordinator = Depends(get_booking_coordinator),
):
    """Choose location and booking mode; immediate mode picks today's first slot."""
    return await coordinator.select_location(
        request.session,
        request.location_mode,
        booking_mode=request.booking_mode,
        address_id=request.address_id,
    )


@router.post("/time-options", response_model=AvailabilityResponse)
async def time_options(
    request: TimeOptionsRequest,
    coordinator: BookingCoordinator = Depends(get_booking_coordinator),
):
    return await coordinator.time_options(request.session, request.date)


@router.post("/time", response_model=BookingSession)
async def select_time(
    request: SelectTimeRequest,
    coordinator: BookingCoordinator = Depends(get_booking_coordinator),
):
    return await coordinator.select_time(request.session, request.scheduled_at)


@router.post("/professional-options", response_model=List[ProfessionalOption])
async def professional_options(
    request: SessionRequest,
    coordinator: BookingCoordinator = Depends(get_booking_coordinator),
):
    return await coordinator.professional_options(request.session)


@router.post("/professional", response_model=BookingSession)
async def select_professional(
    request: SelectProfessionalRequest,
    coordinator: BookingCoordinator = Depends(get_booking_coordinator),
):
    return await coordinator.select_professional(
        request.session, request.professional_id
    )


@router.post("/review", response_model=BookingReview)
async def review_booking(
    request: SessionRequest,
    coordinator: BookingCoordinator = Depends(get_booking_coordinator),
):
    return await coordinator.review(request.session)


@router.post("/submit", response_model=BookingSession)
async def submit_booking(
    request: SessionRequest,
    coordinator: BookingCoordinator = Depends(get_booking_coordinator),
):
    """
    Submit the reviewed booking.

    On 409 the body carries ``retry_step`` and the rerouted ``session``:
    professional selection when the time is still open with someone else,
    time selection otherwise.
    """
    return await coordinator.submit(request.session)


@router.post("/back", response_model=BookingSession)
async def go_back(
    request: SessionRequest,
    coordinator: BookingCoordinator = Depends(get_booking_coordinator),
):
    return await coordinator.back(request.session)
