"""Booking coordinator.

Walks a customer through location -> date/time -> professional -> review
and submits the result. Every transition takes a ``BookingSession`` and
returns a new one; a failed precondition raises a typed error and leaves
the caller's session untouched.

Step graph::

    LOCATION_SELECT --scheduled--> DATETIME_SELECT --> PROFESSIONAL_SELECT
    LOCATION_SELECT --immediate--> PROFESSIONAL_SELECT
    PROFESSIONAL_SELECT --> REVIEW --submit--> SUBMITTED
"""

from datetime import date as date_type, datetime, timedelta
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.core.errors import (
    ConflictError,
    SchedulingError,
    TransientError,
    ValidationError,
    ValidationReason,
)
from agenda.models.service import LocationMode, Service
from agenda.schemas.booking import (
    BookingMode,
    BookingReview,
    BookingSession,
    BookingStep,
    CheckoutRequest,
    LocationOptions,
    ReviewLine,
)
from agenda.schemas.scheduling import AvailabilityResponse, ProfessionalOption
from agenda.services.addresses import AddressBook, SqlAddressBook
from agenda.services.business_hours import Clock
from agenda.services.calendar_store import CalendarStore
from agenda.services.checkout import CheckoutGateway, LocalCheckoutGateway
from agenda.services.scheduling import AvailabilityEngine, window_for

logger = structlog.get_logger(__name__)

# Forward transitions allowed from each step
TRANSITIONS: dict[BookingStep, tuple[BookingStep, ...]] = {
    BookingStep.LOCATION_SELECT: (
        BookingStep.DATETIME_SELECT,
        BookingStep.PROFESSIONAL_SELECT,
    ),
    BookingStep.DATETIME_SELECT: (BookingStep.PROFESSIONAL_SELECT,),
    BookingStep.PROFESSIONAL_SELECT: (BookingStep.REVIEW,),
    BookingStep.REVIEW: (BookingStep.SUBMITTED,),
    BookingStep.SUBMITTED: (),  # Final state
}

# Fields cleared when the flow returns to a step
_CLEARED_ON_ENTRY: dict[BookingStep, tuple[str, ...]] = {
    BookingStep.LOCATION_SELECT: ("booking_mode", "date", "scheduled_at", "professional_id"),
    BookingStep.DATETIME_SELECT: ("scheduled_at", "professional_id"),
    BookingStep.PROFESSIONAL_SELECT: ("professional_id",),
    BookingStep.REVIEW: (),
}

# Choices a session must already carry while it sits at a step
_REQUIRED_AT: dict[BookingStep, tuple[str, ...]] = {
    BookingStep.DATETIME_SELECT: ("booking_mode", "location_mode"),
    BookingStep.PROFESSIONAL_SELECT: ("booking_mode", "location_mode", "scheduled_at"),
    BookingStep.REVIEW: (
        "booking_mode",
        "location_mode",
        "scheduled_at",
        "professional_id",
    ),
}


def _move(session: BookingSession, step: BookingStep, **changes) -> BookingSession:
    if step not in TRANSITIONS[session.step]:
        raise ValidationError(
            ValidationReason.WRONG_STEP,
            f"Cannot go from {session.step.value} to {step.value}",
            details={"step": session.step.value, "target": step.value},
        )
    return session.model_copy(update={**changes, "step": step})


def _return_to(session: BookingSession, step: BookingStep) -> BookingSession:
    cleared = {name: None for name in _CLEARED_ON_ENTRY.get(step, ())}
    return session.model_copy(update={**cleared, "step": step})


def _require_step(session: BookingSession, *steps: BookingStep) -> None:
    if session.step not in steps:
        raise ValidationError(
            ValidationReason.WRONG_STEP,
            f"Action not available at step {session.step.value}",
            details={
                "step": session.step.value,
                "expected": [s.value for s in steps],
            },
        )

    # The session comes back from the client; it may not match its step
    missing = [
        name for name in _REQUIRED_AT.get(session.step, ())
        if getattr(session, name) is None
    ]
    if (
        session.step in _REQUIRED_AT
        and session.location_mode == LocationMode.AT_HOME
        and session.address_id is None
    ):
        missing.append("address_id")
    if missing:
        raise ValidationError(
            ValidationReason.MISSING_SELECTION,
            f"Booking session is incomplete for step {session.step.value}",
            details={"step": session.step.value, "missing": missing},
        )


def allowed_locations(services: list[Service]) -> list[LocationMode]:
    allowed = set(LocationMode)
    for service in services:
        allowed &= service.allowed_locations
    return [mode for mode in LocationMode if mode in allowed]


def immediate_only(services: list[Service]) -> bool:
    return any(not s.is_schedulable for s in services)


class BookingCoordinator:
    def __init__(
        self,
        db: AsyncSession,
        checkout: Optional[CheckoutGateway] = None,
        addresses: Optional[AddressBook] = None,
        store: Optional[CalendarStore] = None,
        clock: Optional[Clock] = None,
    ):
        self.db = db
        self.engine = AvailabilityEngine(db, clock)
        self.catalog = self.engine.catalog
        self.hours = self.engine.hours
        self.addresses = addresses or SqlAddressBook(db)
        if checkout is None:
            checkout = LocalCheckoutGateway(store or CalendarStore(db, clock=clock))
        self.checkout = checkout

    async def _services(self, session: BookingSession) -> list[Service]:
        return await self.catalog.get_services(session.business_id, session.service_ids)

    # LOCATION_SELECT
    async def start(
        self,
        business_id: int,
        service_ids: list[int],
        customer_ref: Optional[str] = None,
        customer_name: Optional[str] = None,
    ) -> BookingSession:
        await self.catalog.get_business(business_id)
        services = await self.catalog.get_services(business_id, service_ids)
        session = BookingSession(
            business_id=business_id,
            service_ids=[s.id for s in services],
            customer_ref=customer_ref,
            customer_name=customer_name,
        )
        logger.info(
            "Booking started",
            business_id=business_id,
            service_ids=session.service_ids,
            customer_ref=customer_ref,
        )
        return session

    async def location_options(self, session: BookingSession) -> LocationOptions:
        services = await self._services(session)
        locations = allowed_locations(services)
        forced = immediate_only(services)
        return LocationOptions(
            location_modes=locations,
            booking_modes=[BookingMode.IMMEDIATE]
            if forced
            else [BookingMode.SCHEDULED, BookingMode.IMMEDIATE],
            immediate_only=forced,
            can_advance=bool(locations),
        )

    async def select_location(
        self,
        session: BookingSession,
        location_mode: Optional[LocationMode],
        booking_mode: Optional[BookingMode] = None,
        address_id: Optional[int] = None,
    ) -> BookingSession:
        _require_step(session, BookingStep.LOCATION_SELECT)
        services = await self._services(session)

        locations = allowed_locations(services)
        if not locations:
            raise ValidationError(
                ValidationReason.LOCATION_NOT_ALLOWED,
                "The selected services cannot be booked together: "
                "they require different locations",
                details={"service_ids": session.service_ids},
            )
        if location_mode is None:
            raise ValidationError(
                ValidationReason.MISSING_SELECTION, "Choose where the service happens"
            )
        if location_mode not in locations:
            raise ValidationError(
                ValidationReason.LOCATION_NOT_ALLOWED,
                f"Location {location_mode.value} is not offered for this cart",
                details={"allowed": [m.value for m in locations]},
            )

        if immediate_only(services):
            if booking_mode == BookingMode.SCHEDULED:
                raise ValidationError(
                    ValidationReason.BOOKING_MODE_NOT_ALLOWED,
                    "This cart can only be booked for right now",
                )
            booking_mode = BookingMode.IMMEDIATE
        elif booking_mode is None:
            booking_mode = BookingMode.SCHEDULED

        if location_mode == LocationMode.AT_HOME:
            address = None
            if address_id is not None and session.customer_ref:
                address = await self.addresses.get_address(
                    session.customer_ref, address_id
                )
            if address is None:
                raise ValidationError(
                    ValidationReason.ADDRESS_REQUIRED,
                    "Select or add an address for an at-home service",
                    details={"address_id": address_id},
                )
        else:
            address_id = None

        eligible = await self.engine.eligible_for(
            session.business_id, session.service_ids
        )
        if not eligible:
            raise ValidationError(
                ValidationReason.NO_ELIGIBLE_PROFESSIONAL,
                "No professional available for this combination of services",
            )

        changes = {
            "booking_mode": booking_mode,
            "location_mode": location_mode,
            "address_id": address_id,
            "professional_id": None,
        }
        if booking_mode == BookingMode.IMMEDIATE:
            start = await self._earliest_today(session, services)
            return _move(
                session,
                BookingStep.PROFESSIONAL_SELECT,
                date=start.date(),
                scheduled_at=start,
                **changes,
            )
        return _move(
            session,
            BookingStep.DATETIME_SELECT,
            date=None,
            scheduled_at=None,
            **changes,
        )

    async def _earliest_today(
        self, session: BookingSession, services: list[Service]
    ) -> datetime:
        business = await self.catalog.get_business(session.business_id)
        today = self.hours.today(business)
        slots = await self.engine.compute_slots(
            session.business_id, today, window_for(services), session.service_ids
        )
        for slot in slots:
            if slot.available:
                return slot.start
        raise ValidationError(
            ValidationReason.NO_AVAILABLE_SLOT,
            "No professional can take this booking today",
            details={"date": today.isoformat()},
        )

    # DATETIME_SELECT
    async def time_options(
        self, session: BookingSession, day: date_type
    ) -> AvailabilityResponse:
        _require_step(session, BookingStep.DATETIME_SELECT)
        return await self.engine.compute_availability(
            session.business_id, day, session.service_ids
        )

    async def select_time(
        self, session: BookingSession, scheduled_at: Optional[datetime]
    ) -> BookingSession:
        _require_step(session, BookingStep.DATETIME_SELECT)
        if scheduled_at is None:
            raise ValidationError(
                ValidationReason.MISSING_SELECTION, "Choose a date and time"
            )
        business = await self.catalog.get_business(session.business_id)
        scheduled_at = self.hours.to_local(business, scheduled_at)

        availability = await self.engine.compute_availability(
            session.business_id, scheduled_at.date(), session.service_ids
        )
        slot = next((s for s in availability.slots if s.start == scheduled_at), None)
        if slot is None or not slot.available:
            raise ValidationError(
                ValidationReason.SLOT_UNAVAILABLE,
                "This time is no longer available, please pick another",
                details={
                    "scheduled_at": scheduled_at.isoformat(),
                    "reasons": [r.value for r in slot.reasons] if slot else [],
                },
                retryable=True,
            )

        return _move(
            session,
            BookingStep.PROFESSIONAL_SELECT,
            date=scheduled_at.date(),
            scheduled_at=scheduled_at,
            professional_id=None,
        )

    # PROFESSIONAL_SELECT
    async def professional_options(
        self, session: BookingSession
    ) -> list[ProfessionalOption]:
        _require_step(session, BookingStep.PROFESSIONAL_SELECT, BookingStep.REVIEW)
        return await self.engine.professional_options(
            session.business_id, session.scheduled_at, session.service_ids
        )

    async def select_professional(
        self, session: BookingSession, professional_id: Optional[int]
    ) -> BookingSession:
        _require_step(session, BookingStep.PROFESSIONAL_SELECT)
        if professional_id is None:
            raise ValidationError(
                ValidationReason.MISSING_SELECTION, "Choose a professional"
            )

        options = await self.professional_options(session)
        option = next((o for o in options if o.professional_id == professional_id), None)
        if option is None:
            raise ValidationError(
                ValidationReason.PROFESSIONAL_NOT_ELIGIBLE,
                "This professional does not perform every selected service",
                details={"professional_id": professional_id},
            )
        if not option.selectable:
            raise ValidationError(
                ValidationReason.PROFESSIONAL_BUSY,
                f"{option.name} is not available at this time",
                details={"professional_id": professional_id},
                retryable=True,
            )

        return _move(session, BookingStep.REVIEW, professional_id=professional_id)

    # REVIEW
    async def review(self, session: BookingSession) -> BookingReview:
        _require_step(session, BookingStep.REVIEW)
        services = await self._services(session)
        professional = await self.catalog.get_professional(
            session.professional_id, session.business_id
        )

        address_label = None
        if session.address_id is not None and session.customer_ref:
            address = await self.addresses.get_address(
                session.customer_ref, session.address_id
            )
            address_label = address.label if address else None

        window = window_for(services)
        return BookingReview(
            session=session,
            lines=[
                ReviewLine(
                    service_id=s.id,
                    name=s.name,
                    price=s.price,
                    duration_minutes=s.duration_minutes,
                    buffer_minutes=s.buffer_minutes or 0,
                )
                for s in services
            ],
            booking_mode=session.booking_mode,
            location_mode=session.location_mode,
            address_label=address_label,
            scheduled_at=session.scheduled_at,
            ends_at=session.scheduled_at + timedelta(minutes=window),
            window_minutes=window,
            professional_id=professional.id,
            professional_name=professional.name,
            total_price=sum((s.price for s in services), Decimal("0")),
        )

    async def submit(self, session: BookingSession) -> BookingSession:
        review = await self.review(session)
        request = CheckoutRequest(
            business_id=session.business_id,
            service_ids=session.service_ids,
            professional_id=session.professional_id,
            scheduled_at=session.scheduled_at,
            location_mode=session.location_mode,
            address_ref=str(session.address_id) if session.address_id else None,
            customer_ref=session.customer_ref,
            customer_name=session.customer_name,
            total_price=review.total_price,
        )

        try:
            appointment_id = await self.checkout.submit(request)
        except ConflictError as e:
            await self._route_after_conflict(session, review.window_minutes, e)
            raise
        except TransientError as e:
            step = (
                BookingStep.LOCATION_SELECT
                if session.booking_mode == BookingMode.IMMEDIATE
                else BookingStep.DATETIME_SELECT
            )
            self._attach_route(e, _return_to(session, step))
            raise

        logger.info(
            "Booking submitted",
            business_id=session.business_id,
            appointment_id=appointment_id,
            professional_id=session.professional_id,
            scheduled_at=session.scheduled_at.isoformat(),
        )
        return _move(session, BookingStep.SUBMITTED, appointment_id=appointment_id)

    async def _route_after_conflict(
        self, session: BookingSession, window: int, error: ConflictError
    ) -> None:
        """Send the customer to the earliest step that can fix the conflict."""
        slot = await self.engine.check_time(
            session.business_id, session.scheduled_at, window, session.service_ids
        )
        if slot.available:
            # Someone else can still do it at that time
            step = BookingStep.PROFESSIONAL_SELECT
        elif session.booking_mode == BookingMode.IMMEDIATE:
            step = BookingStep.LOCATION_SELECT
        else:
            step = BookingStep.DATETIME_SELECT

        resumed = _return_to(session, step)
        if step == BookingStep.DATETIME_SELECT:
            resumed = resumed.model_copy(update={"date": session.date})
        self._attach_route(error, resumed)
        logger.info(
            "Booking conflict rerouted",
            business_id=session.business_id,
            reason=error.code,
            retry_step=step.value,
        )

    @staticmethod
    def _attach_route(error: SchedulingError, session: BookingSession) -> None:
        error.resume_session = session
        error.retry_step = session.step

    # Navigation
    async def back(self, session: BookingSession) -> BookingSession:
        if session.step == BookingStep.SUBMITTED:
            raise ValidationError(
                ValidationReason.WRONG_STEP, "A submitted booking cannot be edited"
            )
        if session.step == BookingStep.LOCATION_SELECT:
            return session

        previous = {
            BookingStep.DATETIME_SELECT: BookingStep.LOCATION_SELECT,
            BookingStep.PROFESSIONAL_SELECT: (
                BookingStep.LOCATION_SELECT
                if session.booking_mode == BookingMode.IMMEDIATE
                else BookingStep.DATETIME_SELECT
            ),
            BookingStep.REVIEW: BookingStep.PROFESSIONAL_SELECT,
        }[session.step]
        resumed = _return_to(session, previous)
        if previous == BookingStep.DATETIME_SELECT:
            resumed = resumed.model_copy(update={"date": session.date})
        return resumed
