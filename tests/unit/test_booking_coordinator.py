"""Test the customer booking flow end to end against the calendar store."""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from agenda.core.errors import (
    ConflictError,
    ConflictReason,
    TransientError,
    ValidationError,
    ValidationReason,
)
from agenda.models.appointment import AppointmentStatus
from agenda.models.service import AttendanceMode, LocationMode
from agenda.schemas.address import AddressCreate
from agenda.schemas.booking import BookingMode, BookingStep
from agenda.services.addresses import SqlAddressBook
from agenda.services.booking import BookingCoordinator
from tests.fixtures.scheduling_fixtures import MONDAY, add_entry, add_service, at

SUNDAY = MONDAY.replace(day=6)


@pytest.fixture
def coordinator(db, store, clock) -> BookingCoordinator:
    return BookingCoordinator(db, store=store, clock=clock)


@pytest.fixture
async def home_address(db):
    return await SqlAddressBook(db).create_address(
        "cust-1",
        AddressCreate(
            label="Home",
            street="Rua das Flores",
            number="120",
            city="Sao Paulo",
            state="SP",
            is_default=True,
        ),
    )


async def reach_review(coordinator, business, services, start, professional):
    session = await coordinator.start(
        business.id, [s.id for s in services], customer_ref="cust-1", customer_name="Maria"
    )
    session = await coordinator.select_location(session, LocationMode.IN_PERSON)
    session = await coordinator.select_time(session, start)
    return await coordinator.select_professional(session, professional.id)


class TestLocationStep:
    async def test_conflicting_location_requirements(self, db, coordinator, business, staff):
        salon = await add_service(
            db, business, "Blowout", 30, professionals=[staff.p1],
            attendance_mode=AttendanceMode.IN_PERSON,
        )
        home = await add_service(
            db, business, "Home massage", 60, professionals=[staff.p1],
            attendance_mode=AttendanceMode.AT_HOME,
        )
        session = await coordinator.start(business.id, [salon.id, home.id])

        options = await coordinator.location_options(session)

        assert options.location_modes == []
        assert not options.can_advance
        with pytest.raises(ValidationError) as exc_info:
            await coordinator.select_location(session, LocationMode.IN_PERSON)
        assert exc_info.value.reason == ValidationReason.LOCATION_NOT_ALLOWED

    async def test_options_for_flexible_cart(self, coordinator, business, catalog):
        session = await coordinator.start(business.id, [catalog.x.id, catalog.y.id])

        options = await coordinator.location_options(session)

        assert options.location_modes == [LocationMode.IN_PERSON, LocationMode.AT_HOME]
        assert options.booking_modes == [BookingMode.SCHEDULED, BookingMode.IMMEDIATE]
        assert options.can_advance

    async def test_location_is_required(self, coordinator, business, catalog):
        session = await coordinator.start(business.id, [catalog.x.id])

        with pytest.raises(ValidationError) as exc_info:
            await coordinator.select_location(session, None)

        assert exc_info.value.reason == ValidationReason.MISSING_SELECTION

    async def test_at_home_needs_known_address(
        self, coordinator, business, catalog, home_address
    ):
        session = await coordinator.start(business.id, [catalog.x.id], customer_ref="cust-1")

        with pytest.raises(ValidationError) as exc_info:
            await coordinator.select_location(session, LocationMode.AT_HOME)
        assert exc_info.value.reason == ValidationReason.ADDRESS_REQUIRED

        other = session.model_copy(update={"customer_ref": "cust-2"})
        with pytest.raises(ValidationError):
            await coordinator.select_location(
                other, LocationMode.AT_HOME, address_id=home_address.id
            )

        moved = await coordinator.select_location(
            session, LocationMode.AT_HOME, address_id=home_address.id
        )
        assert moved.step == BookingStep.DATETIME_SELECT
        assert moved.address_id == home_address.id
        assert session.step == BookingStep.LOCATION_SELECT

    async def test_no_professional_for_cart(self, db, coordinator, business, staff):
        color = await add_service(db, business, "Color", 60, professionals=[staff.p1])
        nails = await add_service(db, business, "Nails", 30, professionals=[staff.p3])
        session = await coordinator.start(business.id, [color.id, nails.id])

        with pytest.raises(ValidationError) as exc_info:
            await coordinator.select_location(session, LocationMode.IN_PERSON)

        assert exc_info.value.reason == ValidationReason.NO_ELIGIBLE_PROFESSIONAL


class TestImmediateMode:
    @pytest.fixture
    async def urgent(self, db, business, catalog):
        return await add_service(
            db, business, "Express fix", 30, professionals=[catalog.p1], is_schedulable=False
        )

    async def test_non_schedulable_service_forces_immediate(
        self, coordinator, business, urgent
    ):
        session = await coordinator.start(business.id, [urgent.id])

        options = await coordinator.location_options(session)
        moved = await coordinator.select_location(session, LocationMode.IN_PERSON)

        assert options.immediate_only
        assert options.booking_modes == [BookingMode.IMMEDIATE]
        assert moved.step == BookingStep.PROFESSIONAL_SELECT
        assert moved.booking_mode == BookingMode.IMMEDIATE
        assert moved.scheduled_at == at(18, day=SUNDAY)

    async def test_scheduled_mode_rejected(self, coordinator, business, urgent):
        session = await coordinator.start(business.id, [urgent.id])

        with pytest.raises(ValidationError) as exc_info:
            await coordinator.select_location(
                session, LocationMode.IN_PERSON, booking_mode=BookingMode.SCHEDULED
            )

        assert exc_info.value.reason == ValidationReason.BOOKING_MODE_NOT_ALLOWED

    async def test_nothing_left_today(self, coordinator, business, urgent, clock):
        clock.now = datetime(2030, 1, 6, 19, 45, tzinfo=timezone.utc)
        session = await coordinator.start(business.id, [urgent.id])

        with pytest.raises(ValidationError) as exc_info:
            await coordinator.select_location(session, LocationMode.IN_PERSON)

        assert exc_info.value.reason == ValidationReason.NO_AVAILABLE_SLOT

    async def test_back_from_professional_returns_to_location(
        self, coordinator, business, urgent
    ):
        session = await coordinator.start(business.id, [urgent.id])
        session = await coordinator.select_location(session, LocationMode.IN_PERSON)

        back = await coordinator.back(session)

        assert back.step == BookingStep.LOCATION_SELECT
        assert back.booking_mode is None
        assert back.scheduled_at is None


class TestScheduledFlow:
    async def test_happy_path(self, coordinator, store, business, catalog):
        session = await coordinator.start(
            business.id, [catalog.x.id, catalog.y.id], customer_ref="cust-1"
        )
        session = await coordinator.select_location(session, LocationMode.IN_PERSON)
        assert session.step == BookingStep.DATETIME_SELECT
        assert session.booking_mode == BookingMode.SCHEDULED

        times = await coordinator.time_options(session, MONDAY)
        assert times.window_minutes == 90
        assert any(s.start == at(10) and s.available for s in times.slots)

        session = await coordinator.select_time(session, at(10))
        options = await coordinator.professional_options(session)
        assert [(o.name, o.selectable) for o in options] == [("Bruno", True)]

        session = await coordinator.select_professional(session, catalog.p2.id)
        review = await coordinator.review(session)
        assert review.total_price == Decimal("120.00")
        assert review.ends_at == at(11, 30)
        assert review.professional_name == "Bruno"
        assert [line.name for line in review.lines] == ["Haircut", "Beard trim"]

        submitted = await coordinator.submit(session)
        assert submitted.step == BookingStep.SUBMITTED
        appointment = await store.get_appointment(submitted.appointment_id)
        assert appointment.status == AppointmentStatus.PENDING.value
        assert appointment.professional_id == catalog.p2.id
        assert appointment.customer_ref == "cust-1"

    async def test_unavailable_time_is_retryable(self, db, coordinator, business, catalog):
        await add_entry(db, business, at(10), 30, professional=catalog.p2)
        session = await coordinator.start(business.id, [catalog.x.id, catalog.y.id])
        session = await coordinator.select_location(session, LocationMode.IN_PERSON)

        # Busy professional, then a time off the slot grid
        for start in (at(9, 30), at(10, 10)):
            with pytest.raises(ValidationError) as exc_info:
                await coordinator.select_time(session, start)
            assert exc_info.value.reason == ValidationReason.SLOT_UNAVAILABLE
            assert exc_info.value.retryable

    async def test_busy_professional_not_selectable(self, db, coordinator, business, catalog):
        await add_entry(db, business, at(10), 30, professional=catalog.p2)
        session = await coordinator.start(business.id, [catalog.x.id])
        session = await coordinator.select_location(session, LocationMode.IN_PERSON)
        session = await coordinator.select_time(session, at(10))

        with pytest.raises(ValidationError) as busy:
            await coordinator.select_professional(session, catalog.p2.id)
        with pytest.raises(ValidationError) as ineligible:
            await coordinator.select_professional(session, catalog.p3.id)

        assert busy.value.reason == ValidationReason.PROFESSIONAL_BUSY
        assert busy.value.retryable
        assert ineligible.value.reason == ValidationReason.PROFESSIONAL_NOT_ELIGIBLE

    async def test_actions_outside_their_step(self, coordinator, business, catalog):
        session = await coordinator.start(business.id, [catalog.x.id])

        with pytest.raises(ValidationError) as exc_info:
            await coordinator.select_time(session, at(10))
        assert exc_info.value.reason == ValidationReason.WRONG_STEP

        with pytest.raises(ValidationError):
            await coordinator.submit(session)

    async def test_back_clears_later_choices(self, coordinator, business, catalog):
        review = await reach_review(coordinator, business, [catalog.x], at(10), catalog.p1)

        professional_step = await coordinator.back(review)
        datetime_step = await coordinator.back(professional_step)
        location_step = await coordinator.back(datetime_step)

        assert professional_step.step == BookingStep.PROFESSIONAL_SELECT
        assert professional_step.professional_id is None
        assert professional_step.scheduled_at == at(10)
        assert datetime_step.step == BookingStep.DATETIME_SELECT
        assert datetime_step.date == MONDAY
        assert datetime_step.scheduled_at is None
        assert location_step.step == BookingStep.LOCATION_SELECT
        assert location_step.booking_mode is None
        assert await coordinator.back(location_step) == location_step

    async def test_submitted_booking_is_final(self, coordinator, business, catalog):
        review = await reach_review(coordinator, business, [catalog.x], at(10), catalog.p1)
        submitted = await coordinator.submit(review)

        with pytest.raises(ValidationError) as exc_info:
            await coordinator.back(submitted)

        assert exc_info.value.reason == ValidationReason.WRONG_STEP


class TestSubmitRecovery:
    async def test_conflict_with_other_professional_free(
        self, db, coordinator, business, catalog
    ):
        review = await reach_review(coordinator, business, [catalog.x], at(10), catalog.p1)
        await add_entry(db, business, at(10), 30, professional=catalog.p1)

        with pytest.raises(ConflictError) as exc_info:
            await coordinator.submit(review)

        error = exc_info.value
        assert error.reason == ConflictReason.PROFESSIONAL_DOUBLE_BOOKED
        assert error.retry_step == BookingStep.PROFESSIONAL_SELECT
        assert error.resume_session.scheduled_at == at(10)
        assert error.resume_session.professional_id is None
        assert error.to_dict()["retry_step"] == "professional_select"

    async def test_conflict_when_time_is_gone(self, db, coordinator, business, catalog):
        review = await reach_review(
            coordinator, business, [catalog.x, catalog.y], at(10), catalog.p2
        )
        await add_entry(db, business, at(10, 30), 30, professional=catalog.p2)

        with pytest.raises(ConflictError) as exc_info:
            await coordinator.submit(review)

        resumed = exc_info.value.resume_session
        assert exc_info.value.retry_step == BookingStep.DATETIME_SELECT
        assert resumed.date == MONDAY
        assert resumed.scheduled_at is None
        assert resumed.professional_id is None

    async def test_transient_failure_returns_to_time_choice(
        self, db, store, clock, business, catalog
    ):
        checkout = AsyncMock()
        checkout.submit.side_effect = TransientError("Checkout unavailable")
        flow = BookingCoordinator(db, checkout=checkout, store=store, clock=clock)
        review = await reach_review(flow, business, [catalog.x], at(10), catalog.p1)

        with pytest.raises(TransientError) as exc_info:
            await flow.submit(review)

        assert exc_info.value.retryable
        assert exc_info.value.retry_step == BookingStep.DATETIME_SELECT
        assert exc_info.value.resume_session.scheduled_at is None
        assert await store.list_day(business.id, MONDAY) == []


class TestSessionIntegrity:
    async def test_session_missing_its_time(self, coordinator, business, catalog):
        session = await coordinator.start(business.id, [catalog.x.id])
        forged = session.model_copy(update={"step": BookingStep.PROFESSIONAL_SELECT})

        with pytest.raises(ValidationError) as exc_info:
            await coordinator.professional_options(forged)

        assert exc_info.value.reason == ValidationReason.MISSING_SELECTION
        assert "scheduled_at" in exc_info.value.details["missing"]

    async def test_review_missing_professional(self, coordinator, business, catalog):
        review = await reach_review(coordinator, business, [catalog.x], at(10), catalog.p1)
        forged = review.model_copy(update={"professional_id": None})

        with pytest.raises(ValidationError) as exc_info:
            await coordinator.submit(forged)

        assert exc_info.value.details["missing"] == ["professional_id"]

    async def test_aware_time_is_business_local(self, coordinator, business, catalog):
        session = await coordinator.start(business.id, [catalog.x.id])
        session = await coordinator.select_location(session, LocationMode.IN_PERSON)

        chosen = await coordinator.select_time(
            session, datetime(2030, 1, 7, 10, 0, tzinfo=timezone.utc)
        )

        assert chosen.scheduled_at == at(10)
        assert chosen.scheduled_at.tzinfo is None
