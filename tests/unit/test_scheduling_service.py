"""Test the availability engine with real database interactions."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from agenda.core.errors import FatalError
from agenda.models.appointment import Appointment, AppointmentKind, AppointmentStatus
from agenda.schemas.scheduling import BusinessDay, SlotUnavailableReason
from agenda.services.scheduling import (
    AvailabilityEngine,
    evaluate_slot,
    find_conflicts,
    intervals_overlap,
)
from tests.fixtures.scheduling_fixtures import (
    MONDAY,
    FixedClock,
    add_entry,
    add_professional,
    add_service,
    at,
)


def slot_at(slots, start):
    return next(s for s in slots if s.start == start)


def entry(
    start,
    minutes,
    professional_id=None,
    kind=AppointmentKind.SERVICE,
    status=AppointmentStatus.SCHEDULED,
    id=None,
):
    return Appointment(
        id=id,
        business_id=1,
        professional_id=professional_id,
        scheduled_at=start,
        end_at=start + timedelta(minutes=minutes),
        duration_minutes=minutes,
        kind=kind.value,
        status=status.value,
        total_price=Decimal("0"),
    )


OPEN_DAY = BusinessDay(date=MONDAY, is_open=True, opens_at=at(8), closes_at=at(20))


class TestPureHelpers:
    def test_intervals_overlap_half_open(self):
        assert intervals_overlap(at(9), at(10), at(9, 59), at(11))
        assert not intervals_overlap(at(9), at(10), at(10), at(11))
        assert intervals_overlap(at(9), at(12), at(10), at(11))

    def test_find_conflicts_skips_terminal_and_excluded(self):
        entries = [
            entry(at(10), 30, professional_id=1, id=1),
            entry(at(10), 30, professional_id=2, status=AppointmentStatus.CANCELLED, id=2),
            entry(at(10), 30, professional_id=3, status=AppointmentStatus.COMPLETED, id=3),
        ]

        assert [e.id for e in find_conflicts(entries, at(9), at(11))] == [1]
        assert find_conflicts(entries, at(9), at(11), exclude_id=1) == []
        assert find_conflicts(entries, at(9), at(11), professional_ids=[2, 3]) == []

    def test_blocks_conflict_for_any_professional_filter(self):
        entries = [entry(at(10), 30, kind=AppointmentKind.BLOCK, id=7)]

        assert [e.id for e in find_conflicts(entries, at(10), at(11), [42])] == [7]

    def test_evaluate_slot_reports_busy_and_free(self):
        entries = [entry(at(10), 30, professional_id=2, id=1)]

        slot = evaluate_slot(at(9, 45), 90, {1, 2}, entries, OPEN_DAY)

        assert slot.available
        assert slot.busy_professional_ids == [2]
        assert slot.free_professional_ids == [1]
        assert slot.eligible_count == 2

    def test_evaluate_slot_all_busy(self):
        entries = [entry(at(10), 30, professional_id=2, id=1)]

        slot = evaluate_slot(at(9, 45), 90, {2}, entries, OPEN_DAY)

        assert not slot.available
        assert slot.reasons == [SlotUnavailableReason.ALL_PROFESSIONALS_BUSY]

    def test_evaluate_slot_without_eligible_professionals(self):
        slot = evaluate_slot(at(9), 30, set(), [], OPEN_DAY)

        assert not slot.available
        assert SlotUnavailableReason.NO_ELIGIBLE_PROFESSIONAL in slot.reasons

    def test_evaluate_slot_closing_time_and_past(self):
        late = evaluate_slot(at(19, 30), 60, {1}, [], OPEN_DAY)
        past = evaluate_slot(at(9), 30, {1}, [], OPEN_DAY, now=at(9, 5))

        assert late.reasons == [SlotUnavailableReason.EXCEEDS_BUSINESS_HOURS]
        assert past.reasons == [SlotUnavailableReason.IN_THE_PAST]


class TestExampleScenario:
    """Cart X (45+15, P1/P2) + Y (30, P2/P3): only P2, 90 minutes."""

    async def test_window_and_eligibility(self, availability, business, catalog):
        result = await availability.compute_availability(
            business.id, MONDAY, [catalog.x.id, catalog.y.id]
        )

        assert result.window_minutes == 90
        assert result.eligible_professional_ids == [catalog.p2.id]

    async def test_busy_professional_blocks_overlapping_windows(
        self, db, availability, business, catalog
    ):
        await add_entry(db, business, at(10), 30, professional=catalog.p2)
        cart = [catalog.x.id, catalog.y.id]

        early = await availability.check_time(business.id, at(9, 45), 90, cart)
        later = await availability.check_time(business.id, at(11, 30), 90, cart)

        assert not early.available
        assert early.busy_professional_ids == [catalog.p2.id]
        assert early.reasons == [SlotUnavailableReason.ALL_PROFESSIONALS_BUSY]
        assert later.available

    async def test_quarter_hour_grid(self, db, quarter_hour_business):
        clock = FixedClock(datetime(2030, 1, 6, 18, 0, tzinfo=timezone.utc))
        engine = AvailabilityEngine(db, clock)
        p1 = await add_professional(db, quarter_hour_business, "P1")
        p2 = await add_professional(db, quarter_hour_business, "P2")
        p3 = await add_professional(db, quarter_hour_business, "P3")
        x = await add_service(db, quarter_hour_business, "X", 45, 15, [p1, p2])
        y = await add_service(db, quarter_hour_business, "Y", 30, 0, [p2, p3])
        await add_entry(db, quarter_hour_business, at(10), 30, professional=p2)

        result = await engine.compute_availability(
            quarter_hour_business.id, MONDAY, [x.id, y.id]
        )

        assert not slot_at(result.slots, at(9, 45)).available
        assert slot_at(result.slots, at(11, 30)).available
        assert slot_at(result.slots, at(10, 30)).available
        assert not slot_at(result.slots, at(8, 45)).available


class TestComputeSlots:
    async def test_block_makes_every_filter_unavailable(
        self, db, availability, business, catalog
    ):
        await add_entry(db, business, at(14), 30, kind=AppointmentKind.BLOCK)
        carts = [[catalog.x.id], [catalog.y.id], [catalog.x.id, catalog.y.id]]
        filters = [None, catalog.p1.id, catalog.p2.id, catalog.p3.id]

        for cart in carts:
            for professional_id in filters:
                result = await availability.compute_availability(
                    business.id, MONDAY, cart, professional_id
                )
                slot = slot_at(result.slots, at(14))
                assert not slot.available
                if result.eligible_professional_ids:
                    assert SlotUnavailableReason.COMPANY_BLOCK in slot.reasons

    async def test_window_running_into_block(self, db, availability, business, catalog):
        await add_entry(db, business, at(14), 30, kind=AppointmentKind.BLOCK)

        slots = await availability.compute_slots(business.id, MONDAY, 60, [catalog.x.id])

        assert not slot_at(slots, at(13, 30)).available
        assert slot_at(slots, at(13)).available
        assert slot_at(slots, at(14, 30)).available

    async def test_terminal_appointments_do_not_occupy(
        self, db, availability, business, catalog
    ):
        await add_entry(
            db, business, at(10), 60, professional=catalog.p2,
            status=AppointmentStatus.CANCELLED,
        )
        await add_entry(
            db, business, at(10), 60, professional=catalog.p2,
            status=AppointmentStatus.COMPLETED,
        )

        slots = await availability.compute_slots(
            business.id, MONDAY, 30, [catalog.y.id], professional_filter=catalog.p2.id
        )

        assert slot_at(slots, at(10)).available

    async def test_other_professional_keeps_slot_open(
        self, db, availability, business, catalog
    ):
        await add_entry(db, business, at(10), 60, professional=catalog.p1)

        slots = await availability.compute_slots(business.id, MONDAY, 60, [catalog.x.id])
        only_p1 = await availability.compute_slots(
            business.id, MONDAY, 60, [catalog.x.id], professional_filter=catalog.p1.id
        )

        assert slot_at(slots, at(10)).available
        assert slot_at(slots, at(10)).busy_professional_ids == [catalog.p1.id]
        assert not slot_at(only_p1, at(10)).available

    async def test_last_slots_exceed_closing(self, availability, business, catalog):
        slots = await availability.compute_slots(business.id, MONDAY, 90, [catalog.x.id])

        assert slot_at(slots, at(18, 30)).available
        assert SlotUnavailableReason.EXCEEDS_BUSINESS_HOURS in slot_at(slots, at(19)).reasons
        assert not slot_at(slots, at(19, 30)).available

    async def test_past_slots_unavailable(self, availability, business, catalog, clock):
        clock.now = datetime(2030, 1, 7, 10, 10, tzinfo=timezone.utc)

        slots = await availability.compute_slots(business.id, MONDAY, 30, [catalog.x.id])

        assert SlotUnavailableReason.IN_THE_PAST in slot_at(slots, at(10)).reasons
        assert slot_at(slots, at(10, 30)).available

    async def test_break_and_closed_days(
        self, availability, business, catalog, working_week
    ):
        slots = await availability.compute_slots(business.id, MONDAY, 60, [catalog.x.id])
        saturday = await availability.compute_slots(
            business.id, MONDAY + timedelta(days=5), 60, [catalog.x.id]
        )

        assert slots[0].start == at(9)
        assert SlotUnavailableReason.DURING_BREAK in slot_at(slots, at(11, 30)).reasons
        assert slot_at(slots, at(13)).available
        assert saturday == []

    async def test_disjoint_cart_has_no_available_slot(
        self, db, availability, business, staff
    ):
        color = await add_service(db, business, "Color", 60, professionals=[staff.p1])
        nails = await add_service(db, business, "Nails", 30, professionals=[staff.p3])

        result = await availability.compute_availability(
            business.id, MONDAY, [color.id, nails.id]
        )

        assert result.slots
        assert not any(s.available for s in result.slots)

    async def test_non_positive_window_is_fatal(self, availability, business):
        with pytest.raises(FatalError):
            await availability.compute_slots(business.id, MONDAY, 0)

    async def test_recomputed_on_every_call(self, db, availability, business, catalog):
        first = await availability.compute_slots(
            business.id, MONDAY, 30, [catalog.y.id], professional_filter=catalog.p3.id
        )
        await add_entry(db, business, at(10), 30, professional=catalog.p3)
        second = await availability.compute_slots(
            business.id, MONDAY, 30, [catalog.y.id], professional_filter=catalog.p3.id
        )

        assert slot_at(first, at(10)).available
        assert not slot_at(second, at(10)).available


async def test_professional_options_mark_busy(db, availability, business, catalog):
    await add_entry(db, business, at(10), 30, professional=catalog.p2)

    options = await availability.professional_options(business.id, at(10), [catalog.x.id])

    by_name = {o.name: o for o in options}
    assert list(by_name) == ["Ana", "Bruno"]
    assert by_name["Ana"].selectable
    assert by_name["Bruno"].busy and not by_name["Bruno"].selectable
