"""Availability engine.

Slots are a pure function of the calendar entries, the eligible
professionals and the business day. Every query re-reads the calendar;
nothing is cached between calls, so a result is only advisory and the
calendar store re-checks it at write time with the same helpers.
"""

from datetime import date as date_type, datetime, timedelta
from typing import Iterable, Optional, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from agenda.core.errors import FatalError, TransientError
from agenda.models.appointment import Appointment, TERMINAL_STATUSES
from agenda.models.business import Business
from agenda.models.service import Service
from agenda.schemas.scheduling import (
    AvailabilityResponse,
    AvailabilitySlot,
    BusinessDay,
    ProfessionalOption,
    SlotUnavailableReason,
)
from agenda.services.business_hours import BusinessHoursService, Clock
from agenda.services.catalog import CatalogService
from agenda.services.eligibility import EligibilityResolver

logger = structlog.get_logger(__name__)


def intervals_overlap(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    """Half-open intervals [start, end) overlap."""
    return a_start < b_end and b_start < a_end


def window_for(services: Sequence[Service]) -> int:
    """Minutes one professional needs to perform the cart back to back."""
    return sum(s.total_duration_minutes for s in services)


def find_conflicts(
    entries: Iterable[Appointment],
    start: datetime,
    end: datetime,
    professional_ids: Optional[Iterable[int]] = None,
    exclude_id: Optional[int] = None,
) -> list[Appointment]:
    """Non-terminal entries that collide with [start, end).

    Blocks always collide. Service entries collide only when assigned to
    one of ``professional_ids`` (or to anyone when it is None).
    """
    wanted = set(professional_ids) if professional_ids is not None else None
    conflicts = []
    for entry in entries:
        if exclude_id is not None and entry.id == exclude_id:
            continue
        if entry.status in TERMINAL_STATUSES:
            continue
        if not intervals_overlap(entry.scheduled_at, entry.end_at, start, end):
            continue
        if entry.is_block or wanted is None or entry.professional_id in wanted:
            conflicts.append(entry)
    return conflicts


def evaluate_slot(
    start: datetime,
    window_minutes: int,
    eligible_ids: Iterable[int],
    entries: Iterable[Appointment],
    business_day: BusinessDay,
    now: Optional[datetime] = None,
    exclude_id: Optional[int] = None,
) -> AvailabilitySlot:
    end = start + timedelta(minutes=window_minutes)
    eligible = set(eligible_ids)
    reasons = []

    if not eligible:
        reasons.append(SlotUnavailableReason.NO_ELIGIBLE_PROFESSIONAL)

    if not business_day.is_open or start < business_day.opens_at:
        reasons.append(SlotUnavailableReason.OUTSIDE_BUSINESS_HOURS)
    elif end > business_day.closes_at:
        reasons.append(SlotUnavailableReason.EXCEEDS_BUSINESS_HOURS)

    if business_day.break_start and intervals_overlap(
        start, end, business_day.break_start, business_day.break_end
    ):
        reasons.append(SlotUnavailableReason.DURING_BREAK)

    if now is not None and start < now:
        reasons.append(SlotUnavailableReason.IN_THE_PAST)

    conflicts = find_conflicts(entries, start, end, eligible, exclude_id)
    if any(c.is_block for c in conflicts):
        reasons.append(SlotUnavailableReason.COMPANY_BLOCK)

    busy = {c.professional_id for c in conflicts if not c.is_block}
    free = eligible - busy
    if eligible and not free:
        reasons.append(SlotUnavailableReason.ALL_PROFESSIONALS_BUSY)

    return AvailabilitySlot(
        start=start,
        end=end,
        window_minutes=window_minutes,
        available=not reasons,
        busy_professional_ids=sorted(busy),
        free_professional_ids=sorted(free),
        eligible_count=len(eligible),
        reasons=reasons,
    )


async def load_entries(
    db: AsyncSession, business_id: int, start: datetime, end: datetime
) -> list[Appointment]:
    """Non-terminal entries of a business intersecting [start, end)."""
    try:
        result = await db.execute(
            select(Appointment)
            .where(
                Appointment.business_id == business_id,
                Appointment.status.not_in(TERMINAL_STATUSES),
                Appointment.scheduled_at < end,
                Appointment.end_at > start,
            )
            .options(selectinload(Appointment.service_lines))
            .order_by(Appointment.scheduled_at, Appointment.id)
            .execution_options(populate_existing=True)
        )
    except SQLAlchemyError as e:
        logger.error("Failed to read calendar", business_id=business_id, error=str(e))
        raise TransientError("Calendar temporarily unavailable") from e
    return list(result.scalars().all())


class AvailabilityEngine:
    """Computes bookable slots for a cart on a business day."""

    def __init__(self, db: AsyncSession, clock: Optional[Clock] = None):
        self.db = db
        self.catalog = CatalogService(db)
        self.eligibility = EligibilityResolver(self.catalog)
        self.hours = BusinessHoursService(db, clock)

    async def eligible_for(
        self,
        business_id: int,
        service_ids: Optional[Iterable[int]] = None,
        professional_filter: Optional[int] = None,
    ) -> set[int]:
        """Eligible set for a cart; without services every active professional."""
        service_ids = list(service_ids or [])
        if service_ids:
            eligible = await self.eligibility.eligible_professionals(
                business_id, service_ids
            )
        else:
            eligible = {p.id for p in await self.catalog.get_professionals(business_id)}

        if professional_filter is not None:
            eligible &= {professional_filter}
        return eligible

    async def compute_slots(
        self,
        business_id: int,
        day: date_type,
        window_minutes: int,
        service_ids: Optional[Iterable[int]] = None,
        professional_filter: Optional[int] = None,
    ) -> list[AvailabilitySlot]:
        if window_minutes <= 0:
            raise FatalError(
                "Requested window must be positive",
                details={"window_minutes": window_minutes},
            )

        business = await self.catalog.get_business(business_id)
        eligible = await self.eligible_for(
            business_id, service_ids, professional_filter
        )
        business_day = await self.hours.get_business_day(business, day)
        grid = self.hours.slot_grid(business_day, self.hours.slot_interval(business))
        if not grid:
            logger.info(
                "Business closed",
                business_id=business_id,
                date=day.isoformat(),
                holiday=business_day.holiday_name,
            )
            return []

        entries = await load_entries(
            self.db,
            business_id,
            grid[0],
            grid[-1] + timedelta(minutes=window_minutes),
        )
        now = self.hours.local_now(business)

        slots = [
            evaluate_slot(t, window_minutes, eligible, entries, business_day, now)
            for t in grid
        ]
        for slot in slots:
            if not slot.available:
                logger.debug(
                    "Slot unavailable",
                    start=slot.start.isoformat(),
                    reasons=[r.value for r in slot.reasons],
                    busy=slot.busy_professional_ids,
                )

        logger.info(
            "Availability computed",
            business_id=business_id,
            date=day.isoformat(),
            window_minutes=window_minutes,
            eligible=len(eligible),
            entries=len(entries),
            slots=len(slots),
            available=sum(1 for s in slots if s.available),
        )
        return slots

    async def compute_availability(
        self,
        business_id: int,
        day: date_type,
        service_ids: Iterable[int],
        professional_filter: Optional[int] = None,
    ) -> AvailabilityResponse:
        """Slots for a cart, the window being derived from its services."""
        services = await self.catalog.get_services(business_id, service_ids)
        ids = [s.id for s in services]
        window = window_for(services)
        eligible = await self.eligible_for(business_id, ids, professional_filter)
        slots = await self.compute_slots(
            business_id, day, window, ids, professional_filter
        )
        return AvailabilityResponse(
            business_id=business_id,
            date=day,
            window_minutes=window,
            service_ids=ids,
            professional_id=professional_filter,
            eligible_professional_ids=sorted(eligible),
            slots=slots,
        )

    async def check_time(
        self,
        business_id: int,
        start: datetime,
        window_minutes: int,
        service_ids: Optional[Iterable[int]] = None,
        professional_filter: Optional[int] = None,
        exclude_id: Optional[int] = None,
        business: Optional[Business] = None,
        enforce_past: bool = True,
    ) -> AvailabilitySlot:
        """Evaluate a single start time, on or off the grid."""
        if window_minutes <= 0:
            raise FatalError(
                "Requested window must be positive",
                details={"window_minutes": window_minutes},
            )

        business = business or await self.catalog.get_business(business_id)
        start = self.hours.to_local(business, start)
        eligible = await self.eligible_for(
            business_id, service_ids, professional_filter
        )
        business_day = await self.hours.get_business_day(business, start.date())
        end = start + timedelta(minutes=window_minutes)
        entries = await load_entries(self.db, business_id, start, end)
        now = self.hours.local_now(business) if enforce_past else None
        return evaluate_slot(
            start, window_minutes, eligible, entries, business_day, now, exclude_id
        )

    async def professional_options(
        self, business_id: int, start: datetime, service_ids: Iterable[int]
    ) -> list[ProfessionalOption]:
        """Eligible professionals at a chosen time; busy ones are not selectable."""
        services = await self.catalog.get_services(business_id, service_ids)
        ids = [s.id for s in services]
        professionals = await self.eligibility.eligible_professionals_ordered(
            business_id, ids
        )
        slot = await self.check_time(business_id, start, window_for(services), ids)

        options = []
        for professional in professionals:
            busy = professional.id in slot.busy_professional_ids
            options.append(
                ProfessionalOption(
                    professional_id=professional.id,
                    name=professional.name,
                    role=professional.role,
                    avatar_url=professional.avatar_url,
                    busy=busy,
                    selectable=not busy and not slot.blocked_for_everyone,
                )
            )
        return options
