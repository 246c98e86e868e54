from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.core.config import settings
from agenda.models.business import Business
from agenda.models.working_hours import WorkingHours
from agenda.schemas.scheduling import BusinessDay
from agenda.services.holidays import HolidayService

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BusinessHoursService:
    """Opening hours, holidays and the slot grid of a business.

    All datetimes returned are naive wall-clock times in the business
    timezone, the same convention the calendar rows use.
    """

    def __init__(self, db: AsyncSession, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or utc_now

    def local_now(self, business: Business) -> datetime:
        tz = ZoneInfo(business.timezone or "UTC")
        return self.clock().astimezone(tz).replace(tzinfo=None)

    @staticmethod
    def to_local(business: Business, value: datetime) -> datetime:
        """Naive wall-clock time in the business timezone.

        Naive values are taken as already local; aware ones (``...Z``,
        ``...-03:00``) are converted first.
        """
        if value.tzinfo is None:
            return value
        tz = ZoneInfo(business.timezone or "UTC")
        return value.astimezone(tz).replace(tzinfo=None)

    def today(self, business: Business) -> date:
        return self.local_now(business).date()

    @staticmethod
    def slot_interval(business: Business) -> int:
        return business.slot_interval_minutes or settings.SLOT_INTERVAL_MINUTES

    async def get_business_day(self, business: Business, day: date) -> BusinessDay:
        holiday_name = HolidayService.get_holiday_name(business.holiday_country, day)
        if holiday_name:
            logger.debug(
                "Business closed for holiday",
                business_id=business.id,
                date=day.isoformat(),
                holiday=holiday_name,
            )
            return BusinessDay(date=day, is_open=False, holiday_name=holiday_name)

        result = await self.db.execute(
            select(WorkingHours)
            .where(
                WorkingHours.business_id == business.id,
                WorkingHours.is_active.is_(True),
            )
            .order_by(WorkingHours.weekday, WorkingHours.start_time)
        )
        rows = list(result.scalars().all())

        if not rows:
            # Nothing configured: default opening hours every day
            return BusinessDay(
                date=day,
                is_open=True,
                opens_at=datetime.combine(day, settings.DEFAULT_OPEN_TIME),
                closes_at=datetime.combine(day, settings.DEFAULT_CLOSE_TIME),
            )

        hours = next((r for r in rows if r.weekday == day.weekday()), None)
        if hours is None or hours.end_time <= hours.start_time:
            return BusinessDay(date=day, is_open=False)

        business_day = BusinessDay(
            date=day,
            is_open=True,
            opens_at=datetime.combine(day, hours.start_time),
            closes_at=datetime.combine(day, hours.end_time),
        )
        if hours.has_break:
            business_day.break_start = datetime.combine(day, hours.break_start_time)
            business_day.break_end = datetime.combine(day, hours.break_end_time)
        return business_day

    @staticmethod
    def slot_grid(business_day: BusinessDay, interval_minutes: int) -> list[datetime]:
        """Candidate start times from opening up to (not including) closing."""
        if not business_day.is_open:
            return []

        step = timedelta(minutes=interval_minutes)
        grid = []
        current = business_day.opens_at
        while current < business_day.closes_at:
            grid.append(current)
            current += step
        return grid

    @staticmethod
    def day_bounds(day: date) -> tuple[datetime, datetime]:
        start = datetime.combine(day, time.min)
        return start, start + timedelta(days=1)
