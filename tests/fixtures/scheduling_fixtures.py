from datetime import date, datetime, time, timedelta
from decimal import Decimal
from types import SimpleNamespace
from typing import Iterable, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.models.appointment import Appointment, AppointmentKind, AppointmentStatus
from agenda.models.business import Business
from agenda.models.professional import Professional
from agenda.models.service import AttendanceMode, Service
from agenda.models.service_professional import ServiceProfessional
from agenda.models.working_hours import WorkingHours

MONDAY = date(2030, 1, 7)


def at(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
    return datetime.combine(day, time(hour, minute))


class FixedClock:
    """Injectable UTC clock; tests move ``now`` explicitly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


async def add_professional(
    db: AsyncSession,
    business: Business,
    name: str,
    display_order: int = 0,
    is_active: bool = True,
) -> Professional:
    professional = Professional(
        business_id=business.id,
        name=name,
        display_order=display_order,
        is_active=is_active,
    )
    db.add(professional)
    await db.commit()
    await db.refresh(professional)
    return professional


async def add_service(
    db: AsyncSession,
    business: Business,
    name: str,
    duration: int,
    buffer: int = 0,
    professionals: Iterable[Professional] = (),
    price: str = "50.00",
    attendance_mode: AttendanceMode = AttendanceMode.BOTH,
    is_schedulable: bool = True,
) -> Service:
    service = Service(
        business_id=business.id,
        name=name,
        duration_minutes=duration,
        buffer_minutes=buffer,
        price=Decimal(price),
        attendance_mode=attendance_mode.value,
        is_schedulable=is_schedulable,
    )
    db.add(service)
    await db.flush()
    for professional in professionals:
        db.add(ServiceProfessional(service_id=service.id, professional_id=professional.id))
    await db.commit()
    await db.refresh(service)
    return service


async def add_entry(
    db: AsyncSession,
    business: Business,
    start: datetime,
    minutes: int,
    professional: Optional[Professional] = None,
    status: AppointmentStatus = AppointmentStatus.SCHEDULED,
    kind: AppointmentKind = AppointmentKind.SERVICE,
) -> Appointment:
    """Insert a calendar row directly, bypassing the store's checks."""
    entry = Appointment(
        business_id=business.id,
        professional_id=professional.id if professional else None,
        customer_name="Existing client" if kind == AppointmentKind.SERVICE else None,
        scheduled_at=start,
        end_at=start + timedelta(minutes=minutes),
        duration_minutes=minutes,
        kind=kind.value,
        is_manual=True,
        status=status.value,
        total_price=Decimal("0"),
        reschedule_count=0,
    )
    db.add(entry)
    await db.commit()
    await db.refresh(entry)
    return entry


@pytest.fixture
async def business(db: AsyncSession) -> Business:
    """Business with default hours (08:00-20:00 every day) on a 30 min grid."""
    business = Business(name="Studio Bela", timezone="UTC")
    db.add(business)
    await db.commit()
    await db.refresh(business)
    return business


@pytest.fixture
async def quarter_hour_business(db: AsyncSession) -> Business:
    business = Business(name="Quarter Hour Spa", timezone="UTC", slot_interval_minutes=15)
    db.add(business)
    await db.commit()
    await db.refresh(business)
    return business


@pytest.fixture
async def staff(db: AsyncSession, business: Business) -> SimpleNamespace:
    """Three professionals in board order."""
    return SimpleNamespace(
        p1=await add_professional(db, business, "Ana", display_order=1),
        p2=await add_professional(db, business, "Bruno", display_order=2),
        p3=await add_professional(db, business, "Carla", display_order=3),
    )


@pytest.fixture
async def catalog(db: AsyncSession, business: Business, staff) -> SimpleNamespace:
    """Service X (45+15, P1/P2) and Y (30+0, P2/P3): only P2 does both."""
    x = await add_service(
        db, business, "Haircut", 45, 15, [staff.p1, staff.p2], price="80.00"
    )
    y = await add_service(db, business, "Beard trim", 30, 0, [staff.p2, staff.p3], price="40.00")
    return SimpleNamespace(x=x, y=y, **vars(staff))


@pytest.fixture
async def working_week(db: AsyncSession, business: Business) -> list[WorkingHours]:
    """Mon-Fri 09:00-18:00 with a 12:00-13:00 lunch break; weekends closed."""
    rows = [
        WorkingHours(
            business_id=business.id,
            weekday=weekday,
            start_time=time(9, 0),
            end_time=time(18, 0),
            break_start_time=time(12, 0),
            break_end_time=time(13, 0),
        )
        for weekday in range(5)
    ]
    db.add_all(rows)
    await db.commit()
    return rows
