"""Calendar store: the single writer of appointments and blocks.

Every mutation holds the (business, day) calendar lock, re-validates the
target interval against what is committed right now, writes and commits
before releasing the lock. A write that times out or hits an I/O error is
rolled back and reported as TransientError, so nothing partial survives.
"""

import asyncio
from datetime import date as date_type, datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from agenda.core.config import settings
from agenda.core.errors import (
    ConflictError,
    ConflictReason,
    FatalError,
    NotFoundError,
    SchedulingError,
    TransientError,
    ValidationError,
    ValidationReason,
)
from agenda.core.locks import CalendarLockProvider, get_lock_provider
from agenda.models.appointment import (
    Appointment,
    AppointmentKind,
    AppointmentStatus,
)
from agenda.models.appointment_service_line import AppointmentServiceLine
from agenda.models.business import Business
from agenda.models.service import LocationMode, Service
from agenda.schemas.appointment import (
    AppointmentCreate,
    BlockCreate,
    ManualBookingCreate,
)
from agenda.schemas.events import LiveEvent, LiveEventType
from agenda.schemas.scheduling import AvailabilitySlot, SlotUnavailableReason
from agenda.services.business_hours import BusinessHoursService, Clock
from agenda.services.events import EventBroker, get_event_broker
from agenda.services.scheduling import (
    AvailabilityEngine,
    evaluate_slot,
    find_conflicts,
    load_entries,
    window_for,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

WALK_IN_CUSTOMER_NAME = "Walk-in client"

_HOURS_REASONS = {
    SlotUnavailableReason.OUTSIDE_BUSINESS_HOURS,
    SlotUnavailableReason.EXCEEDS_BUSINESS_HOURS,
    SlotUnavailableReason.DURING_BREAK,
}


def raise_for_slot(
    slot: AvailabilitySlot,
    professional_id: Optional[int] = None,
    ignore: Iterable[SlotUnavailableReason] = (),
) -> None:
    """Translate the reasons of an unavailable slot into the error taxonomy.

    Input problems are ValidationError; collisions with committed entries
    are ConflictError.
    """
    reasons = [r for r in slot.reasons if r not in set(ignore)]
    if not reasons:
        return

    details = {
        "start": slot.start.isoformat(),
        "end": slot.end.isoformat(),
        "reasons": [r.value for r in reasons],
    }
    if SlotUnavailableReason.NO_ELIGIBLE_PROFESSIONAL in reasons:
        if professional_id is not None:
            raise ValidationError(
                ValidationReason.PROFESSIONAL_NOT_ELIGIBLE,
                "Professional cannot perform every selected service",
                details={**details, "professional_id": professional_id},
            )
        raise ValidationError(
            ValidationReason.NO_ELIGIBLE_PROFESSIONAL,
            "No professional can perform this combination of services",
            details=details,
        )
    if _HOURS_REASONS & set(reasons):
        raise ValidationError(
            ValidationReason.OUTSIDE_BUSINESS_HOURS,
            "Requested time is outside business hours",
            details=details,
        )
    if SlotUnavailableReason.IN_THE_PAST in reasons:
        raise ValidationError(
            ValidationReason.SLOT_UNAVAILABLE,
            "Requested time has already passed",
            details=details,
            retryable=True,
        )
    if SlotUnavailableReason.COMPANY_BLOCK in reasons:
        raise ConflictError(
            ConflictReason.BLOCKED,
            "Requested time is blocked",
            details=details,
        )
    if professional_id is not None:
        raise ConflictError(
            ConflictReason.PROFESSIONAL_DOUBLE_BOOKED,
            "Professional already has an appointment at this time",
            details={**details, "professional_id": professional_id},
        )
    raise ConflictError(
        ConflictReason.NO_PROFESSIONAL_FREE,
        "No eligible professional is free at this time",
        details=details,
    )


def _days_spanned(start: datetime, end: datetime) -> set[date_type]:
    last = (end - timedelta(microseconds=1)).date()
    days = set()
    current = start.date()
    while current <= last:
        days.add(current)
        current += timedelta(days=1)
    return days


class CalendarStore:
    """Authoritative reads and writes of a business calendar."""

    def __init__(
        self,
        db: AsyncSession,
        lock_provider: Optional[CalendarLockProvider] = None,
        broker: Optional[EventBroker] = None,
        clock: Optional[Clock] = None,
        write_timeout: Optional[float] = None,
    ):
        self.db = db
        self.locks = lock_provider or get_lock_provider()
        self.broker = broker or get_event_broker()
        self.engine = AvailabilityEngine(db, clock)
        self.catalog = self.engine.catalog
        self.hours: BusinessHoursService = self.engine.hours
        self.write_timeout = (
            write_timeout
            if write_timeout is not None
            else settings.BOOKING_WRITE_TIMEOUT_SECONDS
        )

    # Reads
    async def list_day(
        self,
        business_id: int,
        day: date_type,
        include_terminal: bool = True,
    ) -> list[Appointment]:
        start, end = self.hours.day_bounds(day)
        if not include_terminal:
            return await load_entries(self.db, business_id, start, end)

        try:
            result = await self.db.execute(
                select(Appointment)
                .where(
                    Appointment.business_id == business_id,
                    Appointment.scheduled_at < end,
                    Appointment.end_at > start,
                )
                .options(selectinload(Appointment.service_lines))
                .order_by(Appointment.scheduled_at, Appointment.id)
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            logger.error(
                "Failed to list calendar day", business_id=business_id, error=str(e)
            )
            raise TransientError("Calendar temporarily unavailable") from e
        return list(result.scalars().all())

    async def get_appointment(
        self, appointment_id: int, business_id: Optional[int] = None
    ) -> Appointment:
        result = await self.db.execute(
            select(Appointment)
            .where(Appointment.id == appointment_id)
            .options(selectinload(Appointment.service_lines))
            .execution_options(populate_existing=True)
        )
        appointment = result.scalar_one_or_none()
        if appointment is None or (
            business_id is not None and appointment.business_id != business_id
        ):
            raise NotFoundError("Appointment", appointment_id)
        return appointment

    # Writes
    async def create_appointment(self, data: AppointmentCreate) -> Appointment:
        """Customer-flow booking; starts pending until the order settles."""
        business = await self.catalog.get_business(data.business_id)
        services = await self.catalog.get_services(business.id, data.service_ids)
        await self.catalog.get_professional(data.professional_id, business.id)
        window = window_for(services)
        start = self.hours.to_local(business, data.scheduled_at)
        end = start + timedelta(minutes=window)

        if data.location_mode == LocationMode.AT_HOME and not data.address_ref:
            raise ValidationError(
                ValidationReason.ADDRESS_REQUIRED,
                "An address is required for at-home appointments",
            )
        for service in services:
            if data.location_mode not in service.allowed_locations:
                raise ValidationError(
                    ValidationReason.LOCATION_NOT_ALLOWED,
                    f"Service '{service.name}' is not offered {data.location_mode.value}",
                    details={"service_id": service.id},
                )

        async def write() -> Appointment:
            slot = await self.engine.check_time(
                business.id,
                start,
                window,
                [s.id for s in services],
                professional_filter=data.professional_id,
                business=business,
            )
            raise_for_slot(slot, professional_id=data.professional_id)

            appointment = self._new_service_entry(
                business,
                services,
                start,
                window,
                professional_id=data.professional_id,
                status=AppointmentStatus.PENDING,
                is_manual=False,
                customer_ref=data.customer_ref,
                customer_name=data.customer_name,
            )
            appointment.location_mode = data.location_mode.value
            appointment.address_ref = data.address_ref
            self.db.add(appointment)
            await self.db.flush()
            return appointment

        appointment = await self._run_write(business.id, _days_spanned(start, end), write)
        logger.info(
            "Appointment created",
            appointment_id=appointment.id,
            business_id=business.id,
            professional_id=appointment.professional_id,
            start=start.isoformat(),
            minutes=window,
        )
        await self._publish(LiveEventType.APPOINTMENT_CREATED, appointment)
        return appointment

    async def create_manual_booking(self, data: ManualBookingCreate) -> Appointment:
        """Business-entered booking; professional auto-assigned when omitted."""
        business = await self.catalog.get_business(data.business_id)
        services = (
            await self.catalog.get_services(business.id, data.service_ids)
            if data.service_ids
            else []
        )
        if services:
            window = window_for(services)
        else:
            window = data.duration_minutes or settings.MANUAL_ENTRY_DEFAULT_MINUTES
        if data.professional_id is not None:
            await self.catalog.get_professional(data.professional_id, business.id)

        start = self.hours.to_local(business, data.scheduled_at)
        end = start + timedelta(minutes=window)
        service_ids = [s.id for s in services]

        async def write() -> Appointment:
            professional_id = data.professional_id
            slot = await self.engine.check_time(
                business.id,
                start,
                window,
                service_ids,
                professional_filter=professional_id,
                business=business,
                enforce_past=False,
            )
            raise_for_slot(slot, professional_id=professional_id)

            if professional_id is None:
                # First free eligible professional in board order
                ordered = await self.catalog.get_professionals(
                    business.id, slot.free_professional_ids
                )
                if not ordered:
                    raise ConflictError(
                        ConflictReason.NO_PROFESSIONAL_FREE,
                        "No professional is free at this time",
                        details={"start": start.isoformat()},
                    )
                professional_id = ordered[0].id

            appointment = self._new_service_entry(
                business,
                services,
                start,
                window,
                professional_id=professional_id,
                status=AppointmentStatus.SCHEDULED,
                is_manual=True,
                customer_ref=data.customer_ref,
                customer_name=data.customer_name or WALK_IN_CUSTOMER_NAME,
            )
            appointment.location_mode = LocationMode.IN_PERSON.value
            if not services:
                appointment.label = data.label or "Manual booking"
            else:
                appointment.label = data.label
            self.db.add(appointment)
            await self.db.flush()
            return appointment

        appointment = await self._run_write(business.id, _days_spanned(start, end), write)
        logger.info(
            "Manual booking created",
            appointment_id=appointment.id,
            business_id=business.id,
            professional_id=appointment.professional_id,
            start=start.isoformat(),
            minutes=window,
        )
        await self._publish(LiveEventType.APPOINTMENT_CREATED, appointment)
        return appointment

    async def create_block(self, data: BlockCreate) -> Appointment:
        """Company-wide block; may not overlap any live entry."""
        business = await self.catalog.get_business(data.business_id)
        minutes = data.duration_minutes or settings.MANUAL_ENTRY_DEFAULT_MINUTES
        start = self.hours.to_local(business, data.scheduled_at)
        end = start + timedelta(minutes=minutes)

        async def write() -> Appointment:
            business_day = await self.hours.get_business_day(business, start.date())
            if (
                not business_day.is_open
                or start < business_day.opens_at
                or end > business_day.closes_at
            ):
                raise ValidationError(
                    ValidationReason.OUTSIDE_BUSINESS_HOURS,
                    "Block must fall within business hours",
                    details={"start": start.isoformat(), "end": end.isoformat()},
                )

            entries = await load_entries(self.db, business.id, start, end)
            taken = find_conflicts(entries, start, end)
            if taken:
                raise ConflictError(
                    ConflictReason.SLOT_TAKEN,
                    "Interval already has appointments or blocks",
                    details={"appointment_ids": [e.id for e in taken]},
                )

            block = Appointment(
                business_id=business.id,
                professional_id=None,
                scheduled_at=start,
                end_at=end,
                duration_minutes=minutes,
                kind=AppointmentKind.BLOCK.value,
                is_manual=True,
                reason=data.reason,
                status=AppointmentStatus.SCHEDULED.value,
                total_price=Decimal("0"),
                reschedule_count=0,
            )
            block.service_lines = []
            self.db.add(block)
            await self.db.flush()
            return block

        block = await self._run_write(business.id, _days_spanned(start, end), write)
        logger.info(
            "Block created",
            appointment_id=block.id,
            business_id=business.id,
            start=start.isoformat(),
            minutes=minutes,
        )
        await self._publish(LiveEventType.APPOINTMENT_CREATED, block)
        return block

    async def reschedule_appointment(
        self,
        appointment_id: int,
        new_start: datetime,
        business_id: Optional[int] = None,
    ) -> Appointment:
        """Move a service appointment, keeping professional and duration."""
        current = await self.get_appointment(appointment_id, business_id)
        if current.is_block:
            raise ValidationError(
                ValidationReason.ACTION_NOT_ALLOWED,
                "Blocks cannot be rescheduled; delete and recreate them",
            )
        if not current.is_active:
            raise ValidationError(
                ValidationReason.ACTION_NOT_ALLOWED,
                f"A {current.status} appointment cannot be rescheduled",
            )

        business = await self.catalog.get_business(current.business_id)
        new_start = self.hours.to_local(business, new_start)
        old_start = current.scheduled_at
        new_end = new_start + timedelta(minutes=current.duration_minutes)
        days = _days_spanned(current.scheduled_at, current.end_at) | _days_spanned(
            new_start, new_end
        )

        async def write() -> Appointment:
            # Re-read under the lock: status or time may have moved meanwhile
            appointment = await self.get_appointment(appointment_id)
            if not appointment.is_active:
                raise ConflictError(
                    ConflictReason.SLOT_TAKEN,
                    "Appointment changed status while rescheduling",
                    details={"status": appointment.status},
                )

            # Eligibility was settled at booking time: only the assigned
            # professional's own calendar matters
            professional_id = appointment.professional_id
            if professional_id is not None:
                eligible = {professional_id}
            else:
                eligible = await self.engine.eligible_for(
                    business.id, appointment.service_ids
                )

            business_day = await self.hours.get_business_day(business, new_start.date())
            entries = await load_entries(self.db, business.id, new_start, new_end)
            moving = new_start != appointment.scheduled_at
            slot = evaluate_slot(
                new_start,
                appointment.duration_minutes,
                eligible,
                entries,
                business_day,
                now=self.hours.local_now(business) if moving else None,
                exclude_id=appointment.id,
            )
            raise_for_slot(slot, professional_id=professional_id)

            appointment.move_to(new_start)
            await self.db.flush()
            return appointment

        appointment = await self._run_write(business.id, days, write)
        logger.info(
            "Appointment rescheduled",
            appointment_id=appointment.id,
            business_id=business.id,
            old_start=old_start.isoformat(),
            new_start=new_start.isoformat(),
        )
        await self._publish(LiveEventType.APPOINTMENT_RESCHEDULED, appointment)
        return appointment

    async def update_status(
        self,
        appointment_id: int,
        new_status: AppointmentStatus,
        business_id: Optional[int] = None,
    ) -> Appointment:
        current = await self.get_appointment(appointment_id, business_id)
        if current.is_block:
            raise ValidationError(
                ValidationReason.ACTION_NOT_ALLOWED,
                "Blocks have no status workflow; delete them instead",
            )

        async def write() -> Appointment:
            appointment = await self.get_appointment(appointment_id)
            if not appointment.transition_to(new_status):
                raise ValidationError(
                    ValidationReason.INVALID_STATUS_TRANSITION,
                    f"Cannot change status from {appointment.status} to {new_status.value}",
                    details={"from": appointment.status, "to": new_status.value},
                )
            await self.db.flush()
            return appointment

        appointment = await self._run_write(
            current.business_id,
            _days_spanned(current.scheduled_at, current.end_at),
            write,
        )
        logger.info(
            "Appointment status changed",
            appointment_id=appointment.id,
            previous_status=appointment.previous_status,
            status=appointment.status,
        )
        await self._publish(LiveEventType.APPOINTMENT_STATUS_CHANGED, appointment)
        return appointment

    async def delete_appointment(
        self, appointment_id: int, business_id: Optional[int] = None
    ) -> None:
        current = await self.get_appointment(appointment_id, business_id)

        async def write() -> Appointment:
            appointment = await self.get_appointment(appointment_id)
            await self.db.delete(appointment)
            await self.db.flush()
            return appointment

        appointment = await self._run_write(
            current.business_id,
            _days_spanned(current.scheduled_at, current.end_at),
            write,
        )
        logger.info(
            "Appointment deleted",
            appointment_id=appointment_id,
            business_id=appointment.business_id,
            kind=appointment.kind,
        )
        await self._publish(
            LiveEventType.APPOINTMENT_DELETED, appointment, appointment_id=appointment_id
        )

    # Internals
    def _new_service_entry(
        self,
        business: Business,
        services: list[Service],
        start: datetime,
        window: int,
        *,
        professional_id: int,
        status: AppointmentStatus,
        is_manual: bool,
        customer_ref: Optional[str],
        customer_name: Optional[str],
    ) -> Appointment:
        appointment = Appointment(
            business_id=business.id,
            professional_id=professional_id,
            customer_ref=customer_ref,
            customer_name=customer_name,
            scheduled_at=start,
            end_at=start + timedelta(minutes=window),
            duration_minutes=window,
            kind=AppointmentKind.SERVICE.value,
            is_manual=is_manual,
            status=status.value,
            total_price=sum((s.price for s in services), Decimal("0")),
            reschedule_count=0,
        )
        appointment.service_lines = [
            AppointmentServiceLine(
                service_id=service.id,
                position=position,
                service_name=service.name,
                price=service.price,
                duration_minutes=service.duration_minutes,
                buffer_minutes=service.buffer_minutes or 0,
            )
            for position, service in enumerate(services)
        ]
        return appointment

    async def _run_write(
        self,
        business_id: int,
        days: Iterable[date_type],
        write: Callable[[], Awaitable[T]],
    ) -> T:
        async def locked() -> T:
            async with self.locks.hold(business_id, days):
                result = await write()
                await self.db.commit()
                return result

        try:
            return await asyncio.wait_for(locked(), timeout=self.write_timeout)
        except asyncio.TimeoutError as e:
            await self.db.rollback()
            logger.error(
                "Calendar write timed out",
                business_id=business_id,
                timeout=self.write_timeout,
            )
            raise TransientError(
                "Booking took too long and was not saved; please retry",
                details={"timeout_seconds": self.write_timeout},
            ) from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Calendar write failed", business_id=business_id, error=str(e))
            raise TransientError("Calendar temporarily unavailable") from e
        except SchedulingError as e:
            await self.db.rollback()
            if isinstance(e, ConflictError):
                logger.info(
                    "Calendar write rejected",
                    business_id=business_id,
                    reason=e.code,
                    **e.details,
                )
            raise

    async def _publish(
        self,
        event_type: LiveEventType,
        appointment: Appointment,
        appointment_id: Optional[int] = None,
    ) -> None:
        event = LiveEvent(
            type=event_type,
            business_id=appointment.business_id,
            customer_ref=appointment.customer_ref,
            appointment_id=appointment_id or appointment.id,
            payload={
                "status": appointment.status,
                "kind": appointment.kind,
                "date": appointment.scheduled_at.date().isoformat(),
            },
        )
        try:
            await self.broker.publish(event)
        except TransientError as e:
            # The write is committed; viewers catch up on their next refresh
            logger.warning(
                "Live event not delivered",
                event_type=event_type.value,
                appointment_id=event.appointment_id,
                error=e.message,
            )
