"""Schedule board: the business-facing controller over one calendar day.

The board keeps a single in-memory ``BoardView`` that is only ever replaced
wholesale by ``refresh``. Live events are treated as a signal to refresh,
never merged.
"""

import asyncio
from datetime import date as date_type, datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from agenda.core.config import settings
from agenda.core.errors import (
    ConflictError,
    TransientError,
    ValidationError,
    ValidationReason,
)
from agenda.models.appointment import Appointment, AppointmentStatus
from agenda.schemas.appointment import BlockCreate, ManualBookingCreate
from agenda.schemas.board import BoardAction, BoardCell, BoardEntry, BoardView
from agenda.schemas.events import LiveEventType
from agenda.services.business_hours import Clock
from agenda.services.calendar_store import CalendarStore
from agenda.services.events import EventBroker, business_channel

logger = structlog.get_logger(__name__)

REFRESH_EVENTS = frozenset(
    {
        LiveEventType.APPOINTMENT_CREATED,
        LiveEventType.APPOINTMENT_STATUS_CHANGED,
        LiveEventType.APPOINTMENT_RESCHEDULED,
        LiveEventType.APPOINTMENT_DELETED,
        LiveEventType.ORDER_STATUS_CHANGED,
    }
)


def entry_actions(appointment: Appointment) -> list[BoardAction]:
    if appointment.is_block:
        return [BoardAction.DELETE]
    if not appointment.is_active:
        return [BoardAction.DELETE]

    actions = [BoardAction.RESCHEDULE, BoardAction.CANCEL]
    if appointment.can_transition_to(AppointmentStatus.COMPLETED):
        actions.append(BoardAction.COMPLETE)
    actions.append(BoardAction.DELETE)
    return actions


class ScheduleBoard:
    def __init__(
        self,
        db: AsyncSession,
        business_id: int,
        day: date_type,
        professional_id: Optional[int] = None,
        store: Optional[CalendarStore] = None,
        broker: Optional[EventBroker] = None,
        clock: Optional[Clock] = None,
    ):
        self.db = db
        self.business_id = business_id
        self.day = day
        self.professional_id = professional_id
        self.store = store or CalendarStore(db, broker=broker, clock=clock)
        self.broker = broker or self.store.broker
        self.view: Optional[BoardView] = None
        self.reschedule_pending_id: Optional[int] = None
        self.refresh_count = 0

    async def refresh(self) -> BoardView:
        """Re-fetch the whole day and replace the view."""
        catalog = self.store.catalog
        hours = self.store.hours

        business = await catalog.get_business(self.business_id)
        business_day = await hours.get_business_day(business, self.day)
        interval = hours.slot_interval(business)
        grid = hours.slot_grid(business_day, interval)
        appointments = await self.store.list_day(self.business_id, self.day)
        professionals = {
            p.id: p
            for p in await catalog.get_professionals(
                self.business_id, active_only=False
            )
        }
        active_ids = {p.id for p in professionals.values() if p.is_active}

        entries = []
        for appointment in appointments:
            if (
                self.professional_id is not None
                and not appointment.is_block
                and appointment.professional_id != self.professional_id
            ):
                continue
            professional = professionals.get(appointment.professional_id)
            entries.append(
                (
                    appointment,
                    BoardEntry(
                        appointment_id=appointment.id,
                        kind=appointment.kind,
                        status=appointment.status,
                        is_manual=appointment.is_manual,
                        professional_id=appointment.professional_id,
                        professional_name=professional.name if professional else None,
                        customer_name=appointment.customer_name,
                        label=appointment.label or appointment.reason,
                        service_names=[
                            line.service_name for line in appointment.service_lines
                        ],
                        start=appointment.scheduled_at,
                        end=appointment.end_at,
                        actions=entry_actions(appointment),
                    ),
                )
            )

        step = timedelta(minutes=interval)
        cells = []
        for t in grid:
            covering = [
                (a, e) for a, e in entries if a.scheduled_at <= t < a.end_at
            ]
            live = [a for a, _ in covering if a.is_active]
            cells.append(
                BoardCell(
                    time=t,
                    end=t + step,
                    entries=[e for _, e in covering],
                    occupancy=len(live),
                    actions=self._cell_actions(live, active_ids),
                )
            )

        self.view = BoardView(
            business_id=self.business_id,
            date=self.day,
            professional_id=self.professional_id,
            is_open=business_day.is_open,
            holiday_name=business_day.holiday_name,
            slot_interval_minutes=interval,
            cells=cells,
            entries=[e for _, e in entries],
            reschedule_pending_id=self.reschedule_pending_id,
            refreshed_at=hours.clock(),
        )
        self.refresh_count += 1
        logger.debug(
            "Board refreshed",
            business_id=self.business_id,
            date=self.day.isoformat(),
            entries=len(entries),
        )
        return self.view

    def _cell_actions(
        self, live: list[Appointment], active_professional_ids: set[int]
    ) -> list[BoardAction]:
        if self.reschedule_pending_id is not None:
            others = [a for a in live if a.id != self.reschedule_pending_id]
            return [] if any(a.is_block for a in others) else [BoardAction.MOVE_HERE]

        if any(a.is_block for a in live):
            return []
        actions = []
        if self.professional_id is not None:
            candidates = {self.professional_id} & active_professional_ids
        else:
            candidates = active_professional_ids
        busy = {a.professional_id for a in live}
        if candidates - busy:
            actions.append(BoardAction.CREATE_BOOKING)
        if not live:
            actions.append(BoardAction.CREATE_BLOCK)
        return actions

    def _entry(self, appointment_id: int) -> BoardEntry:
        if self.view is not None:
            for entry in self.view.entries:
                if entry.appointment_id == appointment_id:
                    return entry
        raise ValidationError(
            ValidationReason.ACTION_NOT_ALLOWED,
            "Appointment is not on this board",
            details={"appointment_id": appointment_id},
        )

    def _require_action(self, appointment_id: int, action: BoardAction) -> None:
        entry = self._entry(appointment_id)
        if action not in entry.actions:
            raise ValidationError(
                ValidationReason.ACTION_NOT_ALLOWED,
                f"Cannot {action.value} this entry",
                details={"appointment_id": appointment_id, "action": action.value},
            )

    # Reschedule protocol
    def begin_reschedule(self, appointment_id: int) -> None:
        self._require_action(appointment_id, BoardAction.RESCHEDULE)
        self.reschedule_pending_id = appointment_id
        if self.view is not None:
            self.view = self.view.model_copy(
                update={"reschedule_pending_id": appointment_id}
            )

    def cancel_reschedule(self) -> None:
        self.reschedule_pending_id = None
        if self.view is not None:
            self.view = self.view.model_copy(update={"reschedule_pending_id": None})

    async def select_slot(self, time: datetime) -> Optional[Appointment]:
        """Target of a pending reschedule; returns the moved appointment."""
        if self.reschedule_pending_id is None:
            raise ValidationError(
                ValidationReason.MISSING_SELECTION,
                "Pick an appointment to reschedule first",
            )

        try:
            appointment = await self.store.reschedule_appointment(
                self.reschedule_pending_id, time, self.business_id
            )
        except ConflictError:
            # Keep the pending move so the user can retry on fresh data
            await self.refresh()
            raise

        self.reschedule_pending_id = None
        await self.refresh()
        return appointment

    # Direct edits
    async def create_manual_booking(
        self,
        time: datetime,
        service_ids: Optional[list[int]] = None,
        professional_id: Optional[int] = None,
        customer_ref: Optional[str] = None,
        customer_name: Optional[str] = None,
        label: Optional[str] = None,
        duration_minutes: Optional[int] = None,
    ) -> Appointment:
        try:
            appointment = await self.store.create_manual_booking(
                ManualBookingCreate(
                    business_id=self.business_id,
                    scheduled_at=time,
                    service_ids=service_ids or [],
                    professional_id=professional_id or self.professional_id,
                    customer_ref=customer_ref,
                    customer_name=customer_name,
                    label=label,
                    duration_minutes=duration_minutes,
                )
            )
        except ConflictError:
            await self.refresh()
            raise
        await self.refresh()
        return appointment

    async def create_block(
        self,
        time: datetime,
        duration_minutes: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Appointment:
        try:
            block = await self.store.create_block(
                BlockCreate(
                    business_id=self.business_id,
                    scheduled_at=time,
                    duration_minutes=duration_minutes,
                    reason=reason,
                )
            )
        except ConflictError:
            await self.refresh()
            raise
        await self.refresh()
        return block

    async def update_status(
        self, appointment_id: int, status: AppointmentStatus
    ) -> Appointment:
        action = {
            AppointmentStatus.CANCELLED: BoardAction.CANCEL,
            AppointmentStatus.COMPLETED: BoardAction.COMPLETE,
        }.get(status)
        if action is not None:
            self._require_action(appointment_id, action)

        appointment = await self.store.update_status(
            appointment_id, status, self.business_id
        )
        if self.reschedule_pending_id == appointment_id:
            self.reschedule_pending_id = None
        await self.refresh()
        return appointment

    async def delete(self, appointment_id: int) -> None:
        self._require_action(appointment_id, BoardAction.DELETE)
        await self.store.delete_appointment(appointment_id, self.business_id)
        if self.reschedule_pending_id == appointment_id:
            self.reschedule_pending_id = None
        await self.refresh()

    # Live sync
    async def run_live_sync(
        self,
        stop: asyncio.Event,
        poll_timeout: float = 1.0,
        max_attempts: Optional[int] = None,
        max_wait: Optional[float] = None,
    ) -> None:
        """Refresh on every relevant event until ``stop`` is set.

        A dropped channel is reconnected with exponential backoff and the
        board refreshes once after every (re)connect to cover missed events.
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransientError),
            wait=wait_exponential(
                multiplier=0.5,
                min=0.5,
                max=max_wait or settings.LIVE_RECONNECT_MAX_WAIT_SECONDS,
            ),
            stop=stop_after_attempt(
                max_attempts or settings.LIVE_RECONNECT_MAX_ATTEMPTS
            ),
            before_sleep=self._log_reconnect,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                await self._listen(stop, poll_timeout)

    async def _listen(self, stop: asyncio.Event, poll_timeout: float) -> None:
        subscription = await self.broker.subscribe(business_channel(self.business_id))
        async with subscription:
            await self.refresh()
            logger.info("Board live sync connected", business_id=self.business_id)
            while not stop.is_set():
                event = await subscription.next_event(timeout=poll_timeout)
                if event is None or event.type not in REFRESH_EVENTS:
                    continue
                if event.business_id != self.business_id:
                    continue
                await self.refresh()

    def _log_reconnect(self, retry_state) -> None:
        logger.warning(
            "Board live sync disconnected, reconnecting",
            business_id=self.business_id,
            attempt=retry_state.attempt_number,
            error=str(retry_state.outcome.exception()),
        )
