
import structlog

from agenda.schemas.appointment import AppointmentCreate
from agenda.schemas.booking import CheckoutRequest
from agenda.services.calendar_store import CalendarStore

logger = structlog.get_logger(__name__)


class CheckoutGateway:
    """Order/checkout collaborator that turns a finalized booking into an
    appointment.

    Implementations return the created appointment id or raise one of the
    scheduling errors (ConflictError when the slot is no longer available).
    """

    async def submit(self, request: CheckoutRequest) -> int:
        raise NotImplementedError


class LocalCheckoutGateway(CheckoutGateway):
    """Creates the pending appointment directly in the calendar store."""

    def __init__(self, store: CalendarStore):
        self.store = store

    async def submit(self, request: CheckoutRequest) -> int:
        appointment = await self.store.create_appointment(
            AppointmentCreate(
                business_id=request.business_id,
                service_ids=request.service_ids,
                professional_id=request.professional_id,
                scheduled_at=request.scheduled_at,
                customer_ref=request.customer_ref,
                customer_name=request.customer_name,
                location_mode=request.location_mode,
                address_ref=request.address_ref,
            )
        )
        if appointment.total_price != request.total_price:
            logger.warning(
                "Checkout total differs from catalog price",
                appointment_id=appointment.id,
                requested=str(request.total_price),
                charged=str(appointment.total_price),
            )
        return appointment.id
