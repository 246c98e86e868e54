from typing import AsyncIterator, Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import StreamingResponse

from agenda.api.deps.business import get_broker
from agenda.core.errors import FatalError, TransientError
from agenda.schemas.events import LiveEvent, LiveEventType
from agenda.services.events import (
    EventBroker,
    Subscription,
    business_channel,
    customer_channel,
)

logger = structlog.get_logger(__name__)

router = APIRouter()

HEARTBEAT_SECONDS = 15.0

# Events the order and review collaborators may push in
EXTERNAL_EVENT_TYPES = frozenset(
    {LiveEventType.ORDER_STATUS_CHANGED, LiveEventType.REVIEW_CREATED}
)


async def _event_stream(
    request: Request, subscription: Subscription
) -> AsyncIterator[str]:
    async with subscription:
        yield ": connected\n\n"
        while not await request.is_disconnected():
            try:
                event = await subscription.next_event(timeout=HEARTBEAT_SECONDS)
            except TransientError:
                # Client reconnects and re-fetches
                return
            if event is None:
                yield ": keep-alive\n\n"
                continue
            yield f"event: {event.type.value}\ndata: {event.model_dump_json()}\n\n"


@router.get("/stream")
async def stream_events(
    request: Request,
    business_id: Optional[int] = Query(None),
    customer_ref: Optional[str] = Query(None),
    broker: EventBroker = Depends(get_broker),
):
    """
    Server-sent events for a business or a customer.

    Events only say that something changed; clients re-fetch what they show.
    """
    channels = []
    if business_id is not None:
        channels.append(business_channel(business_id))
    if customer_ref:
        channels.append(customer_channel(customer_ref))
    if not channels:
        raise FatalError("business_id or customer_ref is required")

    subscription = await broker.subscribe(*channels)
    logger.info("Live stream opened", channels=channels)
    return StreamingResponse(
        _event_stream(request, subscription),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("", status_code=status.HTTP_202_ACCEPTED)
async def publish_external_event(
    event: LiveEvent,
    broker: EventBroker = Depends(get_broker),
):
    """Relay an order or review change from an external collaborator."""
    if event.type not in EXTERNAL_EVENT_TYPES:
        raise FatalError(
            f"Event type {event.type.value} is emitted by the calendar only",
            details={"type": event.type.value},
        )
    receivers = await broker.publish(event)
    return {"receivers": receivers}
