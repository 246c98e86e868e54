import structlog
from fastapi import Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.api.deps.database import get_db
from agenda.core.locks import CalendarLockProvider, get_lock_provider
from agenda.models.business import Business
from agenda.services.catalog import CatalogService
from agenda.services.events import EventBroker, get_event_broker

logger = structlog.get_logger(__name__)


class BusinessContext:
    """Business context for multi-tenant operations."""

    def __init__(self, business: Business):
        self.business = business
        self.business_id = business.id
        self.timezone = business.timezone


async def get_business_context(
    business_id: int = Query(..., description="Business ID"),
    db: AsyncSession = Depends(get_db),
) -> BusinessContext:
    """
    Get business context for multi-tenant operations.

    Raises NotFoundError (404) when the business does not exist or is
    inactive; every operation below is scoped to it.
    """
    business = await CatalogService(db).get_business(business_id)
    return BusinessContext(business)


def get_broker() -> EventBroker:
    return get_event_broker()


def get_locks() -> CalendarLockProvider:
    return get_lock_provider()
