from typing import Iterable

import structlog

from agenda.models.professional import Professional
from agenda.services.catalog import CatalogService

logger = structlog.get_logger(__name__)


class EligibilityResolver:
    """Which professionals can perform a whole cart.

    A professional qualifies when active and linked to every service in the
    cart. An empty result is a normal answer, not an error.
    """

    def __init__(self, catalog: CatalogService):
        self.catalog = catalog

    async def eligible_professionals(
        self, business_id: int, service_ids: Iterable[int]
    ) -> set[int]:
        services = await self.catalog.get_services(
            business_id, service_ids, active_only=False
        )

        eligible = None
        for service in services:
            linked = await self.catalog.get_professionals_for_service(service.id)
            eligible = linked if eligible is None else eligible & linked
            if not eligible:
                break

        if not eligible:
            logger.info(
                "No professional can perform the cart",
                business_id=business_id,
                service_ids=[s.id for s in services],
            )
            return set()

        return {pid for pid in eligible if await self.catalog.is_active(pid)}

    async def eligible_professionals_ordered(
        self, business_id: int, service_ids: Iterable[int]
    ) -> list[Professional]:
        ids = await self.eligible_professionals(business_id, service_ids)
        if not ids:
            return []
        return await self.catalog.get_professionals(business_id, ids)
