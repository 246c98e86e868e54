from typing import Iterable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.core.errors import (
    FatalError,
    NotFoundError,
    ValidationError,
    ValidationReason,
)
from agenda.models.business import Business
from agenda.models.professional import Professional
from agenda.models.service import Service
from agenda.models.service_professional import ServiceProfessional

logger = structlog.get_logger(__name__)


class CatalogService:
    """Read-only access to businesses, services and professionals."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_business(self, business_id: int) -> Business:
        business = await self.db.get(Business, business_id)
        if business is None or not business.is_active:
            logger.warning("Business not found", business_id=business_id)
            raise NotFoundError("Business", business_id)
        return business

    async def get_services(
        self, business_id: int, service_ids: Iterable[int], active_only: bool = True
    ) -> list[Service]:
        """Services of a cart, in the order they were requested."""
        ids = list(service_ids)
        if not ids:
            raise FatalError("A booking needs at least one service")
        if len(set(ids)) != len(ids):
            raise FatalError(
                "A service may appear only once in a cart",
                details={"service_ids": ids},
            )

        result = await self.db.execute(
            select(Service).where(
                Service.id.in_(ids), Service.business_id == business_id
            )
        )
        by_id = {s.id: s for s in result.scalars().all()}

        services = []
        for service_id in ids:
            service = by_id.get(service_id)
            if service is None:
                raise NotFoundError("Service", service_id)
            if active_only and not service.is_active:
                raise ValidationError(
                    ValidationReason.SERVICE_INACTIVE,
                    f"Service '{service.name}' is not available for booking",
                    details={"service_id": service_id},
                )
            services.append(service)
        return services

    async def get_professionals_for_service(self, service_id: int) -> set[int]:
        result = await self.db.execute(
            select(ServiceProfessional.professional_id).where(
                ServiceProfessional.service_id == service_id
            )
        )
        return set(result.scalars().all())

    async def is_active(self, professional_id: int) -> bool:
        result = await self.db.execute(
            select(Professional.is_active).where(Professional.id == professional_id)
        )
        return bool(result.scalar_one_or_none())

    async def get_professional(
        self, professional_id: int, business_id: Optional[int] = None
    ) -> Professional:
        professional = await self.db.get(Professional, professional_id)
        if professional is None or (
            business_id is not None and professional.business_id != business_id
        ):
            raise NotFoundError("Professional", professional_id)
        return professional

    async def get_professionals(
        self,
        business_id: int,
        professional_ids: Optional[Iterable[int]] = None,
        active_only: bool = True,
    ) -> list[Professional]:
        """Professionals of a business in board display order."""
        query = select(Professional).where(Professional.business_id == business_id)
        if professional_ids is not None:
            query = query.where(Professional.id.in_(list(professional_ids)))
        if active_only:
            query = query.where(Professional.is_active.is_(True))
        query = query.order_by(Professional.display_order, Professional.id)

        result = await self.db.execute(query)
        return list(result.scalars().all())
