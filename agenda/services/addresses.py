from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.models.customer_address import CustomerAddress
from agenda.schemas.address import AddressCreate

logger = structlog.get_logger(__name__)


class AddressBook:
    """Customer addresses used for at-home bookings."""

    async def list_addresses(self, customer_ref: str) -> list[CustomerAddress]:
        raise NotImplementedError

    async def create_address(
        self, customer_ref: str, data: AddressCreate
    ) -> CustomerAddress:
        raise NotImplementedError

    async def get_address(
        self, customer_ref: str, address_id: int
    ) -> Optional[CustomerAddress]:
        raise NotImplementedError


class SqlAddressBook(AddressBook):
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_addresses(self, customer_ref: str) -> list[CustomerAddress]:
        result = await self.db.execute(
            select(CustomerAddress)
            .where(CustomerAddress.customer_ref == customer_ref)
            .order_by(CustomerAddress.is_default.desc(), CustomerAddress.id)
        )
        return list(result.scalars().all())

    async def create_address(
        self, customer_ref: str, data: AddressCreate
    ) -> CustomerAddress:
        try:
            if data.is_default:
                await self.db.execute(
                    update(CustomerAddress)
                    .where(CustomerAddress.customer_ref == customer_ref)
                    .values(is_default=False)
                )
            address = CustomerAddress(customer_ref=customer_ref, **data.model_dump())
            self.db.add(address)
            await self.db.commit()
            await self.db.refresh(address)
        except Exception as e:
            await self.db.rollback()
            logger.error(
                "Failed to create address", customer_ref=customer_ref, error=str(e)
            )
            raise

        logger.info(
            "Address created", customer_ref=customer_ref, address_id=address.id
        )
        return address

    async def get_address(
        self, customer_ref: str, address_id: int
    ) -> Optional[CustomerAddress]:
        address = await self.db.get(CustomerAddress, address_id)
        if address is None or address.customer_ref != customer_ref:
            return None
        return address
