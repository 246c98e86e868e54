from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.api.deps.database import get_db
from agenda.schemas.address import Address, AddressCreate
from agenda.services.addresses import SqlAddressBook

router = APIRouter()


@router.get("/{customer_ref}/addresses", response_model=List[Address])
async def list_addresses(customer_ref: str, db: AsyncSession = Depends(get_db)):
    return await SqlAddressBook(db).list_addresses(customer_ref)


@router.post(
    "/{customer_ref}/addresses",
    response_model=Address,
    status_code=status.HTTP_201_CREATED,
)
async def create_address(
    customer_ref: str,
    address_data: AddressCreate,
    db: AsyncSession = Depends(get_db),
):
    """Add an address to the customer's book for at-home bookings."""
    return await SqlAddressBook(db).create_address(customer_ref, address_data)
