from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AddressCreate(BaseModel):
    label: str = Field(..., min_length=1, max_length=100)
    street: str = Field(..., min_length=1, max_length=255)
    number: str = Field(..., min_length=1, max_length=20)
    complement: Optional[str] = None
    neighborhood: Optional[str] = None
    city: str = Field(..., min_length=1, max_length=255)
    state: str = Field(..., min_length=1, max_length=50)
    zip_code: Optional[str] = None
    is_default: bool = False


class Address(AddressCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int
    customer_ref: str
    created_at: Optional[datetime] = None
