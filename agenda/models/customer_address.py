import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Uuid
from sqlalchemy.sql import func

from agenda.core.database import Base


class CustomerAddress(Base):
    """Address book entry used for at-home bookings."""

    __tablename__ = "customer_addresses"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid(as_uuid=True), unique=True, nullable=False, default=uuid.uuid4)
    customer_ref = Column(String(255), nullable=False, index=True)

    label = Column(String(100), nullable=False)
    street = Column(String(255), nullable=False)
    number = Column(String(20), nullable=False)
    complement = Column(String(255), nullable=True)
    neighborhood = Column(String(255), nullable=True)
    city = Column(String(255), nullable=False)
    state = Column(String(50), nullable=False)
    zip_code = Column(String(20), nullable=True)
    is_default = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return (
            f"<CustomerAddress(id={self.id}, customer='{self.customer_ref}', "
            f"label='{self.label}')>"
        )
