import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from agenda.core.database import Base


class Professional(Base):
    """Staff member who performs services and can be booked."""

    __tablename__ = "professionals"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid(as_uuid=True), unique=True, nullable=False, default=uuid.uuid4)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False)
    name = Column(String(255), nullable=False)
    role = Column(String(100), nullable=True)
    avatar_url = Column(String(500), nullable=True)

    # Booking settings
    is_active = Column(Boolean, default=True, nullable=False)

    # Display settings
    display_order = Column(Integer, default=0, nullable=False)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    business = relationship("Business", back_populates="professionals")
    service_links = relationship(
        "ServiceProfessional",
        back_populates="professional",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return (
            f"<Professional(id={self.id}, name='{self.name}', "
            f"active={self.is_active})>"
        )
