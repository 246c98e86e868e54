import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from agenda.core.database import Base


class Business(Base):
    """Business owning a calendar: timezone, slot cadence and holiday calendar."""

    __tablename__ = "businesses"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid(as_uuid=True), unique=True, nullable=False, default=uuid.uuid4)
    name = Column(String(255), nullable=False)

    # Calendar settings
    timezone = Column(String(50), nullable=False, default="UTC")
    slot_interval_minutes = Column(Integer, nullable=True)  # Overrides settings
    holiday_country = Column(String(8), nullable=True)  # e.g. "BR", "US"

    is_active = Column(Boolean, default=True, nullable=False)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    services = relationship("Service", back_populates="business")
    professionals = relationship("Professional", back_populates="business")
    working_hours = relationship(
        "WorkingHours", back_populates="business", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Business(id={self.id}, name='{self.name}', tz='{self.timezone}')>"
