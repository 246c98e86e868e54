import enum
import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from agenda.core.database import Base


class AttendanceMode(enum.Enum):
    IN_PERSON = "in_person"
    AT_HOME = "at_home"
    BOTH = "both"


class LocationMode(enum.Enum):
    IN_PERSON = "in_person"
    AT_HOME = "at_home"


class Service(Base):
    """Catalog service with duration, preparation buffer and attendance policy."""

    __tablename__ = "services"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid(as_uuid=True), unique=True, nullable=False, default=uuid.uuid4)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # Service details
    duration_minutes = Column(Integer, nullable=False)
    buffer_minutes = Column(Integer, default=0, nullable=False)  # Preparation time
    price = Column(Numeric(10, 2), nullable=False)

    # Booking policy
    attendance_mode = Column(
        String(20), nullable=False, default=AttendanceMode.IN_PERSON.value
    )
    is_schedulable = Column(Boolean, default=True, nullable=False)  # False: ASAP only
    is_active = Column(Boolean, default=True, nullable=False)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="check_service_duration"),
        CheckConstraint("buffer_minutes >= 0", name="check_service_buffer"),
    )

    # Relationships
    business = relationship("Business", back_populates="services")
    professional_links = relationship(
        "ServiceProfessional", back_populates="service", cascade="all, delete-orphan"
    )

    @property
    def total_duration_minutes(self):
        """Time the service occupies a professional, buffer included."""
        return self.duration_minutes + (self.buffer_minutes or 0)

    @property
    def allowed_locations(self) -> set[LocationMode]:
        mode = AttendanceMode(self.attendance_mode)
        if mode == AttendanceMode.BOTH:
            return {LocationMode.IN_PERSON, LocationMode.AT_HOME}
        return {LocationMode(mode.value)}

    def __repr__(self):
        return (
            f"<Service(id={self.id}, name='{self.name}', "
            f"duration={self.duration_minutes}+{self.buffer_minutes}min, "
            f"price=${self.price})>"
        )
