import enum
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from agenda.core.database import Base


class AppointmentStatus(enum.Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AppointmentKind(enum.Enum):
    SERVICE = "service"
    BLOCK = "block"


TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED.value, AppointmentStatus.CANCELLED.value}
)

ALLOWED_TRANSITIONS = {
    AppointmentStatus.PENDING: [
        AppointmentStatus.SCHEDULED,
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.CANCELLED,
    ],
    AppointmentStatus.SCHEDULED: [
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    ],
    AppointmentStatus.IN_PROGRESS: [
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    ],
    AppointmentStatus.COMPLETED: [],  # Final state
    AppointmentStatus.CANCELLED: [],  # Final state
}


class Appointment(Base):
    """Calendar entry: a booked service sequence or a company-wide block.

    ``scheduled_at`` and ``end_at`` are wall-clock times in the business
    timezone. ``duration_minutes`` is frozen at creation.
    """

    __tablename__ = "appointments"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid(as_uuid=True), unique=True, nullable=False, default=uuid.uuid4)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False)

    # Participants
    professional_id = Column(Integer, ForeignKey("professionals.id"), nullable=True)
    customer_ref = Column(String(255), nullable=True, index=True)
    customer_name = Column(String(255), nullable=True)

    # Scheduling details
    scheduled_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    # Entry type
    kind = Column(String(20), nullable=False, default=AppointmentKind.SERVICE.value)
    is_manual = Column(Boolean, default=False, nullable=False)
    label = Column(String(255), nullable=True)  # Manual entries without services
    reason = Column(Text, nullable=True)  # Block reason

    # Location
    location_mode = Column(String(20), nullable=True)
    address_ref = Column(String(255), nullable=True)

    # Status management
    status = Column(
        String(20), nullable=False, default=AppointmentStatus.PENDING.value, index=True
    )
    previous_status = Column(String(20), nullable=True)
    status_changed_at = Column(DateTime(timezone=True), nullable=True)

    # Pricing
    total_price = Column(Numeric(10, 2), nullable=False, default=0)

    # Rescheduling
    rescheduled_from = Column(DateTime, nullable=True)
    reschedule_count = Column(Integer, default=0, nullable=False)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("end_at > scheduled_at", name="check_end_after_start"),
        CheckConstraint("duration_minutes > 0", name="check_positive_duration"),
        CheckConstraint("total_price >= 0", name="check_non_negative_price"),
        CheckConstraint(
            "reschedule_count >= 0", name="check_non_negative_reschedule_count"
        ),
        Index("ix_appointments_business_window", "business_id", "scheduled_at", "end_at"),
    )

    # Relationships
    business = relationship("Business")
    professional = relationship("Professional")
    service_lines = relationship(
        "AppointmentServiceLine",
        back_populates="appointment",
        cascade="all, delete-orphan",
        order_by="AppointmentServiceLine.position",
    )

    # Status transition methods
    def can_transition_to(self, new_status: AppointmentStatus) -> bool:
        """Check if appointment can transition to the new status."""
        current = AppointmentStatus(self.status)
        return new_status in ALLOWED_TRANSITIONS.get(current, [])

    def transition_to(self, new_status: AppointmentStatus) -> bool:
        """Transition appointment to new status with validation."""
        if not self.can_transition_to(new_status):
            return False

        self.previous_status = self.status
        self.status = new_status.value
        self.status_changed_at = datetime.now(timezone.utc)
        return True

    def move_to(self, new_start: datetime) -> None:
        """Shift the entry keeping its frozen duration."""
        self.rescheduled_from = self.scheduled_at
        self.scheduled_at = new_start
        self.end_at = new_start + timedelta(minutes=self.duration_minutes)
        self.reschedule_count = (self.reschedule_count or 0) + 1

    @property
    def is_block(self) -> bool:
        return self.kind == AppointmentKind.BLOCK.value

    @property
    def is_active(self) -> bool:
        """Non-terminal entries occupy the calendar."""
        return self.status not in TERMINAL_STATUSES

    @property
    def service_ids(self) -> list[int]:
        return [line.service_id for line in self.service_lines]

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.scheduled_at < end and start < self.end_at

    def __repr__(self):
        return (
            f"<Appointment(id={self.id}, kind='{self.kind}', status='{self.status}', "
            f"at='{self.scheduled_at}', minutes={self.duration_minutes}, "
            f"professional_id={self.professional_id})>"
        )
