from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship

from agenda.core.database import Base


class AppointmentServiceLine(Base):
    """One cart service inside an appointment, in execution order.

    Name, price, duration and buffer are copied at booking time so later
    catalog edits never change an existing appointment.
    """

    __tablename__ = "appointment_service_lines"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(
        Integer, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False
    )
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    position = Column(Integer, nullable=False)

    # Service details at time of booking
    service_name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    buffer_minutes = Column(Integer, nullable=False, default=0)

    # Relationships
    appointment = relationship("Appointment", back_populates="service_lines")
    service = relationship("Service")

    def __repr__(self):
        return (
            f"<AppointmentServiceLine(appointment_id={self.appointment_id}, "
            f"#{self.position} '{self.service_name}', "
            f"{self.duration_minutes}+{self.buffer_minutes}min)>"
        )
