from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from agenda.core.database import Base


class ServiceProfessional(Base):
    """Eligibility link: the professional may perform the service."""

    __tablename__ = "service_professionals"

    id = Column(Integer, primary_key=True, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False, index=True)
    professional_id = Column(
        Integer, ForeignKey("professionals.id"), nullable=False, index=True
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "service_id", "professional_id", name="uq_service_professional"
        ),
    )

    # Relationships
    service = relationship("Service", back_populates="professional_links")
    professional = relationship("Professional", back_populates="service_links")

    def __repr__(self):
        return (
            f"<ServiceProfessional(service_id={self.service_id}, "
            f"professional_id={self.professional_id})>"
        )
