# Import all models to ensure they are registered with SQLAlchemy
from . import (
    appointment,
    appointment_service_line,
    business,
    customer_address,
    professional,
    service,
    service_professional,
    working_hours,
)

__all__ = [
    "appointment",
    "appointment_service_line",
    "business",
    "customer_address",
    "professional",
    "service",
    "service_professional",
    "working_hours",
]
