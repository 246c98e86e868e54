import enum
from datetime import datetime, time
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    Time,
)
from sqlalchemy.orm import relationship

from agenda.core.database import Base


class WeekDay(enum.Enum):
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6


class WorkingHours(Base):
    """Business opening hours for one weekday, with an optional break."""

    __tablename__ = "working_hours"

    id = Column(Integer, primary_key=True, index=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False)

    # Schedule details
    weekday = Column(Integer, nullable=False)  # WeekDay value
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    # Break configuration (optional)
    break_start_time = Column(Time, nullable=True)
    break_end_time = Column(Time, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (Index("ix_working_hours_business_day", "business_id", "weekday"),)

    business = relationship("Business", back_populates="working_hours")

    @property
    def has_break(self) -> bool:
        return bool(self.break_start_time and self.break_end_time)

    def duration_minutes(self) -> int:
        """Working duration in minutes, breaks excluded."""
        today = datetime.today()
        start_dt = datetime.combine(today, self.start_time)
        end_dt = datetime.combine(today, self.end_time)
        total_minutes = int((end_dt - start_dt).total_seconds() / 60)

        if self.has_break:
            break_start_dt = datetime.combine(today, self.break_start_time)
            break_end_dt = datetime.combine(today, self.break_end_time)
            total_minutes -= int((break_end_dt - break_start_dt).total_seconds() / 60)
        return max(0, total_minutes)

    def is_time_available(self, check_time: time) -> bool:
        """Check if a time falls within working hours but outside the break."""
        if not self.is_active:
            return False

        if not (self.start_time <= check_time <= self.end_time):
            return False

        if self.has_break and self.break_start_time <= check_time < self.break_end_time:
            return False

        return True

    def __repr__(self):
        break_info = ""
        if self.has_break:
            break_info = f", break={self.break_start_time}-{self.break_end_time}"
        weekday: Optional[str] = WeekDay(self.weekday).name if self.weekday is not None else None
        return (
            f"<WorkingHours(business_id={self.business_id}, {weekday}: "
            f"{self.start_time}-{self.end_time}{break_info})>"
        )
