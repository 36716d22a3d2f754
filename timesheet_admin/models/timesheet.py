import enum
import uuid

from sqlalchemy import Column, String, Text, Integer, Float, DateTime, ForeignKey, Uuid, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from timesheet_admin.database import Base


class TimesheetStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# pending is the only state with a way out
ALLOWED_TRANSITIONS = {
    TimesheetStatus.PENDING: {TimesheetStatus.APPROVED, TimesheetStatus.REJECTED},
    TimesheetStatus.APPROVED: set(),
    TimesheetStatus.REJECTED: set(),
}


class InvalidTransition(Exception):
    def __init__(self, current, target):
        self.current = TimesheetStatus(current)
        self.target = TimesheetStatus(target)
        super().__init__(f"Cannot move timesheet from {self.current.value} to {self.target.value}")


def ensure_transition(current, target) -> TimesheetStatus:
    """Raise InvalidTransition unless current -> target is a legal move."""
    current, target = TimesheetStatus(current), TimesheetStatus(target)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(current, target)
    return target


WEEKDAY_FIELDS = (
    "monday_hours",
    "tuesday_hours",
    "wednesday_hours",
    "thursday_hours",
    "friday_hours",
)


class Timesheet(Base):
    __tablename__ = "timesheets"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, nullable=False)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    year = Column(Integer, nullable=False)
    week_number = Column(Integer, nullable=False)

    monday_hours = Column(Float, nullable=False, default=0)
    tuesday_hours = Column(Float, nullable=False, default=0)
    wednesday_hours = Column(Float, nullable=False, default=0)
    thursday_hours = Column(Float, nullable=False, default=0)
    friday_hours = Column(Float, nullable=False, default=0)

    status = Column(String(20), nullable=False, default=TimesheetStatus.PENDING.value)
    submitted_at = Column(DateTime, server_default=func.now(), nullable=False)
    approved_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    user = relationship("User", foreign_keys=[user_id])
    project = relationship("Project")
    approver = relationship("User", foreign_keys=[approved_by])

    __table_args__ = (
        Index("ix_timesheets_submitted_at", "submitted_at"),
        Index("ix_timesheets_user_status", "user_id", "status"),
    )


def total_hours(timesheet) -> float:
    """Monday to Friday only; weekend hours never count toward a week's total."""
    return sum((getattr(timesheet, name) or 0) for name in WEEKDAY_FIELDS)


def format_hours(value: float) -> str:
    """36.0 -> '36', 7.5 -> '7.5'."""
    return f"{value:g}"
