from pydantic import BaseModel, computed_field, field_validator
from typing import Optional
from datetime import datetime
from uuid import UUID

from timesheet_admin.models.timesheet import total_hours


class UserRef(BaseModel):
    id: UUID
    username: str
    full_name: Optional[str] = None
    role: str

    model_config = {"from_attributes": True}

    @property
    def display_name(self) -> str:
        return self.full_name or self.username


class ProjectRef(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    allocated_hours: float = 0

    model_config = {"from_attributes": True}


class TimesheetRow(BaseModel):
    """A timesheet expanded with its owner, project and approver."""

    id: UUID
    user_id: UUID
    project_id: UUID
    year: int
    week_number: int
    monday_hours: float = 0
    tuesday_hours: float = 0
    wednesday_hours: float = 0
    thursday_hours: float = 0
    friday_hours: float = 0
    status: str
    submitted_at: datetime
    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None

    user: Optional[UserRef] = None
    project: Optional[ProjectRef] = None
    approver: Optional[UserRef] = None

    model_config = {"from_attributes": True}

    @computed_field
    @property
    def total_hours(self) -> float:
        return total_hours(self)


class RowError(BaseModel):
    timesheet_id: str
    message: str


class SortState(BaseModel):
    field: str
    direction: str


class FilterState(BaseModel):
    users: list[UUID] = []
    projects: list[UUID] = []


class ApprovalBoardResponse(BaseModel):
    month: str
    month_label: str
    previous_month: str
    next_month: Optional[str] = None
    pending: list[TimesheetRow]
    approved: list[TimesheetRow]
    sort: SortState
    filters: FilterState
    users: list[UserRef]
    projects: list[ProjectRef]
    processing: list[str] = []
    errors: list[RowError] = []


class RejectRequest(BaseModel):
    reason: str

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Rejection reason is required")
        return v.strip()
