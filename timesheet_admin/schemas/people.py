from pydantic import BaseModel, EmailStr, computed_field, field_validator
from typing import Literal, Optional
from datetime import datetime
from uuid import UUID

from timesheet_admin.schemas.timesheet import ProjectRef


# --- Directory entries ---

class PersonSummary(BaseModel):
    id: UUID
    username: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    role: str
    manager_id: Optional[UUID] = None

    model_config = {"from_attributes": True}

    @property
    def display_name(self) -> str:
        return self.full_name or self.username


class PersonOut(PersonSummary):
    """A user enriched with assignments, team and resolved manager."""

    created_at: Optional[datetime] = None
    projects: list[ProjectRef] = []
    team: list[PersonSummary] = []
    manager: Optional[PersonSummary] = None

    @computed_field
    @property
    def team_size(self) -> int:
        return len(self.team)


class PeopleResponse(BaseModel):
    search: str = ""
    managers: list[PersonOut]
    employees: list[PersonOut]
    error: Optional[str] = None


# --- Forms ---

class UserForm(BaseModel):
    username: str
    password: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[EmailStr] = None
    role: Literal["user", "manager"] = "user"
    manager_id: Optional[UUID] = None

    @field_validator("password", "full_name", "email", "manager_id", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("username")
    @classmethod
    def username_required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Username is required")
        return v.strip()


class UserCreateRequest(UserForm):
    password: str

    @field_validator("password")
    @classmethod
    def password_required(cls, v):
        if not v:
            raise ValueError("Password is required")
        return v


# --- Detail views ---

class TeamResponse(BaseModel):
    manager: PersonSummary
    members: list[PersonSummary]
    empty_message: Optional[str] = None


class ProjectsResponse(BaseModel):
    user: PersonSummary
    projects: list[ProjectRef]
    empty_message: Optional[str] = None


class HistoryRow(BaseModel):
    id: UUID
    year: int
    week_number: int
    monday_hours: float = 0
    tuesday_hours: float = 0
    wednesday_hours: float = 0
    thursday_hours: float = 0
    friday_hours: float = 0
    status: str
    submitted_at: datetime
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    project: Optional[ProjectRef] = None
    total_hours: float
    status_label: str


class HistoryResponse(BaseModel):
    user: PersonSummary
    timesheets: list[HistoryRow]
    empty_message: Optional[str] = None
    error: Optional[str] = None
