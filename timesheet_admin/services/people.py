"""
People directory: the admin view over users, their managers and projects.

Users and project assignments are fetched together and joined in memory:
user -> projects, manager -> team, user -> resolved manager.
"""

import logging
from typing import Optional
from uuid import UUID

from timesheet_admin.dependencies import Identity
from timesheet_admin.models.project import ProjectUser
from timesheet_admin.models.timesheet import Timesheet, total_hours
from timesheet_admin.models.user import User, ROLE_ADMIN, ROLE_MANAGER, ROLE_USER
from timesheet_admin.schemas.people import (
    HistoryRow,
    PeopleResponse,
    PersonOut,
    PersonSummary,
    UserCreateRequest,
    UserForm,
)
from timesheet_admin.schemas.timesheet import ProjectRef
from timesheet_admin.services.audit import log_action
from timesheet_admin.services.auth import get_password_hash
from timesheet_admin.services.data_client import DataClient

logger = logging.getLogger(__name__)


class DirectoryError(Exception):
    """A create/update the directory refused or the data client failed."""


class DuplicateUsername(DirectoryError):
    pass


# ---------- pure helpers ----------

def summarize(person) -> PersonSummary:
    return PersonSummary(
        id=person.id,
        username=person.username,
        full_name=person.full_name,
        email=person.email,
        role=str(person.role),
        manager_id=person.manager_id,
    )


def link_people(people: list[PersonOut]) -> list[PersonOut]:
    """Recompute every team list and resolved manager from ``manager_id``."""
    summaries = {p.id: summarize(p) for p in people}
    teams: dict[UUID, list[PersonSummary]] = {}
    for p in people:
        if p.manager_id:
            teams.setdefault(p.manager_id, []).append(summaries[p.id])

    return [
        p.model_copy(update={
            "team": teams.get(p.id, []),
            "manager": summaries.get(p.manager_id) if p.manager_id else None,
        })
        for p in people
    ]


def build_directory(users, assignments) -> list[PersonOut]:
    """Join raw user rows with project assignment rows (``project`` expanded)."""
    projects_by_user: dict[UUID, list[ProjectRef]] = {}
    for link in assignments:
        if link.project is None:
            continue
        projects_by_user.setdefault(link.user_id, []).append(ProjectRef.model_validate(link.project))

    people = [
        PersonOut(
            **summarize(u).model_dump(),
            created_at=u.created_at,
            projects=projects_by_user.get(u.id, []),
        )
        for u in users
    ]
    return link_people(people)


def search_people(people: list[PersonOut], query: str) -> list[PersonOut]:
    """Case-insensitive substring match on username, full name or email."""
    needle = (query or "").lower()
    return [
        p for p in people
        if needle in p.username.lower()
        or (p.full_name and needle in p.full_name.lower())
        or (p.email and needle in p.email.lower())
    ]


def managers_of(people: list[PersonOut]) -> list[PersonOut]:
    return [p for p in people if p.role == ROLE_MANAGER]


def employees_of(people: list[PersonOut]) -> list[PersonOut]:
    return [p for p in people if p.role == ROLE_USER]


def status_label(status: str) -> str:
    return status[:1].upper() + status[1:]


# ---------- directory ----------

class PeopleDirectory:
    def __init__(self, client: DataClient, identity: Optional[Identity]):
        self.client = client
        self.identity = identity
        self.people: list[PersonOut] = []
        self.error: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.identity is not None and self.identity.role == ROLE_ADMIN

    def load(self) -> "PeopleDirectory":
        if not self.allowed:
            return self

        users_result, links_result = self.client.gather(
            lambda: self.client.select(User, order_by="created_at", descending=True),
            lambda: self.client.select(ProjectUser, expand=("project",)),
        )
        if not users_result.ok:
            self.error = "Failed to load data"
            return self
        if not links_result.ok:
            self.error = "Failed to load project assignments"

        self.people = build_directory(users_result.data, links_result.data or [])
        logger.info("Loaded directory: %d users", len(self.people))
        return self

    def get(self, user_id: UUID) -> Optional[PersonOut]:
        for p in self.people:
            if p.id == user_id:
                return p
        return None

    def snapshot(self, search: str = "") -> PeopleResponse:
        matches = search_people(self.people, search)
        return PeopleResponse(
            search=search or "",
            managers=managers_of(matches),
            employees=employees_of(matches),
            error=self.error,
        )

    # ---------- writes ----------

    def create_user(self, form: UserCreateRequest) -> PersonOut:
        self._check_username(form.username)
        self._check_manager(None, form.manager_id)

        result = self.client.insert(User, {
            "username": form.username,
            "password_hash": get_password_hash(form.password),
            "full_name": form.full_name,
            "email": form.email,
            "role": form.role,
            "manager_id": form.manager_id,
        })
        if not result.ok:
            raise DirectoryError("Failed to create user")

        created = PersonOut(**summarize(result.data).model_dump(), created_at=result.data.created_at)
        self.people = link_people([created, *self.people])

        log_action(self.client, self.identity.id, "user.created", "user", created.id, {"role": form.role})
        logger.info("User %s (%s) created by %s", created.username, created.id, self.identity.id)
        return self.get(created.id)

    def update_user(self, user_id: UUID, form: UserForm) -> PersonOut:
        current = self.get(user_id)
        # admins sit outside the directory; the form cannot carry their role
        if current is None or current.role == ROLE_ADMIN:
            raise LookupError(f"User {user_id} not found")
        self._check_username(form.username, exclude=user_id)
        self._check_manager(user_id, form.manager_id)

        changes = {
            "username": form.username,
            "full_name": form.full_name,
            "email": form.email,
            "role": form.role,
            "manager_id": form.manager_id,
        }
        values = dict(changes)
        if form.password:
            values["password_hash"] = get_password_hash(form.password)

        result = self.client.update(User, values, match={"id": user_id})
        if not result.ok or not result.data:
            raise DirectoryError("Failed to update user")

        self.people = link_people([
            p.model_copy(update=changes) if p.id == user_id else p
            for p in self.people
        ])

        log_action(
            self.client, self.identity.id, "user.updated", "user", user_id,
            {"fields": sorted(values), "password_changed": "password_hash" in values},
        )
        logger.info("User %s updated by %s", user_id, self.identity.id)
        return self.get(user_id)

    def _check_username(self, username: str, exclude: Optional[UUID] = None) -> None:
        for p in self.people:
            if p.username == username and p.id != exclude:
                raise DuplicateUsername("Username already exists")

    def _check_manager(self, user_id: Optional[UUID], manager_id: Optional[UUID]) -> None:
        """The manager must exist and the chain above it must not lead back to the user."""
        if manager_id is None:
            return
        if manager_id == user_id:
            raise DirectoryError("A user cannot be their own manager")

        seen = set()
        cursor = self.get(manager_id)
        if cursor is None:
            raise DirectoryError("Manager not found")
        while cursor is not None and cursor.id not in seen:
            if user_id is not None and cursor.id == user_id:
                raise DirectoryError("Manager assignment would create a cycle")
            seen.add(cursor.id)
            cursor = self.get(cursor.manager_id) if cursor.manager_id else None

    # ---------- detail views ----------

    def timesheet_history(self, user_id: UUID) -> tuple[list[HistoryRow], Optional[str]]:
        """Fresh fetch of one user's timesheets, newest submission first."""
        result = self.client.select(
            Timesheet,
            expand=("project",),
            eq={"user_id": user_id},
            order_by="submitted_at",
            descending=True,
        )
        if not result.ok:
            return [], "Failed to load timesheets"

        rows = [
            HistoryRow(
                id=t.id,
                year=t.year,
                week_number=t.week_number,
                monday_hours=t.monday_hours,
                tuesday_hours=t.tuesday_hours,
                wednesday_hours=t.wednesday_hours,
                thursday_hours=t.thursday_hours,
                friday_hours=t.friday_hours,
                status=t.status,
                submitted_at=t.submitted_at,
                approved_at=t.approved_at,
                rejection_reason=t.rejection_reason,
                project=ProjectRef.model_validate(t.project) if t.project else None,
                total_hours=total_hours(t),
                status_label=status_label(t.status),
            )
            for t in result.data
        ]
        return rows, None
