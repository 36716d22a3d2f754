"""
Timesheet approval board.

Loads the timesheets submitted during one calendar month, splits them into
pending and approved buckets and applies approve / reject decisions. Once a
decision is confirmed by the data client, the buckets are patched in place
rather than fetched again.

Managers only ever see timesheets of users whose ``manager_id`` points at
them; admins see everyone.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional
from uuid import UUID

from timesheet_admin.dependencies import Identity
from timesheet_admin.models.project import Project
from timesheet_admin.models.timesheet import (
    Timesheet,
    TimesheetStatus,
    ensure_transition,
    format_hours,
)
from timesheet_admin.models.user import User, ROLE_MANAGER
from timesheet_admin.schemas.timesheet import (
    ApprovalBoardResponse,
    FilterState,
    ProjectRef,
    RowError,
    SortState,
    TimesheetRow,
    UserRef,
)
from timesheet_admin.services.audit import log_action
from timesheet_admin.services.data_client import DataClient

logger = logging.getLogger(__name__)

FETCH_ERROR_KEY = "fetch"
FETCH_ERROR_MESSAGE = "Failed to load data"


# ── Month navigation ──


def parse_month(value: Optional[str], today: Optional[date] = None) -> date:
    """'YYYY-MM' -> first day of that month; empty -> the current month."""
    if not value:
        return (today or date.today()).replace(day=1)
    try:
        return datetime.strptime(value.strip(), "%Y-%m").date()
    except ValueError:
        raise ValueError(f"Invalid month: {value}. Expected YYYY-MM")


def month_bounds(month: date) -> tuple[datetime, datetime]:
    start = datetime(month.year, month.month, 1)
    if month.month == 12:
        next_start = datetime(month.year + 1, 1, 1)
    else:
        next_start = datetime(month.year, month.month + 1, 1)
    return start, next_start - timedelta(microseconds=1)


def shift_month(month: date, months: int) -> date:
    index = month.year * 12 + (month.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def can_advance(month: date, today: Optional[date] = None) -> bool:
    """Forward navigation stops at the current month."""
    today = today or date.today()
    return (month.year, month.month) < (today.year, today.month)


# ── Filtering ──


@dataclass
class TimesheetFilter:
    """Multi-select filter. OR within a field, AND across fields, empty = any."""

    users: list = field(default_factory=list)
    projects: list = field(default_factory=list)

    def matches(self, row: TimesheetRow) -> bool:
        if self.users and row.user_id not in self.users:
            return False
        if self.projects and row.project_id not in self.projects:
            return False
        return True

    def apply(self, rows: list[TimesheetRow]) -> list[TimesheetRow]:
        return [r for r in rows if self.matches(r)]


# ── Sorting ──

SORT_EMPLOYEE = "user.full_name"
SORT_PROJECT = "project.name"
SORT_WEEK = "week_number"
SORT_TOTAL_HOURS = "total_hours"
DEFAULT_SORT_FIELD = "submitted_at"

SORT_DIRECTIONS = ("asc", "desc")

RAW_SORT_FIELDS = frozenset(
    name for name in TimesheetRow.model_fields if name not in ("user", "project", "approver")
)


@dataclass(frozen=True)
class SortOption:
    field: str = DEFAULT_SORT_FIELD
    direction: str = "desc"

    def toggle(self, field: str) -> "SortOption":
        """Re-selecting the ascending field flips it; anything else starts ascending."""
        if self.field == field and self.direction == "asc":
            return SortOption(field=field, direction="desc")
        return SortOption(field=field, direction="asc")


def _display_name(ref: Optional[UserRef]) -> str:
    return ref.display_name if ref else ""


def sort_key(row: TimesheetRow, field_name: str):
    if field_name == SORT_EMPLOYEE:
        return _display_name(row.user)
    if field_name == SORT_PROJECT:
        return row.project.name if row.project else ""
    if field_name == SORT_WEEK:
        return f"{row.year}-{row.week_number}"
    if field_name == SORT_TOTAL_HOURS:
        return row.total_hours
    if field_name not in RAW_SORT_FIELDS:
        raise ValueError(f"Cannot sort by {field_name}")
    return getattr(row, field_name)


def sort_timesheets(rows: list[TimesheetRow], option: SortOption) -> list[TimesheetRow]:
    """Stable sort; missing values go after present ones in ascending order."""
    if option.direction not in SORT_DIRECTIONS:
        raise ValueError(f"Invalid sort direction: {option.direction}")

    def key(row):
        value = sort_key(row, option.field)
        return (value is None, value if value is not None else 0)

    return sorted(rows, key=key, reverse=option.direction == "desc")


# ── CSV export ──

CSV_HEADER = ["Employee", "Project", "Week", "Year", "Total Hours", "Status", "Approved By", "Approved Date"]


def export_csv(rows: list[TimesheetRow]) -> Optional[str]:
    """Plain comma-joined lines, header first. None when there is nothing to export.

    Fields are not quoted or escaped; names containing commas will shift columns.
    """
    if not rows:
        return None

    lines = [CSV_HEADER]
    for t in rows:
        lines.append([
            _display_name(t.user),
            t.project.name if t.project else "",
            str(t.week_number),
            str(t.year),
            format_hours(t.total_hours),
            t.status,
            _display_name(t.approver),
            t.approved_at.strftime("%Y-%m-%d") if t.approved_at else "",
        ])
    return "\n".join(",".join(line) for line in lines)


def export_filename(month: date) -> str:
    return f"timesheets-{month:%Y-%m}.csv"


# ── In-flight decisions ──


class ActionInProgress(Exception):
    def __init__(self, timesheet_id):
        self.timesheet_id = timesheet_id
        super().__init__(f"Timesheet {timesheet_id} is already being processed")


class InFlightRegistry:
    """Process-wide set of timesheet ids with a decision outstanding."""

    def __init__(self):
        self._lock = threading.Lock()
        self._ids: set[str] = set()

    def claim(self, key: str) -> bool:
        with self._lock:
            if key in self._ids:
                return False
            self._ids.add(key)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._ids.discard(key)

    def __contains__(self, key) -> bool:
        with self._lock:
            return key in self._ids


in_flight = InFlightRegistry()


# ── Board ──


class ApprovalBoard:
    def __init__(
        self,
        client: DataClient,
        identity: Optional[Identity],
        month: date,
        registry: InFlightRegistry = in_flight,
    ):
        self.client = client
        self.identity = identity
        self.month = month.replace(day=1)
        self.registry = registry

        self.pending: list[TimesheetRow] = []
        self.approved: list[TimesheetRow] = []
        self.users: list[UserRef] = []
        self.projects: list[ProjectRef] = []
        self.errors: list[RowError] = []

    @property
    def fetch_failed(self) -> bool:
        return any(e.timesheet_id == FETCH_ERROR_KEY for e in self.errors)

    @property
    def processing(self) -> list[str]:
        return [str(r.id) for r in self.pending if str(r.id) in self.registry]

    # ── loading ──

    def load(self) -> "ApprovalBoard":
        if self.identity is None:
            return self

        users_result, projects_result = self.client.gather(
            lambda: self.client.select(User, order_by="username"),
            lambda: self.client.select(Project, order_by="name"),
        )
        if users_result.ok:
            self.users = [UserRef.model_validate(u) for u in users_result.data]
        else:
            self._record_fetch_error()
        if projects_result.ok:
            self.projects = [ProjectRef.model_validate(p) for p in projects_result.data]
        else:
            self._record_fetch_error()

        start, end = month_bounds(self.month)
        scope = None
        if self.identity.role == ROLE_MANAGER:
            team = self.client.select(User, eq={"manager_id": self.identity.id})
            if not team.ok:
                self._record_fetch_error()
                return self
            team_ids = [member.id for member in team.data]
            scope = {"user_id": team_ids}
            self.users = [u for u in self.users if u.id in team_ids]

        result = self.client.select(
            Timesheet,
            expand=("user", "project", "approver"),
            gte={"submitted_at": start},
            lte={"submitted_at": end},
            in_=scope,
            order_by="submitted_at",
            descending=True,
        )
        if not result.ok:
            self._record_fetch_error()
            return self

        rows = [TimesheetRow.model_validate(t) for t in result.data]
        self.pending = [r for r in rows if r.status == TimesheetStatus.PENDING.value]
        self.approved = [r for r in rows if r.status == TimesheetStatus.APPROVED.value]
        logger.info(
            "Loaded approvals for %s (%s %s): %d pending, %d approved",
            f"{self.month:%Y-%m}", self.identity.role, self.identity.id, len(self.pending), len(self.approved),
        )
        return self

    # ── decisions ──

    def approve(self, timesheet_id: UUID) -> bool:
        """Approve a pending timesheet. Returns True once the write is confirmed."""
        if self.identity is None:
            return False
        row = self._pending_row(timesheet_id, TimesheetStatus.APPROVED)

        now = datetime.utcnow()
        changes = {
            "status": TimesheetStatus.APPROVED.value,
            "approved_by": self.identity.id,
            "approved_at": now,
        }
        if not self._decide(row, changes, "Failed to approve timesheet"):
            return False

        approved = row.model_copy(update={**changes, "approver": self._actor_ref()})
        self.pending = [r for r in self.pending if r.id != row.id]
        self.approved = [approved, *self.approved]

        log_action(self.client, self.identity.id, "timesheet.approved", "timesheet", row.id)
        logger.info("Timesheet %s approved by %s", row.id, self.identity.id)
        return True

    def reject(self, timesheet_id: UUID, reason: str) -> bool:
        """Reject a pending timesheet; it then drops out of both buckets."""
        if self.identity is None:
            return False
        if not reason or not reason.strip():
            raise ValueError("Rejection reason is required")
        row = self._pending_row(timesheet_id, TimesheetStatus.REJECTED)

        changes = {
            "status": TimesheetStatus.REJECTED.value,
            "rejection_reason": reason.strip(),
            "approved_by": self.identity.id,
            "approved_at": datetime.utcnow(),
        }
        if not self._decide(row, changes, "Failed to reject timesheet"):
            return False

        self.pending = [r for r in self.pending if r.id != row.id]

        log_action(
            self.client, self.identity.id, "timesheet.rejected", "timesheet", row.id,
            {"reason": changes["rejection_reason"]},
        )
        logger.info("Timesheet %s rejected by %s", row.id, self.identity.id)
        return True

    def _pending_row(self, timesheet_id: UUID, target: TimesheetStatus) -> TimesheetRow:
        for row in [*self.pending, *self.approved]:
            if row.id == timesheet_id:
                ensure_transition(row.status, target)
                return row
        raise LookupError(f"Timesheet {timesheet_id} not found")

    def _decide(self, row: TimesheetRow, changes: dict, failure_message: str) -> bool:
        key = str(row.id)
        if not self.registry.claim(key):
            raise ActionInProgress(row.id)
        self.errors = [e for e in self.errors if e.timesheet_id != key]
        try:
            # matching on status keeps a concurrent decision from being overwritten
            result = self.client.update(
                Timesheet,
                changes,
                match={"id": row.id, "status": TimesheetStatus.PENDING.value},
            )
            if not result.ok or not result.data:
                logger.warning("Decision on timesheet %s not applied: %s", key, result.error or "no pending row matched")
                self.errors.append(RowError(timesheet_id=key, message=failure_message))
                return False
            return True
        finally:
            self.registry.release(key)

    def _actor_ref(self) -> UserRef:
        return UserRef(
            id=self.identity.id,
            username=self.identity.username or str(self.identity.id),
            full_name=self.identity.full_name,
            role=self.identity.role,
        )

    def _record_fetch_error(self) -> None:
        if not self.fetch_failed:
            self.errors.append(RowError(timesheet_id=FETCH_ERROR_KEY, message=FETCH_ERROR_MESSAGE))

    # ── views ──

    def visible_approved(self, flt: TimesheetFilter, option: SortOption) -> list[TimesheetRow]:
        return sort_timesheets(flt.apply(self.approved), option)

    def selection(
        self,
        flt: TimesheetFilter,
        option: SortOption,
        ids=(),
        select_all: bool = False,
    ) -> list[TimesheetRow]:
        rows = self.visible_approved(flt, option)
        if select_all:
            return rows
        wanted = set(ids)
        return [r for r in rows if r.id in wanted]

    def snapshot(
        self,
        flt: Optional[TimesheetFilter] = None,
        option: Optional[SortOption] = None,
        today: Optional[date] = None,
    ) -> ApprovalBoardResponse:
        flt = flt or TimesheetFilter()
        option = option or SortOption()
        return ApprovalBoardResponse(
            month=f"{self.month:%Y-%m}",
            month_label=f"{self.month:%B %Y}",
            previous_month=f"{shift_month(self.month, -1):%Y-%m}",
            next_month=f"{shift_month(self.month, 1):%Y-%m}" if can_advance(self.month, today) else None,
            pending=self.pending,
            approved=self.visible_approved(flt, option),
            sort=SortState(field=option.field, direction=option.direction),
            filters=FilterState(users=list(flt.users), projects=list(flt.projects)),
            users=self.users,
            projects=self.projects,
            processing=self.processing,
            errors=self.errors,
        )
