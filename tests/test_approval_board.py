from datetime import date, datetime

import pytest
from sqlalchemy import event

from timesheet_admin.dependencies import Identity
from timesheet_admin.models.audit_log import AuditLog
from timesheet_admin.models.timesheet import InvalidTransition, Timesheet
from timesheet_admin.services.approvals import (
    ActionInProgress,
    ApprovalBoard,
    InFlightRegistry,
    SortOption,
    TimesheetFilter,
)
from timesheet_admin.services.data_client import DataClient, QueryResult

MARCH = date(2024, 3, 1)


class RecordingClient(DataClient):
    """Data client that records writes and can be told to fail."""

    def __init__(self, session_factory, fail_update=False, fail_select_of=()):
        super().__init__(session_factory)
        self.fail_update = fail_update
        self.fail_select_of = fail_select_of
        self.updates = []

    def select(self, model, **kwargs):
        if model in self.fail_select_of:
            return QueryResult(error="connection refused")
        return super().select(model, **kwargs)

    def update(self, model, values, *, match):
        self.updates.append((model, values, match))
        if self.fail_update:
            return QueryResult(error="connection reset")
        return super().update(model, values, match=match)


def identity_of(user):
    return Identity(id=user.id, role=user.role, username=user.username, full_name=user.full_name)


@pytest.fixture
def march(manager_user, team, outsider, projects, make_timesheet):
    alice, bob = team
    return {
        "pending": make_timesheet(alice, projects["website"]),
        "approved": make_timesheet(
            bob, projects["mobile"], status="approved", submitted_at=datetime(2024, 3, 4, 8, 0),
            approver=manager_user, approved_at=datetime(2024, 3, 5),
        ),
        "rejected": make_timesheet(bob, projects["website"], status="rejected", rejection_reason="typo"),
        "outsider": make_timesheet(outsider, projects["website"]),
        "april": make_timesheet(alice, projects["website"], submitted_at=datetime(2024, 4, 1, 0, 0)),
        "last_minute": make_timesheet(
            alice, projects["mobile"], submitted_at=datetime(2024, 3, 31, 23, 59, 59), week_number=13,
        ),
    }


def test_manager_sees_only_their_team(data_client, manager_user, team, march):
    board = ApprovalBoard(data_client, identity_of(manager_user), MARCH, InFlightRegistry()).load()

    pending_ids = [r.id for r in board.pending]
    assert pending_ids == [march["last_minute"].id, march["pending"].id]
    assert [r.id for r in board.approved] == [march["approved"].id]

    row = board.pending[1]
    assert row.total_hours == 36
    assert row.project.name == "Website Redesign"
    assert row.user.username == "alice"
    assert board.approved[0].approver.username == "grace"

    assert {u.username for u in board.users} == {"alice", "bob"}
    assert {p.name for p in board.projects} == {"Website Redesign", "Mobile App"}
    assert board.errors == []


def test_admin_sees_every_timesheet_in_month(data_client, admin_user, march):
    board = ApprovalBoard(data_client, identity_of(admin_user), MARCH, InFlightRegistry()).load()

    assert {r.id for r in board.pending} == {
        march["pending"].id, march["outsider"].id, march["last_minute"].id,
    }
    assert march["april"].id not in {r.id for r in board.pending}
    assert march["rejected"].id not in {r.id for r in board.pending + board.approved}


def test_manager_without_team_sees_nothing(data_client, other_manager, manager_user, team, projects, make_timesheet):
    make_timesheet(team[0], projects["website"])
    board = ApprovalBoard(data_client, identity_of(other_manager), MARCH, InFlightRegistry()).load()
    assert board.pending == []
    assert board.approved == []
    assert board.users == []


def test_no_identity_does_nothing(session_factory, march):
    client = RecordingClient(session_factory)
    board = ApprovalBoard(client, None, MARCH, InFlightRegistry()).load()

    assert board.pending == []
    assert board.approve(march["pending"].id) is False
    assert client.updates == []


def test_failed_read_records_fetch_error(session_factory, manager_user, march):
    client = RecordingClient(session_factory, fail_select_of=(Timesheet,))
    board = ApprovalBoard(client, identity_of(manager_user), MARCH, InFlightRegistry()).load()

    assert board.fetch_failed
    assert [(e.timesheet_id, e.message) for e in board.errors] == [("fetch", "Failed to load data")]
    assert len(board.users) == 2


def test_approve_moves_row_to_head_of_approved(db, data_client, manager_user, march):
    board = ApprovalBoard(data_client, identity_of(manager_user), MARCH, InFlightRegistry()).load()
    target = march["pending"].id

    assert board.approve(target) is True

    assert target not in [r.id for r in board.pending]
    head = board.approved[0]
    assert head.id == target
    assert head.status == "approved"
    assert head.approved_by == manager_user.id
    assert head.approver.display_name == "Grace Hopper"
    assert head.approved_at is not None
    assert board.processing == []

    stored = db.get(Timesheet, target)
    db.refresh(stored)
    assert stored.status == "approved"
    assert stored.approved_by == manager_user.id

    audit = db.query(AuditLog).filter(AuditLog.action == "timesheet.approved").one()
    assert audit.resource_id == str(target)


def test_decided_row_cannot_be_decided_again(data_client, manager_user, march):
    board = ApprovalBoard(data_client, identity_of(manager_user), MARCH, InFlightRegistry()).load()
    board.approve(march["pending"].id)

    with pytest.raises(InvalidTransition):
        board.approve(march["pending"].id)
    with pytest.raises(InvalidTransition):
        board.reject(march["approved"].id, "late")


def test_unknown_row_raises_lookup_error(data_client, manager_user, march):
    board = ApprovalBoard(data_client, identity_of(manager_user), MARCH, InFlightRegistry()).load()
    with pytest.raises(LookupError):
        board.approve(march["outsider"].id)


def test_reject_drops_row_from_both_buckets(db, data_client, manager_user, march):
    board = ApprovalBoard(data_client, identity_of(manager_user), MARCH, InFlightRegistry()).load()
    target = march["pending"].id

    assert board.reject(target, "  hours on wrong project  ") is True

    assert target not in [r.id for r in board.pending + board.approved]
    stored = db.get(Timesheet, target)
    db.refresh(stored)
    assert stored.status == "rejected"
    assert stored.rejection_reason == "hours on wrong project"


@pytest.mark.parametrize("reason", ["", "   ", "\n\t"])
def test_blank_reason_issues_no_update(session_factory, manager_user, march, reason):
    client = RecordingClient(session_factory)
    board = ApprovalBoard(client, identity_of(manager_user), MARCH, InFlightRegistry()).load()

    with pytest.raises(ValueError):
        board.reject(march["pending"].id, reason)
    assert client.updates == []
    assert march["pending"].id in [r.id for r in board.pending]


def test_failed_update_leaves_row_pending_with_error(session_factory, manager_user, march):
    client = RecordingClient(session_factory, fail_update=True)
    registry = InFlightRegistry()
    board = ApprovalBoard(client, identity_of(manager_user), MARCH, registry).load()
    target = march["pending"].id

    assert board.approve(target) is False

    assert target in [r.id for r in board.pending]
    assert [(e.timesheet_id, e.message) for e in board.errors] == [(str(target), "Failed to approve timesheet")]
    assert str(target) not in registry

    client.fail_update = False
    assert board.approve(target) is True
    assert board.errors == []


def test_update_matches_only_pending_rows(session_factory, manager_user, admin_user, march):
    first = ApprovalBoard(DataClient(session_factory), identity_of(manager_user), MARCH, InFlightRegistry()).load()
    second = ApprovalBoard(DataClient(session_factory), identity_of(admin_user), MARCH, InFlightRegistry()).load()
    target = march["pending"].id

    assert second.reject(target, "duplicate") is True
    assert first.approve(target) is False
    assert first.errors[0].message == "Failed to approve timesheet"


def test_decision_landing_between_read_and_write_is_kept(db, engine, session_factory, manager_user, admin_user, march):
    first = ApprovalBoard(DataClient(session_factory), identity_of(manager_user), MARCH, InFlightRegistry()).load()
    second = ApprovalBoard(DataClient(session_factory), identity_of(admin_user), MARCH, InFlightRegistry()).load()
    target = march["pending"].id
    fired = []
    raced = []

    def reject_just_before_update(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("UPDATE TIMESHEETS") and not fired:
            fired.append(True)
            raced.append(second.reject(target, "duplicate"))

    event.listen(engine, "before_cursor_execute", reject_just_before_update)
    try:
        assert first.approve(target) is False
    finally:
        event.remove(engine, "before_cursor_execute", reject_just_before_update)

    assert raced == [True]
    assert target in [r.id for r in first.pending]
    assert first.errors[0].message == "Failed to approve timesheet"

    stored = db.get(Timesheet, target)
    db.refresh(stored)
    assert stored.status == "rejected"
    assert stored.rejection_reason == "duplicate"
    assert stored.approved_by == admin_user.id


def test_second_action_on_in_flight_row_is_refused(data_client, manager_user, march):
    registry = InFlightRegistry()
    board = ApprovalBoard(data_client, identity_of(manager_user), MARCH, registry).load()
    target = march["pending"].id
    registry.claim(str(target))

    assert board.processing == [str(target)]
    with pytest.raises(ActionInProgress):
        board.approve(target)


def test_selection_and_snapshot(data_client, manager_user, team, march):
    board = ApprovalBoard(data_client, identity_of(manager_user), MARCH, InFlightRegistry()).load()
    board.approve(march["pending"].id)
    board.approve(march["last_minute"].id)

    option = SortOption("total_hours", "asc")
    everything = board.selection(TimesheetFilter(), option, select_all=True)
    assert [r.total_hours for r in everything] == sorted(r.total_hours for r in everything)
    assert len(everything) == 3

    bob_only = board.selection(TimesheetFilter(users=[team[1].id]), option, select_all=True)
    assert [r.id for r in bob_only] == [march["approved"].id]

    picked = board.selection(TimesheetFilter(), option, ids=[march["pending"].id])
    assert [r.id for r in picked] == [march["pending"].id]

    snapshot = board.snapshot(TimesheetFilter(projects=[march["pending"].project_id]), option, today=date(2024, 3, 20))
    assert snapshot.month == "2024-03"
    assert snapshot.month_label == "March 2024"
    assert snapshot.previous_month == "2024-02"
    assert snapshot.next_month is None
    assert [r.id for r in snapshot.approved] == [march["pending"].id]
    assert snapshot.sort.field == "total_hours"
