"""Approvals router: monthly review of submitted timesheets."""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import StreamingResponse

from timesheet_admin.dependencies import Identity, require_manager
from timesheet_admin.models.timesheet import InvalidTransition
from timesheet_admin.schemas.timesheet import ApprovalBoardResponse, RejectRequest
from timesheet_admin.services.approvals import (
    DEFAULT_SORT_FIELD,
    ActionInProgress,
    ApprovalBoard,
    SortOption,
    TimesheetFilter,
    export_csv,
    export_filename,
    parse_month,
)
from timesheet_admin.services.data_client import DataClient, get_data_client

router = APIRouter(prefix="/api/v1/approvals", tags=["Approvals"])


# ── helpers ──


def _selected_month(month: Optional[str]) -> date:
    try:
        selected = parse_month(month)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if selected > date.today().replace(day=1):
        raise HTTPException(status_code=400, detail="Cannot view future months")
    return selected


def _sort_option(sort: str, direction: str, toggle: Optional[str]) -> SortOption:
    option = SortOption(field=sort, direction=direction)
    if toggle:
        option = option.toggle(toggle)
    return option


def _load_board(client: DataClient, identity: Identity, month: Optional[str]) -> ApprovalBoard:
    return ApprovalBoard(client, identity, _selected_month(month)).load()


def _snapshot(board: ApprovalBoard, flt: TimesheetFilter, option: SortOption) -> ApprovalBoardResponse:
    try:
        return board.snapshot(flt, option)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _decide(board: ApprovalBoard, action, *args) -> None:
    if board.fetch_failed:
        raise HTTPException(status_code=503, detail="Failed to load data")
    try:
        action(*args)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ActionInProgress as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ── Board ──


@router.get("/", response_model=ApprovalBoardResponse)
def get_board(
    month: Optional[str] = Query(None, description="YYYY-MM, defaults to the current month"),
    users: list[uuid.UUID] = Query(default=[]),
    projects: list[uuid.UUID] = Query(default=[]),
    sort: str = Query(DEFAULT_SORT_FIELD),
    direction: str = Query("desc"),
    toggle: Optional[str] = Query(None, description="Field header clicked; flips direction when already ascending"),
    identity: Identity = Depends(require_manager),
    client: DataClient = Depends(get_data_client),
):
    board = _load_board(client, identity, month)
    return _snapshot(board, TimesheetFilter(users=users, projects=projects), _sort_option(sort, direction, toggle))


# ── Export (must be before /{timesheet_id}) ──


@router.get("/export.csv")
def export_timesheets(
    month: Optional[str] = Query(None),
    ids: list[uuid.UUID] = Query(default=[]),
    select_all: bool = Query(False),
    users: list[uuid.UUID] = Query(default=[]),
    projects: list[uuid.UUID] = Query(default=[]),
    sort: str = Query(DEFAULT_SORT_FIELD),
    direction: str = Query("desc"),
    toggle: Optional[str] = Query(None),
    identity: Identity = Depends(require_manager),
    client: DataClient = Depends(get_data_client),
):
    """Download the selected approved timesheets as CSV, in board order. Nothing selected -> 204."""
    board = _load_board(client, identity, month)
    try:
        rows = board.selection(
            TimesheetFilter(users=users, projects=projects),
            _sort_option(sort, direction, toggle),
            ids=ids,
            select_all=select_all,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    content = export_csv(rows)
    if content is None:
        return Response(status_code=204)

    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={export_filename(board.month)}"},
    )


# ── Decisions ──


@router.post("/{timesheet_id}/approve", response_model=ApprovalBoardResponse)
def approve_timesheet(
    timesheet_id: uuid.UUID,
    month: Optional[str] = Query(None),
    identity: Identity = Depends(require_manager),
    client: DataClient = Depends(get_data_client),
):
    board = _load_board(client, identity, month)
    _decide(board, board.approve, timesheet_id)
    return board.snapshot()


@router.post("/{timesheet_id}/reject", response_model=ApprovalBoardResponse)
def reject_timesheet(
    timesheet_id: uuid.UUID,
    body: RejectRequest,
    month: Optional[str] = Query(None),
    identity: Identity = Depends(require_manager),
    client: DataClient = Depends(get_data_client),
):
    board = _load_board(client, identity, month)
    _decide(board, board.reject, timesheet_id, body.reason)
    return board.snapshot()
