import uuid
from fastapi import APIRouter, Depends, HTTPException, Query

from timesheet_admin.dependencies import Identity, require_admin
from timesheet_admin.schemas.people import (
    HistoryResponse,
    PeopleResponse,
    PersonOut,
    ProjectsResponse,
    TeamResponse,
    UserCreateRequest,
    UserForm,
)
from timesheet_admin.services.data_client import DataClient, get_data_client
from timesheet_admin.services.people import (
    DirectoryError,
    DuplicateUsername,
    PeopleDirectory,
    summarize,
)

router = APIRouter(prefix="/api/v1/people", tags=["People"])


def _load_directory(client: DataClient, identity: Identity) -> PeopleDirectory:
    return PeopleDirectory(client, identity).load()


def _person_or_404(directory: PeopleDirectory, user_id: uuid.UUID) -> PersonOut:
    person = directory.get(user_id)
    if not person:
        raise HTTPException(status_code=404, detail="User not found")
    return person


def _require_loaded(directory: PeopleDirectory) -> None:
    if directory.error and not directory.people:
        raise HTTPException(status_code=503, detail=directory.error)


@router.get("/", response_model=PeopleResponse)
def list_people(
    search: str = Query(default=""),
    identity: Identity = Depends(require_admin),
    client: DataClient = Depends(get_data_client),
):
    """Managers and employees, optionally narrowed by a search string."""
    return _load_directory(client, identity).snapshot(search)


@router.post("/", response_model=PersonOut, status_code=201)
def create_person(
    body: UserCreateRequest,
    identity: Identity = Depends(require_admin),
    client: DataClient = Depends(get_data_client),
):
    directory = _load_directory(client, identity)
    _require_loaded(directory)
    try:
        return directory.create_user(body)
    except DuplicateUsername as e:
        raise HTTPException(status_code=409, detail=str(e))
    except DirectoryError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/{user_id}", response_model=PersonOut)
def update_person(
    user_id: uuid.UUID,
    body: UserForm,
    identity: Identity = Depends(require_admin),
    client: DataClient = Depends(get_data_client),
):
    """Blank password keeps the stored credential."""
    directory = _load_directory(client, identity)
    _require_loaded(directory)
    try:
        return directory.update_user(user_id, body)
    except LookupError:
        raise HTTPException(status_code=404, detail="User not found")
    except DuplicateUsername as e:
        raise HTTPException(status_code=409, detail=str(e))
    except DirectoryError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{user_id}/team", response_model=TeamResponse)
def get_team(
    user_id: uuid.UUID,
    identity: Identity = Depends(require_admin),
    client: DataClient = Depends(get_data_client),
):
    directory = _load_directory(client, identity)
    _require_loaded(directory)
    person = _person_or_404(directory, user_id)
    return TeamResponse(
        manager=summarize(person),
        members=person.team,
        empty_message=None if person.team else "No team members assigned yet.",
    )


@router.get("/{user_id}/projects", response_model=ProjectsResponse)
def get_projects(
    user_id: uuid.UUID,
    identity: Identity = Depends(require_admin),
    client: DataClient = Depends(get_data_client),
):
    directory = _load_directory(client, identity)
    _require_loaded(directory)
    person = _person_or_404(directory, user_id)
    return ProjectsResponse(
        user=summarize(person),
        projects=person.projects,
        empty_message=None if person.projects else "No active projects.",
    )


@router.get("/{user_id}/timesheets", response_model=HistoryResponse)
def get_timesheet_history(
    user_id: uuid.UUID,
    identity: Identity = Depends(require_admin),
    client: DataClient = Depends(get_data_client),
):
    directory = _load_directory(client, identity)
    _require_loaded(directory)
    person = _person_or_404(directory, user_id)
    rows, error = directory.timesheet_history(user_id)
    return HistoryResponse(
        user=summarize(person),
        timesheets=rows,
        empty_message=None if rows or error else "No timesheets submitted yet.",
        error=error,
    )
