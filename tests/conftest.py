import os

# Must be set before the application modules read their configuration
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTH_MODE"] = "demo"

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from main import app
from timesheet_admin.database import Base, get_db, get_session_factory
from timesheet_admin.models.audit_log import AuditLog  # noqa: F401
from timesheet_admin.models.project import Project, ProjectUser
from timesheet_admin.models.timesheet import Timesheet
from timesheet_admin.models.user import User
from timesheet_admin.services.auth import get_password_hash
from timesheet_admin.services.data_client import DataClient


@pytest.fixture
def engine(tmp_path):
    """A fresh file-backed SQLite database per test."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'timesheets.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def data_client(session_factory):
    return DataClient(session_factory)


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _user(db, username, role, full_name=None, email=None, manager=None, created_at=None):
    user = User(
        username=username,
        full_name=full_name,
        email=email,
        role=role,
        manager_id=manager.id if manager else None,
        password_hash=get_password_hash("testpass123"),
    )
    if created_at:
        user.created_at = created_at
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def admin_user(db):
    """Create an admin user"""
    return _user(db, "admin", "admin", "Ada Admin", "admin@example.com", created_at=datetime(2024, 1, 1))


@pytest.fixture
def manager_user(db):
    """Create a manager user"""
    return _user(db, "grace", "manager", "Grace Hopper", "grace@example.com", created_at=datetime(2024, 1, 2))


@pytest.fixture
def other_manager(db):
    return _user(db, "linus", "manager", "Linus Lead", "linus@example.com", created_at=datetime(2024, 1, 3))


@pytest.fixture
def team(db, manager_user):
    """Two employees reporting to manager_user"""
    return [
        _user(db, "alice", "user", "Alice Smith", "alice@example.com", manager_user, datetime(2024, 1, 4)),
        _user(db, "bob", "user", None, "bob@corp.io", manager_user, datetime(2024, 1, 5)),
    ]


@pytest.fixture
def outsider(db, other_manager):
    """An employee reporting to another manager"""
    return _user(db, "olga", "user", "Olga Outside", "olga@example.com", other_manager, datetime(2024, 1, 6))


@pytest.fixture
def projects(db):
    website = Project(name="Website Redesign", description="Public site refresh", allocated_hours=400)
    mobile = Project(name="Mobile App", allocated_hours=250)
    db.add_all([website, mobile])
    db.commit()
    return {"website": website, "mobile": mobile}


@pytest.fixture
def assign(db):
    def _assign(user, project):
        db.add(ProjectUser(project_id=project.id, user_id=user.id))
        db.commit()
    return _assign


@pytest.fixture
def make_timesheet(db):
    def _make(user, project, hours=(8, 8, 8, 8, 4), status="pending", submitted_at=None,
              week_number=10, approver=None, approved_at=None, rejection_reason=None):
        monday, tuesday, wednesday, thursday, friday = hours
        timesheet = Timesheet(
            user_id=user.id,
            project_id=project.id,
            year=2024,
            week_number=week_number,
            monday_hours=monday,
            tuesday_hours=tuesday,
            wednesday_hours=wednesday,
            thursday_hours=thursday,
            friday_hours=friday,
            status=status,
            submitted_at=submitted_at or datetime(2024, 3, 10, 9, 0),
            approved_by=approver.id if approver else None,
            approved_at=approved_at,
            rejection_reason=rejection_reason,
        )
        db.add(timesheet)
        db.commit()
        return timesheet
    return _make


@pytest.fixture
def auth_headers():
    """Demo identity headers for a user"""
    def _headers(user, role=None):
        headers = {"X-User-Id": str(user.id)}
        if role:
            headers["X-User-Role"] = role
        return headers
    return _headers
