"""
Seed script for the timesheet admin API: demo users, projects and a month of
submitted timesheets.

Run: python -m timesheet_admin.seed
"""
import logging
import sys
from datetime import datetime, timedelta

from timesheet_admin.database import Base, SessionLocal, engine
from timesheet_admin.models.audit_log import AuditLog  # noqa: F401
from timesheet_admin.models.project import Project, ProjectUser
from timesheet_admin.models.timesheet import Timesheet, TimesheetStatus
from timesheet_admin.models.user import User, ROLE_ADMIN, ROLE_MANAGER, ROLE_USER
from timesheet_admin.services.auth import create_access_token, get_password_hash

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEMO_PASSWORD = "Timesheets@2024!"

PROJECTS = [
    ("Website Redesign", "Public site refresh", 400),
    ("Mobile App", "Field staff companion app", 600),
    ("Internal Tools", None, 150),
]

EMPLOYEES = [
    ("alice", "Alice Wanjiru", "alice@example.com"),
    ("brian", "Brian Otieno", "brian@example.com"),
    ("carol", None, "carol@example.com"),
]


def _get_or_create_user(db, username, full_name, email, role, manager_id=None):
    user = db.query(User).filter(User.username == username).first()
    if user:
        logger.info("User %s already exists, skipping.", username)
        return user
    user = User(
        username=username,
        full_name=full_name,
        email=email,
        role=role,
        manager_id=manager_id,
        password_hash=get_password_hash(DEMO_PASSWORD),
    )
    db.add(user)
    db.flush()
    logger.info("Created %s: %s", role, username)
    return user


def seed_people(db):
    admin = _get_or_create_user(db, "admin", "Platform Admin", "admin@example.com", ROLE_ADMIN)
    manager = _get_or_create_user(db, "mgr", "Grace Manager", "grace@example.com", ROLE_MANAGER)
    employees = [
        _get_or_create_user(db, username, full_name, email, ROLE_USER, manager_id=manager.id)
        for username, full_name, email in EMPLOYEES
    ]
    return admin, manager, employees


def seed_projects(db, employees):
    projects = []
    for name, description, budget in PROJECTS:
        project = db.query(Project).filter(Project.name == name).first()
        if not project:
            project = Project(name=name, description=description, allocated_hours=budget)
            db.add(project)
            db.flush()
            logger.info("Created project: %s", name)
        projects.append(project)

    for i, employee in enumerate(employees):
        project = projects[i % len(projects)]
        exists = db.query(ProjectUser).filter(
            ProjectUser.project_id == project.id, ProjectUser.user_id == employee.id
        ).first()
        if not exists:
            db.add(ProjectUser(project_id=project.id, user_id=employee.id))
    db.flush()
    return projects


def seed_timesheets(db, manager, employees, projects):
    """Two weeks per employee in the current month: one approved, one pending."""
    if db.query(Timesheet).count():
        logger.info("Timesheets already exist, skipping.")
        return 0

    now = datetime.utcnow()
    month_start = datetime(now.year, now.month, 1, 9, 0)
    created = 0
    for i, employee in enumerate(employees):
        project = projects[i % len(projects)]
        for offset, status in ((0, TimesheetStatus.APPROVED), (1, TimesheetStatus.PENDING)):
            submitted_at = min(month_start + timedelta(days=7 * offset + i), now)
            db.add(Timesheet(
                user_id=employee.id,
                project_id=project.id,
                year=submitted_at.year,
                week_number=submitted_at.isocalendar()[1],
                monday_hours=8,
                tuesday_hours=8,
                wednesday_hours=7.5,
                thursday_hours=8,
                friday_hours=4.5 + i,
                status=status.value,
                submitted_at=submitted_at,
                approved_by=manager.id if status == TimesheetStatus.APPROVED else None,
                approved_at=submitted_at + timedelta(days=1) if status == TimesheetStatus.APPROVED else None,
            ))
            created += 1
    return created


def run_seed():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        admin, manager, employees = seed_people(db)
        projects = seed_projects(db, employees)
        created = seed_timesheets(db, manager, employees, projects)
        db.commit()
        if created:
            logger.info("Seeded %d timesheets.", created)

        logger.info("Seed complete. Demo password for every user: %s", DEMO_PASSWORD)
        for user in (admin, manager):
            token = create_access_token({"sub": str(user.id), "role": user.role})
            logger.info("  %s (%s) bearer token: %s", user.username, user.role, token)
    except Exception:
        logger.exception("Seed failed")
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    run_seed()
