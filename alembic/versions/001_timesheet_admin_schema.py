"""Users, projects, assignments, timesheets and audit log

Revision ID: 001
Revises:
Create Date: 2024-03-01

Idempotent, uses IF NOT EXISTS so it won't fail on a database that was
bootstrapped with Base.metadata.create_all.
"""
from typing import Sequence, Union
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            username VARCHAR(100) NOT NULL,
            full_name VARCHAR(200),
            email VARCHAR(255),
            password_hash VARCHAR(255) NOT NULL,
            role VARCHAR(20) NOT NULL DEFAULT 'user',
            manager_id UUID REFERENCES users(id) ON DELETE SET NULL,
            created_at TIMESTAMP NOT NULL DEFAULT now(),
            updated_at TIMESTAMP NOT NULL DEFAULT now()
        )
    """)
    op.execute("CREATE UNIQUE INDEX IF NOT EXISTS ix_users_username ON users (username)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_users_email ON users (email)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_users_manager_id ON users (manager_id)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS projects (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(200) NOT NULL,
            description TEXT,
            allocated_hours DOUBLE PRECISION NOT NULL DEFAULT 0,
            created_at TIMESTAMP NOT NULL DEFAULT now()
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS project_users (
            project_id UUID NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            created_at TIMESTAMP NOT NULL DEFAULT now(),
            PRIMARY KEY (project_id, user_id)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_project_users_user_id ON project_users (user_id)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS timesheets (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            project_id UUID NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
            year INTEGER NOT NULL,
            week_number INTEGER NOT NULL,
            monday_hours DOUBLE PRECISION NOT NULL DEFAULT 0,
            tuesday_hours DOUBLE PRECISION NOT NULL DEFAULT 0,
            wednesday_hours DOUBLE PRECISION NOT NULL DEFAULT 0,
            thursday_hours DOUBLE PRECISION NOT NULL DEFAULT 0,
            friday_hours DOUBLE PRECISION NOT NULL DEFAULT 0,
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            submitted_at TIMESTAMP NOT NULL DEFAULT now(),
            approved_by UUID REFERENCES users(id) ON DELETE SET NULL,
            approved_at TIMESTAMP,
            rejection_reason TEXT,
            CONSTRAINT ck_timesheets_status CHECK (status IN ('pending', 'approved', 'rejected'))
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_timesheets_submitted_at ON timesheets (submitted_at)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_timesheets_user_status ON timesheets (user_id, status)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS audit_log (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL,
            action VARCHAR(100) NOT NULL,
            resource_type VARCHAR(100) NOT NULL,
            resource_id VARCHAR(255),
            details JSON,
            created_at TIMESTAMP DEFAULT now()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_audit_log_user_id ON audit_log (user_id)")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS audit_log")
    op.execute("DROP TABLE IF EXISTS timesheets")
    op.execute("DROP TABLE IF EXISTS project_users")
    op.execute("DROP TABLE IF EXISTS projects")
    op.execute("DROP TABLE IF EXISTS users")
