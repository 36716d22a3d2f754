import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from timesheet_admin.database import Base


# ---------------------------------------------------
# Roles
# ---------------------------------------------------

ROLE_USER = "user"
ROLE_MANAGER = "manager"
ROLE_ADMIN = "admin"

USER_ROLES = (ROLE_USER, ROLE_MANAGER, ROLE_ADMIN)

USER_ROLE_ENUM = String(20)  # keep String to avoid enum migration issues


# ---------------------------------------------------
# User
# ---------------------------------------------------

class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, nullable=False)

    username = Column(String(100), nullable=False, unique=True, index=True)
    full_name = Column(String(200), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    password_hash = Column(String(255), nullable=False)

    role = Column(USER_ROLE_ENUM, nullable=False, default=ROLE_USER)

    # Employees point at exactly one manager or none; admins sit outside the hierarchy
    manager_id = Column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    manager = relationship("User", remote_side=[id], foreign_keys=[manager_id])

    @property
    def display_name(self) -> str:
        return self.full_name or self.username
