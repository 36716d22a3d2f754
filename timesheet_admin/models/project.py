import uuid

from sqlalchemy import Column, String, Text, Float, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from timesheet_admin.database import Base


class Project(Base):
    __tablename__ = "projects"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    allocated_hours = Column(Float, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)


class ProjectUser(Base):
    """Assignment of a user to a project."""

    __tablename__ = "project_users"

    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    project = relationship("Project")
    user = relationship("User")
