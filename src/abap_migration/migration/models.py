"""
SQLAlchemy models for ABAP migration state.

This module defines the database schema for migration projects, the
sub-objects discovered for them, and the append-only activity log.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

PROJECT_STATUSES = ("open", "in_progress", "paused", "completed", "error")
SUB_OBJECT_STATUSES = ("pending", "in_progress", "migrated", "error", "activated")
ACTIVITY_TYPES = (
    "discovery",
    "write",
    "check",
    "fix",
    "activate",
    "user_message",
    "agent_message",
    "error",
    "info",
)

# Sub-object statuses that satisfy a dependency
DONE_STATUSES = frozenset({"activated", "migrated"})
# Sub-object statuses the scheduler will (re)attempt
RUNNABLE_STATUSES = frozenset({"pending", "error"})


def _new_id() -> str:
    return uuid.uuid4().hex


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Project(Base):
    """
    A migration unit of work rooted at one ABAP object.

    The orchestrator is the only writer of ``status``.
    """

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)

    # Root object
    name: Mapped[str] = mapped_column(
        String(120), nullable=False, index=True, comment="Root object name (e.g. ZMY_REPORT)"
    )
    objtype: Mapped[str] = mapped_column(
        String(20), nullable=False, comment="Root object type (e.g. PROG/P, CLAS/OC)"
    )
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Target location
    parent_name: Mapped[str] = mapped_column(
        String(120), nullable=False, default="$TMP", comment="Target package name"
    )
    parent_path: Mapped[str] = mapped_column(
        String(512), nullable=False, default="", comment="Target package URI"
    )
    transport: Mapped[str | None] = mapped_column(String(40), nullable=True)
    migration_rules: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # System references (keys of the configured systems)
    source_system: Mapped[str | None] = mapped_column(String(120), nullable=True)
    target_system: Mapped[str | None] = mapped_column(String(120), nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open", index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )

    sub_objects: Mapped[list["SubObject"]] = relationship(
        "SubObject", back_populates="project", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('open', 'in_progress', 'paused', 'completed', 'error')",
            name="ck_projects_status",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Project(id='{self.id}', name='{self.name}', objtype='{self.objtype}', "
            f"status='{self.status}')>"
        )


class SubObject(Base):
    """
    One source artifact belonging to a parent ABAP object.

    Sub-objects are processed in ascending (object_order, order). Every
    sub-object of an earlier object group must be activated, migrated or
    excluded before a sub-object of a later group is started.
    """

    __tablename__ = "sub_objects"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )

    name: Mapped[str] = mapped_column(String(120), nullable=False)
    objtype: Mapped[str] = mapped_column(String(20), nullable=False)
    source_url: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    object_url: Mapped[str] = mapped_column(String(512), nullable=False, default="")

    original_source: Mapped[str] = mapped_column(Text, nullable=False, default="")
    migrated_source: Mapped[str] = mapped_column(Text, nullable=False, default="")

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    excluded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    order: Mapped[int] = mapped_column(
        "sort_order", Integer, nullable=False, default=0, comment="Order within parent object"
    )
    depends_on: Mapped[list[str] | None] = mapped_column(
        JSON, nullable=True, comment="Names of sub-objects of the same object this one needs"
    )

    parent_object_name: Mapped[str] = mapped_column(String(120), nullable=False)
    parent_object_type: Mapped[str] = mapped_column(String(20), nullable=False)
    object_order: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Order of the parent object group"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )

    project: Mapped["Project"] = relationship("Project", back_populates="sub_objects")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'in_progress', 'migrated', 'error', 'activated')",
            name="ck_sub_objects_status",
        ),
        Index("idx_sub_objects_project_order", "project_id", "object_order", "sort_order"),
    )

    @property
    def is_done(self) -> bool:
        return self.status in DONE_STATUSES

    def __repr__(self) -> str:
        return (
            f"<SubObject(id='{self.id}', name='{self.name}', status='{self.status}', "
            f"object_order={self.object_order}, order={self.order})>"
        )


class ActivityLog(Base):
    """
    Immutable, timestamped record of one event in a project.

    Entries are only ever appended.
    """

    __tablename__ = "activity_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sub_object_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), index=True
    )

    __table_args__ = (Index("idx_activity_project_timestamp", "project_id", "timestamp"),)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for event payloads."""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "sub_object_id": self.sub_object_id,
            "type": self.type,
            "content": self.content,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self) -> str:
        return f"<ActivityLog(id={self.id}, type='{self.type}', project_id='{self.project_id}')>"
