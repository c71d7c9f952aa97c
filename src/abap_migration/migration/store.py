"""
Migration store.

This module provides the MigrationStore class, the persistence collaborator
of the engine. It owns projects, their sub-objects and the activity log,
and exposes the create/read/update/list operations the orchestrator,
discovery runner and worker rely on.
"""

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import sessionmaker

from abap_migration.client.exceptions import ProjectNotFoundError, StateError
from abap_migration.config import StateConfig
from abap_migration.migration.database import init_database, session_scope
from abap_migration.migration.models import (
    ACTIVITY_TYPES,
    PROJECT_STATUSES,
    SUB_OBJECT_STATUSES,
    ActivityLog,
    Project,
    SubObject,
)
from abap_migration.utils.logging import get_logger

logger = get_logger(__name__)

_PROJECT_FIELDS = frozenset(
    {
        "name",
        "objtype",
        "description",
        "parent_name",
        "parent_path",
        "transport",
        "migration_rules",
        "source_system",
        "target_system",
        "status",
    }
)
_SUB_OBJECT_FIELDS = frozenset(
    {
        "status",
        "migrated_source",
        "original_source",
        "excluded",
        "order",
        "depends_on",
        "object_order",
    }
)


class MigrationStore:
    """
    SQLAlchemy-backed store for migration projects.

    Every method opens its own session, so returned rows are detached
    snapshots. Callers re-read after writes when they need fresh state.

    Usage:
        store = MigrationStore.from_config(config.state)
        project = store.create_project(name="ZMY_REPORT", objtype="PROG/P")
        for unit in store.list_sub_objects(project.id):
            ...
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @classmethod
    def from_config(cls, config: StateConfig) -> "MigrationStore":
        """Create a store for the configured database, creating tables if needed."""
        session_factory = init_database(
            config.database_url,
            pool_size=config.db_pool_size,
            max_overflow=config.db_max_overflow,
            pool_timeout=config.db_pool_timeout,
            pool_recycle=config.db_pool_recycle,
        )
        return cls(session_factory)

    # Projects

    def create_project(
        self,
        name: str,
        objtype: str,
        description: str = "",
        parent_name: str = "$TMP",
        parent_path: str = "",
        transport: str | None = None,
        migration_rules: str = "",
        source_system: str | None = None,
        target_system: str | None = None,
    ) -> Project:
        """
        Create a new migration project rooted at one object.

        Args:
            name: Root object name
            objtype: Root object type (e.g. PROG/P)
            description: Free-text description
            parent_name: Target package name
            parent_path: Target package URI
            transport: Optional transport request
            migration_rules: Project-level migration rules
            source_system: Configured source system name
            target_system: Configured target system name

        Returns:
            The created project
        """
        project = Project(
            name=name.upper(),
            objtype=objtype.upper(),
            description=description,
            parent_name=parent_name,
            parent_path=parent_path,
            transport=transport or None,
            migration_rules=migration_rules,
            source_system=source_system.upper() if source_system else None,
            target_system=target_system.upper() if target_system else None,
            status="open",
        )
        with session_scope(self._session_factory) as session:
            session.add(project)
            session.flush()
            session.refresh(project)

        logger.info(
            "project_created",
            project_id=project.id,
            name=project.name,
            objtype=project.objtype,
        )
        return project

    def get_project(self, project_id: str) -> Project:
        """
        Get a project by id.

        Raises:
            ProjectNotFoundError: If the project does not exist
        """
        with session_scope(self._session_factory) as session:
            project = session.get(Project, project_id)
            if project is None:
                raise ProjectNotFoundError(f"Project not found: {project_id}")
            return project

    def list_projects(self) -> list[Project]:
        """List all projects, newest first."""
        with session_scope(self._session_factory) as session:
            stmt = select(Project).order_by(Project.created_at.desc(), Project.name)
            return list(session.scalars(stmt))

    def update_project(self, project_id: str, **fields: Any) -> Project:
        """
        Update project attributes.

        Raises:
            ProjectNotFoundError: If the project does not exist
            StateError: If an unknown field or invalid status is given
        """
        unknown = set(fields) - _PROJECT_FIELDS
        if unknown:
            raise StateError(f"Unknown project fields: {', '.join(sorted(unknown))}")
        if "status" in fields and fields["status"] not in PROJECT_STATUSES:
            raise StateError(f"Invalid project status: {fields['status']}")

        with session_scope(self._session_factory) as session:
            project = session.get(Project, project_id)
            if project is None:
                raise ProjectNotFoundError(f"Project not found: {project_id}")
            for key, value in fields.items():
                setattr(project, key, value)
            session.flush()
            session.refresh(project)
            return project

    def set_project_status(self, project_id: str, status: str) -> Project:
        """Set the lifecycle status of a project."""
        project = self.update_project(project_id, status=status)
        logger.info("project_status_changed", project_id=project_id, status=status)
        return project

    # Sub-objects

    def create_sub_objects(self, project_id: str, rows: list[dict[str, Any]]) -> list[SubObject]:
        """
        Create sub-objects for a project in a single transaction.

        Args:
            project_id: Owning project
            rows: Column values per sub-object

        Returns:
            The created sub-objects in input order
        """
        sub_objects = [SubObject(project_id=project_id, **row) for row in rows]
        with session_scope(self._session_factory) as session:
            if session.get(Project, project_id) is None:
                raise ProjectNotFoundError(f"Project not found: {project_id}")
            session.add_all(sub_objects)
            session.flush()
            for sub_object in sub_objects:
                session.refresh(sub_object)

        logger.info("sub_objects_created", project_id=project_id, count=len(sub_objects))
        return sub_objects

    def list_sub_objects(self, project_id: str) -> list[SubObject]:
        """List a project's sub-objects ordered by (object_order, order)."""
        with session_scope(self._session_factory) as session:
            stmt = (
                select(SubObject)
                .where(SubObject.project_id == project_id)
                .order_by(SubObject.object_order, SubObject.order, SubObject.name)
            )
            return list(session.scalars(stmt))

    def get_sub_object(self, sub_object_id: str) -> SubObject:
        """
        Get a sub-object by id.

        Raises:
            StateError: If the sub-object does not exist
        """
        with session_scope(self._session_factory) as session:
            sub_object = session.get(SubObject, sub_object_id)
            if sub_object is None:
                raise StateError(f"Sub-object not found: {sub_object_id}")
            return sub_object

    def update_sub_object(self, sub_object_id: str, **fields: Any) -> SubObject:
        """
        Update sub-object attributes.

        Raises:
            StateError: If the sub-object does not exist, a field is unknown
                or the status is invalid
        """
        unknown = set(fields) - _SUB_OBJECT_FIELDS
        if unknown:
            raise StateError(f"Unknown sub-object fields: {', '.join(sorted(unknown))}")
        if "status" in fields and fields["status"] not in SUB_OBJECT_STATUSES:
            raise StateError(f"Invalid sub-object status: {fields['status']}")

        with session_scope(self._session_factory) as session:
            sub_object = session.get(SubObject, sub_object_id)
            if sub_object is None:
                raise StateError(f"Sub-object not found: {sub_object_id}")
            for key, value in fields.items():
                setattr(sub_object, key, value)
            session.flush()
            session.refresh(sub_object)
            return sub_object

    def set_excluded(self, sub_object_id: str, excluded: bool) -> SubObject:
        """Manually include or exclude a sub-object from migration."""
        sub_object = self.update_sub_object(sub_object_id, excluded=excluded)
        logger.info("sub_object_exclusion_changed", sub_object_id=sub_object_id, excluded=excluded)
        return sub_object

    def reset_in_progress(self, project_id: str) -> int:
        """
        Revert sub-objects stuck in ``in_progress`` back to ``pending``.

        A process that died mid-unit leaves its unit in progress; a restarted
        run must see it as pending again.

        Returns:
            Number of sub-objects reverted
        """
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(SubObject)
                .where(SubObject.project_id == project_id, SubObject.status == "in_progress")
                .values(status="pending")
            )
            count = result.rowcount or 0

        if count:
            logger.warning("stale_sub_objects_reset", project_id=project_id, count=count)
        return count

    # Activity

    def add_activity(
        self,
        project_id: str,
        type: str,
        content: str,
        sub_object_id: str | None = None,
    ) -> ActivityLog:
        """
        Append an activity entry.

        Raises:
            StateError: If the activity type is unknown
        """
        if type not in ACTIVITY_TYPES:
            raise StateError(f"Invalid activity type: {type}")

        entry = ActivityLog(
            project_id=project_id,
            sub_object_id=sub_object_id,
            type=type,
            content=content,
        )
        with session_scope(self._session_factory) as session:
            session.add(entry)
            session.flush()
            session.refresh(entry)
            return entry

    def list_activity(
        self,
        project_id: str,
        sub_object_id: str | None = None,
        limit: int = 100,
        types: tuple[str, ...] | None = None,
    ) -> list[ActivityLog]:
        """List recent activity for a project (optionally one sub-object), newest first."""
        with session_scope(self._session_factory) as session:
            stmt = select(ActivityLog).where(ActivityLog.project_id == project_id)
            if sub_object_id is not None:
                stmt = stmt.where(ActivityLog.sub_object_id == sub_object_id)
            if types is not None:
                stmt = stmt.where(ActivityLog.type.in_(types))
            stmt = stmt.order_by(ActivityLog.timestamp.desc(), ActivityLog.id.desc()).limit(limit)
            return list(session.scalars(stmt))
