"""
Migration orchestrator.

This module provides the MigrationOrchestrator, the state machine that
runs a project end to end: discovery on the first run, then one pass over
the project's sub-objects in (object_order, order), migrating every unit
whose dependencies are satisfied.

Project status transitions:
    open -> in_progress -> completed | paused | error
    paused -> in_progress (resume)
    error -> in_progress (restart)
"""

import asyncio
from dataclasses import dataclass

from abap_migration.client.exceptions import (
    ConfigurationError,
    MigrationCancelledError,
    MigrationError,
)
from abap_migration.client.registry import SystemRegistry
from abap_migration.config import MigrationConfig
from abap_migration.migration.activity import ActivityRecorder
from abap_migration.migration.cancellation import CancellationToken
from abap_migration.migration.discovery import DiscoveryRunner
from abap_migration.migration.events import EventBroker
from abap_migration.migration.models import (
    DONE_STATUSES,
    RUNNABLE_STATUSES,
    Project,
    SubObject,
)
from abap_migration.migration.prompts import ObjectContext
from abap_migration.migration.protocols import MigrationAgent, OrderingAdvisor, ToolExecutor
from abap_migration.migration.store import MigrationStore
from abap_migration.migration.worker import UnitWorker
from abap_migration.utils.logging import get_logger

logger = get_logger(__name__)

PAUSE_REASON = "Migration paused"


@dataclass
class PassSummary:
    """Counts for one scheduling pass."""

    activated: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def clean(self) -> bool:
        return self.failed == 0 and self.skipped == 0


class MigrationOrchestrator:
    """
    Runs, pauses and resumes project migrations.

    At most one run per project is active at a time. Runs of different
    projects share nothing but the store and the event broker.

    Usage:
        orchestrator = MigrationOrchestrator(store, broker, registry, agent, advisor, config)
        task = orchestrator.launch(project_id)
        ...
        orchestrator.pause(project_id)
        await task
    """

    def __init__(
        self,
        store: MigrationStore,
        broker: EventBroker,
        registry: SystemRegistry,
        agent: MigrationAgent,
        advisor: OrderingAdvisor | None,
        config: MigrationConfig,
    ):
        self.store = store
        self.broker = broker
        self.registry = registry
        self.advisor = advisor
        self.config = config
        self.worker = UnitWorker(store, broker, agent, config.worker)
        self._runs: dict[str, CancellationToken] = {}

    def is_running(self, project_id: str) -> bool:
        return project_id in self._runs

    async def start(self, project_id: str) -> bool:
        """
        Run a project's migration until it completes, pauses or fails.

        Starting a project that is already running does nothing. Starting a
        completed project with nothing left to migrate does nothing.

        Returns:
            True if a run took place

        Raises:
            ProjectNotFoundError: If the project does not exist
        """
        if project_id in self._runs:
            logger.info("migration_already_running", project_id=project_id)
            return False

        project = self.store.get_project(project_id)
        if project.status == "completed" and self._is_finished(project_id):
            logger.info("migration_already_completed", project_id=project_id)
            return False

        token = CancellationToken()
        self._runs[project_id] = token
        try:
            await self._run(project, token)
        finally:
            self._runs.pop(project_id, None)
        return True

    async def resume(self, project_id: str) -> bool:
        """Resume a paused or failed project from its first unfinished unit."""
        return await self.start(project_id)

    def launch(self, project_id: str) -> asyncio.Task:
        """Start a run in the background."""
        return asyncio.create_task(self.start(project_id), name=f"migration-{project_id}")

    def pause(self, project_id: str) -> bool:
        """
        Signal the project's active run to stop at its next checkpoint.

        Returns:
            True if a run was active
        """
        token = self._runs.get(project_id)
        if token is None:
            return False
        token.cancel(PAUSE_REASON)
        logger.info("migration_pause_requested", project_id=project_id)
        return True

    async def _run(self, project: Project, token: CancellationToken) -> None:
        activity = ActivityRecorder(self.store, self.broker, project.id)

        try:
            self._set_status(project.id, "in_progress", activity)

            if not project.source_system or not project.target_system:
                raise ConfigurationError(
                    "Project must have both source and target systems configured"
                )
            source = self.registry.get(project.source_system)
            target = self.registry.get(project.target_system)

            self.store.reset_in_progress(project.id)

            if not self.store.list_sub_objects(project.id):
                runner = DiscoveryRunner(
                    self.store,
                    self.broker,
                    source=source,
                    target=target,
                    advisor=self.advisor,
                    token=token,
                    config=self.config.discovery,
                )
                if not await runner.run(project):
                    raise MigrationError(
                        f"Discovery found no sub-objects for {project.name} ({project.objtype})"
                    )

            token.raise_if_cancelled()
            units = self.store.list_sub_objects(project.id)
            summary = await self._migrate_units(project, units, target, token, activity)

            self._set_status(project.id, "completed", activity)
            if summary.clean:
                activity.record(
                    "info", "Migration completed successfully. All objects activated."
                )
            else:
                activity.record(
                    "info",
                    f"Migration pass finished: {summary.activated} activated, "
                    f"{summary.failed} failed, {summary.skipped} skipped.",
                )
            logger.info(
                "migration_completed",
                project_id=project.id,
                activated=summary.activated,
                failed=summary.failed,
                skipped=summary.skipped,
            )

        except MigrationCancelledError:
            self._pause(project.id, activity)

        except asyncio.CancelledError:
            self._pause(project.id, activity)
            raise

        except Exception as e:
            self._set_status(project.id, "error", activity)
            activity.record("error", f"Migration error: {e}")
            logger.error(
                "migration_failed",
                project_id=project.id,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _migrate_units(
        self,
        project: Project,
        units: list[SubObject],
        executor: ToolExecutor,
        token: CancellationToken,
        activity: ActivityRecorder,
    ) -> PassSummary:
        """One pass over the runnable units, skipping those not yet ready."""
        summary = PassSummary()
        statuses = {unit.id: unit.status for unit in units}
        by_object_and_name = {
            (unit.parent_object_name.upper(), unit.name.upper()): unit for unit in units
        }

        candidates = sorted(
            (u for u in units if not u.excluded and u.status in RUNNABLE_STATUSES),
            key=lambda u: (u.object_order, u.order),
        )
        logger.info("migration_pass_started", project_id=project.id, candidates=len(candidates))

        for unit in candidates:
            token.raise_if_cancelled()

            waiting = []
            for dep_name in unit.depends_on or []:
                dep = by_object_and_name.get((unit.parent_object_name.upper(), dep_name.upper()))
                if dep is not None and not dep.excluded and statuses[dep.id] not in DONE_STATUSES:
                    waiting.append(dep_name)
            if waiting:
                activity.record(
                    "info",
                    f"Skipping {unit.name}: waiting for dependencies ({', '.join(waiting)})",
                    unit.id,
                )
                summary.skipped += 1
                continue

            earlier_incomplete = any(
                other.object_order < unit.object_order
                and not other.excluded
                and statuses[other.id] not in DONE_STATUSES
                for other in units
            )
            if earlier_incomplete:
                activity.record(
                    "info",
                    f"Skipping {unit.name}: waiting for earlier objects to complete",
                    unit.id,
                )
                summary.skipped += 1
                continue

            context = ObjectContext(
                object_name=unit.parent_object_name or project.name,
                object_type=unit.parent_object_type or project.objtype,
                parent_name=project.parent_name,
                parent_path=project.parent_path,
                transport=project.transport,
                description=project.description,
                migration_rules=project.migration_rules,
            )
            result = await self.worker.migrate(project.id, unit, executor, context, token)

            if result.success:
                statuses[unit.id] = "activated"
                summary.activated += 1
            else:
                statuses[unit.id] = "error"
                summary.failed += 1

        return summary

    def _is_finished(self, project_id: str) -> bool:
        units = self.store.list_sub_objects(project_id)
        return bool(units) and not any(
            not unit.excluded and unit.status in RUNNABLE_STATUSES for unit in units
        )

    def _set_status(self, project_id: str, status: str, activity: ActivityRecorder) -> None:
        self.store.set_project_status(project_id, status)
        activity.project_status(status)

    def _pause(self, project_id: str, activity: ActivityRecorder) -> None:
        self.store.reset_in_progress(project_id)
        self._set_status(project_id, "paused", activity)
        activity.record("info", "Migration paused by user.")
        logger.info("migration_paused", project_id=project_id)
