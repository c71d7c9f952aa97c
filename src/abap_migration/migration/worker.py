"""
Per-unit migration worker.

The worker drives one sub-object through the migration agent's tool loop
on the target system and records the outcome on the sub-object.
"""

import asyncio
import re
from dataclasses import dataclass

from abap_migration.client.exceptions import MigrationCancelledError
from abap_migration.config import WorkerConfig
from abap_migration.migration.activity import ActivityRecorder
from abap_migration.migration.cancellation import CancellationToken
from abap_migration.migration.events import EventBroker
from abap_migration.migration.models import SubObject
from abap_migration.migration.prompts import (
    ObjectContext,
    build_migration_system_prompt,
    build_migration_user_prompt,
)
from abap_migration.migration.protocols import MigrationAgent, ToolExecutor
from abap_migration.migration.store import MigrationStore
from abap_migration.migration.tools import ToolInterpreter, tool_definitions
from abap_migration.utils.logging import get_logger

logger = get_logger(__name__)

_ABAP_BLOCK = re.compile(r"```abap\s*\n(.*?)```", re.DOTALL | re.IGNORECASE)
_ANY_BLOCK = re.compile(r"```[^\n]*\n(.*?)```", re.DOTALL)


@dataclass
class UnitResult:
    """Outcome of one migration attempt."""

    unit_id: str
    success: bool
    migrated_source: str | None = None
    error: str | None = None
    rounds: int = 0


def extract_source(response_text: str, fallback: str) -> str:
    """Pull the migrated source out of the agent's final reply.

    An ```abap block wins over any other fenced block. Without a block the
    fallback is returned unchanged.
    """
    for pattern in (_ABAP_BLOCK, _ANY_BLOCK):
        match = pattern.search(response_text or "")
        if match:
            return match.group(1).strip()
    return fallback


class UnitWorker:
    """
    Migrates single sub-objects through the agent tool loop.

    Usage:
        worker = UnitWorker(store, broker, agent, config.worker)
        result = await worker.migrate(project_id, unit, executor, context, token)
    """

    def __init__(
        self,
        store: MigrationStore,
        broker: EventBroker,
        agent: MigrationAgent,
        config: WorkerConfig,
    ):
        self.store = store
        self.broker = broker
        self.agent = agent
        self.config = config

    async def migrate(
        self,
        project_id: str,
        unit: SubObject,
        executor: ToolExecutor,
        context: ObjectContext,
        token: CancellationToken,
    ) -> UnitResult:
        """
        Migrate one sub-object.

        Ordinary failures mark the unit ``error`` and are returned in the
        result. Cancellation reverts the unit to ``pending`` and propagates.

        Raises:
            MigrationCancelledError: If the run was cancelled
        """
        token.raise_if_cancelled()
        activity = ActivityRecorder(self.store, self.broker, project_id)

        self._set_status(activity, unit, "in_progress")
        activity.record("info", f"Starting migration of {unit.name} ({unit.objtype})", unit.id)
        logger.info(
            "unit_migration_started",
            project_id=project_id,
            unit=unit.name,
            objtype=unit.objtype,
            parent_object=context.object_name,
        )

        try:
            text, rounds = await self._run_agent(unit, executor, context, token, activity)
            token.raise_if_cancelled()

            migrated_source = extract_source(text, unit.migrated_source)
            self.store.update_sub_object(
                unit.id, status="activated", migrated_source=migrated_source
            )
            activity.sub_object_status(unit.id, "activated")
            activity.record("activate", f"Successfully migrated and activated {unit.name}", unit.id)
            logger.info("unit_migration_completed", unit=unit.name, rounds=rounds)
            return UnitResult(unit.id, True, migrated_source=migrated_source, rounds=rounds)

        except (MigrationCancelledError, asyncio.CancelledError):
            self._revert(activity, unit)
            raise

        except Exception as e:
            if token.cancelled:
                self._revert(activity, unit)
                raise MigrationCancelledError(token.reason) from e

            self._set_status(activity, unit, "error")
            activity.record("error", f"Migration failed for {unit.name}: {e}", unit.id)
            logger.error(
                "unit_migration_failed",
                unit=unit.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return UnitResult(unit.id, False, error=str(e))

    async def _run_agent(
        self,
        unit: SubObject,
        executor: ToolExecutor,
        context: ObjectContext,
        token: CancellationToken,
        activity: ActivityRecorder,
    ) -> tuple[str, int]:
        """Run the tool loop until the agent stops calling tools or rounds run out."""
        interpreter = ToolInterpreter(executor)
        system_prompt = build_migration_system_prompt(context, self.config.global_migration_rules)
        messages: list[dict] = [
            {
                "role": "user",
                "content": build_migration_user_prompt(
                    unit.name, unit.objtype, unit.original_source, context
                ),
            }
        ]
        tools = tool_definitions()
        final_text = ""

        rounds = 0
        while rounds < self.config.max_tool_rounds:
            rounds += 1
            token.raise_if_cancelled()
            turn = await self.agent.complete(system_prompt, messages, tools)
            token.raise_if_cancelled()

            if turn.text:
                final_text = turn.text
            messages.append(
                {
                    "role": "assistant",
                    "content": turn.text,
                    "tool_calls": [call.model_dump() for call in turn.tool_calls],
                }
            )
            if not turn.tool_calls:
                break

            for call in turn.tool_calls:
                token.raise_if_cancelled()
                summary, result = await interpreter.run(call)
                token.raise_if_cancelled()

                write_type = "write"
                if call.name == "sap_write_and_check" and call.arguments.get("lockHandle"):
                    write_type = "fix"
                activity.record(write_type, f"Tool: {call.name} - {summary}", unit.id)
                activity.record(
                    "check",
                    f"Result ({call.name}): {result.preview(self.config.result_preview_chars)}",
                    unit.id,
                )
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": call.id,
                        "name": call.name,
                        "content": result.output,
                    }
                )
        else:
            logger.warning("agent_round_limit_reached", unit=unit.name, rounds=rounds)

        return final_text, rounds

    def _set_status(self, activity: ActivityRecorder, unit: SubObject, status: str) -> None:
        self.store.update_sub_object(unit.id, status=status)
        activity.sub_object_status(unit.id, status)

    def _revert(self, activity: ActivityRecorder, unit: SubObject) -> None:
        self._set_status(activity, unit, "pending")
        logger.info("unit_migration_cancelled", unit=unit.name)
