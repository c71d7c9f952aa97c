"""
Project chat.

A developer can ask the migration agent service about a project. Each
question and its answer are kept in the activity log as ``user_message``
and ``agent_message`` entries, and earlier turns are replayed so the
conversation carries on across calls.
"""

from abap_migration.client.exceptions import ABAPMigrationError
from abap_migration.migration.activity import ActivityRecorder
from abap_migration.migration.events import EventBroker
from abap_migration.migration.models import ActivityLog, Project, SubObject
from abap_migration.migration.prompts import build_chat_system_prompt
from abap_migration.migration.protocols import MigrationAgent
from abap_migration.migration.store import MigrationStore
from abap_migration.utils.logging import get_logger

logger = get_logger(__name__)

CHAT_TYPES = ("user_message", "agent_message")
HISTORY_LIMIT = 20
RECENT_ACTIVITY_LIMIT = 10


def build_project_context(
    project: Project, units: list[SubObject], recent: list[ActivityLog]
) -> str:
    """Summarize a project's state for the chat system prompt."""
    unit_line = ", ".join(f"{u.name} [{u.status}]" for u in units) or "None discovered yet"
    activity_lines = "\n".join(f"  [{entry.type}] {entry.content}" for entry in recent)
    return "\n".join(
        [
            f"Project: {project.name} ({project.objtype})",
            f"Status: {project.status}",
            f"Sub-objects: {unit_line}",
            f"Recent activity:\n{activity_lines}",
        ]
    )


class ProjectChat:
    """Answers questions about one project through the migration agent service."""

    def __init__(self, store: MigrationStore, broker: EventBroker, agent: MigrationAgent):
        self.store = store
        self.broker = broker
        self.agent = agent

    async def ask(self, project_id: str, message: str) -> ActivityLog:
        """
        Log a question, ask the agent service and log its answer.

        A failed service call is answered with an ``Error: ...`` message
        rather than raised, so the conversation stays complete.

        Returns:
            The logged answer

        Raises:
            ValueError: If the message is empty
            ProjectNotFoundError: If the project does not exist
        """
        message = message.strip()
        if not message:
            raise ValueError("Missing message")

        project = self.store.get_project(project_id)
        units = self.store.list_sub_objects(project_id)
        recent = self.store.list_activity(project_id, limit=RECENT_ACTIVITY_LIMIT)
        history = self.store.list_activity(project_id, limit=HISTORY_LIMIT, types=CHAT_TYPES)

        activity = ActivityRecorder(self.store, self.broker, project_id)
        activity.record("user_message", message)

        messages = [
            {
                "role": "user" if entry.type == "user_message" else "assistant",
                "content": entry.content,
            }
            for entry in reversed(history)
        ]
        messages.append({"role": "user", "content": message})
        system_prompt = build_chat_system_prompt(build_project_context(project, units, recent))

        try:
            turn = await self.agent.complete(system_prompt, messages, [])
            reply = turn.text
        except ABAPMigrationError as e:
            logger.warning("chat_reply_failed", project_id=project_id, error=str(e))
            reply = f"Error: {e}"

        return activity.record("agent_message", reply)
