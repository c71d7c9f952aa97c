"""Activity recording: persist, publish and log one project event."""

from abap_migration.migration.events import EventBroker
from abap_migration.migration.models import ActivityLog
from abap_migration.migration.store import MigrationStore
from abap_migration.utils.logging import get_logger

logger = get_logger(__name__)


class ActivityRecorder:
    """Writes activity entries for one project and fans them out to observers."""

    def __init__(self, store: MigrationStore, broker: EventBroker, project_id: str):
        self.store = store
        self.broker = broker
        self.project_id = project_id

    def record(self, type: str, content: str, sub_object_id: str | None = None) -> ActivityLog:
        entry = self.store.add_activity(self.project_id, type, content, sub_object_id)
        self.broker.publish(self.project_id, "activity", entry.to_dict())
        logger.info(
            "activity",
            project_id=self.project_id,
            sub_object_id=sub_object_id,
            activity_type=type,
            content=content,
        )
        return entry

    def sub_object_status(self, sub_object_id: str, status: str) -> None:
        self.broker.publish(
            self.project_id, "sub_object_update", {"unit_id": sub_object_id, "status": status}
        )

    def project_status(self, status: str) -> None:
        self.broker.publish(self.project_id, "project_status", {"status": status})
