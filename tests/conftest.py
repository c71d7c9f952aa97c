"""Shared fixtures and in-memory fakes for the remote collaborators."""

import re
from typing import Any

import pytest

from abap_migration.client.exceptions import (
    AgentError,
    ObjectNotFoundError,
    ServerError,
    ToolExecutionError,
)
from abap_migration.config import MigrationConfig
from abap_migration.migration.cancellation import CancellationToken
from abap_migration.migration.database import init_database
from abap_migration.migration.events import EventBroker
from abap_migration.migration.store import MigrationStore
from abap_migration.migration.tools import AgentTurn, ToolCallRequest, ToolResult

_SUB_OBJECT_LINE = re.compile(r"Sub-object: (\S+) \(")


class FakeSourceSystem:
    """Source system holding objects, their includes and sources in memory."""

    def __init__(self) -> None:
        self.objects: dict[str, tuple[str, str, dict[str, Any]]] = {}
        self.sources: dict[str, str] = {}
        self.failing_objects: set[str] = set()
        self.failing_sources: set[str] = set()
        self.resolved: list[str] = []

    def add_object(
        self,
        name: str,
        objtype: str,
        source: str | None = None,
        includes: dict[str, str] | None = None,
    ) -> None:
        url = f"/sap/bc/adt/objects/{name.lower()}"
        if includes:
            entries = []
            for inc_name, inc_source in includes.items():
                source_url = f"{url}/includes/{inc_name.lower()}"
                entries.append(
                    {
                        "adtcore:name": inc_name,
                        "adtcore:type": "PROG/I",
                        "source:uri": source_url,
                        "adtcore:uri": url,
                    }
                )
                self.sources[source_url] = inc_source
            structure: dict[str, Any] = {"includes": entries}
        else:
            structure = {"sourceUri": f"{url}/source/main"}
            if source is not None:
                self.sources[f"{url}/source/main"] = source
        self.objects[name.upper()] = (objtype, url, structure)

    async def resolve_object(self, name: str, objtype: str) -> str:
        self.resolved.append(name.upper())
        entry = self.objects.get(name.upper())
        if entry is None or name.upper() in self.failing_objects:
            raise ObjectNotFoundError(name, objtype, "SRC")
        return entry[1]

    async def get_structure(self, object_url: str) -> dict[str, Any]:
        for _, url, structure in self.objects.values():
            if url == object_url:
                return structure
        raise ToolExecutionError(f"No structure for {object_url}", tool="sap_object_structure")

    async def get_source(self, source_url: str) -> str:
        if source_url in self.failing_sources or source_url not in self.sources:
            raise ToolExecutionError(f"Cannot read {source_url}", tool="sap_get_source")
        return self.sources[source_url]

    async def find_object_type(self, name: str) -> str | None:
        entry = self.objects.get(name.upper())
        return entry[0] if entry else None


class FakeTargetSystem:
    """Target system: existence probe plus the migration tools."""

    def __init__(self) -> None:
        self.existing: set[str] = set()
        self.probe_failures: set[str] = set()
        self.written: list[str] = []
        self.activated: list[str] = []
        self.unlocked: list[str] = []
        self.write_errors: dict[str, str] = {}

    async def object_exists(self, name: str, objtype: str) -> bool:
        if name.upper() in self.probe_failures:
            raise ServerError("Server error: probe failed", 500)
        return name.upper() in self.existing

    async def write_and_check(
        self,
        name: str,
        objtype: str,
        source: str,
        parent_name: str,
        parent_path: str,
        description: str = "",
        transport: str | None = None,
        lock_handle: str | None = None,
    ) -> ToolResult:
        self.written.append(name)
        if name in self.write_errors:
            raise ToolExecutionError(self.write_errors[name], tool="sap_write_and_check")
        return ToolResult(output='{"errors": []}', lock_handle=lock_handle or f"LOCK-{name}")

    async def activate(
        self, name: str, object_url: str, main_include: str | None = None
    ) -> ToolResult:
        self.activated.append(name)
        return ToolResult(output='{"success": true}')

    async def run_checks(
        self, object_url: str, variant: str | None = None, max_results: int | None = None
    ) -> ToolResult:
        return ToolResult(output='{"findings": []}')

    async def unlock(self, object_url: str, lock_handle: str) -> ToolResult:
        self.unlocked.append(lock_handle)
        return ToolResult(output="unlocked")


class FakeAgent:
    """
    Agent that writes, activates and then answers with a code block.

    Units listed in ``failing`` make the agent raise. ``on_turn`` runs
    before every turn and may cancel a token to simulate a pause.
    """

    def __init__(self) -> None:
        self.failing: set[str] = set()
        self.migrated: list[str] = []
        self.on_turn = None

    async def complete(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> AgentTurn:
        name = _SUB_OBJECT_LINE.search(messages[0]["content"]).group(1)
        if self.on_turn is not None:
            self.on_turn(name)
        if name in self.failing:
            raise AgentError(f"agent gave up on {name}")

        if len(messages) == 1:
            return AgentTurn(
                text="Writing the migrated source.",
                tool_calls=[
                    ToolCallRequest(
                        id="call-1",
                        name="sap_write_and_check",
                        arguments={
                            "objtype": "PROG/I",
                            "name": name,
                            "parentName": "$TMP",
                            "parentPath": "/sap/bc/adt/packages/%24tmp",
                            "source": f"* migrated {name}",
                        },
                    ),
                    ToolCallRequest(
                        id="call-2",
                        name="sap_activate",
                        arguments={"objectName": name, "objectUrl": f"/obj/{name.lower()}"},
                    ),
                ],
            )

        self.migrated.append(name)
        return AgentTurn(text=f"Done.\n```abap\nREPORT {name.lower()}.\n```")


class FakeAdvisor:
    def __init__(self, reply: str = "", error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []

    async def rank(self, system_prompt: str, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


class FakeRegistry:
    def __init__(self, source: FakeSourceSystem, target: FakeTargetSystem) -> None:
        self.systems = {"SRC": source, "TGT": target}

    def get(self, name: str):
        return self.systems[name.upper()]


@pytest.fixture
def store(tmp_path) -> MigrationStore:
    return MigrationStore(init_database(f"sqlite:///{tmp_path}/state.db"))


@pytest.fixture
def broker() -> EventBroker:
    return EventBroker(queue_size=100)


@pytest.fixture
def token() -> CancellationToken:
    return CancellationToken()


@pytest.fixture
def config() -> MigrationConfig:
    return MigrationConfig()


@pytest.fixture
def source() -> FakeSourceSystem:
    return FakeSourceSystem()


@pytest.fixture
def target() -> FakeTargetSystem:
    return FakeTargetSystem()


@pytest.fixture
def agent() -> FakeAgent:
    return FakeAgent()


@pytest.fixture
def registry(source, target) -> FakeRegistry:
    return FakeRegistry(source, target)


@pytest.fixture
def project(store):
    return store.create_project(
        name="ZROOT",
        objtype="PROG/P",
        source_system="SRC",
        target_system="TGT",
    )
