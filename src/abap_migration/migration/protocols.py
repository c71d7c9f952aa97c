"""
Capability interfaces the migration engine depends on.

The engine never talks to a remote system directly. It is handed objects
implementing these protocols: :class:`abap_migration.client.adt_client.AdtSystemClient`
in production, in-memory fakes in tests.
"""

from typing import Any, Protocol

from abap_migration.migration.tools import AgentTurn, ToolResult


class SourceRepository(Protocol):
    """Read access to the source system."""

    async def resolve_object(self, name: str, objtype: str) -> str:
        """Return the object URL for an exact name+type match or raise ObjectNotFoundError."""
        ...

    async def get_structure(self, object_url: str) -> dict[str, Any]: ...

    async def get_source(self, source_url: str) -> str: ...

    async def find_object_type(self, name: str) -> str | None:
        """Guess the type of a bare object name. None when nothing matches."""
        ...


class TargetProbe(Protocol):
    """Existence checks against the destination system."""

    async def object_exists(self, name: str, objtype: str) -> bool:
        """True on an exact name+type match. Lookup failures raise."""
        ...


class ToolExecutor(Protocol):
    """Remote tools the migration agent may call on the target system."""

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
    ) -> ToolResult: ...

    async def activate(
        self, name: str, object_url: str, main_include: str | None = None
    ) -> ToolResult: ...

    async def run_checks(
        self, object_url: str, variant: str | None = None, max_results: int | None = None
    ) -> ToolResult: ...

    async def unlock(self, object_url: str, lock_handle: str) -> ToolResult: ...


class MigrationAgent(Protocol):
    """Text-generation service driving the per-unit tool loop."""

    async def complete(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> AgentTurn: ...


class OrderingAdvisor(Protocol):
    """Best-effort ranking of sub-objects when parsing cannot order them."""

    async def rank(self, system_prompt: str, prompt: str) -> str:
        """Return the raw advisory reply text."""
        ...
