"""ADT operations for one ABAP system.

AdtSystemClient turns the gateway's text tools into the operations the
migration engine needs: object lookup and source reads on the source
system, existence checks and the migration tools on the target system.
"""

from typing import Any

from abap_migration.client.exceptions import ObjectNotFoundError
from abap_migration.client.gateway import ToolGatewayClient
from abap_migration.config import DiscoveryConfig
from abap_migration.migration.tools import ToolResult
from abap_migration.utils.logging import get_logger
from abap_migration.utils.parsing import parse_json_reply

logger = get_logger(__name__)


def _search_results(reply: str) -> list[dict[str, Any]]:
    results = parse_json_reply(reply).get("results", [])
    return [r for r in results if isinstance(r, dict)] if isinstance(results, list) else []


def _exact_match(results: list[dict[str, Any]], name: str) -> dict[str, Any] | None:
    for result in results:
        if str(result.get("adtcore:name", "")).upper() == name.upper():
            return result
    return None


class AdtSystemClient:
    """Source repository, target probe and tool executor for one system."""

    def __init__(self, gateway: ToolGatewayClient, config: DiscoveryConfig | None = None):
        self.gateway = gateway
        self.config = config or DiscoveryConfig()

    @property
    def name(self) -> str:
        return self.gateway.name

    async def search(
        self, query: str, objtype: str | None = None, max_results: int | None = None
    ) -> list[dict[str, Any]]:
        reply = await self.gateway.call_tool(
            "sap_search_object",
            {
                "query": query,
                "objType": objtype.split("/")[0] if objtype else None,
                "max": max_results or self.config.search_max_results,
            },
        )
        return _search_results(reply)

    # Source repository

    async def resolve_object(self, name: str, objtype: str) -> str:
        """Return the ADT URI of an object.

        Raises:
            ObjectNotFoundError: If no result matches the name exactly
        """
        match = _exact_match(await self.search(name, objtype), name)
        if match is None:
            raise ObjectNotFoundError(name, objtype, self.name)
        uri = str(match.get("adtcore:uri", ""))
        logger.debug("object_resolved", system=self.name, name=name, uri=uri)
        return uri

    async def get_structure(self, object_url: str) -> dict[str, Any]:
        reply = await self.gateway.call_tool("sap_object_structure", {"objectUrl": object_url})
        return parse_json_reply(reply)

    async def get_source(self, source_url: str) -> str:
        return await self.gateway.call_tool("sap_get_source", {"objectSourceUrl": source_url})

    async def find_object_type(self, name: str) -> str | None:
        """Guess an object's type from an untyped search."""
        results = await self.search(name, max_results=self.config.type_guess_max_results)
        match = _exact_match(results, name)
        if match is None or not match.get("adtcore:type"):
            return None
        return str(match["adtcore:type"])

    # Target probe

    async def object_exists(self, name: str, objtype: str) -> bool:
        results = await self.search(name, objtype, max_results=self.config.type_guess_max_results)
        return _exact_match(results, name) is not None

    # Tool executor

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
        reply = await self.gateway.call_tool(
            "sap_write_and_check",
            {
                "objtype": objtype,
                "name": name,
                "parentName": parent_name,
                "parentPath": parent_path,
                "description": description,
                "source": source,
                "transport": transport,
                "lockHandle": lock_handle,
            },
        )
        data = parse_json_reply(reply)
        return ToolResult(
            success=not data.get("errors"),
            output=reply,
            lock_handle=data.get("lockHandle") or lock_handle,
        )

    async def activate(
        self, name: str, object_url: str, main_include: str | None = None
    ) -> ToolResult:
        reply = await self.gateway.call_tool(
            "sap_activate",
            {"objectName": name, "objectUrl": object_url, "mainInclude": main_include},
        )
        data = parse_json_reply(reply)
        return ToolResult(success=bool(data.get("success", True)), output=reply)

    async def run_checks(
        self, object_url: str, variant: str | None = None, max_results: int | None = None
    ) -> ToolResult:
        reply = await self.gateway.call_tool(
            "sap_atc_run",
            {"objectUrl": object_url, "variant": variant, "maxResults": max_results},
        )
        findings = parse_json_reply(reply).get("findings", [])
        if not isinstance(findings, list):
            findings = []
        blocking = [f for f in findings if isinstance(f, dict) and str(f.get("priority")) == "1"]
        return ToolResult(success=not blocking, output=reply)

    async def unlock(self, object_url: str, lock_handle: str) -> ToolResult:
        reply = await self.gateway.call_tool(
            "sap_unlock", {"objectUrl": object_url, "lockHandle": lock_handle}
        )
        return ToolResult(output=reply)

    async def close(self) -> None:
        await self.gateway.close()
