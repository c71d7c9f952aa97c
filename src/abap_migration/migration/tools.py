"""
Remote tools available to the migration agent.

The agent may call a fixed set of tools on the target system. Each tool is
a tagged pydantic model validated from the agent's raw arguments, and the
ToolInterpreter dispatches validated calls to a ToolExecutor.
"""

from typing import TYPE_CHECKING, Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from abap_migration.client.exceptions import ABAPMigrationError, MigrationCancelledError
from abap_migration.utils.logging import get_logger

if TYPE_CHECKING:
    from abap_migration.migration.protocols import ToolExecutor

logger = get_logger(__name__)


class ToolResult(BaseModel):
    """Outcome of one remote tool call, fed back to the agent as text."""

    success: bool = True
    output: str = ""
    lock_handle: str | None = None

    def preview(self, limit: int = 300) -> str:
        return self.output[:limit]


class ToolCallRequest(BaseModel):
    """A tool invocation as requested by the agent."""

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class AgentTurn(BaseModel):
    """One reply of the migration agent."""

    text: str = ""
    tool_calls: list[ToolCallRequest] = Field(default_factory=list)


class _ToolCall(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class WriteAndCheckCall(_ToolCall):
    """Write ABAP source code to the target system and run a syntax check.

    Creates the object if it doesn't exist. Returns a lockHandle for
    iterative fixing.
    """

    tool: Literal["sap_write_and_check"] = "sap_write_and_check"
    objtype: str = Field(description="Creatable type ID (e.g. PROG/P, CLAS/OC, INTF/OI)")
    name: str = Field(description="Object name (e.g. ZMY_REPORT)")
    parent_name: str = Field(alias="parentName", description="Parent package name (e.g. $TMP)")
    parent_path: str = Field(alias="parentPath", description="Parent package URI")
    description: str = Field(default="", description="Object description (used when creating)")
    source: str = Field(description="ABAP source code to write")
    transport: str | None = Field(default=None, description="Transport request number")
    lock_handle: str | None = Field(
        default=None,
        alias="lockHandle",
        description="Lock handle from a previous call, to skip re-locking when iterating on fixes",
    )

    def describe(self) -> str:
        return f"Writing {self.name} ({len(self.source)} chars)"

    async def execute(self, executor: "ToolExecutor") -> ToolResult:
        return await executor.write_and_check(
            name=self.name,
            objtype=self.objtype,
            source=self.source,
            parent_name=self.parent_name,
            parent_path=self.parent_path,
            description=self.description,
            transport=self.transport,
            lock_handle=self.lock_handle,
        )


class ActivateCall(_ToolCall):
    """Activate an ABAP object (make inactive changes active in the system)."""

    tool: Literal["sap_activate"] = "sap_activate"
    object_name: str = Field(alias="objectName", description="Name of the object to activate")
    object_url: str = Field(alias="objectUrl", description="ADT URI of the object to activate")
    main_include: str | None = Field(
        default=None,
        alias="mainInclude",
        description="Main include URL for includes belonging to a larger program",
    )

    def describe(self) -> str:
        return f"Activating {self.object_name}"

    async def execute(self, executor: "ToolExecutor") -> ToolResult:
        return await executor.activate(self.object_name, self.object_url, self.main_include)


class RunChecksCall(_ToolCall):
    """Run ATC checks on an activated object.

    Returns findings with priorities. Priority 1 must be fixed; priority 2-3
    should be fixed if possible.
    """

    tool: Literal["sap_atc_run"] = "sap_atc_run"
    object_url: str = Field(alias="objectUrl", description="ADT URI of the object to check")
    variant: str | None = Field(default=None, description="ATC check variant (default DEFAULT)")
    max_results: int | None = Field(
        default=None, alias="maxResults", description="Maximum number of findings to return"
    )

    def describe(self) -> str:
        return f"Running ATC checks on {self.object_url}"

    async def execute(self, executor: "ToolExecutor") -> ToolResult:
        return await executor.run_checks(self.object_url, self.variant, self.max_results)


class UnlockCall(_ToolCall):
    """Unlock a previously locked ABAP object. Always call after finishing edits."""

    tool: Literal["sap_unlock"] = "sap_unlock"
    object_url: str = Field(alias="objectUrl", description="ADT URI of the object to unlock")
    lock_handle: str = Field(
        alias="lockHandle", description="Lock handle obtained from sap_write_and_check"
    )

    def describe(self) -> str:
        return "Releasing lock"

    async def execute(self, executor: "ToolExecutor") -> ToolResult:
        return await executor.unlock(self.object_url, self.lock_handle)


AnyToolCall = WriteAndCheckCall | ActivateCall | RunChecksCall | UnlockCall

ToolCall = Annotated[
    AnyToolCall,
    Field(discriminator="tool"),
]

TOOL_CALL_TYPES: tuple[type[_ToolCall], ...] = (
    WriteAndCheckCall,
    ActivateCall,
    RunChecksCall,
    UnlockCall,
)
TOOL_NAMES = frozenset(cls.model_fields["tool"].default for cls in TOOL_CALL_TYPES)

_tool_call_adapter: TypeAdapter = TypeAdapter(ToolCall)


def tool_definitions() -> list[dict[str, Any]]:
    """JSON-schema definitions of the tools, as offered to the agent."""
    definitions = []
    for cls in TOOL_CALL_TYPES:
        schema = cls.model_json_schema(by_alias=True)
        properties = {
            key: value
            for key, value in schema.get("properties", {}).items()
            if key != "tool"
        }
        definitions.append(
            {
                "name": cls.model_fields["tool"].default,
                "description": " ".join((cls.__doc__ or "").split()),
                "input_schema": {
                    "type": "object",
                    "properties": properties,
                    "required": [r for r in schema.get("required", []) if r in properties],
                },
            }
        )
    return definitions


def parse_tool_call(request: ToolCallRequest) -> AnyToolCall:
    """
    Validate a raw tool request into a typed tool call.

    Raises:
        pydantic.ValidationError: If the tool is unknown or its arguments are invalid
    """
    return _tool_call_adapter.validate_python({**request.arguments, "tool": request.name})


class ToolInterpreter:
    """
    Executes the agent's tool requests against one target system.

    Remote failures and invalid requests become failed ToolResults so the
    agent can react to them. Cancellation always propagates.
    """

    def __init__(self, executor: "ToolExecutor"):
        self.executor = executor

    async def run(self, request: ToolCallRequest) -> tuple[str, ToolResult]:
        """
        Execute one tool request.

        Returns:
            A one-line summary of the call and its result
        """
        if request.name not in TOOL_NAMES:
            logger.warning("unknown_tool_requested", tool=request.name)
            return (
                _fallback_summary(request),
                ToolResult(success=False, output=f"Error: unknown tool {request.name}"),
            )

        try:
            call = parse_tool_call(request)
        except PydanticValidationError as e:
            logger.warning("invalid_tool_arguments", tool=request.name, errors=e.error_count())
            return (
                _fallback_summary(request),
                ToolResult(
                    success=False,
                    output=f"Error: invalid arguments for {request.name}: {e}",
                ),
            )

        summary = call.describe()
        try:
            result = await call.execute(self.executor)
        except MigrationCancelledError:
            raise
        except ABAPMigrationError as e:
            logger.warning("tool_call_failed", tool=request.name, error=str(e))
            result = ToolResult(success=False, output=f"Error: {e}")

        return summary, result


def _fallback_summary(request: ToolCallRequest) -> str:
    return str(request.arguments)[:120]
