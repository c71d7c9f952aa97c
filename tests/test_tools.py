"""Tests for tool-call validation and the tool interpreter."""

import pytest

from abap_migration.client.exceptions import MigrationCancelledError
from abap_migration.migration.tools import (
    ActivateCall,
    ToolCallRequest,
    ToolInterpreter,
    UnlockCall,
    WriteAndCheckCall,
    parse_tool_call,
    tool_definitions,
)
from tests.conftest import FakeTargetSystem

WRITE_ARGS = {
    "objtype": "PROG/P",
    "name": "ZREPORT",
    "parentName": "$TMP",
    "parentPath": "/sap/bc/adt/packages/%24tmp",
    "source": "REPORT zreport.",
}


def test_tool_definitions_cover_the_closed_tool_set():
    definitions = {d["name"]: d for d in tool_definitions()}

    assert set(definitions) == {"sap_write_and_check", "sap_activate", "sap_atc_run", "sap_unlock"}
    write = definitions["sap_write_and_check"]
    assert "lockHandle" in write["input_schema"]["properties"]
    assert "tool" not in write["input_schema"]["properties"]
    assert set(write["input_schema"]["required"]) == {
        "objtype",
        "name",
        "parentName",
        "parentPath",
        "source",
    }
    assert write["description"].startswith("Write ABAP source code")


def test_parse_tool_call_dispatches_on_name():
    write = parse_tool_call(
        ToolCallRequest(id="1", name="sap_write_and_check", arguments=WRITE_ARGS)
    )
    assert isinstance(write, WriteAndCheckCall)
    assert write.parent_name == "$TMP"
    assert write.lock_handle is None

    unlock = parse_tool_call(
        ToolCallRequest(id="2", name="sap_unlock", arguments={"objectUrl": "/o", "lockHandle": "L"})
    )
    assert isinstance(unlock, UnlockCall)

    activate = parse_tool_call(
        ToolCallRequest(
            id="3", name="sap_activate", arguments={"objectName": "Z", "objectUrl": "/o"}
        )
    )
    assert isinstance(activate, ActivateCall)
    assert activate.describe() == "Activating Z"


@pytest.mark.asyncio
async def test_interpreter_executes_valid_calls():
    target = FakeTargetSystem()
    interpreter = ToolInterpreter(target)

    summary, result = await interpreter.run(
        ToolCallRequest(id="1", name="sap_write_and_check", arguments=WRITE_ARGS)
    )

    assert summary == "Writing ZREPORT (15 chars)"
    assert result.success is True
    assert result.lock_handle == "LOCK-ZREPORT"
    assert target.written == ["ZREPORT"]


@pytest.mark.asyncio
async def test_interpreter_reports_unknown_tools_and_bad_arguments():
    interpreter = ToolInterpreter(FakeTargetSystem())

    _, unknown = await interpreter.run(ToolCallRequest(id="1", name="sap_delete", arguments={}))
    assert unknown.success is False
    assert unknown.output == "Error: unknown tool sap_delete"

    _, invalid = await interpreter.run(
        ToolCallRequest(id="2", name="sap_unlock", arguments={"objectUrl": "/o"})
    )
    assert invalid.success is False
    assert invalid.output.startswith("Error: invalid arguments for sap_unlock")


@pytest.mark.asyncio
async def test_interpreter_turns_remote_failures_into_results():
    target = FakeTargetSystem()
    target.write_errors = {"ZREPORT": "Object locked by another user"}

    _, result = await ToolInterpreter(target).run(
        ToolCallRequest(id="1", name="sap_write_and_check", arguments=WRITE_ARGS)
    )

    assert result.success is False
    assert result.output == "Error: Object locked by another user"


@pytest.mark.asyncio
async def test_interpreter_propagates_cancellation():
    class CancelledTarget(FakeTargetSystem):
        async def activate(self, name, object_url, main_include=None):
            raise MigrationCancelledError()

    with pytest.raises(MigrationCancelledError):
        await ToolInterpreter(CancelledTarget()).run(
            ToolCallRequest(
                id="1", name="sap_activate", arguments={"objectName": "Z", "objectUrl": "/o"}
            )
        )
