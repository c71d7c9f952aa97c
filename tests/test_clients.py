"""Tests for the tool gateway, ADT and service clients over a mock transport."""

import json

import httpx
import pytest

from abap_migration.client.adt_client import AdtSystemClient
from abap_migration.client.agent_client import HttpMigrationAgent, HttpOrderingAdvisor
from abap_migration.client.exceptions import (
    AgentError,
    AuthenticationError,
    NetworkError,
    ObjectNotFoundError,
    ServerError,
    ToolExecutionError,
)
from abap_migration.client.gateway import ToolGatewayClient
from abap_migration.config import ServiceConfig, SystemConfig
from abap_migration.utils.retry import call_with_retry


class GatewayStub:
    """Answers tools/call requests from a tool-name keyed table."""

    def __init__(self, replies: dict[str, dict]):
        self.replies = replies
        self.requests: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        reply = self.replies[body["tool"]]
        if "status" in reply:
            return httpx.Response(reply["status"], json=reply.get("json", {}))
        return httpx.Response(200, json=reply)


def make_gateway(replies: dict[str, dict]) -> tuple[ToolGatewayClient, GatewayStub]:
    stub = GatewayStub(replies)
    gateway = ToolGatewayClient(
        "ECC",
        SystemConfig(url="https://ecc.example.com", token="t", retry_attempts=1),
        transport=httpx.MockTransport(stub),
    )
    return gateway, stub


def search_reply(*results: dict) -> dict:
    return {"content": [{"type": "text", "text": json.dumps({"results": list(results)})}]}


class TestToolGatewayClient:
    @pytest.mark.asyncio
    async def test_call_tool_drops_empty_arguments(self):
        gateway, stub = make_gateway({"sap_get_source": {"content": "REPORT z."}})

        text = await gateway.call_tool(
            "sap_get_source", {"objectSourceUrl": "/src", "version": None}
        )

        assert text == "REPORT z."
        assert stub.requests == [
            {"tool": "sap_get_source", "arguments": {"objectSourceUrl": "/src"}}
        ]
        await gateway.close()

    @pytest.mark.asyncio
    async def test_tool_error_raises(self):
        gateway, _ = make_gateway(
            {"sap_activate": {"isError": True, "content": [{"text": "Activation failed"}]}}
        )

        with pytest.raises(ToolExecutionError, match="Activation failed") as exc_info:
            await gateway.call_tool("sap_activate", {"objectName": "Z"})
        assert exc_info.value.tool == "sap_activate"
        await gateway.close()

    @pytest.mark.asyncio
    async def test_http_errors_are_mapped(self):
        gateway, _ = make_gateway(
            {
                "sap_unlock": {"status": 401, "json": {"detail": "bad token"}},
                "sap_activate": {"status": 503, "json": {"detail": "down"}},
            }
        )

        with pytest.raises(AuthenticationError):
            await gateway.call_tool("sap_unlock", {})
        with pytest.raises(ServerError, match="down"):
            await gateway.call_tool("sap_activate", {})
        await gateway.close()


class TestAdtSystemClient:
    @pytest.mark.asyncio
    async def test_resolve_object_requires_exact_match(self):
        gateway, stub = make_gateway(
            {
                "sap_search_object": search_reply(
                    {"adtcore:name": "ZCL_ORDER_X", "adtcore:uri": "/x"},
                    {"adtcore:name": "ZCL_ORDER", "adtcore:uri": "/oo/classes/zcl_order"},
                )
            }
        )
        client = AdtSystemClient(gateway)

        assert await client.resolve_object("zcl_order", "CLAS/OC") == "/oo/classes/zcl_order"
        assert stub.requests[0]["arguments"] == {"query": "zcl_order", "objType": "CLAS", "max": 10}

        with pytest.raises(ObjectNotFoundError):
            await client.resolve_object("ZCL_MISSING", "CLAS/OC")
        await client.close()

    @pytest.mark.asyncio
    async def test_find_object_type_and_existence(self):
        gateway, _ = make_gateway(
            {
                "sap_search_object": search_reply(
                    {"adtcore:name": "ZIF_ORDER", "adtcore:type": "INTF/OI", "adtcore:uri": "/i"}
                )
            }
        )
        client = AdtSystemClient(gateway)

        assert await client.find_object_type("ZIF_ORDER") == "INTF/OI"
        assert await client.find_object_type("ZIF_OTHER") is None
        assert await client.object_exists("ZIF_ORDER", "INTF/OI") is True
        assert await client.object_exists("ZIF_OTHER", "INTF/OI") is False
        await client.close()

    @pytest.mark.asyncio
    async def test_structure_reply_in_code_fence(self):
        structure = {"includes": [{"adtcore:name": "ZPROG_TOP"}]}
        gateway, _ = make_gateway(
            {"sap_object_structure": {"content": f"```json\n{json.dumps(structure)}\n```"}}
        )
        client = AdtSystemClient(gateway)

        assert await client.get_structure("/prog/zprog") == structure
        await client.close()

    @pytest.mark.asyncio
    async def test_write_and_check_reports_syntax_errors(self):
        reply = {"errors": [{"line": 3, "text": "Field LV_X unknown"}], "lockHandle": "L1"}
        gateway, stub = make_gateway({"sap_write_and_check": {"content": json.dumps(reply)}})
        client = AdtSystemClient(gateway)

        result = await client.write_and_check(
            name="ZPROG",
            objtype="PROG/P",
            source="REPORT zprog.",
            parent_name="$TMP",
            parent_path="/p",
        )

        assert result.success is False
        assert result.lock_handle == "L1"
        assert "Field LV_X unknown" in result.output
        assert "lockHandle" not in stub.requests[0]["arguments"]
        await client.close()

    @pytest.mark.asyncio
    async def test_run_checks_blocks_on_priority_one(self):
        findings = {"findings": [{"priority": 2}, {"priority": 1, "message": "SQL injection"}]}
        gateway, _ = make_gateway({"sap_atc_run": {"content": json.dumps(findings)}})
        client = AdtSystemClient(gateway)

        result = await client.run_checks("/prog/zprog")

        assert result.success is False
        await client.close()


class TestServiceClients:
    @pytest.mark.asyncio
    async def test_agent_turn_is_validated(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/agent/turn"
            body = json.loads(request.content)
            assert body["system"] == "sys"
            return httpx.Response(
                200,
                json={
                    "text": "",
                    "tool_calls": [{"id": "c1", "name": "sap_unlock", "arguments": {}}],
                },
            )

        agent = HttpMigrationAgent(
            ServiceConfig(url="https://agent.example.com", retry_attempts=1),
            transport=httpx.MockTransport(handler),
        )

        turn = await agent.complete("sys", [{"role": "user", "content": "hi"}], [])

        assert [call.name for call in turn.tool_calls] == ["sap_unlock"]
        await agent.close()

    @pytest.mark.asyncio
    async def test_invalid_agent_reply(self):
        agent = HttpMigrationAgent(
            ServiceConfig(url="https://agent.example.com", retry_attempts=1),
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"tool_calls": "nope"})
            ),
        )

        with pytest.raises(AgentError):
            await agent.complete("sys", [], [])
        await agent.close()

    @pytest.mark.asyncio
    async def test_advisor_returns_text(self):
        advisor = HttpOrderingAdvisor(
            ServiceConfig(url="https://advisor.example.com", retry_attempts=1),
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"text": '{"subObjects": []}'})
            ),
        )

        assert await advisor.rank("sys", "prompt") == '{"subObjects": []}'
        await advisor.close()


@pytest.mark.asyncio
async def test_call_with_retry_retries_transient_errors():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise NetworkError("connection reset")
        return "ok"

    assert await call_with_retry(flaky, max_attempts=3, min_wait=0, max_wait=0) == "ok"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_call_with_retry_does_not_retry_permanent_errors():
    calls = []

    async def broken():
        calls.append(1)
        raise AuthenticationError("Authentication failed", 401)

    with pytest.raises(AuthenticationError):
        await call_with_retry(broken, max_attempts=3, min_wait=0, max_wait=0)
    assert len(calls) == 1
