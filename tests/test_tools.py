import json
from typing import Any

import pytest

from relay_mcp.context import RequestContext
from relay_mcp.server import LowLevelServer
from relay_mcp.tools import ToolCallResponse, ToolProvider, register_tool_handlers
from relay_mcp.types.json_rpc import INVALID_PARAMS, JSONRPCErrorResponse, JSONRPCRequest, JSONRPCResultResponse

pytestmark = pytest.mark.anyio


class NullSink:
    async def send_intermediate(self, message: Any) -> None:
        pass

    async def send_result(self, response: Any) -> None:
        pass

    async def close(self) -> None:
        pass


@pytest.fixture
def server(provider: ToolProvider) -> LowLevelServer:
    server = LowLevelServer(name="s", version="1")
    register_tool_handlers(server, provider)
    return server


async def _call(server: LowLevelServer, method: str, params: dict[str, Any] | None = None) -> Any:
    ctx = RequestContext(server_state=None, session=None, request_id=1, _sink=NullSink())
    return await server.dispatch_request(ctx, JSONRPCRequest(id=1, method=method, params=params))


def test_fake_provider_satisfies_the_protocol(provider: ToolProvider):
    assert isinstance(provider, ToolProvider)


def test_tool_call_response_to_dict():
    response = ToolCallResponse(status=201, data={"id": 1}, headers={"x-request-id": "abc"})
    assert response.to_dict() == {"status": 201, "data": {"id": 1}, "headers": {"x-request-id": "abc"}}


async def test_list_tools_returns_catalog(server: LowLevelServer):
    response = await _call(server, "tools/list")

    assert isinstance(response, JSONRPCResultResponse)
    tools = response.result["tools"]
    assert tools[0] == {
        "name": "getPetById",
        "description": "Find pet by ID",
        "inputSchema": {"type": "object", "properties": {"petId": {"type": "integer"}}, "required": ["petId"]},
    }


async def test_successful_call_returns_pretty_printed_response(server: LowLevelServer, provider):
    response = await _call(server, "tools/call", {"name": "getPetById", "arguments": {"petId": 3}})

    assert isinstance(response, JSONRPCResultResponse)
    content = response.result["content"]
    assert response.result["isError"] is False
    assert content[0]["type"] == "text"
    assert content[0]["text"] == json.dumps(
        {"status": 200, "data": {"id": 3, "name": "Rex"}, "headers": {"content-type": "application/json"}},
        indent=2,
    )
    assert provider.calls == [("getPetById", {"petId": 3})]


async def test_call_without_arguments_passes_empty_dict(server: LowLevelServer, provider):
    await _call(server, "tools/call", {"name": "getPetById"})
    assert provider.calls == [("getPetById", {})]


async def test_unknown_tool_is_reported_as_tool_error(server: LowLevelServer, provider):
    response = await _call(server, "tools/call", {"name": "launchRocket", "arguments": {}})

    assert isinstance(response, JSONRPCResultResponse)
    assert response.result["isError"] is True
    assert response.result["content"][0]["text"] == "Unknown tool: launchRocket"
    assert provider.calls == []


async def test_api_failure_is_reported_as_tool_error(server: LowLevelServer):
    response = await _call(server, "tools/call", {"name": "deletePet", "arguments": {"petId": 1}})

    assert isinstance(response, JSONRPCResultResponse)
    assert response.result["isError"] is True
    assert response.result["content"][0]["text"] == "Error: Request failed with status 503"


async def test_call_without_name_is_invalid_params(server: LowLevelServer):
    response = await _call(server, "tools/call", {"arguments": {}})

    assert isinstance(response, JSONRPCErrorResponse)
    assert response.error.code == INVALID_PARAMS
