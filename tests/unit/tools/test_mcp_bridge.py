"""
Unit tests for the dynamic MCP tool bridge.

Remote servers are faked with httpx.MockTransport; each fake answers
JSON-RPC ``tools/list`` and ``tools/call`` requests.
"""

import json

import httpx
import pytest

from slackmate.tools.mcp_bridge import (
    ACCEPT_HEADER,
    DEFAULT_SERVER_ID,
    DEFAULT_SERVER_URL,
    MCPBridge,
    MCPProtocolError,
    build_server_url,
    extract_payload,
    load_server_configs,
    resolve_placeholders,
    tool_call_result,
)

TOOLS_LIST = {
    "jsonrpc": "2.0",
    "id": 1,
    "result": {
        "tools": [
            {
                "name": "get_issue_details",
                "description": "Issue details",
                "inputSchema": {"type": "object", "properties": {"issue_id": {"type": "number"}}},
            },
            {"name": "list_statuses", "description": "Statuses", "inputSchema": {"type": "object"}},
        ]
    },
}


def _sse(payload: dict) -> str:
    return f"event: message\ndata: {json.dumps(payload)}\n\n"


def _write_config(tmp_path, servers: dict) -> str:
    path = tmp_path / "mcp-config.json"
    path.write_text(json.dumps({"mcpServers": servers}), encoding="utf-8")
    return str(path)


class FakeServers:
    """Routes requests by host to per-server handlers and records every request."""

    def __init__(self, handlers: dict):
        self.handlers = handlers
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handlers[request.url.host](request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def _server(tools: list[dict], call_result: dict | None = None, sse: bool = False):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if body["method"] == "tools/list":
            payload = {"jsonrpc": "2.0", "id": body["id"], "result": {"tools": tools}}
        else:
            payload = {"jsonrpc": "2.0", "id": body["id"], "result": call_result or {}}
        if sse:
            return httpx.Response(200, text=_sse(payload), headers={"Content-Type": "text/event-stream"})
        return httpx.Response(200, json=payload)

    return handler


def _tool(name: str) -> dict:
    return {"name": name, "description": f"{name} tool", "inputSchema": {"type": "object"}}


class TestResolvePlaceholders:

    def test_missing_variable_becomes_empty(self):
        assert resolve_placeholders({"token": "${X}/${Y}"}, {"X": "abc"}) == {"token": "abc/"}

    def test_empty_variable_becomes_empty(self):
        assert resolve_placeholders("${X}", {"X": ""}) == ""

    def test_nested_structures(self):
        value = {"params": {"url": "${URL}", "list": ["${A}", 3, None]}}
        env = {"URL": "https://r.example.com", "A": "a"}
        assert resolve_placeholders(value, env) == {
            "params": {"url": "https://r.example.com", "list": ["a", 3, None]}
        }

    def test_text_without_placeholders_unchanged(self):
        assert resolve_placeholders("plain $HOME text", {"HOME": "/root"}) == "plain $HOME text"


class TestBuildServerUrl:

    def test_appends_non_empty_params(self):
        url = build_server_url("https://mcp.example.com/api", {"a": "1", "b": "", "c": "x y"})
        assert url == "https://mcp.example.com/api?a=1&c=x+y"

    def test_no_params_leaves_url_unchanged(self):
        assert build_server_url("https://mcp.example.com/api", {"a": ""}) == "https://mcp.example.com/api"
        assert build_server_url("https://mcp.example.com/api") == "https://mcp.example.com/api"


class TestLoadServerConfigs:

    def test_reads_and_resolves(self, tmp_path):
        path = _write_config(
            tmp_path,
            {"tracker": {"url": "https://t.example.com/mcp", "params": {"key": "${TRACKER_KEY}"}}},
        )

        configs = load_server_configs(path, env={"TRACKER_KEY": "s3cret"})

        assert list(configs) == ["tracker"]
        assert configs["tracker"].params == {"key": "s3cret"}
        assert configs["tracker"].resolved_url == "https://t.example.com/mcp?key=s3cret"

    def test_preserves_file_order(self, tmp_path):
        path = _write_config(
            tmp_path,
            {name: {"url": f"https://{name}.example.com"} for name in ("zeta", "alpha", "mid")},
        )
        assert list(load_server_configs(path, env={})) == ["zeta", "alpha", "mid"]

    def test_missing_file_falls_back_to_default(self, tmp_path):
        env = {"REDMINE_URL": "https://redmine.example.com", "REDMINE_API_KEY": "k"}

        configs = load_server_configs(tmp_path / "absent.json", env=env)

        server = configs[DEFAULT_SERVER_ID]
        assert server.url == DEFAULT_SERVER_URL
        assert server.params == {"redmine_url": "https://redmine.example.com", "api_key": "k"}

    def test_invalid_json_falls_back_to_default(self, tmp_path):
        path = tmp_path / "mcp-config.json"
        path.write_text("{ not json", encoding="utf-8")

        assert list(load_server_configs(path, env={})) == [DEFAULT_SERVER_ID]

    def test_wrong_shape_falls_back_to_default(self, tmp_path):
        path = tmp_path / "mcp-config.json"
        path.write_text(json.dumps(["not", "an", "object"]), encoding="utf-8")

        assert list(load_server_configs(path, env={})) == [DEFAULT_SERVER_ID]


class TestExtractPayload:

    def test_sse_matches_bare_json(self):
        bare = json.dumps(TOOLS_LIST)
        assert extract_payload(_sse(TOOLS_LIST)) == extract_payload(bare) == TOOLS_LIST

    def test_multiline_sse_payload(self):
        body = "event: message\ndata: " + json.dumps(TOOLS_LIST, indent=2) + "\n\n"
        assert extract_payload(body) == TOOLS_LIST

    def test_bare_json_containing_data_text(self):
        payload = {"result": {"content": [{"type": "text", "text": 'data: {"x": 1}'}]}}
        assert extract_payload(json.dumps(payload)) == payload

    def test_no_payload_raises(self):
        with pytest.raises(MCPProtocolError):
            extract_payload("<html>Service Unavailable</html>")

    def test_invalid_json_raises(self):
        with pytest.raises(MCPProtocolError):
            extract_payload("data: {oops}")


class TestToolCallResult:

    def test_text_content(self):
        payload = {"result": {"content": [{"type": "text", "text": "Logged 2h"}]}}
        assert tool_call_result(payload) == {"success": True, "message": "Logged 2h", "data": "Logged 2h"}

    def test_without_text(self):
        payload = {"result": {"structured": {"n": 1}}}
        assert tool_call_result(payload) == {
            "success": True,
            "data": {"structured": {"n": 1}},
            "message": "Tool executed successfully",
        }

    def test_rpc_error(self):
        result = tool_call_result({"error": {"code": -32602, "message": "Invalid params"}})
        assert result["success"] is False
        assert result["error"] == "Invalid params"

    def test_is_error_result(self):
        payload = {"result": {"isError": True, "content": [{"type": "text", "text": "issue not found"}]}}
        result = tool_call_result(payload)
        assert result["success"] is False
        assert result["error"] == "issue not found"


class TestDiscovery:

    @pytest.mark.asyncio
    async def test_composite_keys(self, tmp_path):
        fakes = FakeServers({"redmine.example.com": _server(TOOLS_LIST["result"]["tools"], sse=True)})
        path = _write_config(tmp_path, {"redmine": {"url": "https://redmine.example.com/mcp"}})

        async with MCPBridge(path, env={}, transport=fakes.transport) as bridge:
            discovery = await bridge.discover()

        assert set(discovery.tools) == {"redmine_get_issue_details", "redmine_list_statuses"}
        entry = discovery.tools["redmine_get_issue_details"]
        assert entry.tool_name == "get_issue_details"
        assert entry.server_url == "https://redmine.example.com/mcp"
        assert entry.input_schema["properties"]["issue_id"] == {"type": "number"}
        assert discovery.failures == {}

    @pytest.mark.asyncio
    async def test_request_shape(self, tmp_path):
        fakes = FakeServers({"a.example.com": _server([_tool("x")])})
        path = _write_config(
            tmp_path, {"a": {"url": "https://a.example.com/mcp", "params": {"token": "${TOKEN}"}}}
        )

        async with MCPBridge(path, env={"TOKEN": "t1"}, transport=fakes.transport) as bridge:
            await bridge.discover()

        request = fakes.requests[0]
        assert request.method == "POST"
        assert request.headers["Accept"] == ACCEPT_HEADER
        assert request.url.params["token"] == "t1"
        body = json.loads(request.content)
        assert body["jsonrpc"] == "2.0"
        assert body["method"] == "tools/list"
        assert "id" in body

    @pytest.mark.asyncio
    async def test_one_of_three_servers_returns_non_json(self, tmp_path):
        fakes = FakeServers({
            "a.example.com": _server([_tool("alpha")]),
            "b.example.com": lambda request: httpx.Response(200, text="<html>oops</html>"),
            "c.example.com": _server([_tool("gamma")], sse=True),
        })
        path = _write_config(tmp_path, {
            "a": {"url": "https://a.example.com/mcp"},
            "b": {"url": "https://b.example.com/mcp"},
            "c": {"url": "https://c.example.com/mcp"},
        })

        async with MCPBridge(path, env={}, transport=fakes.transport) as bridge:
            discovery = await bridge.discover()

        assert set(discovery.tools) == {"a_alpha", "c_gamma"}
        assert list(discovery.failures) == ["b"]

    @pytest.mark.asyncio
    async def test_http_errors_and_rpc_errors_skipped(self, tmp_path):
        fakes = FakeServers({
            "a.example.com": lambda request: httpx.Response(500, text="boom"),
            "b.example.com": lambda request: httpx.Response(
                200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -1, "message": "denied"}}
            ),
            "c.example.com": _server([_tool("ok")]),
        })
        path = _write_config(tmp_path, {
            "a": {"url": "https://a.example.com/mcp", "params": {"api_key": "secret"}},
            "b": {"url": "https://b.example.com/mcp"},
            "c": {"url": "https://c.example.com/mcp"},
        })

        async with MCPBridge(path, env={}, transport=fakes.transport) as bridge:
            discovery = await bridge.discover()

        assert set(discovery.tools) == {"c_ok"}
        assert discovery.failures["a"] == "HTTP 500"
        assert "secret" not in discovery.failures["a"]
        assert "denied" in discovery.failures["b"]

    @pytest.mark.asyncio
    async def test_transport_error_skipped(self, tmp_path):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        fakes = FakeServers({"a.example.com": refuse, "b.example.com": _server([_tool("t")])})
        path = _write_config(tmp_path, {
            "a": {"url": "https://a.example.com/mcp"},
            "b": {"url": "https://b.example.com/mcp"},
        })

        async with MCPBridge(path, env={}, transport=fakes.transport) as bridge:
            discovery = await bridge.discover()

        assert set(discovery.tools) == {"b_t"}
        assert "a" in discovery.failures

    @pytest.mark.asyncio
    async def test_malformed_tool_entries_skipped(self, tmp_path):
        fakes = FakeServers({"a.example.com": _server([{"description": "no name"}, _tool("good")])})
        path = _write_config(tmp_path, {"a": {"url": "https://a.example.com/mcp"}})

        async with MCPBridge(path, env={}, transport=fakes.transport) as bridge:
            discovery = await bridge.discover()

        assert set(discovery.tools) == {"a_good"}

    @pytest.mark.asyncio
    async def test_null_input_schema_kept_with_empty_schema(self, tmp_path):
        tools = [
            {"name": "t1", "description": "no schema", "inputSchema": None},
            {"name": "t2"},
            _tool("t3"),
            "not-an-object",
        ]
        fakes = FakeServers({"a.example.com": _server(tools)})
        path = _write_config(tmp_path, {"a": {"url": "https://a.example.com/mcp"}})

        async with MCPBridge(path, env={}, transport=fakes.transport) as bridge:
            discovery = await bridge.discover()

        assert list(discovery.tools) == ["a_t1", "a_t2", "a_t3"]
        assert discovery.tools["a_t1"].input_schema == {}
        assert discovery.tools["a_t2"].input_schema == {}
        assert discovery.tools["a_t3"].input_schema == {"type": "object"}
        assert discovery.failures == {}

    @pytest.mark.asyncio
    async def test_input_schema_read_from_validated_tool(self, tmp_path):
        schema = {
            "type": "object",
            "properties": {"issue_id": {"type": "number"}, "hours": {"type": "number"}},
            "required": ["issue_id", "hours"],
        }
        tools = [{"name": "log_time", "description": "Log time", "inputSchema": schema}]
        fakes = FakeServers({"redmine.example.com": _server(tools)})
        path = _write_config(tmp_path, {"redmine": {"url": "https://redmine.example.com/mcp"}})

        async with MCPBridge(path, env={}, transport=fakes.transport) as bridge:
            listed = await bridge.list_tools()

        assert listed == [
            {"name": "redmine_log_time", "description": "Log time", "input_schema": schema}
        ]

    @pytest.mark.asyncio
    async def test_key_collision_last_server_wins(self, tmp_path):
        # "a_b" + "c" and "a" + "b_c" both produce the key "a_b_c"
        fakes = FakeServers({
            "first.example.com": _server([_tool("c")]),
            "second.example.com": _server([_tool("b_c")]),
        })
        path = _write_config(tmp_path, {
            "a_b": {"url": "https://first.example.com/mcp"},
            "a": {"url": "https://second.example.com/mcp"},
        })

        async with MCPBridge(path, env={}, transport=fakes.transport) as bridge:
            discovery = await bridge.discover()

        assert discovery.tools["a_b_c"].server_id == "a"

    @pytest.mark.asyncio
    async def test_requires_initialize(self, tmp_path):
        bridge = MCPBridge(_write_config(tmp_path, {}), env={})
        with pytest.raises(RuntimeError):
            await bridge.discover()


class TestInvocation:

    @pytest.mark.asyncio
    async def test_call_returns_text_result(self, tmp_path):
        call_result = {"content": [{"type": "text", "text": "Logged 1.5h on #12"}]}
        fakes = FakeServers({"redmine.example.com": _server([_tool("log_time")], call_result, sse=True)})
        path = _write_config(tmp_path, {"redmine": {"url": "https://redmine.example.com/mcp"}})

        async with MCPBridge(path, env={}, transport=fakes.transport) as bridge:
            result = await bridge.call("redmine_log_time", {"issue_id": 12, "hours": 1.5})

        assert result == {"success": True, "message": "Logged 1.5h on #12", "data": "Logged 1.5h on #12"}
        call_body = json.loads(fakes.requests[-1].content)
        assert call_body["method"] == "tools/call"
        assert call_body["params"] == {"name": "log_time", "arguments": {"issue_id": 12, "hours": 1.5}}

    @pytest.mark.asyncio
    async def test_unknown_key(self, tmp_path):
        fakes = FakeServers({"a.example.com": _server([_tool("x")])})
        path = _write_config(tmp_path, {"a": {"url": "https://a.example.com/mcp"}})

        async with MCPBridge(path, env={}, transport=fakes.transport) as bridge:
            result = await bridge.call("a_missing", {})

        assert result == {
            "success": False,
            "error": "Tool not found",
            "message": "Tool a_missing does not exist",
        }

    @pytest.mark.asyncio
    async def test_registry_rebuilt_per_call(self, tmp_path):
        fakes = FakeServers({"a.example.com": _server([_tool("x")])})
        path = _write_config(tmp_path, {"a": {"url": "https://a.example.com/mcp"}})

        async with MCPBridge(path, env={}, transport=fakes.transport) as bridge:
            await bridge.call("a_x", {})
            await bridge.call("a_x", {})

        methods = [json.loads(r.content)["method"] for r in fakes.requests]
        assert methods == ["tools/list", "tools/call", "tools/list", "tools/call"]

    @pytest.mark.asyncio
    async def test_call_failure_is_structured(self, tmp_path):
        def handler(request):
            body = json.loads(request.content)
            if body["method"] == "tools/list":
                return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": {"tools": [_tool("x")]}})
            return httpx.Response(502, text="bad gateway")

        fakes = FakeServers({"a.example.com": handler})
        path = _write_config(tmp_path, {"a": {"url": "https://a.example.com/mcp"}})

        async with MCPBridge(path, env={}, transport=fakes.transport) as bridge:
            result = await bridge.call("a_x", {})

        assert result["success"] is False
        assert result["error"] == "HTTP 502"

    @pytest.mark.asyncio
    async def test_list_tools(self, tmp_path):
        fakes = FakeServers({"a.example.com": _server([_tool("x"), _tool("y")])})
        path = _write_config(tmp_path, {"a": {"url": "https://a.example.com/mcp"}})

        async with MCPBridge(path, env={}, transport=fakes.transport) as bridge:
            tools = await bridge.list_tools()

        assert [t["name"] for t in tools] == ["a_x", "a_y"]
