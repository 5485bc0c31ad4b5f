"""
Dynamic MCP tool bridge.

Talks to any number of remote MCP servers over plain HTTP JSON-RPC:

    mcp-config.json ──► load_server_configs() ──► {server_id: ServerConfig}
                                                        │
                              tools/list (concurrent) ◄─┘
                                        │
                     {"{server_id}_{tool}": ToolRegistryEntry}
                                        │
                        MCPBridge.call(key, args) ──► tools/call

Servers may answer with a bare JSON body or with a server-sent-events body
whose payload sits on a ``data: {...}`` line; both are handled by
extract_payload().

The registry is rebuilt on every call. Remote servers restart and change
their tool sets, and a stale registry would route calls to tools that no
longer exist.

A server that fails discovery is skipped and recorded in
DiscoveryResult.failures; the others are still merged. Nothing in this module
raises for a remote failure: callers get ``{"success": False, ...}``.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any
from urllib.parse import urlencode

import httpx
from mcp.types import JSONRPCRequest, Tool
from pydantic import BaseModel, Field, ValidationError

from slackmate.tools.base import ToolAdapter

logger = logging.getLogger(__name__)

DEFAULT_SERVER_ID = "redmine"
DEFAULT_SERVER_URL = "https://redmine-mcp-server.vercel.app/api/mcp"

ACCEPT_HEADER = "application/json, text/event-stream"

# ${VAR_NAME}
_PLACEHOLDER_RE = re.compile(r"\$\{([^}]+)\}")
# Greedy: the JSON may span several lines and contain nested braces
_SSE_DATA_RE = re.compile(r"data: (\{[\s\S]*\})")


class MCPProtocolError(Exception):
    """Raised when a server response carries no usable JSON-RPC payload."""


class ServerConfig(BaseModel):
    """One remote MCP server after placeholder resolution."""

    id: str
    url: str
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def resolved_url(self) -> str:
        return build_server_url(self.url, self.params)


class ToolRegistryEntry(BaseModel):
    """A tool discovered on a remote server, addressed by its composite key."""

    key: str = Field(description='Composite key "{server_id}_{tool_name}"')
    server_id: str
    server_url: str = Field(description="Server URL including resolved query params")
    tool_name: str = Field(description="Tool name as the remote server knows it")
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict)


class DiscoveryResult(BaseModel):
    """Outcome of one discovery pass over every configured server."""

    tools: dict[str, ToolRegistryEntry] = Field(default_factory=dict)
    failures: dict[str, str] = Field(
        default_factory=dict, description="server_id -> error message"
    )


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def resolve_placeholders(value: Any, env: Mapping[str, str]) -> Any:
    """
    Replace ``${VAR}`` placeholders with values from ``env``.

    Walks strings, lists/tuples and mappings recursively. Unknown or empty
    variables resolve to the empty string. Other values are returned as-is.

    Example:
        >>> resolve_placeholders({"token": "${X}/${Y}"}, {"X": "abc"})
        {'token': 'abc/'}
    """
    if isinstance(value, str):
        return _PLACEHOLDER_RE.sub(lambda m: env.get(m.group(1)) or "", value)
    if isinstance(value, (list, tuple)):
        return [resolve_placeholders(item, env) for item in value]
    if isinstance(value, Mapping):
        return {key: resolve_placeholders(item, env) for key, item in value.items()}
    return value


def build_server_url(base_url: str, params: Mapping[str, Any] | None = None) -> str:
    """Append every non-empty param as a query string; falsy values are dropped."""
    query = urlencode([(key, value) for key, value in (params or {}).items() if value])
    return f"{base_url}?{query}" if query else base_url


def default_server_configs(env: Mapping[str, str]) -> dict[str, ServerConfig]:
    """Single Redmine MCP server built from REDMINE_URL and REDMINE_API_KEY."""
    return {
        DEFAULT_SERVER_ID: ServerConfig(
            id=DEFAULT_SERVER_ID,
            url=DEFAULT_SERVER_URL,
            params={
                "redmine_url": env.get("REDMINE_URL") or "",
                "api_key": env.get("REDMINE_API_KEY") or "",
            },
        )
    }


def load_server_configs(
    path: str | Path,
    env: Mapping[str, str] | None = None,
) -> dict[str, ServerConfig]:
    """
    Read ``{"mcpServers": {id: {"url": ..., "params": {...}}}}`` from ``path``.

    Placeholders are resolved against ``env`` (the process environment when
    None). A missing, unreadable or malformed file falls back to
    default_server_configs() instead of raising.
    """
    env = os.environ if env is None else env
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        servers = resolve_placeholders(raw.get("mcpServers") or {}, env)
        configs = {
            server_id: ServerConfig.model_validate({**entry, "id": server_id})
            for server_id, entry in servers.items()
        }
    except (OSError, ValueError, TypeError, AttributeError) as e:
        logger.warning(f"[MCP] No usable config at {path} ({e}); using default server")
        return default_server_configs(env)

    logger.info(f"[MCP] Loaded servers: {', '.join(configs) or '(none)'}")
    return configs


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

def extract_payload(body: str) -> dict[str, Any]:
    """
    Pull the JSON-RPC payload out of a response body.

    A body that is itself a JSON object is parsed directly. Otherwise the
    body is treated as an event stream and the payload is captured from the
    first ``{`` after ``data: `` up to the last ``}`` in the body.

    Raises:
        MCPProtocolError: If no JSON object can be found
    """
    stripped = body.strip()
    if stripped.startswith("{"):
        candidate = stripped
    else:
        match = _SSE_DATA_RE.search(body)
        if not match:
            raise MCPProtocolError("Invalid SSE format: no 'data: {...}' payload")
        candidate = match.group(1)

    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise MCPProtocolError(f"Invalid JSON payload: {e}") from e
    if not isinstance(payload, dict):
        raise MCPProtocolError(f"Expected a JSON object, got {type(payload).__name__}")
    return payload


def _rpc_error_message(error: Any) -> str:
    if isinstance(error, Mapping):
        return str(error.get("message") or json.dumps(error))
    return str(error)


def _first_text(result: Any) -> str | None:
    """``result.content[0].text`` when present and non-empty."""
    if not isinstance(result, Mapping):
        return None
    content = result.get("content")
    if not isinstance(content, list) or not content:
        return None
    first = content[0]
    if isinstance(first, Mapping) and isinstance(first.get("text"), str) and first["text"]:
        return first["text"]
    return None


def _describe_error(error: Exception) -> str:
    # Status errors embed the full URL, which carries credentials in its query
    if isinstance(error, httpx.HTTPStatusError):
        return f"HTTP {error.response.status_code}"
    return str(error) or type(error).__name__


def tool_call_result(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Normalise a ``tools/call`` payload to the dispatcher's result shape."""
    if payload.get("error"):
        message = _rpc_error_message(payload["error"])
        return {"success": False, "error": message, "message": f"Error: {message}"}

    result = payload.get("result")
    text = _first_text(result)

    if isinstance(result, Mapping) and result.get("isError"):
        message = text or "Tool reported an error"
        return {"success": False, "error": message, "message": f"Error: {message}"}

    if text:
        return {"success": True, "message": text, "data": text}
    return {"success": True, "data": result, "message": "Tool executed successfully"}


# ---------------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------------

class MCPBridge(ToolAdapter):
    """
    Tool adapter for every server listed in the MCP config file.

    ``call()`` takes a composite key (``"redmine_get_issue_details"``) rather
    than a bare tool name.

    Args:
        config_path: Path to the JSON server configuration
        timeout: Per-request timeout in seconds
        env: Placeholder source; the process environment when None
        transport: Optional httpx transport (tests inject httpx.MockTransport)
    """

    def __init__(
        self,
        config_path: str | Path,
        timeout: float = 30.0,
        env: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config_path = Path(config_path)
        self._timeout = timeout
        self._env = env
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._request_ids = itertools.count(1)

    async def initialize(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def shutdown(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def load_servers(self) -> dict[str, ServerConfig]:
        return load_server_configs(self._config_path, self._env)

    async def _rpc(self, url: str, method: str, params: dict[str, Any]) -> dict[str, Any]:
        if self._client is None:
            raise RuntimeError("Tool adapter not initialized")

        request = JSONRPCRequest(
            jsonrpc="2.0",
            id=next(self._request_ids),
            method=method,
            params=params,
        )
        response = await self._client.post(
            url,
            json=request.model_dump(by_alias=True, mode="json", exclude_none=True),
            headers={"Accept": ACCEPT_HEADER},
        )
        response.raise_for_status()
        return extract_payload(response.text)

    async def _discover_server(self, server: ServerConfig) -> list[ToolRegistryEntry]:
        url = server.resolved_url
        payload = await self._rpc(url, "tools/list", {})
        if payload.get("error"):
            raise MCPProtocolError(f"tools/list failed: {_rpc_error_message(payload['error'])}")

        result = payload.get("result")
        raw_tools = result.get("tools") if isinstance(result, Mapping) else None
        if not isinstance(raw_tools, list):
            raw_tools = []

        entries = []
        for raw in raw_tools:
            if not isinstance(raw, Mapping):
                logger.warning(f"[MCP] {server.id}: skipping non-object tool entry: {raw!r}")
                continue
            try:
                # Servers may send "inputSchema": null
                tool = Tool.model_validate({**raw, "inputSchema": raw.get("inputSchema") or {}})
            except ValidationError as e:
                logger.warning(f"[MCP] {server.id}: skipping malformed tool entry: {e}")
                continue
            # Read through the wire alias; the SDK attribute name differs across releases
            schema = tool.model_dump(by_alias=True).get("inputSchema") or {}
            entries.append(
                ToolRegistryEntry(
                    key=f"{server.id}_{tool.name}",
                    server_id=server.id,
                    server_url=url,
                    tool_name=tool.name,
                    description=tool.description or "",
                    input_schema=schema,
                )
            )
        return entries

    async def discover(self) -> DiscoveryResult:
        """
        Run one discovery pass over every configured server.

        Servers are queried concurrently; results are merged in configuration
        order, so when two servers produce the same composite key the later
        server wins.
        """
        if self._client is None:
            raise RuntimeError("Tool adapter not initialized")

        servers = list(self.load_servers().values())
        logger.info(f"[MCP] Discovering from {len(servers)} server(s)")

        outcomes = await asyncio.gather(
            *(self._discover_server(server) for server in servers),
            return_exceptions=True,
        )

        discovery = DiscoveryResult()
        for server, outcome in zip(servers, outcomes):
            if isinstance(outcome, Exception):
                reason = _describe_error(outcome)
                logger.error(f"[MCP] Failed {server.id} ({server.url}): {reason}")
                discovery.failures[server.id] = reason
                continue
            if isinstance(outcome, BaseException):
                raise outcome

            logger.info(f"[MCP] {server.id}: found {len(outcome)} tool(s)")
            for entry in outcome:
                previous = discovery.tools.get(entry.key)
                if previous is not None and previous.server_id != entry.server_id:
                    logger.warning(
                        f"[MCP] Tool key {entry.key!r} from {entry.server_id!r} "
                        f"shadows the one from {previous.server_id!r}"
                    )
                discovery.tools[entry.key] = entry

        logger.info(f"[MCP] Total tools: {len(discovery.tools)}")
        return discovery

    async def call(self, tool_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """
        Invoke a remote tool by composite key.

        Runs a fresh discovery pass first. Never raises for remote failures;
        an unknown key or a transport/parse error comes back as
        ``{"success": False, "error": ..., "message": ...}``.
        """
        discovery = await self.discover()

        entry = discovery.tools.get(tool_name)
        if entry is None:
            return {
                "success": False,
                "error": "Tool not found",
                "message": f"Tool {tool_name} does not exist",
            }

        logger.info(f"[MCP] Calling {tool_name}: {arguments}")
        try:
            payload = await self._rpc(
                entry.server_url,
                "tools/call",
                {"name": entry.tool_name, "arguments": arguments or {}},
            )
        except Exception as e:
            reason = _describe_error(e)
            logger.error(f"[MCP] Tool call error for {tool_name}: {reason}")
            return {"success": False, "error": reason, "message": f"Error: {reason}"}

        return tool_call_result(payload)

    async def list_tools(self) -> list[dict[str, Any]]:
        discovery = await self.discover()
        return [
            {
                "name": entry.key,
                "description": entry.description,
                "input_schema": entry.input_schema,
            }
            for entry in discovery.tools.values()
        ]
