"""
Tool dispatcher.

Routes a model-issued function call to exactly one handler through a lookup
table of ToolRoute entries:

    LOCAL   in-process deterministic action   (LocalTools)
    REST    direct REST collaborator call     (RedmineClient, GitLabClient)
    BRIDGE  remote MCP tool by composite key  (MCPBridge)

Every outcome, including unknown names, bad arguments and handler
exceptions, is a JSON-serialisable dict with a ``success`` flag. Failures
are fed back to the model as tool results; dispatch() never raises.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from slackmate.config.logging import get_logger
from slackmate.llm.models import decode_arguments
from slackmate.tools.base import ToolAdapter

logger = get_logger(__name__)

ArgumentBuilder = Callable[[Mapping[str, Any]], dict[str, Any]]


class HandlerKind(str, Enum):
    LOCAL = "local"
    REST = "rest"
    BRIDGE = "bridge"


def passthrough(arguments: Mapping[str, Any]) -> dict[str, Any]:
    return dict(arguments)


def pick(
    *names: str,
    renames: Mapping[str, str] | None = None,
    **defaults: Any,
) -> ArgumentBuilder:
    """
    Build an argument mapper for one route.

    Keeps ``names`` (plus any key with a default), drops keys the model sent
    as null or empty, fills ``defaults`` for whatever is still missing, then
    applies ``renames`` (model key -> adapter parameter). Unlisted keys are
    discarded.

    Example:
        >>> pick("project_id", renames={"project_id": "project"}, state="opened")({"project_id": 7})
        {'project': 7, 'state': 'opened'}
    """
    wanted = names + tuple(name for name in defaults if name not in names)
    renames = dict(renames or {})

    def build(arguments: Mapping[str, Any]) -> dict[str, Any]:
        prepared = {
            name: arguments[name]
            for name in wanted
            if arguments.get(name) not in (None, "")
        }
        for name, value in defaults.items():
            prepared.setdefault(name, value)
        return {renames.get(name, name): value for name, value in prepared.items()}

    return build


@dataclass(frozen=True)
class ToolRoute:
    """
    Where a function name goes.

    Attributes:
        kind: Which family of handler serves the call
        adapter: Adapter instance that executes it
        target: Adapter-level tool name; the composite key for BRIDGE routes
        prepare: Maps the model's arguments to the adapter's, applying defaults
    """

    kind: HandlerKind
    adapter: ToolAdapter
    target: str
    prepare: ArgumentBuilder = field(default=passthrough)


def _failure(message: str, **extra: Any) -> dict[str, Any]:
    return {"success": False, "message": message, **extra}


def normalize_result(result: Any) -> dict[str, Any]:
    """Wrap raw payloads (lists, dicts without a flag) as ``{"success": True, "data": ...}``."""
    if isinstance(result, dict) and isinstance(result.get("success"), bool):
        return result
    return {"success": True, "data": result}


class ToolDispatcher:
    """
    Executes tool calls by name.

    Args:
        routes: Function name -> ToolRoute
    """

    def __init__(self, routes: Mapping[str, ToolRoute]):
        self._routes = dict(routes)

    @property
    def routes(self) -> dict[str, ToolRoute]:
        return dict(self._routes)

    def __contains__(self, name: object) -> bool:
        return name in self._routes

    async def dispatch(self, name: str, arguments: str | Mapping[str, Any] | None) -> dict[str, Any]:
        """
        Run one tool call.

        Args:
            name: Function name chosen by the model
            arguments: JSON-encoded argument object as sent by the model, or an
                       already-decoded mapping

        Returns:
            Result dict with at least a ``success`` key
        """
        route = self._routes.get(name)
        if route is None:
            logger.warning(f"Unknown tool call: {name}")
            return _failure(f"Unknown function: {name}")

        try:
            parsed = dict(arguments) if isinstance(arguments, Mapping) else decode_arguments(arguments)
        except ValueError as e:
            logger.warning(f"Invalid arguments for {name}: {e}")
            return _failure(f"Invalid arguments for {name}: {e}", error="invalid_arguments")

        logger.info(f"Executing {name} -> {route.kind.value}:{route.target}")
        try:
            result = await route.adapter.call(route.target, route.prepare(parsed))
        except Exception as e:
            logger.warning(f"Tool '{name}' failed: {e}")
            return _failure(f"Tool {name} failed: {e}", error=str(e) or type(e).__name__)

        normalized = normalize_result(result)
        # The result travels back to the model as JSON text
        try:
            json.dumps(normalized)
        except (TypeError, ValueError) as e:
            logger.warning(f"Tool '{name}' returned a non-serialisable result: {e}")
            return _failure(f"Tool {name} returned an unreadable result")
        return normalized


def default_routes(
    local: ToolAdapter,
    redmine: ToolAdapter,
    gitlab: ToolAdapter,
    bridge: ToolAdapter,
    redmine_server_id: str = "redmine",
) -> dict[str, ToolRoute]:
    """
    The route table for every function in the static registry.

    Redmine time tracking, notes and status changes go through the Redmine
    MCP server (``redmine_server_id``); issue listing, creation and
    assignment use the REST API directly.
    """

    def mcp(tool: str, prepare: ArgumentBuilder) -> ToolRoute:
        return ToolRoute(HandlerKind.BRIDGE, bridge, f"{redmine_server_id}_{tool}", prepare)

    gitlab_project = {"project_id": "project"}

    return {
        "controlLight": ToolRoute(
            HandlerKind.LOCAL, local, "controlLight", pick("action", "brightness")
        ),
        "createRedmineIssue": ToolRoute(
            HandlerKind.REST,
            redmine,
            "create_issue",
            pick(
                "subject", "description", "estimated_hours", "project_id",
                "assigned_to_id", "start_date", "due_date", "parent_issue_id",
                priority_id=4,
                tracker_id=2,
            ),
        ),
        "getRedmineIssues": ToolRoute(
            HandlerKind.REST,
            redmine,
            "get_issues",
            pick("assigned_to_id", status="open", limit=10, sort="updated_on:desc"),
        ),
        "assignRedmineIssue": ToolRoute(
            HandlerKind.REST, redmine, "assign_issue", pick("issue_id", "assigned_to_id")
        ),
        "listMyRedmineTasks": mcp(
            "list_my_tasks",
            pick("project_id", status_filter="open", assigned_to_id="me"),
        ),
        "getRedmineIssueDetails": mcp("get_issue_details", pick("issue_id")),
        "logRedmineTime": mcp(
            "log_time",
            pick("issue_id", "hours", "comment", "activity_id", "process", "spent_on"),
        ),
        "updateRedmineIssueStatus": mcp("update_issue_status", pick("issue_id", "status_id")),
        "updateRedmineProgress": mcp("update_progress", pick("issue_id", "percent")),
        "addRedmineNote": mcp("add_note", pick("issue_id", "note")),
        "getTodayRedmineLogs": mcp("get_today_logs", pick()),
        "getRedmineLogsRange": mcp("get_time_logs_range", pick("from_date", "to_date")),
        "listRedmineStatuses": mcp("list_statuses", pick()),
        "getRedmineUserInfo": mcp("get_user_info", pick("username")),
        "listGitLabMergeRequests": ToolRoute(
            HandlerKind.REST,
            gitlab,
            "list_merge_requests",
            pick("project_id", renames=gitlab_project, state="opened"),
        ),
        "getGitLabMRChanges": ToolRoute(
            HandlerKind.REST,
            gitlab,
            "get_merge_request_changes",
            pick("project_id", "mr_iid", renames=gitlab_project),
        ),
        "getGitLabMRCommits": ToolRoute(
            HandlerKind.REST,
            gitlab,
            "get_merge_request_commits",
            pick("project_id", "mr_iid", renames=gitlab_project),
        ),
    }
