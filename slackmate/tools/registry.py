"""
Static tool registry and mode selection.

A mode pairs a system-prompt template with the subset of tools the model is
offered. Mode choice is a pure function of the latest user message; nothing
is remembered between turns.

The schemas here are advisory. The dispatcher fills in defaults for anything
the model leaves out, so an under-specified call still succeeds.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from slackmate.llm.models import ChatMessage

PROMPTS_DIR = Path(__file__).parent.parent / "prompts"


class ToolDefinition(BaseModel):
    """A function the model may call."""

    name: str
    description: str
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    def to_openai(self) -> dict[str, Any]:
        """Render in the ``{"type": "function", "function": {...}}`` shape LiteLLM expects."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def _tool(
    name: str,
    description: str,
    properties: dict[str, dict[str, Any]] | None = None,
    required: Sequence[str] = (),
) -> ToolDefinition:
    return ToolDefinition(
        name=name,
        description=description,
        parameters={
            "type": "object",
            "properties": properties or {},
            "required": list(required),
        },
    )


# --- Local actions ---

CONTROL_LIGHT = _tool(
    "controlLight",
    "Control the smart light: switch it on or off and set the brightness.",
    {
        "action": {"type": "string", "enum": ["on", "off"], "description": "Switch the light on or off"},
        "brightness": {"type": "number", "description": "Brightness 0-100, only used when action is 'on'"},
    },
    required=["action"],
)

# --- Redmine over REST ---

CREATE_REDMINE_ISSUE = _tool(
    "createRedmineIssue",
    "Create a new task/issue in Redmine.",
    {
        "subject": {"type": "string", "description": "Issue title (required)"},
        "description": {"type": "string", "description": "Detailed description"},
        "priority_id": {
            "type": "number",
            "enum": [3, 4, 5, 6, 7],
            "description": "Priority: 3=Low, 4=Normal (default), 5=High, 6=Urgent, 7=Immediate",
        },
        "tracker_id": {
            "type": "number",
            "enum": [1, 2, 3],
            "description": "Tracker: 1=Bug, 2=Feature (default), 3=Support",
        },
        "estimated_hours": {"type": "number", "description": "Estimated hours to complete"},
        "project_id": {"type": "string", "description": "Project id; defaults to the configured project"},
        "assigned_to_id": {"type": "number", "description": "User id of the assignee"},
        "start_date": {"type": "string", "description": "Start date, YYYY-MM-DD"},
        "due_date": {"type": "string", "description": "Due date, YYYY-MM-DD"},
        "parent_issue_id": {"type": "number", "description": "Parent issue id for subtasks"},
    },
    required=["subject"],
)

GET_REDMINE_ISSUES = _tool(
    "getRedmineIssues",
    "List tasks/issues of the Redmine project.",
    {
        "status": {
            "type": "string",
            "enum": ["open", "closed", "*"],
            "description": "open, closed or * for all. Default: open",
        },
        "assigned_to_id": {"type": "string", "description": "User id or 'me'"},
        "limit": {"type": "number", "description": "Number of issues (default 10, max 100)"},
        "sort": {
            "type": "string",
            "enum": [
                "updated_on:desc", "updated_on:asc",
                "priority:desc", "priority:asc",
                "status:asc", "status:desc",
            ],
            "description": "Sort order. Default: updated_on:desc",
        },
    },
)

ASSIGN_REDMINE_ISSUE = _tool(
    "assignRedmineIssue",
    "Assign an existing Redmine issue to a member.",
    {
        "issue_id": {"type": "number", "description": "Issue id"},
        "assigned_to_id": {"type": "number", "description": "User id of the new assignee"},
    },
    required=["issue_id", "assigned_to_id"],
)

# --- Redmine over the MCP bridge ---

LIST_MY_REDMINE_TASKS = _tool(
    "listMyRedmineTasks",
    "List Redmine tasks assigned to the current user (or another user).",
    {
        "project_id": {"type": "string", "description": "Project id to filter on"},
        "status_filter": {
            "type": "string",
            "enum": ["open", "closed", "all"],
            "description": "Status filter. Default: open",
        },
        "assigned_to_id": {"type": "string", "description": "User id or 'me' (default)"},
    },
)

GET_REDMINE_ISSUE_DETAILS = _tool(
    "getRedmineIssueDetails",
    "Get full details of a Redmine issue, including journals.",
    {"issue_id": {"type": "number", "description": "Issue id"}},
    required=["issue_id"],
)

LOG_REDMINE_TIME = _tool(
    "logRedmineTime",
    "Log spent time on a Redmine issue.",
    {
        "issue_id": {"type": "number", "description": "Issue id"},
        "hours": {"type": "number", "description": "Hours spent"},
        "comment": {"type": "string", "description": "Work description"},
        "activity_id": {"type": "number", "description": "Time entry activity id"},
        "process": {"type": "string", "description": "Process/phase custom field"},
        "spent_on": {"type": "string", "description": "Date, YYYY-MM-DD (default today)"},
    },
    required=["issue_id", "hours"],
)

UPDATE_REDMINE_ISSUE_STATUS = _tool(
    "updateRedmineIssueStatus",
    "Change the status of a Redmine issue.",
    {
        "issue_id": {"type": "number", "description": "Issue id"},
        "status_id": {"type": "number", "description": "New status id (see listRedmineStatuses)"},
    },
    required=["issue_id", "status_id"],
)

UPDATE_REDMINE_PROGRESS = _tool(
    "updateRedmineProgress",
    "Set the done ratio of a Redmine issue.",
    {
        "issue_id": {"type": "number", "description": "Issue id"},
        "percent": {"type": "number", "description": "Progress 0-100"},
    },
    required=["issue_id", "percent"],
)

ADD_REDMINE_NOTE = _tool(
    "addRedmineNote",
    "Add a note/comment to a Redmine issue.",
    {
        "issue_id": {"type": "number", "description": "Issue id"},
        "note": {"type": "string", "description": "Note text"},
    },
    required=["issue_id", "note"],
)

GET_TODAY_REDMINE_LOGS = _tool(
    "getTodayRedmineLogs",
    "List the current user's time entries for today.",
)

GET_REDMINE_LOGS_RANGE = _tool(
    "getRedmineLogsRange",
    "List the current user's time entries in a date range.",
    {
        "from_date": {"type": "string", "description": "Start date, YYYY-MM-DD"},
        "to_date": {"type": "string", "description": "End date, YYYY-MM-DD"},
    },
    required=["from_date", "to_date"],
)

LIST_REDMINE_STATUSES = _tool(
    "listRedmineStatuses",
    "List the issue statuses available in Redmine.",
)

GET_REDMINE_USER_INFO = _tool(
    "getRedmineUserInfo",
    "Look up a Redmine user by login or name.",
    {"username": {"type": "string", "description": "Login or display name"}},
    required=["username"],
)

# --- GitLab over REST ---

_GITLAB_PROJECT = {
    "type": "string",
    "description": "GitLab project id (e.g. 12345) or full path (e.g. group/project)",
}

LIST_GITLAB_MERGE_REQUESTS = _tool(
    "listGitLabMergeRequests",
    "List merge requests of a GitLab project with title, author and status.",
    {
        "project_id": _GITLAB_PROJECT,
        "state": {
            "type": "string",
            "enum": ["opened", "closed", "merged", "all"],
            "description": "Merge request state. Default: opened",
        },
    },
    required=["project_id"],
)

GET_GITLAB_MR_CHANGES = _tool(
    "getGitLabMRChanges",
    "Get the changes (diff) of a merge request.",
    {
        "project_id": _GITLAB_PROJECT,
        "mr_iid": {"type": "number", "description": "Merge request IID (internal id)"},
    },
    required=["project_id", "mr_iid"],
)

GET_GITLAB_MR_COMMITS = _tool(
    "getGitLabMRCommits",
    "List the commits of a merge request.",
    {
        "project_id": _GITLAB_PROJECT,
        "mr_iid": {"type": "number", "description": "Merge request IID"},
    },
    required=["project_id", "mr_iid"],
)


ALL_TOOLS: dict[str, ToolDefinition] = {
    tool.name: tool
    for tool in (
        CONTROL_LIGHT,
        CREATE_REDMINE_ISSUE,
        GET_REDMINE_ISSUES,
        ASSIGN_REDMINE_ISSUE,
        LIST_MY_REDMINE_TASKS,
        GET_REDMINE_ISSUE_DETAILS,
        LOG_REDMINE_TIME,
        UPDATE_REDMINE_ISSUE_STATUS,
        UPDATE_REDMINE_PROGRESS,
        ADD_REDMINE_NOTE,
        GET_TODAY_REDMINE_LOGS,
        GET_REDMINE_LOGS_RANGE,
        LIST_REDMINE_STATUSES,
        GET_REDMINE_USER_INFO,
        LIST_GITLAB_MERGE_REQUESTS,
        GET_GITLAB_MR_CHANGES,
        GET_GITLAB_MR_COMMITS,
    )
}


@dataclass(frozen=True)
class Mode:
    """A system-prompt template paired with the tools offered alongside it."""

    name: str
    template: str
    tool_names: tuple[str, ...]
    keywords: tuple[str, ...] = ()

    @property
    def tools(self) -> list[ToolDefinition]:
        return [ALL_TOOLS[name] for name in self.tool_names]

    def tool_schemas(self) -> list[dict[str, Any]]:
        return [tool.to_openai() for tool in self.tools]

    def load_template(self) -> str:
        return (PROMPTS_DIR / self.template).read_text(encoding="utf-8")


ASSISTANT_MODE = Mode(
    name="assistant",
    template="assistant.txt",
    tool_names=(
        "controlLight",
        "createRedmineIssue",
        "getRedmineIssues",
        "assignRedmineIssue",
        "listMyRedmineTasks",
        "getRedmineIssueDetails",
        "logRedmineTime",
        "updateRedmineIssueStatus",
        "updateRedmineProgress",
        "addRedmineNote",
        "getTodayRedmineLogs",
        "getRedmineLogsRange",
        "listRedmineStatuses",
        "getRedmineUserInfo",
    ),
)

CODE_REVIEW_MODE = Mode(
    name="code_review",
    template="code_review.txt",
    tool_names=(
        "listGitLabMergeRequests",
        "getGitLabMRChanges",
        "getGitLabMRCommits",
    ),
    keywords=("review",),
)

# Checked in order; the first mode whose keyword appears wins
KEYWORD_MODES: tuple[Mode, ...] = (CODE_REVIEW_MODE,)
DEFAULT_MODE = ASSISTANT_MODE
MODES: dict[str, Mode] = {mode.name: mode for mode in (ASSISTANT_MODE, CODE_REVIEW_MODE)}


def select_mode(messages: Sequence[ChatMessage]) -> Mode:
    """
    Pick the mode for a turn from the latest user message.

    Matching is a case-insensitive substring test against each keyword mode;
    anything else falls back to the default assistant mode.
    """
    latest = next(
        (m.content for m in reversed(messages) if m.role == "user" and m.content),
        "",
    )
    text = latest.lower()
    for mode in KEYWORD_MODES:
        if any(keyword in text for keyword in mode.keywords):
            return mode
    return DEFAULT_MODE


def build_system_prompt(mode: Mode, current_time: str, project_id: str | None = None) -> str:
    """
    Render the mode's template with the current time and optional project context.

    Templates use a ``{current_time}`` placeholder; it is substituted with
    ``str.replace`` so literal braces elsewhere in a template are left alone.
    """
    prompt = mode.load_template().replace("{current_time}", current_time)
    if project_id:
        prompt += f"\n\nCONTEXT: You are working with Redmine project ID: {project_id}"
    return prompt
