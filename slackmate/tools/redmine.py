"""
Redmine REST collaborator.

Thin wrapper over the Redmine JSON API, authenticated with the
``X-Redmine-API-Key`` header. Every operation returns the dispatcher's
result shape; HTTP and configuration problems come back as
``{"success": False, "message": ...}`` instead of raising.
"""

from __future__ import annotations

from typing import Any

import httpx

from slackmate.config.logging import get_logger
from slackmate.tools.base import ToolAdapter
from slackmate.tools.registry import ASSIGN_REDMINE_ISSUE, CREATE_REDMINE_ISSUE, GET_REDMINE_ISSUES

logger = get_logger(__name__)

PRIORITY_NAMES = {3: "Low", 4: "Normal", 5: "High", 6: "Urgent", 7: "Immediate"}
TRACKER_NAMES = {1: "Bug", 2: "Feature", 3: "Support"}

DEFAULT_PRIORITY_ID = 4
DEFAULT_TRACKER_ID = 2
MAX_ISSUE_LIMIT = 100


def priority_name(priority_id: int) -> str:
    return PRIORITY_NAMES.get(priority_id, "Normal")


def tracker_name(tracker_id: int) -> str:
    return TRACKER_NAMES.get(tracker_id, "Feature")


def _project_ref(project_id: str | int) -> str | int:
    # Redmine accepts numeric ids and string identifiers
    if isinstance(project_id, str) and project_id.isdigit():
        return int(project_id)
    return project_id


class RedmineClient(ToolAdapter):
    """
    Issue-tracker adapter.

    Args:
        url: Redmine base URL
        api_key: API key sent as X-Redmine-API-Key
        default_project_id: Project used when a call does not name one
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (tests inject httpx.MockTransport)
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        default_project_id: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._url = url.rstrip("/")
        self._api_key = api_key
        self._default_project_id = default_project_id
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def initialize(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._url,
                headers={"X-Redmine-API-Key": self._api_key},
                timeout=self._timeout,
                transport=self._transport,
            )

    async def shutdown(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _missing_config(self, need_project: bool = True) -> dict[str, Any] | None:
        missing = [
            name
            for name, value in (
                ("REDMINE_URL", self._url),
                ("REDMINE_API_KEY", self._api_key),
                ("REDMINE_DEFAULT_PROJECT_ID", self._default_project_id if need_project else "set"),
            )
            if not value
        ]
        if not missing:
            return None
        logger.error(f"[REDMINE] Missing configuration: {', '.join(missing)}")
        return {
            "success": False,
            "message": f"Redmine is not configured. Set {', '.join(missing)}.",
        }

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Tool adapter not initialized")
        return self._client

    def issue_url(self, issue_id: Any) -> str:
        return f"{self._url}/issues/{issue_id}"

    async def get_issues(
        self,
        status: str = "open",
        assigned_to_id: str | int | None = None,
        limit: int = 10,
        sort: str = "updated_on:desc",
    ) -> dict[str, Any]:
        """List project issues, formatted for the model."""
        if failure := self._missing_config():
            return failure
        client = self._require_client()

        params: dict[str, Any] = {
            "project_id": self._default_project_id,
            "status_id": status,
            "limit": max(1, min(int(limit), MAX_ISSUE_LIMIT)),
            "sort": sort,
        }
        if assigned_to_id:
            params["assigned_to_id"] = assigned_to_id

        logger.info(f"[REDMINE] Getting issues with filters: {params}")
        try:
            response = await client.get("/issues.json", params=params)
        except httpx.HTTPError as e:
            logger.error(f"[REDMINE] Request failed: {e}")
            return {"success": False, "message": f"Failed to list issues: {e}"}

        if response.is_error:
            logger.error(f"[REDMINE] API error: {response.status_code} {response.text}")
            return {
                "success": False,
                "message": f"Failed to list issues: {response.status_code} - {response.text}",
            }

        body = response.json()
        issues = body.get("issues") or []
        total_count = body.get("total_count") or 0
        logger.info(f"[REDMINE] Found {len(issues)} issues (total: {total_count})")

        return {
            "success": True,
            "message": f"Found {len(issues)} issues (total: {total_count})",
            "total_count": total_count,
            "issues": [
                {
                    "id": issue.get("id"),
                    "subject": issue.get("subject"),
                    "status": (issue.get("status") or {}).get("name", "Unknown"),
                    "priority": (issue.get("priority") or {}).get("name", "Normal"),
                    "tracker": (issue.get("tracker") or {}).get("name", "Task"),
                    "assigned_to": (issue.get("assigned_to") or {}).get("name", "Unassigned"),
                    "updated_on": issue.get("updated_on"),
                    "url": self.issue_url(issue.get("id")),
                }
                for issue in issues
            ],
        }

    async def create_issue(
        self,
        subject: str,
        description: str | None = None,
        priority_id: int = DEFAULT_PRIORITY_ID,
        tracker_id: int = DEFAULT_TRACKER_ID,
        estimated_hours: float | None = None,
        project_id: str | int | None = None,
        assigned_to_id: int | None = None,
        start_date: str | None = None,
        due_date: str | None = None,
        parent_issue_id: int | None = None,
    ) -> dict[str, Any]:
        """Create an issue; priority and tracker default to Normal / Feature."""
        if failure := self._missing_config(need_project=project_id is None):
            return failure
        client = self._require_client()

        issue: dict[str, Any] = {
            "project_id": _project_ref(project_id or self._default_project_id),
            "subject": subject,
            "tracker_id": tracker_id,
            "priority_id": priority_id,
        }
        optional = {
            "description": description,
            "estimated_hours": estimated_hours,
            "assigned_to_id": assigned_to_id,
            "start_date": start_date,
            "due_date": due_date,
            "parent_issue_id": parent_issue_id,
        }
        issue.update({key: value for key, value in optional.items() if value})

        logger.info(f"[REDMINE] Creating issue: {subject}")
        try:
            response = await client.post("/issues.json", json={"issue": issue})
        except httpx.HTTPError as e:
            logger.error(f"[REDMINE] Request failed: {e}")
            return {"success": False, "message": f"Failed to create issue: {e}"}

        if response.is_error:
            logger.error(f"[REDMINE] API error: {response.status_code} {response.text}")
            return {
                "success": False,
                "message": f"Failed to create issue: {response.status_code} - {response.text}",
            }

        issue_id = (response.json().get("issue") or {}).get("id")
        logger.info(f"[REDMINE] Issue created: {issue_id}")
        return {
            "success": True,
            "message": f"Created issue #{issue_id}",
            "issue": {
                "id": issue_id,
                "url": self.issue_url(issue_id),
                "subject": subject,
                "priority": priority_name(priority_id),
                "tracker": tracker_name(tracker_id),
            },
        }

    async def assign_issue(self, issue_id: int, assigned_to_id: int) -> dict[str, Any]:
        """Reassign an existing issue. Redmine answers 204 with no body."""
        if failure := self._missing_config(need_project=False):
            return failure
        client = self._require_client()

        logger.info(f"[REDMINE] Assigning issue #{issue_id} to user {assigned_to_id}")
        try:
            response = await client.put(
                f"/issues/{issue_id}.json",
                json={"issue": {"assigned_to_id": assigned_to_id}},
            )
        except httpx.HTTPError as e:
            logger.error(f"[REDMINE] Request failed: {e}")
            return {"success": False, "message": f"Failed to assign issue: {e}"}

        if response.is_error:
            logger.error(f"[REDMINE] API error: {response.status_code} {response.text}")
            return {
                "success": False,
                "message": f"Failed to assign issue #{issue_id}: {response.status_code} - {response.text}",
            }

        return {
            "success": True,
            "message": f"Assigned issue #{issue_id} to user {assigned_to_id}",
            "issue": {"id": issue_id, "url": self.issue_url(issue_id), "assigned_to_id": assigned_to_id},
        }

    async def call(self, tool_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        operations = {
            "get_issues": self.get_issues,
            "create_issue": self.create_issue,
            "assign_issue": self.assign_issue,
        }
        operation = operations.get(tool_name)
        if operation is None:
            raise ValueError(f"Unknown Redmine operation: {tool_name}")
        return await operation(**arguments)

    async def list_tools(self) -> list[dict[str, Any]]:
        return [
            {"name": tool.name, "description": tool.description, "input_schema": tool.parameters}
            for tool in (CREATE_REDMINE_ISSUE, GET_REDMINE_ISSUES, ASSIGN_REDMINE_ISSUE)
        ]
