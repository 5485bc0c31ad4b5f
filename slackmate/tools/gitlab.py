"""
GitLab REST collaborator.

Read-only merge-request lookups against ``{url}/api/v4`` using the
``PRIVATE-TOKEN`` header. Unlike the Redmine client, failures raise
GitLabError; the dispatcher turns them into ``{"success": False}`` results.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx

from slackmate.config.logging import get_logger
from slackmate.tools.base import ToolAdapter
from slackmate.tools.registry import (
    GET_GITLAB_MR_CHANGES,
    GET_GITLAB_MR_COMMITS,
    LIST_GITLAB_MERGE_REQUESTS,
)

logger = get_logger(__name__)


class GitLabError(Exception):
    """Raised for missing configuration or a failed GitLab API request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def project_ref(project: str | int) -> str:
    """
    Encode a project for use in a URL path.

    Numeric ids pass through; ``group/project`` paths are percent-encoded
    as GitLab requires (``group%2Fproject``).
    """
    text = str(project).strip()
    if isinstance(project, float) and project.is_integer():
        text = str(int(project))
    return quote(text, safe="")


class GitLabClient(ToolAdapter):
    """
    Version-control adapter.

    Args:
        url: GitLab instance URL (default https://gitlab.com)
        token: Personal access token
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (tests inject httpx.MockTransport)
    """

    def __init__(
        self,
        url: str = "https://gitlab.com",
        token: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._url = url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def initialize(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=f"{self._url}/api/v4",
                headers={"PRIVATE-TOKEN": self._token, "Content-Type": "application/json"},
                timeout=self._timeout,
                transport=self._transport,
            )

    async def shutdown(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        if not self._token:
            raise GitLabError("GITLAB_TOKEN not configured")
        if self._client is None:
            raise RuntimeError("Tool adapter not initialized")

        logger.debug(f"[GITLAB] {method} {endpoint}")
        response = await self._client.request(method, endpoint, **kwargs)
        if response.is_error:
            raise GitLabError(
                f"GitLab API error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        return response.json()

    async def list_merge_requests(self, project: str | int, state: str = "opened") -> list[dict[str, Any]]:
        return await self._request(
            "GET", f"/projects/{project_ref(project)}/merge_requests", params={"state": state}
        )

    async def get_merge_request_changes(self, project: str | int, mr_iid: int) -> dict[str, Any]:
        return await self._request(
            "GET", f"/projects/{project_ref(project)}/merge_requests/{int(mr_iid)}/changes"
        )

    async def get_merge_request_commits(self, project: str | int, mr_iid: int) -> list[dict[str, Any]]:
        return await self._request(
            "GET", f"/projects/{project_ref(project)}/merge_requests/{int(mr_iid)}/commits"
        )

    async def call(self, tool_name: str, arguments: dict[str, Any]) -> Any:
        operations = {
            "list_merge_requests": self.list_merge_requests,
            "get_merge_request_changes": self.get_merge_request_changes,
            "get_merge_request_commits": self.get_merge_request_commits,
        }
        operation = operations.get(tool_name)
        if operation is None:
            raise ValueError(f"Unknown GitLab operation: {tool_name}")
        return await operation(**arguments)

    async def list_tools(self) -> list[dict[str, Any]]:
        return [
            {"name": tool.name, "description": tool.description, "input_schema": tool.parameters}
            for tool in (LIST_GITLAB_MERGE_REQUESTS, GET_GITLAB_MR_CHANGES, GET_GITLAB_MR_COMMITS)
        ]
