"""
Unit tests for the GitLab REST collaborator.
"""

import httpx
import pytest

from slackmate.tools.gitlab import GitLabClient, GitLabError, project_ref


def _client(handler, token: str = "glpat-test") -> GitLabClient:
    return GitLabClient(
        url="https://gitlab.example.com/",
        token=token,
        transport=httpx.MockTransport(handler),
    )


class TestProjectRef:

    def test_numeric_id(self):
        assert project_ref(123) == "123"
        assert project_ref("123") == "123"

    def test_float_id_from_json(self):
        assert project_ref(123.0) == "123"

    def test_path_is_encoded(self):
        assert project_ref("group/sub/app") == "group%2Fsub%2Fapp"


class TestRequests:

    @pytest.mark.asyncio
    async def test_list_merge_requests(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[{"iid": 1, "title": "Add cache"}])

        async with _client(handler) as client:
            result = await client.list_merge_requests("group/app", state="merged")

        request = seen[0]
        assert request.headers["PRIVATE-TOKEN"] == "glpat-test"
        assert request.url.raw_path.decode().startswith("/api/v4/projects/group%2Fapp/merge_requests")
        assert request.url.params["state"] == "merged"
        assert result == [{"iid": 1, "title": "Add cache"}]

    @pytest.mark.asyncio
    async def test_merge_request_changes_and_commits(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, json={"changes": []} if "changes" in request.url.path else [])

        async with _client(handler) as client:
            await client.get_merge_request_changes(42, 7)
            await client.get_merge_request_commits(42, 7.0)

        assert paths == [
            "/api/v4/projects/42/merge_requests/7/changes",
            "/api/v4/projects/42/merge_requests/7/commits",
        ]

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        async with _client(lambda request: httpx.Response(404, text="404 Project Not Found")) as client:
            with pytest.raises(GitLabError) as exc_info:
                await client.list_merge_requests(1)

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_missing_token_raises(self):
        async with _client(lambda request: httpx.Response(200, json=[]), token="") as client:
            with pytest.raises(GitLabError, match="GITLAB_TOKEN"):
                await client.list_merge_requests(1)

    @pytest.mark.asyncio
    async def test_not_initialized(self):
        client = _client(lambda request: httpx.Response(200, json=[]))
        with pytest.raises(RuntimeError):
            await client.list_merge_requests(1)


class TestCall:

    @pytest.mark.asyncio
    async def test_routes_operation(self):
        async with _client(lambda request: httpx.Response(200, json=[])) as client:
            result = await client.call("list_merge_requests", {"project": "1", "state": "opened"})
        assert result == []

    @pytest.mark.asyncio
    async def test_unknown_operation(self):
        async with _client(lambda request: httpx.Response(200, json=[])) as client:
            with pytest.raises(ValueError):
                await client.call("merge_everything", {})
