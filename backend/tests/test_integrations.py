"""Tests for the GitHub and Slack HTTP clients against httpx.MockTransport."""

import json

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from triage.errors import ReportError
from triage.integrations.github_client import GitHubClient
from triage.integrations.slack_client import SlackWebhookClient


def _github(handler) -> GitHubClient:
    http = httpx.AsyncClient(base_url="https://api.github.test", transport=httpx.MockTransport(handler))
    return GitHubClient("ghs_token", "acme", "widgets", http_client=http)


class TestGitHubClient:

    @pytest.mark.asyncio
    async def test_get_workflow_run(self):
        def handler(request):
            assert request.url.path == "/repos/acme/widgets/actions/runs/4242"
            assert request.headers["Authorization"] == "Bearer ghs_token"
            return httpx.Response(200, json={
                "id": 4242, "name": "CI", "head_sha": "abc", "event": "pull_request",
                "pull_requests": [{"number": 12, "url": "https://api.github.test/x"}],
            })

        run = await _github(handler).get_workflow_run(4242)
        assert run.name == "CI"
        assert run.pr_number == 12

    @pytest.mark.asyncio
    async def test_list_run_jobs_paginates(self):
        pages = []

        def handler(request):
            page = int(request.url.params["page"])
            pages.append(page)
            assert request.url.params["filter"] == "all"
            size = 100 if page == 1 else 5
            jobs = [{"id": page * 1000 + i, "name": f"job{i}", "conclusion": "failure"} for i in range(size)]
            return httpx.Response(200, json={"total_count": 105, "jobs": jobs})

        jobs = await _github(handler).list_run_jobs(4242)
        assert len(jobs) == 105
        assert pages == [1, 2]

    @pytest.mark.asyncio
    async def test_job_logs_follow_redirect(self):
        def handler(request):
            if request.url.host == "api.github.test":
                return httpx.Response(302, headers={"Location": "https://logs.blob.test/job/7"})
            return httpx.Response(200, text="first\nsecond\nthird\n")

        lines = [line async for line in _github(handler).iter_job_log_lines(7)]
        assert lines == ["first", "second", "third"]

    @pytest.mark.asyncio
    async def test_retries_transient_5xx(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={"default_branch": "main"})

        with patch("triage.utils.retry.asyncio.sleep", new_callable=AsyncMock):
            repo = await _github(handler).get_repository()
        assert repo["default_branch"] == "main"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_does_not_retry_4xx(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404, json={"message": "Not Found"})

        with pytest.raises(httpx.HTTPStatusError):
            await _github(handler).get_pull_request(99)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_git_object_payloads(self):
        bodies = {}

        def handler(request):
            bodies[request.url.path] = json.loads(request.content)
            return httpx.Response(201, json={"sha": "s1"})

        github = _github(handler)
        assert await github.create_blob("hello") == "s1"
        assert await github.create_tree("base", [{"path": "a"}]) == "s1"
        await github.create_ref("refs/heads/fix/x", "c1")

        assert bodies["/repos/acme/widgets/git/blobs"] == {"content": "hello", "encoding": "utf-8"}
        assert bodies["/repos/acme/widgets/git/trees"] == {"base_tree": "base", "tree": [{"path": "a"}]}
        assert bodies["/repos/acme/widgets/git/refs"] == {"ref": "refs/heads/fix/x", "sha": "c1"}


class TestSlackWebhookClient:

    @pytest.mark.asyncio
    async def test_posts_blocks(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, text="ok")

        client = SlackWebhookClient(
            "https://hooks.slack.test/T/B/x",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        await client.post_blocks([{"type": "divider"}])
        assert seen == [{"blocks": [{"type": "divider"}]}]

    @pytest.mark.asyncio
    async def test_non_200_raises(self):
        client = SlackWebhookClient(
            "https://hooks.slack.test/T/B/x",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(
                lambda request: httpx.Response(404, text="no_service"),
            )),
        )
        with pytest.raises(ReportError, match="404"):
            await client.post_blocks([])

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = SlackWebhookClient(
            "https://hooks.slack.test/T/B/x",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        with pytest.raises(ReportError, match="posting to Slack"):
            await client.post_blocks([])


class TestGitHubClientDecoding:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [b"", b"<html>gateway</html>"])
    async def test_non_json_success_body_is_decoding_error(self, body):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(201, content=body)

        with pytest.raises(httpx.DecodingError, match="invalid JSON in 201 response"):
            await _github(handler).create_tree("base", [])
        assert len(calls) == 1
