"""
GitHub REST v3 client: workflow runs, job logs, git objects, pull requests, comments.
"""

from typing import Any, AsyncIterator, Optional

import httpx

from triage.models.schemas import WorkflowJob, WorkflowRun
from triage.utils.logger import get_logger
from triage.utils.retry import retry_with_backoff

logger = get_logger("github_client")

API_TIMEOUT_SECONDS = 30.0
LOG_TIMEOUT_SECONDS = 300.0
JOBS_PAGE_SIZE = 100


class GitHubClient:
    """Thin async wrapper around the GitHub REST API for one repository."""

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        api_url: str = "https://api.github.com",
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.owner = owner
        self.repo = repo
        self._client = http_client or httpx.AsyncClient(
            base_url=api_url.rstrip("/"), timeout=API_TIMEOUT_SECONDS,
        )
        self._headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {token}",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    @property
    def _repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    async def aclose(self) -> None:
        await self._client.aclose()

    @retry_with_backoff(max_retries=3, base_delay=1.0)
    async def _request(self, method: str, path: str, **kwargs) -> Any:
        resp = await self._client.request(method, path, headers=self._headers, **kwargs)
        resp.raise_for_status()
        try:
            return resp.json()
        except ValueError as e:
            # Proxies and outages can answer 2xx with an HTML or empty body.
            raise httpx.DecodingError(
                f"invalid JSON in {resp.status_code} response to {method} {path}: {e}",
                request=resp.request,
            ) from e

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def get_workflow_run(self, run_id: int) -> WorkflowRun:
        """GET /repos/{o}/{r}/actions/runs/{run_id}."""
        data = await self._request("GET", f"{self._repo_path}/actions/runs/{run_id}")
        return WorkflowRun.model_validate(data)

    async def list_run_jobs(self, run_id: int) -> list[WorkflowJob]:
        """All jobs of a run (every attempt), following pagination."""
        jobs: list[WorkflowJob] = []
        page = 1
        while True:
            data = await self._request(
                "GET", f"{self._repo_path}/actions/runs/{run_id}/jobs",
                params={"filter": "all", "per_page": JOBS_PAGE_SIZE, "page": page},
            )
            batch = data.get("jobs", [])
            jobs.extend(WorkflowJob.model_validate(j) for j in batch)
            if len(batch) < JOBS_PAGE_SIZE or len(jobs) >= data.get("total_count", 0):
                return jobs
            page += 1

    async def iter_job_log_lines(self, job_id: int) -> AsyncIterator[str]:
        """Stream a job's log text line by line.

        The endpoint redirects to a short-lived download URL; httpx drops the
        Authorization header when the redirect leaves the API host.
        """
        async with self._client.stream(
            "GET", f"{self._repo_path}/actions/jobs/{job_id}/logs",
            headers=self._headers,
            follow_redirects=True,
            timeout=LOG_TIMEOUT_SECONDS,
        ) as resp:
            resp.raise_for_status()
            async for line in resp.aiter_lines():
                yield line

    # ------------------------------------------------------------------
    # Repository and pull requests
    # ------------------------------------------------------------------

    async def get_repository(self) -> dict:
        return await self._request("GET", self._repo_path)

    async def get_pull_request(self, number: int) -> dict:
        return await self._request("GET", f"{self._repo_path}/pulls/{number}")

    async def create_pull_request(
        self, title: str, head: str, base: str, body: str, draft: bool = True,
    ) -> dict:
        """POST /repos/{o}/{r}/pulls; returns the created PR (html_url, number, ...)."""
        payload = {"title": title, "head": head, "base": base, "body": body, "draft": draft}
        data = await self._request("POST", f"{self._repo_path}/pulls", json=payload)
        logger.info("Created pull request #%s in %s/%s", data.get("number"), self.owner, self.repo)
        return data

    async def create_issue_comment(self, number: int, body: str) -> dict:
        """POST /repos/{o}/{r}/issues/{n}/comments. PRs share the issue comment API."""
        return await self._request(
            "POST", f"{self._repo_path}/issues/{number}/comments", json={"body": body},
        )

    # ------------------------------------------------------------------
    # Git database
    # ------------------------------------------------------------------

    async def get_commit(self, sha: str) -> dict:
        return await self._request("GET", f"{self._repo_path}/git/commits/{sha}")

    async def get_tree(self, sha: str, recursive: bool = True) -> dict:
        params = {"recursive": "1"} if recursive else None
        return await self._request("GET", f"{self._repo_path}/git/trees/{sha}", params=params)

    async def create_blob(self, content: str) -> str:
        data = await self._request(
            "POST", f"{self._repo_path}/git/blobs", json={"content": content, "encoding": "utf-8"},
        )
        return data["sha"]

    async def create_tree(self, base_tree: str, entries: list[dict]) -> str:
        data = await self._request(
            "POST", f"{self._repo_path}/git/trees", json={"base_tree": base_tree, "tree": entries},
        )
        return data["sha"]

    async def create_commit(self, message: str, tree: str, parents: list[str]) -> dict:
        return await self._request(
            "POST", f"{self._repo_path}/git/commits",
            json={"message": message, "tree": tree, "parents": parents},
        )

    async def create_ref(self, ref: str, sha: str) -> dict:
        return await self._request("POST", f"{self._repo_path}/git/refs", json={"ref": ref, "sha": sha})
