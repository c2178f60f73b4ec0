"""
Change publisher: turns a fix bundle into a branch, commit and draft pull request
through the GitHub git database API.

Nothing is exposed as a branch until the blobs, tree and commit all exist; the
ref is created last, right before the pull request.
"""

import time
from typing import Callable, Optional

import httpx

from triage.errors import PublishError
from triage.integrations.connection_config import TriageConfig
from triage.integrations.github_client import GitHubClient
from triage.models.schemas import ChangeResult, Diagnosis, FixBundle, WorkflowRun
from triage.tools.codebase_tools import normalize_repo_path
from triage.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_FILE_MODE = "100644"


def build_commit_message(diagnosis: Diagnosis) -> str:
    return f"fix: auto-triage {diagnosis.category}\n\n{diagnosis.root_cause}\n\n{diagnosis.suggested_fix}"


def build_pr_body(diagnosis: Diagnosis) -> str:
    return (
        "## Auto-Triage Fix\n\n"
        f"**Category:** {diagnosis.category}\n"
        f"**Confidence:** {diagnosis.confidence}\n\n"
        f"**Root Cause:**\n{diagnosis.root_cause}\n\n"
        f"**Suggested Fix:**\n{diagnosis.suggested_fix}"
    )


class ChangePublisher:
    """Publishes a fix bundle as a draft pull request.

    Reads go through ``github``; writes go through ``writer``, which may carry a
    separate token with push rights.
    """

    def __init__(
        self,
        github: GitHubClient,
        writer: GitHubClient,
        config: TriageConfig,
        clock: Callable[[], float] = time.time,
    ):
        self.github = github
        self.writer = writer
        self.config = config
        self._clock = clock

    async def publish(
        self, diagnosis: Diagnosis, bundle: FixBundle, run: Optional[WorkflowRun] = None,
    ) -> ChangeResult:
        """Create branch, commit and draft PR for ``bundle``.

        Raises:
            PublishError: on an empty or entirely unsafe bundle, or any API failure
        """
        if not diagnosis.fixable or bundle.is_empty():
            raise PublishError("refusing to publish: diagnosis not fixable or fix bundle empty")

        try:
            return await self._publish(diagnosis, bundle, run)
        except httpx.HTTPError as e:
            raise PublishError(f"publishing fix: {e}") from e
        except KeyError as e:
            raise PublishError(f"publishing fix: unexpected GitHub response, missing {e}") from e
        except PublishError:
            raise
        except Exception as e:
            logger.exception("Unexpected error while publishing fix", extra={"stage": "publish", "action": "error"})
            raise PublishError(f"publishing fix: unexpected error: {e}") from e

    async def _publish(self, diagnosis: Diagnosis, bundle: FixBundle, run: Optional[WorkflowRun]) -> ChangeResult:
        pr = await self._lookup_pull_request(run)

        base_branch = await self._resolve_base_branch(pr)
        base_sha = self._resolve_base_sha(pr, run)
        branch_name = f"fix/triage-{self.config.run_id}-{int(self._clock())}"
        logger.info("Creating fix branch", extra={
            "stage": "publish", "action": "start",
            "extra": {"branch": branch_name, "base_sha": base_sha, "base_branch": base_branch},
        })

        base_commit = await self.github.get_commit(base_sha)
        base_tree_sha = base_commit["tree"]["sha"]
        base_tree = await self.github.get_tree(base_tree_sha, recursive=True)
        file_modes = {
            entry["path"]: entry["mode"]
            for entry in base_tree.get("tree", [])
            if entry.get("path") and entry.get("mode")
        }

        tree_entries = []
        for path, content in bundle.files.items():
            clean_path = normalize_repo_path(path)
            if clean_path is None:
                logger.warning("Ignoring unsafe file path from model", extra={
                    "stage": "publish", "action": "unsafe_path", "extra": {"path": path},
                })
                continue
            blob_sha = await self.writer.create_blob(content)
            tree_entries.append({
                "path": clean_path,
                "mode": file_modes.get(clean_path, DEFAULT_FILE_MODE),
                "type": "blob",
                "sha": blob_sha,
            })
        if not tree_entries:
            raise PublishError("no safe file paths left to publish")

        tree_sha = await self.writer.create_tree(base_tree_sha, tree_entries)
        commit = await self.writer.create_commit(build_commit_message(diagnosis), tree_sha, [base_sha])
        commit_sha = commit["sha"]

        await self.writer.create_ref(f"refs/heads/{branch_name}", commit_sha)
        logger.info("Created branch and commit", extra={
            "stage": "publish", "extra": {"branch": branch_name, "commit_sha": commit_sha},
        })

        created = await self.writer.create_pull_request(
            title=f"fix: auto-triage {diagnosis.category}",
            head=branch_name,
            base=base_branch,
            body=build_pr_body(diagnosis),
            draft=True,
        )
        result = ChangeResult(
            branch_name=branch_name,
            commit_sha=commit_sha,
            pr_url=created["html_url"],
            pr_number=created["number"],
        )
        logger.info("Created pull request", extra={
            "stage": "publish", "action": "complete",
            "extra": {"url": result.pr_url, "number": result.pr_number},
        })
        return result

    async def _lookup_pull_request(self, run: Optional[WorkflowRun]) -> Optional[dict]:
        """The run's pull request, or None; a failed lookup falls back to the run's own ref and SHA."""
        if run is None or run.pr_number is None:
            return None
        try:
            return await self.github.get_pull_request(run.pr_number)
        except httpx.HTTPError as e:
            logger.warning("Could not read pull request, falling back to run ref", extra={
                "stage": "publish", "action": "pr_lookup_error",
                "extra": {"pr": run.pr_number, "error": str(e)},
            })
            return None

    async def _resolve_base_branch(self, pr: Optional[dict]) -> str:
        """Original PR's head branch, else the triggering ref, else the default branch."""
        if pr and pr.get("head", {}).get("ref"):
            return pr["head"]["ref"]
        if self.config.ref_name:
            return self.config.ref_name
        repository = await self.github.get_repository()
        return repository["default_branch"]

    def _resolve_base_sha(self, pr: Optional[dict], run: Optional[WorkflowRun]) -> str:
        # For pull_request events the run's SHA is a merge commit; build on the PR head instead.
        if pr and pr.get("head", {}).get("sha"):
            return pr["head"]["sha"]
        base_sha = self.config.sha or (run.head_sha if run else "")
        if not base_sha:
            raise PublishError("could not determine base SHA")
        return base_sha
