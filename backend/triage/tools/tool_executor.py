"""
ToolExecutor: Dispatches model tool calls by name through TOOL_REGISTRY.
Each handler takes a params dict and returns text for the model; tool-level
problems come back as text so the model can adapt.
"""

import json
from collections import deque
from typing import Any, AsyncIterable, Optional

import httpx

from triage.integrations.connection_config import TriageConfig
from triage.integrations.github_client import GitHubClient
from triage.tools.codebase_tools import CodebaseTools
from triage.tools.tool_registry import TOOLS_BY_NAME, ToolSet, validate_registry
from triage.utils.logger import get_logger

logger = get_logger(__name__)


async def tail_lines(lines: AsyncIterable[str], max_lines: int) -> str:
    """Keep the last ``max_lines`` lines of a stream, oldest dropped first, joined by newline.

    Memory stays bounded by ``max_lines`` however long the stream is.
    """
    buffer: deque[str] = deque(maxlen=max_lines)
    async for line in lines:
        buffer.append(line.rstrip("\r\n"))
    return "\n".join(buffer)


class ToolExecutor:
    """Runs tool calls for one triage run.

    Holds the only tool-side state of the run: the failed job names recorded by
    list_failed_jobs, which the reporter includes in its notification.
    """

    def __init__(self, config: TriageConfig, github: GitHubClient, codebase: CodebaseTools):
        self._config = config
        self._github = github
        self._codebase = codebase
        self.failed_job_names: list[str] = []

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_params(name: str, params: dict[str, Any]) -> str | None:
        """Check that all required params (per TOOL_REGISTRY schema) are present.

        Returns an error string describing the missing params, or None if valid.
        """
        schema = TOOLS_BY_NAME[name]["parameters"]
        missing = [p for p in schema.get("required", []) if params.get(p) is None]
        if missing:
            return f"error: missing required parameter(s) for '{name}': {', '.join(missing)}"
        return None

    async def execute(self, name: str, arguments: str, tool_set: Optional[ToolSet] = None) -> str:
        """Dispatch a tool call by name. Never raises for tool-level problems."""
        if name not in TOOLS_BY_NAME or (tool_set is not None and name not in tool_set):
            return f"unknown tool: {name}"

        try:
            params = json.loads(arguments) if arguments and arguments.strip() else {}
        except json.JSONDecodeError as e:
            return f"error parsing arguments: {e}"
        if not isinstance(params, dict):
            return "error parsing arguments: expected a JSON object"

        validation_error = self._validate_params(name, params)
        if validation_error:
            return validation_error

        handler = getattr(self, TOOLS_BY_NAME[name]["handler"])
        try:
            return await handler(params)
        except Exception as e:
            logger.exception("Tool handler crashed", extra={"action": "tool_error", "tool": name})
            return f"error executing {name}: {e}"

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _list_failed_jobs(self, params: dict[str, Any]) -> str:
        try:
            jobs = await self._github.list_run_jobs(self._config.run_id)
        except httpx.HTTPError as e:
            return f"error listing jobs: {e}"

        failed = [j for j in jobs if j.conclusion == "failure"]
        self.failed_job_names = [j.name for j in failed]

        if not failed:
            return "no failed jobs found"
        return json.dumps([j.model_dump() for j in failed])

    async def _get_job_logs(self, params: dict[str, Any]) -> str:
        profile = self._config.profile
        try:
            job_id = int(params["job_id"])
            requested = int(params.get("tail_lines") or 0)
        except (TypeError, ValueError) as e:
            return f"error parsing arguments: {e}"

        if requested <= 0:
            requested = profile.default_tail_lines
        max_lines = min(requested, profile.max_tail_lines)

        try:
            return await tail_lines(self._github.iter_job_log_lines(job_id), max_lines)
        except httpx.HTTPError as e:
            return f"error downloading logs: {e}"

    async def _read_file(self, params: dict[str, Any]) -> str:
        path = params["path"]
        if not isinstance(path, str):
            return "error parsing arguments: path must be a string"
        return self._codebase.read_file(path)

    async def _get_workflow_run_info(self, params: dict[str, Any]) -> str:
        try:
            run = await self._github.get_workflow_run(self._config.run_id)
        except httpx.HTTPError as e:
            return f"error getting workflow run: {e}"

        info = {
            "run_id": run.id,
            "workflow_name": run.name,
            "workflow_path": run.path,
            "event": run.event,
            "branch": run.head_branch,
            "commit_sha": run.head_sha,
            "status": run.status,
            "conclusion": run.conclusion,
            "html_url": run.html_url,
        }
        return json.dumps(info)


validate_registry(ToolExecutor)
