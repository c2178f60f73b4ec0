"""
Triage pipeline

Runs one CI failure end to end:
- Diagnosis: investigate the failed run (fatal on failure)
- Fix: generate and apply corrected files (only for fixable diagnoses, auto-fix enabled)
- Publish: branch, commit and draft PR (only for a non-empty fix)
- Report: PR comment and Slack notification (always attempted)

Fix, publish and report failures are recorded on the outcome and never stop the
stages after them.
"""

from typing import Optional

import httpx

from triage.agents.diagnosis_agent import DiagnosisAgent
from triage.agents.fix_generator import FixGenerator
from triage.agents.publisher import ChangePublisher
from triage.agents.reporter import Reporter
from triage.agents.tool_loop import ToolLoop
from triage.errors import PublishError, TriageError
from triage.integrations.connection_config import TriageConfig
from triage.integrations.github_client import GitHubClient
from triage.integrations.slack_client import SlackWebhookClient
from triage.models.schemas import TriageOutcome, WorkflowRun
from triage.tools.codebase_tools import CodebaseTools
from triage.tools.tool_executor import ToolExecutor
from triage.utils.llm_client import ModelsClient
from triage.utils.logger import get_logger

logger = get_logger(__name__)


class TriagePipeline:
    """Wires the stages of one triage run together."""

    def __init__(
        self,
        config: TriageConfig,
        github: GitHubClient,
        writer: GitHubClient,
        models: ModelsClient,
        slack: Optional[SlackWebhookClient] = None,
    ):
        self.config = config
        self.github = github
        self.writer = writer
        self.models = models

        self.codebase = CodebaseTools(config.workspace)
        self.executor = ToolExecutor(config, github, self.codebase)
        loop = ToolLoop(models, self.executor, config.profile, max_rounds=config.max_rounds)

        self.diagnosis_agent = DiagnosisAgent(loop, config)
        self.fix_generator = FixGenerator(loop, self.codebase)
        self.publisher = ChangePublisher(github, writer, config)
        self.reporter = Reporter(github, config, slack)

    @classmethod
    def from_config(cls, config: TriageConfig) -> "TriagePipeline":
        github = GitHubClient(config.github_token, config.owner, config.repo, api_url=config.api_url)
        writer = github
        if config.write_token != config.github_token:
            writer = GitHubClient(config.write_token, config.owner, config.repo, api_url=config.api_url)
        models = ModelsClient(config.github_token, config.model, config.models_url)
        slack = SlackWebhookClient(config.slack_webhook_url) if config.slack_webhook_url else None
        return cls(config, github, writer, models, slack)

    async def aclose(self) -> None:
        await self.models.aclose()
        await self.github.aclose()
        if self.writer is not self.github:
            await self.writer.aclose()

    async def run(self) -> TriageOutcome:
        """Run every stage.

        Raises:
            TriageError: no diagnosis could be produced
        """
        diagnosis = await self.diagnosis_agent.run()
        outcome = TriageOutcome(diagnosis=diagnosis)
        logger.info("Triage result", extra={
            "run_id": self.config.run_id, "action": "diagnosis",
            "extra": diagnosis.model_dump(by_alias=True),
        })

        run = await self._load_run()

        if diagnosis.fixable and self.config.auto_fix:
            await self._fix_and_publish(outcome, run)
        elif diagnosis.fixable:
            logger.info("Auto-fix disabled, skipping fix stage", extra={"run_id": self.config.run_id})

        outcome.report_errors = await self.reporter.report(outcome, run, self.executor.failed_job_names)

        logger.info("Triage run complete", extra={
            "run_id": self.config.run_id, "action": "complete",
            "extra": {
                "pr_url": outcome.change.pr_url if outcome.change else None,
                "fix_error": outcome.fix_error,
                "report_errors": len(outcome.report_errors),
                "usage": self.models.get_total_usage().model_dump(),
            },
        })
        return outcome

    async def _fix_and_publish(self, outcome: TriageOutcome, run: Optional[WorkflowRun]) -> None:
        outcome.fix_attempted = True
        try:
            bundle = await self.fix_generator.run(outcome.diagnosis)
        except TriageError as e:
            logger.error("Auto-fix failed", extra={"run_id": self.config.run_id, "action": "fix_error", "extra": str(e)})
            outcome.fix_error = str(e)
            return

        if bundle is None or bundle.is_empty():
            return

        outcome.fixed_files = list(bundle.files)
        try:
            outcome.change = await self.publisher.publish(outcome.diagnosis, bundle, run)
        except PublishError as e:
            logger.error("Failed to create fix PR", extra={"run_id": self.config.run_id, "action": "publish_error", "extra": str(e)})
            outcome.fix_error = str(e)

    async def _load_run(self) -> Optional[WorkflowRun]:
        """Run metadata for PR association; None if it cannot be read."""
        try:
            return await self.github.get_workflow_run(self.config.run_id)
        except httpx.HTTPError as e:
            logger.warning("Could not read workflow run metadata", extra={
                "run_id": self.config.run_id, "action": "run_lookup_error", "extra": str(e),
            })
            return None
