"""
Reporter: publishes the triage verdict as a PR comment and a Slack notification.

Both sinks are optional and independent; a failure in one is logged and recorded
without stopping the other.
"""

from datetime import datetime, timezone
from typing import Optional

import httpx

from triage.errors import ReportError
from triage.integrations.connection_config import TriageConfig
from triage.integrations.github_client import GitHubClient
from triage.integrations.slack_client import SlackWebhookClient
from triage.models.schemas import TriageOutcome, WorkflowRun
from triage.utils.logger import get_logger

logger = get_logger(__name__)

SLACK_TEXT_LIMIT = 2_900


def fix_status_text(outcome: TriageOutcome, auto_fix_enabled: bool) -> str:
    if outcome.change:
        return f":wrench: Auto-fix PR: <{outcome.change.pr_url}|View PR>"
    if not outcome.diagnosis.fixable:
        return "No auto-fix attempted: issue not auto-fixable"
    if not auto_fix_enabled:
        return "Auto-fix disabled"
    if outcome.fix_error:
        return "Auto-fix attempted but failed"
    return "Auto-fix produced no confident fix"


def build_pr_comment(outcome: TriageOutcome, config: TriageConfig) -> str:
    diagnosis = outcome.diagnosis
    parts = [
        "## 🔍 CI Failure Triage\n\n",
        "| | |\n|---|---|\n",
        f"| **Category** | `{diagnosis.category}` |\n",
        f"| **Confidence** | {diagnosis.confidence} |\n",
        f"| **Auto-fixable** | {str(diagnosis.fixable).lower()} |\n\n",
        f"### Root Cause\n\n{diagnosis.root_cause}\n\n",
        f"### Suggested Fix\n\n{diagnosis.suggested_fix}\n",
    ]

    if diagnosis.affected_files:
        parts.append("\n### Affected Files\n\n")
        parts.extend(f"- `{f}`\n" for f in diagnosis.affected_files)

    if outcome.change:
        parts.append(f"\n### Auto-Fix\n\n🔧 [Draft PR with proposed fix]({outcome.change.pr_url})\n")
    elif outcome.fix_error:
        parts.append(f"\n### Auto-Fix\n\n⚠️ Auto-fix was attempted but failed: `{outcome.fix_error}`\n")
    elif outcome.fix_attempted:
        parts.append("\n### Auto-Fix\n\nAuto-fix was attempted but produced no confident fix.\n")
    elif diagnosis.fixable:
        parts.append("\n### Auto-Fix\n\nAuto-fix was not attempted (disabled for this repository).\n")

    parts.append(f"\n---\n*[View workflow run]({config.run_url}) · Triaged by ci-triage*\n")
    return "".join(parts)


def build_slack_blocks(
    outcome: TriageOutcome,
    config: TriageConfig,
    failed_job_names: list[str],
    now: Optional[datetime] = None,
) -> list[dict]:
    diagnosis = outcome.diagnosis
    root_cause = diagnosis.root_cause
    if len(root_cause) > SLACK_TEXT_LIMIT:
        root_cause = root_cause[:SLACK_TEXT_LIMIT] + "..."
    failed_jobs = ", ".join(failed_job_names) or "unknown"
    timestamp = (now or datetime.now(timezone.utc)).isoformat()

    return [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": f":rotating_light: CI Failure: {config.repository}"},
        },
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f"*Category:* {diagnosis.category}\n"
                    f"*Confidence:* {diagnosis.confidence}\n"
                    f"*Failed Jobs:* {failed_jobs}\n"
                    f"*Run:* <{config.run_url}|View Run>"
                ),
            },
        },
        {"type": "divider"},
        {"type": "section", "text": {"type": "mrkdwn", "text": f"*Root Cause:*\n{root_cause}"}},
        {"type": "section", "text": {"type": "mrkdwn", "text": fix_status_text(outcome, config.auto_fix)}},
        {
            "type": "context",
            "elements": [{"type": "mrkdwn", "text": f"Triaged by ci-triage | {timestamp}"}],
        },
    ]


class Reporter:
    """Posts the outcome to the PR (if any) and to Slack (if configured)."""

    def __init__(
        self,
        github: GitHubClient,
        config: TriageConfig,
        slack: Optional[SlackWebhookClient] = None,
    ):
        self.github = github
        self.config = config
        self.slack = slack

    async def comment_on_pr(self, outcome: TriageOutcome, run: Optional[WorkflowRun]) -> bool:
        """Post the triage comment. Returns False when the run has no pull request."""
        if run is None or run.pr_number is None:
            logger.info("No pull request associated with this run, skipping PR comment", extra={"stage": "report"})
            return False
        try:
            await self.github.create_issue_comment(run.pr_number, build_pr_comment(outcome, self.config))
        except httpx.HTTPError as e:
            raise ReportError(f"creating PR comment: {e}") from e
        except Exception as e:
            logger.exception("Unexpected error while commenting on PR", extra={"stage": "report"})
            raise ReportError(f"creating PR comment: unexpected error: {e}") from e
        logger.info("Posted triage comment on PR", extra={"stage": "report", "extra": {"pr": run.pr_number}})
        return True

    async def notify_slack(self, outcome: TriageOutcome, failed_job_names: list[str]) -> bool:
        """Send the Slack notification. Returns False when no webhook is configured."""
        if self.slack is None:
            logger.warning("SLACK_WEBHOOK_URL not set, skipping Slack notification", extra={"stage": "report"})
            return False
        try:
            await self.slack.post_blocks(build_slack_blocks(outcome, self.config, failed_job_names))
        except ReportError:
            raise
        except Exception as e:
            logger.exception("Unexpected error while notifying Slack", extra={"stage": "report"})
            raise ReportError(f"sending Slack notification: unexpected error: {e}") from e
        return True

    async def report(
        self, outcome: TriageOutcome, run: Optional[WorkflowRun], failed_job_names: list[str],
    ) -> list[str]:
        """Run both sinks; returns the error messages of the sinks that failed."""
        errors: list[str] = []
        try:
            await self.comment_on_pr(outcome, run)
        except ReportError as e:
            logger.error("Failed to comment on PR", extra={"stage": "report", "action": "comment_error", "extra": str(e)})
            errors.append(str(e))
        try:
            await self.notify_slack(outcome, failed_job_names)
        except ReportError as e:
            logger.error("Failed to send Slack notification", extra={"stage": "report", "action": "slack_error", "extra": str(e)})
            errors.append(str(e))
        return errors
