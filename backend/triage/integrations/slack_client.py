"""
Slack incoming-webhook client.
"""

from typing import Optional

import httpx

from triage.errors import ReportError
from triage.utils.logger import get_logger

logger = get_logger("slack_client")

WEBHOOK_TIMEOUT_SECONDS = 10.0


class SlackWebhookClient:
    """POSTs Block Kit payloads to a single incoming webhook."""

    def __init__(self, webhook_url: str, http_client: Optional[httpx.AsyncClient] = None):
        self.webhook_url = webhook_url
        self._client = http_client

    async def post_blocks(self, blocks: list[dict]) -> None:
        """Send a block payload. Raises ReportError unless Slack answers 200."""
        payload = {"blocks": blocks}
        try:
            if self._client is not None:
                resp = await self._client.post(self.webhook_url, json=payload, timeout=WEBHOOK_TIMEOUT_SECONDS)
            else:
                async with httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT_SECONDS) as client:
                    resp = await client.post(self.webhook_url, json=payload)
        except httpx.HTTPError as e:
            raise ReportError(f"posting to Slack webhook: {e}") from e

        if resp.status_code != 200:
            logger.warning("Slack webhook returned non-200 status", extra={
                "action": "slack_error",
                "extra": {"status": resp.status_code, "body": resp.text[:500]},
            })
            raise ReportError(f"Slack webhook returned status {resp.status_code}")

        logger.info("Sent Slack notification", extra={"action": "slack_sent"})
