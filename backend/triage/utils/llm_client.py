import asyncio
import json
import time
from typing import Optional

import httpx
from pydantic import ValidationError

from triage.errors import ContentFilterError, ModelsAPIError, RateLimitExhausted, TokenLimitError
from triage.models.schemas import ChatResponse, Message, TokenUsage, ToolDefinition
from triage.utils.logger import get_logger

logger = get_logger(__name__)

CHAT_TIMEOUT_SECONDS = 300.0
MAX_RATE_LIMIT_ATTEMPTS = 10
INITIAL_BACKOFF_SECONDS = 5.0
CONTENT_FILTER_MARKER = "content_filter"


class ModelsClient:
    """Chat-completions client with rate-limit backoff and cumulative token tracking.

    Classifies failures so the tool loop can recover: 429 is retried here,
    413 raises TokenLimitError, 400 with a content-filter marker raises
    ContentFilterError, anything else raises ModelsAPIError.
    """

    def __init__(
        self,
        token: str,
        model: str,
        url: str,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.model = model
        self.url = url
        self._token = token
        self._client = http_client or httpx.AsyncClient(timeout=CHAT_TIMEOUT_SECONDS)
        self._total_input_tokens = 0
        self._total_output_tokens = 0

    async def aclose(self) -> None:
        await self._client.aclose()

    async def chat(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
    ) -> ChatResponse:
        """Send the conversation with tool definitions. Returns the parsed response."""
        payload: dict = {
            "model": self.model,
            "messages": [m.to_payload() for m in messages],
        }
        if tools:
            payload["tools"] = [t.to_payload() for t in tools]
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._token}",
        }

        logger.info("LLM call", extra={
            "action": "llm_call",
            "tool": self.model,
            "extra": {"message_count": len(messages), "tool_count": len(tools) if tools else 0},
        })

        backoff = INITIAL_BACKOFF_SECONDS
        for attempt in range(1, MAX_RATE_LIMIT_ATTEMPTS + 1):
            start = time.monotonic()
            try:
                resp = await self._client.post(self.url, json=payload, headers=headers)
            except httpx.HTTPError as e:
                logger.error("LLM call failed", extra={"action": "llm_error", "extra": str(e)})
                raise ModelsAPIError(f"calling models API: {e}") from e

            if resp.status_code == 429:
                if attempt == MAX_RATE_LIMIT_ATTEMPTS:
                    break
                logger.warning("Rate limited by models API, backing off", extra={
                    "action": "rate_limited",
                    "extra": {"attempt": attempt, "backoff_seconds": backoff},
                })
                await asyncio.sleep(backoff)
                backoff *= 2
                continue

            if resp.status_code == 413:
                raise TokenLimitError(
                    f"models API token limit exceeded (status 413): {resp.text}",
                    status_code=413, body=resp.text,
                )
            if resp.status_code != 200:
                if resp.status_code == 400 and CONTENT_FILTER_MARKER in resp.text:
                    raise ContentFilterError(
                        f"content filter triggered: {resp.text}",
                        status_code=400, body=resp.text,
                    )
                raise ModelsAPIError(
                    f"models API error (status {resp.status_code}): {resp.text}",
                    status_code=resp.status_code, body=resp.text,
                )

            try:
                response = ChatResponse.model_validate(resp.json())
            except (json.JSONDecodeError, ValidationError) as e:
                raise ModelsAPIError(f"decoding models API response: {e}", status_code=200) from e
            if not response.choices:
                raise ModelsAPIError("models API returned empty choices array", status_code=200)

            elapsed_ms = round((time.monotonic() - start) * 1000)
            input_tokens = response.usage.prompt_tokens if response.usage else 0
            output_tokens = response.usage.completion_tokens if response.usage else 0
            self._total_input_tokens += input_tokens
            self._total_output_tokens += output_tokens

            choice = response.choices[0]
            tool_names = [tc.function.name for tc in choice.message.tool_calls or []]
            logger.info("LLM response", extra={
                "action": "llm_response",
                "tokens": {"input": input_tokens, "output": output_tokens},
                "duration_ms": elapsed_ms,
                "extra": {
                    "finish_reason": choice.finish_reason,
                    "tool_calls": tool_names or None,
                    "attempts": attempt,
                },
            })
            return response

        raise RateLimitExhausted(
            f"ran out of retries calling models API ({MAX_RATE_LIMIT_ATTEMPTS} rate-limited attempts)",
            status_code=429,
        )

    def get_total_usage(self) -> TokenUsage:
        """Get cumulative token usage for this client instance."""
        return TokenUsage(
            model=self.model,
            input_tokens=self._total_input_tokens,
            output_tokens=self._total_output_tokens,
            total_tokens=self._total_input_tokens + self._total_output_tokens,
        )

    def reset_usage(self) -> None:
        self._total_input_tokens = 0
        self._total_output_tokens = 0
