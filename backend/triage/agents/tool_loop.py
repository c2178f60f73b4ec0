import asyncio
import json
import re
from dataclasses import dataclass, field

from triage.errors import ContentFilterError, ModelsAPIError, RoundLimitExceeded, TokenLimitError, ToolLoopError
from triage.integrations.connection_config import DEFAULT_MAX_ROUNDS, ModelProfile
from triage.models.schemas import Message, ToolDefinition
from triage.tools.codebase_tools import truncate_text
from triage.tools.tool_executor import ToolExecutor
from triage.tools.tool_registry import ToolSet
from triage.utils.llm_client import ModelsClient
from triage.utils.logger import get_logger

logger = get_logger(__name__)

COMPRESSED_MAX_CHARS = 500
COMPRESSED_MARKER = "\n... (truncated to fit token limit)"
CONTENT_FILTER_RETRIES = 2

# CI logs are full of words like SIGKILL, fatal, panic that trip endpoint-side
# content filters. Longest first so "deadlock" wins over "dead".
_SANITIZE_WORDS = {
    "deadlock": "lockup",
    "destroy": "remove",
    "suicide": "shutdown",
    "aborted": "stopped",
    "hanging": "stalling",
    "killed": "ended",
    "abort": "stop",
    "dying": "failing",
    "death": "failure",
    "fatal": "critical",
    "panic": "crash",
    "kill": "end",
    "hang": "stall",
    "dead": "inactive",
    "die": "fail",
}
_SANITIZE_PATTERN = re.compile(
    "|".join(sorted(_SANITIZE_WORDS, key=len, reverse=True)), re.IGNORECASE,
)
_SANITIZED_ROLES = ("system", "user", "tool")
_SECRET_KEY_HINTS = ("token", "secret", "password")


def _match_case(original: str, replacement: str) -> str:
    if original.isupper():
        return replacement.upper()
    if original[0].isupper():
        return replacement[0].upper() + replacement[1:]
    return replacement


def sanitize_text(text: str) -> str:
    """Case-preserving substitution of content-filter trigger words. Lossy."""
    return _SANITIZE_PATTERN.sub(
        lambda m: _match_case(m.group(0), _SANITIZE_WORDS[m.group(0).lower()]), text,
    )


def sanitize_messages(messages: list[Message]) -> list[Message]:
    """Copy of ``messages`` with system/user/tool content sanitized. Assistant turns are left as sent."""
    return [
        m.model_copy(update={"content": sanitize_text(m.content)})
        if m.role in _SANITIZED_ROLES and m.content else m
        for m in messages
    ]


def compress_messages(messages: list[Message]) -> list[Message]:
    """Copy of ``messages`` with every tool result capped at COMPRESSED_MAX_CHARS."""
    return [
        m.model_copy(update={"content": truncate_text(m.content, COMPRESSED_MAX_CHARS, COMPRESSED_MARKER)})
        if m.role == "tool" and m.content and len(m.content) > COMPRESSED_MAX_CHARS else m
        for m in messages
    ]


def _preview_arguments(arguments: str) -> object:
    try:
        parsed = json.loads(arguments) if arguments else {}
    except json.JSONDecodeError:
        return arguments[:200]
    if not isinstance(parsed, dict):
        return parsed
    return {
        k: ("***" if any(h in k.lower() for h in _SECRET_KEY_HINTS) else v)
        for k, v in parsed.items()
    }


@dataclass
class _Conversation:
    messages: list[Message]
    sanitized: bool = False
    tool_calls: int = field(default=0)


class ToolLoop:
    """Bounded tool-calling conversation with a chat-completion endpoint.

    1. Send the history plus tool definitions
    2. If the model answers without tool calls: return its text
    3. Otherwise run every tool call in order, append the results, loop
    4. Give up with RoundLimitExceeded after max_rounds

    Rate limiting is absorbed by the client. Token-limit and content-filter
    rejections are recovered here, once per round.
    """

    def __init__(
        self,
        client: ModelsClient,
        executor: ToolExecutor,
        profile: ModelProfile,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        content_filter_delays: tuple[float, ...] = (1.0, 2.0),
    ):
        self.client = client
        self.executor = executor
        self.profile = profile
        self.max_rounds = max_rounds
        self._content_filter_delays = content_filter_delays[:CONTENT_FILTER_RETRIES]

    async def run_tool_loop(self, system_prompt: str, user_prompt: str, tool_set: ToolSet) -> str:
        """Drive the conversation until the model produces a final answer.

        Raises:
            ToolLoopError: a chat round failed after recovery was attempted
            RoundLimitExceeded: the model was still calling tools after max_rounds
        """
        conversation = _Conversation(messages=[
            Message(role="system", content=system_prompt),
            Message(role="user", content=user_prompt),
        ])
        tools = tool_set.definitions()

        logger.info("Tool loop started", extra={
            "action": "loop_start",
            "extra": {"tool_set": tool_set.name, "max_rounds": self.max_rounds},
        })

        for round_number in range(1, self.max_rounds + 1):
            response = await self._chat_round(conversation, tools, round_number)
            choice = response.choices[0]
            message = choice.message
            conversation.messages.append(message)

            if choice.finish_reason != "tool_calls" or not message.tool_calls:
                logger.info("Tool loop complete", extra={
                    "action": "loop_complete", "round": round_number,
                    "extra": {
                        "finish_reason": choice.finish_reason,
                        "tool_calls": conversation.tool_calls,
                        "sanitized": conversation.sanitized,
                        "usage": self.client.get_total_usage().model_dump(),
                    },
                })
                return (message.content or "").strip()

            for tool_call in message.tool_calls:
                name = tool_call.function.name
                logger.info("Tool called", extra={
                    "action": "tool_call", "tool": name, "round": round_number,
                    "extra": {"id": tool_call.id, "input": _preview_arguments(tool_call.function.arguments)},
                })
                result = await self.executor.execute(name, tool_call.function.arguments, tool_set)
                result = truncate_text(result, self.profile.max_result_chars)
                logger.info("Tool result", extra={
                    "action": "tool_result", "tool": name, "round": round_number,
                    "extra": {"result_length": len(result), "preview": result[:300]},
                })
                conversation.tool_calls += 1
                conversation.messages.append(
                    Message(role="tool", content=result, tool_call_id=tool_call.id)
                )

        logger.warning("Max rounds reached", extra={"action": "max_rounds", "extra": {"max": self.max_rounds}})
        raise RoundLimitExceeded(self.max_rounds)

    async def _send(self, conversation: _Conversation, tools: list[ToolDefinition]):
        outgoing = list(conversation.messages)
        if conversation.sanitized:
            outgoing = sanitize_messages(outgoing)
        return await self.client.chat(outgoing, tools)

    async def _chat_round(self, conversation: _Conversation, tools: list[ToolDefinition], round_number: int):
        try:
            return await self._send(conversation, tools)
        except TokenLimitError:
            logger.warning("Token limit exceeded, compressing conversation history", extra={
                "action": "compress", "round": round_number,
            })
            conversation.messages = compress_messages(conversation.messages)
            try:
                return await self._send(conversation, tools)
            except ModelsAPIError as e:
                raise ToolLoopError(f"chat round {round_number} (after compress): {e}", round_number) from e
        except ContentFilterError as e:
            logger.warning("Content filter triggered, retrying sanitized", extra={
                "action": "content_filter", "round": round_number,
            })
            # Later rounds stay sanitized; the stored history keeps the raw text.
            conversation.sanitized = True
            last_error: ModelsAPIError = e
            for retry, delay in enumerate(self._content_filter_delays, start=1):
                await asyncio.sleep(delay)
                try:
                    return await self._send(conversation, tools)
                except ContentFilterError as retry_error:
                    last_error = retry_error
                    logger.warning("Content filter retry failed", extra={
                        "action": "content_filter_retry", "round": round_number, "extra": {"retry": retry},
                    })
                except ModelsAPIError as retry_error:
                    raise ToolLoopError(f"chat round {round_number}: {retry_error}", round_number) from retry_error
            raise ToolLoopError(f"chat round {round_number} (content filter): {last_error}", round_number) from last_error
        except ModelsAPIError as e:
            raise ToolLoopError(f"chat round {round_number}: {e}", round_number) from e
