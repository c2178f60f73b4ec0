import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from triage.agents.tool_loop import (
    COMPRESSED_MAX_CHARS,
    ToolLoop,
    compress_messages,
    sanitize_messages,
    sanitize_text,
)
from triage.errors import (
    ContentFilterError,
    ModelsAPIError,
    RoundLimitExceeded,
    TokenLimitError,
    ToolLoopError,
)
from triage.integrations.connection_config import ModelProfile
from triage.models.schemas import (
    ChatChoice,
    ChatResponse,
    FunctionCall,
    Message,
    TokenUsage,
    ToolCall,
)
from triage.tools.tool_registry import DIAGNOSTIC_TOOL_SET

PROFILE = ModelProfile(max_result_chars=100, default_tail_lines=50, max_tail_lines=200)


def _final(text: str) -> ChatResponse:
    return ChatResponse(choices=[ChatChoice(
        message=Message(role="assistant", content=text), finish_reason="stop",
    )])


def _tool_round(*calls: tuple[str, str, str]) -> ChatResponse:
    return ChatResponse(choices=[ChatChoice(
        message=Message(role="assistant", tool_calls=[
            ToolCall(id=call_id, function=FunctionCall(name=name, arguments=args))
            for call_id, name, args in calls
        ]),
        finish_reason="tool_calls",
    )])


def _make_loop(responses, tool_result="ok", max_rounds=5):
    client = MagicMock()
    client.chat = AsyncMock(side_effect=responses)
    client.get_total_usage = MagicMock(return_value=TokenUsage(
        model="m", input_tokens=0, output_tokens=0, total_tokens=0,
    ))
    executor = MagicMock()
    executor.execute = AsyncMock(return_value=tool_result)
    loop = ToolLoop(client, executor, PROFILE, max_rounds=max_rounds, content_filter_delays=(0, 0))
    return loop, client, executor


def _sent_messages(client, call_index):
    return client.chat.await_args_list[call_index].args[0]


class TestToolLoop:

    @pytest.mark.asyncio
    async def test_returns_final_answer_trimmed(self):
        loop, client, executor = _make_loop([_final("  {\"a\": 1}\n")])
        assert await loop.run_tool_loop("sys", "user", DIAGNOSTIC_TOOL_SET) == '{"a": 1}'
        executor.execute.assert_not_called()
        first = _sent_messages(client, 0)
        assert [m.role for m in first] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_tool_calls_run_in_order_and_answered_by_id(self):
        loop, client, executor = _make_loop([
            _tool_round(("c1", "list_failed_jobs", "{}"), ("c2", "read_file", '{"path": "a.go"}')),
            _final("done"),
        ])
        executor.execute.side_effect = ["jobs", "file"]

        assert await loop.run_tool_loop("sys", "user", DIAGNOSTIC_TOOL_SET) == "done"

        names = [c.args[0] for c in executor.execute.await_args_list]
        assert names == ["list_failed_jobs", "read_file"]
        second = _sent_messages(client, 1)
        assert [m.role for m in second] == ["system", "user", "assistant", "tool", "tool"]
        assert [(m.tool_call_id, m.content) for m in second[3:]] == [("c1", "jobs"), ("c2", "file")]

    @pytest.mark.asyncio
    async def test_tool_results_truncated_to_profile(self):
        loop, client, _ = _make_loop(
            [_tool_round(("c1", "read_file", '{"path": "big"}')), _final("done")],
            tool_result="x" * 10_000,
        )
        await loop.run_tool_loop("sys", "user", DIAGNOSTIC_TOOL_SET)
        tool_message = _sent_messages(client, 1)[-1]
        assert len(tool_message.content) <= PROFILE.max_result_chars

    @pytest.mark.asyncio
    async def test_round_limit(self):
        responses = [_tool_round((f"c{i}", "list_failed_jobs", "{}")) for i in range(3)]
        loop, client, _ = _make_loop(responses, max_rounds=3)
        with pytest.raises(RoundLimitExceeded) as exc_info:
            await loop.run_tool_loop("sys", "user", DIAGNOSTIC_TOOL_SET)
        assert "exceeded 3 rounds" in str(exc_info.value)
        assert client.chat.await_count == 3

    @pytest.mark.asyncio
    async def test_stop_with_tool_calls_is_final(self):
        response = _tool_round(("c1", "list_failed_jobs", "{}"))
        response.choices[0].finish_reason = "stop"
        response.choices[0].message.content = "answer"
        loop, _, executor = _make_loop([response])
        assert await loop.run_tool_loop("sys", "user", DIAGNOSTIC_TOOL_SET) == "answer"
        executor.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_token_limit_compresses_and_retries(self):
        loop, client, _ = _make_loop(
            [
                _tool_round(("c1", "get_job_logs", '{"job_id": 1}')),
                TokenLimitError("too big", status_code=413),
                _final("done"),
            ],
            tool_result="y" * 2_000,
        )
        loop.profile = ModelProfile(max_result_chars=5_000, default_tail_lines=50, max_tail_lines=200)

        assert await loop.run_tool_loop("sys", "user", DIAGNOSTIC_TOOL_SET) == "done"
        retried = _sent_messages(client, 2)
        assert len(retried[-1].content) <= COMPRESSED_MAX_CHARS

    @pytest.mark.asyncio
    async def test_token_limit_twice_fails(self):
        loop, _, _ = _make_loop([
            TokenLimitError("too big", status_code=413),
            TokenLimitError("still too big", status_code=413),
        ])
        with pytest.raises(ToolLoopError) as exc_info:
            await loop.run_tool_loop("sys", "user", DIAGNOSTIC_TOOL_SET)
        assert "after compress" in str(exc_info.value)
        assert exc_info.value.round_number == 1

    @pytest.mark.asyncio
    async def test_content_filter_retries_sanitized(self):
        loop, client, _ = _make_loop([
            ContentFilterError("filtered", status_code=400),
            _final("done"),
        ])
        assert await loop.run_tool_loop("sys", "job was killed after panic", DIAGNOSTIC_TOOL_SET) == "done"
        retried = _sent_messages(client, 1)
        assert retried[1].content == "job was ended after crash"

    @pytest.mark.asyncio
    async def test_content_filter_default_delays(self):
        client = MagicMock()
        client.chat = AsyncMock(side_effect=[ContentFilterError("filtered", status_code=400)] * 3)
        loop = ToolLoop(client, MagicMock(), PROFILE)

        with patch("triage.agents.tool_loop.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(ToolLoopError, match="content filter"):
                await loop.run_tool_loop("sys", "user", DIAGNOSTIC_TOOL_SET)

        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_content_filter_exhausted(self):
        loop, client, _ = _make_loop([ContentFilterError("filtered", status_code=400)] * 3)
        with pytest.raises(ToolLoopError, match="content filter"):
            await loop.run_tool_loop("sys", "user", DIAGNOSTIC_TOOL_SET)
        assert client.chat.await_count == 3

    @pytest.mark.asyncio
    async def test_other_api_error_is_fatal(self):
        loop, _, _ = _make_loop([ModelsAPIError("status 500", status_code=500)])
        with pytest.raises(ToolLoopError, match="chat round 1"):
            await loop.run_tool_loop("sys", "user", DIAGNOSTIC_TOOL_SET)


class TestSanitize:

    def test_preserves_case(self):
        assert sanitize_text("FATAL: Panic in goroutine, process killed") == \
            "CRITICAL: Crash in goroutine, process ended"

    def test_longest_match_first(self):
        assert sanitize_text("deadlock detected") == "lockup detected"

    def test_noop_without_trigger_words(self):
        text = "compilation failed: undefined reference to foo"
        assert sanitize_text(text) == text

    def test_assistant_messages_untouched(self):
        messages = [
            Message(role="system", content="kill"),
            Message(role="assistant", content="kill"),
            Message(role="tool", content="kill", tool_call_id="c1"),
        ]
        assert [m.content for m in sanitize_messages(messages)] == ["end", "kill", "end"]
        assert messages[0].content == "kill"


class TestCompress:

    def test_only_long_tool_results_shrink(self):
        messages = [
            Message(role="user", content="u" * 2_000),
            Message(role="tool", content="t" * 2_000, tool_call_id="c1"),
            Message(role="tool", content="short", tool_call_id="c2"),
        ]
        compressed = compress_messages(messages)
        assert compressed[0].content == "u" * 2_000
        assert len(compressed[1].content) == COMPRESSED_MAX_CHARS
        assert compressed[2].content == "short"

    def test_idempotent(self):
        messages = [Message(role="tool", content="t" * 2_000, tool_call_id="c1")]
        once = compress_messages(messages)
        assert compress_messages(once) == once
