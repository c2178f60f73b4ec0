import json

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from triage.errors import ContentFilterError, ModelsAPIError, RateLimitExhausted, TokenLimitError
from triage.models.schemas import Message
from triage.tools.tool_registry import DIAGNOSTIC_TOOL_SET
from triage.utils.llm_client import MAX_RATE_LIMIT_ATTEMPTS, ModelsClient

URL = "https://models.example.test/chat/completions"

OK_BODY = {
    "choices": [{"message": {"role": "assistant", "content": "done"}, "finish_reason": "stop"}],
    "usage": {"prompt_tokens": 100, "completion_tokens": 50},
}


def _client(responses, seen=None) -> ModelsClient:
    """ModelsClient whose transport answers with ``responses`` in order."""
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return queue.pop(0)

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ModelsClient("ghs_token", "openai/gpt-4o", URL, http_client=http)


MESSAGES = [Message(role="user", content="why did CI fail?")]


@pytest.mark.asyncio
async def test_client_tracks_tokens():
    client = _client([httpx.Response(200, json=OK_BODY)])
    response = await client.chat(MESSAGES)
    assert response.choices[0].message.content == "done"
    usage = client.get_total_usage()
    assert usage.total_tokens == 150
    assert usage.model == "openai/gpt-4o"


@pytest.mark.asyncio
async def test_client_accumulates_and_resets_tokens():
    client = _client([httpx.Response(200, json=OK_BODY), httpx.Response(200, json=OK_BODY)])
    await client.chat(MESSAGES)
    await client.chat(MESSAGES)
    usage = client.get_total_usage()
    assert usage.input_tokens == 200
    assert usage.output_tokens == 100
    client.reset_usage()
    assert client.get_total_usage().total_tokens == 0


@pytest.mark.asyncio
async def test_request_payload_and_auth():
    seen = []
    client = _client([httpx.Response(200, json=OK_BODY)], seen)
    await client.chat(MESSAGES, DIAGNOSTIC_TOOL_SET.definitions())

    request = seen[0]
    assert request.headers["Authorization"] == "Bearer ghs_token"
    body = json.loads(request.content)
    assert body["model"] == "openai/gpt-4o"
    assert body["messages"] == [{"role": "user", "content": "why did CI fail?"}]
    assert [t["function"]["name"] for t in body["tools"]] == list(DIAGNOSTIC_TOOL_SET.tool_names)
    assert all(t["type"] == "function" for t in body["tools"])


@pytest.mark.asyncio
async def test_rate_limit_backoff_doubles():
    client = _client([httpx.Response(429)] * 3 + [httpx.Response(200, json=OK_BODY)])
    with patch("triage.utils.llm_client.asyncio.sleep", new_callable=AsyncMock) as sleep:
        response = await client.chat(MESSAGES)

    assert response.choices[0].message.content == "done"
    delays = [c.args[0] for c in sleep.await_args_list]
    assert delays == [5.0, 10.0, 20.0]
    assert sum(delays) >= 35.0


@pytest.mark.asyncio
async def test_rate_limit_exhausted():
    client = _client([httpx.Response(429)] * MAX_RATE_LIMIT_ATTEMPTS)
    with patch("triage.utils.llm_client.asyncio.sleep", new_callable=AsyncMock) as sleep:
        with pytest.raises(RateLimitExhausted) as exc_info:
            await client.chat(MESSAGES)
    assert "ran out of retries" in str(exc_info.value)
    assert sleep.await_count == MAX_RATE_LIMIT_ATTEMPTS - 1


@pytest.mark.asyncio
async def test_413_is_token_limit():
    client = _client([httpx.Response(413, text="too large")])
    with pytest.raises(TokenLimitError) as exc_info:
        await client.chat(MESSAGES)
    assert exc_info.value.status_code == 413


@pytest.mark.asyncio
async def test_400_content_filter():
    body = {"error": {"code": "content_filter", "message": "filtered"}}
    client = _client([httpx.Response(400, json=body)])
    with pytest.raises(ContentFilterError):
        await client.chat(MESSAGES)


@pytest.mark.asyncio
async def test_plain_400_is_generic_error():
    client = _client([httpx.Response(400, text="bad request")])
    with pytest.raises(ModelsAPIError) as exc_info:
        await client.chat(MESSAGES)
    assert not isinstance(exc_info.value, ContentFilterError)
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_empty_choices():
    client = _client([httpx.Response(200, json={"choices": []})])
    with pytest.raises(ModelsAPIError, match="empty choices"):
        await client.chat(MESSAGES)


@pytest.mark.asyncio
async def test_undecodable_body():
    client = _client([httpx.Response(200, text="<html>gateway</html>")])
    with pytest.raises(ModelsAPIError, match="decoding"):
        await client.chat(MESSAGES)


@pytest.mark.asyncio
async def test_transport_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = ModelsClient(
        "t", "m", URL, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    with pytest.raises(ModelsAPIError, match="calling models API"):
        await client.chat(MESSAGES)
