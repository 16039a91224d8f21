import asyncio
import json

import httpx
import pytest

from fork_ai.errors import ChatError, classify_exception, describe_error
from fork_ai.providers.ollama import (
    ChatOptions,
    build_chat_body,
    list_models,
    normalize_base_url,
    stream_chat,
)
from fork_ai.stream import complete
from fork_ai.types import Settings

from tests.helpers import ndjson, user_msg


def _transport(handler):
    return httpx.MockTransport(handler)


async def _collect(stream):
    events = [event async for event in stream]
    return events, await stream.result()


def test_normalize_base_url():
    assert normalize_base_url("http://localhost:11434") == "http://localhost:11434"
    assert normalize_base_url("http://localhost:11434///") == "http://localhost:11434"
    assert normalize_base_url(" http://host:1/api/ ") == "http://host:1"
    assert normalize_base_url("http://host:1/v1/api") == "http://host:1/v1"


def test_build_chat_body_shape():
    settings = Settings(model="qwen", temperature=0.2, max_output_tokens=0, keep_alive="10m")
    body = build_chat_body([user_msg("hi")], settings)
    assert body == {
        "model": "qwen",
        "messages": [{"role": "user", "content": "hi"}],
        "stream": True,
        "keep_alive": "10m",
        "options": {"temperature": 0.2, "num_predict": -1},
    }
    assert build_chat_body([], Settings(max_output_tokens=256))["options"]["num_predict"] == 256


@pytest.mark.asyncio
async def test_stream_chat_success():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            content=ndjson(
                {"message": {"role": "assistant", "content": "Hel"}},
                {"message": {"role": "assistant", "content": "lo"}},
                {"done": True, "eval_count": 10, "eval_duration": 2_000_000_000, "total_duration": 7},
            ),
        )

    payloads = []
    settings = Settings(model="llama3", base_url="http://server:11434/api/")
    stream = stream_chat(
        [user_msg("hello")],
        settings,
        ChatOptions(transport=_transport(handler), on_payload=payloads.append),
    )
    events, result = await _collect(stream)

    assert seen["url"] == "http://server:11434/api/chat"
    assert seen["body"]["messages"] == [{"role": "user", "content": "hello"}]
    assert payloads == [seen["body"]]
    assert [event["type"] for event in events] == ["start", "text_delta", "text_delta", "stats"]
    assert result.status == "completed"
    assert result.text == "Hello"
    assert result.stats.tokens_per_second == 5.0


@pytest.mark.asyncio
async def test_stream_chat_404_is_model_not_found():
    def handler(request):
        return httpx.Response(404, json={"error": "model 'ghost' not found"})

    events, result = await _collect(
        stream_chat([user_msg("hi")], Settings(model="ghost"), ChatOptions(transport=_transport(handler)))
    )
    assert events[-1]["type"] == "error"
    assert result.status == "error"
    assert result.error_kind == "model_not_found"
    assert "404" in result.error_message


@pytest.mark.asyncio
async def test_stream_chat_server_error_is_http():
    def handler(request):
        return httpx.Response(500, text="boom")

    _, result = await _collect(stream_chat([], Settings(), ChatOptions(transport=_transport(handler))))
    assert result.error_kind == "http"
    assert "boom" in result.error_message


@pytest.mark.asyncio
async def test_stream_chat_unreachable():
    def handler(request):
        raise httpx.ConnectError("Connection refused", request=request)

    _, result = await _collect(stream_chat([], Settings(), ChatOptions(transport=_transport(handler))))
    assert result.status == "error"
    assert result.error_kind == "unreachable"


@pytest.mark.asyncio
async def test_stream_chat_error_record_stops_stream():
    def handler(request):
        return httpx.Response(
            200,
            content=ndjson({"message": {"content": "par"}}, {"error": "runner crashed"}, {"message": {"content": "x"}}),
        )

    events, result = await _collect(stream_chat([], Settings(), ChatOptions(transport=_transport(handler))))
    assert [event["type"] for event in events] == ["start", "text_delta", "error"]
    assert result.status == "error"
    assert result.error_kind == "protocol"
    assert "runner crashed" in result.error_message


@pytest.mark.asyncio
async def test_stream_chat_respects_abort_signal():
    requests = []
    signal = asyncio.Event()
    signal.set()

    def handler(request):
        requests.append(request)
        return httpx.Response(200, content=ndjson({"message": {"content": "never"}}))

    events, result = await _collect(
        stream_chat([], Settings(), ChatOptions(signal=signal, transport=_transport(handler)))
    )
    assert all(event["type"] != "text_delta" for event in events)
    assert result.status == "aborted"
    assert requests == []


@pytest.mark.asyncio
async def test_complete_returns_result():
    def handler(request):
        return httpx.Response(200, content=ndjson({"message": {"content": "ok"}}, {"done": True}))

    result = await complete([user_msg("hi")], Settings(), ChatOptions(transport=_transport(handler)))
    assert result.status == "completed"
    assert result.text == "ok"
    assert result.stats is None


@pytest.mark.asyncio
async def test_list_models_sorted():
    def handler(request):
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": [{"name": "mistral"}, {"name": "llama3"}, {"name": "gemma"}]})

    names = await list_models("http://server:11434/api", transport=_transport(handler))
    assert names == ["gemma", "llama3", "mistral"]


@pytest.mark.asyncio
async def test_list_models_empty_and_malformed():
    def empty(request):
        return httpx.Response(200, json={"models": []})

    def malformed(request):
        return httpx.Response(200, json={"unexpected": True})

    def not_json(request):
        return httpx.Response(200, content=b"<html>gateway</html>")

    assert await list_models("http://server", transport=_transport(empty)) == []
    assert await list_models("http://server", transport=_transport(malformed)) == []
    assert await list_models("http://server", transport=_transport(not_json)) == []


@pytest.mark.asyncio
async def test_list_models_failure_raises_chat_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ChatError) as info:
        await list_models("http://server", transport=_transport(handler))
    assert info.value.kind == "unreachable"


def test_classify_and_describe_errors():
    assert classify_exception(RuntimeError("model 'x' not found")).kind == "unknown"
    assert classify_exception(httpx.ReadError("reset")).kind == "network"

    settings = Settings(model="phi3", base_url="http://gpu:11434")
    assert 'Model "phi3" was not found' in describe_error("model_not_found", "x", settings)
    assert "ollama pull phi3" in describe_error("model_not_found", "x", settings)
    assert "http://gpu:11434" in describe_error("unreachable", "x", settings)
    assert describe_error("empty_response", None, settings) == "The model returned an empty response."
    assert describe_error("http", "500 boom", settings).endswith("500 boom")
