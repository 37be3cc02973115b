import json

import pytest

from openai_adapter.domain.exceptions import (
    ContextTooComplex,
    ModelNotAvailable,
    ApiError,
    RateLimitExceeded,
    ResponseDecodeError,
    StreamDecodeError,
    TransportError,
)
from openai_adapter.domain.models import ChatResult
from openai_adapter.domain.transcript import (
    GenerationOptions,
    Instructions,
    Prompt,
    Response,
    TextSegment,
    ToolCalls,
    ToolDefinition,
)
from openai_adapter.providers import create_client
from openai_adapter.providers.openai_client import OpenAIChatClient, parse_arguments
from openai_adapter.providers.rate_limiter import RateLimiter
from openai_adapter.providers.registry import ModelFamily, resolve_model
from openai_adapter.providers.retry import RetryPolicy


class SettingsStub:
    openai_api_key = "sk-test-key-123"
    openai_base_url = "https://api.openai.com/v1"
    openai_organization = None
    http_timeout = 1.0
    default_model = "gpt-4o"
    enable_rate_limit = True
    requests_per_minute = 60
    retry_max_attempts = 2
    retry_initial_delay = 0.0
    retry_max_delay = 0.0
    retry_backoff_multiplier = 2.0


class FakeHTTP:
    """替代 OpenAIHTTPClient：记录请求，按顺序返回预置结果或抛出预置异常。"""

    def __init__(self, results=None, stream_chunks=None):
        self.results = list(results or [])
        self.stream_chunks = stream_chunks or []
        self.requests = []

    def send(self, request):
        self.requests.append(request)
        item = self.results.pop(0)
        if isinstance(item, Exception):
            raise item
        return ChatResult.from_payload(item)

    def open_stream(self, request):
        self.requests.append(request)
        for chunk in self.stream_chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


def _transcript(**prompt_kwargs):
    return [Instructions(segments=[TextSegment("You are helpful")]), Prompt(segments=[TextSegment("Hi")], **prompt_kwargs)]


def _text_body(text):
    return {"id": "x", "model": "gpt-4o", "choices": [{"index": 0, "message": {"role": "assistant", "content": text}, "finish_reason": "stop"}]}


def _client(http, model="gpt-4o", **kw):
    return OpenAIChatClient(resolve_model(model), SettingsStub(), http=http, **kw)


def test_buffered_call_end_to_end(monkeypatch):
    captured = {}

    class Resp:
        status_code = 200
        headers = {}

        def json(self):
            return _text_body("Hello!")

        @property
        def text(self):
            return json.dumps(self.json())

    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, url, content=None, **_):
            captured["payload"] = json.loads(content)
            return Resp()

    monkeypatch.setattr("httpx.Client", Client)
    client = OpenAIChatClient(resolve_model("gpt-4o"), SettingsStub())
    entry = client.chat(_transcript())
    assert isinstance(entry, Response)
    assert entry.segments[0].content == "Hello!"
    messages = captured["payload"]["messages"]
    assert [m["role"] for m in messages] == ["system", "user"]
    assert messages[0]["content"] == "You are helpful"


def test_chat_returns_tool_calls_with_structured_arguments():
    body = {
        "id": "x",
        "model": "gpt-4o",
        "choices": [{
            "index": 0,
            "message": {"role": "assistant", "content": None, "tool_calls": [
                {"id": "call_1", "type": "function", "function": {"name": "get_weather", "arguments": '{"city":"Tokyo"}'}}
            ]},
            "finish_reason": "tool_calls",
        }],
    }
    transcript = [
        Instructions(segments=[TextSegment("sys")], tool_definitions=[ToolDefinition(name="get_weather")]),
        Prompt(segments=[TextSegment("weather?")]),
    ]
    http = FakeHTTP([body])
    entry = _client(http).chat(transcript)
    assert isinstance(entry, ToolCalls)
    assert entry.calls[0].id == "call_1"
    assert entry.calls[0].tool_name == "get_weather"
    assert entry.calls[0].arguments == {"city": "Tokyo"}
    assert http.requests[0].tools[0].function.name == "get_weather"


def test_options_from_prompt_are_applied_and_constrained_family_respected():
    http = FakeHTTP([_text_body("ok")])
    client = _client(http, model="o3-mini")
    client.chat(_transcript(options=GenerationOptions(temperature=0.9, max_output_tokens=100)))
    payload = json.loads(http.requests[0].encode())
    assert "temperature" not in payload
    assert payload["max_completion_tokens"] == 100


def test_vendor_errors_are_mapped():
    envelope = {"error": {"message": "no such model", "type": "invalid_request_error", "code": "model_not_found"}}
    http = FakeHTTP([ApiError.from_envelope(envelope, 404)])
    with pytest.raises(ModelNotAvailable) as exc:
        _client(http).chat(_transcript())
    assert isinstance(exc.value.__cause__, ApiError)


def test_family_specific_error_mapping_through_client():
    raw = ApiError(message="too deep", code="context_too_complex")
    with pytest.raises(ContextTooComplex):
        _client(FakeHTTP([raw]), model="o1").chat(_transcript())
    raw = ApiError(message="too deep", code="context_too_complex")
    with pytest.raises(ApiError):
        _client(FakeHTTP([raw])).chat(_transcript())


def test_no_retry_by_default():
    http = FakeHTTP([TransportError("down"), _text_body("ok")])
    with pytest.raises(TransportError):
        _client(http).chat(_transcript())
    assert len(http.requests) == 1


def test_retry_policy_retries_mapped_rate_limit():
    sleeps = []
    http = FakeHTTP([ApiError(message="slow", code="rate_limit_exceeded"), _text_body("ok")])
    client = _client(http, retry_policy=RetryPolicy(max_attempts=3, initial_delay=0.5), sleep=sleeps.append)
    entry = client.chat(_transcript())
    assert entry.segments[0].content == "ok"
    assert len(http.requests) == 2
    assert sleeps == [0.5]


def test_rate_limiter_is_consulted_per_call():
    limiter = RateLimiter(100)
    client = _client(FakeHTTP([_text_body("a"), _text_body("b")]), rate_limiter=limiter)
    client.chat(_transcript())
    client.chat(_transcript())
    assert limiter.in_flight() == 2


def _sse(*payloads):
    body = "".join(f"data: {json.dumps(p)}\n\n" for p in payloads) + "data: [DONE]\n\n"
    return body.encode()


def _delta(content=None, tool_calls=None, finish_reason=None):
    delta = {}
    if content is not None:
        delta["content"] = content
    if tool_calls is not None:
        delta["tool_calls"] = tool_calls
    return {"id": "c", "model": "gpt-4o", "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}]}


def test_chat_stream_yields_text_entries():
    body = _sse(_delta("Hel"), _delta("lo"), _delta("!", finish_reason="stop"))
    http = FakeHTTP(stream_chunks=[body[:30], body[30:]])
    entries = list(_client(http).chat_stream(_transcript()))
    assert [e.segments[0].content for e in entries] == ["Hel", "lo", "!"]
    assert all(isinstance(e, Response) for e in entries)
    assert http.requests[0].stream is True


def test_chat_stream_yields_tool_calls_once_complete():
    body = _sse(
        _delta(tool_calls=[{"index": 0, "id": "call_1", "function": {"name": "get_weather", "arguments": '{"loc'}}]),
        _delta(tool_calls=[{"index": 0, "function": {"arguments": 'ation":"Tokyo"}'}}]),
        _delta(finish_reason="tool_calls"),
    )
    entries = list(_client(FakeHTTP(stream_chunks=[body])).chat_stream(_transcript()))
    assert len(entries) == 1
    assert isinstance(entries[0], ToolCalls)
    assert entries[0].calls[0].arguments == {"location": "Tokyo"}


def test_abandoned_chat_stream_closes_connection():
    state = {"closed": False}

    class ClosingHTTP(FakeHTTP):
        def open_stream(self, request):
            try:
                yield from super().open_stream(request)
            finally:
                state["closed"] = True

    body = _sse(_delta("a"), _delta("b"))
    stream = _client(ClosingHTTP(stream_chunks=[body[:40], body[40:]])).chat_stream(_transcript())
    first = next(stream)
    assert first.segments[0].content == "a"
    stream.close()
    assert state["closed"]


def test_chat_stream_errors_propagate_typed():
    http = FakeHTTP(stream_chunks=[RateLimitExceeded(retry_after=1.0)])
    with pytest.raises(RateLimitExceeded):
        list(_client(http).chat_stream(_transcript()))
    http = FakeHTTP(stream_chunks=[b"data: {broken\n"])
    with pytest.raises(StreamDecodeError):
        list(_client(http).chat_stream(_transcript()))


def test_token_helpers():
    client = _client(FakeHTTP())
    assert client.estimate_token_count("") == 1
    assert client.estimate_token_count("a" * 40) == 10
    small = OpenAIChatClient(resolve_model("tiny-model"), SettingsStub(), http=FakeHTTP())
    assert not small.would_exceed_context("short text")
    assert client.would_exceed_context("x" * (128_000 * 4 + 4))


def test_truncate_to_context_cuts_at_word_boundary():
    client = _client(FakeHTTP())
    limit_chars = (128_000 - 1000) * 4
    text = ("word " * (limit_chars // 5 + 100)).strip()
    truncated = client.truncate_to_context(text)
    assert len(truncated) <= limit_chars
    assert not truncated.endswith(" ")
    assert text.startswith(truncated)
    assert client.truncate_to_context("short") == "short"


def test_model_info():
    info = _client(FakeHTTP(), model="o1").model_info()
    assert info["provider"] == "openai"
    assert info["family"] == "constrained"
    assert info["context_window"] == 200_000
    assert "reasoning" in info["capabilities"]


def test_parse_arguments():
    assert parse_arguments("") == {}
    assert parse_arguments('{"a": [1]}') == {"a": [1]}
    with pytest.raises(ResponseDecodeError):
        parse_arguments('{"a": NaN}')


def test_create_client_uses_settings(monkeypatch):
    monkeypatch.setattr("openai_adapter.providers.settings", SettingsStub())
    client = create_client()
    assert isinstance(client, OpenAIChatClient)
    assert client.model.identifier == "gpt-4o"
    assert client._rate_limiter.requests_per_minute == 60
    assert client._retry_policy is None

    constrained = create_client("my-model", family=ModelFamily.CONSTRAINED, retry=True)
    assert constrained.model.family is ModelFamily.CONSTRAINED
    assert constrained._retry_policy == RetryPolicy(2, 0.0, 0.0, 2.0)
