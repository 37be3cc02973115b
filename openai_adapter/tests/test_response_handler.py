import pytest

from openai_adapter.domain.exceptions import (
    ApiError,
    ContextLengthExceeded,
    ContextTooComplex,
    EmptyResponse,
    InvalidRequest,
    ModelNotAvailable,
    NoContent,
    ParameterNotSupported,
    QuotaExceeded,
    RateLimitExceeded,
    ReasoningFailed,
    StatusError,
    TransportError,
)
from openai_adapter.domain.models import ChatResult
from openai_adapter.providers.registry import resolve_model
from openai_adapter.providers.response_handler import extract_content, extract_tool_calls, map_error

GPT = resolve_model("gpt-4o")
O1 = resolve_model("o1")


def _result(message, finish_reason="stop"):
    return ChatResult.from_payload(
        {"id": "x", "model": "gpt-4o", "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}]}
    )


def _api_error(code=None, message="boom", type=None, param=None):
    return ApiError(message=message, type=type, param=param, code=code)


def test_extract_content_returns_text():
    result = _result({"role": "assistant", "content": "Hello!"})
    assert extract_content(result) == "Hello!"
    assert extract_tool_calls(result) is None


def test_extract_content_empty_choices():
    with pytest.raises(EmptyResponse):
        extract_content(ChatResult.from_payload({"id": "x", "model": "m", "choices": []}))


def test_extract_content_no_text_no_tools():
    with pytest.raises(NoContent):
        extract_content(_result({"role": "assistant", "content": None}))
    with pytest.raises(NoContent):
        extract_content(_result({"role": "assistant", "content": ""}))


def test_extract_tool_calls_when_present():
    result = _result(
        {
            "role": "assistant",
            "content": None,
            "tool_calls": [{"id": "call_1", "type": "function",
                            "function": {"name": "get_weather", "arguments": '{"c":1}'}}],
        },
        finish_reason="tool_calls",
    )
    assert extract_content(result) == ""
    calls = extract_tool_calls(result)
    assert calls[0].id == "call_1"
    assert calls[0].function.arguments == '{"c":1}'


def test_extract_tool_calls_without_choices_does_not_raise():
    assert extract_tool_calls(ChatResult.from_payload({"id": "x", "model": "m", "choices": []})) is None


@pytest.mark.parametrize(
    "code, expected",
    [
        ("model_not_found", ModelNotAvailable),
        ("context_length_exceeded", ContextLengthExceeded),
        ("rate_limit_exceeded", RateLimitExceeded),
        ("insufficient_quota", QuotaExceeded),
    ],
)
@pytest.mark.parametrize("model", [GPT, O1], ids=["standard", "constrained"])
def test_common_codes(code, expected, model):
    assert isinstance(map_error(_api_error(code), model), expected)


def test_context_length_carries_model_and_limit():
    err = map_error(_api_error("context_length_exceeded"), GPT)
    assert err.model == "gpt-4o"
    assert err.limit == GPT.context_window_tokens


def test_family_specific_codes_only_for_constrained():
    assert isinstance(map_error(_api_error("reasoning_failed"), O1), ReasoningFailed)
    assert isinstance(map_error(_api_error("context_too_complex"), O1), ContextTooComplex)
    raw = _api_error("reasoning_failed")
    assert map_error(raw, GPT) is raw
    raw = _api_error("context_too_complex")
    assert map_error(raw, GPT) is raw


def test_unknown_code_falls_through_to_api_error():
    raw = _api_error("something_new", type="server_error")
    assert map_error(raw, GPT) is raw


def test_vendor_code_takes_precedence_over_type():
    raw = _api_error("reasoning_failed", type="invalid_request_error")
    assert map_error(raw, GPT) is raw
    raw = _api_error("unsupported_parameter", type="invalid_request_error", param="temperature")
    assert map_error(raw, O1) is raw
    assert isinstance(map_error(_api_error("reasoning_failed", type="invalid_request_error"), O1), ReasoningFailed)


def test_invalid_request_on_constrained_sampling_parameter():
    raw = _api_error(
        None,
        message="Unsupported parameter: 'temperature' is not supported with this model.",
        type="invalid_request_error",
        param="temperature",
    )
    err = map_error(raw, O1)
    assert isinstance(err, ParameterNotSupported)
    assert err.parameter == "temperature"
    assert err.model == "o1"


def test_invalid_request_on_standard_family():
    raw = _api_error(message="bad messages", type="invalid_request_error")
    err = map_error(raw, GPT)
    assert isinstance(err, InvalidRequest)
    assert "bad messages" in err.message


def test_non_api_errors_pass_through():
    for err in (TransportError("down"), StatusError(500, "x"), RateLimitExceeded(retry_after=1.0)):
        assert map_error(err, GPT) is err
