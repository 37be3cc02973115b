import pytest

from openai_adapter.domain.exceptions import ApiError, BusinessError, RateLimitExceeded, TransportError
from openai_adapter.domain.models import (
    ChatMessage,
    ChatResult,
    ChatStreamChunk,
    ChatUsage,
    WireToolCall,
    encode_tool_choice,
)


def test_chat_result_parses_usage_with_reasoning_tokens():
    result = ChatResult.from_payload(
        {
            "id": "chatcmpl-1",
            "object": "chat.completion",
            "created": 123,
            "model": "o1",
            "choices": [{"index": 0, "message": {"role": "assistant", "content": "hi"}, "finish_reason": "stop"}],
            "usage": {
                "prompt_tokens": 5,
                "completion_tokens": 7,
                "total_tokens": 12,
                "completion_tokens_details": {"reasoning_tokens": 4},
            },
        }
    )
    assert result.created == 123
    assert result.choices[0].finish_reason == "stop"
    assert result.usage == ChatUsage(5, 7, 12, 4)


def test_chat_result_rejects_non_object():
    with pytest.raises(TypeError):
        ChatResult.from_payload(["not", "an", "object"])
    with pytest.raises(TypeError):
        ChatResult.from_payload({"choices": [{"message": "hi"}]})
    with pytest.raises(TypeError):
        WireToolCall.from_payload({"id": "c", "function": "f"})


def test_usage_tolerates_non_object_details():
    usage = ChatUsage.from_payload({"prompt_tokens": 1, "completion_tokens_details": 3})
    assert usage.prompt_tokens == 1
    assert usage.reasoning_tokens is None


def test_tool_call_arguments_object_is_reencoded():
    call = WireToolCall.from_payload({"id": "c", "function": {"name": "f", "arguments": {"a": 1}}})
    assert call.function.arguments == '{"a": 1}'
    missing_id = WireToolCall.from_payload({"function": {"name": "f"}}, fallback_id="tool_call_0")
    assert missing_id.id == "tool_call_0"
    assert missing_id.function.arguments == ""


def test_message_payload_keeps_null_content_for_tool_calls():
    msg = ChatMessage(role="assistant", tool_calls=[WireToolCall.from_payload({"id": "c", "function": {"name": "f", "arguments": "{}"}})])
    payload = msg.to_payload()
    assert payload["content"] is None
    assert payload["tool_calls"][0] == {"id": "c", "type": "function", "function": {"name": "f", "arguments": "{}"}}
    assert "tool_call_id" not in payload


def test_encode_tool_choice():
    assert encode_tool_choice("auto") == "auto"
    assert encode_tool_choice("required") == "required"
    assert encode_tool_choice("lookup") == {"type": "function", "function": {"name": "lookup"}}


def test_stream_chunk_tool_call_index_falls_back_to_position():
    chunk = ChatStreamChunk.from_payload(
        {"id": "x", "model": "m", "choices": [{"index": 0, "delta": {"tool_calls": [{"function": {"arguments": "{}"}}]}}]}
    )
    assert chunk.choices[0].delta.tool_calls[0].index == 0


def test_error_hierarchy():
    assert issubclass(ApiError, BusinessError)
    assert TransportError("x").retryable
    assert RateLimitExceeded().retryable
    assert not ApiError("x").retryable
    err = ApiError.from_envelope({"error": {"message": "m", "type": "t", "param": "p", "code": "c"}}, 400)
    assert (err.code, err.error_code, err.http_status) == ("API_ERROR", "c", 400)
