import json
import httpx
import pytest
from app.core.exceptions import UpstreamError
from app.llm.base import ProviderCallConfig, TokenUsage, estimate_tokens
from app.llm.dispatcher import get_provider
from app.llm.providers.huggingface import format_prompt

API_KEY = "sk-test-0123456789abcdef"

CHAT_COMPLETION = {
    "id": "chatcmpl-1",
    "object": "chat.completion",
    "created": 1700000000,
    "model": "gpt-4o-2024-08-06",
    "choices": [
        {"index": 0, "message": {"role": "assistant", "content": "Hi there!"}, "finish_reason": "stop"}
    ],
    "usage": {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
}


def mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def provider_for(provider_type, handler, **overrides):
    config = ProviderCallConfig(provider_type=provider_type, api_key=API_KEY, **overrides)
    return get_provider(config, http_client=mock_client(handler))


@pytest.mark.anyio
async def test_openai_chat_completion_success():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=CHAT_COMPLETION)

    provider = provider_for(
        "openai", handler, model="gpt-4o", system_prompt="Be brief.",
        advanced_settings={"top_p": 0.5},
    )
    result = await provider.generate_response(
        "Hello", context=[{"role": "user", "content": "Earlier"}, {"role": "assistant", "content": "Sure"}]
    )

    assert result.success is True
    assert result.content == "Hi there!"
    assert result.model == "gpt-4o-2024-08-06"
    assert result.usage.total_tokens == 15
    assert result.finish_reason == "stop"
    assert result.response_time_ms >= 0

    assert seen["url"] == "https://api.openai.com/v1/chat/completions"
    assert seen["auth"] == f"Bearer {API_KEY}"
    body = seen["body"]
    assert body["model"] == "gpt-4o"
    assert body["top_p"] == 0.5
    assert "frequency_penalty" not in body
    assert [m["role"] for m in body["messages"]] == ["system", "user", "assistant", "user"]
    assert body["messages"][0]["content"] == "Be brief."
    assert body["messages"][-1]["content"] == "Hello"


@pytest.mark.anyio
async def test_groq_uses_its_own_base_url():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        return httpx.Response(200, json=CHAT_COMPLETION)

    result = await provider_for("groq", handler).generate_response("Hello")
    assert result.success
    assert seen["url"] == "https://api.groq.com/openai/v1/chat/completions"


@pytest.mark.anyio
async def test_openai_missing_usage_is_estimated():
    payload = {**CHAT_COMPLETION, "usage": None}
    result = await provider_for("openai", lambda r: httpx.Response(200, json=payload)).generate_response("Hello")
    assert result.success
    assert result.usage.estimated is True
    assert result.usage.completion_tokens == estimate_tokens("Hi there!")


@pytest.mark.anyio
@pytest.mark.parametrize("status_code,kind", [
    (401, UpstreamError.AUTH),
    (429, UpstreamError.RATE_LIMITED),
    (500, UpstreamError.UPSTREAM),
])
async def test_openai_http_errors_become_failed_results(status_code, kind):
    def handler(request):
        return httpx.Response(status_code, json={"error": {"message": "nope", "type": "x"}})

    result = await provider_for("openai", handler).generate_response("Hello")
    assert result.success is False
    assert result.error_kind == kind
    assert result.content is None


@pytest.mark.anyio
async def test_openai_timeout_becomes_failed_result():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    result = await provider_for("openai", handler).generate_response("Hello")
    assert result.success is False
    assert result.error_kind == UpstreamError.TIMEOUT


@pytest.mark.anyio
async def test_openai_connection_error_becomes_unreachable():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    result = await provider_for("mistral", handler).generate_response("Hello")
    assert result.success is False
    assert result.error_kind == UpstreamError.UNREACHABLE


@pytest.mark.anyio
async def test_missing_credential_fails_without_calling_upstream():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=CHAT_COMPLETION)

    provider = get_provider(ProviderCallConfig(provider_type="openai"), http_client=mock_client(handler))
    result = await provider.generate_response("Hello")
    assert result.success is False
    assert result.error_kind == UpstreamError.AUTH
    assert calls == []


@pytest.mark.anyio
async def test_claude_messages_api():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "id": "msg_1",
            "model": "claude-3-5-haiku-20241022",
            "content": [{"type": "text", "text": "Hello from Claude"}],
            "stop_reason": "end_turn",
            "usage": {"input_tokens": 20, "output_tokens": 5},
        })

    provider = provider_for("claude", handler, system_prompt="Be kind.", advanced_settings={"top_k": 5})
    result = await provider.generate_response("Hi", context=[{"role": "assistant", "content": "Welcome"}])

    assert result.success
    assert result.content == "Hello from Claude"
    assert result.usage == TokenUsage(prompt_tokens=20, completion_tokens=5, total_tokens=25)
    assert result.finish_reason == "end_turn"

    assert seen["url"] == "https://api.anthropic.com/v1/messages"
    assert seen["headers"]["x-api-key"] == API_KEY
    assert seen["headers"]["anthropic-version"] == "2023-06-01"
    body = seen["body"]
    assert body["system"] == "Be kind."
    assert body["top_k"] == 5
    assert body["messages"] == [
        {"role": "assistant", "content": "Welcome"},
        {"role": "user", "content": "Hi"},
    ]


@pytest.mark.anyio
async def test_claude_malformed_body():
    result = await provider_for("claude", lambda r: httpx.Response(200, json={"content": []})).generate_response("Hi")
    assert result.success is False
    assert result.error_kind == UpstreamError.MALFORMED


@pytest.mark.anyio
async def test_claude_non_json_body_is_malformed():
    result = await provider_for("claude", lambda r: httpx.Response(200, text="<html>")).generate_response("Hi")
    assert result.success is False
    assert result.error_kind == UpstreamError.MALFORMED


@pytest.mark.anyio
@pytest.mark.parametrize("body", [
    {**CHAT_COMPLETION, "choices": [{}]},
    {**CHAT_COMPLETION, "choices": ["x"]},
    {**CHAT_COMPLETION, "choices": []},
    {**CHAT_COMPLETION, "usage": "bogus"},
])
async def test_openai_unexpected_completion_shape_is_malformed(body):
    result = await provider_for("openai", lambda r: httpx.Response(200, json=body)).generate_response("Hi")
    assert result.success is False
    assert result.error_kind == UpstreamError.MALFORMED


@pytest.mark.anyio
@pytest.mark.parametrize("provider_type, body", [
    ("claude", {"content": [{"type": "text", "text": "Hi"}], "usage": "bogus"}),
    ("claude", {"content": [{"type": "text", "text": None}]}),
    ("claude", ["not", "an", "object"]),
    ("gemini", {"candidates": [{"content": {"parts": [{"text": "Hi"}]}}], "usageMetadata": "bogus"}),
    ("gemini", {"candidates": ["x"]}),
    ("huggingface", [{"generated_text": 42}]),
])
async def test_unexpected_body_shape_is_malformed(provider_type, body):
    result = await provider_for(provider_type, lambda r: httpx.Response(200, json=body)).generate_response("Hi")
    assert result.success is False
    assert result.error_kind == UpstreamError.MALFORMED


@pytest.mark.anyio
async def test_gemini_generate_content():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "candidates": [{"content": {"parts": [{"text": "Gemini says hi"}]}, "finishReason": "STOP"}],
            "usageMetadata": {"promptTokenCount": 8, "candidatesTokenCount": 4, "totalTokenCount": 12},
        })

    provider = provider_for("gemini", handler, model="gemini-1.5-pro", temperature=0.2, max_tokens=256)
    result = await provider.generate_response("Hi", context=[{"role": "assistant", "content": "Hello"}])

    assert result.success
    assert result.content == "Gemini says hi"
    assert result.usage.total_tokens == 12
    assert result.finish_reason == "STOP"

    assert seen["url"] == "https://generativelanguage.googleapis.com/v1beta/models/gemini-1.5-pro:generateContent"
    assert "key=" not in seen["url"]
    assert seen["headers"]["x-goog-api-key"] == API_KEY
    body = seen["body"]
    assert body["generationConfig"]["temperature"] == 0.2
    assert body["generationConfig"]["maxOutputTokens"] == 256
    assert [c["role"] for c in body["contents"]] == ["model", "user"]


@pytest.mark.anyio
async def test_gemini_rate_limited():
    def handler(request):
        return httpx.Response(429, json={"error": {"message": "quota"}})

    result = await provider_for("gemini", handler).generate_response("Hi")
    assert result.success is False
    assert result.error_kind == UpstreamError.RATE_LIMITED
    assert "quota" in result.error


@pytest.mark.anyio
async def test_huggingface_inference():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=[{"generated_text": "  open source answer "}])

    provider = provider_for("huggingface", handler, model="tiiuae/falcon-7b-instruct", max_tokens=64)
    result = await provider.generate_response("What is HF?")

    assert result.success
    assert result.content == "open source answer"
    assert result.usage.estimated is True
    assert seen["url"] == "https://api-inference.huggingface.co/models/tiiuae/falcon-7b-instruct"
    assert seen["body"]["parameters"]["max_new_tokens"] == 64
    assert seen["body"]["parameters"]["return_full_text"] is False
    assert seen["body"]["inputs"].endswith("User: What is HF?\nAssistant:")


@pytest.mark.anyio
async def test_huggingface_error_payload():
    def handler(request):
        return httpx.Response(200, json={"error": "Model is loading"})

    result = await provider_for("huggingface", handler).generate_response("Hi")
    assert result.success is False
    assert "Model is loading" in result.error


def test_format_prompt_by_model_family():
    llama = format_prompt("meta-llama/Llama-2-70b-chat-hf", "SYS", "Hi", [])
    assert llama == "<s>[INST] <<SYS>>\nSYS\n<</SYS>>\n\nHi [/INST]"

    mistral = format_prompt("mistralai/Mistral-7B-Instruct", "SYS", "Hi", [])
    assert mistral == "<s>[INST] SYS\n\nHi [/INST]"

    falcon = format_prompt("tiiuae/falcon-7b", "SYS", "Hi", [{"role": "user", "content": "Before"}])
    assert falcon == "System: SYS\nUser: Before\nUser: Hi\nAssistant:"

    default = format_prompt("gpt2", "SYS", "Hi", [])
    assert default == "SYS\n\nUser: Hi\nAssistant:"


@pytest.mark.anyio
async def test_test_connection_without_credential_fails():
    provider = get_provider(ProviderCallConfig(provider_type="openai"))
    result = await provider.test_connection()
    assert result.success is False


@pytest.mark.anyio
async def test_test_connection_with_short_credential_fails():
    provider = get_provider(ProviderCallConfig(provider_type="openai", api_key="short-key"))
    result = await provider.test_connection()
    assert result.success is False


@pytest.mark.anyio
async def test_test_connection_demo_credential_succeeds_offline():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500)

    config = ProviderCallConfig(provider_type="openai", api_key="demo-1234567890", model="gpt-4o")
    provider = get_provider(config, http_client=mock_client(handler))
    result = await provider.test_connection()

    assert result.success is True
    assert result.provider == "openai"
    assert calls == []


@pytest.mark.anyio
async def test_test_connection_with_verification_round_trip():
    def handler(request):
        assert request.url.path == "/v1/models"
        return httpx.Response(401, json={"error": {"message": "Incorrect API key"}})

    config = ProviderCallConfig(provider_type="claude", api_key="sk-ant-1234567890")
    provider = get_provider(config, http_client=mock_client(handler), verify_connection=True)
    result = await provider.test_connection()

    assert result.success is False
    assert "Incorrect API key" in result.message


@pytest.mark.anyio
async def test_openai_live_model_listing():
    def handler(request):
        return httpx.Response(200, json={
            "object": "list",
            "data": [
                {"id": "gpt-4o", "object": "model", "created": 1, "owned_by": "openai"},
                {"id": "gpt-3.5-turbo", "object": "model", "created": 1, "owned_by": "openai"},
            ],
        })

    models = await provider_for("openai", handler).list_models()
    assert models == ["gpt-3.5-turbo", "gpt-4o"]


@pytest.mark.anyio
async def test_non_openai_models_come_from_registry():
    provider = get_provider(ProviderCallConfig(provider_type="claude", api_key=API_KEY))
    assert await provider.list_models() == provider.template["models"]
