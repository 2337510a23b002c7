import json
import uuid
from datetime import datetime, timezone
import httpx
import pytest
from unittest.mock import AsyncMock
from app.core.config import settings
from app.core.exceptions import UnsupportedProviderError, ValidationError, WidgetNotFoundError
from app.db.models import Message, ProviderConfiguration, Widget
from app.llm.base import DEFAULT_SYSTEM_PROMPT, ProviderCallConfig
from app.llm.dispatcher import get_provider
from app.prompt.builder import PromptBuilder
from app.services.chat_service import NO_PROVIDER_REASON, ChatService
from app.services.provider_service import provider_service
from app.services.settings_service import PlatformConfig

COMPLETION = {
    "id": "chatcmpl-1",
    "object": "chat.completion",
    "created": 1700000000,
    "model": "gpt-4o",
    "choices": [{"index": 0, "message": {"role": "assistant", "content": "Hello visitor"}, "finish_reason": "stop"}],
    "usage": {"prompt_tokens": 30, "completion_tokens": 2, "total_tokens": 32},
}


def make_provider_config(**overrides):
    values = dict(
        id=uuid.uuid4(),
        tenant_id=uuid.uuid4(),
        provider_type="openai",
        name="OpenAI",
        api_key=provider_service.encrypt("sk-test-0123456789"),
        model="gpt-4o",
        temperature=0.7,
        max_tokens=512,
        system_prompt="You are the Acme assistant.",
        advanced_settings={},
        is_active=True,
    )
    values.update(overrides)
    return ProviderConfiguration(**values)


def make_widget(provider_configuration=None, **overrides):
    widget = Widget(
        id=uuid.uuid4(),
        tenant_id=uuid.uuid4(),
        name="Support",
        design={},
        behavior={"welcomeMessage": "Hi, ask me anything"},
        placement={},
        status="active",
        embed_id=str(uuid.uuid4()),
        **overrides,
    )
    widget.provider_configuration = provider_configuration
    return widget


def added_rows(mock_db):
    return [call.args[0] for call in mock_db.add.call_args_list]


def recording_client(response=None, status_code=200):
    requests = []

    def handler(request: httpx.Request):
        requests.append(json.loads(request.content))
        return httpx.Response(status_code, json=response if response is not None else COMPLETION)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), requests


@pytest.fixture
def service(mocker):
    svc = ChatService()
    mocker.patch.object(svc, "_load_history", new_callable=AsyncMock, return_value=[])
    return svc


@pytest.fixture
def config():
    return PlatformConfig(environ={})


@pytest.mark.anyio
async def test_widget_without_provider_stores_only_the_visitor_message(service, mock_db, mocker, config):
    mocker.patch.object(service, "_get_widget", new_callable=AsyncMock, return_value=make_widget())

    result = await service.send_message(mock_db, "embed-1", "s1", "hi", platform_config=config)

    assert result.success is False
    assert result.reason == NO_PROVIDER_REASON
    assert result.session_id == "s1"

    rows = added_rows(mock_db)
    assert len(rows) == 1
    assert rows[0].session_id == "s1"
    assert rows[0].sender_type == "user"
    assert rows[0].message == "hi"
    mock_db.commit.assert_awaited_once()


@pytest.mark.anyio
async def test_unknown_provider_type_raises_before_any_row(service, mock_db, mocker, config):
    widget = make_widget(make_provider_config(provider_type="unknown-vendor"))
    mocker.patch.object(service, "_get_widget", new_callable=AsyncMock, return_value=widget)

    with pytest.raises(UnsupportedProviderError):
        await service.send_message(mock_db, "embed-1", "s1", "hi", platform_config=config)

    mock_db.add.assert_not_called()
    mock_db.commit.assert_not_called()


@pytest.mark.anyio
async def test_successful_turn_stores_both_messages_in_order(service, mock_db, mocker, config):
    widget = make_widget(make_provider_config())
    mocker.patch.object(service, "_get_widget", new_callable=AsyncMock, return_value=widget)
    client, _ = recording_client()

    result = await service.send_message(mock_db, widget.embed_id, "s1", "Hello", client=client, platform_config=config)

    assert result.success is True
    assert result.response == "Hello visitor"
    assert result.token_usage.total_tokens == 32
    assert result.model == "gpt-4o"

    inbound, outbound = added_rows(mock_db)
    assert inbound.sender_type == "user" and outbound.sender_type == "ai"
    assert inbound.session_id == outbound.session_id == "s1"
    assert inbound.widget_id == outbound.widget_id == widget.id
    assert inbound.created_at < outbound.created_at
    assert outbound.response == "Hello visitor"
    assert outbound.token_usage == {"prompt_tokens": 30, "completion_tokens": 2, "total_tokens": 32}
    assert outbound.model_used == "gpt-4o"
    assert result.message_id == outbound.id


@pytest.mark.anyio
async def test_upstream_failure_stores_only_the_visitor_message(service, mock_db, mocker, config):
    widget = make_widget(make_provider_config())
    mocker.patch.object(service, "_get_widget", new_callable=AsyncMock, return_value=widget)
    client, _ = recording_client({"error": {"message": "invalid key"}}, status_code=401)

    result = await service.send_message(mock_db, widget.embed_id, "s1", "Hello", client=client, platform_config=config)

    assert result.success is False
    assert result.reason
    rows = added_rows(mock_db)
    assert [r.sender_type for r in rows] == ["user"]
    mock_db.commit.assert_awaited_once()


@pytest.mark.anyio
async def test_malformed_completion_keeps_the_visitor_message(service, mock_db, mocker, config):
    widget = make_widget(make_provider_config())
    mocker.patch.object(service, "_get_widget", new_callable=AsyncMock, return_value=widget)
    client, _ = recording_client({**COMPLETION, "choices": [{}]})

    result = await service.send_message(mock_db, widget.embed_id, "s1", "Hello", client=client, platform_config=config)

    assert result.success is False
    assert result.reason
    rows = added_rows(mock_db)
    assert [r.sender_type for r in rows] == ["user"]
    assert rows[0].message == "Hello"
    mock_db.commit.assert_awaited_once()


@pytest.mark.anyio
async def test_registry_endpoint_override_is_the_url_called(service, mock_db, mocker):
    override = {"openai": {"api_endpoint": "https://eu.example.test/v1"}}
    config = PlatformConfig({"available_providers": (override, "json")}, environ={})
    widget = make_widget(make_provider_config())
    mocker.patch.object(service, "_get_widget", new_callable=AsyncMock, return_value=widget)
    urls = []

    def handler(request: httpx.Request):
        urls.append(str(request.url))
        return httpx.Response(200, json=COMPLETION)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    result = await service.send_message(mock_db, widget.embed_id, "s1", "Hello", client=client, platform_config=config)

    assert result.success is True
    assert urls == ["https://eu.example.test/v1/chat/completions"]


@pytest.mark.anyio
@pytest.mark.parametrize("text", ["", "   ", "<b></b>"])
async def test_empty_message_is_rejected_without_rows(service, mock_db, mocker, config, text):
    get_widget = mocker.patch.object(service, "_get_widget", new_callable=AsyncMock)

    with pytest.raises(ValidationError):
        await service.send_message(mock_db, "embed-1", "s1", text, platform_config=config)

    get_widget.assert_not_called()
    mock_db.add.assert_not_called()


@pytest.mark.anyio
async def test_overlong_message_is_rejected(service, mock_db, mocker):
    config = PlatformConfig({"chat.max_message_length": (10, "integer")}, environ={})
    mocker.patch.object(service, "_get_widget", new_callable=AsyncMock, return_value=make_widget())

    with pytest.raises(ValidationError):
        await service.send_message(mock_db, "embed-1", "s1", "x" * 11, platform_config=config)
    mock_db.add.assert_not_called()


@pytest.mark.anyio
async def test_message_is_sanitized(service, mock_db, mocker, config):
    mocker.patch.object(service, "_get_widget", new_callable=AsyncMock, return_value=make_widget())

    await service.send_message(mock_db, "embed-1", "s1", "  <script>x</script>Hi   &amp;\n there ", platform_config=config)

    assert added_rows(mock_db)[0].message == "xHi & there"


@pytest.mark.anyio
async def test_missing_widget_raises(service, mock_db, mocker, config):
    mocker.patch.object(service, "_get_widget", new_callable=AsyncMock, return_value=None)

    with pytest.raises(WidgetNotFoundError):
        await service.send_message(mock_db, "missing", "s1", "hi", platform_config=config)
    mock_db.add.assert_not_called()


@pytest.mark.anyio
async def test_session_id_is_generated_when_missing(service, mock_db, mocker, config):
    mocker.patch.object(service, "_get_widget", new_callable=AsyncMock, return_value=make_widget())

    result = await service.send_message(mock_db, "embed-1", None, "hi", platform_config=config)

    assert uuid.UUID(result.session_id)
    assert added_rows(mock_db)[0].session_id == result.session_id


@pytest.mark.anyio
async def test_inactive_provider_returns_failure_after_storing_message(service, mock_db, mocker, config):
    widget = make_widget(make_provider_config(is_active=False))
    mocker.patch.object(service, "_get_widget", new_callable=AsyncMock, return_value=widget)

    result = await service.send_message(mock_db, widget.embed_id, "s1", "hi", platform_config=config)

    assert result.success is False
    assert "inactive" in result.reason
    assert len(added_rows(mock_db)) == 1


@pytest.mark.anyio
async def test_missing_credential_returns_failure(service, mock_db, mocker, config):
    mocker.patch.object(settings, "OPENAI_API_KEY", None)
    mocker.patch.dict("os.environ", {"OPENAI_API_KEY": ""})
    widget = make_widget(make_provider_config(api_key=None))
    mocker.patch.object(service, "_get_widget", new_callable=AsyncMock, return_value=widget)

    result = await service.send_message(mock_db, widget.embed_id, "s1", "hi", platform_config=config)

    assert result.success is False
    assert "credential" in result.reason
    assert len(added_rows(mock_db)) == 1


@pytest.mark.anyio
async def test_env_credential_is_used_when_none_is_stored(service, mock_db, mocker, config):
    mocker.patch.object(settings, "OPENAI_API_KEY", "sk-env-0123456789")
    widget = make_widget(make_provider_config(api_key=None))
    mocker.patch.object(service, "_get_widget", new_callable=AsyncMock, return_value=widget)
    client, _ = recording_client()

    result = await service.send_message(mock_db, widget.embed_id, "s1", "hi", client=client, platform_config=config)
    assert result.success is True


@pytest.mark.anyio
async def test_history_and_widget_context_reach_the_provider(service, mock_db, mocker, config):
    widget = make_widget(make_provider_config())
    mocker.patch.object(service, "_get_widget", new_callable=AsyncMock, return_value=widget)
    earlier = datetime(2024, 1, 1, tzinfo=timezone.utc)
    service._load_history.return_value = [
        Message(sender_type="user", message="What are your hours?", session_id="s1", created_at=earlier),
        Message(sender_type="ai", response="9 to 5.", session_id="s1", created_at=earlier),
    ]
    client, requests = recording_client()

    await service.send_message(
        mock_db, widget.embed_id, "s1", "And weekends?",
        user_data={"name": "Dana", "email": "dana@example.com"},
        client=client, platform_config=config,
    )

    messages = requests[0]["messages"]
    system = messages[0]["content"]
    assert system.startswith("You are the Acme assistant.")
    assert "- Widget Name: Support" in system
    assert "- Welcome Message: Hi, ask me anything" in system
    assert "- Name: Dana" in system
    assert "- Email: dana@example.com" in system
    assert messages[1:] == [
        {"role": "user", "content": "What are your hours?"},
        {"role": "assistant", "content": "9 to 5."},
        {"role": "user", "content": "And weekends?"},
    ]
    service._load_history.assert_awaited_once_with(mock_db, widget.id, "s1", 10)


@pytest.mark.anyio
async def test_caller_supplied_history_skips_database_lookup(service, mock_db, mocker, config):
    widget = make_widget(make_provider_config())
    mocker.patch.object(service, "_get_widget", new_callable=AsyncMock, return_value=widget)
    client, requests = recording_client()

    await service.send_message(
        mock_db, widget.embed_id, "s1", "Second",
        conversation_history=[{"role": "user", "content": "First"}],
        client=client, platform_config=config,
    )

    service._load_history.assert_not_called()
    assert requests[0]["messages"][1] == {"role": "user", "content": "First"}


def test_missing_system_prompt_falls_back_to_the_provider_default():
    provider = get_provider(ProviderCallConfig(provider_type="openai", api_key="sk-test-0123456789"))

    assert PromptBuilder().build_system_prompt(None) == DEFAULT_SYSTEM_PROMPT
    assert provider.system_prompt == DEFAULT_SYSTEM_PROMPT
