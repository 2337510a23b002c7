import uuid
import httpx
import pytest
from app.api.deps import get_platform_config
from app.core.config import settings
from app.db.models import ProviderConfiguration
from app.main import app
from app.schemas.provider import ConnectionTestRequest, ProviderConfigurationUpdate
from app.services.provider_service import provider_service
from app.services.settings_service import PlatformConfig


def stored_configuration(tenant_id, **overrides):
    values = dict(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        provider_type="openai",
        name="OpenAI",
        api_key=provider_service.encrypt("sk-stored-0123456789"),
        model="gpt-4o",
        temperature=0.7,
        max_tokens=2048,
        system_prompt=None,
        advanced_settings={},
        is_active=True,
    )
    values.update(overrides)
    return ProviderConfiguration(**values)


def returns_first(mock_db, row):
    mock_db.execute.return_value.scalars.return_value.first.return_value = row


# configuration CRUD

def test_create_provider_encrypts_and_masks_the_credential(client, mock_db):
    response = client.post("/v1/providers", json={
        "provider_type": "openai", "api_key": "sk-test-abcdefghijkl", "model": "gpt-4o",
    })

    assert response.status_code == 201
    body = response.json()
    assert body["api_key_masked"] == "sk-t************ijkl"
    assert body["has_api_key"] is True
    assert "sk-test-abcdefghijkl" not in response.text

    row = mock_db.add.call_args.args[0]
    assert row.api_key != "sk-test-abcdefghijkl"
    assert provider_service.decrypt(row) == "sk-test-abcdefghijkl"


def test_create_provider_defaults_model_and_name_from_registry(client):
    response = client.post("/v1/providers", json={"provider_type": "claude", "api_key": "sk-ant-0123456789"})

    assert response.status_code == 201
    body = response.json()
    assert body["name"] == "Anthropic Claude"
    assert body["model"] == "claude-3-5-haiku-latest"


def test_create_provider_overwrites_existing_type(client, mock_db, tenant):
    existing = stored_configuration(tenant.id, model="gpt-3.5-turbo")
    returns_first(mock_db, existing)

    response = client.post("/v1/providers", json={"provider_type": "openai", "model": "gpt-4o", "temperature": 0.2})

    assert response.status_code == 201
    mock_db.add.assert_not_called()
    assert existing.model == "gpt-4o"
    assert existing.temperature == 0.2
    # omitted credential keeps the stored one
    assert provider_service.decrypt(existing) == "sk-stored-0123456789"


def test_create_unsupported_provider_is_400(client, mock_db):
    response = client.post("/v1/providers", json={"provider_type": "unknown-vendor", "model": "x"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Unsupported AI provider: unknown-vendor"
    mock_db.add.assert_not_called()
    mock_db.commit.assert_not_called()


def test_create_provider_rejects_out_of_range_temperature(client):
    response = client.post("/v1/providers", json={"provider_type": "openai", "temperature": 3})
    assert response.status_code == 422


def test_get_missing_configuration_is_404(client):
    response = client.get(f"/v1/providers/{uuid.uuid4()}")
    assert response.status_code == 404


def test_toggle_status(client, mock_db, tenant):
    existing = stored_configuration(tenant.id, is_active=True)
    returns_first(mock_db, existing)

    response = client.post(f"/v1/providers/{existing.id}/toggle-status")

    assert response.status_code == 200
    assert response.json()["is_active"] is False


def test_delete_configuration(client, mock_db, tenant):
    existing = stored_configuration(tenant.id)
    returns_first(mock_db, existing)

    response = client.delete(f"/v1/providers/{existing.id}")

    assert response.status_code == 204
    mock_db.delete.assert_awaited_once_with(existing)


def test_available_providers_flags_configured_types(client, mock_db, tenant):
    # the configuration rows below would otherwise be read back as system settings
    app.dependency_overrides[get_platform_config] = lambda: PlatformConfig(environ={})
    mock_db.execute.return_value.scalars.return_value.all.return_value = [stored_configuration(tenant.id)]

    response = client.get("/v1/providers/available")

    assert response.status_code == 200
    by_type = {p["provider_type"]: p for p in response.json()}
    assert by_type["openai"]["configured"] is True
    assert by_type["claude"]["configured"] is False
    assert all(p["supported"] for p in by_type.values())
    assert "env_var" not in by_type["openai"]


# connection tests

@pytest.mark.parametrize("payload,success", [
    ({"provider_type": "openai", "api_key": "demo-1234567890", "model": "gpt-4o"}, True),
    ({"provider_type": "openai", "api_key": "short"}, False),
    ({"provider_type": "openai"}, False),
])
def test_test_connection(client, payload, success):
    response = client.post("/v1/providers/test-connection", json=payload)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is success
    assert body["provider"] == "openai"


def test_test_connection_unknown_type_is_400(client):
    response = client.post("/v1/providers/test-connection", json={"provider_type": "unknown-vendor"})
    assert response.status_code == 400


@pytest.mark.anyio
async def test_connection_test_uses_overridden_default_model():
    override = {"openai": {"default_model": "gpt-4o-eu"}}
    config = PlatformConfig({"available_providers": (override, "json")}, environ={})

    result = await provider_service.test_connection(
        ConnectionTestRequest(provider_type="openai", api_key="demo-1234567890"), config
    )

    assert result.success is True
    assert result.model == "gpt-4o-eu"


# model discovery

def test_registry_models_for_claude(client):
    response = client.get("/v1/providers/models/claude")

    assert response.status_code == 200
    body = response.json()
    assert body["source"] == "registry"
    assert "claude-3-5-sonnet-latest" in body["models"]


def test_models_for_unknown_type_is_404(client):
    response = client.get("/v1/providers/models/unknown-vendor")
    assert response.status_code == 404


# service level

@pytest.mark.anyio
async def test_live_models_use_env_credential(mock_db, tenant, mocker):
    mocker.patch.object(settings, "OPENAI_API_KEY", "sk-env-0123456789")
    seen = {}

    def handler(request: httpx.Request):
        seen["auth"] = request.headers["authorization"]
        return httpx.Response(200, json={
            "object": "list",
            "data": [{"id": "gpt-4o", "object": "model", "created": 1, "owned_by": "openai"}],
        })

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    models, source = await provider_service.list_models(
        mock_db, tenant.id, "openai", PlatformConfig(environ={}), http_client=client
    )

    assert models == ["gpt-4o"]
    assert source == "live"
    assert seen["auth"] == "Bearer sk-env-0123456789"


@pytest.mark.anyio
async def test_model_discovery_failure_falls_back_to_registry(mock_db, tenant):
    returns_first(mock_db, stored_configuration(tenant.id))
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500, json={})))

    models, source = await provider_service.list_models(
        mock_db, tenant.id, "openai", PlatformConfig(environ={}), http_client=client
    )

    assert source == "registry"
    assert "gpt-4o" in models


@pytest.mark.anyio
async def test_stored_test_with_verification_reports_upstream_rejection(mock_db, tenant):
    returns_first(mock_db, stored_configuration(tenant.id))
    client = httpx.AsyncClient(transport=httpx.MockTransport(
        lambda r: httpx.Response(401, json={"error": {"message": "Incorrect API key provided"}})
    ))
    config = PlatformConfig({"providers.verify_connection": (True, "boolean")}, environ={})

    result = await provider_service.test_stored(mock_db, tenant.id, uuid.uuid4(), config, http_client=client)

    assert result.success is False
    assert "Incorrect API key" in result.message


@pytest.mark.anyio
async def test_update_with_empty_credential_clears_it(mock_db, tenant):
    existing = stored_configuration(tenant.id)
    returns_first(mock_db, existing)

    await provider_service.update_configuration(
        mock_db, tenant.id, existing.id, ProviderConfigurationUpdate(api_key="", max_tokens=100)
    )

    assert existing.api_key is None
    assert existing.max_tokens == 100


def test_serialize_reports_env_credential(tenant, mocker):
    mocker.patch.object(settings, "GROQ_API_KEY", "gsk_from_environment")
    out = provider_service.serialize(stored_configuration(tenant.id, provider_type="groq", api_key=None))

    assert out.has_api_key is False
    assert out.uses_env_credential is True
    assert out.api_key_masked is None


def test_serialize_survives_undecryptable_credential(tenant):
    out = provider_service.serialize(stored_configuration(tenant.id, api_key="not-a-fernet-token"))

    assert out.has_api_key is True
    assert out.api_key_masked == "********"


@pytest.mark.anyio
async def test_update_with_null_advanced_settings_keeps_stored_value(mock_db, tenant):
    existing = stored_configuration(tenant.id, advanced_settings={"top_p": 0.5})
    returns_first(mock_db, existing)

    await provider_service.update_configuration(
        mock_db, tenant.id, existing.id, ProviderConfigurationUpdate(advanced_settings=None, name="Renamed")
    )

    assert existing.advanced_settings == {"top_p": 0.5}
    assert existing.name == "Renamed"
