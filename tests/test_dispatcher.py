import pytest
from app.core.exceptions import UnsupportedProviderError, ValidationError
from app.llm.base import ProviderCallConfig
from app.llm.dispatcher import PROVIDER_CLASSES, get_provider, supported_provider_types
from app.llm.providers.anthropic import ClaudeProvider
from app.llm.providers.openai_compat import OpenAICompatibleProvider, OpenRouterProvider


@pytest.mark.parametrize("provider_type", supported_provider_types())
def test_every_supported_type_gets_an_integration(provider_type):
    provider = get_provider(ProviderCallConfig(provider_type=provider_type, api_key="sk-test-1234567890"))
    assert isinstance(provider, PROVIDER_CLASSES[provider_type])
    assert provider.provider_type == provider_type
    assert provider.model


def test_openai_compatible_vendors_share_the_wire_format():
    provider = get_provider(ProviderCallConfig(provider_type="openrouter", api_key="k" * 20))
    assert isinstance(provider, OpenRouterProvider)
    assert isinstance(provider, OpenAICompatibleProvider)
    assert provider.api_endpoint == "https://openrouter.ai/api/v1"


def test_claude_is_not_openai_compatible():
    provider = get_provider(ProviderCallConfig(provider_type="claude", api_key="k" * 20))
    assert isinstance(provider, ClaudeProvider)
    assert not isinstance(provider, OpenAICompatibleProvider)


def test_unknown_provider_type_raises():
    with pytest.raises(UnsupportedProviderError) as exc:
        get_provider(ProviderCallConfig(provider_type="unknown-vendor"))
    assert str(exc.value) == "Unsupported AI provider: unknown-vendor"


def test_table_is_read_only():
    with pytest.raises(TypeError):
        PROVIDER_CLASSES["custom"] = OpenAICompatibleProvider


@pytest.mark.parametrize("temperature", [-0.1, 2.01, 5])
def test_temperature_out_of_range_fails_validation(temperature):
    with pytest.raises(ValidationError) as exc:
        get_provider(ProviderCallConfig(provider_type="openai", temperature=temperature))
    assert exc.value.field == "temperature"


@pytest.mark.parametrize("max_tokens", [0, -5, 32001])
def test_max_tokens_out_of_range_fails_validation(max_tokens):
    with pytest.raises(ValidationError) as exc:
        get_provider(ProviderCallConfig(provider_type="openai", max_tokens=max_tokens))
    assert exc.value.field == "max_tokens"


@pytest.mark.parametrize("temperature,max_tokens", [(0, 1), (2, 32000), (0.7, 2048)])
def test_boundary_values_are_accepted(temperature, max_tokens):
    provider = get_provider(
        ProviderCallConfig(provider_type="openai", temperature=temperature, max_tokens=max_tokens)
    )
    assert provider.config.max_tokens == max_tokens


def test_base_url_override_from_advanced_settings():
    provider = get_provider(ProviderCallConfig(
        provider_type="openai",
        advanced_settings={"base_url": "https://proxy.internal/v1/"},
    ))
    assert provider.api_endpoint == "https://proxy.internal/v1"


def test_call_config_repr_hides_credential():
    config = ProviderCallConfig(provider_type="openai", api_key="sk-secret-value")
    assert "sk-secret-value" not in repr(config)
