"""
Closed table from provider type to integration class.
"""
from types import MappingProxyType
from typing import List, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import UnsupportedProviderError
from app.llm.base import BaseProvider, ProviderCallConfig
from app.llm.providers.anthropic import ClaudeProvider
from app.llm.providers.gemini import GeminiProvider
from app.llm.providers.huggingface import HuggingFaceProvider
from app.llm.providers.openai_compat import (
    DeepSeekProvider,
    GrokProvider,
    GroqProvider,
    MistralProvider,
    OpenAICompatibleProvider,
    OpenRouterProvider,
)

PROVIDER_CLASSES = MappingProxyType({
    "openai": OpenAICompatibleProvider,
    "claude": ClaudeProvider,
    "gemini": GeminiProvider,
    "mistral": MistralProvider,
    "groq": GroqProvider,
    "deepseek": DeepSeekProvider,
    "huggingface": HuggingFaceProvider,
    "grok": GrokProvider,
    "openrouter": OpenRouterProvider,
})


def supported_provider_types() -> List[str]:
    return list(PROVIDER_CLASSES)


def is_supported(provider_type: str) -> bool:
    return provider_type in PROVIDER_CLASSES


def get_provider(
    config: ProviderCallConfig,
    http_client: Optional[httpx.AsyncClient] = None,
    verify_connection: bool = False,
) -> BaseProvider:
    """
    Validate the call config and return the integration for its provider type.

    Raises ValidationError for out-of-range parameters and
    UnsupportedProviderError for types outside the table.
    """
    config.validate()
    provider_class = PROVIDER_CLASSES.get(config.provider_type)
    if provider_class is None:
        raise UnsupportedProviderError(config.provider_type)
    return provider_class(
        config,
        http_client=http_client,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        verify_connection=verify_connection,
    )
