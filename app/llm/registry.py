"""
Descriptive metadata for every provider type the platform knows about.

Templates can be overridden at runtime through the `available_providers`
system setting; the compiled defaults below are used otherwise. The registry
only describes providers. Which of them can actually be called is decided by
the dispatcher's table.
"""
import copy
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.core.config import settings as app_settings
from app.core.exceptions import ProviderNotFoundError

AVAILABLE_PROVIDERS_KEY = "available_providers"

DEFAULT_PROVIDER_TEMPLATES: Dict[str, Dict[str, Any]] = {
    "openai": {
        "name": "OpenAI",
        "description": "GPT models with dynamic model discovery",
        "supported_features": ["chat", "streaming", "function_calling"],
        "api_endpoint": "https://api.openai.com/v1",
        "documentation_url": "https://platform.openai.com/docs",
        "models": ["gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-3.5-turbo"],
        "default_model": "gpt-4o-mini",
        "env_var": "OPENAI_API_KEY",
    },
    "claude": {
        "name": "Anthropic Claude",
        "description": "Claude models for long-context conversations",
        "supported_features": ["chat", "streaming", "long_context"],
        "api_endpoint": "https://api.anthropic.com/v1",
        "documentation_url": "https://docs.anthropic.com",
        "models": ["claude-3-5-sonnet-latest", "claude-3-5-haiku-latest", "claude-3-opus-latest"],
        "default_model": "claude-3-5-haiku-latest",
        "env_var": "ANTHROPIC_API_KEY",
    },
    "gemini": {
        "name": "Google Gemini",
        "description": "Gemini models from Google AI Studio",
        "supported_features": ["chat", "streaming", "multimodal"],
        "api_endpoint": "https://generativelanguage.googleapis.com/v1beta",
        "documentation_url": "https://ai.google.dev/docs",
        "models": ["gemini-1.5-flash", "gemini-1.5-pro"],
        "default_model": "gemini-1.5-flash",
        "env_var": "GEMINI_API_KEY",
    },
    "mistral": {
        "name": "Mistral AI",
        "description": "Mistral Large, Medium, Small",
        "supported_features": ["chat", "streaming"],
        "api_endpoint": "https://api.mistral.ai/v1",
        "documentation_url": "https://docs.mistral.ai",
        "models": ["mistral-large-latest", "mistral-medium-latest", "mistral-small-latest"],
        "default_model": "mistral-small-latest",
        "env_var": "MISTRAL_API_KEY",
    },
    "groq": {
        "name": "Groq",
        "description": "Ultra-fast inference",
        "supported_features": ["chat", "streaming", "fast_inference"],
        "api_endpoint": "https://api.groq.com/openai/v1",
        "documentation_url": "https://console.groq.com/docs",
        "models": ["llama3-70b-8192", "llama3-8b-8192", "mixtral-8x7b-32768"],
        "default_model": "llama3-8b-8192",
        "env_var": "GROQ_API_KEY",
    },
    "deepseek": {
        "name": "DeepSeek",
        "description": "DeepSeek Chat, Coder",
        "supported_features": ["chat", "coding"],
        "api_endpoint": "https://api.deepseek.com/v1",
        "documentation_url": "https://platform.deepseek.com/docs",
        "models": ["deepseek-chat", "deepseek-coder"],
        "default_model": "deepseek-chat",
        "env_var": "DEEPSEEK_API_KEY",
    },
    "huggingface": {
        "name": "HuggingFace",
        "description": "Open source models",
        "supported_features": ["chat", "open_source"],
        "api_endpoint": "https://api-inference.huggingface.co/models",
        "documentation_url": "https://huggingface.co/docs",
        "models": ["meta-llama/Llama-2-70b-chat-hf", "mistralai/Mixtral-8x7B-Instruct-v0.1"],
        "default_model": "mistralai/Mixtral-8x7B-Instruct-v0.1",
        "env_var": "HUGGINGFACE_API_KEY",
    },
    "grok": {
        "name": "Grok (X.AI)",
        "description": "Grok models from xAI",
        "supported_features": ["chat", "humor"],
        "api_endpoint": "https://api.x.ai/v1",
        "documentation_url": "https://docs.x.ai",
        "models": ["grok-beta", "grok-2-latest"],
        "default_model": "grok-beta",
        "env_var": "GROK_API_KEY",
    },
    "openrouter": {
        "name": "OpenRouter",
        "description": "Multiple model access",
        "supported_features": ["chat", "multi_provider"],
        "api_endpoint": "https://openrouter.ai/api/v1",
        "documentation_url": "https://openrouter.ai/docs",
        "models": ["openai/gpt-4o", "anthropic/claude-3-opus", "meta-llama/llama-3-70b-instruct"],
        "default_model": "openai/gpt-4o",
        "env_var": "OPENROUTER_API_KEY",
    },
}


class ProviderDescriptor(BaseModel):
    provider_type: str
    name: str
    description: Optional[str] = None
    default_model: Optional[str] = None
    default_temperature: float = 0.7
    default_max_tokens: int = 2048
    api_endpoint: Optional[str] = None
    documentation_url: Optional[str] = None
    models: List[str] = Field(default_factory=list)
    supported_features: List[str] = Field(default_factory=list)
    env_var: Optional[str] = None
    env_configured: bool = False


def default_templates() -> Dict[str, Dict[str, Any]]:
    return copy.deepcopy(DEFAULT_PROVIDER_TEMPLATES)


class ProviderRegistry:
    def __init__(self, platform_config=None, settings=app_settings):
        self.settings = settings
        override = platform_config.get(AVAILABLE_PROVIDERS_KEY) if platform_config is not None else None
        self.templates = override if isinstance(override, dict) and override else default_templates()

    def _describe(self, provider_type: str, template: Dict[str, Any]) -> ProviderDescriptor:
        # admin overrides may omit fields the compiled template carries
        merged = {**DEFAULT_PROVIDER_TEMPLATES.get(provider_type, {}), **template}
        models = list(merged.get("models") or [])
        env_var = merged.get("env_var")
        return ProviderDescriptor(
            provider_type=provider_type,
            name=merged.get("name") or provider_type,
            description=merged.get("description"),
            default_model=merged.get("default_model") or (models[0] if models else None),
            default_temperature=merged.get("default_temperature", 0.7),
            default_max_tokens=merged.get("default_max_tokens", 2048),
            api_endpoint=merged.get("api_endpoint"),
            documentation_url=merged.get("documentation_url"),
            models=models,
            supported_features=list(merged.get("supported_features") or []),
            env_var=env_var,
            env_configured=bool(env_var and self.settings.env_credential(env_var)),
        )

    def get(self, provider_type: str) -> ProviderDescriptor:
        template = self.templates.get(provider_type)
        if template is None:
            raise ProviderNotFoundError(provider_type)
        return self._describe(provider_type, template)

    def list(self) -> List[ProviderDescriptor]:
        return [self._describe(provider_type, template) for provider_type, template in self.templates.items()]

    def __contains__(self, provider_type: str) -> bool:
        return provider_type in self.templates

    def resolve(self, provider_type: str) -> Dict[str, Any]:
        """
        Dispatch-time template (endpoint, default model, models) for a type,
        with admin overrides applied. Empty when the type is not described.
        """
        if provider_type not in self:
            return {}
        return self.get(provider_type).model_dump(exclude={"env_var", "env_configured"})
