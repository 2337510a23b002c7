"""Domain errors for the widget platform.

Route handlers translate these into HTTP responses; provider integrations
convert UpstreamError into a failed ProviderResult before it reaches callers.
"""
from typing import Optional


class WidgetPlatformError(Exception):
    """Base class for all platform errors."""


class ConfigurationError(WidgetPlatformError):
    """No provider configured, or the configuration is unusable."""


class ValidationError(WidgetPlatformError):
    """Caller-supplied input failed a shape or range check."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class UnsupportedProviderError(WidgetPlatformError):
    """The provider type has no executable integration."""

    def __init__(self, provider_type: str):
        self.provider_type = provider_type
        super().__init__(f"Unsupported AI provider: {provider_type}")


class ProviderNotFoundError(WidgetPlatformError):
    """The provider type is unknown to the registry."""

    def __init__(self, provider_type: str):
        self.provider_type = provider_type
        super().__init__(f"Provider '{provider_type}' not found")


class UpstreamError(WidgetPlatformError):
    """An upstream vendor call failed.

    kind is one of: auth, unreachable, timeout, rate_limited, malformed, upstream.
    """

    AUTH = "auth"
    UNREACHABLE = "unreachable"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    MALFORMED = "malformed"
    UPSTREAM = "upstream"

    def __init__(self, message: str, kind: str = UPSTREAM, status_code: Optional[int] = None):
        self.kind = kind
        self.status_code = status_code
        super().__init__(message)


class WidgetNotFoundError(WidgetPlatformError):
    def __init__(self, widget_ref: str):
        self.widget_ref = widget_ref
        super().__init__(f"Widget '{widget_ref}' not found")


class ProviderConfigurationNotFoundError(WidgetPlatformError):
    def __init__(self, configuration_id: str):
        self.configuration_id = configuration_id
        super().__init__(f"AI provider configuration '{configuration_id}' not found")


class AIModelNotFoundError(WidgetPlatformError):
    def __init__(self, model_ref: str):
        self.model_ref = model_ref
        super().__init__(f"AI model '{model_ref}' not found")
