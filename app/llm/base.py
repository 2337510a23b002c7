"""
Shared types for provider integrations.

Every integration turns (message, configuration, context) into a normalized
ProviderResult. Vendor failures are raised internally as UpstreamError and
converted to a failed result in BaseProvider.generate_response, so callers
never see them as exceptions.
"""
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel

from app.core.exceptions import UpstreamError, ValidationError
from app.core.logging import logger
from app.llm.registry import DEFAULT_PROVIDER_TEMPLATES

TEMPERATURE_RANGE = (0.0, 2.0)
MAX_TOKENS_RANGE = (1, 32000)

# Minimum credential length accepted by the offline connection check
MIN_CREDENTIAL_LENGTH = 11

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant. Provide clear, accurate, and helpful responses."

# Raised while picking a vendor response apart; any of them means the body had an unexpected shape
RESPONSE_SHAPE_ERRORS = (KeyError, IndexError, TypeError, AttributeError, ValueError)


def estimate_tokens(text: Optional[str]) -> int:
    # rough: 1 token ~= 4 chars
    if not text:
        return 0
    return max(1, round(len(text) / 4))


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    estimated: bool = False

    @classmethod
    def from_counts(cls, prompt_tokens: Optional[int], completion_tokens: Optional[int],
                    total_tokens: Optional[int] = None) -> "TokenUsage":
        prompt_tokens = int(prompt_tokens or 0)
        completion_tokens = int(completion_tokens or 0)
        if total_tokens is None:
            total_tokens = prompt_tokens + completion_tokens
        return cls(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens,
                   total_tokens=int(total_tokens))

    @classmethod
    def estimate(cls, prompt: str, completion: str) -> "TokenUsage":
        usage = cls.from_counts(estimate_tokens(prompt), estimate_tokens(completion))
        usage.estimated = True
        return usage


class ProviderResult(BaseModel):
    success: bool
    provider: str
    content: Optional[str] = None
    model: Optional[str] = None
    usage: Optional[TokenUsage] = None
    finish_reason: Optional[str] = None
    response_time_ms: float = 0.0
    error: Optional[str] = None
    error_kind: Optional[str] = None


class ConnectionTestResult(BaseModel):
    success: bool
    message: str
    provider: str
    model: Optional[str] = None


@dataclass
class ProviderCallConfig:
    """
    Decrypted, runtime view of a provider configuration.

    Built from a stored ProviderConfiguration row or from an ephemeral
    request (connection tests); the raw credential only lives here.
    """
    provider_type: str
    api_key: Optional[str] = None
    model: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 2048
    system_prompt: Optional[str] = None
    advanced_settings: Dict[str, Any] = field(default_factory=dict)
    configuration_id: Optional[str] = None
    # resolved registry template; the compiled default is used when empty
    template: Dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        low, high = TEMPERATURE_RANGE
        if self.temperature is None or not (low <= float(self.temperature) <= high):
            raise ValidationError(
                f"temperature must be between {low:g} and {high:g}", field="temperature")
        low, high = MAX_TOKENS_RANGE
        if self.max_tokens is None or not (low <= int(self.max_tokens) <= high):
            raise ValidationError(
                f"max_tokens must be between {low} and {high}", field="max_tokens")
        if self.advanced_settings is not None and not isinstance(self.advanced_settings, dict):
            raise ValidationError("advanced_settings must be an object", field="advanced_settings")

    def __repr__(self) -> str:
        # keep the credential out of logs and tracebacks
        return (f"ProviderCallConfig(provider_type={self.provider_type!r}, model={self.model!r}, "
                f"configuration_id={self.configuration_id!r})")


class BaseProvider:
    provider_type: str = ""
    # True when list_models() asks the vendor instead of the registry
    live_models = False
    # Used by verify() when the vendor exposes no cheap listing endpoint on api_endpoint
    verify_url: Optional[str] = None

    def __init__(
        self,
        config: ProviderCallConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        verify_connection: bool = False,
    ):
        self.config = config
        self.http_client = http_client
        self.timeout = timeout
        self.verify_connection = verify_connection

    @property
    def template(self) -> Dict[str, Any]:
        return self.config.template or DEFAULT_PROVIDER_TEMPLATES.get(self.provider_type, {})

    @property
    def model(self) -> str:
        return self.config.model or self.template.get("default_model") or ""

    @property
    def api_endpoint(self) -> str:
        base_url = (self.config.advanced_settings or {}).get("base_url")
        return (base_url or self.template.get("api_endpoint") or "").rstrip("/")

    @property
    def system_prompt(self) -> str:
        return self.config.system_prompt or DEFAULT_SYSTEM_PROMPT

    @property
    def advanced(self) -> Dict[str, Any]:
        return self.config.advanced_settings or {}

    async def generate_response(
        self,
        message: str,
        context: Optional[List[Dict[str, str]]] = None,
    ) -> ProviderResult:
        """
        Single upstream call, no retries. Always returns a ProviderResult.
        """
        start_time = time.perf_counter()
        try:
            if not self.config.api_key:
                raise UpstreamError(f"{self.provider_type} API key is required", kind=UpstreamError.AUTH)
            result = await self._generate(message, context or [])
        except UpstreamError as e:
            elapsed = (time.perf_counter() - start_time) * 1000
            logger.warning(
                "provider_call_failed",
                provider=self.provider_type,
                model=self.model,
                kind=e.kind,
                status_code=e.status_code,
                error=str(e),
            )
            return ProviderResult(
                success=False,
                provider=self.provider_type,
                model=self.model,
                response_time_ms=round(elapsed, 2),
                error=str(e),
                error_kind=e.kind,
            )

        result.response_time_ms = round((time.perf_counter() - start_time) * 1000, 2)
        logger.info(
            "provider_call_succeeded",
            provider=self.provider_type,
            model=result.model,
            latency_ms=result.response_time_ms,
            total_tokens=result.usage.total_tokens if result.usage else 0,
        )
        return result

    async def _generate(self, message: str, context: List[Dict[str, str]]) -> ProviderResult:
        raise NotImplementedError

    async def test_connection(self) -> ConnectionTestResult:
        """
        Cheap credential check. Offline unless verify_connection is enabled.
        """
        api_key = self.config.api_key
        if not api_key:
            return self._connection_result(False, "API key is required")
        if len(api_key) < MIN_CREDENTIAL_LENGTH:
            return self._connection_result(False, "Invalid API key or connection failed")
        if not self.verify_connection:
            return self._connection_result(True, "Connection successful!")

        try:
            await self.verify()
        except UpstreamError as e:
            return self._connection_result(False, f"Connection failed: {e}")
        return self._connection_result(True, "Connection successful!")

    def _connection_result(self, success: bool, message: str) -> ConnectionTestResult:
        return ConnectionTestResult(
            success=success, message=message, provider=self.provider_type, model=self.model
        )

    async def verify(self) -> None:
        """
        Round trip that proves the credential without generating a completion.
        """
        await self._request_json("GET", self.verify_url or f"{self.api_endpoint}/models",
                                 headers=self._auth_headers())

    async def list_models(self) -> List[str]:
        return list(self.template.get("models", []))

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.config.api_key}"}

    def build_chat_messages(self, message: str, context: List[Dict[str, str]]) -> List[Dict[str, str]]:
        """
        OpenAI-style message list: system prompt, prior turns, current message.
        """
        messages = [{"role": "system", "content": self.system_prompt}]
        for turn in context:
            role = turn.get("role") if turn.get("role") in ("user", "assistant") else "user"
            messages.append({"role": role, "content": turn.get("content", "")})
        messages.append({"role": "user", "content": message})
        return messages

    async def _request_json(self, method: str, url: str, **kwargs) -> Any:
        """
        Issue one HTTP request and return the decoded JSON body.

        Transport and HTTP failures are mapped onto UpstreamError kinds.
        """
        client = self.http_client or httpx.AsyncClient(timeout=self.timeout)
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise UpstreamError(f"{self.provider_type} request timed out: {e}", kind=UpstreamError.TIMEOUT)
        except httpx.HTTPError as e:
            raise UpstreamError(f"{self.provider_type} is unreachable: {e}", kind=UpstreamError.UNREACHABLE)
        finally:
            if self.http_client is None:
                await client.aclose()

        if response.status_code in (401, 403):
            raise UpstreamError(self._error_message(response), kind=UpstreamError.AUTH,
                                status_code=response.status_code)
        if response.status_code == 429:
            raise UpstreamError(self._error_message(response), kind=UpstreamError.RATE_LIMITED,
                                status_code=response.status_code)
        if response.status_code >= 400:
            raise UpstreamError(self._error_message(response), kind=UpstreamError.UPSTREAM,
                                status_code=response.status_code)

        try:
            return response.json()
        except ValueError:
            raise UpstreamError(f"Invalid response format from {self.provider_type}",
                                kind=UpstreamError.MALFORMED, status_code=response.status_code)

    def _error_message(self, response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return f"{self.provider_type} API error ({response.status_code}): {response.text[:200]}"
        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict):
            error = error.get("message")
        return f"{self.provider_type} API error ({response.status_code}): {error or 'Unknown error'}"
