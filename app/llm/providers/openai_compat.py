import asyncio
from typing import Dict, List

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    PermissionDeniedError,
    RateLimitError,
)

from app.core.exceptions import UpstreamError
from app.llm.base import RESPONSE_SHAPE_ERRORS, BaseProvider, ProviderResult, TokenUsage

# Optional sampling knobs forwarded from advanced_settings when present
SAMPLING_SETTINGS = ("top_p", "frequency_penalty", "presence_penalty")


class OpenAICompatibleProvider(BaseProvider):
    """
    Chat completions over the OpenAI wire format.

    Each vendor subclass only changes provider_type; the base URL comes from
    the registry template (or advanced_settings.base_url).
    """
    provider_type = "openai"
    live_models = True

    def _default_headers(self) -> Dict[str, str]:
        return {}

    def _client(self) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=self.config.api_key,
            base_url=self.api_endpoint,
            timeout=self.timeout,
            max_retries=0,
            default_headers=self._default_headers() or None,
            http_client=self.http_client,
        )

    async def _close(self, client: AsyncOpenAI) -> None:
        # injected http clients belong to the caller
        if self.http_client is None:
            await client.close()

    async def _call(self, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except (APITimeoutError, asyncio.TimeoutError):
            raise UpstreamError(f"{self.provider_type} request timed out", kind=UpstreamError.TIMEOUT)
        except (AuthenticationError, PermissionDeniedError) as e:
            raise UpstreamError(str(e), kind=UpstreamError.AUTH, status_code=e.status_code)
        except RateLimitError as e:
            raise UpstreamError(str(e), kind=UpstreamError.RATE_LIMITED, status_code=e.status_code)
        except APIConnectionError as e:
            raise UpstreamError(f"{self.provider_type} is unreachable: {e}", kind=UpstreamError.UNREACHABLE)
        except APIStatusError as e:
            raise UpstreamError(str(e), kind=UpstreamError.UPSTREAM, status_code=e.status_code)

    async def _generate(self, message: str, context: List[Dict[str, str]]) -> ProviderResult:
        messages = self.build_chat_messages(message, context)
        extra = {key: self.advanced[key] for key in SAMPLING_SETTINGS if key in self.advanced}

        client = self._client()
        try:
            completion = await self._call(
                client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=self.config.temperature,
                    max_tokens=self.config.max_tokens,
                    **extra,
                )
            )
        finally:
            await self._close(client)

        try:
            choice = completion.choices[0]
            content = choice.message.content
            if not isinstance(content, str):
                raise TypeError("completion has no message content")
            if completion.usage is not None:
                usage = TokenUsage.from_counts(
                    completion.usage.prompt_tokens,
                    completion.usage.completion_tokens,
                    completion.usage.total_tokens,
                )
            else:
                usage = TokenUsage.estimate(" ".join(m["content"] for m in messages), content)

            return ProviderResult(
                success=True,
                provider=self.provider_type,
                content=content,
                model=completion.model or self.model,
                usage=usage,
                finish_reason=choice.finish_reason,
            )
        except RESPONSE_SHAPE_ERRORS:
            raise UpstreamError(f"Invalid response format from {self.provider_type}", kind=UpstreamError.MALFORMED)

    async def verify(self) -> None:
        client = self._client()
        try:
            await self._call(client.models.list())
        finally:
            await self._close(client)

    async def list_models(self) -> List[str]:
        if not self.config.api_key:
            return await super().list_models()

        client = self._client()
        try:
            page = await self._call(client.models.list())
        finally:
            await self._close(client)
        return sorted(model.id for model in page.data)


class MistralProvider(OpenAICompatibleProvider):
    provider_type = "mistral"


class GroqProvider(OpenAICompatibleProvider):
    provider_type = "groq"


class DeepSeekProvider(OpenAICompatibleProvider):
    provider_type = "deepseek"


class GrokProvider(OpenAICompatibleProvider):
    provider_type = "grok"


class OpenRouterProvider(OpenAICompatibleProvider):
    provider_type = "openrouter"

    def _default_headers(self) -> Dict[str, str]:
        # attribution headers shown on the OpenRouter dashboard
        headers = {"X-Title": self.advanced.get("app_name", "Widget Platform")}
        if self.advanced.get("site_url"):
            headers["HTTP-Referer"] = self.advanced["site_url"]
        return headers
