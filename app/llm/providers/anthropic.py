from typing import Any, Dict, List

from app.core.exceptions import UpstreamError
from app.llm.base import RESPONSE_SHAPE_ERRORS, BaseProvider, ProviderResult, TokenUsage

ANTHROPIC_VERSION = "2023-06-01"


class ClaudeProvider(BaseProvider):
    provider_type = "claude"

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.config.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    def build_payload(self, message: str, context: List[Dict[str, str]]) -> Dict[str, Any]:
        # system prompt travels outside the message list
        messages = [
            {"role": turn["role"] if turn.get("role") == "assistant" else "user",
             "content": turn.get("content", "")}
            for turn in context
        ]
        messages.append({"role": "user", "content": message})

        payload = {
            "model": self.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "system": self.system_prompt,
            "messages": messages,
        }
        for key in ("top_p", "top_k"):
            if key in self.advanced:
                payload[key] = self.advanced[key]
        return payload

    async def _generate(self, message: str, context: List[Dict[str, str]]) -> ProviderResult:
        payload = self.build_payload(message, context)
        data = await self._request_json(
            "POST", f"{self.api_endpoint}/messages", json=payload, headers=self._auth_headers()
        )

        try:
            content = data["content"][0]["text"]
            if not isinstance(content, str):
                raise TypeError("content block has no text")

            usage_data = data.get("usage") or {}
            if usage_data:
                usage = TokenUsage.from_counts(usage_data.get("input_tokens"), usage_data.get("output_tokens"))
            else:
                usage = TokenUsage.estimate(message, content)

            return ProviderResult(
                success=True,
                provider=self.provider_type,
                content=content,
                model=data.get("model") or self.model,
                usage=usage,
                finish_reason=data.get("stop_reason"),
            )
        except RESPONSE_SHAPE_ERRORS:
            raise UpstreamError("Invalid response format from Claude API", kind=UpstreamError.MALFORMED)
