from typing import Any, Dict, List

from app.core.exceptions import UpstreamError
from app.llm.base import RESPONSE_SHAPE_ERRORS, BaseProvider, ProviderResult, TokenUsage


class GeminiProvider(BaseProvider):
    provider_type = "gemini"

    def _auth_headers(self) -> Dict[str, str]:
        # header instead of ?key= so the credential never lands in httpx request logs
        return {"x-goog-api-key": self.config.api_key}

    def build_payload(self, message: str, context: List[Dict[str, str]]) -> Dict[str, Any]:
        contents = [
            {"role": "model" if turn.get("role") == "assistant" else "user",
             "parts": [{"text": turn.get("content", "")}]}
            for turn in context
        ]
        contents.append({"role": "user", "parts": [{"text": message}]})

        generation_config = {
            "temperature": self.config.temperature,
            "maxOutputTokens": self.config.max_tokens,
            "topP": self.advanced.get("top_p", 0.9),
            "topK": self.advanced.get("top_k", 40),
        }
        return {
            "systemInstruction": {"parts": [{"text": self.system_prompt}]},
            "contents": contents,
            "generationConfig": generation_config,
        }

    async def _generate(self, message: str, context: List[Dict[str, str]]) -> ProviderResult:
        data = await self._request_json(
            "POST",
            f"{self.api_endpoint}/models/{self.model}:generateContent",
            json=self.build_payload(message, context),
            headers=self._auth_headers(),
        )

        try:
            candidate = data["candidates"][0]
            content = candidate["content"]["parts"][0]["text"]
            if not isinstance(content, str):
                raise TypeError("candidate part has no text")

            metadata = data.get("usageMetadata") or {}
            if metadata:
                usage = TokenUsage.from_counts(
                    metadata.get("promptTokenCount"),
                    metadata.get("candidatesTokenCount"),
                    metadata.get("totalTokenCount"),
                )
            else:
                usage = TokenUsage.estimate(message, content)

            return ProviderResult(
                success=True,
                provider=self.provider_type,
                content=content,
                model=data.get("modelVersion") or self.model,
                usage=usage,
                finish_reason=candidate.get("finishReason"),
            )
        except RESPONSE_SHAPE_ERRORS:
            raise UpstreamError("Invalid response format from Gemini API", kind=UpstreamError.MALFORMED)
