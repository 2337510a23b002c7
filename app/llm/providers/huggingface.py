from typing import Any, Dict, List

from app.core.exceptions import UpstreamError
from app.llm.base import RESPONSE_SHAPE_ERRORS, BaseProvider, ProviderResult, TokenUsage


def format_prompt(model: str, system_prompt: str, message: str, context: List[Dict[str, str]]) -> str:
    """
    Flatten a conversation into the instruction format the model family expects.
    """
    name = model.lower()

    if "llama" in name:
        prompt = f"<s>[INST] <<SYS>>\n{system_prompt}\n<</SYS>>\n\n"
        for turn in context:
            if turn.get("role") == "assistant":
                prompt += f" {turn['content']} </s><s>[INST] "
            else:
                prompt += f"{turn['content']} [/INST]"
        return prompt + f"{message} [/INST]"

    if "mistral" in name or "mixtral" in name:
        prompt = f"<s>[INST] {system_prompt}\n\n"
        for turn in context:
            if turn.get("role") == "assistant":
                prompt += f" {turn['content']}</s> [INST] "
            else:
                prompt += f"{turn['content']} [/INST]"
        return prompt + f"{message} [/INST]"

    if "falcon" in name:
        prompt = f"System: {system_prompt}\n"
        for turn in context:
            speaker = "Assistant" if turn.get("role") == "assistant" else "User"
            prompt += f"{speaker}: {turn['content']}\n"
        return prompt + f"User: {message}\nAssistant:"

    prompt = f"{system_prompt}\n\n"
    for turn in context:
        speaker = "Assistant" if turn.get("role") == "assistant" else "User"
        prompt += f"{speaker}: {turn['content']}\n"
    return prompt + f"User: {message}\nAssistant:"


class HuggingFaceProvider(BaseProvider):
    provider_type = "huggingface"
    verify_url = "https://huggingface.co/api/whoami-v2"

    def build_payload(self, prompt: str) -> Dict[str, Any]:
        parameters = {
            "max_new_tokens": self.config.max_tokens,
            "return_full_text": False,
        }
        # the inference API rejects temperature == 0
        if self.config.temperature > 0:
            parameters["temperature"] = self.config.temperature
        else:
            parameters["do_sample"] = False
        if "top_p" in self.advanced:
            parameters["top_p"] = self.advanced["top_p"]
        return {"inputs": prompt, "parameters": parameters, "options": {"wait_for_model": True}}

    async def _generate(self, message: str, context: List[Dict[str, str]]) -> ProviderResult:
        prompt = format_prompt(self.model, self.system_prompt, message, context)
        data = await self._request_json(
            "POST",
            f"{self.api_endpoint}/{self.model}",
            json=self.build_payload(prompt),
            headers=self._auth_headers(),
        )

        if isinstance(data, dict) and data.get("error"):
            raise UpstreamError(f"HuggingFace API error: {data['error']}", kind=UpstreamError.UPSTREAM)

        try:
            item = data[0] if isinstance(data, list) else data
            content = item["generated_text"].strip()
        except RESPONSE_SHAPE_ERRORS:
            raise UpstreamError("Invalid response format from HuggingFace API", kind=UpstreamError.MALFORMED)

        return ProviderResult(
            success=True,
            provider=self.provider_type,
            content=content,
            model=self.model,
            usage=TokenUsage.estimate(prompt, content),
            finish_reason="stop",
        )
