"""Gemini LLM Provider（REST 接口）."""

import httpx

from postwise.llm.base import LLMConfig, LLMProvider, LLMResult, Message, ProviderError


class GeminiProvider(LLMProvider):
    """Google Gemini generateContent Provider."""

    name = "gemini"

    def __init__(
        self,
        config: LLMConfig,
        api_key: str,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config)
        if not api_key:
            msg = "GEMINI_API_KEY 未配置"
            raise ProviderError(msg)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self) -> None:
        """关闭客户端."""
        await self._client.aclose()

    async def chat(self, messages: list[Message]) -> LLMResult:
        """对话，返回完整响应."""
        url = f"{self.base_url}/models/{self.config.model}:generateContent"
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        payload: dict = {
            "contents": [
                {
                    "role": "model" if m.role == "assistant" else "user",
                    "parts": [{"text": m.content}],
                }
                for m in messages
                if m.role != "system"
            ],
            "generationConfig": {
                "temperature": self.config.temperature,
                "maxOutputTokens": self.config.max_tokens,
            },
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}

        try:
            response = await self._client.post(
                url, params={"key": self.api_key}, json=payload
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            msg = f"Gemini 调用失败: {e}"
            raise ProviderError(msg) from e

        data = response.json()
        candidates = data.get("candidates") or [{}]
        parts = candidates[0].get("content", {}).get("parts", [])
        text = "".join(p.get("text", "") for p in parts)
        usage = data.get("usageMetadata", {})
        return LLMResult(text=text, tokens_used=usage.get("totalTokenCount", len(text)))
