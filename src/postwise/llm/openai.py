"""OpenAI LLM Provider."""

from typing import Any

import openai
from openai import AsyncOpenAI

from postwise.llm.base import LLMConfig, LLMProvider, LLMResult, Message, ProviderError


class OpenAIProvider(LLMProvider):
    """OpenAI API Provider（支持所有 OpenAI 兼容接口）."""

    name = "openai"

    def __init__(
        self,
        config: LLMConfig,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 120.0,
    ) -> None:
        super().__init__(config)
        if not api_key:
            msg = "OPENAI_API_KEY 未配置"
            raise ProviderError(msg)
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)

    async def close(self) -> None:
        """关闭客户端."""
        await self.client.close()

    async def chat(self, messages: list[Message]) -> LLMResult:
        """对话，返回完整响应."""
        openai_messages: list[dict[str, Any]] = [
            {"role": m.role, "content": m.content} for m in messages
        ]

        try:
            response = await self.client.chat.completions.create(
                model=self.config.model,
                messages=openai_messages,  # type: ignore[arg-type]
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except openai.APIError as e:
            msg = f"OpenAI 调用失败: {e}"
            raise ProviderError(msg) from e

        content = response.choices[0].message.content if response.choices else None
        text = content or ""
        tokens = response.usage.total_tokens if response.usage else len(text)
        return LLMResult(text=text, tokens_used=tokens)
