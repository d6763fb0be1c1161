"""Anthropic LLM Provider."""

import anthropic
from anthropic import AsyncAnthropic

from postwise.llm.base import LLMConfig, LLMProvider, LLMResult, Message, ProviderError


class AnthropicProvider(LLMProvider):
    """Anthropic Messages API Provider."""

    name = "anthropic"

    def __init__(
        self,
        config: LLMConfig,
        api_key: str,
        timeout: float = 120.0,
    ) -> None:
        super().__init__(config)
        if not api_key:
            msg = "ANTHROPIC_API_KEY 未配置"
            raise ProviderError(msg)
        self.client = AsyncAnthropic(api_key=api_key, timeout=timeout)

    async def close(self) -> None:
        """关闭客户端."""
        await self.client.close()

    async def chat(self, messages: list[Message]) -> LLMResult:
        """对话，返回完整响应（system 消息单独传递）."""
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        conversation = [
            {"role": m.role, "content": m.content}
            for m in messages
            if m.role != "system"
        ]

        kwargs = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": conversation,
        }
        if system:
            kwargs["system"] = system

        try:
            response = await self.client.messages.create(**kwargs)  # type: ignore[arg-type]
        except anthropic.APIError as e:
            msg = f"Anthropic 调用失败: {e}"
            raise ProviderError(msg) from e

        text = "".join(
            block.text for block in response.content if getattr(block, "text", None)
        )
        return LLMResult(text=text, tokens_used=response.usage.output_tokens)
