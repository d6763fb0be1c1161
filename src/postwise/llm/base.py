"""LLM 抽象基类."""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class ProviderError(Exception):
    """LLM 服务调用失败（缺少凭据或非 2xx 响应）."""


class EmptyResponseError(Exception):
    """LLM 返回了空文本."""


class Message(BaseModel):
    """对话消息."""

    role: str  # "system" | "user" | "assistant"
    content: str


class LLMConfig(BaseModel):
    """LLM 配置."""

    model: str
    temperature: float = 0.7
    max_tokens: int = 1200


class LLMResult(BaseModel):
    """生成结果."""

    text: str
    tokens_used: int = 0


class LLMProvider(ABC):
    """LLM 服务提供者抽象基类."""

    name: str = "base"

    def __init__(self, config: LLMConfig) -> None:
        self.config = config

    @abstractmethod
    async def chat(self, messages: list[Message]) -> LLMResult:
        """对话，返回完整响应."""
        ...

    async def generate(self, prompt: str) -> LLMResult:
        """单轮生成，空文本视为失败."""
        result = await self.chat([Message(role="user", content=prompt)])
        text = result.text.strip()
        if not text:
            msg = f"{self.name} 返回了空文本 (model={self.config.model})"
            raise EmptyResponseError(msg)
        return LLMResult(text=text, tokens_used=result.tokens_used)

    async def close(self) -> None:
        """释放底层客户端."""
        return None
