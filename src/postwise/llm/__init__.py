"""LLM 抽象层."""

from postwise.llm.anthropic import AnthropicProvider
from postwise.llm.base import (
    EmptyResponseError,
    LLMConfig,
    LLMProvider,
    LLMResult,
    Message,
    ProviderError,
)
from postwise.llm.factory import create_llm_provider
from postwise.llm.gemini import GeminiProvider
from postwise.llm.openai import OpenAIProvider

__all__ = [
    "AnthropicProvider",
    "EmptyResponseError",
    "GeminiProvider",
    "LLMConfig",
    "LLMProvider",
    "LLMResult",
    "Message",
    "OpenAIProvider",
    "ProviderError",
    "create_llm_provider",
]
