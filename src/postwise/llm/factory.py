"""LLM Provider 工厂."""

from postwise.config import Settings
from postwise.llm.anthropic import AnthropicProvider
from postwise.llm.base import LLMConfig, LLMProvider, ProviderError
from postwise.llm.gemini import GeminiProvider
from postwise.llm.openai import OpenAIProvider


def create_llm_provider(
    settings: Settings,
    provider: str | None = None,
    model: str | None = None,
) -> LLMProvider:
    """根据配置创建 LLM Provider（provider/model 为空时使用默认值）."""
    provider = provider or settings.llm_provider
    timeout = float(settings.llm_timeout_seconds)

    def _config(default_model: str) -> LLMConfig:
        return LLMConfig(
            model=model or default_model,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )

    if provider == "openai":
        return OpenAIProvider(
            config=_config(settings.openai_model),
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=timeout,
        )

    if provider == "anthropic":
        return AnthropicProvider(
            config=_config(settings.anthropic_model),
            api_key=settings.anthropic_api_key,
            timeout=timeout,
        )

    if provider == "gemini":
        return GeminiProvider(
            config=_config(settings.gemini_model),
            api_key=settings.gemini_api_key,
            base_url=settings.gemini_base_url,
            timeout=timeout,
        )

    msg = f"不支持的 LLM 供应商: {provider}"
    raise ProviderError(msg)
