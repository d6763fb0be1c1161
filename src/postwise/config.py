"""应用配置管理."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """应用配置（环境变量）."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # LLM 配置
    llm_provider: Literal["openai", "anthropic", "gemini"] = "openai"
    llm_max_tokens: int = 1200
    llm_temperature: float = 0.7
    llm_timeout_seconds: int = 120

    # OpenAI 配置
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"

    # Anthropic 配置
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-3-5-sonnet-20241022"

    # Gemini 配置（文本 + 图片）
    gemini_api_key: str = ""
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_model: str = "gemini-1.5-flash"
    gemini_image_model: str = "gemini-2.5-flash-image"

    # 存储配置
    database_url: str = "sqlite+aiosqlite:///./postwise.db"
    data_dir: str = "./data"
    storage_public_base_url: str = "http://localhost:8000/files"

    # 爬虫配置
    crawl_cron: str = "0 * * * *"
    crawl_startup_delay_seconds: int = 10
    crawl_article_delay_seconds: float = 1.5
    crawl_timeout_seconds: int = 15
    crawl_sites_file: str | None = None
    source_retention_days: int = 7

    # 原稿生成 worker 配置
    worker_poll_interval_seconds: float = 3.0
    job_max_attempts: int = 3
    image_context_max_chars: int = 1200

    # 成效追踪配置
    performance_cron: str = "0 * * * *"
    performance_startup_delay_seconds: int = 15
    tracking_window_days: int = 7
    tracking_timeout_seconds: int = 30
    naver_client_ids: str = ""
    naver_client_secrets: str = ""

    scheduler_enabled: bool = True

    def naver_credentials(self) -> list[tuple[str, str]]:
        """解析 Naver 搜索 API 凭据（逗号分隔，按位置配对）."""
        ids = [v.strip() for v in self.naver_client_ids.split(",") if v.strip()]
        secrets = [
            v.strip() for v in self.naver_client_secrets.split(",") if v.strip()
        ]
        return list(zip(ids, secrets, strict=False))


@lru_cache
def get_settings() -> Settings:
    """获取应用配置（带缓存）."""
    return Settings()
