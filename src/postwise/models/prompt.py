"""Prompt 与 ImageTemplate 模型（由管理端维护，这里只读）."""

from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from postwise.utils.clock import utcnow


class Prompt(SQLModel, table=True):
    """原稿生成提示词."""

    __tablename__ = "prompts"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    name: str
    content: str = Field(description="提示词正文，支持 {원문} / {키워드} 占位符")
    description: str | None = Field(default=None)
    model_provider: str = Field(
        default="openai", description="模型供应商: openai|anthropic|gemini"
    )
    model_name: str = Field(default="gpt-4o-mini")
    is_active: bool = Field(default=True)
    created_at: datetime = Field(sa_type=DateTime, default_factory=utcnow)
    updated_at: datetime = Field(sa_type=DateTime, default_factory=utcnow)


class ImageTemplate(SQLModel, table=True):
    """图片处理模板."""

    __tablename__ = "image_templates"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    name: str
    description: str | None = Field(default=None)
    original_image_prompt: str = Field(description="原图变换指令")
    new_image_prompt: str | None = Field(default=None, description="新图生成指令")
    remove_watermark: bool = Field(default=False)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(sa_type=DateTime, default_factory=utcnow)
    updated_at: datetime = Field(sa_type=DateTime, default_factory=utcnow)
