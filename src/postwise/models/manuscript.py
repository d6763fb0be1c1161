"""Manuscript 原稿模型."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from postwise.utils.clock import utcnow


class ManuscriptStatus:
    """原稿状态枚举（只能向前推进）."""

    GENERATING = "generating"
    GENERATED = "generated"
    POSTED = "posted"
    FAILED = "failed"


class LengthOption:
    """原稿长度选项."""

    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"

    ALL = (SHORT, MEDIUM, LONG)


class ImageType:
    """原稿图片类型."""

    ORIGINAL_PROCESSED = "original_processed"
    GENERATED = "generated"


class Manuscript(SQLModel, table=True):
    """基于 Source 生成的原稿."""

    __tablename__ = "manuscripts"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    source_id: int | None = Field(
        default=None, foreign_key="sources.id", index=True, description="过期后置空"
    )
    prompt_id: int | None = Field(default=None, foreign_key="prompts.id")
    image_template_id: int | None = Field(
        default=None, foreign_key="image_templates.id"
    )
    title: str
    content_html: str | None = Field(default=None)
    keyword: str | None = Field(default=None)
    length_option: str = Field(default=LengthOption.MEDIUM)
    new_image_count: int = Field(default=0, ge=0, le=10)
    status: str = Field(
        default=ManuscriptStatus.GENERATING,
        index=True,
        description="状态: generating|generated|posted|failed",
    )
    prompt_snapshot: str | None = Field(default=None)
    image_template_snapshot: dict[str, Any] | None = Field(
        default=None, sa_column=Column(JSON, nullable=True)
    )
    source_title_snapshot: str | None = Field(default=None)
    source_url_snapshot: str | None = Field(default=None)
    created_at: datetime = Field(sa_type=DateTime, default_factory=utcnow, index=True)
    updated_at: datetime = Field(sa_type=DateTime, default_factory=utcnow)


class ManuscriptImage(SQLModel, table=True):
    """原稿中使用的图片."""

    __tablename__ = "manuscript_images"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    manuscript_id: int = Field(foreign_key="manuscripts.id", index=True)
    image_type: str = Field(description="original_processed|generated")
    original_source_image_id: int | None = Field(default=None)
    file_path: str = Field(description="存储 key")
    file_url: str = Field(description="公开访问 URL")
    sort_order: int = Field(default=0)
    created_at: datetime = Field(sa_type=DateTime, default_factory=utcnow)
