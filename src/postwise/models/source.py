"""Source 抓取文章模型."""

from datetime import datetime

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from postwise.utils.clock import utcnow


class Source(SQLModel, table=True):
    """抓取到的新闻文章."""

    __tablename__ = "sources"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    title: str = Field(description="标题")
    thumbnail_url: str | None = Field(default=None, description="缩略图原始 URL")
    thumbnail_local_path: str | None = Field(
        default=None, description="缩略图本地路径（相对 data_dir）"
    )
    original_url: str = Field(description="规范化后的原文链接")
    url_hash: str = Field(unique=True, index=True, description="原文链接 sha256")
    content_html: str = Field(description="正文 HTML")
    category: str | None = Field(default=None, index=True, description="分类")
    source_site: str = Field(description="来源媒体")
    crawled_at: datetime = Field(sa_type=DateTime, default_factory=utcnow, index=True)
    expires_at: datetime = Field(sa_type=DateTime, index=True, description="过期时间")


class SourceImage(SQLModel, table=True):
    """文章正文中的图片."""

    __tablename__ = "source_images"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    source_id: int = Field(foreign_key="sources.id", index=True)
    original_url: str = Field(description="图片原始 URL")
    local_path: str = Field(description="本地路径（相对 data_dir）")
    created_at: datetime = Field(sa_type=DateTime, default_factory=utcnow)


class SourceWorker(SQLModel, table=True):
    """正在基于该文章生成原稿的用户."""

    __tablename__ = "source_workers"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("source_id", "user_id"),)

    id: int | None = Field(default=None, primary_key=True)
    source_id: int = Field(foreign_key="sources.id", index=True)
    user_id: int = Field(index=True)
    created_at: datetime = Field(sa_type=DateTime, default_factory=utcnow)
