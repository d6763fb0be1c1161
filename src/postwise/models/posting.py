"""Posting 发布记录模型."""

from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from postwise.utils.clock import utcnow


class Platform:
    """发布平台."""

    BLOG = "blog"
    CAFE = "cafe"

    ALL = (BLOG, CAFE)


class Posting(SQLModel, table=True):
    """原稿发布到外部平台的记录（每篇原稿最多一条）."""

    __tablename__ = "postings"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    manuscript_id: int = Field(foreign_key="manuscripts.id", unique=True)
    url: str
    platform: str = Field(description="blog|cafe")
    keyword: str | None = Field(default=None)
    posted_at: datetime = Field(sa_type=DateTime, default_factory=utcnow)
