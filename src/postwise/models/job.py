"""Job 任务队列模型."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from postwise.utils.clock import utcnow


class JobStatus:
    """任务状态枚举."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Job(SQLModel, table=True):
    """持久化任务（只追加，不删除）."""

    __tablename__ = "job_queue"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    type: str = Field(index=True, description="任务类型")
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
        description="任务参数",
    )
    status: str = Field(
        default=JobStatus.PENDING,
        index=True,
        description="状态: pending|processing|completed|failed",
    )
    attempts: int = Field(default=0, description="已尝试次数")
    max_attempts: int = Field(default=3, description="最大尝试次数")
    error_message: str | None = Field(default=None, description="最近一次错误")
    created_at: datetime = Field(sa_type=DateTime, default_factory=utcnow, index=True)
    started_at: datetime | None = Field(sa_type=DateTime, default=None)
    completed_at: datetime | None = Field(sa_type=DateTime, default=None)
