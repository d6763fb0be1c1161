"""成效追踪模型."""

from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from postwise.utils.clock import utcnow


class TrackingStatus:
    """追踪状态."""

    TRACKING = "tracking"
    COMPLETED = "completed"


class PerformanceTracking(SQLModel, table=True):
    """发布记录的追踪窗口."""

    __tablename__ = "performance_tracking"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    posting_id: int = Field(foreign_key="postings.id", unique=True)
    tracking_start: datetime = Field(sa_type=DateTime, default_factory=utcnow)
    tracking_end: datetime = Field(sa_type=DateTime, index=True)
    status: str = Field(default=TrackingStatus.TRACKING, index=True)


class PerformanceData(SQLModel, table=True):
    """一次采集得到的数据点（只追加）."""

    __tablename__ = "performance_data"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    tracking_id: int = Field(foreign_key="performance_tracking.id", index=True)
    keyword_rank: int | None = Field(default=None)
    view_count: int | None = Field(default=None)
    comment_count: int | None = Field(default=None)
    is_accessible: bool = Field(default=True)
    collected_at: datetime = Field(sa_type=DateTime, default_factory=utcnow, index=True)
