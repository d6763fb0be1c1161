"""成效数据来源抽象."""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class TrackingSourceError(Exception):
    """外部数据源调用失败."""


class RankSearchError(TrackingSourceError):
    """关键词排名查询失败."""


class MetricsFetchError(TrackingSourceError):
    """帖子数据获取失败."""


class PostMetrics(BaseModel):
    """帖子的浏览/评论数."""

    views: int | None = None
    comments: int | None = None
    accessible: bool = True


class RankSearcher(ABC):
    """关键词搜索排名."""

    @abstractmethod
    async def rank(self, keyword: str, target_url: str, platform: str) -> int | None:
        """返回 ``target_url`` 在搜索结果中的名次（从 1 开始），不在结果中返回 None."""
        ...

    async def close(self) -> None:
        return None


class MetricsFetcher(ABC):
    """帖子数据."""

    @abstractmethod
    async def fetch(self, url: str) -> PostMetrics:
        """获取帖子数据；帖子被删除或不可见时 ``accessible=False``."""
        ...

    async def close(self) -> None:
        return None
