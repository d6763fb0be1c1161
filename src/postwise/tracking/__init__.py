"""成效追踪数据来源."""

from postwise.tracking.base import (
    MetricsFetcher,
    MetricsFetchError,
    PostMetrics,
    RankSearcher,
    RankSearchError,
    TrackingSourceError,
)
from postwise.tracking.naver import NaverPostMetricsFetcher, NaverRankSearcher
from postwise.tracking.urls import canonicalize_post_url

__all__ = [
    "MetricsFetchError",
    "MetricsFetcher",
    "NaverPostMetricsFetcher",
    "NaverRankSearcher",
    "PostMetrics",
    "RankSearchError",
    "RankSearcher",
    "TrackingSourceError",
    "canonicalize_post_url",
]
