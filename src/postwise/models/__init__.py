"""数据模型."""

from postwise.models.database import get_session, init_db
from postwise.models.job import Job, JobStatus
from postwise.models.manuscript import (
    ImageType,
    LengthOption,
    Manuscript,
    ManuscriptImage,
    ManuscriptStatus,
)
from postwise.models.performance import (
    PerformanceData,
    PerformanceTracking,
    TrackingStatus,
)
from postwise.models.posting import Platform, Posting
from postwise.models.prompt import ImageTemplate, Prompt
from postwise.models.source import Source, SourceImage, SourceWorker

__all__ = [
    "ImageTemplate",
    "ImageType",
    "Job",
    "JobStatus",
    "LengthOption",
    "Manuscript",
    "ManuscriptImage",
    "ManuscriptStatus",
    "PerformanceData",
    "PerformanceTracking",
    "Platform",
    "Posting",
    "Prompt",
    "Source",
    "SourceImage",
    "SourceWorker",
    "TrackingStatus",
    "get_session",
    "init_db",
]
