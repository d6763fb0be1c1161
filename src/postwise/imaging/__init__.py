"""图片 AI 与对象存储."""

from postwise.imaging.base import ImageAIError, ImageAIProvider
from postwise.imaging.gemini import GeminiImageProvider
from postwise.imaging.storage import (
    LocalObjectStorage,
    ObjectStorage,
    StoredObject,
    cleanup_local_file,
)

__all__ = [
    "GeminiImageProvider",
    "ImageAIError",
    "ImageAIProvider",
    "LocalObjectStorage",
    "ObjectStorage",
    "StoredObject",
    "cleanup_local_file",
]
