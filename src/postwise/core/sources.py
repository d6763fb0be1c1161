"""Source 相关的存储操作."""

import asyncio
import hashlib
import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from postwise.models.manuscript import Manuscript
from postwise.models.source import Source, SourceImage, SourceWorker

logger = logging.getLogger(__name__)


@dataclass
class ExpiryResult:
    """过期清理结果."""

    detached: int = 0
    deleted: int = 0
    deleted_ids: list[int] = field(default_factory=list)


def normalize_url(url: str) -> str:
    """去掉查询参数和锚点，避免同一篇文章重复入库."""
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc:
        return url
    return urlunsplit((parts.scheme, parts.netloc, parts.path or "/", "", ""))


def hash_url(url: str) -> str:
    """URL 的 sha256."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


async def find_by_url_hash(session: AsyncSession, url_hash: str) -> Source | None:
    """按 URL 哈希查询."""
    result = await session.execute(select(Source).where(Source.url_hash == url_hash))
    return result.scalars().first()


async def add_worker(session: AsyncSession, source_id: int, user_id: int) -> None:
    """登记用户正在基于该文章生成原稿（重复登记忽略，不提交）."""
    stmt = select(SourceWorker).where(
        SourceWorker.source_id == source_id, SourceWorker.user_id == user_id
    )
    existing = (await session.execute(stmt)).scalars().first()
    if existing is None:
        session.add(SourceWorker(source_id=source_id, user_id=user_id))
        await session.flush()


async def remove_worker(session: AsyncSession, source_id: int, user_id: int) -> None:
    """解除登记（不存在时忽略，不提交）."""
    await session.execute(
        delete(SourceWorker).where(
            SourceWorker.source_id == source_id,  # type: ignore[arg-type]
            SourceWorker.user_id == user_id,  # type: ignore[arg-type]
        )
    )


async def expire_sources(session: AsyncSession, now: datetime) -> ExpiryResult:
    """
    清理过期文章.

    仍被原稿引用的过期文章：先把标题和链接快照到原稿上，再解除引用；
    之后没有任何原稿引用的过期文章连同图片、作业登记一起删除。
    被引用期间的文章永远不会被删除。
    """
    result = ExpiryResult()

    expired_ids = select(Source.id).where(Source.expires_at <= now)

    referencing = await session.execute(
        select(Manuscript, Source)
        .join(Source, Manuscript.source_id == Source.id)  # type: ignore[arg-type]
        .where(Source.expires_at <= now)
    )
    for manuscript, source in referencing.all():
        manuscript.source_title_snapshot = source.title
        manuscript.source_url_snapshot = source.original_url
        manuscript.source_id = None
        result.detached += 1
    await session.flush()

    still_referenced = (
        select(Manuscript.source_id)
        .where(Manuscript.source_id.is_not(None))  # type: ignore[union-attr]
    )
    deletable = (
        await session.execute(
            select(Source.id).where(
                Source.id.in_(expired_ids),  # type: ignore[union-attr]
                Source.id.notin_(still_referenced),  # type: ignore[union-attr]
            )
        )
    ).scalars().all()

    if deletable:
        ids = list(deletable)
        await session.execute(
            delete(SourceImage).where(SourceImage.source_id.in_(ids))  # type: ignore[attr-defined]
        )
        await session.execute(
            delete(SourceWorker).where(SourceWorker.source_id.in_(ids))  # type: ignore[attr-defined]
        )
        await session.execute(
            delete(Source).where(Source.id.in_(ids))  # type: ignore[union-attr]
        )
        result.deleted = len(ids)
        result.deleted_ids = ids

    await session.commit()
    return result



def source_media_dir(data_dir: Path, source_id: int) -> Path:
    """源文章图片的本地目录."""
    return data_dir / "uploads" / "sources" / str(source_id)


async def remove_source_media(data_dir: Path, source_ids: list[int]) -> None:
    """删除已清理文章的本地图片目录（尽力而为）."""
    for source_id in source_ids:
        path = source_media_dir(data_dir, source_id)
        try:
            await asyncio.to_thread(shutil.rmtree, path)
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning(f"图片目录删除失败: {path} - {e}")
