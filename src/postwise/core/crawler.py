"""新闻抓取流水线."""

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from postwise.config import Settings
from postwise.core.sources import (
    expire_sources,
    find_by_url_hash,
    hash_url,
    remove_source_media,
    source_media_dir,
)
from postwise.crawler.parser import ParsedArticle, extract_article_urls, parse_article
from postwise.crawler.sites import DEFAULT_USER_AGENT, CrawlSiteConfig, ListPageConfig
from postwise.models.source import Source, SourceImage
from postwise.utils.clock import utcnow

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "종합"
REFERER = "https://news.naver.com/"


@dataclass
class CrawlResult:
    """一次抓取的统计."""

    new_sources: int = 0
    skipped: int = 0
    failed: int = 0
    expired_deleted: int = 0


def _image_extension(content_type: str) -> str:
    if "png" in content_type:
        return ".png"
    if "gif" in content_type:
        return ".gif"
    if "webp" in content_type:
        return ".webp"
    return ".jpg"


def _write_file(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


class CrawlPipeline:
    """
    抓取配置的站点并入库新文章.

    列表页和文章逐个顺序处理；单篇文章或单个列表页失败只记录日志。
    同一时间只允许一次运行，由调度器负责保证。
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sites: list[CrawlSiteConfig],
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
        now_func: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.sites = sites
        self.data_dir = Path(settings.data_dir)
        self.timeout = float(settings.crawl_timeout_seconds)
        self.article_delay = settings.crawl_article_delay_seconds
        self.retention = timedelta(days=settings.source_retention_days)
        self.transport = transport
        self.now_func = now_func

    async def run(self) -> CrawlResult:
        """执行一次完整抓取."""
        logger.info("开始抓取新闻...")
        start = time.monotonic()
        result = CrawlResult()

        await self._expire(result)

        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self.transport,
        ) as client:
            for site in self.sites:
                try:
                    await self._crawl_site(client, site, result)
                except Exception as e:
                    logger.exception(f"站点抓取失败: {site.name} - {e}")

        elapsed = time.monotonic() - start
        logger.info(
            f"抓取完成: 新增 {result.new_sources} 篇, 跳过 {result.skipped} 篇, "
            f"失败 {result.failed} 篇 ({elapsed:.1f}s)"
        )
        return result

    async def _expire(self, result: CrawlResult) -> None:
        try:
            async with self.session_factory() as session:
                expiry = await expire_sources(session, self.now_func())
            result.expired_deleted = expiry.deleted
            await remove_source_media(self.data_dir, expiry.deleted_ids)
            if expiry.detached or expiry.deleted:
                logger.info(
                    f"过期文章清理: 解除引用 {expiry.detached} 篇, "
                    f"删除 {expiry.deleted} 篇"
                )
        except Exception as e:
            logger.exception(f"过期文章清理失败: {e}")

    def _headers(self, site: CrawlSiteConfig) -> dict[str, str]:
        return {
            "User-Agent": site.user_agent or DEFAULT_USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "ko-KR,ko;q=0.9,en;q=0.3",
            "Referer": REFERER,
        }

    async def _fetch_text(
        self, client: httpx.AsyncClient, url: str, site: CrawlSiteConfig
    ) -> str:
        response = await client.get(url, headers=self._headers(site))
        response.raise_for_status()
        return response.text

    async def _crawl_site(
        self,
        client: httpx.AsyncClient,
        site: CrawlSiteConfig,
        result: CrawlResult,
    ) -> None:
        for list_page in site.list_pages:
            try:
                data = await self._fetch_text(client, list_page.url, site)
            except httpx.HTTPError as e:
                logger.error(f"列表页访问失败: {list_page.url} - {e}")
                continue

            urls = extract_article_urls(data, list_page)
            logger.info(f"{site.name}: 发现 {len(urls)} 个文章 URL")
            if not urls:
                logger.warning(f"没有提取到文章 URL，请检查选择器: {list_page.url}")

            for url in urls:
                try:
                    await self._crawl_article(client, site, list_page, url, result)
                except Exception as e:
                    result.failed += 1
                    logger.error(f"文章处理失败: {url} - {e}")

    async def _crawl_article(
        self,
        client: httpx.AsyncClient,
        site: CrawlSiteConfig,
        list_page: ListPageConfig,
        url: str,
        result: CrawlResult,
    ) -> None:
        url_hash = hash_url(url)
        async with self.session_factory() as session:
            if await find_by_url_hash(session, url_hash) is not None:
                result.skipped += 1
                return

        if self.article_delay > 0:
            await asyncio.sleep(self.article_delay)

        html = await self._fetch_text(client, url, site)
        article = parse_article(html, url, site.article)
        if article is None:
            result.skipped += 1
            return

        source_id = await self._save(site, list_page, url, url_hash, article)
        await self._download_media(client, source_id, article)

        result.new_sources += 1
        logger.info(f"+1 [{site.name}] {article.title[:40]}")

    async def _save(
        self,
        site: CrawlSiteConfig,
        list_page: ListPageConfig,
        url: str,
        url_hash: str,
        article: ParsedArticle,
    ) -> int:
        now = self.now_func()
        source = Source(
            title=article.title,
            thumbnail_url=article.thumbnail_url,
            original_url=url,
            url_hash=url_hash,
            content_html=article.content_html,
            category=list_page.category or article.category or DEFAULT_CATEGORY,
            source_site=article.source_site or site.name,
            crawled_at=now,
            expires_at=now + self.retention,
        )
        async with self.session_factory() as session:
            session.add(source)
            await session.commit()
        assert source.id is not None
        return source.id

    async def _download_media(
        self,
        client: httpx.AsyncClient,
        source_id: int,
        article: ParsedArticle,
    ) -> None:
        """下载缩略图和正文图片（失败的图片直接跳过）."""
        dest_dir = source_media_dir(self.data_dir, source_id)

        thumbnail_path: str | None = None
        if article.thumbnail_url:
            thumbnail_path = await self._download_image(
                client, article.thumbnail_url, dest_dir
            )

        images: list[SourceImage] = []
        for image_url in article.image_urls:
            local_path = await self._download_image(client, image_url, dest_dir)
            if local_path:
                images.append(
                    SourceImage(
                        source_id=source_id,
                        original_url=image_url,
                        local_path=local_path,
                    )
                )

        if thumbnail_path is None and not images:
            return

        async with self.session_factory() as session:
            if thumbnail_path is not None:
                source = await session.get(Source, source_id)
                if source is not None:
                    source.thumbnail_local_path = thumbnail_path
            session.add_all(images)
            await session.commit()

    async def _download_image(
        self, client: httpx.AsyncClient, url: str, dest_dir: Path
    ) -> str | None:
        """下载图片，返回相对 data_dir 的路径."""
        try:
            response = await client.get(
                url, headers={"User-Agent": DEFAULT_USER_AGENT, "Referer": REFERER}
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"图片下载失败: {url} - {e}")
            return None

        ext = _image_extension(response.headers.get("content-type", ""))
        target = dest_dir / f"{uuid.uuid4()}{ext}"
        await asyncio.to_thread(_write_file, target, response.content)
        return target.relative_to(self.data_dir).as_posix()
