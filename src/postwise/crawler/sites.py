"""抓取站点配置."""

import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)


class ListPageConfig(BaseModel):
    """文章列表页（排行页或 RSS）."""

    url: str
    category: str = Field(default="", description="为空时从文章页提取")
    link_selector: str = "a[href]"
    rss: bool = False
    url_pattern: str | None = Field(default=None, description="只保留匹配的文章 URL")
    max_articles: int | None = None


class ArticleSelectors(BaseModel):
    """文章页 CSS 选择器."""

    title_selector: str
    content_selector: str
    thumbnail_selector: str | None = None
    category_selector: str | None = None
    source_site_selector: str | None = None


class CrawlSiteConfig(BaseModel):
    """抓取站点."""

    id: str
    name: str
    base_url: str
    list_pages: list[ListPageConfig]
    article: ArticleSelectors
    user_agent: str | None = None


DEFAULT_CRAWL_SITES: list[CrawlSiteConfig] = [
    CrawlSiteConfig(
        id="naver-ranking",
        name="네이버 뉴스",
        base_url="https://news.naver.com",
        list_pages=[
            ListPageConfig(
                url="https://news.naver.com/main/ranking/popularDay.naver",
                link_selector='a[href*="/article/"]',
                url_pattern=r"n\.news\.naver\.com/article/\d+/\d+",
                max_articles=60,
            )
        ],
        article=ArticleSelectors(
            title_selector="h2#title_area, h2.media_end_head_headline",
            content_selector="article#dic_area, #newsct_article",
            thumbnail_selector='meta[property="og:image"]',
            category_selector=".media_end_categorize_item",
            source_site_selector=".media_end_head_top_logo img",
        ),
    )
]


def load_crawl_sites(path: str | None) -> list[CrawlSiteConfig]:
    """
    读取站点配置文件（JSON 数组）.

    未配置时使用内置的 Naver 新闻排行站点。文件存在但格式错误时直接
    抛出异常，避免静默地抓取错误的站点。
    """
    if not path:
        return list(DEFAULT_CRAWL_SITES)

    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    sites = [CrawlSiteConfig.model_validate(item) for item in raw]
    logger.info(f"已加载 {len(sites)} 个抓取站点: {path}")
    return sites
