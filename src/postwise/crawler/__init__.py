"""新闻抓取模块."""

from postwise.crawler.parser import ParsedArticle, extract_article_urls, parse_article
from postwise.crawler.sites import (
    DEFAULT_CRAWL_SITES,
    DEFAULT_USER_AGENT,
    ArticleSelectors,
    CrawlSiteConfig,
    ListPageConfig,
    load_crawl_sites,
)

__all__ = [
    "DEFAULT_CRAWL_SITES",
    "DEFAULT_USER_AGENT",
    "ArticleSelectors",
    "CrawlSiteConfig",
    "ListPageConfig",
    "ParsedArticle",
    "extract_article_urls",
    "load_crawl_sites",
    "parse_article",
]
