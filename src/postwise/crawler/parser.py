"""列表页和文章页解析."""

import logging
import re
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag
from pydantic import BaseModel
from trafilatura import extract

from postwise.core.sources import normalize_url
from postwise.crawler.sites import ArticleSelectors, ListPageConfig

logger = logging.getLogger(__name__)

# 懒加载图片的真实地址可能放在这些属性里，按顺序取第一个
IMAGE_ATTRS = ("data-src", "data-lazy-src", "data-original", "src")
PLACEHOLDER_MARKERS = ("blank.", "transparent.")
NOISE_SELECTOR = (
    "script, style, iframe, .byline, .reporter_area, .copyright, .artice_bottm"
)


class ParsedArticle(BaseModel):
    """文章页解析结果."""

    title: str
    content_html: str
    thumbnail_url: str | None = None
    image_urls: list[str] = []
    category: str | None = None
    source_site: str | None = None


def resolve_url(href: str, base_url: str) -> str:
    """相对链接转绝对链接."""
    try:
        return urljoin(base_url, href.strip())
    except ValueError:
        return href


def _is_http(url: str) -> bool:
    return url.startswith(("http://", "https://"))


def _unique(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


def _meta(soup: BeautifulSoup, prop: str) -> str | None:
    tag = soup.find("meta", attrs={"property": prop})
    if isinstance(tag, Tag):
        content = tag.get("content")
        if isinstance(content, str) and content.strip():
            return content.strip()
    return None


def extract_urls_from_rss(xml: str) -> list[str]:
    """从 RSS 的 ``<item><link>`` 提取文章 URL."""
    soup = BeautifulSoup(xml, "xml")
    urls: list[str] = []
    for item in soup.find_all("item"):
        link = item.find("link")
        if link is None:
            continue
        text = link.get_text(strip=True)
        if text and _is_http(text):
            urls.append(text)
    return _unique(urls)


def extract_urls_from_html(html: str, link_selector: str, base_url: str) -> list[str]:
    """按链接选择器提取文章 URL."""
    soup = BeautifulSoup(html, "lxml")
    urls: list[str] = []
    for anchor in soup.select(link_selector):
        href = anchor.get("href")
        if not isinstance(href, str) or not href:
            continue
        absolute = resolve_url(href, base_url)
        if _is_http(absolute):
            urls.append(absolute)
    return _unique(urls)


def extract_article_urls(data: str, list_page: ListPageConfig) -> list[str]:
    """
    从列表页提取候选文章 URL.

    依次：提取链接 → 按 ``url_pattern`` 过滤 → 规范化去重 →
    截断到 ``max_articles``。
    """
    if list_page.rss:
        urls = extract_urls_from_rss(data)
    else:
        urls = extract_urls_from_html(data, list_page.link_selector, list_page.url)

    if list_page.url_pattern:
        pattern = re.compile(list_page.url_pattern)
        urls = [url for url in urls if pattern.search(url)]

    normalized = _unique([normalize_url(url) for url in urls])

    if list_page.max_articles and len(normalized) > list_page.max_articles:
        return normalized[: list_page.max_articles]
    return normalized


def _collect_images(container: Tag, base_url: str) -> list[str]:
    urls: list[str] = []
    for img in container.find_all("img"):
        src = ""
        for attr in IMAGE_ATTRS:
            value = img.get(attr)
            if isinstance(value, str) and value.strip():
                src = value.strip()
                break
        if not src or any(marker in src for marker in PLACEHOLDER_MARKERS):
            continue
        absolute = resolve_url(src, base_url)
        if _is_http(absolute):
            urls.append(absolute)
    return urls


def _fallback_content(html: str, url: str) -> tuple[str, list[str]]:
    """选择器失效时用 trafilatura 提取正文."""
    content = extract(
        html,
        url=url,
        include_comments=False,
        include_tables=True,
        include_images=True,
        output_format="html",
    )
    if not content:
        return "", []

    soup = BeautifulSoup(content, "lxml")
    body = soup.body or soup
    images = _collect_images(body, url)
    return body.decode_contents().strip(), images


def parse_article(
    html: str, url: str, selectors: ArticleSelectors
) -> ParsedArticle | None:
    """解析文章页，标题或正文缺失时返回 None."""
    soup = BeautifulSoup(html, "lxml")

    # 标题: 选择器 → og:title → <title>
    title = ""
    title_el = soup.select_one(selectors.title_selector)
    if title_el is not None:
        title = title_el.get_text(strip=True)
    if not title:
        title = _meta(soup, "og:title") or ""
    if not title and soup.title is not None:
        title = soup.title.get_text(strip=True)
    if not title:
        logger.warning(f"标题提取失败: {url}")
        return None

    # 正文
    content_el = soup.select_one(selectors.content_selector)
    if content_el is not None:
        image_urls = _collect_images(content_el, url)
        for noise in content_el.select(NOISE_SELECTOR):
            noise.decompose()
        content_html = content_el.decode_contents().strip()
    else:
        content_html, image_urls = _fallback_content(html, url)

    if not content_html:
        logger.warning(f"正文为空: {url}")
        return None

    # 缩略图: 选择器 → og:image → 正文第一张图
    thumbnail_url: str | None = None
    if selectors.thumbnail_selector:
        thumb_el = soup.select_one(selectors.thumbnail_selector)
        if thumb_el is not None:
            value = thumb_el.get("content") or thumb_el.get("src")
            if isinstance(value, str) and value.strip():
                thumbnail_url = resolve_url(value, url)
    if not thumbnail_url:
        og_image = _meta(soup, "og:image")
        if og_image:
            thumbnail_url = resolve_url(og_image, url)
    if not thumbnail_url and image_urls:
        thumbnail_url = image_urls[0]

    category: str | None = None
    if selectors.category_selector:
        category_el = soup.select_one(selectors.category_selector)
        if category_el is not None:
            category = category_el.get_text(strip=True) or None
    if not category:
        category = _meta(soup, "article:section")

    # 来源媒体: logo 的 alt 或文本
    source_site: str | None = None
    if selectors.source_site_selector:
        site_el = soup.select_one(selectors.source_site_selector)
        if site_el is not None:
            alt = site_el.get("alt")
            source_site = (alt.strip() if isinstance(alt, str) else "") or (
                site_el.get_text(strip=True) or None
            )
    if not source_site:
        source_site = _meta(soup, "og:article:author")

    return ParsedArticle(
        title=title,
        content_html=content_html,
        thumbnail_url=thumbnail_url,
        image_urls=image_urls,
        category=category,
        source_site=source_site,
    )
