"""HTML 解析工具."""

import html as html_lib
import re
from dataclasses import dataclass

from bs4 import BeautifulSoup, NavigableString, Tag

BLOCK_TAGS = ("p", "h1", "h2", "h3", "h4", "h5", "h6", "ul", "ol", "blockquote")


@dataclass
class HtmlBlock:
    """顶层单元；``is_block`` 为 False 的单元原样保留，不参与插图."""

    html: str
    is_paragraph: bool
    is_block: bool = True


def html_to_text(html: str) -> str:
    """
    将 HTML 转换为单行纯文本.

    Args:
        html: HTML 内容

    Returns:
        合并空白后的纯文本
    """
    if not html:
        return ""

    soup = BeautifulSoup(html, "lxml")

    # 移除 script 和 style 标签
    for element in soup(["script", "style"]):
        element.decompose()

    text = soup.get_text(separator=" ")
    return re.sub(r"\s+", " ", text).strip()


def _walk(node: Tag) -> list[HtmlBlock]:
    units: list[HtmlBlock] = []
    for child in node.children:
        if isinstance(child, Tag):
            if child.name in BLOCK_TAGS:
                units.append(
                    HtmlBlock(html=str(child), is_paragraph=child.name == "p")
                )
            elif child.find(BLOCK_TAGS) is not None:
                # div/section 等容器展开，内部的段落照常插图
                units.extend(_walk(child))
            else:
                units.append(
                    HtmlBlock(html=str(child), is_paragraph=False, is_block=False)
                )
        elif type(child) is NavigableString and child.strip():
            units.append(
                HtmlBlock(
                    html=html_lib.escape(child.strip(), quote=False),
                    is_paragraph=False,
                    is_block=False,
                )
            )
    return units


def extract_blocks(html: str) -> list[HtmlBlock]:
    """
    把 HTML 切分为顶层单元.

    段落/标题/列表/引用是块，嵌套的块随外层输出；表格、其他标签和
    块之间的裸文本按原位置保留。文档中没有块标签时，按空行切分
    纯文本并逐段包成 ``<p>``。
    """
    if not html or not html.strip():
        return []

    # html.parser 不会给裸文本补 <p>，保留“无块”时的回退路径
    soup = BeautifulSoup(html, "html.parser")

    if soup.find(BLOCK_TAGS) is not None:
        return _walk(soup)

    text = soup.get_text().strip()
    if not text:
        return []

    parts = [part.strip() for part in re.split(r"\n{2,}", text)]
    return [
        HtmlBlock(html=f"<p>{html_lib.escape(part)}</p>", is_paragraph=True)
        for part in parts
        if part
    ]


def render_image_tag(url: str) -> str:
    """生成插入正文的图片标签."""
    src = html_lib.escape(url, quote=True)
    return (
        f'<figure><img src="{src}" alt="" '
        f'style="max-width:100%;height:auto;" /></figure>'
    )


def insert_images_into_html(html: str, image_urls: list[str]) -> str:
    """
    把图片依次插入到正文中.

    每个 ``<p>`` 块后插入一张；没有 ``<p>`` 块时每个块后插入一张；
    块用完后剩余的图片追加到末尾。表格等非块内容原样保留，不计入插图位置。

    Args:
        html: 原稿 HTML
        image_urls: 按顺序排列的图片 URL

    Returns:
        插入图片后的 HTML
    """
    if not image_urls:
        return html

    blocks = extract_blocks(html)
    if not blocks:
        return html

    has_paragraph = any(block.is_paragraph for block in blocks)
    result: list[str] = []
    image_index = 0

    for block in blocks:
        result.append(block.html)
        if image_index < len(image_urls) and (
            block.is_paragraph or (block.is_block and not has_paragraph)
        ):
            result.append(render_image_tag(image_urls[image_index]))
            image_index += 1

    for url in image_urls[image_index:]:
        result.append(render_image_tag(url))

    return "\n".join(result)
