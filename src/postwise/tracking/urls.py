"""发布 URL 规范化."""

from urllib.parse import parse_qs, urlsplit

_CAFE_WEB_PREFIX = ("ca-fe", "web", "cafes")


def _first(query: dict[str, list[str]], *keys: str) -> str | None:
    for key in keys:
        values = query.get(key)
        if values and values[0]:
            return values[0]
    return None


def canonicalize_post_url(url: str) -> str:
    """
    把同一篇帖子的不同 URL 写法统一成一个可比较的形式.

    - 去掉 ``m.`` / ``www.`` 前缀
    - Naver 博客: ``PostView.naver?blogId=a&logNo=1`` → ``blog.naver.com/a/1``
    - Naver 咖啡: ``/ca-fe/web/cafes/<cafe>/articles/<id>`` 以及
      ``ArticleRead.nhn?clubid=<cafe>&articleid=<id>`` → ``cafe.naver.com/<cafe>/<id>``
    - 其他站点去掉查询参数、锚点和末尾的斜杠

    返回值不带协议头，只用于比较。
    """
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return url.strip().lower()

    host = (parts.hostname or "").lower()
    for prefix in ("m.", "www."):
        if host.startswith(prefix):
            host = host[len(prefix) :]

    path = parts.path
    query = parse_qs(parts.query)
    segments = [s for s in path.split("/") if s]

    if host == "blog.naver.com":
        if path.lower().endswith("postview.naver") or path.lower().endswith(
            "postview.nhn"
        ):
            blog_id = _first(query, "blogId", "blogid")
            log_no = _first(query, "logNo", "logno")
            if blog_id and log_no:
                return f"blog.naver.com/{blog_id}/{log_no}"
        if len(segments) >= 2:
            return f"blog.naver.com/{segments[0]}/{segments[1]}"

    if host == "cafe.naver.com":
        if (
            len(segments) >= 6
            and tuple(segments[:3]) == _CAFE_WEB_PREFIX
            and segments[4] == "articles"
        ):
            return f"cafe.naver.com/{segments[3]}/{segments[5]}"
        if path.lower().endswith("articleread.nhn"):
            club_id = _first(query, "clubid")
            article_id = _first(query, "articleid")
            if club_id and article_id:
                return f"cafe.naver.com/{club_id}/{article_id}"
        if len(segments) >= 2:
            return f"cafe.naver.com/{segments[0]}/{segments[1]}"

    return f"{host}{path.rstrip('/')}"
