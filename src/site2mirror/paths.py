"""リクエストパスとソース URL の正規化。

正規化済みパスは必ず ``/`` で始まり、ルート以外は末尾スラッシュを持ちません。
クエリ文字列は最初の ``?`` 以降をそのまま保持します。
"""

from __future__ import annotations

import re
from urllib.parse import quote, unquote, urljoin, urlsplit

from slugify import slugify

from .config import DEFAULT_SITE, SiteConfig

# encodeURI が素通しする文字 (英数字は quote が常に素通しする)
_ENCODE_URI_SAFE = ";,/?:@&=+$-_.!~*'()#"
_SLUG_DISALLOWED = r"[^-a-z0-9_]+"
_FILENAME_DISALLOWED = r"[^-a-z0-9._]+"
_FILE_PATH_PATTERN = re.compile(
    r"\.(pdf|doc|docx|jpg|jpeg|png|gif|webp|svg|ico|xml|json|txt|css|js|map|zip|rar|7z"
    r"|mp4|mp3|mov|avi|m4a|webm|woff|woff2|ttf|otf|eot)$"
)


def normalize_path(raw: str | None) -> str:
    """生のパスを正規化済みパスへ変換します。"""

    if not raw:
        return "/"
    value = raw.strip()
    if not value:
        return "/"
    if not value.startswith("/"):
        value = f"/{value}"
    pathname, _, query = value.partition("?")
    clean = "/" if pathname == "/" else (pathname.rstrip("/") or "/")
    if not query:
        return clean
    return f"{clean}?{query}"


def split_path(path: str) -> tuple[str, str]:
    pathname, _, query = normalize_path(path).partition("?")
    return pathname, query


def path_variants(path: str) -> list[str]:
    """検索用にデコード形とエンコード形を含むパスの候補を返します。

    取得ツールごとにエンコードの扱いが揺れるため、ユーザー入力やスクレイピング由来の
    パスで検索する際は全候補を先頭から順に試します。
    """

    normalized = normalize_path(path)
    pathname, query = split_path(normalized)
    variants: list[str] = [normalized]

    def add(candidate: str) -> None:
        clean = normalize_path(f"{candidate}?{query}" if query else candidate)
        if clean not in variants:
            variants.append(clean)

    try:
        add(unquote(pathname, errors="strict"))
    except UnicodeDecodeError:
        pass
    try:
        add(quote(pathname, safe=_ENCODE_URI_SAFE))
    except UnicodeEncodeError:
        pass
    return variants


def parse_site_url(raw: str, site: SiteConfig = DEFAULT_SITE) -> str | None:
    """ミラー元サイト上の URL なら正規化済みパスを、それ以外は None を返します。"""

    value = (raw or "").strip()
    if not value:
        return None
    try:
        parsed = urlsplit(urljoin(site.url, value))
        host = parsed.hostname or ""
    except ValueError:
        return None
    if not site.is_site_host(host):
        return None
    pathname = parsed.path or "/"
    return normalize_path(f"{pathname}?{parsed.query}" if parsed.query else pathname)


def url_to_path(url: str, site: SiteConfig = DEFAULT_SITE) -> str:
    try:
        parsed = urlsplit(urljoin(site.url, url))
    except ValueError:
        return normalize_path(url)
    pathname = parsed.path or "/"
    return normalize_path(f"{pathname}?{parsed.query}" if parsed.query else pathname)


def to_absolute_url(path_or_url: str, site: SiteConfig = DEFAULT_SITE) -> str:
    if path_or_url.startswith(("http://", "https://")):
        return path_or_url
    return urljoin(site.url, path_or_url)


def is_source_host(path_or_url: str, site: SiteConfig = DEFAULT_SITE) -> bool:
    try:
        host = urlsplit(urljoin(site.url, path_or_url)).hostname or ""
    except ValueError:
        return False
    return site.is_site_host(host)


def to_local_mirror_path(path_or_url: str, site: SiteConfig = DEFAULT_SITE) -> str:
    """ミラー元ホストの絶対 URL をルート相対パスに書き換えます。"""

    try:
        parsed = urlsplit(urljoin(site.url, path_or_url))
        host = (parsed.hostname or "").lower()
    except ValueError:
        return path_or_url
    if not site.is_site_host(host):
        return path_or_url
    pathname = parsed.path or "/"
    base = "/" if pathname == "/" else (pathname.rstrip("/") or "/")
    query = f"?{parsed.query}" if parsed.query else ""
    fragment = f"#{parsed.fragment}" if parsed.fragment else ""
    return f"{base}{query}{fragment}"


def slug_from_path(path: str) -> str:
    """パスからファイルシステム安全なスラッグを作ります。"""

    normalized = normalize_path(path)
    if normalized == "/":
        return "home"
    pathname, _, query = normalized.lstrip("/").partition("?")
    segments = [slugify(segment, regex_pattern=_SLUG_DISALLOWED) for segment in pathname.split("/")]
    slug = "__".join(segment for segment in segments if segment)
    if query:
        query_slug = slugify(query, regex_pattern=_SLUG_DISALLOWED)
        slug = f"{slug}--{query_slug}" if slug else query_slug
    return slug or "page"


def sanitize_filename(name: str) -> str:
    cleaned = slugify(name or "", regex_pattern=_FILENAME_DISALLOWED).strip(".-")
    return cleaned or "asset"


def is_likely_file_path(path: str) -> bool:
    pathname = path.split("?", 1)[0].lower()
    return _FILE_PATH_PATTERN.search(pathname) is not None
