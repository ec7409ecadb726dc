"""サニタイズ済み HTML に対するパス依存の書き換え。

入力は :func:`site2mirror.sanitize.sanitize_html` を通過済みであることを前提とします。
各ステップは対象要素が見つからなければ何もしないため、スナップショットごとに
マークアップが異なっても例外になりません。同じ HTML に繰り返し適用しても
結果は変わりません。
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from html import escape
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit, SplitResult

from .config import DEFAULT_SITE, SiteConfig
from .dom import Element, HtmlTree
from .paths import normalize_path
from .sanitize import sanitize_html

logger = logging.getLogger(__name__)

TRANSFORM_ROOT_ID = "__mirror_doc_root"
BLANK_DOCUMENT = "about:blank"

EVENTS_MAP_HOST = "events.wixapps.net"
EVENTS_MAP_PATH = "/events-server/html/google-map-v2"
YOUTUBE_EMBED_HOSTS = frozenset(
    {"youtube.com", "www.youtube.com", "youtube-nocookie.com", "www.youtube-nocookie.com"}
)
YOUTUBE_PRIVACY_HOST = "www.youtube-nocookie.com"
YOUTUBE_TRACKING_PARAMS = frozenset({"enablejsapi", "widgetid", "forigin", "aoriginsup", "vf"})
GOOGLE_MAPS_HOSTS = frozenset({"google.com", "www.google.com", "maps.google.com"})

HOMEPAGE_MAP_CONTAINER_ID = "comp-m5vlffw5"
HOMEPAGE_MAP_IFRAME_SRC = (
    "https://maps.google.com/maps?q=1500%20Walnut%20St%20Suite%20206%20Philadelphia%20PA"
    "&t=&z=15&ie=UTF8&iwloc=&output=embed"
)
HOMEPAGE_MAP_TITLE = "Mekor Habracha Synagogue Map"
HOMEPAGE_DIRECTIONS_HREF = (
    "https://www.google.com/maps/dir/?api=1&destination=1500+Walnut+St+Suite+206+Philadelphia+PA+19102"
)
EVENTS_CALENDAR_SELECTOR = "#comp-lvvd3qr7 iframe"
EVENTS_CALENDAR_EMBED_SRC = (
    "https://calendar.google.com/calendar/embed?src=david%40mekorhabracha.org&ctz=America%2FNew_York"
)
EVENTS_SPACER_SELECTOR = '[data-mesh-id="comp-m5ss52xcinlineContent-wedge-5"]'
HIDDEN_STYLE = "display:none;height:0"

_YOUTUBE_ID = re.compile(r"^[A-Za-z0-9_-]{6,}$")


@dataclass(frozen=True, slots=True)
class DeferredEmbed:
    """クリックされるまで読み込まない埋め込みの情報。"""

    family: str
    url: str
    label: str
    title: str
    thumbnail: str = ""


def _to_url(raw: str | None) -> SplitResult | None:
    if not raw:
        return None
    try:
        parsed = urlsplit(raw.strip())
    except ValueError:
        return None
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        return None
    return parsed


def build_map_embed_url(lat: str, lng: str) -> str:
    return f"https://www.google.com/maps?q={quote(f'{lat},{lng}', safe='')}&z=15&output=embed"


def privacy_youtube_url(parsed: SplitResult) -> str:
    query = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if key not in YOUTUBE_TRACKING_PARAMS
    ]
    return urlunsplit(("https", YOUTUBE_PRIVACY_HOST, parsed.path, urlencode(query), parsed.fragment))


def _is_youtube_embed(parsed: SplitResult) -> bool:
    return (parsed.hostname or "").lower() in YOUTUBE_EMBED_HOSTS and parsed.path.startswith("/embed/")


def _is_google_map_embed(parsed: SplitResult) -> bool:
    if (parsed.hostname or "").lower() not in GOOGLE_MAPS_HOSTS:
        return False
    if parsed.path.startswith("/maps/embed"):
        return True
    if not parsed.path.startswith("/maps"):
        return False
    return ("output", "embed") in parse_qsl(parsed.query, keep_blank_values=True)


def classify_embed(url: str) -> DeferredEmbed | None:
    """遅延読み込みの対象となる埋め込み URL を判定します。"""

    parsed = _to_url(url)
    if parsed is None:
        return None
    if _is_youtube_embed(parsed):
        clean_url = privacy_youtube_url(parsed)
        video_id = parsed.path[len("/embed/") :].split("/", 1)[0]
        thumbnail = f"https://i.ytimg.com/vi/{video_id}/hqdefault.jpg" if _YOUTUBE_ID.match(video_id) else ""
        return DeferredEmbed(
            family="youtube", url=clean_url, label="Play video", title="Embedded video", thumbnail=thumbnail
        )
    if _is_google_map_embed(parsed):
        return DeferredEmbed(family="map", url=url.strip(), label="Load map", title="Map")
    return None


def build_placeholder_document(embed: DeferredEmbed) -> str:
    """``srcdoc`` 用の静的なプレースホルダー文書を組み立てます。スクリプトは含みません。"""

    background = f"background-image:url('{embed.thumbnail}');" if embed.thumbnail else ""
    return (
        "<!doctype html><html><head><meta charset=\"utf-8\"><style>"
        "html,body{margin:0;height:100%;overflow:hidden}"
        "a{display:flex;align-items:center;justify-content:center;height:100%;"
        "background:#1f2933 center/cover no-repeat;color:#fff;"
        "font:600 16px/1.2 system-ui,sans-serif;text-decoration:none}"
        "span{background:rgba(0,0,0,.65);padding:.6em 1.2em;border-radius:4px}"
        "</style></head><body>"
        f'<a href="{escape(embed.url, quote=True)}" style="{escape(background, quote=True)}">'
        f"<span>{escape(embed.label)}</span></a>"
        "</body></html>"
    )


# Steps -----------------------------------------------------------------


def remove_preload_links(tree: HtmlTree) -> None:
    for link in tree.elements("link"):
        rel = (tree.get_attribute(link, "rel") or "").lower().split()
        if "preload" in rel or "modulepreload" in rel:
            tree.remove(link)


def strip_cdn_srcset(tree: HtmlTree, site: SiteConfig) -> None:
    for element in tree.elements("img", "source"):
        srcset = tree.get_attribute(element, "srcset") or ""
        if site.media_cdn_host_suffix in srcset:
            tree.remove_attribute(element, "srcset")


def rewrite_event_map_iframes(tree: HtmlTree) -> None:
    """イベント地図ウィジェットを座標付きの Google マップ埋め込みに置き換えます。"""

    def visit(iframe: Element) -> None:
        parsed = _to_url(tree.get_attribute(iframe, "src"))
        if parsed is None:
            return
        if (parsed.hostname or "").lower() != EVENTS_MAP_HOST or parsed.path != EVENTS_MAP_PATH:
            return
        params = dict(parse_qsl(parsed.query))
        lat = params.get("lat")
        lng = params.get("lng")
        if not lat or not lng:
            tree.remove(iframe)
            return
        tree.set_attribute(iframe, "src", build_map_embed_url(lat, lng))
        tree.set_attribute(iframe, "referrerpolicy", "no-referrer-when-downgrade")
        tree.set_attribute(iframe, "data-mirror-replaced", "wix-events-map")
        if not tree.get_attribute(iframe, "title"):
            tree.set_attribute(iframe, "title", "Event location map")

    tree.for_each_element(visit, "iframe")


def _to_relative_site_href(href: str, site: SiteConfig) -> str:
    parsed = _to_url(href)
    if parsed is None or not site.is_site_host(parsed.hostname or ""):
        return href
    relative = parsed.path or "/"
    if parsed.query:
        relative += f"?{parsed.query}"
    if parsed.fragment:
        relative += f"#{parsed.fragment}"
    return relative


def normalize_internal_links(tree: HtmlTree, site: SiteConfig) -> None:
    for anchor in tree.elements("a"):
        raw = (tree.get_attribute(anchor, "href") or "").strip()
        if not raw:
            continue
        relative = _to_relative_site_href(raw, site)
        redirect = site.link_redirects.get(relative)
        if redirect is None and relative.startswith("/") and "#" not in relative:
            redirect = site.link_redirects.get(normalize_path(relative))
        if redirect is not None:
            relative = redirect
        if relative != raw:
            tree.set_attribute(anchor, "href", relative)


def rewrite_absolute_media_sources(tree: HtmlTree, site: SiteConfig) -> None:
    for element in tree.elements("img", "source", "iframe"):
        parsed = _to_url(tree.get_attribute(element, "src"))
        if parsed is None or not site.is_site_host(parsed.hostname or ""):
            continue
        relative = parsed.path or "/"
        if parsed.query:
            relative += f"?{parsed.query}"
        tree.set_attribute(element, "src", relative)


def _ensure_homepage_map(tree: HtmlTree) -> None:
    container = tree.find_by_id(HOMEPAGE_MAP_CONTAINER_ID)
    if container is None or container.find("iframe") is not None:
        return
    iframe = tree.create_element(
        "iframe",
        {
            "title": HOMEPAGE_MAP_TITLE,
            "loading": "lazy",
            "referrerpolicy": "no-referrer-when-downgrade",
            "src": HOMEPAGE_MAP_IFRAME_SRC,
            "allowfullscreen": "",
        },
    )
    directions = tree.create_element(
        "a",
        {
            "href": HOMEPAGE_DIRECTIONS_HREF,
            "target": "_blank",
            "rel": "noreferrer noopener",
            "class": "mirror-map-directions-link",
        },
        text="Directions",
    )
    tree.append(container, iframe)
    tree.append(container, directions)


def _ensure_events_calendar(tree: HtmlTree) -> None:
    calendar = tree.select_one(EVENTS_CALENDAR_SELECTOR)
    if calendar is not None and not tree.get_attribute(calendar, "src"):
        tree.set_attribute(calendar, "src", EVENTS_CALENDAR_EMBED_SRC)
    spacer = tree.select_one(EVENTS_SPACER_SELECTOR)
    if spacer is not None and tree.get_attribute(spacer, "style") != HIDDEN_STYLE:
        tree.set_attribute(spacer, "style", HIDDEN_STYLE)


_PAGE_FIXES = {
    "/": (_ensure_homepage_map,),
    "/events": (_ensure_events_calendar,),
}


def apply_page_fixes(tree: HtmlTree, path: str) -> None:
    for fix in _PAGE_FIXES.get(normalize_path(path).split("?", 1)[0], ()):
        fix(tree)


def _pending_embed(tree: HtmlTree, iframe: Element) -> DeferredEmbed | None:
    src = (tree.get_attribute(iframe, "src") or "").strip()
    if src and src != BLANK_DOCUMENT:
        return classify_embed(src)
    if tree.get_attribute(iframe, "srcdoc"):
        return None
    # 再サニタイズで srcdoc が落ちた遅延埋め込みを復元する
    if tree.get_attribute(iframe, "data-mirror-deferred"):
        return classify_embed(tree.get_attribute(iframe, "data-embed-src") or "")
    return None


def defer_third_party_embeds(tree: HtmlTree) -> None:
    """地図・動画 iframe をクリックで読み込むプレースホルダーに置き換えます。"""

    for iframe in tree.elements("iframe"):
        embed = _pending_embed(tree, iframe)
        if embed is None:
            continue
        tree.set_attribute(iframe, "src", BLANK_DOCUMENT)
        tree.set_attribute(iframe, "srcdoc", build_placeholder_document(embed))
        tree.set_attribute(iframe, "data-embed-src", embed.url)
        tree.set_attribute(iframe, "data-mirror-deferred", embed.family)
        if embed.family == "youtube":
            tree.set_attribute(iframe, "referrerpolicy", "strict-origin-when-cross-origin")
        elif not tree.get_attribute(iframe, "referrerpolicy"):
            tree.set_attribute(iframe, "referrerpolicy", "no-referrer-when-downgrade")
        if not tree.get_attribute(iframe, "title"):
            tree.set_attribute(iframe, "title", embed.title)


def optimize_media_loading(tree: HtmlTree) -> None:
    for index, image in enumerate(tree.elements("img")):
        if not tree.get_attribute(image, "decoding"):
            tree.set_attribute(image, "decoding", "async")
        explicit = bool(tree.get_attribute(image, "loading"))
        high_priority = tree.get_attribute(image, "fetchpriority") == "high"
        if not explicit and not high_priority and index > 1:
            tree.set_attribute(image, "loading", "lazy")
    for iframe in tree.elements("iframe"):
        if not tree.get_attribute(iframe, "loading"):
            tree.set_attribute(iframe, "loading", "lazy")


def transform_tree(tree: HtmlTree, path: str, site: SiteConfig = DEFAULT_SITE) -> None:
    remove_preload_links(tree)
    strip_cdn_srcset(tree, site)
    apply_page_fixes(tree, path)
    rewrite_event_map_iframes(tree)
    normalize_internal_links(tree, site)
    rewrite_absolute_media_sources(tree, site)
    defer_third_party_embeds(tree)
    optimize_media_loading(tree)


def transform_html(html: str, path: str, site: SiteConfig = DEFAULT_SITE) -> str:
    """サニタイズ済み HTML にパス依存の書き換えを適用します。"""

    if not html:
        return ""
    tree = HtmlTree.parse(html, TRANSFORM_ROOT_ID)
    transform_tree(tree, path, site)
    return tree.serialize()


def prepare_document_html(raw_html: str, path: str, site: SiteConfig = DEFAULT_SITE) -> str:
    """配信用 HTML を返します (サニタイズ → 変換)。"""

    safe_html = sanitize_html(raw_html)
    if not safe_html:
        return ""
    return transform_html(safe_html, path, site)
