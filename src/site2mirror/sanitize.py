"""ミラー元 HTML を安全な断片に変換する許可リスト方式のサニタイザー。

ミラー元のマークアップは信頼できない入力として扱います。許可されない
タグ・属性・URL スキームは例外にせず黙って取り除き、どのような入力に対しても
安全な断片 (最悪の場合は空文字列) を返します。
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable

from .dom import Element, HtmlTree

logger = logging.getLogger(__name__)

BANNED_TAGS = frozenset({"script", "noscript", "object", "embed", "template", "meta", "base"})
FOREIGN_CONTENT_TAGS = ("svg", "math")

ALLOWED_TAGS = frozenset(
    {
        "style", "a", "abbr", "address", "article", "aside", "audio", "b", "bdi", "bdo",
        "blockquote", "br", "button", "canvas", "caption", "cite", "code", "col", "colgroup",
        "data", "datalist", "dd", "del", "details", "dfn", "dialog", "div", "dl", "dt", "em",
        "fieldset", "figcaption", "figure", "footer", "form", "h1", "h2", "h3", "h4", "h5",
        "h6", "header", "hgroup", "hr", "i", "iframe", "img", "input", "label", "legend", "li",
        "main", "mark", "menu", "nav", "ol", "optgroup", "option", "p", "picture", "pre", "q",
        "ruby", "s", "samp", "section", "select", "small", "source", "span", "strong", "sub",
        "summary", "sup", "table", "tbody", "td", "textarea", "tfoot", "th", "thead", "time",
        "tr", "u", "ul", "var", "video", "wbr",
        # SVG
        "svg", "g", "path", "circle", "ellipse", "line", "rect", "polygon", "polyline", "defs",
        "symbol", "use", "mask", "clippath", "lineargradient", "radialgradient", "stop", "text",
        "tspan",
    }
)

URL_ATTRIBUTES = frozenset(
    {"href", "src", "action", "poster", "data-src", "data-href", "formaction", "xlink:href"}
)

SAFE_DATA_IMAGE_PATTERN = re.compile(
    r"^data:image/(?:png|jpe?g|gif|webp|svg\+xml);base64,[a-z0-9+/=]+$", re.IGNORECASE
)

_SAFE_URL_PREFIXES = ("http://", "https://", "mailto:", "tel:", "/", "./", "../", "#", "?")
_SRCSET_URL_STARTS = ("http://", "https://", "/", "data:")
_URL_NOISE = re.compile(r"[\x00-\x1f\x7f\s]+")
_WHITESPACE = re.compile(r"\s+")
_STYLE_BLOCKLIST = ("expression(", "javascript:", "url(data:text/html")

SANITIZE_ROOT_ID = "__mirror_sanitize_root"


@dataclass(frozen=True, slots=True)
class SrcsetCandidate:
    url: str
    descriptor: str = ""

    def render(self, url: str | None = None) -> str:
        value = self.url if url is None else url
        return f"{value} {self.descriptor}" if self.descriptor else value


def sanitize_url(value: str) -> str:
    """URL 属性値を検査し、安全なら元の値 (前後空白除去) を、危険なら空文字列を返します。"""

    raw = (value or "").strip()
    if not raw:
        return ""
    normalized = _URL_NOISE.sub("", raw).lower()
    if normalized.startswith(("javascript:", "vbscript:")):
        return ""
    if normalized.startswith("data:"):
        return raw if SAFE_DATA_IMAGE_PATTERN.match(raw) else ""
    if normalized.startswith(_SAFE_URL_PREFIXES):
        return raw
    if ":" not in normalized:
        return raw
    return ""


def sanitize_inline_style(value: str) -> str:
    trimmed = (value or "").strip()
    normalized = _WHITESPACE.sub("", trimmed).lower()
    if any(marker in normalized for marker in _STYLE_BLOCKLIST):
        return ""
    return trimmed


def _is_srcset_delimiter(value: str, index: int) -> bool:
    lookahead = value[index + 1 :].lstrip().lower()
    return lookahead.startswith(_SRCSET_URL_STARTS)


def split_srcset_candidates(value: str) -> list[str]:
    """``srcset`` を候補ごとに分割します。

    クエリ文字列や CDN の変換パスにカンマを含む URL があるため、引用符と括弧の
    内側のカンマは無視し、直後が URL の開始に見える場合だけ区切りとみなします。
    """

    candidates: list[str] = []
    current: list[str] = []
    in_single = False
    in_double = False
    depth = 0

    for index, char in enumerate(value):
        if char == "'" and not in_double:
            in_single = not in_single
        elif char == '"' and not in_single:
            in_double = not in_double
        elif not in_single and not in_double:
            if char == "(":
                depth += 1
            elif char == ")":
                depth = max(0, depth - 1)
            elif char == "," and depth == 0 and _is_srcset_delimiter(value, index):
                candidate = "".join(current).strip()
                if candidate:
                    candidates.append(candidate)
                current = []
                continue
        current.append(char)

    tail = "".join(current).strip()
    if tail:
        candidates.append(tail)
    return candidates


def parse_srcset_candidate(candidate: str) -> SrcsetCandidate | None:
    trimmed = candidate.strip()
    if not trimmed:
        return None
    if trimmed[0] in {'"', "'"}:
        quote = trimmed[0]
        end = trimmed.find(quote, 1)
        if end > 0:
            return SrcsetCandidate(url=trimmed[1:end], descriptor=trimmed[end + 1 :].strip())
    parts = trimmed.split(None, 1)
    if len(parts) == 1:
        return SrcsetCandidate(url=parts[0])
    return SrcsetCandidate(url=parts[0], descriptor=parts[1].strip())


def _map_srcset(value: str, transform: Callable[[SrcsetCandidate], str]) -> str:
    rendered: list[str] = []
    for raw in split_srcset_candidates(value):
        candidate = parse_srcset_candidate(raw)
        if candidate is None:
            continue
        output = transform(candidate)
        if output:
            rendered.append(output)
    return ", ".join(rendered)


def sanitize_srcset_value(value: str) -> str:
    """各候補の URL を検査し、拒否された候補を除いた ``srcset`` を返します。"""

    def clean(candidate: SrcsetCandidate) -> str:
        safe = sanitize_url(candidate.url)
        return candidate.render(safe) if safe else ""

    return _map_srcset(value, clean)


def rewrite_srcset_value(value: str, resolve_url: Callable[[str], str]) -> str:
    """記述子を保ったまま ``srcset`` 内の各 URL を書き換えます。"""

    return _map_srcset(value, lambda candidate: candidate.render(resolve_url(candidate.url)))


def _ensure_noopener(tree: HtmlTree, element: Element) -> None:
    target = (tree.get_attribute(element, "target") or "").lower()
    if target != "_blank":
        return
    rel = (tree.get_attribute(element, "rel") or "").split()
    for token in ("noopener", "noreferrer"):
        if token not in rel:
            rel.append(token)
    tree.set_attribute(element, "rel", " ".join(rel))


def _sanitize_attributes(tree: HtmlTree, element: Element) -> None:
    for name in tree.attribute_names(element):
        lowered = name.lower()
        value = tree.get_attribute(element, name) or ""
        if lowered.startswith("on") or lowered == "srcdoc":
            tree.remove_attribute(element, name)
            continue
        if lowered == "style":
            cleaned = sanitize_inline_style(value)
        elif lowered == "srcset":
            cleaned = sanitize_srcset_value(value)
        elif lowered in URL_ATTRIBUTES:
            cleaned = sanitize_url(value)
        else:
            continue
        if cleaned:
            tree.set_attribute(element, name, cleaned)
        else:
            tree.remove_attribute(element, name)


def _sanitize_element(tree: HtmlTree, element: Element) -> None:
    tag = tree.tag_name(element)
    if not tag:
        return
    if tag in BANNED_TAGS:
        tree.remove(element)
        return
    if tag not in ALLOWED_TAGS and "-" not in tag:
        tree.unwrap(element)
        return
    if tag == "style" and tree.has_ancestor(element, *FOREIGN_CONTENT_TAGS):
        # SVG/MathML 内の style はブラウザ側で要素として解釈される
        tree.remove(element)
        return
    _sanitize_attributes(tree, element)
    if tag == "a":
        _ensure_noopener(tree, element)


def sanitize_tree(tree: HtmlTree) -> None:
    tree.for_each_element(lambda element: _sanitize_element(tree, element))


def sanitize_html(html: str) -> str:
    """信頼できない HTML 断片を許可リストに従って無害化します。"""

    if not html:
        return ""
    try:
        tree = HtmlTree.parse(html, SANITIZE_ROOT_ID)
        sanitize_tree(tree)
        return tree.serialize()
    except Exception:
        logger.warning("HTML のサニタイズに失敗したため空の断片を返します。", exc_info=True)
        return ""
