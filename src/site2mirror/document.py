"""スナップショットを分類し、パスごとのドキュメントとして保存するユーティリティ。"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Sequence
from urllib.parse import urlsplit

from .artifacts import read_json, read_json_list, sha1_hex, write_json
from .config import DEFAULT_SITE, ContentConfig, MirrorLayout, SiteConfig, default_timestamp
from .dom import HtmlTree
from .models import (
    BatchResult,
    BlobRecord,
    ContentIndexRecord,
    DocumentType,
    PageDocument,
    Snapshot,
    SnapshotValidationError,
)
from .paths import normalize_path, slug_from_path, to_absolute_url, to_local_mirror_path

logger = logging.getLogger(__name__)

REWRITE_ATTRIBUTES = ("href", "src", "action", "poster", "data-src", "data-href")

_PREFIX_TYPES: tuple[tuple[str, DocumentType], ...] = (
    ("/post/", DocumentType.POST),
    ("/news/", DocumentType.NEWS),
    ("/events-1/", DocumentType.EVENT),
    ("/kosher-posts/categories/", DocumentType.CATEGORY),
    ("/kosher-posts/tags/", DocumentType.TAG),
    ("/profile/", DocumentType.PROFILE),
)
_STYLE_URL = re.compile(r"""url\((['"]?)(https?://[^'")]+)\1\)""", re.IGNORECASE)
_MEDIA_KEY = re.compile(r"^/media/([^/]+)")
_WHITESPACE = re.compile(r"\s+")


class SnapshotRejectedError(ValueError):
    """ドキュメント化できないスナップショット (HTTP ステータス範囲外など)。"""


def classify_document_type(path: str) -> DocumentType:
    """パスの形だけからドキュメント種別を判定します。該当しなければ ``page`` です。"""

    normalized = normalize_path(path)
    if normalized == "/":
        return DocumentType.PAGE
    for prefix, document_type in _PREFIX_TYPES:
        if normalized.startswith(prefix):
            return document_type
    return DocumentType.PAGE


def remove_body_noise(html: str, tracking_markers: Sequence[str] = ("consent", "doubleclick")) -> str:
    """スクリプト類とトラッキング用 iframe を本文から取り除きます。"""

    if not html:
        return ""
    tree = HtmlTree.parse(html)
    for element in tree.elements("script", "noscript"):
        if not tree.is_detached(element):
            tree.remove(element)
    for iframe in tree.elements("iframe"):
        src = tree.get_attribute(iframe, "src") or ""
        if any(marker in src for marker in tracking_markers):
            tree.remove(iframe)
    return tree.serialize()


def _decode_ampersands(value: str) -> str:
    return value.replace("&amp;", "&")


def media_key(url: str, site: SiteConfig = DEFAULT_SITE) -> str:
    """メディア CDN の URL から ``/media/<key>`` のキー部分を取り出します。"""

    try:
        parsed = urlsplit(url)
    except ValueError:
        return ""
    host = (parsed.hostname or "").lower()
    if not host.endswith(site.media_cdn_host_suffix):
        return ""
    match = _MEDIA_KEY.match(parsed.path)
    return match.group(1) if match else ""


class AssetResolver:
    """ブロブ対応表を使ってページ内の URL をミラー側の URL に解決します。

    ソース URL (大文字小文字無視)、ミラーパス (クエリ付き → クエリなし)、
    メディア CDN のキーの順に照合し、いずれにも当たらなければサイト内 URL を
    ルート相対パスに書き換えます。
    """

    def __init__(self, records: Iterable[BlobRecord] = (), site: SiteConfig = DEFAULT_SITE) -> None:
        self._site = site
        self._by_source: dict[str, str] = {}
        self._by_path: dict[str, str] = {}
        self._by_media: dict[str, str] = {}
        for record in records:
            source = _decode_ampersands(record.source_url.strip())
            if source:
                self._by_source[source.lower()] = record.blob_url
            row_path = record.path.strip()
            if row_path:
                self._by_path[row_path] = record.blob_url
            key = media_key(source, site)
            if key and key not in self._by_media:
                self._by_media[key] = record.blob_url

    @classmethod
    def from_blob_map(cls, path: Path, site: SiteConfig = DEFAULT_SITE) -> "AssetResolver":
        records = [BlobRecord.from_dict(row) for row in read_json_list(path) if isinstance(row, dict)]
        return cls(records, site)

    def __len__(self) -> int:
        return len(self._by_source)

    def resolve(self, value: str) -> str:
        raw = _decode_ampersands((value or "").strip())
        if not raw or raw.startswith("#"):
            return raw
        hit = self._by_source.get(raw.lower())
        if hit:
            return hit
        try:
            parsed = urlsplit(raw)
        except ValueError:
            return raw
        if parsed.scheme in {"http", "https"} and parsed.hostname:
            with_query = f"{parsed.path}?{parsed.query}" if parsed.query else parsed.path
            hit = self._by_path.get(with_query) or self._by_path.get(parsed.path)
            if hit:
                return hit
            key = media_key(raw, self._site)
            if key and key in self._by_media:
                return self._by_media[key]
        else:
            hit = self._by_path.get(raw)
            if hit:
                return hit
        return to_local_mirror_path(raw, self._site)


def rewrite_style_urls(value: str, resolve_url: Callable[[str], str]) -> str:
    """CSS 中の絶対 URL 参照 ``url(http...)`` を書き換えます。"""

    def replace(match: re.Match[str]) -> str:
        quote = match.group(1)
        return f"url({quote}{resolve_url(match.group(2))}{quote})"

    return _STYLE_URL.sub(replace, value)


def rewrite_internal_html(html: str, resolver: AssetResolver) -> str:
    """URL 属性・インライン style・``<style>`` 内の参照をミラー側に向けます。

    ``srcset`` は CDN の変換パスにカンマを含むため書き換えずに残します。
    """

    if not html:
        return ""
    tree = HtmlTree.parse(html)
    for element in tree.elements():
        for name in REWRITE_ATTRIBUTES:
            value = tree.get_attribute(element, name)
            if value:
                tree.set_attribute(element, name, resolver.resolve(value))
        style = tree.get_attribute(element, "style")
        if style:
            tree.set_attribute(element, "style", rewrite_style_urls(style, resolver.resolve))
        if tree.tag_name(element) == "style":
            css = tree.raw_text(element)
            if css:
                tree.set_text(element, rewrite_style_urls(css, resolver.resolve))
    return tree.serialize()


def _dedupe(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(value for value in values if value))


def build_document(
    snapshot: Snapshot,
    resolver: AssetResolver | None = None,
    *,
    site: SiteConfig = DEFAULT_SITE,
    config: ContentConfig | None = None,
) -> PageDocument:
    """スナップショット 1 件から :class:`PageDocument` を組み立てます。

    HTTP ステータスが許容範囲外なら :class:`SnapshotRejectedError` を送出します。
    """

    content_config = config or ContentConfig()
    if not content_config.min_status <= snapshot.status < content_config.max_status:
        raise SnapshotRejectedError(f"HTTP ステータス {snapshot.status} のスナップショットは対象外です: {snapshot.path}")
    active_resolver = resolver or AssetResolver(site=site)

    path_value = normalize_path(snapshot.final_path or snapshot.path)
    metadata = snapshot.metadata
    cleaned_body = remove_body_noise(snapshot.body_html, content_config.tracking_iframe_markers)
    style_bundle = "\n".join([*snapshot.style_links, *snapshot.style_tags])
    body_html = rewrite_internal_html(cleaned_body, active_resolver)
    render_html = rewrite_internal_html(f"{style_bundle}\n{cleaned_body}", active_resolver)
    text = _WHITESPACE.sub(" ", snapshot.text).strip()
    og_image = active_resolver.resolve(metadata.og_image) if metadata.og_image else ""

    return PageDocument(
        id=sha1_hex(path_value),
        type=classify_document_type(path_value),
        path=path_value,
        url=to_absolute_url(path_value, site),
        slug=slug_from_path(path_value),
        title=snapshot.title,
        description=metadata.description,
        canonical=to_local_mirror_path(metadata.canonical or path_value, site),
        og_title=metadata.og_title or snapshot.title,
        og_description=metadata.og_description or metadata.description,
        og_image=og_image,
        twitter_card=metadata.twitter_card or content_config.default_twitter_card,
        twitter_title=metadata.twitter_title or snapshot.title,
        twitter_description=metadata.twitter_description or metadata.description,
        headings=_dedupe(snapshot.headings),
        text=text,
        text_hash=snapshot.text_hash or sha1_hex(text),
        links=_dedupe(active_resolver.resolve(link) for link in snapshot.links),
        assets=_dedupe(active_resolver.resolve(asset) for asset in snapshot.assets),
        body_html=body_html,
        render_html=render_html,
        captured_at=snapshot.captured_at or default_timestamp().isoformat(),
    )


def document_file(document: PageDocument) -> str:
    """``content/`` からの相対パスで保存先を返します。"""

    return f"documents/{document.type.value}/{document.slug}--{document.id[:12]}.json"


def load_snapshots(directory: Path) -> BatchResult[Snapshot]:
    """スナップショット JSON を読み込み、形の検査に通ったものだけを返します。"""

    result: BatchResult[Snapshot] = BatchResult()
    if not directory.exists():
        return result
    for file_path in sorted(directory.glob("*.json")):
        payload = read_json(file_path, None)
        if payload is None:
            result.record_failure(file_path.name, "invalid_json")
            continue
        try:
            result.succeeded.append(Snapshot.from_dict(payload))
        except SnapshotValidationError as error:
            logger.warning("スナップショットを読み飛ばしました: %s (%s)", file_path.name, error)
            result.record_failure(file_path.name, str(error))
    return result


@dataclass(slots=True)
class ContentBuildResult:
    documents: list[PageDocument] = field(default_factory=list)
    index: list[ContentIndexRecord] = field(default_factory=list)
    rejected: BatchResult[Snapshot] = field(default_factory=BatchResult)

    def counts_by_type(self) -> dict[str, int]:
        return dict(sorted(Counter(document.type.value for document in self.documents).items()))


class DocumentStoreWriter:
    """ドキュメント群と ``index.json`` をまとめて書き出します。

    書き出しは毎回全体を作り直すため、同じ入力に対して何度実行しても結果は同じです。
    """

    def __init__(
        self,
        layout: MirrorLayout,
        site: SiteConfig = DEFAULT_SITE,
        config: ContentConfig | None = None,
    ) -> None:
        self._layout = layout
        self._site = site
        self._config = config or ContentConfig()
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def build(self, snapshots: Sequence[Snapshot], resolver: AssetResolver | None = None) -> ContentBuildResult:
        active_resolver = resolver or AssetResolver(site=self._site)
        by_path: dict[str, PageDocument] = {}
        index: dict[str, ContentIndexRecord] = {}
        result = ContentBuildResult()

        for snapshot in snapshots:
            try:
                document = build_document(snapshot, active_resolver, site=self._site, config=self._config)
            except SnapshotRejectedError as error:
                self._logger.info("%s", error)
                result.rejected.record_failure(snapshot.path, f"status_{snapshot.status}")
                continue
            file_name = document_file(document)
            by_path[document.path] = document
            index[document.path] = ContentIndexRecord(path=document.path, type=document.type, file=file_name)
            requested = normalize_path(snapshot.path)
            if requested != document.path:
                index[requested] = ContentIndexRecord(path=requested, type=document.type, file=file_name)

        result.documents = sorted(by_path.values(), key=lambda document: document.path)
        result.index = sorted(index.values(), key=lambda record: record.path)
        return result

    def write(self, result: ContentBuildResult) -> None:
        content_dir = self._layout.content_dir
        for stale in self._layout.documents_dir.glob("*/*.json"):
            stale.unlink()
        for document in result.documents:
            write_json(content_dir / document_file(document), document.to_dict())
        write_json(content_dir / "index.json", [record.to_dict() for record in result.index])
        write_json(content_dir / "all-documents.json", [document.to_dict() for document in result.documents])
        write_json(
            self._layout.seo_dir / "metadata-by-path.json",
            [document.seo_metadata() for document in result.documents],
        )
        write_json(
            content_dir / "content-summary.json",
            {
                "generatedAt": default_timestamp().isoformat(),
                "documentCount": len(result.documents),
                "byType": result.counts_by_type(),
                "rejectedCount": result.rejected.failure_count,
            },
        )
        self._logger.info("ドキュメントを %d 件書き出しました。", len(result.documents))
