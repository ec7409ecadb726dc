"""ミラー成果物のレコード型と JSON 変換。

成果物 JSON は camelCase のキーを使い、Python 側では snake_case の属性で扱います。
スクレイピング由来の JSON は構造が保証されないため、読み込み時に型を強制します。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Mapping, TypeVar

T = TypeVar("T")


class DocumentType(str, Enum):
    PAGE = "page"
    POST = "post"
    NEWS = "news"
    EVENT = "event"
    CATEGORY = "category"
    TAG = "tag"
    PROFILE = "profile"

    @classmethod
    def parse(cls, value: Any) -> "DocumentType":
        try:
            return cls(str(value))
        except ValueError:
            return cls.PAGE


class AssetSourceType(str, Enum):
    ARCHIVE = "archive"
    SNAPSHOT = "snapshot"


class SnapshotValidationError(ValueError):
    """スナップショット JSON が想定の形をしていない場合に送出されます。"""


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    return ""


def _as_str_list(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [item for item in value if isinstance(item, str)]


def _as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


@dataclass(slots=True)
class RouteRecord:
    path: str
    source_url: str

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "sourceUrl": self.source_url}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RouteRecord":
        return cls(path=_as_str(payload.get("path")), source_url=_as_str(payload.get("sourceUrl")))


@dataclass(slots=True)
class StatusOverride:
    path: str
    status: int
    source_url: str

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "status": self.status, "sourceUrl": self.source_url}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "StatusOverride":
        return cls(
            path=_as_str(payload.get("path")),
            status=_as_int(payload.get("status"), 404),
            source_url=_as_str(payload.get("sourceUrl")),
        )


@dataclass(slots=True)
class AliasRecord:
    from_path: str
    to_path: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"from": self.from_path, "to": self.to_path, "reason": self.reason}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AliasRecord":
        return cls(
            from_path=_as_str(payload.get("from")),
            to_path=_as_str(payload.get("to")),
            reason=_as_str(payload.get("reason")),
        )


@dataclass(slots=True)
class ContentIndexRecord:
    path: str
    type: DocumentType
    file: str

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "type": self.type.value, "file": self.file}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ContentIndexRecord":
        return cls(
            path=_as_str(payload.get("path")),
            type=DocumentType.parse(payload.get("type")),
            file=_as_str(payload.get("file")),
        )


@dataclass(slots=True)
class SnapshotMetadata:
    """ページの SEO メタデータ。"""

    description: str = ""
    canonical: str = ""
    og_title: str = ""
    og_description: str = ""
    og_image: str = ""
    twitter_card: str = ""
    twitter_title: str = ""
    twitter_description: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "description": self.description,
            "canonical": self.canonical,
            "ogTitle": self.og_title,
            "ogDescription": self.og_description,
            "ogImage": self.og_image,
            "twitterCard": self.twitter_card,
            "twitterTitle": self.twitter_title,
            "twitterDescription": self.twitter_description,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "SnapshotMetadata":
        if not isinstance(payload, Mapping):
            return cls()
        return cls(
            description=_as_str(payload.get("description")),
            canonical=_as_str(payload.get("canonical")),
            og_title=_as_str(payload.get("ogTitle")),
            og_description=_as_str(payload.get("ogDescription")),
            og_image=_as_str(payload.get("ogImage")),
            twitter_card=_as_str(payload.get("twitterCard")),
            twitter_title=_as_str(payload.get("twitterTitle")),
            twitter_description=_as_str(payload.get("twitterDescription")),
        )


@dataclass(slots=True)
class Snapshot:
    """ブラウザで取得した 1 ページ分の生データ。"""

    path: str
    url: str = ""
    final_path: str = ""
    final_url: str = ""
    status: int = 0
    title: str = ""
    metadata: SnapshotMetadata = field(default_factory=SnapshotMetadata)
    headings: list[str] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    outbound_links: list[str] = field(default_factory=list)
    assets: list[str] = field(default_factory=list)
    style_tags: list[str] = field(default_factory=list)
    style_links: list[str] = field(default_factory=list)
    body_html: str = ""
    text: str = ""
    text_hash: str = ""
    captured_at: str = ""
    source: str = "playwright"

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "url": self.url,
            "finalPath": self.final_path,
            "finalUrl": self.final_url,
            "status": self.status,
            "title": self.title,
            "metadata": self.metadata.to_dict(),
            "headings": list(self.headings),
            "links": list(self.links),
            "outboundLinks": list(self.outbound_links),
            "assets": list(self.assets),
            "styleTags": list(self.style_tags),
            "styleLinks": list(self.style_links),
            "bodyHtml": self.body_html,
            "text": self.text,
            "textHash": self.text_hash,
            "capturedAt": self.captured_at,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "Snapshot":
        """未知の形の JSON を検査し、型を揃えたスナップショットを返します。"""

        if not isinstance(payload, Mapping):
            raise SnapshotValidationError("スナップショットが JSON オブジェクトではありません。")
        path = payload.get("path")
        if not isinstance(path, str) or not path.strip():
            raise SnapshotValidationError("スナップショットに path がありません。")
        return cls(
            path=path,
            url=_as_str(payload.get("url")),
            final_path=_as_str(payload.get("finalPath")),
            final_url=_as_str(payload.get("finalUrl")),
            status=_as_int(payload.get("status"), 0),
            title=_as_str(payload.get("title")),
            metadata=SnapshotMetadata.from_dict(payload.get("metadata")),
            headings=_as_str_list(payload.get("headings")),
            links=_as_str_list(payload.get("links")),
            outbound_links=_as_str_list(payload.get("outboundLinks")),
            assets=_as_str_list(payload.get("assets")),
            style_tags=_as_str_list(payload.get("styleTags")),
            style_links=_as_str_list(payload.get("styleLinks")),
            body_html=_as_str(payload.get("bodyHtml")),
            text=_as_str(payload.get("text")),
            text_hash=_as_str(payload.get("textHash")),
            captured_at=_as_str(payload.get("capturedAt")),
            source=_as_str(payload.get("source")) or "playwright",
        )


@dataclass(slots=True)
class PageDocument:
    """分類・重複除去済みの 1 パス分のドキュメント。"""

    id: str
    type: DocumentType
    path: str
    url: str
    slug: str
    title: str
    description: str
    canonical: str
    og_title: str
    og_description: str
    og_image: str
    twitter_card: str
    twitter_title: str
    twitter_description: str
    headings: list[str]
    text: str
    text_hash: str
    links: list[str]
    assets: list[str]
    body_html: str
    render_html: str
    captured_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "path": self.path,
            "url": self.url,
            "slug": self.slug,
            "title": self.title,
            "description": self.description,
            "canonical": self.canonical,
            "ogTitle": self.og_title,
            "ogDescription": self.og_description,
            "ogImage": self.og_image,
            "twitterCard": self.twitter_card,
            "twitterTitle": self.twitter_title,
            "twitterDescription": self.twitter_description,
            "headings": list(self.headings),
            "text": self.text,
            "textHash": self.text_hash,
            "links": list(self.links),
            "assets": list(self.assets),
            "bodyHtml": self.body_html,
            "renderHtml": self.render_html,
            "capturedAt": self.captured_at,
        }

    def seo_metadata(self) -> dict[str, str]:
        return {
            "path": self.path,
            "title": self.title,
            "description": self.description,
            "canonical": self.canonical,
            "ogTitle": self.og_title,
            "ogDescription": self.og_description,
            "ogImage": self.og_image,
            "twitterCard": self.twitter_card,
            "twitterTitle": self.twitter_title,
            "twitterDescription": self.twitter_description,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PageDocument":
        return cls(
            id=_as_str(payload.get("id")),
            type=DocumentType.parse(payload.get("type")),
            path=_as_str(payload.get("path")),
            url=_as_str(payload.get("url")),
            slug=_as_str(payload.get("slug")),
            title=_as_str(payload.get("title")),
            description=_as_str(payload.get("description")),
            canonical=_as_str(payload.get("canonical")),
            og_title=_as_str(payload.get("ogTitle")),
            og_description=_as_str(payload.get("ogDescription")),
            og_image=_as_str(payload.get("ogImage")),
            twitter_card=_as_str(payload.get("twitterCard")),
            twitter_title=_as_str(payload.get("twitterTitle")),
            twitter_description=_as_str(payload.get("twitterDescription")),
            headings=_as_str_list(payload.get("headings")),
            text=_as_str(payload.get("text")),
            text_hash=_as_str(payload.get("textHash")),
            links=_as_str_list(payload.get("links")),
            assets=_as_str_list(payload.get("assets")),
            body_html=_as_str(payload.get("bodyHtml")),
            render_html=_as_str(payload.get("renderHtml")),
            captured_at=_as_str(payload.get("capturedAt")),
        )


@dataclass(slots=True)
class AssetCandidate:
    """アップロード前のバイナリ参照。"""

    source_type: AssetSourceType
    source_url: str = ""
    local_path: str = ""
    filename: str = ""
    extension: str = ""
    size_bytes: int = 0
    sha1: str = ""
    content_type: str = ""

    @property
    def label(self) -> str:
        return self.source_url or self.local_path

    def to_dict(self) -> dict[str, Any]:
        return {
            "sourceType": self.source_type.value,
            "sourceUrl": self.source_url,
            "localPath": self.local_path,
            "filename": self.filename,
            "extension": self.extension,
            "sizeBytes": self.size_bytes,
            "sha1": self.sha1,
            "contentType": self.content_type,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AssetCandidate":
        raw_type = _as_str(payload.get("sourceType"))
        try:
            source_type = AssetSourceType(raw_type)
        except ValueError:
            source_type = AssetSourceType.SNAPSHOT if payload.get("sourceUrl") else AssetSourceType.ARCHIVE
        return cls(
            source_type=source_type,
            source_url=_as_str(payload.get("sourceUrl")),
            local_path=_as_str(payload.get("localPath")),
            filename=_as_str(payload.get("filename")),
            extension=_as_str(payload.get("extension")),
            size_bytes=_as_int(payload.get("sizeBytes"), 0),
            sha1=_as_str(payload.get("sha1")),
            content_type=_as_str(payload.get("contentType")),
        )


@dataclass(slots=True)
class BlobRecord:
    """アップロード済みアセットの対応表 1 行。"""

    source_url: str
    path: str
    blob_key: str
    blob_url: str
    content_type: str
    sha1: str
    size: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "sourceUrl": self.source_url,
            "path": self.path,
            "blobKey": self.blob_key,
            "blobUrl": self.blob_url,
            "contentType": self.content_type,
            "sha1": self.sha1,
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "BlobRecord":
        return cls(
            source_url=_as_str(payload.get("sourceUrl")),
            path=_as_str(payload.get("path")),
            blob_key=_as_str(payload.get("blobKey")),
            blob_url=_as_str(payload.get("blobUrl")),
            content_type=_as_str(payload.get("contentType")),
            sha1=_as_str(payload.get("sha1")),
            size=_as_int(payload.get("size"), 0),
        )


@dataclass(slots=True)
class SearchRecord:
    path: str
    type: DocumentType
    title: str
    description: str
    excerpt: str
    terms: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "excerpt": self.excerpt,
            "terms": list(self.terms),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SearchRecord":
        return cls(
            path=_as_str(payload.get("path")),
            type=DocumentType.parse(payload.get("type")),
            title=_as_str(payload.get("title")),
            description=_as_str(payload.get("description")),
            excerpt=_as_str(payload.get("excerpt")),
            terms=_as_str_list(payload.get("terms")),
        )


@dataclass(slots=True)
class BatchFailure:
    item: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"item": self.item, "reason": self.reason}


@dataclass
class BatchResult(Generic[T]):
    """ベストエフォートなバッチ処理の結果。失敗は例外にせず蓄積します。"""

    succeeded: list[T] = field(default_factory=list)
    failed: list[BatchFailure] = field(default_factory=list)

    def record_failure(self, item: str, reason: str) -> None:
        self.failed.append(BatchFailure(item=item, reason=reason))

    @property
    def failure_count(self) -> int:
        return len(self.failed)
