"""書き出し済み成果物を読み取り専用で引くためのストア。

ルート集合・コンテンツ索引・ブロブ索引・検索インデックスは最初に参照された
ときに一度だけ読み込まれ、その後は変更されません。同時に初回参照が起きても
同じ値で上書きされるだけなのでロックは不要です。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import cached_property

from .artifacts import read_json, read_json_list
from .blobs import index_blob_map, load_blob_map
from .config import DEFAULT_SITE, MirrorLayout, SiteConfig
from .models import BlobRecord, ContentIndexRecord, DocumentType, PageDocument, SearchRecord
from .paths import normalize_path, path_variants, split_path
from .routes import RouteSets, load_route_contract
from .search import tokenize
from .transform import prepare_document_html

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RouteResolution:
    """リクエストパス 1 件の解決結果。"""

    request_path: str
    resolved_path: str
    redirected: bool
    override_status: int | None
    is_known_route: bool
    document: PageDocument | None

    @property
    def status(self) -> int:
        if self.override_status is not None:
            return self.override_status
        if self.is_known_route and self.document is not None:
            return 200
        return 404


class MirrorStore:
    def __init__(self, layout: MirrorLayout, site: SiteConfig = DEFAULT_SITE) -> None:
        self._layout = layout
        self._site = site
        self._documents: dict[str, PageDocument | None] = {}

    @cached_property
    def route_sets(self) -> RouteSets:
        return load_route_contract(self._layout).route_sets()

    @cached_property
    def content_index(self) -> dict[str, ContentIndexRecord]:
        records = (
            ContentIndexRecord.from_dict(row)
            for row in read_json_list(self._layout.content_dir / "index.json")
            if isinstance(row, dict)
        )
        return {record.path: record for record in records if record.path}

    @cached_property
    def blob_map_by_path(self) -> dict[str, BlobRecord]:
        return index_blob_map(load_blob_map(self._layout), self._site.file_mirror_prefix, self._site)

    @cached_property
    def search_index(self) -> list[SearchRecord]:
        return [
            SearchRecord.from_dict(row)
            for row in read_json_list(self._layout.search_dir / "index.json")
            if isinstance(row, dict)
        ]

    def _load_document(self, file_name: str) -> PageDocument | None:
        if file_name not in self._documents:
            payload = read_json(self._layout.content_dir / file_name, None)
            self._documents[file_name] = PageDocument.from_dict(payload) if isinstance(payload, dict) else None
        return self._documents[file_name]

    def get_document_by_path(self, path: str) -> PageDocument | None:
        """パスの全バリアントを順に試し、最初に見つかったドキュメントを返します。"""

        index = self.content_index
        for variant in path_variants(path):
            record = index.get(variant)
            if record is not None:
                return self._load_document(record.file)
        return None

    def resolve_route(self, path: str) -> RouteResolution:
        route_sets = self.route_sets
        resolution = route_sets.resolve_request_path(path)
        override = route_sets.overrides.get(resolution.input)
        if override is None:
            override = route_sets.overrides.get(resolution.resolved)
        known = any(
            variant in route_sets.two_hundred
            for candidate in (resolution.input, resolution.resolved)
            for variant in path_variants(candidate)
        )
        document = self.get_document_by_path(resolution.input) or self.get_document_by_path(resolution.resolved)
        return RouteResolution(
            request_path=resolution.input,
            resolved_path=resolution.resolved,
            redirected=resolution.redirected,
            override_status=override,
            is_known_route=known,
            document=document,
        )

    def list_documents_by_type(self, document_type: DocumentType | str) -> list[PageDocument]:
        wanted = DocumentType.parse(document_type)
        seen: set[str] = set()
        documents: list[PageDocument] = []
        for record in self.content_index.values():
            if record.type != wanted or record.file in seen:
                continue
            seen.add(record.file)
            document = self._load_document(record.file)
            if document is not None:
                documents.append(document)
        return sorted(documents, key=lambda document: document.path)

    def lookup_blob(self, path: str) -> BlobRecord | None:
        """ミラーパスからブロブ行を引きます。クエリ付きで見つからなければクエリなしで引き直します。"""

        normalized = normalize_path(path)
        index = self.blob_map_by_path
        hit = index.get(normalized)
        if hit is not None:
            return hit
        return index.get(split_path(normalized)[0])

    def render_html(self, document: PageDocument) -> str:
        return prepare_document_html(document.render_html or document.body_html, document.path, self._site)

    def search(self, query: str, limit: int = 20) -> list[SearchRecord]:
        """語の一致数が多い順に検索レコードを返します。"""

        wanted = set(tokenize(query))
        if not wanted:
            return []
        scored = [
            (len(wanted.intersection(record.terms)), record.path, record)
            for record in self.search_index
        ]
        ranked = sorted((item for item in scored if item[0] > 0), key=lambda item: (-item[0], item[1]))
        return [record for _, _, record in ranked[:limit]]
