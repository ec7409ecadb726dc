"""アーカイブ在庫とスナップショットからアセット候補を集めるユーティリティ。"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import PurePath, PurePosixPath
from typing import Iterable, Mapping, Sequence
from urllib.parse import urlsplit

from .artifacts import read_json_list, write_json
from .config import DEFAULT_SITE, MirrorLayout, SiteConfig, default_timestamp
from .models import AssetCandidate, AssetSourceType, RouteRecord, Snapshot
from .paths import to_absolute_url

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

_CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".doc": "application/msword",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".xml": "application/xml",
    ".txt": "text/plain",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
}
_MEDIA_EXTENSION = re.compile(r"\.(png|jpe?g|gif|webp|svg|pdf|docx?|mp4|webm|xml|txt)$", re.IGNORECASE)


def extension_of(name: str) -> str:
    return PurePosixPath(name).suffix.lower()


def guess_content_type(name: str) -> str:
    return _CONTENT_TYPES.get(extension_of(name), DEFAULT_CONTENT_TYPE)


def filename_from_url(url: str) -> str:
    try:
        name = PurePosixPath(urlsplit(url).path).name
    except ValueError:
        return "asset"
    return name or "asset"


def is_snapshot_asset(url: str, site: SiteConfig = DEFAULT_SITE) -> bool:
    """サイトかメディアホスト上の、ファイルらしい URL かどうかを判定します。"""

    try:
        parsed = urlsplit(url)
    except ValueError:
        return False
    if parsed.scheme not in {"http", "https"} or not site.is_media_host(parsed.hostname or ""):
        return False
    lower_path = parsed.path.lower()
    return bool(_MEDIA_EXTENSION.search(lower_path)) or "/_files/" in lower_path


def _parse_size(raw: str | None) -> int:
    try:
        return max(0, int((raw or "0").strip()))
    except ValueError:
        return 0


def archive_candidates(rows: Iterable[Mapping[str, str]]) -> list[AssetCandidate]:
    """在庫 CSV の行をアーカイブ由来の候補に変換します。"""

    candidates: list[AssetCandidate] = []
    for row in rows:
        local_path = (row.get("absolute_path") or "").strip()
        if not local_path:
            logger.debug("absolute_path のない在庫行を読み飛ばしました: %s", row)
            continue
        filename = (row.get("filename") or "").strip() or PurePath(
            local_path or row.get("relative_path") or "asset"
        ).name
        candidates.append(
            AssetCandidate(
                source_type=AssetSourceType.ARCHIVE,
                local_path=local_path,
                filename=filename,
                extension=(row.get("extension") or "").strip() or extension_of(filename),
                size_bytes=_parse_size(row.get("size_bytes")),
                sha1=(row.get("sha1") or "").strip().lower(),
                content_type=guess_content_type(filename),
            )
        )
    return candidates


def snapshot_asset_urls(
    snapshots: Iterable[Snapshot], file_routes: Iterable[RouteRecord], site: SiteConfig = DEFAULT_SITE
) -> list[str]:
    urls: set[str] = set()
    for snapshot in snapshots:
        for url in (*snapshot.assets, *snapshot.links):
            if is_snapshot_asset(url, site):
                urls.add(url)
    for route in file_routes:
        if route.source_url:
            urls.add(route.source_url)
        elif route.path:
            urls.add(to_absolute_url(route.path, site))
    return sorted(urls)


@dataclass(slots=True)
class AssetCollection:
    archive: list[AssetCandidate] = field(default_factory=list)
    snapshot: list[AssetCandidate] = field(default_factory=list)

    @property
    def combined(self) -> list[AssetCandidate]:
        return [*self.archive, *self.snapshot]

    def remote_missing_from_archive(self) -> list[AssetCandidate]:
        """アーカイブに同名ファイルがないクロール由来の候補。"""

        local_names = {candidate.filename.lower() for candidate in self.archive}
        return [candidate for candidate in self.snapshot if candidate.filename.lower() not in local_names]


def collect_asset_candidates(
    inventory_rows: Iterable[Mapping[str, str]],
    snapshots: Sequence[Snapshot],
    file_routes: Sequence[RouteRecord],
    site: SiteConfig = DEFAULT_SITE,
) -> AssetCollection:
    """2 つのアセット供給源を 1 つの候補リストにまとめます。"""

    crawled: list[AssetCandidate] = []
    for url in snapshot_asset_urls(snapshots, file_routes, site):
        filename = filename_from_url(url)
        crawled.append(
            AssetCandidate(
                source_type=AssetSourceType.SNAPSHOT,
                source_url=url,
                filename=filename,
                extension=extension_of(filename),
                content_type=guess_content_type(filename),
            )
        )
    return AssetCollection(archive=archive_candidates(inventory_rows), snapshot=crawled)


def write_asset_candidates(collection: AssetCollection, layout: MirrorLayout) -> dict[str, int]:
    assets_dir = layout.assets_dir
    missing = collection.remote_missing_from_archive()
    write_json(assets_dir / "asset-candidates.json", [candidate.to_dict() for candidate in collection.combined])
    write_json(assets_dir / "snapshot-assets.json", [candidate.to_dict() for candidate in collection.snapshot])
    write_json(assets_dir / "remote-missing-from-archive.json", [candidate.to_dict() for candidate in missing])
    counts = {
        "localCandidateCount": len(collection.archive),
        "snapshotCandidateCount": len(collection.snapshot),
        "combinedCount": len(collection.combined),
        "remoteMissingFromArchiveCount": len(missing),
    }
    write_json(assets_dir / "asset-summary.json", {"generatedAt": default_timestamp().isoformat(), **counts})
    return counts


def load_asset_candidates(layout: MirrorLayout) -> list[AssetCandidate]:
    return [
        AssetCandidate.from_dict(row)
        for row in read_json_list(layout.assets_dir / "asset-candidates.json")
        if isinstance(row, dict)
    ]
