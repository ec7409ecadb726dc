"""site2mirror パイプラインの設定モデル群。"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence

from .models import DocumentType


def _merge_unique(defaults: Sequence[str], extras: Sequence[str]) -> tuple[str, ...]:
    """既定値と追加指定を大文字小文字を無視して結合します。"""

    seen: set[str] = set()
    merged: list[str] = []
    for text in (*defaults, *extras):
        key = text.casefold()
        if key in seen:
            continue
        seen.add(key)
        merged.append(text)
    return tuple(merged)


def default_timestamp() -> datetime:
    """メタデータ用に現在時刻 (UTC) を返します。"""

    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class SiteConfig:
    """ミラー元サイトに固有の値。"""

    url: str = "https://www.mekorhabracha.org"
    hosts: tuple[str, ...] = ("www.mekorhabracha.org", "mekorhabracha.org")
    domain: str = "mekorhabracha.org"
    media_host_suffixes: tuple[str, ...] = ("wixstatic.com", "filesusr.com")
    media_cdn_host_suffix: str = "wixstatic.com"
    link_redirects: Mapping[str, str] = field(
        default_factory=lambda: {"/kosher-posts": "/center-city"}
    )
    file_mirror_prefix: str = "/_files/ugd/"
    blob_namespace: str = "mekor"

    def is_site_host(self, host: str) -> bool:
        lowered = (host or "").lower()
        if not lowered:
            return False
        if lowered in self.hosts:
            return True
        return lowered.endswith("." + self.domain)

    def is_media_host(self, host: str) -> bool:
        lowered = (host or "").lower()
        if self.is_site_host(lowered):
            return True
        return any(lowered == suffix or lowered.endswith("." + suffix) for suffix in self.media_host_suffixes)


DEFAULT_SITE = SiteConfig()


@dataclass(slots=True)
class DiscoveryConfig:
    """ルート契約の入力ファイル。"""

    sitemap_file: Path | None = None
    reachable_file: Path | None = None
    non_ok_file: Path | None = None
    status_csv_file: Path | None = None


@dataclass(slots=True)
class CaptureConfig:
    """スナップショット取得時のブラウザ設定。"""

    primary_wait_until: str = "load"
    primary_timeout: float = 45.0
    fallback_wait_until: str = "domcontentloaded"
    fallback_timeout: float = 20.0
    network_idle_timeout: float = 8.0
    settle_delay: float = 0.9
    viewport_width: int = 1366
    viewport_height: int = 900
    user_agent: str = "Mozilla/5.0 (compatible; Site2MirrorSnapshot/1.0)"
    max_headings: int = 120
    only_paths: Sequence[str] = ()
    limit: int | None = None
    launch_options: Mapping[str, Any] | None = None


@dataclass(slots=True)
class ContentConfig:
    """スナップショットからドキュメントを組み立てる際の設定。"""

    min_status: int = 200
    max_status: int = 400
    tracking_iframe_markers: tuple[str, ...] = ("consent", "doubleclick")
    default_twitter_card: str = "summary_large_image"


@dataclass(slots=True)
class SearchConfig:
    """検索インデックスの設定。"""

    searchable_types: tuple[DocumentType, ...] = (
        DocumentType.PAGE,
        DocumentType.POST,
        DocumentType.NEWS,
        DocumentType.EVENT,
        DocumentType.CATEGORY,
        DocumentType.PROFILE,
    )
    excerpt_length: int = 280
    sentence_lookback: int = 130
    max_terms: int = 300
    min_term_length: int = 2


@dataclass(slots=True)
class BlobConfig:
    """アセット同期の設定。"""

    inventory_csv: Path | None = None
    fetch_timeout: float = 20.0
    fetch_retries: int = 1
    dry_run: bool = False
    limit: int | None = None


@dataclass(slots=True)
class VerifyConfig:
    """契約検証のしきい値。"""

    expected_canonical_count: int | None = None
    min_reachable_extra: int = 0


@dataclass(slots=True)
class MirrorLayout:
    """成果物ディレクトリの配置。"""

    root: Path
    routes_dir: Path = field(init=False)
    raw_dir: Path = field(init=False)
    snapshot_dir: Path = field(init=False)
    content_dir: Path = field(init=False)
    documents_dir: Path = field(init=False)
    seo_dir: Path = field(init=False)
    search_dir: Path = field(init=False)
    assets_dir: Path = field(init=False)
    logs_dir: Path = field(init=False)

    def __post_init__(self) -> None:
        self.routes_dir = self.root / "routes"
        self.raw_dir = self.root / "raw"
        self.snapshot_dir = self.raw_dir / "snapshots"
        self.content_dir = self.root / "content"
        self.documents_dir = self.content_dir / "documents"
        self.seo_dir = self.root / "seo"
        self.search_dir = self.root / "search"
        self.assets_dir = self.root / "assets"
        self.logs_dir = self.root / "logs"

    def ensure(self) -> None:
        for directory in (
            self.routes_dir,
            self.snapshot_dir,
            self.content_dir,
            self.seo_dir,
            self.search_dir,
            self.assets_dir,
            self.logs_dir,
        ):
            directory.mkdir(parents=True, exist_ok=True)


@dataclass(slots=True)
class MirrorConfig:
    """パイプライン全体を束ねる設定。"""

    layout: MirrorLayout
    site: SiteConfig = field(default_factory=SiteConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    content: ContentConfig = field(default_factory=ContentConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    blob: BlobConfig = field(default_factory=BlobConfig)
    verify: VerifyConfig = field(default_factory=VerifyConfig)
    created_at: datetime = field(default_factory=default_timestamp)

    @classmethod
    def from_args(
        cls,
        data_dir: Path,
        discovery: DiscoveryConfig | None = None,
        only_paths: Optional[Iterable[str]] = None,
        snapshot_limit: Optional[int] = None,
        launch_options: Mapping[str, Any] | None = None,
        extra_hosts: Optional[Iterable[str]] = None,
        blob_overrides: Mapping[str, Any] | None = None,
        verify_overrides: Mapping[str, Any] | None = None,
    ) -> "MirrorConfig":
        site = DEFAULT_SITE
        normalized_hosts = tuple(
            host.strip().lower() for host in (extra_hosts or ()) if host and host.strip()
        )
        if normalized_hosts:
            site = SiteConfig(hosts=_merge_unique(site.hosts, normalized_hosts))
        capture_kwargs: dict[str, Any] = {}
        normalized_only = tuple(path.strip() for path in (only_paths or ()) if path and path.strip())
        if normalized_only:
            capture_kwargs["only_paths"] = normalized_only
        if snapshot_limit is not None:
            capture_kwargs["limit"] = max(0, snapshot_limit)
        if launch_options is not None:
            capture_kwargs["launch_options"] = dict(launch_options)
        blob_config = BlobConfig(**(dict(blob_overrides) if blob_overrides else {}))
        verify_config = VerifyConfig(**(dict(verify_overrides) if verify_overrides else {}))
        return cls(
            layout=MirrorLayout(data_dir),
            site=site,
            discovery=discovery or DiscoveryConfig(),
            capture=CaptureConfig(**capture_kwargs),
            blob=blob_config,
            verify=verify_config,
        )
