"""複数の発見ソースからルート契約を組み立てるユーティリティ。"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable, Mapping, Sequence
from urllib.parse import unquote

from .artifacts import read_csv, read_json_list, read_lines, write_json
from .config import DEFAULT_SITE, DiscoveryConfig, MirrorLayout, SiteConfig
from .models import AliasRecord, RouteRecord, StatusOverride
from .paths import is_likely_file_path, normalize_path, parse_site_url, split_path, to_absolute_url

logger = logging.getLogger(__name__)

ALIAS_REASON = "case-or-encoding-variant"
DEFAULT_OVERRIDE_STATUS = 404

_PERCENT_ENCODED = re.compile(r"%[0-9A-Fa-f]{2}")
_WHITESPACE = re.compile(r"\s+")


@dataclass(slots=True)
class DiscoveryInputs:
    """ルート契約の元になる生入力。"""

    sitemap_urls: list[str] = field(default_factory=list)
    reachable_urls: list[str] = field(default_factory=list)
    non_ok_urls: list[str] = field(default_factory=list)
    status_rows: list[dict[str, str]] = field(default_factory=list)


@dataclass(slots=True)
class RequestResolution:
    input: str
    resolved: str
    redirected: bool


@dataclass(frozen=True, slots=True)
class RouteSets:
    """リクエスト時に参照するルート集合。構築後は変更しません。"""

    two_hundred: frozenset[str]
    overrides: Mapping[str, int]
    aliases: Mapping[str, str]

    @classmethod
    def from_records(
        cls,
        canonical: Iterable[RouteRecord],
        reachable_extra: Iterable[RouteRecord],
        status_overrides: Iterable[StatusOverride],
        aliases: Iterable[AliasRecord],
    ) -> "RouteSets":
        two_hundred = frozenset(normalize_path(record.path) for record in (*canonical, *reachable_extra))
        overrides = {normalize_path(record.path): record.status for record in status_overrides}
        alias_map = {normalize_path(record.from_path): normalize_path(record.to_path) for record in aliases}
        return cls(two_hundred=two_hundred, overrides=overrides, aliases=alias_map)

    def resolve_request_path(self, path: str) -> RequestResolution:
        normalized = normalize_path(path)
        target = self.aliases.get(normalized)
        if not target:
            return RequestResolution(input=normalized, resolved=normalized, redirected=False)
        return RequestResolution(input=normalized, resolved=target, redirected=target != normalized)


def resolve_request_path(path: str, route_sets: RouteSets) -> RequestResolution:
    return route_sets.resolve_request_path(path)


@dataclass(slots=True)
class RouteContract:
    """正規・到達可能・ステータス上書き・エイリアスの 4 表。"""

    canonical: list[RouteRecord]
    reachable_extra: list[RouteRecord]
    status_overrides: list[StatusOverride]
    aliases: list[AliasRecord]
    html_routes: list[RouteRecord]
    file_routes: list[RouteRecord]
    status_by_path: dict[str, int]

    def two_hundred_paths(self) -> set[str]:
        return {record.path for record in (*self.canonical, *self.reachable_extra)}

    def route_sets(self) -> RouteSets:
        return RouteSets.from_records(self.canonical, self.reachable_extra, self.status_overrides, self.aliases)


def alias_group_key(pathname: str) -> str:
    """大文字小文字・パーセントエンコード・空白の揺れを吸収したグループキー。"""

    try:
        decoded = unquote(pathname, errors="strict")
    except UnicodeDecodeError:
        decoded = pathname
    return _WHITESPACE.sub("-", decoded.strip()).lower()


def choose_canonical_path(candidates: Sequence[str]) -> str:
    """小文字 → 非エンコード → 辞書順の優先度で代表パスを選びます。"""

    def rank(candidate: str) -> tuple[int, int, str]:
        lower_rank = 0 if candidate == candidate.lower() else 1
        encoded_rank = 1 if _PERCENT_ENCODED.search(candidate) else 0
        return lower_rank, encoded_rank, candidate

    return sorted(candidates, key=rank)[0]


def _parse_paths(urls: Iterable[str], site: SiteConfig) -> set[str]:
    paths: set[str] = set()
    for line in urls:
        parsed = parse_site_url(line, site)
        if parsed:
            paths.add(parsed)
    return paths


def _parse_status_table(rows: Iterable[Mapping[str, str]], site: SiteConfig) -> dict[str, int]:
    status_by_path: dict[str, int] = {}
    for row in rows:
        parsed = parse_site_url(row.get("url") or "", site)
        if not parsed:
            continue
        raw_status = (row.get("status") or "").strip()
        try:
            status = int(raw_status)
        except ValueError:
            continue
        status_by_path[parsed] = status
    return status_by_path


def _record(path: str, site: SiteConfig) -> RouteRecord:
    return RouteRecord(path=normalize_path(path), source_url=to_absolute_url(path, site))


def _detect_aliases(two_hundred: set[str]) -> list[AliasRecord]:
    groups: dict[str, set[str]] = defaultdict(set)
    for path in two_hundred:
        pathname, _ = split_path(path)
        groups[alias_group_key(pathname)].add(pathname)

    aliases: list[AliasRecord] = []
    for members in groups.values():
        if len(members) < 2:
            continue
        eligible = sorted(member for member in members if member in two_hundred)
        if not eligible:
            continue
        target = choose_canonical_path(eligible)
        for member in sorted(members):
            if member == target:
                continue
            aliases.append(AliasRecord(from_path=member, to_path=target, reason=ALIAS_REASON))
    aliases.sort(key=lambda record: record.from_path)
    return aliases


def build_route_contract(inputs: DiscoveryInputs, site: SiteConfig = DEFAULT_SITE) -> RouteContract:
    """発見ソースを突き合わせ、正規化済みのルート契約を作ります。"""

    canonical_paths = _parse_paths(inputs.sitemap_urls, site)
    reachable_paths = _parse_paths(inputs.reachable_urls, site)
    non_ok_paths = _parse_paths(inputs.non_ok_urls, site)
    status_by_path = _parse_status_table(inputs.status_rows, site)

    reachable_extra_paths = reachable_paths - canonical_paths
    two_hundred = canonical_paths | reachable_extra_paths

    overrides: list[StatusOverride] = []
    for path in sorted(non_ok_paths):
        status = status_by_path.get(path, DEFAULT_OVERRIDE_STATUS)
        if status == 200:
            continue
        if path in two_hundred:
            logger.warning("200 ルートと衝突するステータス上書きを除外しました: %s (%d)", path, status)
            continue
        overrides.append(StatusOverride(path=path, status=status, source_url=to_absolute_url(path, site)))

    html_paths = sorted(path for path in two_hundred if not is_likely_file_path(path))
    file_paths = sorted(path for path in two_hundred if is_likely_file_path(path))

    return RouteContract(
        canonical=[_record(path, site) for path in sorted(canonical_paths)],
        reachable_extra=[_record(path, site) for path in sorted(reachable_extra_paths)],
        status_overrides=overrides,
        aliases=_detect_aliases(two_hundred),
        html_routes=[_record(path, site) for path in html_paths],
        file_routes=[_record(path, site) for path in file_paths],
        status_by_path=dict(sorted(status_by_path.items())),
    )


def load_discovery_inputs(config: DiscoveryConfig) -> DiscoveryInputs:
    return DiscoveryInputs(
        sitemap_urls=read_lines(config.sitemap_file),
        reachable_urls=read_lines(config.reachable_file),
        non_ok_urls=read_lines(config.non_ok_file),
        status_rows=read_csv(config.status_csv_file),
    )


def write_route_contract(contract: RouteContract, layout: MirrorLayout, generated_at: datetime) -> dict[str, int]:
    routes_dir = layout.routes_dir
    write_json(routes_dir / "canonical-200.json", [record.to_dict() for record in contract.canonical])
    write_json(routes_dir / "reachable-extra-200.json", [record.to_dict() for record in contract.reachable_extra])
    write_json(routes_dir / "status-overrides.json", [record.to_dict() for record in contract.status_overrides])
    write_json(routes_dir / "aliases.json", [record.to_dict() for record in contract.aliases])
    write_json(routes_dir / "html-200.json", [record.to_dict() for record in contract.html_routes])
    write_json(routes_dir / "file-200.json", [record.to_dict() for record in contract.file_routes])
    write_json(
        routes_dir / "status-by-path.json",
        [{"path": path, "status": status} for path, status in contract.status_by_path.items()],
    )
    counts = {
        "canonicalCount": len(contract.canonical),
        "reachableExtraCount": len(contract.reachable_extra),
        "statusOverrideCount": len(contract.status_overrides),
        "aliasCount": len(contract.aliases),
        "htmlTwoHundredCount": len(contract.html_routes),
        "fileTwoHundredCount": len(contract.file_routes),
    }
    write_json(routes_dir / "discovery-summary.json", {"generatedAt": generated_at.isoformat(), **counts})
    return counts


def _load_records(path: Path) -> list[RouteRecord]:
    return [RouteRecord.from_dict(row) for row in read_json_list(path) if isinstance(row, dict)]


def load_route_contract(layout: MirrorLayout) -> RouteContract:
    """書き出し済みのルート契約を読み込みます。欠けているファイルは空として扱います。"""

    routes_dir = layout.routes_dir
    status_by_path: dict[str, int] = {}
    for row in read_json_list(routes_dir / "status-by-path.json"):
        if isinstance(row, dict) and isinstance(row.get("path"), str) and isinstance(row.get("status"), int):
            status_by_path[row["path"]] = row["status"]
    return RouteContract(
        canonical=_load_records(routes_dir / "canonical-200.json"),
        reachable_extra=_load_records(routes_dir / "reachable-extra-200.json"),
        status_overrides=[
            StatusOverride.from_dict(row)
            for row in read_json_list(routes_dir / "status-overrides.json")
            if isinstance(row, dict)
        ],
        aliases=[AliasRecord.from_dict(row) for row in read_json_list(routes_dir / "aliases.json") if isinstance(row, dict)],
        html_routes=_load_records(routes_dir / "html-200.json"),
        file_routes=_load_records(routes_dir / "file-200.json"),
        status_by_path=status_by_path,
    )
