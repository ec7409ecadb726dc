"""Playwright でライブサイトを巡回し、ページのスナップショットを取得するユーティリティ。"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Sequence
from urllib.parse import urlsplit

from .artifacts import read_lines, sha1_hex, write_json
from .config import DEFAULT_SITE, CaptureConfig, MirrorLayout, SiteConfig, default_timestamp
from .models import BatchResult, RouteRecord, Snapshot, SnapshotMetadata
from .paths import normalize_path, parse_site_url, slug_from_path, to_absolute_url

try:  # pragma: no cover - optional dependency
    from playwright.async_api import async_playwright, Page
except Exception:  # pragma: no cover - executed when dependency missing
    async_playwright = None  # type: ignore[assignment]
    Page = object  # type: ignore[misc,assignment]


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]

_WHITESPACE = re.compile(r"\s+")


_PAGE_DETAILS_SCRIPT = """
(maxHeadings) => {
    const absolute = (input) => {
        if (!input) return "";
        try {
            return new URL(input, window.location.href).toString();
        } catch {
            return "";
        }
    };
    const getMeta = (selector) =>
        document.querySelector(selector)?.getAttribute("content")?.trim() ?? "";

    const headings = Array.from(document.querySelectorAll("h1, h2, h3"))
        .map((element) => element.textContent?.trim() ?? "")
        .filter(Boolean)
        .slice(0, maxHeadings);
    const links = Array.from(document.querySelectorAll("a[href]"))
        .map((element) => absolute(element.getAttribute("href")))
        .filter(Boolean);
    const assets = Array.from(
        document.querySelectorAll("img[src],source[src],video[src],audio[src],iframe[src],link[href],a[href]"),
    )
        .map((element) => absolute(element.getAttribute("src") ?? element.getAttribute("href")))
        .filter(Boolean);
    const styleTags = Array.from(document.querySelectorAll("head style"))
        .map((element) => element.outerHTML)
        .filter(Boolean);
    const styleLinks = Array.from(document.querySelectorAll('head link[rel="stylesheet"]'))
        .map((element) => element.outerHTML)
        .filter(Boolean);

    return {
        title: document.title?.trim() ?? "",
        metadata: {
            description: getMeta('meta[name="description"]'),
            canonical: document.querySelector('link[rel="canonical"]')?.getAttribute("href")?.trim() ?? "",
            ogTitle: getMeta('meta[property="og:title"]'),
            ogDescription: getMeta('meta[property="og:description"]'),
            ogImage: getMeta('meta[property="og:image"]'),
            twitterCard: getMeta('meta[name="twitter:card"]'),
            twitterTitle: getMeta('meta[name="twitter:title"]'),
            twitterDescription: getMeta('meta[name="twitter:description"]'),
        },
        headings,
        links,
        assets,
        styleTags,
        styleLinks,
        bodyHtml: document.body?.innerHTML ?? "",
        text: document.body?.innerText ?? "",
    };
}
"""


@dataclass(slots=True)
class CaptureSummary:
    requested_count: int
    ok_count: int
    error_count: int
    failed_paths: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "generatedAt": default_timestamp().isoformat(),
            "requestedCount": self.requested_count,
            "okCount": self.ok_count,
            "errorCount": self.error_count,
            "failedPaths": list(self.failed_paths),
        }


def snapshot_filename(path: str) -> str:
    """パスごとに一意なスナップショットのファイル名を返します。"""

    return f"{slug_from_path(path)}--{sha1_hex(path)[:12]}.json"


def select_capture_routes(routes: Sequence[RouteRecord], config: CaptureConfig) -> list[RouteRecord]:
    """``only_paths`` と ``limit`` を適用した取得対象を返します。"""

    only = {normalize_path(path) for path in config.only_paths}
    selected = [route for route in routes if not only or normalize_path(route.path) in only]
    if config.limit is not None:
        selected = selected[: max(0, config.limit)]
    return selected


def load_only_paths(inline: Iterable[str], only_file: Path | None = None) -> tuple[str, ...]:
    values = [value.strip() for value in inline if value and value.strip()]
    values.extend(read_lines(only_file))
    return tuple(dict.fromkeys(values))


def _unique(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))


def _outbound_links(links: Iterable[str], site: SiteConfig) -> list[str]:
    outbound: list[str] = []
    for link in links:
        try:
            host = urlsplit(link).hostname or ""
        except ValueError:
            continue
        if host and not site.is_site_host(host):
            outbound.append(link)
    return outbound


def build_snapshot(
    route: RouteRecord,
    *,
    target_url: str,
    final_url: str,
    status: int,
    details: Mapping[str, Any],
    site: SiteConfig = DEFAULT_SITE,
    captured_at: str | None = None,
) -> Snapshot:
    """ブラウザから取り出した値をスナップショットに整形します。"""

    def as_list(key: str) -> list[str]:
        value = details.get(key)
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, str)]

    links = _unique(as_list("links"))
    raw_text = details.get("text") if isinstance(details.get("text"), str) else ""
    text = _WHITESPACE.sub(" ", raw_text).strip()
    title = details.get("title") if isinstance(details.get("title"), str) else ""
    body_html = details.get("bodyHtml") if isinstance(details.get("bodyHtml"), str) else ""
    return Snapshot(
        path=route.path,
        url=target_url,
        final_path=parse_site_url(final_url, site) or route.path,
        final_url=final_url,
        status=status,
        title=title,
        metadata=SnapshotMetadata.from_dict(details.get("metadata")),
        headings=_unique(as_list("headings")),
        links=links,
        outbound_links=_unique(_outbound_links(links, site)),
        assets=_unique(as_list("assets")),
        style_tags=as_list("styleTags"),
        style_links=as_list("styleLinks"),
        body_html=body_html,
        text=text,
        text_hash=sha1_hex(text),
        captured_at=captured_at or default_timestamp().isoformat(),
        source="playwright",
    )


class SnapshotCapturer:
    """1 つのブラウザページを使い回し、ルートを順番に取得します。

    1 件の失敗はバッチ全体を止めず、``BatchResult.failed`` に理由付きで記録されます。
    Playwright が import できない環境では全件を ``playwright_unavailable`` として扱います。
    """

    def __init__(self, config: CaptureConfig, site: SiteConfig = DEFAULT_SITE) -> None:
        self._config = config
        self._site = site
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def capture_many(
        self, routes: Sequence[RouteRecord], progress: ProgressCallback | None = None
    ) -> BatchResult[Snapshot]:
        result: BatchResult[Snapshot] = BatchResult()
        targets = select_capture_routes(routes, self._config)
        if not targets:
            return result
        if async_playwright is None:
            self._logger.warning("Playwright が利用できないため、スナップショットを取得できません。")
            for route in targets:
                result.record_failure(route.path, "playwright_unavailable")
            return result

        total = len(targets)
        async with async_playwright() as playwright:  # type: ignore[misc]
            launch_kwargs = dict(self._config.launch_options) if self._config.launch_options is not None else {}
            launch_kwargs.setdefault("headless", True)
            browser = await playwright.chromium.launch(**launch_kwargs)
            try:
                context = await browser.new_context(
                    viewport={"width": self._config.viewport_width, "height": self._config.viewport_height},
                    user_agent=self._config.user_agent,
                )
                page = await context.new_page()
                for index, route in enumerate(targets, start=1):
                    try:
                        snapshot = await self._capture_single(page, route)
                    except Exception as error:
                        self._logger.warning("スナップショット取得に失敗しました: %s (%s)", route.path, error)
                        result.record_failure(route.path, str(error) or error.__class__.__name__)
                    else:
                        result.succeeded.append(snapshot)
                    if progress is not None:
                        progress(index, total, route.path)
                    elif index % 10 == 0 or index == total:
                        self._logger.info("スナップショット取得中 (%d/%d)", index, total)
            finally:
                await browser.close()
        return result

    async def _capture_single(self, page: Page, route: RouteRecord) -> Snapshot:
        target_url = to_absolute_url(route.path, self._site)
        try:
            response = await page.goto(
                target_url,
                wait_until=self._config.primary_wait_until,
                timeout=self._config.primary_timeout * 1000,
            )
        except Exception as primary_error:
            self._logger.warning(
                "wait_until=%s で再取得します: %s (%s)",
                self._config.fallback_wait_until,
                route.path,
                primary_error,
            )
            response = await page.goto(
                target_url,
                wait_until=self._config.fallback_wait_until,
                timeout=self._config.fallback_timeout * 1000,
            )
        try:
            await page.wait_for_load_state("networkidle", timeout=self._config.network_idle_timeout * 1000)
        except Exception:
            self._logger.debug("networkidle に到達しないまま DOM を取得します: %s", route.path)
        if self._config.settle_delay > 0:
            await page.wait_for_timeout(self._config.settle_delay * 1000)
        details = await page.evaluate(_PAGE_DETAILS_SCRIPT, self._config.max_headings)
        return build_snapshot(
            route,
            target_url=target_url,
            final_url=page.url,
            status=response.status if response is not None else 0,
            details=details if isinstance(details, Mapping) else {},
            site=self._site,
        )


def write_snapshots(result: BatchResult[Snapshot], layout: MirrorLayout) -> CaptureSummary:
    """取得結果をスナップショット JSON とサマリーとして書き出します。"""

    for snapshot in result.succeeded:
        write_json(layout.snapshot_dir / snapshot_filename(snapshot.path), snapshot.to_dict())
    failed_paths = [failure.item for failure in result.failed]
    summary = CaptureSummary(
        requested_count=len(result.succeeded) + len(failed_paths),
        ok_count=len(result.succeeded),
        error_count=len(failed_paths),
        failed_paths=failed_paths,
    )
    write_json(layout.routes_dir / "snapshot-summary.json", summary.to_dict())
    return summary


async def capture_routes(
    routes: Sequence[RouteRecord],
    config: CaptureConfig,
    site: SiteConfig = DEFAULT_SITE,
    progress: ProgressCallback | None = None,
) -> BatchResult[Snapshot]:
    """複数ルートをまとめて取得するためのヘルパー。"""

    capturer = SnapshotCapturer(config, site)
    return await capturer.capture_many(routes, progress=progress)
