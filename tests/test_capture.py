from __future__ import annotations

import asyncio
import json
from pathlib import Path

from site2mirror import capture
from site2mirror.artifacts import sha1_hex
from site2mirror.config import CaptureConfig, MirrorLayout
from site2mirror.models import BatchResult, RouteRecord, Snapshot

SITE = "https://www.mekorhabracha.org"


def _route(path: str) -> RouteRecord:
    return RouteRecord(path=path, source_url=f"{SITE}{path}")


def test_capture_routes_without_playwright_records_failures(monkeypatch) -> None:
    monkeypatch.setattr(capture, "async_playwright", None)
    routes = [_route("/"), _route("/about")]

    result = asyncio.run(capture.capture_routes(routes, CaptureConfig()))

    assert result.succeeded == []
    assert [failure.item for failure in result.failed] == ["/", "/about"]
    assert {failure.reason for failure in result.failed} == {"playwright_unavailable"}


def test_select_capture_routes_applies_only_paths_and_limit() -> None:
    routes = [_route("/"), _route("/about"), _route("/events"), _route("/contact")]

    only = capture.select_capture_routes(routes, CaptureConfig(only_paths=("/events/", "/contact")))
    limited = capture.select_capture_routes(routes, CaptureConfig(limit=2))

    assert [route.path for route in only] == ["/events", "/contact"]
    assert [route.path for route in limited] == ["/", "/about"]


def test_load_only_paths_merges_inline_and_file(tmp_path: Path) -> None:
    only_file = tmp_path / "only.txt"
    only_file.write_text("/events\n\n/about\n", encoding="utf-8")

    assert capture.load_only_paths(["/about", " "], only_file) == ("/about", "/events")


def test_build_snapshot_normalizes_browser_details() -> None:
    details = {
        "title": "Center City",
        "metadata": {"description": "Kosher places", "ogImage": "https://static.wixstatic.com/media/a.jpg"},
        "headings": ["Welcome", "Welcome", "Places"],
        "links": [f"{SITE}/about", "https://example.com/partner", f"{SITE}/about"],
        "assets": ["https://static.wixstatic.com/media/a.jpg", 42],
        "styleTags": ["<style>body{}</style>"],
        "bodyHtml": "<p>Hello</p>",
        "text": "  Hello \n\n world  ",
    }

    snapshot = capture.build_snapshot(
        _route("/kosher-posts"),
        target_url=f"{SITE}/kosher-posts",
        final_url=f"{SITE}/center-city/",
        status=200,
        details=details,
        captured_at="2025-01-01T00:00:00+00:00",
    )

    assert snapshot.path == "/kosher-posts"
    assert snapshot.final_path == "/center-city"
    assert snapshot.headings == ["Welcome", "Places"]
    assert snapshot.links == [f"{SITE}/about", "https://example.com/partner"]
    assert snapshot.outbound_links == ["https://example.com/partner"]
    assert snapshot.assets == ["https://static.wixstatic.com/media/a.jpg"]
    assert snapshot.text == "Hello world"
    assert snapshot.text_hash == sha1_hex("Hello world")
    assert snapshot.metadata.description == "Kosher places"
    assert snapshot.source == "playwright"


def test_build_snapshot_keeps_requested_path_when_redirected_off_site() -> None:
    snapshot = capture.build_snapshot(
        _route("/shop"),
        target_url=f"{SITE}/shop",
        final_url="https://payments.example.com/checkout",
        status=200,
        details={},
    )

    assert snapshot.final_path == "/shop"
    assert snapshot.body_html == ""
    assert snapshot.captured_at


def test_snapshot_filename_is_unique_per_path() -> None:
    home = capture.snapshot_filename("/")
    upper = capture.snapshot_filename("/About")
    lower = capture.snapshot_filename("/about")

    assert home.startswith("home--") and home.endswith(".json")
    assert upper != lower


def test_write_snapshots_writes_files_and_summary(tmp_path: Path) -> None:
    layout = MirrorLayout(tmp_path)
    layout.ensure()
    result: BatchResult[Snapshot] = BatchResult()
    result.succeeded.append(Snapshot(path="/about", status=200, title="About"))
    result.record_failure("/broken", "Timeout 45000ms exceeded")

    summary = capture.write_snapshots(result, layout)

    written = list(layout.snapshot_dir.glob("*.json"))
    assert len(written) == 1
    assert json.loads(written[0].read_text(encoding="utf-8"))["path"] == "/about"
    assert summary.requested_count == 2
    assert summary.error_count == 1
    payload = json.loads((layout.routes_dir / "snapshot-summary.json").read_text(encoding="utf-8"))
    assert payload["failedPaths"] == ["/broken"]
