from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from site2mirror.blobs import BlobSyncResult, write_blob_results
from site2mirror.config import MirrorLayout
from site2mirror.document import AssetResolver, DocumentStoreWriter
from site2mirror.models import BlobRecord, DocumentType, Snapshot
from site2mirror.routes import DiscoveryInputs, build_route_contract, write_route_contract
from site2mirror.search import build_search_index, write_search_index
from site2mirror.store import MirrorStore

SITE = "https://www.mekorhabracha.org"


def _snapshot(path: str, title: str, text: str, body_html: str = "<p>Body</p>") -> Snapshot:
    return Snapshot(
        path=path,
        url=f"{SITE}{path}",
        status=200,
        title=title,
        body_html=body_html,
        text=text,
        captured_at="2025-01-01T00:00:00+00:00",
    )


@pytest.fixture()
def store(tmp_path: Path) -> MirrorStore:
    layout = MirrorLayout(tmp_path)
    layout.ensure()
    contract = build_route_contract(
        DiscoveryInputs(
            sitemap_urls=[f"{SITE}/", f"{SITE}/Kosher-Place%20A", f"{SITE}/post/purim"],
            reachable_urls=[f"{SITE}/kosher-place-a", f"{SITE}/_files/ugd/menu.pdf"],
            non_ok_urls=[f"{SITE}/old-page"],
            status_rows=[{"url": f"{SITE}/old-page", "status": "410"}],
        )
    )
    write_route_contract(contract, layout, datetime(2025, 1, 1, tzinfo=timezone.utc))

    blob = BlobRecord(
        source_url=f"{SITE}/_files/ugd/menu.pdf",
        path="/_files/ugd/menu.pdf",
        blob_key="mekor/abc-menu.pdf",
        blob_url="https://blob.local/mekor/abc-menu.pdf",
        content_type="application/pdf",
        sha1="abc",
        size=10,
    )
    sync_result = BlobSyncResult(candidate_count=1)
    sync_result.records.succeeded.append(blob)
    write_blob_results(sync_result, layout, dry_run=True)

    writer = DocumentStoreWriter(layout)
    content = writer.build(
        [
            _snapshot("/", "Home", "Welcome to the shul."),
            _snapshot(
                "/kosher-place-a",
                "Kosher Place A",
                "Dairy restaurant near Rittenhouse.",
                f'<a href="{SITE}/_files/ugd/menu.pdf">Menu</a>'
                '<iframe src="https://www.youtube.com/embed/abcDEF123"></iframe>',
            ),
            _snapshot("/post/purim", "Purim Party", "Megillah reading and dinner."),
        ],
        AssetResolver.from_blob_map(layout.assets_dir / "blob-map.json"),
    )
    writer.write(content)
    write_search_index(build_search_index(content.documents), layout)
    return MirrorStore(layout)


def test_alias_and_canonical_paths_resolve_to_same_document(store: MirrorStore) -> None:
    variant = store.resolve_route("/Kosher-Place%20A")
    canonical = store.resolve_route("/kosher-place-a/")

    assert variant.redirected is True
    assert variant.resolved_path == "/kosher-place-a"
    assert variant.status == 200
    assert canonical.redirected is False
    assert variant.document is not None and canonical.document is not None
    assert variant.document.id == canonical.document.id


def test_status_override_and_unknown_routes(store: MirrorStore) -> None:
    gone = store.resolve_route("/old-page")
    unknown = store.resolve_route("/does-not-exist")

    assert gone.status == 410
    assert gone.document is None
    assert unknown.status == 404
    assert unknown.is_known_route is False


def test_document_links_point_at_blob_urls(store: MirrorStore) -> None:
    document = store.get_document_by_path("/kosher-place-a")

    assert document is not None
    assert 'href="https://blob.local/mekor/abc-menu.pdf"' in document.body_html


def test_render_html_defers_embeds(store: MirrorStore) -> None:
    document = store.get_document_by_path("/kosher-place-a")

    html = store.render_html(document)

    assert 'data-mirror-deferred="youtube"' in html
    assert "youtube-nocookie.com/embed/abcDEF123" in html


def test_list_documents_by_type(store: MirrorStore) -> None:
    posts = store.list_documents_by_type("post")
    pages = store.list_documents_by_type(DocumentType.PAGE)

    assert [document.path for document in posts] == ["/post/purim"]
    assert [document.path for document in pages] == ["/", "/kosher-place-a"]


def test_lookup_blob_falls_back_to_path_without_query(store: MirrorStore) -> None:
    hit = store.lookup_blob("/_files/ugd/menu.pdf?dn=Menu.pdf")

    assert hit is not None
    assert hit.blob_url == "https://blob.local/mekor/abc-menu.pdf"
    assert store.lookup_blob("/_files/ugd/other.pdf") is None


def test_search_ranks_by_term_overlap(store: MirrorStore) -> None:
    results = store.search("Purim dinner")

    assert [record.path for record in results] == ["/post/purim"]
    assert store.search("!!") == []


def test_known_route_without_document_and_orphan_document_are_not_found(tmp_path: Path) -> None:
    layout = MirrorLayout(tmp_path)
    layout.ensure()
    contract = build_route_contract(
        DiscoveryInputs(sitemap_urls=[f"{SITE}/", f"{SITE}/post/missing"], reachable_urls=[], non_ok_urls=[], status_rows=[])
    )
    write_route_contract(contract, layout, datetime(2025, 1, 1, tzinfo=timezone.utc))
    writer = DocumentStoreWriter(layout)
    content = writer.build(
        [_snapshot("/", "Home", "Welcome."), _snapshot("/orphan", "Orphan", "Not in any route list.")],
        AssetResolver(),
    )
    writer.write(content)
    store = MirrorStore(layout)

    missing = store.resolve_route("/post/missing")
    orphan = store.resolve_route("/orphan")

    assert missing.is_known_route is True
    assert missing.document is None
    assert missing.status == 404
    assert orphan.is_known_route is False
    assert orphan.document is not None
    assert orphan.status == 404
    assert store.resolve_route("/").status == 200
