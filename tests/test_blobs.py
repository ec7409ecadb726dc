from __future__ import annotations

import json
from pathlib import Path

import pytest
from botocore.exceptions import ClientError

from site2mirror.artifacts import sha1_hex
from site2mirror.blobs import (
    BlobConfigurationError,
    BlobExistsError,
    BlobSync,
    DryRunBlobStore,
    LocalBlobStore,
    S3BlobStore,
    blob_key,
    create_blob_store,
    index_blob_map,
    load_blob_map,
    write_blob_results,
)
from site2mirror.config import MirrorLayout
from site2mirror.env import BlobSettings
from site2mirror.http_client import FetchError, FetchResult
from site2mirror.models import AssetCandidate, AssetSourceType, BlobRecord

SITE = "https://www.mekorhabracha.org"


class FakeHttpClient:
    def __init__(self, bodies: dict[str, bytes]) -> None:
        self._bodies = bodies
        self.requested: list[str] = []

    def get(self, url: str) -> FetchResult:
        self.requested.append(url)
        if url not in self._bodies:
            raise FetchError(f"failed download {url}: 404")
        return FetchResult(url=url, final_url=url, status_code=200, content_type="", body=self._bodies[url])


class FakeS3Client:
    def __init__(self, *, exists: bool = False) -> None:
        self.exists = exists
        self.put_requests: list[dict] = []

    def put_object(self, **kwargs):
        self.put_requests.append(kwargs)
        if self.exists:
            raise ClientError({"Error": {"Code": "PreconditionFailed", "Message": "exists"}}, "PutObject")
        return {}

    def head_object(self, **kwargs):
        return {"ContentLength": 7, "ContentType": "application/pdf"}


def _archive(path: Path, sha1: str = "") -> AssetCandidate:
    return AssetCandidate(
        source_type=AssetSourceType.ARCHIVE,
        local_path=str(path),
        filename=path.name,
        extension=path.suffix,
        sha1=sha1,
    )


def _remote(url: str) -> AssetCandidate:
    return AssetCandidate(source_type=AssetSourceType.SNAPSHOT, source_url=url, filename=url.rsplit("/", 1)[-1])


def test_blob_key_sanitizes_filename() -> None:
    assert blob_key("mekor", "abc", "Annual Report.PDF") == "mekor/abc-annual-report.pdf"
    assert blob_key("mekor", "abc", "") == "mekor/abc-asset"


def test_sync_uploads_each_sha1_once(tmp_path: Path) -> None:
    first = tmp_path / "a.pdf"
    second = tmp_path / "copy-of-a.pdf"
    first.write_bytes(b"same bytes")
    second.write_bytes(b"same bytes")
    store = DryRunBlobStore()
    http = FakeHttpClient({f"{SITE}/_files/ugd/a.pdf": b"same bytes"})

    result = BlobSync(store, http_client=http).sync(
        [_archive(first), _archive(second), _remote(f"{SITE}/_files/ugd/a.pdf")]
    )

    assert store.put_calls == 1
    assert len(result.uploaded_by_sha) == 1
    records = result.records.succeeded
    assert len(records) == 3
    assert {record.blob_url for record in records} == {records[0].blob_url}
    remote = next(record for record in records if record.source_url.startswith("https://"))
    assert remote.path == "/_files/ugd/a.pdf"
    assert remote.sha1 == sha1_hex(b"same bytes")
    local = next(record for record in records if record.source_url.startswith("local://"))
    assert local.path == ""
    assert local.content_type == "application/pdf"


def test_sync_continues_after_failures(tmp_path: Path) -> None:
    good = tmp_path / "good.png"
    good.write_bytes(b"png")
    http = FakeHttpClient({})

    result = BlobSync(DryRunBlobStore(), http_client=http).sync(
        [_archive(tmp_path / "missing.pdf"), _remote(f"{SITE}/_files/ugd/gone.pdf"), _archive(good)]
    )

    assert [record.blob_key.rsplit("-", 1)[-1] for record in result.records.succeeded] == ["good.png"]
    failed = {failure.item: failure.reason for failure in result.records.failed}
    assert str(tmp_path / "missing.pdf") in failed
    assert "404" in failed[f"{SITE}/_files/ugd/gone.pdf"]


def test_sync_respects_limit(tmp_path: Path) -> None:
    files = []
    for index in range(3):
        path = tmp_path / f"{index}.txt"
        path.write_bytes(f"body-{index}".encode())
        files.append(_archive(path))

    result = BlobSync(DryRunBlobStore(), http_client=FakeHttpClient({})).sync(files, limit=2)

    assert result.candidate_count == 2
    assert len(result.records.succeeded) == 2


def test_existing_object_is_mapped_instead_of_failing(tmp_path: Path) -> None:
    source = tmp_path / "flyer.pdf"
    source.write_bytes(b"flyer")
    sha1 = sha1_hex(b"flyer")
    store_root = tmp_path / "store"
    store = LocalBlobStore(store_root, "https://assets.example.com")
    existing = store_root / "mekor" / f"{sha1}-flyer.pdf"
    existing.parent.mkdir(parents=True)
    existing.write_bytes(b"flyer")

    result = BlobSync(store, http_client=FakeHttpClient({})).sync([_archive(source, sha1)])

    assert result.records.failed == []
    record = result.records.succeeded[0]
    assert record.blob_url == f"https://assets.example.com/mekor/{sha1}-flyer.pdf"
    assert record.size == 5


def test_local_blob_store_rejects_overwrite(tmp_path: Path) -> None:
    store = LocalBlobStore(tmp_path)
    store.put("mekor/a.txt", b"a", "text/plain")

    with pytest.raises(BlobExistsError):
        store.put("mekor/a.txt", b"b", "text/plain")
    assert (tmp_path / "mekor" / "a.txt").read_bytes() == b"a"


def test_s3_blob_store_uses_conditional_put() -> None:
    client = FakeS3Client()
    store = S3BlobStore(bucket="mirror", public_base_url="https://cdn.example.com/", client=client)

    stored = store.put("mekor/a.pdf", b"1234567", "application/pdf")

    assert client.put_requests[0]["IfNoneMatch"] == "*"
    assert client.put_requests[0]["Bucket"] == "mirror"
    assert stored.url == "https://cdn.example.com/mekor/a.pdf"


def test_s3_blob_store_maps_precondition_failure_to_exists() -> None:
    store = S3BlobStore(bucket="mirror", client=FakeS3Client(exists=True))

    with pytest.raises(BlobExistsError):
        store.put("mekor/a.pdf", b"1234567", "application/pdf")
    head = store.head("mekor/a.pdf")
    assert head.size == 7
    assert head.url == "https://mirror.s3.amazonaws.com/mekor/a.pdf"


def test_create_blob_store_selection(tmp_path: Path) -> None:
    empty = BlobSettings(None, None, None, None, None, None, None)

    assert isinstance(create_blob_store(empty, dry_run=True), DryRunBlobStore)
    assert isinstance(
        create_blob_store(BlobSettings(None, None, None, None, tmp_path, None, None)), LocalBlobStore
    )
    assert isinstance(create_blob_store(BlobSettings("bucket", None, None, None, None, None, None)), S3BlobStore)
    with pytest.raises(BlobConfigurationError):
        create_blob_store(empty)


def test_write_and_load_blob_results(tmp_path: Path) -> None:
    layout = MirrorLayout(tmp_path)
    layout.ensure()
    good = tmp_path / "good.png"
    good.write_bytes(b"png")
    result = BlobSync(DryRunBlobStore(), http_client=FakeHttpClient({})).sync(
        [_archive(good), _remote(f"{SITE}/_files/ugd/gone.pdf")]
    )

    summary = write_blob_results(result, layout, dry_run=True)

    assert summary["mappedCount"] == 1
    assert summary["failureCount"] == 1
    assert summary["dryRun"] is True
    failures = json.loads((layout.assets_dir / "blob-failures.json").read_text(encoding="utf-8"))
    assert failures[0]["sourceUrl"] == f"{SITE}/_files/ugd/gone.pdf"
    assert [record.blob_key for record in load_blob_map(layout)] == [result.records.succeeded[0].blob_key]


def test_index_blob_map_first_row_wins_and_strips_query() -> None:
    def record(source_url: str, path: str, key: str) -> BlobRecord:
        return BlobRecord(source_url, path, key, f"https://blob.local/{key}", "application/pdf", "", 0)

    records = [
        record(f"{SITE}/_files/ugd/a.pdf?dn=Bulletin.pdf", "/_files/ugd/a.pdf?dn=Bulletin.pdf", "first"),
        record(f"{SITE}/_files/ugd/a.pdf", "/_files/ugd/a.pdf", "second"),
        record("local:///archive/b.pdf", "", "local"),
        record(f"{SITE}/media/c.png", "/media/c.png", "outside-prefix"),
    ]

    index = index_blob_map(records, "/_files/ugd/")

    assert index["/_files/ugd/a.pdf?dn=Bulletin.pdf"].blob_key == "first"
    assert index["/_files/ugd/a.pdf"].blob_key == "first"
    assert "/media/c.png" not in index
