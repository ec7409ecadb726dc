"""内容ハッシュでアドレス付けされたアセットのブロブ同期。

同じ SHA-1 を持つ候補は何件あっても 1 回しかアップロードしません。保存先が
「既に存在する」と応答した場合は失敗とせず、既存オブジェクトを ``head`` で
読み取って対応表に載せます。
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Protocol, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .artifacts import read_json_list, write_json
from .assets import guess_content_type
from .config import DEFAULT_SITE, MirrorLayout, SiteConfig, default_timestamp
from .env import BlobSettings
from .http_client import FetchError, HttpClient
from .models import AssetCandidate, BatchResult, BlobRecord
from .paths import parse_site_url, sanitize_filename, split_path, url_to_path

logger = logging.getLogger(__name__)

DRY_RUN_BASE_URL = "https://blob.local"
_EXISTS_ERROR_CODES = frozenset({"PreconditionFailed", "412", "ConditionalRequestConflict"})


class BlobExistsError(RuntimeError):
    """保存先に同じキーのオブジェクトが既に存在する場合に送出されます。"""


class BlobConfigurationError(RuntimeError):
    """ブロブストアの接続設定が不足している場合に送出されます。"""


@dataclass(frozen=True, slots=True)
class StoredBlob:
    key: str
    url: str
    size: int
    content_type: str


class BlobStore(Protocol):
    def put(self, key: str, data: bytes, content_type: str) -> StoredBlob:
        """オブジェクトを新規作成します。既存なら :class:`BlobExistsError` を送出します。"""

    def head(self, key: str) -> StoredBlob:
        """既存オブジェクトのメタデータを返します。"""


def blob_key(namespace: str, sha1: str, filename: str) -> str:
    return f"{namespace}/{sha1}-{sanitize_filename(filename or 'asset')}"


class S3BlobStore:
    """S3 互換オブジェクトストレージへの書き込み。"""

    def __init__(
        self,
        *,
        bucket: str,
        public_base_url: str | None = None,
        endpoint_url: str | None = None,
        region_name: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        client=None,
    ) -> None:
        self._bucket = bucket
        self._public_base_url = public_base_url
        self._endpoint_url = endpoint_url
        self._region_name = region_name
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._client = client

    @classmethod
    def from_settings(cls, settings: BlobSettings) -> "S3BlobStore":
        if not settings.bucket:
            raise BlobConfigurationError("MIRROR_BLOB_BUCKET が設定されていません。")
        return cls(
            bucket=settings.bucket,
            public_base_url=settings.public_base_url,
            endpoint_url=settings.endpoint_url,
            region_name=settings.region,
            access_key_id=settings.access_key_id,
            secret_access_key=settings.secret_access_key,
        )

    @property
    def _s3(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self._endpoint_url,
                region_name=self._region_name,
                aws_access_key_id=self._access_key_id,
                aws_secret_access_key=self._secret_access_key,
            )
        return self._client

    def url_for(self, key: str) -> str:
        if self._public_base_url:
            return f"{self._public_base_url.rstrip('/')}/{key}"
        if self._endpoint_url:
            return f"{self._endpoint_url.rstrip('/')}/{self._bucket}/{key}"
        return f"https://{self._bucket}.s3.amazonaws.com/{key}"

    def put(self, key: str, data: bytes, content_type: str) -> StoredBlob:
        try:
            self._s3.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                IfNoneMatch="*",
            )
        except ClientError as error:
            code = str(error.response.get("Error", {}).get("Code", ""))
            if code in _EXISTS_ERROR_CODES:
                raise BlobExistsError(f"blob already exists: {key}") from error
            raise
        return StoredBlob(key=key, url=self.url_for(key), size=len(data), content_type=content_type)

    def head(self, key: str) -> StoredBlob:
        response = self._s3.head_object(Bucket=self._bucket, Key=key)
        return StoredBlob(
            key=key,
            url=self.url_for(key),
            size=int(response.get("ContentLength") or 0),
            content_type=str(response.get("ContentType") or ""),
        )


class LocalBlobStore:
    """ローカルディレクトリをブロブストアとして扱います。"""

    def __init__(self, root: Path, base_url: str | None = None) -> None:
        self._root = root
        self._base_url = base_url

    def _path(self, key: str) -> Path:
        return self._root.joinpath(*key.split("/"))

    def url_for(self, key: str) -> str:
        if self._base_url:
            return f"{self._base_url.rstrip('/')}/{key}"
        return self._path(key).resolve().as_uri()

    def put(self, key: str, data: bytes, content_type: str) -> StoredBlob:
        target = self._path(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            with target.open("xb") as handle:
                handle.write(data)
        except FileExistsError as error:
            raise BlobExistsError(f"blob already exists: {key}") from error
        return StoredBlob(key=key, url=self.url_for(key), size=len(data), content_type=content_type)

    def head(self, key: str) -> StoredBlob:
        target = self._path(key)
        return StoredBlob(
            key=key,
            url=self.url_for(key),
            size=target.stat().st_size,
            content_type=guess_content_type(target.name),
        )


class DryRunBlobStore:
    """実際には何も書き込まないブロブストア。"""

    def __init__(self, base_url: str = DRY_RUN_BASE_URL) -> None:
        self._base_url = base_url
        self._objects: dict[str, StoredBlob] = {}
        self.put_calls = 0

    def put(self, key: str, data: bytes, content_type: str) -> StoredBlob:
        self.put_calls += 1
        if key in self._objects:
            raise BlobExistsError(f"blob already exists: {key}")
        stored = StoredBlob(key=key, url=f"{self._base_url}/{key}", size=len(data), content_type=content_type)
        self._objects[key] = stored
        return stored

    def head(self, key: str) -> StoredBlob:
        try:
            return self._objects[key]
        except KeyError as error:
            raise FileNotFoundError(key) from error


def create_blob_store(settings: BlobSettings, *, dry_run: bool = False) -> BlobStore:
    """設定に応じたブロブストアを返します。"""

    if dry_run:
        return DryRunBlobStore()
    if settings.local_dir is not None:
        return LocalBlobStore(settings.local_dir, settings.public_base_url)
    if settings.bucket:
        return S3BlobStore.from_settings(settings)
    raise BlobConfigurationError(
        "ブロブストアが設定されていません。MIRROR_BLOB_BUCKET か MIRROR_BLOB_LOCAL_DIR を指定するか、--dry-run を使用してください。"
    )


@dataclass(slots=True)
class BlobSyncResult:
    records: BatchResult[BlobRecord] = field(default_factory=BatchResult)
    uploaded_by_sha: dict[str, StoredBlob] = field(default_factory=dict)
    candidate_count: int = 0


class BlobSync:
    """アセット候補を順番に読み込み、SHA-1 ごとに 1 回だけアップロードします。"""

    def __init__(
        self,
        store: BlobStore,
        *,
        site: SiteConfig = DEFAULT_SITE,
        http_client: HttpClient | None = None,
    ) -> None:
        self._store = store
        self._site = site
        self._http = http_client or HttpClient()
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def sync(self, candidates: Sequence[AssetCandidate], limit: int | None = None) -> BlobSyncResult:
        selected = list(candidates if limit is None else candidates[: max(0, limit)])
        result = BlobSyncResult(candidate_count=len(selected))
        total = len(selected)
        for index, candidate in enumerate(selected, start=1):
            try:
                record = self._sync_one(candidate, result.uploaded_by_sha)
            except (OSError, FetchError, ClientError, BotoCoreError, ValueError) as error:
                self._logger.warning("アセットの同期に失敗しました: %s (%s)", candidate.label, error)
                result.records.record_failure(candidate.label, str(error) or error.__class__.__name__)
            else:
                result.records.succeeded.append(record)
            if index % 25 == 0 or index == total:
                self._logger.info("ブロブ同期中 (%d/%d)", index, total)
        result.records.succeeded.sort(key=lambda record: record.source_url)
        return result

    def _read_bytes(self, candidate: AssetCandidate) -> bytes:
        if candidate.local_path:
            return Path(candidate.local_path).read_bytes()
        if candidate.source_url:
            return self._http.get(candidate.source_url).body
        raise ValueError("candidate has no localPath or sourceUrl")

    def _upload_once(
        self, sha1: str, key: str, data: bytes, content_type: str, uploaded: dict[str, StoredBlob]
    ) -> StoredBlob:
        existing = uploaded.get(sha1)
        if existing is not None:
            return existing
        try:
            stored = self._store.put(key, data, content_type)
        except BlobExistsError:
            self._logger.debug("既存のブロブを参照します: %s", key)
            head = self._store.head(key)
            stored = StoredBlob(
                key=head.key,
                url=head.url,
                size=head.size or len(data),
                content_type=head.content_type or content_type,
            )
        uploaded[sha1] = stored
        return stored

    def _sync_one(self, candidate: AssetCandidate, uploaded: dict[str, StoredBlob]) -> BlobRecord:
        data = self._read_bytes(candidate)
        sha1 = candidate.sha1 or hashlib.sha1(data).hexdigest()
        content_type = candidate.content_type or guess_content_type(candidate.filename)
        key = blob_key(self._site.blob_namespace, sha1, candidate.filename)
        stored = self._upload_once(sha1, key, data, content_type, uploaded)
        mirror_path = parse_site_url(candidate.source_url, self._site) if candidate.source_url else None
        return BlobRecord(
            source_url=candidate.source_url or f"local://{candidate.local_path}",
            path=mirror_path or "",
            blob_key=stored.key,
            blob_url=stored.url,
            content_type=stored.content_type,
            sha1=sha1,
            size=stored.size,
        )


def write_blob_results(result: BlobSyncResult, layout: MirrorLayout, *, dry_run: bool) -> dict[str, int | bool]:
    assets_dir = layout.assets_dir
    records = result.records
    write_json(assets_dir / "blob-map.json", [record.to_dict() for record in records.succeeded])
    write_json(
        assets_dir / "blob-failures.json",
        [{"sourceUrl": failure.item, "error": failure.reason} for failure in records.failed],
    )
    summary: dict[str, int | bool] = {
        "candidateCount": result.candidate_count,
        "uploadedUniqueCount": len(result.uploaded_by_sha),
        "mappedCount": len(records.succeeded),
        "failureCount": records.failure_count,
        "dryRun": dry_run,
    }
    write_json(assets_dir / "blob-summary.json", {"generatedAt": default_timestamp().isoformat(), **summary})
    return summary


def load_blob_map(layout: MirrorLayout) -> list[BlobRecord]:
    return [
        BlobRecord.from_dict(row)
        for row in read_json_list(layout.assets_dir / "blob-map.json")
        if isinstance(row, dict)
    ]


def index_blob_map(records: Iterable[BlobRecord], prefix: str, site: SiteConfig = DEFAULT_SITE) -> dict[str, BlobRecord]:
    """ミラーパス (クエリ付き・なし) からブロブ行を引く索引を作ります。先に現れた行が優先です。"""

    index: dict[str, BlobRecord] = {}

    def add(path: str, record: BlobRecord) -> None:
        if path and path.startswith(prefix) and path not in index:
            index[path] = record

    for record in records:
        add(record.path, record)
        if not record.source_url.startswith(("http://", "https://")):
            continue
        with_query = url_to_path(record.source_url, site)
        add(with_query, record)
        add(split_path(with_query)[0], record)
    return index
