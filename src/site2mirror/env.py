"""環境変数およびブロブストレージ設定のローダー。"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Iterable, Mapping

DEFAULT_ENV_NAMES = (".env.local", ".env")
BLOB_BUCKET_ENV = "MIRROR_BLOB_BUCKET"
BLOB_PUBLIC_BASE_URL_ENV = "MIRROR_BLOB_PUBLIC_BASE_URL"
BLOB_ENDPOINT_URL_ENV = "MIRROR_BLOB_ENDPOINT_URL"
BLOB_REGION_ENV = "MIRROR_BLOB_REGION"
BLOB_LOCAL_DIR_ENV = "MIRROR_BLOB_LOCAL_DIR"
AWS_ACCESS_KEY_ENV = "AWS_ACCESS_KEY_ID"
AWS_SECRET_KEY_ENV = "AWS_SECRET_ACCESS_KEY"


@dataclass(slots=True)
class BlobSettings:
    """ブロブストア接続に必要な設定値。"""

    bucket: str | None
    public_base_url: str | None
    endpoint_url: str | None
    region: str | None
    local_dir: Path | None
    access_key_id: str | None
    secret_access_key: str | None

    @property
    def has_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    @property
    def is_configured(self) -> bool:
        return bool(self.bucket) or self.local_dir is not None


def load_env_file(path: str | Path | None = None) -> dict[str, str]:
    """`.env.local` / `.env` を読み込み、未設定の環境変数を補完します。

    ``path`` を省略した場合はカレントディレクトリとリポジトリ直下を探し、
    見つかったファイルを `.env.local` → `.env` の順に適用します。先に設定された
    値が優先されるため、既存の環境変数は上書きしません。
    """

    loaded: dict[str, str] = {}
    for env_path in _locate_env_files(path):
        for key, value in _parse_env_file(env_path).items():
            if key not in os.environ:
                os.environ[key] = value
            loaded.setdefault(key, value)
    return loaded


def current_blob_settings(source: Mapping[str, str] | None = None) -> BlobSettings:
    """現在の環境変数からブロブストア設定を読み取ります。"""

    env = source if source is not None else os.environ
    local_dir = (env.get(BLOB_LOCAL_DIR_ENV) or "").strip()
    return BlobSettings(
        bucket=env.get(BLOB_BUCKET_ENV) or None,
        public_base_url=env.get(BLOB_PUBLIC_BASE_URL_ENV) or None,
        endpoint_url=env.get(BLOB_ENDPOINT_URL_ENV) or None,
        region=env.get(BLOB_REGION_ENV) or None,
        local_dir=Path(local_dir) if local_dir else None,
        access_key_id=env.get(AWS_ACCESS_KEY_ENV) or None,
        secret_access_key=env.get(AWS_SECRET_KEY_ENV) or None,
    )


def _parse_env_file(env_path: Path) -> dict[str, str]:
    values: dict[str, str] = {}
    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue
        values[key] = _strip_quotes(value.strip())
    return values


def _locate_env_files(path: str | Path | None) -> list[Path]:
    if path is not None:
        candidate = Path(path)
        if candidate.is_dir():
            return [candidate / name for name in DEFAULT_ENV_NAMES if (candidate / name).exists()]
        return [candidate] if candidate.exists() else []
    roots: Iterable[Path] = (Path.cwd(), Path(__file__).resolve().parents[2])
    for root in roots:
        found = [root / name for name in DEFAULT_ENV_NAMES if (root / name).exists()]
        if found:
            return found
    return []


def _strip_quotes(value: str) -> str:
    if not value:
        return value
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return value[1:-1]
    return value
