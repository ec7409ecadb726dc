"""タイムアウトと再試行付きでリモートアセットを取得する HTTP クライアント。"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import requests
from requests import exceptions as req_exc

logger = logging.getLogger(__name__)

TRANSIENT_HTTP_STATUSES = frozenset({429, 500, 502, 503, 504})
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; Site2MirrorAssetSync/1.0)"


class FetchError(RuntimeError):
    """リモートアセットの取得に失敗した場合に送出されます。"""


def _retry_after_seconds(headers: dict[str, str]) -> float | None:
    retry_after = headers.get("Retry-After")
    if not retry_after:
        return None
    try:
        return float(retry_after)
    except ValueError:
        return None


@dataclass(frozen=True, slots=True)
class FetchResult:
    url: str
    final_url: str
    status_code: int
    content_type: str
    body: bytes


class HttpClient:
    """``requests.Session`` を包み、一時的な失敗のみ指数バックオフで再試行します。"""

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        timeout_s: float = 20.0,
        max_retries: int = 1,
        backoff_base_s: float = 1.0,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self._session = session or requests.Session()
        self._timeout_s = timeout_s
        self._max_retries = max(0, max_retries)
        self._backoff_base_s = backoff_base_s
        self._headers = {"User-Agent": user_agent}

    def get(self, url: str) -> FetchResult:
        last_error: str = ""
        for attempt in range(self._max_retries + 1):
            try:
                resp = self._session.get(url, timeout=self._timeout_s, headers=self._headers)
            except req_exc.RequestException as error:
                last_error = str(error)
                if attempt >= self._max_retries:
                    break
                time.sleep(self._backoff_base_s * (2**attempt))
                continue

            if resp.status_code in TRANSIENT_HTTP_STATUSES and attempt < self._max_retries:
                retry_after = _retry_after_seconds(dict(resp.headers))
                wait_s = retry_after if retry_after is not None else self._backoff_base_s * (2**attempt)
                logger.debug("一時的なエラー %d のため再試行します: %s", resp.status_code, url)
                time.sleep(wait_s)
                continue
            if not resp.ok:
                raise FetchError(f"failed download {url}: {resp.status_code}")
            return FetchResult(
                url=url,
                final_url=str(resp.url),
                status_code=int(resp.status_code),
                content_type=resp.headers.get("Content-Type", ""),
                body=resp.content,
            )
        raise FetchError(f"failed download {url}: {last_error}")

    def close(self) -> None:
        self._session.close()
