from __future__ import annotations

import pytest
from requests import exceptions as req_exc

from site2mirror.http_client import FetchError, HttpClient


class FakeResponse:
    def __init__(self, status_code: int, body: bytes = b"", headers: dict[str, str] | None = None) -> None:
        self.status_code = status_code
        self.content = body
        self.headers = headers or {}
        self.url = "https://static.wixstatic.com/media/final.jpg"

    @property
    def ok(self) -> bool:
        return self.status_code < 400


class FakeSession:
    def __init__(self, outcomes: list) -> None:
        self._outcomes = list(outcomes)
        self.calls = 0
        self.closed = False

    def get(self, url: str, timeout: float, headers: dict[str, str]):
        self.calls += 1
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self) -> None:
        self.closed = True


def test_get_retries_transient_status_then_succeeds() -> None:
    session = FakeSession(
        [FakeResponse(503, headers={"Retry-After": "0"}), FakeResponse(200, b"jpg", {"Content-Type": "image/jpeg"})]
    )
    client = HttpClient(session, max_retries=1, backoff_base_s=0)

    result = client.get("https://static.wixstatic.com/media/a.jpg")

    assert session.calls == 2
    assert result.body == b"jpg"
    assert result.content_type == "image/jpeg"
    assert result.final_url.endswith("final.jpg")


def test_get_retries_connection_errors() -> None:
    session = FakeSession([req_exc.ConnectionError("reset"), FakeResponse(200, b"ok")])

    result = HttpClient(session, max_retries=1, backoff_base_s=0).get("https://example.com/a")

    assert result.status_code == 200


def test_get_raises_after_exhausting_retries() -> None:
    session = FakeSession([req_exc.Timeout("slow"), req_exc.Timeout("slow")])

    with pytest.raises(FetchError):
        HttpClient(session, max_retries=1, backoff_base_s=0).get("https://example.com/a")
    assert session.calls == 2


def test_get_does_not_retry_client_errors() -> None:
    session = FakeSession([FakeResponse(404)])

    with pytest.raises(FetchError, match="404"):
        HttpClient(session, max_retries=3, backoff_base_s=0).get("https://example.com/missing.pdf")
    assert session.calls == 1


def test_close_closes_session() -> None:
    session = FakeSession([])
    HttpClient(session).close()

    assert session.closed
