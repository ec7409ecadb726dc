from __future__ import annotations

import pytest

from site2mirror import paths


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, "/"),
        ("", "/"),
        ("   ", "/"),
        ("/", "/"),
        ("about", "/about"),
        ("/about/", "/about"),
        ("/a/b//", "/a/b"),
        ("/a/b/?x=1&y=2", "/a/b?x=1&y=2"),
        ("/search?q=a?b", "/search?q=a?b"),
    ],
)
def test_normalize_path(raw: str | None, expected: str) -> None:
    assert paths.normalize_path(raw) == expected


def test_normalize_path_is_idempotent() -> None:
    once = paths.normalize_path("events/2024/?page=2")
    assert paths.normalize_path(once) == once


def test_path_variants_include_decoded_form_first_input() -> None:
    variants = paths.path_variants("/Kosher-Place%20A/")

    assert variants[0] == "/Kosher-Place%20A"
    assert "/Kosher-Place A" in variants
    assert len(variants) == len(set(variants))


def test_path_variants_include_encoded_form_and_keep_query() -> None:
    variants = paths.path_variants("/Kosher Place?tab=1")

    assert variants[0] == "/Kosher Place?tab=1"
    assert "/Kosher%20Place?tab=1" in variants


def test_path_variants_tolerate_malformed_escapes() -> None:
    variants = paths.path_variants("/bad%E0%A4%A")

    assert variants[0] == "/bad%E0%A4%A"


def test_parse_site_url_accepts_only_source_hosts() -> None:
    assert paths.parse_site_url("https://www.mekorhabracha.org/About/?a=1") == "/About?a=1"
    assert paths.parse_site_url("https://mekorhabracha.org") == "/"
    assert paths.parse_site_url("https://sub.mekorhabracha.org/x") == "/x"
    assert paths.parse_site_url("/relative/") == "/relative"
    assert paths.parse_site_url("https://example.com/about") is None
    assert paths.parse_site_url("   ") is None


def test_to_local_mirror_path_rewrites_source_hosts_only() -> None:
    assert paths.to_local_mirror_path("https://www.mekorhabracha.org/about/#team") == "/about#team"
    assert paths.to_local_mirror_path("https://mekorhabracha.org/?p=1") == "/?p=1"
    assert paths.to_local_mirror_path("https://example.com/about") == "https://example.com/about"


def test_is_source_host() -> None:
    assert paths.is_source_host("https://www.mekorhabracha.org/x")
    assert paths.is_source_host("/relative")
    assert not paths.is_source_host("https://static.wixstatic.com/media/a.jpg")


def test_site_subdomains_are_treated_alike_by_every_host_check() -> None:
    url = "https://events.mekorhabracha.org/calendar?m=5"

    assert paths.parse_site_url("https://events.mekorhabracha.org/calendar/") == "/calendar"
    assert paths.is_source_host(url)
    assert paths.to_local_mirror_path(url) == "/calendar?m=5"
    assert not paths.is_source_host("https://mekorhabracha.org.evil.example/x")


def test_to_absolute_url() -> None:
    assert paths.to_absolute_url("/about") == "https://www.mekorhabracha.org/about"
    assert paths.to_absolute_url("https://example.com/x") == "https://example.com/x"


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("/", "home"),
        ("/about", "about"),
        ("/post/Hello World", "post__hello-world"),
        ("/events?page=2", "events--page-2"),
    ],
)
def test_slug_from_path(path: str, expected: str) -> None:
    assert paths.slug_from_path(path) == expected


def test_is_likely_file_path() -> None:
    assert paths.is_likely_file_path("/_files/ugd/abc_123.pdf")
    assert paths.is_likely_file_path("/media/photo.JPG?v=2")
    assert not paths.is_likely_file_path("/about")
    assert not paths.is_likely_file_path("/post/pdf-guide")


def test_sanitize_filename_falls_back_to_asset() -> None:
    assert paths.sanitize_filename("Annual Report 2024.PDF") == "annual-report-2024.pdf"
    assert paths.sanitize_filename("???") == "asset"
