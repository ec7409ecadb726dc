from __future__ import annotations

from bs4 import BeautifulSoup

from site2mirror import transform


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def test_youtube_iframe_is_deferred_with_privacy_url() -> None:
    html = transform.transform_html(
        '<iframe src="https://www.youtube.com/embed/abcDEF123?enablejsapi=1&rel=0&widgetid=3"></iframe>', "/about"
    )

    iframe = _soup(html).find("iframe")
    assert iframe["src"] == "about:blank"
    assert iframe["data-embed-src"] == "https://www.youtube-nocookie.com/embed/abcDEF123?rel=0"
    assert iframe["data-mirror-deferred"] == "youtube"
    assert iframe["referrerpolicy"] == "strict-origin-when-cross-origin"
    assert iframe["loading"] == "lazy"
    assert "Play video" in iframe["srcdoc"]
    assert "i.ytimg.com/vi/abcDEF123" in iframe["srcdoc"]
    assert "<script" not in iframe["srcdoc"]


def test_event_map_widget_is_replaced_then_deferred() -> None:
    html = transform.transform_html(
        '<iframe src="https://events.wixapps.net/events-server/html/google-map-v2?lat=39.95&lng=-75.16"></iframe>',
        "/events-1/shabbat-dinner",
    )

    iframe = _soup(html).find("iframe")
    assert iframe["data-mirror-replaced"] == "wix-events-map"
    assert iframe["data-mirror-deferred"] == "map"
    assert iframe["data-embed-src"] == transform.build_map_embed_url("39.95", "-75.16")
    assert iframe["title"] == "Event location map"


def test_event_map_widget_without_coordinates_is_removed() -> None:
    html = transform.transform_html(
        '<p>x</p><iframe src="https://events.wixapps.net/events-server/html/google-map-v2?lat=39.95"></iframe>',
        "/events-1/a",
    )

    assert "iframe" not in html


def test_internal_links_become_relative_and_follow_redirects() -> None:
    html = transform.transform_html(
        '<a href="https://www.mekorhabracha.org/kosher-posts/">a</a>'
        '<a href="https://mekorhabracha.org/about?x=1#team">b</a>'
        '<a href="https://example.com/about">c</a>',
        "/",
    )

    hrefs = [anchor["href"] for anchor in _soup(html).find_all("a") if anchor.get_text() in {"a", "b", "c"}]
    assert hrefs == ["/center-city", "/about?x=1#team", "https://example.com/about"]


def test_site_subdomain_links_become_relative() -> None:
    html = transform.transform_html('<a href="https://events.mekorhabracha.org/calendar">cal</a>', "/about")

    assert _soup(html).find("a")["href"] == "/calendar"


def test_absolute_media_sources_on_site_become_relative() -> None:
    html = transform.transform_html('<img src="https://www.mekorhabracha.org/media/logo.png?v=2">', "/about")

    assert _soup(html).find("img")["src"] == "/media/logo.png?v=2"


def test_preload_links_and_cdn_srcset_are_removed() -> None:
    html = transform.transform_html(
        '<link rel="preload" href="/font.woff2"><link rel="stylesheet" href="/site.css">'
        '<img src="/a.png" srcset="https://static.wixstatic.com/media/a.png 1x">',
        "/about",
    )

    soup = _soup(html)
    assert [link["href"] for link in soup.find_all("link")] == ["/site.css"]
    assert soup.find("img").get("srcset") is None


def test_media_loading_hints() -> None:
    html = transform.transform_html(
        '<img src="/1.png"><img src="/2.png"><img src="/3.png"><img src="/4.png" fetchpriority="high">', "/about"
    )

    images = _soup(html).find_all("img")
    assert all(image["decoding"] == "async" for image in images)
    assert [image.get("loading") for image in images] == [None, None, "lazy", None]


def test_homepage_map_is_inserted_only_on_home() -> None:
    source = '<div id="comp-m5vlffw5"><p>Visit us</p></div>'

    home = _soup(transform.transform_html(source, "/"))
    about = _soup(transform.transform_html(source, "/about"))

    iframe = home.find("iframe")
    assert iframe is not None
    assert iframe["data-embed-src"] == transform.HOMEPAGE_MAP_IFRAME_SRC
    assert iframe["title"] == transform.HOMEPAGE_MAP_TITLE
    assert home.find("a", class_="mirror-map-directions-link")["href"] == transform.HOMEPAGE_DIRECTIONS_HREF
    assert about.find("iframe") is None


def test_events_page_gets_calendar_and_hidden_spacer() -> None:
    html = transform.transform_html(
        '<div id="comp-lvvd3qr7"><iframe></iframe></div>'
        '<div data-mesh-id="comp-m5ss52xcinlineContent-wedge-5"></div>',
        "/events/",
    )

    soup = _soup(html)
    assert soup.find("iframe")["src"] == transform.EVENTS_CALENDAR_EMBED_SRC
    assert soup.find(attrs={"data-mesh-id": "comp-m5ss52xcinlineContent-wedge-5"})["style"] == transform.HIDDEN_STYLE


def test_transform_html_is_idempotent() -> None:
    source = (
        '<a href="https://www.mekorhabracha.org/kosher-posts">k</a>'
        '<iframe src="https://www.youtube.com/embed/abcDEF123"></iframe>'
        '<img src="/1.png"><img src="/2.png"><img src="/3.png">'
    )

    once = transform.transform_html(source, "/")
    assert transform.transform_html(once, "/") == once


def test_prepare_document_html_restores_deferred_embed_after_resanitizing() -> None:
    once = transform.prepare_document_html('<iframe src="https://www.youtube.com/embed/abcDEF123"></iframe>', "/a")
    twice = transform.prepare_document_html(once, "/a")

    first = _soup(once).find("iframe")
    second = _soup(twice).find("iframe")
    for name in ("src", "srcdoc", "data-embed-src", "data-mirror-deferred"):
        assert first[name] == second[name], f"{name} が再処理で変化しました"


def test_prepare_document_html_sanitizes_before_transforming() -> None:
    html = transform.prepare_document_html(
        '<script>alert(1)</script><a href="https://www.mekorhabracha.org/about" onclick="x()">About</a>', "/"
    )

    assert html == '<a href="/about">About</a>'


def test_classify_embed_ignores_other_hosts_and_schemes() -> None:
    assert transform.classify_embed("https://player.vimeo.com/video/1") is None
    assert transform.classify_embed("javascript:alert(1)") is None
    assert transform.classify_embed("https://www.google.com/search?q=maps") is None
    embed = transform.classify_embed("https://www.google.com/maps/embed?pb=abc")
    assert embed is not None and embed.family == "map"
