import asyncio

import pytest

from conftest import mock_http_client
from municipal_scanner.errors import CalendarFetchError
from municipal_scanner.services.links import (
    collect_calendar_links,
    find_iframe_sources,
    parse_links,
    resolve_href,
    same_page,
)

BASE = "https://x.ca/meetings/list"


class TestResolveHref:

    @pytest.mark.parametrize("href, expected", [
        ("https://other.ca/a.pdf", "https://other.ca/a.pdf"),
        ("/docs/a.pdf", "https://x.ca/docs/a.pdf"),
        ("docs/a.pdf", "https://x.ca/docs/a.pdf"),
        ("./docs/a.pdf", "https://x.ca/docs/a.pdf"),
        ("//cdn.x.ca/a.pdf", "https://cdn.x.ca/a.pdf"),
        ("/a.pdf#page=2", "https://x.ca/a.pdf"),
        ("/Council Minutes.pdf", "https://x.ca/Council%20Minutes.pdf"),
    ])
    def test_resolves_against_scheme_and_host(self, href, expected):
        assert resolve_href(href, BASE) == expected

    @pytest.mark.parametrize("href", [
        "#top",
        "javascript:void(0)",
        "mailto:clerk@x.ca",
        "tel:5551234",
        "data:text/plain,hi",
        "../archive/a.pdf",
        "/docs/../a.pdf",
        "http://[broken/agenda",
        "",
        None,
    ])
    def test_skipped_hrefs(self, href):
        assert resolve_href(href, BASE) is None

    def test_same_page_ignores_trailing_slash_and_fragment(self):
        assert same_page("https://x.ca/meetings/", "https://X.ca/meetings#top")
        assert not same_page("https://x.ca/meetings/2024", "https://x.ca/meetings")


class TestParseLinks:

    def test_anchor_text_falls_back_to_title_and_img_alt(self):
        html = """
        <a href="/a.pdf">Council Agenda</a>
        <a href="/b.pdf" title="Committee Minutes"></a>
        <a href="/c.pdf"><img src="x.png" alt="Budget Minutes"></a>
        <a href="mailto:clerk@x.ca">Email</a>
        """
        links = parse_links(html, BASE)
        assert [(c.url, c.text) for c in links] == [
            ("https://x.ca/a.pdf", "Council Agenda"),
            ("https://x.ca/b.pdf", "Committee Minutes"),
            ("https://x.ca/c.pdf", "Budget Minutes"),
        ]

    def test_malformed_href_does_not_hide_the_other_links(self):
        html = '<a href="http://[broken/agenda">x</a><a href="/agenda-2024-03-01.pdf">March Council Agenda</a>'
        links = parse_links(html, "https://x.ca/meetings")
        assert [c.url for c in links] == ["https://x.ca/agenda-2024-03-01.pdf"]

    def test_iframe_sources_are_resolved_and_unique(self):
        html = '<iframe src="/widget"></iframe><iframe src="https://x.ca/widget"></iframe><iframe src="//m.x.ca/f"></iframe>'
        assert find_iframe_sources(html, BASE) == ["https://x.ca/widget", "https://m.x.ca/f"]


class TestCollectCalendarLinks:

    def test_iframe_links_are_folded_in_and_failed_iframes_skipped(self):
        calendar = """
        <a href="/meetings/list">This page</a>
        <a href="/minutes/2025-01-14.pdf">January Minutes</a>
        <iframe src="https://widget.x.ca/calendar"></iframe>
        <iframe src="https://broken.x.ca/calendar"></iframe>
        """
        widget = '<a href="https://[widget/old">Archive</a><a href="/Meeting.aspx?Id=42">Regular Council Meeting</a>'
        routes = {
            BASE: (200, calendar, "text/html"),
            "https://widget.x.ca/calendar": (200, widget, "text/html"),
            "https://broken.x.ca/calendar": (500, "boom", "text/html"),
        }

        async def go():
            async with mock_http_client(routes) as client:
                return await collect_calendar_links(client, BASE)

        candidates = asyncio.run(go())
        urls = [c.url for c in candidates]
        assert urls == ["https://x.ca/minutes/2025-01-14.pdf", "https://widget.x.ca/Meeting.aspx?Id=42"]
        assert candidates[1].source == "iframe"

    def test_unreachable_calendar_raises(self):
        routes = {BASE: (503, "down", "text/html")}

        async def go():
            async with mock_http_client(routes) as client:
                await collect_calendar_links(client, BASE)

        with pytest.raises(CalendarFetchError) as excinfo:
            asyncio.run(go())
        assert "HTTP 503" in str(excinfo.value)
        assert excinfo.value.url == BASE
