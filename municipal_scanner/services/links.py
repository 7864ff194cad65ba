"""
Link discovery for municipal meeting calendars.

Municipal sites share no CMS, so discovery is deliberately dumb: every
``<a href>`` on the calendar page becomes a candidate, and so does every link
inside an embedded ``<iframe>`` (AllNet, eSCRIBE and similar widgets are
usually framed). Ranking happens later in ``scoring``.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional
from urllib.parse import urldefrag, urlparse

import httpx
from bs4 import BeautifulSoup

from ..errors import CalendarFetchError
from ..logging_config import span
from ..models import LinkCandidate

logger = logging.getLogger(__name__)

_SKIP_PREFIXES = ("#", "javascript:", "mailto:", "tel:")
_OTHER_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*:")


def resolve_href(href: Optional[str], base_url: str) -> Optional[str]:
    """Turn an ``href`` into an absolute URL, or None when it must not be followed.

    Root-relative and bare relative paths are both anchored at the base URL's
    scheme and host; bare paths are *not* resolved against the base path.
    Anything containing a ``..`` segment is dropped.
    """
    if not href:
        return None
    href = href.strip()
    lower = href.lower()
    if not href or lower.startswith(_SKIP_PREFIXES):
        return None

    base = urlparse(base_url)
    origin = f"{base.scheme}://{base.netloc}"

    if lower.startswith(("http://", "https://")):
        url = href
    elif href.startswith("//"):
        url = f"{base.scheme}:{href}"
    elif _OTHER_SCHEME_RE.match(lower):
        # data:, ftp:, sms: ...
        return None
    elif href.startswith("/"):
        url = origin + href
    else:
        rel = href
        while rel.startswith("./"):
            rel = rel[2:]
        url = f"{origin}/{rel}"

    try:
        url, _ = urldefrag(url)
        if _has_parent_segment(url):
            return None
    except ValueError:
        # unbalanced IPv6 brackets and the like
        logger.debug("links.href.invalid: %r", href[:120])
        return None
    return url.replace(" ", "%20")


def _has_parent_segment(url: str) -> bool:
    return ".." in urlparse(url).path.split("/")


def same_page(url: str, other: str) -> bool:
    def norm(u: str) -> str:
        return urldefrag(u)[0].rstrip("/").lower()
    return norm(url) == norm(other)


def _anchor_text(tag) -> str:
    text = tag.get_text(" ", strip=True)
    if text:
        return text
    if tag.get("title"):
        return tag["title"].strip()
    img = tag.find("img", alt=True)
    return img["alt"].strip() if img else ""


def parse_links(html: str, base_url: str, source: str = "page") -> List[LinkCandidate]:
    soup = BeautifulSoup(html, "lxml")
    candidates: List[LinkCandidate] = []
    for a in soup.find_all("a", href=True):
        url = resolve_href(a["href"], base_url)
        if url is None:
            continue
        candidates.append(LinkCandidate(url=url, text=_anchor_text(a), source=source))
    return candidates


def find_iframe_sources(html: str, base_url: str) -> List[str]:
    soup = BeautifulSoup(html, "lxml")
    sources: List[str] = []
    for frame in soup.find_all(["iframe", "frame"], src=True):
        url = resolve_href(frame["src"], base_url)
        if url and url not in sources:
            sources.append(url)
    return sources


async def fetch_html(client: httpx.AsyncClient, url: str) -> str:
    r = await client.get(url)
    r.raise_for_status()
    logger.debug("http.status: %s %s", r.status_code, url)
    return r.text


async def extract_link_candidates(
    client: httpx.AsyncClient,
    html: str,
    page_url: str,
) -> List[LinkCandidate]:
    """Collect link candidates from a page and from every iframe it embeds.

    An iframe that cannot be fetched is logged and skipped.
    """
    candidates = parse_links(html, page_url, source="page")

    for iframe_url in find_iframe_sources(html, page_url):
        if same_page(iframe_url, page_url):
            continue
        logger.info("links.iframe: fetching %s", iframe_url)
        try:
            iframe_html = await fetch_html(client, iframe_url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning("links.iframe.failed: %s | %s", iframe_url, e)
            continue
        found = parse_links(iframe_html, iframe_url, source="iframe")
        logger.info("links.iframe.links: %d from %s", len(found), iframe_url)
        candidates.extend(found)

    return [c for c in candidates if not same_page(c.url, page_url)]


async def collect_calendar_links(client: httpx.AsyncClient, calendar_url: str) -> List[LinkCandidate]:
    """Fetch a calendar page and return its link candidates.

    Raises CalendarFetchError when the calendar page itself is unreachable.
    """
    with span(logger, "links.calendar") as fields:
        try:
            html = await fetch_html(client, calendar_url)
        except httpx.HTTPStatusError as e:
            raise CalendarFetchError(calendar_url, f"HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise CalendarFetchError(calendar_url, str(e) or type(e).__name__) from e
        candidates = await extract_link_candidates(client, html, calendar_url)
        fields["candidates"] = len(candidates)
    return candidates
