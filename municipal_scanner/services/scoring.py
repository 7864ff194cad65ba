"""
Relevance scoring for calendar-page links.

Each candidate is scored on ``lowercase(url + " " + anchor text)``:

  +4  per strong keyword class present (agenda, minute/minutes)
  +2  per meeting-context keyword present (meeting, council, committee, ...)
  +1  per industry keyword present (water, waste, public works, ...)
  +3  a year token for this year or one of the two previous years
  +2  a month name
  +3  a month name followed by a day number ("February 4")
  +3  a structural document link (file extension, download endpoint, known
      meeting-system page, ``id=`` query parameter)
  +2  extra for a ``.pdf`` URL that already scored

Exclude-list hits (forms, plans, fees, navigation, social) and the calendar
page itself are dropped before scoring. Structural document links need 4
points, everything else needs 6.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

import httpx

from ..errors import CalendarFetchError
from ..models import DiscoveryOutcome, LinkCandidate, MeetingDocument
from .links import collect_calendar_links, same_page

logger = logging.getLogger(__name__)

MAX_DOCUMENTS = 50
DOCUMENT_LINK_THRESHOLD = 4
KEYWORD_LINK_THRESHOLD = 6

STRONG_KEYWORD_CLASSES: Dict[str, Tuple[str, ...]] = {
    "agenda": ("agenda",),
    "minutes": ("minute", "minutes"),
}

MEETING_KEYWORDS = (
    "meeting",
    "council",
    "committee",
    "session",
    "board",
    "commission",
    "regular",
    "special",
)

INDUSTRY_KEYWORDS = (
    "public works",
    "water",
    "waste",
    "wastewater",
    "environment",
    "utilities",
    "infrastructure",
)

EXCLUDE_KEYWORDS = (
    # forms and plans
    "formcenter",
    "master-plan",
    "master plan",
    "action-plan",
    "strategic-plan",
    "requirements",
    # policies and fees
    "utility-fees",
    "user-fees",
    "fee-schedule",
    "fees-and-charges",
    "privacy",
    "terms-of-use",
    "/policies",
    # navigation boilerplate
    "sitemap",
    "site-map",
    "contact-us",
    "/login",
    "/search",
    "subscribe",
    "newsletter",
    "/rss",
    "careers",
    "employment",
    "job-posting",
    # social
    "facebook.com",
    "twitter.com",
    "://x.com/",
    "instagram.com",
    "linkedin.com",
    "youtube.com",
    "sharer.php",
    # organizational pages
    "staff-directory",
    "org-chart",
    "organizational-chart",
)

# bare section pages like https://x.ca/water or https://x.ca/environment/
EXCLUDE_PATH_RE = re.compile(r"/(environment|water|waste|wastewater|utilities)/?$")

DOCUMENT_EXTENSION_RE = re.compile(r"\.(pdf|docx?|xlsx?)$")

DOCUMENT_ENDPOINTS = (
    "/download",
    "download.aspx",
    "viewfile",
    "documentcenter/view",
    "filestream.ashx",
    "getfile",
    "getdocument",
    "displaydocument",
    "view.ashx",
)

MEETING_SYSTEM_PATTERNS = (
    "meeting.aspx",
    "publicagenda.aspx",
    "showdoc.asp",
    "agendaviewer",
    "agendacenter",
    "escribemeetings.com",
    "civicweb.net/document",
    "legistar.com",
    "allnetmeetings.com",
)

ID_PARAM_RE = re.compile(r"[?&][a-z_]*id=")

_MONTHS = (
    "january|february|march|april|may|june|july|august|september|october|november|december"
    "|jan|feb|mar|apr|jun|jul|aug|sept|sep|oct|nov|dec"
)
MONTH_RE = re.compile(rf"(?<![a-z])(?:{_MONTHS})(?![a-z])")
MONTH_DAY_RE = re.compile(rf"(?<![a-z])(?:{_MONTHS})\.?[\s\-_,]*(\d{{1,2}})(?:st|nd|rd|th)?(?!\d)")


@dataclass(frozen=True)
class LinkScore:
    score: int
    is_document_link: bool

    @property
    def threshold(self) -> int:
        return DOCUMENT_LINK_THRESHOLD if self.is_document_link else KEYWORD_LINK_THRESHOLD

    @property
    def accepted(self) -> bool:
        return self.score >= self.threshold


def _haystack(url: str, text: str) -> str:
    lowered = f"{url} {text}".lower()
    spaced = re.sub(r"[-_+]|%20", " ", lowered)
    return lowered if spaced == lowered else f"{lowered} {spaced}"


def is_excluded(url: str, text: str, calendar_url: Optional[str] = None) -> bool:
    if calendar_url and same_page(url, calendar_url):
        return True
    hay = _haystack(url, text)
    if any(kw in hay for kw in EXCLUDE_KEYWORDS):
        return True
    return bool(EXCLUDE_PATH_RE.search(urlparse(url.lower()).path))


def is_document_link(url: str) -> bool:
    lower = url.lower()
    path = urlparse(lower).path
    if DOCUMENT_EXTENSION_RE.search(path):
        return True
    if any(p in lower for p in DOCUMENT_ENDPOINTS):
        return True
    if any(p in lower for p in MEETING_SYSTEM_PATTERNS):
        return True
    return bool(ID_PARAM_RE.search(lower))


def _has_month_day(hay: str) -> bool:
    for m in MONTH_DAY_RE.finditer(hay):
        if 1 <= int(m.group(1)) <= 31:
            return True
    return False


def score_link(url: str, text: str = "", today: Optional[date] = None) -> LinkScore:
    """Score one link. Exclusion is checked separately by ``is_excluded``."""
    today = today or date.today()
    hay = _haystack(url, text)
    score = 0

    for variants in STRONG_KEYWORD_CLASSES.values():
        if any(v in hay for v in variants):
            score += 4
    score += 2 * sum(1 for kw in MEETING_KEYWORDS if kw in hay)
    score += sum(1 for kw in INDUSTRY_KEYWORDS if kw in hay)

    years = "|".join(str(today.year - n) for n in range(3))
    if re.search(rf"(?<!\d)(?:{years})(?!\d)", hay):
        score += 3
    if MONTH_RE.search(hay):
        score += 2
    if _has_month_day(hay):
        score += 3

    document_link = is_document_link(url)
    if document_link:
        score += 3
    if urlparse(url.lower()).path.endswith(".pdf") and score > 0:
        score += 2

    return LinkScore(score=score, is_document_link=document_link)


def document_type(url: str) -> str:
    return "pdf" if urlparse(url.lower()).path.endswith(".pdf") else "html"


def rank_meeting_documents(
    candidates: Sequence[LinkCandidate],
    calendar_url: str,
    limit: int = MAX_DOCUMENTS,
    today: Optional[date] = None,
) -> List[MeetingDocument]:
    """Filter candidates down to at most ``limit`` meeting documents.

    Highest score first; equal scores keep discovery order. A URL already
    accepted is not accepted again, and a URL excluded under any of its
    anchors is never accepted.
    """
    limit = min(limit, MAX_DOCUMENTS)
    banned = {c.url for c in candidates if is_excluded(c.url, c.text, calendar_url)}
    accepted: List[MeetingDocument] = []
    seen = set()

    for cand in candidates:
        if cand.url in seen or cand.url in banned:
            continue
        result = score_link(cand.url, cand.text, today=today)
        if not result.accepted:
            continue
        seen.add(cand.url)
        accepted.append(
            MeetingDocument(
                url=cand.url,
                type=document_type(cand.url),
                title=cand.text or None,
                score=result.score,
                is_document_link=result.is_document_link,
            )
        )

    accepted.sort(key=lambda d: d.score, reverse=True)
    logger.info(
        "scoring.ranked: candidates=%d excluded_urls=%d accepted=%d kept=%d",
        len(candidates), len(banned), len(accepted), min(len(accepted), limit),
    )
    return accepted[:limit]


async def find_meeting_documents(
    client: httpx.AsyncClient,
    calendar_url: str,
    limit: int = MAX_DOCUMENTS,
    today: Optional[date] = None,
) -> DiscoveryOutcome:
    """Discover and rank the meeting documents linked from a calendar page.

    A calendar page that cannot be fetched yields an empty outcome carrying
    the error message instead of raising.
    """
    try:
        candidates = await collect_calendar_links(client, calendar_url)
    except CalendarFetchError as e:
        logger.error("scoring.calendar.failed: %s", e)
        return DiscoveryOutcome(error=str(e))

    documents = rank_meeting_documents(candidates, calendar_url, limit=limit, today=today)
    return DiscoveryOutcome(documents=documents, candidates_seen=len(candidates))


_GOOD_URL_PATTERNS = (
    re.compile(r"meeting\.aspx\?id=", re.I),
    re.compile(r"\.pdf$", re.I),
    re.compile(r"agenda.*\d{4}", re.I),
    re.compile(r"minutes.*\d{4}", re.I),
    re.compile(r"\d{4}-\d{2}-\d{2}"),
    re.compile(r"council.*meeting", re.I),
)


def validate_meeting_url(url: str) -> Tuple[bool, Optional[str]]:
    """Sanity check used by the discovery diagnostic.

    Returns (valid, reason) where reason explains a rejection.
    """
    if is_excluded(url, ""):
        return False, "matches exclude list"
    for pattern in _GOOD_URL_PATTERNS:
        if pattern.search(url):
            return True, None
    return False, "no recognized meeting document pattern"
