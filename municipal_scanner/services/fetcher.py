from __future__ import annotations

import logging
import re
from io import BytesIO
from typing import Optional

import httpx
import PyPDF2
from bs4 import BeautifulSoup
from pdfminer.high_level import extract_text as pdf_extract_text

from ..config import USER_AGENT
from ..logging_config import span
from ..models import FailureKind, FetchOutcome, MeetingDocument

logger = logging.getLogger("municipal_scanner.fetcher")

HEADERS = {
	"User-Agent": USER_AGENT,
	"Accept": "text/html,application/xhtml+xml,application/pdf;q=0.9,*/*;q=0.8",
}


def build_http_client(timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
	"""One client per scan run; every request gets the same deadline."""
	return httpx.AsyncClient(
		headers=HEADERS,
		timeout=httpx.Timeout(timeout),
		follow_redirects=True,
		transport=transport,
	)


def parse_text_from_html(html: str) -> str:
	soup = BeautifulSoup(html, "lxml")
	for tag in soup(["script", "style", "noscript"]):
		tag.decompose()
	text = soup.get_text(" ", strip=True)
	return re.sub(r"\s+", " ", text).strip()


def extract_pdf_text(content_bytes: bytes) -> Optional[str]:
	"""pdfminer first, PyPDF2 as a second pass; None when both fail."""
	try:
		return pdf_extract_text(BytesIO(content_bytes))
	except Exception as e:
		logger.warning("fetch.pdfminer.failed: %s", e)

	try:
		reader = PyPDF2.PdfReader(BytesIO(content_bytes))
		return "\n".join((page.extract_text() or "") for page in reader.pages)
	except Exception as e:
		logger.warning("fetch.pypdf2.failed: %s", e)
		return None


def _looks_like_pdf(doc: MeetingDocument, content_type: str, body: bytes) -> bool:
	return doc.type == "pdf" or "pdf" in content_type or body[:5] == b"%PDF-"


async def fetch_meeting_content(client: httpx.AsyncClient, doc: MeetingDocument) -> FetchOutcome:
	"""Fetch one meeting document and normalize it to plain text.

	Never raises for network, HTTP or parse problems; the outcome says what
	went wrong instead.
	"""
	with span(logger, "fetch.document") as fields:
		try:
			r = await client.get(doc.url)
			r.raise_for_status()
		except httpx.HTTPStatusError as e:
			logger.warning("fetch.http_status: %s %s", e.response.status_code, doc.url[:80])
			return FetchOutcome(url=doc.url, failure=FailureKind.HTTP_STATUS, detail=f"HTTP {e.response.status_code}")
		except (httpx.HTTPError, httpx.InvalidURL) as e:
			logger.warning("fetch.network.failed: %s | %s", doc.url[:80], e)
			return FetchOutcome(url=doc.url, failure=FailureKind.NETWORK, detail=str(e) or type(e).__name__)

		body = r.content
		if not body:
			return FetchOutcome(url=doc.url, failure=FailureKind.EMPTY, detail="empty response body")

		ctype = r.headers.get("Content-Type", "").split(";")[0].strip().lower()
		if _looks_like_pdf(doc, ctype, body):
			fields["kind"] = "pdf"
			text = extract_pdf_text(body)
			if text is None:
				logger.error("fetch.pdf.failed: %s", doc.url[:80])
				return FetchOutcome(url=doc.url, failure=FailureKind.PDF_PARSE, detail="PDF text extraction failed")
			text = re.sub(r"[ \t\r\f\v]+", " ", text).strip()
		else:
			fields["kind"] = "html"
			text = parse_text_from_html(r.text)

		fields["chars"] = len(text)
		return FetchOutcome(url=doc.url, text=text)
