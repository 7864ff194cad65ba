"""Shared fakes for the municipal scanner test suite."""

import copy
import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from municipal_scanner.config import ScannerConfig
from municipal_scanner.errors import StoreError
from municipal_scanner.models import Municipality, ScanOptions, StoredRfp
from municipal_scanner.services.fetcher import build_http_client
from municipal_scanner.services.llm import ChatMessage, CompletionChoice, CompletionResponse
from municipal_scanner.services.store import is_research_row


def route_transport(routes: Dict[str, Any]) -> httpx.MockTransport:
    """Serve ``routes`` keyed by absolute URL.

    A value is either ``(status, body, content_type)`` or a callable taking the
    request. Unknown URLs get a 404.
    """
    def handler(request: httpx.Request) -> httpx.Response:
        route = routes.get(str(request.url))
        if route is None:
            return httpx.Response(404, text="not found")
        if callable(route):
            return route(request)
        status, body, content_type = route
        content = body.encode("utf-8") if isinstance(body, str) else body
        return httpx.Response(status, content=content, headers={"Content-Type": content_type})

    return httpx.MockTransport(handler)


def mock_http_client(routes: Dict[str, Any]) -> httpx.AsyncClient:
    return build_http_client(timeout=5.0, transport=route_transport(routes))


def opportunity(title: str, **overrides) -> Dict[str, Any]:
    item = {
        "title": title,
        "description": f"{title} for the municipal utility",
        "due_date": None,
        "estimated_value": None,
        "currency": None,
        "submission_method": None,
        "contact_email": None,
        "confidence": 85,
        "opportunity_type": "project_discussion",
        "meeting_date": None,
        "committee_name": "Regional Council",
        "agenda_item": None,
        "excerpt": None,
    }
    item.update(overrides)
    return item


def rfps_payload(*items: Dict[str, Any]) -> str:
    return json.dumps({"rfps": list(items)})


class FakeCompletionClient:
    """Replays canned completion contents and records every call.

    A reply may be a string or a callable taking the messages; a callable may
    raise to simulate a failing model.
    """

    def __init__(self, replies: Optional[List[Any]] = None, default: str = '{"rfps": []}'):
        self.replies = list(replies or [])
        self.default = default
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    async def complete(self, messages, *, model="test-model", temperature=0.7, max_tokens=4096, response_format=None):
        self.calls.append({
            "messages": list(messages),
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "response_format": response_format,
        })
        reply = self.replies.pop(0) if self.replies else self.default
        if callable(reply):
            reply = reply(messages)
        return CompletionResponse(
            choices=[CompletionChoice(message=ChatMessage(role="assistant", content=reply))],
        )

    async def aclose(self) -> None:
        self.closed = True


class InMemoryStore:
    """CRM store kept in dicts; ``mutations`` counts every write."""

    def __init__(self, municipalities=(), fail_titles=()):
        self.municipalities: Dict[str, Municipality] = {m.id: m for m in municipalities}
        self.municipality_updates: List[tuple] = []
        self.organizations: List[Dict[str, Any]] = []
        self.rfps: List[Dict[str, Any]] = []
        self.fail_titles = set(fail_titles)
        self.mutations = 0

    def list_municipalities(self, options: ScanOptions) -> List[Municipality]:
        rows = [m for m in self.municipalities.values() if m.minutes_url]
        if options.municipality:
            rows = [m for m in rows if m.name == options.municipality]
        elif options.retry_failed:
            rows = [m for m in rows if m.scan_status == "failed"]
        else:
            rows = [m for m in rows if m.scan_status in ("pending", "failed")]
        if options.province:
            rows = [m for m in rows if m.province == options.province]
        rows.sort(key=lambda m: (m.province, m.name))
        return rows[:options.limit] if options.limit else rows

    def update_municipality(self, municipality_id: str, **fields: Any) -> None:
        self.mutations += 1
        self.municipality_updates.append((municipality_id, fields))
        current = self.municipalities[municipality_id]
        self.municipalities[municipality_id] = current.model_copy(update=fields)

    def updates_for(self, municipality_id: str) -> List[Dict[str, Any]]:
        return [fields for mid, fields in self.municipality_updates if mid == municipality_id]

    def find_organization(self, project_id, name, province) -> Optional[str]:
        for org in self.organizations:
            if name.lower() in org["name"].lower() and org["address_state"] == province:
                return org["id"]
        return None

    def create_organization(self, record: Dict[str, Any]) -> str:
        self.mutations += 1
        org = dict(record, id=f"org-{len(self.organizations) + 1}")
        self.organizations.append(org)
        return org["id"]

    def find_rfp(self, project_id, organization_id, title) -> Optional[StoredRfp]:
        for row in self.rfps:
            if row["organization_id"] == organization_id and row["title"] == title:
                return StoredRfp(id=row["id"], custom_fields=copy.deepcopy(row["custom_fields"]))
        return None

    def insert_rfp(self, record: Dict[str, Any]) -> str:
        if record["title"] in self.fail_titles:
            raise StoreError(f"insert rejected for {record['title']}")
        self.mutations += 1
        row = copy.deepcopy(record)
        row["id"] = f"rfp-{len(self.rfps) + 1}"
        self.rfps.append(row)
        return row["id"]

    def update_rfp_custom_fields(self, rfp_id: str, custom_fields: Dict[str, Any]) -> None:
        self.mutations += 1
        for row in self.rfps:
            if row["id"] == rfp_id:
                row["custom_fields"] = copy.deepcopy(custom_fields)

    def list_research_rfps(self, project_id, province=None) -> List[Dict[str, Any]]:
        return [row for row in self.rfps if is_research_row(row, province)]


@pytest.fixture
def config() -> ScannerConfig:
    return ScannerConfig(project_id="proj-1", request_delay_ms=0, document_delay_ms=0)


@pytest.fixture
def municipality() -> Municipality:
    return Municipality(
        id="1",
        name="Riverton",
        province="Ontario",
        country="Canada",
        official_website="https://riverton.example.ca",
        minutes_url="https://riverton.example.ca/council/meetings",
        municipality_type="town",
        rfps_found_count=2,
    )
