from __future__ import annotations

import os
import logging
from typing import Any, Dict, List, Optional, Protocol

from dotenv import load_dotenv
from supabase import create_client

from ..errors import ConfigurationError, StoreError
from ..models import Municipality, ScanOptions, StoredRfp

logger = logging.getLogger(__name__)

MUNICIPALITIES = "municipalities"
ORGANIZATIONS = "organizations"
RFPS = "rfps"

RESEARCH_SOURCES = ("municipal_minutes", "municipal_rfp")


class CrmStore(Protocol):
    def list_municipalities(self, options: ScanOptions) -> List[Municipality]: ...

    def update_municipality(self, municipality_id: str, **fields: Any) -> None: ...

    def find_organization(self, project_id: Optional[str], name: str, province: str) -> Optional[str]: ...

    def create_organization(self, record: Dict[str, Any]) -> str: ...

    def find_rfp(self, project_id: Optional[str], organization_id: str, title: str) -> Optional[StoredRfp]: ...

    def insert_rfp(self, record: Dict[str, Any]) -> str: ...

    def update_rfp_custom_fields(self, rfp_id: str, custom_fields: Dict[str, Any]) -> None: ...

    def list_research_rfps(self, project_id: Optional[str], province: Optional[str] = None) -> List[Dict[str, Any]]: ...


class SupabaseStore:
    """CRM tables behind the Supabase REST API.

    Every query failure surfaces as ``StoreError``; callers decide whether a
    failure aborts the municipality or only one record.
    """

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None, client: Any = None):
        if client is not None:
            self.client = client
            return

        try:
            load_dotenv()
        except Exception:
            pass

        url = url or os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL")
        key = key or os.getenv("SUPABASE_SERVICE_ROLE_KEY")
        if not url or not key:
            raise ConfigurationError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required")
        self.client = create_client(url, key)

    def _run(self, what: str, query) -> List[Dict[str, Any]]:
        try:
            response = query.execute()
        except Exception as e:
            logger.error("store.%s.failed: %s", what, e)
            raise StoreError(f"{what} failed: {e}") from e
        return list(response.data or [])

    def list_municipalities(self, options: ScanOptions) -> List[Municipality]:
        query = self.client.table(MUNICIPALITIES).select("*").not_.is_("minutes_url", "null")
        if options.municipality:
            # an explicitly named municipality is scanned whatever its status
            query = query.eq("name", options.municipality)
        elif options.retry_failed:
            query = query.eq("scan_status", "failed")
        else:
            query = query.in_("scan_status", ["pending", "failed"])
        if options.province:
            query = query.eq("province", options.province)
        query = query.order("province").order("name")
        if options.limit:
            query = query.limit(options.limit)

        rows = self._run("list_municipalities", query)
        return [Municipality.model_validate(row) for row in rows]

    def update_municipality(self, municipality_id: str, **fields: Any) -> None:
        self._run(
            "update_municipality",
            self.client.table(MUNICIPALITIES).update(fields).eq("id", municipality_id),
        )

    def find_organization(self, project_id: Optional[str], name: str, province: str) -> Optional[str]:
        query = (
            self.client.table(ORGANIZATIONS)
            .select("id")
            .ilike("name", f"%{name}%")
            .eq("address_state", province)
        )
        if project_id:
            query = query.eq("project_id", project_id)
        rows = self._run("find_organization", query.limit(1))
        return str(rows[0]["id"]) if rows else None

    def create_organization(self, record: Dict[str, Any]) -> str:
        rows = self._run("create_organization", self.client.table(ORGANIZATIONS).insert(record))
        if not rows:
            raise StoreError("create_organization returned no row")
        return str(rows[0]["id"])

    def find_rfp(self, project_id: Optional[str], organization_id: str, title: str) -> Optional[StoredRfp]:
        query = (
            self.client.table(RFPS)
            .select("id, custom_fields")
            .eq("organization_id", organization_id)
            .eq("title", title)
        )
        if project_id:
            query = query.eq("project_id", project_id)
        rows = self._run("find_rfp", query.limit(1))
        return StoredRfp.model_validate(rows[0]) if rows else None

    def insert_rfp(self, record: Dict[str, Any]) -> str:
        rows = self._run("insert_rfp", self.client.table(RFPS).insert(record))
        if not rows:
            raise StoreError("insert_rfp returned no row")
        return str(rows[0]["id"])

    def update_rfp_custom_fields(self, rfp_id: str, custom_fields: Dict[str, Any]) -> None:
        self._run(
            "update_rfp",
            self.client.table(RFPS).update({"custom_fields": custom_fields}).eq("id", rfp_id),
        )

    def list_research_rfps(self, project_id: Optional[str], province: Optional[str] = None) -> List[Dict[str, Any]]:
        query = self.client.table(RFPS).select(
            "*, organizations (id, name, address_city, address_state)"
        )
        if project_id:
            query = query.eq("project_id", project_id)
        rows = self._run("list_research_rfps", query.order("created_at", desc=True))
        return [row for row in rows if is_research_row(row, province)]


def is_research_row(row: Dict[str, Any], province: Optional[str] = None) -> bool:
    fields = row.get("custom_fields") or {}
    if fields.get("source") not in RESEARCH_SOURCES:
        return False
    return province is None or fields.get("region") == province
