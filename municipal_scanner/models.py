from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator


ScanStatus = Literal["pending", "scanning", "success", "failed"]
ResultStatus = Literal["success", "failed", "no_minutes"]
DocumentType = Literal["html", "pdf"]
OpportunityType = Literal["formal_rfp", "project_discussion", "planning_stage"]
SubmissionMethod = Literal["email", "portal", "physical", "other"]

SUBMISSION_METHODS = ("email", "portal", "physical", "other")


class Municipality(BaseModel):
	model_config = ConfigDict(extra="ignore")

	id: str
	name: str
	province: str
	country: Optional[str] = None
	official_website: Optional[str] = None
	minutes_url: Optional[str] = None
	population: Optional[int] = None
	municipality_type: Optional[str] = None
	last_scanned_at: Optional[str] = None
	scan_status: ScanStatus = "pending"
	scan_error: Optional[str] = None
	rfps_found_count: int = 0

	@field_validator("id", mode="before")
	@classmethod
	def _id_as_str(cls, v: Any) -> Any:
		return str(v) if v is not None else v

	@field_validator("rfps_found_count", mode="before")
	@classmethod
	def _count_default(cls, v: Any) -> Any:
		return 0 if v is None else v


class LinkCandidate(BaseModel):
	"""A hyperlink found on a calendar page (or inside one of its iframes)."""
	url: str
	text: str = ""
	source: Literal["page", "iframe"] = "page"


class MeetingDocument(BaseModel):
	url: str
	type: DocumentType = "html"
	title: Optional[str] = None
	score: int = 0
	is_document_link: bool = False


class ExtractedOpportunity(BaseModel):
	model_config = ConfigDict(extra="ignore")

	title: str
	description: str
	due_date: Optional[str] = None
	estimated_value: Optional[float] = None
	currency: Optional[str] = None
	submission_method: Optional[SubmissionMethod] = None
	contact_email: Optional[str] = None
	confidence: float = Field(ge=0, le=100)
	opportunity_type: OpportunityType
	# research provenance
	source_meeting_url: Optional[str] = None
	meeting_date: Optional[str] = None
	committee_name: Optional[str] = None
	agenda_item: Optional[str] = None
	excerpt: Optional[str] = None

	@field_validator("title", "description", mode="before")
	@classmethod
	def _strip_required(cls, v: Any) -> Any:
		if isinstance(v, str):
			v = v.strip()
			if not v:
				raise ValueError("must not be empty")
		return v

	@field_validator("estimated_value", mode="before")
	@classmethod
	def _parse_money(cls, v: Any) -> Any:
		# models sometimes answer "$1,200,000" instead of a number
		if isinstance(v, str):
			cleaned = re.sub(r"[^\d.]", "", v)
			try:
				return float(cleaned) if cleaned else None
			except ValueError:
				return None
		return v

	@field_validator("submission_method", mode="before")
	@classmethod
	def _known_method(cls, v: Any) -> Any:
		if isinstance(v, str):
			v = v.strip().lower()
			return v if v in SUBMISSION_METHODS else None
		return v

	@field_validator("currency", mode="before")
	@classmethod
	def _upper_currency(cls, v: Any) -> Any:
		if isinstance(v, str):
			return v.strip().upper() or None
		return v

	@field_validator("due_date", "meeting_date", "committee_name", "agenda_item", "excerpt", "contact_email", mode="before")
	@classmethod
	def _blank_to_none(cls, v: Any) -> Any:
		if isinstance(v, str):
			v = v.strip()
			if not v or v.lower() == "null":
				return None
		return v


class StoredRfp(BaseModel):
	id: str
	custom_fields: Dict[str, Any] = Field(default_factory=dict)

	@field_validator("id", mode="before")
	@classmethod
	def _id_as_str(cls, v: Any) -> Any:
		return str(v)

	@field_validator("custom_fields", mode="before")
	@classmethod
	def _fields_default(cls, v: Any) -> Any:
		return v or {}


class FailureKind(str, Enum):
	NETWORK = "network"
	HTTP_STATUS = "http_status"
	PDF_PARSE = "pdf_parse"
	EMPTY = "empty"
	COMPLETION_ERROR = "completion_error"
	INVALID_JSON = "invalid_json"
	MISSING_RFPS = "missing_rfps"


class FetchOutcome(BaseModel):
	"""Normalized text of one meeting document, or why there is none."""
	url: str
	text: Optional[str] = None
	failure: Optional[FailureKind] = None
	detail: Optional[str] = None

	@property
	def ok(self) -> bool:
		return self.text is not None


class ExtractionOutcome(BaseModel):
	opportunities: List[ExtractedOpportunity] = Field(default_factory=list)
	rejected: int = 0
	failure: Optional[FailureKind] = None
	detail: Optional[str] = None


class DiscoveryOutcome(BaseModel):
	documents: List[MeetingDocument] = Field(default_factory=list)
	candidates_seen: int = 0
	error: Optional[str] = None


class ScanOptions(BaseModel):
	province: Optional[str] = None
	limit: Optional[int] = Field(default=None, ge=1)
	retry_failed: bool = False
	dry_run: bool = False
	municipality: Optional[str] = None


class ScanResult(BaseModel):
	municipality_id: str
	municipality_name: str
	province: str
	status: ResultStatus = "success"
	documents_found: int = 0
	documents_fetched: int = 0
	rfps_detected: int = 0
	rfps_created: int = 0
	rfps_updated: int = 0
	rfps_failed: int = 0
	organization_created: bool = False
	started_at: datetime
	completed_at: Optional[datetime] = None
	error: Optional[str] = None


class ProvinceCount(BaseModel):
	province: str
	count: int


class ScanSummary(BaseModel):
	municipalities_scanned: int = 0
	documents_fetched: int = 0
	rfps_detected: int = 0
	rfps_created: int = 0
	rfps_updated: int = 0
	rfps_failed: int = 0
	organizations_created: int = 0
	errors: int = 0
	no_minutes: int = 0
	top_provinces: List[ProvinceCount] = Field(default_factory=list)
	duration_ms: int = 0
	dry_run: bool = False
	results: List[ScanResult] = Field(default_factory=list)
