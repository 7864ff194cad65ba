from __future__ import annotations

import asyncio
import time
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from .config import ScannerConfig
from .errors import StoreError
from .logging_config import configure_logging, span
from .models import ExtractedOpportunity, Municipality, ProvinceCount, ScanOptions, ScanResult, ScanSummary
from .services.aggregator import OpportunityAggregator
from .services.extractor import OpportunityExtractor
from .services.fetcher import build_http_client, fetch_meeting_content
from .services.llm import CompletionClient
from .services.scoring import find_meeting_documents
from .services.store import CrmStore

logger = logging.getLogger("municipal_scanner.pipeline")

TOP_PROVINCES = 10


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


def top_provinces(created_by_province: Dict[str, int], limit: int = TOP_PROVINCES) -> List[ProvinceCount]:
	"""Provinces ranked by RFPs created, zero counts left out."""
	ranked = sorted(
		((p, n) for p, n in created_by_province.items() if n > 0),
		key=lambda item: item[1],
		reverse=True,
	)
	return [ProvinceCount(province=p, count=n) for p, n in ranked[:limit]]


def organization_record(municipality: Municipality, config: ScannerConfig) -> Dict[str, Any]:
	return {
		"project_id": config.project_id,
		"name": f"{municipality.name} - {municipality.province}",
		"address_city": municipality.name,
		"address_state": municipality.province,
		"address_country": municipality.country or config.country,
		"industry": "Government",
		"description": f"Municipal government - {municipality.municipality_type or 'municipality'}",
		"website": municipality.official_website,
	}


class MunicipalScanner:
	"""
	Scans municipalities one at a time: discover meeting documents, fetch them,
	extract opportunities, then upsert them into the CRM.

	Nothing runs concurrently. Documents are processed in ranked order and the
	first mention of a title becomes the stored record, so that order matters.
	"""

	def __init__(
		self,
		store: CrmStore,
		completion_client: CompletionClient,
		config: ScannerConfig,
		http_client: Optional[httpx.AsyncClient] = None,
		on_progress: Optional[Callable[[str], None]] = None,
	):
		self.store = store
		self.config = config
		self.extractor = OpportunityExtractor(completion_client, config)
		self.aggregator = OpportunityAggregator(store, config)
		self._owns_http = http_client is None
		self.http = http_client or build_http_client(timeout=config.request_timeout)
		self.on_progress = on_progress

	def progress(self, msg: str) -> None:
		logger.info("progress: %s", msg)
		if self.on_progress:
			try:
				self.on_progress(msg)
			except Exception:
				logger.debug("progress callback failed", exc_info=True)

	async def aclose(self) -> None:
		if self._owns_http:
			await self.http.aclose()

	async def run(self, options: ScanOptions) -> ScanSummary:
		configure_logging()
		start_time = time.time()

		municipalities = self.store.list_municipalities(options)
		logger.info(
			"🇨🇦 Municipal minutes scan: %d municipalities | threshold=%s model=%s dateRangeMonths=%d dryRun=%s",
			len(municipalities), self.config.confidence_threshold, self.config.model,
			self.config.date_range_months, options.dry_run,
		)
		if options.province:
			logger.info("   province filter: %s", options.province)

		summary = ScanSummary(dry_run=options.dry_run)
		created_by_province: Dict[str, int] = {}

		for index, municipality in enumerate(municipalities, start=1):
			if index > 1 and self.config.request_delay_ms:
				await asyncio.sleep(self.config.request_delay_ms / 1000)

			result = await self.scan_municipality(municipality, index, len(municipalities), dry_run=options.dry_run)
			summary.results.append(result)
			summary.municipalities_scanned += 1
			summary.documents_fetched += result.documents_fetched
			summary.rfps_detected += result.rfps_detected
			summary.rfps_created += result.rfps_created
			summary.rfps_updated += result.rfps_updated
			summary.rfps_failed += result.rfps_failed
			if result.organization_created:
				summary.organizations_created += 1
			if result.status == "failed":
				summary.errors += 1
			elif result.status == "no_minutes":
				summary.no_minutes += 1
			created_by_province[result.province] = created_by_province.get(result.province, 0) + result.rfps_created

		summary.top_provinces = top_provinces(created_by_province)
		summary.duration_ms = int((time.time() - start_time) * 1000)
		logger.info(
			"scan.complete: municipalities=%d created=%d updated=%d errors=%d durationMs=%d",
			summary.municipalities_scanned, summary.rfps_created, summary.rfps_updated,
			summary.errors, summary.duration_ms,
		)
		return summary

	async def scan_municipality(
		self,
		municipality: Municipality,
		index: int = 1,
		total: int = 1,
		dry_run: bool = False,
	) -> ScanResult:
		"""Scan one municipality; never raises."""
		result = ScanResult(
			municipality_id=municipality.id,
			municipality_name=municipality.name,
			province=municipality.province,
			started_at=_utcnow(),
		)
		self.progress(f"[{index}/{total}] 🏛️  {municipality.name}, {municipality.province}")

		with span(logger, "scan.municipality") as fields:
			try:
				await self._scan(municipality, result, dry_run)
			except Exception as e:
				logger.error("❌ %s failed: %s", municipality.name, e, exc_info=True)
				result.status = "failed"
				result.error = str(e) or type(e).__name__

			result.completed_at = _utcnow()
			self._record_final_status(municipality, result, dry_run)
			fields["status"] = result.status
			fields["documents"] = result.documents_fetched
			fields["created"] = result.rfps_created

		return result

	async def _scan(self, municipality: Municipality, result: ScanResult, dry_run: bool) -> None:
		if not dry_run:
			self.store.update_municipality(municipality.id, scan_status="scanning")

		if not municipality.minutes_url:
			logger.warning("   ⚠️ no minutes URL for %s", municipality.name)
			result.status = "no_minutes"
			return

		with span(logger, "discover"):
			discovery = await find_meeting_documents(
				self.http, municipality.minutes_url, limit=self.config.max_documents,
			)
		result.documents_found = len(discovery.documents)

		if discovery.error:
			logger.warning("   ⚠️ calendar unavailable: %s", discovery.error)
			result.status = "no_minutes"
			result.error = discovery.error
			return
		if not discovery.documents:
			logger.info("   ⚪ no meeting documents found on %s", municipality.minutes_url)
			result.status = "no_minutes"
			return

		self.progress(f"   📄 {len(discovery.documents)} meeting documents")
		opportunities = await self._extract_all(municipality, discovery.documents, result)
		result.rfps_detected = len(opportunities)

		if not opportunities:
			logger.info("   ⚪ no opportunities in %d documents", result.documents_fetched)
			return

		organization_id, created = self._resolve_organization(municipality, dry_run)
		result.organization_created = created

		counts = self.aggregator.persist(municipality, organization_id, opportunities, dry_run=dry_run)
		result.rfps_created = counts.created
		result.rfps_updated = counts.updated
		result.rfps_failed = counts.failed
		self.progress(
			f"   ✅ {municipality.name}: {counts.created} created, {counts.updated} updated, {counts.failed} failed"
		)

	async def _extract_all(self, municipality: Municipality, documents, result: ScanResult) -> List[ExtractedOpportunity]:
		opportunities: List[ExtractedOpportunity] = []
		for i, doc in enumerate(documents):
			if i > 0 and self.config.document_delay_ms:
				await asyncio.sleep(self.config.document_delay_ms / 1000)

			fetched = await fetch_meeting_content(self.http, doc)
			if not fetched.ok:
				logger.warning("   ⚠️ skipped %s (%s)", doc.url, fetched.failure.value if fetched.failure else "unknown")
				continue
			result.documents_fetched += 1

			if len(fetched.text) < self.config.min_content_chars:
				logger.info("   ⚪ insufficient content (%d chars): %s", len(fetched.text), doc.url)
				continue

			outcome = await self.extractor.extract(
				fetched.text, municipality.name, municipality.province, source_meeting_url=doc.url,
			)
			if outcome.failure:
				logger.warning("   ⚠️ extraction failed for %s (%s)", doc.url, outcome.failure.value)
				continue
			if outcome.opportunities:
				logger.info("   🎯 %d opportunities in %s", len(outcome.opportunities), doc.url)
			opportunities.extend(outcome.opportunities)
		return opportunities

	def _resolve_organization(self, municipality: Municipality, dry_run: bool) -> Tuple[Optional[str], bool]:
		"""Look up the municipality's organization, creating it when missing.

		Returns (organization id, created). In a dry run a missing organization
		is reported as created with no id.
		"""
		existing = self.store.find_organization(self.config.project_id, municipality.name, municipality.province)
		if existing:
			return existing, False
		if dry_run:
			logger.info("   [DRY RUN] would create organization %s - %s", municipality.name, municipality.province)
			return None, True
		organization_id = self.store.create_organization(organization_record(municipality, self.config))
		logger.info("   🏢 created organization %s - %s", municipality.name, municipality.province)
		return organization_id, True

	def _record_final_status(self, municipality: Municipality, result: ScanResult, dry_run: bool) -> None:
		if dry_run:
			return
		now = _utcnow().isoformat()
		if result.error:
			update = {"scan_status": "failed", "scan_error": result.error, "last_scanned_at": now}
		else:
			update = {
				"scan_status": "success",
				"scan_error": None,
				"last_scanned_at": now,
				"rfps_found_count": municipality.rfps_found_count + result.rfps_created,
			}
		try:
			self.store.update_municipality(municipality.id, **update)
		except StoreError as e:
			logger.error("scan.status_update.failed: %s | %s", municipality.name, e)
