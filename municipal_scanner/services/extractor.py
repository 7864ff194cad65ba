from __future__ import annotations

import json
import logging
from typing import Any, List, Optional, Tuple

from pydantic import ValidationError

from ..config import ScannerConfig
from ..errors import CompletionError
from ..logging_config import span
from ..models import ExtractedOpportunity, ExtractionOutcome, FailureKind
from .llm import CompletionClient

logger = logging.getLogger(__name__)


EXTRACTION_PROMPT = """You are reviewing municipal council and committee meeting minutes for business opportunities in:
- Solid waste: collection, recycling, composting, organics, landfill operations, transfer stations
- Drinking water: treatment plants, distribution systems, reservoirs, water quality
- Wastewater: sewage treatment (WWTP), collection systems, lift and pumping stations, stormwater

Report anything that could become a contract:
1. Formal procurement: RFPs, RFQs, tenders, bid calls
2. Approved projects or capital works where a procurement is expected
3. Problems that will need outside help: aging assets, capacity limits, new regulatory requirements
4. Budget approvals for waste/water work
5. Plans to retain engineers or consultants for waste/water studies
6. Service contracts that are expiring and will be re-tendered

Skip projects that are already completed.

For each opportunity provide:
- title: short project name
- description: what is being procured, planned, or discussed
- due_date: submission deadline as YYYY-MM-DD, or null
- estimated_value: budget as a number, or null
- currency: e.g. "CAD", or null
- submission_method: one of email, portal, physical, other, or null
- contact_email: or null
- confidence: 0-100, how sure you are this is a real opportunity
- opportunity_type: one of
    "formal_rfp" (open RFP/tender with a deadline),
    "project_discussion" (approved project, procurement expected soon),
    "planning_stage" (under study, may lead to procurement later)
- meeting_date: YYYY-MM-DD if the minutes show it, or null
- committee_name: e.g. "Regional Council", "Public Works Committee", or null
- agenda_item: e.g. "Item 15.1.3", or null
- excerpt: a short quote from the minutes supporting the opportunity, or null

Respond with JSON only, in exactly this shape:
{"rfps": [{"title": "...", "description": "...", "due_date": null, "estimated_value": null, "currency": null, "submission_method": null, "contact_email": null, "confidence": 0, "opportunity_type": "planning_stage", "meeting_date": null, "committee_name": null, "agenda_item": null, "excerpt": null}]}

If there is nothing relevant, respond with {"rfps": []}"""


def build_prompt(text: str, municipality_name: str, province: str, max_chars: int) -> str:
    return (
        f"{EXTRACTION_PROMPT}\n\n"
        f"Municipality: {municipality_name}, {province}\n\n"
        f"Meeting Minutes Text:\n{text[:max_chars]}"
    )


def extract_json_object(content: str) -> Optional[str]:
    """Return the first balanced ``{...}`` block in ``content``.

    Braces inside JSON strings are ignored. Models like to wrap the payload in
    prose or code fences, so this runs before ``json.loads``.
    """
    start = content.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(content)):
        ch = content[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return content[start:i + 1]
    return None


def validate_items(raw_items: List[Any], threshold: float) -> Tuple[List[ExtractedOpportunity], int]:
    """Keep items that parse, carry a title/description/type, and clear the threshold."""
    accepted: List[ExtractedOpportunity] = []
    rejected = 0
    for item in raw_items:
        if not isinstance(item, dict):
            rejected += 1
            continue
        try:
            opp = ExtractedOpportunity.model_validate(item)
        except ValidationError:
            rejected += 1
            continue
        if opp.confidence < threshold:
            rejected += 1
            continue
        accepted.append(opp)
    return accepted, rejected


class OpportunityExtractor:
    """Asks the completion service for procurement signals in one document."""

    def __init__(self, client: CompletionClient, config: ScannerConfig):
        self.client = client
        self.config = config

    async def extract(
        self,
        text: str,
        municipality_name: str,
        province: str,
        source_meeting_url: Optional[str] = None,
    ) -> ExtractionOutcome:
        prompt = build_prompt(text, municipality_name, province, self.config.max_text_chars)

        with span(logger, "extract.llm") as fields:
            try:
                response = await self.client.complete(
                    [{"role": "user", "content": prompt}],
                    model=self.config.model,
                    temperature=self.config.temperature,
                    max_tokens=self.config.max_tokens,
                    response_format="json_object",
                )
            except CompletionError as e:
                logger.error("extract.completion_failed: %s", e)
                return ExtractionOutcome(failure=FailureKind.COMPLETION_ERROR, detail=str(e))

            content = response.content or ""
            block = extract_json_object(content)
            try:
                if block is None:
                    raise ValueError("no JSON object in response")
                payload = json.loads(block)
            except ValueError as e:
                logger.error("extract.invalid_json: %s | %r", e, content[:200])
                return ExtractionOutcome(failure=FailureKind.INVALID_JSON, detail=str(e))

            raw_items = payload.get("rfps") if isinstance(payload, dict) else None
            if not isinstance(raw_items, list):
                logger.error("extract.missing_rfps: response has no rfps array")
                return ExtractionOutcome(failure=FailureKind.MISSING_RFPS, detail="response missing rfps array")

            opportunities, rejected = validate_items(raw_items, self.config.confidence_threshold)
            if source_meeting_url:
                for opp in opportunities:
                    opp.source_meeting_url = source_meeting_url

            fields["raw"] = len(raw_items)
            fields["accepted"] = len(opportunities)
            fields["rejected"] = rejected
            return ExtractionOutcome(opportunities=opportunities, rejected=rejected)
