from __future__ import annotations

from typing import Any, Dict, List, Optional

from .models import DiscoveryOutcome, ScanSummary
from .services.scoring import validate_meeting_url

RULE = "━" * 62
EXCERPT_CHARS = 300


def format_summary(summary: ScanSummary) -> str:
    lines = [
        "",
        RULE,
        "📊 Scan Summary" + (" (DRY RUN, nothing written)" if summary.dry_run else ""),
        RULE,
        f"Municipalities scanned: {summary.municipalities_scanned}",
        f"Documents fetched:      {summary.documents_fetched}",
        f"RFPs detected:          {summary.rfps_detected}",
        f"RFPs created:           {summary.rfps_created}",
        f"RFPs updated:           {summary.rfps_updated}",
        f"RFPs failed:            {summary.rfps_failed}",
        f"Organizations created:  {summary.organizations_created}",
        f"No minutes found:       {summary.no_minutes}",
        f"Errors:                 {summary.errors}",
        f"Duration:               {summary.duration_ms / 1000:.1f}s",
    ]
    if summary.top_provinces:
        lines.append("")
        lines.append("Top provinces by RFPs created:")
        for entry in summary.top_provinces:
            lines.append(f"  {entry.province}: {entry.count}")

    failed = [r for r in summary.results if r.status == "failed"]
    if failed:
        lines.append("")
        lines.append("Failed municipalities:")
        for r in failed:
            lines.append(f"  ❌ {r.municipality_name}, {r.province}: {r.error}")
    lines.append(RULE)
    return "\n".join(lines)


def format_discovery_report(calendar_url: str, outcome: DiscoveryOutcome) -> str:
    lines = [f"🔍 Meeting documents for {calendar_url}", ""]
    if outcome.error:
        lines.append(f"❌ {outcome.error}")
        return "\n".join(lines)

    pdfs = sum(1 for d in outcome.documents if d.type == "pdf")
    lines.append(
        f"Found {len(outcome.documents)} documents from {outcome.candidates_seen} links "
        f"({pdfs} PDF, {len(outcome.documents) - pdfs} HTML)"
    )
    lines.append("")
    for i, doc in enumerate(outcome.documents, start=1):
        valid, reason = validate_meeting_url(doc.url)
        flag = "✅" if valid else f"⚠️  {reason}"
        lines.append(f"{i:>2}. [{doc.score:>2}] {doc.type.upper():<4} {doc.title or '(no title)'}")
        lines.append(f"    {doc.url}")
        lines.append(f"    {flag}")
    return "\n".join(lines)


def _truncate(text: str, limit: int = EXCERPT_CHARS) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def _money(value: Any, currency: Optional[str]) -> str:
    if value is None:
        return "Not specified"
    try:
        return f"${float(value):,.0f} {currency or ''}".rstrip()
    except (TypeError, ValueError):
        return str(value)


def format_research_report(rows: List[Dict[str, Any]], province: Optional[str] = None) -> str:
    """Render persisted minutes-backed opportunities with their provenance."""
    scope = f" ({province})" if province else ""
    lines = [
        f"🇨🇦 Municipal Meeting Minutes Research Report{scope}",
        "",
        f"Found {len(rows)} opportunities from municipal meetings",
        "",
        RULE,
    ]

    by_province: Dict[str, int] = {}
    for row in rows:
        fields = row.get("custom_fields") or {}
        org = row.get("organizations") or {}
        region = fields.get("region") or "N/A"
        by_province[region] = by_province.get(region, 0) + 1

        lines.append("")
        lines.append(f"📋 {row.get('title')}")
        lines.append(f"🏢 {org.get('name', 'Unknown organization')} ({region})")
        lines.append(f"🏷️  Type: {fields.get('opportunity_type') or 'N/A'}")
        lines.append(f"📅 Meeting Date: {fields.get('meeting_date') or 'Not specified'}")
        lines.append(f"🏛️  Committee: {fields.get('committee_name') or 'Not specified'}")
        lines.append(f"📝 Agenda Item: {fields.get('agenda_item') or 'Not specified'}")
        lines.append(f"🤖 AI Confidence: {fields.get('ai_confidence') if fields.get('ai_confidence') is not None else 'N/A'}%")
        lines.append(f"🔁 Mentions: {fields.get('mention_count') or 1}")
        lines.append(f"🔗 Meeting Link: {fields.get('meeting_url') or fields.get('calendar_url') or 'N/A'}")
        lines.append(f"💰 Estimated Value: {_money(row.get('estimated_value'), row.get('currency'))}")
        lines.append(f"⏰ Due Date: {row.get('due_date') or 'Not specified'}")
        if row.get("description"):
            lines.append("")
            lines.append("📄 Description:")
            lines.append(f"   {row['description']}")
        if fields.get("excerpt"):
            lines.append("")
            lines.append("💬 Excerpt from Minutes:")
            lines.append(f"   \"{_truncate(fields['excerpt'])}\"")
        lines.append("")
        lines.append(RULE)

    if by_province:
        lines.append("")
        lines.append("📊 By province:")
        for name, count in sorted(by_province.items(), key=lambda item: item[1], reverse=True):
            lines.append(f"   {name}: {count}")
    return "\n".join(lines)
