from datetime import datetime, timezone

from municipal_scanner.models import DiscoveryOutcome, MeetingDocument, ProvinceCount, ScanResult, ScanSummary
from municipal_scanner.report import format_discovery_report, format_research_report, format_summary


class TestSummary:

    def test_counts_and_failures_are_listed(self):
        summary = ScanSummary(
            municipalities_scanned=3,
            rfps_created=5,
            errors=1,
            top_provinces=[ProvinceCount(province="Ontario", count=5)],
            duration_ms=12500,
            dry_run=True,
            results=[
                ScanResult(
                    municipality_id="7", municipality_name="Lakeside", province="Quebec",
                    status="failed", error="boom", started_at=datetime.now(timezone.utc),
                ),
            ],
        )
        text = format_summary(summary)
        assert "DRY RUN" in text
        assert "Municipalities scanned: 3" in text
        assert "RFPs created:           5" in text
        assert "Ontario: 5" in text
        assert "Lakeside, Quebec: boom" in text
        assert "12.5s" in text


class TestDiscoveryReport:

    def test_lists_documents_with_counts(self):
        outcome = DiscoveryOutcome(
            candidates_seen=12,
            documents=[
                MeetingDocument(url="https://x.ca/m/2025-01-14.pdf", type="pdf", title="Minutes", score=14, is_document_link=True),
                MeetingDocument(url="https://x.ca/meetings/council", type="html", title="Council Meeting", score=6),
            ],
        )
        text = format_discovery_report("https://x.ca/meetings", outcome)
        assert "Found 2 documents from 12 links (1 PDF, 1 HTML)" in text
        assert "https://x.ca/m/2025-01-14.pdf" in text
        assert "no recognized meeting document pattern" in text

    def test_error_is_reported(self):
        text = format_discovery_report("https://x.ca/meetings", DiscoveryOutcome(error="Failed to fetch calendar page"))
        assert "❌ Failed to fetch calendar page" in text


class TestResearchReport:

    def test_provenance_and_truncated_excerpt(self):
        rows = [
            {
                "title": "Lagoon Upgrade",
                "description": "Expansion of the sewage lagoon",
                "estimated_value": 2400000,
                "currency": "CAD",
                "due_date": None,
                "organizations": {"name": "Riverton - Ontario"},
                "custom_fields": {
                    "region": "Ontario",
                    "meeting_date": "2025-05-06",
                    "committee_name": "Public Works Committee",
                    "agenda_item": "Item 7.1",
                    "ai_confidence": 88,
                    "excerpt": "a" * 350,
                    "mention_count": 3,
                },
            },
            {"title": "Transfer Station", "custom_fields": {"region": "Quebec"}},
        ]
        text = format_research_report(rows)
        assert "Found 2 opportunities" in text
        assert "🏢 Riverton - Ontario (Ontario)" in text
        assert "Committee: Public Works Committee" in text
        assert "AI Confidence: 88%" in text
        assert "$2,400,000 CAD" in text
        assert '"' + "a" * 300 + '..."' in text
        assert "a" * 301 not in text
        assert "Ontario: 1" in text and "Quebec: 1" in text
