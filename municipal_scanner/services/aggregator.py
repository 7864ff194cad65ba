from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from ..config import ScannerConfig
from ..errors import StoreError
from ..logging_config import span
from ..models import ExtractedOpportunity, Municipality
from .store import CrmStore

logger = logging.getLogger(__name__)


def _date_key(value: str):
    try:
        return (date.fromisoformat(value[:10]), value)
    except ValueError:
        return (date.min, value)


def latest_date(*values: Optional[str]) -> Optional[str]:
    present = [v for v in values if v]
    return max(present, key=_date_key) if present else None


@dataclass
class MentionGroup:
    """Every mention of one opportunity title, in processing order."""
    title: str
    mentions: List[ExtractedOpportunity] = field(default_factory=list)

    @property
    def canonical(self) -> ExtractedOpportunity:
        return self.mentions[0]

    @property
    def mention_count(self) -> int:
        return len(self.mentions)

    @property
    def last_mentioned_date(self) -> Optional[str]:
        return latest_date(*(m.meeting_date for m in self.mentions))

    @property
    def meeting_urls(self) -> List[str]:
        return [m.source_meeting_url for m in self.mentions if m.source_meeting_url]

    @property
    def meeting_dates(self) -> List[str]:
        return [m.meeting_date for m in self.mentions if m.meeting_date]


def group_mentions(opportunities: List[ExtractedOpportunity]) -> List[MentionGroup]:
    """Group by exact title; groups come out in first-seen order."""
    groups: Dict[str, MentionGroup] = {}
    for opp in opportunities:
        groups.setdefault(opp.title, MentionGroup(title=opp.title)).mentions.append(opp)
    return list(groups.values())


def source_for(opportunity_type: str) -> str:
    return "municipal_rfp" if opportunity_type == "formal_rfp" else "municipal_minutes"


@dataclass
class AggregateCounts:
    created: int = 0
    updated: int = 0
    failed: int = 0


class OpportunityAggregator:
    """Title-keyed upsert of grouped opportunities into the CRM store."""

    def __init__(self, store: CrmStore, config: ScannerConfig):
        self.store = store
        self.config = config

    def build_rfp_record(
        self,
        group: MentionGroup,
        municipality: Municipality,
        organization_id: str,
    ) -> Dict[str, Any]:
        primary = group.canonical
        return {
            "project_id": self.config.project_id,
            "organization_id": organization_id,
            "title": primary.title,
            "description": primary.description,
            "due_date": primary.due_date,
            "estimated_value": primary.estimated_value,
            "currency": primary.currency or self.config.default_currency,
            "status": "identified",
            "submission_method": primary.submission_method,
            "submission_email": primary.contact_email,
            "custom_fields": {
                "country": municipality.country or self.config.country,
                "region": municipality.province,
                "source": source_for(primary.opportunity_type),
                "opportunity_type": primary.opportunity_type,
                "calendar_url": municipality.minutes_url,
                "meeting_url": primary.source_meeting_url,
                "meeting_date": primary.meeting_date,
                "committee_name": primary.committee_name,
                "agenda_item": primary.agenda_item,
                "excerpt": primary.excerpt,
                "ai_confidence": primary.confidence,
                "mention_count": group.mention_count,
                "last_mentioned_date": group.last_mentioned_date,
                "all_meeting_urls": group.meeting_urls,
                "all_meeting_dates": group.meeting_dates,
            },
        }

    @staticmethod
    def merged_custom_fields(stored: Dict[str, Any], group: MentionGroup) -> Dict[str, Any]:
        merged = dict(stored)
        merged["mention_count"] = (stored.get("mention_count") or 1) + group.mention_count
        merged["last_mentioned_date"] = latest_date(stored.get("last_mentioned_date"), group.last_mentioned_date)
        return merged

    def persist(
        self,
        municipality: Municipality,
        organization_id: Optional[str],
        opportunities: List[ExtractedOpportunity],
        dry_run: bool = False,
    ) -> AggregateCounts:
        """Create or update one RFP per distinct title.

        ``organization_id`` may be None only in a dry run for an organization
        that does not exist yet; every title then counts as a would-be create.
        A store failure on one title is counted and the rest still run.
        """
        counts = AggregateCounts()
        groups = group_mentions(opportunities)

        with span(logger, "aggregate.persist") as fields:
            for group in groups:
                try:
                    existing = None
                    if organization_id is not None:
                        existing = self.store.find_rfp(self.config.project_id, organization_id, group.title)

                    if existing is not None:
                        merged = self.merged_custom_fields(existing.custom_fields, group)
                        if dry_run:
                            logger.info(
                                "   [DRY RUN] would update \"%s\" (mentions %d)",
                                group.title, merged["mention_count"],
                            )
                        else:
                            self.store.update_rfp_custom_fields(existing.id, merged)
                            logger.info(
                                "   ⚪ \"%s\" already exists, mention count now %d",
                                group.title, merged["mention_count"],
                            )
                        counts.updated += 1
                        continue

                    if dry_run:
                        logger.info(
                            "   [DRY RUN] would create \"%s\" (%s, confidence %.0f, mentions %d)",
                            group.title, group.canonical.opportunity_type,
                            group.canonical.confidence, group.mention_count,
                        )
                    else:
                        record = self.build_rfp_record(group, municipality, organization_id)
                        self.store.insert_rfp(record)
                        logger.info(
                            "   ✅ created \"%s\" (%s, mentions %d)",
                            group.title, group.canonical.opportunity_type, group.mention_count,
                        )
                    counts.created += 1
                except StoreError as e:
                    logger.error("aggregate.rfp.failed: \"%s\" | %s", group.title, e)
                    counts.failed += 1

            fields["groups"] = len(groups)
            fields["created"] = counts.created
            fields["updated"] = counts.updated
            fields["failed"] = counts.failed

        return counts
