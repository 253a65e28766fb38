"""
Lead deduplication into canonical companies.

Canonicalization is deliberately conservative: case-fold and whitespace
only. "Fiera Capital" and "Fiera Capital Inc" stay separate companies;
legal-suffix stripping would merge distinct legal entities.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from lead_attribution.models import Company, Lead

logger = logging.getLogger(__name__)


# Company fields filled from the newest lead that has a value.
# ICP references are settled by the reconciler, which only accepts resolvable ids.
MERGED_FIELDS = (
    ("company_name", "company_name"),
    ("website", "website"),
    ("company_profile", "company_profile"),
    ("fit_score", "fit_score"),
)


@dataclass
class MergeOutcome:
    company: Company
    leads: List[Lead]
    primary: Lead
    superseded: List[Lead] = field(default_factory=list)
    created: bool = False
    history: List[Lead] = field(default_factory=list)

    @property
    def ranked(self) -> List[Lead]:
        """Stored and batch leads together, newest first."""
        return newest_first(self.history + self.leads)


@dataclass
class FitScoreFilterResult:
    kept: List[Company] = field(default_factory=list)
    rejected: List[Company] = field(default_factory=list)


def canonicalize(company_name: Optional[str]) -> str:
    """
    Canonical company key: case-folded, whitespace runs collapsed to "-".

    "Acme Inc", "acme  inc" and " ACME Inc " all map to "acme-inc".
    """
    if not company_name:
        return ""
    return "-".join(company_name.casefold().split())


def display_name(company_name: Optional[str]) -> Optional[str]:
    if not company_name:
        return None
    return " ".join(company_name.split()) or None


def _timestamp(value: Optional[datetime]) -> datetime:
    if value is None:
        return datetime.min
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def newest_first(leads: Sequence[Lead]) -> List[Lead]:
    """Order leads newest to oldest. Later batch position wins ties."""
    ranked: List[Tuple[datetime, int, Lead]] = [
        (_timestamp(lead.created_at), position, lead)
        for position, lead in enumerate(leads)
    ]
    ranked.sort(key=lambda item: (item[0], item[1]), reverse=True)
    return [lead for _, _, lead in ranked]


class LeadDeduplicator:
    """Collapse leads sharing a canonical key into one Company."""

    def canonicalize(self, company_name: Optional[str]) -> str:
        return canonicalize(company_name)

    def group(self, leads: Iterable[Lead]) -> Dict[str, List[Lead]]:
        """
        Group leads by canonical key, refreshing each lead's stored key.

        Leads without a usable company name are left out.
        """
        groups: Dict[str, List[Lead]] = {}
        for lead in leads:
            key = canonicalize(lead.company_name)
            lead.company_key = key or None
            if not key:
                continue
            groups.setdefault(key, []).append(lead)
        return groups

    def merge(
        self,
        leads: Sequence[Lead],
        existing: Optional[Company] = None,
        history: Sequence[Lead] = ()
    ) -> Company:
        """
        Merge one group of leads into a Company.

        Each merged field takes the newest non-null value across the group
        and `history` (leads already stored under the existing Company), so
        an older lead arriving late never overwrites newer stored values.
        Fields no lead has a value for keep the existing Company's value.
        """
        return self._merge_group(leads, existing, history).company

    def _merge_group(
        self,
        leads: Sequence[Lead],
        existing: Optional[Company],
        history: Sequence[Lead] = ()
    ) -> MergeOutcome:
        if not leads:
            raise ValueError("Cannot merge an empty group of leads")

        keys = {canonicalize(lead.company_name) for lead in leads}
        if len(keys) != 1 or "" in keys:
            raise ValueError(f"Leads do not share one canonical key: {sorted(keys)}")
        key = keys.pop()

        if existing is not None and existing.company_key != key:
            raise ValueError(
                f"Existing company key '{existing.company_key}' does not match '{key}'"
            )

        batch_ids = {lead.id for lead in leads}
        history = [lead for lead in history if lead.id not in batch_ids]
        # History first: batch leads win timestamp ties
        ordered = newest_first(history + list(leads))
        company = existing
        created = False
        if company is None:
            company = Company(id=uuid.uuid4(), company_key=key)
            created = True

        for lead_attr, company_attr in MERGED_FIELDS:
            for lead in ordered:
                value = getattr(lead, lead_attr)
                if lead_attr == "company_name":
                    value = display_name(value)
                if value is not None:
                    setattr(company, company_attr, value)
                    break

        # A stored lead may be newer than the whole batch
        primary = ordered[0]
        superseded = [lead for lead in ordered if lead is not primary and lead.id in batch_ids]
        if superseded:
            logger.debug(
                f"Merged {len(leads)} leads into '{key}'; "
                f"{len(superseded)} superseded by lead {primary.id}"
            )

        return MergeOutcome(
            company=company,
            leads=list(leads),
            primary=primary,
            superseded=superseded,
            created=created,
            history=history,
        )

    def merge_all(
        self,
        leads: Iterable[Lead],
        existing_by_key: Optional[Mapping[str, Company]] = None,
        history_by_key: Optional[Mapping[str, Sequence[Lead]]] = None
    ) -> List[MergeOutcome]:
        """Group and merge a batch. One outcome per canonical key."""
        existing_by_key = existing_by_key or {}
        history_by_key = history_by_key or {}
        outcomes = [
            self._merge_group(group, existing_by_key.get(key), history_by_key.get(key, ()))
            for key, group in self.group(leads).items()
        ]

        logger.info(
            f"Deduplicated into {len(outcomes)} companies "
            f"({sum(1 for o in outcomes if o.created)} new)"
        )
        return outcomes

    def filter_by_fit_score(
        self,
        companies: Iterable[Company],
        threshold: float
    ) -> FitScoreFilterResult:
        """
        Split companies by fit score.

        Companies strictly below the threshold, or without a score, are
        rejected. Both sets are returned.
        """
        if threshold is None or isinstance(threshold, bool):
            raise ValueError("A numeric fit score threshold is required")
        threshold = float(threshold)

        result = FitScoreFilterResult()
        for company in companies:
            if company.fit_score is not None and company.fit_score >= threshold:
                result.kept.append(company)
            else:
                result.rejected.append(company)

        logger.info(
            f"Fit score >= {threshold}: kept {len(result.kept)}, "
            f"rejected {len(result.rejected)}"
        )
        return result
