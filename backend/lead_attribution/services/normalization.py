"""Lead data normalization service."""

import logging
import math
import uuid
from datetime import datetime
from typing import Dict, Any, Optional

from nameparser import HumanName

from lead_attribution.models import Lead, LeadStatus
from lead_attribution.schemas.lead import LeadCreate
from lead_attribution.services.lead_deduplicator import canonicalize, display_name

logger = logging.getLogger(__name__)


class NormalizationService:
    """Normalize and standardize incoming lead data."""

    @staticmethod
    def normalize_email(email: Optional[str]) -> Optional[str]:
        """
        Normalize email address.
        - Convert to lowercase
        - Strip whitespace
        """
        if not email:
            return None
        return str(email).lower().strip() or None

    @staticmethod
    def extract_domain(email: Optional[str]) -> Optional[str]:
        """Extract domain from email address."""
        if not email or '@' not in email:
            return None
        return email.split('@')[1].lower()

    @staticmethod
    def normalize_person_name(
        person_name: Optional[str],
        first_name: Optional[str] = None,
        last_name: Optional[str] = None
    ) -> Dict[str, Optional[str]]:
        """
        Parse a person's name into full/first/last.
        Accepts either a full name or separate first/last parts.
        """
        if not person_name and (first_name or last_name):
            person_name = " ".join(part.strip() for part in (first_name, last_name) if part)

        if not person_name or not person_name.strip():
            return {'person_name': None, 'first_name': None, 'last_name': None}

        parsed = HumanName(" ".join(person_name.split()))
        parsed.capitalize(force=False)

        return {
            'person_name': str(parsed) or None,
            'first_name': parsed.first or (first_name.strip().title() if first_name else None),
            'last_name': parsed.last or (last_name.strip().title() if last_name else None),
        }

    @staticmethod
    def normalize_job_title(title: Optional[str]) -> Optional[str]:
        """
        Normalize job title.
        - Remove extra whitespace
        - Standardize capitalization
        """
        if not title:
            return None

        normalized = ' '.join(title.split())
        return normalized.title() or None

    @staticmethod
    def normalize_url(url: Optional[str]) -> Optional[str]:
        """
        Normalize URL.
        - Strip whitespace
        - Remove trailing slashes
        """
        if not url:
            return None

        url = url.strip().rstrip('/')
        return url or None

    @staticmethod
    def normalize_fit_score(value: Any) -> Optional[float]:
        """
        Normalize a fit score to the 0-10 scale.

        Scores reported on a 0-1 scale (strictly between 0 and 1) are
        multiplied by 10. Results are clamped to 0-10; anything that is not
        a number becomes None.
        """
        if value is None or isinstance(value, bool):
            return None

        try:
            score = float(value)
        except (TypeError, ValueError):
            logger.debug(f"Discarding non-numeric fit score: {value!r}")
            return None

        if math.isnan(score) or math.isinf(score):
            return None

        if 0 < score < 1:
            score = score * 10

        return max(0.0, min(10.0, score))

    def normalize_lead(self, lead_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Normalize all fields in a lead record.
        Returns updated lead data with normalized fields.
        """
        normalized = lead_data.copy()
        custom_data = dict(normalized.get('custom_data') or {})

        normalized['email'] = self.normalize_email(normalized.get('email'))

        names = self.normalize_person_name(
            normalized.get('person_name'),
            first_name=normalized.pop('first_name', None),
            last_name=normalized.pop('last_name', None)
        )
        normalized['person_name'] = names['person_name']
        if names['first_name']:
            custom_data['first_name'] = names['first_name']
        if names['last_name']:
            custom_data['last_name'] = names['last_name']

        normalized['job_title'] = self.normalize_job_title(normalized.get('job_title'))
        normalized['website'] = self.normalize_url(normalized.get('website'))
        normalized['company_name'] = display_name(normalized.get('company_name'))

        if 'fit_score' in normalized:
            raw_score = normalized['fit_score']
            normalized['fit_score'] = self.normalize_fit_score(raw_score)
            if raw_score is not None and normalized['fit_score'] != raw_score:
                custom_data['raw_fit_score'] = raw_score

        normalized['custom_data'] = custom_data

        logger.debug(f"Normalized lead: {normalized.get('email') or normalized.get('person_name')}")

        return normalized

    def build_lead(self, payload: LeadCreate) -> Lead:
        """Create a transient Lead from an ingestion payload."""
        data = self.normalize_lead(payload.model_dump())

        status = data.get('status') or LeadStatus.NEW

        return Lead(
            id=uuid.uuid4(),
            company_name=data['company_name'],
            company_key=canonicalize(data['company_name']) or None,
            person_name=data['person_name'],
            job_title=data['job_title'],
            email=data['email'],
            website=data['website'],
            company_profile=data.get('company_profile'),
            status=LeadStatus(status).value,
            fit_score=data['fit_score'],
            icp_id=data.get('icp_id'),
            source=data.get('source'),
            custom_data=data['custom_data'],
            created_at=data.get('created_at') or datetime.utcnow(),
        )


# Singleton instance
normalization_service = NormalizationService()
