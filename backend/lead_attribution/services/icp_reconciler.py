"""
ICP reconciliation for lead records.

A lead is an orphan when its ICP reference is null or does not resolve
against the current catalog. Null references are filled only from a
fallback ICP the caller supplies; stale references are only reported.
"""

import enum
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from lead_attribution.database import store_errors
from lead_attribution.exceptions import UnresolvedIcpReference
from lead_attribution.models import Company, ICP, Lead
from lead_attribution.schemas.report import OrphanLead
from lead_attribution.services.lead_deduplicator import canonicalize

logger = logging.getLogger(__name__)


def _to_uuid(value: Any) -> Optional[uuid.UUID]:
    """Safely convert to UUID; None when the value is not a UUID."""
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, AttributeError, TypeError):
        return None


class IcpCatalog:
    """Read-only snapshot of the valid ICPs."""

    def __init__(self, icps: Iterable[ICP] = ()):
        self._by_id: Dict[uuid.UUID, ICP] = {}
        for icp in icps:
            icp_id = _to_uuid(icp.id)
            if icp_id is not None:
                self._by_id[icp_id] = icp

    @classmethod
    def load(cls, db: Session, active_only: bool = False) -> "IcpCatalog":
        stmt = select(ICP)
        if active_only:
            stmt = stmt.where(ICP.is_active.is_(True))
        with store_errors("ICP catalog load"):
            icps = db.execute(stmt).scalars().all()
        logger.info(f"Loaded ICP catalog with {len(icps)} entries")
        return cls(icps)

    def resolve(self, icp_id: Any) -> Optional[ICP]:
        key = _to_uuid(icp_id)
        if key is None:
            return None
        return self._by_id.get(key)

    def __contains__(self, icp_id: Any) -> bool:
        return self.resolve(icp_id) is not None

    def __len__(self) -> int:
        return len(self._by_id)

    @property
    def ids(self) -> List[uuid.UUID]:
        return list(self._by_id)


class AssignmentOutcome(str, enum.Enum):
    ALREADY_ASSIGNED = "already_assigned"
    FALLBACK_ASSIGNED = "fallback_assigned"
    UNRESOLVED = "unresolved"
    STALE_REFERENCE = "stale_reference"


@dataclass
class AssignmentResult:
    lead_id: Any
    outcome: AssignmentOutcome
    icp_id: Optional[uuid.UUID] = None
    previous_icp_id: Any = None

    @property
    def changed(self) -> bool:
        return self.outcome == AssignmentOutcome.FALLBACK_ASSIGNED

    @property
    def is_orphan(self) -> bool:
        return self.outcome in (AssignmentOutcome.UNRESOLVED, AssignmentOutcome.STALE_REFERENCE)


class IcpReconciler:
    """Assigns missing ICP references and reports orphans."""

    def resolve(self, lead: Lead, catalog: IcpCatalog) -> ICP:
        """
        Return the ICP a lead points at.

        Raises:
            UnresolvedIcpReference: null or dangling reference
        """
        icp = catalog.resolve(lead.icp_id)
        if icp is None:
            raise UnresolvedIcpReference(lead.icp_id, lead_id=lead.id)
        return icp

    def assign_if_missing(
        self,
        lead: Lead,
        catalog: IcpCatalog,
        fallback_icp_id: Any = None
    ) -> AssignmentResult:
        """
        Fill a null ICP reference from the caller's fallback.

        Stale (non-null, unresolvable) references are never reassigned.

        Raises:
            UnresolvedIcpReference: the fallback itself is not in the catalog
        """
        fallback = None
        if fallback_icp_id is not None:
            fallback = catalog.resolve(fallback_icp_id)
            if fallback is None:
                raise UnresolvedIcpReference(fallback_icp_id)

        try:
            icp = self.resolve(lead, catalog)
            return AssignmentResult(
                lead_id=lead.id,
                outcome=AssignmentOutcome.ALREADY_ASSIGNED,
                icp_id=_to_uuid(icp.id),
                previous_icp_id=lead.icp_id,
            )
        except UnresolvedIcpReference:
            pass

        if lead.icp_id is not None:
            logger.warning(f"Lead {lead.id} references unknown ICP {lead.icp_id}")
            return AssignmentResult(
                lead_id=lead.id,
                outcome=AssignmentOutcome.STALE_REFERENCE,
                previous_icp_id=lead.icp_id,
            )

        if fallback is None:
            return AssignmentResult(lead_id=lead.id, outcome=AssignmentOutcome.UNRESOLVED)

        lead.icp_id = _to_uuid(fallback.id)
        logger.debug(f"Lead {lead.id} assigned fallback ICP {fallback.id}")
        return AssignmentResult(
            lead_id=lead.id,
            outcome=AssignmentOutcome.FALLBACK_ASSIGNED,
            icp_id=lead.icp_id,
        )

    def find_orphans(self, leads: Iterable[Lead], catalog: IcpCatalog) -> List[Lead]:
        """Leads whose ICP reference is null or does not resolve."""
        return [lead for lead in leads if catalog.resolve(lead.icp_id) is None]

    def describe_orphans(
        self,
        leads: Iterable[Lead],
        catalog: IcpCatalog,
        companies_by_key: Optional[Mapping[str, Company]] = None
    ) -> List[OrphanLead]:
        """
        Orphans with their company context, joined by canonical key.

        The company's ICP is attached as a suggestion only.
        """
        companies_by_key = companies_by_key or {}
        described = []

        for lead in self.find_orphans(leads, catalog):
            key = lead.company_key or canonicalize(lead.company_name) or None
            company = companies_by_key.get(key) if key else None
            company_icp = catalog.resolve(company.icp_id) if company is not None else None

            described.append(OrphanLead(
                lead_id=lead.id,
                company_key=key,
                icp_id=str(lead.icp_id) if lead.icp_id is not None else None,
                reason="missing" if lead.icp_id is None else "stale",
                company_id=company.id if company is not None else None,
                company_icp_id=_to_uuid(company_icp.id) if company_icp is not None else None,
            ))

        if described:
            logger.warning(f"{len(described)} leads without a resolvable ICP")

        return described
