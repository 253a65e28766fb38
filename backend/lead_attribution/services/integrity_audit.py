"""
Read-only integrity audit over stored leads, companies and links.

Leads and companies are joined by canonical key, never by raw company
name. Findings feed operator cleanup; nothing here writes.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from lead_attribution.database import store_errors
from lead_attribution.models import Company, ICP, Lead, OwnedKind
from lead_attribution.schemas.audit import (
    AssociationAudit,
    GhostCompany,
    IntegrityReport,
    UnlinkedLead,
)
from lead_attribution.schemas.report import OrphanLead
from lead_attribution.services.association_store import AssociationStore, KindLike
from lead_attribution.services.icp_reconciler import IcpCatalog, IcpReconciler

logger = logging.getLogger(__name__)


class IntegrityAuditor:
    """Database integrity checks for the attribution tables."""

    def __init__(self, db: Session, association_store: Optional[AssociationStore] = None):
        self.db = db
        self.association_store = association_store or AssociationStore(db)
        self.reconciler = IcpReconciler()

    def leads_without_company(self) -> List[UnlinkedLead]:
        """Leads whose canonical key has no Company row."""
        stmt = (
            select(Lead)
            .outerjoin(Company, Lead.company_key == Company.company_key)
            .where(Company.id.is_(None))
            .order_by(Lead.company_key, Lead.created_at)
        )
        with store_errors("unlinked lead audit"):
            leads = self.db.execute(stmt).scalars().all()

        return [
            UnlinkedLead(lead_id=lead.id, company_name=lead.company_name, company_key=lead.company_key)
            for lead in leads
        ]

    def ghost_companies(self) -> List[GhostCompany]:
        """Companies no lead shares a canonical key with."""
        stmt = (
            select(Company)
            .outerjoin(Lead, Lead.company_key == Company.company_key)
            .where(Lead.id.is_(None))
            .order_by(Company.company_key)
        )
        with store_errors("ghost company audit"):
            companies = self.db.execute(stmt).scalars().all()

        return [
            GhostCompany(
                company_id=company.id,
                company_key=company.company_key,
                company_name=company.company_name,
                website=company.website,
            )
            for company in companies
        ]

    def orphan_leads(self, catalog: Optional[IcpCatalog] = None) -> List[OrphanLead]:
        """Leads with a null ICP reference or one pointing at no ICP row."""
        catalog = catalog if catalog is not None else IcpCatalog.load(self.db)

        stmt = (
            select(Lead)
            .outerjoin(ICP, Lead.icp_id == ICP.id)
            .where(ICP.id.is_(None))
            .order_by(Lead.company_key, Lead.created_at)
        )
        with store_errors("orphan lead audit"):
            leads = self.db.execute(stmt).scalars().all()
            keys = {lead.company_key for lead in leads if lead.company_key}
            companies = []
            if keys:
                companies = self.db.execute(
                    select(Company).where(Company.company_key.in_(keys))
                ).scalars().all()

        return self.reconciler.describe_orphans(
            leads, catalog, {company.company_key: company for company in companies}
        )

    def association_audit(self, kind: KindLike) -> AssociationAudit:
        owned_kind = OwnedKind(kind).value
        return AssociationAudit(
            owned_kind=owned_kind,
            total_links=self.association_store.total_links(owned_kind),
            duplicates=self.association_store.find_duplicates(owned_kind),
            multi_owner=self.association_store.find_multi_owner(owned_kind),
        )

    def run(self, kinds: Optional[Iterable[KindLike]] = None) -> IntegrityReport:
        """Run every check. Association audits cover all owned kinds by default."""
        kinds = list(kinds) if kinds is not None else list(OwnedKind)

        report = IntegrityReport(
            leads_without_company=self.leads_without_company(),
            ghost_companies=self.ghost_companies(),
            orphan_leads=self.orphan_leads(),
            associations=[self.association_audit(kind) for kind in kinds],
        )

        logger.info(
            f"Integrity audit: {len(report.leads_without_company)} leads without company, "
            f"{len(report.ghost_companies)} ghost companies, "
            f"{len(report.orphan_leads)} orphan leads, healthy={report.healthy}"
        )
        return report
