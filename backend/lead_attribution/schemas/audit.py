"""
Pydantic schemas for integrity audits.
"""
from typing import Optional, List
from uuid import UUID
from pydantic import BaseModel, Field

from lead_attribution.schemas.report import OrphanLead


class DuplicateLinkGroup(BaseModel):
    """Same owned record linked to the same owner more than once."""
    owned_id: str
    owned_kind: str
    owner_id: str
    owner_kind: str
    count: int


class MultiOwnerRecord(BaseModel):
    """Owned record linked to more than one distinct owner."""
    owned_id: str
    owned_kind: str
    distinct_owner_count: int


class AssociationAudit(BaseModel):
    owned_kind: str
    total_links: int = 0
    duplicates: List[DuplicateLinkGroup] = Field(default_factory=list)
    multi_owner: List[MultiOwnerRecord] = Field(default_factory=list)


class UnlinkedLead(BaseModel):
    """Lead whose canonical key has no Company row."""
    lead_id: UUID
    company_name: Optional[str] = None
    company_key: Optional[str] = None


class GhostCompany(BaseModel):
    """Company that no lead shares a canonical key with."""
    company_id: UUID
    company_key: str
    company_name: str
    website: Optional[str] = None


class IntegrityReport(BaseModel):
    leads_without_company: List[UnlinkedLead] = Field(default_factory=list)
    ghost_companies: List[GhostCompany] = Field(default_factory=list)
    orphan_leads: List[OrphanLead] = Field(default_factory=list)
    associations: List[AssociationAudit] = Field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not (
            self.leads_without_company
            or self.ghost_companies
            or self.orphan_leads
            or any(a.duplicates for a in self.associations)
        )
