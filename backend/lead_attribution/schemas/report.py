"""
Pydantic schemas for pipeline reports.

The report is the only externally observed output of a pipeline run.
"""
from typing import Optional, List
from uuid import UUID
from pydantic import BaseModel, Field

from lead_attribution.services.domain_matcher import MatchKind


class DomainMatchEntry(BaseModel):
    lead_id: UUID
    normalized_domain: str
    match_kind: MatchKind


class RejectedLead(BaseModel):
    lead_id: UUID
    company_name: Optional[str] = None
    reason: str
    detail: Optional[str] = None


class DuplicateLead(BaseModel):
    """A lead whose company fields were superseded by a newer lead."""
    lead_id: UUID
    company_key: str
    superseded_by: UUID


class CompanySummary(BaseModel):
    company_id: UUID
    company_key: str
    company_name: str
    website: Optional[str] = None
    fit_score: Optional[float] = None
    icp_id: Optional[UUID] = None
    lead_count: int = 0
    created: bool = False


class OrphanLead(BaseModel):
    lead_id: UUID
    company_key: Optional[str] = None
    icp_id: Optional[str] = None
    reason: str  # missing | stale
    company_id: Optional[UUID] = None
    company_icp_id: Optional[UUID] = None


class IcpAssignmentEntry(BaseModel):
    lead_id: UUID
    icp_id: UUID
    outcome: str


class LinkEntry(BaseModel):
    owned_id: str
    owned_kind: str
    owner_id: Optional[str] = None
    owner_kind: str
    link_id: Optional[int] = None
    detail: Optional[str] = None


class PipelineReport(BaseModel):
    batch_number: int = 0
    batch_size: int = 0

    matched: List[DomainMatchEntry] = Field(default_factory=list)
    domain_rejected: List[RejectedLead] = Field(default_factory=list)
    unattributed: List[RejectedLead] = Field(default_factory=list)
    duplicates: List[DuplicateLead] = Field(default_factory=list)
    kept: List[CompanySummary] = Field(default_factory=list)
    rejected_by_score: List[CompanySummary] = Field(default_factory=list)
    orphans: List[OrphanLead] = Field(default_factory=list)
    icp_assignments: List[IcpAssignmentEntry] = Field(default_factory=list)
    linked: List[LinkEntry] = Field(default_factory=list)
    already_linked: List[LinkEntry] = Field(default_factory=list)
    unresolved_links: List[LinkEntry] = Field(default_factory=list)

    completed_stages: List[str] = Field(default_factory=list)
    failed_stage: Optional[str] = None
    error: Optional[str] = None
    committed: bool = False

    @property
    def rejected_count(self) -> int:
        return len(self.duplicates) + len(self.rejected_by_score) + len(self.domain_rejected)

    @property
    def succeeded(self) -> bool:
        return self.error is None


class PipelineRunSummary(BaseModel):
    batches: List[PipelineReport] = Field(default_factory=list)
    cancelled: bool = False
    total_leads: int = 0

    @property
    def failed_batches(self) -> List[PipelineReport]:
        return [b for b in self.batches if not b.succeeded]

    @property
    def committed_batches(self) -> List[PipelineReport]:
        return [b for b in self.batches if b.committed]
