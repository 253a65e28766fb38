"""Pydantic schemas package."""
from lead_attribution.schemas.lead import LeadCreate
from lead_attribution.schemas.pipeline import (
    AuxiliaryLink,
    LinkCreate,
    PipelineConfig,
    PipelineRunRequest,
)
from lead_attribution.schemas.report import (
    CompanySummary,
    DomainMatchEntry,
    DuplicateLead,
    IcpAssignmentEntry,
    LinkEntry,
    OrphanLead,
    PipelineReport,
    PipelineRunSummary,
    RejectedLead,
)
from lead_attribution.schemas.audit import (
    AssociationAudit,
    DuplicateLinkGroup,
    GhostCompany,
    IntegrityReport,
    MultiOwnerRecord,
    UnlinkedLead,
)

__all__ = [
    "LeadCreate",
    "AuxiliaryLink",
    "LinkCreate",
    "PipelineConfig",
    "PipelineRunRequest",
    "CompanySummary",
    "DomainMatchEntry",
    "DuplicateLead",
    "IcpAssignmentEntry",
    "LinkEntry",
    "OrphanLead",
    "PipelineReport",
    "PipelineRunSummary",
    "RejectedLead",
    "AssociationAudit",
    "DuplicateLinkGroup",
    "GhostCompany",
    "IntegrityReport",
    "MultiOwnerRecord",
    "UnlinkedLead",
]
