"""
Pydantic schemas for attribution pipeline requests.
"""
from typing import Optional, List
from uuid import UUID
from pydantic import BaseModel, Field, validator

from lead_attribution.models import OwnedKind, OwnerKind
from lead_attribution.schemas.lead import LeadCreate


class AuxiliaryLink(BaseModel):
    """
    An auxiliary record to attach once the batch's companies exist.

    Give either `owner_id`, or `company_name` with owner_kind=company to
    attach to the canonical company produced by this batch.
    """
    owned_id: str = Field(..., min_length=1, max_length=64)
    owned_kind: OwnedKind
    owner_kind: OwnerKind = OwnerKind.COMPANY
    owner_id: Optional[str] = Field(None, min_length=1, max_length=64)
    company_name: Optional[str] = None

    @validator('owned_id', 'owner_id', pre=True)
    def coerce_id(cls, v):
        if v is None:
            return v
        return str(v)

    @validator('company_name')
    def require_owner(cls, v, values):
        if v is not None and values.get('owner_kind') != OwnerKind.COMPANY:
            raise ValueError('company_name can only address owner_kind=company')
        return v


class PipelineConfig(BaseModel):
    """Per-run options. Absent options disable the matching stage."""
    target_domains: Optional[List[str]] = None
    min_fit_score: Optional[float] = Field(None, ge=0, le=10)
    fallback_icp_id: Optional[UUID] = None
    auxiliary_links: List[AuxiliaryLink] = Field(default_factory=list)


class PipelineRunRequest(BaseModel):
    leads: List[LeadCreate]
    config: PipelineConfig = Field(default_factory=PipelineConfig)

    @validator('leads')
    def validate_leads_not_empty(cls, v):
        if not v:
            raise ValueError('leads list cannot be empty')
        return v


class LinkCreate(BaseModel):
    owned_id: str = Field(..., min_length=1, max_length=64)
    owned_kind: OwnedKind
    owner_id: str = Field(..., min_length=1, max_length=64)
    owner_kind: OwnerKind

    @validator('owned_id', 'owner_id', pre=True)
    def coerce_id(cls, v):
        return str(v)
