"""
Pydantic schemas for ingested leads
"""

from pydantic import BaseModel, EmailStr, Field, validator
from typing import Optional, Dict, Any
from uuid import UUID
from datetime import datetime

from lead_attribution.models import LeadStatus


class LeadCreate(BaseModel):
    """Single lead observation from a scraper or import"""
    company_name: Optional[str] = None
    person_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    job_title: Optional[str] = None
    email: Optional[EmailStr] = None
    website: Optional[str] = None
    company_profile: Optional[str] = None
    status: LeadStatus = LeadStatus.NEW
    # Raw score; 0-1 scale values are rescaled during normalization
    fit_score: Optional[Any] = None
    icp_id: Optional[UUID] = None
    source: Optional[str] = None
    created_at: Optional[datetime] = None
    custom_data: Dict[str, Any] = Field(default_factory=dict)

    @validator('status', pre=True)
    def validate_status(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    class Config:
        json_schema_extra = {
            "example": {
                "company_name": "Trez Capital",
                "person_name": "Jane Smith",
                "job_title": "Managing Director",
                "email": "jane.smith@trezcapital.com",
                "website": "https://www.trezcapital.com",
                "fit_score": 8,
                "source": "apollo_domain"
            }
        }

