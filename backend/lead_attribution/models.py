"""
SQLAlchemy ORM models.

Leads reference their ICP through a plain `icp_id` column rather than a
foreign key: references left behind by deleted ICPs are kept as-is and
surfaced by the ICP reconciler and the integrity audit.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Column, String, Boolean, Integer, Float, Text, DateTime, JSON, Index,
    ForeignKey, CheckConstraint, Uuid
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from lead_attribution.database import Base


JSONType = JSON().with_variant(JSONB, "postgresql")


# ============================================================================
# ENUMS
# ============================================================================

class LeadStatus(str, enum.Enum):
    NEW = "NEW"
    QUALIFIED = "QUALIFIED"
    NEEDS_RESEARCH = "NEEDS_RESEARCH"
    REVIEW_REQUIRED = "REVIEW_REQUIRED"
    DISQUALIFIED = "DISQUALIFIED"


class CleanupStatus(str, enum.Enum):
    KEPT = "KEPT"
    REJECTED = "REJECTED"
    REVIEW_REQUIRED = "REVIEW_REQUIRED"


class OwnedKind(str, enum.Enum):
    """Kinds of auxiliary records that can be attached to owners."""
    AGENT_PROMPT = "agent_prompt"
    LEAD_FEEDBACK = "lead_feedback"
    WORKFLOW_RUN = "workflow_run"
    LEAD = "lead"


class OwnerKind(str, enum.Enum):
    """Kinds of parent entities that can own auxiliary records."""
    USER = "user"
    COMPANY = "company"
    ICP = "icp"
    LEAD = "lead"
    WORKFLOW_RUN = "workflow_run"


def _in_clause(enum_cls) -> str:
    return ", ".join(f"'{member.value}'" for member in enum_cls)


# ============================================================================
# ICP MODEL
# ============================================================================

class ICP(Base):
    """Ideal Customer Profile."""
    __tablename__ = "icps"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<ICP(id={self.id}, name='{self.name}', active={self.is_active})>"


# ============================================================================
# COMPANY MODEL
# ============================================================================

class Company(Base):
    """Canonical, deduplicated business entity. One row per canonical key."""
    __tablename__ = "companies"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    company_key = Column(String(255), nullable=False, unique=True, index=True)
    company_name = Column(String(255), nullable=False)
    website = Column(String(500))
    company_profile = Column(Text)
    fit_score = Column(Float)
    icp_id = Column(Uuid, index=True)
    cleanup_status = Column(String(50))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, onupdate=datetime.utcnow)

    # One-way: company -> leads
    leads = relationship("Lead", foreign_keys="Lead.company_id")

    __table_args__ = (
        CheckConstraint(
            f"cleanup_status IS NULL OR cleanup_status IN ({_in_clause(CleanupStatus)})",
            name="chk_company_cleanup_status"
        ),
        CheckConstraint(
            "fit_score IS NULL OR (fit_score >= 0 AND fit_score <= 10)",
            name="chk_company_fit_score"
        ),
    )

    def __repr__(self):
        return f"<Company(id={self.id}, key='{self.company_key}', score={self.fit_score})>"


# ============================================================================
# LEAD MODEL
# ============================================================================

class Lead(Base):
    """A single contact-at-company observation."""
    __tablename__ = "leads"

    # ========================================================================
    # BASIC INFO
    # ========================================================================
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    source = Column(String(100))  # apollo, linkedin, google, manual, ...

    # ========================================================================
    # CONTACT INFO
    # ========================================================================
    person_name = Column(String(255))
    job_title = Column(String(255))
    email = Column(String(255), index=True)

    # ========================================================================
    # COMPANY INFO
    # ========================================================================
    company_name = Column(String(255))
    company_key = Column(String(255), index=True)
    website = Column(String(500))
    company_profile = Column(Text)
    company_id = Column(Uuid, ForeignKey("companies.id", ondelete="SET NULL"), index=True)

    # ========================================================================
    # QUALIFICATION
    # ========================================================================
    status = Column(String(50), nullable=False, default=LeadStatus.NEW.value)
    fit_score = Column(Float)  # 0-10
    icp_id = Column(Uuid, index=True)

    # Extension attributes (first/last name, source payload, ...)
    custom_data = Column(JSONType, default=dict)

    # ========================================================================
    # TIMESTAMPS
    # ========================================================================
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(f"status IN ({_in_clause(LeadStatus)})", name="chk_lead_status"),
        CheckConstraint(
            "fit_score IS NULL OR (fit_score >= 0 AND fit_score <= 10)",
            name="chk_lead_fit_score"
        ),
    )

    def __repr__(self):
        return f"<Lead(id={self.id}, company='{self.company_name}', status='{self.status}')>"


# ============================================================================
# ASSOCIATION LINKS
# ============================================================================

class AssociationLink(Base):
    """
    Polymorphic ownership link: "this owned record belongs to this owner".

    Replaces the per-kind link tables (agent_prompts_link,
    lead_feedback_link, leads_link, workflow_runs_link_table). Ids are
    stored as strings so owners and owned records of any id type fit.
    """
    __tablename__ = "association_links"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owned_id = Column(String(64), nullable=False)
    owned_kind = Column(String(50), nullable=False)
    owner_id = Column(String(64), nullable=False)
    owner_kind = Column(String(50), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index(
            "uq_association_links_pair",
            "owned_kind", "owned_id", "owner_kind", "owner_id",
            unique=True
        ),
        Index("idx_association_links_owner", "owner_kind", "owner_id"),
        CheckConstraint(f"owned_kind IN ({_in_clause(OwnedKind)})", name="chk_owned_kind"),
        CheckConstraint(f"owner_kind IN ({_in_clause(OwnerKind)})", name="chk_owner_kind"),
    )

    def __repr__(self):
        return (
            f"<AssociationLink({self.owned_kind}:{self.owned_id} -> "
            f"{self.owner_kind}:{self.owner_id})>"
        )
