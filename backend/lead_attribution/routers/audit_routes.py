"""Integrity audit API routes (read-only)."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from lead_attribution.database import get_db
from lead_attribution.exceptions import StoreError
from lead_attribution.models import OwnedKind
from lead_attribution.schemas.audit import (
    DuplicateLinkGroup,
    IntegrityReport,
    MultiOwnerRecord,
)
from lead_attribution.schemas.report import OrphanLead
from lead_attribution.services.association_store import AssociationStore
from lead_attribution.services.integrity_audit import IntegrityAuditor

router = APIRouter(prefix="/api/v1/audit", tags=["Audit"])


@router.get("/associations/duplicates", response_model=List[DuplicateLinkGroup])
def get_duplicate_links(
    kind: OwnedKind = Query(..., description="Owned record kind"),
    db: Session = Depends(get_db)
):
    """Owned records linked to the same owner more than once."""
    try:
        return AssociationStore(db).find_duplicates(kind)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/associations/multi-owner", response_model=List[MultiOwnerRecord])
def get_multi_owner_links(
    kind: OwnedKind = Query(..., description="Owned record kind"),
    db: Session = Depends(get_db)
):
    """Owned records attached to more than one distinct owner."""
    try:
        return AssociationStore(db).find_multi_owner(kind)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/orphans", response_model=List[OrphanLead])
def get_orphan_leads(db: Session = Depends(get_db)):
    """Leads whose ICP reference is missing or dangling."""
    try:
        return IntegrityAuditor(db).orphan_leads()
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/integrity", response_model=IntegrityReport)
def get_integrity_report(
    kind: Optional[List[OwnedKind]] = Query(None, description="Owned kinds to audit (default: all)"),
    db: Session = Depends(get_db)
):
    """
    Full integrity audit.

    Covers:
    - leads with no company (by canonical key)
    - companies with no leads
    - leads without a resolvable ICP
    - duplicate and multi-owner association links
    """
    try:
        return IntegrityAuditor(db).run(kind)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
