"""Attribution pipeline and association API routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from lead_attribution.database import get_db, store_errors
from lead_attribution.exceptions import AlreadyLinked, StoreError
from lead_attribution.schemas.pipeline import LinkCreate, PipelineRunRequest
from lead_attribution.schemas.report import PipelineRunSummary
from lead_attribution.services.association_store import AssociationStore
from lead_attribution.services.attribution_pipeline import AttributionPipeline
from lead_attribution.services.normalization import normalization_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Pipeline"])


@router.post("/pipeline/run", response_model=PipelineRunSummary)
def run_pipeline(request: PipelineRunRequest, db: Session = Depends(get_db)):
    """
    Run a set of ingested leads through attribution.

    Leads are processed in batches of BATCH_SIZE; each batch commits or
    rolls back on its own and gets its own report.
    """
    leads = [normalization_service.build_lead(payload) for payload in request.leads]
    logger.info(f"Pipeline run requested for {len(leads)} leads")

    return AttributionPipeline(db).run_batches(leads, request.config)


@router.post("/associations", status_code=201)
def create_association(link: LinkCreate, db: Session = Depends(get_db)):
    """Attach an owned record to an owner. 409 if the pair already exists."""
    store = AssociationStore(db)
    try:
        link_id = store.link(link.owned_id, link.owned_kind, link.owner_id, link.owner_kind)
        with store_errors("association commit"):
            db.commit()
    except AlreadyLinked as e:
        db.rollback()
        raise HTTPException(
            status_code=409,
            detail={"message": str(e), "link_id": e.link_id}
        )
    except StoreError as e:
        db.rollback()
        raise HTTPException(status_code=503, detail=str(e))

    return {"id": link_id, **link.model_dump(mode="json")}
