"""Main FastAPI application."""

from fastapi import FastAPI
import logging

from lead_attribution.config import settings
from lead_attribution.routers import audit_routes, pipeline_routes

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Lead Attribution API",
    description="Lead attribution, ICP reconciliation and integrity audits",
    version="1.0.0",
    redirect_slashes=False
)

app.include_router(pipeline_routes.router)
app.include_router(audit_routes.router)


@app.get("/health")
def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}


logger.info(f"Lead attribution API ready ({settings.ENVIRONMENT})")
