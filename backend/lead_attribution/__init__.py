"""
Lead attribution core.

Matches discovered leads against requested domains, collapses them into
canonical companies, reconciles ICP classification references and keeps
polymorphic ownership links for auxiliary records (prompts, feedback,
workflow runs).

Usage:
    from lead_attribution.database import SessionLocal
    from lead_attribution.services.attribution_pipeline import AttributionPipeline

    with SessionLocal() as db:
        report = AttributionPipeline(db).run(leads, PipelineConfig(min_fit_score=6))
"""

__version__ = "1.0.0"
