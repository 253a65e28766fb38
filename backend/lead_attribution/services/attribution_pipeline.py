"""
Attribution pipeline.

Flow per batch:
1. Domain match against the run's target domains (if given)
2. Deduplicate into canonical companies
3. Fit score filter (if a minimum is given)
4. ICP reconciliation (fallback only if given)
5. Persist companies and leads
6. Attach caller-supplied auxiliary links

Each batch is one transaction: a store failure rolls the whole batch back
and yields a partial report. Separate batches commit independently.
"""

import logging
import threading
import uuid
from typing import Dict, List, Optional, Sequence

from sqlalchemy import inspect, select
from sqlalchemy.orm import Session

from lead_attribution.config import settings
from lead_attribution.database import store_errors
from lead_attribution.exceptions import AlreadyLinked, StoreError, UnresolvedIcpReference
from lead_attribution.models import CleanupStatus, Company, Lead, LeadStatus
from lead_attribution.schemas.pipeline import AuxiliaryLink, PipelineConfig
from lead_attribution.schemas.report import (
    CompanySummary,
    DomainMatchEntry,
    DuplicateLead,
    IcpAssignmentEntry,
    LinkEntry,
    PipelineReport,
    PipelineRunSummary,
    RejectedLead,
)
from lead_attribution.services.association_store import AssociationStore
from lead_attribution.services.domain_matcher import DomainMatcher
from lead_attribution.services.icp_reconciler import IcpCatalog, IcpReconciler
from lead_attribution.services.lead_deduplicator import (
    LeadDeduplicator,
    MergeOutcome,
    canonicalize,
)
from lead_attribution.services.normalization import NormalizationService

logger = logging.getLogger(__name__)


STAGE_CONFIGURE = "configure"
STAGE_DOMAIN_MATCH = "domain_match"
STAGE_DEDUPLICATE = "deduplicate"
STAGE_FIT_SCORE = "fit_score_filter"
STAGE_ICP = "icp_reconcile"
STAGE_PERSIST = "persist"
STAGE_ASSOCIATE = "associate"
STAGE_COMMIT = "commit"

# Lead attributes the stages write; restored when a batch rolls back
LEAD_STATE_FIELDS = ("status", "icp_id", "company_id", "company_key")


def _summary(outcome: MergeOutcome) -> CompanySummary:
    company = outcome.company
    return CompanySummary(
        company_id=company.id,
        company_key=company.company_key,
        company_name=company.company_name,
        website=company.website,
        fit_score=company.fit_score,
        icp_id=company.icp_id,
        lead_count=len(outcome.leads),
        created=outcome.created,
    )


def _snapshot(batch: Sequence[Lead]) -> List[tuple]:
    return [
        (lead, {attr: getattr(lead, attr) for attr in LEAD_STATE_FIELDS})
        for lead in batch
    ]


def _restore(snapshot: List[tuple]) -> None:
    """Put transient leads back as they were handed in."""
    for lead, state in snapshot:
        # Persistent leads were expired by the rollback and reload from the store
        if inspect(lead).persistent:
            continue
        for attr, value in state.items():
            setattr(lead, attr, value)


class AttributionPipeline:
    """
    Runs batches of freshly ingested leads through attribution.

    Steps:
    1. Label leads against target domains
    2. Merge leads into companies by canonical key
    3. Split companies by fit score
    4. Assign/report ICP references
    5. Write companies and leads
    6. Record auxiliary association links
    """

    def __init__(
        self,
        db: Session,
        catalog: Optional[IcpCatalog] = None,
        deduplicator: Optional[LeadDeduplicator] = None,
        reconciler: Optional[IcpReconciler] = None,
        association_store: Optional[AssociationStore] = None
    ):
        self.db = db
        self.catalog = catalog
        self.deduplicator = deduplicator or LeadDeduplicator()
        self.reconciler = reconciler or IcpReconciler()
        self.association_store = association_store or AssociationStore(db)

    def run(
        self,
        batch: Sequence[Lead],
        config: Optional[PipelineConfig] = None,
        batch_number: int = 0
    ) -> PipelineReport:
        """
        Process one batch in a single transaction.

        Returns the report; on a store failure the batch is rolled back and
        the report carries the failed stage and error.
        """
        config = config or PipelineConfig()
        report = PipelineReport(batch_number=batch_number, batch_size=len(batch))
        stage = STAGE_CONFIGURE

        for lead in batch:
            if lead.id is None:
                lead.id = uuid.uuid4()
        snapshot = _snapshot(batch)

        try:
            catalog = self.catalog if self.catalog is not None else IcpCatalog.load(self.db)
            if config.fallback_icp_id is not None and config.fallback_icp_id not in catalog:
                raise UnresolvedIcpReference(config.fallback_icp_id)

            stage = STAGE_DOMAIN_MATCH
            leads = self._match_domains(batch, config, report)
            report.completed_stages.append(stage)

            stage = STAGE_DEDUPLICATE
            outcomes = self._deduplicate(leads, report)
            report.completed_stages.append(stage)

            stage = STAGE_FIT_SCORE
            rejected_keys = self._filter_by_score(outcomes, config, report)
            report.completed_stages.append(stage)

            stage = STAGE_ICP
            self._reconcile_icps(outcomes, catalog, config, report)
            report.completed_stages.append(stage)

            stage = STAGE_PERSIST
            self._persist(outcomes, rejected_keys, config)
            report.completed_stages.append(stage)

            stage = STAGE_ASSOCIATE
            self._associate(outcomes, config.auxiliary_links, report)
            report.completed_stages.append(stage)

            stage = STAGE_COMMIT
            with store_errors("batch commit"):
                self.db.commit()
            report.committed = True

        except (StoreError, UnresolvedIcpReference) as e:
            self.db.rollback()
            _restore(snapshot)
            report.failed_stage = stage
            report.error = str(e)
            logger.error(f"Batch {batch_number} failed at {stage}, rolled back: {e}")
            return report
        except Exception as e:
            self.db.rollback()
            _restore(snapshot)
            logger.error(f"Batch {batch_number} aborted at {stage}: {e}")
            raise

        logger.info(
            f"Batch {batch_number}: {len(report.kept)} kept, "
            f"{len(report.rejected_by_score)} rejected by score, "
            f"{len(report.duplicates)} superseded, {len(report.orphans)} orphans"
        )
        return report

    def run_batches(
        self,
        leads: Sequence[Lead],
        config: Optional[PipelineConfig] = None,
        batch_size: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> PipelineRunSummary:
        """
        Split leads into batches and run each in its own transaction.

        Cancellation is checked between batches only. A failed batch does
        not stop the run.
        """
        if batch_size is None:
            batch_size = settings.BATCH_SIZE
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        summary = PipelineRunSummary(total_leads=len(leads))

        for number, start in enumerate(range(0, len(leads), batch_size), start=1):
            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled = True
                logger.warning(f"Pipeline cancelled before batch {number}")
                break
            summary.batches.append(
                self.run(leads[start:start + batch_size], config, batch_number=number)
            )

        logger.info(
            f"Pipeline run finished: {len(summary.batches)} batches, "
            f"{len(summary.failed_batches)} failed, cancelled={summary.cancelled}"
        )
        return summary

    # ========================================================================
    # STAGES
    # ========================================================================

    def _match_domains(
        self,
        batch: Sequence[Lead],
        config: PipelineConfig,
        report: PipelineReport
    ) -> List[Lead]:
        if config.target_domains is None:
            return list(batch)

        matcher = DomainMatcher(config.target_domains)
        accepted = []

        for lead in batch:
            candidate = lead.website or NormalizationService.extract_domain(lead.email)
            result = matcher.match(candidate)
            if result.matched:
                report.matched.append(DomainMatchEntry(
                    lead_id=lead.id,
                    normalized_domain=result.normalized_domain,
                    match_kind=result.match_kind,
                ))
                accepted.append(lead)
            else:
                logger.debug(f"Domain mismatch for lead {lead.id}: '{result.normalized_domain}'")
                report.domain_rejected.append(RejectedLead(
                    lead_id=lead.id,
                    company_name=lead.company_name,
                    reason="domain_mismatch",
                    detail=result.normalized_domain or None,
                ))

        return accepted

    def _deduplicate(self, leads: List[Lead], report: PipelineReport) -> List[MergeOutcome]:
        keyed = []
        for lead in leads:
            if canonicalize(lead.company_name):
                keyed.append(lead)
            else:
                report.unattributed.append(RejectedLead(
                    lead_id=lead.id,
                    company_name=lead.company_name,
                    reason="missing_company_name",
                ))

        keys = {canonicalize(lead.company_name) for lead in keyed}
        existing: Dict[str, Company] = {}
        history: Dict[str, List[Lead]] = {}
        if keys:
            with store_errors("company lookup"):
                rows = self.db.execute(
                    select(Company).where(Company.company_key.in_(keys))
                ).scalars().all()
                stored_leads = self.db.execute(
                    select(Lead).where(Lead.company_key.in_(keys))
                ).scalars().all()
            existing = {company.company_key: company for company in rows}
            for lead in stored_leads:
                history.setdefault(lead.company_key, []).append(lead)

        outcomes = self.deduplicator.merge_all(keyed, existing, history)

        for outcome in outcomes:
            for lead in outcome.superseded:
                report.duplicates.append(DuplicateLead(
                    lead_id=lead.id,
                    company_key=outcome.company.company_key,
                    superseded_by=outcome.primary.id,
                ))

        return outcomes

    def _filter_by_score(
        self,
        outcomes: List[MergeOutcome],
        config: PipelineConfig,
        report: PipelineReport
    ) -> set:
        if config.min_fit_score is None:
            report.kept.extend(_summary(o) for o in outcomes)
            return set()

        result = self.deduplicator.filter_by_fit_score(
            [o.company for o in outcomes], config.min_fit_score
        )
        rejected_keys = {company.company_key for company in result.rejected}

        for outcome in outcomes:
            if outcome.company.company_key in rejected_keys:
                report.rejected_by_score.append(_summary(outcome))
            else:
                report.kept.append(_summary(outcome))

        return rejected_keys

    def _reconcile_icps(
        self,
        outcomes: List[MergeOutcome],
        catalog: IcpCatalog,
        config: PipelineConfig,
        report: PipelineReport
    ) -> None:
        companies_by_key = {o.company.company_key: o.company for o in outcomes}
        leads = [lead for o in outcomes for lead in o.leads]

        for lead in leads:
            result = self.reconciler.assign_if_missing(lead, catalog, config.fallback_icp_id)
            if result.changed:
                report.icp_assignments.append(IcpAssignmentEntry(
                    lead_id=lead.id,
                    icp_id=result.icp_id,
                    outcome=result.outcome.value,
                ))

        report.orphans.extend(
            self.reconciler.describe_orphans(leads, catalog, companies_by_key)
        )

        # Company takes the newest resolvable ICP among stored and batch leads;
        # with none resolvable it keeps what it has
        for outcome in outcomes:
            for lead in outcome.ranked:
                if catalog.resolve(lead.icp_id) is not None:
                    outcome.company.icp_id = lead.icp_id
                    break

        for summary in report.kept + report.rejected_by_score:
            summary.icp_id = companies_by_key[summary.company_key].icp_id

    def _persist(
        self,
        outcomes: List[MergeOutcome],
        rejected_keys: set,
        config: PipelineConfig
    ) -> None:
        with store_errors("batch persist"):
            for outcome in outcomes:
                company = outcome.company
                rejected = company.company_key in rejected_keys
                if config.min_fit_score is not None:
                    company.cleanup_status = (
                        CleanupStatus.REJECTED.value if rejected else CleanupStatus.KEPT.value
                    )
                self.db.add(company)

                for lead in outcome.leads:
                    lead.company_id = company.id
                    if rejected:
                        lead.status = LeadStatus.DISQUALIFIED.value
                    self.db.add(lead)

            self.db.flush()

    def _associate(
        self,
        outcomes: List[MergeOutcome],
        links: List[AuxiliaryLink],
        report: PipelineReport
    ) -> None:
        if not links:
            return

        companies_by_key = {o.company.company_key: o.company for o in outcomes}

        for aux in links:
            owner_id = aux.owner_id
            if aux.company_name is not None:
                company = companies_by_key.get(canonicalize(aux.company_name))
                owner_id = str(company.id) if company is not None else None

            entry = LinkEntry(
                owned_id=aux.owned_id,
                owned_kind=aux.owned_kind.value,
                owner_id=owner_id,
                owner_kind=aux.owner_kind.value,
            )

            if owner_id is None:
                entry.detail = "owner not found in batch"
                report.unresolved_links.append(entry)
                logger.warning(
                    f"No owner for {aux.owned_kind.value}:{aux.owned_id} "
                    f"(company '{aux.company_name}')"
                )
                continue

            try:
                entry.link_id = self.association_store.link(
                    aux.owned_id, aux.owned_kind, owner_id, aux.owner_kind
                )
                report.linked.append(entry)
            except AlreadyLinked as e:
                entry.link_id = e.link_id
                entry.detail = str(e)
                report.already_linked.append(entry)
