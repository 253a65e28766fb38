# tests/services/test_attribution_pipeline.py
"""
Tests for AttributionPipeline

Coverage:
- End-to-end dedup + fit score filter
- Domain labelling against target domains
- ICP fallback / orphan reporting
- Auxiliary links (linked, already linked, unresolved)
- One transaction per batch: store failures roll back and report
- Batching and cooperative cancellation

Run with: pytest tests/services/test_attribution_pipeline.py -v
"""

import pytest
from unittest.mock import Mock, patch
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from lead_attribution.config import settings
from lead_attribution.models import AssociationLink, CleanupStatus, Company, Lead, LeadStatus
from lead_attribution.schemas.pipeline import AuxiliaryLink, PipelineConfig
from lead_attribution.services.attribution_pipeline import (
    STAGE_COMMIT,
    STAGE_CONFIGURE,
    STAGE_DEDUPLICATE,
    STAGE_DOMAIN_MATCH,
    STAGE_PERSIST,
    AttributionPipeline,
)
from lead_attribution.services.domain_matcher import MatchKind


def _count(db, model):
    return db.execute(select(func.count()).select_from(model)).scalar_one()


def _connection_lost():
    return OperationalError("COMMIT", {}, Exception("server closed the connection unexpectedly"))


@pytest.fixture
def pipeline(db):
    return AttributionPipeline(db)


@pytest.fixture
def acme_beta_batch(make_lead):
    """Two Acme leads (4 and 8) and one Beta lead (2)"""
    return [
        make_lead("acme inc", age_minutes=30, fit_score=4, website="https://old.acme.com"),
        make_lead("Acme Inc", age_minutes=5, fit_score=8, website="https://acme.com"),
        make_lead("Beta LLC", age_minutes=10, fit_score=2),
    ]


# ============================================================================
# END TO END
# ============================================================================

class TestRun:

    def test_dedup_and_fit_score(self, pipeline, db, acme_beta_batch):
        old_acme, new_acme, beta = acme_beta_batch

        report = pipeline.run(acme_beta_batch, PipelineConfig(min_fit_score=5))

        assert report.committed is True
        assert report.succeeded is True

        assert len(report.kept) == 1
        assert report.kept[0].company_name == "Acme Inc"
        assert report.kept[0].fit_score == 8
        assert report.kept[0].lead_count == 2

        assert [d.lead_id for d in report.duplicates] == [old_acme.id]
        assert report.duplicates[0].superseded_by == new_acme.id
        assert [c.company_key for c in report.rejected_by_score] == ["beta-llc"]
        assert report.rejected_count == 2

    def test_persists_companies_and_leads(self, pipeline, db, acme_beta_batch):
        pipeline.run(acme_beta_batch, PipelineConfig(min_fit_score=5))

        companies = {c.company_key: c for c in db.execute(select(Company)).scalars()}
        assert set(companies) == {"acme-inc", "beta-llc"}
        assert companies["acme-inc"].cleanup_status == CleanupStatus.KEPT.value
        assert companies["acme-inc"].website == "https://acme.com"
        assert companies["beta-llc"].cleanup_status == CleanupStatus.REJECTED.value

        leads = db.execute(select(Lead)).scalars().all()
        assert len(leads) == 3
        for lead in leads:
            assert lead.company_id == companies[lead.company_key].id

        beta_lead = next(lead for lead in leads if lead.company_key == "beta-llc")
        assert beta_lead.status == LeadStatus.DISQUALIFIED.value

    def test_no_threshold_keeps_everything(self, pipeline, db, acme_beta_batch):
        report = pipeline.run(acme_beta_batch)

        assert len(report.kept) == 2
        assert report.rejected_by_score == []
        assert all(c.cleanup_status is None for c in db.execute(select(Company)).scalars())

    def test_older_lead_in_later_batch_does_not_overwrite(self, pipeline, db, make_lead):
        newest = make_lead("Acme Inc", age_minutes=0, fit_score=9, website="https://acme.com")
        pipeline.run([newest])

        late_arrival = make_lead("Acme Inc", age_minutes=600, fit_score=2, website="https://old.acme.com")
        report = pipeline.run([late_arrival])

        company = db.execute(select(Company)).scalar_one()
        assert company.fit_score == 9
        assert company.website == "https://acme.com"
        assert [d.lead_id for d in report.duplicates] == [late_arrival.id]
        assert report.duplicates[0].superseded_by == newest.id

    def test_later_batch_fills_fields_stored_leads_lack(self, pipeline, db, make_lead):
        pipeline.run([make_lead("Acme Inc", age_minutes=0, fit_score=7)])
        pipeline.run([make_lead("Acme Inc", age_minutes=600, company_profile="Private lender")])

        company = db.execute(select(Company)).scalar_one()
        assert company.fit_score == 7
        assert company.company_profile == "Private lender"

    def test_second_run_updates_existing_company(self, pipeline, db, make_lead):
        pipeline.run([make_lead("Acme Inc", age_minutes=60, fit_score=5)])
        report = pipeline.run([make_lead("ACME INC", fit_score=9, website="https://acme.com")])

        assert report.kept[0].created is False
        assert _count(db, Company) == 1
        company = db.execute(select(Company)).scalar_one()
        assert company.fit_score == 9
        assert company.website == "https://acme.com"

    def test_blank_company_name_unattributed(self, pipeline, db, make_lead):
        lead = make_lead(None, person_name="No Company")

        report = pipeline.run([lead, make_lead("Beta LLC")])

        assert [u.lead_id for u in report.unattributed] == [lead.id]
        assert len(report.kept) == 1

    def test_missing_lead_ids_assigned(self, pipeline, make_lead):
        lead = make_lead("Beta LLC")
        lead.id = None

        pipeline.run([lead])

        assert lead.id is not None


# ============================================================================
# DOMAIN MATCH
# ============================================================================

class TestDomainStage:

    def test_labels_and_rejects(self, pipeline, make_lead):
        exact = make_lead("Acme Inc", website="https://www.acme.com/about")
        by_email = make_lead("Acme Inc", email="jane@ir.acme.com")
        trap = make_lead("Not Acme", website="https://notacme.com")

        report = pipeline.run([exact, by_email, trap], PipelineConfig(target_domains=["acme.com"]))

        kinds = {m.lead_id: m.match_kind for m in report.matched}
        assert kinds == {exact.id: MatchKind.EXACT, by_email.id: MatchKind.SUBDOMAIN}
        assert [r.lead_id for r in report.domain_rejected] == [trap.id]
        assert report.domain_rejected[0].detail == "notacme.com"
        assert [c.company_key for c in report.kept] == ["acme-inc"]

    def test_no_target_domains_skips_stage(self, pipeline, make_lead):
        report = pipeline.run([make_lead("Acme Inc", website="https://anything.io")])

        assert report.matched == []
        assert report.domain_rejected == []
        assert STAGE_DOMAIN_MATCH in report.completed_stages


# ============================================================================
# ICP
# ============================================================================

class TestIcpStage:

    def test_orphans_reported_without_fallback(self, pipeline, db, icp, make_lead):
        valid = make_lead("Acme Inc", icp_id=icp.id)
        missing = make_lead("Acme Inc", icp_id=None)
        stale = make_lead("Beta LLC", icp_id=uuid4())

        report = pipeline.run([valid, missing, stale])

        assert {o.lead_id: o.reason for o in report.orphans} == {
            missing.id: "missing",
            stale.id: "stale",
        }
        assert report.icp_assignments == []
        assert missing.icp_id is None

    def test_fallback_fills_nulls_only(self, pipeline, db, icp, fallback_icp, make_lead):
        missing = make_lead("Acme Inc", icp_id=None)
        stale_id = uuid4()
        stale = make_lead("Beta LLC", icp_id=stale_id)

        report = pipeline.run([missing, stale], PipelineConfig(fallback_icp_id=fallback_icp.id))

        assert [a.lead_id for a in report.icp_assignments] == [missing.id]
        assert missing.icp_id == fallback_icp.id
        assert stale.icp_id == stale_id
        assert [o.lead_id for o in report.orphans] == [stale.id]

    def test_company_takes_newest_resolvable_lead_icp(self, pipeline, db, icp, fallback_icp, make_lead):
        older = make_lead("Acme Inc", age_minutes=30, icp_id=icp.id)
        newer = make_lead("Acme Inc", age_minutes=1, icp_id=uuid4())

        report = pipeline.run([older, newer])

        assert report.kept[0].icp_id == icp.id

    def test_newer_stale_reference_keeps_company_icp(self, pipeline, db, icp, make_lead):
        pipeline.run([make_lead("Acme Inc", age_minutes=60, icp_id=icp.id)])

        stale = make_lead("Acme Inc", age_minutes=0, icp_id=uuid4())
        report = pipeline.run([stale])

        company = db.execute(select(Company)).scalar_one()
        assert company.icp_id == icp.id
        assert report.kept[0].icp_id == icp.id
        assert [o.lead_id for o in report.orphans] == [stale.id]

    def test_stale_only_company_gets_no_icp(self, pipeline, db, icp, make_lead):
        pipeline.run([make_lead("Beta LLC", icp_id=uuid4())])

        assert db.execute(select(Company)).scalar_one().icp_id is None

    def test_unknown_fallback_fails_before_mutation(self, pipeline, db, icp, make_lead):
        lead = make_lead("Acme Inc", icp_id=None)

        report = pipeline.run([lead], PipelineConfig(fallback_icp_id=uuid4()))

        assert report.committed is False
        assert report.failed_stage == STAGE_CONFIGURE
        assert report.error is not None
        assert lead.icp_id is None
        assert _count(db, Company) == 0


# ============================================================================
# AUXILIARY LINKS
# ============================================================================

class TestAssociateStage:

    def test_links_resolved_against_batch_companies(self, pipeline, db, make_lead):
        links = [
            AuxiliaryLink(owned_id="run-1", owned_kind="workflow_run", company_name="ACME inc"),
            AuxiliaryLink(owned_id="run-1", owned_kind="workflow_run", owner_kind="user", owner_id="u9"),
            AuxiliaryLink(owned_id="fb-1", owned_kind="lead_feedback", company_name="Nobody Corp"),
        ]

        report = pipeline.run([make_lead("Acme Inc")], PipelineConfig(auxiliary_links=links))

        company = db.execute(select(Company)).scalar_one()
        assert [(link.owner_kind, link.owner_id) for link in report.linked] == [
            ("company", str(company.id)),
            ("user", "u9"),
        ]
        assert [link.owned_id for link in report.unresolved_links] == ["fb-1"]
        assert _count(db, AssociationLink) == 2

    def test_relink_reported_as_already_linked(self, pipeline, db, make_lead):
        config = PipelineConfig(auxiliary_links=[
            AuxiliaryLink(owned_id="run-1", owned_kind="workflow_run", company_name="Acme Inc"),
        ])

        first = pipeline.run([make_lead("Acme Inc")], config)
        second = pipeline.run([make_lead("acme inc")], config)

        assert second.committed is True
        assert second.linked == []
        assert second.already_linked[0].link_id == first.linked[0].link_id
        assert _count(db, AssociationLink) == 1


# ============================================================================
# FAILURES
# ============================================================================

class TestStoreFailure:

    def test_commit_failure_rolls_back_batch(self, pipeline, db, acme_beta_batch):
        with patch.object(db, "commit", side_effect=_connection_lost()):
            report = pipeline.run(acme_beta_batch, PipelineConfig(min_fit_score=5))

        assert report.committed is False
        assert report.failed_stage == STAGE_COMMIT
        assert "batch commit" in report.error
        assert _count(db, Company) == 0
        assert _count(db, Lead) == 0

    def test_persist_failure_reports_partial(self, pipeline, db, acme_beta_batch):
        with patch.object(db, "flush", side_effect=_connection_lost()):
            report = pipeline.run(acme_beta_batch, PipelineConfig(min_fit_score=5))

        assert report.failed_stage == STAGE_PERSIST
        assert STAGE_DEDUPLICATE in report.completed_stages
        assert STAGE_PERSIST not in report.completed_stages
        # Partial findings still reported
        assert len(report.kept) == 1
        assert _count(db, Company) == 0

    def test_rollback_restores_leads_for_retry(self, pipeline, db, fallback_icp, make_lead):
        lead = make_lead("Beta LLC", fit_score=2, icp_id=None)
        config = PipelineConfig(min_fit_score=5, fallback_icp_id=fallback_icp.id)

        with patch.object(db, "commit", side_effect=_connection_lost()):
            failed = pipeline.run([lead], config)

        assert failed.committed is False
        assert lead.status == LeadStatus.NEW.value
        assert lead.icp_id is None
        assert lead.company_id is None

        retried = pipeline.run([lead])

        assert retried.committed is True
        stored = db.execute(select(Lead)).scalar_one()
        assert stored.status == LeadStatus.NEW.value
        assert stored.icp_id is None
        assert db.execute(select(Company)).scalar_one().cleanup_status is None

    def test_unexpected_error_propagates(self, db, make_lead):
        deduplicator = Mock()
        deduplicator.merge_all.side_effect = RuntimeError("boom")
        pipeline = AttributionPipeline(db, deduplicator=deduplicator)

        with pytest.raises(RuntimeError):
            pipeline.run([make_lead("Acme Inc")])

        assert _count(db, Company) == 0


# ============================================================================
# BATCHES
# ============================================================================

class TestRunBatches:

    def test_splits_into_independent_batches(self, pipeline, db, make_lead):
        leads = [make_lead(f"Company {i}") for i in range(5)]

        summary = pipeline.run_batches(leads, batch_size=2)

        assert [b.batch_size for b in summary.batches] == [2, 2, 1]
        assert [b.batch_number for b in summary.batches] == [1, 2, 3]
        assert len(summary.committed_batches) == 3
        assert summary.total_leads == 5
        assert _count(db, Company) == 5

    def test_failed_batch_does_not_stop_run(self, pipeline, db, make_lead):
        leads = [make_lead(f"Company {i}") for i in range(4)]
        real_commit = db.commit
        calls = []

        def flaky_commit():
            calls.append(1)
            if len(calls) == 1:
                raise _connection_lost()
            real_commit()

        with patch.object(db, "commit", side_effect=flaky_commit):
            summary = pipeline.run_batches(leads, batch_size=2)

        assert len(summary.failed_batches) == 1
        assert summary.failed_batches[0].batch_number == 1
        assert len(summary.committed_batches) == 1
        assert _count(db, Company) == 2

    def test_cancel_before_start(self, pipeline, make_lead):
        cancel = Mock()
        cancel.is_set.return_value = True

        summary = pipeline.run_batches([make_lead("Acme Inc")], cancel_event=cancel)

        assert summary.cancelled is True
        assert summary.batches == []

    def test_cancel_checked_between_batches(self, pipeline, db, make_lead):
        leads = [make_lead(f"Company {i}") for i in range(6)]
        cancel = Mock()
        cancel.is_set.side_effect = [False, True]

        summary = pipeline.run_batches(leads, batch_size=2, cancel_event=cancel)

        assert summary.cancelled is True
        assert len(summary.batches) == 1
        assert _count(db, Company) == 2

    def test_default_batch_size_from_settings(self, pipeline, make_lead):
        leads = [make_lead(f"Company {i}") for i in range(3)]

        with patch.object(settings, "BATCH_SIZE", 2):
            summary = pipeline.run_batches(leads)

        assert [b.batch_size for b in summary.batches] == [2, 1]

    def test_invalid_batch_size(self, pipeline, make_lead):
        with pytest.raises(ValueError):
            pipeline.run_batches([make_lead()], batch_size=0)
