from __future__ import annotations

from datetime import timedelta

import pytest

from flowscreen.core import FlowRunner, Outbox, TenantCatalog
from flowscreen.dispatch import OutboxDispatcher
from flowscreen.errors import ConflictError, IntegrityInvariantViolation, NotFoundError
from flowscreen.service import CandidateFlowService
from flowscreen.storage import SqlStore


@pytest.fixture
def sql_store() -> SqlStore:
    return SqlStore.from_url("sqlite://", create_schema=True)


@pytest.fixture
def sql_catalog(sql_store, clock) -> TenantCatalog:
    return TenantCatalog(store=sql_store, clock=clock)


@pytest.fixture
def sql_service(sql_store, clock) -> CandidateFlowService:
    return CandidateFlowService(
        runner=FlowRunner(store=sql_store, clock=clock),
        outbox=Outbox(store=sql_store, clock=clock),
    )


def payload(node_key: str, **values) -> dict:
    return {
        "node_key": node_key,
        "answers": [{"question_id": key, "question_text": key, "value": value} for key, value in values.items()],
    }


class FailingTransport:
    def post(self, url, body, headers, timeout):
        return 500


def test_catalog_conflicts_and_lookups(sql_catalog, sql_store, publish_job):
    published = publish_job(sql_catalog)

    with pytest.raises(ConflictError):
        sql_catalog.bootstrap_tenant("Another", published.tenant_slug)
    with pytest.raises(ConflictError):
        sql_catalog.create_job(published.tenant_slug, {"title": "Clone", "public_slug": published.public_slug})
    with pytest.raises(NotFoundError):
        sql_catalog.create_job("nobody", {"title": "Ghost", "public_slug": "ghost"})
    with pytest.raises(NotFoundError):
        sql_catalog.set_job_status("nobody", published.job.id, "paused")

    second = sql_catalog.publish_flow(published.tenant_slug, published.job.id)
    job = sql_store.find_job(published.tenant_slug, published.job.id)
    assert second.version == 2
    assert job.active_flow_version_id == second.id
    assert sql_store.get_flow_version(second.id).definition == second.definition


def test_full_flow_on_sql_backend(sql_catalog, sql_service, sql_store, publish_job, clock):
    published = publish_job(sql_catalog)
    runner = sql_service.runner
    draft = runner.start(published.tenant_slug, published.public_slug, {"candidate": {"full_name": "Anna"}})
    args = (published.tenant_slug, published.public_slug, draft.application_id)

    sql_service.save_and_advance(*args, payload("screening", q_city="UTC+1"))
    sql_service.save_and_advance(*args, payload("screening", q_city="MSK"))
    sql_service.save_and_advance(*args, payload("form", full_name="Anna Petrova", phone="+79990001122", email=None))
    step = sql_service.save_and_advance(*args, payload("consent", consent_accepted=True))

    assert step.next_node_key == "end_reject"
    assert step.score_total == 5

    result = sql_service.submit(*args)
    again = sql_service.submit(*args)

    assert result.finalized_now is True
    assert (result.status, result.stage, result.score_total) == ("rejected", "Reject", 5)
    assert again.finalized_now is False
    assert again.submitted_at == result.submitted_at

    stored = sql_store.get_application(draft.application_id)
    assert stored.submitted_at == clock.now()
    assert stored.submitted_at.tzinfo is not None
    assert len(sql_store.list_pending_outbox(10)) == 1


def test_scope_rolls_back_on_error(sql_catalog, sql_service, sql_store, publish_job):
    published = publish_job(sql_catalog)
    runner = sql_service.runner
    draft = runner.start(published.tenant_slug, published.public_slug)
    runner.save_answers(published.tenant_slug, published.public_slug, draft.application_id, payload("screening", q_city="MSK"))

    with pytest.raises(RuntimeError):
        with sql_store.application_scope(published.tenant_slug, published.public_slug, draft.application_id) as scope:
            scope.replace_answers("screening", [], scope.application.updated_at)
            raise RuntimeError("abort")

    with sql_store.application_scope(published.tenant_slug, published.public_slug, draft.application_id) as scope:
        assert [answer.value for answer in scope.list_answers()] == ["MSK"]


def test_write_once_submission_on_sql(sql_catalog, sql_service, sql_store, publish_job):
    published = publish_job(sql_catalog)
    runner = sql_service.runner
    draft = runner.start(published.tenant_slug, published.public_slug)
    args = (published.tenant_slug, published.public_slug, draft.application_id)
    runner.save_answers(*args, payload("screening", q_city="MSK"))
    runner.save_answers(*args, payload("form", full_name="Anna", phone="+79990001122"))
    runner.save_answers(*args, payload("consent", consent_accepted=True))
    submitted = runner.submit(*args)

    with pytest.raises(IntegrityInvariantViolation):
        with sql_store.application_scope(*args) as scope:
            scope.update_application(scope.application.model_copy(update={"submitted_at": None}))

    assert sql_store.get_application(draft.application_id).submitted_at == submitted.submitted_at


def test_magic_link_on_sql(sql_catalog, sql_service, publish_job, clock):
    published = publish_job(sql_catalog)
    runner = sql_service.runner
    draft = runner.start(published.tenant_slug, published.public_slug)

    link = runner.issue_magic_link(published.tenant_slug, published.public_slug, draft.application_id, {"ttl_days": 10})

    assert runner.resume_by_token(link.token).application_id == draft.application_id
    clock.advance(days=10)
    assert runner.resume_by_token(link.token) is None


def test_outbox_dedupe_and_retry_on_sql(sql_store, clock):
    outbox = Outbox(store=sql_store, clock=clock)
    first = outbox.enqueue_application_submitted("app-1")
    second = outbox.enqueue_application_submitted("app-1")
    assert second.id == first.id

    dispatcher = OutboxDispatcher(outbox=outbox, transport=FailingTransport(), target_url="https://x.test", secret="secret-1")
    report = dispatcher.dispatch()

    stored = sql_store.get_outbox_item(first.id)
    assert report.retried == 1
    assert stored.attempts == 1
    assert stored.status == "pending"
    assert stored.next_attempt_at == clock.now() + timedelta(seconds=60)
    assert outbox.list_due() == []

    clock.advance(seconds=60)
    assert [item.id for item in outbox.list_due()] == [first.id]


def test_publish_numbers_versions_under_the_job_lock(sql_catalog, sql_store, publish_job):
    published = publish_job(sql_catalog)
    job = sql_store.find_job(published.tenant_slug, published.job.id)
    current = sql_store.get_flow_version(job.active_flow_version_id)
    stale = current.model_copy(update={"id": "flow-version-stale"})

    stored = sql_store.publish_flow_version(stale)

    assert stored.version == current.version + 1
    assert sql_store.get_flow_version("flow-version-stale").version == stored.version
    assert sql_store.find_job(published.tenant_slug, published.job.id).active_flow_version_id == stored.id
