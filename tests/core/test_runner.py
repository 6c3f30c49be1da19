from __future__ import annotations

import threading
from datetime import timedelta

import pytest
from pydantic import ValidationError

from flowscreen.errors import IntegrityInvariantViolation


def save(runner, published, application_id, node_key, answers):
    return runner.save_answers(
        published.tenant_slug,
        published.public_slug,
        application_id,
        {
            "node_key": node_key,
            "answers": [
                {"question_id": question_id, "question_text": question_id.title(), "value": value}
                for question_id, value in answers
            ],
        },
    )


def complete_default_flow(runner, published, application_id, city="MSK"):
    save(runner, published, application_id, "screening", [("q_city", city)])
    save(runner, published, application_id, "form", [("full_name", "Anna Petrova"), ("phone", "+79990001122")])
    save(runner, published, application_id, "consent", [("consent_accepted", True)])


def test_start_creates_new_application(runner, published, store, clock):
    draft = runner.start(
        published.tenant_slug,
        published.public_slug,
        {"candidate": {"full_name": "Anna", "email": "Anna@Example.COM"}},
    )

    assert draft is not None
    assert (draft.status, draft.stage, draft.score_total) == ("new", "New", 0)
    assert draft.submitted_at is None
    assert draft.flow.node("screening") is not None
    assert draft.flow_version_id == store.find_job(published.tenant_slug, published.job.id).active_flow_version_id

    application = store.get_application(draft.application_id)
    candidate = store.get_candidate(application.candidate_id)
    assert candidate.email == "anna@example.com"
    assert application.created_at == clock.now()


def test_start_requires_active_job_with_published_flow(runner, catalog, published):
    assert runner.start(published.tenant_slug, "no-such-job") is None
    assert runner.start("other-tenant", published.public_slug) is None

    catalog.set_job_status(published.tenant_slug, published.job.id, "paused")
    assert runner.start(published.tenant_slug, published.public_slug) is None

    unpublished = catalog.create_job(
        published.tenant_slug, {"title": "Designer", "public_slug": "designer", "status": "active"}
    )
    assert runner.start(published.tenant_slug, unpublished.public_slug) is None


def test_start_rejects_malformed_candidate(runner, published):
    with pytest.raises(ValidationError):
        runner.start(published.tenant_slug, published.public_slug, {"candidate": {"email": "not-an-email"}})


def test_end_to_end_low_score_is_rejected(runner, published):
    draft = runner.start(published.tenant_slug, published.public_slug)
    complete_default_flow(runner, published, draft.application_id)

    result = runner.submit(published.tenant_slug, published.public_slug, draft.application_id)

    assert result.finalized_now is True
    assert result.missing_required == []
    assert result.score_total == 5
    assert result.score_breakdown["q_city"] == 5
    assert (result.status, result.stage) == ("rejected", "Reject")
    assert result.submitted_at is not None


def test_save_replaces_answers_of_the_node_only(runner, published, store):
    draft = runner.start(published.tenant_slug, published.public_slug)
    application_id = draft.application_id

    save(runner, published, application_id, "screening", [("q_city", "MSK")])
    save(runner, published, application_id, "form", [("full_name", "Anna Petrova"), ("phone", "+79990001122")])
    updated = save(runner, published, application_id, "screening", [("q_city", "UTC+1")])

    assert updated.score_total == 3
    assert updated.score_breakdown == {"full_name": 0, "phone": 0, "q_city": 3}

    with store.application_scope(published.tenant_slug, published.public_slug, application_id) as scope:
        stored = [(a.node_key, a.question_id, a.value) for a in scope.list_answers()]
    assert stored == [
        ("form", "full_name", "Anna Petrova"),
        ("form", "phone", "+79990001122"),
        ("screening", "q_city", "UTC+1"),
    ]


def test_save_with_empty_answers_clears_the_node(runner, published):
    draft = runner.start(published.tenant_slug, published.public_slug)
    save(runner, published, draft.application_id, "screening", [("q_city", "MSK")])

    cleared = save(runner, published, draft.application_id, "screening", [])

    assert cleared.score_total == 0
    assert cleared.score_breakdown == {}


def test_operations_are_scoped_to_tenant_and_job(runner, catalog, published, publish_job):
    other = publish_job(catalog, tenant_slug="globex", public_slug="backend-dev")
    draft = runner.start(published.tenant_slug, published.public_slug)

    assert save(runner, other, draft.application_id, "screening", [("q_city", "MSK")]) is None
    assert runner.submit(other.tenant_slug, other.public_slug, draft.application_id) is None
    assert runner.next_node(other.tenant_slug, other.public_slug, draft.application_id, "intro") is None
    assert runner.issue_magic_link(other.tenant_slug, other.public_slug, draft.application_id) is None
    assert runner.submit(published.tenant_slug, published.public_slug, "missing-id") is None


def test_incomplete_submit_reports_missing_and_changes_nothing(runner, published, store):
    draft = runner.start(published.tenant_slug, published.public_slug)
    save(runner, published, draft.application_id, "screening", [("q_city", "MSK")])

    result = runner.submit(published.tenant_slug, published.public_slug, draft.application_id)

    assert result.finalized_now is False
    assert result.missing_required == ["full_name", "phone", "consent_accepted"]
    assert result.submitted_at is None
    assert result.score_total == 5
    assert store.get_application(draft.application_id).status == "new"


def test_submit_is_idempotent(runner, published, clock):
    draft = runner.start(published.tenant_slug, published.public_slug)
    complete_default_flow(runner, published, draft.application_id)
    first = runner.submit(published.tenant_slug, published.public_slug, draft.application_id)

    clock.advance(minutes=5)
    second = runner.submit(published.tenant_slug, published.public_slug, draft.application_id)

    assert first.finalized_now is True
    assert second.finalized_now is False
    assert second.submitted_at == first.submitted_at
    assert (second.status, second.stage, second.score_total) == (first.status, first.stage, first.score_total)


def test_submitted_application_is_write_once(runner, published, store):
    draft = runner.start(published.tenant_slug, published.public_slug)
    complete_default_flow(runner, published, draft.application_id)
    first = runner.submit(published.tenant_slug, published.public_slug, draft.application_id)

    with pytest.raises(IntegrityInvariantViolation):
        with store.application_scope(published.tenant_slug, published.public_slug, draft.application_id) as scope:
            scope.update_application(scope.application.model_copy(update={"submitted_at": None}))

    stored = store.get_application(draft.application_id)
    assert stored.submitted_at == first.submitted_at
    assert stored.status == "rejected"


def test_saving_after_submission_keeps_the_final_score(runner, published, store):
    draft = runner.start(published.tenant_slug, published.public_slug)
    complete_default_flow(runner, published, draft.application_id, city="UTC+1")
    first = runner.submit(published.tenant_slug, published.public_slug, draft.application_id)

    late = save(runner, published, draft.application_id, "screening", [("q_city", "MSK")])

    assert late.score_total == first.score_total == 3
    assert store.get_application(draft.application_id).score_breakdown["q_city"] == 3


def test_next_node_progress_and_routing(runner, published):
    draft = runner.start(published.tenant_slug, published.public_slug)
    application_id = draft.application_id

    step = runner.next_node(published.tenant_slug, published.public_slug, application_id, "intro")
    assert (step.next_node_key, step.current_step, step.total_steps) == ("screening", 1, 7)
    assert step.next_node.type == "screening"

    complete_default_flow(runner, published, application_id)
    final = runner.next_node(published.tenant_slug, published.public_slug, application_id, "consent")
    assert final.next_node_key == "end_reject"
    assert final.current_step == 4
    assert final.score_total == 5

    unknown = runner.next_node(published.tenant_slug, published.public_slug, application_id, "nope")
    assert unknown.current_step == 1
    assert unknown.current_node is None
    assert unknown.next_node_key is None


def test_magic_link_resumes_until_expiry(runner, published, clock):
    draft = runner.start(published.tenant_slug, published.public_slug)
    save(runner, published, draft.application_id, "screening", [("q_city", "MSK")])

    link = runner.issue_magic_link(published.tenant_slug, published.public_slug, draft.application_id)

    assert len(link.token) == 48
    assert link.expires_at == clock.now() + timedelta(days=7)

    resumed = runner.resume_by_token(link.token)
    assert resumed.application_id == draft.application_id
    assert resumed.score_total == 5

    clock.advance(days=7)
    assert runner.resume_by_token(link.token) is None
    assert runner.resume_by_token("unknown") is None


def test_magic_link_ttl_bounds(runner, published, clock):
    draft = runner.start(published.tenant_slug, published.public_slug)

    link = runner.issue_magic_link(published.tenant_slug, published.public_slug, draft.application_id, {"ttl_days": 30})
    assert link.expires_at == clock.now() + timedelta(days=30)

    for ttl in (6, 31):
        with pytest.raises(ValidationError):
            runner.issue_magic_link(published.tenant_slug, published.public_slug, draft.application_id, {"ttl_days": ttl})


def test_applications_keep_their_flow_version(runner, catalog, published):
    draft = runner.start(published.tenant_slug, published.public_slug)
    catalog.publish_flow(
        published.tenant_slug,
        published.job.id,
        {
            "nodes": [{"key": "only", "type": "intro"}, {"key": "bye", "type": "end"}],
            "edges": [{"from": "only", "to": "bye"}],
        },
    )

    step = runner.next_node(published.tenant_slug, published.public_slug, draft.application_id, "intro")

    assert step.next_node_key == "screening"
    assert runner.start(published.tenant_slug, published.public_slug).flow.node("only") is not None


def test_concurrent_publishes_get_distinct_versions(catalog, store, published):
    barrier = threading.Barrier(4)
    versions = []

    def publish():
        barrier.wait()
        versions.append(catalog.publish_flow(published.tenant_slug, published.job.id).version)

    threads = [threading.Thread(target=publish) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(versions) == [2, 3, 4, 5]
    assert store.get_flow_version(store.find_job(published.tenant_slug, published.job.id).active_flow_version_id).version == 5
