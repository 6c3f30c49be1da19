from __future__ import annotations

import pytest

from flowscreen.service import CandidateFlowService


@pytest.fixture
def service(runner, outbox) -> CandidateFlowService:
    return CandidateFlowService(runner=runner, outbox=outbox)


def answers_payload(node_key: str, **values) -> dict:
    return {
        "node_key": node_key,
        "answers": [{"question_id": key, "question_text": key, "value": value} for key, value in values.items()],
    }


def test_save_and_advance_walks_the_default_flow(service, published):
    draft = service.runner.start(published.tenant_slug, published.public_slug)
    args = (published.tenant_slug, published.public_slug, draft.application_id)

    step = service.save_and_advance(*args, answers_payload("screening", q_city="MSK"))
    assert (step.current_node_key, step.next_node_key, step.score_total) == ("screening", "form", 5)

    step = service.save_and_advance(*args, answers_payload("form", full_name="Anna", phone="+79990001122"))
    assert step.next_node_key == "consent"

    step = service.save_and_advance(*args, answers_payload("consent", consent_accepted=True))
    assert step.next_node_key == "end_reject"


def test_submit_enqueues_exactly_once(service, published, outbox):
    draft = service.runner.start(published.tenant_slug, published.public_slug)
    args = (published.tenant_slug, published.public_slug, draft.application_id)

    incomplete = service.submit(*args)
    assert incomplete.finalized_now is False
    assert outbox.list_pending() == []

    service.save_and_advance(*args, answers_payload("screening", q_city="MSK"))
    service.save_and_advance(*args, answers_payload("form", full_name="Anna", phone="+79990001122"))
    service.save_and_advance(*args, answers_payload("consent", consent_accepted=True))

    first = service.submit(*args)
    second = service.submit(*args)

    assert first.finalized_now is True
    assert second.finalized_now is False
    pending = outbox.list_pending()
    assert len(pending) == 1
    assert pending[0].payload == {"application_id": draft.application_id}
    assert pending[0].dedupe_key == f"application_submitted:{draft.application_id}"


def test_unknown_application_is_none(service, published):
    args = (published.tenant_slug, published.public_slug, "missing")
    assert service.save_and_advance(*args, answers_payload("screening", q_city="MSK")) is None
    assert service.submit(*args) is None
