"""Candidate-facing operations that span the runner and the outbox."""

from __future__ import annotations

from typing import Any, Mapping

import structlog

from .core.outbox import Outbox
from .core.runner import FlowRunner
from .schemas.application import FlowNextResult, FlowSubmitResult, SaveAnswersInput


class CandidateFlowService:
    def __init__(self, *, runner: FlowRunner, outbox: Outbox) -> None:
        self._runner = runner
        self._outbox = outbox
        self._logger = structlog.get_logger(__name__)

    @property
    def runner(self) -> FlowRunner:
        return self._runner

    def save_and_advance(
        self,
        tenant_slug: str,
        public_slug: str,
        application_id: str,
        payload: SaveAnswersInput | Mapping[str, Any],
    ) -> FlowNextResult | None:
        """Save one node's answers and resolve where the flow goes from that node."""
        data = payload if isinstance(payload, SaveAnswersInput) else SaveAnswersInput.model_validate(payload)
        draft = self._runner.save_answers(tenant_slug, public_slug, application_id, data)
        if draft is None:
            return None
        return self._runner.next_node(tenant_slug, public_slug, application_id, data.node_key)

    def submit(self, tenant_slug: str, public_slug: str, application_id: str) -> FlowSubmitResult | None:
        """Finalize the application; the submission event is enqueued only on the finalizing call."""
        result = self._runner.submit(tenant_slug, public_slug, application_id)
        if result is not None and result.finalized_now:
            item = self._outbox.enqueue_application_submitted(result.application_id)
            self._logger.info("flow.submission_event_queued", application_id=result.application_id, item_id=item.id)
        return result


__all__ = ["CandidateFlowService"]
