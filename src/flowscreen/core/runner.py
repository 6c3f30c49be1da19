"""Application lifecycle against a published flow: start, save, submit, advance, resume."""

from __future__ import annotations

import secrets
import uuid
from datetime import timedelta
from typing import Any, Callable, Mapping

import structlog

from ..clock import Clock
from ..schemas.application import (
    FlowDraft,
    FlowNextResult,
    FlowSubmitResult,
    MagicLinkInput,
    MagicLinkResult,
    SaveAnswersInput,
    SavedAnswer,
    StartFlowInput,
)
from ..schemas.records import ApplicationRecord, CandidateRecord, FlowVersionRecord, MagicLinkRecord
from ..storage.base import ScreeningStore
from .evaluator import (
    missing_required,
    resolve_next_node,
    resolve_outcome,
    score_answers,
)


def new_id() -> str:
    return str(uuid.uuid4())


def new_token() -> str:
    """192-bit resume token, hex encoded."""
    return secrets.token_hex(24)


class FlowRunner:
    """Drives one application through its flow version.

    Every method taking ``tenant_slug``/``public_slug``/``application_id``
    returns ``None`` unless the application belongs to that job under that
    tenant.
    """

    def __init__(
        self,
        *,
        store: ScreeningStore,
        clock: Clock,
        id_factory: Callable[[], str] = new_id,
        token_factory: Callable[[], str] = new_token,
    ) -> None:
        self._store = store
        self._clock = clock
        self._new_id = id_factory
        self._new_token = token_factory
        self._logger = structlog.get_logger(__name__)

    def start(
        self,
        tenant_slug: str,
        public_slug: str,
        payload: StartFlowInput | Mapping[str, Any] | None = None,
    ) -> FlowDraft | None:
        data = _coerce(StartFlowInput, payload)
        job = self._store.find_public_job(tenant_slug, public_slug)
        if job is None or job.status != "active" or not job.active_flow_version_id:
            self._logger.info("flow.start_rejected", tenant=tenant_slug, job=public_slug)
            return None
        version = self._store.get_flow_version(job.active_flow_version_id)
        if version is None:
            self._logger.warning(
                "flow.active_version_missing",
                job_id=job.id,
                flow_version_id=job.active_flow_version_id,
            )
            return None

        now = self._clock.now()
        candidate = CandidateRecord(
            id=self._new_id(),
            tenant_id=job.tenant_id,
            full_name=data.candidate.full_name,
            phone_e164=data.candidate.phone_e164,
            email=data.candidate.email,
            created_at=now,
        )
        application = ApplicationRecord(
            id=self._new_id(),
            tenant_id=job.tenant_id,
            job_id=job.id,
            candidate_id=candidate.id,
            flow_version_id=version.id,
            status="new",
            stage="New",
            score_total=0,
            score_breakdown={},
            submitted_at=None,
            created_at=now,
            updated_at=now,
        )
        self._store.start_application(candidate, application)
        self._logger.info(
            "flow.started",
            application_id=application.id,
            job_id=job.id,
            flow_version_id=version.id,
        )
        return _draft(application, version)

    def save_answers(
        self,
        tenant_slug: str,
        public_slug: str,
        application_id: str,
        payload: SaveAnswersInput | Mapping[str, Any],
    ) -> FlowDraft | None:
        data = _coerce(SaveAnswersInput, payload)
        with self._store.application_scope(tenant_slug, public_slug, application_id) as scope:
            if scope is None:
                return None
            now = self._clock.now()
            incoming = [
                SavedAnswer(
                    node_key=data.node_key,
                    question_id=answer.question_id,
                    question_text=answer.question_text,
                    value=answer.value,
                )
                for answer in data.answers
            ]
            scope.replace_answers(data.node_key, incoming, now)
            updated = scope.application
            # Late answers are kept, but a finalized score is never recomputed.
            if updated.submitted_at is None:
                scored = score_answers(scope.flow_version.definition, scope.list_answers())
                updated = updated.model_copy(
                    update={
                        "score_total": scored.score_total,
                        "score_breakdown": scored.score_breakdown,
                        "updated_at": now,
                    }
                )
                scope.update_application(updated)
            draft = _draft(updated, scope.flow_version)

        self._logger.info(
            "flow.answers_saved",
            application_id=application_id,
            node_key=data.node_key,
            answer_count=len(incoming),
            score_total=draft.score_total,
        )
        return draft

    def submit(self, tenant_slug: str, public_slug: str, application_id: str) -> FlowSubmitResult | None:
        with self._store.application_scope(tenant_slug, public_slug, application_id) as scope:
            if scope is None:
                return None
            application = scope.application

            if application.submitted_at is not None:
                return FlowSubmitResult(
                    application_id=application.id,
                    status=application.status,
                    stage=application.stage,
                    score_total=application.score_total,
                    score_breakdown=dict(application.score_breakdown),
                    missing_required=[],
                    submitted_at=application.submitted_at,
                    finalized_now=False,
                )

            flow = scope.flow_version.definition
            answers = scope.list_answers()
            missed = missing_required(flow, answers)
            scored = score_answers(flow, answers)

            if missed:
                self._logger.info(
                    "flow.submit_incomplete",
                    application_id=application.id,
                    missing_required=missed,
                )
                return FlowSubmitResult(
                    application_id=application.id,
                    status=application.status,
                    stage=application.stage,
                    score_total=scored.score_total,
                    score_breakdown=scored.score_breakdown,
                    missing_required=missed,
                    submitted_at=None,
                    finalized_now=False,
                )

            outcome = resolve_outcome(scored.score_total, scope.flow_version.scoring_rules)
            now = self._clock.now()
            finalized = application.model_copy(
                update={
                    "status": outcome.status,
                    "stage": outcome.stage,
                    "score_total": scored.score_total,
                    "score_breakdown": scored.score_breakdown,
                    "submitted_at": now,
                    "updated_at": now,
                }
            )
            scope.update_application(finalized)

        self._logger.info(
            "flow.submitted",
            application_id=finalized.id,
            status=finalized.status,
            stage=finalized.stage,
            score_total=finalized.score_total,
        )
        return FlowSubmitResult(
            application_id=finalized.id,
            status=finalized.status,
            stage=finalized.stage,
            score_total=finalized.score_total,
            score_breakdown=dict(finalized.score_breakdown),
            missing_required=[],
            submitted_at=finalized.submitted_at,
            finalized_now=True,
        )

    def next_node(
        self,
        tenant_slug: str,
        public_slug: str,
        application_id: str,
        current_node_key: str,
    ) -> FlowNextResult | None:
        with self._store.application_scope(tenant_slug, public_slug, application_id) as scope:
            if scope is None:
                return None
            flow = scope.flow_version.definition
            answers = scope.list_answers()
            scored = score_answers(flow, answers)
            application = scope.application
            if application.submitted_at is None and (
                scored.score_total != application.score_total
                or scored.score_breakdown != application.score_breakdown
            ):
                scope.update_application(
                    application.model_copy(
                        update={
                            "score_total": scored.score_total,
                            "score_breakdown": scored.score_breakdown,
                            "updated_at": self._clock.now(),
                        }
                    )
                )

        next_key = resolve_next_node(flow, current_node_key, answers, scored.score_total)
        index = flow.node_index(current_node_key)
        return FlowNextResult(
            current_node_key=current_node_key,
            current_node=flow.node(current_node_key),
            next_node_key=next_key,
            next_node=flow.node(next_key),
            current_step=index + 1 if index is not None else 1,
            total_steps=len(flow.nodes),
            score_total=scored.score_total,
        )

    def issue_magic_link(
        self,
        tenant_slug: str,
        public_slug: str,
        application_id: str,
        payload: MagicLinkInput | Mapping[str, Any] | None = None,
    ) -> MagicLinkResult | None:
        data = _coerce(MagicLinkInput, payload)
        with self._store.application_scope(tenant_slug, public_slug, application_id) as scope:
            if scope is None:
                return None
            now = self._clock.now()
            expires_at = now + timedelta(days=data.ttl_days)
            token = self._new_token()
            scope.add_magic_link(
                MagicLinkRecord(
                    token=token,
                    application_id=application_id,
                    expires_at=expires_at,
                    created_at=now,
                )
            )

        self._logger.info(
            "flow.magic_link_issued",
            application_id=application_id,
            ttl_days=data.ttl_days,
        )
        return MagicLinkResult(token=token, expires_at=expires_at)

    def resume_by_token(self, token: str) -> FlowDraft | None:
        link = self._store.find_magic_link(token)
        if link is None or self._clock.now() >= link.expires_at:
            return None
        application = self._store.get_application(link.application_id)
        if application is None:
            return None
        version = self._store.get_flow_version(application.flow_version_id)
        if version is None:
            return None
        return _draft(application, version)


def _coerce(model: type, payload: Any) -> Any:
    if isinstance(payload, model):
        return payload
    return model.model_validate(payload or {})


def _draft(application: ApplicationRecord, version: FlowVersionRecord) -> FlowDraft:
    return FlowDraft(
        application_id=application.id,
        tenant_id=application.tenant_id,
        job_id=application.job_id,
        flow_version_id=application.flow_version_id,
        status=application.status,
        stage=application.stage,
        score_total=application.score_total,
        score_breakdown=dict(application.score_breakdown),
        submitted_at=application.submitted_at,
        flow=version.definition,
        scoring_rules=version.scoring_rules,
    )


__all__ = ["FlowRunner", "new_id", "new_token"]
