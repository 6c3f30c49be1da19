"""Tenant, job and flow-version bookkeeping the runner relies on."""

from __future__ import annotations

import uuid
from typing import Any, Callable, Mapping

import structlog

from ..clock import Clock
from ..errors import NotFoundError
from ..schemas.flow import FlowDefinition, ScoringRules, default_flow_definition, default_scoring_rules
from ..schemas.records import (
    CreateJobInput,
    CreateTenantInput,
    FlowVersionRecord,
    JobRecord,
    JobStatus,
    TenantRecord,
)
from ..storage.base import ScreeningStore
from .validation import ensure_valid_flow


class TenantCatalog:
    def __init__(
        self,
        *,
        store: ScreeningStore,
        clock: Clock,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._store = store
        self._clock = clock
        self._new_id = id_factory
        self._logger = structlog.get_logger(__name__)

    def bootstrap_tenant(self, name: str, slug: str) -> TenantRecord:
        data = CreateTenantInput(name=name, slug=slug)
        tenant = TenantRecord(id=self._new_id(), name=data.name, slug=data.slug, created_at=self._clock.now())
        self._store.create_tenant(tenant)
        self._logger.info("catalog.tenant_created", tenant_id=tenant.id, slug=tenant.slug)
        return tenant

    def create_job(self, tenant_slug: str, payload: CreateJobInput | Mapping[str, Any]) -> JobRecord:
        data = payload if isinstance(payload, CreateJobInput) else CreateJobInput.model_validate(payload)
        tenant = self._require_tenant(tenant_slug)
        now = self._clock.now()
        job = JobRecord(
            id=self._new_id(),
            tenant_id=tenant.id,
            tenant_slug=tenant.slug,
            title=data.title,
            status=data.status,
            public_slug=data.public_slug,
            work_format=data.work_format,
            employment_type=data.employment_type,
            description_short=data.description_short,
            active_flow_version_id=None,
            created_at=now,
            updated_at=now,
        )
        self._store.create_job(job)
        self._logger.info("catalog.job_created", job_id=job.id, tenant=tenant.slug, public_slug=job.public_slug)
        return job

    def set_job_status(self, tenant_slug: str, job_id: str, status: JobStatus) -> JobRecord:
        job = self._require_job(tenant_slug, job_id)
        updated = JobRecord.model_validate(
            {**job.model_dump(), "status": status, "updated_at": self._clock.now()}
        )
        self._store.update_job(updated)
        self._logger.info("catalog.job_status_changed", job_id=job_id, status=status)
        return updated

    def publish_flow(
        self,
        tenant_slug: str,
        job_id: str,
        definition: FlowDefinition | Mapping[str, Any] | None = None,
        scoring_rules: ScoringRules | Mapping[str, Any] | None = None,
    ) -> FlowVersionRecord:
        """Validate and publish a new immutable flow version as the job's active one."""
        job = self._require_job(tenant_slug, job_id)
        flow = _as_model(FlowDefinition, definition) if definition is not None else default_flow_definition()
        rules = _as_model(ScoringRules, scoring_rules) if scoring_rules is not None else default_scoring_rules()

        warnings = ensure_valid_flow(flow, rules)
        for warning in warnings:
            self._logger.warning("catalog.flow_warning", job_id=job.id, code=warning.code, detail=warning.message)

        draft = FlowVersionRecord(
            id=self._new_id(),
            tenant_id=job.tenant_id,
            job_id=job.id,
            version=0,
            definition=flow,
            scoring_rules=rules,
            created_at=self._clock.now(),
        )
        version = self._store.publish_flow_version(draft)
        self._logger.info("catalog.flow_published", job_id=job.id, flow_version_id=version.id, version=version.version)
        return version

    def _require_tenant(self, slug: str) -> TenantRecord:
        tenant = self._store.find_tenant(slug)
        if tenant is None:
            raise NotFoundError("tenant", slug)
        return tenant

    def _require_job(self, tenant_slug: str, job_id: str) -> JobRecord:
        self._require_tenant(tenant_slug)
        job = self._store.find_job(tenant_slug, job_id)
        if job is None:
            raise NotFoundError("job", job_id)
        return job


def _as_model(model: type, value: Any) -> Any:
    return value if isinstance(value, model) else model.model_validate(value)


__all__ = ["TenantCatalog"]
