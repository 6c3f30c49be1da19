"""Dict-backed storage for tests and single-process deployments.

A lock per application id and per outbox item stands in for row locks.
Scopes work on copies and only write them back when the block exits
without raising.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Sequence

from ..errors import ConflictError, NotFoundError
from ..schemas.application import SavedAnswer
from ..schemas.outbox import OutboxItem
from ..schemas.records import (
    ApplicationRecord,
    CandidateRecord,
    FlowVersionRecord,
    JobRecord,
    MagicLinkRecord,
    TenantRecord,
)
from .base import check_application_update


class _MemoryApplicationScope:
    def __init__(
        self,
        application: ApplicationRecord,
        flow_version: FlowVersionRecord,
        answers: list[SavedAnswer],
    ) -> None:
        self.application = application
        self.flow_version = flow_version
        self._original = application.model_copy(deep=True)
        self._answers = answers
        self._links: list[MagicLinkRecord] = []

    def list_answers(self) -> list[SavedAnswer]:
        return list(self._answers)

    def replace_answers(self, node_key: str, answers: Sequence[SavedAnswer], answered_at: datetime) -> None:
        preserved = [answer for answer in self._answers if answer.node_key != node_key]
        self._answers = preserved + list(answers)

    def update_application(self, application: ApplicationRecord) -> None:
        check_application_update(self._original, application)
        self.application = application.model_copy(deep=True)

    def add_magic_link(self, link: MagicLinkRecord) -> None:
        self._links.append(link)


class MemoryStore:
    """In-process implementation of ``ScreeningStore`` and ``OutboxStore``."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tenants: dict[str, TenantRecord] = {}
        self._jobs: dict[str, JobRecord] = {}
        self._flow_versions: dict[str, FlowVersionRecord] = {}
        self._candidates: dict[str, CandidateRecord] = {}
        self._applications: dict[str, ApplicationRecord] = {}
        self._answers: dict[str, list[SavedAnswer]] = {}
        self._magic_links: dict[str, MagicLinkRecord] = {}
        self._outbox: dict[str, OutboxItem] = {}
        self._dedupe: dict[str, str] = {}
        self._application_locks: dict[str, threading.Lock] = {}
        self._item_locks: dict[str, threading.Lock] = {}

    # tenants / jobs / flow versions

    def create_tenant(self, tenant: TenantRecord) -> TenantRecord:
        with self._lock:
            if tenant.slug in self._tenants:
                raise ConflictError(f"tenant slug already exists: {tenant.slug!r}")
            self._tenants[tenant.slug] = tenant.model_copy()
        return tenant

    def find_tenant(self, slug: str) -> TenantRecord | None:
        with self._lock:
            tenant = self._tenants.get(slug)
            return tenant.model_copy() if tenant else None

    def create_job(self, job: JobRecord) -> JobRecord:
        with self._lock:
            for existing in self._jobs.values():
                if existing.tenant_id == job.tenant_id and existing.public_slug == job.public_slug:
                    raise ConflictError(f"job public slug already exists: {job.public_slug!r}")
            self._jobs[job.id] = job.model_copy()
        return job

    def find_job(self, tenant_slug: str, job_id: str) -> JobRecord | None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.tenant_slug != tenant_slug:
                return None
            return job.model_copy()

    def update_job(self, job: JobRecord) -> JobRecord:
        with self._lock:
            if job.id not in self._jobs:
                raise NotFoundError("job", job.id)
            self._jobs[job.id] = job.model_copy()
        return job

    def publish_flow_version(self, draft: FlowVersionRecord) -> FlowVersionRecord:
        with self._lock:
            job = self._jobs.get(draft.job_id)
            if job is None:
                raise NotFoundError("job", draft.job_id)
            current = max((v.version for v in self._flow_versions.values() if v.job_id == job.id), default=0)
            version = draft.model_copy(update={"version": current + 1})
            self._flow_versions[version.id] = version
            self._jobs[job.id] = job.model_copy(
                update={"active_flow_version_id": version.id, "updated_at": version.created_at}
            )
        return version

    def get_flow_version(self, version_id: str) -> FlowVersionRecord | None:
        with self._lock:
            return self._flow_versions.get(version_id)

    def find_public_job(self, tenant_slug: str, public_slug: str) -> JobRecord | None:
        with self._lock:
            for job in self._jobs.values():
                if job.tenant_slug == tenant_slug and job.public_slug == public_slug:
                    return job.model_copy()
        return None

    # applications

    def start_application(self, candidate: CandidateRecord, application: ApplicationRecord) -> ApplicationRecord:
        with self._lock:
            self._candidates[candidate.id] = candidate.model_copy()
            self._applications[application.id] = application.model_copy(deep=True)
            self._answers[application.id] = []
        return application

    @contextmanager
    def application_scope(
        self, tenant_slug: str, public_slug: str, application_id: str
    ) -> Iterator[_MemoryApplicationScope | None]:
        with self._application_lock(application_id):
            scope = self._open_scope(tenant_slug, public_slug, application_id)
            if scope is None:
                yield None
                return
            yield scope
            with self._lock:
                self._applications[application_id] = scope.application
                self._answers[application_id] = scope.list_answers()
                for link in scope._links:
                    self._magic_links[link.token] = link

    def get_application(self, application_id: str) -> ApplicationRecord | None:
        with self._lock:
            application = self._applications.get(application_id)
            return application.model_copy(deep=True) if application else None

    def get_candidate(self, candidate_id: str) -> CandidateRecord | None:
        with self._lock:
            candidate = self._candidates.get(candidate_id)
            return candidate.model_copy() if candidate else None

    def find_magic_link(self, token: str) -> MagicLinkRecord | None:
        with self._lock:
            return self._magic_links.get(token)

    def _open_scope(
        self, tenant_slug: str, public_slug: str, application_id: str
    ) -> _MemoryApplicationScope | None:
        with self._lock:
            application = self._applications.get(application_id)
            if application is None:
                return None
            job = self._jobs.get(application.job_id)
            if job is None or job.tenant_slug != tenant_slug or job.public_slug != public_slug:
                return None
            flow_version = self._flow_versions.get(application.flow_version_id)
            if flow_version is None:
                return None
            return _MemoryApplicationScope(
                application.model_copy(deep=True),
                flow_version,
                list(self._answers.get(application_id, [])),
            )

    def _application_lock(self, application_id: str) -> threading.Lock:
        with self._lock:
            return self._application_locks.setdefault(application_id, threading.Lock())

    # outbox

    def insert_outbox_item(self, item: OutboxItem) -> OutboxItem:
        with self._lock:
            existing_id = self._dedupe.get(item.dedupe_key)
            if existing_id is not None:
                return self._outbox[existing_id].model_copy(deep=True)
            self._outbox[item.id] = item.model_copy(deep=True)
            self._dedupe[item.dedupe_key] = item.id
        return item

    def get_outbox_item(self, item_id: str) -> OutboxItem | None:
        with self._lock:
            item = self._outbox.get(item_id)
            return item.model_copy(deep=True) if item else None

    def list_pending_outbox(self, limit: int) -> list[OutboxItem]:
        with self._lock:
            pending = [item for item in self._outbox.values() if item.status == "pending"]
            pending.sort(key=lambda item: item.created_at)
            return [item.model_copy(deep=True) for item in pending[:limit]]

    def list_due_outbox(self, now: datetime, limit: int) -> list[OutboxItem]:
        with self._lock:
            return [item.model_copy(deep=True) for item in self._due(now)[:limit]]

    def claim_due_outbox(self, now: datetime, limit: int, lease_until: datetime) -> list[OutboxItem]:
        with self._lock:
            claimed = []
            for item in self._due(now)[:limit]:
                item.next_attempt_at = lease_until
                item.updated_at = now
                claimed.append(item.model_copy(deep=True))
            return claimed

    @contextmanager
    def outbox_item_scope(self, item_id: str) -> Iterator[OutboxItem | None]:
        with self._lock:
            lock = self._item_locks.setdefault(item_id, threading.Lock())
        with lock:
            with self._lock:
                stored = self._outbox.get(item_id)
                working = stored.model_copy(deep=True) if stored else None
            yield working
            if working is not None:
                with self._lock:
                    self._outbox[item_id] = working

    def _due(self, now: datetime) -> list[OutboxItem]:
        due = [
            item
            for item in self._outbox.values()
            if item.status == "pending" and item.next_attempt_at <= now
        ]
        due.sort(key=lambda item: item.next_attempt_at)
        return due


__all__ = ["MemoryStore"]
