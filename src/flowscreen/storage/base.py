"""Storage collaborator contracts.

Every context manager here is one unit of work: changes made through the
yielded object are committed when the block exits cleanly and discarded
when it raises.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Protocol, Sequence, runtime_checkable

from ..errors import IntegrityInvariantViolation
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


class ApplicationScope(Protocol):
    """Locked view of one application inside a transaction."""

    application: ApplicationRecord
    flow_version: FlowVersionRecord

    def list_answers(self) -> list[SavedAnswer]:
        """Return every saved answer of the application."""

    def replace_answers(self, node_key: str, answers: Sequence[SavedAnswer], answered_at: datetime) -> None:
        """Delete all answers stored for ``node_key`` and insert ``answers``."""

    def update_application(self, application: ApplicationRecord) -> None:
        """Persist the new application state."""

    def add_magic_link(self, link: MagicLinkRecord) -> None:
        """Store a resume token for this application."""


@runtime_checkable
class ScreeningStore(Protocol):
    def create_tenant(self, tenant: TenantRecord) -> TenantRecord:
        """Insert a tenant; raise ``ConflictError`` when the slug is taken."""

    def find_tenant(self, slug: str) -> TenantRecord | None:
        """Return the tenant with ``slug``."""

    def create_job(self, job: JobRecord) -> JobRecord:
        """Insert a job; raise ``ConflictError`` on a duplicate public slug in the tenant."""

    def find_job(self, tenant_slug: str, job_id: str) -> JobRecord | None:
        """Return a job scoped to its tenant."""

    def update_job(self, job: JobRecord) -> JobRecord:
        """Persist job fields."""

    def publish_flow_version(self, draft: FlowVersionRecord) -> FlowVersionRecord:
        """Number ``draft`` as the job's next version under the job lock, insert it and make it active."""

    def get_flow_version(self, version_id: str) -> FlowVersionRecord | None:
        """Return a published flow version."""

    def find_public_job(self, tenant_slug: str, public_slug: str) -> JobRecord | None:
        """Return a job by tenant slug and public slug regardless of status."""

    def start_application(self, candidate: CandidateRecord, application: ApplicationRecord) -> ApplicationRecord:
        """Insert candidate and application together."""

    def application_scope(
        self, tenant_slug: str, public_slug: str, application_id: str
    ) -> AbstractContextManager[ApplicationScope | None]:
        """Lock an application that belongs to the given tenant and job; yield ``None`` otherwise."""

    def get_application(self, application_id: str) -> ApplicationRecord | None:
        """Return an application without tenant scoping."""

    def find_magic_link(self, token: str) -> MagicLinkRecord | None:
        """Return the resume token record."""


@runtime_checkable
class OutboxStore(Protocol):
    def insert_outbox_item(self, item: OutboxItem) -> OutboxItem:
        """Insert ``item`` unless its dedupe key exists; return the stored item either way."""

    def list_pending_outbox(self, limit: int) -> list[OutboxItem]:
        """Pending items, oldest created first."""

    def list_due_outbox(self, now: datetime, limit: int) -> list[OutboxItem]:
        """Pending items due at ``now``, soonest due first."""

    def claim_due_outbox(self, now: datetime, limit: int, lease_until: datetime) -> list[OutboxItem]:
        """Atomically select due items and push their ``next_attempt_at`` to ``lease_until``."""

    def outbox_item_scope(self, item_id: str) -> AbstractContextManager[OutboxItem | None]:
        """Lock one item and yield a mutable copy; the copy is saved on clean exit."""


def check_application_update(before: ApplicationRecord, after: ApplicationRecord) -> None:
    """Reject writes that would rewrite a finalized submission."""
    if after.id != before.id:
        raise IntegrityInvariantViolation(f"application id changed from {before.id!r} to {after.id!r}")
    if before.submitted_at is not None and after.submitted_at != before.submitted_at:
        raise IntegrityInvariantViolation(f"application {before.id!r} is already submitted")


__all__ = [
    "ApplicationScope",
    "ScreeningStore",
    "OutboxStore",
    "check_application_update",
]
