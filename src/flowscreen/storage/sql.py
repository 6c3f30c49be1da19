"""SQLAlchemy storage backend.

Each public method runs in its own transaction; scopes hold their
transaction (and row locks where the database supports them) for the
whole ``with`` block and roll back if it raises.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Sequence

import structlog
from sqlalchemy import create_engine, delete, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..errors import ConflictError, NotFoundError
from ..schemas.application import SavedAnswer
from ..schemas.flow import FlowDefinition, ScoringRules
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
from .sql_models import (
    AnswerRow,
    ApplicationRow,
    Base,
    CandidateRow,
    FlowVersionRow,
    JobRow,
    MagicLinkRow,
    OutboxRow,
    TenantRow,
)


class _SqlApplicationScope:
    def __init__(self, session: Session, row: ApplicationRow, flow_version: FlowVersionRecord) -> None:
        self._session = session
        self._row = row
        self._original = _application_record(row)
        self.application = self._original.model_copy(deep=True)
        self.flow_version = flow_version

    def list_answers(self) -> list[SavedAnswer]:
        stmt = (
            select(AnswerRow)
            .where(AnswerRow.application_id == self._row.id)
            .order_by(AnswerRow.id)
        )
        return [
            SavedAnswer(
                node_key=answer.node_key,
                question_id=answer.question_id,
                question_text=answer.question_text_snapshot,
                value=answer.value,
            )
            for answer in self._session.execute(stmt).scalars()
        ]

    def replace_answers(self, node_key: str, answers: Sequence[SavedAnswer], answered_at: datetime) -> None:
        self._session.execute(
            delete(AnswerRow).where(
                AnswerRow.application_id == self._row.id,
                AnswerRow.node_key == node_key,
            )
        )
        for answer in answers:
            self._session.add(
                AnswerRow(
                    tenant_id=self._row.tenant_id,
                    application_id=self._row.id,
                    node_key=node_key,
                    question_id=answer.question_id,
                    question_text_snapshot=answer.question_text,
                    value=answer.value,
                    answered_at=answered_at,
                )
            )
        self._session.flush()

    def update_application(self, application: ApplicationRecord) -> None:
        check_application_update(self._original, application)
        row = self._row
        row.status = application.status
        row.stage = application.stage
        row.score_total = application.score_total
        row.score_breakdown = dict(application.score_breakdown)
        row.submitted_at = application.submitted_at
        row.updated_at = application.updated_at
        self._session.flush()
        self.application = application.model_copy(deep=True)

    def add_magic_link(self, link: MagicLinkRecord) -> None:
        self._session.add(
            MagicLinkRow(
                token=link.token,
                application_id=link.application_id,
                expires_at=link.expires_at,
                created_at=link.created_at,
            )
        )
        self._session.flush()


class SqlStore:
    """Relational implementation of ``ScreeningStore`` and ``OutboxStore``."""

    def __init__(self, engine: Engine):
        self._engine = engine
        self._sessions = sessionmaker(
            bind=engine,
            class_=Session,
            autoflush=False,
            expire_on_commit=False,
        )
        self._logger = structlog.get_logger(__name__)

    @classmethod
    def from_url(cls, url: str, *, echo: bool = False, create_schema: bool = False) -> "SqlStore":
        kwargs: dict = {"echo": echo, "future": True}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_pre_ping"] = True
        store = cls(create_engine(url, **kwargs))
        if create_schema:
            store.create_schema()
        return store

    def create_schema(self) -> None:
        Base.metadata.create_all(bind=self._engine)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._sessions()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # tenants / jobs / flow versions

    def create_tenant(self, tenant: TenantRecord) -> TenantRecord:
        try:
            with self._session() as session:
                taken = session.execute(select(TenantRow.id).where(TenantRow.slug == tenant.slug)).first()
                if taken is not None:
                    raise ConflictError(f"tenant slug already exists: {tenant.slug!r}")
                session.add(TenantRow(**tenant.model_dump()))
                session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"tenant slug already exists: {tenant.slug!r}") from exc
        return tenant

    def find_tenant(self, slug: str) -> TenantRecord | None:
        with self._session() as session:
            row = session.execute(select(TenantRow).where(TenantRow.slug == slug)).scalar_one_or_none()
            return TenantRecord.model_validate(row, from_attributes=True) if row else None

    def create_job(self, job: JobRecord) -> JobRecord:
        try:
            with self._session() as session:
                taken = session.execute(
                    select(JobRow.id).where(
                        JobRow.tenant_id == job.tenant_id,
                        JobRow.public_slug == job.public_slug,
                    )
                ).first()
                if taken is not None:
                    raise ConflictError(f"job public slug already exists: {job.public_slug!r}")
                session.add(JobRow(**job.model_dump(exclude={"tenant_slug"})))
                session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"job public slug already exists: {job.public_slug!r}") from exc
        return job

    def find_job(self, tenant_slug: str, job_id: str) -> JobRecord | None:
        with self._session() as session:
            stmt = (
                select(JobRow, TenantRow.slug)
                .join(TenantRow, TenantRow.id == JobRow.tenant_id)
                .where(JobRow.id == job_id, TenantRow.slug == tenant_slug)
            )
            found = session.execute(stmt).first()
            return _job_record(*found) if found else None

    def update_job(self, job: JobRecord) -> JobRecord:
        with self._session() as session:
            row = session.get(JobRow, job.id, with_for_update=True)
            if row is None:
                raise NotFoundError("job", job.id)
            for key, value in job.model_dump(exclude={"id", "tenant_id", "tenant_slug", "created_at"}).items():
                setattr(row, key, value)
        return job

    def publish_flow_version(self, draft: FlowVersionRecord) -> FlowVersionRecord:
        with self._session() as session:
            job = session.get(JobRow, draft.job_id, with_for_update=True)
            if job is None:
                raise NotFoundError("job", draft.job_id)
            current = session.execute(
                select(func.max(FlowVersionRow.version)).where(FlowVersionRow.job_id == job.id)
            ).scalar()
            version = draft.model_copy(update={"version": (current or 0) + 1})
            session.add(
                FlowVersionRow(
                    id=version.id,
                    tenant_id=version.tenant_id,
                    job_id=version.job_id,
                    version=version.version,
                    definition=version.definition.to_document(),
                    scoring_rules=version.scoring_rules.model_dump(mode="json"),
                    created_at=version.created_at,
                )
            )
            job.active_flow_version_id = version.id
            job.updated_at = version.created_at
        return version

    def get_flow_version(self, version_id: str) -> FlowVersionRecord | None:
        with self._session() as session:
            row = session.get(FlowVersionRow, version_id)
            return _flow_version_record(row) if row else None

    def find_public_job(self, tenant_slug: str, public_slug: str) -> JobRecord | None:
        with self._session() as session:
            stmt = (
                select(JobRow, TenantRow.slug)
                .join(TenantRow, TenantRow.id == JobRow.tenant_id)
                .where(TenantRow.slug == tenant_slug, JobRow.public_slug == public_slug)
                .limit(1)
            )
            found = session.execute(stmt).first()
            return _job_record(*found) if found else None

    # applications

    def start_application(self, candidate: CandidateRecord, application: ApplicationRecord) -> ApplicationRecord:
        with self._session() as session:
            session.add(CandidateRow(**candidate.model_dump()))
            session.flush()
            session.add(ApplicationRow(**application.model_dump()))
        return application

    @contextmanager
    def application_scope(
        self, tenant_slug: str, public_slug: str, application_id: str
    ) -> Iterator[_SqlApplicationScope | None]:
        with self._session() as session:
            stmt = (
                select(ApplicationRow)
                .join(JobRow, JobRow.id == ApplicationRow.job_id)
                .join(TenantRow, TenantRow.id == JobRow.tenant_id)
                .where(
                    ApplicationRow.id == application_id,
                    TenantRow.slug == tenant_slug,
                    JobRow.public_slug == public_slug,
                )
                .with_for_update(of=ApplicationRow)
            )
            row = session.execute(stmt).scalar_one_or_none()
            version = session.get(FlowVersionRow, row.flow_version_id) if row else None
            if row is None or version is None:
                yield None
                return
            yield _SqlApplicationScope(session, row, _flow_version_record(version))

    def get_application(self, application_id: str) -> ApplicationRecord | None:
        with self._session() as session:
            row = session.get(ApplicationRow, application_id)
            return _application_record(row) if row else None

    def get_candidate(self, candidate_id: str) -> CandidateRecord | None:
        with self._session() as session:
            row = session.get(CandidateRow, candidate_id)
            return CandidateRecord.model_validate(row, from_attributes=True) if row else None

    def find_magic_link(self, token: str) -> MagicLinkRecord | None:
        with self._session() as session:
            row = session.get(MagicLinkRow, token)
            return MagicLinkRecord.model_validate(row, from_attributes=True) if row else None

    # outbox

    def insert_outbox_item(self, item: OutboxItem) -> OutboxItem:
        try:
            with self._session() as session:
                existing = self._find_by_dedupe(session, item.dedupe_key)
                if existing is not None:
                    return existing
                session.add(OutboxRow(**item.model_dump()))
                session.flush()
        except IntegrityError:
            # Lost a race on the dedupe key; the winner's row is authoritative.
            self._logger.info("outbox.dedupe_race", dedupe_key=item.dedupe_key)
            with self._session() as session:
                existing = self._find_by_dedupe(session, item.dedupe_key)
            if existing is None:
                raise
            return existing
        return item

    def get_outbox_item(self, item_id: str) -> OutboxItem | None:
        with self._session() as session:
            row = session.get(OutboxRow, item_id)
            return _outbox_record(row) if row else None

    def list_pending_outbox(self, limit: int) -> list[OutboxItem]:
        with self._session() as session:
            stmt = (
                select(OutboxRow)
                .where(OutboxRow.status == "pending")
                .order_by(OutboxRow.created_at, OutboxRow.id)
                .limit(limit)
            )
            return [_outbox_record(row) for row in session.execute(stmt).scalars()]

    def list_due_outbox(self, now: datetime, limit: int) -> list[OutboxItem]:
        with self._session() as session:
            stmt = (
                select(OutboxRow)
                .where(OutboxRow.status == "pending", OutboxRow.next_attempt_at <= now)
                .order_by(OutboxRow.next_attempt_at, OutboxRow.id)
                .limit(limit)
            )
            return [_outbox_record(row) for row in session.execute(stmt).scalars()]

    def claim_due_outbox(self, now: datetime, limit: int, lease_until: datetime) -> list[OutboxItem]:
        with self._session() as session:
            stmt = (
                select(OutboxRow)
                .where(OutboxRow.status == "pending", OutboxRow.next_attempt_at <= now)
                .order_by(OutboxRow.next_attempt_at, OutboxRow.id)
                .limit(limit)
                .with_for_update(skip_locked=True)
            )
            rows = list(session.execute(stmt).scalars())
            for row in rows:
                row.next_attempt_at = lease_until
                row.updated_at = now
            session.flush()
            return [_outbox_record(row) for row in rows]

    @contextmanager
    def outbox_item_scope(self, item_id: str) -> Iterator[OutboxItem | None]:
        with self._session() as session:
            row = session.get(OutboxRow, item_id, with_for_update=True)
            if row is None:
                yield None
                return
            working = _outbox_record(row)
            yield working
            row.status = working.status
            row.attempts = working.attempts
            row.next_attempt_at = working.next_attempt_at
            row.last_error = working.last_error
            row.updated_at = working.updated_at

    @staticmethod
    def _find_by_dedupe(session: Session, dedupe_key: str) -> OutboxItem | None:
        row = session.execute(select(OutboxRow).where(OutboxRow.dedupe_key == dedupe_key)).scalar_one_or_none()
        return _outbox_record(row) if row else None


def _job_record(row: JobRow, tenant_slug: str) -> JobRecord:
    return JobRecord(
        id=row.id,
        tenant_id=row.tenant_id,
        tenant_slug=tenant_slug,
        title=row.title,
        status=row.status,
        public_slug=row.public_slug,
        work_format=row.work_format,
        employment_type=row.employment_type,
        description_short=row.description_short,
        active_flow_version_id=row.active_flow_version_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _flow_version_record(row: FlowVersionRow) -> FlowVersionRecord:
    return FlowVersionRecord(
        id=row.id,
        tenant_id=row.tenant_id,
        job_id=row.job_id,
        version=row.version,
        definition=FlowDefinition.model_validate(row.definition),
        scoring_rules=ScoringRules.model_validate(row.scoring_rules or {}),
        created_at=row.created_at,
    )


def _application_record(row: ApplicationRow) -> ApplicationRecord:
    return ApplicationRecord(
        id=row.id,
        tenant_id=row.tenant_id,
        job_id=row.job_id,
        candidate_id=row.candidate_id,
        flow_version_id=row.flow_version_id,
        status=row.status,
        stage=row.stage,
        score_total=row.score_total,
        score_breakdown=dict(row.score_breakdown or {}),
        submitted_at=row.submitted_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _outbox_record(row: OutboxRow) -> OutboxItem:
    return OutboxItem(
        id=row.id,
        event_type=row.event_type,
        payload=dict(row.payload or {}),
        status=row.status,
        attempts=row.attempts,
        next_attempt_at=row.next_attempt_at,
        dedupe_key=row.dedupe_key,
        last_error=row.last_error,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


__all__ = ["SqlStore"]
