from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest
import structlog

from flowscreen.core import FlowRunner, Outbox, TenantCatalog
from flowscreen.schemas.records import JobRecord, TenantRecord
from flowscreen.storage import MemoryStore


class ManualClock:
    """Clock that only moves when a test says so."""

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> datetime:
        self._now += timedelta(**kwargs)
        return self._now


@dataclass
class PublishedJob:
    tenant: TenantRecord
    job: JobRecord

    @property
    def tenant_slug(self) -> str:
        return self.tenant.slug

    @property
    def public_slug(self) -> str:
        return self.job.public_slug


def publish_default_job(catalog: TenantCatalog, *, tenant_slug: str = "acme", public_slug: str = "backend-dev") -> PublishedJob:
    tenant = catalog.bootstrap_tenant("Acme Recruiting", tenant_slug)
    job = catalog.create_job(tenant.slug, {"title": "Backend developer", "public_slug": public_slug, "status": "active"})
    catalog.publish_flow(tenant.slug, job.id)
    return PublishedJob(tenant=tenant, job=job)


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def catalog(store: MemoryStore, clock: ManualClock) -> TenantCatalog:
    return TenantCatalog(store=store, clock=clock)


@pytest.fixture
def runner(store: MemoryStore, clock: ManualClock) -> FlowRunner:
    return FlowRunner(store=store, clock=clock)


@pytest.fixture
def outbox(store: MemoryStore, clock: ManualClock) -> Outbox:
    return Outbox(store=store, clock=clock)


@pytest.fixture
def published(catalog: TenantCatalog) -> PublishedJob:
    return publish_default_job(catalog)


@pytest.fixture
def publish_job():
    return publish_default_job
