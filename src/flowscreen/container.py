"""Dependency injection container for the recruiting core."""

from __future__ import annotations

from typing import Any

from dependency_injector import containers, providers

from .clock import SystemClock
from .core import FlowRunner, Outbox, TenantCatalog
from .dispatch import OutboxDispatcher, UrllibWebhookTransport
from .schemas.config import AppConfig, load_config
from .service import CandidateFlowService
from .storage import MemoryStore, SqlStore


class FlowScreenContainer(containers.DeclarativeContainer):
    """Dependency-injector container definition."""

    config = providers.Configuration()

    clock = providers.Singleton(SystemClock)

    memory_store = providers.Singleton(MemoryStore)
    sql_store = providers.Singleton(SqlStore.from_url, url=config.storage.database_url)

    # One store serves both the screening and the outbox side.
    store = providers.Selector(
        config.storage.backend,
        memory=memory_store,
        sql=sql_store,
    )

    catalog = providers.Singleton(TenantCatalog, store=store, clock=clock)
    runner = providers.Singleton(FlowRunner, store=store, clock=clock)

    outbox = providers.Singleton(
        Outbox,
        store=store,
        clock=clock,
        max_attempts=config.outbox.max_attempts,
        retry_schedule=config.outbox.retry_schedule_seconds,
    )

    transport = providers.Singleton(UrllibWebhookTransport)

    dispatcher = providers.Factory(
        OutboxDispatcher,
        outbox=outbox,
        transport=transport,
        target_url=config.webhook.target_url,
        secret=config.webhook.secret,
        timeout=config.webhook.timeout_seconds,
        batch_size=config.outbox.dispatch_batch_size,
        max_workers=config.outbox.max_workers,
        lease_seconds=config.outbox.claim_lease_seconds,
    )

    flow_service = providers.Factory(
        CandidateFlowService,
        runner=runner,
        outbox=outbox,
    )


def create_container(*, settings: dict[str, Any] | AppConfig | None = None) -> FlowScreenContainer:
    """Instantiate the container from raw settings or a validated ``AppConfig``."""

    if isinstance(settings, AppConfig):
        app_config = settings
    else:
        app_config = load_config(settings or {})

    if app_config.storage.backend == "sql" and not app_config.storage.database_url:
        raise ValueError("storage.database_url is required for the sql backend")

    container = FlowScreenContainer()
    container.config.from_dict(app_config.to_settings())
    return container


__all__ = ["FlowScreenContainer", "create_container"]
