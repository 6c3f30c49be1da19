"""Transactional outbox: enqueue once, retry with backoff, give up after a cap."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Sequence

import structlog

from ..clock import Clock
from ..schemas.outbox import EventType, OutboxItem
from ..storage.base import OutboxStore

RETRY_SCHEDULE_SECONDS: tuple[int, ...] = (60, 300, 1800, 7200)
MAX_ATTEMPTS = 10
LAST_ERROR_LIMIT = 2000


def retry_delay_seconds(attempt: int, schedule: Sequence[int] = RETRY_SCHEDULE_SECONDS) -> int:
    """Delay before retrying after the ``attempt``-th failure (1-based).

    Attempts past the end of the schedule reuse its last entry.
    """
    index = min(max(attempt, 1), len(schedule)) - 1
    return schedule[index]


def application_submitted_key(application_id: str) -> str:
    return f"application_submitted:{application_id}"


class Outbox:
    """Owns status transitions of outbox items; the store only persists them."""

    def __init__(
        self,
        *,
        store: OutboxStore,
        clock: Clock,
        max_attempts: int = MAX_ATTEMPTS,
        retry_schedule: Sequence[int] = RETRY_SCHEDULE_SECONDS,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        if not retry_schedule:
            raise ValueError("retry_schedule must not be empty")
        self._store = store
        self._clock = clock
        self._max_attempts = max_attempts
        self._schedule = tuple(retry_schedule)
        self._new_id = id_factory
        self._logger = structlog.get_logger(__name__)

    @property
    def clock(self) -> Clock:
        return self._clock

    def enqueue(self, event_type: EventType, payload: dict[str, Any], dedupe_key: str) -> OutboxItem:
        """Insert a pending item, or return the existing one for ``dedupe_key``."""
        now = self._clock.now()
        candidate = OutboxItem(
            id=self._new_id(),
            event_type=event_type,
            payload=dict(payload),
            status="pending",
            attempts=0,
            next_attempt_at=now,
            dedupe_key=dedupe_key,
            last_error=None,
            created_at=now,
            updated_at=now,
        )
        stored = self._store.insert_outbox_item(candidate)
        if stored.id == candidate.id:
            self._logger.info("outbox.enqueued", item_id=stored.id, event_type=event_type, dedupe_key=dedupe_key)
        else:
            self._logger.debug("outbox.deduplicated", item_id=stored.id, dedupe_key=dedupe_key)
        return stored

    def enqueue_application_submitted(self, application_id: str) -> OutboxItem:
        return self.enqueue(
            "application_submitted",
            {"application_id": application_id},
            application_submitted_key(application_id),
        )

    def list_pending(self, limit: int = 100) -> list[OutboxItem]:
        return self._store.list_pending_outbox(limit)

    def list_due(self, now: datetime | None = None, limit: int = 20) -> list[OutboxItem]:
        return self._store.list_due_outbox(now or self._clock.now(), limit)

    def claim_due(self, limit: int = 20, lease_seconds: int = 300) -> list[OutboxItem]:
        """Reserve due items so a concurrent dispatch cycle skips them.

        A claimed item that is never marked becomes due again when the lease
        runs out.
        """
        now = self._clock.now()
        return self._store.claim_due_outbox(now, limit, now + timedelta(seconds=lease_seconds))

    def mark_sent(self, item_id: str) -> OutboxItem | None:
        with self._store.outbox_item_scope(item_id) as item:
            if item is None:
                return None
            if item.status != "pending":
                return item
            now = self._clock.now()
            item.status = "sent"
            item.last_error = None
            item.updated_at = now
        self._logger.info("outbox.sent", item_id=item_id)
        return item

    def mark_retry(self, item_id: str, error: str) -> OutboxItem | None:
        """Record a failed attempt; no-op for unknown or already settled items."""
        with self._store.outbox_item_scope(item_id) as item:
            if item is None or item.status != "pending":
                return item
            now = self._clock.now()
            attempts = item.attempts + 1
            item.attempts = attempts
            item.last_error = (error or "")[:LAST_ERROR_LIMIT]
            item.updated_at = now
            if attempts >= self._max_attempts:
                item.status = "failed"
            else:
                item.next_attempt_at = now + timedelta(seconds=retry_delay_seconds(attempts, self._schedule))

        if item.status == "failed":
            self._logger.error("outbox.failed", item_id=item_id, attempts=item.attempts, error=item.last_error)
        else:
            self._logger.warning(
                "outbox.retry_scheduled",
                item_id=item_id,
                attempts=item.attempts,
                next_attempt_at=item.next_attempt_at.isoformat(),
            )
        return item


__all__ = [
    "Outbox",
    "RETRY_SCHEDULE_SECONDS",
    "MAX_ATTEMPTS",
    "LAST_ERROR_LIMIT",
    "application_submitted_key",
    "retry_delay_seconds",
]
