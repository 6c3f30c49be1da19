"""Webhook delivery of outbox items.

Each cycle claims the due items, POSTs one signed JSON envelope per item and
records the outcome on the item. Delivery is at-least-once; receivers
deduplicate on ``event_id`` (the ``x-event-id`` header).
"""

from __future__ import annotations

import hashlib
import hmac
import json
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Protocol
from urllib import error, request

import structlog

from .core.outbox import Outbox
from .errors import TransientDeliveryError, WebhookNotConfiguredError
from .schemas.outbox import OutboxItem, WebhookEnvelope


def format_occurred_at(moment: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a ``Z`` suffix."""
    utc = moment.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def build_envelope(item: OutboxItem, occurred_at: datetime) -> WebhookEnvelope:
    return WebhookEnvelope(
        event_id=item.id,
        event_type=item.event_type,
        occurred_at=format_occurred_at(occurred_at),
        data=dict(item.payload),
    )


def serialize_envelope(envelope: WebhookEnvelope) -> bytes:
    """Compact JSON body; the signature covers exactly these bytes."""
    return json.dumps(envelope.model_dump(mode="json"), ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def sign_body(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class WebhookTransport(Protocol):
    def post(self, url: str, body: bytes, headers: Mapping[str, str], timeout: float) -> int:
        """Send the request and return the HTTP status code.

        Raises ``TransientDeliveryError`` when no response was received.
        """


class UrllibWebhookTransport:
    """HTTP transport on top of ``urllib.request``."""

    def post(self, url: str, body: bytes, headers: Mapping[str, str], timeout: float) -> int:
        req = request.Request(url, data=body, headers=dict(headers), method="POST")
        try:
            with request.urlopen(req, timeout=timeout) as resp:
                resp.read()
                return resp.status
        except error.HTTPError as exc:
            return exc.code
        except error.URLError as exc:
            raise TransientDeliveryError(str(exc.reason)) from exc
        except (TimeoutError, OSError) as exc:
            raise TransientDeliveryError(str(exc)) from exc


class AuditLogger:
    """Append-only JSON lines log of delivery attempts."""

    def __init__(self, path: Path):
        self._path = path
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def append(self, record: dict) -> None:
        with self._lock, self._path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record, ensure_ascii=False))
            handle.write("\n")


@dataclass(slots=True)
class DispatchReport:
    due: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"due": self.due, "sent": self.sent, "retried": self.retried, "failed": self.failed}


@dataclass(slots=True, frozen=True)
class _Attempt:
    item_id: str
    sent: bool
    status_code: int | None
    error: str | None
    exhausted: bool


class OutboxDispatcher:
    """Runs one delivery cycle over the due outbox items.

    ``retried`` in the report counts every failed attempt; ``failed`` is the
    subset whose item reached the attempt cap during this cycle.
    """

    def __init__(
        self,
        *,
        outbox: Outbox,
        transport: WebhookTransport,
        target_url: str | None,
        secret: str,
        timeout: float = 10.0,
        batch_size: int = 20,
        max_workers: int = 1,
        lease_seconds: int = 300,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._outbox = outbox
        self._transport = transport
        self._target_url = (target_url or "").strip() or None
        self._secret = secret
        self._timeout = timeout
        self._batch_size = batch_size
        self._max_workers = max(1, max_workers)
        self._lease_seconds = lease_seconds
        self._audit = audit_logger
        self._logger = structlog.get_logger(__name__)

    @property
    def configured(self) -> bool:
        return self._target_url is not None

    def dispatch(self) -> DispatchReport:
        if self._target_url is None:
            raise WebhookNotConfiguredError("webhook_target_not_configured")

        items = self._outbox.claim_due(limit=self._batch_size, lease_seconds=self._lease_seconds)
        report = DispatchReport(due=len(items))
        if not items:
            self._logger.debug("dispatch.idle")
            return report

        if self._max_workers > 1 and len(items) > 1:
            with ThreadPoolExecutor(max_workers=min(self._max_workers, len(items))) as pool:
                attempts = list(pool.map(self._deliver, items))
        else:
            attempts = [self._deliver(item) for item in items]

        for attempt in attempts:
            if attempt.sent:
                report.sent += 1
            else:
                report.retried += 1
                if attempt.exhausted:
                    report.failed += 1

        self._logger.info("dispatch.completed", **report.to_dict())
        return report

    def _deliver(self, item: OutboxItem) -> _Attempt:
        envelope = build_envelope(item, self._outbox.clock.now())
        body = serialize_envelope(envelope)
        headers = {
            "content-type": "application/json",
            "x-event-id": item.id,
            "x-signature": sign_body(self._secret, body),
        }

        status_code: int | None = None
        try:
            status_code = self._transport.post(self._target_url, body, headers, self._timeout)
        except TransientDeliveryError as exc:
            failure = str(exc)
        except Exception as exc:  # one bad item must not abort the batch
            self._logger.exception("dispatch.unexpected_error", item_id=item.id)
            failure = f"{type(exc).__name__}: {exc}"
        else:
            failure = None if 200 <= status_code < 300 else f"http_{status_code}"

        if failure is None:
            self._outbox.mark_sent(item.id)
            attempt = _Attempt(item.id, True, status_code, None, False)
        else:
            updated = self._outbox.mark_retry(item.id, failure)
            exhausted = updated is not None and updated.status == "failed"
            attempt = _Attempt(item.id, False, status_code, failure, exhausted)

        self._record(envelope, attempt)
        return attempt

    def _record(self, envelope: WebhookEnvelope, attempt: _Attempt) -> None:
        if self._audit is None:
            return
        self._audit.append(
            {
                "event_id": envelope.event_id,
                "event_type": envelope.event_type,
                "occurred_at": envelope.occurred_at,
                "outcome": "sent" if attempt.sent else ("failed" if attempt.exhausted else "retry"),
                "status_code": attempt.status_code,
                "error": attempt.error,
            }
        )


__all__ = [
    "AuditLogger",
    "DispatchReport",
    "OutboxDispatcher",
    "UrllibWebhookTransport",
    "WebhookTransport",
    "build_envelope",
    "format_occurred_at",
    "serialize_envelope",
    "sign_body",
]
