"""Exception taxonomy shared by the runner, catalog, outbox and dispatcher."""

from __future__ import annotations

from typing import Any


class FlowScreenError(Exception):
    """Base class for all flowscreen errors."""


class NotFoundError(FlowScreenError, LookupError):
    """Entity is absent or belongs to another tenant/job."""

    def __init__(self, entity: str, key: str):
        super().__init__(f"{entity} not found: {key!r}")
        self.entity = entity
        self.key = key


class ConflictError(FlowScreenError):
    """Unique key already taken (tenant slug, job public slug)."""


class FlowDefinitionError(FlowScreenError, ValueError):
    """Flow definition failed the authoring validation pass."""

    def __init__(self, issues: list[Any]):
        super().__init__("Flow definition is invalid")
        self.issues = issues

    def __str__(self) -> str:
        rendered = "; ".join(str(issue) for issue in self.issues)
        return f"Flow definition is invalid: {rendered}"


class TransientDeliveryError(FlowScreenError):
    """Webhook delivery failed in a way that should be retried."""


class WebhookNotConfiguredError(FlowScreenError):
    """Dispatch requested without a webhook target URL."""


class IntegrityInvariantViolation(FlowScreenError):
    """A write would break a persisted invariant; the transaction is rolled back."""


__all__ = [
    "FlowScreenError",
    "NotFoundError",
    "ConflictError",
    "FlowDefinitionError",
    "TransientDeliveryError",
    "WebhookNotConfiguredError",
    "IntegrityInvariantViolation",
]
