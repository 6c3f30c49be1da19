"""Domain logic: flow evaluation, authoring checks, the runner and the outbox."""

from .catalog import TenantCatalog
from .evaluator import (
    Outcome,
    ScoreResult,
    missing_required,
    required_question_ids,
    resolve_next_node,
    resolve_outcome,
    score_answers,
)
from .outbox import MAX_ATTEMPTS, RETRY_SCHEDULE_SECONDS, Outbox, retry_delay_seconds
from .runner import FlowRunner
from .validation import FlowIssue, ensure_valid_flow, validate_flow

__all__ = [
    "TenantCatalog",
    "Outcome",
    "ScoreResult",
    "missing_required",
    "required_question_ids",
    "resolve_next_node",
    "resolve_outcome",
    "score_answers",
    "MAX_ATTEMPTS",
    "RETRY_SCHEDULE_SECONDS",
    "Outbox",
    "retry_delay_seconds",
    "FlowRunner",
    "FlowIssue",
    "ensure_valid_flow",
    "validate_flow",
]
