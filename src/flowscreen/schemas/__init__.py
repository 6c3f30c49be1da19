"""Pydantic schema definitions for flows, applications, records and the outbox."""

from __future__ import annotations

from .application import (
    AnswerInput,
    CandidateInput,
    FlowDraft,
    FlowNextResult,
    FlowSubmitResult,
    MagicLinkInput,
    MagicLinkResult,
    SaveAnswersInput,
    SavedAnswer,
    StartFlowInput,
)
from .flow import (
    CONSENT_QUESTION_ID,
    AnswerMembership,
    EdgeCondition,
    FlowDefinition,
    FlowEdge,
    FlowField,
    FlowNode,
    FlowQuestion,
    ScoreRange,
    ScoringRules,
    default_flow_definition,
    default_scoring_rules,
)
from .outbox import OutboxItem, WebhookEnvelope
from .records import (
    ApplicationRecord,
    CandidateRecord,
    CreateJobInput,
    CreateTenantInput,
    FlowVersionRecord,
    JobRecord,
    MagicLinkRecord,
    TenantRecord,
)

__all__ = [
    "AnswerInput",
    "CandidateInput",
    "FlowDraft",
    "FlowNextResult",
    "FlowSubmitResult",
    "MagicLinkInput",
    "MagicLinkResult",
    "SaveAnswersInput",
    "SavedAnswer",
    "StartFlowInput",
    "CONSENT_QUESTION_ID",
    "AnswerMembership",
    "EdgeCondition",
    "FlowDefinition",
    "FlowEdge",
    "FlowField",
    "FlowNode",
    "FlowQuestion",
    "ScoreRange",
    "ScoringRules",
    "default_flow_definition",
    "default_scoring_rules",
    "OutboxItem",
    "WebhookEnvelope",
    "ApplicationRecord",
    "CandidateRecord",
    "CreateJobInput",
    "CreateTenantInput",
    "FlowVersionRecord",
    "JobRecord",
    "MagicLinkRecord",
    "TenantRecord",
]
