"""Runner inputs and results."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .flow import FlowDefinition, FlowNode, ScoringRules

ApplicationStatus = Literal["new", "screening", "reserve", "rejected"]


class SavedAnswer(BaseModel):
    """One stored answer; ``question_text`` is a snapshot taken at answer time."""

    node_key: str
    question_id: str
    question_text: str
    value: Any = None

    model_config = ConfigDict(frozen=True)


class CandidateInput(BaseModel):
    full_name: str | None = Field(default=None, min_length=2)
    phone_e164: str | None = Field(default=None, min_length=6)
    email: str | None = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

    model_config = ConfigDict(extra="forbid")

    @field_validator("email")
    @classmethod
    def _lowercase_email(cls, value: str | None) -> str | None:
        return value.lower() if value else value


class StartFlowInput(BaseModel):
    candidate: CandidateInput = Field(default_factory=CandidateInput)

    model_config = ConfigDict(extra="forbid")


class AnswerInput(BaseModel):
    question_id: str = Field(min_length=1)
    question_text: str = Field(min_length=1)
    value: Any = None

    model_config = ConfigDict(extra="forbid")


class SaveAnswersInput(BaseModel):
    node_key: str = Field(min_length=1)
    answers: list[AnswerInput] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


class MagicLinkInput(BaseModel):
    ttl_days: int = Field(default=7, ge=7, le=30)

    model_config = ConfigDict(extra="forbid")


class FlowDraft(BaseModel):
    """Application state as seen by the candidate-facing flow."""

    application_id: str
    tenant_id: str
    job_id: str
    flow_version_id: str
    status: ApplicationStatus
    stage: str
    score_total: float
    score_breakdown: dict[str, float]
    submitted_at: datetime | None
    flow: FlowDefinition
    scoring_rules: ScoringRules


class FlowSubmitResult(BaseModel):
    application_id: str
    status: ApplicationStatus
    stage: str
    score_total: float
    score_breakdown: dict[str, float]
    missing_required: list[str]
    submitted_at: datetime | None
    finalized_now: bool


class FlowNextResult(BaseModel):
    current_node_key: str
    current_node: FlowNode | None
    next_node_key: str | None
    next_node: FlowNode | None
    current_step: int
    total_steps: int
    score_total: float


class MagicLinkResult(BaseModel):
    token: str
    expires_at: datetime


__all__ = [
    "ApplicationStatus",
    "SavedAnswer",
    "CandidateInput",
    "StartFlowInput",
    "AnswerInput",
    "SaveAnswersInput",
    "MagicLinkInput",
    "FlowDraft",
    "FlowSubmitResult",
    "FlowNextResult",
    "MagicLinkResult",
]
