"""Persistent entity records exchanged with storage backends."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .application import ApplicationStatus
from .flow import FlowDefinition, ScoringRules

JobStatus = Literal["draft", "active", "paused", "archived"]
WorkFormat = Literal["office", "remote", "hybrid"]
EmploymentType = Literal["full_time", "part_time", "project", "internship"]

SLUG_PATTERN = r"^[a-z0-9-]+$"


class TenantRecord(BaseModel):
    id: str
    name: str
    slug: str
    created_at: datetime


class JobRecord(BaseModel):
    id: str
    tenant_id: str
    tenant_slug: str
    title: str
    status: JobStatus
    public_slug: str
    work_format: WorkFormat
    employment_type: EmploymentType
    description_short: str | None = None
    active_flow_version_id: str | None = None
    created_at: datetime
    updated_at: datetime


class FlowVersionRecord(BaseModel):
    """Published flow snapshot. Never mutated after creation."""

    id: str
    tenant_id: str
    job_id: str
    version: int
    definition: FlowDefinition
    scoring_rules: ScoringRules
    created_at: datetime

    model_config = ConfigDict(frozen=True)


class CandidateRecord(BaseModel):
    id: str
    tenant_id: str
    full_name: str | None = None
    phone_e164: str | None = None
    email: str | None = None
    created_at: datetime


class ApplicationRecord(BaseModel):
    id: str
    tenant_id: str
    job_id: str
    candidate_id: str
    flow_version_id: str
    status: ApplicationStatus = "new"
    stage: str = "New"
    score_total: float = 0
    score_breakdown: dict[str, float] = Field(default_factory=dict)
    submitted_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class MagicLinkRecord(BaseModel):
    token: str
    application_id: str
    expires_at: datetime
    created_at: datetime


class CreateTenantInput(BaseModel):
    name: str = Field(min_length=2)
    slug: str = Field(min_length=2, pattern=SLUG_PATTERN)

    model_config = ConfigDict(extra="forbid")


class CreateJobInput(BaseModel):
    title: str = Field(min_length=2)
    status: JobStatus = "draft"
    work_format: WorkFormat = "remote"
    employment_type: EmploymentType = "full_time"
    public_slug: str = Field(min_length=2, pattern=SLUG_PATTERN)
    description_short: str | None = Field(default=None, max_length=500)

    model_config = ConfigDict(extra="forbid")


__all__ = [
    "JobStatus",
    "WorkFormat",
    "EmploymentType",
    "TenantRecord",
    "JobRecord",
    "FlowVersionRecord",
    "CandidateRecord",
    "ApplicationRecord",
    "MagicLinkRecord",
    "CreateTenantInput",
    "CreateJobInput",
]
