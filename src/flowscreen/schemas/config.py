"""Pydantic configuration schema for YAML and environment input."""

from __future__ import annotations

from typing import Any, Literal, Mapping

from pydantic import BaseModel, Field, ValidationError


class StorageConfig(BaseModel):
    backend: Literal["memory", "sql"] = "memory"
    database_url: str | None = None


class WebhookConfig(BaseModel):
    target_url: str | None = None
    secret: str = Field(default="dev-webhook-secret", min_length=8)
    timeout_seconds: float = Field(default=10.0, gt=0)


class OutboxConfig(BaseModel):
    max_attempts: int = Field(default=10, ge=1)
    retry_schedule_seconds: list[int] = Field(default_factory=lambda: [60, 300, 1800, 7200], min_length=1)
    dispatch_batch_size: int = Field(default=20, ge=1)
    max_workers: int = Field(default=1, ge=1)
    claim_lease_seconds: int = Field(default=300, ge=1)


class AppConfig(BaseModel):
    storage: StorageConfig = Field(default_factory=StorageConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    outbox: OutboxConfig = Field(default_factory=OutboxConfig)

    def to_settings(self) -> dict[str, Any]:
        return self.model_dump(mode="python")


def load_config(raw: Any) -> AppConfig:
    if not isinstance(raw, dict):
        raise ValidationError.from_exception_data(
            "AppConfig",
            [{"type": "dict_type", "loc": ("config",), "input": raw}],
        )
    return AppConfig.model_validate(raw)


def settings_from_env(environ: Mapping[str, str]) -> dict[str, Any]:
    """Translate process environment variables into a settings mapping."""
    settings: dict[str, Any] = {}
    database_url = (environ.get("DATABASE_URL") or "").strip()
    if database_url:
        settings["storage"] = {"backend": "sql", "database_url": database_url}

    webhook: dict[str, Any] = {}
    target_url = (environ.get("WEBHOOK_TARGET_URL") or "").strip()
    if target_url:
        webhook["target_url"] = target_url
    secret = environ.get("WEBHOOK_SECRET")
    if secret:
        webhook["secret"] = secret
    if webhook:
        settings["webhook"] = webhook
    return settings


def merge_settings(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively overlay ``override`` onto ``base``; neither input is mutated."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_settings(merged[key], value)
        else:
            merged[key] = value
    return merged
