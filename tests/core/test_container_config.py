from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from flowscreen.clock import SystemClock
from flowscreen.config import ConfigManager
from flowscreen.container import create_container
from flowscreen.schemas.config import AppConfig, load_config, merge_settings, settings_from_env
from flowscreen.storage import MemoryStore, SqlStore


def test_default_container_shares_one_memory_store():
    container = create_container()

    store = container.store()
    assert isinstance(store, MemoryStore)
    assert container.store() is store
    assert container.runner()._store is store
    assert container.outbox()._store is store
    assert isinstance(container.clock(), SystemClock)
    assert container.clock().now().tzinfo is not None


def test_container_applies_outbox_and_webhook_settings():
    container = create_container(
        settings={
            "webhook": {"target_url": "https://hooks.example.test", "secret": "s3cr3t-value", "timeout_seconds": 4},
            "outbox": {"max_attempts": 3, "retry_schedule_seconds": [10, 20], "dispatch_batch_size": 5},
        }
    )

    outbox = container.outbox()
    dispatcher = container.dispatcher()

    assert outbox._max_attempts == 3
    assert outbox._schedule == (10, 20)
    assert dispatcher.configured is True
    assert dispatcher._timeout == 4
    assert dispatcher._batch_size == 5
    assert dispatcher._secret == "s3cr3t-value"


def test_container_selects_sql_backend():
    container = create_container(settings={"storage": {"backend": "sql", "database_url": "sqlite://"}})
    assert isinstance(container.store(), SqlStore)


def test_sql_backend_requires_url():
    with pytest.raises(ValueError):
        create_container(settings={"storage": {"backend": "sql"}})


def test_load_config_validation():
    app_config = load_config({"outbox": {"max_workers": 2}})

    assert isinstance(app_config, AppConfig)
    settings = app_config.to_settings()
    assert settings["outbox"]["max_workers"] == 2
    assert settings["outbox"]["retry_schedule_seconds"] == [60, 300, 1800, 7200]
    assert settings["webhook"]["secret"] == "dev-webhook-secret"
    assert settings["storage"]["backend"] == "memory"

    with pytest.raises(ValidationError):
        load_config(["not", "a", "mapping"])
    with pytest.raises(ValidationError):
        load_config({"webhook": {"secret": "short"}})


def test_settings_from_env():
    settings = settings_from_env(
        {
            "DATABASE_URL": "postgresql://db/flows",
            "WEBHOOK_TARGET_URL": " https://hooks.example.test ",
            "WEBHOOK_SECRET": "from-env-secret",
        }
    )

    assert settings == {
        "storage": {"backend": "sql", "database_url": "postgresql://db/flows"},
        "webhook": {"target_url": "https://hooks.example.test", "secret": "from-env-secret"},
    }
    assert settings_from_env({"WEBHOOK_TARGET_URL": "   "}) == {}


def test_merge_settings_is_recursive():
    base = {"webhook": {"secret": "file-secret", "timeout_seconds": 3}, "outbox": {"max_workers": 2}}
    merged = merge_settings(base, {"webhook": {"secret": "env-secret"}})

    assert merged == {"webhook": {"secret": "env-secret", "timeout_seconds": 3}, "outbox": {"max_workers": 2}}
    assert base["webhook"]["secret"] == "file-secret"


def test_config_manager_resolves_file_then_environment(tmp_path: Path):
    (tmp_path / "flowscreen.yaml").write_text(
        "webhook:\n  target_url: https://file.example.test\n  timeout_seconds: 2\noutbox:\n  max_attempts: 4\n",
        encoding="utf-8",
    )
    manager = ConfigManager(tmp_path)

    assert manager.load("flowscreen")["outbox"] == {"max_attempts": 4}

    app_config = manager.resolve(tmp_path / "flowscreen.yaml", environ={"WEBHOOK_TARGET_URL": "https://env.example.test"})

    assert app_config.webhook.target_url == "https://env.example.test"
    assert app_config.webhook.timeout_seconds == 2
    assert app_config.outbox.max_attempts == 4


def test_config_manager_rejects_non_mapping(tmp_path: Path):
    path = tmp_path / "bad.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        ConfigManager().load_file(path)
    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")
    assert ConfigManager().resolve(empty, environ={}) == AppConfig()
