from __future__ import annotations

import json

import pytest
from pydantic import ValidationError
from typer.testing import CliRunner

from question_rotation import main as cli
from question_rotation.config import Settings
from question_rotation.coordinator import RotationCoordinator, available_backends, create_coordinator
from question_rotation.generation.catalog import FALLBACK_QUESTIONS
from question_rotation.generation.openai_generator import OpenAICandidateGenerator
from question_rotation.infrastructure.memory_store import MemoryItemStore
from question_rotation.infrastructure.store import SCHEMA_SQL
from scripts import setup_schema

runner = CliRunner()

ENV_OVERRIDES = (
    "DB_HOST",
    "DB_PORT",
    "DB_USER",
    "DB_NAME",
    "ROTATION_GRANULARITY",
    "REFERENCE_TIMEZONE",
    "PREGENERATE_LEAD_MINUTES",
    "AVOID_LIST_LIMIT",
)


def _quiet_cli(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "get_settings", _memory_settings)
    monkeypatch.setattr(cli, "configure_logging", lambda **kwargs: None)


def _memory_settings(**overrides) -> Settings:
    values = {"store_backend": "memory", "openai_api_key": None, "log_level": "WARNING"}
    values.update(overrides)
    return Settings(**values)


def test_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    settings = Settings()
    assert settings.db_host == "localhost"
    assert settings.db_port == 5432
    assert settings.db_name == "question_rotation"
    assert settings.rotation_granularity == "day"
    assert settings.reference_timezone == "UTC"
    assert settings.pregenerate_lead_minutes == 5
    assert settings.avoid_list_limit == 20
    assert settings.dsn.startswith("postgresql://")


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ROTATION_GRANULARITY", "hour")
    monkeypatch.setenv("REFERENCE_TIMEZONE", "America/New_York")
    monkeypatch.setenv("PREGENERATE_ENABLED", "false")

    settings = Settings()

    assert settings.rotation_granularity == "hour"
    assert settings.reference_timezone == "America/New_York"
    assert settings.pregenerate_enabled is False


def test_settings_reject_unknown_timezone() -> None:
    with pytest.raises(ValidationError):
        Settings(reference_timezone="Nowhere/Special")


def test_available_backends_contains_known_entries() -> None:
    names = available_backends()
    assert names == sorted(names)
    assert {"memory", "postgres"} <= set(names)


@pytest.mark.asyncio
async def test_create_coordinator_from_memory_settings() -> None:
    settings = _memory_settings(rotation_granularity="hour", pregenerate_enabled=False)

    coordinator = await create_coordinator(settings)
    async with coordinator:
        view = await coordinator.get_current()

    assert isinstance(coordinator, RotationCoordinator)
    assert isinstance(coordinator.store, MemoryItemStore)
    assert isinstance(coordinator.generator, OpenAICandidateGenerator)
    assert coordinator.clock.granularity.value == "hour"
    assert coordinator.pregenerate is False
    assert view.text in FALLBACK_QUESTIONS


@pytest.mark.asyncio
async def test_create_coordinator_rejects_unknown_backend() -> None:
    settings = _memory_settings().model_copy(update={"store_backend": "sqlite"})
    with pytest.raises(ValueError):
        await create_coordinator(settings)


def test_cli_current_as_json(monkeypatch: pytest.MonkeyPatch) -> None:
    _quiet_cli(monkeypatch)

    result = runner.invoke(cli.app, ["current", "--json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["text"] in FALLBACK_QUESTIONS
    assert payload["degraded"] is False


def test_cli_initialize_and_history(monkeypatch: pytest.MonkeyPatch) -> None:
    _quiet_cli(monkeypatch)

    initialized = runner.invoke(cli.app, ["initialize", "--json"])
    history = runner.invoke(cli.app, ["history", "--json"])

    assert initialized.exit_code == 0, initialized.output
    snapshot = json.loads(initialized.stdout)
    assert snapshot["next"]["text"] in FALLBACK_QUESTIONS
    assert json.loads(history.stdout) == []


def test_cli_info_lists_backends(monkeypatch: pytest.MonkeyPatch) -> None:
    _quiet_cli(monkeypatch)

    result = runner.invoke(cli.app, ["info"])

    assert result.exit_code == 0
    assert "memory" in result.output


def test_setup_schema_show_prints_ddl() -> None:
    result = runner.invoke(setup_schema.app, ["show"])
    assert result.exit_code == 0
    assert "CREATE TABLE IF NOT EXISTS public.questions" in result.output
    assert "questions_one_current" in result.output


def test_schema_enforces_single_flag_holders() -> None:
    assert "CREATE UNIQUE INDEX IF NOT EXISTS questions_one_current" in SCHEMA_SQL
    assert "WHERE is_next" in SCHEMA_SQL
    assert "CHECK (NOT (is_current AND is_next))" in SCHEMA_SQL
