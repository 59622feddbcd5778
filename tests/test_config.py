"""Tests for PilotConfig."""

from __future__ import annotations

from pathlib import Path

import pytest

from litestar_pilot.config import DEFAULT_FAST_MODEL, DEFAULT_SMART_MODEL, DEFAULT_THREAD_TTL_MS, PilotConfig
from litestar_pilot.exceptions import ConfigurationError


@pytest.mark.unit
class TestPilotConfig:
    """Tests for configuration defaults and environment parsing."""

    def test_defaults_from_empty_environment(self) -> None:
        """Test the defaults when nothing is set."""
        config = PilotConfig.from_env({})

        assert config.fast_model == DEFAULT_FAST_MODEL
        assert config.smart_model == DEFAULT_SMART_MODEL
        assert config.thread_ttl_ms == DEFAULT_THREAD_TTL_MS
        assert config.tasks_dir == Path("~/Projects/tasks").expanduser()
        assert config.custom_workflows_dir is None
        assert config.default_workflow == "fast-router"
        assert config.task_ttl_ms is None
        assert config.database_url is None
        assert config.log_level == "INFO"

    def test_values_from_environment(self, tmp_path: Path) -> None:
        """Test that every variable is read."""
        config = PilotConfig.from_env(
            {
                "FAST_MODEL": "acme/fast",
                "SMART_MODEL": "acme/smart",
                "THREAD_TTL_MS": "1000",
                "TASKS_DIR": str(tmp_path / "tasks"),
                "CUSTOM_WORKFLOWS_DIR": str(tmp_path / "workflows"),
                "DEFAULT_WORKFLOW": "research-first",
                "TASK_TTL_MS": "60000",
                "PILOT_DATABASE_URL": "sqlite+aiosqlite:///pilot.db",
                "PILOT_LOG_LEVEL": "debug",
            }
        )

        assert config.fast_model == "acme/fast"
        assert config.smart_model == "acme/smart"
        assert config.thread_ttl_ms == 1000
        assert config.tasks_dir == tmp_path / "tasks"
        assert config.custom_workflows_dir == tmp_path / "workflows"
        assert config.default_workflow == "research-first"
        assert config.task_ttl_ms == 60000
        assert config.database_url == "sqlite+aiosqlite:///pilot.db"
        assert config.log_level == "DEBUG"

    def test_blank_values_fall_back(self) -> None:
        """Test that empty strings count as unset."""
        config = PilotConfig.from_env({"FAST_MODEL": "", "THREAD_TTL_MS": "  ", "PILOT_DATABASE_URL": ""})

        assert config.fast_model == DEFAULT_FAST_MODEL
        assert config.thread_ttl_ms == DEFAULT_THREAD_TTL_MS
        assert config.database_url is None

    @pytest.mark.parametrize(("key", "value"), [("THREAD_TTL_MS", "soon"), ("TASK_TTL_MS", "-5")])
    def test_invalid_integers(self, key: str, value: str) -> None:
        """Test that malformed integers raise ConfigurationError."""
        with pytest.raises(ConfigurationError) as exc_info:
            PilotConfig.from_env({key: value})

        assert exc_info.value.key == key
        assert exc_info.value.value == value

    def test_reads_process_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that os.environ is used by default."""
        monkeypatch.setenv("FAST_MODEL", "env/fast")

        assert PilotConfig.from_env().fast_model == "env/fast"

    @pytest.mark.parametrize(("tier", "expected"), [("fast", "f"), ("smart", "s"), ("other", "s")])
    def test_model_for(self, tier: str, expected: str) -> None:
        """Test mapping model tiers to model ids."""
        assert PilotConfig(fast_model="f", smart_model="s").model_for(tier) == expected
