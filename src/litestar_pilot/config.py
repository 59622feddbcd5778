"""Runtime configuration for litestar-pilot.

Values come from keyword arguments or, through :meth:`PilotConfig.from_env`,
from environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from litestar_pilot.exceptions import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Mapping

__all__ = ["PilotConfig"]

DEFAULT_FAST_MODEL = "google/gemini-2.5-flash"
DEFAULT_SMART_MODEL = "anthropic/claude-sonnet-4"
DEFAULT_THREAD_TTL_MS = 5 * 60 * 1000
DEFAULT_TASKS_DIR = "~/Projects/tasks"
DEFAULT_WORKFLOW = "fast-router"


def _int_setting(env: Mapping[str, str], key: str, default: int | None) -> int | None:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigurationError(key, raw, "expected an integer") from e
    if value < 0:
        raise ConfigurationError(key, raw, "must not be negative")
    return value


@dataclass
class PilotConfig:
    """Engine configuration.

    Attributes:
        fast_model: Model id used for ``fast`` LLM steps.
        smart_model: Model id used for every other LLM step.
        thread_ttl_ms: How long a completed task stays continuable as a thread.
        tasks_dir: Directory of the file task store.
        custom_workflows_dir: Optional directory of user workflow documents.
        default_workflow: Workflow used for free-form messages.
        task_ttl_ms: Optional lifetime stamped on new tasks.
        database_url: Optional SQLAlchemy URL; selects the database task store.
        log_level: Level of the ``litestar_pilot`` logger.
        history_turns: History entries forwarded to the model.
        max_history: History entries kept on a thread.
    """

    fast_model: str = DEFAULT_FAST_MODEL
    smart_model: str = DEFAULT_SMART_MODEL
    thread_ttl_ms: int = DEFAULT_THREAD_TTL_MS
    tasks_dir: Path = Path(DEFAULT_TASKS_DIR).expanduser()
    custom_workflows_dir: Path | None = None
    default_workflow: str = DEFAULT_WORKFLOW
    task_ttl_ms: int | None = None
    database_url: str | None = None
    log_level: str = "INFO"
    history_turns: int = 4
    max_history: int = 20

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> PilotConfig:
        """Build a configuration from environment variables.

        Args:
            env: Mapping to read instead of ``os.environ``.

        Returns:
            The parsed configuration.

        Raises:
            ConfigurationError: If an integer setting cannot be parsed.

        Example:
            >>> PilotConfig.from_env({"THREAD_TTL_MS": "1000"}).thread_ttl_ms
            1000
        """
        env = os.environ if env is None else env
        custom_dir = env.get("CUSTOM_WORKFLOWS_DIR")
        return cls(
            fast_model=env.get("FAST_MODEL") or DEFAULT_FAST_MODEL,
            smart_model=env.get("SMART_MODEL") or DEFAULT_SMART_MODEL,
            thread_ttl_ms=_int_setting(env, "THREAD_TTL_MS", DEFAULT_THREAD_TTL_MS),  # type: ignore[arg-type]
            tasks_dir=Path(env.get("TASKS_DIR") or DEFAULT_TASKS_DIR).expanduser(),
            custom_workflows_dir=Path(custom_dir).expanduser() if custom_dir else None,
            default_workflow=env.get("DEFAULT_WORKFLOW") or DEFAULT_WORKFLOW,
            task_ttl_ms=_int_setting(env, "TASK_TTL_MS", None),
            database_url=env.get("PILOT_DATABASE_URL") or None,
            log_level=(env.get("PILOT_LOG_LEVEL") or "INFO").upper(),
        )

    def model_for(self, tier: str) -> str:
        """Map a model tier to a concrete model id; anything but ``fast`` is smart."""
        return self.fast_model if tier == "fast" else self.smart_model
