"""Tests for the PilotPlugin Litestar integration."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import pytest
from litestar import Litestar, get
from litestar.logging.config import LoggingConfig
from litestar.status_codes import HTTP_200_OK, HTTP_404_NOT_FOUND
from litestar.testing import AsyncTestClient

from litestar_pilot import PilotPlugin, PilotPluginConfig, PilotService
from litestar_pilot.config import PilotConfig
from litestar_pilot.core.models import Task
from litestar_pilot.engine.registry import WorkflowRegistry
from litestar_pilot.exceptions import ConfigurationError
from litestar_pilot.storage.file import FileTaskStore
from litestar_pilot.storage.memory import MemoryTaskStore
from tests.conftest import make_workflow, template_step

if TYPE_CHECKING:
    from pathlib import Path

    from tests.conftest import ScriptedCallbacks


@get("/echo-service")
async def describe_service(pilot_service: PilotService) -> dict[str, Any]:
    return {"default": pilot_service.config.default_workflow, "workflows": len(pilot_service.list_workflows())}


def _plugin_config(callbacks: ScriptedCallbacks, tmp_path: Path, **overrides: Any) -> PilotPluginConfig:
    options: dict[str, Any] = {
        "callbacks": callbacks,
        "config": PilotConfig(tasks_dir=tmp_path / "tasks"),
        "cleanup_interval": None,
    }
    options.update(overrides)
    return PilotPluginConfig(**options)


# =============================================================================
# Plugin Initialization Tests
# =============================================================================


@pytest.mark.unit
class TestPluginInitialization:
    """Tests for plugin initialization."""

    def test_requires_callbacks(self) -> None:
        """Plugin refuses to start without host callbacks."""
        with pytest.raises(ConfigurationError, match="callbacks"):
            Litestar(plugins=[PilotPlugin()])

    def test_properties_before_init_raise(self) -> None:
        """Accessing components before app init raises RuntimeError."""
        plugin = PilotPlugin()
        for name in ("registry", "store", "service"):
            with pytest.raises(RuntimeError, match="not been initialized"):
                getattr(plugin, name)

    def test_default_components(self, callbacks: ScriptedCallbacks, tmp_path: Path) -> None:
        """Plugin builds a registry, a file store and a service by default."""
        plugin = PilotPlugin(config=_plugin_config(callbacks, tmp_path))
        Litestar(plugins=[plugin])

        assert isinstance(plugin.registry, WorkflowRegistry)
        assert isinstance(plugin.store, FileTaskStore)
        assert plugin.store.tasks_dir == tmp_path / "tasks"
        assert isinstance(plugin.service, PilotService)
        assert plugin.service.orchestrator.callbacks is callbacks

    def test_database_store_from_url(self, callbacks: ScriptedCallbacks, tmp_path: Path) -> None:
        """Plugin builds the database store when a URL is configured."""
        from litestar_pilot.db.store import SQLAlchemyTaskStore

        config = PilotConfig(database_url=f"sqlite+aiosqlite:///{tmp_path / 'pilot.db'}")
        plugin = PilotPlugin(config=_plugin_config(callbacks, tmp_path, config=config))
        Litestar(plugins=[plugin])

        assert isinstance(plugin.store, SQLAlchemyTaskStore)

    def test_uses_provided_components(self, callbacks: ScriptedCallbacks, tmp_path: Path) -> None:
        """Plugin uses the registry and store it is given."""
        registry = WorkflowRegistry()
        store = MemoryTaskStore()
        plugin = PilotPlugin(config=_plugin_config(callbacks, tmp_path, registry=registry, store=store))
        Litestar(plugins=[plugin])

        assert plugin.registry is registry
        assert plugin.store is store

    def test_auto_registers_workflows(self, callbacks: ScriptedCallbacks, tmp_path: Path) -> None:
        """Plugin registers configured workflows in memory."""
        workflow = make_workflow("greet", template_step("reply", "hi"))
        plugin = PilotPlugin(config=_plugin_config(callbacks, tmp_path, auto_register_workflows=[workflow]))
        Litestar(plugins=[plugin])

        assert plugin.registry.get("greet") is workflow

    def test_custom_dependency_keys(self, callbacks: ScriptedCallbacks, tmp_path: Path) -> None:
        """Plugin uses custom dependency keys when configured."""
        config = _plugin_config(
            callbacks,
            tmp_path,
            dependency_key_service="my_service",
            dependency_key_registry="my_registry",
            dependency_key_store="my_store",
        )
        app = Litestar(plugins=[PilotPlugin(config=config)])

        assert {"my_service", "my_registry", "my_store"} <= set(app.dependencies)

    def test_registers_logger(self, callbacks: ScriptedCallbacks, tmp_path: Path) -> None:
        """Plugin adds its logger to the app's logging config."""
        config = _plugin_config(callbacks, tmp_path, config=PilotConfig(tasks_dir=tmp_path, log_level="DEBUG"))
        app = Litestar(plugins=[PilotPlugin(config=config)])

        assert isinstance(app.logging_config, LoggingConfig)
        assert app.logging_config.loggers["litestar_pilot"]["level"] == "DEBUG"


# =============================================================================
# Dependency Injection and Lifespan Tests
# =============================================================================


@pytest.mark.integration
class TestPluginRuntime:
    """Tests for the plugin inside a running app."""

    async def test_service_injection(self, callbacks: ScriptedCallbacks, tmp_path: Path) -> None:
        """Service is injected into user route handlers."""
        plugin = PilotPlugin(config=_plugin_config(callbacks, tmp_path))
        app = Litestar(route_handlers=[describe_service], plugins=[plugin])

        async with AsyncTestClient(app=app) as client:
            response = await client.get("/echo-service")

        assert response.status_code == HTTP_200_OK
        assert response.json()["default"] == "fast-router"
        assert response.json()["workflows"] >= 4

    async def test_api_can_be_disabled(self, callbacks: ScriptedCallbacks, tmp_path: Path) -> None:
        """No pilot routes are mounted when the API is disabled."""
        app = Litestar(plugins=[PilotPlugin(config=_plugin_config(callbacks, tmp_path, enable_api=False))])

        async with AsyncTestClient(app=app) as client:
            response = await client.get("/pilot/workflows")

        assert response.status_code == HTTP_404_NOT_FOUND

    async def test_custom_path_prefix(self, callbacks: ScriptedCallbacks, tmp_path: Path) -> None:
        """API routes follow the configured prefix."""
        app = Litestar(plugins=[PilotPlugin(config=_plugin_config(callbacks, tmp_path, api_path_prefix="/agent"))])

        async with AsyncTestClient(app=app) as client:
            response = await client.get("/agent/workflows")

        assert response.status_code == HTTP_200_OK

    async def test_cleanup_loop_removes_expired_tasks(self, callbacks: ScriptedCallbacks, tmp_path: Path) -> None:
        """Expired tasks are swept while the app runs."""
        store = MemoryTaskStore()
        expired = Task.create("fast-router", {}, "cli", ttl=1000, now=datetime(2025, 3, 1, tzinfo=timezone.utc))
        await store.save_task(expired)
        kept = await store.create_task("fast-router", {}, "cli")
        config = _plugin_config(callbacks, tmp_path, store=store, cleanup_interval=0.01)
        app = Litestar(plugins=[PilotPlugin(config=config)])

        async with AsyncTestClient(app=app):
            for _ in range(100):
                if await store.load_task(expired.task_id) is None:
                    break
                await asyncio.sleep(0.01)

        assert await store.load_task(expired.task_id) is None
        assert await store.load_task(kept.task_id) is not None
