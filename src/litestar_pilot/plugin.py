"""Litestar plugin for pilot integration.

This module provides the PilotPlugin, which wires the registry, task store,
orchestrator and service into a Litestar application.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from litestar.di import Provide
from litestar.logging.config import LoggingConfig
from litestar.plugins import InitPluginProtocol

from litestar_pilot.config import PilotConfig
from litestar_pilot.engine.orchestrator import WorkflowOrchestrator
from litestar_pilot.engine.registry import WorkflowRegistry
from litestar_pilot.exceptions import ConfigurationError, PilotError
from litestar_pilot.service import PilotService
from litestar_pilot.storage.base import BaseTaskStore
from litestar_pilot.storage.file import FileTaskStore
from litestar_pilot.threads import ThreadManager

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from litestar import Litestar
    from litestar.config.app import AppConfig

    from litestar_pilot.agent.catalog import LocalTool
    from litestar_pilot.core.definition import Workflow
    from litestar_pilot.core.protocols import PilotCallbacks
    from litestar_pilot.steps.sandbox import FunctionRegistry

__all__ = ["PilotPlugin", "PilotPluginConfig"]

logger = logging.getLogger(__name__)


@dataclass
class PilotPluginConfig:
    """Configuration for the PilotPlugin.

    Attributes:
        callbacks: Host callbacks for models, remote tools and events. Required.
        config: Engine configuration. Read from the environment if not provided.
        registry: Optional pre-configured WorkflowRegistry.
        store: Optional pre-configured task store. If not provided, a database
            store is created when ``config.database_url`` is set and a file
            store in ``config.tasks_dir`` otherwise.
        local_tools: Tools implemented in-process.
        functions: Named functions callable from ``code`` steps.
        auto_register_workflows: Workflows registered in memory on app init.
        dependency_key_service: DI key of the PilotService.
        dependency_key_registry: DI key of the WorkflowRegistry.
        dependency_key_store: DI key of the task store.
        enable_api: Whether to enable the REST API endpoints. Defaults to True.
        api_path_prefix: URL path prefix for all pilot API endpoints.
        api_guards: Litestar guards applied to all pilot API endpoints.
        api_tags: OpenAPI tags applied to the pilot API endpoints.
        include_api_in_schema: Whether to include API endpoints in the OpenAPI schema.
        cleanup_interval: Seconds between expired-task sweeps; ``None`` disables them.
        create_all: Create the task table on startup when using the database store.
        configure_logging: Add the ``litestar_pilot`` logger to the app's logging
            config, or install one when the app has none.
    """

    callbacks: PilotCallbacks | None = None
    config: PilotConfig | None = None
    registry: WorkflowRegistry | None = None
    store: BaseTaskStore | None = None
    local_tools: list[LocalTool] = field(default_factory=list)
    functions: FunctionRegistry | None = None
    auto_register_workflows: list[Workflow] = field(default_factory=list)
    dependency_key_service: str = "pilot_service"
    dependency_key_registry: str = "workflow_registry"
    dependency_key_store: str = "task_store"
    enable_api: bool = True
    api_path_prefix: str = "/pilot"
    api_guards: list[Any] = field(default_factory=list)
    api_tags: list[str] = field(default_factory=lambda: ["Pilot"])
    include_api_in_schema: bool = True
    cleanup_interval: float | None = 3600.0
    create_all: bool = False
    configure_logging: bool = True


def _pilot_logger(level: str) -> dict[str, Any]:
    return {"level": level, "handlers": ["queue_listener"], "propagate": False}


def _logging_config(level: str) -> LoggingConfig:
    return LoggingConfig(
        root={"level": "INFO", "handlers": ["queue_listener"]},
        loggers={"litestar_pilot": _pilot_logger(level)},
    )


class PilotPlugin(InitPluginProtocol):
    """Litestar plugin for the pilot engine.

    The plugin builds the engine from :class:`PilotPluginConfig`, provides the
    service, registry and store through dependency injection, mounts the REST
    API and runs periodic cleanup of expired tasks for the app's lifetime.

    Example:
        Basic usage::

            from litestar import Litestar
            from litestar_pilot import PilotPlugin, PilotPluginConfig

            app = Litestar(
                plugins=[PilotPlugin(config=PilotPluginConfig(callbacks=MyCallbacks()))],
            )

        Using in a route handler::

            from litestar import post
            from litestar_pilot import PilotService


            @post("/whatsapp/webhook")
            async def webhook(data: dict, pilot_service: PilotService) -> dict:
                result = await pilot_service.send_message(data["text"], "whatsapp", chat_id=data["from"])
                return {"reply": result.response}
    """

    __slots__ = ("_config", "_registry", "_service", "_store")

    def __init__(self, config: PilotPluginConfig | None = None) -> None:
        """Initialize the plugin.

        Args:
            config: Optional configuration for the plugin.
        """
        self._config = config or PilotPluginConfig()
        self._registry: WorkflowRegistry | None = None
        self._store: BaseTaskStore | None = None
        self._service: PilotService | None = None

    @property
    def registry(self) -> WorkflowRegistry:
        """Get the workflow registry.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._registry is None:
            msg = "PilotPlugin has not been initialized. Access registry after app startup."
            raise RuntimeError(msg)
        return self._registry

    @property
    def store(self) -> BaseTaskStore:
        """Get the task store.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._store is None:
            msg = "PilotPlugin has not been initialized. Access store after app startup."
            raise RuntimeError(msg)
        return self._store

    @property
    def service(self) -> PilotService:
        """Get the pilot service.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._service is None:
            msg = "PilotPlugin has not been initialized. Access service after app startup."
            raise RuntimeError(msg)
        return self._service

    def _build_store(self, config: PilotConfig) -> BaseTaskStore:
        if self._config.store is not None:
            return self._config.store
        if config.database_url:
            from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

            from litestar_pilot.db.store import SQLAlchemyTaskStore

            engine = create_async_engine(config.database_url)
            return SQLAlchemyTaskStore(async_sessionmaker(engine, expire_on_commit=False))
        return FileTaskStore(config.tasks_dir)

    def on_app_init(self, app_config: AppConfig) -> AppConfig:
        """Initialize the plugin when the Litestar app starts.

        This method:
        1. Creates or uses the provided registry and task store
        2. Builds the orchestrator, thread manager and service
        3. Registers any auto_register_workflows
        4. Adds dependency providers and the lifespan handler
        5. Optionally registers REST API controllers if enable_api=True

        Args:
            app_config: The Litestar application configuration.

        Returns:
            The modified application configuration.

        Raises:
            ConfigurationError: If no callbacks were configured.
        """
        if self._config.callbacks is None:
            raise ConfigurationError("callbacks", "None", "PilotPluginConfig.callbacks is required")

        config = self._config.config or PilotConfig.from_env()
        self._registry = self._config.registry or WorkflowRegistry(
            custom_dir=config.custom_workflows_dir,
            default_workflow=config.default_workflow,
        )
        for workflow in self._config.auto_register_workflows:
            self._registry.register(workflow)

        self._store = self._build_store(config)
        orchestrator = WorkflowOrchestrator(
            self._registry,
            self._store,
            self._config.callbacks,
            config=config,
            local_tools=self._config.local_tools,
            functions=self._config.functions,
        )
        threads = ThreadManager(self._store, ttl_ms=config.thread_ttl_ms, max_history=config.max_history)
        self._service = PilotService(orchestrator, threads, registry=self._registry, config=config)

        def provide_service() -> PilotService:
            return self._service  # type: ignore[return-value]

        def provide_registry() -> WorkflowRegistry:
            return self._registry  # type: ignore[return-value]

        def provide_store() -> BaseTaskStore:
            return self._store  # type: ignore[return-value]

        app_config.dependencies[self._config.dependency_key_service] = Provide(provide_service, sync_to_thread=False)
        app_config.dependencies[self._config.dependency_key_registry] = Provide(
            provide_registry,
            sync_to_thread=False,
        )
        app_config.dependencies[self._config.dependency_key_store] = Provide(provide_store, sync_to_thread=False)

        if self._config.enable_api:
            from litestar import Router

            from litestar_pilot.web.controllers import ConversationController, TaskController, WorkflowController
            from litestar_pilot.web.exceptions import pilot_error_handler

            pilot_router = Router(
                path=self._config.api_path_prefix,
                route_handlers=[WorkflowController, ConversationController, TaskController],
                guards=self._config.api_guards,
                tags=self._config.api_tags,
                include_in_schema=self._config.include_api_in_schema,
            )
            app_config.route_handlers.append(pilot_router)
            app_config.exception_handlers[PilotError] = pilot_error_handler  # type: ignore[assignment]

        if self._config.configure_logging:
            logging_config = app_config.logging_config
            if logging_config is None:
                app_config.logging_config = _logging_config(config.log_level)
            elif isinstance(logging_config, LoggingConfig):
                logging_config.loggers.setdefault("litestar_pilot", _pilot_logger(config.log_level))

        app_config.lifespan.append(self._lifespan)
        return app_config

    @asynccontextmanager
    async def _lifespan(self, _app: Litestar) -> AsyncGenerator[None, None]:
        """Create tables, run periodic cleanup and stop background runs on exit."""
        if self._config.create_all:
            from litestar_pilot.db.store import SQLAlchemyTaskStore

            if isinstance(self.store, SQLAlchemyTaskStore):
                await self.store.create_all()

        cleanup: asyncio.Task[None] | None = None
        if self._config.cleanup_interval:
            cleanup = asyncio.create_task(self._cleanup_loop(self._config.cleanup_interval))
        try:
            yield
        finally:
            if cleanup is not None:
                cleanup.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await cleanup
            await self.service.orchestrator.shutdown()

    async def _cleanup_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                removed = await self.service.cleanup()
            except Exception:
                logger.exception("Expired task cleanup failed")
                continue
            if removed:
                logger.info("Removed %d expired tasks", removed)
