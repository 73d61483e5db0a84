"""
Service definitions.

``register_services`` wires every knoa component into a
:class:`ServiceContainer` as lazy factories, so nothing touches the disk or
spawns git until it is first resolved.

Architecture::

    settings ──► logger, event_bus(catalog) ──► error_handler
        │
        ├─► storage_service, git_service, lock_manager, plugin_manager,
        │   cache_manager, state_manager ──► state_adapter
        │
        ├─► *_validator ──► *_repository ──► *_manager ──► *_adapter
        │
        └─► (system:initialized emitted once the bus exists)

Usage::

    container = get_container()
    tasks = container.get("task_adapter")
    await tasks.create_task("Write docs", "Usage guide")
"""

from __future__ import annotations

from typing import Any

from knoa.adapters.base import ManagerAdapter
from knoa.core.cache import CacheManager
from knoa.core.container import ServiceContainer
from knoa.core.error_handler import ErrorHandler
from knoa.core.events.bus import EventBus
from knoa.core.events.catalog import create_default_catalog
from knoa.core.events.helpers import emit_standardized_event
from knoa.core.locks import LockManager
from knoa.core.logging import configure_logging, get_logger
from knoa.core.plugins import PluginManager
from knoa.core.settings import KnoaSettings, get_settings
from knoa.data.feedback_repository import FeedbackRepository
from knoa.data.git import GitService
from knoa.data.session_repository import SessionRepository
from knoa.data.storage import StorageService
from knoa.data.task_repository import TaskRepository
from knoa.data.validators import FeedbackValidator, SessionValidator, TaskValidator
from knoa.managers.feedback import FeedbackManager
from knoa.managers.integration import IntegrationManager
from knoa.managers.session import SessionManager
from knoa.managers.state import StateManager
from knoa.managers.task import TaskManager

__all__ = [
    "SERVICE_NAMES",
    "build_container",
    "get_container",
    "register_services",
    "reset_container",
]

SERVICE_NAMES = (
    "settings",
    "logger",
    "event_bus",
    "event_catalog",
    "error_handler",
    "storage_service",
    "git_service",
    "lock_manager",
    "plugin_manager",
    "cache_manager",
    "state_manager",
    "task_validator",
    "session_validator",
    "feedback_validator",
    "task_repository",
    "session_repository",
    "feedback_repository",
    "task_manager",
    "session_manager",
    "feedback_manager",
    "integration_manager",
    "task_adapter",
    "session_adapter",
    "feedback_adapter",
    "integration_adapter",
    "state_adapter",
)


def _repository_options(c: ServiceContainer) -> dict[str, Any]:
    return {
        "logger": c.get("logger"),
        "event_bus": c.get("event_bus"),
        "error_handler": c.get("error_handler"),
    }


def _event_bus(c: ServiceContainer) -> EventBus:
    settings: KnoaSettings = c.get("settings")
    bus = EventBus(
        logger=c.get("logger"),
        debug_mode=settings.event_debug_mode,
        keep_history=settings.event_keep_history,
        history_limit=settings.event_history_limit,
        catalog=c.get("event_catalog"),
        include_stack_traces=settings.include_stack_traces,
    )
    emit_standardized_event(
        bus, "system", "initialized", {"environment": settings.env, "projectId": settings.project_id}
    )
    return bus


def _adapter(manager_name: str, component: str):
    def factory(c: ServiceContainer) -> ManagerAdapter:
        return ManagerAdapter(
            c.get(manager_name),
            component,
            event_bus=c.get("event_bus"),
            error_handler=c.get("error_handler"),
            logger=c.get("logger"),
        )

    return factory


def register_services(container: ServiceContainer, settings: KnoaSettings) -> ServiceContainer:
    """Register every knoa service on ``container``."""
    c = container
    c.register("settings", settings)
    c.register_factory("logger", lambda c: get_logger("knoa"))
    c.register_factory("event_catalog", lambda c: create_default_catalog())
    c.register_factory("event_bus", _event_bus)
    c.register_factory(
        "error_handler",
        lambda c: ErrorHandler(logger=c.get("logger"), event_bus=c.get("event_bus")),
    )

    # ── Infrastructure ───────────────────────────────────────────────
    c.register_factory(
        "storage_service",
        lambda c: StorageService(
            settings.base_path, event_bus=c.get("event_bus"), logger=c.get("logger")
        ),
    )
    c.register_factory(
        "git_service",
        lambda c: GitService(
            settings.base_path,
            event_bus=c.get("event_bus"),
            logger=c.get("logger"),
            debug=settings.debug_git,
        ),
    )
    c.register_factory(
        "lock_manager",
        lambda c: LockManager(
            lock_timeout=settings.lock_timeout_ms,
            retry_interval=settings.lock_retry_interval_ms,
            max_retries=settings.lock_max_retries,
            logger=c.get("logger"),
        ),
    )
    c.register_factory(
        "plugin_manager",
        lambda c: PluginManager(logger=c.get("logger"), event_bus=c.get("event_bus")),
    )
    c.register_factory(
        "cache_manager",
        lambda c: CacheManager(
            event_bus=c.get("event_bus"),
            logger=c.get("logger"),
            ttl_ms=settings.cache_ttl_ms,
            max_size=settings.cache_max_size,
        ),
    )
    c.register_factory(
        "state_manager",
        lambda c: StateManager(event_bus=c.get("event_bus"), logger=c.get("logger")),
    )

    # ── Validators and repositories ──────────────────────────────────
    c.register_factory("task_validator", lambda c: TaskValidator(c.get("logger")))
    c.register_factory("session_validator", lambda c: SessionValidator(c.get("logger")))
    c.register_factory("feedback_validator", lambda c: FeedbackValidator(c.get("logger")))

    context_dir = settings.ai_context_dir
    c.register_factory(
        "task_repository",
        lambda c: TaskRepository(
            c.get("storage_service"),
            c.get("task_validator"),
            directory=f"{context_dir}/tasks",
            **_repository_options(c),
        ),
    )
    c.register_factory(
        "session_repository",
        lambda c: SessionRepository(
            c.get("storage_service"),
            c.get("session_validator"),
            c.get("git_service"),
            project_id=settings.project_id,
            directory=f"{context_dir}/sessions",
            **_repository_options(c),
        ),
    )
    c.register_factory(
        "feedback_repository",
        lambda c: FeedbackRepository(
            c.get("storage_service"),
            c.get("feedback_validator"),
            directory=f"{context_dir}/feedback",
            **_repository_options(c),
        ),
    )

    # ── Managers ─────────────────────────────────────────────────────
    c.register_factory(
        "task_manager",
        lambda c: TaskManager(
            c.get("task_repository"),
            lock_manager=c.get("lock_manager"),
            state_manager=c.get("state_manager"),
            logger=c.get("logger"),
        ),
    )
    c.register_factory(
        "session_manager",
        lambda c: SessionManager(
            c.get("session_repository"),
            c.get("task_repository"),
            c.get("git_service"),
            c.get("storage_service"),
            state_manager=c.get("state_manager"),
            event_bus=c.get("event_bus"),
            logger=c.get("logger"),
        ),
    )
    c.register_factory(
        "feedback_manager",
        lambda c: FeedbackManager(
            c.get("feedback_repository"),
            c.get("task_repository"),
            plugin_manager=c.get("plugin_manager"),
            state_manager=c.get("state_manager"),
            event_bus=c.get("event_bus"),
            logger=c.get("logger"),
            base_path=settings.base_path,
            environment=settings.env,
        ),
    )
    c.register_factory(
        "integration_manager",
        lambda c: IntegrationManager(
            c.get("task_repository"),
            c.get("session_repository"),
            c.get("feedback_repository"),
            c.get("git_service"),
            lock_manager=c.get("lock_manager"),
            plugin_manager=c.get("plugin_manager"),
            state_manager=c.get("state_manager"),
            cache_manager=c.get("cache_manager"),
            event_bus=c.get("event_bus"),
            logger=c.get("logger"),
        ),
    )

    # ── Adapters ─────────────────────────────────────────────────────
    c.register_factory("task_adapter", _adapter("task_manager", "task"))
    c.register_factory("session_adapter", _adapter("session_manager", "session"))
    c.register_factory("feedback_adapter", _adapter("feedback_manager", "feedback"))
    c.register_factory("integration_adapter", _adapter("integration_manager", "integration"))
    c.register_factory("state_adapter", _adapter("state_manager", "state"))
    return c


# ── Process singleton ────────────────────────────────────────────────────

_container: ServiceContainer | None = None


def build_container(settings: KnoaSettings | None = None) -> ServiceContainer:
    """A fresh, fully wired container; logging is configured from ``settings``."""
    settings = settings or get_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_json)
    return register_services(ServiceContainer(), settings)


def get_container() -> ServiceContainer:
    global _container
    if _container is None:
        _container = build_container()
    return _container


def reset_container() -> None:
    """Drop the process container (primarily for testing)."""
    global _container
    _container = None
