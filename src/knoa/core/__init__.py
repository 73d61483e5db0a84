"""knoa core -- errors, events, container, locks, plugins, error handling.

Architecture::

    Layer 1 -- Errors & Settings
        errors.py          ApplicationError hierarchy with codes and context
        settings.py        KnoaSettings (pydantic-settings, KNOA_* env vars)
        logging.py         structlog configuration and get_logger

    Layer 2 -- Coordination
        events/            EventBus, EventCatalog, standardized payload helpers
        container.py       ServiceContainer with lazy factories
        locks.py           LockManager (advisory, in-process, expiring)
        plugins.py         PluginManager for ci / notification / report / storage
        cache.py           CacheManager (TTL, bounded, regex invalidation)

    Layer 3 -- Error Handling & Wiring
        error_handler.py   ErrorHandler: patterns, alerts, recovery, statistics
        services.py        register_services / get_container

``services`` is not imported here; it pulls in every data and manager module.
"""

from knoa.core.cache import CacheManager
from knoa.core.container import ServiceContainer
from knoa.core.error_handler import ErrorHandler
from knoa.core.errors import (
    ApplicationError,
    CliError,
    DataConsistencyError,
    DependencyError,
    LockError,
    LockTimeoutError,
    NotFoundError,
    StateError,
    StorageError,
    TimeoutError,
    ValidationError,
)
from knoa.core.locks import LockManager
from knoa.core.plugins import PluginManager

__all__ = [
    "ApplicationError",
    "CacheManager",
    "CliError",
    "DataConsistencyError",
    "DependencyError",
    "ErrorHandler",
    "LockError",
    "LockManager",
    "LockTimeoutError",
    "NotFoundError",
    "PluginManager",
    "ServiceContainer",
    "StateError",
    "StorageError",
    "TimeoutError",
    "ValidationError",
]
