"""
Lazy dependency-injection container.

:class:`ServiceContainer` maps service names to either an eager value or a
factory ``(container) -> value``. Factories run on first :meth:`get` and their
result is cached, so resolving the same name twice returns the same object.

While a factory runs its name sits on a resolution stack; re-entering a name
already on the stack fails with the whole chain in the message::

    Circular dependency detected: a -> b -> a

Usage::

    container = ServiceContainer()
    container.register("settings", settings)
    container.register_factory("event_bus", lambda c: EventBus())
    bus = container.get("event_bus")   # lazily created, then cached
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from knoa.core.errors import DependencyError

__all__ = ["ServiceContainer", "Factory"]

Factory = Callable[["ServiceContainer"], Any]


class ServiceContainer:
    """Name -> service registry with lazy factories and cycle detection."""

    def __init__(self) -> None:
        self._services: dict[str, Any] = {}
        self._factories: dict[str, Factory] = {}
        self._resolving: list[str] = []

    def register(self, name: str, instance: Any) -> ServiceContainer:
        """Register an eager value, replacing any factory of the same name."""
        self._factories.pop(name, None)
        self._services[name] = instance
        return self

    def register_factory(self, name: str, factory: Factory) -> ServiceContainer:
        """Register a factory, dropping any cached value of the same name."""
        if not callable(factory):
            raise DependencyError(
                f"factory for service '{name}' must be callable",
                context={"service": name},
            )
        self._services.pop(name, None)
        self._factories[name] = factory
        return self

    def get(self, name: str) -> Any:
        """Resolve a service, invoking and caching its factory on first use."""
        if name in self._services:
            return self._services[name]

        if name in self._resolving:
            chain = " -> ".join([*self._resolving, name])
            raise DependencyError(
                f"Circular dependency detected: {chain}",
                context={"chain": [*self._resolving, name]},
            )

        factory = self._factories.get(name)
        if factory is None:
            raise DependencyError(
                f"service '{name}' not found",
                code="ERR_SERVICE_NOT_FOUND",
                context={"service": name},
            )

        self._resolving.append(name)
        try:
            instance = factory(self)
        finally:
            self._resolving.pop()

        self._services[name] = instance
        return instance

    def has(self, name: str) -> bool:
        return name in self._services or name in self._factories

    def remove(self, name: str) -> bool:
        """Forget a service (value and factory). Returns whether it existed."""
        existed = name in self._services or name in self._factories
        self._services.pop(name, None)
        self._factories.pop(name, None)
        return existed

    def clear(self) -> None:
        self._services.clear()
        self._factories.clear()
        self._resolving.clear()

    def get_registered_service_names(self) -> list[str]:
        """All registered names, eager values first, without duplicates."""
        return list(dict.fromkeys([*self._services, *self._factories]))

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has(name)

    def __getitem__(self, name: str) -> Any:
        return self.get(name)
