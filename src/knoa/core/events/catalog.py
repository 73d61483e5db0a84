"""
Event catalog: documented registry of canonical event names.

Manifesto:
    Event names are a public contract between producers and consumers. The
    catalog records, for each ``component:action`` name, what it means and
    what its payload looks like, so that ``emit_cataloged`` can refuse names
    nobody documented.

Tags:
    knoa, events, catalog, schema

Doc-Types:
    api-reference
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

__all__ = ["EventDefinition", "EventCatalog", "create_default_catalog"]


@dataclass
class EventDefinition:
    """Documentation record for one canonical event name."""

    name: str
    description: str = ""
    category: str = ""
    schema: dict[str, Any] = field(default_factory=dict)
    examples: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "schema": dict(self.schema),
            "examples": list(self.examples),
        }


class EventCatalog:
    """Registry mapping canonical event names to their definitions."""

    def __init__(self) -> None:
        self._events: dict[str, EventDefinition] = {}
        self._categories: dict[str, set[str]] = {}

    def register_event(
        self,
        name: str,
        definition: dict[str, Any] | EventDefinition | None = None,
    ) -> bool:
        """Register (or replace) an event definition.

        Returns:
            False when ``name`` is not of the form ``component:action``
        """
        if not name or ":" not in name:
            return False

        if isinstance(definition, EventDefinition):
            fields = definition.to_dict()
        else:
            fields = dict(definition or {})

        category = fields.get("category") or name.split(":", 1)[0]
        entry = EventDefinition(
            name=name,
            description=fields.get("description", ""),
            category=category,
            schema=dict(fields.get("schema") or {}),
            examples=list(fields.get("examples") or []),
        )

        previous = self._events.get(name)
        if previous is not None:
            self._categories.get(previous.category, set()).discard(name)

        self._events[name] = entry
        self._categories.setdefault(category, set()).add(name)
        return True

    def has_event(self, name: str) -> bool:
        return name in self._events

    def get_event_definition(self, name: str) -> EventDefinition | None:
        return self._events.get(name)

    def get_events_by_category(self, category: str) -> list[EventDefinition]:
        names = sorted(self._categories.get(category, ()))
        return [self._events[n] for n in names]

    def get_all_events(self) -> list[str]:
        return list(self._events)

    def get_all_categories(self) -> list[str]:
        return [c for c, names in self._categories.items() if names]

    def __len__(self) -> int:
        return len(self._events)

    def __contains__(self, name: object) -> bool:
        return name in self._events


# ── Standard events ──────────────────────────────────────────────────────

_STANDARD_EVENTS: dict[str, dict[str, Any]] = {
    "task:created": {
        "description": "A task was created",
        "schema": {"id": "task id", "title": "title", "status": "initial status"},
    },
    "task:updated": {
        "description": "A task was updated",
        "schema": {"id": "task id", "changes": "updated fields"},
    },
    "task:deleted": {
        "description": "A task was deleted (an archive copy exists)",
        "schema": {"id": "task id"},
    },
    "task:progress_updated": {
        "description": "A task moved to a new progress state",
        "schema": {
            "id": "task id",
            "previousState": "state before",
            "newState": "state after",
            "percentage": "progress percentage",
        },
    },
    "session:started": {
        "description": "A new session was started",
        "schema": {"sessionId": "session id", "previousSessionId": "previous id"},
    },
    "session:ended": {
        "description": "A session was ended and a handover written",
        "schema": {"sessionId": "session id"},
    },
    "session:saved": {
        "description": "A session document was persisted",
        "schema": {"sessionId": "session id", "isLatest": "latest pointer updated"},
    },
    "feedback:collected": {
        "description": "Test feedback was collected for a task",
        "schema": {"feedbackId": "feedback id", "taskId": "task id"},
    },
    "feedback:resolved": {
        "description": "Feedback was resolved and moved to history",
        "schema": {"feedbackId": "feedback id", "taskId": "task id"},
    },
    "feedback:status_updated": {
        "description": "A feedback loop changed status",
        "schema": {"feedbackId": "feedback id", "status": "new status"},
    },
    "git:command_executed": {
        "description": "A git command completed",
        "schema": {"command": "git arguments"},
    },
    "git:command_failed": {
        "description": "A git command failed",
        "schema": {"command": "git arguments", "error": "message"},
    },
    "storage:file_written": {
        "description": "A file was written by the storage service",
        "schema": {"path": "relative path"},
    },
    "storage:file_deleted": {
        "description": "A file was deleted by the storage service",
        "schema": {"path": "relative path"},
    },
    "system:initialized": {
        "description": "The service container finished wiring",
        "schema": {"services": "registered service names"},
    },
    "system:error": {
        "description": "An unrecoverable system error",
        "schema": {"message": "error message", "code": "error code"},
    },
    "plugin:registered": {
        "description": "A plugin was registered",
        "schema": {"pluginType": "plugin type"},
    },
    "plugin:unregistered": {
        "description": "A plugin was removed",
        "schema": {"pluginType": "plugin type"},
    },
    "state:changed": {
        "description": "The workflow state changed",
        "schema": {"prevState": "state before", "newState": "state after", "metadata": "context"},
    },
    "cache:items_invalidated": {
        "description": "Cache entries matching a pattern were dropped",
        "schema": {"pattern": "regular expression", "count": "entries removed"},
    },
    "error:occurred": {
        "description": "The error handler received an error",
        "schema": {"errorCode": "code", "component": "component", "operation": "op"},
    },
}


def create_default_catalog() -> EventCatalog:
    """Catalog pre-populated with the standard knoa events."""
    catalog = EventCatalog()
    for name, definition in _STANDARD_EVENTS.items():
        catalog.register_event(name, definition)
    return catalog
