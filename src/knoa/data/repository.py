"""
Generic JSON-collection repository.

One collection file per entity type holds ``{"<entity>s": [...]}``. Every
mutating call reads the whole file, changes it in memory and writes it back;
there is no partial update and no transaction across files.

Architecture::

    ┌──────────────────────────────────────────────────────────────┐
    │                         Repository                           │
    │                                                              │
    │   storage: StorageService   <directory>/<current_file>       │
    │   validator: Validator?     validate(data) -> result         │
    │   error_handler?            handle(err, "Repository", op)    │
    │                                                              │
    │   get_all / get_by_id / find / find_one                      │
    │   create / update / delete / archive                         │
    │   create_many / update_many / delete_many                    │
    └──────────────────────────────────────────────────────────────┘

Error policy:
    ValidationError, NotFoundError, DataConsistencyError and StateError pass
    through unchanged. Anything else becomes
    ``StorageError("Failed to <op> <entity>: <message>")`` with the original
    as cause. With an error handler configured, failures are handed to it;
    a recovered (non-exception) result is returned to the caller, everything
    else is raised. Reads never hand a recovery value back as an entity:
    they raise after the handler has recorded the failure.

Tags:
    repository, json, crud, archive
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from knoa.core.errors import (
    DataConsistencyError,
    NotFoundError,
    StateError,
    StorageError,
    ValidationError,
)
from knoa.core.events.helpers import emit_standardized_event, utc_timestamp
from knoa.core.logging import get_logger

if TYPE_CHECKING:
    from knoa.core.error_handler import ErrorHandler
    from knoa.core.events.bus import EventBus
    from knoa.data.storage import StorageService
    from knoa.data.validators.base import Validator

__all__ = ["Repository", "UNSAFE_KEYS"]

UNSAFE_KEYS = frozenset({"__proto__", "constructor", "prototype"})

_PRESERVED = (ValidationError, NotFoundError, DataConsistencyError, StateError)
_ALWAYS_RAISE = (ValidationError, NotFoundError, DataConsistencyError)


class Repository:
    """CRUD, archive and bulk operations over one JSON collection file.

    Parameters:
        storage_service: Where the collection file lives.
        entity_name: Singular name (``"task"``); the collection key is
                     ``"<entity_name>s"`` and events are ``<entity_name>:*``.
    """

    id_field = "id"

    def __init__(
        self,
        storage_service: StorageService,
        entity_name: str,
        *,
        logger: Any = None,
        event_bus: EventBus | None = None,
        error_handler: ErrorHandler | None = None,
        validator: Validator | None = None,
        directory: str | None = None,
        current_file: str | None = None,
        history_directory: str | None = None,
    ) -> None:
        if storage_service is None:
            raise ValueError("Repository requires a storage_service")

        self.storage = storage_service
        self.entity_name = entity_name
        self.logger = logger or get_logger(__name__)
        self.event_bus = event_bus
        self.error_handler = error_handler
        self.validator = validator
        self.directory = directory or f"ai-context/{entity_name}s"
        self.current_file = current_file or f"current-{entity_name}.json"
        self.history_directory = history_directory or f"{entity_name}-history"

        self.storage.ensure_directory_exists(self.directory)
        self.storage.ensure_directory_exists(self.history_path)

    @property
    def collection_key(self) -> str:
        return f"{self.entity_name}s"

    @property
    def history_path(self) -> str:
        return f"{self.directory}/{self.history_directory}"

    # ── Error plumbing ───────────────────────────────────────────────────

    def _wrap(self, error: Exception, operation: str) -> Exception:
        if isinstance(error, _PRESERVED):
            return error
        return StorageError(
            f"Failed to {operation} {self.entity_name}: {error}",
            cause=error,
            context={"entity": self.entity_name, "operation": operation},
        )

    async def _fail(
        self,
        error: Exception,
        operation: str,
        context: dict[str, Any] | None = None,
        *,
        read: bool = False,
    ) -> Any:
        """Raise the wrapped error, or return what the error handler recovered.

        With ``read=True`` the error is raised even after a recovery.
        """
        wrapped = self._wrap(error, operation)
        if self.error_handler is None:
            raise wrapped

        result = await self.error_handler.handle(
            wrapped,
            "Repository",
            operation,
            {"additionalContext": {"entity": self.entity_name, **(context or {})}},
        )
        if read or isinstance(wrapped, _ALWAYS_RAISE):
            raise wrapped
        if isinstance(result, BaseException):
            raise result
        return result

    def _validate(self, data: Any) -> None:
        if self.validator is None:
            return
        result = self.validator.validate(data)
        if not result.is_valid:
            raise ValidationError(f"Invalid {self.entity_name} data", errors=result.errors)

    def _emit(self, action: str, data: dict[str, Any]) -> None:
        emit_standardized_event(self.event_bus, self.entity_name, action, data)

    # ── Read ─────────────────────────────────────────────────────────────

    async def _read_document(self, directory: str, filename: str) -> Any:
        """Parsed JSON of ``filename``; None when it is missing or corrupt."""
        if not self.storage.file_exists(directory, filename):
            return None
        try:
            return await self.storage.read_json(directory, filename)
        except StorageError as e:
            if isinstance(e.cause, ValueError):
                self.logger.warning(
                    "collection_file_corrupt",
                    entity=self.entity_name,
                    file=filename,
                    error=str(e.cause),
                )
                return None
            raise

    async def _read_all(self) -> dict[str, Any]:
        data = await self._read_document(self.directory, self.current_file)
        if not isinstance(data, dict):
            return {self.collection_key: []}
        data.setdefault(self.collection_key, [])
        return data

    async def _write_all(self, entities: dict[str, Any]) -> None:
        await self.storage.write_json(self.directory, self.current_file, entities)

    async def get_all(self) -> dict[str, Any]:
        """The whole collection document, ``{"<entity>s": []}`` when absent."""
        try:
            return await self._read_all()
        except Exception as e:
            return await self._fail(e, "get_all", read=True)

    async def get_by_id(self, id: str) -> dict[str, Any] | None:
        try:
            entities = await self._read_all()
        except Exception as e:
            return await self._fail(e, "get_by_id", {"id": id}, read=True)
        return self._find_in(entities, id)

    def _find_in(self, entities: dict[str, Any], id: str) -> dict[str, Any] | None:
        collection = entities.get(self.collection_key)
        if not isinstance(collection, list):
            return None
        return next((e for e in collection if e.get(self.id_field) == id), None)

    async def find(self, predicate: Callable[[dict[str, Any]], bool]) -> list[dict[str, Any]]:
        try:
            entities = await self._read_all()
        except Exception as e:
            return await self._fail(e, "find", read=True)
        return [e for e in entities[self.collection_key] if predicate(e)]

    async def find_one(
        self, predicate: Callable[[dict[str, Any]], bool]
    ) -> dict[str, Any] | None:
        try:
            entities = await self._read_all()
        except Exception as e:
            return await self._fail(e, "find_one", read=True)
        return next((e for e in entities[self.collection_key] if predicate(e)), None)

    # ── Write ────────────────────────────────────────────────────────────

    async def create(self, data: dict[str, Any]) -> dict[str, Any]:
        """Validate, reject duplicate ids, append and persist.

        Raises:
            ValidationError: the validator rejected ``data``
            DataConsistencyError: an entity with the same id exists
        """
        try:
            self._validate(data)
            entities = await self._read_all()
            collection = entities[self.collection_key]

            entity = dict(data)
            entity_id = entity.get(self.id_field)
            if entity_id is not None and any(e.get(self.id_field) == entity_id for e in collection):
                raise DataConsistencyError(
                    f"{self.entity_name} with id {entity_id} already exists",
                    context={"entity": self.entity_name, "id": entity_id},
                )

            collection.append(entity)
            await self._write_all(entities)
        except Exception as e:
            return await self._fail(e, "create", {"id": data.get(self.id_field) if isinstance(data, dict) else None})

        self.logger.debug("entity_created", entity=self.entity_name, id=entity.get(self.id_field))
        self._emit("created", entity)
        return entity

    async def update(self, id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Shallow-merge ``data`` into the entity ``id`` and persist.

        The merged entity is validated, so partial updates are allowed.

        Raises:
            ValidationError: the merged entity is invalid
            NotFoundError: no entity with ``id``
        """
        try:
            safe = self._safe_fields(data)
            entities = await self._read_all()
            collection = entities[self.collection_key]
            index = next(
                (i for i, e in enumerate(collection) if e.get(self.id_field) == id), None
            )

            existing = collection[index] if index is not None else {}
            self._validate({**existing, **safe, self.id_field: id})

            if index is None:
                raise NotFoundError(
                    f"{self.entity_name} with id {id} not found",
                    context={"entity": self.entity_name, "id": id},
                )

            updated = {**existing, **safe, self.id_field: id}
            collection[index] = updated
            await self._write_all(entities)
        except Exception as e:
            return await self._fail(e, "update", {"id": id})

        self._emit("updated", updated)
        return updated

    def _safe_fields(self, data: dict[str, Any]) -> dict[str, Any]:
        if not isinstance(data, dict):
            raise ValidationError(f"Invalid {self.entity_name} data", errors=["data must be an object"])
        unsafe = [k for k in data if k in UNSAFE_KEYS]
        if unsafe:
            self.logger.warning("unsafe_keys_dropped", entity=self.entity_name, keys=unsafe)
        return {k: v for k, v in data.items() if k not in UNSAFE_KEYS}

    async def delete(self, id: str) -> bool:
        """Archive then remove the entity ``id``.

        Raises:
            NotFoundError: no entity with ``id``
        """
        try:
            await self._delete(id)
        except Exception as e:
            return await self._fail(e, "delete", {"id": id})
        return True

    async def _delete(self, id: str) -> None:
        entities = await self._read_all()
        collection = entities[self.collection_key]
        index = next((i for i, e in enumerate(collection) if e.get(self.id_field) == id), None)
        if index is None:
            raise NotFoundError(
                f"{self.entity_name} with id {id} not found",
                context={"entity": self.entity_name, "id": id},
            )

        await self._archive(collection[index])
        del collection[index]
        await self._write_all(entities)
        self._emit("deleted", {"id": id})

    async def archive(self, id: str) -> str:
        """Snapshot the entity into the history directory. Returns the file name."""
        try:
            entity = self._find_in(await self._read_all(), id)
            if entity is None:
                raise NotFoundError(
                    f"{self.entity_name} with id {id} not found",
                    context={"entity": self.entity_name, "id": id},
                )
            return await self._archive(entity)
        except Exception as e:
            return await self._fail(e, "archive", {"id": id})

    async def _archive(self, entity: dict[str, Any]) -> str:
        timestamp = utc_timestamp().replace(":", "-")
        filename = f"{entity.get(self.id_field)}-{timestamp}.json"
        await self.storage.write_json(self.history_path, filename, entity)
        return filename

    # ── Bulk ─────────────────────────────────────────────────────────────

    async def create_many(self, items: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Sequential :meth:`create`; stops at the first failure."""
        if not isinstance(items, list):
            raise ValidationError("create_many expects a list")
        return [await self.create(item) for item in items]

    async def update_many(self, items: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Sequential :meth:`update` of ``[{<id_field>, ...fields}]``; stops at the first failure."""
        if not isinstance(items, list):
            raise ValidationError("update_many expects a list")
        if any(not isinstance(item, dict) or not item.get(self.id_field) for item in items):
            raise ValidationError("Each update item must have an id")

        results = []
        for item in items:
            fields = {k: v for k, v in item.items() if k != self.id_field}
            results.append(await self.update(item[self.id_field], fields))
        return results

    async def delete_many(self, ids: list[str]) -> list[dict[str, Any]]:
        """Delete each id independently; returns ``[{id, success, error?}]``.

        A single failing id does not stop the batch. With an error handler
        configured the failure is handed to it first; if the handler itself
        raises, the batch is aborted.
        """
        if not isinstance(ids, list):
            raise ValidationError("delete_many expects a list")

        results: list[dict[str, Any]] = []
        for id in ids:
            try:
                await self._delete(id)
            except Exception as e:
                if self.error_handler is not None:
                    await self.error_handler.handle(
                        self._wrap(e, "delete"),
                        "Repository",
                        "delete_many",
                        {"additionalContext": {"entity": self.entity_name, "id": id}},
                    )
                else:
                    self.logger.warning(
                        "bulk_delete_item_failed",
                        entity=self.entity_name,
                        id=id,
                        error=str(e),
                    )
                results.append({"id": id, "success": False, "error": str(e)})
                continue
            results.append({"id": id, "success": True})
        return results
