"""
Feedback repository.

Unlike the other collections, ``pending-feedback.json`` holds a bare list of
feedback records keyed by ``feedback_id``; the inherited CRUD and archive
operations match on that field. Resolved records are moved to
``feedback-history/feedback-<task>-<attempt>.json``.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from knoa.core.errors import NotFoundError, StateError, ValidationError
from knoa.core.events.helpers import utc_timestamp
from knoa.data.constants import FEEDBACK_STATE_TRANSITIONS, FEEDBACK_TYPE_WEIGHTS
from knoa.data.repository import Repository
from knoa.data.validators.feedback import FeedbackValidator

__all__ = ["FeedbackRepository"]


def _timestamp_of(feedback: dict[str, Any]) -> str:
    loop = feedback.get("feedback_loop") or {}
    return (
        feedback.get("timestamp")
        or loop.get("timestamp")
        or (loop.get("verification_results") or {}).get("timestamp")
        or ""
    )


def _parse_date(value: str | datetime | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class FeedbackRepository(Repository):
    """Pending and historical feedback loops for tasks."""

    id_field = "feedback_id"

    def __init__(
        self,
        storage_service: Any,
        validator: Any = None,
        *,
        feedback_state_transitions: dict[str, tuple[str, ...]] | None = None,
        feedback_type_weights: dict[str, int] | None = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("directory", "ai-context/feedback")
        kwargs.setdefault("current_file", "pending-feedback.json")
        kwargs.setdefault("history_directory", "feedback-history")
        super().__init__(storage_service, "feedback", validator=validator, **kwargs)
        self.feedback_state_transitions = feedback_state_transitions or FEEDBACK_STATE_TRANSITIONS
        self.feedback_type_weights = feedback_type_weights or FEEDBACK_TYPE_WEIGHTS

    # ── List-shaped storage ──────────────────────────────────────────────

    async def _read_all(self) -> dict[str, Any]:
        return {self.collection_key: await self._read_pending()}

    async def _write_all(self, entities: dict[str, Any]) -> None:
        await self.storage.write_json(
            self.directory, self.current_file, entities[self.collection_key]
        )

    async def _read_pending(self) -> list[dict[str, Any]]:
        data = await self._read_document(self.directory, self.current_file)
        return data if isinstance(data, list) else []

    async def _read_history(self, pattern: str = r"^feedback-.*\.json$") -> list[dict[str, Any]]:
        names = await self.storage.list_files(self.history_path, pattern)
        records = [await self._read_document(self.history_path, n) for n in names]
        return [r for r in records if isinstance(r, dict)]

    # ── Pending ──────────────────────────────────────────────────────────

    async def get_pending_feedback(self) -> list[dict[str, Any]]:
        try:
            return await self._read_pending()
        except Exception as e:
            return await self._fail(e, "get_pending_feedback", read=True)

    async def get_feedback_by_id(self, feedback_id: str) -> dict[str, Any] | None:
        return self._find_in(await self._read_all(), feedback_id)

    async def get_feedback_by_task_id(self, task_id: str) -> list[dict[str, Any]]:
        pending = await self.get_pending_feedback()
        return [f for f in pending if (f.get("feedback_loop") or {}).get("task_id") == task_id]

    async def save_feedback(self, feedback: dict[str, Any]) -> bool:
        """Replace the pending record with the same ``feedback_id`` or append a new one."""
        try:
            self._validate(feedback)
            pending = await self._read_pending()
            index = next(
                (
                    i
                    for i, f in enumerate(pending)
                    if f.get("feedback_id") == feedback["feedback_id"]
                ),
                None,
            )
            if index is None:
                pending.append(feedback)
            else:
                pending[index] = feedback
            await self.storage.write_json(self.directory, self.current_file, pending)
        except Exception as e:
            return await self._fail(
                e,
                "save_feedback",
                {"feedbackId": feedback.get("feedback_id") if isinstance(feedback, dict) else None},
            )
        self.logger.debug("feedback_saved", feedback_id=feedback["feedback_id"])
        return True

    # ── History ──────────────────────────────────────────────────────────

    async def move_feedback_to_history(self, feedback: dict[str, Any]) -> bool:
        """Archive ``feedback`` and drop it from the pending list."""
        try:
            self._validate(feedback)
            loop = feedback["feedback_loop"]
            task_id = loop["task_id"]
            attempt = loop.get("implementation_attempt", 1)
            await self.storage.write_json(
                self.history_path, f"feedback-{task_id}-{attempt}.json", feedback
            )

            pending = await self._read_pending()
            remaining = [
                f
                for f in pending
                if f.get("feedback_id") != feedback.get("feedback_id")
                and not (
                    (f.get("feedback_loop") or {}).get("task_id") == task_id
                    and (f.get("feedback_loop") or {}).get("implementation_attempt", 1) == attempt
                )
            ]
            await self.storage.write_json(self.directory, self.current_file, remaining)
        except Exception as e:
            return await self._fail(e, "move_feedback_to_history")
        return True

    async def get_feedback_history_by_task_id(self, task_id: str) -> list[dict[str, Any]]:
        """History records for ``task_id``, newest first."""
        try:
            history = await self._read_history(rf"^feedback-{task_id}-.*\.json$")
        except Exception as e:
            return await self._fail(
                e, "get_feedback_history_by_task_id", {"taskId": task_id}, read=True
            )
        history.sort(key=_timestamp_of, reverse=True)
        return history

    # ── Status ───────────────────────────────────────────────────────────

    async def update_feedback_status(
        self,
        feedback_id: str,
        new_status: str,
        resolution_details: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Move a pending record to ``new_status``.

        Raises:
            NotFoundError: no pending record with ``feedback_id``
            StateError: the transition table forbids the move
        """
        try:
            pending = await self._read_pending()
            index = next(
                (i for i, f in enumerate(pending) if f.get("feedback_id") == feedback_id), None
            )
            if index is None:
                raise NotFoundError(
                    f"Feedback with id {feedback_id} not found",
                    context={"entity": "feedback", "id": feedback_id},
                )

            feedback = pending[index]
            loop = feedback["feedback_loop"]
            current = loop.get("status")
            if not self._transition_allowed(current, new_status):
                raise StateError(
                    f"Transition from {current} to {new_status} is not allowed",
                    context={"feedbackId": feedback_id, "from": current, "to": new_status},
                )

            loop["status"] = new_status
            loop["resolution_details"] = resolution_details or {}
            loop["updated_at"] = utc_timestamp()
            await self.storage.write_json(self.directory, self.current_file, pending)
        except Exception as e:
            return await self._fail(e, "update_feedback_status", {"feedbackId": feedback_id})

        self._emit(
            "status_updated",
            {"feedbackId": feedback_id, "previousStatus": current, "newStatus": new_status},
        )
        return feedback

    def _transition_allowed(self, current: str | None, new: str) -> bool:
        check = getattr(self.validator, "validate_status_transition", None)
        if check is not None:
            return check(current, new).is_valid
        if current == new:
            return True
        return new in self.feedback_state_transitions.get(current or "", ())

    # ── Scoring and reporting ────────────────────────────────────────────

    def calculate_priority(self, feedback: Any) -> int:
        """Priority 1-10; see :meth:`FeedbackValidator.calculate_priority`."""
        calculate = getattr(self.validator, "calculate_priority", None)
        if calculate is not None:
            return calculate(feedback)

        return FeedbackValidator(
            self.logger,
            transitions=self.feedback_state_transitions,
            type_weights=self.feedback_type_weights,
        ).calculate_priority(feedback)

    async def get_feedback_stats(self) -> dict[str, Any]:
        try:
            pending = await self._read_pending()
            history = await self._read_history()
        except Exception as e:
            return await self._fail(e, "get_feedback_stats", read=True)

        status_counts = {status: 0 for status in self.feedback_state_transitions}
        for feedback in pending:
            status = (feedback.get("feedback_loop") or {}).get("status")
            if status in status_counts:
                status_counts[status] += 1

        type_counts: dict[str, int] = {}
        task_counts: dict[str, int] = {}
        for feedback in pending + history:
            loop = feedback.get("feedback_loop") or {}
            if loop.get("feedback_type"):
                type_counts[loop["feedback_type"]] = type_counts.get(loop["feedback_type"], 0) + 1
            if loop.get("task_id"):
                task_counts[loop["task_id"]] = task_counts.get(loop["task_id"], 0) + 1

        return {
            "total": len(pending) + len(history),
            "pending": len(pending),
            "history": len(history),
            "status_counts": status_counts,
            "type_counts": type_counts,
            "task_counts": task_counts,
        }

    async def search_feedback(
        self,
        *,
        task_id: str | None = None,
        status: str | None = None,
        feedback_type: str | None = None,
        start_date: str | datetime | None = None,
        end_date: str | datetime | None = None,
        text: str | None = None,
    ) -> list[dict[str, Any]]:
        """Filter pending and historical feedback; every given criterion must match."""
        try:
            records = await self._read_pending() + await self._read_history()
        except Exception as e:
            return await self._fail(e, "search_feedback", read=True)

        start = _parse_date(start_date)
        end = _parse_date(end_date)
        if (start_date and start is None) or (end_date and end is None):
            raise ValidationError("Invalid date range", errors=["dates must be ISO 8601"])

        results = []
        for feedback in records:
            loop = feedback.get("feedback_loop") or {}
            if task_id and loop.get("task_id") != task_id:
                continue
            if status and loop.get("status") != status:
                continue
            if feedback_type and loop.get("feedback_type") != feedback_type:
                continue
            if start or end:
                when = _parse_date(_timestamp_of(feedback))
                if when is None or (start and when < start) or (end and when > end):
                    continue
            if text and text.lower() not in json.dumps(feedback, ensure_ascii=False).lower():
                continue
            results.append(feedback)
        return results

    async def delete_feedback(self, feedback_id: str) -> bool:
        """Drop a pending record without archiving it."""
        try:
            pending = await self._read_pending()
            remaining = [f for f in pending if f.get("feedback_id") != feedback_id]
            if len(remaining) == len(pending):
                raise NotFoundError(
                    f"Feedback with id {feedback_id} not found",
                    context={"entity": "feedback", "id": feedback_id},
                )
            await self.storage.write_json(self.directory, self.current_file, remaining)
        except Exception as e:
            return await self._fail(e, "delete_feedback", {"feedbackId": feedback_id})
        self._emit("deleted", {"id": feedback_id})
        return True
