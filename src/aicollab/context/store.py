"""Bounded task/result/conversation history plus key-value context."""

from __future__ import annotations

import base64
import json
import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TypeVar

from aicollab.config.constants import DEFAULT_MAX_HISTORY_SIZE
from aicollab.context.models import (
    ContextChange,
    ContextMetrics,
    ContextSnapshot,
    ConversationMessage,
    MessageSender,
    ResultRecord,
    TaskRecord,
    ValueMetadata,
)
from aicollab.exceptions import (
    InvalidConfiguration,
    TypeMismatch,
    ValueAlreadyExists,
    ValueNotFound,
)
from aicollab.tasks.models import ContextValue, Task, TaskResult

logger = logging.getLogger("aicollab.context.store")

T = TypeVar("T")
ChangeCallback = Callable[[ContextChange], None]

_BYTES_TAG = "__bytes__"
_MAP_TAG = "__map__"
_TAGS = ({_BYTES_TAG}, {_MAP_TAG})


def _now() -> datetime:
    return datetime.now(UTC)


def _check_value(value: Any) -> None:
    """Reject anything outside the closed context value set."""
    if value is None or isinstance(value, (str, int, float, bool, bytes)):
        return
    if isinstance(value, list):
        for item in value:
            _check_value(item)
        return
    if isinstance(value, dict):
        for k, item in value.items():
            if not isinstance(k, str):
                raise TypeError(f"Context map keys must be str, got {type(k).__name__}")
            _check_value(item)
        return
    raise TypeError(f"Unsupported context value type: {type(value).__name__}")


def _encode(value: Any) -> Any:
    """JSON form of a context value. Bytes become ``{"__bytes__": <base64>}``;
    a user map that looks like a tag is wrapped in ``{"__map__": ...}``."""
    if isinstance(value, bytes):
        return {_BYTES_TAG: base64.b64encode(value).decode("ascii")}
    if isinstance(value, list):
        return [_encode(v) for v in value]
    if isinstance(value, dict):
        encoded = {k: _encode(v) for k, v in value.items()}
        if set(value) in _TAGS:
            return {_MAP_TAG: encoded}
        return encoded
    return value


def _decode(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value) == {_BYTES_TAG}:
            return base64.b64decode(value[_BYTES_TAG])
        if set(value) == {_MAP_TAG}:
            return {k: _decode(v) for k, v in value[_MAP_TAG].items()}
        return {k: _decode(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_decode(v) for v in value]
    return value


@dataclass
class _StoredValue:
    value: ContextValue
    metadata: ValueMetadata


class ContextStore:
    """Shared history and key-value store for one collaboration session.

    Every collection is bounded by ``max_history_size`` independently.
    Task and result history evict the oldest entry (by ``created_at`` /
    ``completed_at``) one at a time; conversations keep the most recent
    messages. Evicting a task also deletes its task-scoped values.

    All mutation goes through the methods below, serialized by an internal
    lock. Subscriber callbacks run after the lock is released.
    """

    def __init__(
        self,
        max_history_size: int = DEFAULT_MAX_HISTORY_SIZE,
        context_id: str | None = None,
    ) -> None:
        if max_history_size < 1:
            raise InvalidConfiguration("max_history_size must be at least 1")
        self.context_id = context_id or str(uuid.uuid4())
        self.created_at = _now()
        self.last_accessed_at = self.created_at
        self._max_history_size = max_history_size
        self._lock = threading.RLock()

        self._tasks: dict[str, Task] = {}
        self._results: dict[str, TaskResult] = {}
        self._conversations: dict[str, list[ConversationMessage]] = {}
        self._global: dict[str, ContextValue] = {}
        self._task_context: dict[str, dict[str, ContextValue]] = {}
        self._storage: dict[str, _StoredValue] = {}
        self._subscribers: dict[str, ChangeCallback] = {}
        self._metrics = ContextMetrics(creation_time=self.created_at)

    @property
    def max_history_size(self) -> int:
        return self._max_history_size

    def _touch(self) -> None:
        self.last_accessed_at = _now()

    # -- Task history ----------------------------------------------------------

    def record_task(self, task: Task) -> None:
        """Store a snapshot of *task*, then trim to the history bound."""
        with self._lock:
            self._tasks[task.id] = task.model_copy(deep=True)
            self._metrics.task_count += 1
            self._trim_tasks()

    def get_task(self, task_id: str) -> Task | None:
        with self._lock:
            self._touch()
            return self._tasks.get(task_id)

    def get_all_tasks(self) -> list[Task]:
        """All retained tasks, oldest first."""
        with self._lock:
            self._touch()
            return sorted(self._tasks.values(), key=lambda t: t.created_at)

    def get_tasks(self, predicate: Callable[[Task], bool]) -> list[Task]:
        with self._lock:
            self._touch()
            return [t for t in sorted(self._tasks.values(), key=lambda t: t.created_at) if predicate(t)]

    def clear_task_history(self) -> None:
        """Drop all tasks along with their task-scoped values."""
        with self._lock:
            self._tasks.clear()
            self._task_context.clear()

    def _trim_tasks(self) -> None:
        while len(self._tasks) > self._max_history_size:
            oldest = min(self._tasks.values(), key=lambda t: t.created_at)
            del self._tasks[oldest.id]
            if self._task_context.pop(oldest.id, None) is not None:
                logger.debug("Dropped task-scoped context for evicted task %s", oldest.id)
            logger.debug("Evicted task %s from history", oldest.id)

    # -- Result history --------------------------------------------------------

    def record_result(self, result: TaskResult) -> None:
        with self._lock:
            self._results[result.result_id] = result
            self._metrics.result_count += 1
            self._trim_results()

    def get_result(self, result_id: str) -> TaskResult | None:
        with self._lock:
            self._touch()
            return self._results.get(result_id)

    def get_results_for_task(self, task_id: str) -> list[TaskResult]:
        with self._lock:
            self._touch()
            return sorted(
                (r for r in self._results.values() if r.task_id == task_id),
                key=lambda r: r.completed_at,
            )

    def get_all_results(self) -> list[TaskResult]:
        with self._lock:
            self._touch()
            return sorted(self._results.values(), key=lambda r: r.completed_at)

    def _trim_results(self) -> None:
        while len(self._results) > self._max_history_size:
            oldest = min(self._results.values(), key=lambda r: r.completed_at)
            del self._results[oldest.result_id]

    # -- Conversations ---------------------------------------------------------

    def add_message(self, conversation_id: str, message: ConversationMessage) -> None:
        with self._lock:
            messages = self._conversations.setdefault(conversation_id, [])
            messages.append(message)
            self._metrics.message_count += 1
            if len(messages) > self._max_history_size:
                del messages[: len(messages) - self._max_history_size]

    def add_text(
        self, conversation_id: str, sender: MessageSender, content: str, **metadata: str
    ) -> ConversationMessage:
        """Shortcut that builds the message for you."""
        message = ConversationMessage(sender=sender, content=content, metadata=metadata)
        self.add_message(conversation_id, message)
        return message

    def get_messages(self, conversation_id: str) -> list[ConversationMessage]:
        with self._lock:
            self._touch()
            return list(self._conversations.get(conversation_id, []))

    def get_recent_messages(self, conversation_id: str, limit: int) -> list[ConversationMessage]:
        if limit <= 0:
            return []
        return self.get_messages(conversation_id)[-limit:]

    def conversation_ids(self) -> list[str]:
        with self._lock:
            self._touch()
            return list(self._conversations)

    def clear_conversation(self, conversation_id: str) -> None:
        with self._lock:
            self._conversations.pop(conversation_id, None)

    def search_messages(
        self, text: str, conversation_id: str | None = None
    ) -> list[ConversationMessage]:
        """Case-insensitive substring search over message content."""
        needle = text.lower()
        with self._lock:
            self._touch()
            if conversation_id is not None:
                pools = [self._conversations.get(conversation_id, [])]
            else:
                pools = list(self._conversations.values())
            return [m for pool in pools for m in pool if needle in m.content.lower()]

    def filter_messages(
        self,
        conversation_id: str,
        sender: MessageSender | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[ConversationMessage]:
        result = []
        for m in self.get_messages(conversation_id):
            if sender is not None and m.sender != sender:
                continue
            if since is not None and m.timestamp < since:
                continue
            if until is not None and m.timestamp > until:
                continue
            result.append(m)
        return result

    def export_conversation(self, conversation_id: str) -> str:
        messages = self.get_messages(conversation_id)
        return json.dumps([m.model_dump(mode="json") for m in messages], indent=2)

    def import_conversation(self, conversation_id: str, data: str, append: bool = True) -> int:
        """Load messages exported by :meth:`export_conversation`. Returns the count."""
        messages = [ConversationMessage.model_validate(raw) for raw in json.loads(data)]
        with self._lock:
            if not append:
                self._conversations.pop(conversation_id, None)
        for message in messages:
            self.add_message(conversation_id, message)
        return len(messages)

    # -- Global / task-scoped values -------------------------------------------

    def set_global_value(self, key: str, value: ContextValue) -> None:
        _check_value(value)
        with self._lock:
            old = self._global.get(key)
            self._global[key] = value
        self._notify(key, old, value)

    def get_global_value(self, key: str) -> ContextValue | None:
        with self._lock:
            self._touch()
            return self._global.get(key)

    def remove_global_value(self, key: str) -> None:
        with self._lock:
            old = self._global.pop(key, None)
        if old is not None:
            self._notify(key, old, None)

    def set_task_value(self, task_id: str, key: str, value: ContextValue) -> None:
        _check_value(value)
        with self._lock:
            self._task_context.setdefault(task_id, {})[key] = value

    def get_task_value(self, task_id: str, key: str) -> ContextValue | None:
        with self._lock:
            self._touch()
            return self._task_context.get(task_id, {}).get(key)

    def remove_task_value(self, task_id: str, key: str) -> None:
        with self._lock:
            values = self._task_context.get(task_id)
            if values is None:
                return
            values.pop(key, None)
            if not values:
                del self._task_context[task_id]

    def get_task_values(self, task_id: str) -> dict[str, ContextValue]:
        with self._lock:
            self._touch()
            return dict(self._task_context.get(task_id, {}))

    # -- Versioned storage -----------------------------------------------------

    def store(self, key: str, value: ContextValue) -> None:
        """Store a new value. Raises ValueAlreadyExists if *key* is taken."""
        _check_value(value)
        with self._lock:
            if key in self._storage:
                raise ValueAlreadyExists(key)
            self._storage[key] = _StoredValue(
                value=value,
                metadata=ValueMetadata(type_name=type(value).__name__, timestamp=_now()),
            )
        self._notify(key, None, value)

    def retrieve(self, key: str) -> ContextValue:
        with self._lock:
            self._touch()
            entry = self._storage.get(key)
            if entry is None:
                raise ValueNotFound(key)
            return entry.value

    def retrieve_as(self, key: str, expected: type[T]) -> T:
        """Like :meth:`retrieve`, raising TypeMismatch unless the value is *expected*."""
        value = self.retrieve(key)
        if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
            raise TypeMismatch(key, expected.__name__, type(value).__name__)
        return value

    def update(self, key: str, value: ContextValue) -> None:
        """Replace an existing value of the same type and bump its version."""
        _check_value(value)
        with self._lock:
            entry = self._storage.get(key)
            if entry is None:
                raise ValueNotFound(key)
            if type(value).__name__ != entry.metadata.type_name:
                raise TypeMismatch(key, entry.metadata.type_name, type(value).__name__)
            old = entry.value
            self._storage[key] = _StoredValue(
                value=value,
                metadata=ValueMetadata(
                    type_name=entry.metadata.type_name,
                    timestamp=_now(),
                    version=entry.metadata.version + 1,
                ),
            )
        self._notify(key, old, value)

    def store_or_update(self, key: str, value: ContextValue) -> None:
        with self._lock:
            exists = key in self._storage
        if exists:
            self.update(key, value)
        else:
            self.store(key, value)

    def remove(self, key: str) -> bool:
        """Remove a stored value. Returns True if it existed."""
        with self._lock:
            entry = self._storage.pop(key, None)
        if entry is None:
            return False
        self._notify(key, entry.value, None)
        return True

    def contains(self, key: str) -> bool:
        with self._lock:
            return key in self._storage

    def get_metadata(self, key: str) -> ValueMetadata:
        with self._lock:
            entry = self._storage.get(key)
            if entry is None:
                raise ValueNotFound(key)
            return entry.metadata

    def available_keys(self) -> list[str]:
        with self._lock:
            return sorted(self._storage)

    # -- Change notification ---------------------------------------------------

    def subscribe(self, callback: ChangeCallback) -> str:
        """Register *callback* for value changes. Returns an unsubscribe token."""
        token = uuid.uuid4().hex
        with self._lock:
            self._subscribers[token] = callback
        return token

    def unsubscribe(self, token: str) -> bool:
        with self._lock:
            return self._subscribers.pop(token, None) is not None

    def _notify(self, key: str, old: ContextValue | None, new: ContextValue | None) -> None:
        with self._lock:
            callbacks = list(self._subscribers.values())
        if not callbacks:
            return
        change = ContextChange(
            key=key, old_value=old, new_value=new, timestamp=_now(), context_id=self.context_id
        )
        for callback in callbacks:
            try:
                callback(change)
            except Exception:
                logger.warning("Context subscriber failed for key %r", key, exc_info=True)

    # -- Bounds & housekeeping -------------------------------------------------

    def set_max_history_size(self, size: int) -> None:
        """Change the bound and re-trim every collection."""
        if size < 1:
            raise InvalidConfiguration("max_history_size must be at least 1")
        with self._lock:
            self._max_history_size = size
            self._trim_tasks()
            self._trim_results()
            for messages in self._conversations.values():
                if len(messages) > size:
                    del messages[: len(messages) - size]
        logger.info("Context %s history bound set to %d", self.context_id, size)

    def clear(self) -> None:
        """Drop all history and values; keeps the id and creation time."""
        with self._lock:
            self._tasks.clear()
            self._results.clear()
            self._conversations.clear()
            self._global.clear()
            self._task_context.clear()
            self._storage.clear()
            self._metrics = ContextMetrics(creation_time=self.created_at)

    def get_metrics(self) -> ContextMetrics:
        with self._lock:
            return self._metrics.model_copy()

    # -- Export / import -------------------------------------------------------

    def snapshot(self) -> ContextSnapshot:
        """Serializable projection of the store.

        Task context maps, non-text result outputs and the versioned storage
        are not part of the snapshot.
        """
        with self._lock:
            return ContextSnapshot(
                context_id=self.context_id,
                created_at=self.created_at,
                last_accessed_at=self.last_accessed_at,
                max_history_size=self._max_history_size,
                tasks=[TaskRecord.from_task(t) for t in self._tasks.values()],
                results=[ResultRecord.from_result(r) for r in self._results.values()],
                conversations={k: list(v) for k, v in self._conversations.items()},
                global_context={k: _encode(v) for k, v in self._global.items()},
                metrics=self._metrics.model_copy(),
            )

    def export_json(self) -> str:
        return self.snapshot().model_dump_json(indent=2)

    @classmethod
    def from_snapshot(cls, snapshot: ContextSnapshot) -> ContextStore:
        store = cls(max_history_size=snapshot.max_history_size, context_id=snapshot.context_id)
        store.created_at = snapshot.created_at
        for record in snapshot.tasks:
            store._tasks[record.id] = record.to_task()
        for record in snapshot.results:
            store._results[record.result_id] = record.to_result()
        store._conversations = {k: list(v) for k, v in snapshot.conversations.items()}
        store._global = {k: _decode(v) for k, v in snapshot.global_context.items()}
        store._trim_tasks()
        store._trim_results()
        store.last_accessed_at = snapshot.last_accessed_at
        store._metrics = snapshot.metrics.model_copy()
        return store

    @classmethod
    def import_json(cls, data: str) -> ContextStore:
        return cls.from_snapshot(ContextSnapshot.model_validate_json(data))

    def save(self, path: Path) -> None:
        """Persist the snapshot atomically (write to .tmp, then replace)."""
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(self.export_json(), encoding="utf-8")
        tmp.replace(path)
        logger.debug("Saved context %s to %s", self.context_id, path)

    @classmethod
    def load(cls, path: Path, max_history_size: int = DEFAULT_MAX_HISTORY_SIZE) -> ContextStore:
        """Load a saved store, or start empty when the file is missing or unreadable."""
        if not path.exists():
            return cls(max_history_size=max_history_size)
        try:
            return cls.import_json(path.read_text(encoding="utf-8"))
        except (ValueError, OSError) as exc:
            logger.warning("Failed to load context from %s: %s", path, exc)
            return cls(max_history_size=max_history_size)
