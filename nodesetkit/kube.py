"""API errors, an event recorder and an in-memory object store for controllers."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, TypeVar

EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"

DEFAULT_RETRY_ATTEMPTS = 4

T = TypeVar("T")


class ApiError(Exception):
    """An error reported by the object store."""


class NotFoundError(ApiError):
    """The requested object does not exist."""

    def __init__(self, kind: str, name: str):
        super().__init__(f'{kind} "{name}" not found')
        self.kind = kind
        self.name = name


class AlreadyExistsError(ApiError):
    """An object with the same kind, namespace and name already exists."""

    def __init__(self, kind: str, name: str):
        super().__init__(f'{kind} "{name}" already exists')
        self.kind = kind
        self.name = name


class ConflictError(ApiError):
    """The object was modified concurrently; the operation may be retried."""


class AggregateError(Exception):
    """Several errors reported together."""

    def __init__(self, errors: Iterable[BaseException]):
        self.errors = list(errors)
        messages: list[str] = []
        for err in self.errors:
            text = str(err)
            if text not in messages:
                messages.append(text)
        if len(messages) == 1:
            message = messages[0]
        else:
            message = "[" + ", ".join(messages) + "]"
        super().__init__(message)

    @classmethod
    def raise_if_any(cls, errors: Iterable[BaseException]) -> None:
        """Raise an aggregate of ``errors`` unless there are none."""
        collected = list(errors)
        if collected:
            raise cls(collected)


@dataclass(frozen=True)
class Event:
    """An event recorded against an object."""

    obj: Any
    event_type: str
    reason: str
    message: str

    def __str__(self) -> str:
        return f"{self.event_type} {self.reason} {self.message}"


@dataclass
class EventRecorder:
    """Keeps the events it is given, in order."""

    events: list[Event] = field(default_factory=list)

    def event(self, obj: Any, event_type: str, reason: str, message: str) -> None:
        """Record an event of ``event_type`` with ``reason`` about ``obj``."""
        self.events.append(Event(obj, event_type, reason, message))


def _kind_of(obj: Any) -> str:
    return getattr(type(obj), "KIND", type(obj).__name__)


Hook = Callable[..., None]


class InMemoryClient:
    """An object store keyed by kind, namespace and name.

    Objects are copied on the way in and out, so callers never share state
    with the store. Each optional hook is called with the same arguments as
    its operation before the operation runs; raising from it aborts the call.
    """

    def __init__(
        self,
        *objects: Any,
        get_hook: Optional[Hook] = None,
        create_hook: Optional[Hook] = None,
        update_hook: Optional[Hook] = None,
        delete_hook: Optional[Hook] = None,
    ):
        self._objects: dict[tuple[str, str, str], Any] = {}
        self._get_hook = get_hook
        self._create_hook = create_hook
        self._update_hook = update_hook
        self._delete_hook = delete_hook
        for obj in objects:
            self._store(obj)

    def _store(self, obj: Any) -> None:
        key = (_kind_of(obj), obj.metadata.namespace, obj.metadata.name)
        if key in self._objects:
            raise AlreadyExistsError(key[0], key[2])
        self._objects[key] = copy.deepcopy(obj)

    def get(self, kind: str, namespace: str, name: str) -> Any:
        """Return a copy of the stored object."""
        if self._get_hook is not None:
            self._get_hook(kind, namespace, name)
        try:
            return copy.deepcopy(self._objects[(kind, namespace, name)])
        except KeyError:
            raise NotFoundError(kind, name) from None

    def list(self, kind: str, namespace: Optional[str] = None) -> list[Any]:
        """Return copies of the stored objects of ``kind``, optionally in one namespace."""
        return [
            copy.deepcopy(obj)
            for (k, ns, _), obj in self._objects.items()
            if k == kind and (namespace is None or ns == namespace)
        ]

    def create(self, obj: Any) -> None:
        """Store a new object."""
        if self._create_hook is not None:
            self._create_hook(obj)
        if not obj.metadata.name:
            raise ApiError(f"{_kind_of(obj)}: name is required")
        self._store(obj)

    def update(self, obj: Any) -> None:
        """Replace an existing object."""
        if self._update_hook is not None:
            self._update_hook(obj)
        key = (_kind_of(obj), obj.metadata.namespace, obj.metadata.name)
        if key not in self._objects:
            raise NotFoundError(key[0], key[2])
        self._objects[key] = copy.deepcopy(obj)

    def delete(self, kind: str, namespace: str, name: str) -> None:
        """Delete an object; one with finalizers is only marked for deletion."""
        if self._delete_hook is not None:
            self._delete_hook(kind, namespace, name)
        key = (kind, namespace, name)
        obj = self._objects.get(key)
        if obj is None:
            raise NotFoundError(kind, name)
        if obj.metadata.finalizers:
            if obj.metadata.deletion_timestamp is None:
                obj.metadata.deletion_timestamp = datetime.now(timezone.utc)
            return
        del self._objects[key]


def retry_on_conflict(fn: Callable[[], T], attempts: int = DEFAULT_RETRY_ATTEMPTS) -> T:
    """Call ``fn`` until it does not raise ConflictError, at most ``attempts`` times."""
    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    last: Optional[ConflictError] = None
    for _ in range(attempts):
        try:
            return fn()
        except ConflictError as err:
            last = err
    assert last is not None
    raise last