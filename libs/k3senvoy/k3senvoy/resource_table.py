"""
Resource table shared between the provider and downstream consumers.

The provider writes the Gateway API objects it accepts; a translator reads
them. Values are copied on the way in and on the way out, so a reader only
ever sees the value of a completed write.
"""

import copy
import threading
from typing import Any, Dict, List, NamedTuple, Optional, Tuple


class ObjectKey(NamedTuple):
    """Identity of a Kubernetes object. Cluster-scoped objects use an empty namespace."""
    kind: str
    namespace: str
    name: str

    @classmethod
    def for_object(cls, obj: Dict[str, Any]) -> "ObjectKey":
        metadata = obj.get("metadata") or {}
        return cls(
            kind=obj.get("kind", ""),
            namespace=metadata.get("namespace") or "",
            name=metadata.get("name", ""),
        )

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind} {self.namespace}/{self.name}"
        return f"{self.kind} {self.name}"


class ResourceTable:
    """Concurrency-safe mapping from object identity to the latest observed object."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)
        self._items: Dict[ObjectKey, Dict[str, Any]] = {}
        self._generation = 0

    def put(self, key: ObjectKey, obj: Dict[str, Any]) -> None:
        """Insert or replace the value stored under key."""
        value = copy.deepcopy(obj)
        with self._lock:
            self._items[key] = value
            self._bump()

    def get(self, key: ObjectKey) -> Tuple[Optional[Dict[str, Any]], bool]:
        with self._lock:
            value = self._items.get(key)
        if value is None:
            return None, False
        # Stored values are never mutated in place.
        return copy.deepcopy(value), True

    def delete(self, key: ObjectKey) -> bool:
        """Remove key. Returns True if it was present."""
        with self._lock:
            if key not in self._items:
                return False
            del self._items[key]
            self._bump()
            return True

    def list(self, kind: str) -> List[Tuple[ObjectKey, Dict[str, Any]]]:
        """Return every entry of the given kind, sorted by key."""
        with self._lock:
            entries = [(k, v) for k, v in self._items.items() if k.kind == kind]
        return [(k, copy.deepcopy(v)) for k, v in sorted(entries)]

    def keys(self) -> List[ObjectKey]:
        with self._lock:
            return sorted(self._items)

    @property
    def generation(self) -> int:
        """Counter incremented on every change."""
        with self._lock:
            return self._generation

    def wait_for_change(self, since: int, timeout: Optional[float] = None) -> int:
        """
        Block until the table changes after generation ``since``.

        Args:
            since: Generation previously observed by the caller
            timeout: Maximum seconds to wait (None waits forever)

        Returns:
            The current generation, which equals ``since`` on timeout
        """
        with self._changed:
            self._changed.wait_for(lambda: self._generation != since, timeout=timeout)
            return self._generation

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._items

    def _bump(self) -> None:
        self._generation += 1
        self._changed.notify_all()
