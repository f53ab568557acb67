"""Shared fixtures for k3senvoy tests."""

import copy
import queue
import threading
import time
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from kubernetes.client.exceptions import ApiException

from k3senvoy.config import new_default_server
from k3senvoy.kube import EventType, WatchEvent
from k3senvoy.provider import WATCHED_KINDS
from k3senvoy.resource_table import ResourceTable
from k3senvoy.types import DEFAULT_CONTROLLER_NAME

DEFAULT_WAIT = 10.0
DEFAULT_TICK = 0.02


class FakeKubeClient:
    """In-memory stand-in for KubeClient.

    Assigns resource versions from a single counter starting at 1 and
    rejects writes that carry a stale resourceVersion.
    """

    def __init__(self, objects: Optional[List[Dict[str, Any]]] = None):
        self._lock = threading.Lock()
        self._objects: Dict[Tuple[str, str, str], Dict[str, Any]] = {}
        self._version = 0
        self._errors: Dict[str, List[Exception]] = defaultdict(list)
        self._watch_batches: Dict[str, List[Any]] = defaultdict(list)
        self.watch_timeouts: List[int] = []
        self.calls: List[Tuple[str, str, str, str]] = []
        self.stopped = False
        for obj in objects or []:
            self._objects[self._key(obj)] = copy.deepcopy(obj)

    def inject_error(self, verb: str, error: Exception, times: int = 1) -> None:
        """Make the next ``times`` calls of ``verb`` raise ``error``."""
        self._errors[verb].extend([error] * times)

    def get(self, kind: str, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        self._record("get", kind, namespace, name)
        with self._lock:
            obj = self._objects.get((kind, namespace or "", name))
            return copy.deepcopy(obj) if obj is not None else None

    def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        key = self._key(obj)
        self._record("create", *key)
        with self._lock:
            if key in self._objects:
                raise ApiException(status=409, reason="AlreadyExists")
            stored = copy.deepcopy(obj)
            stored.setdefault("metadata", {})["resourceVersion"] = self._next_version()
            self._objects[key] = stored
            return copy.deepcopy(stored)

    def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        key = self._key(obj)
        self._record("update", *key)
        with self._lock:
            current = self._check_write(key, obj)
            stored = copy.deepcopy(obj)
            if "status" in current:
                stored["status"] = current["status"]
            stored["metadata"]["resourceVersion"] = self._next_version()
            self._objects[key] = stored
            return copy.deepcopy(stored)

    def update_status(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        key = self._key(obj)
        self._record("update_status", *key)
        with self._lock:
            current = self._check_write(key, obj)
            stored = copy.deepcopy(current)
            stored["status"] = copy.deepcopy(obj.get("status"))
            stored["metadata"]["resourceVersion"] = self._next_version()
            self._objects[key] = stored
            return copy.deepcopy(stored)

    def delete(self, kind: str, namespace: str, name: str) -> None:
        self._record("delete", kind, namespace, name)
        with self._lock:
            if self._objects.pop((kind, namespace or "", name), None) is None:
                raise ApiException(status=404, reason="Not Found")

    def list(self, kind: str):
        self._record("list", kind, "", "")
        with self._lock:
            items = [copy.deepcopy(o) for k, o in sorted(self._objects.items()) if k[0] == kind]
            return items, str(self._version)

    def script_watch(self, kind: str, *batches: Any) -> None:
        """Queue watch results for kind: each batch is a list of WatchEvent or an exception."""
        with self._lock:
            self._watch_batches[kind].extend(batches)

    def watch(self, kind: str, resource_version: Optional[str] = None, timeout_seconds: int = 30):
        self._record("watch", kind, "", "")
        with self._lock:
            self.watch_timeouts.append(timeout_seconds)
            batch = self._watch_batches[kind].pop(0) if self._watch_batches[kind] else []
        if isinstance(batch, Exception):
            raise batch
        if not batch:
            time.sleep(DEFAULT_TICK)
        return iter(list(batch))

    def stop(self) -> None:
        self.stopped = True

    def count(self, verb: str, kind: Optional[str] = None) -> int:
        return sum(1 for c in self.calls if c[0] == verb and (kind is None or c[1] == kind))

    def _record(self, verb: str, kind: str, namespace: str, name: str) -> None:
        with self._lock:
            self.calls.append((verb, kind, namespace or "", name))
            if self._errors[verb]:
                raise self._errors[verb].pop(0)

    def _check_write(self, key: Tuple[str, str, str], obj: Dict[str, Any]) -> Dict[str, Any]:
        current = self._objects.get(key)
        if current is None:
            raise ApiException(status=404, reason="Not Found")
        version = (obj.get("metadata") or {}).get("resourceVersion")
        if version and version != current["metadata"].get("resourceVersion"):
            raise ApiException(status=409, reason="Conflict")
        return current

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    @staticmethod
    def _key(obj: Dict[str, Any]) -> Tuple[str, str, str]:
        metadata = obj.get("metadata") or {}
        return obj.get("kind", ""), metadata.get("namespace") or "", metadata.get("name", "")


class FakeEventSource:
    """Event source fed by tests instead of a Kubernetes watch."""

    def __init__(self):
        self.queues: Dict[str, "queue.Queue[WatchEvent]"] = {k: queue.Queue() for k in WATCHED_KINDS}

    def emit(self, kind: str, event_type: EventType, obj: Dict[str, Any]) -> None:
        self.queues[kind].put(WatchEvent(type=event_type, object=copy.deepcopy(obj)))

    def __call__(self, kind: str, stop: threading.Event):
        events = self.queues[kind]
        while not stop.is_set():
            try:
                yield events.get(timeout=DEFAULT_TICK)
            except queue.Empty:
                continue


def eventually(condition: Callable[[], bool], wait: float = DEFAULT_WAIT, tick: float = DEFAULT_TICK) -> bool:
    """Poll condition until it holds or wait elapses."""
    deadline = time.monotonic() + wait
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(tick)
    return condition()


def gateway_class(name: str, controller_name: str = DEFAULT_CONTROLLER_NAME) -> Dict[str, Any]:
    return {
        "apiVersion": "gateway.networking.k8s.io/v1beta1",
        "kind": "GatewayClass",
        "metadata": {"name": name, "generation": 1},
        "spec": {"controllerName": controller_name},
    }


def gateway(name: str, namespace: str, class_name: str) -> Dict[str, Any]:
    return {
        "apiVersion": "gateway.networking.k8s.io/v1beta1",
        "kind": "Gateway",
        "metadata": {"name": name, "namespace": namespace, "generation": 1},
        "spec": {
            "gatewayClassName": class_name,
            "listeners": [{"name": "test", "port": 8080, "protocol": "HTTP"}],
        },
    }


@pytest.fixture
def fake_client():
    return FakeKubeClient()


@pytest.fixture
def table():
    return ResourceTable()


@pytest.fixture
def server():
    return new_default_server()
