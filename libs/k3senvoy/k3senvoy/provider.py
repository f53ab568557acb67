"""
Kubernetes provider for K3s Envoy.

Watches GatewayClass and Gateway objects, accepts the ones that belong to
this gateway and publishes them into the resource table.

Each watched object identity moves through an explicit state machine:

    UNOBSERVED -> PENDING -> ACCEPTED -> REMOVED

Objects that do not belong to this gateway never leave UNOBSERVED. A
GatewayClass belongs to this gateway when its controllerName matches ours;
a Gateway belongs to it when its gatewayClassName names an accepted
GatewayClass.

Per kind, a watch thread feeds events into a queue and a worker thread
drives the state machine from that queue. Both sides are replaceable: any
callable returning an iterable of WatchEvent can stand in for the watch.
"""

import copy
import logging
import queue
import random
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

import urllib3
from kubernetes.client.exceptions import ApiException

from .config import Server
from .errors import is_conflict, is_forbidden, is_gone, is_not_found, is_transient
from .kube import GATEWAY, GATEWAY_CLASS, EventType, KubeClient, WatchEvent
from .resource_table import ObjectKey, ResourceTable

logger = logging.getLogger(__name__)

WATCHED_KINDS = (GATEWAY_CLASS.kind, GATEWAY.kind)

ACCEPTED_CONDITION = "Accepted"
ACCEPTED_REASON = "Accepted"
ACCEPTED_MESSAGE = "Valid GatewayClass"

STATUS_UPDATE_ATTEMPTS = 5
# Server-side watch window. Must stay below cli.SHUTDOWN_TIMEOUT_SECONDS.
WATCH_TIMEOUT_SECONDS = 5
MAX_BACKOFF_SECONDS = 30
QUEUE_POLL_SECONDS = 0.5

EventSource = Callable[[str, threading.Event], Iterable[WatchEvent]]


class ObjectState(str, Enum):
    """Lifecycle of one watched object identity."""
    UNOBSERVED = "Unobserved"
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    REMOVED = "Removed"


def next_state(state: ObjectState, event_type: EventType, owned: bool) -> ObjectState:
    """
    Compute the state reached after an event.

    PENDING -> ACCEPTED is not an event transition; the provider moves an
    object there once its status is written and it is published.

    Args:
        state: Current state of the object identity
        event_type: Received watch event type
        owned: Whether the object belongs to this gateway

    Returns:
        The next state
    """
    tracked = state in (ObjectState.PENDING, ObjectState.ACCEPTED)

    if event_type == EventType.DELETED:
        return ObjectState.REMOVED if tracked else state

    if not owned:
        # An object that stops belonging to this gateway is dropped like a deletion.
        return ObjectState.REMOVED if tracked else state

    if state == ObjectState.ACCEPTED:
        return ObjectState.ACCEPTED
    return ObjectState.PENDING


def utc_now_rfc3339() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def accepted_condition(generation: Optional[int]) -> Dict[str, Any]:
    condition: Dict[str, Any] = {
        "type": ACCEPTED_CONDITION,
        "status": "True",
        "reason": ACCEPTED_REASON,
        "message": ACCEPTED_MESSAGE,
        "lastTransitionTime": utc_now_rfc3339(),
    }
    if generation is not None:
        condition["observedGeneration"] = generation
    return condition


def has_accepted_condition(obj: Dict[str, Any]) -> bool:
    """True if obj carries a true Accepted condition for its current generation."""
    generation = (obj.get("metadata") or {}).get("generation")
    for cond in (obj.get("status") or {}).get("conditions") or []:
        if cond.get("type") != ACCEPTED_CONDITION or cond.get("status") != "True":
            continue
        if generation is None or cond.get("observedGeneration") in (None, generation):
            return True
    return False


def set_condition(obj: Dict[str, Any], condition: Dict[str, Any]) -> None:
    """Insert or replace the condition of the same type in obj's status."""
    status = obj.setdefault("status", {}) or {}
    obj["status"] = status
    conditions: List[Dict[str, Any]] = status.get("conditions") or []
    for i, existing in enumerate(conditions):
        if existing.get("type") == condition["type"]:
            if existing.get("status") == condition["status"] and existing.get("lastTransitionTime"):
                condition = dict(condition, lastTransitionTime=existing["lastTransitionTime"])
            conditions[i] = condition
            break
    else:
        conditions.append(condition)
    status["conditions"] = conditions


class Provider:
    """
    Watch-driven ingestion of Gateway API objects.

    The provider is the only writer of the resource table.
    """

    def __init__(
        self,
        client: KubeClient,
        server: Server,
        table: ResourceTable,
        event_source: Optional[EventSource] = None,
    ):
        self.client = client
        self.controller_name = server.envoy_gateway.controller_name
        self.table = table
        self.event_source = event_source or self.watch_events

        # Serializes state machine steps across the per-kind workers.
        self._lock = threading.RLock()
        self._states: Dict[ObjectKey, ObjectState] = {}
        self._gateways: Dict[ObjectKey, Dict[str, Any]] = {}
        # Bumped on every transition; a status write commits only if its epoch is current.
        self._epochs: Dict[ObjectKey, int] = {}

        self._queues: Dict[str, "queue.Queue[WatchEvent]"] = {k: queue.Queue() for k in WATCHED_KINDS}
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    def state(self, key: ObjectKey) -> ObjectState:
        with self._lock:
            return self._states.get(key, ObjectState.UNOBSERVED)

    def handle_event(self, kind: str, event: WatchEvent) -> ObjectState:
        """
        Drive the state machine of one object identity with one event.

        Args:
            kind: Watched kind the event belongs to
            event: Watch event

        Returns:
            The state of the object identity after the event

        Raises:
            ApiException: If the status write fails; the object stays PENDING
        """
        obj = event.object
        metadata = obj.get("metadata") or {}
        key = ObjectKey(kind, metadata.get("namespace") or "", metadata.get("name", ""))

        with self._lock:
            if kind == GATEWAY.kind:
                if event.type == EventType.DELETED:
                    self._gateways.pop(key, None)
                else:
                    self._gateways[key] = copy.deepcopy(obj)

            state = self._states.get(key, ObjectState.UNOBSERVED)
            owned = event.type != EventType.DELETED and self._owns(kind, obj)
            new_state = next_state(state, event.type, owned)

            if new_state == ObjectState.REMOVED:
                if state != ObjectState.REMOVED:
                    self._remove(key)
                return new_state

            if new_state == ObjectState.UNOBSERVED:
                logger.debug(f"Ignoring {key}: not managed by {self.controller_name}")
                return new_state

            self._states[key] = new_state
            epoch = self._bump_epoch(key)

        # The status write runs unlocked; a newer step for the same key wins.
        published = obj
        if kind == GATEWAY_CLASS.kind:
            updated = self.write_accepted_status(obj)
            if updated is not None:
                published = updated

        with self._lock:
            if self._epochs.get(key) != epoch:
                logger.debug(f"Discarding superseded update of {key}")
                return self._states.get(key, ObjectState.UNOBSERVED)
            self._accept(key, published)
            return ObjectState.ACCEPTED

    def write_accepted_status(self, obj: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Write an Accepted condition to a GatewayClass status.

        Conflicts are resolved by re-reading the object and trying again, up
        to STATUS_UPDATE_ATTEMPTS times.

        Returns:
            The object as stored after the write, or None if it no longer exists
        """
        current = obj
        name = (obj.get("metadata") or {}).get("name", "")
        for attempt in range(1, STATUS_UPDATE_ATTEMPTS + 1):
            if has_accepted_condition(current):
                return current
            desired = copy.deepcopy(current)
            generation = (desired.get("metadata") or {}).get("generation")
            set_condition(desired, accepted_condition(generation))
            try:
                return self.client.update_status(desired)
            except ApiException as e:
                if is_not_found(e):
                    logger.info(f"GatewayClass {name} was deleted before its status was written")
                    return None
                if not is_conflict(e) or attempt == STATUS_UPDATE_ATTEMPTS:
                    raise
                logger.debug(f"Conflict writing status of GatewayClass {name}, retrying")
            current = self.client.get(GATEWAY_CLASS.kind, "", name)
            if current is None:
                logger.info(f"GatewayClass {name} was deleted before its status was written")
                return None
        return current

    def start(self) -> None:
        """Start a watch thread and a worker thread per watched kind."""
        self._stop.clear()
        for kind in WATCHED_KINDS:
            for target, role in ((self._watch_loop, "watch"), (self._worker_loop, "worker")):
                thread = threading.Thread(
                    target=target,
                    args=(kind,),
                    name=f"{kind.lower()}-{role}",
                    daemon=True,
                )
                thread.start()
                self._threads.append(thread)
        logger.info(f"Provider started for controller {self.controller_name}")

    def stop(self) -> None:
        """Stop watches and workers."""
        self._stop.set()
        stop_client = getattr(self.client, "stop", None)
        if stop_client is not None:
            stop_client()

    def wait(self, timeout: Optional[float] = None) -> None:
        for thread in self._threads:
            thread.join(timeout)
        self._threads = [t for t in self._threads if t.is_alive()]

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def watch_events(self, kind: str, stop: threading.Event) -> Iterator[WatchEvent]:
        """
        List-then-watch event stream for one kind.

        Resumes from the last seen resourceVersion when a stream ends. On
        ``410 Gone`` it re-lists, emitting DELETED for objects that vanished
        meanwhile. Transient errors back off with jitter; forbidden errors
        end the stream.
        """
        last_seen: Dict[ObjectKey, Dict[str, Any]] = {}
        resource_version: Optional[str] = None
        relist = True
        backoff = 1.0

        while not stop.is_set():
            try:
                if relist:
                    items, resource_version = self.client.list(kind)
                    listed = {ObjectKey.for_object(dict(item, kind=kind)): item for item in items}
                    for key in sorted(set(last_seen) - set(listed)):
                        yield WatchEvent(type=EventType.DELETED, object=last_seen.pop(key))
                    for key, item in sorted(listed.items()):
                        last_seen[key] = item
                        yield WatchEvent(type=EventType.ADDED, object=item)
                    relist = False
                    logger.info(f"Watching {kind} from resourceVersion {resource_version}")

                for event in self.client.watch(kind, resource_version, WATCH_TIMEOUT_SECONDS):
                    if stop.is_set():
                        return
                    key = ObjectKey.for_object(dict(event.object, kind=kind))
                    version = (event.object.get("metadata") or {}).get("resourceVersion")
                    if version:
                        resource_version = version
                    if event.type == EventType.DELETED:
                        last_seen.pop(key, None)
                    else:
                        last_seen[key] = event.object
                    yield event
                backoff = 1.0
            except ApiException as e:
                if is_gone(e):
                    logger.warning(f"{kind} watch resource version expired, re-listing")
                    relist = True
                    continue
                if is_forbidden(e):
                    logger.error(
                        f"Kubernetes API access denied watching {kind} (status={e.status}). "
                        "Check controller RBAC and service account permissions."
                    )
                    return
                logger.exception(f"Kubernetes API error watching {kind}")
                backoff = self._backoff(stop, backoff)
            except Exception:
                logger.exception(f"Unexpected error watching {kind}")
                backoff = self._backoff(stop, backoff)

    def _owns(self, kind: str, obj: Dict[str, Any]) -> bool:
        spec = obj.get("spec") or {}
        if kind == GATEWAY_CLASS.kind:
            return spec.get("controllerName") == self.controller_name
        if kind == GATEWAY.kind:
            class_name = spec.get("gatewayClassName")
            if not class_name:
                return False
            class_key = ObjectKey(GATEWAY_CLASS.kind, "", class_name)
            return self._states.get(class_key) == ObjectState.ACCEPTED
        return False

    def _bump_epoch(self, key: ObjectKey) -> int:
        epoch = self._epochs.get(key, 0) + 1
        self._epochs[key] = epoch
        return epoch

    def _accept(self, key: ObjectKey, published: Dict[str, Any]) -> None:
        was_accepted = self._states.get(key) == ObjectState.ACCEPTED
        self.table.put(key, published)
        self._states[key] = ObjectState.ACCEPTED
        if not was_accepted:
            logger.info(f"Accepted {key}")

        if key.kind == GATEWAY_CLASS.kind:
            self._reevaluate_gateways(key.name)

    def _remove(self, key: ObjectKey) -> None:
        self._states[key] = ObjectState.REMOVED
        self._bump_epoch(key)
        self.table.delete(key)
        logger.info(f"Removed {key}")

        if key.kind == GATEWAY_CLASS.kind:
            self._reevaluate_gateways(key.name)

    def _reevaluate_gateways(self, class_name: str) -> None:
        """Re-run the state machine for every known Gateway of a GatewayClass."""
        for gw_key, gateway in sorted(self._gateways.items()):
            if (gateway.get("spec") or {}).get("gatewayClassName") != class_name:
                continue
            state = self._states.get(gw_key, ObjectState.UNOBSERVED)
            owned = self._owns(GATEWAY.kind, gateway)
            if owned == (state == ObjectState.ACCEPTED):
                continue
            self.handle_event(GATEWAY.kind, WatchEvent(type=EventType.MODIFIED, object=gateway))

    def _watch_loop(self, kind: str) -> None:
        try:
            for event in self.event_source(kind, self._stop):
                if self._stop.is_set():
                    break
                self._queues[kind].put(event)
        except Exception:
            logger.exception(f"{kind} event source failed")
        logger.debug(f"{kind} watch stopped")

    def _worker_loop(self, kind: str) -> None:
        events = self._queues[kind]
        while not self._stop.is_set():
            try:
                event = events.get(timeout=QUEUE_POLL_SECONDS)
            except queue.Empty:
                continue
            self._process(kind, event)
        logger.debug(f"{kind} worker stopped")

    def _process(self, kind: str, event: WatchEvent) -> None:
        """Handle one event, retrying transient platform errors with backoff until stopped."""
        backoff = 1.0
        while not self._stop.is_set():
            try:
                self.handle_event(kind, event)
                return
            except ApiException as e:
                if is_forbidden(e):
                    logger.error(f"Kubernetes API access denied handling {kind} (status={e.status})")
                    return
                if not is_transient(e):
                    logger.error(
                        f"Dropping {event.type.value} {kind} {_object_name(event.object)}: "
                        f"{e.status} {e.reason}"
                    )
                    return
                logger.exception(f"Failed to handle {event.type.value} {kind}, retrying")
            except urllib3.exceptions.HTTPError:
                logger.exception(f"Connection error handling {event.type.value} {kind}, retrying")
            except Exception:
                logger.exception(f"Failed to handle {event.type.value} {kind}")
                return
            backoff = self._backoff(self._stop, backoff)

    @staticmethod
    def _backoff(stop: threading.Event, backoff: float) -> float:
        stop.wait(timeout=backoff * (0.5 + random.random()))
        return min(backoff * 2, MAX_BACKOFF_SECONDS)


def _object_name(obj: Dict[str, Any]) -> str:
    metadata = obj.get("metadata") or {}
    if metadata.get("namespace"):
        return f"{metadata['namespace']}/{metadata.get('name', '')}"
    return metadata.get("name", "")
