"""
Kubernetes API access for K3s Envoy.

Objects are exchanged as plain manifest dicts (camelCase keys, the same shape
the generators produce). Every API call is bounded by ``request_timeout``.
Not-found on read is reported as ``None``; every other ApiException is
raised unchanged.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from kubernetes import client, config, watch
from kubernetes.client.exceptions import ApiException

from .errors import is_not_found

logger = logging.getLogger(__name__)

GATEWAY_API_GROUP = "gateway.networking.k8s.io"
GATEWAY_API_VERSION = "v1beta1"

DEFAULT_REQUEST_TIMEOUT = 30


@dataclass(frozen=True)
class ResourceKind:
    """Describes how to reach one kind of object through the API."""
    kind: str
    api_version: str
    namespaced: bool
    # Typed kinds: CoreV1Api/AppsV1Api method suffix, e.g. "service_account".
    method_suffix: Optional[str] = None
    api: Optional[str] = None
    # Custom kinds: plural resource name under the API group.
    plural: Optional[str] = None

    @property
    def group(self) -> str:
        return self.api_version.split("/")[0] if "/" in self.api_version else ""

    @property
    def version(self) -> str:
        return self.api_version.split("/")[-1]

    @property
    def is_custom(self) -> bool:
        return self.plural is not None


SERVICE_ACCOUNT = ResourceKind("ServiceAccount", "v1", True, method_suffix="service_account", api="core")
SERVICE = ResourceKind("Service", "v1", True, method_suffix="service", api="core")
DEPLOYMENT = ResourceKind("Deployment", "apps/v1", True, method_suffix="deployment", api="apps")
GATEWAY_CLASS = ResourceKind(
    "GatewayClass", f"{GATEWAY_API_GROUP}/{GATEWAY_API_VERSION}", False, plural="gatewayclasses"
)
GATEWAY = ResourceKind(
    "Gateway", f"{GATEWAY_API_GROUP}/{GATEWAY_API_VERSION}", True, plural="gateways"
)

KINDS: Dict[str, ResourceKind] = {
    k.kind: k for k in (SERVICE_ACCOUNT, SERVICE, DEPLOYMENT, GATEWAY_CLASS, GATEWAY)
}


class EventType(str, Enum):
    """Watch event type."""
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass
class WatchEvent:
    """A create, update or delete notification for one object."""
    type: EventType
    object: Dict[str, Any]


def resolve_kind(kind: str) -> ResourceKind:
    try:
        return KINDS[kind]
    except KeyError:
        raise ValueError(f"Unsupported kind: {kind}")


def load_kube_config(in_cluster: bool = False) -> None:
    """
    Load cluster credentials into the kubernetes client.

    Args:
        in_cluster: Only use the in-cluster service account configuration
    """
    if in_cluster:
        config.load_incluster_config()
        logger.info("Loaded in-cluster configuration")
        return
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster configuration")
    except config.ConfigException:
        logger.debug("In-cluster config unavailable, trying local kubeconfig")
        config.load_kube_config()
        logger.info("Loaded kubeconfig from default location")


class KubeClient:
    """Thin CRUD, status and watch layer over the kubernetes client."""

    def __init__(
        self,
        api_client: Optional[client.ApiClient] = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self.api_client = api_client or client.ApiClient()
        self.request_timeout = request_timeout
        self._apis = {
            "core": client.CoreV1Api(self.api_client),
            "apps": client.AppsV1Api(self.api_client),
        }
        self._custom = client.CustomObjectsApi(self.api_client)
        self._watchers: Set[watch.Watch] = set()
        self._watchers_lock = threading.Lock()

    def get(self, kind: str, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        """Read an object. Returns None if it does not exist."""
        rk = resolve_kind(kind)
        try:
            if rk.is_custom:
                if rk.namespaced:
                    result = self._custom.get_namespaced_custom_object(
                        rk.group, rk.version, namespace, rk.plural, name,
                        _request_timeout=self.request_timeout,
                    )
                else:
                    result = self._custom.get_cluster_custom_object(
                        rk.group, rk.version, rk.plural, name,
                        _request_timeout=self.request_timeout,
                    )
            else:
                read = getattr(self._apis[rk.api], f"read_namespaced_{rk.method_suffix}")
                result = read(name, namespace, _request_timeout=self.request_timeout)
        except ApiException as e:
            if is_not_found(e):
                return None
            raise
        return self._to_manifest(rk, result)

    def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        rk, namespace, _ = self._identity(obj)
        if rk.is_custom:
            if rk.namespaced:
                result = self._custom.create_namespaced_custom_object(
                    rk.group, rk.version, namespace, rk.plural, obj,
                    _request_timeout=self.request_timeout,
                )
            else:
                result = self._custom.create_cluster_custom_object(
                    rk.group, rk.version, rk.plural, obj,
                    _request_timeout=self.request_timeout,
                )
        else:
            create = getattr(self._apis[rk.api], f"create_namespaced_{rk.method_suffix}")
            result = create(namespace, obj, _request_timeout=self.request_timeout)
        return self._to_manifest(rk, result)

    def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Replace an object. The body must carry the current resourceVersion."""
        rk, namespace, name = self._identity(obj)
        if rk.is_custom:
            if rk.namespaced:
                result = self._custom.replace_namespaced_custom_object(
                    rk.group, rk.version, namespace, rk.plural, name, obj,
                    _request_timeout=self.request_timeout,
                )
            else:
                result = self._custom.replace_cluster_custom_object(
                    rk.group, rk.version, rk.plural, name, obj,
                    _request_timeout=self.request_timeout,
                )
        else:
            replace = getattr(self._apis[rk.api], f"replace_namespaced_{rk.method_suffix}")
            result = replace(name, namespace, obj, _request_timeout=self.request_timeout)
        return self._to_manifest(rk, result)

    def update_status(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Replace the status subresource of a Gateway API object."""
        rk, namespace, name = self._identity(obj)
        if not rk.is_custom:
            raise ValueError(f"Status writes are not supported for {rk.kind}")
        if rk.namespaced:
            result = self._custom.replace_namespaced_custom_object_status(
                rk.group, rk.version, namespace, rk.plural, name, obj,
                _request_timeout=self.request_timeout,
            )
        else:
            result = self._custom.replace_cluster_custom_object_status(
                rk.group, rk.version, rk.plural, name, obj,
                _request_timeout=self.request_timeout,
            )
        return self._to_manifest(rk, result)

    def delete(self, kind: str, namespace: str, name: str) -> None:
        rk = resolve_kind(kind)
        if rk.is_custom:
            if rk.namespaced:
                self._custom.delete_namespaced_custom_object(
                    rk.group, rk.version, namespace, rk.plural, name,
                    _request_timeout=self.request_timeout,
                )
            else:
                self._custom.delete_cluster_custom_object(
                    rk.group, rk.version, rk.plural, name,
                    _request_timeout=self.request_timeout,
                )
        else:
            remove = getattr(self._apis[rk.api], f"delete_namespaced_{rk.method_suffix}")
            remove(name, namespace, _request_timeout=self.request_timeout)

    def list(self, kind: str) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """
        List all objects of a kind across namespaces.

        Returns:
            Tuple of (items, list resourceVersion)
        """
        rk = resolve_kind(kind)
        if rk.is_custom:
            result = self._custom.list_cluster_custom_object(
                rk.group, rk.version, rk.plural,
                _request_timeout=self.request_timeout,
            )
            items = result.get("items") or []
            resource_version = (result.get("metadata") or {}).get("resourceVersion")
        else:
            list_all = getattr(self._apis[rk.api], f"list_{rk.method_suffix}_for_all_namespaces")
            result = list_all(_request_timeout=self.request_timeout)
            items = result.items or []
            resource_version = result.metadata.resource_version if result.metadata else None
        return [self._to_manifest(rk, item) for item in items], resource_version

    def watch(
        self,
        kind: str,
        resource_version: Optional[str] = None,
        timeout_seconds: int = 30,
    ) -> Iterator[WatchEvent]:
        """
        Stream watch events for a Gateway API kind.

        The stream ends after ``timeout_seconds``. ``stop()`` takes effect at the
        next event, so a quiet stream runs until its window closes.
        A ``410 Gone`` ApiException means ``resource_version`` is too old.
        """
        rk = resolve_kind(kind)
        if not rk.is_custom:
            raise ValueError(f"Watching {rk.kind} is not supported")

        watcher = watch.Watch()
        with self._watchers_lock:
            self._watchers.add(watcher)
        kwargs: Dict[str, Any] = {"timeout_seconds": timeout_seconds}
        if resource_version:
            kwargs["resource_version"] = resource_version
        try:
            for event in watcher.stream(
                self._custom.list_cluster_custom_object,
                rk.group, rk.version, rk.plural,
                **kwargs,
            ):
                event_type = str(event.get("type", ""))
                obj = event.get("object")
                if obj is None or event_type not in EventType.__members__:
                    continue
                yield WatchEvent(type=EventType(event_type), object=self._to_manifest(rk, obj))
        finally:
            watcher.stop()
            with self._watchers_lock:
                self._watchers.discard(watcher)

    def stop(self) -> None:
        """Interrupt every open watch stream."""
        with self._watchers_lock:
            watchers = list(self._watchers)
        for watcher in watchers:
            watcher.stop()

    def _identity(self, obj: Dict[str, Any]) -> Tuple[ResourceKind, str, str]:
        rk = resolve_kind(obj.get("kind", ""))
        metadata = obj.get("metadata") or {}
        return rk, metadata.get("namespace") or "", metadata.get("name", "")

    def _to_manifest(self, rk: ResourceKind, result: Any) -> Dict[str, Any]:
        if isinstance(result, dict):
            manifest = result
        else:
            manifest = self.api_client.sanitize_for_serialization(result)
        manifest.setdefault("apiVersion", rk.api_version)
        manifest.setdefault("kind", rk.kind)
        return manifest
