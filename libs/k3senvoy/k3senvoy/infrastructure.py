"""
Kubernetes infrastructure reconciler.

Converges the Kubernetes objects backing a ProxyInfra towards the desired
state described by the IR. Every managed kind follows the same protocol:
create the object if it is absent; otherwise merge the desired object with
the current one, keeping the platform-assigned identity and resourceVersion,
and replace it only when a desired field is not already reflected.
"""

import copy
import logging
import threading
from dataclasses import dataclass, fields
from typing import Any, Callable, Dict, List, Optional, Tuple

from kubernetes.client.exceptions import ApiException

from .errors import NilInfraError, is_conflict, is_not_found
from .generators import generate_deployment, generate_service, generate_service_account
from .ir import Infra, ProxyInfra, validate_infra
from .kube import KubeClient

logger = logging.getLogger(__name__)

# Metadata assigned by the platform that must survive an update.
PRESERVED_METADATA = ("resourceVersion", "uid")


@dataclass
class Resources:
    """Latest known Kubernetes objects for one ProxyInfra."""
    service_account: Optional[Dict[str, Any]] = None
    deployment: Optional[Dict[str, Any]] = None
    service: Optional[Dict[str, Any]] = None


RESOURCE_SLOTS = tuple(f.name for f in fields(Resources))


class ResourcesCell:
    """Mutex-guarded Resources.

    Values are copied on every access; callers never hold the live snapshot.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._resources = Resources()

    def set(self, slot: str, obj: Optional[Dict[str, Any]]) -> None:
        if slot not in RESOURCE_SLOTS:
            raise ValueError(f"Unknown resource slot: {slot}")
        value = copy.deepcopy(obj)
        with self._lock:
            setattr(self._resources, slot, value)

    def get(self, slot: str) -> Optional[Dict[str, Any]]:
        if slot not in RESOURCE_SLOTS:
            raise ValueError(f"Unknown resource slot: {slot}")
        with self._lock:
            return copy.deepcopy(getattr(self._resources, slot))

    def snapshot(self) -> Resources:
        with self._lock:
            return copy.deepcopy(self._resources)


def _reflects(desired: Any, current: Any) -> bool:
    """True if every field set in desired has the same value in current.

    Fields the server adds (defaults, status) are ignored.
    """
    if isinstance(desired, dict):
        if not isinstance(current, dict):
            return False
        return all(k in current and _reflects(v, current[k]) for k, v in desired.items())
    if isinstance(desired, list):
        if not isinstance(current, list) or len(desired) != len(current):
            return False
        return all(_reflects(d, c) for d, c in zip(desired, current))
    return desired == current


def needs_update(desired: Dict[str, Any], current: Dict[str, Any]) -> bool:
    """
    Decide whether current must be replaced to match desired.

    Compares metadata labels and annotations plus every top-level field other
    than apiVersion, kind, metadata and status.

    Args:
        desired: Manifest built from the IR
        current: Object read from the cluster

    Returns:
        True if an update call is required
    """
    desired_meta = desired.get("metadata") or {}
    current_meta = current.get("metadata") or {}
    for key in ("labels", "annotations"):
        if key in desired_meta and not _reflects(desired_meta[key], current_meta.get(key) or {}):
            return True

    for key, value in desired.items():
        if key in ("apiVersion", "kind", "metadata", "status"):
            continue
        if not _reflects(value, current.get(key)):
            return True
    return False


def merge_with_current(desired: Dict[str, Any], current: Dict[str, Any]) -> Dict[str, Any]:
    """Return desired carrying the identity and version metadata of current."""
    merged = copy.deepcopy(desired)
    merged_meta = merged.setdefault("metadata", {})
    current_meta = current.get("metadata") or {}
    for key in PRESERVED_METADATA:
        if current_meta.get(key):
            merged_meta[key] = current_meta[key]
    return merged


class KubernetesInfra:
    """
    Manages the Kubernetes objects of a proxy fleet.

    One instance tracks one ProxyInfra; its Resources snapshot is only
    touched through a ResourcesCell. Platform errors are raised unchanged
    from the ensure operations; retry policy belongs to the caller.
    """

    def __init__(self, client: KubeClient):
        self.client = client
        self._cell = ResourcesCell()

    @property
    def resources(self) -> Resources:
        """Copy of the latest known objects."""
        return self._cell.snapshot()

    def ensure_service_account(self, infra: Infra) -> None:
        """Ensure the proxy ServiceAccount exists and matches the IR."""
        proxy = self._proxy(infra)
        self._ensure("service_account", generate_service_account(proxy))

    def ensure_deployment(self, infra: Infra) -> None:
        """Ensure the proxy Deployment exists and matches the IR."""
        proxy = self._proxy(infra)
        self._ensure("deployment", generate_deployment(proxy))

    def ensure_service(self, infra: Infra) -> None:
        """Ensure the proxy Service exists and matches the IR."""
        proxy = self._proxy(infra)
        self._ensure("service", generate_service(proxy))

    def create_or_update_infra(self, infra: Infra) -> Resources:
        """
        Validate the defaulted IR and ensure every managed object.

        An ensure that fails with a conflict is retried once; it re-reads
        the current object before writing again.

        Args:
            infra: Infrastructure IR

        Returns:
            Snapshot of the reconciled objects

        Raises:
            NilInfraError: If infra is None
            ValidationError: If the IR is invalid
            ApiException: If the platform rejects a call
        """
        if infra is None:
            raise NilInfraError()
        validate_infra(Infra(provider=infra.get_provider(), proxy=infra.get_proxy_infra()))

        ensures: List[Tuple[str, Callable[[Infra], None]]] = [
            ("ServiceAccount", self.ensure_service_account),
            ("Deployment", self.ensure_deployment),
            ("Service", self.ensure_service),
        ]
        for kind, ensure in ensures:
            try:
                ensure(infra)
            except ApiException as e:
                if not is_conflict(e):
                    raise
                logger.info(f"Conflict ensuring {kind}, retrying with current state")
                ensure(infra)

        return self.resources

    def delete_infra(self, infra: Infra) -> None:
        """
        Delete every managed object of the proxy infrastructure.

        Objects that are already gone are skipped.
        """
        proxy = self._proxy(infra)
        targets = [
            ("service", generate_service(proxy)),
            ("deployment", generate_deployment(proxy)),
            ("service_account", generate_service_account(proxy)),
        ]
        for slot, obj in targets:
            metadata = obj["metadata"]
            try:
                self.client.delete(obj["kind"], metadata["namespace"], metadata["name"])
                logger.info(f"Deleted {obj['kind']} {metadata['namespace']}/{metadata['name']}")
            except ApiException as e:
                if not is_not_found(e):
                    raise
            self._cell.set(slot, None)

    def _proxy(self, infra: Infra) -> ProxyInfra:
        if infra is None:
            raise NilInfraError()
        return infra.get_proxy_infra()

    def _ensure(self, slot: str, desired: Dict[str, Any]) -> None:
        kind = desired["kind"]
        metadata = desired["metadata"]
        namespace, name = metadata["namespace"], metadata["name"]

        current = self.client.get(kind, namespace, name)
        if current is None:
            created = self.client.create(desired)
            logger.info(f"Created {kind} {namespace}/{name}")
            self._cell.set(slot, created)
            return

        merged = merge_with_current(desired, current)
        if needs_update(desired, current):
            updated = self.client.update(merged)
            logger.info(f"Updated {kind} {namespace}/{name}")
            self._cell.set(slot, updated)
            return

        logger.debug(f"{kind} {namespace}/{name} is up to date")
        self._cell.set(slot, merged)
