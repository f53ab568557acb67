"""
Infrastructure intermediate representation (IR).

The IR describes the proxy infrastructure that must exist, independent of both
the Gateway API schema and the Kubernetes object schema. Construction helpers
return fully-defaulted values; getters default unset fields without touching
the receiver.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import NilInfraError, ValidationError
from .types import ProviderType

DEFAULT_PROXY_NAME = "default"
DEFAULT_PROXY_NAMESPACE = "default"
DEFAULT_PROXY_IMAGE = "envoyproxy/envoy-dev:latest"
DEFAULT_HTTP_LISTENER_PORT = 80
DEFAULT_HTTPS_LISTENER_PORT = 443

MIN_PORT = 1
MAX_PORT = 65535


@dataclass
class ListenerPort:
    """A network port of a listener."""
    name: str = ""
    port: int = 0

    @classmethod
    def from_dict(cls, data: Dict) -> "ListenerPort":
        return cls(name=data.get("name", ""), port=data.get("port", 0))

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "port": self.port}


@dataclass
class ProxyListener:
    """Listener configuration of the proxy infrastructure."""
    address: str = ""
    ports: List[ListenerPort] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict) -> "ProxyListener":
        return cls(
            address=data.get("address", ""),
            ports=[ListenerPort.from_dict(p) for p in data.get("ports") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"ports": [p.to_dict() for p in self.ports]}
        if self.address:
            data["address"] = self.address
        return data


@dataclass
class ProxyInfra:
    """Managed proxy infrastructure.

    Attributes:
        name: Name used for managed proxy infrastructure.
        namespace: Namespace used for managed proxy infrastructure.
        config: User-facing proxy configuration, passed through untouched.
        image: Container image of the proxy.
        listeners: Listeners exposed by the proxy infrastructure.
    """
    name: str = ""
    namespace: str = ""
    config: Optional[Dict[str, Any]] = None
    image: str = ""
    listeners: List[ProxyListener] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "ProxyInfra":
        if not data:
            return cls()
        return cls(
            name=data.get("name", ""),
            namespace=data.get("namespace", ""),
            config=data.get("config"),
            image=data.get("image", ""),
            listeners=[ProxyListener.from_dict(l) for l in data.get("listeners") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "namespace": self.namespace,
            "image": self.image,
            "listeners": [l.to_dict() for l in self.listeners],
        }
        if self.config is not None:
            data["config"] = copy.deepcopy(self.config)
        return data

    def object_name(self) -> str:
        """Name of the Kubernetes objects backing this proxy."""
        if not self.name:
            return f"envoy-{DEFAULT_PROXY_NAME}"
        return "envoy-" + self.name

    def with_defaults(self) -> "ProxyInfra":
        """Return a copy with every unset field defaulted.

        Fields that are set are preserved; ``self`` is never modified.
        """
        proxy = copy.deepcopy(self)
        if not proxy.name:
            proxy.name = DEFAULT_PROXY_NAME
        if not proxy.namespace:
            proxy.namespace = DEFAULT_PROXY_NAMESPACE
        if not proxy.image:
            proxy.image = DEFAULT_PROXY_IMAGE
        if not proxy.listeners:
            proxy.listeners = new_proxy_listeners()
        return proxy


@dataclass
class Infra:
    """Managed infrastructure.

    Attributes:
        provider: Provider of the infrastructure.
        proxy: Managed proxy infrastructure.
    """
    provider: Optional[ProviderType] = None
    proxy: Optional[ProxyInfra] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "Infra":
        if not data:
            return cls()
        provider = data.get("provider")
        return cls(
            provider=ProviderType(provider) if provider else None,
            proxy=ProxyInfra.from_dict(data["proxy"]) if data.get("proxy") is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"provider": self.get_provider().value}
        if self.proxy is not None:
            data["proxy"] = self.proxy.to_dict()
        return data

    def get_provider(self) -> ProviderType:
        if self.provider is not None:
            return self.provider
        return ProviderType.KUBERNETES

    def get_proxy_infra(self) -> ProxyInfra:
        """Return the proxy infrastructure with defaults applied."""
        if self.proxy is None:
            return new_proxy_infra()
        return self.proxy.with_defaults()


def new_infra() -> Infra:
    """Return a new Infra with default parameters."""
    return Infra(
        provider=ProviderType.KUBERNETES,
        proxy=new_proxy_infra(),
    )


def new_proxy_infra() -> ProxyInfra:
    """Return a new ProxyInfra with default parameters."""
    return ProxyInfra(
        name=DEFAULT_PROXY_NAME,
        namespace=DEFAULT_PROXY_NAMESPACE,
        image=DEFAULT_PROXY_IMAGE,
        listeners=new_proxy_listeners(),
    )


def new_proxy_listeners() -> List[ProxyListener]:
    """Return the default listener: http on 80 and https on 443."""
    return [
        ProxyListener(
            ports=[
                ListenerPort(name="http", port=DEFAULT_HTTP_LISTENER_PORT),
                ListenerPort(name="https", port=DEFAULT_HTTPS_LISTENER_PORT),
            ],
        ),
    ]


def proxy_infra_errors(proxy: ProxyInfra) -> List[str]:
    """
    Collect validation errors for a ProxyInfra.

    Returns list of validation errors (empty if valid).
    """
    errors = []

    if not proxy.name:
        errors.append("name field required")

    if not proxy.namespace:
        errors.append("namespace field required")

    if not proxy.image:
        errors.append("image field required")

    for listener in proxy.listeners:
        if not listener.ports:
            errors.append("listener ports field required")
        for port in listener.ports:
            if not port.name:
                errors.append("listener name field required")
            if not isinstance(port.port, int) or port.port < MIN_PORT or port.port > MAX_PORT:
                errors.append("listener port must be a valid port number")

    return errors


def validate_proxy_infra(proxy: ProxyInfra) -> None:
    """
    Validate the provided ProxyInfra.

    Raises:
        ValidationError: With every violated rule
    """
    errors = proxy_infra_errors(proxy)
    if errors:
        raise ValidationError(errors)


def validate_infra(infra: Optional[Infra]) -> None:
    """
    Validate the provided Infra.

    Raises:
        NilInfraError: If infra is None
        ValidationError: With every violated rule
    """
    if infra is None:
        raise NilInfraError()

    errors = []

    if infra.provider is not None and not isinstance(infra.provider, ProviderType):
        errors.append(f"unsupported provider type: {infra.provider}")

    if infra.proxy is not None:
        errors.extend(proxy_infra_errors(infra.proxy))

    if errors:
        raise ValidationError(errors)
