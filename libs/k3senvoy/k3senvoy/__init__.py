"""
K3s Envoy - Kubernetes control plane for the Envoy gateway.

Watches Gateway API objects, derives the proxy infrastructure IR and
reconciles it against the cluster.
"""

__version__ = "0.1.0"

from .types import (
    ProviderType,
    GatewaySettings,
    ProviderSettings,
    EnvoyGatewayConfig,
)

from .errors import (
    ConfigError,
    NilInfraError,
    ValidationError,
)

from .ir import (
    Infra,
    ProxyInfra,
    ProxyListener,
    ListenerPort,
    new_infra,
    new_proxy_infra,
    new_proxy_listeners,
    validate_infra,
    validate_proxy_infra,
)

from .config import (
    Server,
    new_default_server,
    load_server,
    decode,
)

from .resource_table import (
    ObjectKey,
    ResourceTable,
)

from .infrastructure import (
    KubernetesInfra,
    Resources,
)

from .provider import (
    ObjectState,
    Provider,
)

__all__ = [
    # Types
    "ProviderType",
    "GatewaySettings",
    "ProviderSettings",
    "EnvoyGatewayConfig",
    # Errors
    "ConfigError",
    "NilInfraError",
    "ValidationError",
    # IR
    "Infra",
    "ProxyInfra",
    "ProxyListener",
    "ListenerPort",
    "new_infra",
    "new_proxy_infra",
    "new_proxy_listeners",
    "validate_infra",
    "validate_proxy_infra",
    # Config
    "Server",
    "new_default_server",
    "load_server",
    "decode",
    # Resource table
    "ObjectKey",
    "ResourceTable",
    # Infrastructure
    "KubernetesInfra",
    "Resources",
    # Provider
    "ObjectState",
    "Provider",
]
