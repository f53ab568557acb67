"""
Type definitions for K3s Envoy server configuration.

These dataclasses represent the EnvoyGateway configuration file.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

CONFIG_API_VERSION = "config.gateway.envoyproxy.io/v1alpha1"
CONFIG_KIND = "EnvoyGateway"

# Controller name written into GatewayClass objects managed by this gateway.
DEFAULT_CONTROLLER_NAME = "gateway.envoyproxy.io/gatewayclass-controller"


class ProviderType(str, Enum):
    """Infrastructure provider.

    Kubernetes is the only supported provider.
    """
    KUBERNETES = "Kubernetes"


@dataclass
class GatewaySettings:
    """Gateway API settings."""
    controller_name: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "GatewaySettings":
        if not data:
            return cls()
        return cls(controller_name=data.get("controllerName", ""))

    def to_dict(self) -> Dict[str, Any]:
        return {"controllerName": self.controller_name}


@dataclass
class ProviderSettings:
    """Provider settings."""
    type: Optional[ProviderType] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "ProviderSettings":
        if not data:
            return cls()
        provider_type = data.get("type")
        return cls(type=ProviderType(provider_type) if provider_type else None)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value if self.type else None}


@dataclass
class EnvoyGatewayConfig:
    """Complete EnvoyGateway configuration."""
    gateway: Optional[GatewaySettings] = None
    provider: Optional[ProviderSettings] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "EnvoyGatewayConfig":
        if not data:
            return cls()
        return cls(
            gateway=GatewaySettings.from_dict(data["gateway"]) if "gateway" in data else None,
            provider=ProviderSettings.from_dict(data["provider"]) if "provider" in data else None,
        )

    @classmethod
    def default(cls) -> "EnvoyGatewayConfig":
        config = cls()
        config.set_defaults()
        return config

    def set_defaults(self) -> None:
        """Fill unset fields with their default values."""
        if self.gateway is None:
            self.gateway = GatewaySettings()
        if not self.gateway.controller_name:
            self.gateway.controller_name = DEFAULT_CONTROLLER_NAME
        if self.provider is None:
            self.provider = ProviderSettings()
        if self.provider.type is None:
            self.provider.type = ProviderType.KUBERNETES

    @property
    def controller_name(self) -> str:
        if self.gateway and self.gateway.controller_name:
            return self.gateway.controller_name
        return DEFAULT_CONTROLLER_NAME

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "apiVersion": CONFIG_API_VERSION,
            "kind": CONFIG_KIND,
        }
        if self.gateway is not None:
            data["gateway"] = self.gateway.to_dict()
        if self.provider is not None:
            data["provider"] = self.provider.to_dict()
        return data
