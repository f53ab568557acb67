"""
Server configuration loading for K3s Envoy.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from .errors import ConfigError
from .ir import Infra, new_infra
from .schema import validate_config
from .types import EnvoyGatewayConfig

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "envoy-gateway-system"
NAMESPACE_ENV_VAR = "ENVOY_GATEWAY_NAMESPACE"


@dataclass
class Server:
    """Settings of a running gateway process."""
    envoy_gateway: EnvoyGatewayConfig = field(default_factory=EnvoyGatewayConfig.default)
    namespace: str = DEFAULT_NAMESPACE
    infra: Infra = field(default_factory=new_infra)


def new_default_server() -> Server:
    """Return a Server with default parameters."""
    return Server(
        envoy_gateway=EnvoyGatewayConfig.default(),
        namespace=os.getenv(NAMESPACE_ENV_VAR, DEFAULT_NAMESPACE),
        infra=new_infra(),
    )


def load_config_file(path: str) -> dict:
    """
    Read and schema-validate a configuration file.

    Args:
        path: Path to the YAML configuration file

    Returns:
        Parsed YAML content as dict

    Raises:
        ConfigError: If the file is missing, unparsable or invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"config file not found at {path}")

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to parse {path}: {e}") from e

    errors = validate_config(data)
    if errors:
        raise ConfigError(f"{path} validation failed:\n" + "\n".join(errors))

    return data


def decode(path: str) -> EnvoyGatewayConfig:
    """Decode the EnvoyGateway section of a configuration file."""
    return EnvoyGatewayConfig.from_dict(load_config_file(path))


def load_server(path: Optional[str] = None) -> Server:
    """
    Build server settings from defaults and an optional configuration file.

    Args:
        path: Optional path to the configuration file

    Returns:
        Server with unset fields defaulted

    Raises:
        ConfigError: If the file cannot be decoded
    """
    server = new_default_server()

    if not path:
        logger.info("No config file provided, using default parameters")
        return server

    data = load_config_file(path)
    envoy_gateway = EnvoyGatewayConfig.from_dict(data)
    envoy_gateway.set_defaults()
    server.envoy_gateway = envoy_gateway

    if data.get("infra"):
        infra = Infra.from_dict(data["infra"])
        server.infra = Infra(provider=infra.get_provider(), proxy=infra.get_proxy_infra())

    logger.info(f"Loaded config file {path}")
    return server
