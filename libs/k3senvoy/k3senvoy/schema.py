"""
Schema validation for the EnvoyGateway configuration file.
"""

from typing import Any, Dict, List

import jsonschema

from .types import CONFIG_API_VERSION, CONFIG_KIND, ProviderType

_PROVIDER_TYPES = [p.value for p in ProviderType]

_LISTENER_PORT_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "port": {"type": "integer"},
    },
    "additionalProperties": False,
}

_PROXY_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "namespace": {"type": "string"},
        "image": {"type": "string"},
        "config": {"type": "object"},
        "listeners": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "address": {"type": "string"},
                    "ports": {"type": "array", "items": _LISTENER_PORT_SCHEMA},
                },
                "additionalProperties": False,
            },
        },
    },
    "additionalProperties": False,
}

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "EnvoyGateway",
    "type": "object",
    "required": ["apiVersion", "kind"],
    "properties": {
        "apiVersion": {"const": CONFIG_API_VERSION},
        "kind": {"const": CONFIG_KIND},
        "gateway": {
            "type": "object",
            "properties": {
                "controllerName": {"type": "string", "minLength": 1},
            },
            "additionalProperties": False,
        },
        "provider": {
            "type": "object",
            "properties": {
                "type": {"enum": _PROVIDER_TYPES},
            },
            "additionalProperties": False,
        },
        "infra": {
            "type": "object",
            "properties": {
                "provider": {"enum": _PROVIDER_TYPES},
                "proxy": _PROXY_SCHEMA,
            },
            "additionalProperties": False,
        },
    },
    "additionalProperties": False,
}


def validate_config(data: Any) -> List[str]:
    """
    Validate configuration data against the JSON schema.

    Returns list of validation errors (empty if valid).
    """
    validator = jsonschema.Draft7Validator(CONFIG_SCHEMA)
    errors = []
    for error in sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path)):
        path = ".".join(str(p) for p in error.absolute_path)
        errors.append(f"{path}: {error.message}" if path else error.message)
    return errors
