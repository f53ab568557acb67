"""
Kubernetes manifest generators for managed proxy infrastructure.

Generates the ServiceAccount, Deployment and Service backing one ProxyInfra.
"""

from pathlib import Path
from typing import Any, Dict, List

import yaml

from .ir import ProxyInfra

ENVOY_CONTAINER_NAME = "envoy"


def _labels(proxy: ProxyInfra) -> Dict[str, str]:
    return {
        "app.kubernetes.io/name": "envoy",
        "k3senvoy.io/proxy": proxy.name,
        "k3senvoy.io/component": "proxy",
    }


def _listener_ports(proxy: ProxyInfra) -> List[Dict[str, Any]]:
    ports = []
    for listener in proxy.listeners:
        for port in listener.ports:
            ports.append({"name": port.name, "port": port.port})
    return ports


def generate_service_account(proxy: ProxyInfra) -> Dict[str, Any]:
    """
    Generate the ServiceAccount used by the proxy pods.

    Args:
        proxy: Defaulted proxy infrastructure

    Returns:
        ServiceAccount manifest dict
    """
    return {
        "apiVersion": "v1",
        "kind": "ServiceAccount",
        "metadata": {
            "namespace": proxy.namespace,
            "name": proxy.name,
        },
    }


def generate_deployment(proxy: ProxyInfra) -> Dict[str, Any]:
    """
    Generate the proxy Deployment.

    Args:
        proxy: Defaulted proxy infrastructure

    Returns:
        Deployment manifest dict
    """
    labels = _labels(proxy)

    container: Dict[str, Any] = {
        "name": ENVOY_CONTAINER_NAME,
        "image": proxy.image,
        "ports": [
            {
                "name": p["name"],
                "containerPort": p["port"],
                "protocol": "TCP",
            }
            for p in _listener_ports(proxy)
        ],
    }

    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": proxy.object_name(),
            "namespace": proxy.namespace,
            "labels": dict(labels),
        },
        "spec": {
            "replicas": 1,
            "selector": {
                "matchLabels": dict(labels),
            },
            "template": {
                "metadata": {
                    "labels": dict(labels),
                },
                "spec": {
                    "serviceAccountName": generate_service_account(proxy)["metadata"]["name"],
                    "containers": [container],
                },
            },
        },
    }


def generate_service(proxy: ProxyInfra) -> Dict[str, Any]:
    """
    Generate the LoadBalancer Service exposing the proxy listeners.

    Args:
        proxy: Defaulted proxy infrastructure

    Returns:
        Service manifest dict
    """
    labels = _labels(proxy)

    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": proxy.object_name(),
            "namespace": proxy.namespace,
            "labels": dict(labels),
        },
        "spec": {
            "type": "LoadBalancer",
            "selector": dict(labels),
            "ports": [
                {
                    "name": p["name"],
                    "port": p["port"],
                    "targetPort": p["port"],
                    "protocol": "TCP",
                }
                for p in _listener_ports(proxy)
            ],
        },
    }


def generate_all_manifests(proxy: ProxyInfra) -> List[Dict[str, Any]]:
    """Generate every managed manifest, in creation order."""
    return [
        generate_service_account(proxy),
        generate_deployment(proxy),
        generate_service(proxy),
    ]


def write_manifests(proxy: ProxyInfra, output_dir: str) -> Path:
    """
    Write all managed manifests to output directory.

    Args:
        proxy: Defaulted proxy infrastructure
        output_dir: Output directory for manifests

    Returns:
        Path of the written file
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    manifest_file = output_path / f"{proxy.object_name()}.yaml"
    manifest_content = yaml.dump_all(generate_all_manifests(proxy), default_flow_style=False)
    manifest_file.write_text(manifest_content)
    return manifest_file
