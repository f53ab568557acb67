"""
CLI tool for K3s Envoy.

Runs the gateway control plane, or renders the managed proxy manifests.
"""

import argparse
import logging
import signal
import sys
import threading

from kubernetes.client.exceptions import ApiException

from .config import Server, load_server
from .errors import ConfigError
from .generators import write_manifests
from .infrastructure import KubernetesInfra
from .ir import validate_infra
from .kube import DEFAULT_REQUEST_TIMEOUT, KubeClient, load_kube_config
from .provider import Provider
from .resource_table import ResourceTable

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT_SECONDS = 10


def load_validated_server(config_path: str) -> Server:
    """Load server settings and validate the infra IR, exiting on failure."""
    try:
        server = load_server(config_path)
    except ConfigError as e:
        logger.error(f"Failed to decode config file {config_path}: {e}")
        sys.exit(1)

    try:
        validate_infra(server.infra)
    except ValueError as e:
        logger.error(f"Invalid infra configuration: {e}")
        sys.exit(1)

    return server


def cmd_server(args: argparse.Namespace) -> None:
    """Serve the gateway control plane until interrupted."""
    server = load_validated_server(args.config_path)

    try:
        load_kube_config(in_cluster=args.in_cluster)
    except Exception as e:
        logger.error(f"Failed to load Kubernetes config: {e}")
        sys.exit(1)

    client = KubeClient(request_timeout=args.request_timeout)
    table = ResourceTable()
    provider = Provider(client, server, table)

    shutdown = threading.Event()

    def _handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        shutdown.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    provider.start()

    infra = KubernetesInfra(client)
    try:
        infra.create_or_update_infra(server.infra)
    except ApiException as e:
        logger.error(f"Failed to create proxy infrastructure: {e.status} {e.reason}")
        provider.stop()
        provider.wait(timeout=5)
        sys.exit(1)
    logger.info(f"Proxy infrastructure {server.infra.get_proxy_infra().object_name()} is ready")

    # TODO: start the translator once it consumes the resource table.
    shutdown.wait()

    provider.stop()
    provider.wait(timeout=SHUTDOWN_TIMEOUT_SECONDS)
    logger.info("Server stopped")


def cmd_render(args: argparse.Namespace) -> None:
    """Write the managed proxy manifests."""
    server = load_validated_server(args.config_path)
    proxy = server.infra.get_proxy_infra()

    print(f"Rendering proxy infrastructure {proxy.namespace}/{proxy.object_name()}")
    print(f"  Image: {proxy.image}")
    print(f"  Ports: {sum(len(l.ports) for l in proxy.listeners)}")

    path = write_manifests(proxy, args.output)
    print(f"Wrote manifests to {path}")


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="K3s Envoy CLI - Kubernetes control plane for the Envoy gateway"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Server command
    server_parser = subparsers.add_parser("server", aliases=["serve"], help="Serve the gateway")
    server_parser.add_argument(
        "--config-path", "-c",
        default=None,
        help="The path to the configuration file"
    )
    server_parser.add_argument(
        "--in-cluster",
        action="store_true",
        help="Use in-cluster config (for running inside Kubernetes)"
    )
    server_parser.add_argument(
        "--request-timeout",
        type=float,
        default=DEFAULT_REQUEST_TIMEOUT,
        help=f"Timeout in seconds for Kubernetes API calls (default: {DEFAULT_REQUEST_TIMEOUT})"
    )

    # Render command
    render_parser = subparsers.add_parser("render", help="Render proxy infrastructure manifests")
    render_parser.add_argument(
        "--config-path", "-c",
        default=None,
        help="The path to the configuration file"
    )
    render_parser.add_argument(
        "--output", "-o",
        default="./generated/envoy",
        help="Output directory for manifests"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.command in ("server", "serve"):
        cmd_server(args)
    elif args.command == "render":
        cmd_render(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
