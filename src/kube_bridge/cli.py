"""CLI entry-point for kube-bridge."""

from __future__ import annotations

import json
import sys
import time
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from kube_bridge import __version__
from kube_bridge.api import ADHOC_CLUSTER_NAME, BridgeService, managed_bridge
from kube_bridge.common.exceptions import KubeBridgeError
from kube_bridge.common.logging import setup_logging
from kube_bridge.common.utils import mask_sensitive_data, sanitize_log_data
from kube_bridge.config import BridgeConfig
from kube_bridge.discovery.classifier import classify
from kube_bridge.store.memory import InMemoryConnectionStore
from kube_bridge.store.models import Cluster, Connection, ConnectionSource
from kube_bridge.tunnels.models import TunnelStatus

console = Console()


def _read_kubeconfig(path: str | None) -> str | None:
    if path is None:
        return None
    return Path(path).read_text()


def _fail(message: str) -> None:
    console.print(f"[red bold]Error:[/red bold] {message}")
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="kube-bridge")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging.")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON.")
@click.pass_context
def main(ctx: click.Context, verbose: bool, json_logs: bool) -> None:
    """Discover databases inside a Kubernetes cluster and tunnel to them."""
    try:
        config = BridgeConfig.from_env()
    except KubeBridgeError as exc:
        _fail(str(exc))
        return

    level = "DEBUG" if verbose else config.log_level
    setup_logging(level=level, json_format=json_logs or config.log_json)
    ctx.obj = config


@main.command()
@click.option(
    "--kubeconfig",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Kubeconfig file (kubectl's default when omitted).",
)
@click.option("--context", default=None, help="Kubeconfig context to use.")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table.")
@click.option("--show-secrets", is_flag=True, help="Print passwords unmasked.")
@click.pass_obj
def discover(
    config: BridgeConfig,
    kubeconfig: str | None,
    context: str | None,
    as_json: bool,
    show_secrets: bool,
) -> None:
    """List middleware services found in the cluster."""
    bridge = BridgeService(config=config)
    try:
        services = bridge.discover(_read_kubeconfig(kubeconfig), context)
    except KubeBridgeError as exc:
        _fail(str(exc))
        return

    def password(value: str | None) -> str | None:
        return value if show_secrets or not value else mask_sensitive_data(value)

    if as_json:
        payload = []
        for service in services:
            item = service.model_dump(by_alias=True)
            if not show_secrets:
                item.update(sanitize_log_data({k: v for k, v in item.items() if v is not None}))
            payload.append(item)
        click.echo(json.dumps(payload, indent=2))
        return

    if not services:
        console.print("[yellow]No middleware services found.[/yellow]")
        return

    table = Table(title=f"Discovered services ({len(services)})")
    table.add_column("Namespace", style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("Type")
    table.add_column("Host")
    table.add_column("Port", justify="right")
    table.add_column("Username")
    table.add_column("Password")
    table.add_column("Credentials")
    for service in services:
        table.add_row(
            service.namespace,
            service.name,
            service.service_type,
            service.host,
            str(service.port),
            service.username or "",
            password(service.password) or "",
            "[green]yes[/green]" if service.has_credentials else "[yellow]no[/yellow]",
        )
    console.print(table)


@main.command()
@click.option(
    "--kubeconfig",
    type=click.Path(exists=True, dir_okay=False),
    required=True,
    help="Kubeconfig file to read contexts from.",
)
@click.pass_obj
def clusters(config: BridgeConfig, kubeconfig: str) -> None:
    """List the contexts declared in a kubeconfig."""
    bridge = BridgeService(config=config)
    try:
        names = bridge.list_clusters(Path(kubeconfig).read_text())
    except KubeBridgeError as exc:
        _fail(str(exc))
        return

    for name in names:
        click.echo(name)


@main.command()
@click.argument("namespace")
@click.argument("service")
@click.argument("remote_port", type=click.IntRange(1, 65535))
@click.option("--local-port", type=click.IntRange(1, 65535), default=None, help="Local port to bind.")
@click.option(
    "--kubeconfig",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Kubeconfig file (kubectl's default when omitted).",
)
@click.option("--context", default=None, help="Kubeconfig context to use.")
@click.pass_obj
def forward(
    config: BridgeConfig,
    namespace: str,
    service: str,
    remote_port: int,
    local_port: int | None,
    kubeconfig: str | None,
    context: str | None,
) -> None:
    """Forward a local port to SERVICE in NAMESPACE until interrupted.

    The tunnel is supervised by the idle monitor and closed when it has been
    idle past the stop timeout.
    """
    store = InMemoryConnectionStore()
    cluster_id = None
    if kubeconfig or context:
        cluster = store.create_cluster(
            Cluster(
                name=context or ADHOC_CLUSTER_NAME,
                context=context,
                kubeconfig=_read_kubeconfig(kubeconfig),
            )
        )
        cluster_id = cluster.id

    classification = classify([remote_port], service)
    connection = store.create_connection(
        Connection(
            name=f"{namespace}/{service}",
            conn_type=classification.middleware.name if classification else "tcp",
            source=ConnectionSource.K8S,
            k8s_namespace=namespace,
            k8s_service_name=service,
            k8s_service_port=remote_port,
            cluster_id=cluster_id,
        )
    )

    try:
        with managed_bridge(config=config, store=store) as bridge:
            tunnel = bridge.create_forward(connection.id, local_port)  # type: ignore[arg-type]
            if tunnel.status != TunnelStatus.ACTIVE:
                _fail(tunnel.error or f"tunnel is {tunnel.status.value}")
                return

            console.print(
                f"[green bold]Forwarding[/green bold] 127.0.0.1:{tunnel.local_port}"
                f" -> {tunnel.remote_host}:{tunnel.remote_port}  (Ctrl-C to stop)"
            )
            while True:
                time.sleep(1.0)
                if bridge.tunnels.get_by_connection(tunnel.connection_id) is None:
                    console.print("[yellow]Tunnel closed by the idle monitor.[/yellow]")
                    break
    except KeyboardInterrupt:
        console.print("Stopping...")
    except KubeBridgeError as exc:
        _fail(str(exc))


if __name__ == "__main__":
    main()
