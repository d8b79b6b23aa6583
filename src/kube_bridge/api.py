"""In-process command surface for discovery, import and tunnels.

``BridgeService`` wires the store, discovery engine, import pipeline, tunnel
manager, idle monitor and pooled connection cache together and exposes one
method per serving-layer operation.
"""

import time
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from types import TracebackType
from typing import Any, Literal

from .cluster.interfaces import ClusterClientProtocol
from .cluster.kubeconfig import list_contexts
from .common.exceptions import ConfigurationError, KubeBridgeError, TunnelError
from .common.logging import get_logger
from .common.utils import LOCALHOST
from .config import BridgeConfig
from .discovery.engine import DiscoveryEngine, existing_identity_keys
from .discovery.importer import ImportPipeline, ImportResult
from .discovery.models import DiscoveredService
from .pool import ConnectionPoolCache, Endpoint, HandleFactory
from .store.interfaces import ConnectionStore
from .store.memory import InMemoryConnectionStore
from .store.models import Cluster, ForwardStatus
from .tunnels.exceptions import PortUnavailableError, TunnelNotFoundError
from .tunnels.manager import ClientFactory, TunnelManager, kubectl_client_factory
from .tunnels.models import Tunnel
from .tunnels.monitor import IdleMonitor
from .tunnels.registry import TunnelRegistry

logger = get_logger(__name__)

ADHOC_CLUSTER_NAME = "adhoc"


class BridgeService:
    """Discovery, import and tunnel operations behind one object.

    Example:
        >>> with BridgeService() as bridge:
        ...     services = bridge.discover()
        ...     result = bridge.import_connections(services)
        ...     tunnel = bridge.create_forward(result.results[0].id)
    """

    def __init__(
        self,
        store: ConnectionStore | None = None,
        config: BridgeConfig | None = None,
        client_factory: ClientFactory | None = None,
        handle_factory: HandleFactory | None = None,
        registry: TunnelRegistry | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the service.

        Args:
            store: Connection store; an in-memory one when None
            config: Bridge settings; defaults when None
            client_factory: Builds cluster clients; kubectl-backed when None
            handle_factory: Creates driver handles for ``acquire_connection``
            registry: Tunnel registry; built from ``config`` when None
            clock: Monotonic time source for idle tracking
        """
        self.config = config if config is not None else BridgeConfig()
        self.store = store if store is not None else InMemoryConnectionStore()
        if client_factory is None:
            client_factory = kubectl_client_factory(self.config)
        self._client_factory = client_factory

        self.discovery = DiscoveryEngine(self.config.excluded_namespaces)
        self.importer = ImportPipeline(self.store)
        self.tunnels = TunnelManager(
            self.store,
            self.config,
            client_factory=self._client_factory,
            registry=registry,
            clock=clock,
        )
        self.monitor = IdleMonitor.from_config(self.tunnels, self.config)
        self.pool = (
            ConnectionPoolCache(handle_factory) if handle_factory is not None else None
        )
        self.tunnels.on_stop(self._release_pooled)

    # ── Discovery & import ────────────────────────────────────────────────

    def discover(
        self, kubeconfig: str | None = None, context: str | None = None
    ) -> list[DiscoveredService]:
        """Discover middleware services not yet imported.

        Raises:
            ClusterConfigError: If the kubeconfig or context is invalid
            ClusterCommandError: If services cannot be listed
        """
        client = self._adhoc_client(kubeconfig, context)
        try:
            return self.discovery.discover(client, existing_identity_keys(self.store))
        finally:
            client.close()

    def list_clusters(self, kubeconfig: str) -> list[str]:
        """Context names declared in kubeconfig content.

        Raises:
            ClusterConfigError: If the kubeconfig cannot be parsed
        """
        return list_contexts(kubeconfig)

    def import_connections(
        self,
        services: Iterable[DiscoveredService | dict[str, Any]],
        force_override: bool = False,
        kubeconfig: str | None = None,
        context: str | None = None,
        cluster_name: str | None = None,
    ) -> ImportResult:
        """Persist discovered services as k8s connections."""
        return self.importer.run(
            services,
            force_override=force_override,
            cluster_name=cluster_name,
            context=context,
            kubeconfig=kubeconfig,
        )

    # ── Forwards ──────────────────────────────────────────────────────────

    def create_forward(self, connection_id: int, local_port: int | None = None) -> Tunnel:
        return self.tunnels.create(connection_id, local_port)

    def list_forwards(self) -> list[Tunnel]:
        return self.tunnels.list()

    def get_forward(self, forward_id: str) -> Tunnel:
        return self.tunnels.get(forward_id)

    def get_forward_by_connection(self, connection_id: int) -> Tunnel:
        """Raises TunnelNotFoundError when the connection has no tunnel."""
        tunnel = self.tunnels.get_by_connection(connection_id)
        if tunnel is None:
            raise TunnelNotFoundError(f"No tunnel for connection {connection_id}")
        return tunnel

    def stop_forward(self, forward_id: str) -> Tunnel:
        return self.tunnels.stop(forward_id)

    def reconnect_forward(self, forward_id: str, local_port: int | None = None) -> Tunnel:
        return self.tunnels.reconnect(forward_id, local_port)

    def touch_forward(self, forward_id: str) -> Tunnel:
        return self.tunnels.touch(forward_id)

    def restore_forwards(self) -> list[Tunnel]:
        """Re-open tunnels for connections that had one before a restart.

        Connections mirrored as ``active`` or ``idle`` get a fresh tunnel on
        their previous local port, or any free port if it is taken.
        Connections mirrored as ``error`` are reset to ``pending``.
        """
        restored = []
        for connection in self.store.list_connections():
            if not connection.is_k8s or connection.id is None:
                continue

            status = connection.forward_status
            if status == ForwardStatus.ERROR:
                self.store.update_forward_state(connection.id, None, None, ForwardStatus.PENDING)
                continue
            if status not in (ForwardStatus.ACTIVE, ForwardStatus.IDLE):
                continue

            try:
                try:
                    tunnel = self.tunnels.create(connection.id, connection.forward_local_port)
                except PortUnavailableError:
                    tunnel = self.tunnels.create(connection.id)
            except KubeBridgeError as e:
                logger.warning(
                    "Failed to restore forward", connection_id=connection.id, error=str(e)
                )
                continue
            restored.append(tunnel)

        logger.info("Restored forwards", count=len(restored))
        return restored

    # ── Pooled connections ────────────────────────────────────────────────

    def acquire_connection(self, connection_id: int) -> Any:
        """Return the pooled driver handle for a connection.

        A k8s connection gets its tunnel opened (or reused) first and the
        handle dials ``127.0.0.1:<local_port>``; a local connection dials its
        own host and port.

        Raises:
            ConfigurationError: If no handle factory was configured
            TunnelError: If the tunnel could not be established
        """
        if self.pool is None:
            raise ConfigurationError("No handle factory configured for pooled connections")

        connection = self.store.get_connection(connection_id)
        if not connection.is_k8s:
            endpoint = Endpoint(connection.host, connection.port)
        else:
            tunnel = self.tunnels.create(connection_id)
            if not tunnel.is_open:
                raise TunnelError(
                    f"Tunnel for connection {connection_id} is {tunnel.status.value}"
                    + (f": {tunnel.error}" if tunnel.error else "")
                )
            self.tunnels.touch(tunnel.id)
            endpoint = Endpoint(LOCALHOST, tunnel.local_port)

        endpoint = Endpoint(
            host=endpoint.host,
            port=endpoint.port,
            username=connection.username,
            password=connection.password,
            database=connection.database_name,
        )
        return self.pool.get(connection_id, endpoint)

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the idle monitor."""
        self.monitor.start()

    def shutdown(self) -> None:
        """Stop the monitor, every tunnel and every pooled handle."""
        self.monitor.stop()
        self.tunnels.shutdown_all()
        if self.pool is not None:
            self.pool.close_all()
        logger.info("Bridge shut down")

    def __enter__(self) -> "BridgeService":
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        self.shutdown()
        return False

    def _release_pooled(self, tunnel: Tunnel) -> None:
        # Runs for every stop, including the idle monitor and shutdown
        if self.pool is not None:
            self.pool.invalidate(tunnel.connection_id)

    def _adhoc_client(
        self, kubeconfig: str | None, context: str | None
    ) -> ClusterClientProtocol:
        if kubeconfig is None and context is None:
            return self._client_factory(None)
        cluster = Cluster(name=context or ADHOC_CLUSTER_NAME, context=context, kubeconfig=kubeconfig)
        return self._client_factory(cluster)


@contextmanager
def managed_bridge(
    config: BridgeConfig | None = None, restore: bool = False, **kwargs: Any
) -> Iterator[BridgeService]:
    """Run a ``BridgeService`` with its monitor, shutting everything down on exit.

    Args:
        config: Bridge settings
        restore: Re-open previously active forwards on entry
        **kwargs: Passed to ``BridgeService``

    Yields:
        The running service
    """
    bridge = BridgeService(config=config, **kwargs)
    bridge.start()
    try:
        if restore:
            bridge.restore_forwards()
        yield bridge
    finally:
        bridge.shutdown()
