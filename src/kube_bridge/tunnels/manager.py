"""Tunnel manager for lifecycle management."""

import threading
import time
import uuid
from collections.abc import Callable
from typing import Any

from ..cluster.client import KubectlClusterClient
from ..cluster.interfaces import ClusterClientProtocol
from ..common.exceptions import KubeBridgeError, StoreError
from ..common.logging import get_logger
from ..common.utils import probe_tcp
from ..config import BridgeConfig
from ..store.interfaces import ConnectionStore
from ..store.models import Cluster, Connection, ForwardStatus
from .exceptions import PortUnavailableError, TunnelManagerError
from .models import FORWARD_STATUS, OPEN_STATUSES, Tunnel, TunnelStatus
from .registry import TunnelRegistry

logger = get_logger(__name__)

ClientFactory = Callable[[Cluster | None], ClusterClientProtocol]


def kubectl_client_factory(config: BridgeConfig) -> ClientFactory:
    """Build kubectl clients from a cluster's stored kubeconfig and context.

    Connections without a cluster use kubectl's default kubeconfig.
    """

    def factory(cluster: Cluster | None) -> ClusterClientProtocol:
        return KubectlClusterClient(
            kubeconfig=cluster.kubeconfig if cluster else None,
            context=cluster.context if cluster else None,
            kubectl_path=config.kubectl_path,
            connect_timeout=config.connect_timeout_seconds,
        )

    return factory


class TunnelManager:
    """Owns every tunnel and drives it through its status machine.

    Opening or closing a forward is slow, so the registry's write lock is only
    held to reserve a slot (status ``connecting``) and later to commit the
    outcome; the forward itself is opened with no lock held. A ``stop`` that
    lands in between removes the tunnel, and the commit step then closes the
    freshly opened forward instead of publishing it.

    Establishment failures never raise: the tunnel is returned in ``error``
    with the message recorded. Unknown ids, non-k8s connections and pinned
    ports that are taken raise.
    """

    def __init__(
        self,
        store: ConnectionStore,
        config: BridgeConfig | None = None,
        client_factory: ClientFactory | None = None,
        registry: TunnelRegistry | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize tunnel manager.

        Args:
            store: Connection store tunnel state is mirrored to
            config: Bridge settings (defaults when None)
            client_factory: Builds a cluster client for a connection's cluster
            registry: Registry to use; one is built from ``config`` when None
            clock: Monotonic time source for idle tracking
        """
        self.config = config if config is not None else BridgeConfig()
        self.store = store
        if registry is None:
            registry = TunnelRegistry(
                port_min=self.config.local_port_min,
                port_max=self.config.local_port_max,
                max_tunnels=self.config.max_tunnels,
            )
        self.registry = registry
        if client_factory is None:
            client_factory = kubectl_client_factory(self.config)
        self._client_factory = client_factory
        self._clock = clock
        self._stop_callbacks: list[Callable[[Tunnel], None]] = []
        self._clients: dict[int | None, ClusterClientProtocol] = {}
        self._clients_lock = threading.Lock()

    def now(self) -> float:
        return self._clock()

    # ── Lookups ───────────────────────────────────────────────────────────

    def get(self, tunnel_id: str) -> Tunnel:
        """Raises TunnelNotFoundError when missing."""
        with self.registry.read_locked():
            return self.registry.require(tunnel_id)

    def get_by_connection(self, connection_id: int) -> Tunnel | None:
        with self.registry.read_locked():
            return self.registry.get_by_connection(connection_id)

    def list(self) -> list[Tunnel]:
        with self.registry.read_locked():
            return self.registry.list()

    def stats(self) -> dict[str, int]:
        """Tunnel counts: total plus one entry per live status."""
        with self.registry.read_locked():
            counts = self.registry.stats()
        for status in TunnelStatus:
            if status != TunnelStatus.STOPPED:
                counts.setdefault(status.value, 0)
        return counts

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def create(self, connection_id: int, local_port: int | None = None) -> Tunnel:
        """Open a tunnel for a k8s connection, or return the one it already has.

        An existing tunnel that is pending, connecting, active or idle is
        returned as-is (and touched when open); one in ``error`` is
        reconnected.

        Args:
            connection_id: Connection to tunnel to
            local_port: Local port to pin; 0 or None allocates automatically

        Returns:
            The tunnel, ``active`` on success or ``error`` on failure

        Raises:
            ConnectionNotFoundError: If the connection does not exist
            TunnelManagerError: If the connection is not a k8s connection or
                the registry is full
            PortUnavailableError: If the pinned port is taken
        """
        connection = self.store.get_connection(connection_id)
        namespace, service_name, remote_port = self._target(connection)
        client = self._client_for(connection)

        with self.registry.write_locked():
            existing = self.registry.get_by_connection(connection_id)
            if existing is not None and existing.status != TunnelStatus.ERROR:
                if existing.is_open:
                    existing = existing.touched(self._clock())
                    self.registry.replace(existing)
                return existing

            if existing is None:
                tunnel = Tunnel(
                    id=str(uuid.uuid4()),
                    connection_id=connection_id,
                    namespace=namespace,
                    service_name=service_name,
                    remote_port=remote_port,
                    local_port=self.registry.allocate_port(local_port),
                    status=TunnelStatus.CONNECTING,
                    last_used=self._clock(),
                )
                self.registry.add(tunnel)

        if existing is not None:
            return self.reconnect(existing.id, local_port)

        logger.info(
            "Opening tunnel",
            tunnel_id=tunnel.id,
            connection_id=connection_id,
            namespace=namespace,
            service=service_name,
            remote_port=remote_port,
            local_port=tunnel.local_port,
        )
        self._mirror(tunnel)
        return self._establish(tunnel, client)

    def reconnect(self, tunnel_id: str, local_port: int | None = None) -> Tunnel:
        """Tear down a tunnel's forward and open it again.

        The tunnel keeps its id. Without ``local_port`` it keeps its local
        port, falling back to a newly allocated one only if something else
        has bound the old port meanwhile. A tunnel already connecting is
        returned unchanged.

        Raises:
            TunnelNotFoundError: If the tunnel does not exist
            PortUnavailableError: If the pinned port is taken
        """
        connection = self.store.get_connection(self.get(tunnel_id).connection_id)
        namespace, service_name, remote_port = self._target(connection)
        client = self._client_for(connection)
        pinned = bool(local_port)

        with self.registry.write_locked():
            tunnel = self.registry.require(tunnel_id)
            if tunnel.status == TunnelStatus.CONNECTING:
                return tunnel

            port = tunnel.local_port
            if pinned and local_port != tunnel.local_port:
                port = self.registry.allocate_port(local_port)

            old_forward = self.registry.pop_forward(tunnel_id)
            tunnel = tunnel.model_copy(
                update={
                    "namespace": namespace,
                    "service_name": service_name,
                    "remote_port": remote_port,
                    "local_port": port,
                    "status": TunnelStatus.CONNECTING,
                    "error": None,
                    "last_used": self._clock(),
                }
            )
            self.registry.replace(tunnel)

        if old_forward is not None:
            self._close_forward(*old_forward)

        if not self.registry.probe_port(tunnel.local_port):
            tunnel = self._reassign_port(tunnel, pinned)

        logger.info(
            "Reconnecting tunnel",
            tunnel_id=tunnel_id,
            connection_id=tunnel.connection_id,
            local_port=tunnel.local_port,
        )
        self._mirror(tunnel)
        return self._establish(tunnel, client)

    def stop(self, tunnel_id: str, reason: str = "requested") -> Tunnel:
        """Close a tunnel's forward and remove it from the registry.

        Safe to call while the tunnel is still connecting: its port stays
        reserved until the in-flight open returns and is closed.

        Returns:
            The final snapshot, with status ``stopped``

        Raises:
            TunnelNotFoundError: If the tunnel does not exist
        """
        with self.registry.write_locked():
            tunnel = self.registry.remove(tunnel_id)
            forward = self.registry.pop_forward(tunnel_id)
            if tunnel.status == TunnelStatus.CONNECTING:
                self.registry.cancel(tunnel_id, tunnel.local_port)

        if forward is not None:
            self._close_forward(*forward)

        self._mirror_cleared(tunnel.connection_id)
        logger.info(
            "Stopped tunnel",
            tunnel_id=tunnel_id,
            connection_id=tunnel.connection_id,
            local_port=tunnel.local_port,
            reason=reason,
        )
        stopped = tunnel.with_status(TunnelStatus.STOPPED)
        for callback in list(self._stop_callbacks):
            try:
                callback(stopped)
            except Exception as e:
                logger.error("Stop callback failed", tunnel_id=tunnel_id, error=str(e))
        return stopped

    def on_stop(self, callback: Callable[[Tunnel], None]) -> None:
        """Register a callback run after any tunnel is stopped, whoever stops it."""
        self._stop_callbacks.append(callback)

    def touch(self, tunnel_id: str) -> Tunnel:
        """Record use of a tunnel without changing its status.

        Raises:
            TunnelNotFoundError: If the tunnel does not exist
        """
        # Shared lock: touches only race each other on the timestamp.
        with self.registry.read_locked():
            tunnel = self.registry.require(tunnel_id).touched(self._clock())
            self.registry.replace(tunnel)
        return tunnel

    def shutdown_all(self) -> int:
        """Stop every tunnel and release cluster clients.

        Returns:
            Number of tunnels stopped
        """
        stopped = 0
        for tunnel in self.list():
            try:
                self.stop(tunnel.id, reason="shutdown")
                stopped += 1
            except TunnelManagerError:
                continue

        with self._clients_lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            client.close()

        logger.info("Shutdown all tunnels", stopped=stopped)
        return stopped

    # ── Monitor transitions ───────────────────────────────────────────────

    def mark_idle(self, tunnel_id: str) -> Tunnel | None:
        return self._transition(tunnel_id, {TunnelStatus.ACTIVE}, TunnelStatus.IDLE)

    def mark_active(self, tunnel_id: str) -> Tunnel | None:
        return self._transition(tunnel_id, {TunnelStatus.IDLE}, TunnelStatus.ACTIVE)

    def mark_error(self, tunnel_id: str, message: str) -> Tunnel | None:
        return self._transition(tunnel_id, OPEN_STATUSES, TunnelStatus.ERROR, message)

    def check_health(self, tunnel_id: str) -> str | None:
        """Probe an open tunnel's forward.

        Returns:
            None when healthy (or not open), otherwise a description of the failure
        """
        with self.registry.read_locked():
            tunnel = self.registry.get(tunnel_id)
            forward = self.registry.get_forward(tunnel_id)

        if tunnel is None or not tunnel.is_open:
            return None
        if forward is None:
            return "forward is not open"

        _, handle = forward
        if not handle.is_alive():
            detail = handle.last_error().strip()
            return "port-forward exited" + (f": {detail}" if detail else "")

        return probe_tcp(tunnel.local_port, timeout=self.config.connect_timeout_seconds)

    # ── Internals ─────────────────────────────────────────────────────────

    def _target(self, connection: Connection) -> tuple[str, str, int]:
        if not connection.is_k8s:
            raise TunnelManagerError(
                f"Connection {connection.id} is not a Kubernetes connection"
            )
        if not connection.k8s_service_port:
            raise TunnelManagerError(f"Connection {connection.id} has no service port")
        return (
            connection.k8s_namespace or "",
            connection.k8s_service_name or "",
            connection.k8s_service_port,
        )

    def _client_for(self, connection: Connection) -> ClusterClientProtocol:
        cluster = None
        if connection.cluster_id is not None:
            cluster = self.store.get_cluster(connection.cluster_id)

        with self._clients_lock:
            client = self._clients.get(connection.cluster_id)
            if client is None:
                client = self._client_factory(cluster)
                self._clients[connection.cluster_id] = client
        return client

    def _reassign_port(self, tunnel: Tunnel, pinned: bool) -> Tunnel:
        """Move a connecting tunnel off a local port something else has bound.

        Raises:
            PortUnavailableError: If the port was pinned or no other port is
                free; the tunnel is left in ``error``
        """
        failure: PortUnavailableError | None = None
        with self.registry.write_locked():
            current = self.registry.get(tunnel.id)
            if current is None:
                return tunnel

            try:
                if pinned:
                    raise PortUnavailableError(
                        f"Local port {tunnel.local_port} is already in use",
                        port=tunnel.local_port,
                    )
                updated = current.model_copy(
                    update={"local_port": self.registry.allocate_port()}
                )
            except PortUnavailableError as e:
                failure = e
                updated = current.with_status(TunnelStatus.ERROR, str(e))
            self.registry.replace(updated)

        if failure is not None:
            self._mirror(updated)
            raise failure

        logger.warning(
            "Previous local port unavailable, reassigned",
            tunnel_id=tunnel.id,
            old_port=tunnel.local_port,
            new_port=updated.local_port,
        )
        return updated

    def _establish(self, tunnel: Tunnel, client: ClusterClientProtocol) -> Tunnel:
        """Open the forward unlocked, then commit the outcome."""
        handle = None
        error = None
        try:
            handle = client.open_port_forward(
                tunnel.namespace, tunnel.service_name, tunnel.remote_port, tunnel.local_port
            )
        except Exception as e:
            error = str(e) or e.__class__.__name__

        with self.registry.write_locked():
            current = self.registry.get(tunnel.id)
            if current is not None:
                if handle is not None:
                    result = current.with_status(TunnelStatus.ACTIVE).touched(self._clock())
                    self.registry.set_forward(tunnel.id, client, handle)
                else:
                    result = current.with_status(TunnelStatus.ERROR, error)
                self.registry.replace(result)

        if current is None:
            # Stopped while connecting
            if handle is not None:
                self._close_forward(client, handle)
            with self.registry.write_locked():
                self.registry.take_cancelled(tunnel.id)
            logger.info("Discarded tunnel stopped while connecting", tunnel_id=tunnel.id)
            return tunnel.with_status(TunnelStatus.STOPPED)

        if result.status == TunnelStatus.ACTIVE:
            logger.info(
                "Tunnel active",
                tunnel_id=result.id,
                connection_id=result.connection_id,
                local_port=result.local_port,
            )
        else:
            logger.error(
                "Failed to establish tunnel",
                tunnel_id=result.id,
                connection_id=result.connection_id,
                error=error,
            )
        self._mirror(result)
        return result

    def _transition(
        self,
        tunnel_id: str,
        allowed: set[TunnelStatus] | frozenset[TunnelStatus],
        status: TunnelStatus,
        error: str | None = None,
    ) -> Tunnel | None:
        with self.registry.write_locked():
            current = self.registry.get(tunnel_id)
            if current is None or current.status not in allowed:
                return None
            updated = current.with_status(status, error)
            self.registry.replace(updated)

        logger.info(
            "Tunnel status changed",
            tunnel_id=tunnel_id,
            old_status=current.status.value,
            new_status=status.value,
            error=error,
        )
        self._mirror(updated)
        return updated

    def _close_forward(self, client: ClusterClientProtocol, handle: Any) -> None:
        try:
            client.close_port_forward(handle)
        except (KubeBridgeError, OSError) as e:
            logger.warning("Failed to close port forward", handle=repr(handle), error=str(e))

    def _mirror(self, tunnel: Tunnel) -> None:
        local_port = tunnel.local_port if tunnel.is_open else None
        self._write_forward_state(
            tunnel.connection_id, tunnel.id, local_port, FORWARD_STATUS[tunnel.status]
        )

    def _mirror_cleared(self, connection_id: int) -> None:
        self._write_forward_state(connection_id, None, None, ForwardStatus.PENDING)

    def _write_forward_state(
        self,
        connection_id: int,
        forward_id: str | None,
        local_port: int | None,
        status: ForwardStatus,
    ) -> None:
        try:
            self.store.update_forward_state(connection_id, forward_id, local_port, status)
        except StoreError as e:
            logger.warning(
                "Failed to record forward state", connection_id=connection_id, error=str(e)
            )
