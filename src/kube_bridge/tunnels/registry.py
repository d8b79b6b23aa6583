"""Tunnel registry and local port allocator."""

from collections.abc import Callable
from contextlib import AbstractContextManager
from typing import Any

from ..common.locks import ReadWriteLock
from ..common.logging import get_logger
from ..common.utils import is_port_free
from .exceptions import PortUnavailableError, TunnelManagerError, TunnelNotFoundError
from .models import Tunnel

logger = get_logger(__name__)


class TunnelRegistry:
    """In-memory store for tunnels, their open forwards and reserved ports.

    The registry is guarded by a reader/writer lock exposed through
    ``read_locked()`` and ``write_locked()``. Its methods do not lock on their
    own: callers hold the read lock for lookups and the write lock for
    mutations, so a multi-step change (check, allocate, insert) is atomic.

    Invariants:
        * at most one tunnel per connection id
        * no two tunnels, and no cancelled in-flight forward, share a local port
    """

    def __init__(
        self,
        port_min: int = 40000,
        port_max: int = 50000,
        max_tunnels: int = 100,
        port_probe: Callable[[int], bool] = is_port_free,
    ):
        if port_min >= port_max:
            raise ValueError("port_min must be lower than port_max")
        self.port_min = port_min
        self.port_max = port_max
        self.max_tunnels = max_tunnels
        self._port_probe = port_probe
        self._lock = ReadWriteLock()

        self._tunnels: dict[str, Tunnel] = {}
        self._by_connection: dict[int, str] = {}
        self._forwards: dict[str, tuple[Any, Any]] = {}
        # Ports of stopped tunnels whose forward is still being opened
        self._cancelled: dict[str, int] = {}

    def read_locked(self) -> AbstractContextManager[None]:
        return self._lock.read_locked()

    def write_locked(self) -> AbstractContextManager[None]:
        return self._lock.write_locked()

    # ── Lookups ───────────────────────────────────────────────────────────

    def get(self, tunnel_id: str) -> Tunnel | None:
        return self._tunnels.get(tunnel_id)

    def require(self, tunnel_id: str) -> Tunnel:
        tunnel = self._tunnels.get(tunnel_id)
        if tunnel is None:
            raise TunnelNotFoundError(f"Tunnel '{tunnel_id}' not found")
        return tunnel

    def get_by_connection(self, connection_id: int) -> Tunnel | None:
        tunnel_id = self._by_connection.get(connection_id)
        return self._tunnels.get(tunnel_id) if tunnel_id else None

    def list(self) -> list[Tunnel]:
        return list(self._tunnels.values())

    def __len__(self) -> int:
        return len(self._tunnels)

    def used_ports(self) -> set[int]:
        ports = {t.local_port for t in self._tunnels.values()}
        ports.update(self._cancelled.values())
        return ports

    # ── Mutations ─────────────────────────────────────────────────────────

    def add(self, tunnel: Tunnel) -> None:
        """Register a new tunnel.

        Raises:
            TunnelManagerError: If the id or connection already has a tunnel,
                or the registry is full
        """
        if tunnel.id in self._tunnels:
            raise TunnelManagerError(f"Tunnel with ID '{tunnel.id}' already exists")
        if tunnel.connection_id in self._by_connection:
            raise TunnelManagerError(
                f"Connection {tunnel.connection_id} already has a tunnel"
            )
        if len(self._tunnels) >= self.max_tunnels:
            raise TunnelManagerError(f"Maximum tunnel limit ({self.max_tunnels}) reached")
        if tunnel.local_port in self.used_ports():
            raise PortUnavailableError(
                f"Local port {tunnel.local_port} already in use", port=tunnel.local_port
            )

        self._tunnels[tunnel.id] = tunnel
        self._by_connection[tunnel.connection_id] = tunnel.id
        logger.debug("Added tunnel to registry", tunnel_id=tunnel.id, local_port=tunnel.local_port)

    def replace(self, tunnel: Tunnel) -> None:
        """Swap in a newer snapshot of a registered tunnel."""
        if tunnel.id not in self._tunnels:
            raise TunnelNotFoundError(f"Tunnel '{tunnel.id}' not found")
        self._tunnels[tunnel.id] = tunnel

    def remove(self, tunnel_id: str) -> Tunnel:
        """Remove a tunnel and release its local port.

        Raises:
            TunnelNotFoundError: If tunnel not found
        """
        tunnel = self.require(tunnel_id)
        del self._tunnels[tunnel_id]
        self._by_connection.pop(tunnel.connection_id, None)
        logger.debug("Removed tunnel from registry", tunnel_id=tunnel_id)
        return tunnel

    def set_forward(self, tunnel_id: str, client: Any, handle: Any) -> None:
        self._forwards[tunnel_id] = (client, handle)

    def get_forward(self, tunnel_id: str) -> tuple[Any, Any] | None:
        return self._forwards.get(tunnel_id)

    def pop_forward(self, tunnel_id: str) -> tuple[Any, Any] | None:
        return self._forwards.pop(tunnel_id, None)

    def cancel(self, tunnel_id: str, port: int) -> None:
        """Keep ``port`` reserved until the in-flight open for ``tunnel_id`` ends."""
        self._cancelled[tunnel_id] = port

    def take_cancelled(self, tunnel_id: str) -> bool:
        """Release a cancelled reservation; True if there was one."""
        return self._cancelled.pop(tunnel_id, None) is not None

    # ── Port allocation ───────────────────────────────────────────────────

    def allocate_port(self, preferred: int | None = None) -> int:
        """Pick a local port for a tunnel.

        A pinned port is returned only if no tunnel holds it and it can be
        bound. Without one, the first such port at or above ``port_min`` is
        returned.

        Args:
            preferred: Port pinned by the caller; 0 or None means automatic

        Raises:
            PortUnavailableError: If the pinned port is taken or the range is exhausted
        """
        used = self.used_ports()

        if preferred:
            if preferred in used or not self._port_probe(preferred):
                raise PortUnavailableError(
                    f"Local port {preferred} is already in use", port=preferred
                )
            return preferred

        for port in range(self.port_min, self.port_max + 1):
            if port not in used and self._port_probe(port):
                return port

        raise PortUnavailableError(
            f"No free local port between {self.port_min} and {self.port_max}"
        )

    def probe_port(self, port: int) -> bool:
        """Whether ``port`` can be bound right now, ignoring reservations."""
        return self._port_probe(port)

    def stats(self) -> dict[str, int]:
        counts: dict[str, int] = {"total": len(self._tunnels)}
        for tunnel in self._tunnels.values():
            counts[tunnel.status.value] = counts.get(tunnel.status.value, 0) + 1
        return counts
