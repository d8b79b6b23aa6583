"""Tunnel model and its status machine."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..common.utils import LOCALHOST, cluster_dns_name
from ..store.models import ForwardStatus


class TunnelStatus(str, Enum):
    """Tunnel status enumeration.

    ``pending -> connecting -> active``; ``active -> idle`` on inactivity;
    ``active|idle -> error`` on transport failure; ``error|idle -> connecting``
    on reconnect; any state ``-> stopped``.
    """

    PENDING = "pending"
    CONNECTING = "connecting"
    ACTIVE = "active"
    IDLE = "idle"
    ERROR = "error"
    STOPPED = "stopped"


# Status written to the connection record; connecting is persisted as pending.
FORWARD_STATUS: dict[TunnelStatus, ForwardStatus] = {
    TunnelStatus.PENDING: ForwardStatus.PENDING,
    TunnelStatus.CONNECTING: ForwardStatus.PENDING,
    TunnelStatus.ACTIVE: ForwardStatus.ACTIVE,
    TunnelStatus.IDLE: ForwardStatus.IDLE,
    TunnelStatus.ERROR: ForwardStatus.ERROR,
    TunnelStatus.STOPPED: ForwardStatus.PENDING,
}

# Statuses in which a tunnel holds an open forward.
OPEN_STATUSES = frozenset({TunnelStatus.ACTIVE, TunnelStatus.IDLE})


class Tunnel(BaseModel):
    """Immutable snapshot of a local-port-to-service tunnel.

    ``last_used`` is read from the manager's monotonic clock and drives idle
    supervision; ``created_at``/``last_used_at`` are wall-clock times for
    display.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Unique tunnel identifier")
    connection_id: int = Field(description="Connection the tunnel serves")
    namespace: str = Field(min_length=1)
    service_name: str = Field(min_length=1)
    remote_port: int = Field(ge=1, le=65535, description="Service port in the cluster")
    local_port: int = Field(ge=1, le=65535, description="Port bound on 127.0.0.1")
    status: TunnelStatus = Field(default=TunnelStatus.PENDING)
    error: str | None = Field(default=None, description="Last failure, if any")
    last_used: float = Field(default=0.0, description="Monotonic time of last use")
    created_at: datetime = Field(default_factory=datetime.now)
    last_used_at: datetime = Field(default_factory=datetime.now)

    @property
    def remote_host(self) -> str:
        return cluster_dns_name(self.service_name, self.namespace)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def with_status(self, status: TunnelStatus, error: str | None = None) -> "Tunnel":
        """Create new tunnel instance with updated status (immutable pattern).

        Args:
            status: New tunnel status
            error: Failure message; cleared when None

        Returns:
            New tunnel instance with updated status
        """
        return self.model_copy(update={"status": status, "error": error})

    def touched(self, now: float) -> "Tunnel":
        """Return a copy marked as used at monotonic time ``now``."""
        return self.model_copy(update={"last_used": now, "last_used_at": datetime.now()})

    def idle_for(self, now: float) -> float:
        """Seconds since the tunnel was last used."""
        return max(0.0, now - self.last_used)

    def to_response(self) -> dict[str, Any]:
        """Serialize for the serving layer."""
        return {
            "id": self.id,
            "connection_id": self.connection_id,
            "local_host": LOCALHOST,
            "local_port": self.local_port,
            "remote_host": self.remote_host,
            "remote_port": self.remote_port,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "last_used_at": self.last_used_at.isoformat(),
            "error_message": self.error,
        }
