"""Protocol for the persisted connection store the bridge writes through."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .models import Cluster, Connection, ForwardStatus


class ConnectionStore(Protocol):
    """CRUD surface the discovery, import and tunnel layers depend on.

    Implementations return copies; mutating a returned record has no effect
    until it is passed back to ``update_connection``. Each write is atomic.
    """

    def get_connection(self, connection_id: int) -> Connection:
        """Raises ConnectionNotFoundError when missing."""
        ...

    def list_connections(self) -> list[Connection]:
        ...

    def find_k8s_connection(self, namespace: str, service_name: str) -> Connection | None:
        """The k8s connection with the given identity key, if any."""
        ...

    def create_connection(self, connection: Connection) -> Connection:
        """Persist a new record and return it with its id."""
        ...

    def update_connection(self, connection: Connection) -> Connection:
        """Replace an existing record; raises ConnectionNotFoundError when missing."""
        ...

    def update_forward_state(
        self,
        connection_id: int,
        forward_id: str | None,
        local_port: int | None,
        status: ForwardStatus | None,
    ) -> Connection:
        """Mirror tunnel state onto a connection.

        With a local port the connection's host/port become
        ``localhost:<local_port>``; without one they revert to the service's
        cluster DNS name and service port.
        """
        ...

    def get_cluster(self, cluster_id: int) -> Cluster:
        """Raises ClusterNotFoundError when missing."""
        ...

    def get_cluster_by_name(self, name: str) -> Cluster | None:
        ...

    def create_cluster(self, cluster: Cluster) -> Cluster:
        ...
