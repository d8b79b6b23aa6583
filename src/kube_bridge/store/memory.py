"""Thread-safe in-memory connection store."""

import itertools
import threading
from datetime import datetime
from typing import Any

from ..common.exceptions import (
    ClusterNotFoundError,
    ConnectionNotFoundError,
    DuplicateConnectionError,
    StoreError,
)
from ..common.logging import get_logger
from .models import Cluster, Connection, ForwardStatus

logger = get_logger(__name__)


class InMemoryConnectionStore:
    """Dictionary-backed implementation of ``ConnectionStore``."""

    def __init__(self) -> None:
        self._connections: dict[int, Connection] = {}
        self._clusters: dict[int, Cluster] = {}
        self._connection_ids = itertools.count(1)
        self._cluster_ids = itertools.count(1)
        self._lock = threading.RLock()

    @staticmethod
    def _next_id(counter: "itertools.count[int]", used: dict[int, Any]) -> int:
        while True:
            candidate = next(counter)
            if candidate not in used:
                return candidate

    # ── Connections ───────────────────────────────────────────────────────

    def get_connection(self, connection_id: int) -> Connection:
        with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                raise ConnectionNotFoundError(f"Connection {connection_id} not found")
            return connection.model_copy(deep=True)

    def list_connections(self) -> list[Connection]:
        with self._lock:
            return [c.model_copy(deep=True) for c in self._connections.values()]

    def find_k8s_connection(self, namespace: str, service_name: str) -> Connection | None:
        with self._lock:
            for connection in self._connections.values():
                if connection.identity_key == (namespace, service_name):
                    return connection.model_copy(deep=True)
        return None

    def create_connection(self, connection: Connection) -> Connection:
        with self._lock:
            if connection.id is not None and connection.id in self._connections:
                raise StoreError(f"Connection {connection.id} already exists")

            key = connection.identity_key
            if key is not None:
                for other in self._connections.values():
                    if other.identity_key == key:
                        raise DuplicateConnectionError(
                            f"Connection for service {key[1]} in namespace {key[0]} already exists",
                            existing_id=other.id,
                        )

            now = datetime.now()
            stored = connection.model_copy(
                update={
                    "id": connection.id or self._next_id(self._connection_ids, self._connections),
                    "created_at": now,
                    "updated_at": now,
                },
                deep=True,
            )
            self._connections[stored.id] = stored  # type: ignore[index]
            logger.debug("Connection created", connection_id=stored.id, name=stored.name)
            return stored.model_copy(deep=True)

    def update_connection(self, connection: Connection) -> Connection:
        with self._lock:
            if connection.id is None or connection.id not in self._connections:
                raise ConnectionNotFoundError(f"Connection {connection.id} not found")

            previous = self._connections[connection.id]
            stored = connection.model_copy(
                update={"created_at": previous.created_at, "updated_at": datetime.now()},
                deep=True,
            )
            self._connections[connection.id] = stored
            logger.debug("Connection updated", connection_id=stored.id)
            return stored.model_copy(deep=True)

    def update_forward_state(
        self,
        connection_id: int,
        forward_id: str | None,
        local_port: int | None,
        status: ForwardStatus | None,
    ) -> Connection:
        with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                raise ConnectionNotFoundError(f"Connection {connection_id} not found")

            update: dict[str, object] = {
                "forward_id": forward_id,
                "forward_local_port": local_port,
                "forward_status": status,
                "updated_at": datetime.now(),
            }
            if local_port:
                update["host"] = "localhost"
                update["port"] = local_port
            elif connection.is_k8s:
                update["host"] = connection.cluster_host
                update["port"] = connection.k8s_service_port or 0

            stored = connection.model_copy(update=update, deep=True)
            self._connections[connection_id] = stored
            return stored.model_copy(deep=True)

    # ── Clusters ──────────────────────────────────────────────────────────

    def get_cluster(self, cluster_id: int) -> Cluster:
        with self._lock:
            cluster = self._clusters.get(cluster_id)
            if cluster is None:
                raise ClusterNotFoundError(f"Cluster {cluster_id} not found")
            return cluster.model_copy(deep=True)

    def get_cluster_by_name(self, name: str) -> Cluster | None:
        with self._lock:
            for cluster in self._clusters.values():
                if cluster.name == name:
                    return cluster.model_copy(deep=True)
        return None

    def create_cluster(self, cluster: Cluster) -> Cluster:
        with self._lock:
            if self.get_cluster_by_name(cluster.name) is not None:
                raise StoreError(f"Cluster '{cluster.name}' already exists")

            now = datetime.now()
            stored = cluster.model_copy(
                update={
                    "id": cluster.id or self._next_id(self._cluster_ids, self._clusters),
                    "created_at": now,
                    "updated_at": now,
                },
                deep=True,
            )
            self._clusters[stored.id] = stored  # type: ignore[index]
            logger.info("Cluster created", cluster_id=stored.id, name=stored.name)
            return stored.model_copy(deep=True)
