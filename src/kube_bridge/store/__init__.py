"""Connection and cluster records plus the store they are persisted through."""

from .interfaces import ConnectionStore
from .memory import InMemoryConnectionStore
from .models import Cluster, Connection, ConnectionSource, ForwardStatus

__all__ = [
    "ConnectionStore",
    "InMemoryConnectionStore",
    "Cluster",
    "Connection",
    "ConnectionSource",
    "ForwardStatus",
]
