"""kube-bridge - Kubernetes database discovery and port-forward tunnels."""

from .api import BridgeService, managed_bridge
from .cluster import ClusterClientProtocol, KubectlClusterClient
from .common.exceptions import (
    BinaryNotFoundError,
    ClusterCommandError,
    ClusterConfigError,
    ClusterNotFoundError,
    ConfigurationError,
    ConnectionNotFoundError,
    DuplicateConnectionError,
    KubeBridgeError,
    ProcessError,
    StoreError,
    TunnelError,
)
from .common.logging import get_logger, setup_logging
from .config import BridgeConfig
from .discovery import (
    DiscoveredService,
    DiscoveryEngine,
    ImportPipeline,
    ImportResult,
    classify,
    extract_credentials,
)
from .pool import ConnectionPoolCache, Endpoint
from .store import Cluster, Connection, ConnectionStore, InMemoryConnectionStore
from .tunnels import (
    IdleMonitor,
    PortUnavailableError,
    Tunnel,
    TunnelManager,
    TunnelManagerError,
    TunnelNotFoundError,
    TunnelRegistry,
    TunnelStatus,
)

__version__ = "0.1.0"


__all__ = [
    # High-level API
    "BridgeService",
    "managed_bridge",
    "BridgeConfig",
    # Cluster access
    "ClusterClientProtocol",
    "KubectlClusterClient",
    # Discovery
    "DiscoveredService",
    "DiscoveryEngine",
    "ImportPipeline",
    "ImportResult",
    "classify",
    "extract_credentials",
    # Store
    "Cluster",
    "Connection",
    "ConnectionStore",
    "InMemoryConnectionStore",
    # Tunnels
    "IdleMonitor",
    "Tunnel",
    "TunnelManager",
    "TunnelRegistry",
    "TunnelStatus",
    "ConnectionPoolCache",
    "Endpoint",
    # Exceptions
    "KubeBridgeError",
    "ConfigurationError",
    "ProcessError",
    "BinaryNotFoundError",
    "ClusterConfigError",
    "ClusterCommandError",
    "StoreError",
    "ConnectionNotFoundError",
    "DuplicateConnectionError",
    "ClusterNotFoundError",
    "TunnelError",
    "TunnelManagerError",
    "TunnelNotFoundError",
    "PortUnavailableError",
    # Utilities
    "get_logger",
    "setup_logging",
]
