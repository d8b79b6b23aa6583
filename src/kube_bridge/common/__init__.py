"""Common utilities and shared functionality."""

from .exceptions import (
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
from .locks import ReadWriteLock
from .logging import get_logger, setup_logging
from .process import ProcessManager, resolve_binary
from .utils import (
    LOCALHOST,
    MAX_PORT,
    MIN_PORT,
    cluster_dns_name,
    is_port_free,
    mask_sensitive_data,
    probe_tcp,
    sanitize_log_data,
    validate_non_empty_string,
    validate_port,
    wait_for_port,
)

__all__ = [
    # Process management
    "ProcessManager",
    "resolve_binary",
    # Locking
    "ReadWriteLock",
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
    # Logging
    "get_logger",
    "setup_logging",
    # Utils
    "validate_port",
    "validate_non_empty_string",
    "cluster_dns_name",
    "is_port_free",
    "probe_tcp",
    "wait_for_port",
    "mask_sensitive_data",
    "sanitize_log_data",
    "LOCALHOST",
    "MIN_PORT",
    "MAX_PORT",
]
