"""Utility functions shared across kube-bridge."""

import socket
import time
from collections.abc import Callable
from typing import Any

# Port range constants
MIN_PORT = 1
MAX_PORT = 65535

LOCALHOST = "127.0.0.1"


def validate_port(port: int, port_name: str = "Port") -> None:
    """Validate port number range.

    Args:
        port: Port number to validate
        port_name: Name of the port for error messages

    Raises:
        ValueError: If port is not in valid range (1-65535)
    """
    if not isinstance(port, int) or not (MIN_PORT <= port <= MAX_PORT):
        raise ValueError(f"{port_name} must be between {MIN_PORT} and {MAX_PORT}")


def validate_non_empty_string(value: str, field_name: str) -> str:
    """Validate that a string is not empty or only whitespace.

    Args:
        value: String value to validate
        field_name: Name of the field for error messages

    Returns:
        Stripped string value

    Raises:
        ValueError: If string is empty or only whitespace
    """
    if not value or not value.strip():
        raise ValueError(f"{field_name} cannot be empty")
    return value.strip()


def cluster_dns_name(service_name: str, namespace: str) -> str:
    """Return the in-cluster DNS name of a service."""
    return f"{service_name}.{namespace}.svc.cluster.local"


def is_port_free(port: int, host: str = LOCALHOST) -> bool:
    """Check whether a local TCP port can be bound right now.

    Sockets left in TIME_WAIT by a forward that just exited do not count as
    busy, so a reconnect can rebind the port it had.

    Args:
        port: Port to probe
        host: Interface to bind on

    Returns:
        True if nothing is listening on the port
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def probe_tcp(port: int, host: str = LOCALHOST, timeout: float = 2.0) -> str | None:
    """Dial a local TCP port once.

    Returns:
        None when the connection succeeds, otherwise the error text
    """
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return None
    except OSError as e:
        return str(e)


def wait_for_port(
    port: int,
    timeout: float,
    host: str = LOCALHOST,
    alive: Callable[[], bool] | None = None,
) -> bool:
    """Wait until a local port accepts TCP connections.

    Args:
        port: Port to wait for
        timeout: Maximum seconds to wait
        host: Host to dial
        alive: Optional callable; waiting stops early when it returns False

    Returns:
        True once the port accepts a connection, False on timeout or early stop
    """
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if alive is not None and not alive():
            return False
        if probe_tcp(port, host=host, timeout=0.5) is None:
            return True
        time.sleep(0.1)
    return False


def mask_sensitive_data(
    value: str | None, mask_char: str = "*", show_chars: int = 4
) -> str:
    """Mask sensitive data for logging while preserving some characters for debugging.

    Args:
        value: Sensitive string to mask (e.g., password, kubeconfig token)
        mask_char: Character to use for masking
        show_chars: Number of characters to show at the end

    Returns:
        Masked string safe for logging
    """
    if not value:
        return "<None>"

    if len(value) <= show_chars:
        return mask_char * len(value)

    masked_length = len(value) - show_chars
    return mask_char * masked_length + value[-show_chars:]


def sanitize_log_data(data: dict[str, Any]) -> dict[str, Any]:
    """Sanitize dictionary data for safe logging by masking sensitive fields.

    Only string (or empty) values are masked; flags such as
    ``has_credentials`` pass through.

    Args:
        data: Dictionary potentially containing sensitive data

    Returns:
        Sanitized dictionary safe for logging
    """
    sensitive_fields = {
        "password",
        "secret",
        "token",
        "kubeconfig",
        "api_key",
        "credentials",
    }

    sanitized = {}
    for key, value in data.items():
        sensitive = any(field in key.lower() for field in sensitive_fields)
        if sensitive and (value is None or isinstance(value, str)):
            sanitized[key] = mask_sensitive_data(str(value) if value else None)
        else:
            sanitized[key] = value

    return sanitized
