"""Custom exceptions for tunnel management."""

from ..common.exceptions import TunnelError


class TunnelManagerError(TunnelError):
    """Exception raised for tunnel manager operations."""

    pass


class TunnelNotFoundError(TunnelManagerError):
    """Raised when a tunnel id is not in the registry."""

    pass


class PortUnavailableError(TunnelError):
    """Raised when a pinned local port is taken or the port range is exhausted."""

    def __init__(self, message: str, port: int | None = None):
        super().__init__(message)
        self.port = port
