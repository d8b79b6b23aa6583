"""Tunnel lifecycle: registry, manager and idle monitor."""

from .exceptions import PortUnavailableError, TunnelManagerError, TunnelNotFoundError
from .manager import ClientFactory, TunnelManager, kubectl_client_factory
from .models import Tunnel, TunnelStatus
from .monitor import IdleMonitor, MonitorReport
from .registry import TunnelRegistry

__all__ = [
    "PortUnavailableError",
    "TunnelManagerError",
    "TunnelNotFoundError",
    "ClientFactory",
    "TunnelManager",
    "kubectl_client_factory",
    "Tunnel",
    "TunnelStatus",
    "IdleMonitor",
    "MonitorReport",
    "TunnelRegistry",
]
