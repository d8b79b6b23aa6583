"""Protocol interfaces for the cluster capabilities the bridge consumes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .models import SecretInfo, ServiceInfo


class PortForwardHandleProtocol(Protocol):
    """An open forward from a local port to a service port."""

    local_port: int

    def is_alive(self) -> bool:
        """Whether the underlying transport is still running."""
        ...

    def last_error(self) -> str:
        """Diagnostic text from the transport, empty if none."""
        ...


class ClusterClientProtocol(Protocol):
    """Cluster operations used by discovery and the tunnel manager."""

    def list_all_services(self) -> list[ServiceInfo]:
        """List services across all namespaces."""
        ...

    def find_secret_for_service(self, service: ServiceInfo) -> SecretInfo | None:
        """Locate the secret holding credentials for a service."""
        ...

    def open_port_forward(
        self, namespace: str, service_name: str, remote_port: int, local_port: int
    ) -> PortForwardHandleProtocol:
        """Open a forward; raises on failure."""
        ...

    def close_port_forward(self, handle: PortForwardHandleProtocol) -> None:
        """Tear a forward down."""
        ...

    def close(self) -> None:
        """Release client resources."""
        ...
