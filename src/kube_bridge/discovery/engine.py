"""Scan a cluster for middleware services."""

from collections.abc import Iterable

from ..cluster.interfaces import ClusterClientProtocol
from ..cluster.models import ServiceInfo
from ..common.exceptions import KubeBridgeError
from ..common.logging import get_logger
from ..common.utils import cluster_dns_name
from ..config import DEFAULT_EXCLUDED_NAMESPACES
from ..store.interfaces import ConnectionStore
from .classifier import classify_service, service_port_for
from .credentials import Credentials, extract_credentials
from .models import DiscoveredService

logger = get_logger(__name__)


def existing_identity_keys(store: ConnectionStore) -> set[tuple[str, str]]:
    """Identity keys of every k8s connection already in ``store``."""
    keys = set()
    for connection in store.list_connections():
        key = connection.identity_key
        if key is not None:
            keys.add(key)
    return keys


class DiscoveryEngine:
    """Turns a cluster's services into ``DiscoveredService`` candidates.

    A service is reported when it classifies as a supported middleware, lives
    outside the excluded namespaces and has no existing connection with the
    same ``(namespace, service_name)``.
    """

    def __init__(self, excluded_namespaces: Iterable[str] | None = None):
        if excluded_namespaces is None:
            excluded_namespaces = DEFAULT_EXCLUDED_NAMESPACES
        self.excluded_namespaces = frozenset(excluded_namespaces)

    def discover(
        self,
        client: ClusterClientProtocol,
        known_keys: Iterable[tuple[str, str]] = (),
    ) -> list[DiscoveredService]:
        """List every service in the cluster and keep the recognised ones.

        Args:
            client: Cluster client to read services and secrets through
            known_keys: Identity keys to leave out of the result

        Returns:
            Discovered services in cluster listing order

        Raises:
            ClusterCommandError: If the services cannot be listed
        """
        known = set(known_keys)
        services = client.list_all_services()
        logger.info("Listed cluster services", count=len(services))

        discovered: list[DiscoveredService] = []
        for service in services:
            if service.namespace in self.excluded_namespaces:
                continue
            if (service.namespace, service.name) in known:
                logger.debug(
                    "Skipping service with existing connection",
                    namespace=service.namespace,
                    service=service.name,
                )
                continue

            try:
                result = self._inspect(client, service)
            except (KubeBridgeError, ValueError) as e:
                logger.warning(
                    "Failed to inspect service",
                    namespace=service.namespace,
                    service=service.name,
                    error=str(e),
                )
                continue

            if result is not None:
                discovered.append(result)

        logger.info("Discovery finished", discovered=len(discovered))
        return discovered

    def _inspect(
        self, client: ClusterClientProtocol, service: ServiceInfo
    ) -> DiscoveredService | None:
        classification = classify_service(service)
        if classification is None:
            return None

        middleware = classification.middleware
        secret = client.find_secret_for_service(service)
        if secret is not None:
            credentials = extract_credentials(secret.data, middleware.name)
        else:
            credentials = Credentials()

        logger.debug(
            "Classified service",
            namespace=service.namespace,
            service=service.name,
            type=middleware.name,
            score=classification.score,
            secret=secret.name if secret else None,
        )

        return DiscoveredService(
            name=service.name,
            service_type=middleware.name,
            namespace=service.namespace,
            host=cluster_dns_name(service.name, service.namespace),
            port=service_port_for(service, middleware),
            username=credentials.username or None,
            password=credentials.password or None,
            database=credentials.database or None,
            has_credentials=secret is not None and credentials.has_password,
            service_name=service.name,
        )
