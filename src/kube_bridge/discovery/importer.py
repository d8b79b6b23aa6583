"""Reconcile discovered services with persisted connections."""

from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, Field, computed_field

from ..common.exceptions import DuplicateConnectionError, StoreError
from ..common.logging import get_logger
from ..common.utils import sanitize_log_data
from ..store.interfaces import ConnectionStore
from ..store.models import Cluster, Connection, ConnectionSource, ForwardStatus
from .models import DiscoveredService

logger = get_logger(__name__)

ALREADY_EXISTS = "connection already exists"


class ImportItemResult(BaseModel):
    """Outcome for one service of an import batch."""

    name: str
    success: bool = False
    updated: bool = False
    skipped: bool = False
    error: str | None = None
    id: int | None = None


class ImportResult(BaseModel):
    """Aggregate outcome of an import batch.

    ``created``, ``updated``, ``skipped`` and ``failed`` are disjoint and add
    up to the number of input services; ``success`` is created + updated.
    """

    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    cluster_id: int | None = None
    results: list[ImportItemResult] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> int:
        return self.created + self.updated


def connection_name(service: DiscoveredService) -> str:
    return f"{service.namespace}/{service.name}"


class ImportPipeline:
    """Turns ``DiscoveredService`` records into k8s connections.

    The identity of a service is its ``(namespace, service_name)`` pair. An
    existing connection with the same identity is skipped, or updated in
    place when ``force_override`` is set. Updates keep the record's
    ``is_default`` flag and any tunnel assignment.
    """

    def __init__(self, store: ConnectionStore):
        self.store = store

    def run(
        self,
        services: Iterable[DiscoveredService | dict[str, Any]],
        force_override: bool = False,
        cluster_name: str | None = None,
        context: str | None = None,
        kubeconfig: str | None = None,
    ) -> ImportResult:
        """Import a batch of services.

        The whole batch is validated before anything is written; after that
        every service gets exactly one entry in ``results``.

        Raises:
            ValidationError: If any service in the batch is malformed
        """
        batch = [
            s if isinstance(s, DiscoveredService) else DiscoveredService.model_validate(s)
            for s in services
        ]

        cluster_id = self._resolve_cluster(cluster_name, context, kubeconfig)
        result = ImportResult(cluster_id=cluster_id)

        for service in batch:
            item = self._import_one(service, force_override, cluster_id)
            result.results.append(item)
            if item.skipped:
                result.skipped += 1
            elif not item.success:
                result.failed += 1
            elif item.updated:
                result.updated += 1
            else:
                result.created += 1

        logger.info(
            "Import finished",
            created=result.created,
            updated=result.updated,
            skipped=result.skipped,
            failed=result.failed,
            cluster_id=cluster_id,
        )
        return result

    def _resolve_cluster(
        self, cluster_name: str | None, context: str | None, kubeconfig: str | None
    ) -> int | None:
        """Find or create the cluster record named ``cluster_name``.

        A cluster that cannot be created leaves the imported connections
        unattached rather than failing the batch.
        """
        if not cluster_name:
            return None

        existing = self.store.get_cluster_by_name(cluster_name)
        if existing is not None:
            logger.debug("Using existing cluster", cluster=cluster_name, cluster_id=existing.id)
            return existing.id

        try:
            cluster = self.store.create_cluster(
                Cluster(
                    name=cluster_name,
                    context=context,
                    kubeconfig=kubeconfig,
                    environment="unknown",
                    is_active=True,
                )
            )
        except (StoreError, ValueError) as e:
            logger.warning("Failed to create cluster record", cluster=cluster_name, error=str(e))
            return None
        return cluster.id

    def _import_one(
        self, service: DiscoveredService, force_override: bool, cluster_id: int | None
    ) -> ImportItemResult:
        name = connection_name(service)
        item = ImportItemResult(name=service.name)
        logger.debug("Importing service", service=sanitize_log_data(service.model_dump()))

        try:
            connection = Connection(
                name=name,
                conn_type=service.service_type,
                host="localhost",
                port=0,
                username=service.username,
                password=service.password,
                database_name=service.database,
                source=ConnectionSource.K8S,
                k8s_namespace=service.namespace,
                k8s_service_name=service.service_name,
                k8s_service_port=service.port,
                cluster_id=cluster_id,
                forward_status=ForwardStatus.PENDING,
            )

            existing = self.store.find_k8s_connection(service.namespace, service.service_name)
            if existing is None:
                try:
                    stored = self.store.create_connection(connection)
                except DuplicateConnectionError:
                    # Another import created it since the lookup
                    existing = self.store.find_k8s_connection(
                        service.namespace, service.service_name
                    )
                    if existing is None:
                        raise
                else:
                    logger.info("Created connection", name=name, connection_id=stored.id)

            if existing is not None:
                if not force_override:
                    item.skipped = True
                    item.error = ALREADY_EXISTS
                    item.id = existing.id
                    logger.info("Skipped existing connection", name=name, connection_id=existing.id)
                    return item

                stored = self.store.update_connection(_merge(existing, connection))
                item.updated = True
                logger.info("Updated existing connection", name=name, connection_id=stored.id)

        except (StoreError, ValueError) as e:
            item.error = str(e)
            logger.error("Failed to import connection", name=name, error=str(e))
            return item

        item.success = True
        item.id = stored.id
        return item


def _merge(existing: Connection, incoming: Connection) -> Connection:
    """Apply ``incoming`` over ``existing`` without disturbing a live tunnel.

    ``forward_id`` and ``forward_local_port`` each survive whenever they are
    set; a live tunnel also keeps its status and localhost address.
    """
    update: dict[str, Any] = {
        "id": existing.id,
        "is_default": existing.is_default,
        "cluster_id": incoming.cluster_id if incoming.cluster_id is not None else existing.cluster_id,
    }
    if existing.forward_id is not None:
        update["forward_id"] = existing.forward_id
    if existing.forward_local_port is not None:
        update["forward_local_port"] = existing.forward_local_port
    if existing.forward_id:
        update.update(
            forward_status=existing.forward_status,
            host=existing.host,
            port=existing.port,
        )
    return incoming.model_copy(update=update)
