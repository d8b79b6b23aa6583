"""Persisted connection and cluster records."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..common.utils import cluster_dns_name


class ConnectionSource(str, Enum):
    """Where a connection record came from."""

    LOCAL = "local"
    K8S = "k8s"


class ForwardStatus(str, Enum):
    """Tunnel state mirrored onto a connection record."""

    PENDING = "pending"
    ACTIVE = "active"
    IDLE = "idle"
    ERROR = "error"


class Connection(BaseModel):
    """A saved database connection.

    For ``source == k8s`` the ``host``/``port`` pair is a placeholder
    (``localhost``/``0``) until a tunnel assigns a local port.
    """

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    id: int | None = None
    name: str = Field(min_length=1)
    conn_type: str = Field(alias="type", min_length=1, description="mysql, redis, ...")
    host: str = "localhost"
    port: int = Field(default=0, ge=0, le=65535)
    username: str | None = None
    password: str | None = Field(default=None, repr=False)
    database_name: str | None = None
    is_default: bool = False

    source: ConnectionSource = ConnectionSource.LOCAL
    k8s_namespace: str | None = None
    k8s_service_name: str | None = None
    k8s_service_port: int | None = Field(default=None, ge=1, le=65535)
    cluster_id: int | None = None

    forward_id: str | None = None
    forward_local_port: int | None = Field(default=None, ge=1, le=65535)
    forward_status: ForwardStatus | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def validate_k8s_fields(self) -> "Connection":
        """k8s connections always name their namespace and service."""
        if self.source == ConnectionSource.K8S and not (
            self.k8s_namespace and self.k8s_service_name
        ):
            raise ValueError("k8s connections require k8s_namespace and k8s_service_name")
        return self

    @property
    def is_k8s(self) -> bool:
        return self.source == ConnectionSource.K8S

    @property
    def identity_key(self) -> tuple[str, str] | None:
        """``(namespace, service name)`` for k8s connections, else None."""
        if not self.is_k8s:
            return None
        return (self.k8s_namespace or "", self.k8s_service_name or "")

    @property
    def cluster_host(self) -> str | None:
        """In-cluster DNS name of the backing service."""
        if not self.is_k8s:
            return None
        return cluster_dns_name(self.k8s_service_name or "", self.k8s_namespace or "")


class Cluster(BaseModel):
    """A Kubernetes cluster the operator has connected to."""

    model_config = ConfigDict(validate_assignment=True)

    id: int | None = None
    name: str = Field(min_length=1)
    context: str | None = None
    kubeconfig: str | None = Field(default=None, repr=False)
    environment: str = "unknown"
    is_active: bool = True

    created_at: datetime | None = None
    updated_at: datetime | None = None
