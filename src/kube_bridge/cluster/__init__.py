"""Cluster access: kubectl client, kubeconfig handling and object models."""

from .client import (
    CommandResult,
    KubectlClusterClient,
    PortForwardHandle,
    select_secret,
)
from .interfaces import ClusterClientProtocol, PortForwardHandleProtocol
from .kubeconfig import KubeconfigFile, list_contexts, load_kubeconfig, validate_context
from .models import SecretInfo, ServiceInfo, ServicePort

__all__ = [
    "ClusterClientProtocol",
    "PortForwardHandleProtocol",
    "KubectlClusterClient",
    "PortForwardHandle",
    "CommandResult",
    "select_secret",
    "KubeconfigFile",
    "list_contexts",
    "load_kubeconfig",
    "validate_context",
    "ServiceInfo",
    "ServicePort",
    "SecretInfo",
]
