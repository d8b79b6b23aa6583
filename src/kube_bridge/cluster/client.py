"""Kubernetes cluster access through kubectl subprocess calls.

Every call goes through ``kubectl`` so the bridge works with whatever
authentication plugins the operator's kubeconfig relies on. Kubeconfig
*content* handed in by the caller is written to a private temporary file for
the lifetime of the client.
"""

import json
import shlex
import subprocess
import threading
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Literal

from ..common.exceptions import ClusterCommandError, ProcessError
from ..common.logging import get_logger
from ..common.process import ProcessManager, resolve_binary
from ..common.utils import (
    LOCALHOST,
    validate_non_empty_string,
    validate_port,
    wait_for_port,
)
from .kubeconfig import KubeconfigFile, validate_context
from .models import SecretInfo, ServiceInfo

logger = get_logger(__name__)

# Maximum output we'll capture from kubectl to avoid memory blowup.
_MAX_OUTPUT_BYTES = 8 * 1024 * 1024

SECRET_NAME_SUFFIXES = ["", "-secret", "-password", "-credentials", "-auth"]


@dataclass
class CommandResult:
    """Result of a kubectl command execution."""

    command: str
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class PortForwardHandle:
    """A running ``kubectl port-forward`` process bound to a local port."""

    def __init__(
        self,
        process: ProcessManager,
        namespace: str,
        service_name: str,
        remote_port: int,
        local_port: int,
    ):
        self.process = process
        self.namespace = namespace
        self.service_name = service_name
        self.remote_port = remote_port
        self.local_port = local_port

    def is_alive(self) -> bool:
        return self.process.is_running()

    def last_error(self) -> str:
        return self.process.read_stderr()

    def __repr__(self) -> str:
        return (
            f"PortForwardHandle({self.namespace}/{self.service_name}:{self.remote_port}"
            f" -> {LOCALHOST}:{self.local_port}, pid={self.process.pid})"
        )


def select_secret(service: ServiceInfo, secrets: list[SecretInfo]) -> SecretInfo | None:
    """Pick the secret most likely to hold a service's credentials.

    Order: a secret named after the service (optionally with a
    ``-secret``/``-password``/``-credentials``/``-auth`` suffix), then any
    secret whose name contains the service name, then any secret carrying one
    of the service's selector labels.
    """
    by_name = {s.name: s for s in secrets if s.namespace == service.namespace}

    for suffix in SECRET_NAME_SUFFIXES:
        secret = by_name.get(service.name + suffix)
        if secret is not None:
            return secret

    for secret in by_name.values():
        if service.name in secret.name:
            return secret

    for secret in by_name.values():
        for key, value in service.selector.items():
            if secret.labels.get(key) == value:
                return secret

    return None


class KubectlClusterClient:
    """Cluster client backed by the kubectl binary.

    Parameters
    ----------
    kubeconfig : str | None
        Kubeconfig *content*. None means kubectl's default resolution.
    context : str | None
        Context to use. None means the kubeconfig's current context.
    kubectl_path : str
        kubectl binary name or path.
    connect_timeout : float
        Seconds to wait for a new port-forward to accept connections.
    """

    def __init__(
        self,
        kubeconfig: str | None = None,
        context: str | None = None,
        kubectl_path: str = "kubectl",
        connect_timeout: float = 10.0,
        command_timeout: int = 60,
    ):
        if kubeconfig:
            validate_context(kubeconfig, context)

        self.context = context
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self._kubectl_path = kubectl_path
        self._kubeconfig_file = KubeconfigFile(kubeconfig) if kubeconfig else None
        self._secrets_cache: dict[str, list[SecretInfo]] = {}
        self._cache_lock = threading.Lock()

    def _base_cmd(self) -> list[str]:
        cmd = [resolve_binary(self._kubectl_path)]
        if self._kubeconfig_file is not None:
            cmd += ["--kubeconfig", self._kubeconfig_file.write()]
        if self.context:
            cmd += ["--context", self.context]
        return cmd

    # ── Low-level executor ────────────────────────────────────────────────

    def _run(self, args: list[str]) -> CommandResult:
        """Run a kubectl command and return the result."""
        cmd = self._base_cmd() + args
        cmd_str = shlex.join(cmd)
        logger.info("kubectl", command=cmd_str)

        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
            )
            return CommandResult(
                command=cmd_str,
                returncode=proc.returncode,
                stdout=proc.stdout[:_MAX_OUTPUT_BYTES],
                stderr=proc.stderr[:_MAX_OUTPUT_BYTES],
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                command=cmd_str,
                returncode=-1,
                stdout="",
                stderr=f"Command timed out after {self.command_timeout}s",
            )

    def _get_json(self, args: list[str]) -> dict[str, Any]:
        result = self._run(args)
        if not result.ok:
            raise ClusterCommandError(
                f"kubectl failed (rc={result.returncode}): {result.stderr.strip()}",
                command=result.command,
                stderr=result.stderr,
            )
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ClusterCommandError(
                f"kubectl returned invalid JSON: {e}", command=result.command
            ) from e
        if not isinstance(data, dict):
            raise ClusterCommandError("kubectl returned unexpected JSON", command=result.command)
        return data

    # ── Read operations ───────────────────────────────────────────────────

    def list_all_services(self) -> list[ServiceInfo]:
        """List services in every namespace.

        Also resets the per-namespace secret cache, so each discovery run
        sees fresh secrets.

        Raises:
            ClusterCommandError: If kubectl fails
        """
        with self._cache_lock:
            self._secrets_cache.clear()

        data = self._get_json(["get", "services", "--all-namespaces", "-o", "json"])
        services = []
        for item in data.get("items", []):
            try:
                services.append(ServiceInfo.from_manifest(item))
            except (KeyError, ValueError) as e:
                logger.warning("Skipping unparsable service", error=str(e))
        return services

    def list_secrets(self, namespace: str) -> list[SecretInfo]:
        """List secrets of one namespace, cached until the next service listing."""
        with self._cache_lock:
            cached = self._secrets_cache.get(namespace)
        if cached is not None:
            return cached

        data = self._get_json(["get", "secrets", "-n", namespace, "-o", "json"])
        secrets = []
        for item in data.get("items", []):
            try:
                secrets.append(SecretInfo.from_manifest(item))
            except (KeyError, ValueError) as e:
                logger.warning("Skipping unparsable secret", namespace=namespace, error=str(e))

        with self._cache_lock:
            self._secrets_cache[namespace] = secrets
        return secrets

    def find_secret_for_service(self, service: ServiceInfo) -> SecretInfo | None:
        """Locate the secret associated with ``service``.

        Returns None when nothing matches or the secrets cannot be read
        (for example RBAC forbids listing them).
        """
        try:
            secrets = self.list_secrets(service.namespace)
        except ClusterCommandError as e:
            logger.warning(
                "Cannot read secrets",
                namespace=service.namespace,
                service=service.name,
                error=str(e),
            )
            return None
        return select_secret(service, secrets)

    # ── Port forwarding ───────────────────────────────────────────────────

    def open_port_forward(
        self, namespace: str, service_name: str, remote_port: int, local_port: int
    ) -> PortForwardHandle:
        """Start ``kubectl port-forward`` and wait until the local port answers.

        Raises:
            ClusterCommandError: If the forward does not come up
        """
        namespace = validate_non_empty_string(namespace, "Namespace")
        service_name = validate_non_empty_string(service_name, "Service name")
        validate_port(remote_port, "Remote port")
        validate_port(local_port, "Local port")

        args = self._base_cmd() + [
            "port-forward",
            f"svc/{service_name}",
            f"{local_port}:{remote_port}",
            "-n",
            namespace,
            "--address",
            LOCALHOST,
        ]
        process = ProcessManager(args)
        try:
            process.start()
        except ProcessError as e:
            raise ClusterCommandError(str(e), command=shlex.join(args)) from e

        if not wait_for_port(
            local_port, timeout=self.connect_timeout, alive=process.is_running
        ):
            detail = process.read_stderr()
            process.stop()
            raise ClusterCommandError(
                f"Port forward to {namespace}/{service_name}:{remote_port} did not become ready"
                + (f": {detail}" if detail else ""),
                command=shlex.join(args),
                stderr=detail,
            )

        handle = PortForwardHandle(process, namespace, service_name, remote_port, local_port)
        logger.info(
            "Port forward ready",
            namespace=namespace,
            service=service_name,
            remote_port=remote_port,
            local_port=local_port,
        )
        return handle

    def close_port_forward(self, handle: PortForwardHandle) -> None:
        """Terminate a port-forward process."""
        if not handle.process.stop():
            logger.warning("Port forward may not have stopped cleanly", handle=repr(handle))

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def close(self) -> None:
        """Remove the temporary kubeconfig file."""
        if self._kubeconfig_file is not None:
            self._kubeconfig_file.cleanup()

    def __enter__(self) -> "KubectlClusterClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        self.close()
        return False
