"""Shared pytest fixtures for kube-bridge tests."""

import os
import socket
import threading
from unittest.mock import Mock

import pytest
import structlog
from structlog.testing import LogCapture

from kube_bridge.cluster.models import SecretInfo, ServiceInfo, ServicePort
from kube_bridge.common.exceptions import ClusterCommandError
from kube_bridge.config import BridgeConfig
from kube_bridge.store.memory import InMemoryConnectionStore
from kube_bridge.store.models import Connection, ConnectionSource, ForwardStatus
from kube_bridge.tunnels.manager import TunnelManager
from kube_bridge.tunnels.registry import TunnelRegistry


class FakeHandle:
    """Stand-in for a running port-forward."""

    def __init__(self, local_port: int):
        self.local_port = local_port
        self.alive = True
        self.closed = False
        self.stderr = ""

    def is_alive(self) -> bool:
        return self.alive and not self.closed

    def last_error(self) -> str:
        return self.stderr


class FakeClusterClient:
    """In-memory cluster client.

    ``open_gate`` (when set to an Event) blocks ``open_port_forward`` until
    the event is set, which lets tests interleave operations with an
    in-flight open. ``opening`` is set as soon as an open starts.
    """

    def __init__(self, services=None, secrets=None):
        self.services = list(services or [])
        self.secrets = dict(secrets or {})
        self.list_error: Exception | None = None
        self.fail_open: str | None = None
        self.open_gate: threading.Event | None = None
        self.opening = threading.Event()
        self.open_calls: list[tuple[str, str, int, int]] = []
        self.handles: list[FakeHandle] = []
        self.closed_handles: list[FakeHandle] = []
        self.closed = False

    def list_all_services(self):
        if self.list_error is not None:
            raise self.list_error
        return list(self.services)

    def find_secret_for_service(self, service):
        return self.secrets.get((service.namespace, service.name))

    def open_port_forward(self, namespace, service_name, remote_port, local_port):
        self.open_calls.append((namespace, service_name, remote_port, local_port))
        self.opening.set()
        if self.open_gate is not None:
            self.open_gate.wait(5)
        if self.fail_open:
            raise ClusterCommandError(self.fail_open)
        handle = FakeHandle(local_port)
        self.handles.append(handle)
        return handle

    def close_port_forward(self, handle):
        handle.closed = True
        self.closed_handles.append(handle)

    def close(self):
        self.closed = True


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def advance_minutes(self, minutes: float) -> None:
        self.now += minutes * 60


@pytest.fixture(autouse=True)
def clean_bridge_environment(monkeypatch):
    """Keep KUBE_BRIDGE_* variables from the outer environment out of tests."""
    for name in list(os.environ):
        if name.startswith("KUBE_BRIDGE_"):
            monkeypatch.delenv(name)


@pytest.fixture(autouse=True)
def reset_structlog():
    """Keep structlog configuration from leaking between tests."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def log_capture():
    """Capture structlog events as dicts.

    Returns:
        LogCapture: ``entries`` holds the captured events
    """
    cap = LogCapture()
    structlog.configure(processors=[cap])
    return cap


@pytest.fixture
def fake_client():
    return FakeClusterClient()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryConnectionStore()


@pytest.fixture
def config():
    """Bridge settings with the liveness probe off and a small port range."""
    return BridgeConfig(
        local_port_min=40000,
        local_port_max=40010,
        health_check_enabled=False,
    )


@pytest.fixture
def registry(config):
    """Registry whose port probe treats every port as bindable."""
    return TunnelRegistry(
        port_min=config.local_port_min,
        port_max=config.local_port_max,
        max_tunnels=config.max_tunnels,
        port_probe=lambda port: True,
    )


@pytest.fixture
def client_factory(fake_client):
    factory = Mock(return_value=fake_client)
    return factory


@pytest.fixture
def manager(store, config, client_factory, registry, fake_clock):
    return TunnelManager(
        store,
        config,
        client_factory=client_factory,
        registry=registry,
        clock=fake_clock,
    )


@pytest.fixture
def make_service():
    """Build a ServiceInfo: ``make_service("mysql", "prod", 3306)``."""

    def _make(name, namespace="default", *ports, selector=None):
        return ServiceInfo(
            name=name,
            namespace=namespace,
            ports=[ServicePort(port=p) for p in ports],
            selector=selector or {},
        )

    return _make


@pytest.fixture
def make_secret():
    def _make(name, namespace="default", labels=None, **data):
        return SecretInfo(name=name, namespace=namespace, data=data, labels=labels or {})

    return _make


@pytest.fixture
def make_k8s_connection(store):
    """Persist a k8s connection and return it."""

    def _make(
        service_name="mysql-primary",
        namespace="prod",
        port=3306,
        conn_type="mysql",
        cluster_id=None,
        **fields,
    ):
        return store.create_connection(
            Connection(
                name=f"{namespace}/{service_name}",
                conn_type=conn_type,
                source=ConnectionSource.K8S,
                k8s_namespace=namespace,
                k8s_service_name=service_name,
                k8s_service_port=port,
                cluster_id=cluster_id,
                forward_status=ForwardStatus.PENDING,
                **fields,
            )
        )

    return _make


@pytest.fixture
def leave_time_wait():
    """Leave a TIME_WAIT socket on a local port, as an exited forward does.

    The forward side closes its accepted connection first, so the TIME_WAIT
    entry sits on ``port`` itself.
    """

    def _leave(port=0):
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        listener.bind(("127.0.0.1", port))
        listener.listen(1)
        port = listener.getsockname()[1]

        client = socket.create_connection(("127.0.0.1", port), timeout=2)
        accepted, _ = listener.accept()
        accepted.close()
        client.recv(1)
        client.close()
        listener.close()
        return port

    return _leave
