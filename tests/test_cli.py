"""Tests for the kube-bridge command line."""

import json
from contextlib import contextmanager
from unittest.mock import Mock, patch

import pytest
from click.testing import CliRunner
from rich.console import Console

from kube_bridge import __version__
from kube_bridge.cli import main
from kube_bridge.common.exceptions import ClusterCommandError
from kube_bridge.discovery.models import DiscoveredService
from kube_bridge.tunnels.models import Tunnel, TunnelStatus

KUBECONFIG = """
apiVersion: v1
kind: Config
contexts:
  - name: staging
    context: {cluster: staging, user: dev}
"""


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def no_logging_setup():
    with patch("kube_bridge.cli.setup_logging") as setup:
        yield setup


@pytest.fixture
def services():
    return [
        DiscoveredService(
            name="mysql",
            service_type="mysql",
            namespace="prod",
            host="mysql.prod.svc.cluster.local",
            port=3306,
            username="root",
            password="abc123456",
            has_credentials=True,
        )
    ]


@pytest.fixture
def bridge_cls(services):
    with patch("kube_bridge.cli.BridgeService") as cls:
        cls.return_value.discover.return_value = services
        yield cls


class TestMain:
    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_verbose_sets_debug(self, runner, bridge_cls, no_logging_setup):
        runner.invoke(main, ["-v", "discover"])
        assert no_logging_setup.call_args.kwargs["level"] == "DEBUG"

    def test_invalid_environment(self, runner):
        result = runner.invoke(
            main, ["discover"], env={"KUBE_BRIDGE_MAX_TUNNELS": "lots"}
        )
        assert result.exit_code == 1
        assert "Invalid bridge configuration" in result.output


class TestDiscoverCommand:
    def test_table_masks_passwords(self, runner, bridge_cls):
        with patch("kube_bridge.cli.console", Console(width=200)):
            result = runner.invoke(main, ["discover"])

        assert result.exit_code == 0
        assert "prod" in result.output
        assert "mysql" in result.output
        assert "abc123456" not in result.output
        assert "*****3456" in result.output
        bridge_cls.return_value.discover.assert_called_once_with(None, None)

    def test_json_output(self, runner, bridge_cls):
        result = runner.invoke(main, ["discover", "--json"])

        payload = json.loads(result.output)
        assert payload[0]["type"] == "mysql"
        assert payload[0]["password"] == "*****3456"
        assert payload[0]["has_credentials"] is True
        assert payload[0]["username"] == "root"

    def test_json_keeps_missing_password_null(self, runner, bridge_cls, services):
        bridge_cls.return_value.discover.return_value = [
            services[0].model_copy(update={"password": None, "has_credentials": False})
        ]

        result = runner.invoke(main, ["discover", "--json"])

        assert json.loads(result.output)[0]["password"] is None

    def test_show_secrets(self, runner, bridge_cls):
        result = runner.invoke(main, ["discover", "--json", "--show-secrets"])
        assert json.loads(result.output)[0]["password"] == "abc123456"

    def test_reads_kubeconfig_file(self, runner, bridge_cls, tmp_path):
        path = tmp_path / "config"
        path.write_text(KUBECONFIG)

        runner.invoke(main, ["discover", "--kubeconfig", str(path), "--context", "staging"])

        bridge_cls.return_value.discover.assert_called_once_with(KUBECONFIG, "staging")

    def test_nothing_found(self, runner, bridge_cls):
        bridge_cls.return_value.discover.return_value = []
        result = runner.invoke(main, ["discover"])
        assert "No middleware services found" in result.output

    def test_cluster_error(self, runner, bridge_cls):
        bridge_cls.return_value.discover.side_effect = ClusterCommandError("Unauthorized")

        result = runner.invoke(main, ["discover"])

        assert result.exit_code == 1
        assert "Unauthorized" in result.output


class TestClustersCommand:
    def test_lists_contexts(self, runner, tmp_path):
        path = tmp_path / "config"
        path.write_text(KUBECONFIG)

        result = runner.invoke(main, ["clusters", "--kubeconfig", str(path)])

        assert result.exit_code == 0
        assert result.output.splitlines() == ["staging"]

    def test_invalid_kubeconfig(self, runner, tmp_path):
        path = tmp_path / "config"
        path.write_text("- not\n- a mapping\n")

        result = runner.invoke(main, ["clusters", "--kubeconfig", str(path)])

        assert result.exit_code == 1
        assert "not a mapping" in result.output


class TestForwardCommand:
    @pytest.fixture
    def bridge(self):
        return Mock()

    @pytest.fixture
    def managed(self, bridge):
        calls = []

        @contextmanager
        def fake_managed_bridge(**kwargs):
            calls.append(kwargs)
            yield bridge

        with patch("kube_bridge.cli.managed_bridge", fake_managed_bridge):
            yield calls

    def make_tunnel(self, status=TunnelStatus.ACTIVE, error=None):
        return Tunnel(
            id="t-1",
            connection_id=1,
            namespace="prod",
            service_name="mysql",
            remote_port=3306,
            local_port=40000,
            status=status,
            error=error,
        )

    def test_forwards_until_interrupted(self, runner, bridge, managed):
        bridge.create_forward.return_value = self.make_tunnel()

        with patch("kube_bridge.cli.time.sleep", side_effect=KeyboardInterrupt):
            result = runner.invoke(main, ["forward", "prod", "mysql", "3306"])

        assert result.exit_code == 0
        assert "127.0.0.1:40000" in result.output
        assert "Stopping" in result.output

        store = managed[0]["store"]
        [connection] = store.list_connections()
        assert connection.conn_type == "mysql"
        assert connection.identity_key == ("prod", "mysql")
        assert connection.k8s_service_port == 3306
        bridge.create_forward.assert_called_once_with(connection.id, None)

    def test_unknown_service_type_is_tcp(self, runner, bridge, managed):
        bridge.create_forward.return_value = self.make_tunnel()

        with patch("kube_bridge.cli.time.sleep", side_effect=KeyboardInterrupt):
            runner.invoke(main, ["forward", "web", "frontend", "8080", "--local-port", "18080"])

        [connection] = managed[0]["store"].list_connections()
        assert connection.conn_type == "tcp"
        bridge.create_forward.assert_called_once_with(connection.id, 18080)

    def test_tunnel_closed_by_monitor(self, runner, bridge, managed):
        bridge.create_forward.return_value = self.make_tunnel()
        bridge.tunnels.get_by_connection.return_value = None

        with patch("kube_bridge.cli.time.sleep"):
            result = runner.invoke(main, ["forward", "prod", "mysql", "3306"])

        assert result.exit_code == 0
        assert "closed by the idle monitor" in result.output

    def test_failed_tunnel(self, runner, bridge, managed):
        bridge.create_forward.return_value = self.make_tunnel(
            TunnelStatus.ERROR, 'services "mysql" not found'
        )

        result = runner.invoke(main, ["forward", "prod", "mysql", "3306"])

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_context_creates_cluster(self, runner, bridge, managed, tmp_path):
        path = tmp_path / "config"
        path.write_text(KUBECONFIG)
        bridge.create_forward.return_value = self.make_tunnel()

        with patch("kube_bridge.cli.time.sleep", side_effect=KeyboardInterrupt):
            runner.invoke(
                main,
                ["forward", "prod", "mysql", "3306", "--kubeconfig", str(path), "--context", "staging"],
            )

        store = managed[0]["store"]
        cluster = store.get_cluster_by_name("staging")
        assert cluster.kubeconfig == KUBECONFIG
        assert store.list_connections()[0].cluster_id == cluster.id

    def test_invalid_port(self, runner):
        result = runner.invoke(main, ["forward", "prod", "mysql", "70000"])
        assert result.exit_code == 2
