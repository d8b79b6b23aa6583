"""Tests for the discovery engine."""

from unittest.mock import patch

import pytest

from kube_bridge.common.exceptions import ClusterCommandError
from kube_bridge.discovery.engine import DiscoveryEngine, existing_identity_keys
from kube_bridge.store.models import Connection


@pytest.fixture
def engine():
    return DiscoveryEngine()


class TestDiscover:
    """Discovery over a fake cluster."""

    def test_mysql_with_secret(self, engine, fake_client, make_service, make_secret):
        fake_client.services = [make_service("mysql-primary", "prod", 3306)]
        fake_client.secrets = {
            ("prod", "mysql-primary"): make_secret(
                "mysql-primary-secret", "prod", MYSQL_ROOT_PASSWORD="abc123"
            )
        }

        [service] = engine.discover(fake_client)

        assert service.name == "mysql-primary"
        assert service.service_type == "mysql"
        assert service.namespace == "prod"
        assert service.host == "mysql-primary.prod.svc.cluster.local"
        assert service.port == 3306
        assert service.username == "root"
        assert service.password == "abc123"
        assert service.database is None
        assert service.has_credentials is True
        assert service.service_name == "mysql-primary"

    def test_without_secret(self, engine, fake_client, make_service):
        fake_client.services = [make_service("redis-master", "cache", 6379)]

        [service] = engine.discover(fake_client)

        assert service.service_type == "redis"
        assert service.username is None
        assert service.password is None
        assert service.has_credentials is False

    def test_secret_without_password(self, engine, fake_client, make_service, make_secret):
        fake_client.services = [make_service("pg", "db", 5432)]
        fake_client.secrets = {("db", "pg"): make_secret("pg-secret", "db", POSTGRES_DB="app")}

        [service] = engine.discover(fake_client)

        assert service.username == "postgres"
        assert service.database == "app"
        assert service.has_credentials is False

    def test_skips_unrecognised_services(self, engine, fake_client, make_service):
        fake_client.services = [
            make_service("web", "prod", 80),
            make_service("mysql-exporter", "prod", 9104),
            make_service("orders-db", "prod", 5432),
        ]

        discovered = engine.discover(fake_client)

        assert [s.name for s in discovered] == ["orders-db"]

    def test_skips_excluded_namespaces(self, engine, fake_client, make_service):
        fake_client.services = [
            make_service("etcd-redis", "kube-system", 6379),
            make_service("redis", "cache", 6379),
        ]

        discovered = engine.discover(fake_client)

        assert [s.namespace for s in discovered] == ["cache"]

    def test_custom_exclusions(self, fake_client, make_service):
        fake_client.services = [
            make_service("redis", "kube-system", 6379),
            make_service("redis", "monitoring", 6379),
        ]

        discovered = DiscoveryEngine(excluded_namespaces=["monitoring"]).discover(fake_client)

        assert [s.namespace for s in discovered] == ["kube-system"]

    def test_skips_known_identity_keys(self, engine, fake_client, make_service):
        fake_client.services = [
            make_service("mysql", "prod", 3306),
            make_service("mysql", "staging", 3306),
        ]

        discovered = engine.discover(fake_client, known_keys={("prod", "mysql")})

        assert [s.identity_key for s in discovered] == [("staging", "mysql")]

    def test_preserves_listing_order(self, engine, fake_client, make_service):
        fake_client.services = [
            make_service("minio", "storage", 9000),
            make_service("mongo", "data", 27017),
            make_service("mysql", "prod", 3306),
        ]

        discovered = engine.discover(fake_client)

        assert [s.service_type for s in discovered] == ["minio", "mongodb", "mysql"]

    def test_list_failure_propagates(self, engine, fake_client):
        fake_client.list_error = ClusterCommandError("Unauthorized")

        with pytest.raises(ClusterCommandError):
            engine.discover(fake_client)

    def test_inspection_failure_skips_service(
        self, engine, fake_client, make_service, log_capture
    ):
        fake_client.services = [
            make_service("mysql", "prod", 3306),
            make_service("redis", "cache", 6379),
        ]
        original = fake_client.find_secret_for_service

        def flaky(service):
            if service.name == "mysql":
                raise ClusterCommandError("connection reset")
            return original(service)

        with patch.object(fake_client, "find_secret_for_service", side_effect=flaky):
            discovered = engine.discover(fake_client)

        assert [s.name for s in discovered] == ["redis"]
        warnings = [e for e in log_capture.entries if e["log_level"] == "warning"]
        assert warnings[0]["event"] == "Failed to inspect service"
        assert warnings[0]["service"] == "mysql"

    def test_password_not_logged(self, engine, fake_client, make_service, make_secret, log_capture):
        fake_client.services = [make_service("mysql", "prod", 3306)]
        fake_client.secrets = {("prod", "mysql"): make_secret("mysql", "prod", password="hunter2")}

        engine.discover(fake_client)

        assert "hunter2" not in repr(log_capture.entries)


class TestExistingIdentityKeys:
    def test_only_k8s_connections(self, store, make_k8s_connection):
        make_k8s_connection("mysql-primary", "prod")
        make_k8s_connection("redis", "cache", 6379, "redis")
        store.create_connection(Connection(name="local", conn_type="mysql"))

        assert existing_identity_keys(store) == {("prod", "mysql-primary"), ("cache", "redis")}
