"""Tests for the in-memory connection store and its records."""

import threading

import pytest
from pydantic import ValidationError

from kube_bridge.common.exceptions import (
    ClusterNotFoundError,
    ConnectionNotFoundError,
    DuplicateConnectionError,
    StoreError,
)
from kube_bridge.store.models import (
    Cluster,
    Connection,
    ConnectionSource,
    ForwardStatus,
)


class TestConnectionModel:
    def test_type_alias(self):
        connection = Connection.model_validate({"name": "local-db", "type": "postgresql"})
        assert connection.conn_type == "postgresql"
        assert connection.source == ConnectionSource.LOCAL
        assert connection.identity_key is None
        assert connection.cluster_host is None

    def test_k8s_requires_identity(self):
        with pytest.raises(ValidationError, match="k8s_namespace and k8s_service_name"):
            Connection(name="x", conn_type="mysql", source=ConnectionSource.K8S)

    def test_k8s_identity_and_dns(self):
        connection = Connection(
            name="prod/mysql-primary",
            conn_type="mysql",
            source=ConnectionSource.K8S,
            k8s_namespace="prod",
            k8s_service_name="mysql-primary",
            k8s_service_port=3306,
        )
        assert connection.identity_key == ("prod", "mysql-primary")
        assert connection.cluster_host == "mysql-primary.prod.svc.cluster.local"

    def test_password_hidden_from_repr(self):
        connection = Connection(name="db", conn_type="mysql", password="hunter2")
        assert "hunter2" not in repr(connection)


class TestConnections:
    def test_create_assigns_id_and_timestamps(self, store):
        created = store.create_connection(Connection(name="db", conn_type="mysql"))

        assert created.id == 1
        assert created.created_at is not None
        assert store.get_connection(1).name == "db"

    def test_returns_copies(self, store):
        created = store.create_connection(Connection(name="db", conn_type="mysql"))
        created.name = "renamed"

        assert store.get_connection(created.id).name == "db"

    def test_duplicate_explicit_id_rejected(self, store):
        store.create_connection(Connection(id=7, name="a", conn_type="redis"))
        with pytest.raises(StoreError, match="already exists"):
            store.create_connection(Connection(id=7, name="b", conn_type="redis"))

    def test_generated_ids_skip_explicit_ones(self, store):
        store.create_connection(Connection(id=1, name="a", conn_type="redis"))
        created = store.create_connection(Connection(name="b", conn_type="redis"))
        assert created.id == 2

    def test_missing_connection(self, store):
        with pytest.raises(ConnectionNotFoundError):
            store.get_connection(99)

    def test_update_keeps_created_at(self, store):
        created = store.create_connection(Connection(name="db", conn_type="mysql"))
        created.username = "app"

        updated = store.update_connection(created)

        assert updated.username == "app"
        assert updated.created_at == created.created_at
        assert updated.updated_at >= created.updated_at

    def test_update_unknown_connection(self, store):
        with pytest.raises(ConnectionNotFoundError):
            store.update_connection(Connection(id=5, name="db", conn_type="mysql"))

    def test_find_k8s_connection(self, store, make_k8s_connection):
        make_k8s_connection("redis-master", "cache", 6379, "redis")
        store.create_connection(Connection(name="cache/redis-master", conn_type="redis"))

        found = store.find_k8s_connection("cache", "redis-master")

        assert found is not None
        assert found.is_k8s
        assert store.find_k8s_connection("prod", "redis-master") is None

    def test_duplicate_identity_rejected(self, store, make_k8s_connection):
        first = make_k8s_connection()

        with pytest.raises(DuplicateConnectionError) as exc_info:
            make_k8s_connection()

        assert exc_info.value.existing_id == first.id
        assert len(store.list_connections()) == 1

    def test_local_connections_may_share_names(self, store):
        store.create_connection(Connection(name="db", conn_type="mysql"))
        store.create_connection(Connection(name="db", conn_type="mysql"))
        assert len(store.list_connections()) == 2

    def test_list_connections(self, store):
        store.create_connection(Connection(name="a", conn_type="mysql"))
        store.create_connection(Connection(name="b", conn_type="redis"))
        assert [c.name for c in store.list_connections()] == ["a", "b"]

    def test_concurrent_creates_get_unique_ids(self, store):
        def create(n):
            store.create_connection(Connection(name=f"db-{n}", conn_type="mysql"))

        threads = [threading.Thread(target=create, args=(n,)) for n in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        ids = [c.id for c in store.list_connections()]
        assert len(set(ids)) == 20


class TestForwardState:
    def test_local_port_points_at_localhost(self, store, make_k8s_connection):
        connection = make_k8s_connection()

        updated = store.update_forward_state(connection.id, "fwd-1", 40001, ForwardStatus.ACTIVE)

        assert (updated.host, updated.port) == ("localhost", 40001)
        assert updated.forward_id == "fwd-1"
        assert updated.forward_local_port == 40001
        assert updated.forward_status == ForwardStatus.ACTIVE

    def test_without_port_reverts_to_cluster_dns(self, store, make_k8s_connection):
        connection = make_k8s_connection()
        store.update_forward_state(connection.id, "fwd-1", 40001, ForwardStatus.ACTIVE)

        updated = store.update_forward_state(connection.id, None, None, ForwardStatus.PENDING)

        assert updated.host == "mysql-primary.prod.svc.cluster.local"
        assert updated.port == 3306
        assert updated.forward_id is None
        assert updated.forward_local_port is None

    def test_unknown_connection(self, store):
        with pytest.raises(ConnectionNotFoundError):
            store.update_forward_state(3, None, None, None)


class TestClusters:
    def test_create_and_lookup(self, store):
        cluster = store.create_cluster(Cluster(name="staging", context="staging"))

        assert cluster.id == 1
        assert store.get_cluster(1).context == "staging"
        assert store.get_cluster_by_name("staging").id == 1
        assert store.get_cluster_by_name("prod") is None

    def test_duplicate_name_rejected(self, store):
        store.create_cluster(Cluster(name="staging"))
        with pytest.raises(StoreError, match="already exists"):
            store.create_cluster(Cluster(name="staging"))

    def test_missing_cluster(self, store):
        with pytest.raises(ClusterNotFoundError):
            store.get_cluster(4)

    def test_kubeconfig_hidden_from_repr(self):
        cluster = Cluster(name="staging", kubeconfig="token: abc")
        assert "token" not in repr(cluster)
