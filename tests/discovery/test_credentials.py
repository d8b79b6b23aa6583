"""Tests for credential extraction from secret data."""

from kube_bridge.discovery.credentials import (
    Credentials,
    default_username,
    extract_credentials,
    password_keys,
    username_keys,
)


class TestExtractCredentials:
    def test_mysql_root_password(self):
        credentials = extract_credentials({"MYSQL_ROOT_PASSWORD": "abc123"}, "mysql")
        assert credentials == Credentials(username="root", password="abc123", database="")
        assert credentials.has_password

    def test_generic_keys(self):
        credentials = extract_credentials(
            {"username": "app", "password": "s3cret", "database": "orders"}, "postgresql"
        )
        assert credentials == Credentials("app", "s3cret", "orders")

    def test_type_prefixed_keys(self):
        credentials = extract_credentials(
            {"POSTGRESQL_USER": "svc", "POSTGRESQL_PASSWORD": "pw", "POSTGRES_DB": "main"},
            "postgresql",
        )
        assert credentials == Credentials("svc", "pw", "main")

    def test_generic_key_wins_over_prefixed(self):
        credentials = extract_credentials(
            {"MYSQL_ROOT_PASSWORD": "root-pw", "password": "app-pw"}, "mysql"
        )
        assert credentials.password == "app-pw"

    def test_empty_values_are_skipped(self):
        credentials = extract_credentials({"password": "", "PASSWORD": "fallback"}, "redis")
        assert credentials.password == "fallback"

    def test_redis_has_no_default_username(self):
        credentials = extract_credentials({"redis-password": "x", "REDIS_PASSWORD": "pw"}, "redis")
        assert credentials.username == ""
        assert credentials.password == "pw"

    def test_empty_secret(self):
        credentials = extract_credentials({}, "postgresql")
        assert credentials == Credentials(username="postgres")
        assert not credentials.has_password

    def test_unknown_type(self):
        credentials = extract_credentials({"user": "admin"}, "cassandra")
        assert credentials.username == "admin"
        assert credentials.password == ""


class TestKeyLists:
    def test_username_keys_include_prefixed(self):
        assert username_keys("mongodb")[-2:] == ["MONGODB_USER", "MONGODB_USERNAME"]

    def test_password_keys_order(self):
        keys = password_keys("mysql")
        assert keys[:4] == ["password", "PASSWORD", "MYSQL_PASSWORD", "MYSQL_ROOT_PASSWORD"]

    def test_default_usernames(self):
        assert default_username("mysql") == "root"
        assert default_username("postgresql") == "postgres"
        assert default_username("mongodb") == "root"
        assert default_username("minio") == ""
        assert default_username("unknown") == ""
