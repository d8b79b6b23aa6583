"""Best-effort extraction of login material from decoded secret data."""

from collections.abc import Mapping
from dataclasses import dataclass

from .models import MIDDLEWARES_BY_NAME


@dataclass(frozen=True)
class Credentials:
    """Username, password and database found in a secret.

    Missing values are empty strings; ``has_password`` tells the caller
    whether the operator needs to be prompted.
    """

    username: str = ""
    password: str = ""
    database: str = ""

    @property
    def has_password(self) -> bool:
        return bool(self.password)


def username_keys(middleware_type: str) -> list[str]:
    prefix = middleware_type.upper()
    return ["username", "user", "USER", "USERNAME", f"{prefix}_USER", f"{prefix}_USERNAME"]


def password_keys(middleware_type: str) -> list[str]:
    prefix = middleware_type.upper()
    return [
        "password",
        "PASSWORD",
        f"{prefix}_PASSWORD",
        f"{prefix}_ROOT_PASSWORD",
        "REDIS_PASSWORD",
        "MYSQL_ROOT_PASSWORD",
        "POSTGRES_PASSWORD",
        "MONGODB_ROOT_PASSWORD",
    ]


def database_keys(middleware_type: str) -> list[str]:
    prefix = middleware_type.upper()
    return [
        "database",
        "DATABASE",
        "db",
        "DB",
        f"{prefix}_DATABASE",
        "MYSQL_DATABASE",
        "POSTGRES_DB",
        "MONGODB_DATABASE",
    ]


def default_username(middleware_type: str) -> str:
    """Username assumed when a secret does not name one."""
    middleware = MIDDLEWARES_BY_NAME.get(middleware_type)
    return middleware.default_username if middleware else ""


def _first_present(data: Mapping[str, str], keys: list[str]) -> str:
    for key in keys:
        value = data.get(key)
        if value:
            return value
    return ""


def extract_credentials(data: Mapping[str, str], middleware_type: str) -> Credentials:
    """Pull username, password and database out of secret data.

    Each field takes the first non-empty value among an ordered list of
    candidate keys. Never raises: an empty mapping yields only the
    type-specific default username.

    Args:
        data: Secret key/value pairs, already base64-decoded
        middleware_type: Classified type name, e.g. ``"mysql"``

    Returns:
        Extracted Credentials
    """
    username = _first_present(data, username_keys(middleware_type))
    if not username:
        username = default_username(middleware_type)

    return Credentials(
        username=username,
        password=_first_present(data, password_keys(middleware_type)),
        database=_first_present(data, database_keys(middleware_type)),
    )
