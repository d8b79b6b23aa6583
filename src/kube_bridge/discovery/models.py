"""Middleware catalogue and discovery result models."""

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field, model_validator


@dataclass(frozen=True)
class MiddlewareType:
    """A database/storage kind discovery knows how to recognise."""

    name: str
    ports: tuple[int, ...]
    name_patterns: tuple[str, ...]
    default_username: str = ""


# Declaration order is the classifier's tie-break: earlier entries win.
SUPPORTED_MIDDLEWARES: tuple[MiddlewareType, ...] = (
    MiddlewareType(
        name="mysql",
        ports=(3306,),
        name_patterns=("mysql", "mariadb"),
        default_username="root",
    ),
    MiddlewareType(
        name="postgresql",
        ports=(5432,),
        name_patterns=("postgres", "postgresql", "pg"),
        default_username="postgres",
    ),
    MiddlewareType(
        name="redis",
        ports=(6379,),
        name_patterns=("redis",),
    ),
    MiddlewareType(
        name="mongodb",
        ports=(27017,),
        name_patterns=("mongo", "mongodb"),
        default_username="root",
    ),
    MiddlewareType(
        name="minio",
        ports=(9000,),
        name_patterns=("minio",),
    ),
)

MIDDLEWARES_BY_NAME: dict[str, MiddlewareType] = {m.name: m for m in SUPPORTED_MIDDLEWARES}


class DiscoveredService(BaseModel):
    """A candidate database instance found in a cluster, not yet persisted.

    ``service_name`` is the Kubernetes service name used for forwarding; it
    defaults to ``name``. ``(namespace, service_name)`` is the identity key.
    """

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    name: str = Field(min_length=1)
    service_type: str = Field(alias="type", min_length=1)
    namespace: str = Field(min_length=1)
    host: str = Field(min_length=1)
    port: int = Field(ge=1, le=65535)
    username: str | None = None
    password: str | None = Field(default=None, repr=False)
    database: str | None = None
    has_credentials: bool = False
    service_name: str = ""

    @model_validator(mode="after")
    def default_service_name(self) -> "DiscoveredService":
        if not self.service_name:
            self.service_name = self.name
        return self

    @property
    def identity_key(self) -> tuple[str, str]:
        return (self.namespace, self.service_name)
