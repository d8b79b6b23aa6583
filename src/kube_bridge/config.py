"""Runtime configuration for the bridge."""

from typing import Annotated, Any

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .common.exceptions import ConfigurationError

ENV_PREFIX = "KUBE_BRIDGE_"

DEFAULT_EXCLUDED_NAMESPACES = [
    "kube-system",
    "kube-public",
    "kube-node-lease",
    "ingress-nginx",
    "metallb-system",
    "cert-manager",
]


class BridgeConfig(BaseSettings):
    """Settings for discovery, tunnel allocation and idle supervision.

    Every field can be set through a ``KUBE_BRIDGE_<FIELD>`` environment
    variable; list fields take comma separated values.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        str_strip_whitespace=True,
        validate_assignment=True,
        extra="forbid",
    )

    kubectl_path: str = Field(default="kubectl", min_length=1, description="kubectl binary")

    local_port_min: int = Field(
        default=40000, ge=1024, le=65535, description="First port the allocator hands out"
    )
    local_port_max: int = Field(
        default=50000, ge=1024, le=65535, description="Last port the allocator hands out"
    )

    idle_timeout_minutes: float = Field(
        default=15, gt=0, description="Inactivity before a tunnel is marked idle"
    )
    stop_timeout_minutes: float = Field(
        default=30, gt=0, description="Inactivity before a tunnel is stopped"
    )
    monitor_interval_seconds: float = Field(
        default=30, ge=1, le=3600, description="Idle monitor tick"
    )
    connect_timeout_seconds: float = Field(
        default=10.0, gt=0, le=120, description="Wait for a new forward to accept connections"
    )
    health_check_enabled: bool = Field(
        default=True, description="Probe forwards for transport failures"
    )

    excluded_namespaces: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_NAMESPACES),
        description="Namespaces skipped by discovery",
    )
    max_tunnels: int = Field(default=100, ge=1, le=1000, description="Registry capacity")

    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    log_json: bool = False

    @field_validator("excluded_namespaces", mode="before")
    @classmethod
    def split_comma_separated(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @model_validator(mode="after")
    def validate_ranges(self) -> "BridgeConfig":
        """Keep the port range and the two idle thresholds ordered."""
        if self.local_port_min >= self.local_port_max:
            raise ValueError("local_port_min must be lower than local_port_max")
        if self.stop_timeout_minutes <= self.idle_timeout_minutes:
            raise ValueError(
                "stop_timeout_minutes must be greater than idle_timeout_minutes"
            )
        return self

    @property
    def idle_timeout_seconds(self) -> float:
        return self.idle_timeout_minutes * 60

    @property
    def stop_timeout_seconds(self) -> float:
        return self.stop_timeout_minutes * 60

    @classmethod
    def from_env(cls, **overrides: Any) -> "BridgeConfig":
        """Build settings from the environment.

        Keyword overrides win over the environment.

        Raises:
            ConfigurationError: If a value does not validate
        """
        try:
            return cls(**overrides)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid bridge configuration: {e}") from e
