"""Cluster object models parsed from kubectl JSON output."""

import base64
import binascii
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ServicePort(BaseModel):
    """A single port declared on a Service."""

    model_config = ConfigDict(frozen=True)

    port: int = Field(ge=1, le=65535)
    name: str = ""
    protocol: str = "TCP"


class ServiceInfo(BaseModel):
    """The subset of a Service object discovery works from."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    namespace: str = Field(min_length=1)
    ports: list[ServicePort] = Field(default_factory=list)
    selector: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)

    @property
    def port_numbers(self) -> list[int]:
        return [p.port for p in self.ports]

    @classmethod
    def from_manifest(cls, item: dict[str, Any]) -> "ServiceInfo":
        """Build from one entry of ``kubectl get services -o json``."""
        metadata = item.get("metadata", {})
        spec = item.get("spec", {})
        return cls(
            name=metadata["name"],
            namespace=metadata.get("namespace", "default"),
            ports=[
                ServicePort(
                    port=p["port"],
                    name=p.get("name", ""),
                    protocol=p.get("protocol", "TCP"),
                )
                for p in spec.get("ports") or []
            ],
            selector=spec.get("selector") or {},
            labels=metadata.get("labels") or {},
        )


class SecretInfo(BaseModel):
    """A Secret with its values already decoded."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    namespace: str = Field(min_length=1)
    data: dict[str, str] = Field(default_factory=dict, repr=False)
    labels: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_manifest(cls, item: dict[str, Any]) -> "SecretInfo":
        """Build from one entry of ``kubectl get secrets -o json``.

        Values that are not valid base64 are skipped; ``stringData`` entries
        are taken as-is.
        """
        metadata = item.get("metadata", {})
        data: dict[str, str] = {}
        for key, encoded in (item.get("data") or {}).items():
            try:
                data[key] = base64.b64decode(encoded).decode("utf-8", errors="replace")
            except (binascii.Error, TypeError):
                continue
        for key, value in (item.get("stringData") or {}).items():
            data[key] = str(value)
        return cls(
            name=metadata["name"],
            namespace=metadata.get("namespace", "default"),
            data=data,
            labels=metadata.get("labels") or {},
        )
