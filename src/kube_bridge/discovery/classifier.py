"""Recognise middleware services from Service metadata alone.

Classification is deterministic and looks only at the declared ports and the
service name, never at pod images, so it works with the narrow RBAC an
operator typically has (list services, nothing more).

Scoring per supported type:

* +15 when any declared port equals one of the type's canonical ports
* +10 when the lower-cased service name contains one of its name patterns

A type needs at least 15 points to match, so a name hint alone never
classifies a service. The highest score wins; equal scores go to the type
declared first in ``SUPPORTED_MIDDLEWARES``.
"""

from collections.abc import Iterable
from dataclasses import dataclass

from ..cluster.models import ServiceInfo
from .models import SUPPORTED_MIDDLEWARES, MiddlewareType

PORT_MATCH_SCORE = 15
NAME_MATCH_SCORE = 10
MATCH_THRESHOLD = 15


@dataclass(frozen=True)
class Classification:
    """A middleware type together with the score that selected it."""

    middleware: MiddlewareType
    score: int


def score_middleware(
    middleware: MiddlewareType, ports: Iterable[int], service_name: str
) -> int:
    """Score one middleware type against a service's ports and name."""
    name = service_name.lower()
    score = 0
    if any(port in middleware.ports for port in ports):
        score += PORT_MATCH_SCORE
    if any(pattern in name for pattern in middleware.name_patterns):
        score += NAME_MATCH_SCORE
    return score


def classify(
    ports: Iterable[int],
    service_name: str,
    middlewares: tuple[MiddlewareType, ...] = SUPPORTED_MIDDLEWARES,
) -> Classification | None:
    """Return the best-matching middleware type, or None."""
    declared = list(ports)
    best: Classification | None = None

    for middleware in middlewares:
        score = score_middleware(middleware, declared, service_name)
        if score < MATCH_THRESHOLD:
            continue
        # strict comparison keeps the earliest declared type on ties
        if best is None or score > best.score:
            best = Classification(middleware=middleware, score=score)

    return best


def classify_service(service: ServiceInfo) -> Classification | None:
    """Classify a cluster service."""
    return classify(service.port_numbers, service.name)


def service_port_for(service: ServiceInfo, middleware: MiddlewareType) -> int:
    """The service port to forward to: the canonical one, else the first declared."""
    for port in service.port_numbers:
        if port in middleware.ports:
            return port
    if service.ports:
        return service.ports[0].port
    return 0
