"""Middleware discovery and the import/merge pipeline."""

from .classifier import Classification, classify, classify_service, score_middleware
from .credentials import Credentials, extract_credentials
from .engine import DiscoveryEngine, existing_identity_keys
from .importer import ImportItemResult, ImportPipeline, ImportResult
from .models import SUPPORTED_MIDDLEWARES, DiscoveredService, MiddlewareType

__all__ = [
    "Classification",
    "classify",
    "classify_service",
    "score_middleware",
    "Credentials",
    "extract_credentials",
    "DiscoveryEngine",
    "existing_identity_keys",
    "ImportItemResult",
    "ImportPipeline",
    "ImportResult",
    "SUPPORTED_MIDDLEWARES",
    "DiscoveredService",
    "MiddlewareType",
]
