"""Cache of driver-level handles keyed by connection id."""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .common.locks import ReadWriteLock
from .common.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Endpoint:
    """Where a driver handle dials: the tunnel's local port for k8s connections."""

    host: str
    port: int
    username: str | None = None
    password: str | None = field(default=None, repr=False)
    database: str | None = None


HandleFactory = Callable[[Endpoint], Any]


def close_handle(handle: Any) -> None:
    """Close a driver handle if it exposes ``close()``."""
    close = getattr(handle, "close", None)
    if callable(close):
        close()


@dataclass
class _Entry:
    endpoint: Endpoint
    handle: Any


class ConnectionPoolCache:
    """Lazily creates and reuses one driver handle per connection.

    A cache hit only takes the shared lock. A miss, or a hit whose endpoint
    changed (the tunnel moved to another local port), takes the exclusive
    lock, closes the stale handle and creates a new one.

    Args:
        factory: Creates a driver handle for an endpoint
        closer: Releases a handle; defaults to calling its ``close()``
    """

    def __init__(self, factory: HandleFactory, closer: Callable[[Any], None] = close_handle):
        self._factory = factory
        self._closer = closer
        self._entries: dict[int, _Entry] = {}
        self._lock = ReadWriteLock()

    def get(self, connection_id: int, endpoint: Endpoint) -> Any:
        """Return the cached handle for ``connection_id``, creating it on a miss."""
        with self._lock.read_locked():
            entry = self._entries.get(connection_id)
            if entry is not None and entry.endpoint == endpoint:
                return entry.handle

        stale = None
        with self._lock.write_locked():
            entry = self._entries.get(connection_id)
            if entry is not None and entry.endpoint == endpoint:
                return entry.handle
            if entry is not None:
                stale = entry.handle

            handle = self._factory(endpoint)
            self._entries[connection_id] = _Entry(endpoint=endpoint, handle=handle)

        if stale is not None:
            self._close(connection_id, stale)
        logger.debug(
            "Created pooled handle",
            connection_id=connection_id,
            host=endpoint.host,
            port=endpoint.port,
        )
        return handle

    def invalidate(self, connection_id: int) -> bool:
        """Drop and close the handle for a connection; True if one was cached."""
        with self._lock.write_locked():
            entry = self._entries.pop(connection_id, None)
        if entry is None:
            return False
        self._close(connection_id, entry.handle)
        return True

    def close_all(self) -> None:
        with self._lock.write_locked():
            entries = list(self._entries.items())
            self._entries.clear()
        for connection_id, entry in entries:
            self._close(connection_id, entry.handle)

    def __contains__(self, connection_id: int) -> bool:
        with self._lock.read_locked():
            return connection_id in self._entries

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._entries)

    def _close(self, connection_id: int, handle: Any) -> None:
        try:
            self._closer(handle)
        except Exception as e:
            logger.warning("Failed to close pooled handle", connection_id=connection_id, error=str(e))
