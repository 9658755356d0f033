"""
Process-wide cache of catalog display metadata.

Lazily populated on first use and refreshed once the TTL has elapsed. The
metadata rarely changes, so expiry is the only invalidation path.
"""

import asyncio
import time
from collections.abc import Callable

import structlog

from healthmetrics.domain.models import CatalogEntry
from healthmetrics.services.sources import CatalogMetadataStore

logger = structlog.get_logger(__name__)


class CatalogMetadataCache:
    def __init__(
        self,
        store: CatalogMetadataStore,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CatalogEntry] | None = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()
        self.logger = logger.bind(component="catalog_metadata_cache")

    @property
    def is_fresh(self) -> bool:
        return self._entries is not None and self._clock() < self._expires_at

    async def get(self) -> dict[str, CatalogEntry]:
        """Cached metadata, loading from the store on a miss or after expiry."""
        if self.is_fresh:
            return self._entries  # type: ignore[return-value]

        # Concurrent misses wait for the first loader instead of hitting the store again
        async with self._lock:
            if self.is_fresh:
                return self._entries  # type: ignore[return-value]

            entries = await self.store.load_catalog_metadata()
            self._entries = entries
            self._expires_at = self._clock() + self.ttl_seconds
            self.logger.info("catalog_metadata_loaded", entries=len(entries))
            return entries

    def clear(self) -> None:
        self._entries = None
        self._expires_at = 0.0
