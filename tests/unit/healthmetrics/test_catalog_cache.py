"""Tests for the catalog metadata TTL cache."""

from __future__ import annotations

import asyncio

import pytest

from healthmetrics.domain.models import CatalogEntry
from healthmetrics.services.catalog_cache import CatalogMetadataCache
from healthmetrics.services.sources import StaticCatalogMetadataStore


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class _SlowStore(StaticCatalogMetadataStore):
    async def load_catalog_metadata(self) -> dict[str, CatalogEntry]:
        await asyncio.sleep(0.01)
        return await super().load_catalog_metadata()


@pytest.fixture
def store() -> StaticCatalogMetadataStore:
    return StaticCatalogMetadataStore({"hdl": CatalogEntry(display_name="HDL Cholesterol")})


async def test_first_get_loads_then_serves_from_cache(store: StaticCatalogMetadataStore) -> None:
    cache = CatalogMetadataCache(store, ttl_seconds=60, clock=_Clock())

    first = await cache.get()
    second = await cache.get()

    assert first["hdl"].display_name == "HDL Cholesterol"
    assert second is first
    assert store.load_count == 1


async def test_entries_reload_after_ttl(store: StaticCatalogMetadataStore) -> None:
    clock = _Clock()
    cache = CatalogMetadataCache(store, ttl_seconds=60, clock=clock)

    await cache.get()
    clock.now += 59
    await cache.get()
    assert store.load_count == 1

    clock.now += 2
    assert not cache.is_fresh
    await cache.get()
    assert store.load_count == 2


async def test_clear_forces_reload(store: StaticCatalogMetadataStore) -> None:
    cache = CatalogMetadataCache(store, clock=_Clock())

    await cache.get()
    cache.clear()
    await cache.get()

    assert store.load_count == 2


async def test_concurrent_misses_load_once() -> None:
    store = _SlowStore({"tg": CatalogEntry(display_name="Triglycerides")})
    cache = CatalogMetadataCache(store, ttl_seconds=60)

    results = await asyncio.gather(*(cache.get() for _ in range(5)))

    assert store.load_count == 1
    assert all(r["tg"].display_name == "Triglycerides" for r in results)


def test_ttl_must_be_positive(store: StaticCatalogMetadataStore) -> None:
    with pytest.raises(ValueError, match="positive"):
        CatalogMetadataCache(store, ttl_seconds=0)
