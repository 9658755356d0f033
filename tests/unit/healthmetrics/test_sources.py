"""Tests for the Result type and the in-memory collaborators."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from healthmetrics.domain.models import CatalogEntry, MeasurementPoint
from healthmetrics.services.sources import (
    InMemoryMeasurementSource,
    Result,
    StaticCatalogMetadataStore,
)


class TestResult:
    """Test the Result type for explicit error handling."""

    def test_result_ok_creates_successful_result(self) -> None:
        result: Result[list[int], Exception] = Result.ok([1])
        assert result.is_ok()
        assert not result.is_err()
        assert result.unwrap() == [1]

    def test_empty_list_is_a_valid_value(self) -> None:
        result: Result[list[int], Exception] = Result.ok([])

        assert result.is_ok()
        assert result.unwrap() == []

    def test_result_error_creates_failed_result(self) -> None:
        error = ValueError("test error")
        result: Result[str, ValueError] = Result.err(error)
        assert result.is_err()
        assert result.unwrap_or("default") == "default"
        assert result.unwrap_err() is error

    def test_unwrap_raises_on_error_result(self) -> None:
        result: Result[str, ValueError] = Result.err(ValueError("test error"))

        with pytest.raises(ValueError, match="test error"):
            result.unwrap()

    def test_unwrap_err_on_ok_raises(self) -> None:
        with pytest.raises(ValueError, match="Ok value"):
            Result.ok("x").unwrap_err()

    def test_requires_exactly_one_side(self) -> None:
        with pytest.raises(ValueError, match="either value or error"):
            Result()
        with pytest.raises(ValueError, match="both"):
            Result(value=1, error=ValueError("x"))


def _points(owner_days: list[int]) -> list[MeasurementPoint]:
    base = datetime(2024, 1, 1, tzinfo=UTC)
    return [
        MeasurementPoint(metric="weight", value=70 + d, measured_at=base + timedelta(days=d))
        for d in owner_days
    ]


async def test_in_memory_source_returns_newest_first_with_limit() -> None:
    source = InMemoryMeasurementSource({"u1": _points([0, 5, 2])})

    result = await source.fetch_measurements("u1", limit=2)

    assert [p.value for p in result.unwrap()] == [75, 72]
    assert source.fetch_count == 1


async def test_in_memory_source_unknown_owner_is_empty() -> None:
    result = await InMemoryMeasurementSource().fetch_measurements("nobody")

    assert result.unwrap() == []


async def test_in_memory_source_failing_owner_returns_err() -> None:
    source = InMemoryMeasurementSource({"u1": _points([0])}, failing_owners=["u1"])

    result = await source.fetch_measurements("u1")

    assert result.is_err()
    assert isinstance(result.unwrap_err(), ConnectionError)


async def test_in_memory_source_add() -> None:
    source = InMemoryMeasurementSource()
    source.add("u2", _points([1, 2]))

    assert len((await source.fetch_measurements("u2")).unwrap()) == 2


async def test_static_store_returns_copy_and_counts_loads() -> None:
    store = StaticCatalogMetadataStore({"hdl": CatalogEntry(display_name="HDL", category="lipid")})

    first = await store.load_catalog_metadata()
    first.clear()
    second = await store.load_catalog_metadata()

    assert second["hdl"].display_name == "HDL"
    assert store.load_count == 2
