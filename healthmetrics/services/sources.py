"""
Collaborator seams for the pipeline.

Measurements and catalog metadata come from stores the core does not own.
Both are described as Protocols (structural typing, trivial to fake) and
measurement fetches report expected failures through `Result` rather than by
raising, so the orchestrator decides how a failed fetch ends the run.
"""

from collections.abc import Iterable, Mapping
from typing import Generic, Protocol, TypeVar

import structlog

from healthmetrics.domain.models import CatalogEntry, MeasurementPoint

logger = structlog.get_logger(__name__)

ValueT = TypeVar("ValueT")
ErrorT = TypeVar("ErrorT", bound=BaseException)


class Result(Generic[ValueT, ErrorT]):
    """
    Explicit error handling without exceptions for expected failures.

    Exactly one of value or error is set. An empty list is a valid value.
    """

    def __init__(self, value: ValueT | None = None, error: ErrorT | None = None) -> None:
        if value is not None and error is not None:
            raise ValueError("Result cannot have both value and error")
        if value is None and error is None:
            raise ValueError("Result must have either value or error")
        self._value: ValueT | None = value
        self._error: ErrorT | None = error

    @classmethod
    def ok(cls, value: ValueT) -> "Result[ValueT, ErrorT]":
        return cls(value=value)

    @classmethod
    def err(cls, error: ErrorT) -> "Result[ValueT, ErrorT]":
        return cls(error=error)

    def is_ok(self) -> bool:
        return self._error is None

    def is_err(self) -> bool:
        return self._error is not None

    def unwrap(self) -> ValueT:
        if self._error is not None:
            raise self._error
        return self._value  # type: ignore[return-value]

    def unwrap_or(self, default: ValueT) -> ValueT:
        return self._value if self._error is None else default  # type: ignore[return-value]

    def unwrap_err(self) -> ErrorT:
        if self._error is None:
            raise ValueError("Called unwrap_err() on an Ok value")
        return self._error


class MeasurementSource(Protocol):
    """Reads an owner's measurement history, newest first."""

    async def fetch_measurements(
        self, owner_id: str, limit: int | None = None
    ) -> Result[list[MeasurementPoint], Exception]: ...


class CatalogMetadataStore(Protocol):
    """Loads display metadata for canonical metric keys."""

    async def load_catalog_metadata(self) -> dict[str, CatalogEntry]: ...


class InMemoryMeasurementSource:
    """
    Dict-backed measurement source for tests and the demo.

    Points are stored per owner; fetches return them newest first, truncated
    to `limit`. An owner listed in `failing_owners` yields `Result.err`.
    """

    def __init__(
        self,
        measurements: Mapping[str, Iterable[MeasurementPoint]] | None = None,
        failing_owners: Iterable[str] = (),
    ) -> None:
        self._measurements: dict[str, list[MeasurementPoint]] = {
            owner: list(points) for owner, points in (measurements or {}).items()
        }
        self._failing_owners = frozenset(failing_owners)
        self.fetch_count = 0
        self.logger = logger.bind(source="in_memory")

    def add(self, owner_id: str, points: Iterable[MeasurementPoint]) -> None:
        self._measurements.setdefault(owner_id, []).extend(points)

    async def fetch_measurements(
        self, owner_id: str, limit: int | None = None
    ) -> Result[list[MeasurementPoint], Exception]:
        self.fetch_count += 1
        if owner_id in self._failing_owners:
            error = ConnectionError(f"Measurement store unavailable for owner {owner_id}")
            self.logger.warning("measurement_fetch_failed", owner_id=owner_id, error=str(error))
            return Result.err(error)

        points = sorted(
            self._measurements.get(owner_id, []), key=lambda p: p.measured_at, reverse=True
        )
        if limit is not None:
            points = points[:limit]

        self.logger.debug("measurements_fetched", owner_id=owner_id, count=len(points))
        return Result.ok(points)


class StaticCatalogMetadataStore:
    """Catalog metadata held in memory. Counts loads so cache behaviour is observable."""

    def __init__(self, entries: Mapping[str, CatalogEntry] | None = None) -> None:
        self._entries = dict(entries or {})
        self.load_count = 0

    async def load_catalog_metadata(self) -> dict[str, CatalogEntry]:
        self.load_count += 1
        return dict(self._entries)
