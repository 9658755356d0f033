"""
Time-series sampling.

Reduces arbitrarily long per-metric history to a bounded subset that always
keeps the newest point (current state) and the oldest point (baseline), with
the remaining budget spread across history at a fixed integer stride.

The stride is `(len - 2) // (cap - 2)`. When that division is not exact the
kept middle points are unevenly spaced and skew towards the newer end.
"""

from collections.abc import Iterable, Sequence

from healthmetrics.domain.errors import ConfigurationError
from healthmetrics.domain.models import MeasurementPoint


def validate_cap(cap: int) -> int:
    if isinstance(cap, bool) or not isinstance(cap, int) or cap < 1:
        raise ConfigurationError(f"Sampling cap must be a positive integer, got {cap!r}")
    return cap


def newest_first(points: Iterable[MeasurementPoint]) -> list[MeasurementPoint]:
    # sorted() is stable with reverse=True, so equal timestamps keep input order
    return sorted(points, key=lambda p: p.measured_at, reverse=True)


def sample_series(points: Sequence[MeasurementPoint], cap: int) -> list[MeasurementPoint]:
    """Sample one metric's history down to at most `cap` points, newest first."""
    validate_cap(cap)

    ordered = newest_first(points)
    if len(ordered) <= cap:
        return ordered

    if cap == 1:
        return [ordered[0]]
    if cap == 2:
        return [ordered[0], ordered[-1]]

    result = [ordered[0]]
    middle_count = cap - 2
    step = (len(ordered) - 2) // middle_count

    for i in range(1, middle_count + 1):
        index = i * step
        if index < len(ordered) - 1:
            result.append(ordered[index])

    result.append(ordered[-1])
    return newest_first(result)


def group_by_metric(points: Iterable[MeasurementPoint]) -> dict[str, list[MeasurementPoint]]:
    """Group points by metric key, preserving first-seen metric order."""
    grouped: dict[str, list[MeasurementPoint]] = {}
    for point in points:
        grouped.setdefault(point.metric, []).append(point)
    return grouped


def sample_by_metric(
    points: Iterable[MeasurementPoint], cap: int
) -> dict[str, list[MeasurementPoint]]:
    """Sample every metric's series independently with the same cap."""
    validate_cap(cap)
    return {
        metric: sample_series(series, cap) for metric, series in group_by_metric(points).items()
    }
