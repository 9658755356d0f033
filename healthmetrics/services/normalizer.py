"""
Metric label normalization.

Free-text labels from manual entry and OCR ("HDL Cholesterol", "hdl-c",
" HDL ") must land on one canonical key before values are grouped, otherwise
the same quantity is split across keys and KPIs become ineligible.
"""

from collections.abc import Iterable, Mapping
from types import MappingProxyType

import structlog

from healthmetrics.domain.catalog import DEFAULT_METRIC_ALIASES
from healthmetrics.domain.errors import ConfigurationError
from healthmetrics.domain.models import MeasurementPoint

logger = structlog.get_logger(__name__)


def clean_label(label: str) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    return " ".join(label.lower().split())


class MetricNormalizer:
    """
    Maps free-text labels to canonical keys via an injected alias table.

    Unknown labels are returned cleaned rather than rejected, so uncatalogued
    metrics remain usable under their own key.
    """

    def __init__(self, aliases: Mapping[str, str] = DEFAULT_METRIC_ALIASES) -> None:
        table: dict[str, str] = {}
        for label, canonical in aliases.items():
            if canonical != clean_label(canonical) or not canonical:
                raise ConfigurationError(f"Canonical key {canonical!r} is not normalized")
            table[clean_label(label)] = canonical

        # A canonical key that is also an alias for something else would make
        # normalize(normalize(x)) != normalize(x).
        for canonical in set(table.values()):
            target = table.get(canonical, canonical)
            if target != canonical:
                raise ConfigurationError(
                    f"Canonical key {canonical!r} is itself an alias of {target!r}"
                )

        self._aliases = MappingProxyType(table)

    @property
    def canonical_keys(self) -> frozenset[str]:
        return frozenset(self._aliases.values())

    def normalize(self, label: str) -> str:
        cleaned = clean_label(label)
        return self._aliases.get(cleaned, cleaned)

    def normalize_points(self, points: Iterable[MeasurementPoint]) -> list[MeasurementPoint]:
        """Return points re-keyed to canonical metric keys."""
        normalized: list[MeasurementPoint] = []
        renamed = 0
        for point in points:
            key = self.normalize(point.metric)
            if key != point.metric:
                point = point.model_copy(update={"metric": key})
                renamed += 1
            normalized.append(point)

        if renamed:
            logger.debug("metric_labels_normalized", renamed=renamed, total=len(normalized))
        return normalized


_default_normalizer = MetricNormalizer()


def normalize_metric_name(label: str) -> str:
    """Normalize with the default alias table."""
    return _default_normalizer.normalize(label)
