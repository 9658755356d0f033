"""Tests for the static KPI catalog and alias table."""

from __future__ import annotations

import pytest

from healthmetrics.domain.catalog import (
    DEFAULT_KPI_DEFINITIONS,
    DEFAULT_METRIC_ALIASES,
    KPICatalog,
    default_catalog,
)
from healthmetrics.domain.errors import ConfigurationError
from healthmetrics.domain.models import KPIDefinition


def _definition(kpi_id: str, metrics: frozenset[str] = frozenset({"a"})) -> KPIDefinition:
    return KPIDefinition(
        id=kpi_id, name=kpi_id, category="Test", formula="a", required_metrics=metrics
    )


def test_default_catalog_ids_are_unique_and_ordered() -> None:
    catalog = default_catalog()

    assert len(catalog) == len(DEFAULT_KPI_DEFINITIONS)
    assert [k.id for k in catalog] == [k.id for k in DEFAULT_KPI_DEFINITIONS]
    assert catalog.get("body_bmi") is not None
    assert catalog.get("body_bmi").required_metrics == frozenset({"weight", "height"})
    assert "not_a_kpi" not in catalog


def test_alias_targets_are_not_alias_keys_for_other_targets() -> None:
    for target in set(DEFAULT_METRIC_ALIASES.values()):
        assert DEFAULT_METRIC_ALIASES.get(target, target) == target


def test_default_tables_are_immutable() -> None:
    with pytest.raises(TypeError):
        DEFAULT_METRIC_ALIASES["new"] = "x"  # type: ignore[index]


def test_empty_catalog_rejected() -> None:
    with pytest.raises(ConfigurationError, match="at least one"):
        KPICatalog([])


def test_duplicate_ids_rejected() -> None:
    with pytest.raises(ConfigurationError, match="Duplicate"):
        KPICatalog([_definition("x"), _definition("x")])


def test_definition_without_inputs_rejected() -> None:
    with pytest.raises(ConfigurationError, match="no required metrics"):
        KPICatalog([_definition("x", frozenset())])


def test_referenced_metrics_union() -> None:
    catalog = KPICatalog([_definition("x", frozenset({"a", "b"})), _definition("y")])

    assert catalog.referenced_metrics() == frozenset({"a", "b"})
