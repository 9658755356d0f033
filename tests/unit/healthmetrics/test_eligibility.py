"""Tests for latest-value collection and KPI eligibility resolution."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from hypothesis import given
from hypothesis import strategies as st

from healthmetrics.domain.catalog import default_catalog
from healthmetrics.domain.models import MeasurementPoint
from healthmetrics.services.eligibility import (
    collect_latest_values,
    missing_metrics,
    resolve_eligible_kpis,
)

CATALOG = default_catalog()
KNOWN_KEYS = sorted(CATALOG.referenced_metrics())


@given(keys=st.sets(st.sampled_from(KNOWN_KEYS) | st.text(max_size=6), max_size=25))
def test_eligible_kpis_are_catalog_entries_with_all_inputs(keys: set[str]) -> None:
    eligible = resolve_eligible_kpis(CATALOG, keys)

    for kpi in eligible:
        assert kpi.id in CATALOG
        assert kpi.required_metrics <= keys
    ineligible = [k for k in CATALOG if k not in eligible]
    assert all(not k.required_metrics <= keys for k in ineligible)


def test_eligible_kpis_follow_catalog_order() -> None:
    eligible = resolve_eligible_kpis(CATALOG, {"tc", "hdl", "ldl", "tg"})
    ids = [k.id for k in eligible]

    assert ids == [k.id for k in CATALOG if k.id in set(ids)]
    assert {"lipid_tc_hdl", "lipid_ldl_hdl", "lipid_tg_hdl"} <= set(ids)


def test_no_keys_no_eligible_kpis() -> None:
    assert resolve_eligible_kpis(CATALOG, []) == []


def test_missing_metrics_reports_only_absent_keys() -> None:
    missing = missing_metrics(CATALOG, {"weight"})

    assert missing["body_bmi"] == ["height"]
    assert "lipid_tc_hdl" in missing


def test_collect_latest_values_keeps_newest_point_per_metric() -> None:
    base = datetime(2024, 3, 1, tzinfo=UTC)
    points = [
        MeasurementPoint(metric="weight", value=71, unit="kg", measured_at=base),
        MeasurementPoint(
            metric="weight", value=70, unit="kg", measured_at=base + timedelta(days=7)
        ),
        MeasurementPoint(metric="hdl", value=55, unit="mg/dL", measured_at=base),
    ]

    latest = collect_latest_values(points)

    assert latest["weight"].value == 70
    assert latest["weight"].measured_at == base + timedelta(days=7)
    assert latest["hdl"].unit == "mg/dL"
    assert latest["hdl"].derived is False


def test_collect_latest_values_tie_keeps_first_seen() -> None:
    at = datetime(2024, 3, 1, tzinfo=UTC)
    points = [
        MeasurementPoint(metric="weight", value=71, measured_at=at),
        MeasurementPoint(metric="weight", value=72, measured_at=at),
    ]

    assert collect_latest_values(points)["weight"].value == 71
