"""Tests for bootstrap derived metrics and their effect on KPI eligibility."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from healthmetrics.domain.catalog import default_catalog
from healthmetrics.domain.models import AvailableMetricValue
from healthmetrics.services.derived_metrics import BootstrapRule, DerivedMetricCalculator
from healthmetrics.services.eligibility import resolve_eligible_kpis


def _value(v: float, unit: str = "", day: int = 1) -> AvailableMetricValue:
    return AvailableMetricValue(
        value=v, unit=unit, measured_at=datetime(2024, 1, day, tzinfo=UTC)
    )


def test_bmi_derived_from_weight_and_height() -> None:
    available = {"weight": _value(70, "kg", day=3), "height": _value(1.75, "m", day=1)}

    outcome = DerivedMetricCalculator().apply(available)

    bmi = outcome.available["bmi"]
    assert bmi.value == pytest.approx(22.857, abs=1e-3)
    assert bmi.derived is True
    assert bmi.unit == "kg/m²"
    assert bmi.measured_at == datetime(2024, 1, 1, tzinfo=UTC)
    assert outcome.derived_keys == ["bmi"]
    # input mapping is not mutated
    assert "bmi" not in available


def test_bmi_makes_second_order_kpis_eligible() -> None:
    catalog = default_catalog()
    available = {
        "weight": _value(70, "kg"),
        "height": _value(1.75, "m"),
        "vo2max": _value(45, "ml/kg/min"),
    }

    before = {k.id for k in resolve_eligible_kpis(catalog, available)}
    after_outcome = DerivedMetricCalculator().apply(available)
    after = {k.id for k in resolve_eligible_kpis(catalog, after_outcome.available)}

    assert "perf_vo2_bmi" not in before
    assert {"body_bmi", "perf_vo2_bmi"} <= after


@pytest.mark.parametrize(
    "height,unit",
    [(175, "cm"), (1750, "mm"), (68.8976, "in"), (1.75, "m")],
)
def test_height_units_are_converted(height: float, unit: str) -> None:
    outcome = DerivedMetricCalculator().apply(
        {"weight": _value(70, "kg"), "height": _value(height, unit)}
    )

    assert outcome.available["bmi"].value == pytest.approx(22.857, abs=1e-2)


def test_non_hdl_and_homa_ir() -> None:
    outcome = DerivedMetricCalculator().apply(
        {
            "tc": _value(200, "mg/dL"),
            "hdl": _value(50, "mg/dL"),
            "glucose": _value(90, "mg/dL"),
            "insulin": _value(9, "uIU/mL"),
        }
    )

    assert outcome.available["nonhdl"].value == 150
    assert outcome.available["homa_ir"].value == pytest.approx(2.0)
    assert outcome.derived_keys == ["nonhdl", "homa_ir"]


def test_measured_value_takes_precedence_over_derivation() -> None:
    measured = _value(25.0, "kg/m²")
    outcome = DerivedMetricCalculator().apply(
        {"weight": _value(70, "kg"), "height": _value(1.75, "m"), "bmi": measured}
    )

    assert outcome.available["bmi"] is measured
    assert outcome.skipped["bmi"] == "already_present"


def test_missing_inputs_skip_rule() -> None:
    outcome = DerivedMetricCalculator().apply({"weight": _value(70, "kg")})

    assert "bmi" not in outcome.available
    assert outcome.skipped["bmi"] == "missing_inputs"


def test_zero_height_is_skipped_without_raising() -> None:
    outcome = DerivedMetricCalculator().apply(
        {"weight": _value(70, "kg"), "height": _value(0, "m")}
    )

    assert "bmi" not in outcome.available
    assert outcome.skipped["bmi"] == "compute_failed"


def test_non_finite_result_is_skipped() -> None:
    rule = BootstrapRule(key="inf", unit="", inputs=("x",), compute=lambda v: float("inf"))

    outcome = DerivedMetricCalculator([rule]).apply({"x": _value(1)})

    assert outcome.skipped == {"inf": "compute_failed"}


def test_rules_run_in_declaration_order_single_pass() -> None:
    double = BootstrapRule(
        key="b", unit="", inputs=("a",), compute=lambda v: v["a"].value * 2
    )
    quadruple = BootstrapRule(
        key="c", unit="", inputs=("b",), compute=lambda v: v["b"].value * 2
    )

    in_order = DerivedMetricCalculator([double, quadruple]).apply({"a": _value(1)})
    reversed_order = DerivedMetricCalculator([quadruple, double]).apply({"a": _value(1)})

    assert in_order.available["c"].value == 4
    # a dependent rule listed first does not see the later derivation
    assert "c" not in reversed_order.available
