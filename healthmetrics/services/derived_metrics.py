"""
Bootstrap derived metrics.

A small, hand-ordered list of rules computed locally from raw values before
KPI eligibility is resolved. Each result is inserted back into the available
values, so second-order catalog entries (those requiring `bmi`, `nonhdl`,
`homa_ir`) become eligible in the same pass.

The traversal is a single ordered pass, not a fixed-point loop: a rule that
depends on another derived key must appear after it in the list.
"""

import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field

import structlog

from healthmetrics.domain.models import AvailableMetricValue

logger = structlog.get_logger(__name__)

ValueLookup = Mapping[str, AvailableMetricValue]


@dataclass(frozen=True)
class BootstrapRule:
    """One locally executed derivation."""

    key: str
    unit: str
    inputs: tuple[str, ...]
    compute: Callable[[ValueLookup], float]
    description: str = ""

    def is_applicable(self, available: ValueLookup) -> bool:
        return all(name in available for name in self.inputs)


@dataclass
class DerivationOutcome:
    available: dict[str, AvailableMetricValue]
    derived_keys: list[str] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)


def _height_in_meters(value: AvailableMetricValue) -> float:
    unit = value.unit.strip().lower()
    if unit == "cm":
        return value.value / 100.0
    if unit == "mm":
        return value.value / 1000.0
    if unit in {"in", "inch", "inches"}:
        return value.value * 0.0254
    return value.value


def _bmi(values: ValueLookup) -> float:
    height_m = _height_in_meters(values["height"])
    if height_m <= 0:
        raise ValueError("height must be positive")
    return values["weight"].value / (height_m**2)


def _non_hdl(values: ValueLookup) -> float:
    return values["tc"].value - values["hdl"].value


def _homa_ir(values: ValueLookup) -> float:
    return (values["glucose"].value * values["insulin"].value) / 405


DEFAULT_BOOTSTRAP_RULES: tuple[BootstrapRule, ...] = (
    BootstrapRule(
        key="bmi",
        unit="kg/m²",
        inputs=("weight", "height"),
        compute=_bmi,
        description="weight / height²",
    ),
    BootstrapRule(
        key="nonhdl",
        unit="mg/dL",
        inputs=("tc", "hdl"),
        compute=_non_hdl,
        description="total cholesterol − HDL",
    ),
    BootstrapRule(
        key="homa_ir",
        unit="index",
        inputs=("glucose", "insulin"),
        compute=_homa_ir,
        description="(glucose × insulin) / 405",
    ),
)


class DerivedMetricCalculator:
    """Applies bootstrap rules in declaration order over the available values."""

    def __init__(self, rules: Sequence[BootstrapRule] = DEFAULT_BOOTSTRAP_RULES) -> None:
        self.rules = tuple(rules)
        self.logger = logger.bind(component="derived_metric_calculator")

    def apply(self, available: Mapping[str, AvailableMetricValue]) -> DerivationOutcome:
        """
        Return a new value mapping with derivable metrics added.

        Measured values win: a rule whose key is already present is skipped.
        Rules whose inputs are missing or whose arithmetic fails are skipped
        without raising.
        """
        outcome = DerivationOutcome(available=dict(available))

        for rule in self.rules:
            if rule.key in outcome.available:
                outcome.skipped[rule.key] = "already_present"
                continue
            if not rule.is_applicable(outcome.available):
                outcome.skipped[rule.key] = "missing_inputs"
                continue

            try:
                value = rule.compute(outcome.available)
            except (ArithmeticError, ValueError) as e:
                self.logger.warning("bootstrap_metric_failed", metric=rule.key, error=str(e))
                outcome.skipped[rule.key] = "compute_failed"
                continue

            if not math.isfinite(value):
                self.logger.warning("bootstrap_metric_not_finite", metric=rule.key)
                outcome.skipped[rule.key] = "compute_failed"
                continue

            input_dates = [
                outcome.available[name].measured_at
                for name in rule.inputs
                if outcome.available[name].measured_at is not None
            ]
            outcome.available[rule.key] = AvailableMetricValue(
                value=value,
                unit=rule.unit,
                measured_at=min(input_dates) if input_dates else None,
                derived=True,
            )
            outcome.derived_keys.append(rule.key)
            self.logger.debug("bootstrap_metric_derived", metric=rule.key, value=round(value, 4))

        return outcome
