"""
Payload assembly for the inference step.

Renders sampled measurements as a compact delimited table, serializes the
eligible KPI worklist as an instruction block, and estimates the token cost
of the result. Nothing here evaluates a KPI formula.
"""

import csv
import io
import math
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime
from enum import Enum

import structlog
from pydantic import BaseModel, ConfigDict, Field

from healthmetrics.domain.errors import ConfigurationError
from healthmetrics.domain.models import (
    AvailableMetricValue,
    CatalogEntry,
    KPIDefinition,
    MeasurementPoint,
    UserProfile,
)
from healthmetrics.services.sampler import sample_by_metric, validate_cap

logger = structlog.get_logger(__name__)


class DateFormat(str, Enum):
    FULL = "full"
    DATE_ONLY = "date-only"
    RELATIVE = "relative"


class OptimizationLevel(BaseModel):
    """Payload size preset."""

    model_config = ConfigDict(frozen=True)

    name: str
    max_points_per_metric: int = Field(ge=1)
    include_source: bool
    date_format: DateFormat
    precision: int = Field(ge=0, le=10)
    estimated_tokens: int = Field(ge=0, description="Rough prompt size at 30 metrics")


OPTIMIZATION_LEVELS: dict[str, OptimizationLevel] = {
    "full": OptimizationLevel(
        name="full",
        max_points_per_metric=10,
        include_source=True,
        date_format=DateFormat.FULL,
        precision=2,
        estimated_tokens=4000,
    ),
    "standard": OptimizationLevel(
        name="standard",
        max_points_per_metric=5,
        include_source=False,
        date_format=DateFormat.DATE_ONLY,
        precision=1,
        estimated_tokens=2000,
    ),
    "minimal": OptimizationLevel(
        name="minimal",
        max_points_per_metric=3,
        include_source=False,
        date_format=DateFormat.RELATIVE,
        precision=1,
        estimated_tokens=1200,
    ),
}

# USD per 1k tokens
MODEL_PRICING: dict[str, dict[str, float]] = {
    "gpt-4o": {"input": 0.0025, "output": 0.01},
    "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
}


class DatasetStats(BaseModel):
    original: int
    optimized: int
    reduction_pct: int


class OptimizedDataset(BaseModel):
    table: str
    points: list[MeasurementPoint]
    stats: DatasetStats


class AssembledPayload(BaseModel):
    """Everything the inference call needs, plus accounting figures."""

    user_prompt: str
    table: str
    worklist: str
    estimated_tokens: int
    stats: DatasetStats
    metrics_count: int
    kpi_ids: list[str] = Field(default_factory=list)


def get_optimization_level(name: str) -> OptimizationLevel:
    try:
        return OPTIMIZATION_LEVELS[name]
    except KeyError:
        raise ConfigurationError(f"Unknown optimization level: {name}") from None


def estimate_tokens(text: str) -> int:
    """Advisory token count (1 token ≈ 4 characters)."""
    return math.ceil(len(text) / 4)


def calculate_cost(prompt_tokens: int, completion_tokens: int, model: str = "gpt-4o") -> float:
    """USD cost of one call. Accepts provider-prefixed names like 'openai:gpt-4o'."""
    price = MODEL_PRICING.get(model.split(":", 1)[-1])
    if price is None:
        raise ConfigurationError(f"No pricing known for model: {model}")
    return (prompt_tokens / 1000) * price["input"] + (completion_tokens / 1000) * price["output"]


def format_value(value: float, precision: int) -> str:
    return f"{value:.{precision}f}"


def format_date(measured_at: datetime, date_format: DateFormat, now: datetime) -> str:
    if date_format == DateFormat.DATE_ONLY:
        return measured_at.astimezone(UTC).date().isoformat()
    if date_format == DateFormat.RELATIVE:
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        days = math.floor((now - measured_at).total_seconds() / 86400)
        return "today" if days == 0 else f"{days}d"
    return measured_at.isoformat()


def _write_rows(header: list[str], rows: Iterable[list[str]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows)
    return buffer.getvalue().rstrip("\n")


def format_table(
    points: Sequence[MeasurementPoint],
    level: OptimizationLevel,
    now: datetime | None = None,
    catalog_metadata: Mapping[str, CatalogEntry] | None = None,
) -> str:
    """Render points as `metric,value,unit,date[,source]` rows in the given order."""
    now = now or datetime.now(UTC)

    header = ["metric"]
    if catalog_metadata is not None:
        header += ["display_name", "category"]
    header += ["value", "unit", "date"]
    if level.include_source:
        header.append("source")

    rows = []
    for p in points:
        row = [p.metric]
        if catalog_metadata is not None:
            entry = catalog_metadata.get(p.metric)
            row += [entry.display_name, entry.category] if entry else [p.metric, "other"]
        row += [
            format_value(p.value, level.precision),
            p.unit,
            format_date(p.measured_at, level.date_format, now),
        ]
        if level.include_source:
            row.append(p.source.value)
        rows.append(row)

    return _write_rows(header, rows)


def resolve_cap(level: OptimizationLevel, max_points_per_metric: int | None = None) -> int:
    """An explicit override wins over the preset and must itself be a valid cap."""
    if max_points_per_metric is None:
        return level.max_points_per_metric
    return validate_cap(max_points_per_metric)


def optimize_dataset(
    points: Sequence[MeasurementPoint],
    level: OptimizationLevel,
    now: datetime | None = None,
    catalog_metadata: Mapping[str, CatalogEntry] | None = None,
    max_points_per_metric: int | None = None,
) -> OptimizedDataset:
    """Group by metric, sample each series, and render the table."""
    cap = resolve_cap(level, max_points_per_metric)
    sampled = [p for series in sample_by_metric(points, cap).values() for p in series]

    original = len(points)
    reduction = round((1 - len(sampled) / original) * 100) if original else 0

    return OptimizedDataset(
        table=format_table(sampled, level, now=now, catalog_metadata=catalog_metadata),
        points=sampled,
        stats=DatasetStats(original=original, optimized=len(sampled), reduction_pct=reduction),
    )


def format_latest_values(
    available: Mapping[str, AvailableMetricValue], precision: int = 1
) -> str:
    """One row per metric with its latest value, used by the KPI-only flow."""
    rows = [
        [
            key,
            format_value(v.value, precision),
            v.unit,
            v.measured_at.astimezone(UTC).date().isoformat() if v.measured_at else "",
        ]
        for key, v in available.items()
    ]
    return _write_rows(["metric", "value", "unit", "date"], rows)


def build_kpi_worklist(
    eligible: Sequence[KPIDefinition],
    available: Mapping[str, AvailableMetricValue],
    precision: int = 2,
) -> str:
    """
    Instruction block listing each eligible KPI with its formula and inputs.

    The formula text is passed through unmodified for the inference step.
    """
    if not eligible:
        return "KPI worklist: none (no catalog formula has all required inputs)."

    lines = [
        f"KPI worklist ({len(eligible)} formulas; compute each from the values shown):",
        "id|name|formula|inputs",
    ]
    for kpi in eligible:
        inputs = "; ".join(
            f"{key}={format_value(available[key].value, precision)} {available[key].unit}".rstrip()
            for key in sorted(kpi.required_metrics)
        )
        lines.append(f"{kpi.id}|{kpi.name}|{kpi.formula}|{inputs}")
    return "\n".join(lines)


def format_profile(profile: UserProfile | None) -> str:
    profile = profile or UserProfile()
    return (
        "User Profile:\n"
        f"Age: {profile.age if profile.age is not None else 'not provided'}\n"
        f"Sex: {profile.sex or 'not provided'}"
    )


class PayloadAssembler:
    """Builds the user payload for one analysis call."""

    def __init__(
        self,
        level: OptimizationLevel,
        max_points_per_metric: int | None = None,
        catalog_metadata: Mapping[str, CatalogEntry] | None = None,
    ) -> None:
        self.level = level
        self.max_points_per_metric = max_points_per_metric
        self.cap = resolve_cap(level, max_points_per_metric)
        self.catalog_metadata = catalog_metadata
        self.logger = logger.bind(component="payload_assembler", level=level.name)

    def assemble(
        self,
        points: Sequence[MeasurementPoint],
        eligible: Sequence[KPIDefinition],
        available: Mapping[str, AvailableMetricValue],
        profile: UserProfile | None = None,
        now: datetime | None = None,
    ) -> AssembledPayload:
        dataset = optimize_dataset(
            points,
            self.level,
            now=now,
            catalog_metadata=self.catalog_metadata,
            max_points_per_metric=self.max_points_per_metric,
        )
        worklist = build_kpi_worklist(eligible, available, precision=self.level.precision + 1)

        user_prompt = (
            f"{format_profile(profile)}\n\n"
            f"Measurements (CSV, up to {self.cap} values per metric, newest first):\n"
            f"{dataset.table}\n\n"
            f"{worklist}"
        )
        tokens = estimate_tokens(user_prompt)

        self.logger.info(
            "payload_assembled",
            original_points=dataset.stats.original,
            sampled_points=dataset.stats.optimized,
            reduction_pct=dataset.stats.reduction_pct,
            eligible_kpis=len(eligible),
            estimated_tokens=tokens,
        )

        return AssembledPayload(
            user_prompt=user_prompt,
            table=dataset.table,
            worklist=worklist,
            estimated_tokens=tokens,
            stats=dataset.stats,
            metrics_count=len({p.metric for p in dataset.points}),
            kpi_ids=[k.id for k in eligible],
        )


def build_analysis_payload(
    points: Sequence[MeasurementPoint],
    eligible: Sequence[KPIDefinition],
    available: Mapping[str, AvailableMetricValue],
    level: OptimizationLevel | str = "standard",
    profile: UserProfile | None = None,
    now: datetime | None = None,
    catalog_metadata: Mapping[str, CatalogEntry] | None = None,
    max_points_per_metric: int | None = None,
) -> AssembledPayload:
    if isinstance(level, str):
        level = get_optimization_level(level)
    assembler = PayloadAssembler(
        level, max_points_per_metric=max_points_per_metric, catalog_metadata=catalog_metadata
    )
    return assembler.assemble(points, eligible, available, profile=profile, now=now)
