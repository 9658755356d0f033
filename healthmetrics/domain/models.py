"""
Domain models for health-metrics analysis.

These models represent the core business concepts and are framework-agnostic.
They use Pydantic for validation; inputs are frozen, analysis output is not.
"""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MeasurementOrigin(str, Enum):
    """How a measurement entered the system."""

    MANUAL = "manual"
    OCR = "ocr"


class MeasurementPoint(BaseModel):
    """Individual measurement reading, keyed by canonical metric."""

    model_config = ConfigDict(frozen=True)  # Immutable for better reasoning

    metric: str = Field(min_length=1)
    value: float
    unit: str = ""
    measured_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    source: MeasurementOrigin = MeasurementOrigin.MANUAL

    @field_validator("measured_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        """Naive timestamps from upstream rows are stored in UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v


class CatalogEntry(BaseModel):
    """Display metadata for a canonical metric key."""

    model_config = ConfigDict(frozen=True)

    display_name: str
    category: str = "other"


class KPIDefinition(BaseModel):
    """Static formula definition handed to the inference step as text."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    category: str
    formula: str = Field(description="Descriptive formula text, never evaluated locally")
    required_metrics: frozenset[str]
    description: str = ""


class UserProfile(BaseModel):
    """Demographic context passed alongside measurements."""

    model_config = ConfigDict(frozen=True)

    age: int | None = Field(default=None, ge=0, le=150)
    sex: str | None = None


class AvailableMetricValue(BaseModel):
    """Latest known value of a metric within one pipeline invocation."""

    value: float
    unit: str = ""
    measured_at: datetime | None = None
    derived: bool = False


# Analysis output models (canonical schema)
class QCIssue(BaseModel):
    item: str = ""
    type: str = ""
    detail: str = ""


class DerivedMetric(BaseModel):
    name: str = ""
    value: float | None = None
    unit: str = ""
    method: str = ""
    input_used: list[str] = Field(default_factory=list)
    valid: bool = True
    note: str = ""


class CurrentStateMetric(BaseModel):
    metric: str = ""
    latest_value: float | None = None
    unit: str = ""
    date: str = ""
    interpretation: str = ""


class Trend(BaseModel):
    metric: str = ""
    direction: str = ""
    delta_abs: float | None = None
    delta_pct: float | None = None
    start_date: str = ""
    end_date: str = ""
    comment: str = ""


class Correlation(BaseModel):
    between: list[str] = Field(default_factory=list)
    strength: str = ""
    pattern: str = ""
    physiology: str = ""


class Paradox(BaseModel):
    finding: str = ""
    why_paradoxical: str = ""
    possible_explanations: list[str] = Field(default_factory=list)


class Hypothesis(BaseModel):
    claim: str = ""
    evidence: list[str] = Field(default_factory=list)
    alt_explanations: list[str] = Field(default_factory=list)


class RiskAssessment(BaseModel):
    area: str = ""
    level: str = ""
    rationale: str = ""


class LabRecommendation(BaseModel):
    test: str = ""
    why: str = ""
    timing: str = ""


class RecommendationsNextSteps(BaseModel):
    labs_to_repeat_or_add: list[LabRecommendation] = Field(default_factory=list)
    lifestyle_focus: list[str] = Field(default_factory=list)
    clinical_followup: list[str] = Field(default_factory=list)


class AnalysisResult(BaseModel):
    """
    Canonical analysis structure returned to callers.

    Every field has a typed default so an empty instance is always valid.
    """

    summary: str = ""
    qc_issues: list[QCIssue] = Field(default_factory=list)
    normalization_notes: list[str] = Field(default_factory=list)
    derived_metrics: list[DerivedMetric] = Field(default_factory=list)
    current_state: list[CurrentStateMetric] = Field(default_factory=list)
    trends: list[Trend] = Field(default_factory=list)
    correlations: list[Correlation] = Field(default_factory=list)
    paradoxes: list[Paradox] = Field(default_factory=list)
    hypotheses: list[Hypothesis] = Field(default_factory=list)
    risk_assessment: list[RiskAssessment] = Field(default_factory=list)
    recommendations_next_steps: RecommendationsNextSteps = Field(
        default_factory=RecommendationsNextSteps
    )
    uncertainties: list[str] = Field(default_factory=list)
    data_gaps: list[str] = Field(default_factory=list)


class CalculatedKPI(BaseModel):
    """KPI value as reported by the inference step, reconciled against the catalog."""

    id: str
    name: str = ""
    category: str = ""
    formula: str = ""
    required_metrics: list[str] = Field(default_factory=list)
    value: float | None = None
    unit: str = ""
    optimal_range: str = ""
    description: str = ""


class KPIReconciliation(BaseModel):
    """Observability report comparing eligible KPIs with those returned."""

    expected_count: int = 0
    received_count: int = 0
    missing_ids: list[str] = Field(default_factory=list)
    unexpected_ids: list[str] = Field(default_factory=list)

    @property
    def count_mismatch(self) -> bool:
        return self.expected_count != self.received_count


class HealthAnalysisReport(BaseModel):
    """Complete output of one analysis invocation, handed to the caller for persistence."""

    analysis: AnalysisResult
    calculated_kpis: list[CalculatedKPI] = Field(default_factory=list)
    kpi_reconciliation: KPIReconciliation = Field(default_factory=KPIReconciliation)
    metrics_count: int = Field(ge=0)
    measurements_count: int = Field(ge=0)
    sampled_count: int = Field(ge=0)
    estimated_tokens: int = Field(ge=0)
    date_range_start: datetime | None = None
    date_range_end: datetime | None = None
    model_name: str = ""
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    analysis_duration_seconds: float = Field(default=0.0, ge=0.0)
