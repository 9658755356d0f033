"""
Reconciliation of untrusted inference output onto the canonical schema.

The inference step returns JSON of unspecified shape: canonical or
abbreviated keys, strings where objects were asked for, objects where strings
were asked for, numbers as strings, or nothing at all. Reconciliation is
total: every branch ends in a typed default and `reconcile_analysis` never
raises, so callers never depend on well-formed model output.

Each canonical field is described by a `FieldSpec` (candidate keys, in
priority order, plus a decoder). Decoders handle the type variance with a
fixed extraction order instead of ad hoc checks at each call site.
"""

import json
import math
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import structlog
from pydantic import BaseModel, Field, ValidationError

from healthmetrics.domain.errors import MalformedInferenceResponseError
from healthmetrics.domain.models import (
    AnalysisResult,
    CalculatedKPI,
    Correlation,
    CurrentStateMetric,
    DerivedMetric,
    Hypothesis,
    KPIDefinition,
    KPIReconciliation,
    LabRecommendation,
    Paradox,
    QCIssue,
    RecommendationsNextSteps,
    RiskAssessment,
    Trend,
)

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
Decoder = Callable[[Any], Any]

# Nested keys tried, in order, when an object shows up where text was expected
TEXT_PREFERENCE = ("rationale", "text", "action", "detail", "description", "value")

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n?```\s*$")
_OBJECT_BLOCK = re.compile(r"\{[\s\S]*\}")


# Parsing
def parse_inference_text(text: str | None) -> Any:
    """
    Parse the raw inference body into a JSON object or array.

    Tolerates markdown code fences and prose around a single JSON object.
    Raises MalformedInferenceResponseError for empty bodies, non-JSON text
    and bare scalars.
    """
    if text is None or not text.strip():
        raise MalformedInferenceResponseError("Empty response from inference step")

    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", cleaned)).strip()

    try:
        parsed = json.loads(cleaned)
    except ValueError:
        match = _OBJECT_BLOCK.search(cleaned)
        if not match:
            raise MalformedInferenceResponseError("Inference response is not JSON") from None
        try:
            parsed = json.loads(match.group(0))
        except ValueError as e:
            raise MalformedInferenceResponseError(f"Inference response is not JSON: {e}") from e

    if not isinstance(parsed, dict | list):
        raise MalformedInferenceResponseError(
            f"Inference response must be a JSON object or array, got {type(parsed).__name__}"
        )
    return parsed


# Scalar decoders
def _finite_float(raw: int | float) -> float | None:
    # JSON integers are unbounded; anything past float range counts as non-finite
    try:
        value = float(raw)
    except OverflowError:
        return None
    return value if math.isfinite(value) else None


def decode_text(raw: Any) -> str:
    """
    Resolve any value to a string.

    str → stripped; number → str; object → first non-empty of TEXT_PREFERENCE,
    else a JSON dump; list → decoded items joined with '; '; None → ''.
    """
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw.strip()
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, int | float):
        return str(raw) if _finite_float(raw) is not None else ""
    if isinstance(raw, Mapping):
        for key in TEXT_PREFERENCE:
            text = decode_text(raw.get(key))
            if text:
                return text
        return json.dumps(raw, ensure_ascii=False, sort_keys=True, default=str) if raw else ""
    if isinstance(raw, list | tuple):
        return "; ".join(t for t in (decode_text(item) for item in raw) if t)
    return str(raw)


def decode_optional_float(raw: Any) -> float | None:
    """Numbers and numeric strings ('4.2', '12%', '1,234') → float; anything else → None."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int | float):
        return _finite_float(raw)
    if isinstance(raw, str):
        cleaned = raw.strip().rstrip("%").replace(",", "").strip()
        try:
            value = float(cleaned)
        except ValueError:
            return None
        return value if math.isfinite(value) else None
    if isinstance(raw, Mapping):
        return decode_optional_float(raw.get("value"))
    return None


def decode_flag(raw: Any) -> bool:
    """Validity flag. Defaults to True unless the value clearly says otherwise."""
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int | float):
        return raw != 0
    if isinstance(raw, str):
        return raw.strip().lower() not in {"false", "no", "0", "invalid", "n"}
    return True


def decode_text_list(raw: Any) -> list[str]:
    """list → decoded non-empty items; scalar or object → one-element list; None → []."""
    if raw is None:
        return []
    if isinstance(raw, list | tuple):
        return [t for t in (decode_text(item) for item in raw) if t]
    text = decode_text(raw)
    return [text] if text else []


# Object decoders
@dataclass(frozen=True)
class FieldSpec:
    """A canonical field, its accepted keys in priority order, and its decoder."""

    name: str
    aliases: tuple[str, ...]
    decoder: Decoder

    @property
    def keys(self) -> tuple[str, ...]:
        return (self.name, *self.aliases)

    def read(self, obj: Mapping[str, Any]) -> Any:
        for key in self.keys:
            if obj.get(key) is not None:
                return self.decoder(obj[key])
        return self.decoder(None)


def _field(name: str, *aliases: str, decoder: Decoder = decode_text) -> FieldSpec:
    return FieldSpec(name=name, aliases=aliases, decoder=decoder)


@dataclass(frozen=True)
class ObjectDecoder(Generic[ModelT]):
    """
    Decodes one item into `model`.

    Mappings are read field by field. A bare string becomes the `primary`
    field of an otherwise default item. Anything else yields None.
    """

    model: type[ModelT]
    fields: tuple[FieldSpec, ...]
    primary: str

    def __call__(self, raw: Any) -> ModelT | None:
        if isinstance(raw, Mapping):
            values = {spec.name: spec.read(raw) for spec in self.fields}
        else:
            text = decode_text(raw) if isinstance(raw, str | int | float) else ""
            if not text:
                return None
            values = {self.primary: text}

        try:
            return self.model(**values)
        except ValidationError as e:
            logger.warning(
                "reconcile_item_rejected", model=self.model.__name__, errors=e.error_count()
            )
            return None


def object_list(decoder: ObjectDecoder[ModelT]) -> Callable[[Any], list[ModelT]]:
    """Lift an item decoder to lists; a single object or string is wrapped."""

    def decode(raw: Any) -> list[ModelT]:
        if raw is None:
            return []
        items: Iterable[Any] = raw if isinstance(raw, list | tuple) else [raw]
        return [item for item in (decoder(r) for r in items) if item is not None]

    return decode


QC_ISSUE = ObjectDecoder(
    QCIssue,
    (_field("item", "i", "metric"), _field("type", "t", "kind"), _field("detail", "d", "details")),
    primary="detail",
)

DERIVED_METRIC = ObjectDecoder(
    DerivedMetric,
    (
        _field("name", "n"),
        _field("value", "v", "val", decoder=decode_optional_float),
        _field("unit", "u"),
        _field("method", "m", "formula"),
        _field("input_used", "in", "inputs", decoder=decode_text_list),
        _field("valid", "ok", "is_valid", decoder=decode_flag),
        _field("note", "notes"),
    ),
    primary="name",
)

CURRENT_STATE = ObjectDecoder(
    CurrentStateMetric,
    (
        _field("metric", "m"),
        _field("latest_value", "v", "value", decoder=decode_optional_float),
        _field("unit", "u"),
        _field("date", "dt", "d"),
        _field("interpretation", "int", "interp"),
    ),
    primary="interpretation",
)

TREND = ObjectDecoder(
    Trend,
    (
        _field("metric", "m"),
        _field("direction", "dir"),
        _field("delta_abs", "da", "delta", decoder=decode_optional_float),
        _field("delta_pct", "dp", "pct", decoder=decode_optional_float),
        _field("start_date", "sd", "start"),
        _field("end_date", "ed", "end"),
        _field("comment", "c", "note"),
    ),
    primary="comment",
)

CORRELATION = ObjectDecoder(
    Correlation,
    (
        _field("between", "b", "metrics", decoder=decode_text_list),
        _field("strength", "s"),
        _field("pattern", "p"),
        _field("physiology", "phys", "mechanism"),
    ),
    primary="physiology",
)

PARADOX = ObjectDecoder(
    Paradox,
    (
        _field("finding", "f"),
        _field("why_paradoxical", "why", "w"),
        _field("possible_explanations", "pe", "expl", "explanations", decoder=decode_text_list),
    ),
    primary="finding",
)

HYPOTHESIS = ObjectDecoder(
    Hypothesis,
    (
        _field("claim", "c"),
        _field("evidence", "ev", "e", decoder=decode_text_list),
        _field("alt_explanations", "alt", "alternatives", decoder=decode_text_list),
    ),
    primary="claim",
)

RISK = ObjectDecoder(
    RiskAssessment,
    (_field("area", "a"), _field("level", "l", "lvl"), _field("rationale", "r", "why")),
    primary="rationale",
)

LAB_RECOMMENDATION = ObjectDecoder(
    LabRecommendation,
    (_field("test", "t", "lab"), _field("why", "w", "reason"), _field("timing", "tm", "when")),
    primary="test",
)

RECOMMENDATIONS_FIELDS = (
    _field("labs_to_repeat_or_add", "labs", "l", decoder=object_list(LAB_RECOMMENDATION)),
    _field("lifestyle_focus", "life", "lifestyle", decoder=decode_text_list),
    _field("clinical_followup", "clin", "followup", "clinical", decoder=decode_text_list),
)


def decode_recommendations(raw: Any) -> RecommendationsNextSteps:
    """
    Object → field by field. A bare list or string has no section labels and
    is treated as lifestyle focus items.
    """
    if isinstance(raw, Mapping):
        return RecommendationsNextSteps(
            **{spec.name: spec.read(raw) for spec in RECOMMENDATIONS_FIELDS}
        )
    return RecommendationsNextSteps(lifestyle_focus=decode_text_list(raw))


ANALYSIS_FIELDS: tuple[FieldSpec, ...] = (
    _field("summary", "sum", "s"),
    _field("qc_issues", "qc", "qc_issue", decoder=object_list(QC_ISSUE)),
    _field("normalization_notes", "norm", "nn", decoder=decode_text_list),
    _field("derived_metrics", "dm", "derived", decoder=object_list(DERIVED_METRIC)),
    _field("current_state", "cs", "curr", decoder=object_list(CURRENT_STATE)),
    _field("trends", "tr", "trend", decoder=object_list(TREND)),
    _field("correlations", "corr", "cor", decoder=object_list(CORRELATION)),
    _field("paradoxes", "par", "paradox", decoder=object_list(PARADOX)),
    _field("hypotheses", "hyp", "hypothesis", decoder=object_list(HYPOTHESIS)),
    _field("risk_assessment", "risk", "ra", "risks", decoder=object_list(RISK)),
    _field("recommendations_next_steps", "rec", "next", "recs", decoder=decode_recommendations),
    _field("uncertainties", "unc", decoder=decode_text_list),
    _field("data_gaps", "gaps", "dg", decoder=decode_text_list),
)

_ENVELOPE_KEYS = ("analysis", "result", "data")


def _unwrap_envelope(raw: Mapping[str, Any]) -> Mapping[str, Any]:
    """Some responses nest the payload under a single wrapper key."""
    known = {key for spec in ANALYSIS_FIELDS for key in spec.keys}
    if known.intersection(raw):
        return raw
    for key in _ENVELOPE_KEYS:
        inner = raw.get(key)
        if isinstance(inner, Mapping):
            return inner
    return raw


def reconcile_analysis(raw: Any) -> AnalysisResult:
    """
    Map an arbitrary inference payload onto AnalysisResult.

    Never raises: unparseable text, non-object JSON, missing, extra and
    mistyped fields all resolve to typed defaults.
    """
    if isinstance(raw, str):
        try:
            raw = parse_inference_text(raw)
        except MalformedInferenceResponseError as e:
            logger.warning("reconcile_unparseable_text", error=str(e))
            return AnalysisResult()

    if not isinstance(raw, Mapping):
        logger.warning("reconcile_non_object_payload", payload_type=type(raw).__name__)
        return AnalysisResult()

    payload = _unwrap_envelope(raw)
    values = {spec.name: spec.read(payload) for spec in ANALYSIS_FIELDS}

    try:
        return AnalysisResult(**values)
    except ValidationError as e:
        logger.error("reconcile_analysis_rejected", errors=e.error_count())
        return AnalysisResult()


# KPI reconciliation
KPI_FIELDS: tuple[FieldSpec, ...] = (
    _field("id", "kpi_id", "key"),
    _field("name", "n"),
    _field("category", "cat", "c"),
    _field("formula", "f"),
    _field("required_metrics", "m", "metrics", decoder=decode_text_list),
    _field("value", "v", "val", decoder=decode_optional_float),
    _field("unit", "u"),
    _field("optimal_range", "r", "range"),
    _field("description", "d", "desc"),
)


class KPIReconciliationOutcome(BaseModel):
    kpis: list[CalculatedKPI] = Field(default_factory=list)
    report: KPIReconciliation = Field(default_factory=KPIReconciliation)


def extract_kpi_items(raw: Any) -> list[Any]:
    """
    Accept a bare array or an object wrapping it under kpis/indicators/k.

    The object may itself sit under one of the analysis envelope keys.
    """
    if isinstance(raw, list):
        return raw
    if not isinstance(raw, Mapping):
        return []
    candidates = [raw, *(raw.get(key) for key in _ENVELOPE_KEYS)]
    for candidate in candidates:
        if not isinstance(candidate, Mapping):
            continue
        for key in ("kpis", "indicators", "k"):
            items = candidate.get(key)
            if isinstance(items, list):
                return items
    return []


def _decode_kpi(item: Any, catalog: Mapping[str, KPIDefinition]) -> CalculatedKPI | None:
    if not isinstance(item, Mapping):
        return None
    values = {spec.name: spec.read(item) for spec in KPI_FIELDS}
    if not values["id"]:
        return None

    definition = catalog.get(values["id"])
    if definition is not None:
        values["name"] = values["name"] or definition.name
        values["category"] = values["category"] or definition.category
        values["formula"] = values["formula"] or definition.formula
        values["required_metrics"] = values["required_metrics"] or sorted(
            definition.required_metrics
        )
        values["description"] = values["description"] or definition.description

    try:
        return CalculatedKPI(**values)
    except ValidationError:
        return None


def reconcile_kpis(raw: Any, eligible: Sequence[KPIDefinition]) -> KPIReconciliationOutcome:
    """
    Decode the returned KPI array and compare it with the local eligibility list.

    Count mismatches and missing ids are logged, never raised.
    """
    by_id = {kpi.id: kpi for kpi in eligible}
    items = extract_kpi_items(raw)

    kpis: list[CalculatedKPI] = []
    seen: set[str] = set()
    dropped = 0
    for item in items:
        kpi = _decode_kpi(item, by_id)
        if kpi is None or kpi.id in seen:
            dropped += 1
            continue
        seen.add(kpi.id)
        kpis.append(kpi)

    report = KPIReconciliation(
        expected_count=len(eligible),
        received_count=len(kpis),
        missing_ids=[kpi.id for kpi in eligible if kpi.id not in seen],
        unexpected_ids=[kpi.id for kpi in kpis if kpi.id not in by_id],
    )

    if report.count_mismatch:
        logger.warning(
            "kpi_count_mismatch",
            expected=report.expected_count,
            received=report.received_count,
            dropped_items=dropped,
        )
    if report.missing_ids:
        logger.warning("kpi_ids_missing", missing_ids=report.missing_ids)
    if report.unexpected_ids:
        logger.info("kpi_ids_unexpected", unexpected_ids=report.unexpected_ids)

    return KPIReconciliationOutcome(kpis=kpis, report=report)
