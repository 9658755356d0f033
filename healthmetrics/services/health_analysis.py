"""
Pipeline orchestration.

One invocation runs Normalizer → Derived-Metric Calculator → Eligibility
Resolver → Sampler/Assembler → inference call → Reconciler. Every stage except
the inference call is synchronous and pure; the call itself is awaited once
with a hard timeout. Nothing is persisted here: the caller receives the
report and decides what to store.
"""

import time
from collections import Counter
from datetime import datetime

import structlog

from healthmetrics.config import AppConfig, PipelineConfig, get_model_config
from healthmetrics.domain.catalog import KPICatalog, default_catalog
from healthmetrics.domain.errors import InsufficientDataError, MeasurementSourceError
from healthmetrics.domain.models import (
    AvailableMetricValue,
    HealthAnalysisReport,
    KPIDefinition,
    MeasurementPoint,
    UserProfile,
)
from healthmetrics.services.catalog_cache import CatalogMetadataCache
from healthmetrics.services.derived_metrics import DerivedMetricCalculator
from healthmetrics.services.eligibility import (
    collect_latest_values,
    missing_metrics,
    resolve_eligible_kpis,
)
from healthmetrics.services.inference import InferenceClient, PydanticAIInferenceClient
from healthmetrics.services.normalizer import MetricNormalizer
from healthmetrics.services.payload import (
    PayloadAssembler,
    build_kpi_worklist,
    estimate_tokens,
    format_latest_values,
    get_optimization_level,
)
from healthmetrics.services.prompts import KPI_PROMPT, get_analysis_prompt
from healthmetrics.services.reconciler import (
    KPIReconciliationOutcome,
    parse_inference_text,
    reconcile_analysis,
    reconcile_kpis,
)
from healthmetrics.services.sources import CatalogMetadataStore, MeasurementSource

logger = structlog.get_logger(__name__)


class HealthAnalysisService:
    """
    Runs the derivation and reconciliation pipeline for one owner at a time.

    Catalog, alias table (via the normalizer) and bootstrap rules (via the
    calculator) are injected; defaults are the built-in immutable tables.
    `kpi_client` defaults to `client` when not given.
    """

    def __init__(
        self,
        source: MeasurementSource,
        client: InferenceClient,
        *,
        kpi_client: InferenceClient | None = None,
        catalog: KPICatalog | None = None,
        normalizer: MetricNormalizer | None = None,
        calculator: DerivedMetricCalculator | None = None,
        metadata_cache: CatalogMetadataCache | None = None,
        pipeline: PipelineConfig | None = None,
    ) -> None:
        self.source = source
        self.client = client
        self.kpi_client = kpi_client or client
        self.catalog = catalog or default_catalog()
        self.normalizer = normalizer or MetricNormalizer()
        self.calculator = calculator or DerivedMetricCalculator()
        self.metadata_cache = metadata_cache
        self.pipeline = pipeline or PipelineConfig()
        self.level = get_optimization_level(self.pipeline.optimization_level)
        self.logger = logger.bind(component="health_analysis_service")

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        source: MeasurementSource,
        metadata_store: CatalogMetadataStore | None = None,
    ) -> "HealthAnalysisService":
        """Wire pydantic-ai clients and the metadata cache from application config."""
        client = PydanticAIInferenceClient(**get_model_config("analysis", config))
        kpi_client = PydanticAIInferenceClient(**get_model_config("kpis", config))
        cache = None
        if metadata_store is not None:
            cache = CatalogMetadataCache(
                metadata_store, ttl_seconds=config.pipeline.catalog_cache_ttl_seconds
            )
        return cls(
            source,
            client,
            kpi_client=kpi_client,
            metadata_cache=cache,
            pipeline=config.pipeline,
        )

    async def _fetch(self, owner_id: str, minimum: int) -> list[MeasurementPoint]:
        result = await self.source.fetch_measurements(
            owner_id, limit=self.pipeline.measurement_fetch_limit
        )
        if result.is_err():
            error = result.unwrap_err()
            self.logger.error("measurement_fetch_failed", owner_id=owner_id, error=str(error))
            raise MeasurementSourceError(f"Failed to fetch measurements: {error}") from error

        points = result.unwrap()
        if len(points) < minimum:
            self.logger.info(
                "insufficient_measurements", owner_id=owner_id, required=minimum, actual=len(points)
            )
            raise InsufficientDataError(required=minimum, actual=len(points))
        return points

    def _prepare(
        self, points: list[MeasurementPoint]
    ) -> tuple[list[MeasurementPoint], dict[str, AvailableMetricValue], list[KPIDefinition]]:
        normalized = self.normalizer.normalize_points(points)
        derivation = self.calculator.apply(collect_latest_values(normalized))
        eligible = resolve_eligible_kpis(self.catalog, derivation.available.keys())
        gaps = missing_metrics(self.catalog, derivation.available.keys())
        blocking = Counter(key for keys in gaps.values() for key in keys)

        self.logger.info(
            "kpi_eligibility_resolved",
            available_metrics=len(derivation.available),
            derived_metrics=derivation.derived_keys,
            eligible_kpis=len(eligible),
            blocked_kpis=len(gaps),
            most_needed_metrics=[key for key, _ in blocking.most_common(5)],
            catalog_size=len(self.catalog),
        )
        return normalized, derivation.available, eligible

    async def analyze(
        self,
        owner_id: str,
        profile: UserProfile | None = None,
        now: datetime | None = None,
    ) -> HealthAnalysisReport:
        """
        Full health analysis for one owner.

        Raises:
            MeasurementSourceError: the source returned an error.
            InsufficientDataError: fewer measurements than the configured minimum.
            InferenceError: the call failed, timed out or returned no JSON at all.
        """
        start = time.perf_counter()
        self.logger.info("health_analysis_started", owner_id=owner_id)

        points = await self._fetch(owner_id, self.pipeline.min_measurements_analysis)
        normalized, available, eligible = self._prepare(points)

        metadata = await self.metadata_cache.get() if self.metadata_cache else None
        assembler = PayloadAssembler(
            self.level,
            max_points_per_metric=self.pipeline.max_points_per_metric,
            catalog_metadata=metadata,
        )
        payload = assembler.assemble(normalized, eligible, available, profile=profile, now=now)

        raw_text = await self.client.complete(
            get_analysis_prompt(self.pipeline.prompt_variant), payload.user_prompt
        )
        parsed = parse_inference_text(raw_text)
        analysis = reconcile_analysis(parsed)
        kpi_outcome = reconcile_kpis(parsed, eligible)

        timestamps = [p.measured_at for p in normalized]
        duration = time.perf_counter() - start

        self.logger.info(
            "health_analysis_completed",
            owner_id=owner_id,
            measurements=len(normalized),
            sampled=payload.stats.optimized,
            kpis_returned=len(kpi_outcome.kpis),
            duration_seconds=round(duration, 3),
        )

        return HealthAnalysisReport(
            analysis=analysis,
            calculated_kpis=kpi_outcome.kpis,
            kpi_reconciliation=kpi_outcome.report,
            metrics_count=payload.metrics_count,
            measurements_count=len(normalized),
            sampled_count=payload.stats.optimized,
            estimated_tokens=payload.estimated_tokens,
            date_range_start=min(timestamps),
            date_range_end=max(timestamps),
            model_name=getattr(self.client, "model_name", ""),
            analysis_duration_seconds=duration,
        )

    async def calculate_kpis(self, owner_id: str) -> KPIReconciliationOutcome:
        """
        KPI-only run over the latest value per metric.

        No inference call is made when no catalog formula is eligible.
        """
        points = await self._fetch(owner_id, self.pipeline.min_measurements_kpis)
        _, available, eligible = self._prepare(points)

        if not eligible:
            self.logger.info(
                "kpi_calculation_skipped", owner_id=owner_id, reason="no_eligible_kpis"
            )
            return KPIReconciliationOutcome()

        precision = self.level.precision + 1
        user_prompt = (
            "Latest measurements (CSV):\n"
            f"{format_latest_values(available, precision=precision)}\n\n"
            f"{build_kpi_worklist(eligible, available, precision=precision)}"
        )
        self.logger.info(
            "kpi_payload_assembled",
            owner_id=owner_id,
            eligible_kpis=len(eligible),
            estimated_tokens=estimate_tokens(user_prompt),
        )

        raw_text = await self.kpi_client.complete(KPI_PROMPT, user_prompt)
        return reconcile_kpis(parse_inference_text(raw_text), eligible)
