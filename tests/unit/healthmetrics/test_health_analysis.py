"""
Tests for pipeline orchestration.

Inference is faked with an in-process client that records prompts and returns
canned response text, so the full pipeline runs without network access.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import pytest
from structlog.testing import capture_logs

from healthmetrics.config import AIProviderConfig, AppConfig, LoggingConfig, PipelineConfig
from healthmetrics.domain.errors import (
    InsufficientDataError,
    MalformedInferenceResponseError,
    MeasurementSourceError,
)
from healthmetrics.domain.models import CatalogEntry, MeasurementPoint, UserProfile
from healthmetrics.services.catalog_cache import CatalogMetadataCache
from healthmetrics.services.health_analysis import HealthAnalysisService
from healthmetrics.services.inference import PydanticAIInferenceClient
from healthmetrics.services.prompts import COMPACT_ANALYSIS_PROMPT, KPI_PROMPT
from healthmetrics.services.sources import InMemoryMeasurementSource, StaticCatalogMetadataStore

NOW = datetime(2024, 6, 1, tzinfo=UTC)


class FakeInferenceClient:
    def __init__(self, response: str, model_name: str = "fake:model") -> None:
        self.response = response
        self.model_name = model_name
        self.calls: list[tuple[str, str]] = []

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        return self.response


def _point(label: str, value: float, unit: str, days_ago: int) -> MeasurementPoint:
    return MeasurementPoint(
        metric=label, value=value, unit=unit, measured_at=NOW - timedelta(days=days_ago)
    )


@pytest.fixture
def measurements() -> list[MeasurementPoint]:
    weights = [_point("Body Weight", 80 - d * 0.5, "kg", d * 7) for d in range(12)]
    return weights + [
        _point("height", 1.75, "m", 10),
        _point("Total Cholesterol", 200, "mg/dL", 3),
        _point("HDL-C", 50, "mg/dL", 3),
    ]


@pytest.fixture
def source(measurements: list[MeasurementPoint]) -> InMemoryMeasurementSource:
    return InMemoryMeasurementSource(
        {"owner-1": measurements, "owner-short": measurements[:4]},
        failing_owners=["owner-down"],
    )


@pytest.fixture
def analysis_response() -> str:
    return json.dumps(
        {
            "sum": "Weight trending down, lipids acceptable.",
            "qc": [{"item": "height", "type": "missing", "detail": "single reading"}],
            "tr": [{"m": "weight", "dir": "down", "da": -5.5, "dp": "-7%"}],
            "risk": ["Low cardiovascular risk"],
            "kpis": [
                {"id": "body_bmi", "v": 22.86, "u": "kg/m²", "r": "18.5-24.9"},
                {"id": "lipid_tc_hdl", "v": 4.0, "u": "ratio", "r": "<4"},
            ],
        }
    )


class TestAnalyze:
    async def test_full_pipeline_produces_report(
        self, source: InMemoryMeasurementSource, analysis_response: str
    ) -> None:
        client = FakeInferenceClient(analysis_response)
        service = HealthAnalysisService(source, client)

        report = await service.analyze("owner-1", profile=UserProfile(age=35), now=NOW)

        assert report.analysis.summary.startswith("Weight trending down")
        assert report.analysis.trends[0].delta_pct == -7.0
        assert report.analysis.risk_assessment[0].rationale == "Low cardiovascular risk"
        assert [k.id for k in report.calculated_kpis] == ["body_bmi", "lipid_tc_hdl"]
        assert report.calculated_kpis[0].name == "BMI"
        assert report.measurements_count == 15
        assert report.metrics_count == 4
        assert report.sampled_count == 8
        assert report.model_name == "fake:model"
        assert report.date_range_start == NOW - timedelta(days=77)
        assert report.date_range_end == NOW - timedelta(days=0)
        assert report.estimated_tokens > 0

    async def test_payload_uses_canonical_keys_and_derived_inputs(
        self, source: InMemoryMeasurementSource, analysis_response: str
    ) -> None:
        client = FakeInferenceClient(analysis_response)
        service = HealthAnalysisService(source, client)

        report = await service.analyze("owner-1", now=NOW)

        system_prompt, user_prompt = client.calls[0]
        assert system_prompt == COMPACT_ANALYSIS_PROMPT
        assert "Body Weight" not in user_prompt
        assert "\nweight,80.0,kg," in user_prompt
        assert "body_bmi|BMI|" in user_prompt
        # nonhdl is derived locally, so the second-order lipid ratio is on the worklist
        assert "lipid_nonhdl_hdl|" in user_prompt
        assert "nonhdl=150.00 mg/dL" in user_prompt
        assert "lipid_nonhdl_hdl" in report.kpi_reconciliation.missing_ids
        assert report.kpi_reconciliation.count_mismatch

    async def test_catalog_metadata_columns_when_cache_configured(
        self, source: InMemoryMeasurementSource, analysis_response: str
    ) -> None:
        store = StaticCatalogMetadataStore(
            {"weight": CatalogEntry(display_name="Weight", category="body")}
        )
        client = FakeInferenceClient(analysis_response)
        service = HealthAnalysisService(
            source, client, metadata_cache=CatalogMetadataCache(store)
        )

        await service.analyze("owner-1", now=NOW)
        await service.analyze("owner-1", now=NOW)

        assert "metric,display_name,category,value,unit,date" in client.calls[0][1]
        assert "weight,Weight,body," in client.calls[0][1]
        assert store.load_count == 1

    async def test_insufficient_data_skips_inference(
        self, source: InMemoryMeasurementSource
    ) -> None:
        client = FakeInferenceClient("{}")
        service = HealthAnalysisService(source, client)

        with pytest.raises(InsufficientDataError) as exc_info:
            await service.analyze("owner-short")

        assert (exc_info.value.required, exc_info.value.actual) == (5, 4)
        assert client.calls == []

    async def test_source_failure_raises(self, source: InMemoryMeasurementSource) -> None:
        service = HealthAnalysisService(source, FakeInferenceClient("{}"))

        with pytest.raises(MeasurementSourceError):
            await service.analyze("owner-down")

    async def test_empty_response_is_an_inference_error(
        self, source: InMemoryMeasurementSource
    ) -> None:
        service = HealthAnalysisService(source, FakeInferenceClient("   "))

        with pytest.raises(MalformedInferenceResponseError):
            await service.analyze("owner-1", now=NOW)

    async def test_unexpected_json_shape_still_yields_report(
        self, source: InMemoryMeasurementSource
    ) -> None:
        service = HealthAnalysisService(source, FakeInferenceClient("[1, 2, 3]"))

        report = await service.analyze("owner-1", now=NOW)

        assert report.analysis.summary == ""
        assert report.calculated_kpis == []
        assert "body_bmi" in report.kpi_reconciliation.missing_ids

    async def test_pipeline_config_controls_sampling_and_prompt(
        self, source: InMemoryMeasurementSource, analysis_response: str
    ) -> None:
        client = FakeInferenceClient(analysis_response)
        pipeline = PipelineConfig(
            optimization_level="minimal",
            max_points_per_metric=2,
            prompt_variant="verbose",
            min_measurements_analysis=10,
        )
        service = HealthAnalysisService(source, client, pipeline=pipeline)

        report = await service.analyze("owner-1", now=NOW)

        assert report.sampled_count == 5
        assert '"recommendations_next_steps"' in client.calls[0][0]

        with pytest.raises(InsufficientDataError):
            await service.analyze("owner-short")

    async def test_eligibility_log_reports_blocking_metrics(
        self, source: InMemoryMeasurementSource, analysis_response: str
    ) -> None:
        with capture_logs() as logs:
            service = HealthAnalysisService(source, FakeInferenceClient(analysis_response))
            await service.analyze("owner-1", now=NOW)

        (entry,) = [e for e in logs if e["event"] == "kpi_eligibility_resolved"]
        assert entry["blocked_kpis"] == entry["catalog_size"] - entry["eligible_kpis"]
        assert 0 < len(entry["most_needed_metrics"]) <= 5
        assert not {"weight", "height", "tc", "hdl", "bmi"} & set(entry["most_needed_metrics"])


class TestCalculateKPIs:
    async def test_kpi_only_run_uses_latest_values(
        self, source: InMemoryMeasurementSource
    ) -> None:
        analysis_client = FakeInferenceClient("{}")
        kpi_client = FakeInferenceClient(
            '```json\n{"kpis": [{"id": "body_bmi", "n": "BMI", "v": 22.86}]}\n```'
        )
        service = HealthAnalysisService(source, analysis_client, kpi_client=kpi_client)

        outcome = await service.calculate_kpis("owner-1")

        assert analysis_client.calls == []
        system_prompt, user_prompt = kpi_client.calls[0]
        assert system_prompt == KPI_PROMPT
        assert user_prompt.startswith("Latest measurements (CSV):\nmetric,value,unit,date\n")
        assert user_prompt.count("\nweight,") == 1
        assert [k.value for k in outcome.kpis] == [22.86]
        assert "lipid_tc_hdl" in outcome.report.missing_ids

    async def test_lower_minimum_for_kpi_only_run(
        self, source: InMemoryMeasurementSource
    ) -> None:
        kpi_client = FakeInferenceClient('{"kpis": []}')
        service = HealthAnalysisService(source, FakeInferenceClient("{}"), kpi_client=kpi_client)

        outcome = await service.calculate_kpis("owner-short")

        # four weight readings: nothing in the catalog needs weight alone
        assert outcome.kpis == []
        assert outcome.report.expected_count == 0
        assert kpi_client.calls == []

    async def test_below_kpi_minimum(self) -> None:
        source = InMemoryMeasurementSource({"o": [_point("weight", 70, "kg", 0)] * 2})
        service = HealthAnalysisService(source, FakeInferenceClient("{}"))

        with pytest.raises(InsufficientDataError):
            await service.calculate_kpis("o")


def test_from_config_wires_pydantic_ai_clients() -> None:
    config = AppConfig(
        environment="production",
        ai_provider=AIProviderConfig(analysis_model="test", kpi_model="test", kpi_temperature=0.1),
        pipeline=PipelineConfig(catalog_cache_ttl_seconds=120),
        logging=LoggingConfig(),
    )

    service = HealthAnalysisService.from_config(
        config, InMemoryMeasurementSource(), metadata_store=StaticCatalogMetadataStore()
    )

    assert isinstance(service.client, PydanticAIInferenceClient)
    assert isinstance(service.kpi_client, PydanticAIInferenceClient)
    assert service.client.temperature == 0.3
    assert service.kpi_client.temperature == 0.1
    assert service.kpi_client.model_name == "test"
    assert service.metadata_cache is not None
    assert service.metadata_cache.ttl_seconds == 120
