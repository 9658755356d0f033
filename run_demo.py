"""
End-to-end demonstration of the health-metrics pipeline.

This script walks through:
1. Configuration loading and validation
2. Normalization, bootstrap derivation and KPI eligibility
3. Payload assembly with token and cost estimates
4. A full analysis run (live with OPENAI_API_KEY, otherwise a canned response)
5. Reconciliation of malformed inference output

Run with: uv run python run_demo.py
"""

import asyncio
import json
import os
from datetime import UTC, datetime, timedelta

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from healthmetrics.config import get_config
from healthmetrics.domain.catalog import default_catalog
from healthmetrics.domain.models import (
    CatalogEntry,
    MeasurementOrigin,
    MeasurementPoint,
    UserProfile,
)
from healthmetrics.observability import configure_logging
from healthmetrics.services import (
    DerivedMetricCalculator,
    HealthAnalysisService,
    InMemoryMeasurementSource,
    MetricNormalizer,
    StaticCatalogMetadataStore,
    reconcile_analysis,
)
from healthmetrics.services.catalog_cache import CatalogMetadataCache
from healthmetrics.services.eligibility import collect_latest_values, resolve_eligible_kpis
from healthmetrics.services.payload import build_analysis_payload, calculate_cost

console = Console()

OWNER_ID = "demo-user"
NOW = datetime.now(UTC)


def _lab(metric: str, value: float, unit: str, at: datetime) -> MeasurementPoint:
    return MeasurementPoint(
        metric=metric, value=value, unit=unit, measured_at=at, source=MeasurementOrigin.OCR
    )


def sample_history() -> list[MeasurementPoint]:
    """Six months of mixed manual and OCR entries with inconsistent labels."""
    points: list[MeasurementPoint] = []
    for week in range(26):
        points.append(
            MeasurementPoint(
                metric="Body Weight",
                value=84.0 - week * 0.25,
                unit="kg",
                measured_at=NOW - timedelta(weeks=week),
            )
        )
    for month, (tc, hdl, tg, glucose) in enumerate(
        [(212, 44, 180, 101), (205, 46, 165, 97), (198, 49, 150, 94)]
    ):
        at = NOW - timedelta(days=60 * month + 2)
        points += [
            _lab("Total Cholesterol", tc, "mg/dL", at),
            _lab("HDL-C", hdl, "mg/dL", at),
            _lab("Triglycerides", tg, "mg/dL", at),
            _lab("Fasting Glucose", glucose, "mg/dL", at),
            _lab("Fasting Insulin", 11 - month, "uIU/mL", at),
        ]
    points.append(
        MeasurementPoint(
            metric="Stature", value=178, unit="cm", measured_at=NOW - timedelta(days=200)
        )
    )
    return points


CANNED_RESPONSE = json.dumps(
    {
        "sum": "Steady weight loss with improving lipid and glycaemic markers.",
        "qc": [{"item": "height", "type": "date", "detail": "single reading, 200 days old"}],
        "tr": [{"m": "weight", "dir": "down", "da": -6.25, "dp": "-7.4%", "c": "consistent"}],
        "risk": [{"a": "cardiometabolic", "l": "moderate", "r": "TG/HDL still above 3"}],
        "rec": {"labs": [{"t": "ApoB", "w": "confirm atherogenic load", "tm": "12 wks"}]},
        "kpis": [
            {"id": "body_bmi", "v": 24.5, "u": "kg/m²", "r": "18.5-24.9"},
            {"id": "lipid_tg_hdl", "v": 3.06, "u": "ratio", "r": "<2"},
        ],
    }
)


class CannedInferenceClient:
    """Offline stand-in that returns a fixed abbreviated-key response."""

    model_name = "offline:canned"

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        await asyncio.sleep(0.1)
        return CANNED_RESPONSE


async def demo_configuration() -> bool:
    console.print(Panel("🔧 Configuration", style="blue"))
    try:
        config = get_config()
        configure_logging(config.logging)

        table = Table(title="Pipeline Settings")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="white")
        table.add_row("Environment", config.environment)
        table.add_row("Optimization level", config.pipeline.optimization_level)
        table.add_row("Prompt variant", config.pipeline.prompt_variant)
        table.add_row("Analysis model", config.ai_provider.analysis_model)
        api_key_state = "set" if config.ai_provider.openai_api_key else "not set (offline)"
        table.add_row("API key", api_key_state)
        console.print(table)
        return True
    except Exception as e:
        console.print(f"❌ Configuration failed: {e}", style="red")
        return False


async def demo_derivation() -> bool:
    console.print(Panel("🧮 Normalization, Derivation and Eligibility", style="blue"))

    normalized = MetricNormalizer().normalize_points(sample_history())
    outcome = DerivedMetricCalculator().apply(collect_latest_values(normalized))
    catalog = default_catalog()
    eligible = resolve_eligible_kpis(catalog, outcome.available)
    covered = catalog.referenced_metrics().intersection(outcome.available)

    table = Table(title="Latest Values")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_column("Unit")
    table.add_column("Derived", style="yellow")
    for key, value in outcome.available.items():
        table.add_row(key, f"{value.value:.2f}", value.unit, "yes" if value.derived else "")
    console.print(table)

    console.print(
        f"Catalog inputs covered: {len(covered)}/{len(catalog.referenced_metrics())}"
    )
    console.print(f"Eligible KPIs: {len(eligible)} → {', '.join(k.id for k in eligible)}")
    return bool(eligible)


async def demo_payload() -> bool:
    console.print(Panel("📦 Payload Assembly", style="blue"))

    normalized = MetricNormalizer().normalize_points(sample_history())
    outcome = DerivedMetricCalculator().apply(collect_latest_values(normalized))
    eligible = resolve_eligible_kpis(default_catalog(), outcome.available)

    table = Table(title="Optimization Levels")
    table.add_column("Level", style="cyan")
    table.add_column("Points kept")
    table.add_column("Reduction")
    table.add_column("Est. tokens")
    table.add_column("Est. cost (gpt-4o)")
    for level in ("full", "standard", "minimal"):
        payload = build_analysis_payload(
            normalized, eligible, outcome.available, level=level, profile=UserProfile(age=41)
        )
        cost = calculate_cost(payload.estimated_tokens, 1500, "gpt-4o")
        table.add_row(
            level,
            f"{payload.stats.optimized}/{payload.stats.original}",
            f"{payload.stats.reduction_pct}%",
            str(payload.estimated_tokens),
            f"${cost:.4f}",
        )
    console.print(table)
    return True


async def demo_analysis() -> bool:
    console.print(Panel("🤖 Health Analysis", style="blue"))

    config = get_config()
    source = InMemoryMeasurementSource({OWNER_ID: sample_history()})
    store = StaticCatalogMetadataStore(
        {
            "weight": CatalogEntry(display_name="Body Weight", category="body"),
            "tc": CatalogEntry(display_name="Total Cholesterol", category="lipid"),
            "hdl": CatalogEntry(display_name="HDL Cholesterol", category="lipid"),
        }
    )

    if config.ai_provider.openai_api_key:
        service = HealthAnalysisService.from_config(config, source, metadata_store=store)
    else:
        console.print("No OPENAI_API_KEY: using a canned response", style="yellow")
        service = HealthAnalysisService(
            source,
            CannedInferenceClient(),
            metadata_cache=CatalogMetadataCache(store),
            pipeline=config.pipeline,
        )

    try:
        report = await service.analyze(OWNER_ID, profile=UserProfile(age=41, sex="male"))
    except Exception as e:
        console.print(f"❌ Analysis failed: {e}", style="red")
        return False

    console.print(f"\n📝 {report.analysis.summary}")

    kpi_table = Table(title="Calculated KPIs")
    kpi_table.add_column("KPI", style="cyan")
    kpi_table.add_column("Value", style="white")
    kpi_table.add_column("Optimal")
    for kpi in report.calculated_kpis:
        value = "n/a" if kpi.value is None else f"{kpi.value:g} {kpi.unit}"
        kpi_table.add_row(kpi.name or kpi.id, value, kpi.optimal_range)
    console.print(kpi_table)

    recon = report.kpi_reconciliation
    console.print(
        f"KPIs expected {recon.expected_count}, received {recon.received_count}, "
        f"missing {len(recon.missing_ids)}",
        style="yellow" if recon.count_mismatch else "green",
    )
    console.print(
        f"{report.measurements_count} measurements → {report.sampled_count} sampled, "
        f"~{report.estimated_tokens} tokens, {report.analysis_duration_seconds:.2f}s"
    )
    return True


async def demo_reconciliation() -> bool:
    console.print(Panel("🛡️ Reconciling Malformed Output", style="blue"))

    samples = {
        "empty object": {},
        "prose around JSON": 'Sure! {"sum": "fine", "unc": {"text": "one draw"}}',
        "strings for objects": {"risk": "mild anaemia", "rec": ["more iron-rich food"]},
        "not JSON": "I cannot help with that.",
    }

    table = Table(title="Reconciled Results")
    table.add_column("Input", style="cyan")
    table.add_column("Summary")
    table.add_column("Risks")
    table.add_column("Uncertainties")
    for name, raw in samples.items():
        result = reconcile_analysis(raw)
        table.add_row(
            name,
            result.summary or "—",
            "; ".join(r.rationale for r in result.risk_assessment) or "—",
            "; ".join(result.uncertainties) or "—",
        )
    console.print(table)
    return True


async def run_demo() -> None:
    console.print(Panel("🩺 Health Metrics Pipeline - Demo", style="bold blue"))

    steps = [
        ("Configuration", demo_configuration),
        ("Derivation", demo_derivation),
        ("Payload", demo_payload),
        ("Analysis", demo_analysis),
        ("Reconciliation", demo_reconciliation),
    ]

    results = []
    for name, step in steps:
        console.print(f"\n{'=' * 60}")
        try:
            results.append((name, await step()))
        except Exception as e:
            console.print(f"❌ {name} failed with exception: {e}", style="red")
            results.append((name, False))

    console.print(f"\n{'=' * 60}")
    summary = Table(title="Summary")
    summary.add_column("Step", style="cyan")
    summary.add_column("Result", style="white")
    for name, ok in results:
        summary.add_row(name, "✅ OK" if ok else "❌ FAILED")
    console.print(summary)

    if os.getenv("OPENAI_API_KEY") is None:
        console.print("💡 Set OPENAI_API_KEY in .env for a live analysis run", style="yellow")


if __name__ == "__main__":
    try:
        asyncio.run(run_demo())
    except KeyboardInterrupt:
        console.print("\n👋 Demo stopped by user", style="yellow")
