"""
Pipeline services.

Normalization, derivation, eligibility, sampling and payload assembly are
synchronous; the inference client and the orchestrating service are async.
"""

from .catalog_cache import CatalogMetadataCache
from .derived_metrics import DerivedMetricCalculator
from .health_analysis import HealthAnalysisService
from .inference import InferenceClient, PydanticAIInferenceClient
from .normalizer import MetricNormalizer
from .payload import PayloadAssembler
from .reconciler import reconcile_analysis, reconcile_kpis
from .sources import (
    CatalogMetadataStore,
    InMemoryMeasurementSource,
    MeasurementSource,
    Result,
    StaticCatalogMetadataStore,
)

__all__ = [
    "CatalogMetadataCache",
    "CatalogMetadataStore",
    "DerivedMetricCalculator",
    "HealthAnalysisService",
    "InMemoryMeasurementSource",
    "InferenceClient",
    "MeasurementSource",
    "MetricNormalizer",
    "PayloadAssembler",
    "PydanticAIInferenceClient",
    "Result",
    "StaticCatalogMetadataStore",
    "reconcile_analysis",
    "reconcile_kpis",
]
