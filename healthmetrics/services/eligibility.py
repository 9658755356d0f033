"""KPI eligibility: which catalog formulas can be computed from what we have."""

from collections.abc import Iterable

from healthmetrics.domain.catalog import KPICatalog
from healthmetrics.domain.models import AvailableMetricValue, KPIDefinition, MeasurementPoint


def collect_latest_values(points: Iterable[MeasurementPoint]) -> dict[str, AvailableMetricValue]:
    """Latest value per canonical key. Ties on timestamp keep the first point seen."""
    latest: dict[str, MeasurementPoint] = {}
    for point in points:
        current = latest.get(point.metric)
        if current is None or point.measured_at > current.measured_at:
            latest[point.metric] = point

    return {
        key: AvailableMetricValue(value=p.value, unit=p.unit, measured_at=p.measured_at)
        for key, p in latest.items()
    }


def resolve_eligible_kpis(
    catalog: KPICatalog | Iterable[KPIDefinition], available_keys: Iterable[str]
) -> list[KPIDefinition]:
    """
    Catalog subset whose required metrics are all available, in catalog order.

    O(catalog_size × avg_required_metrics) set-membership scan.
    """
    keys = frozenset(available_keys)
    return [kpi for kpi in catalog if kpi.required_metrics <= keys]


def missing_metrics(
    catalog: KPICatalog | Iterable[KPIDefinition], available_keys: Iterable[str]
) -> dict[str, list[str]]:
    """For each ineligible KPI, the sorted keys it still needs."""
    keys = frozenset(available_keys)
    return {
        kpi.id: sorted(kpi.required_metrics - keys)
        for kpi in catalog
        if not kpi.required_metrics <= keys
    }
