"""Exception hierarchy for the health-metrics pipeline."""


class HealthMetricsError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(HealthMetricsError):
    """Invalid static configuration: sampler cap, catalog, alias table, pricing model."""


class InsufficientDataError(HealthMetricsError):
    """Not enough measurements to justify an inference call."""

    def __init__(self, required: int, actual: int) -> None:
        self.required = required
        self.actual = actual
        super().__init__(f"Need at least {required} measurements, got {actual}")


class MeasurementSourceError(HealthMetricsError):
    """The measurement source could not return data."""


class InferenceError(HealthMetricsError):
    """The external inference call failed. Never retried inside the pipeline."""


class InferenceTimeoutError(InferenceError):
    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Inference call exceeded {timeout_seconds}s timeout")


class MalformedInferenceResponseError(InferenceError):
    """Empty or non-JSON response body."""
