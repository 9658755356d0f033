"""Tests for structlog setup."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
import structlog

from healthmetrics.config import LoggingConfig
from healthmetrics.observability import configure_logging


@pytest.fixture(autouse=True)
def reset_structlog() -> Iterator[None]:
    yield
    structlog.reset_defaults()


@pytest.mark.parametrize("fmt", ["json", "console"])
def test_configure_logging_selects_renderer(fmt: str) -> None:
    configure_logging(LoggingConfig(level="DEBUG", format=fmt))

    processors = structlog.get_config()["processors"]
    expected = structlog.processors.JSONRenderer if fmt == "json" else structlog.dev.ConsoleRenderer
    assert structlog.is_configured()
    assert isinstance(processors[-1], expected)

