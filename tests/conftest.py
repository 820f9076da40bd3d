"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import pytest

from system_monitor.config import SourcesConfig


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "windows: mark test as Windows-specific"
    )
    config.addinivalue_line(
        "markers", "linux: mark test as Linux-specific"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )


class FakeClock:
    """Manually advanced clock returning seconds."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock(100.0)


@pytest.fixture
def sources_config():
    """Sources config with the stock TTLs and timeouts."""
    return SourcesConfig()

