"""Shared test fixtures and configuration."""

from __future__ import annotations

import contextlib
import io

import pytest
from rich.console import Console


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Set default timeout for all tests."""
    for item in items:
        with contextlib.suppress(AttributeError):
            item.add_marker(pytest.mark.timeout(10))


@pytest.fixture
def mock_console() -> Console:
    """Provide a plain, wide console that writes to a StringIO for testing."""
    return Console(file=io.StringIO(), width=160, force_terminal=False, color_system=None)
