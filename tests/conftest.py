"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os

import pytest

_LEAKY_ENV_PREFIXES = ("CWKIT_", "CW_")
_LEAKY_ENV_KEYS = ("PM_USE_CHILD",)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the operator's own cwkit settings out of the tests."""
    for key in list(os.environ):
        if key.startswith(_LEAKY_ENV_PREFIXES) or key in _LEAKY_ENV_KEYS:
            monkeypatch.delenv(key, raising=False)


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)
