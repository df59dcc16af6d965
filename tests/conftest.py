"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest


@pytest.fixture(autouse=True)
def _drop_cli_log_handler() -> Iterator[None]:
    """Remove the stderr handler the CLI installs so it cannot outlive a test."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler.get_name() == "healthctl":
            root.removeHandler(handler)
    root.setLevel(level)
