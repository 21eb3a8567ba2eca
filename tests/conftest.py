"""Test configuration for pgtune_validate."""

from __future__ import annotations

from pathlib import Path
import sys

import pytest

FIXTURES = Path(__file__).resolve().parent / "fixtures"


def pytest_sessionstart():
    repo_root = Path(__file__).resolve().parents[1]
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))


@pytest.fixture
def plan_text():
    def _load(name):
        return (FIXTURES / name).read_text(encoding="utf-8")
    return _load
