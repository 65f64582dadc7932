"""Pytest configuration and shared fixtures."""

import sys
from pathlib import Path

import pytest

# Ensure the project root is in sys.path for proper imports with pytest-xdist
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from dwq.config import Settings, reset_settings  # noqa: E402
from dwq.coordination.memory import InMemoryEnsemble  # noqa: E402


@pytest.fixture(autouse=True)
def _clean_settings(monkeypatch):
    # Tracing stays off unless a test turns it on.
    monkeypatch.setenv("DWQ_LOGFIRE", "0")
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def ensemble():
    ens = InMemoryEnsemble()
    yield ens
    for session_id in ens.sessions:
        ens.expire_session(session_id)


@pytest.fixture
def fast_settings(monkeypatch) -> Settings:
    """Settings with sub-second discovery and wait timings."""
    monkeypatch.setenv("DWQ_SCAN_PERIOD_SECONDS", "0.2")
    monkeypatch.setenv("DWQ_WAIT_RECHECK_SECONDS", "0.1")
    return Settings()
