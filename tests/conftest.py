"""Shared test fixtures for the Sonrisas dental assistant test suite."""

from __future__ import annotations

import os
from unittest.mock import MagicMock, patch

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("CLINIC_TIMEZONE", "America/Guayaquil")
    os.environ.setdefault("METRICS_ENABLED", "false")


@pytest.fixture
def mock_store():
    """Patch the appointment store used by the tools with a MagicMock."""
    store = MagicMock()
    with patch("src.tools.appointments.get_appointment_store", return_value=store):
        yield store


@pytest.fixture
def make_snapshot():
    """Factory fixture for fake Firestore document snapshots."""

    def _make(doc_id: str, data: dict):
        snapshot = MagicMock()
        snapshot.id = doc_id
        snapshot.to_dict.return_value = data
        return snapshot

    return _make
