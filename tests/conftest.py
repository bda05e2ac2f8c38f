"""Shared fixtures."""

import pytest

from host_sim import HostSimulator
from n8nkeeper.environment import reset_environment_store


@pytest.fixture
def host(tmp_path, monkeypatch):
    """Simulated Windows host, active for the duration of the test."""
    sim = HostSimulator(tmp_path)
    sim.setup()
    sim.activate(monkeypatch)
    yield sim
    reset_environment_store()
