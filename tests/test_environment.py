"""
Tests for environment stores.
"""

import os

import pytest

from host_sim import make_command

from n8nkeeper import environment
from n8nkeeper.environment import (
    Scope,
    SimulationEnvironmentStore,
    get_environment_store,
    join_path,
    reset_environment_store,
    split_path,
)


@pytest.fixture(autouse=True)
def reset_store():
    """Reset the cached store around each test."""
    reset_environment_store()
    yield
    reset_environment_store()


class TestSplitJoin:
    """Test PATH string helpers."""

    def test_split_discards_empty_entries(self):
        assert split_path(r"C:\a;;C:\b;") == [r"C:\a", r"C:\b"]

    def test_split_empty(self):
        assert split_path("") == []
        assert split_path(None) == []

    def test_join(self):
        assert join_path([r"C:\a", r"C:\b"]) == r"C:\a;C:\b"


class TestSimulationStore:
    """Test the in-memory simulation store."""

    def test_get_set_roundtrip_per_scope(self):
        store = SimulationEnvironmentStore()
        store.set(Scope.USER, [r"C:\u"])
        store.set(Scope.MACHINE, [r"C:\m1", r"C:\m2"])
        assert store.get(Scope.USER) == [r"C:\u"]
        assert store.get_raw(Scope.MACHINE) == r"C:\m1;C:\m2"
        assert store.get(Scope.PROCESS) == []

    def test_initial_values(self):
        store = SimulationEnvironmentStore(initial={Scope.USER: r"C:\x"})
        assert store.get(Scope.USER) == [r"C:\x"]
        assert store.writes == []

    def test_records_writes(self):
        store = SimulationEnvironmentStore()
        store.set_raw(Scope.USER, "a")
        store.set_raw(Scope.PROCESS, "b")
        assert store.writes == [Scope.USER, Scope.PROCESS]

    def test_persists_to_state_file(self, tmp_path):
        state_file = tmp_path / "sim" / "environment.json"
        store = SimulationEnvironmentStore(state_file=state_file)
        store.set(Scope.USER, [r"C:\u"])
        store.set(Scope.MACHINE, [r"C:\m"])
        store.set(Scope.PROCESS, [r"C:\p"])

        reloaded = SimulationEnvironmentStore(state_file=state_file)
        assert reloaded.get(Scope.USER) == [r"C:\u"]
        assert reloaded.get(Scope.MACHINE) == [r"C:\m"]
        # Process scope is never persisted
        assert reloaded.get(Scope.PROCESS) == []

    def test_resolve_command_uses_process_path(self, tmp_path):
        bin_dir = tmp_path / "bin"
        make_command(bin_dir, "node")
        store = SimulationEnvironmentStore()
        assert store.resolve_command("node") is None

        store.set(Scope.PROCESS, [str(tmp_path / "missing"), str(bin_dir)])
        resolved = store.resolve_command("node")
        assert resolved is not None
        assert os.path.dirname(resolved) == str(bin_dir)

    def test_is_simulation(self):
        store = SimulationEnvironmentStore()
        assert store.is_simulation
        assert store.mode_name == "Simulation"


class TestGetEnvironmentStore:
    """Test the provider factory."""

    def test_simulation_when_sim_root_set(self, tmp_path, monkeypatch):
        monkeypatch.setenv("N8NKEEPER_SIM_ROOT", str(tmp_path))
        store = get_environment_store()
        assert isinstance(store, SimulationEnvironmentStore)
        assert store.state_file == tmp_path / "environment.json"

    def test_instance_is_cached(self, tmp_path, monkeypatch):
        monkeypatch.setenv("N8NKEEPER_SIM_ROOT", str(tmp_path))
        assert get_environment_store() is get_environment_store()

    def test_process_scope_seeded_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("N8NKEEPER_SIM_ROOT", str(tmp_path))
        monkeypatch.setenv("PATH", "seeded")
        assert get_environment_store().get_raw(Scope.PROCESS) == "seeded"

    @pytest.mark.skipif(os.name == "nt", reason="registry store is available on Windows")
    def test_error_off_windows_without_sim_root(self, monkeypatch):
        monkeypatch.delenv("N8NKEEPER_SIM_ROOT", raising=False)
        with pytest.raises(environment.EnvironmentStoreError, match="only available on Windows"):
            get_environment_store()
