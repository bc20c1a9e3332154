"""
Global test fixtures for the mltrack test suite.

Every test runs with a clean tracking environment: no MLTRACK_* variables
from the developer's shell, no config file, no tracking URI set by a
previous test and no active run left on the fluent stack.
"""
import os

import pytest

from mltrack.common.common import EnvVars
from mltrack.store.file_store import FileStore
from mltrack.tracking import fluent, registry


@pytest.fixture(autouse=True)
def clean_tracking_environment(tmp_path, monkeypatch):
    """Isolate the process wide tracking state of each test."""
    for env_var in EnvVars:
        monkeypatch.delenv(env_var.value, raising=False)
    monkeypatch.setenv(EnvVars.CONFIG.value, str(tmp_path / "no-such-config.yaml"))
    monkeypatch.setenv(EnvVars.WORKSPACE_CONFIG.value, str(tmp_path / "no-such-workspace.yaml"))
    registry.set_tracking_uri(None)
    registry._clear_store_caches()
    fluent._active_run_stack.clear()
    fluent._active_experiment_id = None
    yield
    fluent._active_run_stack.clear()
    fluent._active_experiment_id = None
    registry._clear_store_caches()
    registry.set_tracking_uri(None)


@pytest.fixture
def store_root(tmp_path):
    """Directory holding the metadata of a FileStore."""
    return str(tmp_path / "mlruns")


@pytest.fixture
def file_store(store_root):
    """A FileStore in a temporary directory."""
    return FileStore(store_root)


@pytest.fixture
def tracking_dir(tmp_path):
    """Point the fluent API and default clients at a temporary file store."""
    root = str(tmp_path / "tracking")
    registry.set_tracking_uri(root)
    return root


@pytest.fixture
def local_file(tmp_path):
    """A small text file to log as an artifact."""
    path = tmp_path / "inputs" / "notes.txt"
    os.makedirs(path.parent, exist_ok=True)
    path.write_text("hello artifacts")
    return str(path)
