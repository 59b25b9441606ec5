"""Shared fixtures: isolated data directory, registry database, fake engines."""

import os
import tempfile

# Must run before gox.config is imported, which creates the data directory.
os.environ.setdefault("GOX_DATA_DIR", tempfile.mkdtemp(prefix="gox-test-"))

from pathlib import Path

import pytest
from helpers import RUNNING_ENGINE, make_server

from gox.models import ServerDescriptor, initialize_db
from gox.registry import ServerRegistry
from gox.supervisor import ProcessSupervisor


@pytest.fixture
def server() -> ServerDescriptor:
    return make_server()


@pytest.fixture
def db(tmp_path: Path):
    """Point the ORM at a fresh SQLite file for one test."""
    database = initialize_db(tmp_path / "gox.db")
    yield database
    database.close()


@pytest.fixture
def registry(db) -> ServerRegistry:
    return ServerRegistry()


@pytest.fixture
def make_engine(tmp_path: Path):
    """Factory writing an executable shell script that stands in for the engine."""
    counter = iter(range(1000))

    def _make(script: str = RUNNING_ENGINE) -> Path:
        path = tmp_path / f"engine-{next(counter)}"
        path.write_text(script)
        path.chmod(0o755)
        return path

    return _make


@pytest.fixture
def running_engine(make_engine) -> Path:
    return make_engine()


@pytest.fixture
def supervisor_factory(tmp_path: Path):
    """Factory for supervisors with a short liveness window; all are stopped on teardown."""
    created = []

    def _make(binary_path, **kwargs) -> ProcessSupervisor:
        kwargs.setdefault("config_path", tmp_path / "xray_config.json")
        kwargs.setdefault("liveness_wait", 0.3)
        kwargs.setdefault("poll_interval", 0.02)
        kwargs.setdefault("stop_timeout", 5.0)
        supervisor = ProcessSupervisor(binary_path, **kwargs)
        created.append(supervisor)
        return supervisor

    yield _make

    for supervisor in created:
        supervisor.shutdown()
