"""
Shared pytest fixtures for relspine tests.

This module provides:
- Standard upgrade scenario: release ``s0`` in ``b2bi`` at revision 2, app 6.2.1.1
- Standard rollback scenario: revision 2 (6.2.2.0) with revision 1 (6.2.1.1)
- Scripted clusters that start up and then converge
- Settings with zero monitor delays and a temporary artifact directory

No test touches a real cluster, a real helm binary, or sleeps.
"""

from __future__ import annotations

from pathlib import Path

import pytest
import structlog

from relspine.core.logging import clear_context
from relspine.transition.config import TransitionSettings
from relspine.transition.models import ReleaseSnapshot
from tests._support.fakes import (
    HISTORY,
    LIVE_VALUES,
    NAMESPACE,
    PACKAGES,
    RELEASE,
    FakeReleaseManager,
    ScriptedCluster,
    healthy_batch,
    starting_batch,
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep RELSPINE_* variables and stray .env files out of the tests."""
    import os

    for key in list(os.environ):
        if key.startswith("RELSPINE_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture(autouse=True)
def _reset_logging():
    """The CLI configures structlog against its own captured stderr; undo that."""
    yield
    clear_context()
    structlog.reset_defaults()


@pytest.fixture
def snapshot() -> ReleaseSnapshot:
    return ReleaseSnapshot(
        name=RELEASE,
        namespace=NAMESPACE,
        revision=2,
        chart="ibm-b2bi-prod-3.1.0",
        app_version="6.2.1.1",
        status="deployed",
    )


@pytest.fixture
def release_manager(snapshot: ReleaseSnapshot) -> FakeReleaseManager:
    """Release at 6.2.1.1 (chart 3.1.0), ready to upgrade."""
    return FakeReleaseManager([snapshot], values=LIVE_VALUES, packages=PACKAGES)


@pytest.fixture
def rollback_release_manager() -> FakeReleaseManager:
    """Release at revision 2 (6.2.2.0) with revision 1 (6.2.1.1) in history."""
    current = ReleaseSnapshot(
        name=RELEASE,
        namespace=NAMESPACE,
        revision=2,
        chart="ibm-b2bi-prod-3.2.0",
        app_version="6.2.2.0",
        status="deployed",
    )
    return FakeReleaseManager([current], values=LIVE_VALUES, packages=PACKAGES, history=HISTORY)


@pytest.fixture
def healthy_cluster() -> ScriptedCluster:
    return ScriptedCluster([starting_batch(), healthy_batch()])


@pytest.fixture
def artifact_dir(tmp_path: Path) -> Path:
    path = tmp_path / "artifacts"
    path.mkdir()
    return path


@pytest.fixture
def settings(artifact_dir: Path) -> TransitionSettings:
    return TransitionSettings(
        artifact_dir=artifact_dir,
        monitor_max_ticks=3,
        monitor_tick_interval=0,
        monitor_initial_delay=0,
    )
