"""Collaborator interfaces the orchestrator depends on.

The orchestrator never shells out itself. It talks to a release manager
and a cluster through these protocols; :mod:`relspine.transition.helm` and
:mod:`relspine.transition.cluster` are the production implementations and
the test suite supplies in-memory fakes.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from relspine.transition.models import (
    HealthSample,
    PackageVersion,
    ReleaseSnapshot,
    RevisionRecord,
)


@runtime_checkable
class ReleaseManager(Protocol):
    """Stores and applies releases."""

    def list_releases(self, namespace: str) -> list[ReleaseSnapshot]: ...

    def get_values(self, release: str, namespace: str) -> dict[str, Any]: ...

    def update_repo(self, repo: str) -> None: ...

    def search_package_versions(self, chart_ref: str) -> list[PackageVersion]: ...

    def dry_run_apply(
        self,
        release: str,
        namespace: str,
        chart_ref: str,
        package_version: str,
        values_file: Path,
    ) -> str: ...

    def apply(
        self,
        release: str,
        namespace: str,
        chart_ref: str,
        package_version: str,
        values_file: Path,
        timeout: str,
        reuse_values: bool = True,
    ) -> str: ...

    def rollback(self, release: str, namespace: str, revision: int, timeout: str) -> str: ...

    def history(self, release: str, namespace: str, max_revisions: int = 50) -> list[RevisionRecord]: ...


@runtime_checkable
class ClusterClient(Protocol):
    """Read-only view of workload instances."""

    def namespace_exists(self, namespace: str) -> bool: ...

    def list_instances(self, namespace: str) -> list[HealthSample]: ...


__all__ = ["ClusterClient", "ReleaseManager"]
