"""Value types exchanged between the orchestrator and its collaborators.

Snapshots are captured fresh at the start of every transition and are
immutable once captured; nothing here is cached across runs.

Key Concepts:
    ReleaseSnapshot: One managed release as the release manager reports it.
    RevisionRecord: One entry of a release's revision history.
    PackageVersion: One published package version and the app version it ships.
    HealthSample: One workload instance at one poll tick.
    TransitionPlan: Everything decided for one transition before it mutates.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from relspine.transition.versions import (
    Classification,
    Direction,
    RiskTier,
    VersionIdentifier,
    parse_optional,
)

_CHART_RE = re.compile(r"^(?P<name>.+)-(?P<version>\d[0-9A-Za-z.+-]*)$")

ALLOWED_PHASES = frozenset({"Running", "PodInitializing", "Completed"})
INIT_PHASE_PREFIX = "Init:"


def split_chart(chart: str) -> tuple[str, str | None]:
    """Split ``ibm-b2bi-prod-3.1.0`` into ``("ibm-b2bi-prod", "3.1.0")``."""
    match = _CHART_RE.match(chart or "")
    if not match:
        return chart, None
    return match.group("name"), match.group("version")


@dataclass(frozen=True)
class ReleaseSnapshot:
    """Observed state of one managed release."""

    name: str
    namespace: str
    revision: int
    chart: str
    app_version: str
    status: str = "unknown"
    updated: str | None = None

    @property
    def package_name(self) -> str:
        return split_chart(self.chart)[0]

    @property
    def package_version(self) -> str | None:
        return split_chart(self.chart)[1]

    @property
    def version(self) -> VersionIdentifier | None:
        """Parsed app version, ``None`` when the release reports none."""
        return parse_optional(self.app_version)


@dataclass(frozen=True)
class RevisionRecord:
    """One historical revision of a release."""

    revision: int
    chart: str = ""
    app_version: str = ""
    status: str = ""
    updated: str | None = None
    description: str = ""

    @property
    def package_version(self) -> str | None:
        return split_chart(self.chart)[1]

    @property
    def version(self) -> VersionIdentifier | None:
        return parse_optional(self.app_version)


@dataclass(frozen=True)
class PackageVersion:
    """A published package version (chart) and the app version it ships."""

    name: str
    version: str
    app_version: str
    description: str = ""


@dataclass(frozen=True)
class HealthSample:
    """One-shot status of a workload instance."""

    name: str
    ready: int
    desired: int
    phase: str
    restarts: int = 0
    age: str = ""

    @property
    def is_ready(self) -> bool:
        return self.ready == self.desired

    @property
    def phase_allowed(self) -> bool:
        return self.phase in ALLOWED_PHASES or self.phase.startswith(INIT_PHASE_PREFIX)

    @property
    def converged(self) -> bool:
        return self.is_ready and self.phase_allowed

    def is_housekeeping(self, markers: list[str] | tuple[str, ...] = ("purge",)) -> bool:
        """Completed jobs and housekeeping instances are never monitored."""
        return self.phase == "Completed" or any(m in self.name for m in markers)


@dataclass(frozen=True)
class ConnectivityProfile:
    """Database identity fields carried over from the live configuration."""

    db_vendor: str = "DB2"
    db_host: str = ""
    db_port: int = 50000
    db_data: str = ""
    db_secret: str = ""
    db_drivers: str = "db2jcc4.jar"


@dataclass
class TransitionPlan:
    """What a single transition is going to do.

    Exists only for the duration of one run. The override and backup
    documents it owns are handed to the artifact writer and, once written,
    belong to the operator.
    """

    direction: Direction
    source: ReleaseSnapshot
    target_app_version: str
    target_package_version: str | None
    classification: Classification
    target_revision: int | None = None
    connectivity: ConnectivityProfile | None = None
    feature_blocks: bool = False
    backup_document: dict[str, Any] = field(default_factory=dict)
    override_document: dict[str, Any] = field(default_factory=dict)
    backup_path: Path | None = None
    override_path: Path | None = None
    values_file: Path | None = None

    @property
    def tier(self) -> RiskTier:
        return self.classification.tier

    @property
    def schema_risk(self) -> bool:
        return self.classification.schema_risk


__all__ = [
    "ALLOWED_PHASES",
    "ConnectivityProfile",
    "HealthSample",
    "PackageVersion",
    "ReleaseSnapshot",
    "RevisionRecord",
    "TransitionPlan",
    "split_chart",
]
