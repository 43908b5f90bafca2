"""transition -- risk-aware upgrade and rollback of a stateful Helm release.

A transition moves one release between versions. Before anything changes
on the cluster the version delta is classified, the live values are backed
up, an override is composed and, for upgrades, dry-run validated. After the
mutating call a bounded health monitor watches the namespace converge.

Key Concepts:
    VersionIdentifier: Four-segment numeric version (``6.2.1.1``), iFix
        suffix ignored for comparison.
    classify(): Pure classifier returning MAJOR / MINOR / PATCH with the
        schema-risk flag and an operator-facing reason.
    OverrideComposer: Builds the upgrade override (image tags, upgrade
        flags, full blocks for sub-components new in the target package).
    TransitionOrchestrator: State machine DISCOVER → ... → DONE with
        ABORTED / FAILED terminals; returns a ``TransitionReport``.
    HealthMonitor: Polls instances until converged or timed out.
    HelmReleaseManager / KubeClusterClient: subprocess adapters reading the
        tools' JSON output.

Architecture::

    ┌───────────────────────────────────────────────────────────┐
    │                 TransitionOrchestrator                     │
    ├──────────────┬──────────────┬──────────────┬──────────────┤
    │  versions    │  overrides   │  artifacts   │  monitor     │
    ├──────────────┴──────────────┴──────────────┴──────────────┤
    │     ReleaseManager (helm)     │    ClusterClient (oc/kubectl)
    └───────────────────────────────────────────────────────────┘

Example:
    >>> from relspine.transition import classify, VersionIdentifier
    >>> c = classify(VersionIdentifier.parse("6.2.1.1"), VersionIdentifier.parse("6.2.2.0"))
    >>> c.tier.value, c.schema_risk
    ('MINOR', True)
"""

from relspine.transition.artifacts import ArtifactWriter, load_values
from relspine.transition.cluster import KubeClusterClient
from relspine.transition.config import TransitionSettings
from relspine.transition.helm import HelmReleaseManager
from relspine.transition.models import (
    ConnectivityProfile,
    HealthSample,
    PackageVersion,
    ReleaseSnapshot,
    RevisionRecord,
    TransitionPlan,
)
from relspine.transition.monitor import HealthMonitor
from relspine.transition.orchestrator import (
    OperatorGate,
    RollbackRequest,
    StaticGate,
    TransitionContext,
    TransitionOrchestrator,
    UpgradeRequest,
)
from relspine.transition.overrides import OverrideComposer, extract_connectivity
from relspine.transition.protocols import ClusterClient, ReleaseManager
from relspine.transition.results import (
    MonitorResult,
    MonitorVerdict,
    Outcome,
    TransitionReport,
)
from relspine.transition.states import TransitionState, validate_transition
from relspine.transition.versions import (
    Classification,
    Direction,
    RiskTier,
    VersionIdentifier,
    classify,
    classify_rollback,
)

__all__ = [
    # Versions
    "Classification",
    "Direction",
    "RiskTier",
    "VersionIdentifier",
    "classify",
    "classify_rollback",
    # Models
    "ConnectivityProfile",
    "HealthSample",
    "PackageVersion",
    "ReleaseSnapshot",
    "RevisionRecord",
    "TransitionPlan",
    # Config
    "TransitionSettings",
    # Composition & artifacts
    "ArtifactWriter",
    "OverrideComposer",
    "extract_connectivity",
    "load_values",
    # Collaborators
    "ClusterClient",
    "HelmReleaseManager",
    "KubeClusterClient",
    "ReleaseManager",
    # Orchestration
    "HealthMonitor",
    "OperatorGate",
    "RollbackRequest",
    "StaticGate",
    "TransitionContext",
    "TransitionOrchestrator",
    "TransitionState",
    "UpgradeRequest",
    "validate_transition",
    # Results
    "MonitorResult",
    "MonitorVerdict",
    "Outcome",
    "TransitionReport",
]
