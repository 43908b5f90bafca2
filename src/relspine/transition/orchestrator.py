"""Release transition orchestrator.

Drives one upgrade or rollback of one release through the state machine in
:mod:`relspine.transition.states`::

    DISCOVER → CLASSIFY → BACKUP → COMPOSE → VALIDATE → CONFIRM → APPLY → OBSERVE → DONE
                                           ╰──(rollback)──╯          ╰──(no monitor)──╯

Every run gets a :class:`TransitionContext` that is threaded through the
state handlers; nothing is kept on the orchestrator between runs. The run
always ends in a :class:`TransitionReport`. Errors raised before APPLY abort
without any mutating call; an APPLY error is reported verbatim and never
retried; the health verdict after APPLY is advisory.

Operator decisions go through an :class:`OperatorGate`. The CLI supplies an
interactive gate; :class:`StaticGate` answers from flags for unattended runs.

Example:
    >>> orchestrator = TransitionOrchestrator(
    ...     HelmReleaseManager(), KubeClusterClient("oc"), StaticGate(confirm=True),
    ...     TransitionSettings(),
    ... )
    >>> report = orchestrator.upgrade(UpgradeRequest(
    ...     namespace="b2bi", release="s0", target_app_version="6.2.2.0"))
    >>> report.outcome, report.tier
    (<Outcome.SUCCEEDED: 'SUCCEEDED'>, 'MINOR')
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ValidationInfo, field_validator

from relspine.core.errors import (
    InputError,
    InvalidTransitionError,
    MonitorTimeoutError,
    NotFoundError,
    RelspineError,
    TargetRevisionUnresolvedError,
    ToolError,
    ValidationError,
)
from relspine.core.logging import LogContext, get_logger
from relspine.transition.artifacts import ArtifactWriter, load_values
from relspine.transition.config import TransitionSettings, new_run_id
from relspine.transition.helm import tail
from relspine.transition.models import (
    PackageVersion,
    ReleaseSnapshot,
    RevisionRecord,
    TransitionPlan,
    split_chart,
)
from relspine.transition.monitor import HealthMonitor, TickCallback
from relspine.transition.overrides import OverrideComposer, extract_connectivity
from relspine.transition.protocols import ClusterClient, ReleaseManager
from relspine.transition.results import Outcome, TransitionReport
from relspine.transition.states import TransitionState, validate_transition
from relspine.transition.versions import (
    Classification,
    Direction,
    VersionIdentifier,
    classify,
    classify_rollback,
    normalize_version,
    parse_optional,
)

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


def _required(value: str, field_name: str) -> str:
    text = (value or "").strip()
    if not text:
        raise InputError(f"{field_name.replace('_', ' ').capitalize()} cannot be empty.", field=field_name)
    return text


class UpgradeRequest(BaseModel):
    """Move a release forward to a target app version."""

    namespace: str
    release: str
    target_app_version: str

    @field_validator("namespace", "release")
    @classmethod
    def _not_blank(cls, value: str, info: ValidationInfo) -> str:
        return _required(value, info.field_name)

    @field_validator("target_app_version")
    @classmethod
    def _version(cls, value: str) -> str:
        text = _required(value, "target_app_version")
        VersionIdentifier.parse(text)
        return text


class RollbackRequest(BaseModel):
    """Return a release to an earlier revision (default: current - 1)."""

    namespace: str
    release: str
    target_revision: int | None = None
    values_file: Path | None = None

    @field_validator("namespace", "release")
    @classmethod
    def _not_blank(cls, value: str, info: ValidationInfo) -> str:
        return _required(value, info.field_name)


# ---------------------------------------------------------------------------
# Operator gate
# ---------------------------------------------------------------------------


@runtime_checkable
class OperatorGate(Protocol):
    """Decisions only the operator can make."""

    def attest_database_restore(self, plan: TransitionPlan) -> bool: ...

    def confirm(self, plan: TransitionPlan) -> bool: ...

    def choose_package_version(
        self, target_app_version: str, candidates: list[PackageVersion]
    ) -> str | None: ...


class StaticGate:
    """Answers every gate from fixed values (``--yes`` / ``--db-restored``)."""

    def __init__(
        self,
        confirm: bool = False,
        database_restored: bool = False,
        package_version: str | None = None,
    ) -> None:
        self._confirm = confirm
        self._database_restored = database_restored
        self._package_version = package_version

    def attest_database_restore(self, plan: TransitionPlan) -> bool:
        return self._database_restored

    def confirm(self, plan: TransitionPlan) -> bool:
        return self._confirm

    def choose_package_version(
        self, target_app_version: str, candidates: list[PackageVersion]
    ) -> str | None:
        return self._package_version


# ---------------------------------------------------------------------------
# Per-run context
# ---------------------------------------------------------------------------


@dataclass
class TransitionContext:
    """Everything one run knows, handed from state to state."""

    direction: Direction
    request: UpgradeRequest | RollbackRequest
    settings: TransitionSettings
    report: TransitionReport
    state: TransitionState = TransitionState.DISCOVER
    snapshot: ReleaseSnapshot | None = None
    live_values: dict[str, Any] = field(default_factory=dict)
    history: list[RevisionRecord] = field(default_factory=list)
    target_record: RevisionRecord | None = None
    classification: Classification | None = None
    plan: TransitionPlan | None = None

    @property
    def namespace(self) -> str:
        return self.request.namespace

    @property
    def release(self) -> str:
        return self.request.release

    def missing(self, what: str) -> InvalidTransitionError:
        """Error for a state entered before an earlier state produced *what*."""
        return InvalidTransitionError(self.state.value, what, message=f"Reached {self.state.value} without {what}.")

    def require_snapshot(self) -> ReleaseSnapshot:
        if self.snapshot is None:
            raise self.missing("a discovered release")
        return self.snapshot

    def require_plan(self) -> TransitionPlan:
        if self.plan is None:
            raise self.missing("a transition plan")
        return self.plan

    def upgrade_request(self) -> UpgradeRequest:
        if not isinstance(self.request, UpgradeRequest):
            raise self.missing("an upgrade request")
        return self.request

    def rollback_request(self) -> RollbackRequest:
        if not isinstance(self.request, RollbackRequest):
            raise self.missing("a rollback request")
        return self.request


TransitionListener = Callable[[TransitionState, TransitionContext], None]


_TERMINAL_OUTCOMES = {
    TransitionState.DONE: Outcome.SUCCEEDED,
    TransitionState.ABORTED: Outcome.ABORTED,
    TransitionState.FAILED: Outcome.FAILED,
}


class TransitionOrchestrator:
    """Runs upgrades and rollbacks against one release manager and cluster."""

    def __init__(
        self,
        release_manager: ReleaseManager,
        cluster: ClusterClient,
        gate: OperatorGate,
        settings: TransitionSettings | None = None,
        monitor: HealthMonitor | None = None,
        listener: TransitionListener | None = None,
        artifacts: ArtifactWriter | None = None,
        on_tick: TickCallback | None = None,
    ) -> None:
        self.release_manager = release_manager
        self.cluster = cluster
        self.gate = gate
        self.settings = settings or TransitionSettings()
        self.monitor = monitor or HealthMonitor(
            cluster, housekeeping_markers=self.settings.housekeeping_markers
        )
        self.listener = listener
        self.artifacts = artifacts or ArtifactWriter(self.settings.artifact_dir)
        self.composer = OverrideComposer(self.settings.feature_chart_version)
        self.on_tick = on_tick

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def discover(self, namespace: str, release: str) -> ReleaseSnapshot:
        """Fresh snapshot of *release*; raises :class:`NotFoundError`."""
        if not self.cluster.namespace_exists(namespace):
            raise NotFoundError(f"Namespace '{namespace}' not found.").with_context(namespace=namespace)
        for snapshot in self.release_manager.list_releases(namespace):
            if snapshot.name == release:
                return snapshot
        raise NotFoundError(
            f"Release '{release}' not found in namespace '{namespace}'."
        ).with_context(release=release, namespace=namespace)

    def upgrade(self, request: UpgradeRequest) -> TransitionReport:
        ctx = self._new_context(request, Direction.UPGRADE)
        with LogContext(run_id=ctx.report.run_id, release=ctx.release, namespace=ctx.namespace,
                        direction=ctx.direction.value):
            logger.info("transition.started", target=request.target_app_version)
            try:
                self._discover(ctx)
                self._advance(ctx, TransitionState.CLASSIFY)
                self._classify_upgrade(ctx)
                self._advance(ctx, TransitionState.BACKUP)
                self._backup(ctx)
                self._advance(ctx, TransitionState.COMPOSE)
                self._compose_upgrade(ctx)
                self._advance(ctx, TransitionState.VALIDATE)
                self._validate(ctx)
                self._advance(ctx, TransitionState.CONFIRM)
                if not self._confirm(ctx):
                    return self._finish(ctx, TransitionState.ABORTED)
                self._advance(ctx, TransitionState.APPLY)
                self._apply_upgrade(ctx)
            except RelspineError as exc:
                return self._fail(ctx, exc)
            return self._observe(ctx)

    def rollback(self, request: RollbackRequest) -> TransitionReport:
        ctx = self._new_context(request, Direction.ROLLBACK)
        with LogContext(run_id=ctx.report.run_id, release=ctx.release, namespace=ctx.namespace,
                        direction=ctx.direction.value):
            logger.info("transition.started", revision=request.target_revision)
            try:
                self._discover(ctx)
                self._discover_history(ctx)
                self._advance(ctx, TransitionState.CLASSIFY)
                self._classify_rollback(ctx)
                self._advance(ctx, TransitionState.BACKUP)
                self._backup(ctx)
                self._advance(ctx, TransitionState.COMPOSE)
                self._compose_rollback(ctx)
                self._advance(ctx, TransitionState.CONFIRM)
                if not self._confirm(ctx):
                    return self._finish(ctx, TransitionState.ABORTED)
                self._advance(ctx, TransitionState.APPLY)
                self._apply_rollback(ctx)
            except RelspineError as exc:
                return self._fail(ctx, exc)
            return self._observe(ctx)

    # ------------------------------------------------------------------
    # State bookkeeping
    # ------------------------------------------------------------------

    def _new_context(
        self, request: UpgradeRequest | RollbackRequest, direction: Direction
    ) -> TransitionContext:
        report = TransitionReport(
            run_id=new_run_id(),
            direction=direction.value,
            release=request.release,
            namespace=request.namespace,
            states=[TransitionState.DISCOVER.value],
        )
        ctx = TransitionContext(
            direction=direction, request=request, settings=self.settings, report=report
        )
        self._notify(ctx)
        return ctx

    def _advance(self, ctx: TransitionContext, target: TransitionState) -> None:
        validate_transition(ctx.state, target)
        logger.debug("transition.state", previous=ctx.state.value, state=target.value)
        ctx.state = target
        ctx.report.states.append(target.value)
        self._notify(ctx)

    def _notify(self, ctx: TransitionContext) -> None:
        if self.listener is not None:
            self.listener(ctx.state, ctx)

    def _finish(self, ctx: TransitionContext, terminal: TransitionState) -> TransitionReport:
        self._advance(ctx, terminal)
        ctx.report.final_state = terminal.value
        ctx.report.mark_complete(_TERMINAL_OUTCOMES[terminal])
        log = logger.error if terminal == TransitionState.FAILED else logger.info
        log("transition.finished", outcome=ctx.report.outcome.value, summary=ctx.report.summary)
        return ctx.report

    def _fail(self, ctx: TransitionContext, exc: RelspineError) -> TransitionReport:
        exc.with_context(release=ctx.release, namespace=ctx.namespace, run_id=ctx.report.run_id,
                         state=ctx.state.value)
        ctx.report.error = exc.message
        ctx.report.error_type = type(exc).__name__
        logger.error(
            "transition.failed",
            state=ctx.state.value,
            error_type=ctx.report.error_type,
            error=exc.message,
        )
        return self._finish(ctx, TransitionState.FAILED)

    # ------------------------------------------------------------------
    # DISCOVER
    # ------------------------------------------------------------------

    def _discover(self, ctx: TransitionContext) -> None:
        snapshot = self.discover(ctx.namespace, ctx.release)
        ctx.snapshot = snapshot
        ctx.report.source_app_version = snapshot.app_version or None
        ctx.report.source_package_version = snapshot.package_version
        ctx.report.source_revision = snapshot.revision
        ctx.live_values = self.release_manager.get_values(ctx.release, ctx.namespace)
        logger.info(
            "transition.discovered",
            revision=snapshot.revision,
            chart=snapshot.chart,
            app_version=snapshot.app_version,
            status=snapshot.status,
        )

    def _discover_history(self, ctx: TransitionContext) -> None:
        request = ctx.rollback_request()
        current = ctx.require_snapshot().revision
        target = request.target_revision if request.target_revision is not None else current - 1

        if target < 1 or target >= current:
            raise InputError(
                f"Target revision must be between 1 and {current - 1} (current revision is {current}).",
                field="target_revision",
                value=target,
            )

        ctx.history = self.release_manager.history(
            ctx.release, ctx.namespace, self.settings.history_max
        )
        record = next((r for r in ctx.history if r.revision == target), None)
        if record is None:
            raise NotFoundError(
                f"Revision {target} not found in history of release '{ctx.release}'."
            ).with_context(revision=target)
        ctx.target_record = record
        ctx.report.target_revision = target
        ctx.report.target_package_version = record.package_version
        ctx.report.target_app_version = record.app_version or None

    # ------------------------------------------------------------------
    # CLASSIFY
    # ------------------------------------------------------------------

    def _classify_upgrade(self, ctx: TransitionContext) -> None:
        request = ctx.upgrade_request()
        snapshot = ctx.require_snapshot()
        current = snapshot.version
        if current is None:
            raise NotFoundError(
                f"Cannot read the current app version of release '{ctx.release}' "
                f"(reported: {snapshot.app_version!r})."
            )
        classification = classify(current, VersionIdentifier.parse(request.target_app_version))
        self._record_classification(ctx, classification)
        ctx.report.target_app_version = request.target_app_version

        package_version = self._resolve_package_version(ctx, request.target_app_version)
        ctx.report.target_package_version = package_version
        ctx.plan = TransitionPlan(
            direction=Direction.UPGRADE,
            source=snapshot,
            target_app_version=request.target_app_version,
            target_package_version=package_version,
            classification=classification,
            backup_document=ctx.live_values,
        )

    def _resolve_package_version(self, ctx: TransitionContext, target_app_version: str) -> str:
        """Newest package version shipping *target_app_version*, else ask."""
        if self.settings.update_repo:
            try:
                self.release_manager.update_repo(self.settings.chart_repo)
            except ToolError as exc:
                ctx.report.warn(f"Repository refresh failed, using cached index: {exc.message}")
                logger.warning("transition.repo_update_failed", error=exc.message)

        candidates = self.release_manager.search_package_versions(self.settings.chart_ref)
        wanted = normalize_version(target_app_version)
        matches = [
            c for c in candidates
            if (v := parse_optional(c.app_version)) is not None and str(v) == wanted
        ]
        if matches:
            best = max(matches, key=lambda c: _package_key(c.version))
            logger.info("transition.package_resolved", package_version=best.version, app_version=best.app_version)
            return best.version

        logger.warning("transition.package_not_found", app_version=target_app_version, candidates=len(candidates))
        answer = self.gate.choose_package_version(target_app_version, candidates)
        if not answer or not answer.strip():
            raise NotFoundError(
                f"No package version of {self.settings.chart_ref} ships app version {target_app_version}."
            )
        ctx.report.warn(f"Package version {answer.strip()} chosen manually for app version {target_app_version}.")
        return answer.strip()

    def _classify_rollback(self, ctx: TransitionContext) -> None:
        snapshot = ctx.require_snapshot()
        record = ctx.target_record
        if record is None:
            raise ctx.missing("a target revision")
        try:
            target_version = self._revision_version(record)
        except TargetRevisionUnresolvedError as exc:
            target_version = None
            ctx.report.warn(f"{exc.message}; treating the rollback as a schema-affecting change.")
            logger.warning("transition.target_unresolved", revision=record.revision)

        classification = classify_rollback(snapshot.version, target_version)
        self._record_classification(ctx, classification)
        ctx.plan = TransitionPlan(
            direction=Direction.ROLLBACK,
            source=snapshot,
            target_app_version=record.app_version,
            target_package_version=record.package_version,
            classification=classification,
            target_revision=record.revision,
            backup_document=ctx.live_values,
        )

    @staticmethod
    def _revision_version(record: RevisionRecord) -> VersionIdentifier:
        version = record.version
        if version is None or record.package_version is None:
            raise TargetRevisionUnresolvedError(record.revision)
        return version

    @staticmethod
    def _record_classification(ctx: TransitionContext, classification: Classification) -> None:
        ctx.classification = classification
        ctx.report.tier = classification.tier.value
        ctx.report.schema_risk = classification.schema_risk
        ctx.report.reason = classification.reason
        logger.info(
            "transition.classified",
            tier=classification.tier.value,
            schema_risk=classification.schema_risk,
            reason=classification.reason,
        )

    # ------------------------------------------------------------------
    # BACKUP / COMPOSE / VALIDATE
    # ------------------------------------------------------------------

    def _backup(self, ctx: TransitionContext) -> None:
        path = self.artifacts.write_backup(ctx.require_plan())
        ctx.report.backup_path = str(path)

    def _compose_upgrade(self, ctx: TransitionContext) -> None:
        plan = ctx.require_plan()
        plan.connectivity = extract_connectivity(ctx.live_values)
        plan.feature_blocks = self.composer.includes_features(plan)
        plan.override_document = self.composer.compose(plan, ctx.live_values)
        path = self.artifacts.write_override(plan)
        ctx.report.override_path = str(path)

    def _compose_rollback(self, ctx: TransitionContext) -> None:
        plan = ctx.require_plan()
        request = ctx.rollback_request()
        if request.values_file is None:
            return

        if not request.values_file.is_file():
            ctx.report.warn(
                f"Values file {request.values_file} not found; rolling back without restoring values."
            )
            logger.warning("transition.values_file_missing", path=str(request.values_file))
            return

        # Parse now so a broken file fails before anything mutates.
        load_values(request.values_file)
        if plan.target_package_version is None:
            raise NotFoundError(
                f"Cannot restore values: package version of revision {plan.target_revision} is unknown."
            ).with_context(revision=plan.target_revision)
        plan.values_file = request.values_file
        ctx.report.values_file = str(request.values_file)

    def _validate(self, ctx: TransitionContext) -> None:
        plan = ctx.require_plan()
        if plan.override_path is None or not plan.target_package_version:
            raise ctx.missing("a written override and package version")
        try:
            output = self.release_manager.dry_run_apply(
                ctx.release,
                ctx.namespace,
                self.settings.chart_ref,
                plan.target_package_version,
                plan.override_path,
            )
        except ValidationError as exc:
            ctx.report.dry_run_passed = False
            ctx.report.dry_run_output = tail(exc.output)
            raise
        ctx.report.dry_run_passed = True
        ctx.report.dry_run_output = output
        logger.info("transition.dry_run_passed")

    # ------------------------------------------------------------------
    # CONFIRM
    # ------------------------------------------------------------------

    def _confirm(self, ctx: TransitionContext) -> bool:
        plan = ctx.require_plan()
        if ctx.direction == Direction.ROLLBACK and plan.schema_risk:
            if not self.gate.attest_database_restore(plan):
                ctx.report.warn("Database restore not confirmed; rollback aborted before any change.")
                logger.warning("transition.db_restore_not_attested", tier=plan.tier.value)
                return False
            ctx.report.database_restore_attested = True
            logger.info("transition.db_restore_attested")

        if not self.gate.confirm(plan):
            logger.info("transition.declined")
            return False
        return True

    # ------------------------------------------------------------------
    # APPLY
    # ------------------------------------------------------------------

    def _apply_upgrade(self, ctx: TransitionContext) -> None:
        plan = ctx.require_plan()
        if plan.override_path is None or not plan.target_package_version:
            raise ctx.missing("a written override and package version")
        self._add_upgrade_hints(ctx)
        logger.info("transition.applying", package_version=plan.target_package_version,
                    timeout=self.settings.apply_timeout)
        self.release_manager.apply(
            ctx.release,
            ctx.namespace,
            self.settings.chart_ref,
            plan.target_package_version,
            plan.override_path,
            self.settings.apply_timeout,
            reuse_values=True,
        )
        self._read_back_revision(ctx)

    def _apply_rollback(self, ctx: TransitionContext) -> None:
        plan = ctx.require_plan()
        if plan.target_revision is None:
            raise ctx.missing("a target revision")
        self._add_rollback_hints(ctx)
        if plan.values_file is not None:
            if plan.target_package_version is None:
                raise ctx.missing("the target package version")
            package_name = split_chart(ctx.target_record.chart)[0] if ctx.target_record else ""
            chart_ref = f"{self.settings.chart_repo}/{package_name or self.settings.chart_name}"
            logger.info("transition.restoring_values", revision=plan.target_revision,
                        values_file=str(plan.values_file))
            self.release_manager.apply(
                ctx.release,
                ctx.namespace,
                chart_ref,
                plan.target_package_version,
                plan.values_file,
                self.settings.apply_timeout,
                reuse_values=False,
            )
        else:
            logger.info("transition.rolling_back", revision=plan.target_revision)
            self.release_manager.rollback(
                ctx.release, ctx.namespace, plan.target_revision, self.settings.apply_timeout
            )
        self._read_back_revision(ctx)

    def _read_back_revision(self, ctx: TransitionContext) -> None:
        try:
            snapshot = self.discover(ctx.namespace, ctx.release)
        except RelspineError as exc:
            ctx.report.warn(f"Applied, but could not read back the new revision: {exc.message}")
            return
        ctx.report.new_revision = snapshot.revision
        logger.info("transition.applied", revision=snapshot.revision, status=snapshot.status)

    def _add_upgrade_hints(self, ctx: TransitionContext) -> None:
        report = ctx.report
        timeout = self.settings.apply_timeout
        if report.source_revision is not None:
            report.recovery_hints.append(
                f"helm rollback {ctx.release} {report.source_revision} -n {ctx.namespace} "
                f"--timeout {timeout} --wait=false"
            )
        if report.backup_path and report.source_package_version:
            report.recovery_hints.append(
                f"helm upgrade {ctx.release} {self.settings.chart_ref} "
                f"--version {report.source_package_version} -n {ctx.namespace} "
                f"-f {report.backup_path} --timeout {timeout}"
            )
        report.recovery_hints.append(f"helm history {ctx.release} -n {ctx.namespace}")

    def _add_rollback_hints(self, ctx: TransitionContext) -> None:
        report = ctx.report
        if report.source_app_version:
            report.recovery_hints.append(
                f"relspine upgrade -n {ctx.namespace} -r {ctx.release} --to {report.source_app_version}"
            )
        report.recovery_hints.append(f"helm history {ctx.release} -n {ctx.namespace}")

    # ------------------------------------------------------------------
    # OBSERVE
    # ------------------------------------------------------------------

    def _observe(self, ctx: TransitionContext) -> TransitionReport:
        if not self.settings.monitor_enabled:
            ctx.report.warn(f"Health monitoring skipped; check with: relspine status -n {ctx.namespace}")
            return self._finish(ctx, TransitionState.DONE)

        self._advance(ctx, TransitionState.OBSERVE)
        result = self.monitor.watch(
            ctx.namespace,
            max_ticks=self.settings.monitor_max_ticks,
            tick_interval=self.settings.monitor_tick_interval,
            initial_delay=self.settings.monitor_initial_delay,
            on_tick=self.on_tick,
        )
        ctx.report.monitor = result
        if not result.converged:
            timeout = MonitorTimeoutError(ctx.namespace, result.tick_count)
            detail = f"; unhealthy: {', '.join(result.degraded)}" if result.degraded else ""
            ctx.report.warn(
                f"{timeout.message}{detail}; "
                f"inspect manually with: relspine status -n {ctx.namespace}"
            )
        return self._finish(ctx, TransitionState.DONE)


def _package_key(version: str) -> tuple[int, int, int, int]:
    parsed = parse_optional(version)
    return parsed.key if parsed is not None else (-1, -1, -1, -1)


__all__ = [
    "OperatorGate",
    "RollbackRequest",
    "StaticGate",
    "TransitionContext",
    "TransitionListener",
    "TransitionOrchestrator",
    "UpgradeRequest",
]
