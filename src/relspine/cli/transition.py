"""
CLI: ``relspine upgrade`` / ``rollback`` / ``classify`` / ``status``.

Usage::

    relspine upgrade -n b2bi-prod -r s0 --to 6.2.2.0      # prompts for confirmation
    relspine upgrade -n b2bi-prod -r s0 --to 6.2.2.0 --yes --json
    relspine rollback -n b2bi-prod -r s0                  # to current - 1
    relspine rollback -n b2bi-prod -r s0 --revision 3 --values-file s0-values-backup-....yaml
    relspine classify 6.2.1.1 6.2.2.0
    relspine status -n b2bi-prod

Missing namespace, release, target version and target revision are prompted
for. Invalid input re-prompts. A declined confirmation exits 0, a failed
transition exits 1.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import pydantic
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from relspine.core.errors import ConfigError, InputError, RelspineError
from relspine.transition.config import TransitionSettings
from relspine.transition.models import HealthSample, PackageVersion, ReleaseSnapshot, RevisionRecord, TransitionPlan
from relspine.transition.monitor import HealthMonitor
from relspine.transition.orchestrator import (
    RollbackRequest,
    TransitionContext,
    TransitionOrchestrator,
    UpgradeRequest,
)
from relspine.transition.protocols import ClusterClient, ReleaseManager
from relspine.transition.results import InstanceStatus, MonitorTick, Outcome, TransitionReport
from relspine.transition.states import TransitionState
from relspine.transition.versions import Classification, Direction, RiskTier, VersionIdentifier, classify, classify_rollback

console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")

PACKAGE_LIST_LIMIT = 15

_TIER_STYLE = {
    RiskTier.MAJOR: "bold red",
    RiskTier.MINOR: "bold yellow",
    RiskTier.PATCH: "bold green",
    RiskTier.UNKNOWN: "bold magenta",
}

_OUTCOME_STYLE = {
    Outcome.SUCCEEDED: "green",
    Outcome.ABORTED: "yellow",
    Outcome.FAILED: "red",
    Outcome.PENDING: "dim",
}


# ── Wiring ───────────────────────────────────────────────────────────────


def _load_settings(**overrides: Any) -> TransitionSettings:
    try:
        return TransitionSettings(**{k: v for k, v in overrides.items() if v is not None})
    except pydantic.ValidationError as e:
        raise ConfigError(f"Invalid settings: {e}", cause=e) from e


def _collaborators(settings: TransitionSettings) -> tuple[ReleaseManager, ClusterClient]:
    """Production release manager and cluster client."""
    from relspine.transition.cluster import KubeClusterClient
    from relspine.transition.helm import HelmReleaseManager

    release_manager = HelmReleaseManager(settings.helm_binary, timeout=settings.tool_timeout_seconds)
    cluster = KubeClusterClient(settings.resolve_kube_cli(), timeout=settings.tool_timeout_seconds)
    return release_manager, cluster


def _error_exit(error: RelspineError) -> typer.Exit:
    err_console.print(f"[bold red]Error:[/bold red] {error.message}")
    return typer.Exit(code=1)


def _prompt_until_valid(
    label: str, parse: Callable[[str], T], default: str | None = None, err: bool = False
) -> T:
    """Prompt until *parse* accepts the answer; InputError re-prompts.

    *err* sends the prompt to stderr so stdout stays a clean JSON document.
    """
    while True:
        raw = typer.prompt(label, default=default, err=err)
        try:
            return parse(raw)
        except InputError as e:
            err_console.print(f"[red]✗ {e.message}[/]")


def _required_text(field: str) -> Callable[[str], str]:
    def parse(raw: str) -> str:
        text = (raw or "").strip()
        if not text:
            raise InputError(f"{field} cannot be empty.", field=field.lower())
        return text

    return parse


def _resolve_target(
    value: str | None, label: str, default: str, assume_yes: bool, err: bool = False
) -> str:
    if value is not None:
        try:
            return _required_text(label)(value)
        except InputError as e:
            raise _error_exit(e) from e
    if assume_yes:
        return default
    return _prompt_until_valid(label, _required_text(label), default=default, err=err)


# ── Interactive gate ─────────────────────────────────────────────────────


class PromptGate:
    """Operator gate asking on the terminal, or answering from flags.

    ``--yes`` answers the general confirmation only. The database restore
    attestation needs ``--db-restored`` or an explicit interactive yes.
    """

    def __init__(
        self, out: Console, assume_yes: bool = False, db_restored: bool = False, err: bool = False
    ) -> None:
        self.out = out
        self.assume_yes = assume_yes
        self.db_restored = db_restored
        self.err = err

    def attest_database_restore(self, plan: TransitionPlan) -> bool:
        self.out.print(Panel(
            f"Rolling back across a [bold]{plan.tier.value}[/] boundary "
            f"({plan.source.app_version or '?'} → {plan.target_app_version or '?'}).\n"
            "The forward upgrade may have migrated the database schema. The database "
            "must be restored from the backup taken before that upgrade, or the older "
            "application will fail against the newer schema.",
            title="[bold red]Database restore required[/]",
            border_style="red",
        ))
        if self.db_restored:
            self.out.print("[dim]Database restore attested with --db-restored.[/]")
            return True
        if self.assume_yes:
            self.out.print("[red]--yes does not attest a database restore; pass --db-restored.[/]")
            return False
        return typer.confirm(
            "Has the database been restored to the pre-upgrade backup?", default=False, err=self.err
        )

    def confirm(self, plan: TransitionPlan) -> bool:
        _print_plan(self.out, plan)
        if self.assume_yes:
            return True
        verb = "upgrade" if plan.direction == Direction.UPGRADE else "rollback"
        return typer.confirm(f"Proceed with {verb}?", default=False, err=self.err)

    def choose_package_version(
        self, target_app_version: str, candidates: list[PackageVersion]
    ) -> str | None:
        self.out.print(f"[yellow]No package version found for app version {target_app_version}.[/]")
        if self.assume_yes:
            return None
        _print_packages(self.out, candidates)
        answer = typer.prompt(
            "Package version to use (blank to abort)", default="", show_default=False, err=self.err
        )
        return answer.strip() or None


def _progress(out: Console) -> Callable[[TransitionState, TransitionContext], None]:
    def listener(state: TransitionState, ctx: TransitionContext) -> None:
        if not state.is_terminal:
            out.print(f"[dim]→ {state.value}[/]")

    return listener


def _tick_printer(out: Console) -> Callable[[MonitorTick, list[HealthSample]], None]:
    def on_tick(tick: MonitorTick, samples: list[HealthSample]) -> None:
        if tick.error:
            out.print(f"  [{tick.tick}] [red]query failed:[/] {tick.error}")
        elif tick.converged:
            out.print(f"  [{tick.tick}] [green]all {tick.instances} instances ready[/]")
        else:
            extra = f", degraded: {', '.join(tick.degraded)}" if tick.degraded else ""
            out.print(f"  [{tick.tick}] waiting on {len(tick.not_ready)} of {tick.instances}{extra}")

    return on_tick


def _orchestrator(
    settings: TransitionSettings, out: Console, assume_yes: bool, db_restored: bool = False, err: bool = False
) -> TransitionOrchestrator:
    release_manager, cluster = _collaborators(settings)
    return TransitionOrchestrator(
        release_manager,
        cluster,
        PromptGate(out, assume_yes=assume_yes, db_restored=db_restored, err=err),
        settings,
        listener=_progress(out),
        on_tick=_tick_printer(out),
    )


# ── Commands ─────────────────────────────────────────────────────────────


def upgrade(
    namespace: str | None = typer.Option(None, "--namespace", "-n", help="Namespace of the release."),
    release: str | None = typer.Option(None, "--release", "-r", help="Release name."),
    to: str | None = typer.Option(None, "--to", "-t", help="Target app version, e.g. 6.2.2.0."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
    artifact_dir: Path | None = typer.Option(None, "--artifact-dir", help="Directory for backup/override files."),
    no_monitor: bool = typer.Option(False, "--no-monitor", help="Skip health monitoring after apply."),
    max_ticks: int | None = typer.Option(None, "--max-ticks", help="Health checks before giving up."),
    tick_interval: float | None = typer.Option(None, "--tick-interval", help="Seconds between checks."),
    initial_delay: float | None = typer.Option(None, "--initial-delay", help="Seconds before the first check."),
    json_out: bool = typer.Option(False, "--json", help="Output the report as JSON."),
) -> None:
    """Upgrade a release to a newer app version.

    Backs up the current values, writes an override file, dry-runs it,
    asks for confirmation, applies it and watches the pods converge.
    """
    out = err_console if json_out else console
    try:
        settings = _load_settings(
            artifact_dir=artifact_dir,
            monitor_enabled=False if no_monitor else None,
            monitor_max_ticks=max_ticks,
            monitor_tick_interval=tick_interval,
            monitor_initial_delay=initial_delay,
        )
        orchestrator = _orchestrator(settings, out, assume_yes=yes, err=json_out)
    except RelspineError as e:
        raise _error_exit(e) from e

    namespace = _resolve_target(namespace, "Namespace", settings.default_namespace, yes, err=json_out)
    release = _resolve_target(release, "Release", settings.default_release, yes, err=json_out)

    try:
        snapshot = orchestrator.discover(namespace, release)
    except RelspineError as e:
        raise _error_exit(e) from e
    _print_snapshot(out, snapshot)
    current = snapshot.version

    if to is None and not yes:
        try:
            candidates = orchestrator.release_manager.search_package_versions(settings.chart_ref)
        except RelspineError as e:
            out.print(f"[yellow]Could not list package versions: {e.message}[/]")
        else:
            _print_packages(out, candidates[:PACKAGE_LIST_LIMIT])

    def parse_target(raw: str) -> UpgradeRequest:
        request = UpgradeRequest(namespace=namespace, release=release, target_app_version=raw)
        if current is not None:
            _print_classification(
                out, classify(current, VersionIdentifier.parse(request.target_app_version))
            )
        return request

    if to is not None:
        try:
            request = parse_target(to)
        except InputError as e:
            raise _error_exit(e) from e
    else:
        if yes:
            raise _error_exit(InputError("--to is required with --yes.", field="target_app_version"))
        request = _prompt_until_valid("Target app version", parse_target, err=json_out)

    report = orchestrator.upgrade(request)
    _finish(report, json_out)


def rollback(
    namespace: str | None = typer.Option(None, "--namespace", "-n", help="Namespace of the release."),
    release: str | None = typer.Option(None, "--release", "-r", help="Release name."),
    revision: int | None = typer.Option(None, "--revision", help="Target revision (default: current - 1)."),
    values_file: Path | None = typer.Option(None, "--values-file", "-f", help="Values backup to restore."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
    db_restored: bool = typer.Option(
        False, "--db-restored", help="Attest that the database was restored (required across schema changes).",
    ),
    artifact_dir: Path | None = typer.Option(None, "--artifact-dir", help="Directory for the values backup."),
    no_monitor: bool = typer.Option(False, "--no-monitor", help="Skip health monitoring after rollback."),
    max_ticks: int | None = typer.Option(None, "--max-ticks", help="Health checks before giving up."),
    tick_interval: float | None = typer.Option(None, "--tick-interval", help="Seconds between checks."),
    initial_delay: float | None = typer.Option(None, "--initial-delay", help="Seconds before the first check."),
    json_out: bool = typer.Option(False, "--json", help="Output the report as JSON."),
) -> None:
    """Roll a release back to an earlier revision.

    Crossing a schema boundary requires attesting that the database was
    restored first; declining aborts without touching the cluster.
    """
    out = err_console if json_out else console
    try:
        settings = _load_settings(
            artifact_dir=artifact_dir,
            monitor_enabled=False if no_monitor else None,
            monitor_max_ticks=max_ticks,
            monitor_tick_interval=tick_interval,
            monitor_initial_delay=initial_delay,
        )
        orchestrator = _orchestrator(settings, out, assume_yes=yes, db_restored=db_restored, err=json_out)
    except RelspineError as e:
        raise _error_exit(e) from e

    namespace = _resolve_target(namespace, "Namespace", settings.default_namespace, yes, err=json_out)
    release = _resolve_target(release, "Release", settings.default_release, yes, err=json_out)

    try:
        snapshot = orchestrator.discover(namespace, release)
        history = orchestrator.release_manager.history(release, namespace, settings.history_max)
    except RelspineError as e:
        raise _error_exit(e) from e
    _print_snapshot(out, snapshot)
    _print_history(out, history, snapshot.revision)

    if snapshot.revision <= 1:
        raise _error_exit(InputError(
            f"Release '{release}' is at revision {snapshot.revision}; there is nothing to roll back to.",
            field="target_revision",
        ))

    def parse_revision(raw: str) -> int:
        try:
            value = int(str(raw).strip())
        except ValueError as e:
            raise InputError(f"Revision must be a number, got {raw!r}.", field="target_revision", value=raw) from e
        if value < 1 or value >= snapshot.revision:
            raise InputError(
                f"Revision must be between 1 and {snapshot.revision - 1}.",
                field="target_revision",
                value=value,
            )
        return value

    default_revision = str(snapshot.revision - 1)
    if revision is not None:
        try:
            target = parse_revision(str(revision))
        except InputError as e:
            raise _error_exit(e) from e
    elif yes:
        target = int(default_revision)
    else:
        target = _prompt_until_valid("Target revision", parse_revision, default=default_revision, err=json_out)

    record = next((r for r in history if r.revision == target), None)
    if record is not None:
        _print_classification(out, classify_rollback(snapshot.version, record.version))

    if values_file is None and not yes:
        answer = typer.prompt(
            "Values file to restore (blank to keep the revision's values)", default="", show_default=False,
            err=json_out,
        )
        values_file = Path(answer.strip()) if answer.strip() else None

    request = RollbackRequest(
        namespace=namespace, release=release, target_revision=target, values_file=values_file
    )
    report = orchestrator.rollback(request)
    _finish(report, json_out)


def classify_cmd(
    current: str = typer.Argument(..., help="Current app version."),
    target: str = typer.Argument(..., help="Target app version."),
    direction: Direction = typer.Option(Direction.UPGRADE, "--direction", "-d", help="upgrade or rollback."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Classify a version move as MAJOR, MINOR or PATCH."""
    try:
        result = classify(VersionIdentifier.parse(current), VersionIdentifier.parse(target), direction)
    except InputError as e:
        raise _error_exit(e) from e

    if json_out:
        typer.echo(json.dumps({
            "current": str(result.current),
            "target": str(result.target),
            "direction": result.direction.value,
            "tier": result.tier.value,
            "schema_risk": result.schema_risk,
            "reason": result.reason,
        }, indent=2))
    else:
        _print_classification(console, result)


def status(
    namespace: str | None = typer.Option(None, "--namespace", "-n", help="Namespace to inspect."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Show instance readiness in a namespace (one-shot, no waiting)."""
    try:
        settings = _load_settings()
        _, cluster = _collaborators(settings)
        namespace = namespace or settings.default_namespace
        monitor = HealthMonitor(cluster, housekeeping_markers=settings.housekeeping_markers)
        samples, tick = monitor.sample(namespace)
    except RelspineError as e:
        raise _error_exit(e) from e

    if json_out:
        typer.echo(json.dumps({
            "namespace": namespace,
            "converged": tick.converged,
            "instances": [
                InstanceStatus(
                    name=s.name, ready=s.ready, desired=s.desired,
                    phase=s.phase, restarts=s.restarts, age=s.age,
                ).model_dump()
                for s in samples
            ],
            "not_ready": tick.not_ready,
            "degraded": tick.degraded,
        }, indent=2))
        return

    _print_instances(console, [
        InstanceStatus(name=s.name, ready=s.ready, desired=s.desired, phase=s.phase,
                       restarts=s.restarts, age=s.age)
        for s in samples
    ], title=f"Pods in {namespace}")
    if tick.converged:
        console.print(f"[green]✓ All {tick.instances} monitored instances are ready.[/]")
    else:
        console.print(f"[yellow]⚠ {len(tick.not_ready)} of {tick.instances} monitored instances not ready.[/]")
        if tick.degraded:
            console.print(f"[red]Unhealthy: {', '.join(tick.degraded)}[/]")


# ── Output helpers ───────────────────────────────────────────────────────


def _finish(report: TransitionReport, json_out: bool) -> None:
    if json_out:
        typer.echo(report.model_dump_json(indent=2))
    else:
        _print_report(console, report)
    if report.exit_code:
        raise typer.Exit(code=report.exit_code)


def _print_snapshot(out: Console, snapshot: ReleaseSnapshot) -> None:
    table = Table(title=f"Release {snapshot.name}", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Namespace", snapshot.namespace)
    table.add_row("Revision", str(snapshot.revision))
    table.add_row("Chart", snapshot.chart)
    table.add_row("App version", snapshot.app_version or "?")
    table.add_row("Status", snapshot.status)
    out.print(table)


def _print_packages(out: Console, candidates: list[PackageVersion]) -> None:
    if not candidates:
        out.print("[dim]No package versions available.[/]")
        return
    table = Table(title="Available package versions")
    table.add_column("Chart version", style="cyan")
    table.add_column("App version")
    for c in candidates:
        table.add_row(c.version, c.app_version)
    out.print(table)


def _print_history(out: Console, history: list[RevisionRecord], current: int) -> None:
    table = Table(title="Revision history")
    table.add_column("Rev", justify="right")
    table.add_column("Chart")
    table.add_column("App version")
    table.add_column("Status")
    table.add_column("Description")
    for r in history:
        marker = " *" if r.revision == current else ""
        table.add_row(f"{r.revision}{marker}", r.chart, r.app_version, r.status, r.description)
    out.print(table)


def _print_classification(out: Console, c: Classification) -> None:
    style = _TIER_STYLE[c.tier]
    risk = "[red]yes[/]" if c.schema_risk else "[green]no[/]"
    out.print(f"Transition tier: [{style}]{c.tier.value}[/]  schema risk: {risk}")
    out.print(f"  {c.reason}")


def _print_plan(out: Console, plan: TransitionPlan) -> None:
    table = Table(title=f"{plan.direction.value.capitalize()} plan", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Release", f"{plan.source.name} ({plan.source.namespace})")
    table.add_row("App version", f"{plan.source.app_version or '?'} → {plan.target_app_version or '?'}")
    table.add_row(
        "Chart version", f"{plan.source.package_version or '?'} → {plan.target_package_version or '?'}"
    )
    if plan.target_revision is not None:
        table.add_row("Target revision", str(plan.target_revision))
    table.add_row("Tier", f"[{_TIER_STYLE[plan.tier]}]{plan.tier.value}[/]")
    table.add_row("Schema risk", str(plan.schema_risk).lower())
    if plan.backup_path:
        table.add_row("Values backup", str(plan.backup_path))
    if plan.override_path:
        table.add_row("Override file", str(plan.override_path))
    if plan.values_file:
        table.add_row("Values restore", str(plan.values_file))
    out.print(table)


def _print_instances(out: Console, instances: list[InstanceStatus], title: str) -> None:
    table = Table(title=title)
    table.add_column("Name", style="cyan")
    table.add_column("Ready", justify="center")
    table.add_column("Status")
    table.add_column("Restarts", justify="right")
    table.add_column("Age", justify="right")
    for inst in instances:
        ok = inst.ready == inst.desired
        ready = f"[green]{inst.ready_column}[/]" if ok else f"[yellow]{inst.ready_column}[/]"
        table.add_row(inst.name, ready, inst.phase, str(inst.restarts), inst.age)
    out.print(table)


def _print_report(out: Console, report: TransitionReport) -> None:
    style = _OUTCOME_STYLE[report.outcome]
    out.print(f"\n[bold {style}]{report.outcome.value}[/] {report.summary}")

    table = Table(show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Run", report.run_id)
    table.add_row("States", " → ".join(report.states))
    if report.tier:
        table.add_row("Tier", f"{report.tier} (schema risk: {str(report.schema_risk).lower()})")
    if report.new_revision is not None:
        table.add_row("New revision", str(report.new_revision))
    if report.backup_path:
        table.add_row("Values backup", report.backup_path)
    if report.override_path:
        table.add_row("Override file", report.override_path)
    table.add_row("Duration", f"{report.duration_seconds:.1f}s")
    out.print(table)

    if report.error:
        err_console.print(f"[bold red]Error ({report.error_type}):[/bold red] {report.error}")
        if report.dry_run_output:
            err_console.print(Panel(report.dry_run_output, title="dry-run output", border_style="red"))

    if report.monitor is not None and report.monitor.final_instances:
        _print_instances(out, report.monitor.final_instances,
                         title=f"Health: {report.monitor.verdict.value} after {report.monitor.tick_count} checks")

    for warning in report.warnings:
        out.print(f"[yellow]⚠ {warning}[/]")

    if report.recovery_hints and report.outcome != Outcome.ABORTED:
        out.print("\n[bold]Recovery:[/]")
        for hint in report.recovery_hints:
            out.print(f"  {hint}")
