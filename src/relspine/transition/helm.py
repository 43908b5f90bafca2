"""Release manager backed by the ``helm`` CLI.

Runs ``helm`` through subprocess and reads its native JSON output
(``--output json``) instead of scraping tables, so the orchestrator never
sees the text format.

Failure mapping:
    - binary missing                → ToolNotFoundError
    - read-only command fails       → ToolError
    - ``upgrade --dry-run`` fails   → ValidationError
    - ``upgrade`` / ``rollback``    → ApplyError (never retried here)
"""

from __future__ import annotations

import json
import shutil
import subprocess
from pathlib import Path
from typing import Any

from relspine.core.errors import ApplyError, ToolError, ToolNotFoundError, ValidationError
from relspine.core.logging import get_logger
from relspine.transition.models import PackageVersion, ReleaseSnapshot, RevisionRecord

logger = get_logger(__name__)

# Grace period on top of the release manager's own --timeout.
_APPLY_GRACE_SECONDS = 300
DRY_RUN_TAIL_LINES = 20


def _timeout_seconds(timeout: str) -> int:
    """Convert a helm duration (``90m``, ``45s``, ``2h``) into seconds."""
    units = {"s": 1, "m": 60, "h": 3600}
    text = timeout.strip()
    if text and text[-1] in units and text[:-1].isdigit():
        return int(text[:-1]) * units[text[-1]]
    if text.isdigit():
        return int(text)
    raise ValueError(f"Unsupported timeout format: {timeout!r}")


def tail(text: str, lines: int = DRY_RUN_TAIL_LINES) -> str:
    return "\n".join(text.rstrip().splitlines()[-lines:])


class HelmReleaseManager:
    """``ReleaseManager`` implementation on top of ``helm``.

    Parameters
    ----------
    binary
        helm executable name or path.
    timeout
        Ceiling in seconds for read-only commands.
    """

    def __init__(self, binary: str = "helm", timeout: int = 120) -> None:
        self.timeout = timeout
        self._helm = self._find_helm(binary)

    @staticmethod
    def _find_helm(binary: str) -> str:
        helm = shutil.which(binary)
        if helm is None:
            raise ToolNotFoundError(binary)
        return helm

    def version(self) -> str:
        return self._run(["version", "--short"]).stdout.strip()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_releases(self, namespace: str) -> list[ReleaseSnapshot]:
        """All releases in *namespace*."""
        rows = self._run_json(["list", "--namespace", namespace, "--output", "json"]) or []
        return [
            ReleaseSnapshot(
                name=row.get("name", ""),
                namespace=row.get("namespace", namespace),
                revision=int(row.get("revision", 0)),
                chart=row.get("chart", ""),
                app_version=row.get("app_version", ""),
                status=row.get("status", "unknown"),
                updated=row.get("updated"),
            )
            for row in rows
        ]

    def get_values(self, release: str, namespace: str) -> dict[str, Any]:
        """User-supplied values of the current revision."""
        values = self._run_json(
            ["get", "values", release, "--namespace", namespace, "--output", "json"]
        )
        return values or {}

    def history(self, release: str, namespace: str, max_revisions: int = 50) -> list[RevisionRecord]:
        rows = self._run_json([
            "history", release,
            "--namespace", namespace,
            "--max", str(max_revisions),
            "--output", "json",
        ]) or []
        return [
            RevisionRecord(
                revision=int(row.get("revision", 0)),
                chart=row.get("chart", ""),
                app_version=row.get("app_version", ""),
                status=row.get("status", ""),
                updated=row.get("updated"),
                description=row.get("description", ""),
            )
            for row in rows
        ]

    def update_repo(self, repo: str) -> None:
        self._run(["repo", "update", repo])
        logger.info("helm.repo_updated", repo=repo)

    def search_package_versions(self, chart_ref: str) -> list[PackageVersion]:
        """Every published version of *chart_ref*, newest first."""
        rows = self._run_json(["search", "repo", chart_ref, "--versions", "--output", "json"]) or []
        return [
            PackageVersion(
                name=row.get("name", chart_ref),
                version=row.get("version", ""),
                app_version=row.get("app_version", ""),
                description=row.get("description", ""),
            )
            for row in rows
            if row.get("name", chart_ref) == chart_ref
        ]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def dry_run_apply(
        self,
        release: str,
        namespace: str,
        chart_ref: str,
        package_version: str,
        values_file: Path,
    ) -> str:
        """Render the upgrade without applying it. Returns the output tail."""
        args = self._upgrade_args(release, namespace, chart_ref, package_version, values_file, True)
        args.append("--dry-run")
        try:
            result = self._run(args)
        except ToolError as exc:
            raise ValidationError(
                "Dry-run failed. Review the errors and fix the upgrade values file before retrying.",
                output=exc.stderr,
                cause=exc,
            ).with_context(release=release, namespace=namespace) from exc
        return tail(result.stdout)

    def apply(
        self,
        release: str,
        namespace: str,
        chart_ref: str,
        package_version: str,
        values_file: Path,
        timeout: str,
        reuse_values: bool = True,
    ) -> str:
        """Upgrade *release* to *package_version* with *values_file* on top."""
        args = self._upgrade_args(
            release, namespace, chart_ref, package_version, values_file, reuse_values
        )
        args.extend(["--timeout", timeout])
        return self._mutate(args, release, namespace, timeout)

    def rollback(self, release: str, namespace: str, revision: int, timeout: str) -> str:
        args = [
            "rollback", release, str(revision),
            "--namespace", namespace,
            "--timeout", timeout,
            "--wait=false",
        ]
        return self._mutate(args, release, namespace, timeout)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _upgrade_args(
        release: str,
        namespace: str,
        chart_ref: str,
        package_version: str,
        values_file: Path,
        reuse_values: bool,
    ) -> list[str]:
        args = [
            "upgrade", release, chart_ref,
            "--version", package_version,
            "--namespace", namespace,
        ]
        if reuse_values:
            args.append("--reuse-values")
        args.extend(["-f", str(values_file)])
        return args

    def _mutate(self, args: list[str], release: str, namespace: str, timeout: str) -> str:
        try:
            result = self._run(args, timeout=_timeout_seconds(timeout) + _APPLY_GRACE_SECONDS)
        except ToolError as exc:
            raise ApplyError(
                f"helm {args[0]} failed: {exc.stderr.strip() or exc.message}. "
                f"Inspect the revision history with: helm history {release} -n {namespace}",
                output=exc.stderr,
                cause=exc,
            ).with_context(release=release, namespace=namespace, command=" ".join(args)) from exc
        return result.stdout

    def _run_json(self, args: list[str]) -> Any:
        result = self._run(args)
        text = result.stdout.strip()
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise ToolError(
                f"helm returned malformed JSON for: {' '.join(args)}",
                stderr=text[:500],
                cause=exc,
            ) from exc

    def _run(
        self,
        args: list[str],
        timeout: int | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run a helm command; non-zero exit raises :class:`ToolError`."""
        cmd = [self._helm, *args]
        timeout = timeout or self.timeout
        logger.debug("helm.exec", cmd=" ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise ToolError(
                f"helm command timed out after {timeout}s: {' '.join(args)}",
                cause=exc,
            ) from exc
        if result.returncode != 0:
            raise ToolError(
                f"helm command failed (exit {result.returncode}): {' '.join(args)}",
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result


__all__ = ["HelmReleaseManager", "tail"]
