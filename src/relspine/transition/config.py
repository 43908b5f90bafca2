"""Settings for release transitions.

Every field can be overridden through a ``RELSPINE_*`` environment
variable or a ``.env`` file; keyword arguments win over both::

    RELSPINE_DEFAULT_NAMESPACE=b2bi-prod RELSPINE_MONITOR_MAX_TICKS=30 relspine upgrade

Precedence: kwargs > env vars > ``.env`` > field defaults.

The defaults reproduce the behaviour of the hand-run upgrade procedure:
a 90 minute ceiling on the mutating call, and health polling every 60 s
for up to 20 checks after a 30 s settle delay.
"""

from __future__ import annotations

import shutil
import uuid
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from relspine.core.errors import ToolNotFoundError


class TransitionSettings(BaseSettings):
    """Configuration for upgrade/rollback runs."""

    model_config = SettingsConfigDict(
        env_prefix="RELSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Targets ──────────────────────────────────────────────────
    default_namespace: str = "ibm-b2bi-dev01-app"
    default_release: str = "s0"
    chart_repo: str = Field(default="ibm-helm", description="Package repository name")
    chart_name: str = Field(default="ibm-b2bi-prod", description="Package (chart) name")

    # ── Tools ────────────────────────────────────────────────────
    helm_binary: str = "helm"
    kube_cli: str | None = Field(
        default=None,
        description="Cluster CLI (oc or kubectl); auto-detected when unset",
    )
    update_repo: bool = Field(default=True, description="Refresh the repo index before lookup")
    tool_timeout_seconds: int = Field(default=120, description="Ceiling for read-only tool calls")

    # ── Transition ───────────────────────────────────────────────
    artifact_dir: Path = Field(default=Path("."), description="Where backup/override files go")
    apply_timeout_minutes: int = Field(default=90, description="Ceiling for the mutating call")
    history_max: int = Field(default=50, description="Revisions read from history")
    feature_chart_version: str = Field(
        default="3.2.0",
        description="First package version that ships the new sub-components",
    )

    # ── Health monitor ───────────────────────────────────────────
    monitor_enabled: bool = True
    monitor_max_ticks: int = 20
    monitor_tick_interval: float = 60.0
    monitor_initial_delay: float = 30.0
    housekeeping_markers: list[str] = Field(default_factory=lambda: ["purge"])

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None

    @field_validator("apply_timeout_minutes", "history_max", "monitor_max_ticks", "tool_timeout_seconds")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("monitor_tick_interval", "monitor_initial_delay")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @property
    def chart_ref(self) -> str:
        """Repository-qualified package reference (``ibm-helm/ibm-b2bi-prod``)."""
        return f"{self.chart_repo}/{self.chart_name}"

    @property
    def apply_timeout(self) -> str:
        """Timeout string handed to the release manager (``90m``)."""
        return f"{self.apply_timeout_minutes}m"

    def resolve_kube_cli(self) -> str:
        """Return the configured cluster CLI or detect ``oc`` then ``kubectl``."""
        if self.kube_cli:
            return self.kube_cli
        for candidate in ("oc", "kubectl"):
            if shutil.which(candidate):
                return candidate
        raise ToolNotFoundError("kubectl", "Neither 'oc' nor 'kubectl' found in PATH.")


def new_run_id() -> str:
    """Short unique identifier for one transition run."""
    return uuid.uuid4().hex[:12]


__all__ = ["TransitionSettings", "new_run_id"]
