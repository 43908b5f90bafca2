"""Durable artifacts written during a transition.

Every run that gets past classification leaves a values backup on disk,
and every upgrade also leaves the override it applied. Both are plain
YAML so an operator can read, edit and re-apply them by hand.

Naming::

    {release}-values-backup-{currentAppVersion}-{YYYYmmdd-HHMMSS}.yaml
    {release}-values-upgrade-{targetAppVersion}-{YYYYmmdd-HHMMSS}.yaml

Files are created exclusively. An artifact that already exists is never
overwritten; the writer raises :class:`ArtifactError` instead.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from relspine.core.errors import ArtifactError
from relspine.core.logging import get_logger
from relspine.transition.models import TransitionPlan
from relspine.transition.overrides import override_header

logger = get_logger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


def _dump(document: dict[str, Any]) -> str:
    return yaml.safe_dump(document, sort_keys=False, default_flow_style=False, allow_unicode=True)


def load_values(path: Path) -> dict[str, Any]:
    """Read a YAML values document; an empty file yields ``{}``."""
    try:
        with path.open(encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except OSError as exc:
        raise ArtifactError(f"Cannot read values file {path}: {exc}", cause=exc) from exc
    except yaml.YAMLError as exc:
        raise ArtifactError(f"Values file {path} is not valid YAML: {exc}", cause=exc) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ArtifactError(f"Values file {path} must contain a mapping, got {type(data).__name__}.")
    return data


class ArtifactWriter:
    """Writes backup and override files into one directory.

    Parameters
    ----------
    artifact_dir
        Target directory; created on first write.
    clock
        Returns the timestamp used in file names. Injected by tests.
    """

    def __init__(self, artifact_dir: Path, clock: Callable[[], datetime] | None = None) -> None:
        self.artifact_dir = Path(artifact_dir)
        self._clock = clock or datetime.now

    def backup_path(self, release: str, app_version: str, when: datetime) -> Path:
        stamp = when.strftime(TIMESTAMP_FORMAT)
        return self.artifact_dir / f"{release}-values-backup-{app_version or 'unknown'}-{stamp}.yaml"

    def override_path(self, release: str, app_version: str, when: datetime) -> Path:
        stamp = when.strftime(TIMESTAMP_FORMAT)
        return self.artifact_dir / f"{release}-values-upgrade-{app_version}-{stamp}.yaml"

    def write_backup(self, plan: TransitionPlan) -> Path:
        """Persist the release's current values before anything mutates."""
        path = self.backup_path(plan.source.name, plan.source.app_version, self._clock())
        self._write(path, _dump(plan.backup_document))
        plan.backup_path = path
        logger.info("artifacts.backup_written", path=str(path), keys=len(plan.backup_document))
        return path

    def write_override(self, plan: TransitionPlan) -> Path:
        """Persist the composed override with its comment header."""
        when = self._clock()
        path = self.override_path(plan.source.name, plan.target_app_version, when)
        self._write(path, override_header(plan, when) + "\n" + _dump(plan.override_document))
        plan.override_path = path
        logger.info("artifacts.override_written", path=str(path))
        return path

    def _write(self, path: Path, text: str) -> None:
        try:
            self.artifact_dir.mkdir(parents=True, exist_ok=True)
            with path.open("x", encoding="utf-8") as fh:
                fh.write(text)
        except FileExistsError as exc:
            raise ArtifactError(
                f"Refusing to overwrite existing artifact {path}.", cause=exc
            ) from exc
        except OSError as exc:
            raise ArtifactError(f"Cannot write artifact {path}: {exc}", cause=exc) from exc


__all__ = ["ArtifactWriter", "TIMESTAMP_FORMAT", "load_values"]
