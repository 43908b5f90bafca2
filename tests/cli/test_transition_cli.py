"""Tests for ``relspine upgrade / rollback / classify / status``.

The helm and cluster clients are replaced through ``_collaborators``; every
other piece (settings, gate, orchestrator, artifact writer) is real.
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from relspine.cli.app import app
from relspine.core.errors import ValidationError
from relspine.transition.models import ReleaseSnapshot
from tests._support import CallOrder
from tests._support.fakes import ScriptedCluster, crashing_batch, healthy_batch

runner = CliRunner()


def _report(result) -> dict:
    """Parse the JSON document echoed last on stdout."""
    lines = result.stdout.splitlines()
    start = max(i for i, line in enumerate(lines) if line == "{")
    return json.loads("\n".join(lines[start:]))


@pytest.fixture
def wire():
    """Patch the CLI's collaborators; returns a setter taking (release_manager, cluster)."""
    patcher = patch("relspine.cli.transition._collaborators")
    mock = patcher.start()

    def _wire(release_manager, cluster):
        mock.return_value = (release_manager, cluster)
        return mock

    yield _wire
    patcher.stop()


def _upgrade_args(artifact_dir, *extra):
    return [
        "--log-level", "ERROR",
        "upgrade", "-n", "b2bi", "-r", "s0",
        "--artifact-dir", str(artifact_dir),
        "--max-ticks", "3", "--tick-interval", "0", "--initial-delay", "0",
        *extra,
    ]


def _rollback_args(artifact_dir, *extra):
    return [
        "--log-level", "ERROR",
        "rollback", "-n", "b2bi", "-r", "s0",
        "--artifact-dir", str(artifact_dir),
        "--no-monitor",
        *extra,
    ]


class TestUpgradeCommand:
    def test_unattended_upgrade(self, wire, release_manager, healthy_cluster, artifact_dir):
        wire(release_manager, healthy_cluster)
        result = runner.invoke(app, _upgrade_args(artifact_dir, "--to", "6.2.2.0", "--yes"))

        assert result.exit_code == 0, result.output
        assert "SUCCEEDED" in result.output
        assert "MINOR" in result.output
        CallOrder(release_manager.calls).assert_order(["dry_run_apply", "apply"])
        assert len(list(artifact_dir.glob("s0-values-*.yaml"))) == 2

    def test_json_report(self, wire, release_manager, healthy_cluster, artifact_dir):
        wire(release_manager, healthy_cluster)
        result = runner.invoke(app, _upgrade_args(artifact_dir, "--to", "6.2.2.0", "--yes", "--json"))

        assert result.exit_code == 0, result.output
        report = _report(result)
        assert report["outcome"] == "SUCCEEDED"
        assert report["tier"] == "MINOR"
        assert report["schema_risk"] is True
        assert report["new_revision"] == 3
        assert report["monitor"]["verdict"] == "CONVERGED"

    def test_declined_confirmation_exits_zero(self, wire, release_manager, healthy_cluster, artifact_dir):
        wire(release_manager, healthy_cluster)
        result = runner.invoke(app, _upgrade_args(artifact_dir, "--to", "6.2.2.0"), input="n\n")

        assert result.exit_code == 0, result.output
        assert "ABORTED" in result.output
        CallOrder(release_manager.calls).assert_absent("apply")

    def test_prompts_until_target_is_valid(self, wire, release_manager, healthy_cluster, artifact_dir):
        wire(release_manager, healthy_cluster)
        result = runner.invoke(app, _upgrade_args(artifact_dir), input="six\n6.2.0.4\n6.2.2.0\ny\n")

        assert result.exit_code == 0, result.output
        assert "Available package versions" in result.output
        assert "✗" in result.output
        assert "older than current" in result.output
        assert "SUCCEEDED" in result.output

    def test_downgrade_rejected(self, wire, release_manager, healthy_cluster, artifact_dir):
        wire(release_manager, healthy_cluster)
        result = runner.invoke(app, _upgrade_args(artifact_dir, "--to", "6.2.0.4", "--yes"))

        assert result.exit_code == 1
        assert "rollback" in result.output
        assert release_manager.call_names().count("apply") == 0

    def test_yes_requires_target(self, wire, release_manager, healthy_cluster, artifact_dir):
        wire(release_manager, healthy_cluster)
        result = runner.invoke(app, _upgrade_args(artifact_dir, "--yes"))
        assert result.exit_code == 1
        assert "--to is required" in result.output

    def test_dry_run_failure_exits_one(self, wire, release_manager, healthy_cluster, artifact_dir):
        release_manager.dry_run_error = ValidationError("Dry-run failed.", output="Error: bad template")
        wire(release_manager, healthy_cluster)
        result = runner.invoke(app, _upgrade_args(artifact_dir, "--to", "6.2.2.0", "--yes"))

        assert result.exit_code == 1
        assert "Dry-run failed." in result.output
        assert "bad template" in result.output
        CallOrder(release_manager.calls).assert_absent("apply")

    def test_unknown_namespace(self, wire, release_manager, artifact_dir):
        wire(release_manager, ScriptedCluster(namespaces=set()))
        result = runner.invoke(app, _upgrade_args(artifact_dir, "--to", "6.2.2.0", "--yes"))
        assert result.exit_code == 1
        assert "Namespace 'b2bi' not found" in result.output

    def test_health_timeout_is_still_success(self, wire, release_manager, artifact_dir):
        wire(release_manager, ScriptedCluster([crashing_batch()]))
        result = runner.invoke(app, _upgrade_args(artifact_dir, "--to", "6.2.2.0", "--yes", "--json"))

        assert result.exit_code == 0, result.output
        report = _report(result)
        assert report["monitor"]["verdict"] == "TIMED_OUT"
        assert report["monitor"]["degraded"] == ["s0-b2bi-asi-server-0"]
        assert any("did not converge" in w for w in report["warnings"])

    def test_invalid_settings(self, wire, release_manager, healthy_cluster, artifact_dir):
        wire(release_manager, healthy_cluster)
        result = runner.invoke(app, _upgrade_args(artifact_dir, "--to", "6.2.2.0", "--max-ticks", "0"))
        assert result.exit_code == 1
        assert "Invalid settings" in result.output


class TestRollbackCommand:
    def test_attested_rollback(self, wire, rollback_release_manager, healthy_cluster, artifact_dir):
        wire(rollback_release_manager, healthy_cluster)
        result = runner.invoke(
            app, _rollback_args(artifact_dir, "--revision", "1", "--db-restored", "--yes", "--json")
        )

        assert result.exit_code == 0, result.output
        report = _report(result)
        assert report["outcome"] == "SUCCEEDED"
        assert report["database_restore_attested"] is True
        assert ("rollback", "s0", 1, "90m") in rollback_release_manager.calls

    def test_yes_alone_does_not_attest(self, wire, rollback_release_manager, healthy_cluster, artifact_dir):
        wire(rollback_release_manager, healthy_cluster)
        result = runner.invoke(app, _rollback_args(artifact_dir, "--yes"))

        assert result.exit_code == 0, result.output
        assert "ABORTED" in result.output
        assert "--db-restored" in result.output
        CallOrder(rollback_release_manager.calls).assert_absent("rollback")

    def test_interactive_attestation(self, wire, rollback_release_manager, healthy_cluster, artifact_dir):
        wire(rollback_release_manager, healthy_cluster)
        # revision (default 1), values file (blank), attest, confirm
        result = runner.invoke(app, _rollback_args(artifact_dir), input="\n\ny\ny\n")

        assert result.exit_code == 0, result.output
        assert "Database restore required" in result.output
        assert "SUCCEEDED" in result.output

    def test_json_prompts_go_to_stderr(self, wire, rollback_release_manager, healthy_cluster, artifact_dir):
        wire(rollback_release_manager, healthy_cluster)
        result = runner.invoke(app, _rollback_args(artifact_dir, "--json"), input="\n\ny\ny\n")

        assert result.exit_code == 0, result.output
        assert "Proceed with rollback?" in result.stderr
        assert "Proceed with rollback?" not in result.stdout
        assert "Target revision" not in result.stdout
        assert _report(result)["outcome"] == "SUCCEEDED"

    def test_invalid_revision(self, wire, rollback_release_manager, healthy_cluster, artifact_dir):
        wire(rollback_release_manager, healthy_cluster)
        result = runner.invoke(app, _rollback_args(artifact_dir, "--revision", "2", "--yes"))
        assert result.exit_code == 1
        assert "between 1 and 1" in result.output

    def test_nothing_to_roll_back(self, wire, release_manager, healthy_cluster, artifact_dir):
        release_manager.releases[("b2bi", "s0")] = ReleaseSnapshot(
            name="s0", namespace="b2bi", revision=1, chart="ibm-b2bi-prod-3.1.0", app_version="6.2.1.1",
        )
        wire(release_manager, healthy_cluster)
        result = runner.invoke(app, _rollback_args(artifact_dir, "--yes"))
        assert result.exit_code == 1
        assert "nothing to roll back" in result.output


class TestClassifyCommand:
    def test_table(self):
        result = runner.invoke(app, ["classify", "6.2.1.1", "6.2.2.0"])
        assert result.exit_code == 0
        assert "MINOR" in result.output

    def test_json(self):
        result = runner.invoke(app, ["--log-level", "ERROR", "classify", "6.1.0.0", "6.2.0.0", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["tier"] == "MAJOR"
        assert data["schema_risk"] is True

    def test_rollback_direction(self):
        result = runner.invoke(app, ["classify", "6.2.2.0", "6.2.1.1", "--direction", "rollback"])
        assert result.exit_code == 0
        assert "MINOR" in result.output

    def test_same_version(self):
        result = runner.invoke(app, ["classify", "6.2.1.1", "6.2.1.1"])
        assert result.exit_code == 1
        assert "Nothing to do" in result.output


class TestStatusCommand:
    def test_all_ready(self, wire, release_manager):
        wire(release_manager, ScriptedCluster([healthy_batch()]))
        result = runner.invoke(app, ["status", "-n", "b2bi"])
        assert result.exit_code == 0
        assert "All 3 monitored instances are ready" in result.output

    def test_unhealthy_json(self, wire, release_manager):
        wire(release_manager, ScriptedCluster([crashing_batch()]))
        result = runner.invoke(app, ["--log-level", "ERROR", "status", "-n", "b2bi", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["converged"] is False
        assert data["degraded"] == ["s0-b2bi-asi-server-0"]
        assert len(data["instances"]) == 2


def test_version_flag():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert result.output.startswith("relspine ")
