"""Tests for TransitionSettings (env vars, validation, derived values)."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pydantic
import pytest

from relspine.core.errors import ToolNotFoundError
from relspine.transition.config import TransitionSettings, new_run_id


class TestTransitionSettings:
    def test_defaults(self):
        settings = TransitionSettings()
        assert settings.default_release == "s0"
        assert settings.chart_ref == "ibm-helm/ibm-b2bi-prod"
        assert settings.apply_timeout == "90m"
        assert settings.monitor_max_ticks == 20
        assert settings.monitor_tick_interval == 60
        assert settings.monitor_initial_delay == 30
        assert settings.housekeeping_markers == ["purge"]
        assert settings.artifact_dir == Path(".")

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("RELSPINE_DEFAULT_NAMESPACE", "b2bi-prod")
        monkeypatch.setenv("RELSPINE_MONITOR_MAX_TICKS", "30")
        monkeypatch.setenv("RELSPINE_HOUSEKEEPING_MARKERS", '["purge", "db-setup"]')
        settings = TransitionSettings()
        assert settings.default_namespace == "b2bi-prod"
        assert settings.monitor_max_ticks == 30
        assert settings.housekeeping_markers == ["purge", "db-setup"]

    def test_kwargs_beat_env(self, monkeypatch):
        monkeypatch.setenv("RELSPINE_APPLY_TIMEOUT_MINUTES", "120")
        assert TransitionSettings(apply_timeout_minutes=45).apply_timeout == "45m"

    def test_dotenv_file(self, tmp_path):
        # conftest chdirs into tmp_path
        (tmp_path / ".env").write_text("RELSPINE_CHART_REPO=internal-mirror\n")
        assert TransitionSettings().chart_ref == "internal-mirror/ibm-b2bi-prod"

    @pytest.mark.parametrize("field", ["monitor_max_ticks", "apply_timeout_minutes", "history_max"])
    def test_positive_fields(self, field):
        with pytest.raises(pydantic.ValidationError):
            TransitionSettings(**{field: 0})

    def test_negative_delay_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            TransitionSettings(monitor_initial_delay=-1)


class TestResolveKubeCli:
    def test_explicit(self):
        assert TransitionSettings(kube_cli="kubectl").resolve_kube_cli() == "kubectl"

    def test_prefers_oc(self):
        with patch("shutil.which", side_effect=lambda name: f"/usr/bin/{name}"):
            assert TransitionSettings().resolve_kube_cli() == "oc"

    def test_falls_back_to_kubectl(self):
        with patch("shutil.which", side_effect=lambda name: "/usr/bin/kubectl" if name == "kubectl" else None):
            assert TransitionSettings().resolve_kube_cli() == "kubectl"

    def test_neither_available(self):
        with patch("shutil.which", return_value=None):
            with pytest.raises(ToolNotFoundError, match="Neither 'oc' nor 'kubectl'"):
                TransitionSettings().resolve_kube_cli()


def test_run_ids_are_unique():
    first, second = new_run_id(), new_run_id()
    assert first != second
    assert len(first) == 12
