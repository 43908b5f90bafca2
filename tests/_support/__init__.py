"""
Test support utilities for relspine tests.

Helpers that are not fixtures but are shared by several test modules.
The in-memory collaborators live in :mod:`tests._support.fakes`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml


def write_temp_yaml(temp_dir: Path, name: str, content: dict[str, Any]) -> Path:
    """Write a dictionary to ``{temp_dir}/{name}.yaml`` and return the path."""
    file_path = temp_dir / f"{name}.yaml"
    with open(file_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(content, f, default_flow_style=False)
    return file_path


def read_yaml(path: Path) -> Any:
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f)


def assert_dict_subset(actual: dict, expected: dict, path: str = "") -> None:
    """Assert that *expected* is a recursive subset of *actual*."""
    for key, expected_value in expected.items():
        current_path = f"{path}.{key}" if path else key

        assert key in actual, f"Missing key at {current_path}"
        actual_value = actual[key]

        if isinstance(expected_value, dict) and isinstance(actual_value, dict):
            assert_dict_subset(actual_value, expected_value, current_path)
        else:
            assert actual_value == expected_value, (
                f"Mismatch at {current_path}: "
                f"expected {expected_value!r}, got {actual_value!r}"
            )


class CallOrder:
    """
    Validates the order of recorded collaborator calls.

    Usage:
        order = CallOrder(release_manager.calls)
        order.assert_before("write_backup", "write_override")
        order.assert_order(["write_override", "dry_run_apply", "apply"])
    """

    def __init__(self, calls: list[tuple[Any, ...]]) -> None:
        self.names = [c[0] for c in calls]

    def index(self, name: str) -> int:
        """Index of the first call named *name*."""
        if name not in self.names:
            raise AssertionError(f"Call '{name}' not recorded; calls: {self.names}")
        return self.names.index(name)

    def assert_before(self, first: str, second: str) -> None:
        first_idx = self.index(first)
        second_idx = self.index(second)
        assert first_idx < second_idx, (
            f"Expected '{first}' (index {first_idx}) before "
            f"'{second}' (index {second_idx}), order: {self.names}"
        )

    def assert_order(self, expected: list[str]) -> None:
        indices = [self.index(name) for name in expected]
        assert indices == sorted(indices), (
            f"Calls not in expected order: expected {expected}, "
            f"but indices are {indices}, full order: {self.names}"
        )

    def assert_absent(self, name: str) -> None:
        assert name not in self.names, f"Unexpected call '{name}'; calls: {self.names}"
