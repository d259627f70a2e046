# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for path validation and workspace-relative helpers."""

import os

import pytest

from acl_context.paths import (
    MAX_FILEPATH_LENGTH,
    is_excluded,
    relative_to_workspace,
    resolve_in_workspace,
    validate_filepath,
)


class TestValidateFilepath:
    """Tests for validate_filepath."""

    def test_accepts_normal_paths(self):
        validate_filepath("src/a.ts")
        validate_filepath("/abs/path with spaces/b.py")

    def test_rejects_control_characters(self):
        with pytest.raises(ValueError, match="Invalid characters"):
            validate_filepath("src/a\x00.ts")

    def test_rejects_overlong_path(self):
        with pytest.raises(ValueError, match="too long"):
            validate_filepath("a" * (MAX_FILEPATH_LENGTH + 1))


class TestWorkspacePaths:
    """Tests for resolve_in_workspace and relative_to_workspace."""

    def test_resolve_relative(self, tmp_path):
        assert resolve_in_workspace(tmp_path, "src/./a.ts") == os.path.join(
            str(tmp_path), "src", "a.ts"
        )

    def test_resolve_absolute_is_kept(self, tmp_path):
        absolute = str(tmp_path / "x" / "y.py")
        assert resolve_in_workspace(tmp_path, absolute) == absolute

    def test_relative_forms(self, tmp_path):
        assert relative_to_workspace(tmp_path, str(tmp_path)) == "."
        assert relative_to_workspace(tmp_path, str(tmp_path / "src" / "a.ts")) == "src/a.ts"

    def test_outside_workspace_unchanged(self, tmp_path):
        outside = str(tmp_path.parent / "elsewhere.ts")
        assert relative_to_workspace(tmp_path / "ws", outside) == outside


class TestIsExcluded:
    """Tests for include/exclude zone filtering."""

    def test_exclude_zone_and_children(self):
        assert is_excluded("node_modules", [], ["node_modules"])
        assert is_excluded("node_modules/react/index.js", [], ["node_modules"])
        assert not is_excluded("node_modules_backup/a.js", [], ["node_modules"])

    def test_include_zones_restrict(self):
        assert not is_excluded("src/a.ts", ["src"], [])
        assert is_excluded("docs/readme.md", ["src"], [])

    def test_include_zone_parents_stay_walkable(self):
        assert not is_excluded("packages", ["packages/core"], [])
        assert not is_excluded("packages/core/index.ts", ["packages/core"], [])
        assert is_excluded("packages/other", ["packages/core"], [])

    def test_exclude_applies_inside_include(self):
        assert is_excluded("src/generated/x.ts", ["src"], ["src/generated"])
