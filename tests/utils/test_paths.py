"""Tests for workspace path resolution."""

import pytest

from solidrules.utils.paths import WorkspacePaths, get_path_manager


def test_rules_dir_and_legacy_file(tmp_path):
    paths = WorkspacePaths(root_dir=tmp_path)

    assert paths.get_rules_dir() == tmp_path / ".cursor" / "rules"
    assert paths.get_rules_dir("docs/rules") == tmp_path / "docs" / "rules"
    assert paths.get_legacy_file() == tmp_path / ".cursorrules"
    assert paths.workspace_name == tmp_path.name


@pytest.mark.parametrize("bad", ["/etc/rules", "../outside"])
def test_rules_dir_must_stay_inside_workspace(tmp_path, bad):
    with pytest.raises(ValueError):
        WorkspacePaths(root_dir=tmp_path).get_rules_dir(bad)


def test_path_manager_singleton_reroots(tmp_path):
    first = get_path_manager(tmp_path / "one")
    assert get_path_manager() is first

    second = get_path_manager(tmp_path / "two", rules_directory="rules")
    assert second.get_rules_dir() == tmp_path / "two" / "rules"


def test_path_manager_applies_new_rules_directory(tmp_path):
    first = get_path_manager(tmp_path)

    updated = get_path_manager(rules_directory="custom/rules")

    assert updated.root_dir == first.root_dir
    assert updated.get_rules_dir() == tmp_path / "custom" / "rules"
    assert get_path_manager() is updated
