"""Unit tests for Ansible scaffold planning helpers."""
from __future__ import annotations

from pathlib import Path

from onboardctl.scaffold import (
    HEADER_TEMPLATE,
    apply_scaffold_plan,
    plan_scaffold,
    scaffold_directories,
    scaffold_files,
)


def _all_relative_paths(role: str) -> set[str]:
    return set(scaffold_directories(role)) | {item.relative for item in scaffold_files(role)}


def test_plan_creates_full_layout(tmp_path: Path) -> None:
    """An empty target receives every directory and placeholder."""
    root = tmp_path / "ansible"

    plan = plan_scaffold(root)
    created = apply_scaffold_plan(plan)

    assert created == len(plan.actions)
    for relative in _all_relative_paths("myrole"):
        assert (root / relative).exists(), relative
    assert (root / "roles" / "myrole" / "tasks" / "main.yml").is_file()
    assert (root / "playbooks" / "site.yml").is_file()
    assert (root / "inventories" / "hosts.ini").is_file()


def test_placeholders_carry_header(tmp_path: Path) -> None:
    """Every generated file begins with its path and the placeholder note."""
    root = tmp_path / "ansible"
    apply_scaffold_plan(plan_scaffold(root, role="web"))

    for item in scaffold_files("web"):
        text = (root / item.relative).read_text(encoding="utf-8")
        assert text.startswith(HEADER_TEMPLATE.format(relative=item.relative))
    site = (root / "playbooks" / "site.yml").read_text(encoding="utf-8")
    assert "    - web\n" in site


def test_scaffold_is_additive(tmp_path: Path) -> None:
    """Existing files are never overwritten and a second run is a no-op."""
    root = tmp_path / "ansible"
    custom = root / "ansible.cfg"
    custom.parent.mkdir(parents=True)
    custom.write_text("[defaults]\nforks = 50\n", encoding="utf-8")

    apply_scaffold_plan(plan_scaffold(root))

    assert custom.read_text(encoding="utf-8") == "[defaults]\nforks = 50\n"
    again = plan_scaffold(root)
    assert again.actions == []
    assert apply_scaffold_plan(again) == 0
    assert root in again.existing


def test_plan_warns_on_non_directory(tmp_path: Path) -> None:
    """A file where a directory belongs is reported and its subtree skipped."""
    root = tmp_path / "ansible"
    root.mkdir()
    (root / "roles").write_text("not a directory", encoding="utf-8")

    plan = plan_scaffold(root)
    apply_scaffold_plan(plan)

    assert len(plan.warnings) == 1
    assert "roles" in plan.warnings[0]
    assert (root / "roles").is_file()
    assert not any("roles" in action.path.relative_to(root).parts for action in plan.actions)
    assert (root / "playbooks" / "site.yml").is_file()


def test_apply_skips_paths_created_after_planning(tmp_path: Path) -> None:
    """A file that appears between planning and applying is left alone."""
    root = tmp_path / "ansible"
    plan = plan_scaffold(root)
    root.mkdir()
    (root / "ansible.cfg").write_text("mine\n", encoding="utf-8")

    apply_scaffold_plan(plan)

    assert (root / "ansible.cfg").read_text(encoding="utf-8") == "mine\n"


def test_custom_site_playbook_survives_rerun(tmp_path: Path) -> None:
    """A customised playbooks/site.yml keeps its content on every run."""
    root = tmp_path / "ansible"
    apply_scaffold_plan(plan_scaffold(root))
    site = root / "playbooks" / "site.yml"
    site.write_text("---\n- hosts: all\n  roles: [base]\n", encoding="utf-8")

    apply_scaffold_plan(plan_scaffold(root))

    assert site.read_text(encoding="utf-8") == "---\n- hosts: all\n  roles: [base]\n"
