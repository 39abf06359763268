"""Starter Ansible layout planning and creation.

The scaffold is purely additive: :func:`plan_scaffold` inspects the target
tree and only schedules directories and files that are absent, so existing
content is never overwritten.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

HEADER_TEMPLATE = "# {relative}\n# Placeholder generated by onboardctl; edit freely.\n"

ROLE_SUBDIRS = ("tasks", "handlers", "templates", "files", "vars", "defaults")


@dataclass(frozen=True, slots=True)
class ScaffoldFile:
    """A placeholder file relative to the scaffold root."""

    relative: str
    body: str = ""

    def render(self) -> str:
        """Return the file content including the two-line header."""
        return HEADER_TEMPLATE.format(relative=self.relative) + self.body


@dataclass(slots=True)
class ScaffoldAction:
    """Single creation step required to complete the scaffold."""

    kind: Literal["mkdir", "write"]
    path: Path
    content: str | None = None


@dataclass(slots=True)
class ScaffoldPlan:
    """Actions needed to complete the scaffold plus what already exists."""

    root: Path
    actions: list[ScaffoldAction] = field(default_factory=list)
    existing: list[Path] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def scaffold_directories(role: str) -> list[str]:
    """Return the directories of the layout, parents first."""
    directories = ["inventories", "group_vars", "host_vars", "roles", f"roles/{role}"]
    directories.extend(f"roles/{role}/{subdir}" for subdir in ROLE_SUBDIRS)
    directories.append("playbooks")
    return directories


def scaffold_files(role: str) -> list[ScaffoldFile]:
    """Return the placeholder files of the layout."""
    return [
        ScaffoldFile(
            "ansible.cfg",
            "[defaults]\ninventory = inventories/hosts.ini\nroles_path = roles\n",
        ),
        ScaffoldFile(
            "inventories/hosts.ini",
            "[local]\nlocalhost ansible_connection=local\n",
        ),
        ScaffoldFile("group_vars/all.yml", "---\n"),
        ScaffoldFile("host_vars/localhost.yml", "---\n"),
        ScaffoldFile(
            f"roles/{role}/tasks/main.yml",
            "---\n"
            f"- name: {role} placeholder task\n"
            "  ansible.builtin.debug:\n"
            f'    msg: "{role} role is not implemented yet"\n',
        ),
        ScaffoldFile(f"roles/{role}/handlers/main.yml", "---\n"),
        ScaffoldFile(f"roles/{role}/templates/.gitkeep"),
        ScaffoldFile(f"roles/{role}/files/.gitkeep"),
        ScaffoldFile(f"roles/{role}/vars/main.yml", "---\n"),
        ScaffoldFile(f"roles/{role}/defaults/main.yml", "---\n"),
        ScaffoldFile(
            "playbooks/site.yml",
            "---\n"
            "- name: Configure workstation\n"
            "  hosts: local\n"
            "  roles:\n"
            f"    - {role}\n",
        ),
    ]


def plan_scaffold(root: Path, role: str = "myrole") -> ScaffoldPlan:
    """Return a plan describing how to complete the scaffold under *root*."""
    plan = ScaffoldPlan(root=root)
    blocked: list[Path] = []

    for directory in ["", *scaffold_directories(role)]:
        path = root / directory if directory else root
        if any(parent in blocked for parent in path.parents):
            continue
        if path.is_dir():
            plan.existing.append(path)
        elif path.exists():
            plan.warnings.append(f"{path} exists but is not a directory; skipping.")
            blocked.append(path)
        else:
            plan.actions.append(ScaffoldAction(kind="mkdir", path=path))

    for placeholder in scaffold_files(role):
        path = root / placeholder.relative
        if any(parent in blocked for parent in path.parents):
            continue
        if path.exists():
            plan.existing.append(path)
            continue
        plan.actions.append(
            ScaffoldAction(kind="write", path=path, content=placeholder.render())
        )

    return plan


def apply_scaffold_plan(plan: ScaffoldPlan) -> int:
    """Execute *plan* and return how many paths were created."""
    created = 0
    for action in plan.actions:
        if action.kind == "mkdir":
            action.path.mkdir(parents=True, exist_ok=True)
            created += 1
            continue
        if action.path.exists():
            continue
        action.path.parent.mkdir(parents=True, exist_ok=True)
        action.path.write_bytes((action.content or "").encode("utf-8"))
        created += 1
    return created


__all__ = [
    "HEADER_TEMPLATE",
    "ROLE_SUBDIRS",
    "ScaffoldAction",
    "ScaffoldFile",
    "ScaffoldPlan",
    "apply_scaffold_plan",
    "plan_scaffold",
    "scaffold_directories",
    "scaffold_files",
]
