"""Typer-powered command line for ``onboardctl``.

``onboardctl run`` walks the onboarding checklist; the remaining commands
expose individual pieces (tool probes, the Ansible scaffold, the effective
configuration) for troubleshooting and partial re-runs.
"""
from __future__ import annotations

import json
import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .exit_codes import ExitCode
from .identity import ConsolePrompter
from .logging import StructuredLogger
from .orchestrator import Orchestrator, StepResult, StepStatus
from .privileges import is_elevated
from .repository import RepositoryNotFoundError, find_repository_root
from .runner import CommandError, CommandRunner, SubprocessRunner
from .scaffold import apply_scaffold_plan, plan_scaffold
from .tools import probe_tools

console = Console()
err_console = Console(stderr=True)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to onboardctl's YAML config file.",
)

REPO_ROOT_OPTION = typer.Option(
    None,
    "--repo-root",
    dir_okay=True,
    file_okay=False,
    help="Repository to publish into (defaults to auto-detection).",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit machine-readable JSON instead of formatted output.",
)

STATUS_STYLES: dict[StepStatus, str] = {
    StepStatus.OK: "[green]OK[/green]",
    StepStatus.CHANGED: "[cyan]CHANGED[/cyan]",
    StepStatus.SKIPPED: "[dim]SKIPPED[/dim]",
    StepStatus.WARNING: "[yellow]WARN[/yellow]",
    StepStatus.FAILED: "[red]FAILED[/red]",
}

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Developer workstation onboarding for Windows.

        Installs prerequisite tooling, enables Remote Desktop, generates an SSH
        key, publishes it on a per-user branch and scaffolds an Ansible layout.
        Every step is idempotent, so re-running after a failure is safe.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the effective configuration.")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger


def _build_runner() -> CommandRunner:
    return SubprocessRunner()


def _script_dir() -> Path:
    return Path(sys.argv[0]).resolve().parent


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    overrides: dict[str, object] | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext) and not overrides:
        return runtime

    if isinstance(runtime, RuntimeContext):
        config_file = config_file or runtime.config.config_file
    try:
        config = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {escape(str(exc))}")
        raise typer.Exit(code=int(ExitCode.VALIDATION)) from exc
    runtime = RuntimeContext(config=config, logger=StructuredLogger(config.logs_dir))
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the onboardctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"onboardctl {__version__}")
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _print_step(result: StepResult) -> None:
    label = STATUS_STYLES[result.status]
    console.print(f"{label} [bold]{result.step}[/bold]: {escape(result.message)}")
    if result.remediation and result.status in (StepStatus.WARNING, StepStatus.FAILED):
        console.print(f"    [bold]fix:[/bold] {escape(result.remediation)}")


def _repo_overrides(repo_root: Path | None) -> dict[str, object]:
    if repo_root is None:
        return {}
    return {"repo_root": str(repo_root)}


@app.command()
def run(
    ctx: typer.Context,
    username: str | None = typer.Option(
        None,
        "--username",
        "-u",
        help="Username to onboard (prompted for when omitted).",
    ),
    email: str | None = typer.Option(
        None,
        "--email",
        help="Git email to configure when user.email is unset (prompted for when omitted).",
    ),
    repo_root: Path | None = REPO_ROOT_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Run the full onboarding checklist."""
    runtime = _ensure_runtime(ctx, None, _repo_overrides(repo_root))
    orchestrator = Orchestrator(
        runtime.config,
        runner=_build_runner(),
        prompter=(
            ConsolePrompter(err_console, err=True) if json_output else ConsolePrompter(console)
        ),
        logger=runtime.logger,
        script_dir=_script_dir(),
        cwd=Path.cwd(),
        elevated=is_elevated,
        username=username,
        email=email,
        on_step=None if json_output else _print_step,
    )
    try:
        report = orchestrator.run()
    except CommandError as exc:
        console.print(f"[red]External command failed:[/red] {escape(str(exc))}")
        raise typer.Exit(code=int(ExitCode.PROVIDER)) from exc

    if json_output:
        console.print_json(data=report.to_dict())
        raise typer.Exit(code=int(report.exit_code))

    for command in report.manual_commands:
        console.print(f"[yellow]Run manually:[/yellow] {escape(command)}")

    failed = report.failed_step
    if failed is not None:
        console.print(f"[red]Onboarding stopped at step '{failed.step}'.[/red]")
        raise typer.Exit(code=int(report.exit_code))

    console.print("[green]Onboarding complete.[/green]")


@app.command()
def check(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Report which prerequisite tools are present."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "check",
        args={"json": json_output},
        target={"kind": "tools"},
    ) as op:
        presence = probe_tools(_build_runner(), runtime.config)
        missing = [entry.tool.value for entry in presence if not entry.present]
        if json_output:
            console.print_json(data={"tools": [entry.to_dict() for entry in presence]})
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Tool", style="bold")
            table.add_column("Present")
            table.add_column("Detail")
            for entry in presence:
                table.add_row(
                    entry.tool.value,
                    "[green]yes[/green]" if entry.present else "[red]no[/red]",
                    entry.detail or "",
                )
            console.print(table)
        if missing:
            op.warning(f"Missing tools: {', '.join(missing)}.", context={"missing": missing})
        else:
            op.success("All tools present.")


@app.command()
def scaffold(
    ctx: typer.Context,
    repo_root: Path | None = REPO_ROOT_OPTION,
    role: str | None = typer.Option(
        None,
        "--role",
        help="Role name to scaffold under roles/ (defaults to scaffold.role).",
    ),
) -> None:
    """Create any missing parts of the Ansible scaffold."""
    overrides = _repo_overrides(repo_root)
    if role is not None:
        overrides["scaffold"] = {"role": role}
    runtime = _ensure_runtime(ctx, None, overrides)
    config = runtime.config

    with runtime.logger.operation(
        "scaffold",
        args={"repo_root": repo_root, "role": config.scaffold.role},
        target={"kind": "scaffold"},
    ) as op:
        try:
            root = find_repository_root(_script_dir(), Path.cwd(), explicit=config.repo_root)
        except RepositoryNotFoundError as exc:
            console.print(f"[red]{escape(str(exc))}[/red]")
            op.error(str(exc), rc=int(ExitCode.ENVIRONMENT))
            raise typer.Exit(code=int(ExitCode.ENVIRONMENT)) from exc

        try:
            plan = plan_scaffold(root / config.scaffold.root, config.scaffold.role)
            created = apply_scaffold_plan(plan)
        except OSError as exc:
            console.print(f"[red]Could not create the scaffold:[/red] {escape(str(exc))}")
            op.error(str(exc), rc=int(ExitCode.ENVIRONMENT))
            raise typer.Exit(code=int(ExitCode.ENVIRONMENT)) from exc
        for warning in plan.warnings:
            console.print(f"[yellow]{escape(warning)}[/yellow]")
        for action in plan.actions:
            console.print(f"[cyan]created[/cyan] {action.path.relative_to(root)}")
        if not created:
            console.print("Scaffold already complete.")
        if plan.warnings:
            op.warning("Scaffold completed with warnings.", warnings=plan.warnings, changed=created)
        else:
            op.success("Scaffold complete.", changed=created)


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console-script entry point."""
    app()


__all__ = ["app", "main"]
