"""The onboarding checklist.

:class:`Orchestrator` runs a fixed, ordered list of idempotent steps. Each
step checks its precondition first and only acts when something is missing,
so re-running after a partial failure converges on the same end state.

Steps signal fatal precondition failures by raising :class:`OnboardingError`;
the orchestrator records the failure and stops. Every other outcome is a
:class:`StepResult` and execution continues with the next step.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePath, PurePosixPath

from .config import SKIPPABLE_STEPS, AppConfig
from .exit_codes import ExitCode
from .identity import Identity, IdentityError, Prompter, prompt_email, resolve_identity
from .logging import OperationScope, StructuredLogger
from .privileges import is_elevated
from .providers.git import GitError, GitProvider, GitPushError
from .providers.package_manager import PackageManagerError, PackageManagerProvider
from .providers.remote_desktop import RemoteDesktopError, RemoteDesktopProvider
from .providers.wsl import WslError, WslProvider
from .repository import RepositoryNotFoundError, find_repository_root
from .runner import CommandRunner
from .scaffold import apply_scaffold_plan, plan_scaffold
from .ssh_keys import (
    DistroKeyStore,
    HostKeyStore,
    KeyPaths,
    KeyStore,
    SshKeyError,
    derive_key_paths,
    ensure_key_pair,
    fingerprint,
    publish_public_key,
    published_key_path,
)
from .tools import Tool, probe_tool

STEP_ORDER: tuple[str, ...] = ("privileges", "repository", "identity", *SKIPPABLE_STEPS)


class StepStatus(str, Enum):
    """Outcome of a single onboarding step."""

    OK = "ok"
    CHANGED = "changed"
    SKIPPED = "skipped"
    WARNING = "warning"
    FAILED = "failed"


@dataclass(slots=True)
class StepResult:
    """What a step found and did."""

    step: str
    status: StepStatus
    message: str
    details: dict[str, object] = field(default_factory=dict)
    remediation: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        payload: dict[str, object] = {
            "step": self.step,
            "status": self.status.value,
            "message": self.message,
        }
        if self.details:
            payload["details"] = {
                key: str(value) if isinstance(value, PurePath) else value
                for key, value in self.details.items()
            }
        if self.remediation:
            payload["remediation"] = self.remediation
        return payload


@dataclass(slots=True)
class OnboardingReport:
    """Aggregated results of an onboarding run."""

    steps: list[StepResult] = field(default_factory=list)
    identity: Identity | None = None
    repo_root: Path | None = None
    manual_commands: list[str] = field(default_factory=list)
    completed: bool = False

    @property
    def failed_step(self) -> StepResult | None:
        """Return the step that aborted the run, if any."""
        for result in self.steps:
            if result.status is StepStatus.FAILED:
                return result
        return None

    @property
    def exit_code(self) -> ExitCode:
        """Return the CLI exit code for this report."""
        return ExitCode.OK if self.completed else ExitCode.ENVIRONMENT

    def result_for(self, step: str) -> StepResult | None:
        """Return the result recorded for *step*."""
        for result in self.steps:
            if result.step == step:
                return result
        return None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        identity: dict[str, object] | None = None
        if self.identity is not None:
            identity = {
                "username": self.identity.username,
                "key_name": self.identity.key_name,
                "branch": self.identity.branch_name,
            }
        return {
            "completed": self.completed,
            "identity": identity,
            "repo_root": str(self.repo_root) if self.repo_root is not None else None,
            "steps": [result.to_dict() for result in self.steps],
            "manual_commands": list(self.manual_commands),
        }


class OnboardingError(RuntimeError):
    """Fatal precondition failure that aborts the run."""

    def __init__(self, step: str, message: str, *, remediation: str | None = None) -> None:
        """Record which *step* failed and how the operator can fix it."""
        super().__init__(message)
        self.step = step
        self.message = message
        self.remediation = remediation


StepHandler = Callable[[], StepResult]


class Orchestrator:
    """Run the onboarding checklist against one machine and repository."""

    def __init__(
        self,
        config: AppConfig,
        *,
        runner: CommandRunner,
        prompter: Prompter,
        logger: StructuredLogger,
        script_dir: Path,
        cwd: Path,
        elevated: Callable[[], bool] = is_elevated,
        username: str | None = None,
        email: str | None = None,
        on_step: Callable[[StepResult], None] | None = None,
    ) -> None:
        """Wire providers from *config* around a shared command *runner*."""
        self.config = config
        self.runner = runner
        self.prompter = prompter
        self.logger = logger
        self.script_dir = script_dir
        self.cwd = cwd
        self.elevated = elevated
        self.username = username
        self.email = email
        self.on_step = on_step

        self.package_manager = PackageManagerProvider(
            runner=runner,
            winget_bin=config.packages.winget_bin,
        )
        self.wsl = WslProvider(runner=runner, distro=config.wsl.distro, wsl_bin=config.wsl.bin)
        self.remote_desktop = RemoteDesktopProvider(
            runner=runner,
            firewall_match=config.remote_desktop.firewall_match,
            powershell_bin=config.remote_desktop.powershell_bin,
            reg_bin=config.remote_desktop.reg_bin,
        )

        self.report = OnboardingReport()
        self.repo_root: Path | None = None
        self.identity: Identity | None = None
        self._git: GitProvider | None = None
        self._key_store: KeyStore | None = None
        self._key_paths: KeyPaths | None = None

    def steps(self) -> list[tuple[str, StepHandler]]:
        """Return the ordered checklist."""
        handlers: dict[str, StepHandler] = {
            "privileges": self.check_privileges,
            "repository": self.detect_repository,
            "identity": self.resolve_identity,
            "package-manager": self.check_package_manager,
            "pwsh": self.ensure_pwsh,
            "wsl": self.ensure_wsl,
            "ansible": self.ensure_ansible,
            "docker": self.ensure_docker,
            "remote-desktop": self.enable_remote_desktop,
            "ssh-key": self.ensure_ssh_key,
            "git-identity": self.configure_git_identity,
            "branch": self.select_branch,
            "publish-key": self.publish_key,
            "commit-push": self.commit_and_push,
            "scaffold": self.generate_scaffold,
        }
        return [(name, handlers[name]) for name in STEP_ORDER]

    def run(self) -> OnboardingReport:
        """Execute every step in order, stopping at the first fatal failure."""
        self.report = OnboardingReport()
        for name, handler in self.steps():
            if name in self.config.skip_steps:
                self._emit(StepResult(name, StepStatus.SKIPPED, "Skipped by configuration."))
                continue
            with self.logger.operation(
                f"run {name}",
                args={"username": self.username},
                target={"kind": "step", "scope": name},
            ) as op:
                try:
                    result = handler()
                except OnboardingError as exc:
                    result = StepResult(
                        name,
                        StepStatus.FAILED,
                        exc.message,
                        remediation=exc.remediation,
                    )
                    op.error(exc.message, rc=int(ExitCode.ENVIRONMENT))
                    self._emit(result)
                    return self.report
                _log_result(op, result)
            self._emit(result)
        self.report.completed = True
        return self.report

    # ------------------------------------------------------------------
    # Fatal preconditions
    # ------------------------------------------------------------------
    def check_privileges(self) -> StepResult:
        """Require an elevated process."""
        if not self.elevated():
            raise OnboardingError(
                "privileges",
                "Administrator privileges are required.",
                remediation=(
                    "Re-run onboardctl from a terminal started with 'Run as administrator'."
                ),
            )
        return StepResult("privileges", StepStatus.OK, "Running with administrator privileges.")

    def detect_repository(self) -> StepResult:
        """Locate the repository that receives the public key."""
        try:
            root = find_repository_root(
                self.script_dir,
                self.cwd,
                explicit=self.config.repo_root,
            )
        except RepositoryNotFoundError as exc:
            raise OnboardingError(
                "repository",
                str(exc),
                remediation="Run onboardctl from inside the onboarding repository clone.",
            ) from exc
        self.repo_root = root
        self.report.repo_root = root
        self._git = GitProvider(
            runner=self.runner,
            repo=root,
            git_bin=self.config.git_bin,
            remote=self.config.git_remote,
        )
        return StepResult(
            "repository",
            StepStatus.OK,
            f"Using repository at {root}.",
            details={"repo_root": root},
        )

    def resolve_identity(self) -> StepResult:
        """Resolve the operator identity using the configured strategy."""
        try:
            identity = resolve_identity(
                self.config.identity,
                self.prompter,
                username=self.username,
            )
        except IdentityError as exc:
            raise OnboardingError(
                "identity",
                str(exc),
                remediation="Create the account or fix identity.account in the configuration.",
            ) from exc
        self.identity = identity
        self.report.identity = identity
        return StepResult(
            "identity",
            StepStatus.OK,
            f"Onboarding '{identity.username}'.",
            details={"key_name": identity.key_name, "branch": identity.branch_name},
        )

    def check_package_manager(self) -> StepResult:
        """Require winget."""
        if not self.package_manager.is_available():
            raise OnboardingError(
                "package-manager",
                f"{self.config.packages.winget_bin} is not available.",
                remediation=(
                    "Install 'App Installer' from the Microsoft Store "
                    "(https://aka.ms/getwinget), then re-run onboardctl."
                ),
            )
        return StepResult("package-manager", StepStatus.OK, "winget is available.")

    # ------------------------------------------------------------------
    # Tooling
    # ------------------------------------------------------------------
    def ensure_pwsh(self) -> StepResult:
        """Install PowerShell 7 when ``pwsh`` is missing."""
        return self._ensure_host_tool("pwsh", Tool.PWSH, self.config.packages.pwsh)

    def ensure_docker(self) -> StepResult:
        """Install Docker Desktop when ``docker`` is missing."""
        return self._ensure_host_tool("docker", Tool.DOCKER, self.config.packages.docker)

    def _ensure_host_tool(self, step: str, tool: Tool, package_id: str) -> StepResult:
        presence = probe_tool(tool, self.runner, self.config)
        if presence.present:
            return StepResult(
                step,
                StepStatus.OK,
                f"{tool.value} is already installed.",
                details={"path": presence.detail},
            )
        try:
            self.package_manager.install(package_id)
        except PackageManagerError as exc:
            return StepResult(
                step,
                StepStatus.WARNING,
                f"Could not install {package_id}: {exc}",
                remediation=f"winget install --id {package_id} --exact",
            )
        return StepResult(step, StepStatus.CHANGED, f"Installed {package_id}.")

    def ensure_wsl(self) -> StepResult:
        """Require an initialised WSL distro, installing it when absent."""
        distro = self.config.wsl.distro
        first_run = (
            f"Launch '{distro}' from the Start menu (or run `wsl -d {distro}`), "
            "create the Linux user, then re-run onboardctl."
        )
        if not self.wsl.is_available():
            raise OnboardingError(
                "wsl",
                "WSL is not available on this machine.",
                remediation="Run `wsl --install` from an elevated terminal, reboot, then re-run.",
            )
        if not self.wsl.is_installed():
            try:
                self.wsl.install()
            except WslError as exc:
                raise OnboardingError(
                    "wsl",
                    str(exc),
                    remediation=f"wsl --install -d {distro}",
                ) from exc
            raise OnboardingError(
                "wsl",
                f"{distro} was just installed and needs its first-run initialisation.",
                remediation=first_run,
            )
        if not self.wsl.is_initialized():
            raise OnboardingError(
                "wsl",
                f"{distro} is installed but not initialised yet.",
                remediation=first_run,
            )
        return StepResult("wsl", StepStatus.OK, f"{distro} is installed and initialised.")

    def ensure_ansible(self) -> StepResult:
        """Install Ansible inside the distro when missing."""
        distro = self.config.wsl.distro
        if self.wsl.has_ansible():
            return StepResult("ansible", StepStatus.OK, f"Ansible is already present in {distro}.")
        try:
            self.wsl.install_ansible()
        except WslError as exc:
            return StepResult(
                "ansible",
                StepStatus.WARNING,
                str(exc),
                remediation=f"wsl -d {distro} -u root -- apt-get install -y ansible",
            )
        return StepResult("ansible", StepStatus.CHANGED, f"Installed Ansible in {distro}.")

    def enable_remote_desktop(self) -> StepResult:
        """Allow Remote Desktop connections and open the firewall."""
        match = self.config.remote_desktop.firewall_match
        try:
            self.remote_desktop.enable_connections()
            enabled = self.remote_desktop.enable_firewall_rules()
        except RemoteDesktopError as exc:
            return StepResult("remote-desktop", StepStatus.WARNING, str(exc))
        if enabled == 0:
            return StepResult(
                "remote-desktop",
                StepStatus.WARNING,
                f"Remote Desktop enabled, but no firewall rule matching '{match}' was found.",
            )
        return StepResult(
            "remote-desktop",
            StepStatus.OK,
            f"Remote Desktop enabled; {enabled} firewall rule(s) matching '{match}' enabled.",
            details={"firewall_rules": enabled},
        )

    # ------------------------------------------------------------------
    # Keys and repository
    # ------------------------------------------------------------------
    def ensure_ssh_key(self) -> StepResult:
        """Generate the operator's key pair unless it already exists."""
        identity = self._require_identity()
        try:
            store, paths = self._keys()
            generated = ensure_key_pair(
                store,
                paths,
                comment=identity.key_name,
                bits=self.config.ssh.bits,
            )
        except (SshKeyError, WslError, OSError) as exc:
            raise OnboardingError(
                "ssh-key",
                f"Could not create the SSH key pair: {exc}",
                remediation="Check that the key directory is writable, then re-run.",
            ) from exc
        details: dict[str, object] = {
            "private_key": paths.private_key,
            "public_key": paths.public_key,
            "location": self.config.ssh.location,
        }
        if generated:
            return StepResult(
                "ssh-key",
                StepStatus.CHANGED,
                f"Created the missing files of {identity.key_name}.",
                details=details,
            )
        return StepResult(
            "ssh-key",
            StepStatus.OK,
            f"Key pair {identity.key_name} already exists.",
            details=details,
        )

    def configure_git_identity(self) -> StepResult:
        """Ensure ``user.name`` and ``user.email`` are configured."""
        identity = self._require_identity()
        git = self._require_git()
        changes: list[str] = []
        try:
            if git.get_config("user.name") != identity.username:
                git.set_config("user.name", identity.username)
                changes.append("user.name")
            if not git.get_config("user.email"):
                git.set_config("user.email", prompt_email(self.prompter, initial=self.email))
                changes.append("user.email")
        except GitError as exc:
            return StepResult("git-identity", StepStatus.WARNING, str(exc))
        if changes:
            return StepResult(
                "git-identity",
                StepStatus.CHANGED,
                f"Configured {', '.join(changes)}.",
            )
        return StepResult("git-identity", StepStatus.OK, "Git identity already configured.")

    def select_branch(self) -> StepResult:
        """Switch to ``user-<username>``, creating it when absent."""
        identity = self._require_identity()
        git = self._require_git()
        branch = identity.branch_name
        remote = self.config.git_remote
        try:
            if git.current_branch() == branch:
                status, message = StepStatus.OK, f"Already on {branch}."
            elif git.branch_exists(branch):
                git.checkout(branch)
                status, message = StepStatus.CHANGED, f"Switched to {branch}."
            else:
                git.checkout(branch, create=True)
                status, message = StepStatus.CHANGED, f"Created and switched to {branch}."

            remote_checked = git.fetch_branch(branch) and git.remote_branch_exists(branch)
            if remote_checked:
                missing = git.commits_missing_locally(branch)
                if missing:
                    raise OnboardingError(
                        "branch",
                        f"{remote}/{branch} has {missing} commit(s) that {branch} lacks.",
                        remediation=(
                            f"Review `git log {branch}..{remote}/{branch}` and reconcile "
                            f"(for example `git pull --rebase {remote} {branch}`), then re-run."
                        ),
                    )
        except GitError as exc:
            raise OnboardingError(
                "branch",
                str(exc),
                remediation=f"Resolve the working tree state, then run `git checkout {branch}`.",
            ) from exc
        return StepResult(
            "branch",
            status,
            message,
            details={"branch": branch, "remote_checked": remote_checked},
        )

    def publish_key(self) -> StepResult:
        """Copy the public key into ``pubkey/`` inside the repository."""
        try:
            store, paths = self._keys()
            changed = publish_public_key(store, paths)
            key_fingerprint = fingerprint(
                paths.destination_public_key.read_text(encoding="utf-8")
            )
        except (SshKeyError, WslError, OSError) as exc:
            raise OnboardingError(
                "publish-key",
                f"Could not publish the public key: {exc}",
            ) from exc
        details: dict[str, object] = {
            "destination": paths.destination_public_key,
            "fingerprint": key_fingerprint,
        }
        if changed:
            return StepResult(
                "publish-key",
                StepStatus.CHANGED,
                f"Published {paths.destination_public_key.name}.",
                details=details,
            )
        return StepResult(
            "publish-key",
            StepStatus.OK,
            f"{paths.destination_public_key.name} is up to date.",
            details=details,
        )

    def commit_and_push(self) -> StepResult:
        """Commit the published key and push the user branch."""
        identity = self._require_identity()
        git = self._require_git()
        repo_root = self._require_repo_root()
        destination = published_key_path(identity, repo_root, self.config.pubkey_dir)
        if not destination.is_file():
            return StepResult(
                "commit-push",
                StepStatus.WARNING,
                f"{destination} does not exist; nothing to commit.",
            )

        relative = destination.relative_to(repo_root)
        branch = identity.branch_name
        message = self.config.commit_message.format(
            username=identity.username,
            branch=branch,
            key_name=identity.key_name,
        )
        try:
            git.add(relative)
            committed = git.has_staged_changes(relative)
            if committed:
                git.commit(message, relative)
        except GitError as exc:
            return StepResult("commit-push", StepStatus.WARNING, str(exc))

        try:
            git.push(branch)
        except GitPushError as exc:
            manual = git.push_command(branch)
            self.report.manual_commands.append(manual)
            return StepResult(
                "commit-push",
                StepStatus.WARNING,
                f"Push failed: {exc}",
                details={"committed": committed},
                remediation=f"Push manually with: {manual}",
            )
        summary = f"Committed and pushed {branch}." if committed else f"Pushed {branch}."
        return StepResult(
            "commit-push",
            StepStatus.CHANGED if committed else StepStatus.OK,
            summary,
            details={"committed": committed, "file": relative},
        )

    def generate_scaffold(self) -> StepResult:
        """Create any missing parts of the Ansible scaffold."""
        repo_root = self._require_repo_root()
        root = repo_root / self.config.scaffold.root
        try:
            plan = plan_scaffold(root, self.config.scaffold.role)
            created = apply_scaffold_plan(plan)
        except OSError as exc:
            return StepResult(
                "scaffold",
                StepStatus.WARNING,
                f"Could not create the scaffold under {root}: {exc}",
                details={"root": root},
                remediation=f"Make {root} a writable directory, then run `onboardctl scaffold`.",
            )
        details: dict[str, object] = {"root": root, "created": created}
        if plan.warnings:
            return StepResult(
                "scaffold",
                StepStatus.WARNING,
                "; ".join(plan.warnings),
                details=details,
            )
        if created:
            return StepResult(
                "scaffold",
                StepStatus.CHANGED,
                f"Created {created} scaffold path(s) under {root}.",
                details=details,
            )
        return StepResult("scaffold", StepStatus.OK, "Scaffold already complete.", details=details)

    # ------------------------------------------------------------------
    def _keys(self) -> tuple[KeyStore, KeyPaths]:
        if self._key_store is not None and self._key_paths is not None:
            return self._key_store, self._key_paths
        identity = self._require_identity()
        repo_root = self._require_repo_root()
        ssh = self.config.ssh
        store: KeyStore
        if ssh.location == "distro":
            home = self.wsl.home_dir()
            key_dir_text = ssh.key_dir or "~/.ssh"
            if key_dir_text == "~" or key_dir_text.startswith("~/"):
                key_dir_text = home + key_dir_text[1:]
            store = DistroKeyStore(
                wsl=self.wsl,
                key_dir=PurePosixPath(key_dir_text),
                keygen_bin=ssh.keygen_bin,
            )
        else:
            if ssh.key_dir:
                key_dir = Path(ssh.key_dir).expanduser()
            elif identity.home is not None:
                key_dir = identity.home / ".ssh"
            else:
                key_dir = Path.home() / ".ssh"
            store = HostKeyStore(runner=self.runner, key_dir=key_dir, keygen_bin=ssh.keygen_bin)
        self._key_store = store
        self._key_paths = derive_key_paths(
            identity,
            store.key_dir,
            repo_root,
            self.config.pubkey_dir,
        )
        return self._key_store, self._key_paths

    def _require_identity(self) -> Identity:
        if self.identity is None:
            raise OnboardingError("identity", "Identity has not been resolved.")
        return self.identity

    def _require_repo_root(self) -> Path:
        if self.repo_root is None:
            raise OnboardingError("repository", "Repository root has not been detected.")
        return self.repo_root

    def _require_git(self) -> GitProvider:
        if self._git is None:
            raise OnboardingError("repository", "Repository root has not been detected.")
        return self._git

    def _emit(self, result: StepResult) -> None:
        self.report.steps.append(result)
        if self.on_step is not None:
            self.on_step(result)


def _log_result(op: OperationScope, result: StepResult) -> None:
    context = dict(result.details)
    if result.status is StepStatus.WARNING:
        op.warning(result.message, context=context)
    else:
        op.success(
            result.message,
            changed=1 if result.status is StepStatus.CHANGED else 0,
            context=context,
        )


__all__ = [
    "OnboardingError",
    "OnboardingReport",
    "Orchestrator",
    "STEP_ORDER",
    "StepResult",
    "StepStatus",
]
