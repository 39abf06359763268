"""Configuration loader for onboardctl.

Configuration values are read from multiple sources, later sources winning:

1. Built-in defaults.
2. ``~/.onboardctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``ONBOARDCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    set ONBOARDCTL_WSL__DISTRO=Ubuntu-24.04
    set ONBOARDCTL_SSH__LOCATION=distro

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` and handed to the orchestrator explicitly.
"""
from __future__ import annotations

import os
import string
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load onboardctl configuration. Install with "
        "`pip install onboardctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "ONBOARDCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

# Steps that may be disabled through ``steps.skip``. The privilege, repository
# and identity steps always run because every later step depends on them.
SKIPPABLE_STEPS: tuple[str, ...] = (
    "package-manager",
    "pwsh",
    "wsl",
    "ansible",
    "docker",
    "remote-desktop",
    "ssh-key",
    "git-identity",
    "branch",
    "publish-key",
    "commit-push",
    "scaffold",
)

ALLOWED_IDENTITY_MODES = {"prompt", "fixed"}
ALLOWED_KEY_LOCATIONS = {"host", "distro"}
COMMIT_MESSAGE_FIELDS = {"username", "branch", "key_name"}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class IdentityConfig:
    """How the operator identity is resolved."""

    mode: str = "prompt"
    account: str | None = None
    home_root: Path = Path("C:/Users")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "mode": self.mode,
            "account": self.account,
            "home_root": str(self.home_root),
        }


@dataclass(frozen=True)
class WslConfig:
    """WSL distribution settings."""

    distro: str = "Ubuntu"
    bin: str = "wsl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"distro": self.distro, "bin": self.bin}


@dataclass(frozen=True)
class PackagesConfig:
    """Package manager binary and package identifiers."""

    winget_bin: str = "winget"
    pwsh: str = "Microsoft.PowerShell"
    docker: str = "Docker.DockerDesktop"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"winget_bin": self.winget_bin, "pwsh": self.pwsh, "docker": self.docker}


@dataclass(frozen=True)
class SshConfig:
    """SSH key generation settings."""

    location: str = "host"
    key_dir: str | None = None
    bits: int = 2048
    keygen_bin: str = "ssh-keygen"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "location": self.location,
            "key_dir": self.key_dir,
            "bits": self.bits,
            "keygen_bin": self.keygen_bin,
        }


@dataclass(frozen=True)
class RemoteDesktopConfig:
    """Remote Desktop registry and firewall settings."""

    firewall_match: str = "Remote Desktop"
    powershell_bin: str = "powershell"
    reg_bin: str = "reg"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "firewall_match": self.firewall_match,
            "powershell_bin": self.powershell_bin,
            "reg_bin": self.reg_bin,
        }


@dataclass(frozen=True)
class ScaffoldConfig:
    """Ansible scaffold location and role name."""

    root: str = "ansible"
    role: str = "myrole"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"root": self.root, "role": self.role}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for onboardctl."""

    config_file: Path
    logs_dir: Path
    repo_root: Path | None
    pubkey_dir: str
    commit_message: str
    git_remote: str
    git_bin: str
    identity: IdentityConfig
    wsl: WslConfig
    packages: PackagesConfig
    ssh: SshConfig
    remote_desktop: RemoteDesktopConfig
    scaffold: ScaffoldConfig
    skip_steps: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "repo_root": str(self.repo_root) if self.repo_root is not None else None,
            "pubkey_dir": self.pubkey_dir,
            "commit_message": self.commit_message,
            "git_remote": self.git_remote,
            "git_bin": self.git_bin,
            "identity": self.identity.to_dict(),
            "wsl": self.wsl.to_dict(),
            "packages": self.packages.to_dict(),
            "ssh": self.ssh.to_dict(),
            "remote_desktop": self.remote_desktop.to_dict(),
            "scaffold": self.scaffold.to_dict(),
            "steps": {"skip": list(self.skip_steps)},
        }


DEFAULTS: dict[str, object] = {
    "config_file": "~/.onboardctl/config.yml",
    "logs_dir": "~/.onboardctl/logs",
    "repo_root": None,
    "pubkey_dir": "pubkey",
    "commit_message": "Add SSH public key for {username}",
    "git_remote": "origin",
    "git_bin": "git",
    "identity": {
        "mode": "prompt",
        "account": None,
        "home_root": "C:/Users",
    },
    "wsl": {
        "distro": "Ubuntu",
        "bin": "wsl",
    },
    "packages": {
        "winget_bin": "winget",
        "pwsh": "Microsoft.PowerShell",
        "docker": "Docker.DockerDesktop",
    },
    "ssh": {
        "location": "host",
        "key_dir": None,
        "bits": 2048,
        "keygen_bin": "ssh-keygen",
    },
    "remote_desktop": {
        "firewall_match": "Remote Desktop",
        "powershell_bin": "powershell",
        "reg_bin": "reg",
    },
    "scaffold": {
        "root": "ansible",
        "role": "myrole",
    },
    "steps": {
        "skip": [],
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    key: set(cast(Mapping[str, object], value).keys())
    for key, value in DEFAULTS.items()
    if isinstance(value, Mapping)
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    return Path(default_path).expanduser()


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        section_map = _as_dict(raw.get(section), section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    identity = _as_dict(raw.get("identity"), "identity")
    mode = str(identity.get("mode", "prompt"))
    if mode not in ALLOWED_IDENTITY_MODES:
        allowed_modes = ", ".join(sorted(ALLOWED_IDENTITY_MODES))
        raise ConfigError(f"Unsupported identity mode '{mode}'. Allowed: {allowed_modes}.")
    if mode == "fixed":
        account = identity.get("account")
        if not isinstance(account, str) or not account.strip():
            raise ConfigError("identity.account is required when identity.mode is 'fixed'.")

    ssh = _as_dict(raw.get("ssh"), "ssh")
    location = str(ssh.get("location", "host"))
    if location not in ALLOWED_KEY_LOCATIONS:
        allowed_locations = ", ".join(sorted(ALLOWED_KEY_LOCATIONS))
        raise ConfigError(
            f"Unsupported ssh.location '{location}'. Allowed: {allowed_locations}."
        )
    bits = _expect_int(ssh.get("bits"), "ssh.bits", default=2048)
    if bits < 2048:
        raise ConfigError(f"ssh.bits must be at least 2048. Got {bits}.")

    _validate_commit_message(raw.get("commit_message"))

    scaffold = _as_dict(raw.get("scaffold"), "scaffold")
    for key in ("root", "role"):
        value = scaffold.get(key)
        if not isinstance(value, str) or not value.strip():
            raise ConfigError(f"scaffold.{key} must be a non-empty string.")
    role = str(scaffold["role"])
    if "/" in role or "\\" in role:
        raise ConfigError(f"scaffold.role must be a plain directory name. Got {role!r}.")

    steps = _as_dict(raw.get("steps"), "steps")
    skip_raw = steps.get("skip")
    if skip_raw is not None:
        for entry in _as_sequence(skip_raw, "steps.skip"):
            if str(entry) not in SKIPPABLE_STEPS:
                allowed_steps = ", ".join(SKIPPABLE_STEPS)
                raise ConfigError(
                    f"Step '{entry}' cannot be skipped. Skippable steps: {allowed_steps}."
                )


def _validate_commit_message(value: object) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError("commit_message must be a non-empty string.")
    try:
        fields = {name for _, name, _, _ in string.Formatter().parse(value) if name}
    except ValueError as exc:
        raise ConfigError(f"commit_message is not a valid template: {exc}") from exc
    unknown = fields - COMMIT_MESSAGE_FIELDS
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown commit_message placeholders: {joined}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    logs_dir = _to_path(raw.get("logs_dir"))
    repo_root_value = raw.get("repo_root")
    repo_root = _to_path(repo_root_value) if repo_root_value not in (None, "") else None

    identity_map = _as_dict(raw.get("identity"), "identity")
    account_value = identity_map.get("account")
    identity = IdentityConfig(
        mode=str(identity_map.get("mode", "prompt")),
        account=str(account_value).strip() if account_value else None,
        home_root=_to_path(identity_map.get("home_root", "C:/Users")),
    )

    wsl_map = _as_dict(raw.get("wsl"), "wsl")
    wsl = WslConfig(
        distro=_expect_str(wsl_map.get("distro", "Ubuntu"), "wsl.distro"),
        bin=_expect_str(wsl_map.get("bin", "wsl"), "wsl.bin"),
    )

    packages_map = _as_dict(raw.get("packages"), "packages")
    packages = PackagesConfig(
        winget_bin=_expect_str(packages_map.get("winget_bin", "winget"), "packages.winget_bin"),
        pwsh=_expect_str(packages_map.get("pwsh", "Microsoft.PowerShell"), "packages.pwsh"),
        docker=_expect_str(
            packages_map.get("docker", "Docker.DockerDesktop"),
            "packages.docker",
        ),
    )

    ssh_map = _as_dict(raw.get("ssh"), "ssh")
    key_dir_value = ssh_map.get("key_dir")
    ssh = SshConfig(
        location=str(ssh_map.get("location", "host")),
        key_dir=str(key_dir_value) if key_dir_value not in (None, "") else None,
        bits=_expect_int(ssh_map.get("bits"), "ssh.bits", default=2048),
        keygen_bin=_expect_str(ssh_map.get("keygen_bin", "ssh-keygen"), "ssh.keygen_bin"),
    )

    rdp_map = _as_dict(raw.get("remote_desktop"), "remote_desktop")
    remote_desktop = RemoteDesktopConfig(
        firewall_match=_expect_str(
            rdp_map.get("firewall_match", "Remote Desktop"),
            "remote_desktop.firewall_match",
        ),
        powershell_bin=_expect_str(
            rdp_map.get("powershell_bin", "powershell"),
            "remote_desktop.powershell_bin",
        ),
        reg_bin=_expect_str(rdp_map.get("reg_bin", "reg"), "remote_desktop.reg_bin"),
    )

    scaffold_map = _as_dict(raw.get("scaffold"), "scaffold")
    scaffold = ScaffoldConfig(
        root=str(scaffold_map.get("root", "ansible")).strip(),
        role=str(scaffold_map.get("role", "myrole")).strip(),
    )

    steps_map = _as_dict(raw.get("steps"), "steps")
    skip_raw = steps_map.get("skip") or []
    skip_steps = tuple(str(entry) for entry in _as_sequence(skip_raw, "steps.skip"))

    return AppConfig(
        config_file=config_file,
        logs_dir=logs_dir,
        repo_root=repo_root,
        pubkey_dir=_expect_str(raw.get("pubkey_dir"), "pubkey_dir"),
        commit_message=_expect_str(raw.get("commit_message"), "commit_message"),
        git_remote=_expect_str(raw.get("git_remote"), "git_remote"),
        git_bin=_expect_str(raw.get("git_bin"), "git_bin"),
        identity=identity,
        wsl=wsl,
        packages=packages,
        ssh=ssh,
        remote_desktop=remote_desktop,
        scaffold=scaffold,
        skip_steps=skip_steps,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "IdentityConfig",
    "PackagesConfig",
    "RemoteDesktopConfig",
    "ScaffoldConfig",
    "SKIPPABLE_STEPS",
    "SshConfig",
    "WslConfig",
    "load_config",
]
