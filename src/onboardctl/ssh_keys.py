"""SSH key pair generation and publication into the repository."""
from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass
from pathlib import Path, PurePath, PurePosixPath
from typing import Protocol

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from .identity import Identity
from .providers.wsl import WslProvider
from .runner import CommandError, CommandResult, CommandRunner, check_result

KEY_DIR_MODE = 0o700
PRIVATE_KEY_MODE = 0o600
PUBLIC_KEY_MODE = 0o644


class SshKeyError(RuntimeError):
    """Raised when a key pair cannot be generated or published."""


@dataclass(frozen=True, slots=True)
class KeyPaths:
    """Where the key pair lives and where the public key is published."""

    private_key: PurePath
    public_key: PurePath
    destination_public_key: Path


def published_key_path(identity: Identity, repo_root: Path, pubkey_dir: str = "pubkey") -> Path:
    """Return where the public key of *identity* is published in the repository."""
    return repo_root / pubkey_dir / f"{identity.key_name}.pub"


def derive_key_paths(
    identity: Identity,
    key_dir: PurePath,
    repo_root: Path,
    pubkey_dir: str = "pubkey",
) -> KeyPaths:
    """Return the :class:`KeyPaths` for *identity*.

    *key_dir* keeps its flavour: a :class:`PurePosixPath` for keys inside the
    WSL distro, a host :class:`Path` otherwise.
    """
    private_key = key_dir / identity.key_name
    return KeyPaths(
        private_key=private_key,
        public_key=private_key.with_name(f"{identity.key_name}.pub"),
        destination_public_key=published_key_path(identity, repo_root, pubkey_dir),
    )


def keygen_command(
    keygen_bin: str,
    private_key: PurePath,
    *,
    comment: str,
    bits: int,
) -> list[str]:
    """Return the ``ssh-keygen`` argv for an RSA key with an empty passphrase."""
    return [
        keygen_bin,
        "-t",
        "rsa",
        "-b",
        str(bits),
        "-N",
        "",
        "-C",
        comment,
        "-f",
        str(private_key),
    ]


class KeyStore(Protocol):
    """Filesystem that holds the operator's key pair."""

    key_dir: PurePath

    def exists(self, path: PurePath) -> bool:
        """Return ``True`` when *path* is a regular file."""
        ...

    def ensure_dir(self) -> None:
        """Create the key directory with owner-only permissions."""
        ...

    def remove(self, path: PurePath) -> None:
        """Delete *path* if present."""
        ...

    def generate(self, private_key: PurePath, *, comment: str, bits: int) -> None:
        """Generate an RSA key pair at *private_key*."""
        ...

    def set_mode(self, path: PurePath, mode: int) -> None:
        """Apply permission bits *mode* to *path*."""
        ...

    def read_text(self, path: PurePath) -> str:
        """Return the text content of *path*."""
        ...

    def write_text(self, path: PurePath, content: str) -> None:
        """Replace the content of *path* with *content*."""
        ...


@dataclass(slots=True)
class HostKeyStore:
    """Key pair stored on the Windows host filesystem."""

    runner: CommandRunner
    key_dir: Path
    keygen_bin: str = "ssh-keygen"

    def exists(self, path: PurePath) -> bool:
        """Return ``True`` when *path* is a regular file."""
        return Path(path).is_file()

    def ensure_dir(self) -> None:
        """Create the key directory with owner-only permissions."""
        self.key_dir.mkdir(parents=True, exist_ok=True, mode=KEY_DIR_MODE)
        self.key_dir.chmod(KEY_DIR_MODE)

    def remove(self, path: PurePath) -> None:
        """Delete *path* if present."""
        Path(path).unlink(missing_ok=True)

    def generate(self, private_key: PurePath, *, comment: str, bits: int) -> None:
        """Run ``ssh-keygen`` on the host."""
        argv = keygen_command(self.keygen_bin, private_key, comment=comment, bits=bits)
        _check_keygen(self.runner.run(argv))

    def set_mode(self, path: PurePath, mode: int) -> None:
        """Apply permission bits *mode* to *path*."""
        Path(path).chmod(mode)

    def read_text(self, path: PurePath) -> str:
        """Return the text content of *path*."""
        return Path(path).read_text(encoding="utf-8")

    def write_text(self, path: PurePath, content: str) -> None:
        """Replace the content of *path* with *content*."""
        Path(path).write_text(content, encoding="utf-8")


@dataclass(slots=True)
class DistroKeyStore:
    """Key pair stored inside the WSL distro's filesystem."""

    wsl: WslProvider
    key_dir: PurePosixPath
    keygen_bin: str = "ssh-keygen"

    def exists(self, path: PurePath) -> bool:
        """Return ``True`` when *path* is a regular file inside the distro."""
        return self.wsl.run(["test", "-f", str(path)]).ok

    def ensure_dir(self) -> None:
        """Create the key directory with owner-only permissions."""
        directory = str(self.key_dir)
        self._checked(["mkdir", "-p", directory], f"mkdir {directory}")
        self._checked(["chmod", f"{KEY_DIR_MODE:o}", directory], f"chmod {directory}")

    def remove(self, path: PurePath) -> None:
        """Delete *path* if present."""
        self._checked(["rm", "-f", str(path)], f"rm {path}")

    def generate(self, private_key: PurePath, *, comment: str, bits: int) -> None:
        """Run ``ssh-keygen`` inside the distro."""
        argv = keygen_command(self.keygen_bin, private_key, comment=comment, bits=bits)
        _check_keygen(self.wsl.run(argv))

    def set_mode(self, path: PurePath, mode: int) -> None:
        """Apply permission bits *mode* to *path*."""
        self._checked(["chmod", f"{mode:o}", str(path)], f"chmod {path}")

    def read_text(self, path: PurePath) -> str:
        """Return the text content of *path*."""
        return self._checked(["cat", str(path)], f"cat {path}").stdout

    def write_text(self, path: PurePath, content: str) -> None:
        """Replace the content of *path* with *content*."""
        self._checked(["sh", "-c", 'cat > "$1"', "sh", str(path)], f"write {path}", input=content)

    def _checked(
        self,
        command: list[str],
        label: str,
        *,
        input: str | None = None,
    ) -> CommandResult:
        try:
            return check_result(self.wsl.run(command, input=input), f"{label} in {self.wsl.distro}")
        except CommandError as exc:
            raise SshKeyError(str(exc)) from exc


def _check_keygen(result: CommandResult) -> None:
    try:
        check_result(result, "ssh-keygen")
    except CommandError as exc:
        raise SshKeyError(str(exc)) from exc


def _recover_public_key(private_key: PurePath, private_text: str, comment: str) -> str | None:
    data = private_text.encode("utf-8")
    try:
        if b"OPENSSH PRIVATE KEY" in data:
            key = serialization.load_ssh_private_key(data, password=None)
        else:
            key = serialization.load_pem_private_key(data, password=None)
        public = key.public_key().public_bytes(
            encoding=serialization.Encoding.OpenSSH,
            format=serialization.PublicFormat.OpenSSH,
        )
    except TypeError as exc:
        raise SshKeyError(
            f"{private_key} is passphrase protected; recreate its public key with "
            f"`ssh-keygen -y -f {private_key}`."
        ) from exc
    except (ValueError, UnsupportedAlgorithm):
        return None
    return f"{public.decode('ascii')} {comment}\n"


def ensure_key_pair(store: KeyStore, paths: KeyPaths, *, comment: str, bits: int = 2048) -> bool:
    """Generate the key pair unless both halves already exist.

    Returns ``True`` when anything was written. A private key whose public
    half is missing is kept and the ``.pub`` file is rebuilt from it. Only an
    unreadable private key, or a public key without its private half, is
    removed before ``ssh-keygen`` runs so it never prompts about overwriting.
    """
    has_private = store.exists(paths.private_key)
    if has_private and store.exists(paths.public_key):
        return False

    store.ensure_dir()
    if has_private:
        public_line = _recover_public_key(
            paths.private_key,
            store.read_text(paths.private_key),
            comment,
        )
        if public_line is not None:
            store.write_text(paths.public_key, public_line)
            store.set_mode(paths.private_key, PRIVATE_KEY_MODE)
            store.set_mode(paths.public_key, PUBLIC_KEY_MODE)
            return True

    for leftover in (paths.private_key, paths.public_key):
        if store.exists(leftover):
            store.remove(leftover)
    store.generate(paths.private_key, comment=comment, bits=bits)
    if not (store.exists(paths.private_key) and store.exists(paths.public_key)):
        raise SshKeyError(f"ssh-keygen did not produce {paths.private_key} and its .pub file.")
    store.set_mode(paths.private_key, PRIVATE_KEY_MODE)
    store.set_mode(paths.public_key, PUBLIC_KEY_MODE)
    return True


def fingerprint(public_key_line: str) -> str:
    """Return the ``SHA256:`` fingerprint of an OpenSSH public key line.

    Raises :class:`SshKeyError` when the line is not a parseable public key.
    """
    data = public_key_line.strip().encode("utf-8")
    try:
        key = serialization.load_ssh_public_key(data)
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise SshKeyError(f"Not a valid OpenSSH public key: {exc}") from exc
    blob = key.public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH,
    ).split()[1]
    digest = hashlib.sha256(base64.b64decode(blob)).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


def publish_public_key(store: KeyStore, paths: KeyPaths) -> bool:
    """Copy the public key into the repository when missing or stale.

    Returns ``True`` when the destination was (re)written. The destination is
    verified afterwards; an absent or unparseable file raises
    :class:`SshKeyError`.
    """
    content = store.read_text(paths.public_key).strip() + "\n"
    fingerprint(content)
    encoded = content.encode("utf-8")

    destination = paths.destination_public_key
    changed = False
    if not destination.is_file() or destination.read_bytes() != encoded:
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(encoded)
        changed = True

    if not destination.is_file():
        raise SshKeyError(f"Published key {destination} is missing after copy.")
    fingerprint(destination.read_text(encoding="utf-8"))
    return changed


__all__ = [
    "DistroKeyStore",
    "HostKeyStore",
    "KeyPaths",
    "KeyStore",
    "SshKeyError",
    "derive_key_paths",
    "ensure_key_pair",
    "fingerprint",
    "keygen_command",
    "publish_public_key",
    "published_key_path",
]
