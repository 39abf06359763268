"""Tests for SSH key generation and publication."""
from __future__ import annotations

import os
import stat
from pathlib import Path, PurePosixPath

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fakes import FakeRunner, fake_keygen, openssh_private_key, openssh_public_key

from onboardctl.identity import Identity
from onboardctl.providers.wsl import WslProvider
from onboardctl.runner import CommandResult
from onboardctl.ssh_keys import (
    DistroKeyStore,
    HostKeyStore,
    KeyPaths,
    SshKeyError,
    derive_key_paths,
    ensure_key_pair,
    fingerprint,
    keygen_command,
    publish_public_key,
)

posix_only = pytest.mark.skipif(os.name != "posix", reason="POSIX permission bits")


def _mode(path: Path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


def _host_setup(tmp_path: Path, runner: FakeRunner) -> tuple[HostKeyStore, KeyPaths]:
    repo = tmp_path / "repo"
    repo.mkdir()
    store = HostKeyStore(runner=runner, key_dir=tmp_path / "home" / ".ssh")
    paths = derive_key_paths(Identity("alice"), store.key_dir, repo)
    return store, paths


def test_derive_key_paths(tmp_path: Path) -> None:
    """Key files are named after the identity and published under pubkey/."""
    paths = derive_key_paths(Identity("alice"), PurePosixPath("/home/alice/.ssh"), tmp_path)

    assert paths.private_key == PurePosixPath("/home/alice/.ssh/alice-key")
    assert paths.public_key == PurePosixPath("/home/alice/.ssh/alice-key.pub")
    assert paths.destination_public_key == tmp_path / "pubkey" / "alice-key.pub"


def test_keygen_command_uses_empty_passphrase() -> None:
    """The key is RSA with an empty passphrase and the key name as comment."""
    argv = keygen_command(
        "ssh-keygen",
        PurePosixPath("/k/alice-key"),
        comment="alice-key",
        bits=2048,
    )

    assert argv == [
        "ssh-keygen",
        "-t",
        "rsa",
        "-b",
        "2048",
        "-N",
        "",
        "-C",
        "alice-key",
        "-f",
        "/k/alice-key",
    ]


@posix_only
def test_ensure_key_pair_generates_with_permissions(tmp_path: Path, runner: FakeRunner) -> None:
    """A fresh pair is generated and its permissions tightened."""
    runner.on("ssh-keygen", handler=fake_keygen)
    store, paths = _host_setup(tmp_path, runner)

    assert ensure_key_pair(store, paths, comment="alice-key") is True

    private, public = Path(paths.private_key), Path(paths.public_key)
    assert private.is_file() and public.is_file()
    assert _mode(store.key_dir) == 0o700
    assert _mode(private) == 0o600
    assert _mode(public) == 0o644
    assert len(runner.called("ssh-keygen")) == 1


def test_ensure_key_pair_is_idempotent(tmp_path: Path, runner: FakeRunner) -> None:
    """An existing pair is left untouched and ssh-keygen is not run."""
    runner.on("ssh-keygen", handler=fake_keygen)
    store, paths = _host_setup(tmp_path, runner)
    ensure_key_pair(store, paths, comment="alice-key")
    before = Path(paths.public_key).read_bytes()

    assert ensure_key_pair(store, paths, comment="alice-key") is False
    assert Path(paths.public_key).read_bytes() == before
    assert len(runner.called("ssh-keygen")) == 1


def test_ensure_key_pair_restores_public_half(tmp_path: Path, runner: FakeRunner) -> None:
    """A surviving private key is kept and its public half rebuilt from it."""
    runner.on("ssh-keygen", handler=fake_keygen)
    store, paths = _host_setup(tmp_path, runner)
    store.key_dir.mkdir(parents=True)
    private = openssh_private_key()
    Path(paths.private_key).write_text(private, encoding="utf-8")

    assert ensure_key_pair(store, paths, comment="alice-key") is True

    assert Path(paths.private_key).read_text(encoding="utf-8") == private
    assert Path(paths.public_key).read_text(encoding="utf-8") == openssh_public_key("alice-key")
    assert runner.called("ssh-keygen") == []


def test_ensure_key_pair_replaces_unreadable_private_key(
    tmp_path: Path,
    runner: FakeRunner,
) -> None:
    """A private key that cannot be parsed is regenerated."""
    runner.on("ssh-keygen", handler=fake_keygen)
    store, paths = _host_setup(tmp_path, runner)
    store.key_dir.mkdir(parents=True)
    Path(paths.private_key).write_text("stale", encoding="utf-8")

    assert ensure_key_pair(store, paths, comment="alice-key") is True
    assert Path(paths.private_key).read_text(encoding="utf-8") != "stale"
    assert Path(paths.public_key).is_file()
    assert len(runner.called("ssh-keygen")) == 1


def test_ensure_key_pair_replaces_lone_public_key(tmp_path: Path, runner: FakeRunner) -> None:
    """A public key without its private half is regenerated."""
    runner.on("ssh-keygen", handler=fake_keygen)
    store, paths = _host_setup(tmp_path, runner)
    store.key_dir.mkdir(parents=True)
    Path(paths.public_key).write_text("ssh-rsa AAAA old\n", encoding="utf-8")

    assert ensure_key_pair(store, paths, comment="alice-key") is True
    assert Path(paths.private_key).is_file()
    assert Path(paths.public_key).read_text(encoding="utf-8") == openssh_public_key("alice-key")


def test_ensure_key_pair_keeps_passphrase_protected_key(
    tmp_path: Path,
    runner: FakeRunner,
) -> None:
    """An encrypted private key is never replaced."""
    store, paths = _host_setup(tmp_path, runner)
    store.key_dir.mkdir(parents=True)
    encrypted = rsa.generate_private_key(public_exponent=65537, key_size=2048).private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.BestAvailableEncryption(b"secret"),
    )
    Path(paths.private_key).write_bytes(encrypted)

    with pytest.raises(SshKeyError, match="passphrase protected"):
        ensure_key_pair(store, paths, comment="alice-key")

    assert Path(paths.private_key).read_bytes() == encrypted
    assert runner.called("ssh-keygen") == []


def test_ensure_key_pair_keygen_failure(tmp_path: Path, runner: FakeRunner) -> None:
    """A failing ssh-keygen surfaces as SshKeyError."""
    runner.on("ssh-keygen", returncode=1, stderr="Saving key failed")
    store, paths = _host_setup(tmp_path, runner)

    with pytest.raises(SshKeyError, match="Saving key failed"):
        ensure_key_pair(store, paths, comment="alice-key")


def test_ensure_key_pair_requires_output_files(tmp_path: Path, runner: FakeRunner) -> None:
    """A keygen that exits zero but writes nothing is an error."""
    store, paths = _host_setup(tmp_path, runner)

    with pytest.raises(SshKeyError, match="did not produce"):
        ensure_key_pair(store, paths, comment="alice-key")


def test_fingerprint_matches_openssh_format() -> None:
    """Fingerprints use the unpadded base64 SHA256 form."""
    value = fingerprint(openssh_public_key("alice-key"))

    assert value.startswith("SHA256:")
    assert not value.endswith("=")
    assert len(value) == len("SHA256:") + 43


def test_fingerprint_rejects_garbage() -> None:
    """Text that is not a public key is rejected."""
    with pytest.raises(SshKeyError, match="Not a valid OpenSSH public key"):
        fingerprint("hello world")


def test_publish_public_key_copies_and_verifies(tmp_path: Path, runner: FakeRunner) -> None:
    """The public key is copied byte-for-byte with a trailing newline."""
    runner.on("ssh-keygen", handler=fake_keygen)
    store, paths = _host_setup(tmp_path, runner)
    ensure_key_pair(store, paths, comment="alice-key")

    assert publish_public_key(store, paths) is True
    destination = paths.destination_public_key
    source = Path(paths.public_key).read_text(encoding="utf-8")
    assert destination.read_text(encoding="utf-8") == source.strip() + "\n"

    assert publish_public_key(store, paths) is False


def test_publish_public_key_refreshes_stale_copy(tmp_path: Path, runner: FakeRunner) -> None:
    """A destination that differs from the source is overwritten."""
    runner.on("ssh-keygen", handler=fake_keygen)
    store, paths = _host_setup(tmp_path, runner)
    ensure_key_pair(store, paths, comment="alice-key")
    paths.destination_public_key.parent.mkdir(parents=True)
    paths.destination_public_key.write_text("old key\n", encoding="utf-8")

    assert publish_public_key(store, paths) is True
    fingerprint(paths.destination_public_key.read_text(encoding="utf-8"))


def test_publish_public_key_rejects_invalid_source(tmp_path: Path, runner: FakeRunner) -> None:
    """An unparseable source key is never published."""
    store, paths = _host_setup(tmp_path, runner)
    store.key_dir.mkdir(parents=True)
    Path(paths.public_key).write_text("not a key\n", encoding="utf-8")

    with pytest.raises(SshKeyError):
        publish_public_key(store, paths)

    assert not paths.destination_public_key.exists()


def test_distro_key_store_runs_inside_wsl(tmp_path: Path, runner: FakeRunner) -> None:
    """Distro keys are generated and secured with commands inside WSL."""
    public = openssh_public_key("bob-key")
    state = {"generated": False}

    def keygen(argv: list[str]) -> CommandResult:
        state["generated"] = True
        return CommandResult(argv=tuple(argv), returncode=0)

    def test_file(argv: list[str]) -> CommandResult:
        return CommandResult(argv=tuple(argv), returncode=0 if state["generated"] else 1)

    prefix = ("wsl", "-d", "Ubuntu", "--")
    runner.on(*prefix, "test", "-f", handler=test_file)
    runner.on(*prefix, "ssh-keygen", handler=keygen)
    runner.on(*prefix, "cat", stdout=public)

    store = DistroKeyStore(
        wsl=WslProvider(runner=runner),
        key_dir=PurePosixPath("/home/bob/.ssh"),
    )
    paths = derive_key_paths(Identity("bob"), store.key_dir, tmp_path)

    assert ensure_key_pair(store, paths, comment="bob-key") is True
    assert publish_public_key(store, paths) is True

    inner = [call[4:] for call in runner.called(*prefix)]
    assert ["mkdir", "-p", "/home/bob/.ssh"] in inner
    assert ["chmod", "700", "/home/bob/.ssh"] in inner
    assert ["chmod", "600", "/home/bob/.ssh/bob-key"] in inner
    assert ["chmod", "644", "/home/bob/.ssh/bob-key.pub"] in inner
    assert paths.destination_public_key.read_text(encoding="utf-8") == public


def test_distro_key_store_command_failure(tmp_path: Path, runner: FakeRunner) -> None:
    """Failing commands inside the distro raise SshKeyError."""
    runner.on("wsl", "-d", "Ubuntu", "--", "test", returncode=1)
    runner.on("wsl", "-d", "Ubuntu", "--", "mkdir", returncode=1, stderr="read-only")
    store = DistroKeyStore(wsl=WslProvider(runner=runner), key_dir=PurePosixPath("/ro/.ssh"))
    paths = derive_key_paths(Identity("bob"), store.key_dir, tmp_path)

    with pytest.raises(SshKeyError, match="read-only"):
        ensure_key_pair(store, paths, comment="bob-key")


def test_distro_key_store_restores_public_half(tmp_path: Path, runner: FakeRunner) -> None:
    """Inside the distro the rebuilt public key is written through stdin."""
    prefix = ("wsl", "-d", "Ubuntu", "--")
    runner.on(*prefix, "test", "-f", "/home/bob/.ssh/bob-key.pub", returncode=1)
    runner.on(*prefix, "cat", stdout=openssh_private_key())
    store = DistroKeyStore(
        wsl=WslProvider(runner=runner),
        key_dir=PurePosixPath("/home/bob/.ssh"),
    )
    paths = derive_key_paths(Identity("bob"), store.key_dir, tmp_path)

    assert ensure_key_pair(store, paths, comment="bob-key") is True

    writes = [
        index
        for index, call in enumerate(runner.calls)
        if call[4:6] == ["sh", "-c"] and call[-1] == "/home/bob/.ssh/bob-key.pub"
    ]
    assert len(writes) == 1
    assert runner.inputs[writes[0]] == openssh_public_key("bob-key")
    assert runner.called(*prefix, "ssh-keygen") == []
