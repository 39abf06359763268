"""Operator identity resolution and interactive prompting."""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import typer
from rich.console import Console
from rich.markup import escape

from .config import IdentityConfig

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9]+$")


class UsernameError(ValueError):
    """Raised when a username contains characters outside ``[A-Za-z0-9]``."""


class IdentityError(RuntimeError):
    """Raised when the configured fixed account cannot be used."""


@dataclass(frozen=True, slots=True)
class Identity:
    """The operator being onboarded."""

    username: str
    home: Path | None = None

    @property
    def key_name(self) -> str:
        """Return the SSH key basename derived from the username."""
        return f"{self.username}-key"

    @property
    def branch_name(self) -> str:
        """Return the per-user git branch name."""
        return f"user-{self.username}"


class Prompter(Protocol):
    """Source of interactive operator input."""

    def ask(self, message: str) -> str:
        """Return one line of input for *message*."""
        ...

    def notify(self, message: str) -> None:
        """Show *message* to the operator."""
        ...


class ConsolePrompter:
    """Prompt through Typer and report through a Rich console."""

    def __init__(self, console: Console | None = None, *, err: bool = False) -> None:
        """Use *console* for notifications; *err* sends prompts to stderr."""
        self.console = console or Console(stderr=err)
        self.err = err

    def ask(self, message: str) -> str:
        """Read a line from the terminal, allowing empty answers."""
        return str(typer.prompt(message, default="", show_default=False, err=self.err))

    def notify(self, message: str) -> None:
        """Print *message* in warning colours."""
        self.console.print(f"[yellow]{escape(message)}[/yellow]")


def validate_username(value: str) -> str:
    """Return *value* if it is a non-empty alphanumeric username."""
    if not USERNAME_PATTERN.fullmatch(value):
        raise UsernameError(
            f"Invalid username {value!r}: use letters and digits only (A-Z, a-z, 0-9)."
        )
    return value


def prompt_username(prompter: Prompter, *, initial: str | None = None) -> str:
    """Ask until the operator supplies a valid username.

    *initial* (for example a ``--username`` flag) is tried first; when it is
    invalid the operator is told why and prompted like any other bad answer.
    """
    candidate = initial
    while True:
        if candidate is None:
            candidate = prompter.ask("Username (letters and digits only)")
        try:
            return validate_username(candidate)
        except UsernameError as exc:
            prompter.notify(str(exc))
            candidate = None


def prompt_email(prompter: Prompter, *, initial: str | None = None) -> str:
    """Ask until the operator supplies a non-empty git email."""
    candidate = initial
    while True:
        if candidate is None:
            candidate = prompter.ask("Git email")
        value = candidate.strip()
        if value:
            return value
        prompter.notify("Git email cannot be empty.")
        candidate = None


def resolve_fixed_account(config: IdentityConfig) -> Identity:
    """Return the identity of the configured fixed account."""
    account = config.account or ""
    try:
        username = validate_username(account)
    except UsernameError as exc:
        raise IdentityError(str(exc)) from exc
    home = config.home_root / username
    if not home.is_dir():
        raise IdentityError(f"Account '{username}' has no home directory at {home}.")
    if not os.access(home, os.W_OK):
        raise IdentityError(f"Home directory {home} for account '{username}' is not writable.")
    return Identity(username=username, home=home)


def resolve_identity(
    config: IdentityConfig,
    prompter: Prompter,
    *,
    username: str | None = None,
) -> Identity:
    """Resolve the operator identity using the configured strategy."""
    if config.mode == "fixed":
        identity = resolve_fixed_account(config)
        if username is not None and username != identity.username:
            prompter.notify(
                f"Ignoring --username {username!r}: identity.mode is 'fixed' and "
                f"onboards account '{identity.username}'."
            )
        return identity
    return Identity(username=prompt_username(prompter, initial=username))


__all__ = [
    "ConsolePrompter",
    "Identity",
    "IdentityError",
    "Prompter",
    "USERNAME_PATTERN",
    "UsernameError",
    "prompt_email",
    "prompt_username",
    "resolve_fixed_account",
    "resolve_identity",
    "validate_username",
]
