from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


class HandsError(Exception):
    """Base exception for hands errors."""


@dataclass(frozen=True)
class ConfigParseError(HandsError):
    """Raised when hands.toml cannot be parsed."""

    path: Path
    message: str
    lineno: int | None = None
    colno: int | None = None

    def __str__(self) -> str:
        loc = ""
        if self.lineno is not None and self.colno is not None:
            loc = f" (line {self.lineno}, column {self.colno})"
        return f"Invalid TOML in {self.path}: {self.message}{loc}"


@dataclass(frozen=True)
class ConfigValidationError(HandsError):
    """Raised when a parsed hands.toml does not match the expected schema."""

    path: Path
    message: str

    def __str__(self) -> str:
        return f"Invalid config in {self.path}: {self.message}"


@dataclass(frozen=True)
class MissingSourceError(HandsError):
    """Raised when a catalog descriptor's source can no longer be read."""

    address: str
    path: Path

    def __str__(self) -> str:
        return f"{self.address}: source not found: {self.path}"


@dataclass(frozen=True)
class OwnershipConflictError(HandsError):
    """Raised when a document already holds an entry under a key that hands does not own."""

    path: Path
    key: str

    def __str__(self) -> str:
        return f"{self.path}: entry {self.key!r} exists and is not managed by hands"


@dataclass(frozen=True)
class UnsafeTargetError(HandsError):
    """Raised when a file target would land outside a tool directory under .claude/."""

    address: str
    path: Path

    def __str__(self) -> str:
        return f"{self.address}: refusing to touch {self.path}: outside .claude/"


@dataclass(frozen=True)
class TrackerLocationError(HandsError):
    """Raised when the installed-state directory cannot be created.

    This is the only error that aborts a sync, and it is raised before any
    target is touched.
    """

    path: Path
    reason: str

    def __str__(self) -> str:
        return f"cannot create state directory {self.path}: {self.reason}"


class HookConfigError(HandsError, ValueError):
    """Raised when a canonical hook config is malformed."""
