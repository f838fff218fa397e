from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal


Category = Literal["skill", "command", "agent", "hook", "mcpServer"]
StorageMode = Literal["FILE_BASED", "JSON_ENTRY"]

# Processing order: file-based categories first, then MCP servers, then hooks.
CATEGORIES: tuple[Category, ...] = ("skill", "command", "agent", "mcpServer", "hook")
FILE_CATEGORIES: frozenset[str] = frozenset({"skill", "command", "agent"})


def is_category(value: str) -> bool:
    return value in CATEGORIES


def is_safe_name(name: str) -> bool:
    """True when `name` is usable as a single path component."""

    return bool(name) and name not in (".", "..") and "/" not in name and "\\" not in name


@dataclass(frozen=True, order=True)
class DescriptorId:
    """Stable descriptor identity.

    Format: <category>:<name>
    Examples: skill:pr-review, mcpServer:github, hook:notify
    """

    category: str
    name: str

    @property
    def address(self) -> str:
        return f"{self.category}:{self.name}"

    def __str__(self) -> str:
        return self.address

    @classmethod
    def parse(cls, text: str) -> "DescriptorId":
        category, sep, name = text.strip().partition(":")
        if not sep or not name:
            raise ValueError(f"invalid descriptor id {text!r}: expected <category>:<name>")
        if not is_category(category):
            raise ValueError(f"invalid descriptor id {text!r}: unknown category {category!r}")
        if not is_safe_name(name):
            raise ValueError(f"invalid descriptor id {text!r}: name may not contain path separators or be . or ..")
        return cls(category=category, name=name)


@dataclass(frozen=True)
class FilePayload:
    """Materializes as one file or directory tree at `target` (project-relative)."""

    source: Path
    target: Path


@dataclass(frozen=True)
class EntryPayload:
    """Materializes as a keyed entry inside shared JSON documents."""

    config: dict[str, Any]
    source: Path | None = None


Payload = FilePayload | EntryPayload


@dataclass(frozen=True)
class Descriptor:
    name: str
    category: Category
    payload: Payload
    dependencies: frozenset[DescriptorId] = field(default_factory=frozenset)

    @property
    def id(self) -> DescriptorId:
        return DescriptorId(category=self.category, name=self.name)

    @property
    def address(self) -> str:
        return self.id.address

    @property
    def storage_mode(self) -> StorageMode:
        if isinstance(self.payload, FilePayload):
            return "FILE_BASED"
        if isinstance(self.payload, EntryPayload):
            return "JSON_ENTRY"
        raise AssertionError(f"unhandled payload type: {type(self.payload).__name__}")

    @property
    def source_reference(self) -> str | None:
        src = self.payload.source
        return str(src) if src is not None else None
