"""Read-modify-write merges into target JSON documents.

Every entry hands writes carries the reserved OWNERSHIP_MARKER field set to
the owning descriptor's name. Only marked entries are ever replaced or
removed; everything else in the document is left as found.

Each operation loads the document, mutates it, and writes it back. No
document is held open between operations.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from .errors import OwnershipConflictError


OWNERSHIP_MARKER = "_hands"


@dataclass(frozen=True)
class JsonDocument:
    """Handle for one section (`key`) of a JSON document on disk.

    `defaults` seeds a document that does not exist yet (or could not be
    parsed); it is never merged into an existing document.
    """

    path: Path
    key: str
    defaults: dict[str, Any] = field(default_factory=dict)

    def load(self) -> dict[str, Any]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError:
            return copy.deepcopy(self.defaults)
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return copy.deepcopy(self.defaults)
        if not isinstance(data, dict):
            return copy.deepcopy(self.defaults)
        return data

    def save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        tmp.replace(self.path)

    def section(self) -> dict[str, Any]:
        sec = self.load().get(self.key)
        return sec if isinstance(sec, dict) else {}


def owner_of(entry: Any) -> str | None:
    if isinstance(entry, dict):
        owner = entry.get(OWNERSHIP_MARKER)
        if isinstance(owner, str):
            return owner
    return None


def mark(entry: dict[str, Any], owner: str) -> dict[str, Any]:
    out = {k: v for k, v in entry.items() if k != OWNERSHIP_MARKER}
    out[OWNERSHIP_MARKER] = owner
    return out


def unmark(entry: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in entry.items() if k != OWNERSHIP_MARKER}


def _section(doc: JsonDocument, data: dict[str, Any]) -> dict[str, Any]:
    sec = data.get(doc.key)
    if sec is None:
        return {}
    if not isinstance(sec, dict):
        raise OwnershipConflictError(path=doc.path, key=doc.key)
    return sec


def _commit(doc: JsonDocument, data: dict[str, Any], section: dict[str, Any], before: dict[str, Any]) -> bool:
    if section or doc.key in data:
        data[doc.key] = section
    if data == before:
        return False
    doc.save(data)
    return True


# -------------------------
# Event-keyed entries (hooks)


def _replace_owned(existing: list[Any], owner: str, entries: list[dict[str, Any]]) -> list[Any]:
    first = next((i for i, e in enumerate(existing) if owner_of(e) == owner), None)
    kept = [e for e in existing if owner_of(e) != owner]
    if first is None:
        return kept + entries
    # Everything before the first owned entry is unowned, so `first` is also
    # the insertion point within `kept`.
    return kept[:first] + entries + kept[first:]


def upsert(doc: JsonDocument, event: str, owner: str, entries: Iterable[dict[str, Any]]) -> bool:
    """Replace `owner`'s entries under `event` with `entries`.

    The new entries take the position of the owner's first existing entry, or
    are appended when the owner has none. Returns True if the file changed.
    """

    data = doc.load()
    before = copy.deepcopy(data)
    section = _section(doc, data)

    existing = section.get(event, [])
    if not isinstance(existing, list):
        raise OwnershipConflictError(path=doc.path, key=f"{doc.key}.{event}")

    updated = _replace_owned(existing, owner, [mark(e, owner) for e in entries])
    if updated:
        section[event] = updated
    else:
        section.pop(event, None)
    return _commit(doc, data, section, before)


def apply_hook(doc: JsonDocument, owner: str, native: dict[str, list[dict[str, Any]]]) -> bool:
    """Make `owner`'s entries in the document match `native` exactly.

    Events present in `native` are upserted; the owner's entries under any
    other event are dropped.
    """

    data = doc.load()
    before = copy.deepcopy(data)
    section = _section(doc, data)

    for event in list(section.keys()):
        if event in native:
            continue
        existing = section[event]
        if not isinstance(existing, list):
            continue
        remaining = [e for e in existing if owner_of(e) != owner]
        if len(remaining) == len(existing):
            continue
        if remaining:
            section[event] = remaining
        else:
            del section[event]

    for event, entries in native.items():
        existing = section.get(event, [])
        if not isinstance(existing, list):
            raise OwnershipConflictError(path=doc.path, key=f"{doc.key}.{event}")
        updated = _replace_owned(existing, owner, [mark(e, owner) for e in entries])
        if updated:
            section[event] = updated
        else:
            section.pop(event, None)

    return _commit(doc, data, section, before)


def remove(doc: JsonDocument, owner: str) -> bool:
    """Drop every entry marked with `owner`, across all events."""

    data = doc.load()
    before = copy.deepcopy(data)
    sec = data.get(doc.key)
    if not isinstance(sec, dict):
        return False

    for event in list(sec.keys()):
        existing = sec[event]
        if not isinstance(existing, list):
            continue
        remaining = [e for e in existing if owner_of(e) != owner]
        if len(remaining) == len(existing):
            continue
        if remaining:
            sec[event] = remaining
        else:
            del sec[event]
    return _commit(doc, data, sec, before)


def has(doc: JsonDocument, owner: str) -> bool:
    for entries in doc.section().values():
        if isinstance(entries, list) and any(owner_of(e) == owner for e in entries):
            return True
    return False


def owned_entries(doc: JsonDocument, owner: str) -> dict[str, list[dict[str, Any]]]:
    """Return `owner`'s entries per event, without the marker."""

    out: dict[str, list[dict[str, Any]]] = {}
    for event, entries in doc.section().items():
        if not isinstance(entries, list):
            continue
        mine = [unmark(e) for e in entries if owner_of(e) == owner]
        if mine:
            out[event] = mine
    return out


# -------------------------
# Name-keyed entries (MCP servers)


def upsert_server(doc: JsonDocument, name: str, config: dict[str, Any], *, owner: str | None = None) -> bool:
    owner = owner or name
    data = doc.load()
    before = copy.deepcopy(data)
    section = _section(doc, data)

    existing = section.get(name)
    if existing is not None and owner_of(existing) != owner:
        raise OwnershipConflictError(path=doc.path, key=f"{doc.key}.{name}")
    section[name] = mark(config, owner)
    return _commit(doc, data, section, before)


def remove_server(doc: JsonDocument, owner: str) -> bool:
    """Drop every server entry marked with `owner`; unmarked entries stay."""

    data = doc.load()
    before = copy.deepcopy(data)
    sec = data.get(doc.key)
    if not isinstance(sec, dict):
        return False
    for name in [n for n, e in sec.items() if owner_of(e) == owner]:
        del sec[name]
    return _commit(doc, data, sec, before)


def has_server(doc: JsonDocument, name: str, *, owner: str | None = None) -> bool:
    return owner_of(doc.section().get(name)) == (owner or name)


def get_server(doc: JsonDocument, name: str, *, owner: str | None = None) -> dict[str, Any] | None:
    entry = doc.section().get(name)
    if owner_of(entry) != (owner or name):
        return None
    return unmark(entry)
