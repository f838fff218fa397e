"""Installed-state tracker.

One JSON document per project records which descriptors hands installed and
the fingerprint they had at install time:

    {"version": 1, "components": {"skill": {...}, "command": {...}, ...}}

The record is an advisory cache, not the source of truth for what exists on
disk. A missing or unreadable document reads as an empty record and is
replaced on the next write.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

from .errors import TrackerLocationError
from .models import CATEGORIES, Descriptor, DescriptorId, is_safe_name


TRACKER_VERSION = 1


def _utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, indent=2, ensure_ascii=False) + "\n"


@dataclass(frozen=True)
class RecordEntry:
    fingerprint: str | None
    installed_at: str
    source_reference: str | None = None
    direct: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "installedAt": self.installed_at,
            "sourceReference": self.source_reference,
            "direct": self.direct,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RecordEntry | None":
        fp = data.get("fingerprint")
        at = data.get("installedAt")
        src = data.get("sourceReference")
        direct = data.get("direct", True)
        if fp is not None and not isinstance(fp, str):
            return None
        if not isinstance(at, str):
            return None
        if src is not None and not isinstance(src, str):
            return None
        if not isinstance(direct, bool):
            return None
        return cls(fingerprint=fp, installed_at=at, source_reference=src, direct=direct)


def _empty_components() -> dict[str, dict[str, RecordEntry]]:
    return {c: {} for c in CATEGORIES}


@dataclass(frozen=True)
class InstalledRecord:
    version: int = TRACKER_VERSION
    components: dict[str, dict[str, RecordEntry]] = field(default_factory=_empty_components)

    def get(self, ident: DescriptorId) -> RecordEntry | None:
        return self.components.get(ident.category, {}).get(ident.name)

    def ids(self) -> frozenset[DescriptorId]:
        return frozenset(
            DescriptorId(category=cat, name=name)
            for cat, entries in self.components.items()
            for name in entries
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "components": {
                cat: {name: e.to_dict() for name, e in entries.items()}
                for cat, entries in self.components.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Any) -> "InstalledRecord":
        """Build a record from parsed JSON, dropping anything malformed."""

        if not isinstance(data, Mapping) or data.get("version") != TRACKER_VERSION:
            return cls()
        comps_raw = data.get("components")
        if not isinstance(comps_raw, Mapping):
            return cls()

        components = _empty_components()
        for cat in CATEGORIES:
            entries = comps_raw.get(cat)
            if not isinstance(entries, Mapping):
                continue
            for name, raw in entries.items():
                if not isinstance(name, str) or not is_safe_name(name) or not isinstance(raw, Mapping):
                    continue
                entry = RecordEntry.from_dict(raw)
                if entry is not None:
                    components[cat][name] = entry
        return cls(version=TRACKER_VERSION, components=components)


def _as_id(item: Descriptor | DescriptorId) -> DescriptorId:
    return item.id if isinstance(item, Descriptor) else item


class Tracker:
    """Read-modify-write access to a project's installed-state record."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def ensure_location(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TrackerLocationError(path=self.path.parent, reason=e.strerror or str(e)) from e
        if not self.path.parent.is_dir():
            raise TrackerLocationError(path=self.path.parent, reason="not a directory")

    def read(self) -> InstalledRecord:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError:
            return InstalledRecord()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return InstalledRecord()
        return InstalledRecord.from_dict(data)

    def write(self, record: InstalledRecord) -> None:
        self.ensure_location()
        # Atomic-ish write: write to sibling temp file then replace.
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(_canonical_json(record.to_dict()), encoding="utf-8")
        tmp.replace(self.path)

    def lookup(self, item: Descriptor | DescriptorId) -> RecordEntry | None:
        return self.read().get(_as_id(item))

    def tracked_ids(self) -> frozenset[DescriptorId]:
        return self.read().ids()

    def record_install(self, descriptor: Descriptor, fingerprint: str | None, *, direct: bool = True) -> None:
        record = self.read()
        record.components.setdefault(descriptor.category, {})[descriptor.name] = RecordEntry(
            fingerprint=fingerprint,
            installed_at=_utc_now(),
            source_reference=descriptor.source_reference,
            direct=direct,
        )
        self.write(record)

    def record_removal(self, item: Descriptor | DescriptorId) -> None:
        ident = _as_id(item)
        record = self.read()
        entries = record.components.get(ident.category, {})
        if ident.name not in entries:
            return
        del entries[ident.name]
        self.write(record)
