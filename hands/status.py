from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Mapping

from .adapters import get_target, hook_present, mcp_to_target_format, to_target_format
from .env import missing_environment
from .errors import HookConfigError
from .fingerprint import fingerprint, fingerprint_json, fingerprint_path
from .hooks import HookConfig
from .merge import get_server, owned_entries
from .models import Descriptor, EntryPayload, FilePayload
from .tracker import InstalledRecord


class Status(str, Enum):
    AVAILABLE = "available"
    INSTALLED = "installed"
    OUTDATED = "outdated"
    MISSING_ENVIRONMENT = "missingEnvironment"


@dataclass(frozen=True)
class StatusInfo:
    """Status of one descriptor for this run.

    `status` is the install state and is never MISSING_ENVIRONMENT; missing
    environment names are reported separately so the install state is still
    available once the operator overrides the warning.
    """

    descriptor: Descriptor
    status: Status
    missing_env: tuple[str, ...] = ()
    detail: str | None = None

    @property
    def display_status(self) -> Status:
        if self.missing_env:
            return Status.MISSING_ENVIRONMENT
        return self.status

    @property
    def is_present(self) -> bool:
        return self.status in (Status.INSTALLED, Status.OUTDATED)

    def to_dict(self) -> dict:
        out: dict = {
            "id": self.descriptor.address,
            "category": self.descriptor.category,
            "name": self.descriptor.name,
            "status": self.status.value,
            "display": self.display_status.value,
        }
        if self.missing_env:
            out["missingEnv"] = list(self.missing_env)
        if self.detail:
            out["detail"] = self.detail
        return out


def file_status(descriptor: Descriptor, *, project_root: Path, record: InstalledRecord) -> StatusInfo:
    payload = descriptor.payload
    assert isinstance(payload, FilePayload)
    target = project_root / payload.target
    if not target.exists() and not target.is_symlink():
        return StatusInfo(descriptor=descriptor, status=Status.AVAILABLE)

    source_fp = fingerprint_path(payload.source)
    target_fp = fingerprint_path(target)
    if source_fp is None:
        return StatusInfo(descriptor=descriptor, status=Status.OUTDATED, detail="source missing")
    if source_fp == target_fp:
        return StatusInfo(descriptor=descriptor, status=Status.INSTALLED)

    entry = record.get(descriptor.id)
    if entry is None or entry.fingerprint != target_fp:
        # Not installed by us, or edited since: install will keep a backup.
        return StatusInfo(descriptor=descriptor, status=Status.OUTDATED, detail="modified")
    return StatusInfo(descriptor=descriptor, status=Status.OUTDATED)


def mcp_status(descriptor: Descriptor, *, project_root: Path, targets: Iterable[str]) -> StatusInfo:
    payload = descriptor.payload
    assert isinstance(payload, EntryPayload)
    present = 0
    matches = True
    for name in targets:
        t = get_target(name)
        current = get_server(t.mcp_document(project_root), descriptor.name)
        if current is None:
            matches = False
            continue
        present += 1
        if fingerprint_json(current) != fingerprint_json(mcp_to_target_format(payload.config, t)):
            matches = False

    if present == 0:
        return StatusInfo(descriptor=descriptor, status=Status.AVAILABLE)
    if matches:
        return StatusInfo(descriptor=descriptor, status=Status.INSTALLED)
    return StatusInfo(descriptor=descriptor, status=Status.OUTDATED)


def hook_status(
    descriptor: Descriptor, *, project_root: Path, targets: Iterable[str], record: InstalledRecord
) -> StatusInfo:
    payload = descriptor.payload
    assert isinstance(payload, EntryPayload)
    names = list(targets)

    try:
        config = HookConfig.from_dict(payload.config)
    except HookConfigError:
        present = any(hook_present(project_root, n, descriptor.name) for n in names)
        return StatusInfo(
            descriptor=descriptor,
            status=Status.OUTDATED if present else Status.AVAILABLE,
            detail="invalid hook config",
        )

    present = 0
    matches = True
    for name in names:
        t = get_target(name)
        actual = owned_entries(t.hooks_document(project_root), descriptor.name)
        if actual:
            present += 1
        if actual != to_target_format(config, t):
            matches = False

    entry = record.get(descriptor.id)
    tracked_current = entry is not None and entry.fingerprint == fingerprint(payload)
    if present == 0:
        # A hook with no triggers for any detected tool has nothing to place.
        if matches and tracked_current:
            return StatusInfo(descriptor=descriptor, status=Status.INSTALLED)
        return StatusInfo(descriptor=descriptor, status=Status.AVAILABLE)
    if matches and tracked_current:
        return StatusInfo(descriptor=descriptor, status=Status.INSTALLED)
    return StatusInfo(descriptor=descriptor, status=Status.OUTDATED)


def component_status(
    descriptor: Descriptor,
    *,
    project_root: Path,
    targets: Iterable[str],
    record: InstalledRecord,
    environ: Mapping[str, str] | None = None,
) -> StatusInfo:
    if isinstance(descriptor.payload, FilePayload):
        return file_status(descriptor, project_root=project_root, record=record)

    if not isinstance(descriptor.payload, EntryPayload):
        raise AssertionError(f"unhandled payload type: {type(descriptor.payload).__name__}")

    missing = missing_environment(descriptor, environ)
    if descriptor.category == "mcpServer":
        info = mcp_status(descriptor, project_root=project_root, targets=targets)
    elif descriptor.category == "hook":
        info = hook_status(descriptor, project_root=project_root, targets=targets, record=record)
    else:
        raise ValueError(f"{descriptor.address}: JSON_ENTRY is only supported for hooks and MCP servers")
    if missing:
        return StatusInfo(descriptor=descriptor, status=info.status, missing_env=missing, detail=info.detail)
    return info


def classify(
    descriptors: Iterable[Descriptor],
    *,
    project_root: Path,
    targets: Iterable[str],
    record: InstalledRecord,
    environ: Mapping[str, str] | None = None,
) -> tuple[StatusInfo, ...]:
    names = tuple(targets)
    return tuple(
        component_status(d, project_root=project_root, targets=names, record=record, environ=environ)
        for d in descriptors
    )
