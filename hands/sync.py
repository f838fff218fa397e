from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Mapping

from .adapters import TARGETS, detect_targets, get_target, mcp_to_target_format, to_target_format
from .catalog import Catalog, target_path
from .env import format_env_warning
from .errors import HandsError, MissingSourceError, UnsafeTargetError
from .fingerprint import fingerprint, fingerprint_path
from .hooks import HookConfig
from .merge import apply_hook, has, has_server, remove, remove_server, upsert_server
from .models import CATEGORIES, FILE_CATEGORIES, Descriptor, DescriptorId, EntryPayload, FilePayload
from .resolver import compute_orphans, expand_selection
from .status import Status, StatusInfo, classify
from .tracker import InstalledRecord, Tracker


Echo = Callable[[str], None]
ConfirmMissingEnv = Callable[[Descriptor, tuple[str, ...]], bool]


@dataclass
class SyncReport:
    installed: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.installed or self.updated or self.removed)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass(frozen=True)
class SelectionPlan:
    """Result of the read-only planning phase.

    `selected` is what the project should hold after sync; `direct` is the
    subset the operator chose explicitly.
    """

    direct: frozenset[DescriptorId]
    selected: frozenset[DescriptorId]
    orphans: frozenset[DescriptorId] = frozenset()
    unknown: frozenset[DescriptorId] = frozenset()
    # Deselected ids that the closure pulled back in.
    required: frozenset[DescriptorId] = frozenset()


def select_targets(project_root: Path, enabled: Iterable[str] | None = None) -> tuple[str, ...]:
    """Targets for JSON entries: explicit config, else detected, else claude.

    File-based components always materialize under .claude/, so claude is the
    fallback when no tool directory exists yet.
    """

    if enabled is not None:
        return tuple(enabled)
    return detect_targets(project_root) or ("claude",)


def plan_selection(
    catalog: Catalog,
    record: InstalledRecord,
    *,
    statuses: Iterable[StatusInfo] = (),
    select: Iterable[DescriptorId] = (),
    deselect: Iterable[DescriptorId] = (),
    keep_installed: bool = True,
    remove_orphans: bool = False,
) -> SelectionPlan:
    """Turn operator edits into the final selection, before anything is touched.

    With `keep_installed`, the starting point is what is already there: the
    tracked direct selection (or every tracked id, for records without that
    flag) plus anything already installed with catalog content.
    """

    prev_expanded = record.ids()
    prev_direct = frozenset(i for i in prev_expanded if record.get(i).direct)

    base: set[DescriptorId] = set()
    if keep_installed:
        base |= prev_direct or prev_expanded
        base |= {s.descriptor.id for s in statuses if s.status == Status.INSTALLED}
        # Dependencies that were only pulled in must not become direct picks.
        base -= prev_expanded - prev_direct if prev_direct else set()
    dropped = frozenset(deselect)
    base |= set(select)
    base -= dropped

    direct = frozenset(base)
    expanded = expand_selection(direct, catalog.by_id)
    orphans = compute_orphans(prev_expanded, expanded, direct, previously_selected=prev_direct)
    orphans = frozenset(o for o in orphans if o in catalog and o not in dropped)
    selected = expanded if remove_orphans else expanded | orphans

    return SelectionPlan(
        direct=direct,
        selected=frozenset(i for i in selected if i in catalog),
        orphans=orphans,
        unknown=frozenset(i for i in direct if i not in catalog),
        required=frozenset(i for i in dropped if i in expanded),
    )


# -------------------------
# File-based materialization


def _rm_any(path: Path) -> None:
    if not path.exists() and not path.is_symlink():
        return
    if path.is_symlink() or path.is_file():
        path.unlink(missing_ok=True)
        return
    if path.is_dir():
        shutil.rmtree(path)


def checked_target(address: str, project_root: Path, rel: Path) -> Path:
    """Absolute path for `rel`, refusing anything outside a directory under .claude/."""

    base = (project_root / ".claude").resolve()
    dst = project_root / rel
    parent = dst.parent.resolve()
    if rel.is_absolute() or ".." in rel.parts or parent == base or not parent.is_relative_to(base):
        raise UnsafeTargetError(address=address, path=dst)
    return dst


def _copy_any(src: Path, dst: Path) -> None:
    """Replace `dst` with a copy of `src` via a sibling temp path."""

    dst.parent.mkdir(parents=True, exist_ok=True)
    tmp = dst.with_name(dst.name + ".tmp")
    _rm_any(tmp)
    if src.is_dir():
        shutil.copytree(src, tmp, symlinks=True)
    else:
        shutil.copy2(src, tmp)
    _rm_any(dst)
    tmp.replace(dst)


def install_file(descriptor: Descriptor, *, project_root: Path, backup_suffix: str = ".local", echo: Echo = print) -> str:
    """Copy a FILE_BASED descriptor into place and return its fingerprint.

    A differing file already at the target is kept as <target><backup_suffix>.
    """

    payload = descriptor.payload
    assert isinstance(payload, FilePayload)
    src = payload.source
    source_fp = fingerprint_path(src)
    if source_fp is None or not src.exists():
        raise MissingSourceError(address=descriptor.address, path=src)

    dst = checked_target(descriptor.address, project_root, payload.target)
    if dst.exists() or dst.is_symlink():
        if fingerprint_path(dst) != source_fp:
            backup = dst.with_name(dst.name + backup_suffix)
            _rm_any(backup)
            if dst.is_dir() and not dst.is_symlink():
                shutil.copytree(dst, backup, symlinks=True)
            else:
                shutil.copy2(dst, backup, follow_symlinks=False)
            echo(f"  Backed up existing file to: {backup.name}")

    _copy_any(src, dst)
    return source_fp


def remove_file(path: Path) -> bool:
    if not path.exists() and not path.is_symlink():
        return False
    _rm_any(path)
    return True


# -------------------------
# JSON entries


def install_entry(descriptor: Descriptor, *, project_root: Path, targets: Iterable[str]) -> str | None:
    payload = descriptor.payload
    assert isinstance(payload, EntryPayload)

    if descriptor.category == "mcpServer":
        for name in targets:
            t = get_target(name)
            upsert_server(t.mcp_document(project_root), descriptor.name, mcp_to_target_format(payload.config, t))
    elif descriptor.category == "hook":
        config = HookConfig.from_dict(payload.config)
        for name in targets:
            t = get_target(name)
            apply_hook(t.hooks_document(project_root), descriptor.name, to_target_format(config, t))
    else:
        raise ValueError(f"{descriptor.address}: JSON_ENTRY is only supported for hooks and MCP servers")
    return fingerprint(payload)


def remove_entry(ident: DescriptorId, *, project_root: Path) -> bool:
    """Remove `ident`'s owned entries from every known target's documents."""

    changed = False
    for t in TARGETS.values():
        if ident.category == "mcpServer":
            changed = remove_server(t.mcp_document(project_root), ident.name) or changed
        elif ident.category == "hook":
            changed = remove(t.hooks_document(project_root), ident.name) or changed
    return changed


def entry_present(ident: DescriptorId, *, project_root: Path) -> bool:
    """True when any known target's documents hold an entry owned by `ident`."""

    for t in TARGETS.values():
        if ident.category == "mcpServer" and has_server(t.mcp_document(project_root), ident.name):
            return True
        if ident.category == "hook" and has(t.hooks_document(project_root), ident.name):
            return True
    return False


# -------------------------
# Orchestration


def _decline(_descriptor: Descriptor, _missing: tuple[str, ...]) -> bool:
    return False


def _remove(ident: DescriptorId, descriptor: Descriptor | None, *, project_root: Path) -> None:
    if ident.category not in FILE_CATEGORIES:
        remove_entry(ident, project_root=project_root)
        return
    if descriptor is not None and isinstance(descriptor.payload, FilePayload):
        rel = descriptor.payload.target
    else:
        rel = target_path(ident.category, ident.name)
    if rel is not None:
        remove_file(checked_target(ident.address, project_root, rel))


def sync(
    *,
    catalog: Catalog,
    project_root: Path,
    selection: Iterable[DescriptorId],
    tracker: Tracker,
    targets: Iterable[str] | None = None,
    direct: Iterable[DescriptorId] | None = None,
    statuses: Iterable[StatusInfo] | None = None,
    backup_suffix: str = ".local",
    confirm_missing_env: ConfirmMissingEnv | None = None,
    environ: Mapping[str, str] | None = None,
    echo: Echo = print,
) -> SyncReport:
    """Bring `project_root` in line with `selection`.

    Descriptors are processed one at a time in category order (skill,
    command, agent, mcpServer, hook), catalog order within a category.
    Selected descriptors are installed or updated; tracked or installed ones
    that are not selected are removed. A failure is echoed and recorded for
    that descriptor and the run moves on; nothing is rolled back.
    """

    # Fatal before any mutation.
    tracker.ensure_location()

    selected = frozenset(selection)
    direct_ids = frozenset(direct) if direct is not None else selected
    target_names = tuple(targets) if targets is not None else select_targets(project_root)
    confirm = confirm_missing_env or _decline
    record = tracker.read()
    if statuses is None:
        statuses = classify(
            catalog.descriptors, project_root=project_root, targets=target_names, record=record, environ=environ
        )
    by_id: dict[DescriptorId, StatusInfo] = {s.descriptor.id: s for s in statuses}

    report = SyncReport()

    for ident in sorted(i for i in selected if i not in catalog):
        echo(f"warning: {ident.address}: not in catalog")
        report.skipped.append(ident.address)

    for category in CATEGORIES:
        for d in catalog.descriptors:
            if d.category != category:
                continue
            info = by_id.get(d.id)
            if info is None:
                continue
            _apply_one(
                d,
                info,
                selected=d.id in selected,
                direct=d.id in direct_ids,
                record=record,
                tracker=tracker,
                project_root=project_root,
                targets=target_names,
                backup_suffix=backup_suffix,
                confirm=confirm,
                report=report,
                echo=echo,
            )

        # Records whose descriptor disappeared from the catalog.
        for ident in sorted(record.ids()):
            if ident.category != category or ident in catalog:
                continue
            try:
                _remove(ident, None, project_root=project_root)
                tracker.record_removal(ident)
            except (HandsError, OSError) as e:
                echo(f"error: {ident.address}: {e}")
                report.failed.append((ident.address, str(e)))
                continue
            echo(f"  Removed: {ident.address} (no longer in catalog)")
            report.removed.append(ident.address)

    return report


def _apply_one(
    d: Descriptor,
    info: StatusInfo,
    *,
    selected: bool,
    direct: bool,
    record: InstalledRecord,
    tracker: Tracker,
    project_root: Path,
    targets: tuple[str, ...],
    backup_suffix: str,
    confirm: ConfirmMissingEnv,
    report: SyncReport,
    echo: Echo,
) -> None:
    entry = record.get(d.id)

    if not selected:
        if entry is None and info.status != Status.INSTALLED:
            # Marked entries left behind by an interrupted run are still ours.
            if d.storage_mode != "JSON_ENTRY" or not entry_present(d.id, project_root=project_root):
                return
        try:
            _remove(d.id, d, project_root=project_root)
            tracker.record_removal(d)
        except (HandsError, OSError) as e:
            echo(f"error: {d.address}: {e}")
            report.failed.append((d.address, str(e)))
            return
        echo(f"  Removed: {d.address}")
        report.removed.append(d.address)
        return

    if info.status == Status.INSTALLED:
        # Nothing to write; make sure the record reflects it.
        fp = fingerprint(d.payload)
        if entry is None or entry.fingerprint != fp or entry.direct != direct:
            tracker.record_install(d, fp, direct=direct)
        return

    if info.missing_env:
        echo(format_env_warning(info.missing_env, d.address))
    if info.missing_env and not confirm(d, info.missing_env):
        echo(f"  Skipped: {d.address}")
        report.skipped.append(d.address)
        return

    try:
        if isinstance(d.payload, FilePayload):
            fp = install_file(d, project_root=project_root, backup_suffix=backup_suffix, echo=echo)
        elif isinstance(d.payload, EntryPayload):
            fp = install_entry(d, project_root=project_root, targets=targets)
        else:
            raise AssertionError(f"unhandled payload type: {type(d.payload).__name__}")
        tracker.record_install(d, fp, direct=direct)
    except (HandsError, OSError) as e:
        echo(f"error: {d.address}: {e}")
        report.failed.append((d.address, str(e)))
        return

    if info.status == Status.OUTDATED:
        echo(f"  Updated: {d.address}")
        report.updated.append(d.address)
    else:
        echo(f"  Installed: {d.address}")
        report.installed.append(d.address)
