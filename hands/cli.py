from __future__ import annotations

import argparse
import json
import os
from pathlib import Path

from . import paths
from .adapters import detect_targets
from .catalog import Catalog, scan_catalog
from .config import HandsConfig, parse_hands_toml_file, resolve_catalog_dir
from .errors import ConfigParseError, ConfigValidationError, TrackerLocationError
from .models import Descriptor, DescriptorId
from .resolver import dependents_of, missing_dependencies
from .status import StatusInfo, classify
from .sync import SyncReport, plan_selection, select_targets, sync
from .tracker import Tracker


def _find_hands_project_root(start: Path) -> Path | None:
    """Find the nearest parent containing a hands.toml."""

    cur = start.resolve()
    for p in (cur, *cur.parents):
        if (p / "hands.toml").exists():
            return p
    return None


def _apply_root_selection(args: argparse.Namespace) -> Path:
    """Select HANDS_ROOT for this invocation.

    Precedence:
      1) --root
      2) HANDS_ROOT from the environment
      3) Nearest parent of cwd with a hands.toml
      4) cwd
    """

    explicit_root: Path | None = getattr(args, "root", None)
    if explicit_root is not None:
        root = Path(explicit_root).expanduser().resolve()
    else:
        env_root = os.environ.get("HANDS_ROOT")
        if env_root:
            root = Path(env_root).expanduser().resolve()
        else:
            root = (_find_hands_project_root(Path.cwd()) or Path.cwd()).resolve()

    os.environ["HANDS_ROOT"] = str(root)
    return root


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="hands",
        description="Install skills, commands, agents, hooks and MCP servers from a catalog into a project",
    )
    p.add_argument("--root", type=Path, default=None, help="Explicit project root")
    p.add_argument("--catalog", type=Path, default=None, help="Catalog directory (overrides hands.toml)")

    sub = p.add_subparsers(dest="cmd", required=True)

    st = sub.add_parser("status", help="Show the install status of every catalog descriptor")
    st.add_argument("--json", dest="json_output", action="store_true", help="Output as JSON")

    sy = sub.add_parser("sync", help="Install, update and remove descriptors to match the selection")
    sy.add_argument("--select", nargs="+", action="extend", default=[], metavar="ID", help="Add to the selection")
    sy.add_argument(
        "--deselect", nargs="+", action="extend", default=[], metavar="ID", help="Remove from the selection"
    )
    sy.add_argument("--only", action="store_true", help="Start from an empty selection instead of what is installed")
    sy.add_argument("--remove-orphans", action="store_true", help="Remove dependencies no selected skill needs")
    sy.add_argument(
        "--allow-missing-env",
        action="store_true",
        help="Install descriptors even when referenced environment variables are unset",
    )

    sub.add_parser("targets", help="List the tools detected in the project")

    why = sub.add_parser("why", help="Show which skills depend on a descriptor")
    why.add_argument("id", help="Descriptor id, e.g. mcpServer:github")

    return p


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    root = _apply_root_selection(args)

    try:
        return _run(args, root)
    except (ConfigParseError, ConfigValidationError) as e:
        print(f"error: {e}")
        return 2
    except TrackerLocationError as e:
        print(f"error: {e}")
        return 3
    except ValueError as e:
        print(f"error: {e}")
        return 2
    except Exception as e:  # pragma: no cover
        print(f"error: {e}")
        return 1


def _load(args: argparse.Namespace, root: Path) -> tuple[HandsConfig, Catalog]:
    cfg = parse_hands_toml_file()
    catalog_dir = resolve_catalog_dir(cfg, root=root, override=args.catalog)
    catalog = scan_catalog(catalog_dir)
    # JSON output carries warnings in the payload instead.
    if not getattr(args, "json_output", False):
        for w in catalog.warnings:
            print(f"warning: {w}")
        for ident, missing in missing_dependencies(catalog.by_id).items():
            names = ", ".join(m.address for m in missing)
            print(f"warning: {ident.address} depends on {names}, not in catalog")
    return cfg, catalog


def _parse_ids(values: list[str]) -> list[DescriptorId]:
    return [DescriptorId.parse(v) for v in values]


def _format_status_line(info: StatusInfo) -> str:
    line = f"  {info.display_status.value:<20} {info.descriptor.address}"
    if info.detail:
        line += f" ({info.detail})"
    if info.missing_env:
        line += f" [missing: {', '.join(info.missing_env)}]"
    return line


def _print_report(report: SyncReport) -> None:
    print(
        f"Sync complete: {len(report.installed)} installed, {len(report.updated)} updated, "
        f"{len(report.removed)} removed, {len(report.skipped)} skipped, {len(report.failed)} failed"
    )


def _allow_missing_env(_descriptor: Descriptor, _missing: tuple[str, ...]) -> bool:
    return True


def _run(args: argparse.Namespace, root: Path) -> int:
    if args.cmd == "targets":
        cfg = parse_hands_toml_file()
        detected = detect_targets(root)
        active = select_targets(root, cfg.targets.enabled)
        if not detected:
            print("No tools detected.")
        for name in detected:
            print(name)
        print(f"Active targets: {', '.join(active)}")
        return 0

    cfg, catalog = _load(args, root)
    targets = select_targets(root, cfg.targets.enabled)
    tracker = Tracker(paths.tracker_path(root))

    if args.cmd == "status":
        record = tracker.read()
        statuses = classify(catalog.descriptors, project_root=root, targets=targets, record=record)
        if args.json_output:
            payload = {
                "root": str(root),
                "targets": list(targets),
                "components": [s.to_dict() for s in statuses],
                "warnings": list(catalog.warnings),
            }
            print(json.dumps(payload, sort_keys=True, indent=2))
            return 0
        if not statuses:
            print("Catalog is empty.")
        for s in statuses:
            print(_format_status_line(s))
        return 0

    if args.cmd == "sync":
        select = _parse_ids(args.select)
        deselect = _parse_ids(args.deselect)
        record = tracker.read()
        statuses = classify(catalog.descriptors, project_root=root, targets=targets, record=record)
        plan = plan_selection(
            catalog,
            record,
            statuses=statuses,
            select=select,
            deselect=deselect,
            keep_installed=not args.only,
            remove_orphans=bool(args.remove_orphans),
        )
        for ident in sorted(plan.unknown):
            print(f"warning: {ident.address}: not in catalog")
        for ident in sorted(plan.required):
            print(f"warning: {ident.address}: still required by a selected skill; kept")
        if plan.orphans:
            verb = "removing" if args.remove_orphans else "keeping"
            print(f"Orphaned dependencies ({verb}): {', '.join(i.address for i in sorted(plan.orphans))}")

        report = sync(
            catalog=catalog,
            project_root=root,
            selection=plan.selected,
            direct=plan.direct,
            tracker=tracker,
            targets=targets,
            statuses=statuses,
            backup_suffix=cfg.sync.backup_suffix,
            confirm_missing_env=_allow_missing_env if args.allow_missing_env else None,
        )
        _print_report(report)
        return 0 if report.ok else 1

    if args.cmd == "why":
        ident = DescriptorId.parse(args.id)
        if ident not in catalog:
            print(f"warning: {ident.address}: not in catalog")
        dependents = dependents_of(ident, catalog.by_id)
        if not dependents:
            print(f"No skills depend on {ident.address}.")
            return 0
        for d in dependents:
            print(d.address)
        return 0

    raise AssertionError(f"unhandled cmd: {args.cmd}")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
