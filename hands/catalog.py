"""Catalog scan.

Layout of a catalog directory:

    skills/<name>/SKILL.md      whole directory is the skill; YAML frontmatter
                                may declare dependencies
    commands/<name>.md
    agents/<name>.md
    mcp-servers/<name>.json     MCP server connection config
    hooks/<name>.json           canonical hook config

Skill frontmatter (the skill is named after its directory; a differing
`name` only produces a warning):

    ---
    name: pr-review
    dependencies:
      agents: [reviewer]
      mcpServers: [github]
      skills: [git-basics]
    ---
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

import yaml

from .errors import HookConfigError
from .hooks import EVENTS, HookConfig
from .models import Descriptor, DescriptorId, EntryPayload, FilePayload, is_safe_name


# Frontmatter dependency keys -> category
_DEPENDENCY_KEYS = {"agents": "agent", "mcpServers": "mcpServer", "skills": "skill"}


def target_path(category: str, name: str) -> Path | None:
    """Project-relative install path for FILE_BASED categories."""

    if category == "skill":
        return Path(".claude") / "skills" / name
    if category == "command":
        return Path(".claude") / "commands" / f"{name}.md"
    if category == "agent":
        return Path(".claude") / "agents" / f"{name}.md"
    return None


@dataclass(frozen=True)
class Catalog:
    descriptors: tuple[Descriptor, ...] = ()
    warnings: tuple[str, ...] = ()
    by_id: dict[DescriptorId, Descriptor] = field(default_factory=dict, compare=False)

    def get(self, ident: DescriptorId) -> Descriptor | None:
        return self.by_id.get(ident)

    def __contains__(self, ident: object) -> bool:
        return ident in self.by_id

    def __len__(self) -> int:
        return len(self.descriptors)


def build_catalog(descriptors: Iterable[Descriptor], *, warnings: Iterable[str] = ()) -> Catalog:
    """Index descriptors by (category, name).

    A later descriptor with the same identity replaces the earlier one in
    place (last write wins) and a warning is recorded. Descriptors whose name
    is not a single path component are dropped with a warning.
    """

    warns = list(warnings)
    order: list[DescriptorId] = []
    by_id: dict[DescriptorId, Descriptor] = {}
    for d in descriptors:
        if not is_safe_name(d.name):
            warns.append(f"invalid name {d.name!r} for {d.category} in catalog; skipped")
            continue
        if d.id in by_id:
            warns.append(f"duplicate {d.address} in catalog; using {d.source_reference or 'the last definition'}")
        else:
            order.append(d.id)
        by_id[d.id] = d
    return Catalog(descriptors=tuple(by_id[i] for i in order), warnings=tuple(warns), by_id=by_id)


def _read_yaml_frontmatter(text: str) -> dict:
    if not text.startswith("---"):
        return {}
    parts = text.split("---", 2)
    if len(parts) < 3:
        return {}
    data = yaml.safe_load(parts[1]) or {}
    return data if isinstance(data, dict) else {}


def _parse_dependencies(fm: dict, *, where: str, warnings: list[str]) -> frozenset[DescriptorId]:
    raw = fm.get("dependencies")
    if raw is None:
        return frozenset()
    if not isinstance(raw, dict):
        warnings.append(f"{where}: dependencies must be a mapping; ignored")
        return frozenset()

    deps: set[DescriptorId] = set()
    for key, names in raw.items():
        category = _DEPENDENCY_KEYS.get(key)
        if category is None:
            warnings.append(f"{where}: unknown dependency kind {key!r}; ignored")
            continue
        if isinstance(names, str):
            names = [names]
        if not isinstance(names, list) or not all(isinstance(n, str) and n.strip() for n in names):
            warnings.append(f"{where}: dependencies.{key} must be a list of names; ignored")
            continue
        for n in names:
            if not is_safe_name(n.strip()):
                warnings.append(f"{where}: invalid dependency name {n!r}; ignored")
                continue
            deps.add(DescriptorId(category=category, name=n.strip()))
    return frozenset(deps)


def _scan_skills(root: Path, warnings: list[str]) -> list[Descriptor]:
    out: list[Descriptor] = []
    skills_dir = root / "skills"
    if not skills_dir.is_dir():
        return out
    for d in sorted(skills_dir.iterdir()):
        if not d.is_dir() or d.name.startswith("."):
            continue
        skill_md = d / "SKILL.md"
        if not skill_md.is_file():
            continue
        try:
            fm = _read_yaml_frontmatter(skill_md.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            warnings.append(f"{skill_md}: unreadable ({e}); skipped")
            continue
        except yaml.YAMLError as e:
            warnings.append(f"{skill_md}: invalid frontmatter ({e}); dependencies ignored")
            fm = {}
        name = d.name
        declared = fm.get("name")
        if declared is not None and str(declared).strip() != name:
            warnings.append(f"{skill_md}: frontmatter name {declared!r} differs from directory; using {name!r}")
        deps = _parse_dependencies(fm, where=str(skill_md), warnings=warnings)
        out.append(
            Descriptor(
                name=name,
                category="skill",
                payload=FilePayload(source=d, target=target_path("skill", name)),
                dependencies=deps,
            )
        )
    return out


def _scan_markdown(root: Path, subdir: str, category: str) -> list[Descriptor]:
    out: list[Descriptor] = []
    base = root / subdir
    if not base.is_dir():
        return out
    for p in sorted(base.glob("*.md")):
        if p.name.startswith(".") or not p.is_file():
            continue
        out.append(
            Descriptor(
                name=p.stem,
                category=category,  # type: ignore[arg-type]
                payload=FilePayload(source=p, target=target_path(category, p.stem)),
            )
        )
    return out


def _load_json_object(p: Path, warnings: list[str]) -> dict[str, Any] | None:
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        warnings.append(f"{p}: invalid JSON ({e}); skipped")
        return None
    if not isinstance(data, dict):
        warnings.append(f"{p}: expected a JSON object; skipped")
        return None
    return data


def _scan_json(root: Path, subdir: str, category: str, warnings: list[str]) -> list[Descriptor]:
    out: list[Descriptor] = []
    base = root / subdir
    if not base.is_dir():
        return out
    for p in sorted(base.glob("*.json")):
        if p.name.startswith(".") or not p.is_file():
            continue
        data = _load_json_object(p, warnings)
        if data is None:
            continue
        if category == "hook":
            try:
                config = HookConfig.from_dict(data)
            except HookConfigError as e:
                warnings.append(f"{p}: {e}; skipped")
                continue
            unknown = [event for event, _ in config.items() if event not in EVENTS]
            if unknown:
                warnings.append(f"{p}: unknown hook events {unknown}; not installed to any tool")
        out.append(
            Descriptor(
                name=p.stem,
                category=category,  # type: ignore[arg-type]
                payload=EntryPayload(config=data, source=p),
            )
        )
    return out


def scan_catalog(root: Path) -> Catalog:
    """Scan a catalog directory into descriptors, in category then name order."""

    warnings: list[str] = []
    descriptors: list[Descriptor] = []
    if not root.is_dir():
        return build_catalog((), warnings=[f"catalog directory not found: {root}"])

    descriptors.extend(_scan_skills(root, warnings))
    descriptors.extend(_scan_markdown(root, "commands", "command"))
    descriptors.extend(_scan_markdown(root, "agents", "agent"))
    descriptors.extend(_scan_json(root, "mcp-servers", "mcpServer", warnings))
    descriptors.extend(_scan_json(root, "hooks", "hook", warnings))
    return build_catalog(descriptors, warnings=warnings)
