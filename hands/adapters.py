"""Target adapters.

Translates canonical hook configs (see hooks.py) into each supported tool's
native schema, and locates the documents each tool reads.

Claude Code (.claude/settings.json -> hooks):
    {"Stop": [{"matcher": "*", "hooks": [{"type": "command", "command": "..."}]}]}

Cursor (.cursor/hooks.json -> hooks):
    {"stop": [{"command": "...", "matcher": "Bash"}]}   # matcher omitted when "*"

Ownership markers are not added here; merge.py owns them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from .hooks import DEFAULT_MATCHER, HookConfig
from .merge import JsonDocument, has


# Canonical event name -> tool-specific event name. None means the tool has
# no such event and the trigger is dropped.
EVENT_MAP: dict[str, dict[str, str | None]] = {
    "stop": {"claude": "Stop", "cursor": "stop"},
    "preToolUse": {"claude": "PreToolUse", "cursor": "preToolUse"},
    "postToolUse": {"claude": "PostToolUse", "cursor": "postToolUse"},
    "notification": {"claude": "Notification", "cursor": None},
    "subagentStop": {"claude": "SubagentStop", "cursor": "subagentStop"},
    "sessionStart": {"claude": "SessionStart", "cursor": "sessionStart"},
    "sessionEnd": {"claude": "SessionEnd", "cursor": "sessionEnd"},
}


def to_claude_code(config: HookConfig) -> dict[str, list[dict[str, Any]]]:
    """Group triggers by matcher into nested {matcher, hooks: [...]} objects."""

    result: dict[str, list[dict[str, Any]]] = {}
    for event, triggers in config.items():
        mapped = EVENT_MAP.get(event, {}).get("claude")
        if not mapped:
            continue
        groups: dict[str, list[dict[str, str]]] = {}
        for t in triggers:
            groups.setdefault(t.matcher or DEFAULT_MATCHER, []).append({"type": "command", "command": t.command})
        if not groups:
            continue
        result[mapped] = [{"matcher": m, "hooks": hooks} for m, hooks in groups.items()]
    return result


def to_cursor(config: HookConfig) -> dict[str, list[dict[str, Any]]]:
    """Flat entries; the matcher is only written when it is not the default."""

    result: dict[str, list[dict[str, Any]]] = {}
    for event, triggers in config.items():
        mapped = EVENT_MAP.get(event, {}).get("cursor")
        if not mapped or not triggers:
            continue
        entries: list[dict[str, Any]] = []
        for t in triggers:
            entry: dict[str, Any] = {"command": t.command}
            if t.matcher and t.matcher != DEFAULT_MATCHER:
                entry["matcher"] = t.matcher
            entries.append(entry)
        result[mapped] = entries
    return result


def _copy_server(config: dict[str, Any]) -> dict[str, Any]:
    return dict(config)


@dataclass(frozen=True)
class Target:
    name: str
    marker: str  # project-relative config root whose presence means "tool is used here"
    hooks_file: str
    mcp_file: str
    translate_hooks: Callable[[HookConfig], dict[str, list[dict[str, Any]]]]
    translate_mcp: Callable[[dict[str, Any]], dict[str, Any]] = _copy_server
    hooks_key: str = "hooks"
    mcp_key: str = "mcpServers"
    hooks_defaults: dict[str, Any] = field(default_factory=dict)

    def hooks_document(self, project_root: Path) -> JsonDocument:
        return JsonDocument(path=project_root / self.hooks_file, key=self.hooks_key, defaults=self.hooks_defaults)

    def mcp_document(self, project_root: Path) -> JsonDocument:
        return JsonDocument(path=project_root / self.mcp_file, key=self.mcp_key)


TARGETS: dict[str, Target] = {
    "claude": Target(
        name="claude",
        marker=".claude",
        hooks_file=".claude/settings.json",
        mcp_file=".mcp.json",
        translate_hooks=to_claude_code,
    ),
    "cursor": Target(
        name="cursor",
        marker=".cursor",
        hooks_file=".cursor/hooks.json",
        mcp_file=".cursor/mcp.json",
        translate_hooks=to_cursor,
        hooks_defaults={"version": 1},
    ),
}


def get_target(name: str) -> Target:
    try:
        return TARGETS[name]
    except KeyError:
        raise ValueError(f"unsupported target: {name}") from None


def to_target_format(config: HookConfig, target: str | Target) -> dict[str, list[dict[str, Any]]]:
    t = target if isinstance(target, Target) else get_target(target)
    return t.translate_hooks(config)


def mcp_to_target_format(config: dict[str, Any], target: str | Target) -> dict[str, Any]:
    t = target if isinstance(target, Target) else get_target(target)
    return t.translate_mcp(config)


def detect_targets(project_root: Path) -> tuple[str, ...]:
    """Tools whose configuration root exists in `project_root`, in TARGETS order."""

    return tuple(name for name, t in TARGETS.items() if (project_root / t.marker).is_dir())


def hook_present(project_root: Path, target: str | Target, owner: str) -> bool:
    t = target if isinstance(target, Target) else get_target(target)
    return has(t.hooks_document(project_root), owner)
