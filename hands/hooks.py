"""Canonical hook model.

The canonical form is tool-neutral and is never written to a project
directly; adapters translate it per target:

    {"<event>": [{"matcher": "<pattern>", "command": "<string>"}, ...]}

`matcher` is optional and defaults to "*".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from .errors import HookConfigError


DEFAULT_MATCHER = "*"

EVENTS = (
    "stop",
    "preToolUse",
    "postToolUse",
    "notification",
    "subagentStop",
    "sessionStart",
    "sessionEnd",
)


@dataclass(frozen=True)
class HookTrigger:
    command: str
    matcher: str = DEFAULT_MATCHER

    def to_dict(self) -> dict[str, str]:
        return {"matcher": self.matcher, "command": self.command}


@dataclass(frozen=True)
class HookConfig:
    # Unknown event names are kept here; adapters ignore them.
    events: tuple[tuple[str, tuple[HookTrigger, ...]], ...] = ()

    def items(self) -> tuple[tuple[str, tuple[HookTrigger, ...]], ...]:
        return self.events

    def to_dict(self) -> dict[str, Any]:
        return {event: [t.to_dict() for t in triggers] for event, triggers in self.events}

    @classmethod
    def from_dict(cls, data: Any) -> "HookConfig":
        if not isinstance(data, Mapping):
            raise HookConfigError("hook config: top-level must be an object")

        events: list[tuple[str, tuple[HookTrigger, ...]]] = []
        for event, raw_entries in data.items():
            if not isinstance(event, str) or not event:
                raise HookConfigError("hook config: event names must be non-empty strings")
            if not isinstance(raw_entries, list):
                raise HookConfigError(f"hook config: {event} must be a list")
            triggers: list[HookTrigger] = []
            for i, entry in enumerate(raw_entries):
                if not isinstance(entry, Mapping):
                    raise HookConfigError(f"hook config: {event}[{i}] must be an object")
                command = entry.get("command")
                if not isinstance(command, str) or not command.strip():
                    raise HookConfigError(f"hook config: {event}[{i}].command must be a non-empty string")
                matcher = entry.get("matcher")
                if matcher is None or matcher == "":
                    matcher = DEFAULT_MATCHER
                if not isinstance(matcher, str):
                    raise HookConfigError(f"hook config: {event}[{i}].matcher must be a string")
                triggers.append(HookTrigger(command=command, matcher=matcher))
            events.append((event, tuple(triggers)))
        return cls(events=tuple(events))
