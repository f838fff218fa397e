from __future__ import annotations

import os
import re
from typing import Any, Mapping

from .models import Descriptor, EntryPayload


# ${VAR_NAME}
ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")


def extract_env_vars(content: Any) -> tuple[str, ...]:
    """Environment names referenced anywhere in a string/list/dict payload, in first-seen order."""

    found: dict[str, None] = {}
    stack = [content]
    while stack:
        value = stack.pop()
        if isinstance(value, str):
            for m in ENV_VAR_PATTERN.finditer(value):
                found.setdefault(m.group(1), None)
        elif isinstance(value, dict):
            stack.extend(reversed(list(value.values())))
        elif isinstance(value, (list, tuple)):
            stack.extend(reversed(value))
    return tuple(found)


def missing_env_vars(names: tuple[str, ...], environ: Mapping[str, str] | None = None) -> tuple[str, ...]:
    env = os.environ if environ is None else environ
    # Set-but-empty counts as missing.
    return tuple(n for n in names if not env.get(n))


def missing_environment(descriptor: Descriptor, environ: Mapping[str, str] | None = None) -> tuple[str, ...]:
    """Names referenced by a JSON_ENTRY payload that are unset in the environment."""

    if not isinstance(descriptor.payload, EntryPayload):
        return ()
    return missing_env_vars(extract_env_vars(descriptor.payload.config), environ)


def format_env_warning(missing: tuple[str, ...], address: str) -> str:
    if not missing:
        return ""
    lines = [f"warning: {address} requires environment variables that are not set:"]
    for name in missing:
        lines.append(f"  {name}")
    lines.append("  Add to your shell profile, e.g.:")
    for name in missing:
        lines.append(f'  export {name}="your_value_here"')
    return "\n".join(lines)
