"""Content fingerprints.

A fingerprint is "sha256:<hex>" over a descriptor's payload:
- files: raw bytes
- directories: (relative path, bytes) for every regular file, sorted
- JSON entries: canonical serialization (sorted keys, compact separators)

A source that cannot be read yields None. Callers treat None as
"cannot determine, assume changed".
"""

from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path
from typing import Any

from .models import EntryPayload, FilePayload, Payload


def canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return "sha256:" + h.hexdigest()


def tree_digest(root: Path) -> str:
    """Compute a deterministic digest for a directory tree.

    Digest is over (relative path, file bytes) for all regular files.
    """

    root = root.resolve()
    h = hashlib.sha256()
    for p in sorted(root.rglob("*")):
        if p.is_dir() and not p.is_symlink():
            continue
        rel = p.relative_to(root).as_posix().encode("utf-8")
        if p.is_symlink():
            # Hash link target path string (do not follow).
            h.update(b"L")
            h.update(rel)
            h.update(b"\0")
            h.update(os.readlink(p).encode("utf-8"))
            h.update(b"\0")
            continue
        if not p.is_file():
            continue
        h.update(b"F")
        h.update(rel)
        h.update(b"\0")
        h.update(p.read_bytes())
        h.update(b"\0")
    return "sha256:" + h.hexdigest()


def fingerprint_json(obj: Any) -> str:
    return "sha256:" + hashlib.sha256(canonical_json(obj).encode("utf-8")).hexdigest()


def fingerprint_path(path: Path) -> str | None:
    try:
        if path.is_dir():
            return tree_digest(path)
        return _sha256_file(path)
    except OSError:
        return None


def fingerprint(payload: Payload) -> str | None:
    if isinstance(payload, FilePayload):
        return fingerprint_path(payload.source)
    if isinstance(payload, EntryPayload):
        return fingerprint_json(payload.config)
    raise AssertionError(f"unhandled payload type: {type(payload).__name__}")
