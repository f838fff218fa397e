from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from . import paths
from .errors import ConfigParseError, ConfigValidationError


try:  # Python 3.11+
    import tomllib as _tomllib  # type: ignore
except ModuleNotFoundError:  # pragma: no cover (dev envs < 3.11)
    import tomli as _tomllib  # type: ignore


KNOWN_TARGETS = ("claude", "cursor")


@dataclass(frozen=True)
class CatalogConfig:
    dir: str | None = None


@dataclass(frozen=True)
class TargetsConfig:
    # None means "detect from the project directory".
    enabled: tuple[str, ...] | None = None


@dataclass(frozen=True)
class SyncConfig:
    backup_suffix: str = ".local"


@dataclass(frozen=True)
class HandsConfig:
    version: int = 1
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    targets: TargetsConfig = field(default_factory=TargetsConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)


def _load_toml(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigValidationError(path=path, message="file not found") from e
    except OSError as e:
        raise ConfigValidationError(path=path, message=f"unable to read file: {e}") from e

    try:
        data = _tomllib.loads(text)
    except Exception as e:
        # tomllib/tomli both raise TOMLDecodeError with msg/lineno/colno.
        msg = getattr(e, "msg", str(e))
        lineno = getattr(e, "lineno", None)
        colno = getattr(e, "colno", None)
        raise ConfigParseError(path=path, message=str(msg), lineno=lineno, colno=colno) from e

    if not isinstance(data, dict):
        raise ConfigValidationError(path=path, message="top-level TOML must be a table")
    return data


def _unknown_keys_message(unknown: set[str]) -> str:
    keys = ", ".join(sorted(unknown))
    return f"unknown keys: {keys}"


def _optional_table(path: Path, value: Any, where: str) -> dict[str, Any] | None:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigValidationError(path=path, message=f"{where}: expected table")
    return value


def _require_str(path: Path, value: Any, where: str) -> str:
    if not isinstance(value, str):
        raise ConfigValidationError(path=path, message=f"{where}: expected string")
    return value


def _require_int(path: Path, value: Any, where: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigValidationError(path=path, message=f"{where}: expected integer")
    return value


def _require_str_list(path: Path, value: Any, where: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigValidationError(path=path, message=f"{where}: expected list of strings")
    return value


def parse_hands_toml_file(path: Path | None = None) -> HandsConfig:
    """Load + validate hands.toml into a typed config model.

    A missing default manifest is not an error: every setting has a default.
    An explicitly passed path must exist.
    """

    if path is None:
        p = paths.manifest_path()
        if not p.exists():
            return HandsConfig()
    else:
        p = path
    data = _load_toml(p)
    return _parse_hands(p, data)


def _parse_hands(path: Path, data: dict[str, Any]) -> HandsConfig:
    allowed_top = {"version", "catalog", "targets", "sync"}
    unknown_top = set(data.keys()) - allowed_top
    if unknown_top:
        raise ConfigValidationError(path=path, message=_unknown_keys_message(unknown_top))

    version = _require_int(path, data.get("version"), "version")
    if version != 1:
        raise ConfigValidationError(path=path, message=f"version: expected 1, got {version}")

    catalog = CatalogConfig()
    catalog_tbl = _optional_table(path, data.get("catalog"), "catalog")
    if catalog_tbl is not None:
        unknown = set(catalog_tbl.keys()) - {"dir"}
        if unknown:
            raise ConfigValidationError(path=path, message=f"catalog: {_unknown_keys_message(unknown)}")
        if "dir" in catalog_tbl:
            catalog = replace(catalog, dir=_require_str(path, catalog_tbl.get("dir"), "catalog.dir"))

    targets = TargetsConfig()
    targets_tbl = _optional_table(path, data.get("targets"), "targets")
    if targets_tbl is not None:
        unknown = set(targets_tbl.keys()) - {"enabled"}
        if unknown:
            raise ConfigValidationError(path=path, message=f"targets: {_unknown_keys_message(unknown)}")
        if "enabled" in targets_tbl:
            enabled = _require_str_list(path, targets_tbl.get("enabled"), "targets.enabled")
            bad = [t for t in enabled if t not in KNOWN_TARGETS]
            if bad:
                raise ConfigValidationError(
                    path=path,
                    message=f"targets.enabled: expected any of {list(KNOWN_TARGETS)}, got {bad}",
                )
            # Keep the canonical target order regardless of how they were listed.
            targets = replace(targets, enabled=tuple(t for t in KNOWN_TARGETS if t in enabled))

    sync = SyncConfig()
    sync_tbl = _optional_table(path, data.get("sync"), "sync")
    if sync_tbl is not None:
        unknown = set(sync_tbl.keys()) - {"backupSuffix"}
        if unknown:
            raise ConfigValidationError(path=path, message=f"sync: {_unknown_keys_message(unknown)}")
        if "backupSuffix" in sync_tbl:
            suffix = _require_str(path, sync_tbl.get("backupSuffix"), "sync.backupSuffix")
            if not suffix or "/" in suffix:
                raise ConfigValidationError(
                    path=path, message="sync.backupSuffix: expected a non-empty suffix without '/'"
                )
            sync = replace(sync, backup_suffix=suffix)

    return HandsConfig(version=version, catalog=catalog, targets=targets, sync=sync)


def resolve_catalog_dir(cfg: HandsConfig, *, root: Path, override: Path | None = None) -> Path:
    """Pick the catalog directory: explicit override > HANDS_CATALOG > [catalog].dir > default."""

    if override is not None:
        return Path(override).expanduser().resolve()
    if cfg.catalog.dir is None or os.environ.get("HANDS_CATALOG"):
        return paths.default_catalog_dir()
    d = Path(cfg.catalog.dir).expanduser()
    if not d.is_absolute():
        d = root / d
    return d.resolve()
