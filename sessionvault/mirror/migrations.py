"""Persisted sync-state loading, versioning and migration.

Each migration step is a pure ``dict -> dict`` function that lifts a state
document by exactly one version. ``migrate_state`` applies them in order.
"""
from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from sessionvault.models import SyncState

logger = logging.getLogger("sessionvault.sync")

CURRENT_VERSION = 2


def fresh_state(source_dirs: list[str] | None = None) -> SyncState:
    return SyncState(version=CURRENT_VERSION, sourceDirs=list(source_dirs or []))


def inventory_key(source_index: int, relative_path: str) -> str:
    return f"{source_index}:{relative_path}"


def migrate_v1_to_v2(data: dict[str, Any]) -> dict[str, Any]:
    """Single source root → ordered source list; inventory keys gain ``0:``."""
    migrated = copy.deepcopy(data)
    source_dir = migrated.pop("sourceDir", "") or ""
    migrated["sourceDirs"] = [source_dir] if source_dir else []

    inventory: dict[str, Any] = {}
    for rel, entry in (migrated.get("fileInventory") or {}).items():
        if not isinstance(entry, dict):
            continue
        relative_path = entry.get("relativePath") or rel
        inventory[inventory_key(0, relative_path)] = {**entry, "relativePath": relative_path, "sourceIndex": 0}
    migrated["fileInventory"] = inventory

    migrated["errors"] = [
        {**error, "sourceIndex": 0}
        for error in (migrated.get("errors") or [])
        if isinstance(error, dict)
    ]
    migrated["version"] = 2
    return migrated


MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: migrate_v1_to_v2,
}


def migrate_state(data: dict[str, Any]) -> dict[str, Any]:
    """Apply every pending migration. Raises ``ValueError`` for unknown versions."""
    version = data.get("version", 1)
    if not isinstance(version, int) or version < 1:
        raise ValueError(f"Invalid sync state version: {version!r}")
    if version > CURRENT_VERSION:
        raise ValueError(f"Sync state version {version} is newer than supported ({CURRENT_VERSION})")

    while version < CURRENT_VERSION:
        step = MIGRATIONS.get(version)
        if step is None:
            raise ValueError(f"No migration registered for sync state version {version}")
        data = step(data)
        logger.info("Migrated sync state v%d -> v%d", version, data["version"])
        version = data["version"]
    return data


def remap_sources(state: SyncState, source_dirs: list[str]) -> SyncState:
    """Re-key inventory entries when the configured source list changed order.

    Entries of sources that are no longer configured are dropped from the
    inventory; their mirrored files stay on disk.
    """
    if state.sourceDirs == source_dirs:
        return state

    new_index = {path: idx for idx, path in enumerate(source_dirs)}
    inventory = {}
    dropped = 0
    for entry in state.fileInventory.values():
        old_path = state.sourceDirs[entry.sourceIndex] if entry.sourceIndex < len(state.sourceDirs) else None
        idx = new_index.get(old_path) if old_path is not None else None
        if idx is None:
            dropped += 1
            continue
        entry = entry.model_copy(update={"sourceIndex": idx})
        inventory[inventory_key(idx, entry.relativePath)] = entry

    if dropped:
        logger.info("Dropped %d inventory entries for sources no longer configured", dropped)
    return state.model_copy(update={"fileInventory": inventory, "sourceDirs": list(source_dirs)})


def load_sync_state(path: Path, source_dirs: list[str] | None = None) -> SyncState:
    """Load persisted state; absent, corrupt or unsupported state starts fresh."""
    path = Path(path)
    if not path.exists():
        return fresh_state(source_dirs)

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("sync state is not a JSON object")
        state = SyncState.model_validate(migrate_state(data))
    except (OSError, ValueError, ValidationError) as e:
        logger.warning("Discarding unreadable sync state %s: %s", path, e)
        return fresh_state(source_dirs)

    if source_dirs is not None:
        state = remap_sources(state, list(source_dirs))
    return state


def save_sync_state(state: SyncState, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_text(json.dumps(state.model_dump(), indent=2), encoding="utf-8")
    os.replace(tmp, path)
