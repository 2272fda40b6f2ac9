"""Working-copy layout and source profile discovery."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger("sessionvault.paths")

_WINDOWS_MOUNTS = ("/mnt/c", "/mnt/d")
_SKIPPED_WINDOWS_USERS = {"Public", "Default", "Default User", "All Users"}


@dataclass(frozen=True)
class WorkingPaths:
    root: Path
    projects_dir: Path
    todos_dir: Path
    stats_file: Path
    history_file: Path
    sync_state_file: Path


def working_paths(data_dir: Path) -> WorkingPaths:
    root = Path(data_dir)
    return WorkingPaths(
        root=root,
        projects_dir=root / "projects",
        todos_dir=root / "todos",
        stats_file=root / "stats-cache.json",
        history_file=root / "history.jsonl",
        sync_state_file=root / "sync-state.json",
    )


def is_wsl(proc_version: Path = Path("/proc/version")) -> bool:
    try:
        return "microsoft" in proc_version.read_text(encoding="utf-8").lower()
    except OSError:
        return False


def detect_windows_claude_dirs(mounts: tuple[str, ...] = _WINDOWS_MOUNTS, force: bool = False) -> list[Path]:
    """Find Windows-side profiles reachable from inside WSL."""
    if not force and not is_wsl():
        return []

    found: list[Path] = []
    for mount in mounts:
        users_dir = Path(mount) / "Users"
        try:
            users = sorted(p for p in users_dir.iterdir() if p.is_dir())
        except OSError:
            continue
        for user_dir in users:
            if user_dir.name in _SKIPPED_WINDOWS_USERS:
                continue
            claude_dir = user_dir / ".claude"
            if (claude_dir / "projects").is_dir():
                found.append(claude_dir)

    if found:
        logger.info("Detected Windows-side profiles: %s", [str(p) for p in found])
    return found
