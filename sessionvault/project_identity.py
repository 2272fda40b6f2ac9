"""Project identity helpers for path-encoded project directory names.

The assistant stores each project under a directory whose name is the
project's absolute path with separators replaced by ``-``. The same Windows
folder shows up as ``E--work-app`` when recorded natively (``E:\\work\\app``)
and as ``-mnt-e-work-app`` when recorded from WSL (``/mnt/e/work/app``).
"""
from __future__ import annotations

import re

_WSL_MOUNT_PATTERN = re.compile(r"^-mnt-([A-Za-z])(?:-(.*))?$")
_DRIVE_LETTER_PATTERN = re.compile(r"^([A-Za-z])--(.*)$")
_SESSION_ID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def canonical_project_id(raw_id: str) -> str:
    """Rewrite alternate encodings of one real path to a single canonical id.

    Examples:
      -mnt-e-foo -> E--foo
      e--foo     -> E--foo
      -home-me-x -> -home-me-x
    """
    match = _WSL_MOUNT_PATTERN.match(raw_id)
    if match:
        drive, rest = match.group(1), match.group(2) or ""
        return f"{drive.upper()}--{rest}"

    match = _DRIVE_LETTER_PATTERN.match(raw_id)
    if match:
        return f"{match.group(1).upper()}--{match.group(2)}"

    return raw_id


def decode_project_path(project_id: str) -> str:
    """Best-effort display path. Dashes inside segment names are ambiguous."""
    match = _DRIVE_LETTER_PATTERN.match(project_id)
    if match:
        rest = match.group(2).replace("-", "\\")
        return f"{match.group(1).upper()}:\\{rest}"
    if project_id.startswith("-"):
        return "/" + project_id[1:].replace("-", "/")
    return project_id


def project_display_name(project_id: str) -> str:
    parts = [part for part in project_id.split("-") if part]
    return parts[-1] if parts else project_id


def looks_like_session_id(name: str) -> bool:
    return bool(_SESSION_ID_PATTERN.match(name))


def group_project_ids(raw_ids: list[str]) -> dict[str, list[str]]:
    """Group raw directory names by canonical id, keeping first-seen order."""
    groups: dict[str, list[str]] = {}
    for raw_id in raw_ids:
        groups.setdefault(canonical_project_id(raw_id), []).append(raw_id)
    return groups
