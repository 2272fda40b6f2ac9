"""Merge per-source prompt-history shadows into one combined log."""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger("sessionvault.sync")


def history_shadow_name(source_index: int) -> str:
    return f"history-{source_index}.jsonl"


def _timestamp_key(record: dict[str, Any]) -> float:
    value = record.get("timestamp")
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    return 0.0


def read_history_records(path: Path) -> list[dict[str, Any]]:
    records: list[dict[str, Any]] = []
    with Path(path).open("r", encoding="utf-8", errors="replace") as fh:
        for line_no, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipping malformed history line %d in %s", line_no, path.name)
                continue
            if isinstance(record, dict):
                records.append(record)
    return records


def merge_history_records(sources: list[list[dict[str, Any]]]) -> list[dict[str, Any]]:
    """Deduplicate by (sessionId, timestamp), newest first. First occurrence wins."""
    merged: list[dict[str, Any]] = []
    seen: set[tuple[str, str]] = set()
    for records in sources:
        for record in records:
            key = (str(record.get("sessionId") or ""), json.dumps(record.get("timestamp")))
            if key in seen:
                continue
            seen.add(key)
            merged.append(record)
    merged.sort(key=_timestamp_key, reverse=True)
    return merged


def merge_history_files(shadow_paths: list[Path], dest: Path) -> int:
    """Write the merged history of ``shadow_paths`` to ``dest``; returns records written."""
    sources = [read_history_records(path) for path in shadow_paths if Path(path).exists()]
    merged = merge_history_records(sources)

    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_name(f".{dest.name}.tmp")
    with tmp.open("w", encoding="utf-8") as fh:
        for record in merged:
            fh.write(json.dumps(record, ensure_ascii=False))
            fh.write("\n")
    os.replace(tmp, dest)
    logger.info("Merged %d history records from %d source(s)", len(merged), len(sources))
    return len(merged)
