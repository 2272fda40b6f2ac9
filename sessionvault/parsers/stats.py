"""Readers for the global stats snapshot and the prompt history log."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from sessionvault.models import GlobalStats, PromptEntry

logger = logging.getLogger("sessionvault.stats")


def read_stats_cache(path: Path) -> Optional[GlobalStats]:
    """Best-effort read of ``stats-cache.json``; missing or corrupt yields None."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.warning("Failed to read stats cache %s: %s", path, e)
        return None
    try:
        return GlobalStats.model_validate(data)
    except ValidationError as e:
        logger.warning("Ignoring invalid stats cache %s: %s", path, e)
        return None


def read_prompt_history(path: Path) -> list[PromptEntry]:
    """Read ``history.jsonl`` skipping malformed lines; missing yields []."""
    try:
        text = Path(path).read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return []
    except OSError as e:
        logger.warning("Failed to read prompt history %s: %s", path, e)
        return []

    entries: list[PromptEntry] = []
    for line in text.splitlines():
        if not line.strip():
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(obj, dict):
            continue
        pasted = obj.get("pastedContents")
        timestamp = obj.get("timestamp")
        entries.append(
            PromptEntry(
                display=str(obj.get("display") or ""),
                pastedContents=pasted if isinstance(pasted, dict) else {},
                timestamp=int(timestamp) if isinstance(timestamp, (int, float)) else 0,
                project=str(obj.get("project") or ""),
                sessionId=str(obj.get("sessionId") or ""),
            )
        )
    return entries
