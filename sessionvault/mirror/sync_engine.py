"""Incremental source → working-copy mirror.

Copies an allow-listed subset of one or more assistant profile directories
into the data directory. Change detection is mtime + size based, recorded in
a persisted inventory. Nothing in the destination is ever deleted.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from sessionvault import config
from sessionvault.date_utils import utc_now_iso
from sessionvault.mirror.history import history_shadow_name, merge_history_files
from sessionvault.mirror.migrations import inventory_key, load_sync_state, save_sync_state
from sessionvault.models import SyncError, SyncState, SyncStatus, SyncedFile
from sessionvault.observability import otel
from sessionvault.paths import working_paths

logger = logging.getLogger("sessionvault.sync")

LAST_SOURCE_WINS = "last-source-wins"
PER_SOURCE_MERGE = "per-source-merge"


@dataclass(frozen=True)
class SyncTarget:
    relative_path: str
    is_dir: bool
    policy: str = LAST_SOURCE_WINS


SYNC_TARGETS: tuple[SyncTarget, ...] = (
    SyncTarget("projects", is_dir=True),
    SyncTarget("todos", is_dir=True),
    SyncTarget("stats-cache.json", is_dir=False),
    SyncTarget("history.jsonl", is_dir=False, policy=PER_SOURCE_MERGE),
)

# Keyed by top-level directory name; directories without an entry copy everything.
DIR_FILTERS: dict[str, tuple[str, ...]] = {
    "projects": (".jsonl", ".txt"),
    "todos": (".json",),
}


def is_allowed(relative_path: str, dir_filters: dict[str, tuple[str, ...]] = DIR_FILTERS) -> bool:
    top = relative_path.split("/", 1)[0]
    extensions = dir_filters.get(top)
    if extensions is None:
        return True
    return relative_path.endswith(extensions)


class _CycleCounters:
    def __init__(self) -> None:
        self.copied = 0
        self.skipped = 0
        self.copied_by_source: dict[int, int] = {}

    def mark_copied(self, source_index: int) -> None:
        self.copied += 1
        self.copied_by_source[source_index] = self.copied_by_source.get(source_index, 0) + 1


class SyncEngine:
    """Mirrors source profiles into ``data_dir`` and tracks what was copied."""

    def __init__(
        self,
        source_dirs: Iterable[Path | str],
        data_dir: Path | str,
        targets: tuple[SyncTarget, ...] = SYNC_TARGETS,
        state_file: Path | None = None,
        dir_filters: dict[str, tuple[str, ...]] | None = None,
        error_limit: int | None = None,
    ):
        self.source_dirs = [Path(p) for p in source_dirs]
        self.data_dir = Path(data_dir)
        self.targets = targets
        self.state_file = Path(state_file) if state_file else working_paths(self.data_dir).sync_state_file
        self.dir_filters = DIR_FILTERS if dir_filters is None else dir_filters
        self.error_limit = error_limit or config.SYNC_ERROR_LIMIT
        self._state: SyncState | None = None
        self._is_syncing = False
        # Guards the inventory and error ring; the cycle mutates them off the event loop.
        self._lock = threading.RLock()

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    @property
    def state(self) -> SyncState:
        with self._lock:
            if self._state is None:
                self._state = load_sync_state(self.state_file, self._source_names())
            return self._state

    def _source_names(self) -> list[str]:
        return [str(p) for p in self.source_dirs]

    def needs_initial_sync(self) -> bool:
        return not self.state_file.exists()

    def get_status(self) -> SyncStatus:
        with self._lock:
            state = self.state
            entries = list(state.fileInventory.values())
            errors = list(state.errors)
            last_sync_at = state.lastSyncAt
            duration_ms = state.lastSyncDurationMs
            sync_count = state.syncCount
        return SyncStatus(
            lastSyncAt=last_sync_at or None,
            lastSyncDurationMs=duration_ms,
            syncCount=sync_count,
            sourceDirs=self._source_names(),
            totalFiles=len(entries),
            totalSizeBytes=sum(entry.sourceSizeBytes for entry in entries),
            errors=errors,
            isSyncing=self._is_syncing,
        )

    async def run_sync(self) -> SyncStatus:
        """Run one mirror cycle. A call made while a cycle runs returns the current status."""
        if self._is_syncing:
            logger.info("Sync already in progress; returning current status")
            return self.get_status()

        self._is_syncing = True
        try:
            await asyncio.to_thread(self._run_cycle)
        finally:
            self._is_syncing = False
        return self.get_status()

    # ── Cycle ──────────────────────────────────────────────────────

    def _run_cycle(self) -> None:
        started = time.monotonic()
        state = self.state
        with self._lock:
            state.errors = []
        state.sourceDirs = self._source_names()
        counters = _CycleCounters()
        result = "completed"

        with otel.start_span("sync.cycle", {"sources": len(self.source_dirs)}):
            try:
                self.data_dir.mkdir(parents=True, exist_ok=True)
                for target in self.targets:
                    if target.is_dir:
                        for idx, source in enumerate(self.source_dirs):
                            self._sync_directory(
                                source / target.relative_path,
                                self.data_dir / target.relative_path,
                                target.relative_path,
                                idx,
                                counters,
                            )
                    elif target.policy == PER_SOURCE_MERGE:
                        self._sync_merged_log(target.relative_path, counters)
                    else:
                        self._sync_single_file(target.relative_path, counters)

                duration_ms = int((time.monotonic() - started) * 1000)
                with self._lock:
                    state.lastSyncAt = utc_now_iso()
                    state.lastSyncDurationMs = duration_ms
                    state.syncCount += 1
                    self._trim_errors()
                    save_sync_state(state, self.state_file)
            except Exception as e:
                result = "failed"
                logger.exception("Sync cycle failed: %s", e)

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Sync %s: copied=%d skipped=%d errors=%d duration=%dms",
            result,
            counters.copied,
            counters.skipped,
            len(state.errors),
            duration_ms,
        )
        otel.record_sync(result, duration_ms, copied_by_source=counters.copied_by_source)

    def _record_error(self, relative_path: str, source_index: int | None, error: Exception) -> None:
        logger.warning("Sync error [%s] source=%s: %s", relative_path, source_index, error)
        entry = SyncError(
            timestamp=utc_now_iso(),
            relativePath=relative_path,
            sourceIndex=source_index,
            error=str(error),
        )
        with self._lock:
            self.state.errors.append(entry)
            self._trim_errors()

    def _trim_errors(self) -> None:
        with self._lock:
            errors = self.state.errors
            if len(errors) > self.error_limit:
                del errors[: len(errors) - self.error_limit]

    # ── Copy primitives ────────────────────────────────────────────

    def _is_unchanged(self, key: str, st: os.stat_result, dest: Path) -> bool:
        entry = self.state.fileInventory.get(key)
        return (
            entry is not None
            and entry.sourceMtimeMs == st.st_mtime_ns / 1_000_000
            and entry.sourceSizeBytes == st.st_size
            and dest.exists()
        )

    def _copy(self, src: Path, dest: Path, relative_path: str, source_index: int, st: os.stat_result) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp = dest.with_name(f".{dest.name}.sv-tmp")
        shutil.copy2(src, tmp)
        os.replace(tmp, dest)
        entry = SyncedFile(
            relativePath=relative_path,
            sourceIndex=source_index,
            sourceMtimeMs=st.st_mtime_ns / 1_000_000,
            sourceSizeBytes=st.st_size,
            syncedAt=utc_now_iso(),
        )
        with self._lock:
            self.state.fileInventory[inventory_key(source_index, relative_path)] = entry

    def _copy_if_changed(
        self,
        src: Path,
        dest: Path,
        relative_path: str,
        source_index: int,
        counters: _CycleCounters,
    ) -> bool:
        st = src.stat()
        if self._is_unchanged(inventory_key(source_index, relative_path), st, dest):
            counters.skipped += 1
            return False
        self._copy(src, dest, relative_path, source_index, st)
        counters.mark_copied(source_index)
        return True

    # ── Target kinds ───────────────────────────────────────────────

    def _sync_directory(
        self,
        src_dir: Path,
        dest_dir: Path,
        rel_base: str,
        source_index: int,
        counters: _CycleCounters,
    ) -> None:
        try:
            entries = sorted(os.scandir(src_dir), key=lambda entry: entry.name)
        except FileNotFoundError:
            return
        except OSError as e:
            self._record_error(rel_base, source_index, e)
            return

        for entry in entries:
            relative_path = f"{rel_base}/{entry.name}"
            try:
                if entry.is_dir():
                    self._sync_directory(Path(entry.path), dest_dir / entry.name, relative_path, source_index, counters)
                elif entry.is_file() and is_allowed(relative_path, self.dir_filters):
                    self._copy_if_changed(Path(entry.path), dest_dir / entry.name, relative_path, source_index, counters)
            except FileNotFoundError:
                continue
            except OSError as e:
                self._record_error(relative_path, source_index, e)

    def _sync_single_file(self, relative_path: str, counters: _CycleCounters) -> None:
        """Last configured source that has the file wins."""
        present: list[tuple[int, Path, os.stat_result]] = []
        for idx, source in enumerate(self.source_dirs):
            src = source / relative_path
            try:
                present.append((idx, src, src.stat()))
            except FileNotFoundError:
                continue
            except OSError as e:
                self._record_error(relative_path, idx, e)

        if not present:
            return

        winner, src, st = present[-1]
        dest = self.data_dir / relative_path
        inventory = self.state.fileInventory
        entry = inventory.get(inventory_key(winner, relative_path))
        latest_other = max(
            (
                other.syncedAt
                for idx in range(len(self.source_dirs))
                if idx != winner and (other := inventory.get(inventory_key(idx, relative_path))) is not None
            ),
            default="",
        )
        if (
            entry is not None
            and entry.syncedAt >= latest_other
            and self._is_unchanged(inventory_key(winner, relative_path), st, dest)
        ):
            counters.skipped += 1
            return

        try:
            self._copy(src, dest, relative_path, winner, st)
            counters.mark_copied(winner)
        except FileNotFoundError:
            return
        except OSError as e:
            self._record_error(relative_path, winner, e)

    def _sync_merged_log(self, relative_path: str, counters: _CycleCounters) -> None:
        """Mirror each source's log to its own shadow, then merge the shadows."""
        changed = False
        shadows: list[Path] = []
        for idx, source in enumerate(self.source_dirs):
            shadow = self.data_dir / history_shadow_name(idx)
            try:
                changed |= self._copy_if_changed(source / relative_path, shadow, relative_path, idx, counters)
            except FileNotFoundError:
                pass
            except OSError as e:
                self._record_error(relative_path, idx, e)
            if shadow.exists():
                shadows.append(shadow)

        merged = self.data_dir / relative_path
        if not shadows or not (changed or not merged.exists()):
            return
        try:
            merge_history_files(shadows, merged)
        except OSError as e:
            self._record_error(relative_path, None, e)
