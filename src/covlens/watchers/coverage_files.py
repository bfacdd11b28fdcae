"""Polling watcher for coverage report files.

Coverage reports are rewritten by the test runner after every run. The
watcher snapshots report modification times under the watched directories
and emits a debounced event once the writes have settled, so consumers can
reload coverage from scratch.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from covlens.config import WatchConfig
from covlens.utils.globs import matches_any

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


@dataclass
class FileChange:
    """A single file change event."""

    path: str
    """Absolute path of the changed file."""

    change_type: str
    """Type of change: 'modified', 'created', or 'deleted'."""

    timestamp: float
    """Unix timestamp when the change was detected."""


@dataclass
class WatchEvent:
    """A batch of coverage file changes."""

    changes: list[FileChange] = field(default_factory=list)

    @property
    def paths(self) -> list[str]:
        """Changed paths in detection order."""
        return [change.path for change in self.changes]


class CoverageFileWatcher:
    """Polling watcher over the directories coverage reports are written to.

    Directories that do not exist yet are watched anyway; reports appearing
    in them later are reported as created.
    """

    def __init__(self, directories: Iterable[str | Path], config: WatchConfig | None = None) -> None:
        """Initialize the watcher.

        Args:
            directories: Directories to scan (recursively).
            config: Watch configuration. Uses defaults if not provided.
        """
        self._directories = sorted({Path(d).resolve() for d in directories})
        self._config = config or WatchConfig()
        self._file_mtimes: dict[str, float] = {}
        self._pending_changes: list[FileChange] = []
        self._last_change_time: float = 0.0
        self._running: bool = False
        self._lock: threading.Lock = threading.Lock()

    @property
    def directories(self) -> list[Path]:
        return list(self._directories)

    @property
    def running(self) -> bool:
        """Whether the watcher is currently running."""
        return self._running

    def start(self) -> None:
        """Start watching; takes the initial modification-time snapshot."""
        with self._lock:
            self._running = True
            self._file_mtimes = self._scan_files()
            self._pending_changes.clear()
        logger.info(
            "Coverage watcher started, monitoring %d files in %d directories",
            len(self._file_mtimes),
            len(self._directories),
        )

    def stop(self) -> None:
        """Stop watching for file changes."""
        self._running = False
        logger.info("Coverage watcher stopped")

    def poll(self) -> WatchEvent | None:
        """Poll for coverage file changes.

        Returns:
            A WatchEvent once ``debounce_delay`` seconds have passed since
            the last detected change, otherwise None.
        """
        with self._lock:
            current = self._scan_files()
            new_changes = self._detect_changes(current)

            if new_changes:
                self._pending_changes.extend(new_changes)
                self._last_change_time = time.time()

            if not self._pending_changes:
                return None

            elapsed = time.time() - self._last_change_time
            if elapsed < self._config.debounce_delay:
                return None

            changes = list(self._pending_changes)
            self._pending_changes.clear()

        logger.debug("Coverage files changed: %s", [c.path for c in changes])
        return WatchEvent(changes=changes)

    def _scan_files(self) -> dict[str, float]:
        """Map every matching file under the watched directories to its mtime."""
        result: dict[str, float] = {}
        for directory in self._directories:
            if not directory.is_dir():
                continue
            try:
                for file_path in directory.rglob("*"):
                    if not file_path.is_file():
                        continue
                    relative = file_path.relative_to(directory).as_posix()
                    if not matches_any(relative, self._config.patterns):
                        continue
                    try:
                        result[str(file_path)] = file_path.stat().st_mtime
                    except OSError:
                        continue
            except OSError:
                logger.warning("Failed to scan coverage directory: %s", directory)
        return result

    def _detect_changes(self, current: dict[str, float]) -> list[FileChange]:
        """Diff *current* against the stored snapshot and replace it."""
        now = time.time()
        changes: list[FileChange] = []

        for path, mtime in current.items():
            if path not in self._file_mtimes:
                changes.append(FileChange(path=path, change_type="created", timestamp=now))
            elif mtime != self._file_mtimes[path]:
                changes.append(FileChange(path=path, change_type="modified", timestamp=now))

        deleted_paths = set(self._file_mtimes) - set(current)
        changes.extend(
            FileChange(path=path, change_type="deleted", timestamp=now)
            for path in sorted(deleted_paths)
        )

        self._file_mtimes = dict(current)
        return changes
