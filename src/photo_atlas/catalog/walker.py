"""Cycle-safe recursive media file discovery."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Set, Tuple, Union

from photo_atlas.catalog.config import (
    DIRECTORY_PROGRESS_INTERVAL,
    classify_media,
    is_special_directory,
)
from photo_atlas.catalog.errors import ScanError
from photo_atlas.catalog.models import ProgressEvent, WalkEntry

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressEvent], None]


class DirectoryCatalog(Protocol):
    """The directory bookkeeping a walker needs from the catalog."""

    def add_directory(self, path: str) -> None: ...

    def is_scanned(self, path: str) -> bool: ...


@dataclass
class WalkResult:
    """Media files found by a walk and the directories it visited."""
    entries: List[WalkEntry] = field(default_factory=list)
    directories: List[str] = field(default_factory=list)


def join_relative(parent: str, name: str) -> str:
    return name if not parent else f"{parent}/{name}"


def emit_progress(sink: Optional[ProgressSink], event: ProgressEvent) -> None:
    """Deliver a progress event without letting the sink break the caller."""
    if sink is None:
        return
    try:
        sink(event)
    except Exception as e:  # noqa: BLE001
        logger.warning(f"Progress callback failed for {event.phase} event: {e}")


class DirectoryWalker:
    """Enumerates media files below a root directory.

    Symbolic links are never followed, every directory is tracked by its
    canonical path so a tree containing loops is visited at most once per
    real directory, and hidden or system folders are excluded.
    """

    def __init__(
        self,
        catalog: Optional[DirectoryCatalog] = None,
        progress: Optional[ProgressSink] = None,
    ):
        self.catalog = catalog
        self.progress = progress
        self._stats = {"directories": 0, "files": 0, "errors": 0, "cycles": 0, "pruned": 0}

    def walk(self, root: Union[str, Path], skip_scanned: bool = False) -> WalkResult:
        """Walk a root directory depth-first.

        Args:
            root: Directory to walk
            skip_scanned: Prune subdirectories the catalog reports as scanned

        Returns:
            WalkResult with media entries in deterministic (name-sorted) order

        Raises:
            ScanError: If the root is missing or cannot be listed
        """
        root_path = Path(root)
        if not root_path.is_dir():
            raise ScanError(f"Not a directory: {root}")

        self._stats = dict.fromkeys(self._stats, 0)
        result = WalkResult()
        visited: Set[str] = set()
        # Explicit stack keeps deep trees clear of the recursion limit
        stack: List[Tuple[str, str]] = [(str(root_path), "")]

        while stack:
            dir_path, relative_dir = stack.pop()

            canonical = os.path.realpath(dir_path)
            if canonical in visited:
                logger.info(f"Skipping directory already visited in this walk: {dir_path}")
                self._stats["cycles"] += 1
                continue
            visited.add(canonical)

            if len(visited) % DIRECTORY_PROGRESS_INTERVAL == 0:
                emit_progress(self.progress, ProgressEvent(phase="directory", count=len(visited)))

            try:
                with os.scandir(dir_path) as it:
                    entries = sorted(it, key=lambda entry: entry.name)
            except OSError as e:
                if not relative_dir:
                    raise ScanError(f"Cannot read root directory {dir_path}: {e}") from e
                logger.warning(f"Cannot read directory {dir_path}: {e}")
                self._stats["errors"] += 1
                continue

            # Only directories that were actually listed count as scanned
            result.directories.append(relative_dir)
            self._stats["directories"] += 1

            subdirectories = []
            for entry in entries:
                try:
                    if entry.is_symlink():
                        continue
                    if entry.is_dir(follow_symlinks=False):
                        if is_special_directory(entry.name):
                            continue
                        relative_subdir = join_relative(relative_dir, entry.name)
                        if skip_scanned and self.catalog and self.catalog.is_scanned(relative_subdir):
                            logger.debug(f"Pruning already scanned directory: {relative_subdir}")
                            self._stats["pruned"] += 1
                            continue
                        if self.catalog:
                            self.catalog.add_directory(relative_subdir)
                        subdirectories.append((entry.path, relative_subdir))
                    elif entry.is_file(follow_symlinks=False):
                        kind = classify_media(entry.name)
                        if kind is None:
                            continue
                        result.entries.append(
                            WalkEntry(
                                directory=relative_dir,
                                filename=entry.name,
                                absolute_path=entry.path,
                                kind=kind,
                            )
                        )
                        self._stats["files"] += 1
                except OSError as e:
                    logger.debug(f"Skipping unreadable entry {entry.path}: {e}")
                    self._stats["errors"] += 1

            # Reversed so the first subdirectory by name is walked first
            stack.extend(reversed(subdirectories))

        logger.info(
            f"Walk completed: {self._stats['directories']} directories, "
            f"{self._stats['files']} media files, {self._stats['pruned']} pruned, "
            f"{self._stats['errors']} errors"
        )
        return result

    def get_stats(self) -> dict:
        """Get walking statistics."""
        return self._stats.copy()


def walk_media(root: Union[str, Path], skip_scanned: bool = False) -> List[WalkEntry]:
    """Convenience function to list media files without a catalog."""
    walker = DirectoryWalker()
    return walker.walk(root, skip_scanned=skip_scanned).entries
