"""Scan orchestration: walk, extract, infer, store and classify."""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from photo_atlas.catalog.catalog_store import LIBRARY_ROOT_KEY, CatalogStore
from photo_atlas.catalog.config import (
    DEFAULT_MAX_WORKERS,
    DEFAULT_WRITE_BATCH_SIZE,
    EXTRACTION_BATCH_SIZE,
    LocationSource,
    MediaKind,
)
from photo_atlas.catalog.errors import ScanError, ScanInProgressError
from photo_atlas.catalog.extractor import MetadataExtractor
from photo_atlas.catalog.locator import ProximityLocator
from photo_atlas.catalog.matcher import EventMatcher
from photo_atlas.catalog.models import Asset, ProgressEvent, ScanResult, WalkEntry
from photo_atlas.catalog.walker import DirectoryWalker, ProgressSink, emit_progress

logger = logging.getLogger(__name__)


class Ingestor:
    """Runs scan passes over a library root, one at a time per catalog.

    A pass registers the root, walks it, extracts metadata for files not
    yet in the catalog, infers missing locations from geotagged photos of
    the same pass, writes the assets in transactional batches, auto-tags
    them and finally marks every visited directory as scanned.
    """

    def __init__(
        self,
        store: CatalogStore,
        extractor: Optional[MetadataExtractor] = None,
        locator: Optional[ProximityLocator] = None,
        matcher: Optional[EventMatcher] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        batch_size: int = DEFAULT_WRITE_BATCH_SIZE,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.extractor = extractor or MetadataExtractor()
        self.locator = locator or ProximityLocator()
        self.matcher = matcher or EventMatcher(store)
        self.max_workers = max(1, max_workers)
        self.batch_size = batch_size

    @property
    def is_scanning(self) -> bool:
        return self.store.scan_lock.locked()

    def scan(
        self,
        root: Union[str, Path],
        skip_scanned: bool = True,
        progress: Optional[ProgressSink] = None,
    ) -> ScanResult:
        """Scan a library root.

        Args:
            root: Directory to ingest
            skip_scanned: Skip the root, or prune subtrees, already scanned
            progress: Optional callback receiving ProgressEvent objects

        Returns:
            ScanResult counters

        Raises:
            ScanInProgressError: If another scan of the same store is running
            ScanError: If the root cannot be walked
            CatalogWriteError: If a batch write fails
        """
        if not self.store.scan_lock.acquire(blocking=False):
            raise ScanInProgressError("A scan of this catalog is already in progress")
        try:
            return self._scan(Path(root), skip_scanned, progress)
        finally:
            self.store.scan_lock.release()

    def _scan(self, root: Path, skip_scanned: bool, progress: Optional[ProgressSink]) -> ScanResult:
        if not root.is_dir():
            raise ScanError(f"Not a directory: {root}")
        root_str = str(root.resolve())

        root_changed = self.store.get_setting(LIBRARY_ROOT_KEY) != root_str
        if skip_scanned and not root_changed and self.store.is_scanned(""):
            logger.info(f"Library root already scanned, skipping: {root_str}")
            return ScanResult(skipped_directory=True)
        if root_changed and skip_scanned:
            # Relative paths recorded for another root say nothing about this one
            logger.info(f"Library root changed to {root_str}; rescanning every directory")
            skip_scanned = False

        self.store.set_library_root(root_str)
        self.store.add_directory("")

        walker = DirectoryWalker(catalog=self.store, progress=progress)
        walk = walker.walk(root_str, skip_scanned=skip_scanned)

        result = ScanResult()
        pending: List[WalkEntry] = []
        for entry in walk.entries:
            if entry.kind == MediaKind.VIDEO:
                result.total_videos += 1
            else:
                result.total_photos += 1
            if self.store.asset_exists(entry.directory, entry.filename):
                result.skipped_files += 1
            else:
                pending.append(entry)

        assets = self._extract_all(pending, progress)
        result.skipped_files += len(pending) - len(assets)

        geotagged = [asset for asset in assets if asset.kind == MediaKind.PHOTO and asset.has_location]
        result.inferred_locations = self.locator.infer_all(
            (asset for asset in assets if not asset.has_location), geotagged
        )

        self._write(assets, progress)
        for asset in assets:
            if asset.kind == MediaKind.VIDEO:
                result.new_videos += 1
            else:
                result.new_photos += 1

        taggable = [asset for asset in assets if asset.capture_time is not None and asset.has_location]
        result.tag_assignments = self.matcher.classify(taggable)

        self.store.mark_scanned(walk.directories)
        logger.info(
            f"Scan of {root_str} finished: {result.new_photos} new photos, "
            f"{result.new_videos} new videos, {result.skipped_files} skipped"
        )
        return result

    def _extract_all(self, entries: List[WalkEntry], progress: Optional[ProgressSink]) -> List[Asset]:
        """Extract metadata in fixed-size batches; failed files are dropped."""
        assets: List[Asset] = []
        if not entries:
            return assets
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            for start in range(0, len(entries), EXTRACTION_BATCH_SIZE):
                batch = entries[start:start + EXTRACTION_BATCH_SIZE]
                for asset in executor.map(self._build_asset, batch):
                    if asset is not None:
                        assets.append(asset)
                emit_progress(
                    progress,
                    ProgressEvent(phase="metadata", current=start + len(batch), total=len(entries)),
                )
        return assets

    def _build_asset(self, entry: WalkEntry) -> Optional[Asset]:
        try:
            metadata = self.extractor.extract(entry.absolute_path, entry.kind)
            capture_time = metadata.capture_time
            if capture_time is None:
                capture_time = datetime.fromtimestamp(os.stat(entry.absolute_path).st_mtime)
            return Asset(
                directory=entry.directory,
                filename=entry.filename,
                kind=entry.kind,
                capture_time=capture_time,
                latitude=metadata.latitude,
                longitude=metadata.longitude,
                location_source=LocationSource.ORIGINAL if metadata.has_location else None,
            )
        except Exception as e:  # noqa: BLE001
            logger.error(f"Error processing {entry.absolute_path}: {e}")
            return None

    def _write(self, assets: List[Asset], progress: Optional[ProgressSink]) -> None:
        total = len(assets)
        for start in range(0, total, self.batch_size):
            batch = assets[start:start + self.batch_size]
            self.store.upsert_assets(batch)
            emit_progress(progress, ProgressEvent(phase="database", current=start + len(batch), total=total))
