"""SQLite catalog of assets, scan bookkeeping and the tag graph."""

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from photo_atlas.catalog.config import (
    DEFAULT_TAG_COLOR,
    LocationSource,
    MediaKind,
    TagCategory,
)
from photo_atlas.catalog.errors import CatalogWriteError, TagError, TagNotFoundError
from photo_atlas.catalog.models import (
    Asset,
    Directory,
    EventExtension,
    FaceExtension,
    FaceSample,
    LandmarkExtension,
    Tag,
    TagExtension,
    from_db_time,
    parse_iso_bound,
    to_db_time,
    to_local_naive,
)
from photo_atlas.catalog.tags import build_tree, children_index, is_descendant, iter_subtree, post_order

logger = logging.getLogger(__name__)

LIBRARY_ROOT_KEY = "library_root"

SCHEMA = """
CREATE TABLE IF NOT EXISTS assets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    directory TEXT NOT NULL DEFAULT '',
    filename TEXT NOT NULL,
    capture_time TEXT,
    latitude REAL,
    longitude REAL,
    kind TEXT NOT NULL DEFAULT 'photo',
    note TEXT NOT NULL DEFAULT '',
    favorite INTEGER NOT NULL DEFAULT 0,
    location_source TEXT,
    UNIQUE(directory, filename)
);

CREATE TABLE IF NOT EXISTS directories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    path TEXT UNIQUE NOT NULL,
    added_at TEXT NOT NULL,
    last_scanned_at TEXT
);

CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT
);

CREATE TABLE IF NOT EXISTS tags (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT UNIQUE NOT NULL,
    category TEXT NOT NULL,
    parent_id INTEGER REFERENCES tags (id),
    note TEXT NOT NULL DEFAULT '',
    color TEXT NOT NULL DEFAULT '#3498db'
);

CREATE TABLE IF NOT EXISTS tag_faces (
    tag_id INTEGER PRIMARY KEY REFERENCES tags (id) ON DELETE CASCADE,
    preview_path TEXT,
    is_pet INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS tag_face_samples (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tag_id INTEGER NOT NULL REFERENCES tags (id) ON DELETE CASCADE,
    vector TEXT NOT NULL,  -- JSON array
    asset_id INTEGER REFERENCES assets (id) ON DELETE SET NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tag_events (
    tag_id INTEGER PRIMARY KEY REFERENCES tags (id) ON DELETE CASCADE,
    start_time TEXT,
    end_time TEXT,
    landmark_tag_id INTEGER REFERENCES tags (id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS tag_landmarks (
    tag_id INTEGER PRIMARY KEY REFERENCES tags (id) ON DELETE CASCADE,
    latitude REAL,
    longitude REAL,
    radius REAL NOT NULL DEFAULT 0,
    address TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS asset_tags (
    asset_id INTEGER NOT NULL REFERENCES assets (id) ON DELETE CASCADE,
    tag_id INTEGER NOT NULL REFERENCES tags (id) ON DELETE CASCADE,
    PRIMARY KEY (asset_id, tag_id)
);

CREATE INDEX IF NOT EXISTS idx_assets_time ON assets (capture_time);
CREATE INDEX IF NOT EXISTS idx_assets_lat_lng ON assets (latitude, longitude);
CREATE INDEX IF NOT EXISTS idx_assets_directory ON assets (directory);
CREATE INDEX IF NOT EXISTS idx_tags_category ON tags (category);
CREATE INDEX IF NOT EXISTS idx_tags_parent ON tags (parent_id);
CREATE INDEX IF NOT EXISTS idx_asset_tags_tag ON asset_tags (tag_id);
CREATE INDEX IF NOT EXISTS idx_face_samples_tag ON tag_face_samples (tag_id);
"""

UPSERT_ASSET_SQL = """
    INSERT INTO assets (
        directory, filename, capture_time, latitude, longitude, kind, location_source
    ) VALUES (?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT (directory, filename) DO UPDATE SET
        capture_time = excluded.capture_time,
        latitude = excluded.latitude,
        longitude = excluded.longitude,
        kind = excluded.kind,
        location_source = excluded.location_source
"""


class CatalogStore:
    """SQLite-based storage for assets, directories and tags.

    Relative asset paths are resolved against the library root (given
    explicitly or recorded by the last scan). Every read path that returns
    assets drops those whose file is gone from disk; the stored rows are
    left untouched.
    """

    def __init__(self, db_path: Union[str, Path] = "photo_atlas.db", root: Optional[Union[str, Path]] = None):
        self.db_path = str(db_path)
        self.root = str(root) if root is not None else None
        # Held by the ingestor for the whole of a scan pass
        self.scan_lock = threading.Lock()
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """One connection per operation, committed on success and always closed."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database tables."""
        with self._connect() as conn:
            conn.executescript(SCHEMA)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def set_setting(self, key: str, value: Any) -> None:
        stored = value if isinstance(value, str) else json.dumps(value)
        with self._connect() as conn:
            conn.execute("INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (key, stored))

    def get_setting(self, key: str, default: Any = None) -> Any:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except (TypeError, json.JSONDecodeError):
            return row["value"]

    @property
    def library_root(self) -> Optional[str]:
        """Directory that relative asset paths are resolved against."""
        if self.root is not None:
            return self.root
        return self.get_setting(LIBRARY_ROOT_KEY)

    def set_library_root(self, root: Union[str, Path]) -> None:
        self.set_setting(LIBRARY_ROOT_KEY, str(root))

    def resolve_path(self, directory: str, filename: str, root: Optional[str] = None) -> Optional[str]:
        """Absolute path of an asset, or None if no library root is known."""
        root = root if root is not None else self.library_root
        if root is None:
            return None
        return os.path.join(root, *directory.split("/"), filename) if directory else os.path.join(root, filename)

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------

    def upsert_asset(self, asset: Asset) -> int:
        """Insert or update one asset keyed by (directory, filename); return its id."""
        return self.upsert_assets([asset])[0]

    def upsert_assets(self, assets: Sequence[Asset]) -> List[int]:
        """Insert or update assets in a single transaction.

        User fields (note, favorite) of existing rows are preserved.

        Raises:
            CatalogWriteError: If the transaction fails; nothing of the batch is kept
        """
        if not assets:
            return []
        ids: List[int] = []
        try:
            with self._connect() as conn:
                for asset in assets:
                    conn.execute(UPSERT_ASSET_SQL, self._asset_params(asset))
                    row = conn.execute(
                        "SELECT id FROM assets WHERE directory = ? AND filename = ?",
                        (asset.directory, asset.filename),
                    ).fetchone()
                    ids.append(row["id"])
        except sqlite3.Error as e:
            logger.error(f"Failed to write batch of {len(assets)} assets: {e}")
            raise CatalogWriteError(f"Batch write of {len(assets)} assets failed: {e}") from e

        for asset, asset_id in zip(assets, ids):
            asset.id = asset_id
        logger.info(f"Wrote {len(ids)} assets to catalog")
        return ids

    def asset_exists(self, directory: str, filename: str) -> bool:
        """Whether a row exists for this relative path (no disk check)."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM assets WHERE directory = ? AND filename = ?", (directory, filename)
            ).fetchone()
        return row is not None

    def get_asset(self, directory: str, filename: str) -> Optional[Asset]:
        """Get a single asset by relative path."""
        return self._first(
            self._query_assets("SELECT * FROM assets WHERE directory = ? AND filename = ?", (directory, filename))
        )

    def get_asset_by_id(self, asset_id: int) -> Optional[Asset]:
        return self._first(self._query_assets("SELECT * FROM assets WHERE id = ?", (asset_id,)))

    def list_assets(self) -> List[Asset]:
        return self._query_assets("SELECT * FROM assets ORDER BY directory, filename")

    def query_by_time_range(self, start: Union[str, datetime], end: Union[str, datetime]) -> List[Asset]:
        """Assets captured within [start, end], bounds given as ISO-8601."""
        return self._query_assets(
            """
            SELECT * FROM assets
            WHERE capture_time >= ? AND capture_time <= ?
            ORDER BY capture_time
            """,
            (to_db_time(parse_iso_bound(start)), to_db_time(parse_iso_bound(end))),
        )

    def query_by_area(self, north: float, south: float, east: float, west: float) -> List[Asset]:
        """Assets inside a bounding box, edges inclusive.

        A box whose west edge is greater than its east edge crosses the
        antimeridian.
        """
        if west <= east:
            longitude_clause = "longitude >= ? AND longitude <= ?"
        else:
            longitude_clause = "(longitude >= ? OR longitude <= ?)"
        return self._query_assets(
            f"""
            SELECT * FROM assets
            WHERE latitude <= ? AND latitude >= ?
              AND {longitude_clause}
            ORDER BY capture_time
            """,
            (north, south, west, east),
        )

    def query_by_directory(self, directory: str) -> List[Asset]:
        """Assets directly inside one relative directory."""
        return self._query_assets(
            "SELECT * FROM assets WHERE directory = ? ORDER BY capture_time, filename", (directory,)
        )

    def query_by_tags(self, tag_ids: Iterable[int]) -> List[Asset]:
        """Assets carrying any of the given tags, each returned once."""
        ids = sorted(set(tag_ids))
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        return self._query_assets(
            f"""
            SELECT * FROM assets
            WHERE id IN (SELECT asset_id FROM asset_tags WHERE tag_id IN ({placeholders}))
            ORDER BY capture_time
            """,
            ids,
        )

    def get_directory_tree(self) -> Dict[str, Any]:
        """Tree of directories holding assets, with per-directory counts.

        Each node has ``name``, ``path``, ``count`` (assets directly inside),
        ``total`` (including subdirectories) and ``children``.
        """
        counts: Dict[str, int] = {}
        for asset in self.list_assets():
            counts[asset.directory] = counts.get(asset.directory, 0) + 1

        root = {"name": "", "path": "", "count": counts.get("", 0), "total": 0, "children": []}
        nodes: Dict[str, Dict[str, Any]] = {"": root}
        for directory in sorted(counts):
            if not directory:
                continue
            parent = root
            parts = directory.split("/")
            for depth in range(1, len(parts) + 1):
                path = "/".join(parts[:depth])
                node = nodes.get(path)
                if node is None:
                    node = {"name": parts[depth - 1], "path": path, "count": counts.get(path, 0), "total": 0, "children": []}
                    nodes[path] = node
                    parent["children"].append(node)
                parent = node

        for path, count in counts.items():
            parts = path.split("/") if path else []
            for depth in range(len(parts), -1, -1):
                nodes["/".join(parts[:depth])]["total"] += count
        return root

    def set_note(self, directory: str, filename: str, note: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE assets SET note = ? WHERE directory = ? AND filename = ?", (note, directory, filename)
            )
        return cursor.rowcount > 0

    def set_favorite(self, asset_id: int, favorite: bool = True) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("UPDATE assets SET favorite = ? WHERE id = ?", (int(favorite), asset_id))
        return cursor.rowcount > 0

    def _query_assets(self, sql: str, params: Sequence[Any] = ()) -> List[Asset]:
        with self._connect() as conn:
            rows = conn.execute(sql, tuple(params)).fetchall()
        root = self.library_root
        assets = [self._row_to_asset(row) for row in rows]
        if root is None:
            return assets
        return [asset for asset in assets if os.path.exists(self.resolve_path(asset.directory, asset.filename, root))]

    @staticmethod
    def _first(assets: List[Asset]) -> Optional[Asset]:
        return assets[0] if assets else None

    @staticmethod
    def _asset_params(asset: Asset) -> Tuple[Any, ...]:
        return (
            asset.directory,
            asset.filename,
            to_db_time(asset.capture_time),
            asset.latitude,
            asset.longitude,
            asset.kind.value,
            asset.location_source.value if asset.location_source else None,
        )

    def _row_to_asset(self, row) -> Asset:
        """Convert database row to Asset."""
        return Asset(
            id=row["id"],
            directory=row["directory"],
            filename=row["filename"],
            kind=MediaKind(row["kind"]),
            capture_time=from_db_time(row["capture_time"]),
            latitude=row["latitude"],
            longitude=row["longitude"],
            location_source=LocationSource(row["location_source"]) if row["location_source"] else None,
            note=row["note"] or "",
            favorite=bool(row["favorite"]),
        )

    # ------------------------------------------------------------------
    # Directories
    # ------------------------------------------------------------------

    def add_directory(self, path: str) -> None:
        """Register a directory; an existing row is left as it is."""
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO directories (path, added_at, last_scanned_at) VALUES (?, ?, NULL)",
                (path, to_db_time(datetime.now())),
            )

    def has_directory(self, path: str) -> bool:
        with self._connect() as conn:
            row = conn.execute("SELECT 1 FROM directories WHERE path = ?", (path,)).fetchone()
        return row is not None

    def mark_scanned(self, paths: Union[str, Iterable[str]]) -> None:
        """Stamp one or more directories with the current scan time."""
        if isinstance(paths, str):
            paths = [paths]
        now = to_db_time(datetime.now())
        with self._connect() as conn:
            for path in paths:
                conn.execute(
                    "INSERT OR IGNORE INTO directories (path, added_at, last_scanned_at) VALUES (?, ?, NULL)",
                    (path, now),
                )
                conn.execute("UPDATE directories SET last_scanned_at = ? WHERE path = ?", (now, path))

    def is_scanned(self, path: str) -> bool:
        with self._connect() as conn:
            row = conn.execute("SELECT last_scanned_at FROM directories WHERE path = ?", (path,)).fetchone()
        return row is not None and row["last_scanned_at"] is not None

    def list_directories(self) -> List[Directory]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM directories ORDER BY path").fetchall()
        return [
            Directory(
                path=row["path"],
                added_at=from_db_time(row["added_at"]),
                last_scanned_at=from_db_time(row["last_scanned_at"]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def create_tag(
        self,
        name: str,
        category: Union[str, TagCategory] = TagCategory.COMMON,
        parent_id: Optional[int] = None,
        note: str = "",
        color: str = DEFAULT_TAG_COLOR,
        extension: Optional[TagExtension] = None,
    ) -> int:
        """Create a tag with its category extension row; return the tag id.

        Raises:
            TagError: On a duplicate name, unknown parent or mismatched extension
        """
        if isinstance(category, str):
            category = TagCategory.normalize(category)
        try:
            tag = Tag(name=name, category=category, parent_id=parent_id, note=note, color=color, extension=extension)
        except ValueError as e:
            raise TagError(str(e)) from e

        try:
            with self._connect() as conn:
                if parent_id is not None:
                    self._require_tag(conn, parent_id)
                cursor = conn.execute(
                    "INSERT INTO tags (name, category, parent_id, note, color) VALUES (?, ?, ?, ?, ?)",
                    (tag.name, tag.category.value, tag.parent_id, tag.note, tag.color),
                )
                tag_id = cursor.lastrowid
                if tag_id is None:
                    raise ValueError("Failed to get last insert ID")
                self._insert_extension(conn, tag_id, tag)
        except sqlite3.IntegrityError as e:
            raise TagError(f"Cannot create tag '{name}': {e}") from e
        logger.debug(f"Created {category.value} tag '{name}' ({tag_id})")
        return tag_id

    def _insert_extension(self, conn: sqlite3.Connection, tag_id: int, tag: Tag) -> None:
        if tag.face is not None:
            conn.execute(
                "INSERT INTO tag_faces (tag_id, preview_path, is_pet) VALUES (?, ?, ?)",
                (tag_id, tag.face.preview_path, int(tag.face.is_pet)),
            )
            for sample in tag.face.samples:
                self._insert_face_sample(conn, tag_id, sample.vector, sample.asset_id)
        elif tag.event is not None:
            if tag.event.landmark_id is not None:
                self._require_tag(conn, tag.event.landmark_id, TagCategory.LANDMARK)
            if tag.event.has_window and tag.event.start_time > tag.event.end_time:
                raise TagError("Event start must not be after its end")
            self._check_parent_window(conn, tag.parent_id, tag.event.start_time, tag.event.end_time)
            conn.execute(
                "INSERT INTO tag_events (tag_id, start_time, end_time, landmark_tag_id) VALUES (?, ?, ?, ?)",
                (tag_id, to_db_time(tag.event.start_time), to_db_time(tag.event.end_time), tag.event.landmark_id),
            )
        elif tag.landmark is not None:
            conn.execute(
                "INSERT INTO tag_landmarks (tag_id, latitude, longitude, radius, address) VALUES (?, ?, ?, ?, ?)",
                (tag_id, tag.landmark.latitude, tag.landmark.longitude, tag.landmark.radius, tag.landmark.address),
            )

    def get_tag(self, tag_id: int) -> Optional[Tag]:
        with self._connect() as conn:
            tags = self._load_tags(conn, "WHERE id = ?", (tag_id,))
        return tags[0] if tags else None

    def find_tag_by_name(self, name: str) -> Optional[Tag]:
        with self._connect() as conn:
            tags = self._load_tags(conn, "WHERE name = ?", (name,))
        return tags[0] if tags else None

    def list_tags(self, category: Optional[Union[str, TagCategory]] = None) -> List[Tag]:
        """Flat list of tags, optionally restricted to one category."""
        with self._connect() as conn:
            if category is None:
                return self._load_tags(conn)
            if isinstance(category, str):
                category = TagCategory.normalize(category)
            return self._load_tags(conn, "WHERE category = ?", (category.value,))

    def get_tag_tree(self, category: Optional[Union[str, TagCategory]] = None) -> List[Tag]:
        """Root tags with children filled in, optionally for one category."""
        return build_tree(self.list_tags(category))

    def update_tag(
        self,
        tag_id: int,
        name: Optional[str] = None,
        note: Optional[str] = None,
        color: Optional[str] = None,
    ) -> None:
        """Update base fields; the category of a tag never changes."""
        updates = {key: value for key, value in (("name", name), ("note", note), ("color", color)) if value is not None}
        try:
            with self._connect() as conn:
                self._require_tag(conn, tag_id)
                if updates:
                    assignments = ", ".join(f"{column} = ?" for column in updates)
                    conn.execute(f"UPDATE tags SET {assignments} WHERE id = ?", (*updates.values(), tag_id))
        except sqlite3.IntegrityError as e:
            raise TagError(f"Cannot update tag {tag_id}: {e}") from e

    def delete_tag(self, tag_id: int) -> int:
        """Delete a tag and all of its descendants, deepest first.

        Their assignments and extension rows go with them, and events that
        referenced a deleted landmark lose that reference.

        Returns:
            Number of tag rows removed
        """
        with self._connect() as conn:
            self._require_tag(conn, tag_id)
            _, children = self._tree_index(conn)
            doomed = post_order(tag_id, children)
            for doomed_id in doomed:
                conn.execute("UPDATE tag_events SET landmark_tag_id = NULL WHERE landmark_tag_id = ?", (doomed_id,))
                conn.execute("DELETE FROM asset_tags WHERE tag_id = ?", (doomed_id,))
                conn.execute("DELETE FROM tag_face_samples WHERE tag_id = ?", (doomed_id,))
                for table in ("tag_faces", "tag_events", "tag_landmarks"):
                    conn.execute(f"DELETE FROM {table} WHERE tag_id = ?", (doomed_id,))
                conn.execute("DELETE FROM tags WHERE id = ?", (doomed_id,))
        logger.info(f"Deleted tag {tag_id} with {len(doomed) - 1} descendants")
        return len(doomed)

    def move_tag(self, tag_id: int, new_parent_id: Optional[int]) -> None:
        """Reparent a tag; the new parent must exist and lie outside its subtree."""
        with self._connect() as conn:
            self._require_tag(conn, tag_id)
            if new_parent_id is not None:
                self._require_tag(conn, new_parent_id)
                parents, _ = self._tree_index(conn)
                if is_descendant(new_parent_id, tag_id, parents):
                    raise TagError(f"Cannot move tag {tag_id} under its own descendant {new_parent_id}")
            conn.execute("UPDATE tags SET parent_id = ? WHERE id = ?", (new_parent_id, tag_id))

    def set_landmark_geofence(
        self,
        tag_id: int,
        latitude: Optional[float],
        longitude: Optional[float],
        radius: float,
        address: Optional[str] = None,
    ) -> None:
        if latitude is not None and not -90.0 <= latitude <= 90.0:
            raise TagError(f"Latitude out of range: {latitude}")
        if longitude is not None and not -180.0 <= longitude <= 180.0:
            raise TagError(f"Longitude out of range: {longitude}")
        with self._connect() as conn:
            self._require_tag(conn, tag_id, TagCategory.LANDMARK)
            conn.execute(
                "UPDATE tag_landmarks SET latitude = ?, longitude = ?, radius = ? WHERE tag_id = ?",
                (latitude, longitude, radius, tag_id),
            )
            if address is not None:
                conn.execute("UPDATE tag_landmarks SET address = ? WHERE tag_id = ?", (address, tag_id))

    def set_event_window(self, tag_id: int, start: Optional[datetime], end: Optional[datetime]) -> None:
        """Set an event's inclusive time window.

        When the parent is an event with a complete window, the child's
        dates must fall inside the parent's dates.

        Raises:
            TagError: On an inverted window or one escaping the parent's
        """
        start, end = to_local_naive(start), to_local_naive(end)
        if start is not None and end is not None and start > end:
            raise TagError("Event start must not be after its end")
        with self._connect() as conn:
            tag_row = self._require_tag(conn, tag_id, TagCategory.EVENT)
            self._check_parent_window(conn, tag_row["parent_id"], start, end)
            conn.execute(
                "UPDATE tag_events SET start_time = ?, end_time = ? WHERE tag_id = ?",
                (to_db_time(start), to_db_time(end), tag_id),
            )

    def _check_parent_window(
        self,
        conn: sqlite3.Connection,
        parent_id: Optional[int],
        start: Optional[datetime],
        end: Optional[datetime],
    ) -> None:
        """Child event dates must lie within a parent event's dates."""
        if start is None or end is None or parent_id is None:
            return
        parents = self._load_tags(conn, "WHERE id = ?", (parent_id,))
        parent_event = parents[0].event if parents else None
        if parent_event is None or not parent_event.has_window:
            return
        if start.date() < parent_event.start_time.date() or end.date() > parent_event.end_time.date():
            raise TagError(
                f"Child event dates must be within parent date range "
                f"({parent_event.start_time.date()} ~ {parent_event.end_time.date()})"
            )

    def set_event_landmark(self, tag_id: int, landmark_id: Optional[int]) -> None:
        with self._connect() as conn:
            self._require_tag(conn, tag_id, TagCategory.EVENT)
            if landmark_id is not None:
                self._require_tag(conn, landmark_id, TagCategory.LANDMARK)
            conn.execute("UPDATE tag_events SET landmark_tag_id = ? WHERE tag_id = ?", (landmark_id, tag_id))

    def list_event_candidates(self) -> List[Tag]:
        """Events with a complete time window and a linked landmark."""
        with self._connect() as conn:
            return self._load_tags(
                conn,
                """
                WHERE id IN (
                    SELECT tag_id FROM tag_events
                    WHERE start_time IS NOT NULL AND end_time IS NOT NULL
                      AND landmark_tag_id IS NOT NULL
                )
                """,
            )

    def get_landmark_descendants(self, landmark_id: int) -> List[Tuple[Tag, int]]:
        """Landmark-category nodes of a subtree with their depth (root at 0)."""
        with self._connect() as conn:
            _, children = self._tree_index(conn)
            depths = dict(iter_subtree(landmark_id, children))
            if not depths:
                return []
            placeholders = ", ".join("?" for _ in depths)
            tags = self._load_tags(
                conn,
                f"WHERE category = ? AND id IN ({placeholders})",
                (TagCategory.LANDMARK.value, *depths),
            )
        return [(tag, depths[tag.id]) for tag in tags]

    # Face data

    def add_face_sample(self, tag_id: int, vector: Sequence[float], asset_id: Optional[int] = None) -> int:
        with self._connect() as conn:
            self._require_tag(conn, tag_id, TagCategory.FACE)
            return self._insert_face_sample(conn, tag_id, vector, asset_id)

    def _insert_face_sample(
        self, conn: sqlite3.Connection, tag_id: int, vector: Sequence[float], asset_id: Optional[int]
    ) -> int:
        cursor = conn.execute(
            "INSERT INTO tag_face_samples (tag_id, vector, asset_id, created_at) VALUES (?, ?, ?, ?)",
            (tag_id, json.dumps([float(value) for value in vector]), asset_id, to_db_time(datetime.now())),
        )
        lastrowid = cursor.lastrowid
        if lastrowid is None:
            raise ValueError("Failed to get last insert ID")
        return lastrowid

    def clear_face_samples(self, tag_id: int) -> int:
        with self._connect() as conn:
            self._require_tag(conn, tag_id, TagCategory.FACE)
            cursor = conn.execute("DELETE FROM tag_face_samples WHERE tag_id = ?", (tag_id,))
        return cursor.rowcount

    def set_face_preview(self, tag_id: int, preview_path: Optional[str]) -> None:
        with self._connect() as conn:
            self._require_tag(conn, tag_id, TagCategory.FACE)
            conn.execute("UPDATE tag_faces SET preview_path = ? WHERE tag_id = ?", (preview_path, tag_id))

    def set_face_pet(self, tag_id: int, is_pet: bool) -> None:
        with self._connect() as conn:
            self._require_tag(conn, tag_id, TagCategory.FACE)
            conn.execute("UPDATE tag_faces SET is_pet = ? WHERE tag_id = ?", (int(is_pet), tag_id))

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    def link_tag(self, asset_id: int, tag_id: int) -> bool:
        """Assign a tag to an asset; returns False if already assigned."""
        return self.link_tags([(asset_id, tag_id)]) == 1

    def link_tags(self, pairs: Iterable[Tuple[int, int]]) -> int:
        """Create (asset, tag) assignments in one transaction; returns how many were new."""
        pairs = list(pairs)
        if not pairs:
            return 0
        created = 0
        try:
            with self._connect() as conn:
                for asset_id, tag_id in pairs:
                    cursor = conn.execute(
                        "INSERT OR IGNORE INTO asset_tags (asset_id, tag_id) VALUES (?, ?)", (asset_id, tag_id)
                    )
                    created += cursor.rowcount
        except sqlite3.Error as e:
            raise CatalogWriteError(f"Failed to write {len(pairs)} tag assignments: {e}") from e
        return created

    def unlink_tag(self, asset_id: int, tag_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM asset_tags WHERE asset_id = ? AND tag_id = ?", (asset_id, tag_id))
        return cursor.rowcount > 0

    def get_asset_tags(self, asset_id: int) -> List[Tag]:
        with self._connect() as conn:
            return self._load_tags(conn, "WHERE id IN (SELECT tag_id FROM asset_tags WHERE asset_id = ?)", (asset_id,))

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        """Get database statistics."""
        with self._connect() as conn:
            stats: Dict[str, Any] = {}
            stats["total_assets"] = conn.execute("SELECT COUNT(*) FROM assets").fetchone()[0]
            for kind in MediaKind:
                stats[f"total_{kind.value}s"] = conn.execute(
                    "SELECT COUNT(*) FROM assets WHERE kind = ?", (kind.value,)
                ).fetchone()[0]
            stats["geotagged"] = conn.execute(
                "SELECT COUNT(*) FROM assets WHERE latitude IS NOT NULL AND longitude IS NOT NULL"
            ).fetchone()[0]
            stats["inferred_locations"] = conn.execute(
                "SELECT COUNT(*) FROM assets WHERE location_source = ?", (LocationSource.INFERRED.value,)
            ).fetchone()[0]
            stats["directories"] = conn.execute("SELECT COUNT(*) FROM directories").fetchone()[0]
            stats["tags"] = conn.execute("SELECT COUNT(*) FROM tags").fetchone()[0]
            stats["assignments"] = conn.execute("SELECT COUNT(*) FROM asset_tags").fetchone()[0]
            return stats

    # ------------------------------------------------------------------
    # Tag row helpers
    # ------------------------------------------------------------------

    def _require_tag(
        self, conn: sqlite3.Connection, tag_id: int, category: Optional[TagCategory] = None
    ) -> sqlite3.Row:
        row = conn.execute("SELECT * FROM tags WHERE id = ?", (tag_id,)).fetchone()
        if row is None:
            raise TagNotFoundError(f"Unknown tag: {tag_id}")
        if category is not None and row["category"] != category.value:
            raise TagError(f"Tag {tag_id} is a {row['category']} tag, not a {category.value} tag")
        return row

    @staticmethod
    def _tree_index(conn: sqlite3.Connection):
        rows = conn.execute("SELECT id, parent_id FROM tags").fetchall()
        parents = {row["id"]: row["parent_id"] for row in rows}
        return parents, children_index(parents)

    def _load_tags(self, conn: sqlite3.Connection, where: str = "", params: Sequence[Any] = ()) -> List[Tag]:
        rows = conn.execute(f"SELECT * FROM tags {where} ORDER BY id", tuple(params)).fetchall()
        if not rows:
            return []
        ids = [row["id"] for row in rows]
        placeholders = ", ".join("?" for _ in ids)

        def by_tag(table: str) -> Dict[int, sqlite3.Row]:
            found = conn.execute(f"SELECT * FROM {table} WHERE tag_id IN ({placeholders})", ids).fetchall()
            return {row["tag_id"]: row for row in found}

        faces = by_tag("tag_faces")
        events = by_tag("tag_events")
        landmarks = by_tag("tag_landmarks")
        samples: Dict[int, List[FaceSample]] = {}
        for row in conn.execute(
            f"SELECT * FROM tag_face_samples WHERE tag_id IN ({placeholders}) ORDER BY id", ids
        ).fetchall():
            samples.setdefault(row["tag_id"], []).append(
                FaceSample(
                    id=row["id"],
                    vector=json.loads(row["vector"]),
                    asset_id=row["asset_id"],
                    created_at=from_db_time(row["created_at"]),
                )
            )

        return [self._row_to_tag(row, faces, events, landmarks, samples) for row in rows]

    def _row_to_tag(self, row, faces, events, landmarks, samples) -> Tag:
        """Convert a tags row plus its extension row to a Tag."""
        category = TagCategory(row["category"])
        tag_id = row["id"]
        extension: Optional[TagExtension] = None
        if category == TagCategory.FACE:
            face_row = faces.get(tag_id)
            extension = FaceExtension(
                preview_path=face_row["preview_path"] if face_row else None,
                is_pet=bool(face_row["is_pet"]) if face_row else False,
                samples=samples.get(tag_id, []),
            )
        elif category == TagCategory.EVENT:
            event_row = events.get(tag_id)
            extension = EventExtension(
                start_time=from_db_time(event_row["start_time"]) if event_row else None,
                end_time=from_db_time(event_row["end_time"]) if event_row else None,
                landmark_id=event_row["landmark_tag_id"] if event_row else None,
            )
        elif category == TagCategory.LANDMARK:
            landmark_row = landmarks.get(tag_id)
            extension = LandmarkExtension(
                latitude=landmark_row["latitude"] if landmark_row else None,
                longitude=landmark_row["longitude"] if landmark_row else None,
                radius=landmark_row["radius"] if landmark_row else 0.0,
                address=landmark_row["address"] if landmark_row else "",
            )
        return Tag(
            id=tag_id,
            name=row["name"],
            category=category,
            parent_id=row["parent_id"],
            note=row["note"] or "",
            color=row["color"] or DEFAULT_TAG_COLOR,
            extension=extension,
        )
