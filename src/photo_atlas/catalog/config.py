"""Media classification rules and engine constants."""

from datetime import timedelta
from enum import Enum
from pathlib import PurePath
from typing import Optional


class MediaKind(str, Enum):
    """Kind of media asset."""
    PHOTO = "photo"
    VIDEO = "video"


class LocationSource(str, Enum):
    """Where an asset's coordinates came from."""
    ORIGINAL = "original"  # read from the file's own metadata
    INFERRED = "inferred"  # copied from a temporally nearby asset


class TagCategory(str, Enum):
    """Supported tag categories."""
    FACE = "face"
    EVENT = "event"
    LANDMARK = "landmark"
    COMMON = "common"

    @classmethod
    def normalize(cls, category: str) -> "TagCategory":
        """Normalize a category string to a TagCategory.

        Raises:
            ValueError: If the category is not recognized
        """
        category_lower = category.lower().strip()
        if category_lower in ("face", "person", "people", "pet"):
            return cls.FACE
        elif category_lower in ("event", "events", "trip"):
            return cls.EVENT
        elif category_lower in ("landmark", "location", "place"):
            return cls.LANDMARK
        elif category_lower in ("common", "other", "general"):
            return cls.COMMON
        raise ValueError(f"Unknown tag category: {category}")


# Extension allow-lists (lowercase, with leading dot)
PHOTO_EXTENSIONS = {".jpg", ".jpeg", ".heic", ".png", ".gif", ".bmp", ".webp"}
VIDEO_EXTENSIONS = {
    ".mp4", ".mov", ".avi", ".mkv", ".wmv", ".flv", ".webm", ".m4v", ".3gp",
}

# Raster formats that are not parsed for EXIF at all
NO_EXIF_EXTENSIONS = {".png", ".gif", ".bmp", ".webp"}

# Directory names never descended into (dot-directories are skipped as well)
SPECIAL_DIRECTORIES = {"node_modules", "$RECYCLE.BIN", "System Volume Information"}

# Engine defaults
DEFAULT_EXTRACTION_TIMEOUT = 30.0  # seconds per file
DEFAULT_PROXIMITY_WINDOW = timedelta(hours=1)
DEFAULT_MAX_WORKERS = 4
DEFAULT_WRITE_BATCH_SIZE = 500  # rows per catalog transaction
EXTRACTION_BATCH_SIZE = 10  # files per metadata progress event
DIRECTORY_PROGRESS_INTERVAL = 10  # directories per walk progress event

# Reverse geocoding
DEFAULT_GEOCODE_INTERVAL = 1.5  # seconds between external lookups
DEFAULT_GEOCODE_BACKOFF = 5.0  # seconds to wait after a 429
GEOCODE_CACHE_PRECISION = 3  # decimal places of the cache key

EARTH_RADIUS_M = 6_371_000.0
DEFAULT_TAG_COLOR = "#3498db"


def classify_media(filename: str) -> Optional[MediaKind]:
    """Return the media kind for a filename, or None if it is not media."""
    suffix = PurePath(filename).suffix.lower()
    if suffix in PHOTO_EXTENSIONS:
        return MediaKind.PHOTO
    if suffix in VIDEO_EXTENSIONS:
        return MediaKind.VIDEO
    return None


def supports_exif(filename: str) -> bool:
    """Whether a photo format is worth parsing for embedded metadata."""
    return PurePath(filename).suffix.lower() not in NO_EXIF_EXTENSIONS


def is_special_directory(name: str) -> bool:
    """Hidden and system directories are excluded from walks."""
    return name.startswith(".") or name in SPECIAL_DIRECTORIES
