"""Data models for catalog assets, directories and tags."""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Union

from photo_atlas.catalog.config import (
    DEFAULT_TAG_COLOR,
    LocationSource,
    MediaKind,
    TagCategory,
)


def to_local_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware timestamp to naive local time; naive values pass through."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    """Serialize a timestamp for storage.

    Aware timestamps are converted to local time so every stored value
    is a naive local ISO-8601 string that sorts lexicographically.
    """
    if value is None:
        return None
    return to_local_naive(value).isoformat(timespec="seconds")


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp."""
    if not value:
        return None
    return datetime.fromisoformat(value)


def parse_iso_bound(value: Union[str, datetime]) -> datetime:
    """Parse an ISO-8601 query bound, accepting a trailing 'Z'."""
    if isinstance(value, datetime):
        return value
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


@dataclass
class ExtractedMetadata:
    """Capture time and coordinates read from a media file.

    Every field is independently nullable; an all-None instance means
    "no metadata".
    """
    capture_time: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass
class Asset:
    """One photo or video in the catalog."""
    directory: str  # relative to the library root, "" for the root itself
    filename: str
    kind: MediaKind = MediaKind.PHOTO
    capture_time: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_source: Optional[LocationSource] = None
    note: str = ""
    favorite: bool = False
    id: Optional[int] = None

    @property
    def relative_path(self) -> str:
        if not self.directory:
            return self.filename
        return str(PurePosixPath(self.directory) / self.filename)

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def is_video(self) -> bool:
        return self.kind == MediaKind.VIDEO

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON output."""
        return {
            "id": self.id,
            "directory": self.directory,
            "filename": self.filename,
            "kind": self.kind.value,
            "capture_time": to_db_time(self.capture_time),
            "latitude": self.latitude,
            "longitude": self.longitude,
            "location_source": self.location_source.value if self.location_source else None,
            "note": self.note,
            "favorite": self.favorite,
        }


@dataclass
class Directory:
    """Scan bookkeeping for one folder."""
    path: str
    added_at: datetime
    last_scanned_at: Optional[datetime] = None

    @property
    def is_scanned(self) -> bool:
        return self.last_scanned_at is not None


@dataclass
class FaceSample:
    """One precomputed face feature vector."""
    vector: List[float]
    asset_id: Optional[int] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class FaceExtension:
    preview_path: Optional[str] = None
    is_pet: bool = False
    samples: List[FaceSample] = field(default_factory=list)

    @property
    def vectors(self) -> List[List[float]]:
        return [sample.vector for sample in self.samples]


@dataclass
class EventExtension:
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    landmark_id: Optional[int] = None

    def __post_init__(self):
        self.start_time = to_local_naive(self.start_time)
        self.end_time = to_local_naive(self.end_time)

    @property
    def has_window(self) -> bool:
        return self.start_time is not None and self.end_time is not None

    def contains_time(self, moment: datetime) -> bool:
        """Inclusive window test; an incomplete window contains nothing."""
        if not self.has_window:
            return False
        return self.start_time <= to_local_naive(moment) <= self.end_time


@dataclass
class LandmarkExtension:
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    radius: float = 0.0  # meters
    address: str = ""

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


TagExtension = Union[FaceExtension, EventExtension, LandmarkExtension]

_EXTENSION_TYPES = {
    TagCategory.FACE: FaceExtension,
    TagCategory.EVENT: EventExtension,
    TagCategory.LANDMARK: LandmarkExtension,
}


def default_extension(category: TagCategory) -> Optional[TagExtension]:
    """Empty extension data for a category (None for common tags)."""
    extension_type = _EXTENSION_TYPES.get(category)
    return extension_type() if extension_type else None


@dataclass
class Tag:
    """A node of the tag tree.

    ``category`` is the discriminant; ``extension`` carries only the
    fields of that category and is None for common tags.
    """
    name: str
    category: TagCategory = TagCategory.COMMON
    parent_id: Optional[int] = None
    note: str = ""
    color: str = DEFAULT_TAG_COLOR
    extension: Optional[TagExtension] = None
    id: Optional[int] = None
    children: List["Tag"] = field(default_factory=list)

    def __post_init__(self):
        expected = _EXTENSION_TYPES.get(self.category)
        if self.extension is None:
            self.extension = default_extension(self.category)
        elif expected is None or not isinstance(self.extension, expected):
            raise ValueError(
                f"{type(self.extension).__name__} does not belong to a {self.category.value} tag"
            )

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def is_leaf(self) -> bool:
        return not self.children

    @property
    def face(self) -> Optional[FaceExtension]:
        return self.extension if self.category == TagCategory.FACE else None  # type: ignore[return-value]

    @property
    def event(self) -> Optional[EventExtension]:
        return self.extension if self.category == TagCategory.EVENT else None  # type: ignore[return-value]

    @property
    def landmark(self) -> Optional[LandmarkExtension]:
        return self.extension if self.category == TagCategory.LANDMARK else None  # type: ignore[return-value]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary, children included."""
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "category": self.category.value,
            "parent_id": self.parent_id,
            "note": self.note,
            "color": self.color,
        }
        if self.face is not None:
            data.update(
                preview_path=self.face.preview_path,
                is_pet=self.face.is_pet,
                sample_count=len(self.face.samples),
            )
        elif self.event is not None:
            data.update(
                start_time=to_db_time(self.event.start_time),
                end_time=to_db_time(self.event.end_time),
                landmark_id=self.event.landmark_id,
            )
        elif self.landmark is not None:
            data.update(
                latitude=self.landmark.latitude,
                longitude=self.landmark.longitude,
                radius=self.landmark.radius,
                address=self.landmark.address,
            )
        data["children"] = [child.to_dict() for child in self.children]
        return data


@dataclass
class WalkEntry:
    """A media file found by the directory walker."""
    directory: str
    filename: str
    absolute_path: str
    kind: MediaKind


@dataclass
class ProgressEvent:
    """Progress notification emitted during a scan."""
    phase: str  # "directory", "metadata" or "database"
    count: Optional[int] = None
    current: Optional[int] = None
    total: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in self.__dict__.items() if value is not None}


@dataclass
class ScanResult:
    """Summary counters of one scan pass."""
    total_photos: int = 0
    total_videos: int = 0
    new_photos: int = 0
    new_videos: int = 0
    skipped_files: int = 0
    skipped_directory: bool = False
    inferred_locations: int = 0
    tag_assignments: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)
