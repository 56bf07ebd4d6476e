"""FastAPI web interface for photo-atlas."""

import logging
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from photo_atlas import __version__
from photo_atlas.catalog.catalog_store import CatalogStore
from photo_atlas.catalog.config import TagCategory
from photo_atlas.catalog.errors import ScanInProgressError, TagError, TagNotFoundError
from photo_atlas.catalog.extractor import MetadataExtractor
from photo_atlas.catalog.faces import DEFAULT_MATCH_THRESHOLD, find_best_match
from photo_atlas.catalog.geocode import NominatimFetcher, ReverseGeocoder
from photo_atlas.catalog.ingest import Ingestor
from photo_atlas.catalog.locator import ProximityLocator
from photo_atlas.catalog.models import EventExtension, LandmarkExtension, ProgressEvent
from photo_atlas.config import AtlasConfig, get_default_config

logger = logging.getLogger(__name__)

app = FastAPI(
    title="photo-atlas API",
    description="Catalog photos and videos by time, place and tag",
    version=__version__,
)

# Enable CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict to specific origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global state
config = get_default_config()
scan_tasks: Dict[str, Dict[str, Any]] = {}  # task_id -> task info
_store: Optional[CatalogStore] = None
_ingestor: Optional[Ingestor] = None
_geocoder: Optional[ReverseGeocoder] = None


def configure(new_config: AtlasConfig) -> None:
    """Point the API at another configuration and drop cached components."""
    global config, _store, _ingestor, _geocoder
    config = new_config
    _store = None
    _ingestor = None
    _geocoder = None
    scan_tasks.clear()


def get_store() -> CatalogStore:
    global _store
    if _store is None:
        config.ensure_db_dir()
        _store = CatalogStore(config.db_path)
    return _store


def get_ingestor() -> Ingestor:
    global _ingestor
    if _ingestor is None:
        _ingestor = Ingestor(
            get_store(),
            extractor=MetadataExtractor(timeout=config.extraction_timeout),
            locator=ProximityLocator(max_delta=config.proximity_window),
            max_workers=config.max_workers,
            batch_size=config.batch_size,
        )
    return _ingestor


def get_geocoder() -> ReverseGeocoder:
    """The process-wide geocoding queue."""
    global _geocoder
    if _geocoder is None:
        _geocoder = ReverseGeocoder(
            NominatimFetcher(user_agent=config.geocode_user_agent, language=config.geocode_language),
            min_interval=config.geocode_interval,
            backoff=config.geocode_backoff,
        )
    return _geocoder


# Pydantic models for request/response


class ScanRequest(BaseModel):
    directory: str = Field(..., description="Library root to scan")
    skip_scanned: bool = Field(True, description="Skip directories that were already scanned")


class ScanStatusResponse(BaseModel):
    task_id: str
    status: str  # "pending", "scanning", "completed", "error"
    phase: Optional[str] = None  # last progress phase seen
    processed: Optional[int] = None
    total: Optional[int] = None
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    request: Optional[Dict[str, Any]] = None


class AssetResponse(BaseModel):
    id: Optional[int] = None
    directory: str
    filename: str
    kind: str
    capture_time: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_source: Optional[str] = None
    note: str = ""
    favorite: bool = False


class AssetDetailResponse(AssetResponse):
    tags: List[Dict[str, Any]] = []


class TagIdsRequest(BaseModel):
    tag_ids: List[int] = Field(..., description="Match assets carrying any of these tags")


class TagCreateRequest(BaseModel):
    name: str
    category: str = "common"
    parent_id: Optional[int] = None
    note: str = ""
    color: Optional[str] = None
    # landmark fields
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    radius: Optional[float] = None
    address: Optional[str] = None
    # event fields
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    landmark_id: Optional[int] = None


class TagMoveRequest(BaseModel):
    parent_id: Optional[int] = None


class FaceMatchRequest(BaseModel):
    vector: List[float] = Field(..., description="Precomputed face descriptor")
    threshold: float = DEFAULT_MATCH_THRESHOLD


class StatsResponse(BaseModel):
    total_assets: int
    total_photos: int
    total_videos: int
    geotagged: int
    inferred_locations: int
    directories: int
    tags: int
    assignments: int
    database_path: str
    library_root: Optional[str] = None


def _tag_error(e: TagError) -> HTTPException:
    status = 404 if isinstance(e, TagNotFoundError) else 400
    return HTTPException(status_code=status, detail=str(e))


def scan_directory_task(task_id: str, request: ScanRequest):
    """Background task running one scan pass."""
    task_info = scan_tasks[task_id]

    def on_progress(event: ProgressEvent) -> None:
        task_info["phase"] = event.phase
        task_info["processed"] = event.current if event.current is not None else event.count
        task_info["total"] = event.total

    task_info["status"] = "scanning"
    try:
        result = get_ingestor().scan(request.directory, skip_scanned=request.skip_scanned, progress=on_progress)
        task_info["status"] = "completed"
        task_info["result"] = result.to_dict()
    except Exception as e:  # noqa: BLE001
        logger.error(f"Scan task failed: {e}", exc_info=True)
        task_info["status"] = "error"
        task_info["error_message"] = str(e)
    finally:
        task_info["completed_at"] = datetime.now()


# API endpoints


@app.post("/api/scan", response_model=ScanStatusResponse)
async def start_scan(request: ScanRequest, background_tasks: BackgroundTasks):
    """Start scanning a library root."""
    directory_path = Path(request.directory)
    if not directory_path.exists() or not directory_path.is_dir():
        raise HTTPException(
            status_code=400,
            detail="The specified directory does not exist or is not accessible. Please check the path and permissions.",
        )
    busy = get_ingestor().is_scanning or any(
        task["status"] in ("pending", "scanning") for task in scan_tasks.values()
    )
    if busy:
        raise HTTPException(status_code=409, detail=str(ScanInProgressError("A scan is already in progress")))

    task_id = str(uuid.uuid4())
    task_info = {
        "task_id": task_id,
        "status": "pending",
        "phase": None,
        "processed": None,
        "total": None,
        "result": None,
        "error_message": None,
        "started_at": datetime.now(),
        "completed_at": None,
        "request": request.model_dump(),
    }
    scan_tasks[task_id] = task_info

    background_tasks.add_task(scan_directory_task, task_id, request)
    return ScanStatusResponse(**task_info)


@app.get("/api/scan/{task_id}", response_model=ScanStatusResponse)
async def get_scan_status(task_id: str):
    """Get status of a scan task."""
    task_info = scan_tasks.get(task_id)
    if not task_info:
        raise HTTPException(status_code=404, detail="Scan task not found. It may have expired or been deleted.")
    return ScanStatusResponse(**task_info)


@app.get("/api/scan", response_model=List[ScanStatusResponse])
async def list_scans(limit: int = 10):
    """List recent scan tasks."""
    tasks = list(scan_tasks.values())
    tasks.sort(key=lambda x: x["started_at"], reverse=True)
    return [ScanStatusResponse(**task) for task in tasks[:limit]]


@app.get("/api/assets/range", response_model=List[AssetResponse])
def assets_by_time_range(start: str, end: str):
    """Assets captured within [start, end] (ISO-8601)."""
    try:
        assets = get_store().query_by_time_range(start, end)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid time bound: {e}")
    return [asset.to_dict() for asset in assets]


@app.get("/api/assets/area", response_model=List[AssetResponse])
def assets_by_area(north: float, south: float, east: float, west: float):
    """Assets inside a bounding box, edges inclusive."""
    if south > north:
        raise HTTPException(status_code=400, detail="south must not be greater than north")
    return [asset.to_dict() for asset in get_store().query_by_area(north, south, east, west)]


@app.get("/api/assets/directory", response_model=List[AssetResponse])
def assets_by_directory(path: str = ""):
    """Assets directly inside one directory relative to the library root."""
    return [asset.to_dict() for asset in get_store().query_by_directory(path.strip("/"))]


@app.get("/api/assets/lookup", response_model=AssetDetailResponse)
def asset_lookup(path: str):
    """One asset by relative path, with its tags."""
    store = get_store()
    directory, _, filename = path.strip("/").rpartition("/")
    asset = store.get_asset(directory, filename)
    if asset is None:
        raise HTTPException(status_code=404, detail=f"Asset not found: {path}")
    data = asset.to_dict()
    data["tags"] = [
        {"id": tag.id, "name": tag.name, "category": tag.category.value, "color": tag.color}
        for tag in store.get_asset_tags(asset.id)
    ]
    return data


@app.post("/api/assets/by-tags", response_model=List[AssetResponse])
def assets_by_tags(request: TagIdsRequest):
    """Assets carrying any of the given tags."""
    return [asset.to_dict() for asset in get_store().query_by_tags(request.tag_ids)]


@app.get("/api/directories/tree")
def directory_tree():
    """Directories holding assets, with per-directory counts."""
    return get_store().get_directory_tree()


@app.get("/api/tags")
def tag_tree(category: Optional[str] = None):
    """The tag tree, optionally for one category."""
    try:
        roots = get_store().get_tag_tree(category)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [tag.to_dict() for tag in roots]


@app.post("/api/tags", status_code=201)
def create_tag(request: TagCreateRequest):
    """Create a tag with its category-specific fields."""
    try:
        category = TagCategory.normalize(request.category)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    extension = None
    if category == TagCategory.LANDMARK:
        extension = LandmarkExtension(
            latitude=request.latitude,
            longitude=request.longitude,
            radius=request.radius or 0.0,
            address=request.address or "",
        )
    elif category == TagCategory.EVENT:
        extension = EventExtension(
            start_time=request.start_time,
            end_time=request.end_time,
            landmark_id=request.landmark_id,
        )

    store = get_store()
    kwargs = {"color": request.color} if request.color else {}
    try:
        tag_id = store.create_tag(
            request.name,
            category,
            parent_id=request.parent_id,
            note=request.note,
            extension=extension,
            **kwargs,
        )
    except TagError as e:
        raise _tag_error(e)
    return store.get_tag(tag_id).to_dict()


@app.put("/api/tags/{tag_id}/parent")
def move_tag(tag_id: int, request: TagMoveRequest):
    """Reparent a tag; null makes it a root."""
    store = get_store()
    try:
        store.move_tag(tag_id, request.parent_id)
    except TagError as e:
        raise _tag_error(e)
    return store.get_tag(tag_id).to_dict()


@app.delete("/api/tags/{tag_id}")
def delete_tag(tag_id: int):
    """Delete a tag and its whole subtree."""
    try:
        removed = get_store().delete_tag(tag_id)
    except TagError as e:
        raise _tag_error(e)
    return {"deleted": removed}


@app.post("/api/faces/match")
def match_face(request: FaceMatchRequest):
    """The face tag whose stored samples lie nearest to a descriptor."""
    match = find_best_match(request.vector, get_store().list_tags(TagCategory.FACE), request.threshold)
    if match is None:
        return {"tag": None, "distance": None}
    return {"tag": match.tag.to_dict(), "distance": match.distance}


@app.get("/api/stats", response_model=StatsResponse)
def get_stats():
    """Get catalog statistics."""
    store = get_store()
    try:
        stats = store.get_stats()
    except sqlite3.Error as e:
        logger.error(f"Failed to get stats: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to retrieve catalog statistics.")
    return StatsResponse(**stats, database_path=store.db_path, library_root=store.library_root)


@app.get("/api/geocode")
async def reverse_geocode(lat: float, lng: float):
    """Place name of a coordinate, through the rate-limited lookup queue."""
    if not -90.0 <= lat <= 90.0 or not -180.0 <= lng <= 180.0:
        raise HTTPException(status_code=400, detail="Coordinates out of range")
    place = await get_geocoder().get_place_name(lat, lng)
    return {"latitude": lat, "longitude": lng, "place": place}


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.now()}
