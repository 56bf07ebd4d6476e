"""Shared fixtures for photo-atlas tests."""

import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

import pytest
from PIL import Image
from PIL.TiffImagePlugin import IFDRational

from photo_atlas.catalog.catalog_store import CatalogStore

EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"


def _dms(value: float) -> Tuple[IFDRational, IFDRational, IFDRational]:
    degrees = int(value)
    minutes_float = (value - degrees) * 60
    minutes = int(minutes_float)
    seconds = round((minutes_float - minutes) * 60 * 1000)
    return IFDRational(degrees, 1), IFDRational(minutes, 1), IFDRational(seconds, 1000)


def create_test_image(
    path: Path,
    taken: Optional[datetime] = None,
    gps: Optional[Tuple[float, float]] = None,
    original: bool = False,
    mtime: Optional[datetime] = None,
) -> Path:
    """Write a small JPEG with optional EXIF capture time and GPS position.

    Args:
        path: Where to save the image
        taken: Capture time; stored as DateTime, or DateTimeOriginal if ``original``
        gps: (latitude, longitude) in decimal degrees
        mtime: File modification time to set after writing
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    img = Image.new("RGB", (16, 16), color="red")
    exif = Image.Exif()
    if taken is not None:
        if original:
            exif[0x8769] = {0x9003: taken.strftime(EXIF_DATETIME_FORMAT)}
        else:
            exif[0x0132] = taken.strftime(EXIF_DATETIME_FORMAT)
    if gps is not None:
        lat, lng = gps
        exif[0x8825] = {
            1: "N" if lat >= 0 else "S",
            2: _dms(abs(lat)),
            3: "E" if lng >= 0 else "W",
            4: _dms(abs(lng)),
        }
    if taken is not None or gps is not None:
        img.save(path, "JPEG", exif=exif)
    else:
        img.save(path, "JPEG")
    if mtime is not None:
        stamp = mtime.timestamp()
        os.utime(path, (stamp, stamp))
    return path


def create_test_video(path: Path, mtime: Optional[datetime] = None) -> Path:
    """Write a placeholder video file; only its name and mtime matter."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42")
    if mtime is not None:
        stamp = mtime.timestamp()
        os.utime(path, (stamp, stamp))
    return path


@pytest.fixture
def temp_db():
    """Create a temporary database path for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    yield db_path
    # Cleanup
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def store(temp_db):
    return CatalogStore(temp_db)


@pytest.fixture
def library(tmp_path):
    """An empty library root directory."""
    root = tmp_path / "library"
    root.mkdir()
    return root


@pytest.fixture
def make_image():
    return create_test_image


@pytest.fixture
def make_video():
    return create_test_video
