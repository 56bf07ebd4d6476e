"""Capture time and GPS extraction from media files."""

import io
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

from PIL import Image, UnidentifiedImageError
from pillow_heif import register_heif_opener

from photo_atlas.catalog.config import DEFAULT_EXTRACTION_TIMEOUT, MediaKind, supports_exif
from photo_atlas.catalog.models import ExtractedMetadata

logger = logging.getLogger(__name__)

register_heif_opener()

# EXIF tag ids
EXIF_IFD_POINTER = 0x8769
GPS_IFD_POINTER = 0x8825
TAG_DATETIME = 0x0132
TAG_DATETIME_ORIGINAL = 0x9003
TAG_DATETIME_DIGITIZED = 0x9004
GPS_LATITUDE_REF = 1
GPS_LATITUDE = 2
GPS_LONGITUDE_REF = 3
GPS_LONGITUDE = 4

EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"


def ratio_to_float(value: Any) -> float:
    if hasattr(value, "numerator") and hasattr(value, "denominator"):
        return float(value.numerator) / float(value.denominator)
    if isinstance(value, tuple) and len(value) == 2:
        return float(value[0]) / float(value[1])
    return float(value)


def dms_to_decimal(dms: Any, ref: Any) -> float:
    """Convert an EXIF degrees/minutes/seconds triple to signed decimal degrees."""
    if isinstance(ref, bytes):
        ref = ref.decode("ascii", errors="ignore")
    degrees = ratio_to_float(dms[0])
    minutes = ratio_to_float(dms[1])
    seconds = ratio_to_float(dms[2])
    decimal = degrees + minutes / 60 + seconds / 3600
    if str(ref).strip("\x00 ").upper() in {"S", "W"}:
        decimal = -decimal
    return decimal


def parse_exif_datetime(value: Any) -> Optional[datetime]:
    """Parse an EXIF 'YYYY:MM:DD HH:MM:SS' value; blank or bad values give None."""
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="ignore")
    if not isinstance(value, str):
        return None
    text = value.strip("\x00 ").strip()
    if not text:
        return None
    try:
        return datetime.strptime(text[:19], EXIF_DATETIME_FORMAT)
    except ValueError:
        return None


class MetadataExtractor:
    """Reads capture time and coordinates, bounded by a per-file timeout.

    ``extract`` never raises: parse failures and timeouts are logged and
    reported as "no metadata" so the caller can fall back to the file's
    modification time.
    """

    def __init__(self, timeout: float = DEFAULT_EXTRACTION_TIMEOUT):
        self.timeout = timeout

    def extract(self, path: Union[str, Path], kind: MediaKind = MediaKind.PHOTO) -> ExtractedMetadata:
        """Extract metadata from a single media file.

        Args:
            path: Absolute path of the file
            kind: Declared media kind

        Returns:
            ExtractedMetadata, possibly empty
        """
        file_path = Path(path)
        if kind == MediaKind.VIDEO:
            # Embedded video metadata is not parsed; callers use the mtime
            return ExtractedMetadata()
        if not supports_exif(file_path.name):
            logger.debug(f"Skipping EXIF parse for format without metadata: {file_path.name}")
            return ExtractedMetadata()

        # The handle is closed before parsing starts, so a parse that
        # outlives the timeout cannot keep the file open.
        try:
            with open(file_path, "rb") as f:
                data = f.read()
        except OSError as e:
            logger.warning(f"Cannot read {file_path}: {e}")
            return ExtractedMetadata()

        return self._parse_with_timeout(data, file_path)

    def _parse_with_timeout(self, data: bytes, file_path: Path) -> ExtractedMetadata:
        outcome: Dict[str, Any] = {}

        def target():
            try:
                outcome["metadata"] = self.parse_bytes(data)
            except Exception as e:  # noqa: BLE001
                outcome["error"] = e

        worker = threading.Thread(
            target=target, name=f"exif-{file_path.name}", daemon=True
        )
        worker.start()
        worker.join(self.timeout)

        if worker.is_alive():
            logger.warning(
                f"EXIF read timed out after {self.timeout:g}s: {file_path}; "
                f"falling back to file modification time"
            )
            return ExtractedMetadata()
        if "error" in outcome:
            logger.warning(f"EXIF parse failed for {file_path}: {outcome['error']}")
            return ExtractedMetadata()
        return outcome.get("metadata", ExtractedMetadata())

    def parse_bytes(self, data: bytes) -> ExtractedMetadata:
        """Parse EXIF capture time and GPS position from raw image bytes."""
        try:
            with Image.open(io.BytesIO(data)) as img:
                exif = img.getexif()
                if not exif:
                    return ExtractedMetadata()
                exif_ifd = dict(exif.get_ifd(EXIF_IFD_POINTER))
                gps_ifd = dict(exif.get_ifd(GPS_IFD_POINTER))
                base = {tag: exif.get(tag) for tag in (TAG_DATETIME_ORIGINAL, TAG_DATETIME)}
        except UnidentifiedImageError:
            logger.debug("Not a valid image file")
            return ExtractedMetadata()

        capture_time = (
            parse_exif_datetime(exif_ifd.get(TAG_DATETIME_ORIGINAL))
            or parse_exif_datetime(exif_ifd.get(TAG_DATETIME_DIGITIZED))
            or parse_exif_datetime(base[TAG_DATETIME_ORIGINAL])
            or parse_exif_datetime(base[TAG_DATETIME])
        )

        latitude, longitude = None, None
        lat = gps_ifd.get(GPS_LATITUDE)
        lat_ref = gps_ifd.get(GPS_LATITUDE_REF)
        lng = gps_ifd.get(GPS_LONGITUDE)
        lng_ref = gps_ifd.get(GPS_LONGITUDE_REF)
        if lat and lng and lat_ref and lng_ref:
            try:
                latitude = dms_to_decimal(lat, lat_ref)
                longitude = dms_to_decimal(lng, lng_ref)
            except (TypeError, ValueError, ZeroDivisionError, IndexError) as e:
                logger.debug(f"Malformed GPS block: {e}")
                latitude, longitude = None, None

        return ExtractedMetadata(
            capture_time=capture_time, latitude=latitude, longitude=longitude
        )
