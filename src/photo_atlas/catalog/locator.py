"""Location inference from temporally nearby geotagged assets."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from photo_atlas.catalog.config import DEFAULT_PROXIMITY_WINDOW, LocationSource
from photo_atlas.catalog.models import Asset

logger = logging.getLogger(__name__)


@dataclass
class ProximityMatch:
    candidate: Asset
    delta: timedelta


class ProximityLocator:
    """Finds the geotagged asset closest in time to a target timestamp.

    Only candidates with a capture time and both coordinates are eligible.
    Ties keep the first candidate in list order.
    """

    def __init__(self, max_delta: timedelta = DEFAULT_PROXIMITY_WINDOW):
        if max_delta < timedelta(0):
            raise ValueError("max_delta must not be negative")
        self.max_delta = max_delta

    def find_nearest(self, target_time: Optional[datetime], candidates: Iterable[Asset]) -> Optional[ProximityMatch]:
        """Return the nearest eligible candidate within the window, or None."""
        if target_time is None:
            return None

        nearest: Optional[Asset] = None
        min_delta: Optional[timedelta] = None
        for candidate in candidates:
            if candidate.capture_time is None or not candidate.has_location:
                continue
            delta = abs(target_time - candidate.capture_time)
            if min_delta is None or delta < min_delta:
                nearest, min_delta = candidate, delta

        if nearest is None or min_delta is None or min_delta > self.max_delta:
            return None
        return ProximityMatch(candidate=nearest, delta=min_delta)

    def infer(self, asset: Asset, candidates: Iterable[Asset]) -> bool:
        """Copy the nearest candidate's coordinates onto an asset lacking them.

        Returns:
            True if a location was inferred
        """
        if asset.has_location:
            return False
        match = self.find_nearest(asset.capture_time, candidates)
        if match is None:
            return False
        asset.latitude = match.candidate.latitude
        asset.longitude = match.candidate.longitude
        asset.location_source = LocationSource.INFERRED
        logger.debug(
            f"Inferred location of {asset.relative_path} from "
            f"{match.candidate.relative_path} ({match.delta} apart)"
        )
        return True

    def infer_all(self, assets: Iterable[Asset], candidates: List[Asset]) -> int:
        """Infer locations for every asset missing coordinates; returns the count."""
        return sum(1 for asset in assets if self.infer(asset, candidates))
