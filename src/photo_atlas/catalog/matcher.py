"""Automatic event and landmark tagging of geotagged assets."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from photo_atlas.catalog.catalog_store import CatalogStore
from photo_atlas.catalog.config import TagCategory
from photo_atlas.catalog.geofence import contains
from photo_atlas.catalog.models import Asset, Tag, to_local_naive
from photo_atlas.catalog.tags import children_index, iter_subtree

logger = logging.getLogger(__name__)


@dataclass
class _TagSnapshot:
    """Every tag loaded once, indexed for repeated matching."""
    events: List[Tag]
    by_id: Dict[int, Tag]
    children: Dict[Optional[int], List[int]]


class EventMatcher:
    """Matches a capture time and location against event tags.

    An event matches when its window contains the capture time and its
    landmark's geofence contains the location. For each matching event the
    most specific landmark in that landmark's subtree whose geofence also
    contains the point is reported alongside the event.
    """

    def __init__(self, store: CatalogStore):
        self.store = store

    def _snapshot(self) -> _TagSnapshot:
        tags = self.store.list_tags()
        events = [
            tag for tag in tags
            if tag.event is not None and tag.event.has_window and tag.event.landmark_id is not None
        ]
        return _TagSnapshot(
            events=events,
            by_id={tag.id: tag for tag in tags},
            children=children_index({tag.id: tag.parent_id for tag in tags}),
        )

    def match(self, capture_time: Optional[datetime], latitude: Optional[float], longitude: Optional[float]) -> List[int]:
        """Return ids of matching events and their most specific landmarks."""
        if capture_time is None or latitude is None or longitude is None:
            return []
        return self._match(self._snapshot(), capture_time, latitude, longitude)

    def _match(self, snapshot: _TagSnapshot, capture_time: datetime, latitude: float, longitude: float) -> List[int]:
        capture_time = to_local_naive(capture_time)
        matched: List[int] = []
        for event_tag in snapshot.events:
            landmark_tag = self._match_event(snapshot, event_tag, capture_time, latitude, longitude)
            if landmark_tag is None:
                continue
            deepest = self._deepest_landmark(snapshot, landmark_tag, latitude, longitude)
            for tag_id in (event_tag.id, deepest.id):
                if tag_id not in matched:
                    matched.append(tag_id)
        return matched

    def _match_event(
        self, snapshot: _TagSnapshot, event_tag: Tag, capture_time: datetime, latitude: float, longitude: float
    ) -> Optional[Tag]:
        event = event_tag.event
        if event is None or not event.contains_time(capture_time):
            return None
        landmark_tag = snapshot.by_id.get(event.landmark_id)
        if landmark_tag is None or landmark_tag.landmark is None:
            logger.debug(f"Event '{event_tag.name}' links a missing landmark {event.landmark_id}")
            return None
        if not landmark_tag.landmark.has_coordinates:
            logger.debug(f"Landmark '{landmark_tag.name}' of event '{event_tag.name}' has no coordinates")
            return None
        if not contains(landmark_tag.landmark, latitude, longitude):
            return None
        return landmark_tag

    def _deepest_landmark(self, snapshot: _TagSnapshot, root: Tag, latitude: float, longitude: float) -> Tag:
        descendants = [
            (snapshot.by_id[tag_id], depth)
            for tag_id, depth in iter_subtree(root.id, snapshot.children)
            if snapshot.by_id[tag_id].category == TagCategory.LANDMARK
        ]
        # Stable sort keeps pre-order among nodes of equal depth
        for tag, _ in sorted(descendants, key=lambda pair: pair[1], reverse=True):
            if contains(tag.landmark, latitude, longitude):
                return tag
        return root

    def classify(self, assets: Iterable[Asset]) -> int:
        """Assign matching tags to stored assets; returns the number of new assignments."""
        snapshot: Optional[_TagSnapshot] = None
        pairs = []
        for asset in assets:
            if asset.id is None or asset.capture_time is None or not asset.has_location:
                continue
            if snapshot is None:
                snapshot = self._snapshot()
                if not snapshot.events:
                    return 0
            for tag_id in self._match(snapshot, asset.capture_time, asset.latitude, asset.longitude):
                pairs.append((asset.id, tag_id))
        if not pairs:
            return 0
        created = self.store.link_tags(pairs)
        logger.info(f"Auto-tagging created {created} assignments")
        return created
