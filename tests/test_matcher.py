"""Tests for event and landmark auto-tagging."""

from datetime import datetime, timezone

import pytest

from photo_atlas.catalog.matcher import EventMatcher
from photo_atlas.catalog.models import Asset, EventExtension, LandmarkExtension

START = datetime(2024, 5, 1, 0, 0, 0)
END = datetime(2024, 5, 3, 23, 59, 59)
INSIDE = datetime(2024, 5, 2, 12, 0, 0)


@pytest.fixture
def city_trip(store):
    """City (r=5km) containing a Museum (r=100m), and an event at the City."""
    city = store.create_tag(
        "City", "landmark", extension=LandmarkExtension(latitude=0.0, longitude=0.0, radius=5000.0)
    )
    museum = store.create_tag(
        "Museum",
        "landmark",
        parent_id=city,
        extension=LandmarkExtension(latitude=0.01, longitude=0.01, radius=100.0),
    )
    trip = store.create_tag(
        "Trip", "event", extension=EventExtension(start_time=START, end_time=END, landmark_id=city)
    )
    return {"city": city, "museum": museum, "trip": trip}


class TestEventMatcher:
    """Test EventMatcher.match."""

    def test_most_specific_landmark(self, store, city_trip):
        tags = EventMatcher(store).match(INSIDE, 0.01, 0.01)
        assert set(tags) == {city_trip["trip"], city_trip["museum"]}
        assert city_trip["city"] not in tags

    def test_falls_back_to_event_landmark(self, store, city_trip):
        tags = EventMatcher(store).match(INSIDE, 0.0, 0.02)
        assert set(tags) == {city_trip["trip"], city_trip["city"]}

    def test_outside_geofence(self, store, city_trip):
        assert EventMatcher(store).match(INSIDE, 1.0, 1.0) == []

    def test_outside_window(self, store, city_trip):
        assert EventMatcher(store).match(datetime(2024, 6, 1), 0.01, 0.01) == []

    def test_window_edges_inclusive(self, store, city_trip):
        matcher = EventMatcher(store)
        assert city_trip["trip"] in matcher.match(START, 0.0, 0.0)
        assert city_trip["trip"] in matcher.match(END, 0.0, 0.0)

    def test_missing_inputs(self, store, city_trip):
        matcher = EventMatcher(store)
        assert matcher.match(None, 0.0, 0.0) == []
        assert matcher.match(INSIDE, None, 0.0) == []

    def test_event_without_landmark_is_skipped(self, store):
        store.create_tag("Loose", "event", extension=EventExtension(start_time=START, end_time=END))
        assert EventMatcher(store).match(INSIDE, 0.0, 0.0) == []

    def test_landmark_without_coordinates_is_skipped(self, store):
        blank = store.create_tag("Blank", "landmark", extension=LandmarkExtension(radius=1000.0))
        store.create_tag("Trip", "event", extension=EventExtension(start_time=START, end_time=END, landmark_id=blank))
        assert EventMatcher(store).match(INSIDE, 0.0, 0.0) == []

    def test_two_events_same_landmark(self, store, city_trip):
        conference = store.create_tag(
            "Conference", "event", extension=EventExtension(start_time=INSIDE, end_time=END, landmark_id=city_trip["city"])
        )
        tags = EventMatcher(store).match(INSIDE, 0.01, 0.01)
        assert set(tags) == {city_trip["trip"], conference, city_trip["museum"]}
        assert len(tags) == len(set(tags))

    def test_aware_capture_time(self, store, city_trip):
        matcher = EventMatcher(store)
        assert city_trip["trip"] in matcher.match(INSIDE.astimezone(), 0.01, 0.01)
        assert city_trip["trip"] in matcher.match(INSIDE.astimezone(timezone.utc), 0.01, 0.01)

    def test_aware_window_on_create(self, store, city_trip):
        start = START.astimezone(timezone.utc)
        end = END.astimezone(timezone.utc)
        tag_id = store.create_tag(
            "Utc trip", "event", extension=EventExtension(start_time=start, end_time=end, landmark_id=city_trip["city"])
        )
        event = store.get_tag(tag_id).event
        assert (event.start_time, event.end_time) == (START, END)
        assert tag_id in EventMatcher(store).match(INSIDE, 0.0, 0.0)


class TestClassify:
    """Test EventMatcher.classify."""

    def test_assigns_tags_once(self, store, city_trip, library):
        (library / "a.jpg").write_bytes(b"x")
        store.set_library_root(library)
        photo = Asset(directory="", filename="a.jpg", capture_time=INSIDE, latitude=0.01, longitude=0.01)
        store.upsert_asset(photo)

        matcher = EventMatcher(store)
        assert matcher.classify([photo]) == 2
        assert matcher.classify([photo]) == 0
        names = sorted(tag.name for tag in store.get_asset_tags(photo.id))
        assert names == ["Museum", "Trip"]

    def test_unsaved_assets_are_ignored(self, store, city_trip):
        photo = Asset(directory="", filename="a.jpg", capture_time=INSIDE, latitude=0.01, longitude=0.01)
        assert EventMatcher(store).classify([photo]) == 0

    def test_classify_loads_tags_once(self, store, city_trip, library, monkeypatch):
        photos = []
        for i in range(5):
            (library / f"{i}.jpg").write_bytes(b"x")
            photos.append(Asset(directory="", filename=f"{i}.jpg", capture_time=INSIDE, latitude=0.01, longitude=0.01))
        store.upsert_assets(photos)

        calls = []
        real_list_tags = store.list_tags

        def counting(*args, **kwargs):
            calls.append(args)
            return real_list_tags(*args, **kwargs)

        monkeypatch.setattr(store, "list_tags", counting)
        assert EventMatcher(store).classify(photos) == 10
        assert len(calls) == 1
