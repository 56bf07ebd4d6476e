"""Tests for the catalog store."""

import os
from datetime import datetime

import pytest

from photo_atlas.catalog.catalog_store import CatalogStore
from photo_atlas.catalog.config import LocationSource, MediaKind
from photo_atlas.catalog.errors import CatalogWriteError
from photo_atlas.catalog.models import Asset


def place(library, directory, filename):
    folder = library / directory if directory else library
    folder.mkdir(parents=True, exist_ok=True)
    (folder / filename).write_bytes(b"x")


def asset(directory, filename, when=None, lat=None, lng=None, kind=MediaKind.PHOTO):
    return Asset(
        directory=directory,
        filename=filename,
        kind=kind,
        capture_time=when,
        latitude=lat,
        longitude=lng,
        location_source=LocationSource.ORIGINAL if lat is not None else None,
    )


@pytest.fixture
def rooted_store(store, library):
    store.set_library_root(library)
    return store


class TestAssets:
    """Test asset persistence and queries."""

    def test_store_initialization(self, temp_db):
        CatalogStore(temp_db)
        assert os.path.exists(temp_db)

    def test_upsert_never_duplicates(self, rooted_store, library):
        place(library, "d", "a.jpg")
        first = rooted_store.upsert_asset(asset("d", "a.jpg", datetime(2024, 1, 1)))
        second = rooted_store.upsert_asset(asset("d", "a.jpg", datetime(2024, 2, 2)))
        assert first == second
        assert len(rooted_store.list_assets()) == 1
        assert rooted_store.get_asset("d", "a.jpg").capture_time == datetime(2024, 2, 2)

    def test_upsert_preserves_user_fields(self, rooted_store, library):
        place(library, "", "a.jpg")
        asset_id = rooted_store.upsert_asset(asset("", "a.jpg"))
        assert rooted_store.set_note("", "a.jpg", "birthday")
        assert rooted_store.set_favorite(asset_id)
        rooted_store.upsert_asset(asset("", "a.jpg", datetime(2024, 1, 1)))
        stored = rooted_store.get_asset_by_id(asset_id)
        assert stored.note == "birthday"
        assert stored.favorite is True

    def test_batch_upsert_assigns_ids(self, rooted_store, library):
        batch = [asset("", f"{i}.jpg") for i in range(3)]
        ids = rooted_store.upsert_assets(batch)
        assert len(set(ids)) == 3
        assert [a.id for a in batch] == ids

    def test_failed_batch_is_rolled_back(self, rooted_store, library):
        place(library, "", "ok.jpg")
        bad = asset("", "bad.jpg")
        bad.filename = None  # violates NOT NULL
        with pytest.raises(CatalogWriteError):
            rooted_store.upsert_assets([asset("", "ok.jpg"), bad])
        assert not rooted_store.asset_exists("", "ok.jpg")

    def test_existence_check(self, rooted_store):
        rooted_store.upsert_asset(asset("d", "a.jpg"))
        assert rooted_store.asset_exists("d", "a.jpg")
        assert not rooted_store.asset_exists("", "a.jpg")

    def test_missing_files_are_filtered_from_reads(self, rooted_store, library):
        place(library, "", "here.jpg")
        rooted_store.upsert_assets([asset("", "here.jpg"), asset("", "gone.jpg")])
        assert [a.filename for a in rooted_store.list_assets()] == ["here.jpg"]
        assert rooted_store.get_asset("", "gone.jpg") is None
        # The row itself is kept
        assert rooted_store.asset_exists("", "gone.jpg")

    def test_no_root_means_no_filtering(self, store):
        store.upsert_asset(asset("", "anywhere.jpg"))
        assert len(store.list_assets()) == 1

    def test_time_range_is_inclusive(self, rooted_store, library):
        for name in ("a.jpg", "b.jpg", "c.jpg"):
            place(library, "", name)
        rooted_store.upsert_assets([
            asset("", "a.jpg", datetime(2024, 5, 1, 10, 0)),
            asset("", "b.jpg", datetime(2024, 5, 2, 10, 0)),
            asset("", "c.jpg", datetime(2024, 5, 3, 10, 0)),
        ])
        found = rooted_store.query_by_time_range("2024-05-01T10:00:00", "2024-05-02T10:00:00")
        assert [a.filename for a in found] == ["a.jpg", "b.jpg"]

    def test_area_query_edges_inclusive(self, rooted_store, library):
        for name in ("in.jpg", "edge.jpg", "out.jpg", "none.jpg"):
            place(library, "", name)
        rooted_store.upsert_assets([
            asset("", "in.jpg", lat=10.0, lng=10.0),
            asset("", "edge.jpg", lat=20.0, lng=5.0),
            asset("", "out.jpg", lat=30.0, lng=10.0),
            asset("", "none.jpg"),
        ])
        found = rooted_store.query_by_area(north=20.0, south=0.0, east=20.0, west=5.0)
        assert sorted(a.filename for a in found) == ["edge.jpg", "in.jpg"]

    def test_area_query_across_antimeridian(self, rooted_store, library):
        for name in ("fiji.jpg", "samoa.jpg", "paris.jpg"):
            place(library, "", name)
        rooted_store.upsert_assets([
            asset("", "fiji.jpg", lat=-17.7, lng=178.0),
            asset("", "samoa.jpg", lat=-13.8, lng=-172.0),
            asset("", "paris.jpg", lat=48.8, lng=2.3),
        ])
        found = rooted_store.query_by_area(north=0.0, south=-30.0, east=-170.0, west=170.0)
        assert sorted(a.filename for a in found) == ["fiji.jpg", "samoa.jpg"]

    def test_directory_query_is_exact(self, rooted_store, library):
        place(library, "2024", "a.jpg")
        place(library, "2024/trip", "b.jpg")
        rooted_store.upsert_assets([asset("2024", "a.jpg"), asset("2024/trip", "b.jpg")])
        assert [a.filename for a in rooted_store.query_by_directory("2024")] == ["a.jpg"]

    def test_tag_query_is_a_deduplicated_union(self, rooted_store, library):
        for name in ("a.jpg", "b.jpg", "c.jpg"):
            place(library, "", name)
        a, b, c = rooted_store.upsert_assets([asset("", "a.jpg"), asset("", "b.jpg"), asset("", "c.jpg")])
        red = rooted_store.create_tag("red")
        blue = rooted_store.create_tag("blue")
        rooted_store.link_tags([(a, red), (a, blue), (b, blue)])
        found = rooted_store.query_by_tags([red, blue])
        assert sorted(x.filename for x in found) == ["a.jpg", "b.jpg"]
        assert rooted_store.query_by_tags([]) == []

    def test_link_is_idempotent(self, rooted_store):
        asset_id = rooted_store.upsert_asset(asset("", "a.jpg"))
        tag_id = rooted_store.create_tag("t")
        assert rooted_store.link_tag(asset_id, tag_id)
        assert not rooted_store.link_tag(asset_id, tag_id)
        assert rooted_store.unlink_tag(asset_id, tag_id)
        assert rooted_store.get_asset_tags(asset_id) == []

    def test_directory_tree_counts(self, rooted_store, library):
        place(library, "", "top.jpg")
        place(library, "2024/paris", "a.jpg")
        place(library, "2024/paris", "b.jpg")
        place(library, "2024/rome", "c.jpg")
        rooted_store.upsert_assets([
            asset("", "top.jpg"),
            asset("2024/paris", "a.jpg"),
            asset("2024/paris", "b.jpg"),
            asset("2024/rome", "c.jpg"),
        ])
        tree = rooted_store.get_directory_tree()
        assert tree["count"] == 1
        assert tree["total"] == 4
        (year,) = tree["children"]
        assert (year["name"], year["path"], year["count"], year["total"]) == ("2024", "2024", 0, 3)
        assert [(c["name"], c["count"]) for c in year["children"]] == [("paris", 2), ("rome", 1)]


class TestDirectoriesAndSettings:
    """Test scan bookkeeping."""

    def test_directory_lifecycle(self, store):
        assert not store.has_directory("2024")
        store.add_directory("2024")
        assert store.has_directory("2024")
        assert not store.is_scanned("2024")
        store.mark_scanned(["2024", "2025"])
        assert store.is_scanned("2024")
        assert store.is_scanned("2025")
        assert [d.path for d in store.list_directories()] == ["2024", "2025"]

    def test_add_directory_keeps_scan_state(self, store):
        store.mark_scanned("")
        store.add_directory("")
        assert store.is_scanned("")

    def test_settings(self, store):
        assert store.get_setting("missing", "dflt") == "dflt"
        store.set_setting("library_root", "/photos")
        store.set_setting("limits", {"a": 1})
        assert store.library_root == "/photos"
        assert store.get_setting("limits") == {"a": 1}

    def test_explicit_root_wins(self, temp_db, tmp_path):
        store = CatalogStore(temp_db, root=tmp_path)
        store.set_library_root("/elsewhere")
        assert store.library_root == str(tmp_path)

    def test_stats(self, rooted_store, library):
        rooted_store.upsert_assets([
            asset("", "a.jpg", lat=1.0, lng=1.0),
            asset("", "b.mp4", kind=MediaKind.VIDEO),
        ])
        rooted_store.create_tag("t")
        stats = rooted_store.get_stats()
        assert stats["total_assets"] == 2
        assert stats["total_photos"] == 1
        assert stats["total_videos"] == 1
        assert stats["geotagged"] == 1
        assert stats["tags"] == 1

    def test_foreign_keys_enforced(self, store):
        with pytest.raises(CatalogWriteError):
            store.link_tags([(999, 999)])
