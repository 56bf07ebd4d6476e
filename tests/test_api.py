"""Tests for the web API."""

from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from photo_atlas.config import ENV_DB_PATH, AtlasConfig
from photo_atlas.web import api


class FakeGeocoder:
    def __init__(self, place="Paris"):
        self.place = place
        self.calls = []

    async def get_place_name(self, latitude, longitude):
        self.calls.append((latitude, longitude))
        return self.place


@pytest.fixture
def client(temp_db, monkeypatch):
    monkeypatch.delenv(ENV_DB_PATH, raising=False)
    api.configure(AtlasConfig(db_path=temp_db))
    yield TestClient(api.app)
    api.configure(AtlasConfig(db_path=temp_db))


@pytest.fixture
def scanned(client, library, make_image):
    make_image(library / "2024" / "paris.jpg", taken=datetime(2024, 5, 1, 10, 0), gps=(48.8566, 2.3522))
    make_image(library / "2024" / "rome.jpg", taken=datetime(2024, 6, 1, 10, 0), gps=(41.9028, 12.4964))
    response = client.post("/api/scan", json={"directory": str(library)})
    assert response.status_code == 200
    return response.json()["task_id"]


class TestScanEndpoints:
    """Test scan task endpoints."""

    def test_scan_completes(self, client, scanned):
        response = client.get(f"/api/scan/{scanned}")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["result"]["new_photos"] == 2
        assert data["phase"] == "database"

    def test_list_scans(self, client, scanned):
        response = client.get("/api/scan")
        assert [task["task_id"] for task in response.json()] == [scanned]

    def test_bad_directory(self, client, tmp_path):
        response = client.post("/api/scan", json={"directory": str(tmp_path / "missing")})
        assert response.status_code == 400

    def test_unknown_task(self, client):
        assert client.get("/api/scan/nope").status_code == 404

    def test_busy_ingestor_rejects_scan(self, client, library):
        store = api.get_store()
        store.scan_lock.acquire()
        try:
            response = client.post("/api/scan", json={"directory": str(library)})
        finally:
            store.scan_lock.release()
        assert response.status_code == 409


class TestAssetEndpoints:
    """Test asset queries."""

    def test_time_range(self, client, scanned):
        response = client.get("/api/assets/range", params={"start": "2024-05-01T00:00:00", "end": "2024-05-31T23:59:59"})
        assert response.status_code == 200
        assert [a["filename"] for a in response.json()] == ["paris.jpg"]

    def test_time_range_bad_bound(self, client):
        response = client.get("/api/assets/range", params={"start": "soon", "end": "later"})
        assert response.status_code == 400

    def test_area(self, client, scanned):
        response = client.get("/api/assets/area", params={"north": 45, "south": 40, "east": 15, "west": 10})
        assert [a["filename"] for a in response.json()] == ["rome.jpg"]

    def test_area_rejects_inverted_box(self, client):
        response = client.get("/api/assets/area", params={"north": 10, "south": 20, "east": 1, "west": 0})
        assert response.status_code == 400

    def test_directory_and_tree(self, client, scanned):
        assert len(client.get("/api/assets/directory", params={"path": "2024"}).json()) == 2
        tree = client.get("/api/directories/tree").json()
        assert tree["total"] == 2
        assert tree["children"][0]["name"] == "2024"

    def test_lookup(self, client, scanned):
        response = client.get("/api/assets/lookup", params={"path": "2024/paris.jpg"})
        assert response.status_code == 200
        assert response.json()["tags"] == []
        assert client.get("/api/assets/lookup", params={"path": "2024/oslo.jpg"}).status_code == 404


class TestTagEndpoints:
    """Test tag management."""

    def test_create_landmark_and_event(self, client):
        response = client.post(
            "/api/tags",
            json={"name": "Paris", "category": "landmark", "latitude": 48.8566, "longitude": 2.3522, "radius": 3000},
        )
        assert response.status_code == 201
        landmark = response.json()
        assert landmark["radius"] == 3000

        response = client.post(
            "/api/tags",
            json={
                "name": "Holiday",
                "category": "event",
                "start_time": "2024-05-01T00:00:00",
                "end_time": "2024-05-02T23:59:59",
                "landmark_id": landmark["id"],
            },
        )
        assert response.status_code == 201
        assert response.json()["landmark_id"] == landmark["id"]

        tree = client.get("/api/tags", params={"category": "event"}).json()
        assert [t["name"] for t in tree] == ["Holiday"]

    def test_tagged_scan_and_query(self, client, library, make_image):
        paris = client.post(
            "/api/tags",
            json={"name": "Paris", "category": "landmark", "latitude": 48.8566, "longitude": 2.3522, "radius": 3000},
        ).json()
        make_image(library / "paris.jpg", taken=datetime(2024, 5, 1, 10, 0), gps=(48.8566, 2.3522))
        client.post("/api/scan", json={"directory": str(library)})
        # Landmarks alone do not tag; only events do
        response = client.post("/api/assets/by-tags", json={"tag_ids": [paris["id"]]})
        assert response.json() == []

    def test_invalid_category(self, client):
        response = client.post("/api/tags", json={"name": "x", "category": "planet"})
        assert response.status_code == 400

    def test_duplicate_name(self, client):
        client.post("/api/tags", json={"name": "x"})
        assert client.post("/api/tags", json={"name": "x"}).status_code == 400

    def test_move_and_delete(self, client):
        a = client.post("/api/tags", json={"name": "A"}).json()["id"]
        b = client.post("/api/tags", json={"name": "B"}).json()["id"]
        response = client.put(f"/api/tags/{b}/parent", json={"parent_id": a})
        assert response.json()["parent_id"] == a
        assert client.put(f"/api/tags/{a}/parent", json={"parent_id": b}).status_code == 400
        assert client.delete(f"/api/tags/{a}").json() == {"deleted": 2}
        assert client.get("/api/tags").json() == []

    def test_face_match(self, client):
        alice = client.post("/api/tags", json={"name": "Alice", "category": "face"}).json()["id"]
        api.get_store().add_face_sample(alice, [0.1, 0.2, 0.3])
        hit = client.post("/api/faces/match", json={"vector": [0.1, 0.2, 0.35]}).json()
        assert hit["tag"]["id"] == alice
        assert hit["distance"] < 0.1
        miss = client.post("/api/faces/match", json={"vector": [5.0, 5.0, 5.0]}).json()
        assert miss == {"tag": None, "distance": None}

    def test_unknown_tag(self, client):
        assert client.delete("/api/tags/999").status_code == 404
        assert client.put("/api/tags/999/parent", json={"parent_id": None}).status_code == 404


class TestMiscEndpoints:
    """Test stats, geocoding and health."""

    def test_stats(self, client, scanned):
        data = client.get("/api/stats").json()
        assert data["total_photos"] == 2
        assert data["geotagged"] == 2
        assert data["library_root"] is not None

    def test_geocode(self, client, monkeypatch):
        fake = FakeGeocoder("Lyon")
        monkeypatch.setattr(api, "_geocoder", fake)
        response = client.get("/api/geocode", params={"lat": 45.76, "lng": 4.84})
        assert response.json() == {"latitude": 45.76, "longitude": 4.84, "place": "Lyon"}
        assert fake.calls == [(45.76, 4.84)]

    def test_geocode_out_of_range(self, client):
        assert client.get("/api/geocode", params={"lat": 95, "lng": 0}).status_code == 400

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
