import pytest
from fastapi.testclient import TestClient

from render_api import worker
from render_api.database import db
from render_api.main import app
from render_api.routers import admin, internal

ADMIN = {"X-Admin-Token": "admin-secret"}
WORKER = {"X-Worker-Token": "worker-secret"}
OWNER = {"X-User-Id": "owner"}


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(admin, "ADMIN_TOKEN", "admin-secret")
    monkeypatch.setattr(internal, "WORKER_TOKEN", "worker-secret")
    with TestClient(app) as c:
        yield c


@pytest.fixture
def track(client, payload):
    r = client.post("/tracks", json={"userId": "owner", "title": "Sleep story", "payload": payload})
    assert r.status_code == 200
    return r.json()


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_create_track_returns_ids_and_queues(client, track):
    assert track["status"] == "pending"
    assert track["warnings"] == []

    job = client.get(f"/jobs/{track['jobId']}").json()
    assert job["status"] == "pending"
    assert job["track_id"] == track["trackId"]

    info = client.get(f"/tracks/{track['trackId']}").json()
    assert info["status"] == "draft"
    assert info["latest_job"]["id"] == track["jobId"]


def test_invalid_payload_is_422_and_creates_nothing(client, payload):
    r = client.post("/tracks", json={"userId": "owner", "payload": {**payload, "gains": {"voice": 12}}})
    assert r.status_code == 422
    assert any("voice" in d for d in r.json()["detail"]["details"])
    with db() as conn:
        assert conn.execute("SELECT COUNT(*) FROM audio_jobs").fetchone()[0] == 0


def test_clipping_risk_is_a_warning_not_an_error(client, payload):
    loud = {**payload, "gains": {"voice": 3, "master": 2}}
    r = client.post("/tracks", json={"userId": "owner", "payload": loud})
    assert r.status_code == 200
    (warning,) = r.json()["warnings"]
    assert warning["layer"] == "voice"
    assert warning["total_db"] == 5


def test_submit_job_for_existing_track(client, track, payload):
    r = client.post("/jobs", json={"trackId": track["trackId"], "userId": "owner", "payload": payload})
    assert r.status_code == 200
    assert r.json()["jobId"] != track["jobId"]

    r = client.post("/jobs", json={"trackId": track["trackId"], "userId": "intruder", "payload": payload})
    assert r.status_code == 404


def test_unknown_ids_are_404(client):
    assert client.get("/jobs/999").status_code == 404
    assert client.get("/tracks/nope").status_code == 404
    assert client.get("/tracks/nope/renders").status_code == 404


def test_worker_run_requires_token(client):
    assert client.post("/internal/worker/run").status_code == 403
    assert client.post("/internal/reaper/run", headers={"X-Worker-Token": "wrong"}).status_code == 403


def test_worker_run_renders_queue(client, track, fake_tts, monkeypatch):
    monkeypatch.setattr(worker, "CLAIM_DELAY_SEC", 0)
    r = client.post("/internal/worker/run", headers=WORKER)
    assert r.status_code == 200
    body = r.json()
    assert body["processed"] == 1
    assert body["results"][0]["status"] == "completed"

    renders = client.get(f"/tracks/{track['trackId']}/renders").json()["renders"]
    assert len(renders) == 1
    assert client.get(f"/tracks/{track['trackId']}").json()["status"] == "published"


def test_reaper_run(client, track):
    r = client.post("/internal/reaper/run", headers=WORKER)
    assert r.json() == {"stuck_reset": []}


class TestEditRoutes:
    def test_requires_user_header(self, client, track):
        assert client.post(f"/tracks/{track['trackId']}/edit", json={}).status_code == 401

    def test_edit_then_payment_gate(self, client, track):
        url = f"/tracks/{track['trackId']}/edit"
        for n in range(1, 4):
            r = client.post(url, json={"gains": {"music": -12}}, headers=OWNER)
            assert r.status_code == 200
            assert r.json()["editCount"] == n

        r = client.post(url, json={"gains": {"music": -14}}, headers=OWNER)
        assert r.status_code == 402
        assert r.json()["requiresPayment"] is True
        assert r.json()["feeCents"] == 99

        r = client.post(url, json={"gains": {"music": -14}}, headers={**OWNER, "X-Edit-Payment-Token": "tok_1"})
        assert r.status_code == 200
        assert r.json()["editCount"] == 4

    def test_eligibility(self, client, track):
        r = client.get(f"/tracks/{track['trackId']}/edit-eligibility", headers=OWNER)
        assert r.json()["freeEditsRemaining"] == 3

    def test_foreign_and_archived_tracks(self, client, track):
        url = f"/tracks/{track['trackId']}/edit"
        assert client.post(url, json={}, headers={"X-User-Id": "intruder"}).status_code == 404

        with db() as conn:
            conn.execute("UPDATE tracks SET status='archived' WHERE id=?", (track["trackId"],))
        assert client.post(url, json={}, headers=OWNER).status_code == 409

    def test_bad_edit_is_422(self, client, track):
        r = client.post(f"/tracks/{track['trackId']}/edit", json={"voiceSpeed": 3}, headers=OWNER)
        assert r.status_code == 422

    def test_restore(self, client, track):
        url = f"/tracks/{track['trackId']}"
        assert client.post(f"{url}/restore", headers=OWNER).status_code == 400

        client.post(f"{url}/edit", json={"startDelaySec": 30}, headers=OWNER)
        r = client.post(f"{url}/restore", headers=OWNER)
        assert r.status_code == 200
        assert client.get(url).json()["output_config"]["start_delay_sec"] == 0


class TestAdminRoutes:
    def test_requires_token(self, client):
        assert client.get("/admin/config").status_code == 403

    def test_read_and_update_config(self, client):
        assert client.get("/admin/config", headers=ADMIN).json() == {
            "free_edit_limit": 3,
            "edit_fee_cents": 99,
            "max_jobs_per_cycle": 5,
            "lease_timeout_min": 10,
        }
        r = client.post("/admin/config", json={"free_edit_limit": 5, "edit_fee_cents": 199}, headers=ADMIN)
        assert r.status_code == 200
        config = client.get("/admin/config", headers=ADMIN).json()
        assert (config["free_edit_limit"], config["edit_fee_cents"]) == (5, 199)

    def test_out_of_range_config_is_rejected(self, client):
        r = client.post("/admin/config", json={"max_jobs_per_cycle": 0}, headers=ADMIN)
        assert r.status_code == 400

    def test_music_catalog_upsert(self, client):
        r = client.post("/admin/music", json={"id": "waves", "name": "Waves", "url": "music/waves.mp3"}, headers=ADMIN)
        assert r.status_code == 200
        with db() as conn:
            row = conn.execute("SELECT url FROM music_catalog WHERE id='waves'").fetchone()
        assert row["url"] == "music/waves.mp3"
