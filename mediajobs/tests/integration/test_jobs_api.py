"""
Integration tests for the job HTTP API.

Runs the real application (lifespan included) against an in-memory SQLite
database and a temporary storage directory. The worker webhook client is
replaced with a scripted fake after startup.
"""

import importlib
import logging
import os
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from mediajobs.config.settings import get_settings
from mediajobs.database.session import dispose_engine
from mediajobs.jobs.models import Job, JobResult, JobStatus

pytestmark = pytest.mark.integration

SECRET = "integration-secret"
SOURCE_URL = "https://www.youtube.com/watch?v=abc123"
FRONTEND_ORIGIN = "http://localhost:3000"


@pytest.fixture
def storage_dir(tmp_path):
    path = tmp_path / "storage"
    path.mkdir()
    return path


def _app_env(storage_dir, **overrides) -> dict:
    env = {
        "ENV": "test",
        "DATABASE_URL": "sqlite:///:memory:",
        "STORAGE_PATH": str(storage_dir),
        "WORKER_WEBHOOK_URL": "http://worker.test/webhook/mediajobs",
        "WORKER_WEBHOOK_SECRET": SECRET,
        "DISPATCH_BASE_DELAY_SECONDS": "0",
    }
    env.update(overrides)
    return env


@pytest.fixture
def api(storage_dir, fake_dispatch_client):
    """TestClient for the app with startup and shutdown run."""
    with patch.dict(os.environ, _app_env(storage_dir)):
        get_settings.cache_clear()
        dispose_engine()
        main = importlib.import_module("main")

        with TestClient(main.app) as client:
            main.app.state.orchestrator.dispatch_client = fake_dispatch_client
            yield client

    get_settings.cache_clear()
    dispose_engine()


def _create_job(api, **body) -> dict:
    response = api.post("/api/v1/jobs", json={"source_url": SOURCE_URL, **body})
    assert response.status_code == 202
    return response.json()


def _callback(api, body: dict, token: str = SECRET):
    return api.post(
        "/api/v1/worker-callback",
        json=body,
        headers={"X-Webhook-Token": token},
    )


class TestHealth:

    def test_healthz(self, api):
        response = api.get("/healthz")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"
        assert "timestamp" in data

    def test_metrics(self, api):
        _create_job(api)

        response = api.get("/metrics")

        assert response.status_code == 200
        data = response.json()
        assert sum(data["job_stats"].values()) == 1
        assert data["uptime_seconds"] >= 0


class TestStartup:

    def test_out_of_range_settings_do_not_block_startup(self, storage_dir):
        env = _app_env(storage_dir, DISPATCH_MAX_ATTEMPTS="0", DISPATCH_BASE_DELAY_SECONDS="-1")
        with patch.dict(os.environ, env):
            get_settings.cache_clear()
            dispose_engine()
            main = importlib.import_module("main")

            try:
                with TestClient(main.app) as client:
                    assert client.get("/healthz").status_code == 200
                    policy = main.app.state.orchestrator.retry_policy
                    assert policy.max_attempts == 3
                    assert policy.base_delay_seconds == 1.0
            finally:
                get_settings.cache_clear()
                dispose_engine()


class TestMiddleware:

    def test_cors_preflight(self, api):
        response = api.options(
            "/api/v1/jobs",
            headers={
                "Origin": FRONTEND_ORIGIN,
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "content-type",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == FRONTEND_ORIGIN
        assert "POST" in response.headers["access-control-allow-methods"]

    def test_cors_headers_on_simple_request(self, api):
        response = api.get("/healthz", headers={"Origin": FRONTEND_ORIGIN})

        assert response.headers["access-control-allow-origin"] == FRONTEND_ORIGIN

    def test_unlisted_origin_gets_no_cors_headers(self, api):
        response = api.get("/healthz", headers={"Origin": "https://evil.example.com"})

        assert "access-control-allow-origin" not in response.headers

    def test_request_is_logged(self, api, caplog):
        with caplog.at_level(logging.INFO, logger="mediajobs.api.middleware"):
            response = api.get("/api/v1/job-status/does-not-exist")

        records = [r for r in caplog.records if r.getMessage() == "http.request"]
        assert len(records) == 1
        record = records[0]
        assert record.method == "GET"
        assert record.path == "/api/v1/job-status/does-not-exist"
        assert record.status_code == 404
        assert record.duration_ms >= 0
        assert record.bytes == len(response.content)
        assert record.request_id == response.headers["x-request-id"]

    def test_request_id_is_echoed(self, api):
        response = api.get("/healthz", headers={"X-Request-ID": "req-123"})

        assert response.headers["x-request-id"] == "req-123"


class TestCreateJob:

    def test_accepted(self, api):
        data = _create_job(api, user_id="user-1", options={"duration_seconds": 30})

        assert data["status"] == "queued"
        assert data["poll_url"] == f"/api/v1/job-status/{data['job_id']}"

    def test_invalid_url(self, api):
        response = api.post("/api/v1/jobs", json={"source_url": "not-a-url"})

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid source URL format", "code": "INVALID_URL"}

    def test_missing_source_url(self, api):
        response = api.post("/api/v1/jobs", json={})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_INPUT"

    def test_invalid_options(self, api):
        response = api.post(
            "/api/v1/jobs",
            json={"source_url": SOURCE_URL, "options": {"start_seconds": -1}},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_INPUT"


class TestJobStatus:

    def test_new_job(self, api):
        job_id = _create_job(api)["job_id"]

        response = api.get(f"/api/v1/job-status/{job_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["job_id"] == job_id
        assert data["status"] in ("queued", "processing")
        assert data["download_url"] is None
        assert data["error"] is None

    def test_timestamps_carry_utc_offset(self, api):
        job_id = _create_job(api)["job_id"]

        data = api.get(f"/api/v1/job-status/{job_id}").json()

        for field in ("created_at", "updated_at"):
            parsed = datetime.fromisoformat(data[field].replace("Z", "+00:00"))
            assert parsed.utcoffset() == timedelta(0)

    def test_unknown_job(self, api):
        response = api.get("/api/v1/job-status/does-not-exist")

        assert response.status_code == 404
        assert response.json() == {"error": "Job does-not-exist not found", "code": "JOB_NOT_FOUND"}


class TestWorkerCallback:

    def test_missing_token(self, api):
        job_id = _create_job(api)["job_id"]

        response = api.post(
            "/api/v1/worker-callback",
            json={"job_id": job_id, "status": "failed"},
        )

        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"
        assert api.get(f"/api/v1/job-status/{job_id}").json()["status"] != "failed"

    def test_wrong_token(self, api):
        job_id = _create_job(api)["job_id"]

        response = _callback(api, {"job_id": job_id, "status": "failed"}, token="wrong")

        assert response.status_code == 401

    def test_completion_then_duplicate(self, api):
        job_id = _create_job(api)["job_id"]
        body = {
            "job_id": job_id,
            "status": "completed",
            "file_path": "/storage/abc123.mp3",
            "metadata": {"duration": 30.0},
        }

        first = _callback(api, body)
        second = _callback(api, body)

        assert first.status_code == 200
        assert first.json() == {"status": "ok", "outcome": "applied"}
        assert second.status_code == 200
        assert second.json() == {"status": "ok", "outcome": "duplicate"}

        status_data = api.get(f"/api/v1/job-status/{job_id}").json()
        assert status_data["status"] == "completed"
        assert status_data["download_url"] == "/download/abc123.mp3"

    def test_failure_report(self, api):
        job_id = _create_job(api)["job_id"]

        response = _callback(
            api,
            {"job_id": job_id, "status": "failed", "metadata": {"error": "Video unavailable"}},
        )

        assert response.status_code == 200
        status_data = api.get(f"/api/v1/job-status/{job_id}").json()
        assert status_data["status"] == "failed"
        assert status_data["error"] == "Video unavailable"

    def test_completion_requires_file_path(self, api):
        job_id = _create_job(api)["job_id"]

        response = _callback(api, {"job_id": job_id, "status": "completed"})

        assert response.status_code == 400
        assert response.json()["code"] == "MISSING_FILE_PATH"

    def test_unknown_status(self, api):
        job_id = _create_job(api)["job_id"]

        response = _callback(api, {"job_id": job_id, "status": "processing"})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_STATUS"

    def test_unknown_job(self, api):
        response = _callback(api, {"job_id": "missing", "status": "failed"})

        assert response.status_code == 404


class TestDownload:

    def test_serves_completed_artifact(self, api, storage_dir):
        (storage_dir / "tone.mp3").write_bytes(b"ID3fake-audio")
        job_id = _create_job(api)["job_id"]
        _callback(api, {"job_id": job_id, "status": "completed", "file_path": "/data/tone.mp3"})

        response = api.get("/download/tone.mp3")

        assert response.status_code == 200
        assert response.content == b"ID3fake-audio"
        assert response.headers["content-type"] == "audio/mpeg"

    def test_unknown_file(self, api):
        response = api.get("/download/nothing.mp3")

        assert response.status_code == 404
        assert response.json()["code"] == "FILE_NOT_FOUND"

    def test_recorded_but_missing_from_storage(self, api):
        job_id = _create_job(api)["job_id"]
        _callback(api, {"job_id": job_id, "status": "completed", "file_path": "/data/gone.mp3"})

        response = api.get("/download/gone.mp3")

        assert response.status_code == 404

    def test_job_not_completed(self, api, storage_dir):
        """A result row for an unfinished job is not served."""
        import main

        (storage_dir / "partial.mp3").write_bytes(b"partial")
        store = main.app.state.orchestrator.store
        job = store.create_job(Job(source_url=SOURCE_URL, status=JobStatus.PROCESSING, attempts=1))
        store.create_result(
            JobResult(job_id=job.id, file_name="partial.mp3", file_path="/data/partial.mp3", format="mp3")
        )

        response = api.get("/download/partial.mp3")

        assert response.status_code == 403
        assert response.json() == {"error": "File not available", "code": "FORBIDDEN"}
