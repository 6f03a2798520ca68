"""
test_api.py
~~~~~~~~~~~
HTTP surface: status codes, owner scoping and error mapping.
"""
import asyncio

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from trustforge.api.endpoints import get_pipeline
from trustforge.core.errors import MandatoryProviderFailure
from trustforge.core.limiter import limiter, owner_or_ip
from trustforge.main import app
from trustforge.services.pipeline import ScanPipeline
from trustforge.services.queue import JobQueue

from tests.factories import APK_BYTES, full_bundle

OWNER = {"X-User-Id": "owner-1"}


class StaticOrchestrator:
    def __init__(self, result):
        self.result = result

    async def run_all(self, file_path):
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result

    async def aclose(self):
        pass


class DownQueue(JobQueue):
    def enqueue(self, descriptor):
        raise ConnectionError("broker down")


def fake_renderer(bundle, trust_score, recommendations, metadata):
    return b"%PDF-1.4 test report"


@pytest.fixture
def pipeline(store, storage, queue, temp_root):
    return ScanPipeline(
        store,
        storage,
        queue,
        orchestrator_factory=lambda: StaticOrchestrator(full_bundle()),
        renderer=fake_renderer,
        temp_root=temp_root,
    )


@pytest.fixture
def client(pipeline, db_path, monkeypatch):
    monkeypatch.setattr(limiter, "enabled", False)
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def upload(client, headers=OWNER, name="app.apk", content=APK_BYTES):
    return client.post(
        "/api/scans",
        files={"file": (name, content, "application/vnd.android.package-archive")},
        headers=headers,
    )


def run_queued(pipeline, queue):
    for descriptor in queue.drain():
        asyncio.run(pipeline.process(descriptor.job_id, descriptor.lease))


# ─── Upload ──────────────────────────────────────────────────────────────────

def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_upload_returns_job_id(client, queue):
    response = upload(client)

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "pending"
    assert [d.job_id for d in queue.items] == [body["job_id"]]


def test_upload_requires_owner_header(client):
    assert upload(client, headers={}).status_code == 400


@pytest.mark.parametrize("name, content", [
    ("app.exe", APK_BYTES),
    ("app.apk", b"not a zip at all"),
])
def test_upload_rejects_invalid_package(client, queue, name, content):
    response = upload(client, name=name, content=content)

    assert response.status_code == 400
    assert queue.items == []


def test_upload_with_unreachable_queue_is_503(client, pipeline, monkeypatch):
    monkeypatch.setattr(pipeline, "queue", DownQueue())

    response = upload(client)

    assert response.status_code == 503
    assert "broker" not in response.text


# ─── Status / Retry / Report ─────────────────────────────────────────────────

def test_status_is_scoped_to_owner(client):
    job_id = upload(client).json()["job_id"]

    own = client.get(f"/api/scans/{job_id}", headers=OWNER)
    other = client.get(f"/api/scans/{job_id}", headers={"X-User-Id": "owner-2"})
    missing = client.get("/api/scans/does-not-exist", headers=OWNER)

    assert own.status_code == 200
    assert own.json()["status"] == "pending"
    assert own.json()["report_available"] is False
    assert other.status_code == 404
    assert missing.status_code == 404


def test_retry_of_pending_job_is_rejected(client):
    job_id = upload(client).json()["job_id"]

    response = client.post(f"/api/scans/{job_id}/retry", headers=OWNER)

    assert response.status_code == 400


def test_report_before_completion_is_rejected(client):
    job_id = upload(client).json()["job_id"]

    response = client.get(f"/api/scans/{job_id}/report", headers=OWNER)

    assert response.status_code == 400


def test_completed_scan_report_download(client, pipeline, queue):
    job_id = upload(client).json()["job_id"]
    run_queued(pipeline, queue)

    status = client.get(f"/api/scans/{job_id}", headers=OWNER).json()
    report = client.get(f"/api/scans/{job_id}/report", headers=OWNER)

    assert status["status"] == "completed"
    assert status["trust_score"] == 100
    assert status["report_available"] is True
    assert report.status_code == 200
    assert report.headers["content-type"] == "application/pdf"
    assert report.content.startswith(b"%PDF")
    assert client.get(f"/api/scans/{job_id}/report", headers={"X-User-Id": "owner-2"}).status_code == 404


def test_failed_scan_can_be_retried(client, pipeline, queue, monkeypatch):
    monkeypatch.setattr(
        pipeline, "orchestrator_factory",
        lambda: StaticOrchestrator(MandatoryProviderFailure("mobsf: Scan failed")),
    )
    job_id = upload(client).json()["job_id"]
    run_queued(pipeline, queue)
    assert client.get(f"/api/scans/{job_id}", headers=OWNER).json()["status"] == "failed"

    response = client.post(f"/api/scans/{job_id}/retry", headers=OWNER)

    assert response.status_code == 202
    assert response.json()["status"] == "processing"
    assert [d.job_id for d in queue.items] == [job_id]


def test_rate_limit_key_prefers_owner_over_ip():
    def request(headers):
        return Request({
            "type": "http",
            "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
            "client": ("10.0.0.7", 5000),
        })

    assert owner_or_ip(request(OWNER)) == "owner:owner-1"
    assert owner_or_ip(request({})) == "ip:10.0.0.7"
