import asyncio

import pytest
from fastapi.testclient import TestClient

from bizcrawler.api import get_settings
from bizcrawler.app import app
from bizcrawler.config import Settings
from bizcrawler.state import crawl_progress
from bizcrawler.storage import Dataset


@pytest.fixture
def client(tmp_path):
    app.dependency_overrides[get_settings] = lambda: Settings(anthropic_api_key=None, storage_dir=tmp_path)
    yield TestClient(app)
    app.dependency_overrides.clear()
    crawl_progress.clear()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_crawl_requires_start_urls(client):
    response = client.post("/api/crawl", json={"startUrls": [], "maxPagesToCrawl": 1})
    assert response.status_code == 422


def test_crawl_requires_llm_credential(client):
    response = client.post("/api/crawl", json={"startUrls": ["https://example.com"]})
    assert response.status_code == 500
    assert "ANTHROPIC_API_KEY" in response.json()["detail"]
    assert crawl_progress == {}


def test_unknown_job(client):
    assert client.get("/api/status/job_missing").status_code == 404
    assert client.get("/api/results/job_missing").status_code == 404


def test_results_of_finished_job(client, tmp_path):
    job_dir = tmp_path / "job_1"
    asyncio.run(Dataset(job_dir, "default").push_data({"url": "https://example.com", "analysis": {"title": "Acme"}}))
    crawl_progress["job_1"] = {"job_id": "job_1", "status": "completed", "storage_dir": str(job_dir),
                               "result": {"status": "SUCCEEDED", "pagesProcessed": 1}}

    response = client.get("/api/results/job_1")

    assert response.status_code == 200
    body = response.json()
    assert body["result"]["pagesProcessed"] == 1
    assert body["pages"] == [{"url": "https://example.com", "analysis": {"title": "Acme"}}]


def test_results_of_running_job(client):
    crawl_progress["job_2"] = {"job_id": "job_2", "status": "crawling", "storage_dir": "unused"}
    assert client.get("/api/results/job_2").status_code == 400
    assert list(client.get("/api/jobs", params={"status": "active"}).json()) == ["job_2"]
    assert client.get("/api/jobs", params={"status": "completed"}).json() == {}
