import pytest
from httpx import ASGITransport, AsyncClient

from report_export.config import Settings
from report_export.main import create_app


@pytest.mark.anyio
async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data["ok"] is True
    assert data["rate_limit_enabled"] is False
    assert data["emergency_mode"] is False
    assert data["jobs"] == {"PENDING": 0, "IN_PROGRESS": 0, "COMPLETED": 0, "FAILED": 0}
    assert data["cache"]["entries"] == 0


@pytest.mark.anyio
async def test_root(client):
    r = await client.get("/")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


@pytest.mark.anyio
async def test_ready_without_background_tasks(client):
    r = await client.get("/ready")
    assert r.status_code == 200
    assert r.json() == {"status": "ready"}


@pytest.mark.anyio
async def test_metrics_exposed(client):
    r = await client.get("/metrics")
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/plain")
    assert "export_jobs" in r.text
    assert "result_cache_bytes" in r.text


@pytest.mark.anyio
async def test_http_rate_limit_only_in_prod(tmp_path):
    settings = Settings(
        env="prod",
        upload_dir=str(tmp_path / "uploads"),
        background_tasks_enabled=False,
        http_rate_limit="2/minute",
    )
    app = create_app(settings=settings)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        assert (await client.get("/health")).status_code == 200
        assert (await client.get("/health")).status_code == 200
        r = await client.get("/health")

    assert r.status_code == 429
    assert r.json()["code"] == "HTTP_RATE_LIMITED"
