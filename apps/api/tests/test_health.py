import pytest
from httpx import ASGITransport, AsyncClient

from app.main import app
from app.routers import health as health_router


async def test_health_endpoint() -> None:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_ready_reports_each_dependency(monkeypatch: pytest.MonkeyPatch) -> None:
    def _broker_down() -> bool:
        raise ConnectionError("redis unavailable")

    monkeypatch.setattr(health_router, "check_db_health", lambda: True)
    monkeypatch.setattr(health_router, "ping_broker", _broker_down)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/ready")

    assert response.status_code == 503
    assert response.json()["detail"]["checks"] == {"db": "ok", "broker": "down"}


async def test_ready_when_dependencies_are_up(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(health_router, "check_db_health", lambda: True)
    monkeypatch.setattr(health_router, "ping_broker", lambda: True)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/ready")

    assert response.status_code == 200
    assert response.json()["status"] == "ready"
