import pytest


@pytest.mark.anyio("asyncio")
async def test_healthcheck(client):
    response = await client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["service"] == "bell24h-settlement"
    assert payload["db_status"] == "ok"
    assert payload["migrations_status"] == "up_to_date"
    assert payload["migrations_ok"] is True
    assert isinstance(payload["scheduler_config_enabled"], bool)
    assert payload["scheduler_running"] is False
    assert payload["platform_wallet_configured"] is False


@pytest.mark.anyio("asyncio")
async def test_health_degrades_on_db_failure(monkeypatch, client):
    class BrokenEngine:
        def connect(self):  # pragma: no cover - simple stub
            raise RuntimeError("DB down")

    monkeypatch.setattr("settlement.routers.health.get_engine", lambda: BrokenEngine())

    response = await client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["db_status"] == "error"
    assert payload["migrations_status"] == "unknown"
    assert payload["db_ok"] is False
    assert payload["migrations_ok"] is False


@pytest.mark.anyio("asyncio")
async def test_health_reports_stale_schema(monkeypatch, client):
    from settlement.routers import health as health_module

    monkeypatch.setattr(health_module, "_expected_migration_head", lambda: "20991231_future")

    response = await client.get("/health")
    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["migrations_status"] == "out_of_date"
