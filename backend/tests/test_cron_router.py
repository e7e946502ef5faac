"""
Tests for the scheduler trigger endpoint.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from httpx import AsyncClient, ASGITransport

from rule_engine.deps import get_engine
from rule_engine.main import app
from rule_engine.services.optimization_engine import SweepReport


@pytest.fixture
def engine():
    engine = MagicMock()
    engine.run_scheduled_rules = AsyncMock(return_value=SweepReport(due=3, succeeded=2, failed=1, failed_rule_ids=["r-1"]))
    app.dependency_overrides[get_engine] = lambda: engine
    with patch("rule_engine.routers.cron.get_settings") as mock_settings:
        mock_settings.return_value.cron_secret = "s3cret"
        yield engine
    app.dependency_overrides.clear()


async def _call(method="POST", headers=None):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.request(method, "/api/cron/optimization", headers=headers or {})


@pytest.mark.anyio
async def test_runs_sweep_with_header_secret(engine):
    response = await _call(headers={"X-Cron-Secret": "s3cret"})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["result"]["executed"] == 3
    assert data["result"]["failed_rule_ids"] == ["r-1"]
    engine.run_scheduled_rules.assert_awaited_once()


@pytest.mark.anyio
async def test_accepts_bearer_secret_over_get(engine):
    response = await _call("GET", headers={"Authorization": "Bearer s3cret"})
    assert response.status_code == 200


@pytest.mark.anyio
async def test_rejects_wrong_secret(engine):
    response = await _call(headers={"X-Cron-Secret": "guess"})

    assert response.status_code == 401
    engine.run_scheduled_rules.assert_not_awaited()


@pytest.mark.anyio
async def test_rejects_missing_secret(engine):
    response = await _call()
    assert response.status_code == 401


@pytest.mark.anyio
async def test_unconfigured_secret_is_a_server_error(engine):
    with patch("rule_engine.routers.cron.get_settings") as mock_settings:
        mock_settings.return_value.cron_secret = ""
        response = await _call(headers={"X-Cron-Secret": "anything"})
    assert response.status_code == 500


@pytest.mark.anyio
async def test_load_failure_returns_500(engine):
    engine.run_scheduled_rules.side_effect = ConnectionError("database unavailable")

    response = await _call(headers={"X-Cron-Secret": "s3cret"})

    assert response.status_code == 500
