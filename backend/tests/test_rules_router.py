"""
Tests for the optimization rules API with the database session mocked out.
"""

import uuid
from datetime import datetime
from types import SimpleNamespace

import pytest
from unittest.mock import AsyncMock, MagicMock
from httpx import AsyncClient, ASGITransport

from conftest import make_connection, make_rule
from rule_engine.database import get_db
from rule_engine.deps import get_engine
from rule_engine.errors import RuleAlreadyRunningError, UnknownRuleTypeError
from rule_engine.main import app
from rule_engine.services.optimization_engine import ExecutionSummary

HEADERS = {"X-User-Id": "user-1"}


def _result(value=None, values=None):
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    result.scalars.return_value.all.return_value = values or []
    return result


def _stored_rule(connection, **overrides):
    rule = make_rule(
        connection,
        conditions={"minImpressions": 100},
        actions={"adjustmentType": "FIXED", "adjustmentValue": 0.1},
        **overrides,
    )
    rule.run_count = rule.success_count = rule.failure_count = 0
    rule.last_run_at = None
    rule.created_at = datetime(2024, 1, 1)
    return rule


@pytest.fixture
def db():
    session = AsyncMock()
    session.add = MagicMock()

    async def assign_id(obj):
        if getattr(obj, "id", None) is None:
            obj.id = uuid.uuid4()

    session.refresh.side_effect = assign_id

    async def override_get_db():
        yield session

    app.dependency_overrides[get_db] = override_get_db
    yield session
    app.dependency_overrides.clear()


@pytest.fixture
def engine(db):
    engine = MagicMock()
    engine.execute_rule = AsyncMock()
    app.dependency_overrides[get_engine] = lambda: engine
    return engine


async def _request(method, path, json=None):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.request(method, path, json=json, headers=HEADERS)


@pytest.mark.anyio
async def test_create_rule(db):
    connection = make_connection()
    db.execute.return_value = _result(connection)

    response = await _request("POST", "/api/optimization/rules", json={
        "connection_id": str(connection.id),
        "name": "Trim expensive bids",
        "rule_type": "BID_ADJUSTMENT",
        "conditions": {"maxAcos": 30},
        "actions": {"adjustmentType": "PERCENTAGE", "adjustmentValue": -10},
        "schedule": "HOURLY",
    })

    assert response.status_code == 201
    data = response.json()
    assert data["name"] == "Trim expensive bids"
    assert data["schedule"] == "HOURLY"
    assert data["next_run_at"] is not None
    db.add.assert_called_once()
    assert db.add.call_args.args[0].user_id == "user-1"


@pytest.mark.anyio
async def test_create_rejects_invalid_definition(db):
    response = await _request("POST", "/api/optimization/rules", json={
        "connection_id": str(uuid.uuid4()),
        "name": "Broken",
        "rule_type": "BID_ADJUSTMENT",
        "conditions": {},
        "actions": {"adjustmentValue": 5},
    })

    assert response.status_code == 400
    db.add.assert_not_called()


@pytest.mark.anyio
async def test_create_rejects_unknown_rule_type(db):
    response = await _request("POST", "/api/optimization/rules", json={
        "connection_id": str(uuid.uuid4()),
        "name": "Mystery",
        "rule_type": "FOO",
        "conditions": {},
        "actions": {},
    })

    assert response.status_code == 400
    assert "Unknown rule type" in response.json()["detail"]


@pytest.mark.anyio
async def test_create_requires_owned_connection(db):
    db.execute.return_value = _result(None)

    response = await _request("POST", "/api/optimization/rules", json={
        "connection_id": str(uuid.uuid4()),
        "name": "Pause losers",
        "rule_type": "KEYWORD_AUTOMATION",
        "conditions": {},
        "actions": {"pauseUnderperforming": True},
    })

    assert response.status_code == 404


@pytest.mark.anyio
async def test_list_rules(db):
    connection = make_connection()
    db.execute.return_value = _result(values=[_stored_rule(connection), _stored_rule(connection)])

    response = await _request("GET", "/api/optimization/rules")

    assert response.status_code == 200
    assert len(response.json()) == 2


@pytest.mark.anyio
async def test_get_rule_of_other_user_is_forbidden(db):
    rule = _stored_rule(make_connection(user_id="someone-else"))
    db.execute.return_value = _result(rule)

    response = await _request("GET", f"/api/optimization/rules/{rule.id}")

    assert response.status_code == 403


@pytest.mark.anyio
async def test_get_rule_rejects_bad_id(db):
    response = await _request("GET", "/api/optimization/rules/not-a-uuid")
    assert response.status_code == 400


@pytest.mark.anyio
async def test_update_schedule_recomputes_next_run(db):
    rule = _stored_rule(make_connection())
    db.execute.return_value = _result(rule)

    response = await _request("PATCH", f"/api/optimization/rules/{rule.id}", json={"schedule": "HOURLY"})

    assert response.status_code == 200
    assert rule.schedule == "HOURLY"
    assert rule.next_run_at != datetime(2024, 1, 1)


@pytest.mark.anyio
async def test_update_validates_new_actions(db):
    rule = _stored_rule(make_connection())
    db.execute.return_value = _result(rule)

    response = await _request(
        "PATCH", f"/api/optimization/rules/{rule.id}",
        json={"actions": {"adjustmentType": "SET", "adjustmentValue": 1, "minBid": 3, "maxBid": 2}},
    )

    assert response.status_code == 400


@pytest.mark.anyio
async def test_delete_rule(db):
    rule = _stored_rule(make_connection())
    db.execute.return_value = _result(rule)

    response = await _request("DELETE", f"/api/optimization/rules/{rule.id}")

    assert response.status_code == 200
    db.delete.assert_awaited_once_with(rule)


@pytest.mark.anyio
async def test_list_execution_logs(db):
    rule = _stored_rule(make_connection())
    log = SimpleNamespace(
        id=uuid.uuid4(), rule_id=rule.id, status="FAILED",
        started_at=datetime(2024, 3, 5, 14, 30), completed_at=datetime(2024, 3, 5, 14, 31),
        duration_ms=60000, entities_affected=0, changes_made=None, error_message="Unknown rule type: FOO",
    )
    db.execute.side_effect = [_result(rule), _result(values=[log])]

    response = await _request("GET", f"/api/optimization/rules/{rule.id}/logs")

    assert response.status_code == 200
    (entry,) = response.json()
    assert entry["status"] == "FAILED"
    assert entry["changes_made"] == []
    assert entry["error_message"] == "Unknown rule type: FOO"


@pytest.mark.anyio
async def test_execute_rule(db, engine):
    connection = make_connection()
    rule = _stored_rule(connection)
    db.execute.side_effect = [_result(rule), _result(connection)]
    log_id = uuid.uuid4()
    engine.execute_rule.return_value = ExecutionSummary(
        log_id=log_id, status="SUCCESS", entities_affected=1,
        changes_made=[{"entity": "keyword", "action": "bid_adjustment"}], duration_ms=12,
    )

    response = await _request("POST", "/api/optimization/execute", json={"rule_id": str(rule.id)})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["execution"]["logId"] == str(log_id)
    assert data["execution"]["entitiesAffected"] == 1
    engine.execute_rule.assert_awaited_once_with(rule, connection)


@pytest.mark.anyio
async def test_execute_disabled_rule(db, engine):
    rule = _stored_rule(make_connection(), enabled=False)
    db.execute.return_value = _result(rule)

    response = await _request("POST", "/api/optimization/execute", json={"rule_id": str(rule.id)})

    assert response.status_code == 400
    engine.execute_rule.assert_not_awaited()


@pytest.mark.anyio
async def test_execute_running_rule_conflicts(db, engine):
    connection = make_connection()
    rule = _stored_rule(connection)
    db.execute.side_effect = [_result(rule), _result(connection)]
    engine.execute_rule.side_effect = RuleAlreadyRunningError(rule.id)

    response = await _request("POST", "/api/optimization/execute", json={"rule_id": str(rule.id)})

    assert response.status_code == 409


@pytest.mark.anyio
async def test_execute_misconfigured_rule(db, engine):
    connection = make_connection()
    rule = _stored_rule(connection)
    db.execute.side_effect = [_result(rule), _result(connection)]
    engine.execute_rule.side_effect = UnknownRuleTypeError("FOO")

    response = await _request("POST", "/api/optimization/execute", json={"rule_id": str(rule.id)})

    assert response.status_code == 400
    assert response.json()["detail"] == "Unknown rule type: FOO"


@pytest.mark.anyio
async def test_execute_failure_hides_internal_error(db, engine):
    connection = make_connection()
    rule = _stored_rule(connection)
    db.execute.side_effect = [_result(rule), _result(connection)]
    engine.execute_rule.side_effect = ConnectionError("password=hunter2 host=db")

    response = await _request("POST", "/api/optimization/execute", json={"rule_id": str(rule.id)})

    assert response.status_code == 502
    assert "hunter2" not in response.json()["detail"]
