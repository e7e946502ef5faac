"""
Shared fixtures: an in-memory MetricStore stand-in and entity builders.
"""

import uuid
from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from rule_engine.models import ExecutionStatus


@pytest.fixture
def anyio_backend():
    return "asyncio"


def make_connection(**overrides):
    values = dict(
        id=uuid.uuid4(),
        user_id="user-1",
        client_id="amzn1.client",
        access_token="token",
        region="na",
        profile_id="123",
        account_id=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def make_keyword(**overrides):
    values = dict(
        id=uuid.uuid4(),
        amazon_keyword_id=f"kw-{uuid.uuid4().hex[:8]}",
        keyword_text="running shoes",
        state="ENABLED",
        bid=1.0,
        impressions=0,
        clicks=0,
        spend=0.0,
        sales=0.0,
        orders=0,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def make_campaign(**overrides):
    values = dict(
        id=uuid.uuid4(),
        amazon_campaign_id=f"cmp-{uuid.uuid4().hex[:8]}",
        campaign_name="Brand - Exact",
        state="ENABLED",
        daily_budget=50.0,
        impressions=0,
        clicks=0,
        spend=0.0,
        sales=0.0,
        orders=0,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def make_rule(connection, rule_type="BID_ADJUSTMENT", conditions=None, actions=None, **overrides):
    values = dict(
        id=uuid.uuid4(),
        connection_id=connection.id,
        user_id=connection.user_id,
        name="Test rule",
        rule_type=rule_type,
        enabled=True,
        conditions=conditions or {},
        actions=actions or {},
        schedule="DAILY",
        custom_cron=None,
        priority=0,
        next_run_at=datetime(2024, 1, 1),
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class FakeMetricStore:
    """Mirrors MetricStore's interface over plain lists and dicts."""

    def __init__(self, keywords=None, campaigns=None, search_terms=None):
        self.keywords = list(keywords or [])
        self.campaigns = list(campaigns or [])
        self.search_terms = list(search_terms or [])
        self.rules: list[tuple] = []
        self.logs: dict[uuid.UUID, dict] = {}
        self.stats: dict[uuid.UUID, dict] = {}
        self.running: set[uuid.UUID] = set()
        self.fail_writes = False

    # Candidates
    async def enabled_keywords(self, connection_id):
        return [k for k in self.keywords if k.state == "ENABLED"]

    async def enabled_campaigns(self, connection_id):
        return [c for c in self.campaigns if c.state == "ENABLED"]

    async def search_term_candidates(self, connection_id):
        return list(self.search_terms)

    # Entity writes
    def _check_writable(self):
        if self.fail_writes:
            raise ConnectionError("database unavailable")

    async def update_keyword_bid(self, keyword_id, bid):
        self._check_writable()
        self._find(self.keywords, keyword_id).bid = bid

    async def update_keyword_state(self, keyword_id, state):
        self._check_writable()
        self._find(self.keywords, keyword_id).state = state

    async def update_campaign_budget(self, campaign_id, budget):
        self._check_writable()
        self._find(self.campaigns, campaign_id).daily_budget = budget

    @staticmethod
    def _find(entities, entity_id):
        return next(e for e in entities if e.id == entity_id)

    # Rules
    async def due_rules(self, now):
        due = [
            (rule, conn) for rule, conn in self.rules
            if rule.enabled and rule.next_run_at is not None and rule.next_run_at <= now
        ]
        return sorted(due, key=lambda pair: -pair[0].priority)

    def _stats(self, rule_id):
        return self.stats.setdefault(
            rule_id, {"run_count": 0, "success_count": 0, "failure_count": 0, "last_run_at": None},
        )

    async def record_rule_success(self, rule_id, completed_at, next_run_at):
        stats = self._stats(rule_id)
        stats["run_count"] += 1
        stats["success_count"] += 1
        stats["last_run_at"] = completed_at
        stats["next_run_at"] = next_run_at

    async def record_rule_failure(self, rule_id, completed_at):
        stats = self._stats(rule_id)
        stats["run_count"] += 1
        stats["failure_count"] += 1
        stats["last_run_at"] = completed_at

    # Execution logs
    async def create_execution_log(self, rule_id, connection_id, started_at):
        log_id = uuid.uuid4()
        self.logs[log_id] = {
            "rule_id": rule_id,
            "connection_id": connection_id,
            "status": ExecutionStatus.RUNNING.value,
            "started_at": started_at,
        }
        return log_id

    async def finish_execution_log(
        self, log_id, status, completed_at, duration_ms,
        entities_affected=0, changes_made=None, error_message=None,
    ):
        log = self.logs[log_id]
        if log["status"] != ExecutionStatus.RUNNING.value:
            return
        log.update(
            status=status.value,
            completed_at=completed_at,
            duration_ms=duration_ms,
            entities_affected=entities_affected,
            changes_made=changes_made,
            error_message=error_message,
        )

    async def has_running_execution(self, rule_id, stale_after: timedelta, now=None):
        return rule_id in self.running

    def logs_for(self, rule_id):
        return [log for log in self.logs.values() if log["rule_id"] == rule_id]


@pytest.fixture
def store():
    return FakeMetricStore()


@pytest.fixture
def connection():
    return make_connection()


@pytest.fixture
def mcp_client():
    """Amazon Ads client whose mutations all succeed unless told otherwise."""
    return AsyncMock()
