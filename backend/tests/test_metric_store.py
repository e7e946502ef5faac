"""
Tests for MetricStore queries against a real SQL engine (in-memory SQLite).
"""

import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from rule_engine.database import Base
from rule_engine.models import (
    AmazonConnection, Campaign, AdGroup, Keyword, SearchTerm,
    OptimizationRule, ExecutionStatus,
)
from rule_engine.services.metric_store import MetricStore

NOW = datetime(2024, 3, 5, 14, 30)


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def store(session_factory):
    return MetricStore(session_factory)


async def _add(session_factory, *rows):
    async with session_factory() as session:
        session.add_all(rows)
        await session.commit()


def _connection(**overrides):
    values = dict(id=uuid.uuid4(), user_id="user-1", client_id="amzn1.client", access_token="token")
    values.update(overrides)
    return AmazonConnection(**values)


def _rule(connection, name, **overrides):
    values = dict(
        id=uuid.uuid4(),
        connection_id=connection.id,
        user_id=connection.user_id,
        name=name,
        rule_type="NEGATIVE_KEYWORD",
        enabled=True,
        next_run_at=NOW - timedelta(minutes=1),
        priority=0,
        created_at=datetime(2024, 1, 1),
    )
    values.update(overrides)
    return OptimizationRule(**values)


@pytest.mark.anyio
async def test_due_rules_filters_and_orders(store, session_factory):
    connection = _connection()
    await _add(
        session_factory,
        connection,
        _rule(connection, "a", priority=1, created_at=datetime(2024, 1, 1)),
        _rule(connection, "b", priority=5),
        _rule(connection, "c", priority=1, created_at=datetime(2024, 2, 1)),
        _rule(connection, "disabled", priority=9, enabled=False),
        _rule(connection, "future", priority=9, next_run_at=NOW + timedelta(hours=1)),
        _rule(connection, "never", priority=9, next_run_at=None),
    )

    due = await store.due_rules(NOW)

    assert [rule.name for rule, _ in due] == ["b", "a", "c"]
    assert all(conn.id == connection.id for _, conn in due)


@pytest.mark.anyio
async def test_enabled_keywords_scoped_to_connection(store, session_factory):
    mine, other = _connection(), _connection(user_id="user-2")
    my_campaign = Campaign(id=uuid.uuid4(), connection_id=mine.id, amazon_campaign_id="cmp-1")
    other_campaign = Campaign(id=uuid.uuid4(), connection_id=other.id, amazon_campaign_id="cmp-2")
    enabled = Keyword(id=uuid.uuid4(), campaign_id=my_campaign.id, amazon_keyword_id="kw-1", bid=1.0)
    paused = Keyword(id=uuid.uuid4(), campaign_id=my_campaign.id, amazon_keyword_id="kw-2", state="PAUSED")
    foreign = Keyword(id=uuid.uuid4(), campaign_id=other_campaign.id, amazon_keyword_id="kw-3")
    await _add(session_factory, mine, other, my_campaign, other_campaign, enabled, paused, foreign)

    keywords = await store.enabled_keywords(mine.id)

    assert [k.amazon_keyword_id for k in keywords] == ["kw-1"]

    await store.update_keyword_bid(enabled.id, 0.9)
    await store.update_keyword_state(enabled.id, "PAUSED")
    assert await store.enabled_keywords(mine.id) == []


@pytest.mark.anyio
async def test_search_terms_aggregated_per_scope(store, session_factory):
    connection = _connection()
    campaign = Campaign(id=uuid.uuid4(), connection_id=connection.id, amazon_campaign_id="cmp-1")
    ad_group = AdGroup(id=uuid.uuid4(), campaign_id=campaign.id, amazon_ad_group_id="ag-1")
    rows = [
        SearchTerm(id=uuid.uuid4(), campaign_id=campaign.id, ad_group_id=ad_group.id, search_term="free shoes",
                   date="2024-03-01", impressions=5, clicks=1, spend=2.0, sales=0.0, conversions=0),
        SearchTerm(id=uuid.uuid4(), campaign_id=campaign.id, ad_group_id=ad_group.id, search_term="free shoes",
                   date="2024-03-02", impressions=7, clicks=1, spend=3.0, sales=1.5, conversions=0),
        SearchTerm(id=uuid.uuid4(), campaign_id=campaign.id, ad_group_id=ad_group.id, search_term="trail shoes",
                   date="2024-03-01", impressions=20, clicks=4, spend=6.0, sales=30.0, conversions=2),
    ]
    await _add(session_factory, connection, campaign, ad_group, *rows)

    candidates = await store.search_term_candidates(connection.id)

    assert len(candidates) == 2
    free = candidates[0]
    assert free.search_term == "free shoes"
    assert (free.amazon_campaign_id, free.amazon_ad_group_id) == ("cmp-1", "ag-1")
    assert (free.impressions, free.clicks, free.spend, free.sales) == (12, 2, 5.0, 1.5)


@pytest.mark.anyio
async def test_terminal_log_is_never_rewritten(store, session_factory):
    connection = _connection()
    rule = _rule(connection, "a")
    await _add(session_factory, connection, rule)

    log_id = await store.create_execution_log(rule.id, connection.id, NOW)
    await store.finish_execution_log(
        log_id, ExecutionStatus.SUCCESS, completed_at=NOW, duration_ms=10,
        entities_affected=1, changes_made=[{"entity": "keyword", "action": "pause"}],
    )
    await store.finish_execution_log(
        log_id, ExecutionStatus.FAILED, completed_at=NOW, duration_ms=20, error_message="late",
    )

    (log,) = await store.execution_logs(rule.id)
    assert log.status == "SUCCESS"
    assert log.error_message is None
    assert log.changes_made == [{"entity": "keyword", "action": "pause"}]


@pytest.mark.anyio
async def test_running_check_ignores_stale_logs(store, session_factory):
    connection = _connection()
    rule = _rule(connection, "a")
    await _add(session_factory, connection, rule)
    stale_after = timedelta(minutes=60)

    await store.create_execution_log(rule.id, connection.id, NOW - timedelta(hours=2))
    assert not await store.has_running_execution(rule.id, stale_after, NOW)

    log_id = await store.create_execution_log(rule.id, connection.id, NOW - timedelta(minutes=5))
    assert await store.has_running_execution(rule.id, stale_after, NOW)

    await store.finish_execution_log(log_id, ExecutionStatus.SUCCESS, completed_at=NOW, duration_ms=5)
    assert not await store.has_running_execution(rule.id, stale_after, NOW)


@pytest.mark.anyio
async def test_rule_statistics(store, session_factory):
    connection = _connection()
    rule = _rule(connection, "a", run_count=0, success_count=0, failure_count=0)
    await _add(session_factory, connection, rule)
    next_run = NOW + timedelta(hours=1)

    await store.record_rule_success(rule.id, NOW, next_run)
    await store.record_rule_failure(rule.id, NOW + timedelta(minutes=1))

    ((loaded, _),) = await store.due_rules(NOW + timedelta(hours=2))
    assert (loaded.run_count, loaded.success_count, loaded.failure_count) == (2, 1, 1)
    assert loaded.next_run_at == next_run
    assert loaded.last_run_at == NOW + timedelta(minutes=1)
