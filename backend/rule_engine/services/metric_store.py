"""
Metric Store — read/write access to synced advertising data, rules and
execution logs for the rule engine.

Constructed once per process with a session factory and passed to the
OptimizationEngine. Every method runs in its own short session and commits
immediately: the engine never holds a transaction across entities, so one
entity's write cannot roll back another's.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rule_engine.models import (
    AmazonConnection, Campaign, AdGroup, Keyword, SearchTerm,
    OptimizationRule, ExecutionLog, ExecutionStatus, EntityState,
)
from rule_engine.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchTermCandidate:
    """Search term metrics aggregated per (term, campaign, ad group)."""
    search_term: str
    amazon_campaign_id: str
    amazon_ad_group_id: Optional[str]
    impressions: int
    clicks: int
    spend: float
    sales: float
    conversions: int


class MetricStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ── Candidates ────────────────────────────────────────────────────

    async def enabled_keywords(self, connection_id: uuid.UUID) -> list[Keyword]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Keyword)
                .join(Campaign, Keyword.campaign_id == Campaign.id)
                .where(
                    Campaign.connection_id == connection_id,
                    Keyword.state == EntityState.ENABLED.value,
                )
                .order_by(Keyword.created_at, Keyword.id)
            )
            return list(result.scalars().all())

    async def enabled_campaigns(self, connection_id: uuid.UUID) -> list[Campaign]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Campaign)
                .where(
                    Campaign.connection_id == connection_id,
                    Campaign.state == EntityState.ENABLED.value,
                )
                .order_by(Campaign.created_at, Campaign.id)
            )
            return list(result.scalars().all())

    async def search_term_candidates(self, connection_id: uuid.UUID) -> list[SearchTermCandidate]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(
                    SearchTerm.search_term,
                    Campaign.amazon_campaign_id,
                    AdGroup.amazon_ad_group_id,
                    func.coalesce(func.sum(SearchTerm.impressions), 0),
                    func.coalesce(func.sum(SearchTerm.clicks), 0),
                    func.coalesce(func.sum(SearchTerm.spend), 0.0),
                    func.coalesce(func.sum(SearchTerm.sales), 0.0),
                    func.coalesce(func.sum(SearchTerm.conversions), 0),
                )
                .join(Campaign, SearchTerm.campaign_id == Campaign.id)
                .outerjoin(AdGroup, SearchTerm.ad_group_id == AdGroup.id)
                .where(Campaign.connection_id == connection_id)
                .group_by(SearchTerm.search_term, Campaign.amazon_campaign_id, AdGroup.amazon_ad_group_id)
                .order_by(SearchTerm.search_term, Campaign.amazon_campaign_id, AdGroup.amazon_ad_group_id)
            )
            return [
                SearchTermCandidate(
                    search_term=row[0],
                    amazon_campaign_id=row[1],
                    amazon_ad_group_id=row[2],
                    impressions=int(row[3]),
                    clicks=int(row[4]),
                    spend=float(row[5]),
                    sales=float(row[6]),
                    conversions=int(row[7]),
                )
                for row in result.all()
            ]

    # ── Targeted entity writes ────────────────────────────────────────

    async def _update_one(self, model, entity_id: uuid.UUID, **values) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(model).where(model.id == entity_id).values(**values, updated_at=utcnow())
            )
            await session.commit()

    async def update_keyword_bid(self, keyword_id: uuid.UUID, bid: float) -> None:
        await self._update_one(Keyword, keyword_id, bid=bid)

    async def update_keyword_state(self, keyword_id: uuid.UUID, state: str) -> None:
        await self._update_one(Keyword, keyword_id, state=state)

    async def update_campaign_budget(self, campaign_id: uuid.UUID, budget: float) -> None:
        await self._update_one(Campaign, campaign_id, daily_budget=budget)

    # ── Rules ─────────────────────────────────────────────────────────

    async def due_rules(self, now: datetime) -> list[tuple[OptimizationRule, AmazonConnection]]:
        """Enabled rules whose next run has passed, highest priority first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(OptimizationRule, AmazonConnection)
                .join(AmazonConnection, OptimizationRule.connection_id == AmazonConnection.id)
                .where(
                    OptimizationRule.enabled.is_(True),
                    OptimizationRule.next_run_at <= now,
                )
                .order_by(
                    OptimizationRule.priority.desc(),
                    OptimizationRule.created_at,
                    OptimizationRule.id,
                )
            )
            return [(rule, connection) for rule, connection in result.all()]

    async def record_rule_success(
        self, rule_id: uuid.UUID, completed_at: datetime, next_run_at: datetime,
    ) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(OptimizationRule)
                .where(OptimizationRule.id == rule_id)
                .values(
                    last_run_at=completed_at,
                    run_count=OptimizationRule.run_count + 1,
                    success_count=OptimizationRule.success_count + 1,
                    next_run_at=next_run_at,
                    updated_at=utcnow(),
                )
            )
            await session.commit()

    async def record_rule_failure(self, rule_id: uuid.UUID, completed_at: datetime) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(OptimizationRule)
                .where(OptimizationRule.id == rule_id)
                .values(
                    last_run_at=completed_at,
                    run_count=OptimizationRule.run_count + 1,
                    failure_count=OptimizationRule.failure_count + 1,
                    updated_at=utcnow(),
                )
            )
            await session.commit()

    # ── Execution logs ────────────────────────────────────────────────

    async def create_execution_log(
        self, rule_id: uuid.UUID, connection_id: uuid.UUID, started_at: datetime,
    ) -> uuid.UUID:
        async with self._session_factory() as session:
            log = ExecutionLog(
                id=uuid.uuid4(),
                rule_id=rule_id,
                connection_id=connection_id,
                status=ExecutionStatus.RUNNING.value,
                started_at=started_at,
            )
            session.add(log)
            await session.commit()
            return log.id

    async def finish_execution_log(
        self,
        log_id: uuid.UUID,
        status: ExecutionStatus,
        completed_at: datetime,
        duration_ms: int,
        entities_affected: int = 0,
        changes_made: Optional[list[dict]] = None,
        error_message: Optional[str] = None,
    ) -> None:
        """Move a RUNNING log to its terminal state. Terminal logs are never touched again."""
        async with self._session_factory() as session:
            result = await session.execute(
                update(ExecutionLog)
                .where(
                    ExecutionLog.id == log_id,
                    ExecutionLog.status == ExecutionStatus.RUNNING.value,
                )
                .values(
                    status=status.value,
                    completed_at=completed_at,
                    duration_ms=duration_ms,
                    entities_affected=entities_affected,
                    changes_made=changes_made,
                    error_message=error_message,
                )
            )
            await session.commit()
            if result.rowcount == 0:
                logger.warning(f"Execution log {log_id} was already finalized")

    async def has_running_execution(
        self, rule_id: uuid.UUID, stale_after: timedelta, now: Optional[datetime] = None,
    ) -> bool:
        """True if a RUNNING log started within `stale_after` of `now` exists for the rule."""
        cutoff = (now or utcnow()) - stale_after
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(ExecutionLog)
                .where(
                    ExecutionLog.rule_id == rule_id,
                    ExecutionLog.status == ExecutionStatus.RUNNING.value,
                    ExecutionLog.started_at >= cutoff,
                )
            )
            return (result.scalar() or 0) > 0

    async def execution_logs(self, rule_id: uuid.UUID, limit: int = 20) -> list[ExecutionLog]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ExecutionLog)
                .where(ExecutionLog.rule_id == rule_id)
                .order_by(ExecutionLog.started_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
