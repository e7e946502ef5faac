"""
Rule Executors — one per rule kind.

Each executor fetches candidates from the MetricStore, filters them with the
rule evaluator, applies accepted changes through the Amazon Ads client,
persists the new value locally and records a ChangeRecord.

A remote failure for one entity is logged and skipped; the rest of the run
continues. Store failures are systemic and propagate to the engine.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from rule_engine.mcp_client import AmazonAdsMCP
from rule_engine.models import RuleType, EntityState
from rule_engine.schemas import (
    ChangeRecord,
    BidAdjustmentRule,
    KeywordAutomationRule,
    BudgetControlRule,
    NegativeKeywordRule,
)
from rule_engine.services.metric_store import MetricStore
from rule_engine.services.rule_evaluator import (
    EntityMetrics,
    compute_adjusted_value,
    is_accepted_change,
    qualifies,
)

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """Changes applied by one rule run, in candidate order."""
    changes: list[ChangeRecord] = field(default_factory=list)

    @property
    def entities_affected(self) -> int:
        return len(self.changes)

    def log_entries(self) -> list[dict]:
        return [c.to_log_entry() for c in self.changes]


class RuleExecutor(ABC):
    def __init__(self, store: MetricStore, client: AmazonAdsMCP):
        self.store = store
        self.client = client

    @abstractmethod
    async def execute(self, rule, connection, result: ExecutionResult) -> None:
        """Apply `rule` for `connection`, appending to `result` as changes land."""

    async def _remote(self, description: str, call, *args) -> bool:
        """Run one remote mutation; False (and an error log) if it was rejected."""
        try:
            await call(*args)
            return True
        except Exception as e:
            logger.error(f"Failed to {description}: {e}")
            return False


class BidAdjustmentExecutor(RuleExecutor):
    async def execute(self, rule: BidAdjustmentRule, connection, result: ExecutionResult) -> None:
        thresholds = rule.conditions.thresholds()
        actions = rule.actions
        keywords = await self.store.enabled_keywords(connection.id)

        for keyword in keywords:
            if not qualifies(EntityMetrics.from_entity(keyword), thresholds):
                continue
            current_bid = keyword.bid or 0.0
            new_bid = compute_adjusted_value(
                current_bid,
                actions.adjustment_type,
                actions.adjustment_value,
                min_value=actions.min_bid,
                max_value=actions.max_bid,
            )
            if not is_accepted_change(current_bid, new_bid):
                continue

            if not await self._remote(
                f"update bid for keyword {keyword.id}",
                self.client.update_keyword_bid, keyword.amazon_keyword_id, new_bid,
            ):
                continue
            await self.store.update_keyword_bid(keyword.id, new_bid)
            result.changes.append(ChangeRecord(
                entity="keyword",
                entity_id=str(keyword.id),
                action="bid_adjustment",
                old_value=current_bid,
                new_value=new_bid,
            ))


class KeywordAutomationExecutor(RuleExecutor):
    async def execute(self, rule: KeywordAutomationRule, connection, result: ExecutionResult) -> None:
        if not rule.actions.pause_underperforming:
            logger.info("Keyword automation rule has no enabled action; nothing to do")
            return

        thresholds = rule.conditions.thresholds()
        keywords = await self.store.enabled_keywords(connection.id)

        for keyword in keywords:
            if not qualifies(EntityMetrics.from_entity(keyword), thresholds):
                continue
            if not await self._remote(
                f"pause keyword {keyword.id}",
                self.client.update_keyword_state, keyword.amazon_keyword_id, EntityState.PAUSED.value,
            ):
                continue
            await self.store.update_keyword_state(keyword.id, EntityState.PAUSED.value)
            result.changes.append(ChangeRecord(
                entity="keyword",
                entity_id=str(keyword.id),
                action="pause",
                old_value=EntityState.ENABLED.value,
                new_value=EntityState.PAUSED.value,
                reason="underperforming",
            ))


class BudgetControlExecutor(RuleExecutor):
    async def execute(self, rule: BudgetControlRule, connection, result: ExecutionResult) -> None:
        thresholds = rule.conditions.thresholds()
        actions = rule.actions
        campaigns = await self.store.enabled_campaigns(connection.id)

        for campaign in campaigns:
            if not qualifies(EntityMetrics.from_entity(campaign), thresholds):
                continue
            current_budget = campaign.daily_budget or 0.0
            new_budget = compute_adjusted_value(
                current_budget,
                actions.budget_adjustment_type,
                actions.budget_adjustment_value,
                min_value=actions.min_budget,
                max_value=actions.max_budget,
            )
            if not is_accepted_change(current_budget, new_budget):
                continue

            if not await self._remote(
                f"update budget for campaign {campaign.id}",
                self.client.update_campaign_budget, campaign.amazon_campaign_id, new_budget,
            ):
                continue
            await self.store.update_campaign_budget(campaign.id, new_budget)
            result.changes.append(ChangeRecord(
                entity="campaign",
                entity_id=str(campaign.id),
                action="budget_adjustment",
                old_value=current_budget,
                new_value=new_budget,
            ))


class NegativeKeywordExecutor(RuleExecutor):
    async def execute(self, rule: NegativeKeywordRule, connection, result: ExecutionResult) -> None:
        thresholds = rule.conditions.thresholds()
        match_type = rule.actions.match_type
        search_terms = await self.store.search_term_candidates(connection.id)

        for term in search_terms:
            if not qualifies(EntityMetrics.from_entity(term), thresholds):
                continue
            if not await self._remote(
                f"add negative keyword '{term.search_term}' to campaign {term.amazon_campaign_id}",
                self.client.add_negative_keyword,
                term.amazon_campaign_id, term.amazon_ad_group_id, term.search_term, match_type,
            ):
                continue
            result.changes.append(ChangeRecord(
                entity="negative_keyword",
                action="add",
                keyword=term.search_term,
                campaign_id=term.amazon_campaign_id,
                ad_group_id=term.amazon_ad_group_id,
                match_type=match_type,
            ))


EXECUTORS: dict[str, type[RuleExecutor]] = {
    RuleType.BID_ADJUSTMENT.value: BidAdjustmentExecutor,
    RuleType.KEYWORD_AUTOMATION.value: KeywordAutomationExecutor,
    RuleType.BUDGET_CONTROL.value: BudgetControlExecutor,
    RuleType.NEGATIVE_KEYWORD.value: NegativeKeywordExecutor,
}
