"""
Optimization Engine — executes optimization rules and runs the scheduled sweep.

execute_rule():
    RUNNING log -> dispatch to the rule kind's executor -> SUCCESS or FAILED.
    Every invocation finalizes exactly one log and updates the rule's run
    statistics before returning or re-raising. Failed rules keep their
    next_run_at so they are not silently rescheduled.

run_scheduled_rules():
    Executes every enabled rule whose next_run_at has passed, highest
    priority first. Individual failures are logged and never stop the sweep.

A rule never runs twice at once: a per-rule asyncio.Lock guards this
process, and a RUNNING log in the database guards other processes.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Optional

from rule_engine.config import get_settings
from rule_engine.errors import RuleAlreadyRunningError
from rule_engine.mcp_client import AmazonAdsMCP, create_client_for_connection
from rule_engine.models import ExecutionStatus
from rule_engine.schemas import parse_rule_definition
from rule_engine.services.metric_store import MetricStore
from rule_engine.services.rule_executors import EXECUTORS, ExecutionResult
from rule_engine.services.scheduling import calculate_next_run
from rule_engine.utils import utcnow, elapsed_ms

logger = logging.getLogger(__name__)


def _error_message(exc: BaseException) -> str:
    if isinstance(exc, asyncio.CancelledError):
        return "Execution cancelled"
    return str(exc) or exc.__class__.__name__


@dataclass
class ExecutionSummary:
    log_id: uuid.UUID
    status: str
    entities_affected: int
    changes_made: list[dict]
    duration_ms: int

    def to_dict(self) -> dict:
        return {
            "logId": str(self.log_id),
            "status": self.status,
            "entitiesAffected": self.entities_affected,
            "changesMade": self.changes_made,
            "durationMs": self.duration_ms,
        }


@dataclass
class SweepReport:
    due: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0  # already running
    deferred: int = 0  # left for the next sweep after the time budget ran out
    failed_rule_ids: list[str] = field(default_factory=list)

    @property
    def executed(self) -> int:
        return self.succeeded + self.failed

    def to_dict(self) -> dict:
        return {
            "due": self.due,
            "executed": self.executed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "deferred": self.deferred,
            "failed_rule_ids": self.failed_rule_ids,
        }


class OptimizationEngine:
    def __init__(
        self,
        store: MetricStore,
        client_factory: Callable[..., AmazonAdsMCP] = create_client_for_connection,
        sweep_max_seconds: Optional[float] = None,
        stale_execution_minutes: Optional[int] = None,
        clock: Callable = utcnow,
    ):
        settings = get_settings()
        self.store = store
        self._client_factory = client_factory
        self._sweep_max_seconds = sweep_max_seconds or settings.sweep_max_seconds
        self._stale_after = timedelta(minutes=stale_execution_minutes or settings.stale_execution_minutes)
        self._clock = clock
        self._locks: dict[uuid.UUID, asyncio.Lock] = {}

    def is_running(self, rule_id: uuid.UUID) -> bool:
        lock = self._locks.get(rule_id)
        return lock is not None and lock.locked()

    async def execute_rule(self, rule, connection) -> ExecutionSummary:
        """Run one rule now, regardless of its schedule. Raises after logging on failure."""
        if self.is_running(rule.id):
            raise RuleAlreadyRunningError(rule.id)
        lock = self._locks.setdefault(rule.id, asyncio.Lock())
        try:
            async with lock:
                if await self.store.has_running_execution(rule.id, self._stale_after, self._clock()):
                    raise RuleAlreadyRunningError(rule.id)
                return await self._execute(rule, connection)
        finally:
            if not lock.locked():
                self._locks.pop(rule.id, None)

    async def _execute(self, rule, connection) -> ExecutionSummary:
        started_at = self._clock()
        log_id = await self.store.create_execution_log(rule.id, rule.connection_id, started_at)
        result = ExecutionResult()
        logger.info(f"Executing rule {rule.id} ({rule.rule_type}), log {log_id}")

        try:
            definition = parse_rule_definition(rule.rule_type, rule.conditions, rule.actions)
            executor = EXECUTORS[definition.rule_type](self.store, self._client_factory(connection))
            await executor.execute(definition, connection, result)
        except (Exception, asyncio.CancelledError) as e:
            # Cancellation (shutdown, redeploy) must not leave the log RUNNING
            completed_at = self._clock()
            await self.store.finish_execution_log(
                log_id,
                ExecutionStatus.FAILED,
                completed_at=completed_at,
                duration_ms=elapsed_ms(started_at, completed_at),
                entities_affected=result.entities_affected,
                changes_made=result.log_entries(),
                error_message=_error_message(e),
            )
            await self.store.record_rule_failure(rule.id, completed_at)
            logger.error(f"Rule {rule.id} failed after {result.entities_affected} changes: {e}")
            raise

        completed_at = self._clock()
        duration_ms = elapsed_ms(started_at, completed_at)
        changes_made = result.log_entries()
        await self.store.finish_execution_log(
            log_id,
            ExecutionStatus.SUCCESS,
            completed_at=completed_at,
            duration_ms=duration_ms,
            entities_affected=result.entities_affected,
            changes_made=changes_made,
        )
        await self.store.record_rule_success(
            rule.id,
            completed_at,
            calculate_next_run(rule.schedule, rule.custom_cron, now=completed_at),
        )
        logger.info(f"Rule {rule.id} succeeded: {result.entities_affected} entities affected in {duration_ms}ms")

        return ExecutionSummary(
            log_id=log_id,
            status=ExecutionStatus.SUCCESS.value,
            entities_affected=result.entities_affected,
            changes_made=changes_made,
            duration_ms=duration_ms,
        )

    async def run_scheduled_rules(self) -> SweepReport:
        """
        Execute all due rules. Only a failure to load the due-rule list
        propagates; per-rule errors are logged and counted.
        """
        due_rules = await self.store.due_rules(self._clock())
        report = SweepReport(due=len(due_rules))
        logger.info(f"Found {len(due_rules)} rules to execute")

        deadline = time.monotonic() + self._sweep_max_seconds
        for index, (rule, connection) in enumerate(due_rules):
            if time.monotonic() >= deadline:
                report.deferred = len(due_rules) - index
                logger.warning(f"Sweep time budget exhausted; {report.deferred} rules deferred to the next sweep")
                break
            try:
                await self.execute_rule(rule, connection)
                report.succeeded += 1
                logger.info(f"Successfully executed rule {rule.id}")
            except RuleAlreadyRunningError:
                report.skipped += 1
                logger.info(f"Skipping rule {rule.id}: previous execution still running")
            except Exception as e:
                report.failed += 1
                report.failed_rule_ids.append(str(rule.id))
                logger.error(f"Failed to execute rule {rule.id}: {e}")

        logger.info(f"Sweep finished: {report.to_dict()}")
        return report
