"""
Optimization Rules Router — rule CRUD, on-demand execution and execution history.
Rules are scoped to the authenticated user; runs go through the shared engine.
"""

import logging
from typing import Any, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rule_engine.auth import require_user
from rule_engine.database import get_db
from rule_engine.deps import get_engine
from rule_engine.errors import RuleAlreadyRunningError, RuleConfigurationError
from rule_engine.models import AmazonConnection, OptimizationRule, ExecutionLog, RuleSchedule
from rule_engine.schemas import parse_rule_definition
from rule_engine.services.optimization_engine import OptimizationEngine
from rule_engine.services.scheduling import calculate_next_run
from rule_engine.utils import parse_uuid, safe_error_detail, utcnow

logger = logging.getLogger(__name__)

router = APIRouter()


class RuleCreate(BaseModel):
    connection_id: str
    name: str = Field(..., min_length=1, max_length=255)
    rule_type: str
    enabled: bool = True
    conditions: dict[str, Any]
    actions: dict[str, Any]
    schedule: RuleSchedule = RuleSchedule.DAILY
    custom_cron: Optional[str] = None
    priority: int = 0


class RuleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    enabled: Optional[bool] = None
    conditions: Optional[dict[str, Any]] = None
    actions: Optional[dict[str, Any]] = None
    schedule: Optional[RuleSchedule] = None
    custom_cron: Optional[str] = None
    priority: Optional[int] = None


class ExecuteRequest(BaseModel):
    rule_id: str


def _serialize_rule(r: OptimizationRule) -> dict:
    return {
        "id": str(r.id),
        "connection_id": str(r.connection_id),
        "name": r.name,
        "rule_type": r.rule_type,
        "enabled": r.enabled,
        "conditions": r.conditions,
        "actions": r.actions,
        "schedule": r.schedule,
        "custom_cron": r.custom_cron,
        "priority": r.priority,
        "run_count": r.run_count or 0,
        "success_count": r.success_count or 0,
        "failure_count": r.failure_count or 0,
        "last_run_at": r.last_run_at.isoformat() if r.last_run_at else None,
        "next_run_at": r.next_run_at.isoformat() if r.next_run_at else None,
        "created_at": r.created_at.isoformat() if r.created_at else None,
    }


def _validate_definition(rule_type: str, conditions: dict, actions: dict) -> None:
    try:
        parse_rule_definition(rule_type, conditions, actions)
    except RuleConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))


async def _get_owned_rule(db: AsyncSession, rule_id: str, user_id: str) -> OptimizationRule:
    result = await db.execute(
        select(OptimizationRule).where(OptimizationRule.id == parse_uuid(rule_id, "rule_id"))
    )
    rule = result.scalar_one_or_none()
    if not rule:
        raise HTTPException(status_code=404, detail="Rule not found")
    if rule.user_id != user_id:
        raise HTTPException(status_code=403, detail="Rule belongs to a different user")
    return rule


@router.get("/rules")
async def list_rules(
    connection_id: Optional[str] = Query(None),
    enabled: Optional[bool] = Query(None),
    user_id: str = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """List the caller's rules with run stats, highest priority first."""
    query = (
        select(OptimizationRule)
        .where(OptimizationRule.user_id == user_id)
        .order_by(OptimizationRule.priority.desc(), OptimizationRule.created_at.desc())
    )
    if connection_id:
        query = query.where(OptimizationRule.connection_id == parse_uuid(connection_id, "connection_id"))
    if enabled is not None:
        query = query.where(OptimizationRule.enabled.is_(enabled))

    result = await db.execute(query)
    return [_serialize_rule(r) for r in result.scalars().all()]


@router.post("/rules", status_code=201)
async def create_rule(
    payload: RuleCreate,
    user_id: str = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    _validate_definition(payload.rule_type, payload.conditions, payload.actions)

    result = await db.execute(
        select(AmazonConnection).where(
            AmazonConnection.id == parse_uuid(payload.connection_id, "connection_id"),
            AmazonConnection.user_id == user_id,
        )
    )
    connection = result.scalar_one_or_none()
    if not connection:
        raise HTTPException(status_code=404, detail="Amazon connection not found or unauthorized")

    rule = OptimizationRule(
        connection_id=connection.id,
        user_id=user_id,
        name=payload.name,
        rule_type=payload.rule_type,
        enabled=payload.enabled,
        conditions=payload.conditions,
        actions=payload.actions,
        schedule=payload.schedule.value,
        custom_cron=payload.custom_cron,
        priority=payload.priority,
        next_run_at=calculate_next_run(payload.schedule, payload.custom_cron),
        run_count=0,
        success_count=0,
        failure_count=0,
    )
    db.add(rule)
    await db.flush()
    await db.refresh(rule)
    logger.info(f"Created {rule.rule_type} rule {rule.id} for user {user_id}")
    return _serialize_rule(rule)


@router.get("/rules/{rule_id}")
async def get_rule(
    rule_id: str,
    user_id: str = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    return _serialize_rule(await _get_owned_rule(db, rule_id, user_id))


@router.patch("/rules/{rule_id}")
async def update_rule(
    rule_id: str,
    payload: RuleUpdate,
    user_id: str = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    rule = await _get_owned_rule(db, rule_id, user_id)
    update_data = payload.model_dump(exclude_none=True)

    if "conditions" in update_data or "actions" in update_data:
        _validate_definition(
            rule.rule_type,
            update_data.get("conditions", rule.conditions),
            update_data.get("actions", rule.actions),
        )

    schedule_changed = "schedule" in update_data or "custom_cron" in update_data
    for key, value in update_data.items():
        setattr(rule, key, getattr(value, "value", value))
    if schedule_changed:
        rule.next_run_at = calculate_next_run(rule.schedule, rule.custom_cron)
    rule.updated_at = utcnow()

    await db.flush()
    await db.refresh(rule)
    return _serialize_rule(rule)


@router.delete("/rules/{rule_id}")
async def delete_rule(
    rule_id: str,
    user_id: str = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    rule = await _get_owned_rule(db, rule_id, user_id)
    await db.delete(rule)
    logger.info(f"Deleted rule {rule_id}")
    return {"status": "deleted"}


@router.get("/rules/{rule_id}/logs")
async def list_execution_logs(
    rule_id: str,
    limit: int = Query(20, ge=1, le=200),
    user_id: str = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Execution history for a rule, newest first."""
    rule = await _get_owned_rule(db, rule_id, user_id)
    result = await db.execute(
        select(ExecutionLog)
        .where(ExecutionLog.rule_id == rule.id)
        .order_by(ExecutionLog.started_at.desc())
        .limit(limit)
    )
    return [
        {
            "id": str(log.id),
            "rule_id": str(log.rule_id),
            "status": log.status,
            "started_at": log.started_at.isoformat() if log.started_at else None,
            "completed_at": log.completed_at.isoformat() if log.completed_at else None,
            "duration_ms": log.duration_ms,
            "entities_affected": log.entities_affected,
            "changes_made": log.changes_made or [],
            "error_message": log.error_message,
        }
        for log in result.scalars().all()
    ]


@router.post("/execute")
async def execute_rule(
    payload: ExecuteRequest,
    user_id: str = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    engine: OptimizationEngine = Depends(get_engine),
):
    """Run a rule immediately, regardless of its schedule."""
    rule = await _get_owned_rule(db, payload.rule_id, user_id)
    if not rule.enabled:
        raise HTTPException(status_code=400, detail="Rule is disabled")

    result = await db.execute(select(AmazonConnection).where(AmazonConnection.id == rule.connection_id))
    connection = result.scalar_one_or_none()
    if not connection:
        raise HTTPException(status_code=404, detail="Amazon connection not found")

    try:
        summary = await engine.execute_rule(rule, connection)
    except RuleAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except RuleConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=502, detail=safe_error_detail(e, "Rule execution failed. Please try again."))

    return {"success": True, "execution": summary.to_dict()}
