"""
Cron — scheduler trigger for the optimization sweep.

Called on a fixed cadence (e.g. every minute) by an external scheduler such as
Upstash QStash or a platform cron. Verifies CRON_SECRET, sent either as
  X-Cron-Secret: <CRON_SECRET>
or
  Authorization: Bearer <CRON_SECRET>
"""

import logging
import secrets
from fastapi import APIRouter, Depends, Header, HTTPException

from rule_engine.config import get_settings
from rule_engine.deps import get_engine
from rule_engine.services.optimization_engine import OptimizationEngine
from rule_engine.utils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"])


async def _require_cron_secret(
    x_cron_secret: str | None = Header(None, alias="X-Cron-Secret"),
    authorization: str | None = Header(None),
) -> None:
    """Verify request came from the scheduler with a valid secret."""
    secret = get_settings().cron_secret
    if not secret:
        raise HTTPException(500, "CRON_SECRET not configured")
    token = x_cron_secret
    if not token and authorization and authorization.startswith("Bearer "):
        token = authorization[7:]
    if not token or not secrets.compare_digest(token, secret):
        raise HTTPException(401, "Invalid cron secret")


@router.api_route("/optimization", methods=["GET", "POST"])
async def cron_optimization(
    _: None = Depends(_require_cron_secret),
    engine: OptimizationEngine = Depends(get_engine),
):
    """Run every due optimization rule."""
    logger.info("Starting scheduled optimization run...")
    try:
        report = await engine.run_scheduled_rules()
    except Exception as e:
        logger.exception("Scheduled optimization run failed")
        raise HTTPException(500, f"Failed to load due rules: {e}")
    return {
        "success": True,
        "message": "Optimization rules executed",
        "timestamp": utcnow().isoformat(),
        "result": report.to_dict(),
    }
