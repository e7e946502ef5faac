"""
Amazon Ads Rule Engine — FastAPI Backend
Applies user-defined optimization rules (bids, keyword pausing, budgets,
negative keywords) to Amazon Ads accounts through the Amazon Ads MCP Server.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rule_engine.auth import require_user
from rule_engine.config import get_settings
from rule_engine.database import init_db, check_db_connection, async_session
from rule_engine.routers import cron, rules
from rule_engine.services.metric_store import MetricStore
from rule_engine.services.optimization_engine import OptimizationEngine

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Amazon Ads Rule Engine...")
    app.state.optimization_engine = OptimizationEngine(MetricStore(async_session))
    try:
        await init_db()
        logger.info("Database initialized, all tables ready.")
    except Exception as e:
        logger.error(f"Startup failed (DB/init): {e}", exc_info=True)
        # Still yield so app can serve /api/health (degraded) and logs are visible
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title="Amazon Ads Rule Engine",
    description="Scheduled optimization rules for Amazon Ads accounts",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(
    rules.router,
    prefix="/api/optimization",
    tags=["Optimization Rules"],
    dependencies=[Depends(require_user)],
)
app.include_router(cron.router, prefix="/api")  # No user auth, uses CRON_SECRET


@app.get("/api/health")
async def health_check():
    db_ok = await check_db_connection()
    return {
        "status": "healthy" if db_ok else "degraded",
        "service": "Amazon Ads Rule Engine",
        "database": "connected" if db_ok else "disconnected",
    }
