"""
FastAPI dependencies for the process-wide rule engine.
The engine and its MetricStore are built once in the app lifespan.
"""

from fastapi import HTTPException, Request

from rule_engine.services.optimization_engine import OptimizationEngine


def get_engine(request: Request) -> OptimizationEngine:
    engine = getattr(request.app.state, "optimization_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Optimization engine is not initialized")
    return engine
