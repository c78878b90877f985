"""TrendBot FastAPI application."""

from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from trendbot import __version__
from trendbot.core.errors import ConfigurationError
from trendbot.core.logging import get_logger, setup_logging
from trendbot.core.models import DataType, Platform, TimeRange, TrendData, TrendQuery
from trendbot.core.settings import get_settings
from trendbot.engine.factory import TrendEngine, build_engine

setup_logging("trendbot")
logger = get_logger(__name__)

app = FastAPI(title="TrendBot", version=__version__, description="Multi-platform trend intelligence API")


class TrendsRequest(BaseModel):
    """Request model for a trend query."""
    platforms: List[Platform] = Field(..., min_length=1, description="Platforms to query")
    data_types: List[DataType] = Field(default_factory=lambda: list(DataType), min_length=1)
    time_range: TimeRange = TimeRange.DAY

    def to_query(self) -> TrendQuery:
        return TrendQuery(
            platforms=frozenset(self.platforms),
            data_types=frozenset(self.data_types),
            time_range=self.time_range,
        )


class PredictRequest(BaseModel):
    """Request model for trend prediction; without history, recent results are used."""
    history: Optional[List[TrendData]] = None
    top_k: Optional[int] = Field(default=20, ge=1, le=500)


class PredictResponse(BaseModel):
    predictions: List[str]
    history_size: int


def get_engine(request: Request) -> TrendEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Trend engine is not running")
    return engine


@app.get("/healthz")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": "trendbot"}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "trendbot",
        "version": __version__,
        "endpoints": {
            "health": "/healthz",
            "trends": "/trends (POST)",
            "predict": "/trends/predict (POST)",
            "sources": "/sources/status",
        },
    }


@app.post("/trends", response_model=List[TrendData])
async def fetch_trends(request: TrendsRequest, engine: TrendEngine = Depends(get_engine)):
    """
    Fetch trends across platforms.

    Returns one entry per requested platform. Failed platforms carry an
    error instead of data; the request itself only fails on bad input.
    """
    query = request.to_query()
    logger.info(
        "Trend query received",
        extra={
            "platforms": sorted(p.value for p in query.platforms),
            "data_types": sorted(dt.value for dt in query.data_types),
            "time_range": query.time_range.value,
        },
    )
    return await engine.fetch_trends(query)


@app.post("/trends/predict", response_model=PredictResponse)
async def predict_trends(request: PredictRequest, engine: TrendEngine = Depends(get_engine)):
    """Rank identifiers predicted to trend next."""
    history = request.history
    predictions = engine.predict(history)
    if request.top_k is not None:
        predictions = predictions[:request.top_k]
    return PredictResponse(
        predictions=predictions,
        history_size=len(history) if history is not None else len(engine.aggregator.history),
    )


@app.get("/sources/status")
async def sources_status(engine: TrendEngine = Depends(get_engine)) -> Dict[str, Any]:
    """Circuit breaker, rate limiter and cache state per source."""
    return engine.source_status()


@app.on_event("startup")
async def startup_event():
    """Build and start the engine."""
    if getattr(app.state, "engine", None) is None:
        try:
            app.state.engine = build_engine(get_settings())
        except ConfigurationError as e:
            logger.error(f"Invalid configuration: {e}")
            raise

    await app.state.engine.start()
    logger.info(
        "Starting trendbot service",
        extra={"service": "trendbot", "version": __version__},
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Shutdown event handler."""
    engine = getattr(app.state, "engine", None)
    if engine is not None:
        await engine.close()
        app.state.engine = None
    logger.info("Shutting down trendbot service")


if __name__ == "__main__":
    settings = get_settings()
    logger.info("Starting trendbot service via uvicorn")
    uvicorn.run(
        "trendbot.app:app",
        host=settings.service_host,
        port=settings.service_port or 8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
