"""
FastAPI application exposing the Elevatr health check.
"""

import logging
from datetime import datetime, timezone

from fastapi import FastAPI, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from elevatr import __version__
from elevatr.core.config import load_config

logger = logging.getLogger(__name__)


class HealthChecks(BaseModel):
    server: str = "ok"
    database: str = "ok"
    auth: str = "ok"


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    environment: str
    version: str
    checks: HealthChecks


app = FastAPI(
    title="Elevatr API",
    description="Health endpoint of the Elevatr application",
    version=__version__,
)


@app.get("/api/health", response_model=HealthResponse)
async def health() -> HealthResponse | JSONResponse:
    """Fixed health payload; 500 with status "unhealthy" if it cannot be built."""
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        environment = load_config().environment
    except Exception as e:
        logger.error("Health check failed: %s", e)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "status": "unhealthy",
                "error": "Health check failed",
                "timestamp": timestamp,
            },
        )

    return HealthResponse(
        status="healthy",
        timestamp=timestamp,
        environment=environment,
        version=__version__,
        checks=HealthChecks(),
    )
