"""Pydantic schemas for health check responses."""

from typing import Literal

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response body for the summary health endpoint."""

    status: Literal["ok"] = Field(default="ok", description="Service status")
    environment: str = Field(description="Current app environment (e.g. dev, prod)")
    database: Literal["connected", "disconnected"] | None = Field(
        default=None,
        description="Database connectivity status when check is performed",
    )


class LivenessResponse(BaseModel):
    status: Literal["ok"] = "ok"
    timestamp: str
    service: str
    version: str
    uptime: float = Field(description="Seconds since process start")


class CheckResult(BaseModel):
    status: Literal["healthy", "unhealthy"]
    duration_ms: int
    error: str | None = None


class ReadinessResponse(BaseModel):
    status: Literal["ready", "not_ready"]
    timestamp: str
    checks: dict[str, CheckResult]
    total_duration_ms: int
