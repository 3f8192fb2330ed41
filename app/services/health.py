"""Liveness and readiness probes. Readiness races every dependency check against a timer."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from app.core.database import ping_database
from app.schemas.health import CheckResult, LivenessResponse, ReadinessResponse

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

_STARTED_AT = time.monotonic()

HealthCheck = Callable[[], Awaitable[None]]


class DependencyTimeout(Exception):
    """A dependency check did not finish within its bound. Reported, never raised to callers."""

    def __init__(self, name: str, timeout_sec: float) -> None:
        self.name = name
        self.timeout_sec = timeout_sec
        super().__init__(f"{name} health check timed out after {int(timeout_sec * 1000)}ms")


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def liveness(settings: Settings) -> LivenessResponse:
    """Always ok while the process can answer; no dependency checks."""
    return LivenessResponse(
        timestamp=_now_iso(),
        service=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
        uptime=round(time.monotonic() - _STARTED_AT, 3),
    )


async def run_check(name: str, check: HealthCheck, timeout_sec: float) -> CheckResult:
    start = time.perf_counter()
    try:
        await asyncio.wait_for(check(), timeout=timeout_sec)
    except asyncio.TimeoutError:
        err = DependencyTimeout(name, timeout_sec)
        logger.warning("Health check timed out", extra={"check": name, "timeout_sec": timeout_sec})
        return CheckResult(status="unhealthy", duration_ms=_elapsed_ms(start), error=str(err))
    except Exception as e:
        # Driver messages can contain hosts and credentials; report the type only.
        logger.warning("Health check failed", extra={"check": name, "error_type": type(e).__name__})
        return CheckResult(
            status="unhealthy",
            duration_ms=_elapsed_ms(start),
            error=f"{name} check failed: {type(e).__name__}",
        )
    return CheckResult(status="healthy", duration_ms=_elapsed_ms(start))


async def readiness(checks: dict[str, HealthCheck], timeout_sec: float) -> ReadinessResponse:
    """Run all checks concurrently; ready only when every check is healthy."""
    start = time.perf_counter()
    names = list(checks)
    results = await asyncio.gather(
        *(run_check(name, checks[name], timeout_sec) for name in names)
    )
    by_name = dict(zip(names, results))
    ready = all(r.status == "healthy" for r in results)
    return ReadinessResponse(
        status="ready" if ready else "not_ready",
        timestamp=_now_iso(),
        checks=by_name,
        total_duration_ms=_elapsed_ms(start),
    )


def database_check(session_factory: Callable[[], Session]) -> HealthCheck:
    """Build a check that runs SELECT 1 on a fresh session in a worker thread."""

    def _ping() -> None:
        db = session_factory()
        try:
            ping_database(db)
        finally:
            db.close()

    async def check() -> None:
        await asyncio.to_thread(_ping)

    return check
