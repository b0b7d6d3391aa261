"""Health check endpoints.

Provides liveness (/health), readiness (/health/ready) and an on-demand
speech-to-text check (/health/stt). Readiness only probes the database
when one is configured; the in-memory repository is always ready.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.meetscribe.config import get_settings
from src.meetscribe.core.database import get_engine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check.

    No external dependencies are checked -- just that the server is running.
    """
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(request: Request) -> dict:
    """Check storage and export backends. Returns check results dict.

    STT is reported as ``configured`` or ``mock`` only; /health/stt makes
    the real call.
    """
    settings = get_settings()
    checks: dict = {"database": "ok", "stt": "configured", "export": "ok"}

    if settings.DATABASE_URL:
        try:
            engine = get_engine()
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as e:
            checks["database"] = "error"
            checks["database_error"] = str(e)
    else:
        checks["database"] = "memory"

    if settings.USE_MOCK_STT or not settings.OPENAI_API_KEY:
        checks["stt"] = "mock"

    exporter = getattr(request.app.state, "exporter", None)
    if exporter is None:
        checks["export"] = "error"
        checks["export_error"] = "Exporter not initialized"
    elif exporter.mock_mode:
        checks["export"] = "mock"

    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: verifies storage connectivity and service wiring.

    Returns 200 if all pass, 503 if any critical dependency fails.
    """
    checks = await _check_dependencies(request)
    all_healthy = checks.get("database") in ("ok", "memory") and checks.get("export") in (
        "ok",
        "mock",
    )

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if all_healthy else "degraded",
            "checks": checks,
        },
    )


@router.get("/health/stt")
async def stt_check(request: Request):
    """Transcribe a short silent clip with the configured OpenAI key.

    Returns 200 on success, 503 when no key is configured and 502 when the
    provider rejects or cannot be reached.
    """
    transcriber = getattr(request.app.state, "transcriber", None)
    if transcriber is None:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"ok": False, "reason": "Transcriber not initialized"},
        )

    result = await transcriber.check_health()
    if result["ok"]:
        status_code = status.HTTP_200_OK
    elif "model" not in result:
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        status_code = status.HTTP_502_BAD_GATEWAY
    return JSONResponse(status_code=status_code, content=result)
