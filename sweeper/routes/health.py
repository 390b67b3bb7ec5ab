"""
Liveness and readiness endpoints.
"""

import time

from fastapi import APIRouter

from sweeper.config import settings
from sweeper.db.pool import db_health_check
from sweeper.services.infrastructure.encryption_service import EncryptionError, TokenVault

router = APIRouter()


def _token_key_usable(key: str) -> bool:
    try:
        return TokenVault(key).validate()
    except EncryptionError:
        return False


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if the process is up."""
    return {"status": "ok", "service": "mailbox-sweeper"}


@router.get("/readyz")
async def readyz():
    """Readiness: database pool plus required configuration."""
    checks = {}

    t0 = time.time()
    try:
        db_health = await db_health_check()
        checks["database"] = {
            "ok": db_health.get("healthy", False),
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if not checks["database"]["ok"]:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
    except Exception as e:
        checks["database"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}

    config_issues = [
        f"{name} not set"
        for name in ("SUPABASE_DB_URL", "TOKEN_ENCRYPTION_KEY", "GOOGLE_CLIENT_ID")
        if not getattr(settings, name)
    ]
    if settings.TOKEN_ENCRYPTION_KEY and not _token_key_usable(settings.TOKEN_ENCRYPTION_KEY):
        config_issues.append("TOKEN_ENCRYPTION_KEY invalid")
    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
    }

    overall_ok = all(check["ok"] for check in checks.values())
    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
