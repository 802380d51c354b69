"""Health check endpoint.

Learn: Verifies the server is running and its dependencies (PostgreSQL,
the realtime transport) are reachable. Degraded, not down, when either
is missing — alarms can still be read without realtime.
"""

from fastapi import APIRouter
from sqlalchemy import text

from sitewatch import __version__
from sitewatch.db.engine import engine
from sitewatch.realtime.hub import get_hub

router = APIRouter()


@router.get("/health")
async def health_check():
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    # Check Postgres
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["postgres"] = "ok"
    except Exception as e:
        checks["postgres"] = f"error: {e}"

    # Check realtime transport
    try:
        hub = get_hub()
        checks["realtime"] = "ok" if await hub.transport.ping() else "error: ping failed"
        checks["alarm_store"] = hub.alarms.state.value
    except RuntimeError as e:
        checks["realtime"] = f"error: {e}"

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k in ("server", "postgres", "realtime")
    ) else "degraded"

    return {"status": status, **checks}
