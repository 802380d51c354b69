"""API route aggregation.

All routers registered here get mounted in main.py under /api/v1.

Learn: SiteWatch sits behind the site operator's own authentication
proxy, so no router carries an auth dependency here.
"""

from fastapi import APIRouter

from sitewatch.api.alarms import router as alarms_router
from sitewatch.api.bridges import router as bridges_router
from sitewatch.api.events import router as events_router
from sitewatch.api.health import router as health_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(bridges_router, tags=["bridges"])
api_router.include_router(alarms_router, tags=["alarms"])
api_router.include_router(events_router, tags=["events"])
