"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Auth is applied at the include_router level using FastAPI's
dependencies parameter. This protects every route in a router without
touching individual handlers. Only health is open.
"""

from fastapi import APIRouter, Depends

from chatline.api.conversations import router as conversations_router
from chatline.api.health import router as health_router
from chatline.api.presence import router as presence_router
from chatline.auth.dependencies import get_current_user

# All protected routers require authentication
_auth = [Depends(get_current_user)]

api_router = APIRouter(prefix="/api/v1")

# Open routes — no auth required
api_router.include_router(health_router, tags=["health"])

# Protected routes — require a valid access token
api_router.include_router(conversations_router, tags=["conversations"], dependencies=_auth)
api_router.include_router(presence_router, tags=["presence"], dependencies=_auth)
