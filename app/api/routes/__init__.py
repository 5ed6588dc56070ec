from __future__ import annotations

from app.api.routes.admin import router as admin_router
from app.api.routes.health import router as health_router
from app.api.routes.operator import router as operator_router
from app.api.routes.public import router as public_router
from app.api.routes.search import router as search_router

__all__ = ["admin_router", "health_router", "operator_router", "public_router", "search_router"]
