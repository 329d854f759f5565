"""FastAPI routers and dependencies."""

from reportforge.api.deps import get_app_settings, get_components, get_db
from reportforge.api.reports import router as reports_router
from reportforge.api.templates import router as templates_router
from reportforge.api.uploads import router as uploads_router

__all__ = [
    "get_app_settings",
    "get_components",
    "get_db",
    "reports_router",
    "templates_router",
    "uploads_router",
]
