"""FastAPI dependencies for dependency injection.

Provides reusable dependencies for routes including:
- Application settings bound to the running app
- Database sessions
- The component factory (document-assembly collaborators)
- Path/record lookups shared by several routers
"""

import logging
import uuid
from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from reportforge.core.config import Settings, get_settings
from reportforge.core.factory import ComponentFactory, get_factory
from reportforge.db.models import Report, Template
from reportforge.db.session import get_async_session
from reportforge.interfaces.errors import ReportForgeError

logger = logging.getLogger(__name__)


def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with (global settings otherwise)."""
    return getattr(request.app.state, "settings", None) or get_settings()


def get_components(request: Request) -> ComponentFactory:
    """Component factory the application was created with (global factory otherwise)."""
    return getattr(request.app.state, "factory", None) or get_factory()


async def get_db(
    settings: Settings = Depends(get_app_settings),
) -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions.

    Args:
        settings: Application settings.

    Yields:
        An async database session.
    """
    try:
        async for session in get_async_session(settings):
            yield session
    except (HTTPException, ReportForgeError):
        raise
    except Exception as e:
        logger.error(f"Error getting database session: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database connection error",
        ) from e


def parse_uuid(value: str, label: str) -> uuid.UUID:
    """Parse a path identifier, 404 when it is not a UUID."""
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        logger.warning(f"Invalid {label} id: {value}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{label.capitalize()} not found",
        ) from e


async def load_template(session: AsyncSession, template_id: str) -> Template:
    """Fetch a template by id.

    Raises:
        HTTPException: 404 if the template does not exist.
    """
    template = await session.get(Template, parse_uuid(template_id, "template"))
    if template is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Template not found",
        )
    return template


async def load_report(session: AsyncSession, report_id: str) -> Report:
    """Fetch a report by id.

    Raises:
        HTTPException: 404 if the report does not exist.
    """
    report = await session.get(Report, parse_uuid(report_id, "report"))
    if report is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Report not found",
        )
    return report
