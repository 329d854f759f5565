"""Database models and session management."""

from reportforge.db.models import Report, Template
from reportforge.db.session import close_db, get_async_session, init_db

__all__ = [
    # Models
    "Template",
    "Report",
    # Session
    "get_async_session",
    "init_db",
    "close_db",
]
