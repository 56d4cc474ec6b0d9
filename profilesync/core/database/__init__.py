# profilesync/core/database/__init__.py
"""
Database package for the profile sync service.

Provides SQLAlchemy models and the declarative base.
"""

from .base import Base
from .models import (
    AuditLog,
    ProfileLink,
    ProfileLinkImport,
    RuntimeState,
    Story,
)

__all__ = [
    "Base",
    "ProfileLink",
    "ProfileLinkImport",
    "RuntimeState",
    "AuditLog",
    "Story",
]
