"""
Database Package

SQLAlchemy async engine/session management and the ORM models mirrored
from APCIS (users, courses) or owned by this service (tokens, lookups).
"""

from .models import (
    ApcisTokenRecord,
    Base,
    Course,
    Department,
    PersonalAccessToken,
    Role,
    User,
)
from .session import create_engine, create_session_factory, get_db, init_db

__all__ = [
    "Base",
    "Role",
    "Department",
    "Course",
    "User",
    "ApcisTokenRecord",
    "PersonalAccessToken",
    "create_engine",
    "create_session_factory",
    "get_db",
    "init_db",
]
